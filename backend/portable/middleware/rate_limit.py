"""
Portable Backend — Rate Limiting Middleware
=============================================

What:  Per-client sliding window rate limiter (RATE_LIMIT_REQUESTS per
       RATE_LIMIT_WINDOW seconds).
Why:   Every POST /api/items triggers outbound fetches and, later, Gemini
       calls; a runaway script must not burn the AI quota for everyone.
How:   Timestamps per client key in memory; old entries are dropped on each
       request; a full window answers 429 with Retry-After.

Client keys:
    "ip:<client address>" is the default budget. It covers anonymous
    requests and every request whose bearer token the app rejected with 401,
    so rotating made-up tokens never buys a fresh budget.

    "key:<sha256 of the bearer token, 16 hex chars>" is created the first
    time a token gets a non-401 response. From then on that token is counted
    on its own budget, so users behind one NAT do not share one, and the raw
    key is never held in memory.

Single-process only: each uvicorn worker keeps its own counters.
"""

import hashlib
import logging
import time
from collections import defaultdict
from typing import Dict, List, Optional

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from portable.config import settings
from portable.exceptions import RateLimitExceededError
from portable.middleware.request_id import request_id_var

logger = logging.getLogger(__name__)

CLEANUP_EVERY = 1000


def ip_key(request: Request) -> str:
    host = request.client.host if request.client else "unknown"
    return f"ip:{host}"


def token_key(request: Request) -> Optional[str]:
    authorization = request.headers.get("Authorization", "")
    token = authorization[7:].strip() if authorization.startswith("Bearer ") else ""
    if not token:
        return None
    return f"key:{hashlib.sha256(token.encode()).hexdigest()[:16]}"


class RateLimitMiddleware(BaseHTTPMiddleware):

    EXCLUDED_PATHS = {"/health", "/docs", "/openapi.json", "/redoc", "/api/extension/version"}

    def __init__(self, app, **kwargs):
        super().__init__(app, **kwargs)
        self._requests: Dict[str, List[float]] = defaultdict(list)
        self._seen = 0

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if request.url.path in self.EXCLUDED_PATHS or request.method == "OPTIONS":
            return await call_next(request)

        token = token_key(request)
        # Only tokens the app has accepted before have a budget of their own
        key = token if token and token in self._requests else ip_key(request)
        now = time.time()
        window_start = now - settings.rate_limit_window

        timestamps = [ts for ts in self._requests[key] if ts > window_start]
        self._requests[key] = timestamps

        if len(timestamps) >= settings.rate_limit_requests:
            retry_after = int(timestamps[0] + settings.rate_limit_window - now) + 1
            logger.warning(
                "Rate limit exceeded for %s: %d requests in %ds window",
                key,
                len(timestamps),
                settings.rate_limit_window,
            )
            # Raised exceptions never reach the app's handlers from here
            error = RateLimitExceededError(retry_after=retry_after)
            return JSONResponse(
                status_code=429,
                content={
                    "error": "rate_limit_exceeded",
                    "message": error.message,
                    "details": error.context,
                    "request_id": request_id_var.get(""),
                },
                headers={"Retry-After": str(error.retry_after)},
            )

        # Charged before the call so concurrent requests see each other
        timestamps.append(now)

        self._seen += 1
        if self._seen % CLEANUP_EVERY == 0:
            self._cleanup_inactive(window_start)

        response = await call_next(request)

        if token and key != token and response.status_code != 401:
            self._move(now, key, token)
        return response

    def _move(self, timestamp: float, source: str, target: str) -> None:
        """Re-charge a request from the shared IP budget to its token's budget."""
        timestamps = self._requests.get(source)
        if timestamps and timestamp in timestamps:
            timestamps.remove(timestamp)
        self._requests[target].append(timestamp)

    def _cleanup_inactive(self, window_start: float) -> None:
        inactive = [
            key for key, timestamps in self._requests.items()
            if not timestamps or timestamps[-1] < window_start
        ]
        for key in inactive:
            del self._requests[key]
        if inactive:
            logger.debug("Dropped %d inactive rate limit entries", len(inactive))
