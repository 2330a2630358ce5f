"""
Portable Backend — Request ID Middleware
==========================================

What:  Assigns a short correlation id to every request and echoes it back
       in the X-Request-ID response header.
Why:   Error responses carry the same id, so a user report ("request a1b2c3d4
       failed") maps straight to the server log lines of that request.
How:   Honors an incoming X-Request-ID (the web app sets one), otherwise
       generates 8 hex chars. Stored in a ContextVar for loggers and handlers.
"""

import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

# Coroutine-local: concurrent requests share the thread, not the value
request_id_var: ContextVar[str] = ContextVar("request_id", default="")

MAX_CLIENT_ID_LENGTH = 64


class RequestIDMiddleware(BaseHTTPMiddleware):

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        rid = request.headers.get("X-Request-ID", "").strip()[:MAX_CLIENT_ID_LENGTH]
        if not rid:
            rid = uuid.uuid4().hex[:8]

        request_id_var.set(rid)
        request.state.request_id = rid

        response = await call_next(request)
        response.headers["X-Request-ID"] = rid
        return response
