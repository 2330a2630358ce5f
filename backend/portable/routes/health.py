"""
Portable Backend — Health Check Route
=======================================

What:  Health check endpoint for monitoring and load balancer probes.
How:   Checks the database (critical) and Gemini (non-critical: items are
       still saved and extracted without it) and reports the extraction backend.
Who:   Docker health checks, load balancers and uptime monitors.

Status levels:
    - healthy:   Database reachable, Gemini available or intentionally disabled
    - degraded:  Gemini unavailable or its circuit breaker is open
    - unhealthy: Database unreachable (HTTP 503)
"""

import logging
import time

from fastapi import APIRouter, Response
from sqlalchemy import text

from portable import __version__
from portable.config import settings
from portable.schemas.common import HealthResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

# Initialized once when the module loads
_start_time = time.time()


@router.get(
    "/health",
    response_model=HealthResponse,
    responses={503: {"description": "Database unreachable", "model": HealthResponse}},
    summary="Service health check",
)
async def health_check(response: Response) -> HealthResponse:
    """
    Check the health of the service and its dependencies.

    Check details:
        Database: SELECT 1 through the engine
        Gemini:   circuit breaker state first, then list_models()
    """
    db_status = "connected"
    gemini_status = "available"
    overall = "healthy"

    # ── Check Database ────────────────────────────────────────────────────
    try:
        from portable.database import engine
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        db_status = "disconnected"
        overall = "unhealthy"
        logger.warning("Health check: database unreachable: %s", str(e))

    # ── Check Gemini API ──────────────────────────────────────────────────
    if not settings.ai_enabled:
        gemini_status = "disabled"
    else:
        try:
            from portable.services.gemini_service import gemini_service
            if gemini_service.circuit_breaker.state == "open":
                gemini_status = "circuit_open"
            elif not await gemini_service.health_check():
                gemini_status = "unavailable"
        except Exception as e:
            gemini_status = "unavailable"
            logger.warning("Health check: Gemini unreachable: %s", str(e))

        if gemini_status != "available" and overall != "unhealthy":
            overall = "degraded"

    if overall == "unhealthy":
        response.status_code = 503

    from portable.services.content_extractor import content_extractor

    return HealthResponse(
        status=overall,
        version=__version__,
        database=db_status,
        gemini=gemini_status,
        content_parser=content_extractor.backend,
        uptime_seconds=round(time.time() - _start_time, 2),
    )
