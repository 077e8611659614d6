"""
LifeSync Backend: Health Check Route
======================================

What:  Health check endpoint for monitoring and load balancer probes.
How:   Checks the database (SELECT 1) and the LLM gateway (circuit state,
       then a no-retry GET /models) and aggregates a status.

Status levels:
    - healthy:   all dependencies operational (HTTP 200)
    - degraded:  LLM unreachable or circuit open (HTTP 200; reports are
                 unavailable but reads still work)
    - unhealthy: database unreachable (HTTP 503)
"""

import logging
import time

from fastapi import APIRouter, Request, Response, status
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from lifesync import __version__
from lifesync.database import engine
from lifesync.schemas.report import HealthResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

_start_time = time.time()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Service health check",
)
async def health_check(request: Request, response: Response) -> HealthResponse:
    db_status = "connected"
    llm_status = "available"
    overall = "healthy"

    # ── Check Database ────────────────────────────────────────────────────
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as e:
        db_status = "disconnected"
        overall = "unhealthy"
        logger.warning("Health check: database unreachable: %s", str(e))

    # ── Check LLM Gateway ─────────────────────────────────────────────────
    gateway = getattr(request.app.state, "gateway", None)
    if gateway is None:
        llm_status = "unavailable"
    elif gateway.circuit_snapshot().state == "open":
        llm_status = "circuit_open"
    elif not await gateway.health_check():
        llm_status = "unavailable"

    if llm_status != "available" and overall == "healthy":
        overall = "degraded"
    if overall == "unhealthy":
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return HealthResponse(
        status=overall,
        version=__version__,
        database=db_status,
        llm=llm_status,
        uptime_seconds=round(time.time() - _start_time, 2),
    )
