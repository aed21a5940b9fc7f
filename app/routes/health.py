"""
Travel Booking Backend — Health Check Route
=============================================

What:  Liveness/readiness probe for load balancers and container health checks.
How:   Runs SELECT 1 against the booking database.

Status levels:
    healthy:   database reachable (HTTP 200)
    unhealthy: database unreachable (HTTP 503; stop routing traffic)
"""

import logging
import time

from fastapi import APIRouter, Response
from sqlalchemy import text

from app import __version__
from app.database import STORAGE_ERRORS, engine
from app.schemas.common import HealthResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

_start_time = time.time()


async def database_reachable() -> bool:
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except (OSError, *STORAGE_ERRORS) as e:
        logger.warning("Health check: database unreachable: %s", e)
        return False
    return True


@router.get("/health", response_model=HealthResponse, summary="Service health check")
async def health_check(response: Response) -> HealthResponse:
    connected = await database_reachable()
    if not connected:
        response.status_code = 503

    return HealthResponse(
        status="healthy" if connected else "unhealthy",
        version=__version__,
        database="connected" if connected else "disconnected",
        uptime_seconds=round(time.time() - _start_time, 2),
    )
