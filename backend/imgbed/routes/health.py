"""
ImgBed Backend — Health Check Route
=====================================

What:  Health check endpoint for monitoring and load balancer probes.
How:   Checks both hard dependencies (ledger database, storage root) with
       lightweight probes and reports an aggregate status.
Who:   Docker health checks, load balancers, and monitoring systems.

Status levels:
    healthy:    database reachable and storage root writable
    unhealthy:  either check failed
"""

import logging
import time

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from imgbed import __version__
from imgbed.database import get_db_session
from imgbed.dependencies import get_storage
from imgbed.schemas.image import HealthResponse
from imgbed.services.file_service import FileService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

# Uptime is measured from module import
_start_time = time.time()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Service health check",
    description="Reports ledger database connectivity and storage writability.",
)
async def health_check(
    db: AsyncSession = Depends(get_db_session),
    storage: FileService = Depends(get_storage),
) -> HealthResponse:
    db_status = "connected"
    storage_status = "writable"
    overall = "healthy"

    # ── Check Database ────────────────────────────────────────────────────
    try:
        await db.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as e:
        db_status = "disconnected"
        overall = "unhealthy"
        logger.warning("Health check: database unreachable: %s", e)

    # ── Check Storage ─────────────────────────────────────────────────────
    if not await storage.is_writable():
        storage_status = "unavailable"
        overall = "unhealthy"
        logger.warning("Health check: storage root not writable: %s", storage.storage_root)

    return HealthResponse(
        status=overall,
        version=__version__,
        database=db_status,
        storage=storage_status,
        uptime_seconds=round(time.time() - _start_time, 2),
    )
