"""Liveness and readiness probes."""

from fastapi import APIRouter, HTTPException, status

from revision_scheduler.database import db_manager
from revision_scheduler.managers.logging_manager import get_logger

logger = get_logger(prefix="[Health]")

router = APIRouter(tags=["Health"])


@router.get("/health")
async def liveness():
    return {"status": "alive"}


@router.get("/health/ready")
async def readiness():
    """Ready only when MongoDB answers a ping."""
    if not await db_manager.health_check():
        logger.warning("Readiness probe failed: database unavailable")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Database unavailable")
    return {"status": "ready", "database": "connected"}
