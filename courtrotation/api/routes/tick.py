"""Phase driver trigger and health check route handlers."""

import logging
import os
import secrets
from typing import Optional

from fastapi import APIRouter, Header, HTTPException

from courtrotation.models.schemas import HealthResponse, TickResponse
from courtrotation.services import session_tick_service

logger = logging.getLogger(__name__)
router = APIRouter()


def _check_tick_secret(provided: Optional[str]) -> None:
    """Reject the request unless it carries TICK_SECRET (when one is configured)."""
    expected = os.getenv("TICK_SECRET")
    if not expected:
        return
    if not provided or not secrets.compare_digest(provided, expected):
        raise HTTPException(status_code=401, detail="Invalid tick secret")


@router.post("/api/tick", response_model=TickResponse)
async def run_tick(
    secret: Optional[str] = None,
    x_tick_secret: Optional[str] = Header(default=None),
):
    """
    Run one phase-driver pass over every running session.

    For deployments that drive sessions from an external scheduler instead
    of the in-process worker.
    """
    _check_tick_secret(x_tick_secret or secret)
    try:
        return await session_tick_service.tick_all()
    except Exception as e:
        logger.error(f"Error running tick: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error running tick: {str(e)}")


@router.get("/api/health", response_model=HealthResponse)
async def health_check():
    """
    Health check endpoint.

    Returns:
        dict: Service status and whether the tick worker is running
    """
    worker = session_tick_service.get_session_tick_service()
    return {
        "status": "healthy",
        "tick_worker_running": worker.running,
        "message": "API is running",
    }
