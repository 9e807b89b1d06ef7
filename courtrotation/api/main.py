"""
Court Rotation API Server

FastAPI server for running club sessions: player pools, court rounds and
the background phase driver that rotates players on and off court.
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging
import os
import uvicorn

from courtrotation.api.routes import router
from courtrotation.database import db
from courtrotation.services.session_tick_service import get_session_tick_service

# Set up logging
# Allow log level to be configured via environment variable (default: INFO)
log_level = os.getenv("LOG_LEVEL", "INFO").upper()
numeric_level = getattr(logging, log_level, logging.INFO)
logging.basicConfig(
    level=numeric_level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def _tick_worker_enabled() -> bool:
    return os.getenv("ENABLE_TICK_WORKER", "true").lower() not in ("0", "false", "no")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan handler for startup and shutdown events."""
    # Startup
    logger.info("Starting up Court Rotation API...")

    # Initialize database (create tables if they don't exist)
    try:
        await db.init_database()
        logger.info("Database initialized")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}", exc_info=True)

    # Start the session tick worker (drives play/rest phases)
    if _tick_worker_enabled():
        try:
            get_session_tick_service().start()
        except Exception as e:
            logger.error(f"Failed to start session tick worker: {e}", exc_info=True)
    else:
        logger.info("Session tick worker disabled; POST /api/tick must be called externally")

    yield  # App is running

    # Shutdown
    logger.info("Shutting down Court Rotation API...")

    try:
        get_session_tick_service().stop()
    except Exception as e:
        logger.error(f"Error stopping session tick worker: {e}", exc_info=True)


app = FastAPI(
    title="Court Rotation API",
    description="API for running club sessions and rotating players across courts",
    version="1.0.0",
    lifespan=lifespan,
)

# Add CORS middleware - origins configured via ALLOWED_ORIGINS env var
allowed_origins = os.getenv("ALLOWED_ORIGINS", "http://localhost:3000").split(",")
app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

# Include API routes
app.include_router(router)


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
