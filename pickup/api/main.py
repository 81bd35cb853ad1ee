"""
Pickup Ladder API Server

FastAPI server for group play sessions: session and match lifecycle,
team balancing, Elo ratings and real-time events over WebSockets.
"""

from contextlib import asynccontextmanager
import logging
import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import uvicorn

from pickup.api.routes import router
from pickup.database import db
from pickup.services.event_hub import EventHub
from pickup.services.session_reaper import SessionReaper

# Set up logging
# Allow log level to be configured via environment variable (default: INFO)
log_level = os.getenv("LOG_LEVEL", "INFO").upper()
numeric_level = getattr(logging, log_level, logging.INFO)
logging.basicConfig(
    level=numeric_level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan handler: event hub and reaper live exactly as long as the app."""
    logger.info("Starting up Pickup Ladder API...")

    try:
        await db.init_database()
        logger.info("Database initialized")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}", exc_info=True)

    hub = EventHub()
    app.state.event_hub = hub

    reaper = SessionReaper(hub)
    app.state.session_reaper = reaper
    try:
        reaper.start()
    except Exception as e:
        logger.error(f"Failed to start session reaper: {e}", exc_info=True)

    yield  # App is running

    logger.info("Shutting down Pickup Ladder API...")

    try:
        reaper.stop()
    except Exception as e:
        logger.error(f"Error stopping session reaper: {e}", exc_info=True)

    try:
        await hub.shutdown()
    except Exception as e:
        logger.error(f"Error shutting down event hub: {e}", exc_info=True)


app = FastAPI(
    title="Pickup Ladder API",
    description="Play sessions, balanced matches and Elo ratings for pickup groups",
    version="1.0.0",
    lifespan=lifespan,
)

# Add CORS middleware; origins configured via ALLOWED_ORIGINS env var
allowed_origins = os.getenv("ALLOWED_ORIGINS", "http://localhost:3000").split(",")
app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

app.include_router(router)


@app.get("/api/health")
async def health():
    """Liveness check."""
    return {"status": "ok"}


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
