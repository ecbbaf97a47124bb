"""FastAPI application exposing the movement analysis pipeline.

Endpoints:
- /sessions/{key}: per-session calibration, frame analysis, reps and kinetic chain
- /analysis: stateless angle validation and kinetic chain diagnosis

This module wires the routers and provides a health check.
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from biomech.api.routers.analysis import router as analysis_router
from biomech.api.routers.session import router as session_router
from biomech.core.config import get_settings
from biomech.vision.session import SessionRegistry

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Configure file logging
    sink_id = None
    if settings.log_to_file:
        logs_dir = Path(__file__).resolve().parent.parent.parent / "data" / "logs"
        logs_dir.mkdir(parents=True, exist_ok=True)
        sink_id = logger.add(
            logs_dir / "biomech.log", rotation="5 MB", retention="7 days", enqueue=True, backtrace=False, diagnose=False
        )
    logger.info("{} started ({})", settings.app_name, settings.environment)
    yield
    # Shutdown: drop live sessions
    logger.info("Shutting down with {} open sessions", len(app.state.sessions))
    app.state.sessions = SessionRegistry()
    if sink_id is not None:
        logger.remove(sink_id)


app = FastAPI(title=settings.app_name, lifespan=lifespan)
app.state.sessions = SessionRegistry()

s = get_settings()
app.add_middleware(
    CORSMiddleware,
    allow_origins=s.exposed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"]
)


@app.get("/health")
async def health() -> dict:
    """Return API health status."""

    return {"status": "ok", "sessions": len(app.state.sessions)}


# Routers
app.include_router(session_router, prefix="", tags=["sessions"])
app.include_router(analysis_router, prefix="", tags=["analysis"])
