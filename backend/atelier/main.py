from __future__ import annotations
"""Atelier — FastAPI application entry point.

Mounts the variant pipeline routes, configures CORS, serves locally stored
images and sweeps stuck variants on startup.
"""

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from atelier.api.router import api_router
from atelier.api.ws import router as ws_router
from atelier.config import get_settings
from atelier.database import close_db, create_schema

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: recover stuck variants on startup, close DB on shutdown."""
    logger.info("Atelier starting up...")
    logger.info("USE_MOCK_API: %s", settings.USE_MOCK_API)
    logger.info("Blob backend: %s", settings.BLOB_BACKEND)

    os.makedirs(settings.MEDIA_VOLUME, exist_ok=True)
    await create_schema()

    # --- Startup recovery: fail variants left generating past their threshold ---
    await _recover_stuck_variants()

    yield

    await close_db()
    logger.info("Atelier shut down")


async def _recover_stuck_variants() -> None:
    from atelier.services.recovery import sweep_stuck

    try:
        reset = await sweep_stuck()
        if reset:
            logger.warning("Startup recovery: %d stuck variant(s) failed", reset)
        else:
            logger.info("Startup recovery: no stuck variants found")
    except Exception as e:
        logger.warning("Startup recovery failed (non-fatal): %s", e)


app = FastAPI(
    title="Atelier API",
    description="Variant generation and approval pipeline for characters, locations, props and scenes",
    version="0.1.0",
    lifespan=lifespan,
    redirect_slashes=False,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Mount API routes
app.include_router(api_router)
app.include_router(ws_router)

# Mount media static files (local blob backend)
os.makedirs(settings.MEDIA_VOLUME, exist_ok=True)
app.mount("/media", StaticFiles(directory=settings.MEDIA_VOLUME), name="media")


@app.get("/")
async def root():
    """Health check endpoint."""
    return {
        "service": "Atelier",
        "status": "running",
        "mock_mode": settings.USE_MOCK_API,
    }


@app.get("/health")
async def health():
    """Detailed health check."""
    return {
        "status": "healthy",
        "blob_backend": settings.BLOB_BACKEND,
        "mock_mode": settings.USE_MOCK_API,
    }
