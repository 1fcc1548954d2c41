"""
FastAPI application entry point.

This module initializes the FastAPI application, configures middleware,
and registers the sync router.
"""
import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api.routers import sync
from .core.config import settings
from .core.logging_config import configure_logging

# Ensure logging is configured before the application starts serving requests.
configure_logging(settings.log_level)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create the sync tables on startup unless SKIP_DB_INIT=1."""
    if os.getenv("SKIP_DB_INIT") == "1":
        logger.info("SKIP_DB_INIT=1 detected; skipping sync table bootstrap during startup")
        yield
        return

    from .db.session import get_engine
    from .db.tables import ensure_sync_tables

    try:
        ensure_sync_tables(get_engine())
    except Exception:
        logger.exception("Failed to initialize sync tables; the service cannot start without them")
        raise

    yield


app = FastAPI(
    title="Shujian Cloud Sync API",
    version="1.0.0",
    description="Bulk upload and range reads between the dashboard and the hosted tabular store",
    lifespan=lifespan,
)

# Allow origins from environment variable or defaults for development
allowed_origins = os.getenv("ALLOWED_ORIGINS", "http://localhost:5173,http://localhost:3000").split(",")
allowed_origins = [origin.strip() for origin in allowed_origins]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(sync.router)


@app.get("/")
async def root():
    """Root endpoint returning API information."""
    return {
        "message": "Shujian Cloud Sync API",
        "version": "1.0.0"
    }


@app.get("/health")
async def health_check():
    return {
        "status": "healthy",
        "timestamp": datetime.now().isoformat(),
        "service": "shujian-cloud-sync"
    }
