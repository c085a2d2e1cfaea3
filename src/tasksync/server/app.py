"""FastAPI application for the tasksync task server.

This module creates and configures the FastAPI application that backs
the ``Api`` store strain.

Usage:
    uvicorn tasksync.server.app:app_factory --factory --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

import logging
import os
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI

from tasksync import __version__
from tasksync.logging_setup import setup_logging
from tasksync.server.api.router import router as api_router
from tasksync.server.database import Database

logger = logging.getLogger(__name__)

UVICORN_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access")


def get_db_path() -> Path:
    return Path(os.environ.get("TASKSYNC_DB_PATH", "tasksync.db"))


def get_log_path() -> Path | None:
    value = os.environ.get("TASKSYNC_LOG_PATH")
    return Path(value) if value else None


def create_app(db: Database) -> FastAPI:
    """Create the FastAPI application around a database.

    Tests call this directly with an isolated database.

    Args:
        db: Database instance.

    Returns:
        Configured FastAPI application.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        logger.info("=" * 60)
        logger.info("tasksync server starting")
        logger.info("=" * 60)
        logger.info("  Database: %s", db.path)
        logger.info("=" * 60)

        yield

        logger.info("tasksync server shutting down")
        db.close()

    application = FastAPI(
        title="tasksync server",
        description="Task store exposing changed-since queries and optimistic upserts",
        version=__version__,
        lifespan=lifespan,
    )

    application.state.db = db
    application.include_router(api_router)

    return application


def app_factory() -> FastAPI:
    """Factory function for uvicorn --factory mode."""
    setup_logging(log_path=get_log_path(), extra_loggers=UVICORN_LOGGERS)
    return create_app(db=Database(get_db_path()))
