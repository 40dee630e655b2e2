"""
Configuration and application state management.
"""

import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING

from dotenv import load_dotenv
from fastapi import HTTPException

if TYPE_CHECKING:
    from .database import Database
    from .embeddings import EmbeddingQueue, EmbeddingWorker
    from .feeds import FeedParser
    from .jobs.scheduler import Scheduler

# Load environment variables
load_dotenv()


def _parse_bool(value: str | None, default: bool = False) -> bool:
    """Parse boolean from environment variable."""
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _parse_optional_int(value: str | None, default: int | None) -> int | None:
    """Parse an optional positive int. Empty or 0 means "not configured"."""
    if value is None:
        return default
    value = value.strip()
    if not value:
        return None
    parsed = int(value)
    return parsed if parsed > 0 else None


class Config:
    """Application configuration from environment."""
    DB_PATH: Path = Path(os.getenv("DB_PATH", "./data/feedsync.db"))
    PORT: int = int(os.getenv("PORT", "5005"))
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # Scheduled jobs
    ENABLE_SCHEDULED_JOBS: bool = _parse_bool(os.getenv("ENABLE_SCHEDULED_JOBS"), default=True)
    REFRESH_SCHEDULE: str = os.getenv("REFRESH_SCHEDULE", "*/30 * * * *")
    CLEANUP_SCHEDULE: str = os.getenv("CLEANUP_SCHEDULE", "0 3 * * *")
    STUCK_RUN_TIMEOUT_MINUTES: int = int(os.getenv("STUCK_RUN_TIMEOUT_MINUTES", "10"))
    STUCK_RUN_CHECK_MINUTES: int = int(os.getenv("STUCK_RUN_CHECK_MINUTES", "5"))

    # Refresh pipeline
    REFRESH_CONCURRENCY: int = int(os.getenv("REFRESH_CONCURRENCY", "5"))
    FETCH_TIMEOUT_SECONDS: int = int(os.getenv("FETCH_TIMEOUT_SECONDS", "30"))
    MAX_SOURCE_ERRORS: int = int(os.getenv("MAX_SOURCE_ERRORS", "10"))  # 0 disables the cutoff
    EMBEDDING_AUTO_ENQUEUE: bool = _parse_bool(os.getenv("EMBEDDING_AUTO_ENQUEUE"), default=True)
    EMBEDDING_QUEUE_SIZE: int = int(os.getenv("EMBEDDING_QUEUE_SIZE", "1000"))
    # Embedding service; empty leaves items pending (embedding_id NULL)
    EMBEDDING_SERVICE_URL: str = os.getenv("EMBEDDING_SERVICE_URL", "")
    EMBEDDING_IDLE_SECONDS: int = int(os.getenv("EMBEDDING_IDLE_SECONDS", "60"))

    # System-wide defaults (lowest level of the settings cascade)
    DEFAULT_REFRESH_INTERVAL_MINUTES: int = int(os.getenv("DEFAULT_REFRESH_INTERVAL_MINUTES", "60"))
    DEFAULT_MAX_ITEMS: int | None = _parse_optional_int(os.getenv("DEFAULT_MAX_ITEMS"), 500)
    DEFAULT_MAX_ITEM_AGE_DAYS: int | None = _parse_optional_int(os.getenv("DEFAULT_MAX_ITEM_AGE_DAYS"), 90)


config = Config()


def configure_logging(level: str | None = None):
    """Set the package logger level so job log capture sees INFO records."""
    logging.getLogger("feedsync").setLevel((level or config.LOG_LEVEL).upper())


class AppState:
    """Shared application state."""
    db: "Database | None" = None
    feed_parser: "FeedParser | None" = None
    embedding_queue: "EmbeddingQueue | None" = None
    embedding_worker: "EmbeddingWorker | None" = None
    scheduler: "Scheduler | None" = None


state = AppState()


def get_db() -> "Database":
    """Dependency to get database instance."""
    if not state.db:
        raise HTTPException(status_code=500, detail="Database not initialized")
    return state.db


def get_scheduler() -> "Scheduler":
    """Dependency to get the job scheduler."""
    if not state.scheduler:
        raise HTTPException(status_code=500, detail="Scheduler not initialized")
    return state.scheduler
