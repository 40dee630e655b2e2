"""
feedsync API Server

FastAPI application providing endpoints for:
- Source registration and on-demand refresh
- Subscriptions and cascading refresh/retention settings
- Scheduled job status, history and manual triggers
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from . import __version__
from .config import config, configure_logging, state
from .database import Database
from .embeddings import EmbeddingClient, EmbeddingQueue, EmbeddingWorker
from .feeds import FeedParser
from .jobs import build_scheduler
from .routes import jobs_router, misc_router, sources_router, users_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize and cleanup application resources."""
    configure_logging()

    # Startup - skip if already initialized (e.g., by tests)
    if state.db is None:
        state.db = Database(config.DB_PATH)
        state.feed_parser = FeedParser(timeout=config.FETCH_TIMEOUT_SECONDS)
        if config.EMBEDDING_SERVICE_URL:
            state.embedding_queue = EmbeddingQueue(max_size=config.EMBEDDING_QUEUE_SIZE)
            state.embedding_worker = EmbeddingWorker(
                state.db,
                state.embedding_queue,
                EmbeddingClient(config.EMBEDDING_SERVICE_URL, timeout=config.FETCH_TIMEOUT_SECONDS),
                idle_seconds=config.EMBEDDING_IDLE_SECONDS,
            )
        else:
            logger.info("EMBEDDING_SERVICE_URL not set; items stay pending for embedding")

    if state.scheduler is None:
        state.scheduler = build_scheduler(state.db, state.feed_parser, state.embedding_queue)

    if state.scheduler.initialize():
        logger.info("Scheduled jobs started")
    else:
        logger.info("Scheduled jobs disabled; manual triggers remain available")

    if state.embedding_worker is not None:
        state.embedding_worker.start()

    yield

    # Shutdown
    state.scheduler.shutdown()
    if state.embedding_worker is not None:
        await state.embedding_worker.stop()


app = FastAPI(
    title="feedsync API",
    version=__version__,
    lifespan=lifespan
)

# Include routers
app.include_router(misc_router)
app.include_router(jobs_router)
app.include_router(sources_router)
app.include_router(users_router)
