"""
Miscellaneous routes: health check.
"""

from fastapi import APIRouter

from .. import __version__
from ..config import state

router = APIRouter(tags=["misc"])


@router.get("/status")
async def health_check() -> dict:
    """API health check."""
    return {
        "status": "ok",
        "version": __version__,
        "database": state.db is not None,
        "scheduler_initialized": state.scheduler is not None and state.scheduler.initialized,
        "embedding_queue_pending": state.embedding_queue.pending if state.embedding_queue else 0,
    }
