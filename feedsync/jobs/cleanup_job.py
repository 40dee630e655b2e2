"""
Batch cleanup job: apply retention limits to every source.
"""

import asyncio
import logging

from ..database import Database
from ..services.cleanup_service import CleanupPolicy
from ..services.settings_service import SettingsResolver
from .executor import JobOutcome

logger = logging.getLogger(__name__)

# VACUUM only after a large enough delete
VACUUM_THRESHOLD = 100


class CleanupJob:
    """Body of the scheduled "cleanup" job."""

    name = "cleanup"

    def __init__(
        self,
        db: Database,
        cleanup: CleanupPolicy | None = None,
        resolver: SettingsResolver | None = None,
        vacuum_threshold: int = VACUUM_THRESHOLD,
    ):
        self.db = db
        self.cleanup = cleanup or CleanupPolicy(db)
        self.resolver = resolver or SettingsResolver(db)
        self.vacuum_threshold = vacuum_threshold

    async def __call__(self) -> JobOutcome:
        stats = {
            "sources": 0,
            "failed": 0,
            "deleted": 0,
            "by_age": 0,
            "by_count": 0,
            "preserved": 0,
            "vacuum_run": False,
            "errors": [],
        }
        errors = []

        for source in self.db.get_sources():
            stats["sources"] += 1
            try:
                limits = self.resolver.resolve_for_source(source.id).retention
                result = await asyncio.to_thread(self.cleanup.cleanup, source.id, limits)
            except Exception as e:
                logger.exception(f"Cleanup failed for source {source.id}")
                stats["failed"] += 1
                errors.append(f"source {source.id}: {e}")
                continue
            stats["deleted"] += result.deleted
            stats["by_age"] += result.by_age
            stats["by_count"] += result.by_count
            stats["preserved"] += result.preserved

        if stats["deleted"] > self.vacuum_threshold:
            logger.info("Running database vacuum...")
            await asyncio.to_thread(self.db.vacuum)
            stats["vacuum_run"] = True

        stats["errors"] = errors[:5]
        logger.info(
            f"Cleanup finished: {stats['deleted']} deleted, {stats['preserved']} preserved "
            f"across {stats['sources']} source(s)"
        )
        return JobOutcome(stats=stats)
