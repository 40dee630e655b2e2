"""
Batch refresh job: refresh every source whose interval has elapsed.
"""

import logging
from datetime import datetime, timedelta

from ..database import Database
from ..database.converters import utcnow
from ..database.models import DBSource
from ..notification_service import NotificationService
from ..services.refresh_service import RefreshPipeline, RefreshStats
from ..services.settings_service import SettingsResolver
from .executor import JobOutcome

logger = logging.getLogger(__name__)


def is_due(source: DBSource, interval_minutes: int, now: datetime) -> bool:
    """Never-fetched sources are always due."""
    if source.last_fetched_at is None:
        return True
    return now - source.last_fetched_at >= timedelta(minutes=interval_minutes)


class RefreshJob:
    """Body of the scheduled "refresh" job."""

    name = "refresh"

    def __init__(
        self,
        db: Database,
        pipeline: RefreshPipeline,
        resolver: SettingsResolver | None = None,
        notifier: NotificationService | None = None,
        max_concurrent: int = 5,
        max_source_errors: int = 10,
    ):
        self.db = db
        self.pipeline = pipeline
        self.resolver = resolver or pipeline.resolver
        self.notifier = notifier
        self.max_concurrent = max_concurrent
        self.max_source_errors = max_source_errors

    def select_due_sources(self, now: datetime | None = None) -> list[int]:
        now = now or utcnow()
        due = []
        skipped_errors = 0
        for source in self.db.get_sources():
            if self.max_source_errors and source.error_count >= self.max_source_errors:
                skipped_errors += 1
                continue
            try:
                interval = self.resolver.resolve_for_source(source.id).refresh_interval_minutes
            except Exception:
                logger.exception(f"Could not resolve settings for source {source.id}")
                continue
            if is_due(source, interval, now):
                due.append(source.id)
        if skipped_errors:
            logger.info(f"Skipping {skipped_errors} source(s) with {self.max_source_errors}+ consecutive errors")
        return due

    async def __call__(self) -> JobOutcome:
        source_ids = self.select_due_sources()
        if not source_ids:
            logger.info("No sources need refreshing at this time")
            return JobOutcome(stats=RefreshStats().to_dict())

        logger.info(
            f"Refreshing {len(source_ids)} source(s)",
            extra={"data": {"source_count": len(source_ids), "max_concurrent": self.max_concurrent}},
        )
        results = await self.pipeline.refresh_sources(source_ids, max_concurrent=self.max_concurrent)
        stats = RefreshStats.from_results(results)

        if self.notifier is not None:
            for result in results:
                try:
                    self.notifier.notify_refresh(result)
                except Exception:
                    logger.exception(f"Could not create notifications for source {result.source_id}")

        for result in results:
            if not result.success:
                logger.warning(
                    f"Source {result.source_id} failed: {result.error}",
                    extra={"data": {"source_id": result.source_id, "error_kind": result.error_kind}},
                )

        logger.info(
            f"Refresh finished: {stats.succeeded} succeeded, {stats.failed} failed, "
            f"{stats.new_items} new, {stats.updated_items} updated"
        )
        return JobOutcome(stats=stats.to_dict())
