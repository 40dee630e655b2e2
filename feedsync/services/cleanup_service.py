"""
Cleanup service: bounded retention per source.

An item is a cleanup candidate when it is older than the age limit or falls
outside the newest `max_items` by publish date. Items pinned by any user are
never deleted.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from ..database import Database
from ..database.converters import utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetentionLimits:
    max_items: int | None = None
    max_item_age_days: int | None = None

    @property
    def is_unbounded(self) -> bool:
        return self.max_items is None and self.max_item_age_days is None


@dataclass
class CleanupResult:
    source_id: int
    deleted: int = 0
    by_age: int = 0
    by_count: int = 0
    preserved: int = 0
    dry_run: bool = False


def select_cleanup_candidates(
    rows: list[tuple[int, datetime, bool]],
    limits: RetentionLimits,
    now: datetime,
) -> tuple[list[int], int, int, int]:
    """
    Pick the items to delete from (id, published_at, pinned) rows ordered
    newest first.

    Returns (ids, by_age, by_count, preserved). An item matching both
    criteria is counted under by_age only.
    """
    cutoff = None
    if limits.max_item_age_days is not None:
        cutoff = now - timedelta(days=limits.max_item_age_days)

    ids = []
    by_age = by_count = preserved = 0
    for position, (item_id, published_at, pinned) in enumerate(rows):
        too_old = cutoff is not None and published_at < cutoff
        over_count = limits.max_items is not None and position >= limits.max_items
        if not (too_old or over_count):
            continue
        if pinned:
            preserved += 1
            continue
        ids.append(item_id)
        if too_old:
            by_age += 1
        else:
            by_count += 1
    return ids, by_age, by_count, preserved


class CleanupPolicy:
    """Applies retention limits to a source's items."""

    def __init__(self, db: Database):
        self.db = db

    def cleanup(
        self,
        source_id: int,
        limits: RetentionLimits,
        dry_run: bool = False,
        now: datetime | None = None,
    ) -> CleanupResult:
        """
        Delete the source's items that exceed its retention limits.

        The candidate set is computed first and deleted in one pass. With
        dry_run the counts are reported and nothing is deleted.
        """
        result = CleanupResult(source_id=source_id, dry_run=dry_run)
        if limits.is_unbounded:
            return result

        rows = self.db.items.get_retention_rows(source_id)
        ids, result.by_age, result.by_count, result.preserved = select_cleanup_candidates(
            rows, limits, now or utcnow()
        )

        if dry_run:
            result.deleted = len(ids)
            return result

        result.deleted = self.db.items.delete_many(ids)
        if result.deleted or result.preserved:
            logger.info(
                f"Cleaned up {result.deleted} items from source {source_id}",
                extra={"data": {
                    "source_id": source_id,
                    "by_age": result.by_age,
                    "by_count": result.by_count,
                    "preserved": result.preserved,
                }},
            )
        return result
