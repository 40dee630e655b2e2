"""
Refresh service: the per-source ingestion pipeline.

fetch -> parse -> deduplicate by fingerprint -> idempotent upsert ->
embedding enqueue -> mark fetched -> retention cleanup

A failed refresh is reported on the result and recorded on the source; it is
never raised, so one bad source cannot break a batch.
"""

import asyncio
import logging
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from ..database import Database
from ..database.converters import utcnow
from ..database.models import DBItem
from ..embeddings import embedding_text
from ..exceptions import FeedFetchError
from ..feeds import ParsedItem, content_fingerprint
from .cleanup_service import CleanupPolicy, RetentionLimits
from .settings_service import SettingsResolver

if TYPE_CHECKING:
    from ..embeddings import EmbeddingQueue
    from ..feeds import FeedParser

logger = logging.getLogger(__name__)

# Publish dates closer than this are considered unchanged
PUBLISHED_TOLERANCE_SECONDS = 60


@dataclass
class RefreshResult:
    source_id: int
    success: bool
    new_item_count: int = 0
    updated_item_count: int = 0
    deleted_item_count: int = 0
    embeddings_enqueued: int = 0
    error: str | None = None
    error_kind: str | None = None
    cleanup_error: str | None = None
    duration_ms: int = 0


@dataclass
class RefreshStats:
    """Aggregate of a batch of refresh results."""
    total_sources: int = 0
    succeeded: int = 0
    failed: int = 0
    new_items: int = 0
    updated_items: int = 0
    items_cleaned_up: int = 0
    embeddings_enqueued: int = 0
    errors: list[str] = field(default_factory=list)

    @classmethod
    def from_results(cls, results: list[RefreshResult]) -> "RefreshStats":
        """Sum counts and union errors. Input order does not matter."""
        errors = {
            f"source {r.source_id}: {r.error}"
            for r in results
            if not r.success and r.error
        }
        return cls(
            total_sources=len(results),
            succeeded=sum(1 for r in results if r.success),
            failed=sum(1 for r in results if not r.success),
            new_items=sum(r.new_item_count for r in results),
            updated_items=sum(r.updated_item_count for r in results),
            items_cleaned_up=sum(r.deleted_item_count for r in results),
            embeddings_enqueued=sum(r.embeddings_enqueued for r in results),
            errors=sorted(errors),
        )

    def to_dict(self, max_errors: int = 5) -> dict:
        data = asdict(self)
        data["errors"] = self.errors[:max_errors]
        return data


class SourceLockRegistry:
    """One asyncio.Lock per source so refreshes of a source never overlap."""

    def __init__(self):
        self._locks: dict[int, asyncio.Lock] = {}

    def get(self, source_id: int) -> asyncio.Lock:
        lock = self._locks.get(source_id)
        if lock is None:
            lock = self._locks[source_id] = asyncio.Lock()
        return lock

    def is_locked(self, source_id: int) -> bool:
        lock = self._locks.get(source_id)
        return lock is not None and lock.locked()


# Shared by manual and scheduled refreshes in this process
source_locks = SourceLockRegistry()


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class RefreshPipeline:
    """Refreshes sources: fetches, stores new/changed items, trims old ones."""

    def __init__(
        self,
        db: Database,
        feed_parser: "FeedParser",
        resolver: SettingsResolver | None = None,
        cleanup: CleanupPolicy | None = None,
        embedding_queue: "EmbeddingQueue | None" = None,
        auto_enqueue: bool = True,
        locks: SourceLockRegistry | None = None,
    ):
        self.db = db
        self.feed_parser = feed_parser
        self.resolver = resolver or SettingsResolver(db)
        self.cleanup = cleanup or CleanupPolicy(db)
        self.embedding_queue = embedding_queue
        self.auto_enqueue = auto_enqueue
        self.locks = locks or source_locks

    # ─────────────────────────────────────────────────────────────
    # Single source
    # ─────────────────────────────────────────────────────────────

    async def refresh_source(self, source_id: int) -> RefreshResult:
        """Refresh one source. Waits if the same source is already refreshing."""
        async with self.locks.get(source_id):
            started = time.monotonic()
            result = await self._refresh(source_id)
            result.duration_ms = int((time.monotonic() - started) * 1000)
            return result

    async def _refresh(self, source_id: int) -> RefreshResult:
        source = self.db.sources.get(source_id)
        if source is None:
            return RefreshResult(
                source_id=source_id, success=False,
                error="Source not found", error_kind="internal",
            )

        try:
            feed = await self.feed_parser.fetch(source.url)
        except FeedFetchError as e:
            return self._fail(source_id, str(e), e.kind)
        except Exception as e:
            logger.exception(f"Unexpected error fetching source {source_id}")
            return self._fail(source_id, f"{type(e).__name__}: {e}", "internal")

        try:
            if feed.title and not source.title:
                self.db.sources.update_title(source_id, feed.title)
            retention = self.resolver.resolve_for_source(source_id).retention
            new_count, updated_count, changed = self._store_items(source_id, feed.items, retention)
        except Exception as e:
            logger.exception(f"Failed to store items for source {source_id}")
            return self._fail(source_id, f"{type(e).__name__}: {e}", "internal")

        result = RefreshResult(
            source_id=source_id,
            success=True,
            new_item_count=new_count,
            updated_item_count=updated_count,
        )
        result.embeddings_enqueued = self._enqueue_embeddings(changed)

        self.db.sources.mark_fetched(source_id)

        try:
            result.deleted_item_count = self.cleanup.cleanup(source_id, retention).deleted
        except Exception as e:
            logger.exception(f"Cleanup failed for source {source_id}")
            result.cleanup_error = str(e)

        if new_count or updated_count:
            logger.info(
                f"Refreshed source {source_id}: {new_count} new, {updated_count} updated",
                extra={"data": {
                    "source_id": source_id,
                    "new": new_count,
                    "updated": updated_count,
                    "deleted": result.deleted_item_count,
                }},
            )
        return result

    def _fail(self, source_id: int, error: str, kind: str) -> RefreshResult:
        logger.warning(
            f"Refresh failed for source {source_id}: {error}",
            extra={"data": {"source_id": source_id, "error_kind": kind}},
        )
        try:
            self.db.sources.record_error(source_id, error)
        except Exception:
            logger.exception(f"Could not record error for source {source_id}")
        return RefreshResult(source_id=source_id, success=False, error=error, error_kind=kind)

    # ─────────────────────────────────────────────────────────────
    # Upsert
    # ─────────────────────────────────────────────────────────────

    def _store_items(
        self,
        source_id: int,
        items: list[ParsedItem],
        retention: RetentionLimits,
    ) -> tuple[int, int, list[DBItem]]:
        """
        Insert new items and update changed ones. Returns (new, updated, changed items).

        Items retention already removed, and new items already past the age
        limit, are skipped so trimmed content is not ingested again.
        """
        new_count = updated_count = 0
        changed: list[DBItem] = []
        seen: set[str] = set()
        removed = self.db.items.get_removed_fingerprints(source_id)
        cutoff = None
        if retention.max_item_age_days is not None:
            cutoff = utcnow() - timedelta(days=retention.max_item_age_days)

        for parsed in items:
            fingerprint = content_fingerprint(parsed.body, parsed.external_id, parsed.title)
            if fingerprint in seen:
                continue
            seen.add(fingerprint)
            if fingerprint in removed:
                continue

            existing = self.db.items.get_by_fingerprint(source_id, fingerprint)
            if existing is None:
                if cutoff is not None and parsed.published_at is not None:
                    if _as_utc(parsed.published_at) < cutoff:
                        continue
                item_id = self.db.items.add(
                    source_id=source_id,
                    fingerprint=fingerprint,
                    title=parsed.title,
                    published_at=parsed.published_at or utcnow(),
                    body=parsed.body,
                    external_id=parsed.external_id,
                    author=parsed.author,
                    image_url=parsed.image_url,
                )
                if item_id is not None:
                    new_count += 1
                    changed.append(self.db.items.get(item_id))
                    continue
                # Lost an insert race; the winner's row is now the existing one
                existing = self.db.items.get_by_fingerprint(source_id, fingerprint)
                if existing is None:
                    continue

            if self._has_changed(existing, parsed):
                self.db.items.update_metadata(
                    existing.id,
                    title=parsed.title,
                    external_id=parsed.external_id,
                    author=parsed.author,
                    image_url=parsed.image_url,
                    published_at=parsed.published_at,
                )
                updated_count += 1
                changed.append(self.db.items.get(existing.id))

        # Tombstones for items the feed no longer carries can never match again
        self.db.items.forget_removed(source_id, removed - seen)
        return new_count, updated_count, [item for item in changed if item is not None]

    @staticmethod
    def _has_changed(existing: DBItem, parsed: ParsedItem) -> bool:
        if parsed.title != existing.title:
            return True
        if parsed.external_id != existing.external_id:
            return True
        if parsed.author != existing.author or parsed.image_url != existing.image_url:
            return True
        # Unknown incoming dates never count as a change
        if parsed.published_at is not None:
            delta = abs((_as_utc(parsed.published_at) - existing.published_at).total_seconds())
            if delta > PUBLISHED_TOLERANCE_SECONDS:
                return True
        return False

    def _enqueue_embeddings(self, items: list[DBItem]) -> int:
        if not self.auto_enqueue or self.embedding_queue is None:
            return 0
        enqueued = 0
        for item in items:
            try:
                self.embedding_queue.enqueue(item.id, embedding_text(item.title, item.body))
                enqueued += 1
            except Exception as e:
                logger.warning(f"Could not enqueue embedding for item {item.id}: {e!r}")
        return enqueued

    # ─────────────────────────────────────────────────────────────
    # Batches
    # ─────────────────────────────────────────────────────────────

    async def refresh_sources(self, source_ids: list[int], max_concurrent: int = 5) -> list[RefreshResult]:
        """Refresh several sources with at most max_concurrent in flight."""
        semaphore = asyncio.Semaphore(max(1, max_concurrent))

        async def bounded(source_id: int) -> RefreshResult:
            async with semaphore:
                try:
                    return await self.refresh_source(source_id)
                except Exception as e:
                    logger.exception(f"Refresh of source {source_id} raised")
                    return RefreshResult(
                        source_id=source_id, success=False,
                        error=f"{type(e).__name__}: {e}", error_kind="internal",
                    )

        return list(await asyncio.gather(*(bounded(source_id) for source_id in source_ids)))
