"""
Notification service - tells subscribers when a refresh brought in new items.
"""

import logging

from .database import Database
from .services.refresh_service import RefreshResult

logger = logging.getLogger(__name__)

# Notifications kept per user; older ones are pruned
MAX_NOTIFICATIONS_PER_USER = 100


class NotificationService:
    """Creates feed-refresh notifications for every subscriber of a source."""

    def __init__(self, db: Database, keep: int = MAX_NOTIFICATIONS_PER_USER):
        self._db = db
        self.keep = keep

    def notify_refresh(self, result: RefreshResult) -> int:
        """
        Notify subscribers of a successful refresh that had new or updated items.

        Returns the number of notifications created.
        """
        if not result.success or not (result.new_item_count or result.updated_item_count):
            return 0

        source = self._db.get_source(result.source_id)
        if source is None:
            return 0

        subscriptions = self._db.subscriptions.get_for_source(result.source_id)
        created = 0
        for subscription in subscriptions:
            name = subscription.display_name or source.title or source.url
            self._db.notifications.add(
                user_id=subscription.user_id,
                type="feed_refresh",
                title=f"{name} updated",
                message=self._message(result),
                metadata={
                    "source_id": result.source_id,
                    "new_items": result.new_item_count,
                    "updated_items": result.updated_item_count,
                },
            )
            self._db.notifications.prune(subscription.user_id, self.keep)
            created += 1

        if created:
            logger.debug(f"Created {created} refresh notifications for source {result.source_id}")
        return created

    @staticmethod
    def _message(result: RefreshResult) -> str:
        parts = []
        if result.new_item_count:
            noun = "item" if result.new_item_count == 1 else "items"
            parts.append(f"{result.new_item_count} new {noun}")
        if result.updated_item_count:
            noun = "item" if result.updated_item_count == 1 else "items"
            parts.append(f"{result.updated_item_count} updated {noun}")
        return ", ".join(parts)
