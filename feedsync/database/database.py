"""
Database facade - provides unified access to all repositories.

Services reach the repositories through the attributes below; the delegating
methods cover the calls routes make directly.
"""

from pathlib import Path

from .connection import DatabaseConnection
from .item_repository import ItemRepository
from .job_run_repository import JobRunRepository
from .lock_repository import LockRepository
from .models import DBItem, DBJobRun, DBSource, DBSubscription, SettingsOverrides
from .notification_repository import NotificationRepository
from .pin_repository import PinRepository
from .source_repository import SourceRepository
from .subscription_repository import SubscriptionRepository


class Database:
    """Unified database access facade."""

    def __init__(self, db_path: Path):
        self._connection = DatabaseConnection(db_path)

        # Initialize repositories
        self.sources = SourceRepository(self._connection)
        self.items = ItemRepository(self._connection)
        self.subscriptions = SubscriptionRepository(self._connection)
        self.pins = PinRepository(self._connection)
        self.job_runs = JobRunRepository(self._connection)
        self.locks = LockRepository(self._connection)
        self.notifications = NotificationRepository(self._connection)

    @property
    def path(self) -> Path:
        return self._connection.db_path

    def vacuum(self):
        return self._connection.vacuum()

    # ─────────────────────────────────────────────────────────────
    # Source operations (delegated to SourceRepository)
    # ─────────────────────────────────────────────────────────────

    def add_source(self, url: str, title: str | None = None) -> int:
        return self.sources.get_or_create(url, title)

    def get_source(self, source_id: int) -> DBSource | None:
        return self.sources.get(source_id)

    def get_sources(self) -> list[DBSource]:
        return self.sources.get_all()

    def update_source_settings(self, source_id: int, overrides: SettingsOverrides):
        return self.sources.update_settings(source_id, overrides)

    # ─────────────────────────────────────────────────────────────
    # Item operations (delegated to ItemRepository / PinRepository)
    # ─────────────────────────────────────────────────────────────

    def get_item(self, item_id: int) -> DBItem | None:
        return self.items.get(item_id)

    def get_items(self, source_id: int, limit: int | None = None) -> list[DBItem]:
        return self.items.get_for_source(source_id, limit)

    def pin_item(self, user_id: int, item_id: int):
        return self.pins.pin(user_id, item_id)

    def unpin_item(self, user_id: int, item_id: int):
        return self.pins.unpin(user_id, item_id)

    # ─────────────────────────────────────────────────────────────
    # Subscription operations (delegated to SubscriptionRepository)
    # ─────────────────────────────────────────────────────────────

    def get_subscription(self, user_id: int, source_id: int) -> DBSubscription | None:
        return self.subscriptions.get(user_id, source_id)

    def get_user_preferences(self, user_id: int) -> SettingsOverrides:
        return self.subscriptions.get_preferences(user_id)

    def set_user_preferences(self, user_id: int, overrides: SettingsOverrides):
        return self.subscriptions.set_preferences(user_id, overrides)

    # ─────────────────────────────────────────────────────────────
    # Job run operations (delegated to JobRunRepository)
    # ─────────────────────────────────────────────────────────────

    def get_job_run(self, run_id: int) -> DBJobRun | None:
        return self.job_runs.get(run_id)

    def get_job_history(
        self,
        job_name: str | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> list[DBJobRun]:
        return self.job_runs.get_history(job_name=job_name, limit=limit, offset=offset)
