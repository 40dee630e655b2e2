"""
Database module - SQLite storage for sources, items, subscriptions and job runs.

Uses repository pattern for better separation of concerns.
"""

from .connection import DatabaseConnection
from .models import (
    DBCategory,
    DBItem,
    DBJobRun,
    DBNotification,
    DBSource,
    DBSubscription,
    JobStatus,
    JobTrigger,
    SettingsOverrides,
)
from .item_repository import ItemRepository
from .job_run_repository import JobRunRepository
from .lock_repository import LockRepository
from .notification_repository import NotificationRepository
from .pin_repository import PinRepository
from .source_repository import SourceRepository
from .subscription_repository import SubscriptionRepository
from .database import Database

__all__ = [
    "Database",
    "DatabaseConnection",
    "DBCategory",
    "DBItem",
    "DBJobRun",
    "DBNotification",
    "DBSource",
    "DBSubscription",
    "JobStatus",
    "JobTrigger",
    "SettingsOverrides",
    "ItemRepository",
    "JobRunRepository",
    "LockRepository",
    "NotificationRepository",
    "PinRepository",
    "SourceRepository",
    "SubscriptionRepository",
]
