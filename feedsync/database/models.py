"""
Database models - dataclasses for database entities.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


@dataclass
class SettingsOverrides:
    """Partially-populated override record for one cascade level."""
    refresh_interval_minutes: int | None = None
    max_items: int | None = None
    max_item_age_days: int | None = None

    def is_empty(self) -> bool:
        return (
            self.refresh_interval_minutes is None
            and self.max_items is None
            and self.max_item_age_days is None
        )


@dataclass
class DBSource:
    id: int
    url: str
    title: str | None
    last_fetched_at: datetime | None
    error_count: int = 0
    last_error: str | None = None
    settings: SettingsOverrides = field(default_factory=SettingsOverrides)
    created_at: datetime | None = None
    item_count: int = 0


@dataclass
class DBItem:
    id: int
    source_id: int
    external_id: str | None
    fingerprint: str
    title: str
    body: str | None
    published_at: datetime
    created_at: datetime
    updated_at: datetime | None = None
    author: str | None = None
    image_url: str | None = None
    embedding_id: str | None = None


@dataclass
class DBSubscription:
    id: int
    user_id: int
    source_id: int
    display_name: str | None
    overrides: SettingsOverrides
    created_at: datetime | None = None


@dataclass
class DBCategory:
    id: int
    user_id: int
    name: str
    overrides: SettingsOverrides
    created_at: datetime | None = None


class JobStatus(str, Enum):
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


class JobTrigger(str, Enum):
    SCHEDULER = "SCHEDULER"
    MANUAL = "MANUAL"


@dataclass
class DBJobRun:
    id: int
    job_name: str
    status: JobStatus
    triggered_by: JobTrigger
    started_at: datetime
    completed_at: datetime | None = None
    duration_ms: int | None = None
    stats: dict[str, Any] | None = None
    logs: list[dict[str, Any]] = field(default_factory=list)
    error_message: str | None = None


@dataclass
class DBNotification:
    id: int
    user_id: int
    type: str
    title: str
    message: str
    metadata: dict[str, Any] | None
    is_read: bool
    created_at: datetime
