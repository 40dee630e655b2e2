"""
Pydantic models for API request/response validation.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel

from .database import (
    DBCategory,
    DBItem,
    DBJobRun,
    DBNotification,
    DBSource,
    DBSubscription,
    SettingsOverrides,
)
from .services import EffectiveSettings, RefreshResult


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


# ─────────────────────────────────────────────────────────────
# Settings Schemas
# ─────────────────────────────────────────────────────────────

class SettingsOverridesModel(BaseModel):
    """Override values for one cascade level. null clears a value."""
    refresh_interval_minutes: int | None = None
    max_items: int | None = None
    max_item_age_days: int | None = None

    def to_overrides(self) -> SettingsOverrides:
        return SettingsOverrides(
            refresh_interval_minutes=self.refresh_interval_minutes,
            max_items=self.max_items,
            max_item_age_days=self.max_item_age_days,
        )

    @classmethod
    def from_overrides(cls, overrides: SettingsOverrides) -> "SettingsOverridesModel":
        return cls(
            refresh_interval_minutes=overrides.refresh_interval_minutes,
            max_items=overrides.max_items,
            max_item_age_days=overrides.max_item_age_days,
        )


class EffectiveSettingsResponse(BaseModel):
    """Resolved settings with the level each value came from."""
    source_id: int
    user_id: int | None = None
    refresh_interval_minutes: int
    max_items: int | None
    max_item_age_days: int | None
    origin: dict[str, str]

    @classmethod
    def from_settings(
        cls,
        source_id: int,
        settings: EffectiveSettings,
        user_id: int | None = None,
    ) -> "EffectiveSettingsResponse":
        return cls(
            source_id=source_id,
            user_id=user_id,
            refresh_interval_minutes=settings.refresh_interval_minutes,
            max_items=settings.max_items,
            max_item_age_days=settings.max_item_age_days,
            origin=settings.origin,
        )


# ─────────────────────────────────────────────────────────────
# Source Schemas
# ─────────────────────────────────────────────────────────────

class SourceResponse(BaseModel):
    id: int
    url: str
    title: str | None
    last_fetched_at: str | None
    error_count: int
    last_error: str | None
    item_count: int
    settings: SettingsOverridesModel

    @classmethod
    def from_db(cls, source: DBSource) -> "SourceResponse":
        return cls(
            id=source.id,
            url=source.url,
            title=source.title,
            last_fetched_at=_iso(source.last_fetched_at),
            error_count=source.error_count,
            last_error=source.last_error,
            item_count=source.item_count,
            settings=SettingsOverridesModel.from_overrides(source.settings),
        )


class AddSourceRequest(BaseModel):
    url: str
    title: str | None = None


class ItemResponse(BaseModel):
    id: int
    source_id: int
    external_id: str | None
    title: str
    author: str | None
    image_url: str | None
    published_at: str
    updated_at: str | None

    @classmethod
    def from_db(cls, item: DBItem) -> "ItemResponse":
        return cls(
            id=item.id,
            source_id=item.source_id,
            external_id=item.external_id,
            title=item.title,
            author=item.author,
            image_url=item.image_url,
            published_at=item.published_at.isoformat(),
            updated_at=_iso(item.updated_at),
        )


class RefreshResultResponse(BaseModel):
    source_id: int
    success: bool
    new_item_count: int
    updated_item_count: int
    deleted_item_count: int
    embeddings_enqueued: int
    error: str | None = None
    error_kind: str | None = None
    cleanup_error: str | None = None
    duration_ms: int

    @classmethod
    def from_result(cls, result: RefreshResult) -> "RefreshResultResponse":
        return cls(
            source_id=result.source_id,
            success=result.success,
            new_item_count=result.new_item_count,
            updated_item_count=result.updated_item_count,
            deleted_item_count=result.deleted_item_count,
            embeddings_enqueued=result.embeddings_enqueued,
            error=result.error,
            error_kind=result.error_kind,
            cleanup_error=result.cleanup_error,
            duration_ms=result.duration_ms,
        )


# ─────────────────────────────────────────────────────────────
# Subscription Schemas
# ─────────────────────────────────────────────────────────────

class SubscribeRequest(BaseModel):
    """Subscribe by existing source ID or by URL."""
    source_id: int | None = None
    url: str | None = None
    display_name: str | None = None


class SubscriptionResponse(BaseModel):
    id: int
    user_id: int
    source_id: int
    display_name: str | None
    settings: SettingsOverridesModel

    @classmethod
    def from_db(cls, subscription: DBSubscription) -> "SubscriptionResponse":
        return cls(
            id=subscription.id,
            user_id=subscription.user_id,
            source_id=subscription.source_id,
            display_name=subscription.display_name,
            settings=SettingsOverridesModel.from_overrides(subscription.overrides),
        )


class CreateCategoryRequest(BaseModel):
    name: str
    settings: SettingsOverridesModel | None = None
    source_ids: list[int] = []


class CategoryResponse(BaseModel):
    id: int
    user_id: int
    name: str
    settings: SettingsOverridesModel

    @classmethod
    def from_db(cls, category: DBCategory) -> "CategoryResponse":
        return cls(
            id=category.id,
            user_id=category.user_id,
            name=category.name,
            settings=SettingsOverridesModel.from_overrides(category.overrides),
        )


class PinRequest(BaseModel):
    pinned: bool = True


class NotificationResponse(BaseModel):
    id: int
    type: str
    title: str
    message: str
    metadata: dict[str, Any] | None
    is_read: bool
    created_at: str

    @classmethod
    def from_db(cls, notification: DBNotification) -> "NotificationResponse":
        return cls(
            id=notification.id,
            type=notification.type,
            title=notification.title,
            message=notification.message,
            metadata=notification.metadata,
            is_read=notification.is_read,
            created_at=notification.created_at.isoformat(),
        )


# ─────────────────────────────────────────────────────────────
# Job Schemas
# ─────────────────────────────────────────────────────────────

class TriggerJobRequest(BaseModel):
    job_name: str


class JobRunResponse(BaseModel):
    id: int
    job_name: str
    status: str
    triggered_by: str
    started_at: str
    completed_at: str | None
    duration_ms: int | None
    stats: dict[str, Any] | None
    error_message: str | None
    logs: list[dict[str, Any]] | None = None

    @classmethod
    def from_db(cls, run: DBJobRun, include_logs: bool = True) -> "JobRunResponse":
        return cls(
            id=run.id,
            job_name=run.job_name,
            status=run.status.value,
            triggered_by=run.triggered_by.value,
            started_at=run.started_at.isoformat(),
            completed_at=_iso(run.completed_at),
            duration_ms=run.duration_ms,
            stats=run.stats,
            error_message=run.error_message,
            logs=run.logs if include_logs else None,
        )


class JobStatusEntry(BaseModel):
    name: str
    schedule: str
    schedule_description: str
    last_run_at: str | None
    next_run_at: str | None
    running: bool
    last_status: str | None
    last_error: str | None
    last_duration_ms: int | None

    @classmethod
    def from_status(cls, entry: dict[str, Any]) -> "JobStatusEntry":
        return cls(
            **{
                **entry,
                "last_run_at": _iso(entry["last_run_at"]),
                "next_run_at": _iso(entry["next_run_at"]),
            }
        )


class SchedulerStatusResponse(BaseModel):
    enabled: bool
    initialized: bool
    jobs: list[JobStatusEntry]


class TriggerJobResponse(BaseModel):
    accepted: bool
    run: JobRunResponse


class ReconcileResponse(BaseModel):
    reconciled: int
    run_ids: list[int]
