"""
Database row converters - convert SQLite rows to dataclasses.
"""

import json
import logging
import sqlite3
from datetime import datetime, timezone
from typing import Any

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

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def to_db_time(value: datetime | None) -> str | None:
    """
    Serialize a datetime for storage.

    Naive values are taken to be UTC. Every stored timestamp has the same
    fixed-width UTC form so that string comparison in SQL matches time order.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def parse_db_time(value: str | None) -> datetime | None:
    """Parse a stored timestamp, returning None for missing/garbled values."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except (TypeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def json_loads(value: str | None, default: Any) -> Any:
    if not value:
        return default
    try:
        return json.loads(value)
    except (TypeError, ValueError):
        return default


def coerce_override(value: Any, field_name: str = "value") -> int | None:
    """
    Read a stored override value.

    Anything that is not a positive integer is treated as "not set" so the
    settings cascade falls through to the next level.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        logger.warning(f"Ignoring malformed override {field_name}={value!r}")
        return None
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        logger.warning(f"Ignoring malformed override {field_name}={value!r}")
        return None
    if isinstance(value, float) and value != parsed:
        logger.warning(f"Ignoring malformed override {field_name}={value!r}")
        return None
    if parsed <= 0:
        logger.warning(f"Ignoring non-positive override {field_name}={value!r}")
        return None
    return parsed


def overrides_from_columns(
    row: sqlite3.Row,
    refresh_col: str = "refresh_interval_minutes",
    max_items_col: str = "max_items",
    max_age_col: str = "max_item_age_days",
) -> SettingsOverrides:
    """Build a typed override record from three nullable columns."""
    return SettingsOverrides(
        refresh_interval_minutes=coerce_override(row[refresh_col], refresh_col),
        max_items=coerce_override(row[max_items_col], max_items_col),
        max_item_age_days=coerce_override(row[max_age_col], max_age_col),
    )


def overrides_from_json(raw: str | None) -> SettingsOverrides:
    """Build a typed override record from the source-level settings blob."""
    if not raw:
        return SettingsOverrides()
    try:
        data = json.loads(raw)
    except (TypeError, ValueError):
        logger.warning(f"Ignoring unparsable source settings blob: {raw[:100]!r}")
        return SettingsOverrides()
    if not isinstance(data, dict):
        logger.warning(f"Ignoring non-object source settings blob: {raw[:100]!r}")
        return SettingsOverrides()
    return SettingsOverrides(
        refresh_interval_minutes=coerce_override(data.get("refresh_interval_minutes"), "refresh_interval_minutes"),
        max_items=coerce_override(data.get("max_items"), "max_items"),
        max_item_age_days=coerce_override(data.get("max_item_age_days"), "max_item_age_days"),
    )


def overrides_to_json(overrides: SettingsOverrides) -> str | None:
    if overrides.is_empty():
        return None
    data = {
        key: value
        for key, value in (
            ("refresh_interval_minutes", overrides.refresh_interval_minutes),
            ("max_items", overrides.max_items),
            ("max_item_age_days", overrides.max_item_age_days),
        )
        if value is not None
    }
    return json.dumps(data)


def row_to_source(row: sqlite3.Row) -> DBSource:
    """Convert a database row to a DBSource."""
    # item_count is only present in listing queries
    try:
        item_count = row["item_count"] or 0
    except (IndexError, KeyError):
        item_count = 0

    return DBSource(
        id=row["id"],
        url=row["url"],
        title=row["title"],
        last_fetched_at=parse_db_time(row["last_fetched_at"]),
        error_count=row["error_count"] or 0,
        last_error=row["last_error"],
        settings=overrides_from_json(row["settings"]),
        created_at=parse_db_time(row["created_at"]),
        item_count=item_count,
    )


def row_to_item(row: sqlite3.Row) -> DBItem:
    """Convert a database row to a DBItem."""
    created_at = parse_db_time(row["created_at"]) or utcnow()
    return DBItem(
        id=row["id"],
        source_id=row["source_id"],
        external_id=row["external_id"],
        fingerprint=row["fingerprint"],
        title=row["title"],
        body=row["body"],
        published_at=parse_db_time(row["published_at"]) or created_at,
        created_at=created_at,
        updated_at=parse_db_time(row["updated_at"]),
        author=row["author"],
        image_url=row["image_url"],
        embedding_id=row["embedding_id"],
    )


def row_to_subscription(row: sqlite3.Row) -> DBSubscription:
    """Convert a database row to a DBSubscription."""
    return DBSubscription(
        id=row["id"],
        user_id=row["user_id"],
        source_id=row["source_id"],
        display_name=row["display_name"],
        overrides=overrides_from_columns(row),
        created_at=parse_db_time(row["created_at"]),
    )


def row_to_category(row: sqlite3.Row) -> DBCategory:
    """Convert a database row to a DBCategory."""
    return DBCategory(
        id=row["id"],
        user_id=row["user_id"],
        name=row["name"],
        overrides=overrides_from_columns(row),
        created_at=parse_db_time(row["created_at"]),
    )


def row_to_preferences(row: sqlite3.Row) -> SettingsOverrides:
    """Convert a user_preferences row to the user-level override record."""
    return overrides_from_columns(
        row,
        refresh_col="default_refresh_interval_minutes",
        max_items_col="default_max_items",
        max_age_col="default_max_item_age_days",
    )


def row_to_job_run(row: sqlite3.Row) -> DBJobRun:
    """Convert a database row to a DBJobRun."""
    try:
        triggered_by = JobTrigger(row["triggered_by"])
    except ValueError:
        triggered_by = JobTrigger.SCHEDULER

    return DBJobRun(
        id=row["id"],
        job_name=row["job_name"],
        status=JobStatus(row["status"]),
        triggered_by=triggered_by,
        started_at=parse_db_time(row["started_at"]) or utcnow(),
        completed_at=parse_db_time(row["completed_at"]),
        duration_ms=row["duration_ms"],
        stats=json_loads(row["stats"], None),
        logs=json_loads(row["logs"], []),
        error_message=row["error_message"],
    )


def row_to_notification(row: sqlite3.Row) -> DBNotification:
    """Convert a database row to a DBNotification."""
    return DBNotification(
        id=row["id"],
        user_id=row["user_id"],
        type=row["type"],
        title=row["title"],
        message=row["message"],
        metadata=json_loads(row["metadata"], None),
        is_read=bool(row["is_read"]),
        created_at=parse_db_time(row["created_at"]) or utcnow(),
    )
