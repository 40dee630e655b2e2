"""
Notification repository - per-user in-app notifications.
"""

import json
from typing import Any

from .connection import DatabaseConnection
from .converters import row_to_notification, to_db_time, utcnow
from .models import DBNotification


class NotificationRepository:
    """Repository for notification operations."""

    def __init__(self, db: DatabaseConnection):
        self._db = db

    def add(
        self,
        user_id: int,
        type: str,
        title: str,
        message: str,
        metadata: dict[str, Any] | None = None,
    ) -> int:
        """Add a notification. Returns notification ID."""
        with self._db.conn() as conn:
            cursor = conn.execute(
                """INSERT INTO notifications
                   (user_id, type, title, message, metadata, is_read, created_at)
                   VALUES (?, ?, ?, ?, ?, 0, ?)""",
                (
                    user_id, type, title, message,
                    json.dumps(metadata) if metadata is not None else None,
                    to_db_time(utcnow()),
                )
            )
            return cursor.lastrowid

    def get_for_user(
        self,
        user_id: int,
        unread_only: bool = False,
        limit: int = 50,
        offset: int = 0,
    ) -> list[DBNotification]:
        query = "SELECT * FROM notifications WHERE user_id = ?"
        if unread_only:
            query += " AND is_read = 0"
        query += " ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?"
        with self._db.conn() as conn:
            rows = conn.execute(query, (user_id, limit, offset)).fetchall()
            return [row_to_notification(row) for row in rows]

    def mark_read(self, user_id: int, notification_id: int) -> bool:
        with self._db.conn() as conn:
            cursor = conn.execute(
                "UPDATE notifications SET is_read = 1 WHERE id = ? AND user_id = ?",
                (notification_id, user_id)
            )
            return cursor.rowcount > 0

    def prune(self, user_id: int, keep: int) -> int:
        """Delete all but the newest `keep` notifications for a user."""
        with self._db.conn() as conn:
            cursor = conn.execute(
                """DELETE FROM notifications
                   WHERE user_id = ? AND id NOT IN (
                       SELECT id FROM notifications WHERE user_id = ?
                       ORDER BY created_at DESC, id DESC LIMIT ?
                   )""",
                (user_id, user_id, keep)
            )
            return cursor.rowcount
