"""
Repository for per-user pinned items.

Pinned items are exempt from retention cleanup.
"""

from .connection import DatabaseConnection
from .converters import to_db_time, utcnow


class PinRepository:
    """Repository for per-user item pins."""

    def __init__(self, db: DatabaseConnection):
        self._db = db

    def pin(self, user_id: int, item_id: int):
        with self._db.conn() as conn:
            conn.execute(
                """INSERT INTO item_pins (user_id, item_id, pinned_at)
                   VALUES (?, ?, ?)
                   ON CONFLICT(user_id, item_id) DO NOTHING""",
                (user_id, item_id, to_db_time(utcnow()))
            )

    def unpin(self, user_id: int, item_id: int):
        with self._db.conn() as conn:
            conn.execute(
                "DELETE FROM item_pins WHERE user_id = ? AND item_id = ?",
                (user_id, item_id)
            )

    def is_pinned(self, item_id: int) -> bool:
        """True if any user pinned the item."""
        with self._db.conn() as conn:
            row = conn.execute(
                "SELECT 1 FROM item_pins WHERE item_id = ? LIMIT 1", (item_id,)
            ).fetchone()
            return row is not None
