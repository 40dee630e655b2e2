"""
Subscription repository - per-user subscriptions, categories and preferences.

These three tables carry the user-scoped levels of the settings cascade.
"""

from .connection import DatabaseConnection
from .converters import (
    row_to_category,
    row_to_preferences,
    row_to_subscription,
    to_db_time,
    utcnow,
)
from .models import DBCategory, DBSubscription, SettingsOverrides


class SubscriptionRepository:
    """Repository for subscription, category and user preference operations."""

    def __init__(self, db: DatabaseConnection):
        self._db = db

    # ─────────────────────────────────────────────────────────────
    # Subscriptions
    # ─────────────────────────────────────────────────────────────

    def subscribe(self, user_id: int, source_id: int, display_name: str | None = None) -> int:
        """Subscribe a user to a source. Returns the subscription ID (existing or new)."""
        with self._db.conn() as conn:
            conn.execute(
                """INSERT INTO subscriptions (user_id, source_id, display_name, created_at)
                   VALUES (?, ?, ?, ?)
                   ON CONFLICT(user_id, source_id) DO NOTHING""",
                (user_id, source_id, display_name, to_db_time(utcnow()))
            )
            row = conn.execute(
                "SELECT id FROM subscriptions WHERE user_id = ? AND source_id = ?",
                (user_id, source_id)
            ).fetchone()
            return row["id"]

    def unsubscribe(self, user_id: int, source_id: int) -> bool:
        with self._db.conn() as conn:
            cursor = conn.execute(
                "DELETE FROM subscriptions WHERE user_id = ? AND source_id = ?",
                (user_id, source_id)
            )
            return cursor.rowcount > 0

    def get(self, user_id: int, source_id: int) -> DBSubscription | None:
        with self._db.conn() as conn:
            row = conn.execute(
                "SELECT * FROM subscriptions WHERE user_id = ? AND source_id = ?",
                (user_id, source_id)
            ).fetchone()
            return row_to_subscription(row) if row else None

    def get_for_user(self, user_id: int) -> list[DBSubscription]:
        with self._db.conn() as conn:
            rows = conn.execute(
                "SELECT * FROM subscriptions WHERE user_id = ? ORDER BY id",
                (user_id,)
            ).fetchall()
            return [row_to_subscription(row) for row in rows]

    def get_for_source(self, source_id: int) -> list[DBSubscription]:
        with self._db.conn() as conn:
            rows = conn.execute(
                "SELECT * FROM subscriptions WHERE source_id = ? ORDER BY id",
                (source_id,)
            ).fetchall()
            return [row_to_subscription(row) for row in rows]

    def update_overrides(self, subscription_id: int, overrides: SettingsOverrides):
        """Replace the subscription-level overrides (None clears a value)."""
        with self._db.conn() as conn:
            conn.execute(
                """UPDATE subscriptions
                   SET refresh_interval_minutes = ?, max_items = ?, max_item_age_days = ?
                   WHERE id = ?""",
                (
                    overrides.refresh_interval_minutes,
                    overrides.max_items,
                    overrides.max_item_age_days,
                    subscription_id,
                )
            )

    # ─────────────────────────────────────────────────────────────
    # Categories
    # ─────────────────────────────────────────────────────────────

    def add_category(self, user_id: int, name: str) -> int:
        with self._db.conn() as conn:
            conn.execute(
                """INSERT INTO categories (user_id, name, created_at) VALUES (?, ?, ?)
                   ON CONFLICT(user_id, name) DO NOTHING""",
                (user_id, name, to_db_time(utcnow()))
            )
            row = conn.execute(
                "SELECT id FROM categories WHERE user_id = ? AND name = ?",
                (user_id, name)
            ).fetchone()
            return row["id"]

    def get_category(self, category_id: int) -> DBCategory | None:
        with self._db.conn() as conn:
            row = conn.execute(
                "SELECT * FROM categories WHERE id = ?", (category_id,)
            ).fetchone()
            return row_to_category(row) if row else None

    def update_category_overrides(self, category_id: int, overrides: SettingsOverrides):
        with self._db.conn() as conn:
            conn.execute(
                """UPDATE categories
                   SET refresh_interval_minutes = ?, max_items = ?, max_item_age_days = ?
                   WHERE id = ?""",
                (
                    overrides.refresh_interval_minutes,
                    overrides.max_items,
                    overrides.max_item_age_days,
                    category_id,
                )
            )

    def assign_category(self, subscription_id: int, category_id: int):
        with self._db.conn() as conn:
            conn.execute(
                """INSERT INTO subscription_categories (subscription_id, category_id)
                   VALUES (?, ?)
                   ON CONFLICT(subscription_id, category_id) DO NOTHING""",
                (subscription_id, category_id)
            )

    def get_categories_for_subscription(self, subscription_id: int) -> list[DBCategory]:
        """Categories a subscription belongs to, oldest membership first."""
        with self._db.conn() as conn:
            rows = conn.execute(
                """SELECT c.* FROM categories c
                   JOIN subscription_categories sc ON sc.category_id = c.id
                   WHERE sc.subscription_id = ?
                   ORDER BY c.id""",
                (subscription_id,)
            ).fetchall()
            return [row_to_category(row) for row in rows]

    # ─────────────────────────────────────────────────────────────
    # User preferences
    # ─────────────────────────────────────────────────────────────

    def get_preferences(self, user_id: int) -> SettingsOverrides:
        with self._db.conn() as conn:
            row = conn.execute(
                "SELECT * FROM user_preferences WHERE user_id = ?", (user_id,)
            ).fetchone()
            return row_to_preferences(row) if row else SettingsOverrides()

    def set_preferences(self, user_id: int, overrides: SettingsOverrides):
        with self._db.conn() as conn:
            conn.execute(
                """INSERT INTO user_preferences
                   (user_id, default_refresh_interval_minutes, default_max_items,
                    default_max_item_age_days, updated_at)
                   VALUES (?, ?, ?, ?, ?)
                   ON CONFLICT(user_id) DO UPDATE SET
                       default_refresh_interval_minutes = excluded.default_refresh_interval_minutes,
                       default_max_items = excluded.default_max_items,
                       default_max_item_age_days = excluded.default_max_item_age_days,
                       updated_at = excluded.updated_at""",
                (
                    user_id,
                    overrides.refresh_interval_minutes,
                    overrides.max_items,
                    overrides.max_item_age_days,
                    to_db_time(utcnow()),
                )
            )
