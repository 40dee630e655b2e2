"""
Source repository - CRUD operations for content sources and their fetch state.
"""

from .connection import DatabaseConnection
from .converters import overrides_to_json, row_to_source, to_db_time, utcnow
from .models import DBSource, SettingsOverrides


class SourceRepository:
    """Repository for source operations."""

    def __init__(self, db: DatabaseConnection):
        self._db = db

    def get_or_create(self, url: str, title: str | None = None) -> int:
        """Return the ID of the source for url, creating it on first use."""
        with self._db.conn() as conn:
            conn.execute(
                """INSERT INTO sources (url, title, created_at) VALUES (?, ?, ?)
                   ON CONFLICT(url) DO NOTHING""",
                (url, title, to_db_time(utcnow()))
            )
            row = conn.execute("SELECT id FROM sources WHERE url = ?", (url,)).fetchone()
            return row["id"]

    def get(self, source_id: int) -> DBSource | None:
        """Get single source by ID with its item count."""
        with self._db.conn() as conn:
            row = conn.execute(
                """SELECT s.*, COUNT(i.id) as item_count
                   FROM sources s
                   LEFT JOIN items i ON s.id = i.source_id
                   WHERE s.id = ?
                   GROUP BY s.id""",
                (source_id,)
            ).fetchone()
            return row_to_source(row) if row else None

    def get_all(self) -> list[DBSource]:
        """Get all sources with item counts, least recently fetched first."""
        with self._db.conn() as conn:
            rows = conn.execute("""
                SELECT s.*, COUNT(i.id) as item_count
                FROM sources s
                LEFT JOIN items i ON s.id = i.source_id
                GROUP BY s.id
                ORDER BY s.last_fetched_at IS NOT NULL, s.last_fetched_at, s.id
            """).fetchall()
            return [row_to_source(row) for row in rows]

    def update_settings(self, source_id: int, overrides: SettingsOverrides):
        """Replace the source-level override blob."""
        with self._db.conn() as conn:
            conn.execute(
                "UPDATE sources SET settings = ? WHERE id = ?",
                (overrides_to_json(overrides), source_id)
            )

    def update_title(self, source_id: int, title: str):
        with self._db.conn() as conn:
            conn.execute("UPDATE sources SET title = ? WHERE id = ?", (title, source_id))

    def mark_fetched(self, source_id: int):
        """Record a successful fetch: stamp last_fetched_at and clear error state."""
        with self._db.conn() as conn:
            conn.execute(
                """UPDATE sources
                   SET last_fetched_at = ?, error_count = 0, last_error = NULL
                   WHERE id = ?""",
                (to_db_time(utcnow()), source_id)
            )

    def record_error(self, source_id: int, error: str):
        """Record a failed fetch. last_fetched_at is left as is."""
        with self._db.conn() as conn:
            conn.execute(
                """UPDATE sources
                   SET error_count = error_count + 1, last_error = ?
                   WHERE id = ?""",
                (error, source_id)
            )

    def delete(self, source_id: int) -> bool:
        """
        Delete a source and its items.

        Refuses (returns False) while any subscription still references it.
        """
        with self._db.conn() as conn:
            referenced = conn.execute(
                "SELECT 1 FROM subscriptions WHERE source_id = ? LIMIT 1",
                (source_id,)
            ).fetchone()
            if referenced:
                return False
            cursor = conn.execute("DELETE FROM sources WHERE id = ?", (source_id,))
            return cursor.rowcount > 0
