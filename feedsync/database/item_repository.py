"""
Item repository - storage for ingested items, keyed by (source_id, fingerprint).
"""

from datetime import datetime

from .connection import DatabaseConnection
from .converters import parse_db_time, row_to_item, to_db_time, utcnow
from .models import DBItem


class ItemRepository:
    """Repository for item operations."""

    def __init__(self, db: DatabaseConnection):
        self._db = db

    def add(
        self,
        source_id: int,
        fingerprint: str,
        title: str,
        published_at: datetime,
        body: str | None = None,
        external_id: str | None = None,
        author: str | None = None,
        image_url: str | None = None,
    ) -> int | None:
        """
        Insert an item. Returns the new ID, or None if an item with the same
        (source_id, fingerprint) already exists.
        """
        with self._db.conn() as conn:
            cursor = conn.execute(
                """INSERT INTO items
                   (source_id, external_id, fingerprint, title, body, author,
                    image_url, published_at, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                   ON CONFLICT(source_id, fingerprint) DO NOTHING""",
                (
                    source_id, external_id, fingerprint, title, body, author,
                    image_url, to_db_time(published_at), to_db_time(utcnow()),
                )
            )
            if cursor.rowcount == 0:
                return None
            return cursor.lastrowid

    def get(self, item_id: int) -> DBItem | None:
        with self._db.conn() as conn:
            row = conn.execute("SELECT * FROM items WHERE id = ?", (item_id,)).fetchone()
            return row_to_item(row) if row else None

    def get_by_fingerprint(self, source_id: int, fingerprint: str) -> DBItem | None:
        with self._db.conn() as conn:
            row = conn.execute(
                "SELECT * FROM items WHERE source_id = ? AND fingerprint = ?",
                (source_id, fingerprint)
            ).fetchone()
            return row_to_item(row) if row else None

    def get_for_source(self, source_id: int, limit: int | None = None) -> list[DBItem]:
        """Items for a source, most recently published first."""
        query = """SELECT * FROM items WHERE source_id = ?
                   ORDER BY published_at DESC, id DESC"""
        params: tuple = (source_id,)
        if limit is not None:
            query += " LIMIT ?"
            params = (source_id, limit)
        with self._db.conn() as conn:
            rows = conn.execute(query, params).fetchall()
            return [row_to_item(row) for row in rows]

    def count_for_source(self, source_id: int) -> int:
        with self._db.conn() as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS n FROM items WHERE source_id = ?", (source_id,)
            ).fetchone()
            return row["n"]

    def update_metadata(
        self,
        item_id: int,
        title: str,
        external_id: str | None,
        author: str | None,
        image_url: str | None,
        published_at: datetime | None = None,
    ):
        """
        Update mutable metadata in place. published_at is only written when
        given, so a stored date is never replaced by an ingestion-time fallback.
        The stored embedding no longer matches and is cleared.
        """
        with self._db.conn() as conn:
            conn.execute(
                """UPDATE items
                   SET title = ?, external_id = ?, author = ?, image_url = ?,
                       published_at = COALESCE(?, published_at), updated_at = ?,
                       embedding_id = NULL
                   WHERE id = ?""",
                (
                    title, external_id, author, image_url,
                    to_db_time(published_at), to_db_time(utcnow()), item_id,
                )
            )

    def get_retention_rows(self, source_id: int) -> list[tuple[int, datetime, bool]]:
        """
        (id, published_at, pinned) for every item of a source, most recent
        first. An item is pinned when any user pinned it.
        """
        with self._db.conn() as conn:
            rows = conn.execute(
                """SELECT i.id, i.published_at, i.created_at,
                          EXISTS(SELECT 1 FROM item_pins p WHERE p.item_id = i.id) AS pinned
                   FROM items i
                   WHERE i.source_id = ?
                   ORDER BY i.published_at DESC, i.id DESC""",
                (source_id,)
            ).fetchall()
        result = []
        for row in rows:
            published = parse_db_time(row["published_at"]) or parse_db_time(row["created_at"]) or utcnow()
            result.append((row["id"], published, bool(row["pinned"])))
        return result

    def delete_many(self, item_ids: list[int]) -> int:
        """
        Delete a set of items. Returns rows deleted.

        Each deleted item leaves a (source_id, fingerprint) tombstone so a
        later refresh does not ingest it again while the upstream feed still
        carries it.
        """
        if not item_ids:
            return 0
        deleted = 0
        removed_at = to_db_time(utcnow())
        with self._db.conn() as conn:
            # SQLite caps bound parameters; chunk large sets
            for start in range(0, len(item_ids), 500):
                chunk = item_ids[start:start + 500]
                placeholders = ",".join("?" * len(chunk))
                conn.execute(
                    f"""INSERT OR IGNORE INTO removed_items (source_id, fingerprint, removed_at)
                        SELECT source_id, fingerprint, ? FROM items WHERE id IN ({placeholders})""",
                    [removed_at, *chunk]
                )
                cursor = conn.execute(
                    f"DELETE FROM items WHERE id IN ({placeholders})", chunk
                )
                deleted += cursor.rowcount
        return deleted

    def get_removed_fingerprints(self, source_id: int) -> set[str]:
        """Fingerprints of items retention already deleted from a source."""
        with self._db.conn() as conn:
            rows = conn.execute(
                "SELECT fingerprint FROM removed_items WHERE source_id = ?", (source_id,)
            ).fetchall()
            return {row["fingerprint"] for row in rows}

    def forget_removed(self, source_id: int, fingerprints: set[str]) -> int:
        """Drop tombstones, e.g. once the upstream feed no longer carries the item."""
        if not fingerprints:
            return 0
        forgotten = 0
        values = sorted(fingerprints)
        with self._db.conn() as conn:
            for start in range(0, len(values), 500):
                chunk = values[start:start + 500]
                placeholders = ",".join("?" * len(chunk))
                cursor = conn.execute(
                    f"""DELETE FROM removed_items
                        WHERE source_id = ? AND fingerprint IN ({placeholders})""",
                    [source_id, *chunk]
                )
                forgotten += cursor.rowcount
        return forgotten

    def get_missing_embeddings(self, limit: int) -> list[DBItem]:
        """Items still waiting for an embedding, oldest first."""
        with self._db.conn() as conn:
            rows = conn.execute(
                "SELECT * FROM items WHERE embedding_id IS NULL ORDER BY id LIMIT ?",
                (limit,)
            ).fetchall()
            return [row_to_item(row) for row in rows]

    def set_embedding_id(self, item_id: int, embedding_id: str) -> bool:
        with self._db.conn() as conn:
            cursor = conn.execute(
                "UPDATE items SET embedding_id = ? WHERE id = ?", (embedding_id, item_id)
            )
            return cursor.rowcount > 0
