"""
Database connection management and schema initialization.
"""

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator


class DatabaseConnection:
    """Manages database connection and schema."""

    def __init__(self, db_path: Path):
        self.db_path = db_path
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    @contextmanager
    def conn(self) -> Iterator[sqlite3.Connection]:
        """Get database connection with row factory."""
        connection = sqlite3.connect(self.db_path, timeout=30)
        connection.row_factory = sqlite3.Row
        connection.execute("PRAGMA foreign_keys = ON")
        try:
            yield connection
            connection.commit()
        except Exception:
            connection.rollback()
            raise
        finally:
            connection.close()

    def vacuum(self):
        """Reclaim space after large deletions (must run outside a transaction)."""
        connection = sqlite3.connect(self.db_path, isolation_level=None)
        try:
            connection.execute("VACUUM")
        finally:
            connection.close()

    def _init_schema(self):
        """Initialize database schema."""
        with self.conn() as connection:
            connection.executescript("""
                CREATE TABLE IF NOT EXISTS sources (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    url TEXT UNIQUE NOT NULL,
                    title TEXT,
                    last_fetched_at TIMESTAMP,
                    error_count INTEGER NOT NULL DEFAULT 0,
                    last_error TEXT,
                    settings TEXT,
                    created_at TIMESTAMP NOT NULL
                );

                CREATE TABLE IF NOT EXISTS items (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    source_id INTEGER NOT NULL REFERENCES sources(id) ON DELETE CASCADE,
                    external_id TEXT,
                    fingerprint TEXT NOT NULL,
                    title TEXT NOT NULL,
                    body TEXT,
                    author TEXT,
                    image_url TEXT,
                    published_at TIMESTAMP NOT NULL,
                    created_at TIMESTAMP NOT NULL,
                    updated_at TIMESTAMP,
                    embedding_id TEXT
                );

                CREATE UNIQUE INDEX IF NOT EXISTS idx_items_source_fingerprint
                    ON items(source_id, fingerprint);
                CREATE INDEX IF NOT EXISTS idx_items_source_published
                    ON items(source_id, published_at DESC);

                CREATE TABLE IF NOT EXISTS removed_items (
                    source_id INTEGER NOT NULL REFERENCES sources(id) ON DELETE CASCADE,
                    fingerprint TEXT NOT NULL,
                    removed_at TIMESTAMP NOT NULL,
                    PRIMARY KEY (source_id, fingerprint)
                );

                CREATE TABLE IF NOT EXISTS user_preferences (
                    user_id INTEGER PRIMARY KEY,
                    default_refresh_interval_minutes INTEGER,
                    default_max_items INTEGER,
                    default_max_item_age_days INTEGER,
                    updated_at TIMESTAMP
                );

                CREATE TABLE IF NOT EXISTS subscriptions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER NOT NULL,
                    source_id INTEGER NOT NULL REFERENCES sources(id) ON DELETE CASCADE,
                    display_name TEXT,
                    refresh_interval_minutes INTEGER,
                    max_items INTEGER,
                    max_item_age_days INTEGER,
                    created_at TIMESTAMP NOT NULL,
                    UNIQUE (user_id, source_id)
                );

                CREATE INDEX IF NOT EXISTS idx_subscriptions_source ON subscriptions(source_id);

                CREATE TABLE IF NOT EXISTS categories (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER NOT NULL,
                    name TEXT NOT NULL,
                    refresh_interval_minutes INTEGER,
                    max_items INTEGER,
                    max_item_age_days INTEGER,
                    created_at TIMESTAMP NOT NULL,
                    UNIQUE (user_id, name)
                );

                CREATE TABLE IF NOT EXISTS subscription_categories (
                    subscription_id INTEGER NOT NULL REFERENCES subscriptions(id) ON DELETE CASCADE,
                    category_id INTEGER NOT NULL REFERENCES categories(id) ON DELETE CASCADE,
                    PRIMARY KEY (subscription_id, category_id)
                );

                CREATE TABLE IF NOT EXISTS item_pins (
                    user_id INTEGER NOT NULL,
                    item_id INTEGER NOT NULL REFERENCES items(id) ON DELETE CASCADE,
                    pinned_at TIMESTAMP NOT NULL,
                    PRIMARY KEY (user_id, item_id)
                );

                CREATE INDEX IF NOT EXISTS idx_item_pins_item ON item_pins(item_id);

                CREATE TABLE IF NOT EXISTS job_runs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    job_name TEXT NOT NULL,
                    status TEXT NOT NULL CHECK(status IN ('RUNNING', 'SUCCEEDED', 'FAILED')),
                    triggered_by TEXT NOT NULL DEFAULT 'SCHEDULER',
                    started_at TIMESTAMP NOT NULL,
                    completed_at TIMESTAMP,
                    duration_ms INTEGER,
                    stats TEXT,
                    logs TEXT,
                    error_message TEXT
                );

                CREATE INDEX IF NOT EXISTS idx_job_runs_name_started
                    ON job_runs(job_name, started_at DESC);
                CREATE INDEX IF NOT EXISTS idx_job_runs_status ON job_runs(status);

                CREATE TABLE IF NOT EXISTS job_locks (
                    name TEXT PRIMARY KEY,
                    holder TEXT NOT NULL,
                    lease_until TIMESTAMP NOT NULL
                );

                CREATE TABLE IF NOT EXISTS notifications (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER NOT NULL,
                    type TEXT NOT NULL,
                    title TEXT NOT NULL,
                    message TEXT NOT NULL,
                    metadata TEXT,
                    is_read INTEGER DEFAULT 0,
                    created_at TIMESTAMP NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_notifications_user_created
                    ON notifications(user_id, created_at DESC);
            """)

            # Migrations
            self._migrate_add_column(connection, "items", "embedding_id", "TEXT")
            self._migrate_add_column(connection, "job_runs", "triggered_by", "TEXT NOT NULL DEFAULT 'SCHEDULER'")

    def _migrate_add_column(
        self,
        conn: sqlite3.Connection,
        table: str,
        column: str,
        column_type: str
    ):
        """Add a column to a table if it doesn't exist."""
        cursor = conn.execute(f"PRAGMA table_info({table})")
        columns = [row[1] for row in cursor.fetchall()]
        if column not in columns:
            conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {column_type}")
