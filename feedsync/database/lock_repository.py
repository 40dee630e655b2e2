"""
Lock repository - named, time-bounded leases for cross-process single-flight.
"""

from datetime import datetime

from .connection import DatabaseConnection
from .converters import parse_db_time, to_db_time, utcnow


class LockRepository:
    """Repository for job lease rows."""

    def __init__(self, db: DatabaseConnection):
        self._db = db

    def acquire(self, name: str, holder: str, lease_until: datetime) -> bool:
        """
        Take the lease for name if it is free, expired, or already ours.

        The insert and the conditional update run in one statement so two
        processes cannot both win.
        """
        now = to_db_time(utcnow())
        with self._db.conn() as conn:
            cursor = conn.execute(
                """INSERT INTO job_locks (name, holder, lease_until) VALUES (?, ?, ?)
                   ON CONFLICT(name) DO UPDATE SET
                       holder = excluded.holder,
                       lease_until = excluded.lease_until
                   WHERE job_locks.lease_until < ? OR job_locks.holder = excluded.holder""",
                (name, holder, to_db_time(lease_until), now)
            )
            return cursor.rowcount > 0

    def release(self, name: str, holder: str) -> bool:
        with self._db.conn() as conn:
            cursor = conn.execute(
                "DELETE FROM job_locks WHERE name = ? AND holder = ?",
                (name, holder)
            )
            return cursor.rowcount > 0

    def holder(self, name: str) -> str | None:
        """Current holder of an unexpired lease, if any."""
        with self._db.conn() as conn:
            row = conn.execute(
                "SELECT holder, lease_until FROM job_locks WHERE name = ?", (name,)
            ).fetchone()
        if not row:
            return None
        lease_until = parse_db_time(row["lease_until"])
        if lease_until is None or lease_until < utcnow():
            return None
        return row["holder"]
