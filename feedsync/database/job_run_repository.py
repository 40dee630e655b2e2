"""
Job run repository - durable records of scheduled and manual job executions.
"""

import json
from datetime import datetime
from typing import Any

from .connection import DatabaseConnection
from .converters import row_to_job_run, to_db_time, utcnow
from .models import DBJobRun, JobStatus, JobTrigger


class JobRunRepository:
    """Repository for job run history."""

    def __init__(self, db: DatabaseConnection):
        self._db = db

    def create_running(
        self,
        job_name: str,
        triggered_by: JobTrigger = JobTrigger.SCHEDULER,
        started_at: datetime | None = None,
    ) -> int:
        """Persist a RUNNING row. Returns the run ID."""
        with self._db.conn() as conn:
            cursor = conn.execute(
                """INSERT INTO job_runs (job_name, status, triggered_by, started_at)
                   VALUES (?, ?, ?, ?)""",
                (
                    job_name,
                    JobStatus.RUNNING.value,
                    triggered_by.value,
                    to_db_time(started_at or utcnow()),
                )
            )
            return cursor.lastrowid

    def complete(
        self,
        run_id: int,
        status: JobStatus,
        duration_ms: int,
        stats: dict[str, Any] | None = None,
        logs: list[dict[str, Any]] | None = None,
        error_message: str | None = None,
        completed_at: datetime | None = None,
    ) -> bool:
        """
        Move a RUNNING row to a terminal state.

        Only RUNNING rows are updated; returns False if the run was already
        terminal (for example reconciled as stuck while still executing).
        """
        with self._db.conn() as conn:
            cursor = conn.execute(
                """UPDATE job_runs
                   SET status = ?, completed_at = ?, duration_ms = ?,
                       stats = ?, logs = ?, error_message = ?
                   WHERE id = ? AND status = ?""",
                (
                    status.value,
                    to_db_time(completed_at or utcnow()),
                    duration_ms,
                    json.dumps(stats, default=str) if stats is not None else None,
                    json.dumps(logs or [], default=str),
                    error_message,
                    run_id,
                    JobStatus.RUNNING.value,
                )
            )
            return cursor.rowcount > 0

    def get(self, run_id: int) -> DBJobRun | None:
        with self._db.conn() as conn:
            row = conn.execute("SELECT * FROM job_runs WHERE id = ?", (run_id,)).fetchone()
            return row_to_job_run(row) if row else None

    def get_running(self, job_name: str | None = None) -> list[DBJobRun]:
        query = "SELECT * FROM job_runs WHERE status = ?"
        params: list[Any] = [JobStatus.RUNNING.value]
        if job_name is not None:
            query += " AND job_name = ?"
            params.append(job_name)
        query += " ORDER BY started_at"
        with self._db.conn() as conn:
            rows = conn.execute(query, params).fetchall()
            return [row_to_job_run(row) for row in rows]

    def get_latest(self, job_name: str) -> DBJobRun | None:
        """Most recently started run for a job, in any state."""
        with self._db.conn() as conn:
            row = conn.execute(
                """SELECT * FROM job_runs WHERE job_name = ?
                   ORDER BY started_at DESC, id DESC LIMIT 1""",
                (job_name,)
            ).fetchone()
            return row_to_job_run(row) if row else None

    def get_history(
        self,
        job_name: str | None = None,
        status: JobStatus | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> list[DBJobRun]:
        """Runs ordered by start time, newest first."""
        query = "SELECT * FROM job_runs WHERE 1=1"
        params: list[Any] = []
        if job_name is not None:
            query += " AND job_name = ?"
            params.append(job_name)
        if status is not None:
            query += " AND status = ?"
            params.append(status.value)
        query += " ORDER BY started_at DESC, id DESC LIMIT ? OFFSET ?"
        params.extend([limit, offset])
        with self._db.conn() as conn:
            rows = conn.execute(query, params).fetchall()
            return [row_to_job_run(row) for row in rows]

    def fail_stuck(
        self,
        started_before: datetime,
        error_message: str,
        job_name: str | None = None,
        exclude_ids: set[int] | None = None,
    ) -> list[int]:
        """
        Mark RUNNING rows that started before the cutoff as FAILED, except
        those listed in exclude_ids.

        Returns the IDs of the runs that were reconciled.
        """
        now = utcnow()
        query = "SELECT id, started_at FROM job_runs WHERE status = ? AND started_at < ?"
        params: list[Any] = [JobStatus.RUNNING.value, to_db_time(started_before)]
        if job_name is not None:
            query += " AND job_name = ?"
            params.append(job_name)

        reconciled = []
        with self._db.conn() as conn:
            rows = conn.execute(query, params).fetchall()
            for row in rows:
                if exclude_ids and row["id"] in exclude_ids:
                    continue
                started = datetime.fromisoformat(row["started_at"])
                duration_ms = max(0, int((now - started).total_seconds() * 1000))
                cursor = conn.execute(
                    """UPDATE job_runs
                       SET status = ?, completed_at = ?, duration_ms = ?, error_message = ?
                       WHERE id = ? AND status = ?""",
                    (
                        JobStatus.FAILED.value,
                        to_db_time(now),
                        duration_ms,
                        error_message,
                        row["id"],
                        JobStatus.RUNNING.value,
                    )
                )
                if cursor.rowcount:
                    reconciled.append(row["id"])
        return reconciled

