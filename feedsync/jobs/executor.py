"""
Job executor: single-flight, tracked execution of named jobs.

Every run is recorded: a RUNNING row is written before the job body starts and
is moved to SUCCEEDED or FAILED when it ends, together with its stats and the
log lines captured while it ran. Exceptions from the body are recorded, never
raised; failing to write the run record is.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Awaitable, Callable

from ..database import Database
from ..database.converters import utcnow
from ..database.models import DBJobRun, JobStatus, JobTrigger
from ..exceptions import JobAlreadyRunningError
from .job_logger import MAX_LOG_ENTRIES, JobLogBuffer, install_handler
from .locks import InMemoryLockProvider, LockProvider

logger = logging.getLogger(__name__)

DEFAULT_STUCK_TIMEOUT_MINUTES = 10


@dataclass
class JobOutcome:
    """What a job body reports back."""
    success: bool = True
    stats: dict[str, Any] | None = None
    error: str | None = None


JobFn = Callable[[], Awaitable["JobOutcome | dict[str, Any] | None"]]


@dataclass
class RunHandle:
    """A claimed single-flight slot with its RUNNING row."""
    run_id: int
    job_name: str
    triggered_by: JobTrigger
    started: float = field(default_factory=time.monotonic)


def _normalize(result: "JobOutcome | dict[str, Any] | None") -> JobOutcome:
    if isinstance(result, JobOutcome):
        return result
    if result is None:
        return JobOutcome()
    return JobOutcome(stats=dict(result))


class JobExecutor:
    """Runs named jobs at most once at a time and records every run."""

    def __init__(
        self,
        db: Database,
        lock_provider: LockProvider | None = None,
        stuck_timeout_minutes: int = DEFAULT_STUCK_TIMEOUT_MINUTES,
        max_log_entries: int = MAX_LOG_ENTRIES,
    ):
        self.db = db
        self.locks = lock_provider or InMemoryLockProvider()
        self.stuck_timeout_minutes = stuck_timeout_minutes
        self.max_log_entries = max_log_entries
        # Run IDs executing in this process; never reconciled as stuck
        self._active: set[int] = set()
        install_handler()

    def is_running(self, job_name: str) -> bool:
        return self.locks.is_locked(job_name)

    # ─────────────────────────────────────────────────────────────
    # Execution
    # ─────────────────────────────────────────────────────────────

    def start(self, job_name: str, triggered_by: JobTrigger = JobTrigger.SCHEDULER) -> RunHandle:
        """
        Claim the slot for job_name and persist its RUNNING row.

        Raises JobAlreadyRunningError (without writing a row) if another run
        holds the lock or a non-stale RUNNING row exists.
        """
        self.reconcile_stuck_runs(job_name=job_name)

        if not self.locks.acquire(job_name):
            raise JobAlreadyRunningError(job_name)
        try:
            if self.db.job_runs.get_running(job_name):
                raise JobAlreadyRunningError(job_name)
            run_id = self.db.job_runs.create_running(job_name, triggered_by)
        except BaseException:
            self.locks.release(job_name)
            raise
        self._active.add(run_id)
        return RunHandle(run_id=run_id, job_name=job_name, triggered_by=triggered_by)

    async def run(self, handle: RunHandle, fn: JobFn) -> DBJobRun:
        """Execute the body for a claimed run and close its record."""
        buffer = JobLogBuffer(self.max_log_entries)
        cancelled = False
        token = buffer.activate()
        try:
            logger.info(f"Starting job: {handle.job_name}", extra={"data": {
                "run_id": handle.run_id,
                "triggered_by": handle.triggered_by.value,
            }})
            try:
                outcome = _normalize(await fn())
            except Exception as e:
                logger.exception(f"Job threw exception: {handle.job_name}")
                outcome = JobOutcome(success=False, error=str(e) or type(e).__name__)
            except asyncio.CancelledError:
                logger.warning(f"Job cancelled: {handle.job_name}")
                outcome = JobOutcome(success=False, error="Job cancelled")
                cancelled = True

            duration_ms = int((time.monotonic() - handle.started) * 1000)
            if outcome.success:
                logger.info(f"Job completed: {handle.job_name}", extra={"data": {
                    "duration_ms": duration_ms,
                    **(outcome.stats or {}),
                }})
            else:
                logger.error(f"Job failed: {handle.job_name}", extra={"data": {"error": outcome.error}})
        finally:
            buffer.deactivate(token)

        try:
            completed = self.db.job_runs.complete(
                handle.run_id,
                status=JobStatus.SUCCEEDED if outcome.success else JobStatus.FAILED,
                duration_ms=duration_ms,
                stats=outcome.stats,
                logs=buffer.entries,
                error_message=None if outcome.success else outcome.error,
            )
            if not completed:
                logger.warning(
                    f"Run {handle.run_id} of {handle.job_name} was already closed; "
                    f"result not recorded"
                )
        finally:
            self._active.discard(handle.run_id)
            self.locks.release(handle.job_name)

        if cancelled:
            raise asyncio.CancelledError()
        return self.db.job_runs.get(handle.run_id)

    async def execute(
        self,
        job_name: str,
        fn: JobFn,
        triggered_by: JobTrigger = JobTrigger.SCHEDULER,
    ) -> DBJobRun:
        """Claim, run and record a job in one call."""
        handle = self.start(job_name, triggered_by)
        return await self.run(handle, fn)

    # ─────────────────────────────────────────────────────────────
    # Reconciliation
    # ─────────────────────────────────────────────────────────────

    def reconcile_stuck_runs(
        self,
        threshold_minutes: int | None = None,
        job_name: str | None = None,
    ) -> list[int]:
        """
        Mark RUNNING rows older than the threshold as FAILED. Returns their IDs.

        Runs still executing in this process are left alone.
        """
        threshold = self.stuck_timeout_minutes if threshold_minutes is None else threshold_minutes
        cutoff = utcnow() - timedelta(minutes=threshold)
        reconciled = self.db.job_runs.fail_stuck(
            started_before=cutoff,
            error_message=f"Job timed out - marked as failed after running longer than {threshold} minutes",
            job_name=job_name,
            exclude_ids=set(self._active),
        )
        if reconciled:
            logger.warning(
                f"Marked {len(reconciled)} stuck job run(s) as failed",
                extra={"data": {"run_ids": reconciled, "threshold_minutes": threshold}},
            )
        return reconciled
