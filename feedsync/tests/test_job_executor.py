"""
Tests for tracked, single-flight job execution.
"""

import asyncio
import logging
from datetime import timedelta

import pytest

from feedsync.database.converters import utcnow
from feedsync.database.models import JobStatus, JobTrigger
from feedsync.exceptions import JobAlreadyRunningError
from feedsync.jobs.executor import JobExecutor, JobOutcome
from feedsync.jobs.job_logger import JobLogBuffer, sanitize_data
from feedsync.jobs.locks import LeaseLockProvider

job_logger = logging.getLogger("feedsync.jobs.sample")


def _age_run(db, run_id: int, hours: int):
    with db._connection.conn() as conn:
        conn.execute(
            "UPDATE job_runs SET started_at = ? WHERE id = ?",
            ((utcnow() - timedelta(hours=hours)).isoformat(timespec="microseconds"), run_id)
        )


@pytest.fixture
def executor(test_db):
    return JobExecutor(test_db, stuck_timeout_minutes=10)


class TestExecute:
    """Tests for JobExecutor.execute."""

    @pytest.mark.asyncio
    async def test_success_records_stats(self, test_db, executor):
        async def body():
            return {"processed": 3}

        run = await executor.execute("refresh", body, JobTrigger.MANUAL)

        assert run.status == JobStatus.SUCCEEDED
        assert run.triggered_by == JobTrigger.MANUAL
        assert run.stats == {"processed": 3}
        assert run.completed_at is not None
        assert run.duration_ms >= 0
        assert run.error_message is None
        assert not executor.is_running("refresh")

    @pytest.mark.asyncio
    async def test_exception_records_failure(self, executor):
        async def body():
            raise ValueError("feed store unavailable")

        run = await executor.execute("refresh", body)

        assert run.status == JobStatus.FAILED
        assert run.error_message == "feed store unavailable"
        assert not executor.is_running("refresh")

    @pytest.mark.asyncio
    async def test_reported_failure(self, executor):
        async def body():
            return JobOutcome(success=False, stats={"failed": 2}, error="2 sources failed")

        run = await executor.execute("cleanup", body)

        assert run.status == JobStatus.FAILED
        assert run.stats == {"failed": 2}
        assert run.error_message == "2 sources failed"

    @pytest.mark.asyncio
    async def test_logs_are_captured(self, executor):
        async def body():
            job_logger.info("Fetched sources", extra={"data": {"count": 4}})
            job_logger.warning("Source 7 is slow")

        run = await executor.execute("refresh", body)

        messages = [entry["message"] for entry in run.logs]
        assert "Starting job: refresh" in messages
        assert "Fetched sources" in messages
        assert "Job completed: refresh" in messages
        fetched = next(e for e in run.logs if e["message"] == "Fetched sources")
        assert fetched["level"] == "info"
        assert fetched["data"] == {"count": 4}
        slow = next(e for e in run.logs if e["message"] == "Source 7 is slow")
        assert slow["level"] == "warn"

    @pytest.mark.asyncio
    async def test_logs_outside_a_run_are_not_captured(self, executor):
        job_logger.info("Before any run")

        async def body():
            return None

        run = await executor.execute("refresh", body)
        assert all(entry["message"] != "Before any run" for entry in run.logs)

    @pytest.mark.asyncio
    async def test_log_entries_are_bounded(self, test_db):
        executor = JobExecutor(test_db, max_log_entries=10)

        async def body():
            for n in range(50):
                job_logger.info(f"line {n}")

        run = await executor.execute("refresh", body)

        assert len(run.logs) == 10
        assert run.logs[-1]["message"] == "Job completed: refresh"


class TestSingleFlight:
    @pytest.mark.asyncio
    async def test_second_start_is_rejected_while_running(self, test_db, executor):
        release = asyncio.Event()

        async def body():
            await release.wait()

        task = asyncio.create_task(executor.execute("refresh", body))
        await asyncio.sleep(0)

        assert executor.is_running("refresh")
        with pytest.raises(JobAlreadyRunningError):
            executor.start("refresh", JobTrigger.MANUAL)
        assert len(test_db.job_runs.get_running("refresh")) == 1

        release.set()
        run = await task
        assert run.status == JobStatus.SUCCEEDED
        assert len(test_db.get_job_history("refresh")) == 1

    @pytest.mark.asyncio
    async def test_different_jobs_run_concurrently(self, executor):
        release = asyncio.Event()

        async def body():
            await release.wait()

        refresh = asyncio.create_task(executor.execute("refresh", body))
        cleanup = asyncio.create_task(executor.execute("cleanup", body))
        await asyncio.sleep(0)

        assert executor.is_running("refresh")
        assert executor.is_running("cleanup")
        release.set()
        runs = await asyncio.gather(refresh, cleanup)
        assert all(run.status == JobStatus.SUCCEEDED for run in runs)

    def test_running_row_from_elsewhere_blocks_start(self, test_db, executor):
        test_db.job_runs.create_running("refresh", JobTrigger.SCHEDULER)

        with pytest.raises(JobAlreadyRunningError):
            executor.start("refresh")
        assert not executor.is_running("refresh")

    @pytest.mark.asyncio
    async def test_cancelled_run_is_recorded(self, test_db, executor):
        async def body():
            await asyncio.Event().wait()

        handle = executor.start("refresh")
        task = asyncio.create_task(executor.run(handle, body))
        await asyncio.sleep(0)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        run = test_db.get_job_run(handle.run_id)
        assert run.status == JobStatus.FAILED
        assert run.error_message == "Job cancelled"
        assert not executor.is_running("refresh")


class TestReconcile:
    """Runs left RUNNING by a crashed process."""

    def test_stale_run_is_failed(self, test_db, executor):
        stale = test_db.job_runs.create_running(
            "refresh", started_at=utcnow() - timedelta(minutes=20)
        )
        recent = test_db.job_runs.create_running(
            "cleanup", started_at=utcnow() - timedelta(minutes=2)
        )

        assert executor.reconcile_stuck_runs() == [stale]

        run = test_db.get_job_run(stale)
        assert run.status == JobStatus.FAILED
        assert "timed out" in run.error_message
        assert run.duration_ms >= 20 * 60 * 1000
        assert test_db.get_job_run(recent).status == JobStatus.RUNNING

    def test_reconcile_is_idempotent(self, test_db, executor):
        test_db.job_runs.create_running("refresh", started_at=utcnow() - timedelta(minutes=20))
        assert len(executor.reconcile_stuck_runs()) == 1
        assert executor.reconcile_stuck_runs() == []

    @pytest.mark.asyncio
    async def test_start_clears_stale_run_of_same_job(self, test_db, executor):
        stale = test_db.job_runs.create_running(
            "refresh", started_at=utcnow() - timedelta(minutes=30)
        )

        async def body():
            return None

        run = await executor.execute("refresh", body)

        assert run.status == JobStatus.SUCCEEDED
        assert test_db.get_job_run(stale).status == JobStatus.FAILED

    @pytest.mark.asyncio
    async def test_live_run_is_not_reconciled(self, test_db, executor):
        release = asyncio.Event()

        async def body():
            await release.wait()
            return {"done": True}

        handle = executor.start("refresh")
        task = asyncio.create_task(executor.run(handle, body))
        await asyncio.sleep(0)
        _age_run(test_db, handle.run_id, hours=1)

        assert executor.reconcile_stuck_runs() == []

        release.set()
        run = await task
        assert run.status == JobStatus.SUCCEEDED
        assert run.stats == {"done": True}

    @pytest.mark.asyncio
    async def test_late_completion_does_not_overwrite_reconciled_run(self, test_db, executor):
        release = asyncio.Event()

        async def body():
            await release.wait()

        handle = executor.start("refresh")
        task = asyncio.create_task(executor.run(handle, body))
        await asyncio.sleep(0)
        _age_run(test_db, handle.run_id, hours=1)

        # Another process sharing the database sees only an old RUNNING row
        other_process = JobExecutor(test_db, stuck_timeout_minutes=10)
        assert other_process.reconcile_stuck_runs() == [handle.run_id]

        release.set()
        await task

        assert test_db.get_job_run(handle.run_id).status == JobStatus.FAILED
        assert not executor.is_running("refresh")

    def test_explicit_zero_threshold(self, test_db, executor):
        just_started = test_db.job_runs.create_running(
            "cleanup", started_at=utcnow() - timedelta(seconds=5)
        )
        assert executor.reconcile_stuck_runs() == []
        assert executor.reconcile_stuck_runs(threshold_minutes=0) == [just_started]


class TestLeaseLocks:
    def test_lease_excludes_other_holders(self, test_db):
        first = LeaseLockProvider(test_db, holder="worker-a")
        second = LeaseLockProvider(test_db, holder="worker-b")

        assert first.acquire("refresh")
        assert not second.acquire("refresh")
        assert not first.acquire("refresh")
        assert second.is_locked("refresh")

        first.release("refresh")
        assert second.acquire("refresh")

    def test_expired_lease_can_be_taken(self, test_db):
        crashed = LeaseLockProvider(test_db, ttl_seconds=-1, holder="crashed")
        assert crashed.acquire("refresh")
        assert not crashed.is_locked("refresh")

        assert LeaseLockProvider(test_db, holder="worker-b").acquire("refresh")

    @pytest.mark.asyncio
    async def test_executor_with_lease_locks(self, test_db):
        executor = JobExecutor(test_db, lock_provider=LeaseLockProvider(test_db))

        async def body():
            assert test_db.locks.holder("cleanup") is not None

        run = await executor.execute("cleanup", body)

        assert run.status == JobStatus.SUCCEEDED
        assert test_db.locks.holder("cleanup") is None


class TestJobLogBuffer:
    def test_data_is_truncated(self):
        data = sanitize_data({"blob": "x" * 5000})
        assert data["_truncated"] is True
        assert len(data["preview"]) == 1024

    def test_unserializable_values_are_stringified(self):
        assert sanitize_data({"when": utcnow().date()})["when"].count("-") == 2

    def test_oldest_entries_dropped(self):
        buffer = JobLogBuffer(max_entries=3)
        for n in range(5):
            buffer.add("info", f"line {n}")
        assert [e["message"] for e in buffer.entries] == ["line 2", "line 3", "line 4"]
