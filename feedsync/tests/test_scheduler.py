"""
Tests for the scheduler and the batch refresh and cleanup jobs.
"""

from datetime import datetime, timedelta, timezone

import pytest

from feedsync.database.converters import utcnow
from feedsync.database.models import JobStatus, JobTrigger, SettingsOverrides
from feedsync.exceptions import FeedTransportError, JobAlreadyRunningError, UnknownJobError
from feedsync.jobs.refresh_job import is_due
from feedsync.jobs.scheduler import RECONCILE_JOB_ID


def _recent(make_item, n):
    return make_item(n, published_at=datetime.now(timezone.utc) - timedelta(minutes=n))


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_initialize_registers_jobs(self, make_scheduler):
        scheduler = make_scheduler(enabled=True)
        try:
            assert scheduler.initialize()
            assert scheduler.initialized
            job_ids = {job.id for job in scheduler._aps.get_jobs()}
            assert job_ids == {"refresh", "cleanup", RECONCILE_JOB_ID}
        finally:
            scheduler.shutdown()
        assert not scheduler.initialized

    @pytest.mark.asyncio
    async def test_initialize_is_idempotent(self, make_scheduler):
        scheduler = make_scheduler(enabled=True)
        try:
            assert scheduler.initialize()
            aps = scheduler._aps
            assert scheduler.initialize()
            assert scheduler._aps is aps
            assert len(aps.get_jobs()) == 3
        finally:
            scheduler.shutdown()

    @pytest.mark.asyncio
    async def test_disabled_scheduler_does_not_start(self, make_scheduler):
        scheduler = make_scheduler(enabled=False)
        assert not scheduler.initialize()
        assert not scheduler.initialized

    @pytest.mark.asyncio
    async def test_initialize_reconciles_stuck_runs(self, test_db, make_scheduler):
        stuck = test_db.job_runs.create_running("refresh", started_at=utcnow() - timedelta(hours=2))
        scheduler = make_scheduler(enabled=True)
        try:
            scheduler.initialize()
        finally:
            scheduler.shutdown()
        assert test_db.get_job_run(stuck).status == JobStatus.FAILED


class TestStatus:
    @pytest.mark.asyncio
    async def test_status_before_any_run(self, make_scheduler):
        scheduler = make_scheduler(enabled=True)
        try:
            scheduler.initialize()
            status = scheduler.status()
        finally:
            scheduler.shutdown()

        assert status["enabled"] is True
        jobs = {job["name"]: job for job in status["jobs"]}
        assert jobs["refresh"]["schedule"] == "*/30 * * * *"
        assert jobs["refresh"]["schedule_description"] == "Every 30 minutes"
        assert jobs["cleanup"]["schedule_description"] == "Daily at 3:00 AM"
        assert jobs["refresh"]["next_run_at"] is not None
        assert jobs["refresh"]["last_run_at"] is None
        assert jobs["refresh"]["running"] is False

    @pytest.mark.asyncio
    async def test_status_reflects_last_run(self, make_scheduler):
        scheduler = make_scheduler()
        await scheduler.trigger_manually("cleanup", wait=True)

        jobs = {job["name"]: job for job in scheduler.status()["jobs"]}
        assert jobs["cleanup"]["last_status"] == "SUCCEEDED"
        assert jobs["cleanup"]["last_run_at"] is not None
        assert jobs["cleanup"]["next_run_at"] is None
        assert jobs["refresh"]["last_status"] is None


class TestTriggerManually:
    @pytest.mark.asyncio
    async def test_unknown_job(self, make_scheduler):
        scheduler = make_scheduler()
        with pytest.raises(UnknownJobError):
            await scheduler.trigger_manually("reindex")

    @pytest.mark.asyncio
    async def test_rejected_while_running(self, test_db, make_scheduler):
        scheduler = make_scheduler()
        scheduler.executor.locks.acquire("refresh")

        with pytest.raises(JobAlreadyRunningError):
            await scheduler.trigger_manually("refresh")
        assert test_db.get_job_history("refresh") == []

    @pytest.mark.asyncio
    async def test_works_when_scheduling_disabled(self, make_scheduler):
        scheduler = make_scheduler(enabled=False)
        run = await scheduler.trigger_manually("refresh", wait=True)
        assert run.status == JobStatus.SUCCEEDED
        assert run.triggered_by == JobTrigger.MANUAL

    @pytest.mark.asyncio
    async def test_background_run_returns_running_row(self, test_db, make_scheduler):
        scheduler = make_scheduler()
        run = await scheduler.trigger_manually("cleanup")
        assert run.status == JobStatus.RUNNING

        await next(iter(scheduler._tasks))
        assert test_db.get_job_run(run.id).status == JobStatus.SUCCEEDED


class TestRefreshJob:
    @pytest.mark.asyncio
    async def test_partial_failure_still_succeeds(self, test_db, fake_parser, make_item, make_scheduler):
        urls = [f"https://feed{n}.example.com/rss" for n in range(3)]
        ids = [test_db.add_source(url) for url in urls]
        fake_parser.set_items(urls[0], [_recent(make_item, 1), _recent(make_item, 2)])
        fake_parser.set_items(urls[1], [_recent(make_item, 3)])
        fake_parser.fail(urls[2], FeedTransportError("HTTP 503 fetching feed"))

        run = await make_scheduler().trigger_manually("refresh", wait=True)

        assert run.status == JobStatus.SUCCEEDED
        assert run.stats["total_sources"] == 3
        assert run.stats["succeeded"] == 2
        assert run.stats["failed"] == 1
        assert run.stats["new_items"] == 3
        assert len(run.stats["errors"]) == 1
        assert "HTTP 503" in run.stats["errors"][0]
        assert any(entry["level"] == "warn" for entry in run.logs)
        assert test_db.get_source(ids[0]).last_fetched_at is not None
        assert test_db.get_source(ids[1]).last_fetched_at is not None
        failed = test_db.get_source(ids[2])
        assert failed.last_fetched_at is None
        assert failed.error_count == 1

    @pytest.mark.asyncio
    async def test_only_due_sources_are_refreshed(self, test_db, fake_parser, make_scheduler):
        fresh = test_db.add_source("https://fresh.example.com/rss")
        stale = test_db.add_source("https://stale.example.com/rss")
        test_db.sources.mark_fetched(fresh)
        fake_parser.set_items("https://fresh.example.com/rss", [])
        fake_parser.set_items("https://stale.example.com/rss", [])

        run = await make_scheduler().trigger_manually("refresh", wait=True)

        assert run.stats["total_sources"] == 1
        assert fake_parser.calls == ["https://stale.example.com/rss"]
        assert test_db.get_source(stale).last_fetched_at is not None

    @pytest.mark.asyncio
    async def test_failing_sources_are_skipped(self, test_db, fake_parser, make_scheduler):
        broken = test_db.add_source("https://broken.example.com/rss")
        for _ in range(10):
            test_db.sources.record_error(broken, "HTTP 500")

        run = await make_scheduler().trigger_manually("refresh", wait=True)

        assert run.stats["total_sources"] == 0
        assert fake_parser.calls == []

    @pytest.mark.asyncio
    async def test_subscribers_are_notified(self, test_db, fake_parser, make_item, make_scheduler):
        url = "https://news.example.com/rss"
        source_id = test_db.add_source(url, "News")
        test_db.subscriptions.subscribe(5, source_id)
        fake_parser.set_items(url, [_recent(make_item, 1), _recent(make_item, 2)])

        await make_scheduler().trigger_manually("refresh", wait=True)

        notifications = test_db.notifications.get_for_user(5)
        assert len(notifications) == 1
        assert notifications[0].title == "News updated"
        assert notifications[0].message == "2 new items"


class TestIsDue:
    NOW = datetime(2026, 5, 1, 12, 0, tzinfo=timezone.utc)

    def _source(self, test_db, last_fetched_at):
        source = test_db.get_source(test_db.add_source("https://example.com/rss"))
        source.last_fetched_at = last_fetched_at
        return source

    def test_never_fetched(self, test_db):
        assert is_due(self._source(test_db, None), 60, self.NOW)

    def test_interval_elapsed(self, test_db):
        assert is_due(self._source(test_db, self.NOW - timedelta(minutes=61)), 60, self.NOW)

    def test_interval_not_elapsed(self, test_db):
        assert not is_due(self._source(test_db, self.NOW - timedelta(minutes=10)), 60, self.NOW)


class TestCleanupJob:
    @pytest.mark.asyncio
    async def test_applies_resolved_retention(self, test_db, add_items, make_scheduler):
        limited = test_db.add_source("https://limited.example.com/rss")
        unlimited = test_db.add_source("https://unlimited.example.com/rss")
        test_db.update_source_settings(limited, SettingsOverrides(max_items=5))
        add_items(limited, 8)
        add_items(unlimited, 8)

        run = await make_scheduler(DEFAULT_MAX_ITEMS=None).trigger_manually("cleanup", wait=True)

        assert run.status == JobStatus.SUCCEEDED
        assert run.stats["sources"] == 2
        assert run.stats["deleted"] == 3
        assert run.stats["vacuum_run"] is False
        assert test_db.items.count_for_source(limited) == 5
        assert test_db.items.count_for_source(unlimited) == 8

    @pytest.mark.asyncio
    async def test_large_delete_triggers_vacuum(self, test_db, add_items, make_scheduler):
        source_id = test_db.add_source("https://busy.example.com/rss")
        test_db.update_source_settings(source_id, SettingsOverrides(max_items=1))
        add_items(source_id, 120)

        run = await make_scheduler().trigger_manually("cleanup", wait=True)

        assert run.stats["deleted"] == 119
        assert run.stats["vacuum_run"] is True


class TestHistoryAndReconcile:
    @pytest.mark.asyncio
    async def test_history_newest_first(self, make_scheduler):
        scheduler = make_scheduler()
        first = await scheduler.trigger_manually("cleanup", wait=True)
        second = await scheduler.trigger_manually("refresh", wait=True)

        assert [run.id for run in scheduler.history()] == [second.id, first.id]
        assert [run.id for run in scheduler.history("cleanup")] == [first.id]
        assert scheduler.history(limit=1, offset=1)[0].id == first.id

    def test_history_unknown_job(self, make_scheduler):
        with pytest.raises(UnknownJobError):
            make_scheduler().history("reindex")

    def test_reconcile(self, test_db, make_scheduler):
        stuck = test_db.job_runs.create_running("cleanup", started_at=utcnow() - timedelta(minutes=45))
        assert make_scheduler().reconcile() == [stuck]
