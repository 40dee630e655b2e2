"""
Job scheduler: recurring triggers for the refresh and cleanup jobs, manual
triggers, status and run history.

Scheduling is done by an APScheduler AsyncIOScheduler running on the
application's event loop; every run goes through the JobExecutor, so
scheduled and manual runs of the same job exclude each other.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import timezone
from typing import TYPE_CHECKING, Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from ..config import Config, config
from ..database import Database
from ..database.models import DBJobRun, JobStatus, JobTrigger
from ..exceptions import JobAlreadyRunningError, UnknownJobError
from ..notification_service import NotificationService
from ..services.cleanup_service import CleanupPolicy
from ..services.refresh_service import RefreshPipeline
from ..services.settings_service import SettingsResolver, SystemDefaults
from .cleanup_job import CleanupJob
from .cron import build_trigger, describe_schedule
from .executor import JobExecutor, JobFn
from .refresh_job import RefreshJob

if TYPE_CHECKING:
    from ..embeddings import EmbeddingQueue
    from ..feeds import FeedParser

logger = logging.getLogger(__name__)

RECONCILE_JOB_ID = "reconcile-stuck-runs"


@dataclass
class ScheduledJob:
    name: str
    schedule: str
    body: JobFn


class Scheduler:
    """Owns the recurring triggers and the manual entry points for named jobs."""

    def __init__(
        self,
        db: Database,
        executor: JobExecutor,
        jobs: list[ScheduledJob],
        enabled: bool = True,
        reconcile_interval_minutes: int = 5,
    ):
        self.db = db
        self.executor = executor
        self.jobs = {job.name: job for job in jobs}
        self.enabled = enabled
        self.reconcile_interval_minutes = reconcile_interval_minutes
        self._aps: AsyncIOScheduler | None = None
        self._tasks: set[asyncio.Task] = set()

    @property
    def initialized(self) -> bool:
        return self._aps is not None

    # ─────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────

    def initialize(self) -> bool:
        """
        Register the recurring triggers and start scheduling.

        Safe to call more than once. Does nothing when scheduled jobs are
        disabled. Must be called from within the running event loop.
        """
        if not self.enabled:
            logger.info("Scheduled jobs are disabled")
            return False
        if self._aps is not None:
            return True

        self.reconcile()

        aps = AsyncIOScheduler(
            event_loop=asyncio.get_running_loop(),
            timezone=timezone.utc,
            job_defaults={
                "coalesce": True,  # Collapse missed runs into one
                "max_instances": 1,
                "misfire_grace_time": 300,
            },
        )
        for job in self.jobs.values():
            aps.add_job(
                self._run_scheduled,
                trigger=build_trigger(job.schedule),
                id=job.name,
                name=f"{job.name} ({describe_schedule(job.schedule)})",
                args=[job.name],
                replace_existing=True,
            )
        aps.add_job(
            self._reconcile_scheduled,
            trigger=IntervalTrigger(minutes=self.reconcile_interval_minutes, timezone=timezone.utc),
            id=RECONCILE_JOB_ID,
            replace_existing=True,
        )
        aps.start()
        self._aps = aps

        for job in aps.get_jobs():
            logger.info(f"Scheduled job: {job.id} - next run: {job.next_run_time}")
        return True

    def shutdown(self):
        """Stop scheduling and cancel manual runs still in flight."""
        if self._aps is not None:
            self._aps.shutdown(wait=False)
            self._aps = None
            logger.info("Scheduler shutdown complete")
        for task in list(self._tasks):
            task.cancel()

    # ─────────────────────────────────────────────────────────────
    # Runs
    # ─────────────────────────────────────────────────────────────

    async def _run_scheduled(self, job_name: str):
        job = self.jobs[job_name]
        try:
            await self.executor.execute(job_name, job.body, JobTrigger.SCHEDULER)
        except JobAlreadyRunningError:
            logger.info(f"Job already running, skipping: {job_name}")

    async def _reconcile_scheduled(self):
        self.reconcile()

    async def trigger_manually(self, job_name: str, wait: bool = False) -> DBJobRun:
        """
        Start a run of job_name now.

        Returns the RUNNING row (or the finished run when wait is set).
        Raises UnknownJobError or JobAlreadyRunningError.
        """
        job = self.jobs.get(job_name)
        if job is None:
            raise UnknownJobError(job_name)

        handle = self.executor.start(job_name, JobTrigger.MANUAL)
        logger.info(f"Manually triggered job: {job_name}", extra={"data": {"run_id": handle.run_id}})
        if wait:
            return await self.executor.run(handle, job.body)

        task = asyncio.create_task(self.executor.run(handle, job.body))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return self.db.job_runs.get(handle.run_id)

    def reconcile(self) -> list[int]:
        """Fail runs stuck in RUNNING past the timeout."""
        return self.executor.reconcile_stuck_runs()

    # ─────────────────────────────────────────────────────────────
    # Introspection
    # ─────────────────────────────────────────────────────────────

    def status(self) -> dict[str, Any]:
        jobs = []
        for job in self.jobs.values():
            latest = self.db.job_runs.get_latest(job.name)
            next_run_at = None
            if self._aps is not None:
                aps_job = self._aps.get_job(job.name)
                next_run_at = aps_job.next_run_time if aps_job else None
            jobs.append({
                "name": job.name,
                "schedule": job.schedule,
                "schedule_description": describe_schedule(job.schedule),
                "last_run_at": latest.started_at if latest else None,
                "next_run_at": next_run_at,
                "running": self.executor.is_running(job.name)
                or (latest is not None and latest.status == JobStatus.RUNNING),
                "last_status": latest.status.value if latest else None,
                "last_error": latest.error_message if latest else None,
                "last_duration_ms": latest.duration_ms if latest else None,
            })
        return {
            "enabled": self.enabled,
            "initialized": self.initialized,
            "jobs": jobs,
        }

    def history(self, job_name: str | None = None, limit: int = 20, offset: int = 0) -> list[DBJobRun]:
        """Runs newest first, including their captured logs."""
        if job_name is not None and job_name not in self.jobs:
            raise UnknownJobError(job_name)
        return self.db.job_runs.get_history(job_name=job_name, limit=limit, offset=offset)


def build_scheduler(
    db: Database,
    feed_parser: "FeedParser",
    embedding_queue: "EmbeddingQueue | None" = None,
    settings: Config = config,
) -> Scheduler:
    """Wire the refresh and cleanup jobs from configuration."""
    resolver = SettingsResolver(db, SystemDefaults.from_config(settings))
    cleanup = CleanupPolicy(db)
    pipeline = RefreshPipeline(
        db,
        feed_parser,
        resolver=resolver,
        cleanup=cleanup,
        embedding_queue=embedding_queue,
        auto_enqueue=settings.EMBEDDING_AUTO_ENQUEUE,
    )
    refresh_job = RefreshJob(
        db,
        pipeline,
        resolver=resolver,
        notifier=NotificationService(db),
        max_concurrent=settings.REFRESH_CONCURRENCY,
        max_source_errors=settings.MAX_SOURCE_ERRORS,
    )
    cleanup_job = CleanupJob(db, cleanup=cleanup, resolver=resolver)
    executor = JobExecutor(db, stuck_timeout_minutes=settings.STUCK_RUN_TIMEOUT_MINUTES)

    return Scheduler(
        db,
        executor,
        jobs=[
            ScheduledJob(RefreshJob.name, settings.REFRESH_SCHEDULE, refresh_job),
            ScheduledJob(CleanupJob.name, settings.CLEANUP_SCHEDULE, cleanup_job),
        ],
        enabled=settings.ENABLE_SCHEDULED_JOBS,
        reconcile_interval_minutes=settings.STUCK_RUN_CHECK_MINUTES,
    )
