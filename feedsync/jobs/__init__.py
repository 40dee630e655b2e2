"""
Scheduled jobs: tracked single-flight execution, cron triggers, and the batch
refresh and cleanup job bodies.
"""

from .cleanup_job import CleanupJob
from .executor import JobExecutor, JobOutcome, RunHandle
from .locks import InMemoryLockProvider, LeaseLockProvider, LockProvider
from .refresh_job import RefreshJob
from .scheduler import ScheduledJob, Scheduler, build_scheduler

__all__ = [
    "CleanupJob",
    "InMemoryLockProvider",
    "JobExecutor",
    "JobOutcome",
    "LeaseLockProvider",
    "LockProvider",
    "RefreshJob",
    "RunHandle",
    "ScheduledJob",
    "Scheduler",
    "build_scheduler",
]
