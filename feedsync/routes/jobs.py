"""
Job routes: scheduler status, run history, manual triggers, reconciliation.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query

from ..config import get_scheduler
from ..exceptions import JobAlreadyRunningError, UnknownJobError
from ..jobs.scheduler import Scheduler
from ..schemas import (
    JobRunResponse,
    JobStatusEntry,
    ReconcileResponse,
    SchedulerStatusResponse,
    TriggerJobRequest,
    TriggerJobResponse,
)

router = APIRouter(prefix="/jobs", tags=["jobs"])


@router.get("/status")
async def job_status(
    scheduler: Annotated[Scheduler, Depends(get_scheduler)]
) -> SchedulerStatusResponse:
    """Scheduler state and per-job last/next run."""
    status = scheduler.status()
    return SchedulerStatusResponse(
        enabled=status["enabled"],
        initialized=status["initialized"],
        jobs=[JobStatusEntry.from_status(entry) for entry in status["jobs"]],
    )


@router.get("/history")
async def job_history(
    scheduler: Annotated[Scheduler, Depends(get_scheduler)],
    job_name: str | None = None,
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
) -> list[JobRunResponse]:
    """Recent runs, newest first, with captured logs."""
    try:
        runs = scheduler.history(job_name=job_name, limit=limit, offset=offset)
    except UnknownJobError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return [JobRunResponse.from_db(run) for run in runs]


@router.post("/trigger", status_code=202)
async def trigger_job(
    request: TriggerJobRequest,
    scheduler: Annotated[Scheduler, Depends(get_scheduler)],
) -> TriggerJobResponse:
    """Start a job now. 409 if a run of the same job is in progress."""
    try:
        run = await scheduler.trigger_manually(request.job_name)
    except UnknownJobError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except JobAlreadyRunningError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return TriggerJobResponse(accepted=True, run=JobRunResponse.from_db(run, include_logs=False))


@router.post("/reconcile")
async def reconcile_jobs(
    scheduler: Annotated[Scheduler, Depends(get_scheduler)]
) -> ReconcileResponse:
    """Fail runs stuck in RUNNING past the timeout."""
    run_ids = scheduler.reconcile()
    return ReconcileResponse(reconciled=len(run_ids), run_ids=run_ids)
