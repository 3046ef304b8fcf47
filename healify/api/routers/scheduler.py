"""
Scheduler router.

Control plane for the worker pool under /scheduler/*: start, stop, status.
Workers may also run in a separate `python -m healify worker` process, in
which case this API only enqueues and reports.
"""

from fastapi import APIRouter, HTTPException

from ..schemas.scheduler import (
    SchedulerStartRequest,
    SchedulerStartResponse,
    SchedulerStopRequest,
    SchedulerStopResponse,
    SchedulerStatusResponse,
)
from .._scheduler_state import get_scheduler_service


router = APIRouter()


@router.post("/start", response_model=SchedulerStartResponse)
async def start_scheduler(request: SchedulerStartRequest = SchedulerStartRequest()):
    """
    Start the worker pool in this process.

    Expired leases are recovered first unless run_recovery is false.
    Starting a running pool is a no-op that reports success.
    """
    service = get_scheduler_service()
    if service.is_running:
        return SchedulerStartResponse(success=True, message="Scheduler is already running")

    try:
        stats = service.start(run_recovery=request.run_recovery, blocking=False)
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to start scheduler: {e}")

    workers = service.dispatcher.concurrency
    return SchedulerStartResponse(
        success=True,
        message=f"Scheduler started with {workers} worker{'s' if workers != 1 else ''}",
        recovery_stats=stats or None,
    )


@router.post("/stop", response_model=SchedulerStopResponse)
async def stop_scheduler(request: SchedulerStopRequest = SchedulerStopRequest()):
    """
    Stop the worker pool.

    Jobs in progress are not preempted; each worker gets up to `timeout`
    seconds to finish. A job still running after that keeps its lease and
    is recovered once the lease expires.
    """
    service = get_scheduler_service()
    if not service.is_running:
        return SchedulerStopResponse(success=True, message="Scheduler is already stopped")

    try:
        service.stop(timeout=request.timeout)
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to stop scheduler: {e}")

    return SchedulerStopResponse(success=True, message="Scheduler stopped")


@router.get("/status", response_model=SchedulerStatusResponse)
async def get_scheduler_status():
    """Worker pool state, jobs in progress and queue counts."""
    try:
        status = get_scheduler_service().get_scheduler_status()
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to get scheduler status: {e}")
    return SchedulerStatusResponse(**status)
