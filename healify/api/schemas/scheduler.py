"""
Scheduler control schemas.
"""

from typing import Optional
from pydantic import BaseModel, Field


class SchedulerStartRequest(BaseModel):
    """Request to start the worker pool."""

    run_recovery: bool = Field(
        default=True,
        description="Whether to recover expired leases and prune old jobs first"
    )


class SchedulerStartResponse(BaseModel):
    """Response from scheduler start."""

    success: bool
    message: str
    recovery_stats: Optional[dict] = Field(
        default=None,
        description="Recovery statistics if recovery was run"
    )


class SchedulerStopRequest(BaseModel):
    """Request to stop the worker pool."""

    timeout: float = Field(
        default=30.0,
        ge=1.0,
        le=300.0,
        description="Maximum wait per worker for its current job (seconds)"
    )


class SchedulerStopResponse(BaseModel):
    """Response from scheduler stop."""

    success: bool
    message: str


class SchedulerStatusResponse(BaseModel):
    """Worker pool and queue status."""

    scheduler_running: bool = Field(..., description="Whether workers are running")
    state: str = Field(..., description="STOPPED / RUNNING / STOPPING")
    concurrency: int = Field(..., description="Number of worker threads")
    current_jobs: dict = Field(default_factory=dict, description="worker_id -> job_id being processed")
    queued_count: int = Field(default=0, description="Number of QUEUED jobs")
    running_count: int = Field(default=0, description="Number of RUNNING jobs")
