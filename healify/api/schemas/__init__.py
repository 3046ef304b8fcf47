"""
API Schemas package.

Pydantic models for request/response validation.
"""

from .jobs import (
    JobCreateRequest,
    JobCreateResponse,
    JobStatusResponse,
    ResultsSummary,
)
from .heal import HealRequest, HealResponse
from .scheduler import (
    SchedulerStartRequest,
    SchedulerStartResponse,
    SchedulerStopRequest,
    SchedulerStopResponse,
    SchedulerStatusResponse,
)

__all__ = [
    "JobCreateRequest",
    "JobCreateResponse",
    "JobStatusResponse",
    "ResultsSummary",
    "HealRequest",
    "HealResponse",
    "SchedulerStartRequest",
    "SchedulerStartResponse",
    "SchedulerStopRequest",
    "SchedulerStopResponse",
    "SchedulerStatusResponse",
]
