"""
Scheduler Domain Entities.

- JobSpec: What a caller asks to have executed for one test run
- Job: Durable unit of work, one row per test run
- JobHandle: Result of an enqueue call
- NackOutcome: Result of reporting a failed attempt
- QueueStatus: Externally visible job state

Timestamps are UTC ISO-8601 strings with a fixed-width format so that
SQLite string comparison orders them correctly.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Protocol
import uuid


ISO_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


class JobStatus(str, Enum):
    """
    Job status values.

    - QUEUED: Waiting for a worker (possibly delayed by backoff)
    - RUNNING: Claimed by a worker, lease active
    - COMPLETED: Acked by the worker
    - FAILED: Retries exhausted
    - CANCELLED: Withdrawn before a worker claimed it
    """

    QUEUED = "QUEUED"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


ACTIVE_JOB_STATUSES = frozenset({JobStatus.QUEUED, JobStatus.RUNNING})
TERMINAL_JOB_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})


def generate_uuid() -> str:
    """Generate a new UUID string."""
    return str(uuid.uuid4())


def to_iso(value: datetime) -> str:
    """Format a datetime as a UTC ISO string (naive values are taken as UTC)."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime(ISO_FORMAT)


def from_iso(value: str) -> datetime:
    """Parse a string produced by to_iso()."""
    return datetime.strptime(value, ISO_FORMAT).replace(tzinfo=timezone.utc)


class Clock(Protocol):
    """Time source injected into queue components."""

    def now(self) -> datetime:
        ...


class SystemClock:
    """Wall-clock time in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


@dataclass
class JobSpec:
    """
    Request to execute the test suite of a project at a commit.

    metadata carries branch, commit_message, commit_author and repository.
    """

    project_id: str
    commit_ref: str
    test_run_id: str
    metadata: dict = field(default_factory=dict)


@dataclass
class Job:
    """A durable unit of work. Identity for deduplication is test_run_id."""

    job_id: str
    test_run_id: str
    project_id: str
    commit_ref: str
    status: JobStatus
    available_at: str
    created_at: str
    metadata: dict = field(default_factory=dict)
    attempts: int = 0
    max_attempts: int = 3
    progress: int = 0
    last_error: Optional[str] = None
    claimed_by: Optional[str] = None
    lease_expires_at: Optional[str] = None
    started_at: Optional[str] = None
    finished_at: Optional[str] = None

    def is_terminal(self) -> bool:
        return self.status in TERMINAL_JOB_STATUSES

    def is_active(self) -> bool:
        return self.status in ACTIVE_JOB_STATUSES

    @property
    def branch(self) -> Optional[str]:
        return self.metadata.get("branch")

    @property
    def repository(self) -> Optional[str]:
        return self.metadata.get("repository")


@dataclass(frozen=True)
class JobHandle:
    """Handle returned by enqueue. created is False when an active job was reused."""

    job_id: str
    test_run_id: str
    created: bool
    status: JobStatus = JobStatus.QUEUED


@dataclass(frozen=True)
class NackOutcome:
    """
    What happened to a job after a failed attempt.

    retried=True means the job was put back in the queue and becomes
    eligible at next_available_at. retried=False means it is terminally FAILED.
    """

    job_id: str
    retried: bool
    attempts: int
    max_attempts: int
    next_available_at: Optional[str] = None
    delay_seconds: Optional[int] = None

    @property
    def dead(self) -> bool:
        return not self.retried


@dataclass(frozen=True)
class QueueStatus:
    """Externally visible state of a job."""

    state: JobStatus
    progress: int
    last_error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "state": self.state.value,
            "progress": self.progress,
            "last_error": self.last_error,
        }
