"""
Durable job queue and worker pool.

SQLite-backed queue with idempotent enqueue per test run, atomic claims
with leases, exponential-backoff retries, lease recovery and retention.
"""

from .entities import (
    JobStatus,
    Job,
    JobSpec,
    JobHandle,
    NackOutcome,
    QueueStatus,
)
from .errors import (
    SchedulerError,
    QueueUnavailableError,
    InvalidOperationError,
    JobNotFoundError,
    ConcurrencyViolationError,
)
from .persistence import PersistenceAdapter
from .queue_manager import QueueManager
from .dispatcher import Dispatcher, DispatcherState
from .retry_controller import RetryController
from .recovery import RecoveryManager
from .service import SchedulerService, EnqueueResult, StatusView

__all__ = [
    # Entities
    "JobStatus",
    "Job",
    "JobSpec",
    "JobHandle",
    "NackOutcome",
    "QueueStatus",
    # Errors
    "SchedulerError",
    "QueueUnavailableError",
    "InvalidOperationError",
    "JobNotFoundError",
    "ConcurrencyViolationError",
    # Persistence
    "PersistenceAdapter",
    # Queue
    "QueueManager",
    # Dispatcher
    "Dispatcher",
    "DispatcherState",
    # Retry
    "RetryController",
    # Recovery
    "RecoveryManager",
    # Service
    "SchedulerService",
    "EnqueueResult",
    "StatusView",
]
