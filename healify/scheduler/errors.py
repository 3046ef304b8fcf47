"""
Scheduler-specific exceptions.
"""


class SchedulerError(Exception):
    """Base exception for all scheduler errors."""
    pass


class QueueUnavailableError(SchedulerError):
    """
    Raised when the queue backend cannot be reached.

    enqueue() surfaces this to the caller as "not queued"; nothing is
    dropped silently.
    """
    pass


class InvalidOperationError(SchedulerError):
    """
    Raised when an operation does not apply to the job's current state.

    Examples:
    - ack() on a job that is not RUNNING
    - cancel() on a job that was already claimed
    """
    pass


class JobNotFoundError(SchedulerError):
    """Raised when a requested job does not exist."""

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job not found: {job_id}")


class ConcurrencyViolationError(SchedulerError):
    """
    Raised when a concurrent modification is detected.

    Used for atomic claim operations where the job was already claimed
    by another worker.
    """

    def __init__(self, job_id: str, expected_status: str, actual_status: str):
        self.job_id = job_id
        self.expected_status = expected_status
        self.actual_status = actual_status
        super().__init__(
            f"Concurrency violation for job {job_id}: "
            f"expected status '{expected_status}', got '{actual_status}'"
        )
