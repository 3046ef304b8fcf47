"""
Retry Controller for the job queue.

Decides what happens to a job after a failed attempt:
- attempts < max_attempts: back to QUEUED with an exponential delay
- attempts >= max_attempts: terminal FAILED (kept for the retention window)

What RetryController MUST NOT do:
- Execute jobs
- Touch test runs or findings
"""

import logging
from datetime import timedelta
from typing import Optional

from .entities import (
    Clock,
    Job,
    NackOutcome,
    SystemClock,
    to_iso,
)
from .persistence import PersistenceAdapter


logger = logging.getLogger(__name__)


# Default retry configuration
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BASE_DELAY_SECONDS = 5


class RetryController:
    """
    Applies the retry policy to failed attempts.

    Backoff calculation:
        delay = base_delay * (2 ^ (attempts - 1))
        Example with 5s base: 5s -> 10s -> 20s
    """

    def __init__(
        self,
        persistence: PersistenceAdapter,
        clock: Optional[Clock] = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        base_delay_seconds: int = DEFAULT_BASE_DELAY_SECONDS,
    ):
        """
        Initialize RetryController.

        Args:
            persistence: PersistenceAdapter for storage
            clock: Time source (defaults to system UTC clock)
            max_attempts: Default cap for new jobs
            base_delay_seconds: Base delay for exponential backoff
        """
        self.persistence = persistence
        self.clock = clock or SystemClock()
        self.max_attempts = max_attempts
        self.base_delay_seconds = base_delay_seconds

    def calculate_backoff(self, attempts: int) -> int:
        """
        Delay before the next attempt, given how many attempts already ran.

        Formula: delay = base_delay * (2 ^ (attempts - 1))
        """
        return self.base_delay_seconds * (2 ** max(attempts - 1, 0))

    def should_retry(self, job: Job) -> bool:
        return job.attempts < job.max_attempts

    def on_job_failed(self, job: Job, reason: str) -> NackOutcome:
        """
        Handle a failed attempt of a RUNNING job.

        Args:
            job: The job as last read (status RUNNING). The update only
                applies while the job is still held by that claim.
            reason: Error text recorded as last_error

        Returns:
            NackOutcome describing whether the job will run again
        """
        now = self.clock.now()
        claim = (job.claimed_by, job.attempts)

        if not self.should_retry(job):
            self.persistence.fail_job(job.job_id, reason, to_iso(now), claim)
            logger.warning(
                f"Job {job.job_id} failed permanently after "
                f"{job.attempts}/{job.max_attempts} attempts: {reason}"
            )
            return NackOutcome(
                job_id=job.job_id,
                retried=False,
                attempts=job.attempts,
                max_attempts=job.max_attempts,
            )

        delay = self.calculate_backoff(job.attempts)
        available_at = to_iso(now + timedelta(seconds=delay))
        self.persistence.requeue_job(job.job_id, reason, available_at, claim)

        logger.info(
            f"Job {job.job_id} requeued (attempt {job.attempts}/{job.max_attempts} failed, "
            f"retry in {delay}s): {reason}"
        )
        return NackOutcome(
            job_id=job.job_id,
            retried=True,
            attempts=job.attempts,
            max_attempts=job.max_attempts,
            next_available_at=available_at,
            delay_seconds=delay,
        )
