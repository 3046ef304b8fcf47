"""
Queue Manager for the job queue.

Public queue contract used by the API and the worker pool:
- enqueue(spec) -> JobHandle          idempotent per test_run_id
- claim_next(worker_id) -> Job | None exclusive, respects backoff delays
- ack(job_id)                         RUNNING -> COMPLETED
- nack(job_id, reason) -> NackOutcome retry with backoff or terminal FAILED
  (both accept claimed_by + attempt; a stale claim is rejected)
- status(job_id) -> QueueStatus

What QueueManager MUST NOT do:
- Execute jobs
- Decide retry policy (RetryController's responsibility)
"""

import logging
from datetime import timedelta
from typing import Callable, Optional, Tuple

from .entities import (
    Clock,
    Job,
    JobHandle,
    JobSpec,
    JobStatus,
    NackOutcome,
    QueueStatus,
    SystemClock,
    generate_uuid,
    to_iso,
)
from .errors import (
    ConcurrencyViolationError,
    InvalidOperationError,
    JobNotFoundError,
)
from .persistence import PersistenceAdapter
from .retry_controller import RetryController


logger = logging.getLogger(__name__)


DEFAULT_LEASE_SECONDS = 1200
MAX_CLAIM_ATTEMPTS = 5


class QueueManager:
    """
    Durable FIFO queue of test-run jobs.

    Ordering: oldest available_at first, then creation order. A requeued
    job moves behind jobs that became eligible before its backoff ended.
    """

    def __init__(
        self,
        persistence: PersistenceAdapter,
        retry_controller: Optional[RetryController] = None,
        clock: Optional[Clock] = None,
        id_factory: Callable[[], str] = generate_uuid,
        lease_seconds: int = DEFAULT_LEASE_SECONDS,
    ):
        """
        Initialize QueueManager.

        Args:
            persistence: PersistenceAdapter for storage
            retry_controller: Retry policy (a default one is built if omitted)
            clock: Time source (defaults to system UTC clock)
            id_factory: Generates job IDs
            lease_seconds: How long a claim stays valid without an ack/nack
        """
        self.persistence = persistence
        self.clock = clock or SystemClock()
        self.retry_controller = retry_controller or RetryController(persistence, clock=self.clock)
        self.id_factory = id_factory
        self.lease_seconds = lease_seconds

    def _now(self) -> str:
        return to_iso(self.clock.now())

    # =========================================================================
    # Enqueue
    # =========================================================================

    def enqueue(self, spec: JobSpec) -> JobHandle:
        """
        Add a job for a test run.

        Re-enqueuing a test run whose job is still QUEUED or RUNNING returns
        the existing handle (created=False). A terminal job is replaced.

        Raises:
            QueueUnavailableError: If the backend cannot be reached
        """
        now = self._now()
        job = Job(
            job_id=self.id_factory(),
            test_run_id=spec.test_run_id,
            project_id=spec.project_id,
            commit_ref=spec.commit_ref,
            metadata=dict(spec.metadata or {}),
            status=JobStatus.QUEUED,
            max_attempts=self.retry_controller.max_attempts,
            available_at=now,
            created_at=now,
        )

        stored, created = self.persistence.create_or_get_job(job)

        if created:
            logger.info(f"Enqueued job {stored.job_id} for test run {spec.test_run_id}")
        else:
            logger.info(
                f"Test run {spec.test_run_id} already has active job "
                f"{stored.job_id} ({stored.status.value}), not enqueuing again"
            )

        return JobHandle(
            job_id=stored.job_id,
            test_run_id=stored.test_run_id,
            created=created,
            status=stored.status,
        )

    # =========================================================================
    # Claim / Ack / Nack
    # =========================================================================

    def claim_next(self, worker_id: str) -> Optional[Job]:
        """
        Claim the next eligible job for a worker.

        Losing a race to another worker is not an error; the next candidate
        is tried instead.

        Returns:
            The claimed RUNNING job, or None if nothing is eligible
        """
        for _ in range(MAX_CLAIM_ATTEMPTS):
            now_dt = self.clock.now()
            now = to_iso(now_dt)

            job_id = self.persistence.get_next_eligible_job_id(now)
            if job_id is None:
                return None

            lease_expires_at = to_iso(now_dt + timedelta(seconds=self.lease_seconds))
            try:
                job = self.persistence.atomic_claim_job(job_id, worker_id, now, lease_expires_at)
            except (ConcurrencyViolationError, JobNotFoundError) as e:
                logger.debug(f"Claim of {job_id} by {worker_id} lost: {e}")
                continue

            logger.info(
                f"[Job {job.job_id}] Claimed by {worker_id} "
                f"(attempt {job.attempts}/{job.max_attempts}, test run {job.test_run_id})"
            )
            return job

        return None

    def ack(self, job_id: str, claimed_by: Optional[str] = None, attempt: Optional[int] = None) -> Job:
        """
        Mark a RUNNING job as successfully processed.

        With claimed_by and attempt, the ack only lands while the job is
        still held by that claim.

        Raises:
            JobNotFoundError: If the job does not exist
            InvalidOperationError: If the job is not RUNNING or is held by another claim
        """
        claim = self._claim(claimed_by, attempt)
        job = self.persistence.complete_job(job_id, self._now(), claim)
        logger.info(f"[Job {job_id}] Completed")
        return job

    def nack(
        self,
        job_id: str,
        reason: str,
        claimed_by: Optional[str] = None,
        attempt: Optional[int] = None,
    ) -> NackOutcome:
        """
        Report a failed attempt.

        Raises:
            JobNotFoundError: If the job does not exist
            InvalidOperationError: If the job is not RUNNING or is held by another claim
        """
        claim = self._claim(claimed_by, attempt)
        job = self.persistence.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        if job.status != JobStatus.RUNNING:
            raise InvalidOperationError(
                f"Cannot nack job {job_id} in {job.status.value} state"
            )
        if claim is not None and claim != (job.claimed_by, job.attempts):
            raise InvalidOperationError(
                f"Cannot nack job {job_id}: held by {job.claimed_by} (attempt {job.attempts}), "
                f"not by {claimed_by} (attempt {attempt})"
            )
        return self.retry_controller.on_job_failed(job, reason)

    @staticmethod
    def _claim(claimed_by: Optional[str], attempt: Optional[int]) -> Optional[Tuple[str, int]]:
        if claimed_by is None and attempt is None:
            return None
        if claimed_by is None or attempt is None:
            raise ValueError("claimed_by and attempt must be given together")
        return (claimed_by, attempt)

    def update_progress(self, job_id: str, progress: int) -> bool:
        """Record progress (0-100) for a RUNNING job."""
        progress = max(0, min(100, int(progress)))
        return self.persistence.update_progress(job_id, progress)

    def cancel(self, job_id: str) -> Job:
        """
        Cancel a QUEUED job.

        RUNNING jobs are not preempted.
        """
        job = self.persistence.cancel_job(job_id, self._now())
        logger.info(f"[Job {job_id}] Cancelled")
        return job

    # =========================================================================
    # Queries
    # =========================================================================

    def status(self, job_id: str) -> QueueStatus:
        """
        Externally visible state of a job.

        Raises:
            JobNotFoundError: If the job does not exist (or was pruned)
        """
        job = self.persistence.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return QueueStatus(state=job.status, progress=job.progress, last_error=job.last_error)

    def get_job(self, job_id: str) -> Optional[Job]:
        return self.persistence.get_job(job_id)

    def get_job_for_test_run(self, test_run_id: str) -> Optional[Job]:
        return self.persistence.get_job_by_test_run(test_run_id)

    def list_queued(self, limit: int = 100) -> list[Job]:
        return self.persistence.list_jobs_by_status(JobStatus.QUEUED, limit=limit)

    def list_running(self, limit: int = 100) -> list[Job]:
        return self.persistence.list_jobs_by_status(JobStatus.RUNNING, limit=limit)

    def count_queued(self) -> int:
        return self.persistence.count_jobs_by_status(JobStatus.QUEUED)

    def count_running(self) -> int:
        return self.persistence.count_jobs_by_status(JobStatus.RUNNING)
