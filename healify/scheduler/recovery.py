"""
Recovery Manager for the job queue.

- Requeues (or fails) RUNNING jobs whose lease expired, which covers a
  worker process that crashed or hung mid-job
- Prunes terminal jobs past their retention window

Runs once on startup and then periodically from the dispatcher's
maintenance loop. Recovery is idempotent: running it twice in a row
changes nothing the second time.
"""

import logging
from datetime import timedelta
from typing import Callable, Optional

from .entities import Clock, Job, NackOutcome, SystemClock, to_iso
from .errors import SchedulerError
from .persistence import PersistenceAdapter
from .queue_manager import QueueManager


logger = logging.getLogger(__name__)


LEASE_EXPIRED_REASON = "Job lease expired (worker crashed or exceeded the job timeout)"

DEFAULT_COMPLETED_KEEP_COUNT = 100
DEFAULT_COMPLETED_KEEP_SECONDS = 3600
DEFAULT_FAILED_KEEP_SECONDS = 7 * 24 * 3600


class RecoveryManager:
    """Handles crash recovery and retention."""

    def __init__(
        self,
        persistence: PersistenceAdapter,
        queue_manager: QueueManager,
        clock: Optional[Clock] = None,
        completed_keep_count: int = DEFAULT_COMPLETED_KEEP_COUNT,
        completed_keep_seconds: int = DEFAULT_COMPLETED_KEEP_SECONDS,
        failed_keep_seconds: int = DEFAULT_FAILED_KEEP_SECONDS,
    ):
        self.persistence = persistence
        self.queue_manager = queue_manager
        self.clock = clock or queue_manager.clock or SystemClock()
        self.completed_keep_count = completed_keep_count
        self.completed_keep_seconds = completed_keep_seconds
        self.failed_keep_seconds = failed_keep_seconds

        # Notified after a lease-expired job was nacked
        self._on_job_released: Optional[Callable[[Job, NackOutcome], None]] = None

    def set_on_job_released(self, callback: Callable[[Job, NackOutcome], None]) -> None:
        """
        Set callback for jobs released by lease recovery.

        Used to move the job's test run back to PENDING or to FAILED.
        """
        self._on_job_released = callback

    def recover_on_startup(self) -> dict:
        """
        Perform full recovery.

        Returns:
            Recovery statistics
        """
        stats = {
            "expired_leases_requeued": 0,
            "expired_leases_failed": 0,
            "completed_pruned": 0,
            "failed_pruned": 0,
            "errors": [],
        }

        logger.info("Starting queue recovery...")

        try:
            requeued, failed = self.recover_expired_leases()
            stats["expired_leases_requeued"] = requeued
            stats["expired_leases_failed"] = failed
        except SchedulerError as e:
            logger.error(f"Error recovering expired leases: {e}")
            stats["errors"].append(f"Expired leases: {e}")

        try:
            completed, failed = self.prune()
            stats["completed_pruned"] = completed
            stats["failed_pruned"] = failed
        except SchedulerError as e:
            logger.error(f"Error pruning jobs: {e}")
            stats["errors"].append(f"Retention: {e}")

        logger.info(
            f"Recovery complete: "
            f"{stats['expired_leases_requeued']} requeued, "
            f"{stats['expired_leases_failed']} failed, "
            f"{stats['completed_pruned'] + stats['failed_pruned']} pruned"
        )

        return stats

    run_maintenance = recover_on_startup

    def recover_expired_leases(self) -> tuple[int, int]:
        """
        Nack every RUNNING job whose lease has expired.

        Returns:
            (requeued_count, failed_count)
        """
        requeued = 0
        failed = 0
        now = to_iso(self.clock.now())

        for job in self.persistence.get_expired_leases(now):
            logger.warning(
                f"[Job {job.job_id}] Lease held by {job.claimed_by} expired at "
                f"{job.lease_expires_at}"
            )
            try:
                outcome = self.queue_manager.nack(
                    job.job_id, LEASE_EXPIRED_REASON, claimed_by=job.claimed_by, attempt=job.attempts
                )
            except SchedulerError as e:
                # Worker finished between the query and the nack
                logger.info(f"[Job {job.job_id}] Skipping lease recovery: {e}")
                continue

            if outcome.retried:
                requeued += 1
            else:
                failed += 1

            if self._on_job_released is not None:
                try:
                    self._on_job_released(job, outcome)
                except Exception as e:
                    logger.error(f"[Job {job.job_id}] Error in release callback: {e}", exc_info=True)

        return requeued, failed

    def prune(self) -> tuple[int, int]:
        """
        Garbage-collect terminal jobs.

        Returns:
            (completed_pruned, failed_pruned)
        """
        now = self.clock.now()
        completed = self.persistence.delete_completed_jobs(
            finished_before=to_iso(now - timedelta(seconds=self.completed_keep_seconds)),
            keep_count=self.completed_keep_count,
        )
        failed = self.persistence.delete_failed_jobs(
            finished_before=to_iso(now - timedelta(seconds=self.failed_keep_seconds)),
        )
        if completed or failed:
            logger.info(f"Pruned {completed} completed and {failed} failed jobs")
        return completed, failed
