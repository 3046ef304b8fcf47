"""
Dispatcher for the job queue.

- Runs a fixed-size pool of worker threads
- Each worker claims the next eligible job and hands it to the processor
- A maintenance thread runs lease recovery and retention periodically

What Dispatcher MUST NOT do:
- Execute the job itself
- Decide retry policy
"""

import logging
import threading
from enum import Enum
from typing import Optional, Protocol

from .entities import Job
from .errors import SchedulerError
from .queue_manager import QueueManager
from .recovery import RecoveryManager


logger = logging.getLogger(__name__)


class DispatcherState(str, Enum):
    """Dispatcher lifecycle states."""

    STOPPED = "STOPPED"
    RUNNING = "RUNNING"
    STOPPING = "STOPPING"


class JobProcessor(Protocol):
    """Protocol for whatever turns a claimed job into ack/nack."""

    def process(self, job: Job) -> None:
        """
        Process a claimed job.

        The processor is responsible for acking or nacking the job.
        """
        ...


class Dispatcher:
    """
    Pulls jobs from the queue and dispatches them to a processor.

    Concurrency is bounded by the number of worker threads. Exclusive
    ownership of a job comes from QueueManager.claim_next, not from the
    dispatcher, so several dispatcher processes may share one queue.
    """

    def __init__(
        self,
        queue_manager: QueueManager,
        recovery_manager: Optional[RecoveryManager] = None,
        concurrency: int = 2,
        poll_interval: float = 1.0,
        maintenance_interval: float = 30.0,
        worker_prefix: str = "worker",
    ):
        """
        Initialize Dispatcher.

        Args:
            queue_manager: QueueManager for queue operations
            recovery_manager: Runs lease recovery and retention (optional)
            concurrency: Number of worker threads
            poll_interval: Seconds between queue polls when idle
            maintenance_interval: Seconds between maintenance passes
            worker_prefix: Prefix for worker IDs recorded on claimed jobs
        """
        self.queue_manager = queue_manager
        self.recovery_manager = recovery_manager
        self.concurrency = max(1, concurrency)
        self.poll_interval = poll_interval
        self.maintenance_interval = maintenance_interval
        self.worker_prefix = worker_prefix

        self._state = DispatcherState.STOPPED
        self._processor: Optional[JobProcessor] = None
        self._threads: list[threading.Thread] = []
        self._stop_event = threading.Event()
        self._lock = threading.Lock()
        self._current_jobs: dict[str, str] = {}

    @property
    def state(self) -> DispatcherState:
        """Get current dispatcher state."""
        return self._state

    @property
    def current_jobs(self) -> dict[str, str]:
        """worker_id -> job_id for jobs being processed right now."""
        with self._lock:
            return dict(self._current_jobs)

    def set_processor(self, processor: JobProcessor) -> None:
        """
        Set the job processor.

        Must be called before starting the dispatcher.
        """
        self._processor = processor

    # =========================================================================
    # Single Dispatch Operation
    # =========================================================================

    def dispatch_one(self, worker_id: str) -> Optional[Job]:
        """
        Claim one job and process it on the calling thread.

        Returns:
            The processed job, or None if nothing was eligible

        Raises:
            RuntimeError: If processor is not set
        """
        if self._processor is None:
            raise RuntimeError("Processor not set. Call set_processor() first.")

        job = self.queue_manager.claim_next(worker_id)
        if job is None:
            return None

        with self._lock:
            self._current_jobs[worker_id] = job.job_id

        try:
            self._processor.process(job)
        except Exception as e:
            logger.error(f"[Job {job.job_id}] Processor raised: {e}", exc_info=True)
            self._release_after_crash(job, e)
        finally:
            with self._lock:
                self._current_jobs.pop(worker_id, None)

        return job

    def _release_after_crash(self, job: Job, error: Exception) -> None:
        """Nack a job the processor failed to ack or nack itself."""
        current = self.queue_manager.get_job(job.job_id)
        if current is None or current.claimed_by != job.claimed_by or not current.is_active():
            return
        try:
            self.queue_manager.nack(
                job.job_id,
                f"Unhandled worker error: {error}",
                claimed_by=job.claimed_by,
                attempt=job.attempts,
            )
        except SchedulerError as e:
            logger.error(f"[Job {job.job_id}] Could not release job: {e}")

    # =========================================================================
    # Dispatch Loop
    # =========================================================================

    def start(self, blocking: bool = False) -> None:
        """
        Start the worker pool.

        Args:
            blocking: If True, block the calling thread until stop() is called.
        """
        if self._state != DispatcherState.STOPPED:
            raise RuntimeError(f"Cannot start dispatcher in {self._state.value} state")

        if self._processor is None:
            raise RuntimeError("Processor not set. Call set_processor() first.")

        self._stop_event.clear()
        self._state = DispatcherState.RUNNING

        self._threads = [
            threading.Thread(
                target=self._worker_loop,
                args=(f"{self.worker_prefix}-{i + 1}",),
                name=f"{self.worker_prefix}-{i + 1}",
                daemon=True,
            )
            for i in range(self.concurrency)
        ]
        if self.recovery_manager is not None:
            self._threads.append(
                threading.Thread(target=self._maintenance_loop, name="maintenance", daemon=True)
            )

        for thread in self._threads:
            thread.start()

        logger.info(f"Dispatcher started with {self.concurrency} workers")

        if blocking:
            self._stop_event.wait()

    def stop(self, timeout: float = 30.0) -> None:
        """
        Stop the worker pool gracefully.

        Workers finish their current job (no preemption).

        Args:
            timeout: Maximum seconds to wait per thread
        """
        if self._state == DispatcherState.STOPPED:
            return

        logger.info("Stopping dispatcher...")
        self._state = DispatcherState.STOPPING
        self._stop_event.set()

        for thread in self._threads:
            if thread is threading.current_thread():
                continue
            thread.join(timeout=timeout)
            if thread.is_alive():
                logger.warning(f"Thread {thread.name} did not stop within timeout")
        self._threads = []

        self._state = DispatcherState.STOPPED
        logger.info("Dispatcher stopped")

    def _worker_loop(self, worker_id: str) -> None:
        """Claim-process loop of one worker thread."""
        logger.info(f"Worker {worker_id} started")

        while not self._stop_event.is_set():
            try:
                job = self.dispatch_one(worker_id)
                if job is None:
                    self._stop_event.wait(self.poll_interval)
            except Exception as e:
                logger.error(f"Error in worker {worker_id}: {e}", exc_info=True)
                self._stop_event.wait(self.poll_interval)

        logger.info(f"Worker {worker_id} stopped")

    def _maintenance_loop(self) -> None:
        """Periodic lease recovery and retention."""
        while not self._stop_event.wait(self.maintenance_interval):
            try:
                self.recovery_manager.run_maintenance()
            except Exception as e:
                logger.error(f"Error in maintenance loop: {e}", exc_info=True)

    def is_running(self) -> bool:
        """Check if dispatcher is running."""
        return self._state == DispatcherState.RUNNING

    def is_busy(self) -> bool:
        """Check if any worker is processing a job."""
        with self._lock:
            return bool(self._current_jobs)
