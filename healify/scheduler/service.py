"""
Scheduler Service - Main entry point for the healing worker.

This service wires all components together:
- PersistenceAdapter (queue storage)
- QueueManager (queue operations)
- RetryController (backoff policy)
- RecoveryManager (lease recovery, retention)
- Dispatcher (worker pool)
- WorkerOrchestrator (execute -> heal -> gate -> publish)
- ResultStore (test runs, findings, PRs)

Usage:
    service = SchedulerService.create(Settings.from_env())
    service.start()
    # ... workers run in background threads ...
    service.stop()
"""

import logging
import sqlite3
from dataclasses import dataclass, field
from typing import Optional, TYPE_CHECKING

from .entities import JobSpec
from .errors import JobNotFoundError, QueueUnavailableError, SchedulerError
from .persistence import PersistenceAdapter
from .queue_manager import QueueManager
from .dispatcher import Dispatcher
from .retry_controller import RetryController
from .recovery import RecoveryManager

if TYPE_CHECKING:
    from healify.healing.engine import SelectorHealingEngine
    from healify.infra.settings import Settings
    from healify.pipeline.store import ResultStore


logger = logging.getLogger(__name__)


# Extra lease time on top of the job's own wall-clock budget
LEASE_GRACE_SECONDS = 60


@dataclass(frozen=True)
class EnqueueResult:
    """
    Result of an enqueue request.

    queued=False means the request was not accepted: either a backend is
    unavailable (unavailable=True, worth retrying) or the test run is
    already finished. reason says which.
    """

    queued: bool
    test_run_id: str
    job_id: Optional[str] = None
    created: bool = False
    unavailable: bool = False
    reason: Optional[str] = None


@dataclass(frozen=True)
class StatusView:
    """Read model polled by dashboards."""

    found: bool
    test_run_id: str
    test_run_status: Optional[str] = None
    queue_state: Optional[str] = None
    progress: int = 0
    results_summary: dict = field(default_factory=dict)
    last_error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "found": self.found,
            "test_run_id": self.test_run_id,
            "test_run_status": self.test_run_status,
            "queue_state": self.queue_state,
            "progress": self.progress,
            "results_summary": self.results_summary,
            "last_error": self.last_error,
        }


class SchedulerService:
    """
    Main service that coordinates all scheduler components.

    Provides:
    - Component initialization and wiring
    - Startup with recovery
    - Graceful shutdown
    - API-friendly enqueue / status / cancel
    """

    def __init__(
        self,
        persistence: PersistenceAdapter,
        queue_manager: QueueManager,
        dispatcher: Dispatcher,
        retry_controller: RetryController,
        recovery_manager: RecoveryManager,
        store: "ResultStore",
        healing_engine: Optional["SelectorHealingEngine"] = None,
    ):
        """
        Initialize SchedulerService with all components.

        Use SchedulerService.create() for convenient construction.
        """
        self.persistence = persistence
        self.queue_manager = queue_manager
        self.dispatcher = dispatcher
        self.retry_controller = retry_controller
        self.recovery_manager = recovery_manager
        self.store = store
        self.healing_engine = healing_engine

        self._started = False

    @classmethod
    def create(cls, settings: "Settings") -> "SchedulerService":
        """
        Create a SchedulerService with all components wired together.

        Args:
            settings: Runtime configuration

        Returns:
            Configured SchedulerService
        """
        from healify.healing.engine import SelectorHealingEngine
        from healify.pipeline.orchestrator import WorkerOrchestrator
        from healify.pipeline.store import ResultStore
        from healify.publishing.auto_pr import AutoPRPublisher
        from healify.runner.executor import TestExecutionRunner

        # Queue
        persistence = PersistenceAdapter(settings.queue_db_path)
        retry_controller = RetryController(
            persistence=persistence,
            max_attempts=settings.job_max_attempts,
            base_delay_seconds=settings.job_backoff_base_seconds,
        )
        queue_manager = QueueManager(
            persistence=persistence,
            retry_controller=retry_controller,
            lease_seconds=settings.job_timeout_seconds + LEASE_GRACE_SECONDS,
        )
        recovery_manager = RecoveryManager(
            persistence=persistence,
            queue_manager=queue_manager,
            completed_keep_count=settings.completed_keep_count,
            completed_keep_seconds=settings.completed_keep_seconds,
            failed_keep_seconds=settings.failed_keep_seconds,
        )
        dispatcher = Dispatcher(
            queue_manager=queue_manager,
            recovery_manager=recovery_manager,
            concurrency=settings.worker_concurrency,
            poll_interval=settings.poll_interval,
            maintenance_interval=settings.maintenance_interval,
        )

        # Pipeline
        store = ResultStore(settings.results_db_path)
        engine = SelectorHealingEngine.from_settings(settings)
        orchestrator = WorkerOrchestrator(
            queue_manager=queue_manager,
            store=store,
            runner=TestExecutionRunner.from_settings(settings),
            engine=engine,
            publisher=AutoPRPublisher.from_settings(store, settings),
            job_timeout_seconds=settings.job_timeout_seconds,
        )

        # Wire components
        dispatcher.set_processor(orchestrator)
        recovery_manager.set_on_job_released(orchestrator.on_job_released)

        return cls(
            persistence=persistence,
            queue_manager=queue_manager,
            dispatcher=dispatcher,
            retry_controller=retry_controller,
            recovery_manager=recovery_manager,
            store=store,
            healing_engine=engine,
        )

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self, run_recovery: bool = True, blocking: bool = False) -> dict:
        """
        Start the worker pool.

        Args:
            run_recovery: Whether to run lease recovery and pruning first
            blocking: Whether to block until stop() is called

        Returns:
            Recovery statistics if recovery was run
        """
        if self._started:
            raise RuntimeError("Scheduler already started")

        logger.info("Starting scheduler service...")

        recovery_stats = {}
        if run_recovery:
            recovery_stats = self.recovery_manager.recover_on_startup()

        self._started = True
        logger.info("Scheduler service started")
        self.dispatcher.start(blocking=blocking)
        return recovery_stats

    def stop(self, timeout: float = 30.0) -> None:
        """
        Stop the worker pool gracefully.

        Running jobs are allowed to finish (no preemption).
        """
        if not self._started:
            return

        logger.info("Stopping scheduler service...")
        self.dispatcher.stop(timeout=timeout)
        self._started = False
        logger.info("Scheduler service stopped")

    @property
    def is_running(self) -> bool:
        """Check if scheduler is running."""
        return self._started and self.dispatcher.is_running()

    # =========================================================================
    # Enqueue / Status / Cancel
    # =========================================================================

    def enqueue(
        self,
        project_id: str,
        commit_ref: str,
        test_run_id: str,
        metadata: Optional[dict] = None,
    ) -> EnqueueResult:
        """
        Create the TestRun (if new) and queue its job.

        Safe to call repeatedly for the same test_run_id: an active job is
        reused and a finished run is not run again.
        """
        from healify.pipeline.entities import TestRun

        metadata = dict(metadata or {})
        try:
            run, _ = self.store.create_test_run(
                TestRun(
                    test_run_id=test_run_id,
                    project_id=project_id,
                    commit_ref=commit_ref,
                    branch=metadata.get("branch"),
                    commit_message=metadata.get("commit_message"),
                    commit_author=metadata.get("commit_author"),
                )
            )
        except sqlite3.Error as e:
            logger.error(f"Test run {test_run_id} not queued, result store unavailable: {e}")
            return EnqueueResult(
                queued=False,
                test_run_id=test_run_id,
                unavailable=True,
                reason=f"Result store unavailable: {e}",
            )

        if run.is_terminal():
            return EnqueueResult(
                queued=False,
                test_run_id=test_run_id,
                reason=f"Test run already finished ({run.status.value})",
            )

        try:
            handle = self.queue_manager.enqueue(
                JobSpec(
                    project_id=project_id,
                    commit_ref=commit_ref,
                    test_run_id=test_run_id,
                    metadata=metadata,
                )
            )
        except QueueUnavailableError as e:
            logger.error(f"Test run {test_run_id} not queued: {e}")
            self.store.set_test_run_error(test_run_id, f"Not queued: {e}")
            return EnqueueResult(
                queued=False,
                test_run_id=test_run_id,
                unavailable=True,
                reason=f"Queue unavailable: {e}",
            )

        return EnqueueResult(
            queued=True,
            test_run_id=test_run_id,
            job_id=handle.job_id,
            created=handle.created,
        )

    def get_status(self, test_run_id: str) -> StatusView:
        """
        Status of a test run and its job. Unknown IDs give found=False.
        """
        run = self.store.get_test_run(test_run_id)
        job = self.queue_manager.get_job_for_test_run(test_run_id)

        if run is None and job is None:
            return StatusView(found=False, test_run_id=test_run_id)

        if job is not None:
            progress = job.progress
        else:
            # Job pruned after the run finished
            progress = 100 if run.is_terminal() else 0

        return StatusView(
            found=True,
            test_run_id=test_run_id,
            test_run_status=run.status.value if run else None,
            queue_state=job.status.value if job else None,
            progress=progress,
            results_summary=run.results_summary() if run else {},
            last_error=(run.error if run and run.error else None) or (job.last_error if job else None),
        )

    def cancel(self, test_run_id: str) -> StatusView:
        """
        Cancel a test run whose job is still QUEUED.

        Raises:
            JobNotFoundError: If the test run has no job
            InvalidOperationError: If the job is not QUEUED
        """
        from healify.pipeline.entities import TestRunStatus

        job = self.queue_manager.get_job_for_test_run(test_run_id)
        if job is None:
            raise JobNotFoundError(test_run_id)

        self.queue_manager.cancel(job.job_id)
        self.store.finish_test_run(test_run_id, TestRunStatus.CANCELLED, error="Cancelled before execution")
        logger.info(f"Test run {test_run_id} cancelled")
        return self.get_status(test_run_id)

    # =========================================================================
    # Scheduler Status
    # =========================================================================

    def get_scheduler_status(self) -> dict:
        """
        Get worker pool and queue status.

        Returns:
            Dict with scheduler_running, state, current_jobs, queued_count, running_count
        """
        try:
            queued = self.queue_manager.count_queued()
            running = self.queue_manager.count_running()
        except SchedulerError as e:
            logger.warning(f"Could not read queue counts: {e}")
            queued = running = 0

        return {
            "scheduler_running": self.is_running,
            "state": self.dispatcher.state.value,
            "concurrency": self.dispatcher.concurrency,
            "current_jobs": self.dispatcher.current_jobs,
            "queued_count": queued,
            "running_count": running,
        }

    def list_queued(self, limit: int = 100) -> list:
        """List queued jobs in claim order."""
        return self.queue_manager.list_queued(limit=limit)

    def list_running(self, limit: int = 100) -> list:
        """List running jobs."""
        return self.queue_manager.list_running(limit=limit)

