"""
Worker Orchestrator.

Runs one claimed job end to end:

    CLAIMED -> EXECUTING -> DONE_PASSED
                         -> HEALING -> PUBLISHING -> DONE

Each failure is healed, gated and published on its own; a failure that
cannot be healed or published does not stop the others. Anything that
escapes the pipeline nacks the job, and the TestRun is marked FAILED once
the queue gives up on it.

Re-delivery of the same job is safe: findings have deterministic IDs,
decisions are written once, and the publisher checks the stored PR URL.
"""

import logging
import time
from typing import Optional, TYPE_CHECKING

from healify.errors import ExecutionError, JobTimeoutError
from healify.healing.gate import decide
from healify.models import Failure, HealingDecision
from .entities import HealingFinding, TestRun, TestRunStatus
from .store import ResultStore

if TYPE_CHECKING:
    from healify.healing.engine import SelectorHealingEngine
    from healify.publishing.auto_pr import AutoPRPublisher
    from healify.runner.executor import TestExecutionRunner
    from healify.scheduler.entities import Job, NackOutcome
    from healify.scheduler.queue_manager import QueueManager


logger = logging.getLogger(__name__)


DEFAULT_JOB_TIMEOUT_SECONDS = 1200

PROGRESS_CLAIMED = 5
PROGRESS_EXECUTED = 60
PROGRESS_HEALED = 90
PROGRESS_DONE = 100


class WorkerOrchestrator:
    """Turns a claimed job into a finished TestRun plus findings."""

    def __init__(
        self,
        queue_manager: "QueueManager",
        store: ResultStore,
        runner: "TestExecutionRunner",
        engine: "SelectorHealingEngine",
        publisher: "AutoPRPublisher",
        job_timeout_seconds: int = DEFAULT_JOB_TIMEOUT_SECONDS,
    ):
        self.queue_manager = queue_manager
        self.store = store
        self.runner = runner
        self.engine = engine
        self.publisher = publisher
        self.job_timeout_seconds = job_timeout_seconds

    # =========================================================================
    # Job Processing
    # =========================================================================

    def process(self, job: "Job") -> None:
        """
        Process a claimed job. Always acks or nacks; never raises.
        """
        try:
            self._run_pipeline(job)
        except Exception as e:
            logger.error(f"[Job {job.job_id}] Pipeline failed: {e}", exc_info=True)
            self._release(job, str(e))

    def _run_pipeline(self, job: "Job") -> None:
        run = self._get_or_create_run(job)
        if run.is_terminal():
            logger.info(f"[Job {job.job_id}] TestRun {run.test_run_id} already {run.status.value}, skipping")
            self._ack(job)
            return

        self.store.mark_test_run_running(run.test_run_id)
        self._progress(job, PROGRESS_CLAIMED)

        project = self.store.get_project(job.project_id)
        repository = job.repository or (project.repository if project else None)
        if not repository:
            raise ExecutionError("setup", f"no repository configured for project {job.project_id}")

        deadline = time.monotonic() + self.job_timeout_seconds
        logger.info(f"[Job {job.job_id}] Executing {repository}@{job.commit_ref}")
        result = self.runner.run(
            repository,
            job.commit_ref,
            project.test_command if project else None,
            job_id=job.job_id,
            branch=job.branch,
            deadline=deadline,
            on_progress=lambda pct: self._progress(job, pct),
        )
        self._progress(job, PROGRESS_EXECUTED)
        logger.info(f"[Job {job.job_id}] Results: {result.passed} passed, {result.failed} failed")

        if result.failed == 0:
            self.store.finish_test_run(run.test_run_id, TestRunStatus.PASSED, passed=result.passed)
            self._progress(job, PROGRESS_DONE)
            self._ack(job)
            logger.info(f"[Job {job.job_id}] Test run completed: {TestRunStatus.PASSED.value}")
            return

        for failure in result.failures:
            self._check_deadline(deadline, "healing")
            self._handle_failure(job, run.test_run_id, failure)

        self._check_deadline(deadline, "healing")
        self._progress(job, PROGRESS_HEALED)

        healed = self.store.count_healed(run.test_run_id)
        status = TestRunStatus.HEALED if healed >= result.failed else TestRunStatus.PARTIAL
        self.store.finish_test_run(
            run.test_run_id,
            status,
            passed=result.passed,
            failed=result.failed,
            healed=healed,
        )
        self._progress(job, PROGRESS_DONE)
        self._ack(job)
        logger.info(
            f"[Job {job.job_id}] Test run completed: {status.value} "
            f"({result.passed} passed, {result.failed} failed, {healed} healed)"
        )

    def _get_or_create_run(self, job: "Job") -> TestRun:
        run = self.store.get_test_run(job.test_run_id)
        if run is not None:
            return run
        run, _ = self.store.create_test_run(
            TestRun(
                test_run_id=job.test_run_id,
                project_id=job.project_id,
                commit_ref=job.commit_ref,
                branch=job.branch,
                commit_message=job.metadata.get("commit_message"),
                commit_author=job.metadata.get("commit_author"),
            )
        )
        return run

    def _ack(self, job: "Job") -> None:
        self.queue_manager.ack(job.job_id, claimed_by=job.claimed_by, attempt=job.attempts)

    def _check_deadline(self, deadline: float, step: str) -> None:
        if time.monotonic() >= deadline:
            raise JobTimeoutError(step, self.job_timeout_seconds)

    def _progress(self, job: "Job", progress: int) -> None:
        try:
            self.queue_manager.update_progress(job.job_id, progress)
        except Exception as e:
            logger.warning(f"[Job {job.job_id}] Could not update progress: {e}")

    # =========================================================================
    # Per-Failure Healing
    # =========================================================================

    def _handle_failure(self, job: "Job", test_run_id: str, failure: Failure) -> Optional[HealingFinding]:
        """Heal, gate and publish one failure. Errors stay local to the failure."""
        try:
            finding, _ = self.store.create_finding(HealingFinding.analyzing(test_run_id, failure))
        except Exception as e:
            logger.error(f"[Job {job.job_id}] Could not record failure of '{failure.test_name}': {e}", exc_info=True)
            return None

        if not finding.is_decided:
            self._decide(job, finding)
            finding = self.store.get_finding(finding.finding_id) or finding

        if finding.decision == HealingDecision.HEALED_AUTO and not finding.pr_url:
            outcome = self.publisher.publish(finding)
            if outcome.opened:
                logger.info(f"[Job {job.job_id}] PR opened for '{failure.test_name}': {outcome.pr_url}")
            else:
                logger.info(f"[Job {job.job_id}] No PR for '{failure.test_name}': {outcome.reason}")

        return finding

    def _decide(self, job: "Job", finding: HealingFinding) -> None:
        failure = finding.failure

        if not failure.selector_known:
            self.store.record_decision(
                finding.finding_id,
                HealingDecision.IGNORED,
                reasoning="No selector could be extracted from the failure output.",
            )
            logger.info(f"[Job {job.job_id}] '{failure.test_name}': no selector, ignored")
            return

        try:
            suggestion = self.engine.heal(
                failure.failed_selector,
                failure.error_message,
                failure.dom_snapshot_after or failure.dom_snapshot_before,
            )
            decision = decide(suggestion.confidence, bool(suggestion.new_selector))
            self.store.record_decision(finding.finding_id, decision, suggestion)
            logger.info(
                f"[Job {job.job_id}] '{failure.test_name}': {decision.value} "
                f"({failure.failed_selector!r} -> {suggestion.new_selector!r}, {suggestion.confidence:.2f})"
            )
        except Exception as e:
            logger.error(f"[Job {job.job_id}] Healing '{failure.test_name}' failed: {e}", exc_info=True)
            self.store.record_decision(finding.finding_id, HealingDecision.FAILED, reasoning=str(e))

    # =========================================================================
    # Failure Handling
    # =========================================================================

    def _release(self, job: "Job", error: str) -> None:
        try:
            outcome = self.queue_manager.nack(
                job.job_id, error, claimed_by=job.claimed_by, attempt=job.attempts
            )
        except Exception as e:
            logger.error(f"[Job {job.job_id}] Could not nack job: {e}")
            return
        self.on_job_released(job, outcome)

    def on_job_released(self, job: "Job", outcome: "NackOutcome") -> None:
        """
        Reflect a nack on the TestRun.

        Dead jobs fail the run; a scheduled retry puts it back to PENDING
        with the error visible.
        """
        try:
            run_error = self._last_error(job) or job.last_error or "Job failed"
            if outcome.dead:
                self.store.finish_test_run(job.test_run_id, TestRunStatus.FAILED, error=run_error)
                logger.error(
                    f"[Job {job.job_id}] Giving up after {outcome.attempts}/{outcome.max_attempts} attempts: {run_error}"
                )
            else:
                self.store.release_test_run(job.test_run_id, run_error)
                logger.warning(
                    f"[Job {job.job_id}] Attempt {outcome.attempts}/{outcome.max_attempts} failed, "
                    f"retrying in {outcome.delay_seconds}s"
                )
        except Exception as e:
            logger.error(f"[Job {job.job_id}] Could not update TestRun {job.test_run_id}: {e}")

    def _last_error(self, job: "Job") -> Optional[str]:
        current = self.queue_manager.get_job(job.job_id)
        return current.last_error if current else None
