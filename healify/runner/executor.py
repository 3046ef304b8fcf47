"""
Test Execution Runner.

Clones a repository at a commit into an isolated workspace, installs
dependencies, runs the end-to-end suite and returns a TestResult.

Every subprocess is bounded by its own step timeout and by whatever is
left of the job's wall-clock deadline, whichever is smaller.

What the runner MUST NOT do:
- Decide what to do with failures (healing is the orchestrator's job)
- Leave a workspace behind
"""

import logging
import os
import subprocess
import time
from pathlib import Path
from typing import Callable, Optional

from healify.errors import ExecutionError, JobTimeoutError
from healify.models import TestResult
from .detection import (
    BROWSER_INSTALL_COMMAND,
    build_install_command,
    build_test_command,
    detect_package_manager,
    detect_test_script,
    read_package_json,
    uses_playwright,
)
from .report import load_test_results
from .workspace import job_workspace


logger = logging.getLogger(__name__)


DEFAULT_CLONE_TIMEOUT = 60
DEFAULT_INSTALL_TIMEOUT = 300
DEFAULT_BROWSER_TIMEOUT = 180
DEFAULT_TEST_TIMEOUT = 600

REPORT_RELATIVE_PATH = Path("test-results") / "report.json"
OUTPUT_TAIL_CHARS = 2000


def _tail(text: Optional[str], limit: int = OUTPUT_TAIL_CHARS) -> str:
    text = (text or "").strip()
    return text[-limit:]


class TestExecutionRunner:
    """Runs a project's test suite in a throwaway workspace."""

    __test__ = False  # not a pytest test class

    def __init__(
        self,
        workdir_root: Optional[Path] = None,
        clone_timeout: float = DEFAULT_CLONE_TIMEOUT,
        install_timeout: float = DEFAULT_INSTALL_TIMEOUT,
        test_timeout: float = DEFAULT_TEST_TIMEOUT,
        browser_timeout: float = DEFAULT_BROWSER_TIMEOUT,
        install_browsers: bool = True,
    ):
        self.workdir_root = workdir_root
        self.clone_timeout = clone_timeout
        self.install_timeout = install_timeout
        self.test_timeout = test_timeout
        self.browser_timeout = browser_timeout
        self.install_browsers = install_browsers

    @classmethod
    def from_settings(cls, settings) -> "TestExecutionRunner":
        return cls(
            workdir_root=settings.workdir_root,
            clone_timeout=settings.clone_timeout_seconds,
            install_timeout=settings.install_timeout_seconds,
            test_timeout=settings.test_timeout_seconds,
            install_browsers=settings.install_browsers,
        )

    # =========================================================================
    # Entry Point
    # =========================================================================

    def run(
        self,
        repository: str,
        commit_ref: str,
        test_command: Optional[str] = None,
        *,
        job_id: str,
        branch: Optional[str] = None,
        deadline: Optional[float] = None,
        on_progress: Optional[Callable[[int], None]] = None,
    ) -> TestResult:
        """
        Execute the suite for repository at commit_ref.

        Args:
            repository: Clone URL
            commit_ref: Commit SHA (or ref) to test
            test_command: package.json script overriding detection
            job_id: Used for workspace naming and log prefixes
            branch: Branch to clone before checking out commit_ref
            deadline: time.monotonic() value the whole run must finish by
            on_progress: Called with a percentage after setup finished

        Raises:
            ExecutionError: Clone or install failed, or no package.json
            JobTimeoutError: A step exceeded its timeout or the deadline
        """
        with job_workspace(job_id, self.workdir_root) as workdir:
            self.clone(repository, commit_ref, workdir, branch=branch, deadline=deadline, job_id=job_id)

            package_json = read_package_json(workdir)
            manager = detect_package_manager(workdir)
            script = detect_test_script(package_json, test_command)
            logger.info(f"[Job {job_id}] Package manager: {manager}, test script: {script}")

            self.install(manager, workdir, deadline=deadline, job_id=job_id)
            if self.install_browsers and uses_playwright(package_json):
                self.install_browser(workdir, deadline=deadline, job_id=job_id)

            if on_progress is not None:
                on_progress(30)

            return self.execute_tests(manager, script, workdir, deadline=deadline, job_id=job_id)

    # =========================================================================
    # Steps
    # =========================================================================

    def clone(
        self,
        repository: str,
        commit_ref: str,
        workdir: Path,
        branch: Optional[str] = None,
        deadline: Optional[float] = None,
        job_id: str = "",
    ) -> None:
        """Shallow clone, then check out commit_ref if it is not the branch tip."""
        cmd = ["git", "clone", "--depth", "1"]
        if branch:
            cmd += ["--branch", branch]
        cmd += [repository, "."]

        logger.info(f"[Job {job_id}] Cloning {repository} ({branch or 'default branch'})")
        self._run(cmd, workdir, self.clone_timeout, "clone", deadline)

        if not commit_ref or commit_ref in ("HEAD", branch):
            return

        try:
            self._run(
                ["git", "fetch", "--depth", "1", "origin", commit_ref],
                workdir, self.clone_timeout, "fetch", deadline,
            )
            self._run(["git", "checkout", "--quiet", commit_ref], workdir, self.clone_timeout, "checkout", deadline)
        except JobTimeoutError:
            raise
        except ExecutionError as e:
            logger.warning(f"[Job {job_id}] Could not check out {commit_ref}, testing branch HEAD: {e}")

    def install(self, manager: str, workdir: Path, deadline: Optional[float] = None, job_id: str = "") -> None:
        cmd = build_install_command(manager)
        logger.info(f"[Job {job_id}] Installing dependencies: {' '.join(cmd)}")
        self._run(cmd, workdir, self.install_timeout, "install", deadline)

    def install_browser(self, workdir: Path, deadline: Optional[float] = None, job_id: str = "") -> None:
        """Install the Chromium build Playwright expects. Failure only warns."""
        try:
            self._run(list(BROWSER_INSTALL_COMMAND), workdir, self.browser_timeout, "browser install", deadline)
        except JobTimeoutError:
            raise
        except ExecutionError as e:
            logger.warning(f"[Job {job_id}] Browser install failed, continuing: {e}")

    def execute_tests(
        self,
        manager: str,
        script: str,
        workdir: Path,
        deadline: Optional[float] = None,
        job_id: str = "",
    ) -> TestResult:
        """Run the suite. A non-zero exit code means failing tests, not an error."""
        report_path = Path(workdir) / REPORT_RELATIVE_PATH
        env = dict(os.environ)
        env["CI"] = "1"
        env["PLAYWRIGHT_JSON_OUTPUT_NAME"] = str(report_path)

        cmd = build_test_command(manager, script)
        logger.info(f"[Job {job_id}] Running tests: {' '.join(cmd)}")
        completed = self._run(cmd, workdir, self.test_timeout, "test", deadline, check=False, env=env)

        result = load_test_results(report_path, completed.stdout, completed.stderr)
        logger.info(
            f"[Job {job_id}] Tests finished (exit {completed.returncode}): "
            f"{result.passed} passed, {result.failed} failed"
        )
        return result

    # =========================================================================
    # Subprocess Helper
    # =========================================================================

    def _remaining(self, timeout: float, step: str, deadline: Optional[float]) -> float:
        if deadline is None:
            return timeout
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise JobTimeoutError(step, 0)
        return min(timeout, remaining)

    def _run(
        self,
        cmd: list[str],
        cwd: Path,
        timeout: float,
        step: str,
        deadline: Optional[float] = None,
        check: bool = True,
        env: Optional[dict] = None,
    ) -> subprocess.CompletedProcess:
        effective_timeout = self._remaining(timeout, step, deadline)
        if env is None:
            env = dict(os.environ)
        env.setdefault("GIT_TERMINAL_PROMPT", "0")

        try:
            completed = subprocess.run(
                cmd,
                cwd=cwd,
                capture_output=True,
                text=True,
                timeout=effective_timeout,
                env=env,
            )
        except subprocess.TimeoutExpired:
            raise JobTimeoutError(step, effective_timeout) from None
        except FileNotFoundError as e:
            raise ExecutionError(step, f"command not found: {cmd[0]}") from e

        if check and completed.returncode != 0:
            output = _tail(completed.stderr) or _tail(completed.stdout)
            raise ExecutionError(step, f"exit code {completed.returncode}: {output}", output=output)

        return completed
