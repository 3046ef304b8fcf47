"""
Pipeline exceptions.

Queue errors live in healify.scheduler.errors; these cover test execution,
suggestion providers and the source-control client.
"""

from typing import Optional


class HealifyError(Exception):
    """Base exception for pipeline errors."""
    pass


class ExecutionError(HealifyError):
    """
    Raised when a job cannot produce test results.

    Clone failure, dependency install failure, missing package.json.
    Treated as a job-level failure (the job is nacked).
    """

    def __init__(self, step: str, message: str, output: Optional[str] = None):
        self.step = step
        self.output = output
        super().__init__(f"{step} failed: {message}")


class JobTimeoutError(ExecutionError):
    """Raised when a step exceeds its timeout or the job's wall-clock budget."""

    def __init__(self, step: str, timeout: float):
        self.timeout = timeout
        super().__init__(step, f"timed out after {timeout:.0f}s")


class SuggestionError(HealifyError):
    """Raised by a suggestion provider that cannot produce a usable suggestion."""
    pass


class GitHubError(HealifyError):
    """Raised when a source-control API call fails."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message if status_code is None else f"{message} (HTTP {status_code})")
