"""
Pipeline Domain Entities.

- Project: Repository and owner of a test suite (managed externally)
- TestRun: One execution of a project's suite for a commit
- HealingFinding: One failure plus its healing outcome
- PullRequestRecord: The PR opened for a finding (at most one)
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional
import uuid

from healify.models import Failure, HealingDecision, SelectorType


# Namespace for deterministic finding IDs
FINDING_NAMESPACE = uuid.UUID("6f1c3a52-9b7e-4d21-a8e4-0c5d2f7b9e13")


def now_iso() -> str:
    """Get current time as ISO format string."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


class TestRunStatus(str, Enum):
    """
    TestRun status values.

    PENDING -> RUNNING -> {PASSED, FAILED, HEALED, PARTIAL, CANCELLED}
    A RUNNING run whose job will be retried goes back to PENDING.
    """

    __test__ = False  # not a pytest test class

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    PASSED = "PASSED"
    FAILED = "FAILED"
    HEALED = "HEALED"
    PARTIAL = "PARTIAL"
    CANCELLED = "CANCELLED"


TERMINAL_TEST_RUN_STATUSES = frozenset({
    TestRunStatus.PASSED,
    TestRunStatus.FAILED,
    TestRunStatus.HEALED,
    TestRunStatus.PARTIAL,
    TestRunStatus.CANCELLED,
})


@dataclass
class Project:
    """A project whose suite Healify runs."""

    project_id: str
    name: str
    repository: Optional[str] = None
    owner_user_id: Optional[str] = None
    test_command: Optional[str] = None
    created_at: str = field(default_factory=now_iso)


@dataclass
class TestRun:
    """One execution of a project's suite. Keyed by test_run_id."""

    __test__ = False  # not a pytest test class

    test_run_id: str
    project_id: str
    status: TestRunStatus = TestRunStatus.PENDING
    commit_ref: Optional[str] = None
    branch: Optional[str] = None
    commit_message: Optional[str] = None
    commit_author: Optional[str] = None
    passed: int = 0
    failed: int = 0
    healed: int = 0
    total: int = 0
    error: Optional[str] = None
    created_at: str = field(default_factory=now_iso)
    started_at: Optional[str] = None
    finished_at: Optional[str] = None

    def is_terminal(self) -> bool:
        return self.status in TERMINAL_TEST_RUN_STATUSES

    def results_summary(self) -> dict:
        return {
            "passed": self.passed,
            "failed": self.failed,
            "healed": self.healed,
            "total": self.total,
        }


def finding_id_for(test_run_id: str, failure: Failure) -> str:
    """
    Deterministic ID of the finding for a failure.

    A re-delivered job produces the same IDs, so findings and their PRs
    are reused instead of duplicated.
    """
    key = "|".join([test_run_id, failure.test_file, failure.test_name, failure.failed_selector])
    return str(uuid.uuid5(FINDING_NAMESPACE, key))


@dataclass
class HealingFinding:
    """A failure and what the pipeline decided to do about it."""

    finding_id: str
    test_run_id: str
    failure: Failure
    decision: HealingDecision = HealingDecision.ANALYZING
    proposed_selector: Optional[str] = None
    proposed_selector_type: Optional[SelectorType] = None
    confidence: Optional[float] = None
    reasoning: Optional[str] = None
    pr_url: Optional[str] = None
    pr_branch: Optional[str] = None
    applied_at: Optional[str] = None
    publish_error: Optional[str] = None
    created_at: str = field(default_factory=now_iso)

    @classmethod
    def analyzing(cls, test_run_id: str, failure: Failure) -> "HealingFinding":
        """Create a new finding in ANALYZING state."""
        return cls(
            finding_id=finding_id_for(test_run_id, failure),
            test_run_id=test_run_id,
            failure=failure,
        )

    @property
    def is_decided(self) -> bool:
        return self.decision != HealingDecision.ANALYZING


@dataclass(frozen=True)
class PullRequestRecord:
    """PR attached 1:1 to a finding. Created once, never updated."""

    finding_id: str
    url: str
    branch_name: str
    created_at: str = field(default_factory=now_iso)
