"""
Pipeline: TestRun/finding entities, their store, and the per-job orchestrator.
"""

from .entities import (
    HealingFinding,
    Project,
    PullRequestRecord,
    TestRun,
    TestRunStatus,
    TERMINAL_TEST_RUN_STATUSES,
    finding_id_for,
)
from .store import ResultStore
from .orchestrator import WorkerOrchestrator

__all__ = [
    "HealingFinding",
    "Project",
    "PullRequestRecord",
    "TestRun",
    "TestRunStatus",
    "TERMINAL_TEST_RUN_STATUSES",
    "finding_id_for",
    "ResultStore",
    "WorkerOrchestrator",
]
