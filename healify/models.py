"""
Domain types shared by the runner, the healing engine and the pipeline.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


# Placeholder recorded when no selector can be extracted from an error message
UNKNOWN_SELECTOR = "Unknown selector"


class SelectorType(str, Enum):
    """Kind of selector a test used or a suggestion proposes."""

    CSS = "CSS"
    XPATH = "XPATH"
    TESTID = "TESTID"
    ROLE = "ROLE"
    TEXT = "TEXT"
    MIXED = "MIXED"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def parse(cls, value: Optional[str]) -> "SelectorType":
        """Lenient conversion from free-form text (e.g. model output)."""
        if not value:
            return cls.UNKNOWN
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            return cls.UNKNOWN


class HealingDecision(str, Enum):
    """
    Outcome for one failure.

    ANALYZING is the initial state; every finding leaves it exactly once.
    HEALED_MANUAL is set by reviewers outside the pipeline.
    """

    ANALYZING = "ANALYZING"
    HEALED_AUTO = "HEALED_AUTO"
    HEALED_MANUAL = "HEALED_MANUAL"
    NEEDS_REVIEW = "NEEDS_REVIEW"
    BUG_DETECTED = "BUG_DETECTED"
    REMOVED_LEGIT = "REMOVED_LEGIT"
    FAILED = "FAILED"
    IGNORED = "IGNORED"


@dataclass(frozen=True)
class Failure:
    """One failing test with the data needed to heal it."""

    test_name: str
    test_file: str
    failed_selector: str
    selector_type: SelectorType
    error_message: str
    dom_snapshot_before: Optional[str] = None
    dom_snapshot_after: Optional[str] = None

    @property
    def selector_known(self) -> bool:
        return bool(self.failed_selector) and self.failed_selector != UNKNOWN_SELECTOR


@dataclass
class TestResult:
    """Aggregate outcome of one suite execution."""

    __test__ = False  # not a pytest test class

    passed: int = 0
    failed: int = 0
    failures: list[Failure] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.passed + self.failed


@dataclass(frozen=True)
class HealingSuggestion:
    """A proposed replacement selector. confidence is always within [0, 1]."""

    new_selector: str
    selector_type: SelectorType
    confidence: float
    reasoning: str
    source: str = "heuristic"
