"""
Selector healing: suggestion providers, engine and decision gate.
"""

from .engine import SelectorHealingEngine
from .gate import AUTO_HEAL_THRESHOLD, REVIEW_THRESHOLD, SUGGESTION_REVIEW_THRESHOLD, decide, needs_review
from .providers import (
    ClaudeSuggestionProvider,
    HeuristicSuggestionProvider,
    SuggestionContext,
    SuggestionProvider,
    parse_suggestion_response,
)

__all__ = [
    "SelectorHealingEngine",
    "AUTO_HEAL_THRESHOLD",
    "REVIEW_THRESHOLD",
    "SUGGESTION_REVIEW_THRESHOLD",
    "decide",
    "needs_review",
    "ClaudeSuggestionProvider",
    "HeuristicSuggestionProvider",
    "SuggestionContext",
    "SuggestionProvider",
    "parse_suggestion_response",
]
