"""
Healing decision gate.

The single place where confidence thresholds are defined. decide() is a
pure function: the same inputs always give the same decision, so a
re-delivered job reaches the same outcome for the same suggestion.

The synchronous /heal interface reports needs_review against its own,
lower threshold (0.80); the worker pipeline only ever uses decide().
"""

from healify.models import HealingDecision


# Confidence at or above which a fix is applied without review
AUTO_HEAL_THRESHOLD = 0.95

# Confidence below which the failure is treated as a genuine regression
REVIEW_THRESHOLD = 0.70

# Confidence below which a synchronous suggestion is flagged for review
SUGGESTION_REVIEW_THRESHOLD = 0.80


def decide(confidence: float, has_proposed_selector: bool) -> HealingDecision:
    """
    Map a suggestion's confidence to a decision.

    - no proposed selector            -> NEEDS_REVIEW (regardless of confidence)
    - confidence >= 0.95              -> HEALED_AUTO
    - 0.70 <= confidence < 0.95       -> NEEDS_REVIEW
    - confidence < 0.70               -> BUG_DETECTED
    """
    if not has_proposed_selector:
        return HealingDecision.NEEDS_REVIEW
    if confidence >= AUTO_HEAL_THRESHOLD:
        return HealingDecision.HEALED_AUTO
    if confidence >= REVIEW_THRESHOLD:
        return HealingDecision.NEEDS_REVIEW
    return HealingDecision.BUG_DETECTED


def needs_review(confidence: float, has_proposed_selector: bool = True) -> bool:
    """needs_review flag of a synchronous suggestion. Does not apply anything."""
    return not has_proposed_selector or confidence < SUGGESTION_REVIEW_THRESHOLD
