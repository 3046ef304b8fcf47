"""
Heal router.

POST /heal - Synchronous selector suggestion for a single failure report.
Does not touch the queue or the result store.
"""

from fastapi import APIRouter, HTTPException

from healify.healing.engine import SelectorHealingEngine
from ..schemas.heal import HealRequest, HealResponse
from .._scheduler_state import get_scheduler_service


router = APIRouter()


def _get_engine() -> SelectorHealingEngine:
    engine = get_scheduler_service().healing_engine
    if engine is None:
        raise HTTPException(status_code=503, detail="Healing engine not configured")
    return engine


@router.post("", response_model=HealResponse)
def heal_selector(request: HealRequest):
    """
    Suggest a replacement for a broken selector.

    Uses Claude when ANTHROPIC_API_KEY is set and falls back to DOM
    heuristics otherwise; always returns a suggestion.
    """
    if not request.selector.strip():
        raise HTTPException(status_code=400, detail="selector must not be empty")

    engine = _get_engine()
    result = engine.suggest(
        selector=request.selector,
        html_context=request.htmlContext,
        test_name=request.testName,
        error_message=request.errorMessage,
    )
    return HealResponse(**result)
