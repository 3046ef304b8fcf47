"""
Selector Healing Engine.

Tries each configured provider in order (normally Claude) and falls back
to the deterministic heuristic provider. heal() never raises and never
returns None: a broken or unreachable backend only lowers the quality of
the answer.
"""

import logging
from typing import Optional

from healify.errors import SuggestionError
from healify.models import HealingSuggestion
from healify.runner.selectors import classify_selector
from .gate import needs_review
from .providers import (
    ClaudeSuggestionProvider,
    HeuristicSuggestionProvider,
    SuggestionContext,
    SuggestionProvider,
    UNCHANGED_CONFIDENCE,
)


logger = logging.getLogger(__name__)


class SelectorHealingEngine:
    """Proposes replacement selectors for failing tests."""

    def __init__(
        self,
        providers: Optional[list[SuggestionProvider]] = None,
        fallback: Optional[SuggestionProvider] = None,
    ):
        """
        Args:
            providers: Tried in order before the fallback (may be empty)
            fallback: Last-resort provider (defaults to the heuristic one)
        """
        self.providers = list(providers or [])
        self.fallback = fallback or HeuristicSuggestionProvider()

    @classmethod
    def from_settings(cls, settings) -> "SelectorHealingEngine":
        """Claude first when an API key is configured, heuristics otherwise."""
        providers: list[SuggestionProvider] = []
        if settings.anthropic_api_key:
            providers.append(
                ClaudeSuggestionProvider(
                    api_key=settings.anthropic_api_key,
                    model_name=settings.claude_model,
                    timeout=settings.ai_timeout_seconds,
                    dom_char_budget=settings.ai_dom_char_budget,
                )
            )
        else:
            logger.info("ANTHROPIC_API_KEY not set, healing with heuristics only")
        return cls(providers=providers)

    def heal(
        self,
        failed_selector: Optional[str],
        error_message: Optional[str],
        dom_snapshot: Optional[str],
    ) -> HealingSuggestion:
        """Return the best available suggestion for one failure."""
        context = SuggestionContext(
            failed_selector=failed_selector or "",
            error_message=error_message or "",
            dom_snapshot=dom_snapshot or "",
        )

        for provider in self.providers:
            try:
                suggestion = provider.propose(context)
                logger.info(
                    f"[{provider.provider_name}] Suggested {suggestion.new_selector!r} "
                    f"(confidence {suggestion.confidence:.2f})"
                )
                return suggestion
            except SuggestionError as e:
                logger.warning(f"[{provider.provider_name}] Unusable suggestion, falling back: {e}")
            except Exception as e:
                logger.error(f"[{provider.provider_name}] Provider error, falling back: {e}", exc_info=True)

        try:
            return self.fallback.propose(context)
        except Exception as e:
            logger.error(f"Fallback provider failed: {e}", exc_info=True)
            return HealingSuggestion(
                new_selector=context.failed_selector,
                selector_type=classify_selector(context.failed_selector),
                confidence=UNCHANGED_CONFIDENCE,
                reasoning="No suggestion could be computed; keeping the original selector.",
                source="none",
            )

    def suggest(
        self,
        selector: str,
        html_context: Optional[str] = None,
        test_name: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> dict:
        """
        Synchronous healing for a single raw failure report.

        Returns:
            Dict with fixed_selector, confidence, selector_type, explanation, needs_review
        """
        if test_name:
            logger.info(f"Healing request for test '{test_name}'")

        suggestion = self.heal(selector, error_message, html_context)
        return {
            "fixed_selector": suggestion.new_selector,
            "confidence": suggestion.confidence,
            "selector_type": suggestion.selector_type.value,
            "explanation": suggestion.reasoning,
            "needs_review": needs_review(suggestion.confidence, bool(suggestion.new_selector)),
        }
