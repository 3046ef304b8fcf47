"""
Suggestion providers.

A provider turns a failure context into a HealingSuggestion or raises
SuggestionError. Two implementations:
- ClaudeSuggestionProvider: generative, via the Anthropic API
- HeuristicSuggestionProvider: deterministic DOM inspection (BeautifulSoup)

The heuristic provider never needs the network, and its output depends
only on its input: same DOM and selector, same suggestion.
"""

import json
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional, Union

import anthropic
from bs4 import BeautifulSoup
from pydantic import BaseModel, Field, StrictFloat, StrictInt, ValidationError, field_validator

from healify.errors import SuggestionError
from healify.infra.settings import DEFAULT_CLAUDE_MODEL
from healify.models import HealingSuggestion, SelectorType
from healify.runner.selectors import classify_selector
from .prompts import HEALING_SYSTEM_PROMPT, build_user_prompt


logger = logging.getLogger(__name__)


TESTID_ATTRIBUTES = ("data-testid", "data-test-id", "data-test", "data-cy")
ARIA_LABEL_ATTRIBUTE = "aria-label"

TESTID_CONFIDENCE = 0.88
ARIA_LABEL_CONFIDENCE = 0.82
UNCHANGED_CONFIDENCE = 0.5

DEFAULT_DOM_CHAR_BUDGET = 8000
DEFAULT_AI_TIMEOUT = 30.0

_CODE_FENCE = re.compile(r"```(?:json)?\s*(.*?)\s*```", re.DOTALL | re.IGNORECASE)
_TOKEN = re.compile(r"[a-z0-9]+")


@dataclass(frozen=True)
class SuggestionContext:
    """Inputs of a single healing attempt."""

    failed_selector: str
    error_message: str
    dom_snapshot: str


class SuggestionProvider(ABC):
    """Abstract base class for suggestion backends."""

    @abstractmethod
    def propose(self, context: SuggestionContext) -> HealingSuggestion:
        """
        Propose a replacement selector.

        Raises:
            SuggestionError: If no usable suggestion could be produced
        """
        pass

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return provider name for logs and metadata."""
        pass


# =============================================================================
# Response Parsing
# =============================================================================

class AISuggestionPayload(BaseModel):
    """Shape a generative response must have to be accepted."""

    newSelector: str = Field(..., description="Replacement selector")
    selectorType: Optional[str] = Field(default=None, description="CSS | XPATH | TESTID | ROLE | TEXT")
    confidence: Union[StrictInt, StrictFloat] = Field(..., description="Certainty between 0 and 1")
    reasoning: str = Field(default="", description="Why this selector is better")

    @field_validator("newSelector")
    @classmethod
    def _non_empty_selector(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("newSelector must not be empty")
        return value


def _extract_json_text(text: str) -> str:
    fenced = _CODE_FENCE.search(text)
    if fenced:
        return fenced.group(1)
    start = text.find("{")
    end = text.rfind("}")
    if start >= 0 and end > start:
        return text[start:end + 1]
    return text


def parse_suggestion_response(text: str, source: str = "ai") -> HealingSuggestion:
    """
    Validate a generative response and turn it into a suggestion.

    Markdown code fences are tolerated. Confidence is clamped into [0, 1].

    Raises:
        SuggestionError: If the text is not JSON of the expected shape
    """
    if not text or not text.strip():
        raise SuggestionError("Empty response")

    try:
        data: Any = json.loads(_extract_json_text(text.strip()))
    except json.JSONDecodeError as e:
        raise SuggestionError(f"Response is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise SuggestionError("Response JSON is not an object")

    try:
        payload = AISuggestionPayload.model_validate(data)
    except ValidationError as e:
        raise SuggestionError(f"Response is missing required fields: {e.error_count()} error(s)") from e

    selector_type = SelectorType.parse(payload.selectorType)
    if selector_type == SelectorType.UNKNOWN:
        selector_type = classify_selector(payload.newSelector)

    return HealingSuggestion(
        new_selector=payload.newSelector,
        selector_type=selector_type,
        confidence=min(1.0, max(0.0, float(payload.confidence))),
        reasoning=payload.reasoning.strip(),
        source=source,
    )


def truncate_dom(dom_snapshot: Optional[str], budget: int = DEFAULT_DOM_CHAR_BUDGET) -> str:
    """Cap the DOM sent to the generative backend."""
    dom_snapshot = dom_snapshot or ""
    if len(dom_snapshot) <= budget:
        return dom_snapshot
    return dom_snapshot[:budget] + "\n<!-- truncated -->"


# =============================================================================
# Generative Provider
# =============================================================================

class ClaudeSuggestionProvider(SuggestionProvider):
    """Claude (Anthropic) suggestion provider."""

    def __init__(
        self,
        api_key: str,
        model_name: str = DEFAULT_CLAUDE_MODEL,
        timeout: float = DEFAULT_AI_TIMEOUT,
        dom_char_budget: int = DEFAULT_DOM_CHAR_BUDGET,
        max_tokens: int = 1024,
        client: Optional[anthropic.Anthropic] = None,
    ):
        self.api_key = api_key
        self.model_name = model_name
        self.timeout = timeout
        self.dom_char_budget = dom_char_budget
        self.max_tokens = max_tokens
        self._client = client

    @property
    def provider_name(self) -> str:
        return "anthropic"

    def _get_client(self) -> anthropic.Anthropic:
        if self._client is None:
            self._client = anthropic.Anthropic(
                api_key=self.api_key,
                timeout=self.timeout,
                max_retries=1,
            )
        return self._client

    def propose(self, context: SuggestionContext) -> HealingSuggestion:
        """Ask Claude for a replacement selector."""
        prompt = build_user_prompt(
            context.failed_selector,
            context.error_message,
            truncate_dom(context.dom_snapshot, self.dom_char_budget),
        )

        logger.info(f"[ClaudeSuggestionProvider] Requesting suggestion from {self.model_name}")
        try:
            message = self._get_client().messages.create(
                model=self.model_name,
                max_tokens=self.max_tokens,
                temperature=0,
                system=HEALING_SYSTEM_PROMPT,
                messages=[{"role": "user", "content": prompt}],
            )
        except anthropic.APIError as e:
            raise SuggestionError(f"Claude request failed: {e}") from e

        text = "".join(
            block.text for block in (message.content or [])
            if isinstance(getattr(block, "text", None), str)
        )
        return parse_suggestion_response(text, source=self.provider_name)


# =============================================================================
# Deterministic Provider
# =============================================================================

def _tokens(text: str) -> set[str]:
    return set(_TOKEN.findall((text or "").lower()))


def _quote_attribute(name: str, value: str) -> str:
    if "'" in value:
        escaped = value.replace('"', '\\"')
        return f'[{name}="{escaped}"]'
    return f"[{name}='{value}']"


def _best_candidate(candidates: list[tuple[str, str]], failed_selector: str) -> Optional[tuple[str, str]]:
    """
    Candidate sharing the most word tokens with the failed selector.

    Ties go to the earliest candidate in document order.
    """
    if not candidates:
        return None
    wanted = _tokens(failed_selector)
    _, best = max(
        enumerate(candidates),
        key=lambda item: (len(wanted & _tokens(item[1][1])), -item[0]),
    )
    return best


class HeuristicSuggestionProvider(SuggestionProvider):
    """
    Deterministic suggestions from stable DOM attributes.

    Priority: test-id attribute, then aria-label, then the original selector.
    """

    @property
    def provider_name(self) -> str:
        return "heuristic"

    def propose(self, context: SuggestionContext) -> HealingSuggestion:
        soup = BeautifulSoup(context.dom_snapshot or "", "html.parser")

        testids = [
            (attr, str(element.get(attr)).strip())
            for element in soup.find_all(True)
            for attr in TESTID_ATTRIBUTES
            if element.get(attr) and str(element.get(attr)).strip()
        ]
        match = _best_candidate(testids, context.failed_selector)
        if match is not None:
            attr, value = match
            return HealingSuggestion(
                new_selector=_quote_attribute(attr, value),
                selector_type=SelectorType.TESTID,
                confidence=TESTID_CONFIDENCE,
                reasoning=f"Found stable {attr} attribute '{value}' in the current DOM.",
                source=self.provider_name,
            )

        labels = [
            (ARIA_LABEL_ATTRIBUTE, str(element.get(ARIA_LABEL_ATTRIBUTE)).strip())
            for element in soup.find_all(attrs={ARIA_LABEL_ATTRIBUTE: True})
            if str(element.get(ARIA_LABEL_ATTRIBUTE)).strip()
        ]
        match = _best_candidate(labels, context.failed_selector)
        if match is not None:
            attr, value = match
            return HealingSuggestion(
                new_selector=_quote_attribute(attr, value),
                selector_type=SelectorType.ROLE,
                confidence=ARIA_LABEL_CONFIDENCE,
                reasoning=f"Found accessibility label '{value}' in the current DOM.",
                source=self.provider_name,
            )

        return HealingSuggestion(
            new_selector=context.failed_selector,
            selector_type=classify_selector(context.failed_selector),
            confidence=UNCHANGED_CONFIDENCE,
            reasoning="No stable alternative (test-id or aria-label attribute) was found in the DOM; keeping the original selector.",
            source=self.provider_name,
        )
