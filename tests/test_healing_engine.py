"""
Tests for suggestion providers and the healing engine.

The Anthropic client is always a mock; no network calls are made.
"""

from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from healify.errors import SuggestionError
from healify.healing.engine import SelectorHealingEngine
from healify.healing.providers import (
    ARIA_LABEL_CONFIDENCE,
    TESTID_CONFIDENCE,
    UNCHANGED_CONFIDENCE,
    ClaudeSuggestionProvider,
    HeuristicSuggestionProvider,
    SuggestionContext,
    SuggestionProvider,
    parse_suggestion_response,
    truncate_dom,
)
from healify.infra.settings import Settings
from healify.models import HealingSuggestion, SelectorType


def _context(selector="#submit-btn", dom="", error="waiting for selector"):
    return SuggestionContext(failed_selector=selector, error_message=error, dom_snapshot=dom)


def _claude_message(text):
    return SimpleNamespace(content=[SimpleNamespace(type="text", text=text)])


class FailingProvider(SuggestionProvider):
    """Provider that always fails with the given exception."""

    def __init__(self, error):
        self.error = error
        self.calls = 0

    @property
    def provider_name(self) -> str:
        return "failing"

    def propose(self, context):
        self.calls += 1
        raise self.error


class FixedProvider(SuggestionProvider):
    def __init__(self, suggestion):
        self.suggestion = suggestion

    @property
    def provider_name(self) -> str:
        return "fixed"

    def propose(self, context):
        return self.suggestion


# =============================================================================
# Heuristic Provider
# =============================================================================


class TestHeuristicProvider:

    def test_prefers_test_id(self):
        dom = '<form><button aria-label="Send" data-testid="submit-form">Pay</button></form>'

        suggestion = HeuristicSuggestionProvider().propose(_context(dom=dom))

        assert suggestion.new_selector == "[data-testid='submit-form']"
        assert suggestion.selector_type == SelectorType.TESTID
        assert suggestion.confidence == TESTID_CONFIDENCE == 0.88
        assert suggestion.source == "heuristic"

    def test_aria_label_when_no_test_id(self):
        dom = '<div class="modal"><button aria-label="Cerrar modal">x</button></div>'

        suggestion = HeuristicSuggestionProvider().propose(_context(selector=".close-btn", dom=dom))

        assert suggestion.new_selector == "[aria-label='Cerrar modal']"
        assert suggestion.selector_type == SelectorType.ROLE
        assert suggestion.confidence == ARIA_LABEL_CONFIDENCE == 0.82

    def test_picks_candidate_sharing_words_with_failed_selector(self):
        dom = (
            '<nav><a data-testid="nav-home">Home</a></nav>'
            '<form><button data-testid="submit-form">Pay</button></form>'
        )

        suggestion = HeuristicSuggestionProvider().propose(_context(selector="#submit-btn", dom=dom))

        assert suggestion.new_selector == "[data-testid='submit-form']"

    def test_tie_goes_to_first_in_document(self):
        dom = '<a data-cy="first"></a><a data-cy="second"></a>'

        suggestion = HeuristicSuggestionProvider().propose(_context(selector="#unrelated", dom=dom))

        assert suggestion.new_selector == "[data-cy='first']"

    def test_label_with_apostrophe_is_double_quoted(self):
        dom = "<button aria-label=\"Don't save\">No</button>"

        suggestion = HeuristicSuggestionProvider().propose(_context(dom=dom))

        assert suggestion.new_selector == '[aria-label="Don\'t save"]'

    @pytest.mark.parametrize("dom", ["", "<div><span>plain</span></div>", "<<<not html"])
    def test_keeps_selector_without_stable_attributes(self, dom):
        suggestion = HeuristicSuggestionProvider().propose(_context(selector="#submit-btn", dom=dom))

        assert suggestion.new_selector == "#submit-btn"
        assert suggestion.selector_type == SelectorType.CSS
        assert suggestion.confidence == UNCHANGED_CONFIDENCE

    def test_deterministic(self):
        dom = '<button data-testid="a"></button><button aria-label="b"></button>'
        provider = HeuristicSuggestionProvider()

        assert provider.propose(_context(dom=dom)) == provider.propose(_context(dom=dom))


# =============================================================================
# Response Parsing
# =============================================================================


class TestParseSuggestionResponse:

    def test_plain_json(self):
        text = '{"newSelector": "[data-testid=\'pay\']", "selectorType": "TESTID", "confidence": 0.97, "reasoning": "Stable id"}'

        suggestion = parse_suggestion_response(text)

        assert suggestion.new_selector == "[data-testid='pay']"
        assert suggestion.selector_type == SelectorType.TESTID
        assert suggestion.confidence == 0.97
        assert suggestion.reasoning == "Stable id"
        assert suggestion.source == "ai"

    def test_code_fence(self):
        text = '```json\n{"newSelector": "text=Pay", "selectorType": "TEXT", "confidence": 0.9, "reasoning": "x"}\n```'

        assert parse_suggestion_response(text).new_selector == "text=Pay"

    def test_prose_around_json(self):
        text = 'Here you go: {"newSelector": "#pay", "confidence": 1} Hope it helps.'

        suggestion = parse_suggestion_response(text)

        assert suggestion.new_selector == "#pay"
        assert suggestion.confidence == 1.0

    @pytest.mark.parametrize("raw,expected", [(1.5, 1.0), (-0.2, 0.0), (0, 0.0)])
    def test_confidence_is_clamped(self, raw, expected):
        text = f'{{"newSelector": "#pay", "confidence": {raw}}}'

        assert parse_suggestion_response(text).confidence == expected

    def test_unknown_selector_type_is_classified(self):
        text = '{"newSelector": "//button[@id=\'pay\']", "selectorType": "banana", "confidence": 0.8}'

        assert parse_suggestion_response(text).selector_type == SelectorType.XPATH

    @pytest.mark.parametrize("text", [
        "",
        "   ",
        "not json at all",
        "[1, 2, 3]",
        '{"selectorType": "CSS", "confidence": 0.9}',
        '{"newSelector": "   ", "confidence": 0.9}',
        '{"newSelector": "#pay"}',
        '{"newSelector": "#pay", "confidence": "0.9"}',
    ])
    def test_rejected_responses(self, text):
        with pytest.raises(SuggestionError):
            parse_suggestion_response(text)


def test_truncate_dom():
    assert truncate_dom("<div></div>", budget=100) == "<div></div>"
    truncated = truncate_dom("x" * 50, budget=10)
    assert truncated.startswith("x" * 10)
    assert truncated.endswith("<!-- truncated -->")
    assert truncate_dom(None) == ""


# =============================================================================
# Claude Provider
# =============================================================================


class TestClaudeProvider:

    def test_sends_prompt_and_parses_reply(self):
        client = MagicMock()
        client.messages.create.return_value = _claude_message(
            '```json\n{"newSelector": "[data-testid=\'pay\']", "selectorType": "TESTID", '
            '"confidence": 0.96, "reasoning": "Stable"}\n```'
        )
        provider = ClaudeSuggestionProvider(api_key="sk-test", model_name="claude-test", client=client, dom_char_budget=20)

        suggestion = provider.propose(_context(dom="<div>" + "y" * 100 + "</div>"))

        assert suggestion.new_selector == "[data-testid='pay']"
        assert suggestion.confidence == 0.96
        assert suggestion.source == "anthropic"

        kwargs = client.messages.create.call_args.kwargs
        assert kwargs["model"] == "claude-test"
        assert kwargs["temperature"] == 0
        prompt = kwargs["messages"][0]["content"]
        assert "#submit-btn" in prompt
        assert "<!-- truncated -->" in prompt

    def test_unusable_reply_raises(self):
        client = MagicMock()
        client.messages.create.return_value = _claude_message("I cannot help with that.")
        provider = ClaudeSuggestionProvider(api_key="sk-test", client=client)

        with pytest.raises(SuggestionError):
            provider.propose(_context())


# =============================================================================
# Engine
# =============================================================================


class TestSelectorHealingEngine:

    def test_uses_first_provider(self):
        expected = HealingSuggestion("#new", SelectorType.CSS, 0.99, "fixed", source="fixed")
        engine = SelectorHealingEngine(providers=[FixedProvider(expected)])

        assert engine.heal("#old", "error", "<div></div>") == expected

    @pytest.mark.parametrize("error", [SuggestionError("bad json"), RuntimeError("network down")])
    def test_falls_back_to_heuristics(self, error):
        failing = FailingProvider(error)
        engine = SelectorHealingEngine(providers=[failing])

        suggestion = engine.heal("#submit-btn", "error", '<button data-testid="submit-form"></button>')

        assert failing.calls == 1
        assert suggestion.source == "heuristic"
        assert suggestion.confidence == 0.88

    def test_never_raises(self):
        engine = SelectorHealingEngine(
            providers=[FailingProvider(RuntimeError("a"))],
            fallback=FailingProvider(RuntimeError("b")),
        )

        suggestion = engine.heal("#submit-btn", None, None)

        assert suggestion.new_selector == "#submit-btn"
        assert suggestion.confidence == UNCHANGED_CONFIDENCE
        assert suggestion.source == "none"

    def test_empty_inputs(self):
        suggestion = SelectorHealingEngine().heal(None, None, None)

        assert suggestion.new_selector == ""
        assert suggestion.selector_type == SelectorType.UNKNOWN

    def test_suggest_shape(self):
        engine = SelectorHealingEngine()

        result = engine.suggest(
            "#submit-btn",
            html_context='<button data-testid="submit-form">Pay</button>',
            test_name="checkout",
        )

        assert result == {
            "fixed_selector": "[data-testid='submit-form']",
            "confidence": 0.88,
            "selector_type": "TESTID",
            "explanation": "Found stable data-testid attribute 'submit-form' in the current DOM.",
            "needs_review": False,
        }

    @pytest.mark.parametrize("confidence,expected", [
        (0.85, False),
        (0.80, False),
        (0.79, True),
    ])
    def test_suggest_review_threshold(self, confidence, expected):
        suggestion = HealingSuggestion("#new", SelectorType.CSS, confidence, "fixed", source="fixed")
        engine = SelectorHealingEngine(providers=[FixedProvider(suggestion)])

        assert engine.suggest("#old")["needs_review"] is expected

    def test_suggest_without_selector_needs_review(self):
        suggestion = HealingSuggestion("", SelectorType.UNKNOWN, 0.99, "nothing found", source="fixed")
        engine = SelectorHealingEngine(providers=[FixedProvider(suggestion)])

        assert engine.suggest("#old")["needs_review"] is True

    def test_from_settings(self):
        with_key = SelectorHealingEngine.from_settings(Settings(anthropic_api_key="sk-test", claude_model="m"))
        without_key = SelectorHealingEngine.from_settings(Settings())

        assert len(with_key.providers) == 1
        assert isinstance(with_key.providers[0], ClaudeSuggestionProvider)
        assert with_key.providers[0].model_name == "m"
        assert without_key.providers == []
