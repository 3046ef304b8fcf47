"""
Selector extraction and classification.

extract_selector() pulls the selector a test was waiting for out of a
test-runner error message. Quoted forms are tried before bare-token forms
because a bare token grabs trailing punctuation and quotes. When nothing
matches, UNKNOWN_SELECTOR is returned; extraction never raises.
"""

import re
from typing import Optional

from healify.models import SelectorType, UNKNOWN_SELECTOR


ANSI_ESCAPE = re.compile(r"\x1b\[[0-9;]*[A-Za-z]")

# Quoted selector patterns (first capture group is the selector)
QUOTED_PATTERNS = [
    re.compile(r"""waiting for selector\s+(["'`])(.+?)\1""", re.IGNORECASE),
    re.compile(r"""selector\s+(["'`])(.+?)\1\s+not found""", re.IGNORECASE),
    re.compile(r"""locator\(\s*(["'`])(.+?)\1\s*\)""", re.IGNORECASE),
    re.compile(r"""waiting for\s+(["'`])(.+?)\1""", re.IGNORECASE),
]

# Bare-token patterns, tried only when no quoted form matched
BARE_PATTERNS = [
    re.compile(r"Element not found:\s*(\S+)", re.IGNORECASE),
    re.compile(r"Unable to locate element:\s*(\S+)", re.IGNORECASE),
    re.compile(r"No element matches selector:?\s*(\S+)", re.IGNORECASE),
]

_TRAILING_PUNCTUATION = ".,;:"

_TESTID_MARKERS = ("data-testid", "data-test-id", "data-test=", "data-test]", "data-cy", "testid=", "getbytestid")
_ROLE_MARKERS = ("role=", "[role", "aria-", "getbyrole", "getbylabel")
_TEXT_MARKERS = ("text=", ":has-text(", ":text(", "getbytext")


def strip_ansi(text: str) -> str:
    """Remove terminal color codes from runner output."""
    return ANSI_ESCAPE.sub("", text or "")


def extract_selector(error_message: Optional[str]) -> str:
    """
    Extract the failing selector from an error message.

    Returns:
        The selector, or UNKNOWN_SELECTOR if none could be found
    """
    if not error_message:
        return UNKNOWN_SELECTOR

    message = strip_ansi(error_message)

    for pattern in QUOTED_PATTERNS:
        match = pattern.search(message)
        if match and match.group(2).strip():
            return match.group(2).strip()

    for pattern in BARE_PATTERNS:
        match = pattern.search(message)
        if match:
            token = match.group(1).rstrip(_TRAILING_PUNCTUATION).strip("\"'`")
            if token:
                return token

    return UNKNOWN_SELECTOR


def _classify_single(selector: str) -> SelectorType:
    lowered = selector.lower()

    if lowered.startswith(("//", "(//", "xpath=", "./")):
        return SelectorType.XPATH
    if any(marker in lowered for marker in _TESTID_MARKERS):
        return SelectorType.TESTID
    if any(marker in lowered for marker in _ROLE_MARKERS):
        return SelectorType.ROLE
    if any(marker in lowered for marker in _TEXT_MARKERS):
        return SelectorType.TEXT
    return SelectorType.CSS


def classify_selector(selector: Optional[str]) -> SelectorType:
    """
    Classify a selector string.

    Chained selectors (a >> b) whose parts are of different kinds are MIXED.
    """
    if not selector or not selector.strip() or selector == UNKNOWN_SELECTOR:
        return SelectorType.UNKNOWN

    parts = [part.strip() for part in selector.split(">>") if part.strip()]
    kinds = {_classify_single(part) for part in parts}
    if len(kinds) > 1:
        return SelectorType.MIXED
    return kinds.pop()
