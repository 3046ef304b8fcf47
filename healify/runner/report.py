"""
Test report parsing.

Preferred source is the Playwright JSON reporter output (a report file, or
the JSON document on stdout). Plain console output is the fallback: pass
and fail counts from the summary lines and one failure per "Error:" block.
"""

import base64
import binascii
import json
import logging
import re
from pathlib import Path
from typing import Iterator, Optional

from healify.models import Failure, TestResult
from .selectors import classify_selector, extract_selector, strip_ansi


logger = logging.getLogger(__name__)


PASS_STATUSES = frozenset({"passed", "expected", "flaky"})
FAIL_STATUSES = frozenset({"failed", "unexpected", "timedOut", "interrupted"})

PASSED_COUNT = re.compile(r"(\d+)\s+passed")
FAILED_COUNT = re.compile(r"(\d+)\s+failed")
ERROR_BLOCK = re.compile(r"Error:([\s\S]*?)(?=\n\n|\n\s+at |$)")

UNPARSED_TEST_NAME = "Unparsed failure"
MAX_ERROR_CHARS = 4000


# =============================================================================
# JSON Report
# =============================================================================

def _iter_specs(suite: dict, file_hint: str = "") -> Iterator[tuple[dict, str]]:
    """Yield (spec, file) for every spec in a suite tree."""
    file_name = suite.get("file") or file_hint
    for spec in suite.get("specs") or []:
        yield spec, spec.get("file") or file_name
    for child in suite.get("suites") or []:
        yield from _iter_specs(child, file_name)


def _test_status(test: dict) -> Optional[str]:
    status = test.get("status")
    if status:
        return status
    results = test.get("results") or []
    if results:
        return results[-1].get("status")
    return None


def _error_message(test: dict) -> str:
    messages = []
    if isinstance(test.get("error"), dict):
        messages.append(test["error"].get("message") or "")
    for result in test.get("results") or []:
        error = result.get("error")
        if isinstance(error, dict) and error.get("message"):
            messages.append(error["message"])
        for item in result.get("errors") or []:
            if isinstance(item, dict) and item.get("message"):
                messages.append(item["message"])
    text = next((m for m in messages if m), "")
    return strip_ansi(text)[:MAX_ERROR_CHARS]


def _read_attachment(attachment: dict) -> Optional[str]:
    body = attachment.get("body")
    if body:
        try:
            return base64.b64decode(body).decode("utf-8", errors="replace")
        except (binascii.Error, ValueError):
            return str(body)
    path = attachment.get("path")
    if path and Path(path).is_file():
        try:
            return Path(path).read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            logger.warning(f"Could not read attachment {path}: {e}")
    return None


def _dom_snapshots(test: dict) -> tuple[Optional[str], Optional[str]]:
    """HTML attachments of the last result: (before, after)."""
    before = None
    after = None
    results = test.get("results") or []
    if not results:
        return None, None
    for attachment in results[-1].get("attachments") or []:
        if "html" not in (attachment.get("contentType") or ""):
            continue
        content = _read_attachment(attachment)
        if content is None:
            continue
        if "before" in (attachment.get("name") or "").lower():
            before = before or content
        else:
            after = after or content
    return before, after


def parse_json_report(report: dict) -> TestResult:
    """Build a TestResult from a Playwright JSON report."""
    result = TestResult()

    for suite in report.get("suites") or []:
        for spec, file_name in _iter_specs(suite):
            for test in spec.get("tests") or []:
                status = _test_status(test)
                if status in PASS_STATUSES:
                    result.passed += 1
                elif status in FAIL_STATUSES:
                    result.failed += 1
                    message = _error_message(test)
                    selector = extract_selector(message)
                    before, after = _dom_snapshots(test)
                    result.failures.append(
                        Failure(
                            test_name=spec.get("title") or "Untitled test",
                            test_file=file_name or "",
                            failed_selector=selector,
                            selector_type=classify_selector(selector),
                            error_message=message,
                            dom_snapshot_before=before,
                            dom_snapshot_after=after,
                        )
                    )

    return result


# =============================================================================
# Text Fallback
# =============================================================================

def parse_text_output(output: str) -> TestResult:
    """Best-effort parse of console output when no JSON report exists."""
    text = strip_ansi(output or "")

    passed = PASSED_COUNT.search(text)
    failed = FAILED_COUNT.search(text)
    result = TestResult(
        passed=int(passed.group(1)) if passed else 0,
        failed=int(failed.group(1)) if failed else 0,
    )

    if result.failed == 0:
        return result

    for index, match in enumerate(ERROR_BLOCK.finditer(text), start=1):
        message = match.group(1).strip()[:MAX_ERROR_CHARS]
        if not message:
            continue
        selector = extract_selector(message)
        result.failures.append(
            Failure(
                test_name=f"{UNPARSED_TEST_NAME} #{index}",
                test_file="",
                failed_selector=selector,
                selector_type=classify_selector(selector),
                error_message=message,
            )
        )
        if len(result.failures) >= result.failed:
            break

    return result


def _json_from_stdout(stdout: str) -> Optional[dict]:
    start = stdout.find("{")
    if start < 0:
        return None
    try:
        data = json.loads(stdout[start:])
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) and "suites" in data else None


def load_test_results(report_path: Path, stdout: str, stderr: str = "") -> TestResult:
    """
    Load results from the report file, then stdout JSON, then console text.
    """
    report_path = Path(report_path)
    if report_path.is_file():
        try:
            with open(report_path, "r", encoding="utf-8") as f:
                return parse_json_report(json.load(f))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Unreadable JSON report {report_path}: {e}")

    data = _json_from_stdout(stdout or "")
    if data is not None:
        return parse_json_report(data)

    logger.info("No JSON report found, falling back to console output parsing")
    return parse_text_output(f"{stdout or ''}\n{stderr or ''}")
