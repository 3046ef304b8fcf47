"""
Test execution: workspace, detection, suite run and report parsing.
"""

from .executor import TestExecutionRunner
from .report import load_test_results, parse_json_report, parse_text_output
from .selectors import classify_selector, extract_selector
from .workspace import job_workspace

__all__ = [
    "TestExecutionRunner",
    "load_test_results",
    "parse_json_report",
    "parse_text_output",
    "classify_selector",
    "extract_selector",
    "job_workspace",
]
