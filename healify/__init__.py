"""
Healify - self-healing pipeline for broken UI test selectors.

Runs a project's end-to-end suite for a commit, proposes replacement
selectors for the failures it finds, and opens pull requests for the
fixes that are confident enough to apply without review.
"""

__version__ = "0.1.0"
