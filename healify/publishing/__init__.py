"""
Pull-request publishing for auto-healed findings.
"""

from .auto_pr import AutoPRPublisher, PublishResult, build_pr_body, branch_name_for
from .github import GitHubClient, PRHandle, RepoRef, parse_repo_url

__all__ = [
    "AutoPRPublisher",
    "PublishResult",
    "build_pr_body",
    "branch_name_for",
    "GitHubClient",
    "PRHandle",
    "RepoRef",
    "parse_repo_url",
]
