"""
Auto-PR Publisher.

Opens a pull request proposing a healed selector. The PR carries a
markdown description of the change rather than an edit of the test
itself; a human applies and merges it.

At most one PR per finding: the finding's pr_url is checked before any
call, the branch name is derived from the finding ID, and the store only
writes pr_url while it is still empty.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from healify.models import HealingDecision
from healify.pipeline.entities import HealingFinding
from healify.pipeline.store import ResultStore
from .github import GitHubClient, RepoRef, parse_repo_url


logger = logging.getLogger(__name__)


BRANCH_PREFIX = "healify-fix"
PATCH_DIRECTORY = "healify-fixes"
SCM_PROVIDER = "github"


@dataclass(frozen=True)
class PublishResult:
    """Outcome of one publish attempt."""

    opened: bool
    pr_url: Optional[str] = None
    pr_branch: Optional[str] = None
    reason: Optional[str] = None


def branch_name_for(finding_id: str) -> str:
    return f"{BRANCH_PREFIX}/{finding_id[:8]}"


def patch_path_for(finding_id: str) -> str:
    return f"{PATCH_DIRECTORY}/{finding_id[:8]}.md"


def _confidence_pct(confidence: Optional[float]) -> int:
    return round((confidence or 0.0) * 100)


def build_patch_content(finding: HealingFinding) -> str:
    """Markdown file committed on the fix branch."""
    failure = finding.failure
    return "\n".join([
        "# Healify selector fix",
        "",
        f"- Detected: {finding.created_at}",
        f"- Test: {failure.test_name}",
        f"- File: {failure.test_file}",
        f"- Confidence: {_confidence_pct(finding.confidence)}%",
        "",
        "Replace the broken selector in the test:",
        "",
        "```",
        f"- {failure.failed_selector}",
        f"+ {finding.proposed_selector}",
        "```",
        "",
        f"Reasoning: {finding.reasoning or 'The new selector is more stable.'}",
        "",
    ])


def build_pr_body(finding: HealingFinding) -> str:
    """PR description with both selectors, confidence and reasoning."""
    failure = finding.failure
    pct = _confidence_pct(finding.confidence)
    return f"""## Healify Auto-Fix

Healify found a broken selector and a replacement with **{pct}% confidence**.

### Affected test
```
{failure.test_name}
File: {failure.test_file}
```

### Selector change
| | Selector |
|---|---|
| **Broken** | `{failure.failed_selector}` |
| **New** | `{finding.proposed_selector}` |

### Reasoning
{finding.reasoning or 'The new selector is more stable against UI changes.'}

---
*Opened automatically by Healify. Confidence: {pct}%. Review the change before merging.*
"""


class AutoPRPublisher:
    """Publishes HEALED_AUTO findings as pull requests."""

    def __init__(
        self,
        store: ResultStore,
        client_factory: Callable[[str], GitHubClient],
    ):
        """
        Args:
            store: Result store holding findings, projects and credentials
            client_factory: Builds a GitHubClient from an access token
        """
        self.store = store
        self.client_factory = client_factory

    @classmethod
    def from_settings(cls, store: ResultStore, settings) -> "AutoPRPublisher":
        def factory(token: str) -> GitHubClient:
            return GitHubClient(
                token=token,
                api_url=settings.github_api_url,
                timeout=settings.github_timeout_seconds,
            )

        return cls(store=store, client_factory=factory)

    def _check(self, finding: HealingFinding) -> tuple[Optional[str], Optional[RepoRef], Optional[str]]:
        """
        Preconditions in order. Returns (reason, repo_ref, token); reason is
        None when publishing may proceed.
        """
        if finding.decision != HealingDecision.HEALED_AUTO:
            return f"Decision is {finding.decision.value}, not {HealingDecision.HEALED_AUTO.value}", None, None

        if not finding.proposed_selector:
            return "No proposed selector to apply", None, None

        run = self.store.get_test_run(finding.test_run_id)
        project = self.store.get_project(run.project_id) if run else None
        if project is None or not project.repository:
            return "Project has no linked repository", None, None

        repo = parse_repo_url(project.repository)
        if repo is None:
            return f"Invalid repository URL: {project.repository}", None, None

        if not project.owner_user_id:
            return "Project has no owning user", None, None

        token = self.store.get_credential(project.owner_user_id, SCM_PROVIDER)
        if not token:
            return "Project owner has no GitHub access token", None, None

        return None, repo, token

    def publish(self, finding: HealingFinding) -> PublishResult:
        """
        Open a PR for a finding if every precondition holds.

        Never raises: expected conditions and API failures are returned
        as PublishResult(opened=False, reason=...).
        """
        if finding.pr_url:
            return PublishResult(
                opened=False,
                pr_url=finding.pr_url,
                pr_branch=finding.pr_branch,
                reason="Pull request already exists for this finding",
            )

        try:
            reason, repo, token = self._check(finding)
            if reason is not None:
                logger.info(f"[Finding {finding.finding_id[:8]}] Not publishing: {reason}")
                self.store.record_publish_error(finding.finding_id, reason)
                return PublishResult(opened=False, reason=reason)

            branch = branch_name_for(finding.finding_id)
            with self.client_factory(token) as client:
                pull = client.open_fix_pr(
                    repo,
                    None,
                    patch_path_for(finding.finding_id),
                    build_patch_content(finding),
                    f"Healify: auto-fix selector in {finding.failure.test_name}",
                    build_pr_body(finding),
                    branch,
                )

            if not self.store.record_pull_request(finding.finding_id, pull.url, pull.branch):
                stored = self.store.get_finding(finding.finding_id)
                logger.info(f"[Finding {finding.finding_id[:8]}] PR was already recorded: {stored.pr_url if stored else None}")
                return PublishResult(
                    opened=False,
                    pr_url=stored.pr_url if stored else pull.url,
                    pr_branch=stored.pr_branch if stored else pull.branch,
                    reason="Pull request already exists for this finding",
                )

            logger.info(f"[Finding {finding.finding_id[:8]}] PR opened: {pull.url}")
            return PublishResult(opened=True, pr_url=pull.url, pr_branch=pull.branch)

        except Exception as e:
            logger.error(f"[Finding {finding.finding_id[:8]}] Auto-PR failed: {e}", exc_info=True)
            try:
                self.store.record_publish_error(finding.finding_id, str(e))
            except Exception as store_error:
                logger.error(f"[Finding {finding.finding_id[:8]}] Could not record publish error: {store_error}")
            return PublishResult(opened=False, reason=str(e))
