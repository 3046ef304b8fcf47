"""
GitHub REST client.

Only the calls needed to propose a fix: read the default branch, create a
branch, commit one file and open a pull request. open_fix_pr() wraps them
as one operation that can be repeated safely for the same branch name.
"""

import base64
import logging
import re
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from healify.errors import GitHubError


logger = logging.getLogger(__name__)


DEFAULT_API_URL = "https://api.github.com"
DEFAULT_TIMEOUT_SECONDS = 20.0
FALLBACK_BASE_BRANCH = "main"
COMMIT_MESSAGE = "Healify: propose test selector fix"

_SCHEME = re.compile(r"^[a-z][a-z0-9+.-]*://", re.IGNORECASE)


@dataclass(frozen=True)
class RepoRef:
    """owner/repo pair."""

    owner: str
    repo: str

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"


@dataclass(frozen=True)
class PRHandle:
    """A pull request opened (or found already open) for a fix branch."""

    url: str
    branch: str
    number: Optional[int] = None
    reused: bool = False


def parse_repo_url(repository: Optional[str]) -> Optional[RepoRef]:
    """
    Parse a repository reference into owner/repo.

    Accepts https://host/owner/repo[.git], host/owner/repo and owner/repo.
    Returns None when no owner/repo pair can be found.
    """
    if not repository:
        return None

    clean = repository.strip()
    clean = _SCHEME.sub("", clean)
    if clean.startswith("git@"):
        clean = clean[len("git@"):].replace(":", "/", 1)
    clean = clean.rstrip("/")
    if clean.endswith(".git"):
        clean = clean[:-len(".git")]

    parts = [part for part in clean.split("/") if part]
    # Owner names never contain dots, so a dotted first part is the host
    if parts and "." in parts[0]:
        parts = parts[1:]
    if len(parts) != 2:
        return None
    return RepoRef(owner=parts[0], repo=parts[1])


class GitHubClient:
    """Synchronous GitHub API client authenticated with a user token."""

    def __init__(
        self,
        token: str,
        api_url: str = DEFAULT_API_URL,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        client: Optional[httpx.Client] = None,
    ):
        self._client = client or httpx.Client(
            base_url=api_url,
            timeout=timeout,
            headers={
                "Authorization": f"Bearer {token}",
                "Accept": "application/vnd.github+json",
                "User-Agent": "Healify",
            },
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "GitHubClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _request(self, method: str, url: str, expected: tuple[int, ...], **kwargs) -> httpx.Response:
        try:
            response = self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise GitHubError(f"{method} {url} timed out") from e
        except httpx.HTTPError as e:
            raise GitHubError(f"{method} {url} failed: {e}") from e

        if response.status_code not in expected:
            raise GitHubError(
                f"{method} {url} failed: {response.text[:200]}",
                status_code=response.status_code,
            )
        return response

    # =========================================================================
    # Single API Calls
    # =========================================================================

    def get_default_branch(self, repo: RepoRef) -> str:
        """Repository default branch, "main" if it cannot be read."""
        try:
            data = self._request("GET", f"/repos/{repo.full_name}", (200,)).json()
        except GitHubError as e:
            logger.warning(f"Could not read default branch of {repo.full_name}, using '{FALLBACK_BASE_BRANCH}': {e}")
            return FALLBACK_BASE_BRANCH
        return data.get("default_branch") or FALLBACK_BASE_BRANCH

    def get_branch_sha(self, repo: RepoRef, branch: str) -> str:
        data = self._request("GET", f"/repos/{repo.full_name}/git/ref/heads/{branch}", (200,)).json()
        return data["object"]["sha"]

    def create_branch(self, repo: RepoRef, branch: str, sha: str) -> bool:
        """
        Create refs/heads/<branch> at sha.

        Returns:
            False if the branch already existed
        """
        response = self._request(
            "POST",
            f"/repos/{repo.full_name}/git/refs",
            (201, 422),
            json={"ref": f"refs/heads/{branch}", "sha": sha},
        )
        if response.status_code == 422:
            logger.info(f"Branch {branch} already exists in {repo.full_name}, reusing it")
            return False
        return True

    def get_file_sha(self, repo: RepoRef, path: str, branch: str) -> Optional[str]:
        """Blob SHA of path on branch, None if the file does not exist."""
        response = self._request(
            "GET",
            f"/repos/{repo.full_name}/contents/{path}",
            (200, 404),
            params={"ref": branch},
        )
        if response.status_code == 404:
            return None
        data: Any = response.json()
        if isinstance(data, list):
            return None
        return data.get("sha")

    def put_file(self, repo: RepoRef, path: str, content: str, branch: str, message: str = COMMIT_MESSAGE) -> None:
        payload = {
            "message": message,
            "content": base64.b64encode(content.encode("utf-8")).decode("ascii"),
            "branch": branch,
        }
        sha = self.get_file_sha(repo, path, branch)
        if sha:
            payload["sha"] = sha
        self._request("PUT", f"/repos/{repo.full_name}/contents/{path}", (200, 201), json=payload)

    def find_open_pull(self, repo: RepoRef, branch: str) -> Optional[PRHandle]:
        """Open PR whose head is branch, if any."""
        pulls = self._request(
            "GET",
            f"/repos/{repo.full_name}/pulls",
            (200,),
            params={"head": f"{repo.owner}:{branch}", "state": "open"},
        ).json()
        if not pulls:
            return None
        pull = pulls[0]
        return PRHandle(url=pull["html_url"], branch=branch, number=pull.get("number"), reused=True)

    def create_pull(self, repo: RepoRef, branch: str, base: str, title: str, body: str) -> PRHandle:
        pull = self._request(
            "POST",
            f"/repos/{repo.full_name}/pulls",
            (201,),
            json={"title": title, "body": body, "head": branch, "base": base},
        ).json()
        return PRHandle(url=pull["html_url"], branch=branch, number=pull.get("number"))

    # =========================================================================
    # Fix PR
    # =========================================================================

    def open_fix_pr(
        self,
        repo: RepoRef,
        base_ref: Optional[str],
        path: str,
        content: str,
        title: str,
        body: str,
        branch: str,
    ) -> PRHandle:
        """
        Branch from base_ref, commit one file and open a PR.

        Repeating the call with the same branch returns the PR already
        open for it instead of opening another one.

        Raises:
            GitHubError: If any API call fails
        """
        existing = self.find_open_pull(repo, branch)
        if existing is not None:
            logger.info(f"PR already open for {repo.full_name}:{branch}: {existing.url}")
            return existing

        base = base_ref or self.get_default_branch(repo)
        sha = self.get_branch_sha(repo, base)
        self.create_branch(repo, branch, sha)
        self.put_file(repo, path, content, branch)

        pull = self.create_pull(repo, branch, base, title, body)
        logger.info(f"Opened PR {pull.url} ({branch} -> {base})")
        return pull
