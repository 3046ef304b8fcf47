"""
Tests for the GitHub REST client.

Requests go to an httpx.MockTransport that plays the GitHub API.
"""

import base64
import json

import httpx
import pytest

from healify.errors import GitHubError
from healify.publishing.github import GitHubClient, RepoRef, parse_repo_url


REPO = RepoRef("acme", "webapp")


class FakeGitHub:
    """Minimal in-memory GitHub API."""

    def __init__(self, default_branch="develop", open_pulls=None, branch_exists=False, file_sha=None):
        self.default_branch = default_branch
        self.open_pulls = open_pulls or []
        self.branch_exists = branch_exists
        self.file_sha = file_sha
        self.requests: list[httpx.Request] = []
        self.overrides: dict[tuple[str, str], httpx.Response] = {}

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        key = (request.method, request.url.path)
        if key in self.overrides:
            return self.overrides[key]

        path = request.url.path
        if key == ("GET", "/repos/acme/webapp"):
            return httpx.Response(200, json={"default_branch": self.default_branch})
        if request.method == "GET" and path.startswith("/repos/acme/webapp/git/ref/heads/"):
            return httpx.Response(200, json={"object": {"sha": "base-sha"}})
        if key == ("POST", "/repos/acme/webapp/git/refs"):
            return httpx.Response(422 if self.branch_exists else 201, json={})
        if request.method == "GET" and path.startswith("/repos/acme/webapp/contents/"):
            if self.file_sha:
                return httpx.Response(200, json={"sha": self.file_sha})
            return httpx.Response(404, json={"message": "Not Found"})
        if request.method == "PUT" and path.startswith("/repos/acme/webapp/contents/"):
            return httpx.Response(201, json={"content": {}})
        if key == ("GET", "/repos/acme/webapp/pulls"):
            return httpx.Response(200, json=self.open_pulls)
        if key == ("POST", "/repos/acme/webapp/pulls"):
            return httpx.Response(201, json={"html_url": "https://github.com/acme/webapp/pull/7", "number": 7})
        return httpx.Response(404, json={"message": "Not Found"})

    def calls(self) -> list[tuple[str, str]]:
        return [(r.method, r.url.path) for r in self.requests]

    def body(self, method: str, path_prefix: str) -> dict:
        for request in self.requests:
            if request.method == method and request.url.path.startswith(path_prefix):
                return json.loads(request.content)
        raise AssertionError(f"No {method} {path_prefix} request")


def _client(fake) -> GitHubClient:
    http = httpx.Client(base_url="https://api.github.com", transport=httpx.MockTransport(fake))
    return GitHubClient(token="unused", client=http)


def _open(client, base_ref=None):
    return client.open_fix_pr(
        REPO,
        base_ref,
        "healify-fixes/abcd1234.md",
        "# fix\n",
        "Healify: auto-fix selector",
        "body",
        "healify-fix/abcd1234",
    )


class TestParseRepoUrl:

    @pytest.mark.parametrize("url", [
        "https://github.com/acme/webapp",
        "https://github.com/acme/webapp.git",
        "https://github.com/acme/webapp/",
        "http://github.com/acme/webapp",
        "git@github.com:acme/webapp.git",
        "github.com/acme/webapp",
        "acme/webapp",
        "  https://github.com/acme/webapp  ",
    ])
    def test_valid_forms(self, url):
        assert parse_repo_url(url) == REPO

    @pytest.mark.parametrize("url", [
        None,
        "",
        "https://github.com/useronly",
        "webapp",
        "https://github.com/acme/webapp/tree/main",
    ])
    def test_invalid_forms(self, url):
        assert parse_repo_url(url) is None

    def test_full_name(self):
        assert REPO.full_name == "acme/webapp"


class TestOpenFixPr:

    def test_creates_branch_commit_and_pull(self):
        fake = FakeGitHub()

        with _client(fake) as client:
            pull = _open(client)

        assert pull.url == "https://github.com/acme/webapp/pull/7"
        assert pull.number == 7
        assert pull.branch == "healify-fix/abcd1234"
        assert pull.reused is False
        assert fake.calls() == [
            ("GET", "/repos/acme/webapp/pulls"),
            ("GET", "/repos/acme/webapp"),
            ("GET", "/repos/acme/webapp/git/ref/heads/develop"),
            ("POST", "/repos/acme/webapp/git/refs"),
            ("GET", "/repos/acme/webapp/contents/healify-fixes/abcd1234.md"),
            ("PUT", "/repos/acme/webapp/contents/healify-fixes/abcd1234.md"),
            ("POST", "/repos/acme/webapp/pulls"),
        ]
        assert fake.body("POST", "/repos/acme/webapp/git/refs") == {
            "ref": "refs/heads/healify-fix/abcd1234",
            "sha": "base-sha",
        }
        put = fake.body("PUT", "/repos/acme/webapp/contents/")
        assert base64.b64decode(put["content"]).decode("utf-8") == "# fix\n"
        assert put["branch"] == "healify-fix/abcd1234"
        assert "sha" not in put
        pull_request = fake.body("POST", "/repos/acme/webapp/pulls")
        assert pull_request["head"] == "healify-fix/abcd1234"
        assert pull_request["base"] == "develop"

    def test_existing_open_pull_is_reused(self):
        fake = FakeGitHub(open_pulls=[{"html_url": "https://github.com/acme/webapp/pull/3", "number": 3}])

        with _client(fake) as client:
            pull = _open(client)

        assert pull.reused is True
        assert pull.url == "https://github.com/acme/webapp/pull/3"
        assert fake.calls() == [("GET", "/repos/acme/webapp/pulls")]
        assert fake.requests[0].url.params["head"] == "acme:healify-fix/abcd1234"

    def test_existing_branch_and_file(self):
        fake = FakeGitHub(branch_exists=True, file_sha="old-blob")

        with _client(fake) as client:
            pull = _open(client)

        assert pull.number == 7
        assert fake.body("PUT", "/repos/acme/webapp/contents/")["sha"] == "old-blob"

    def test_explicit_base_skips_default_branch_lookup(self):
        fake = FakeGitHub()

        with _client(fake) as client:
            _open(client, base_ref="release")

        assert ("GET", "/repos/acme/webapp") not in fake.calls()
        assert fake.body("POST", "/repos/acme/webapp/pulls")["base"] == "release"

    def test_unreadable_default_branch_falls_back_to_main(self):
        fake = FakeGitHub()
        fake.overrides[("GET", "/repos/acme/webapp")] = httpx.Response(500, text="boom")

        with _client(fake) as client:
            _open(client)

        assert ("GET", "/repos/acme/webapp/git/ref/heads/main") in fake.calls()

    def test_rejected_pull_raises(self):
        fake = FakeGitHub()
        fake.overrides[("POST", "/repos/acme/webapp/pulls")] = httpx.Response(
            422, json={"message": "Validation Failed"}
        )

        with _client(fake) as client:
            with pytest.raises(GitHubError) as exc_info:
                _open(client)

        assert exc_info.value.status_code == 422
        assert "Validation Failed" in str(exc_info.value)


class TestTransportErrors:

    def test_connection_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = GitHubClient(
            token="t",
            client=httpx.Client(base_url="https://api.github.com", transport=httpx.MockTransport(handler)),
        )

        with pytest.raises(GitHubError) as exc_info:
            client.get_branch_sha(REPO, "main")

        assert exc_info.value.status_code is None

    def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        client = GitHubClient(
            token="t",
            client=httpx.Client(base_url="https://api.github.com", transport=httpx.MockTransport(handler)),
        )

        with pytest.raises(GitHubError, match="timed out"):
            client.create_pull(REPO, "b", "main", "t", "body")


def test_default_client_headers():
    client = GitHubClient(token="ghp_abc")
    try:
        headers = client._client.headers
        assert headers["Authorization"] == "Bearer ghp_abc"
        assert headers["Accept"] == "application/vnd.github+json"
        assert str(client._client.base_url).startswith("https://api.github.com")
    finally:
        client.close()
