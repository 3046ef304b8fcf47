"""
Pytest configuration and shared fixtures.
"""

import os
import pytest
from pathlib import Path

from healify.models import Failure, SelectorType
from healify.pipeline.entities import Project
from healify.pipeline.store import ResultStore


@pytest.fixture(autouse=True, scope="function")
def reset_auth_module():
    """
    Reset auth module state before each test.

    This ensures tests run with API_AUTH_ENABLED=false by default,
    unless the test explicitly sets it otherwise.
    """
    # Store original values
    original_auth_enabled = os.environ.get("API_AUTH_ENABLED")
    original_api_key = os.environ.get("API_KEY")

    # Set defaults for tests (auth disabled)
    os.environ["API_AUTH_ENABLED"] = "false"

    yield

    # Restore original values
    if original_auth_enabled is not None:
        os.environ["API_AUTH_ENABLED"] = original_auth_enabled
    elif "API_AUTH_ENABLED" in os.environ:
        del os.environ["API_AUTH_ENABLED"]

    if original_api_key is not None:
        os.environ["API_KEY"] = original_api_key
    elif "API_KEY" in os.environ:
        del os.environ["API_KEY"]

    # Reload auth module to reset state
    import importlib
    import healify.api.dependencies.auth as auth_module
    importlib.reload(auth_module)


# =============================================================================
# Result Store Fixtures
# =============================================================================


@pytest.fixture
def results_db_path(tmp_path: Path) -> Path:
    """Path for a throwaway results database."""
    return tmp_path / "results.db"


@pytest.fixture
def store(results_db_path: Path) -> ResultStore:
    """Fresh ResultStore with empty tables."""
    return ResultStore(results_db_path)


@pytest.fixture
def linked_project(store: ResultStore) -> Project:
    """Project with a GitHub repository and an owner holding a token."""
    project = Project(
        project_id="proj-1",
        name="Webapp",
        repository="https://github.com/acme/webapp.git",
        owner_user_id="user-1",
    )
    store.save_project(project)
    store.set_credential("user-1", "ghp_test_token")
    return project


@pytest.fixture
def make_failure():
    """Factory for Failure values."""

    def _make(
        test_name: str = "checkout submits the form",
        test_file: str = "tests/checkout.spec.ts",
        selector: str = "#submit-btn",
        selector_type: SelectorType = SelectorType.CSS,
        error: str = "Timeout 30000ms exceeded waiting for selector \"#submit-btn\"",
        dom_after: str = '<form><button data-testid="submit-form">Pay</button></form>',
    ) -> Failure:
        return Failure(
            test_name=test_name,
            test_file=test_file,
            failed_selector=selector,
            selector_type=selector_type,
            error_message=error,
            dom_snapshot_after=dom_after,
        )

    return _make
