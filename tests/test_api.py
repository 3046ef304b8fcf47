"""
Tests for the FastAPI application.

The lifespan builds a real SchedulerService on temporary databases;
workers are not started unless a test asks for it.
"""

import importlib
import os
from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from healify.pipeline.entities import TestRunStatus
from healify.pipeline.store import ResultStore
from healify.scheduler.service import EnqueueResult


TEST_API_KEY = "test-secret-key-12345"


def _reload_app():
    """Reload auth and main so the app picks up the current environment."""
    import healify.api.dependencies.auth as auth_module
    import healify.api.main as main_module

    importlib.reload(auth_module)
    return importlib.reload(main_module)


@pytest.fixture
def api_env(tmp_path):
    env = {
        "HEALIFY_QUEUE_DB": str(tmp_path / "queue.db"),
        "HEALIFY_RESULTS_DB": str(tmp_path / "results.db"),
        "HEALIFY_WORKDIR_ROOT": str(tmp_path / "work"),
        "WORKER_AUTOSTART": "false",
        "WORKER_CONCURRENCY": "1",
        "WORKER_POLL_INTERVAL": "0.05",
        "ANTHROPIC_API_KEY": "",
        "API_AUTH_ENABLED": "false",
    }
    with patch.dict(os.environ, env, clear=False):
        yield env


@pytest.fixture
def client(api_env):
    main_module = _reload_app()
    with TestClient(main_module.app) as test_client:
        yield test_client


@pytest.fixture
def service(client):
    from healify.api._scheduler_state import get_scheduler_service

    return get_scheduler_service()


def _enqueue(client, test_run_id="run-1", **extra):
    payload = {"project_id": "proj-1", "commit_ref": "abc123", "test_run_id": test_run_id}
    payload.update(extra)
    return client.post("/jobs", json=payload)


class TestHealth:

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"
        assert "version" in response.json()


class TestJobsEndpoints:

    def test_enqueue(self, client):
        response = _enqueue(client, branch="main", commit_author="dev")

        assert response.status_code == 202
        data = response.json()
        assert data["queued"] is True
        assert data["created"] is True
        assert data["test_run_id"] == "run-1"
        assert data["job_id"]

    def test_enqueue_is_idempotent(self, client):
        first = _enqueue(client).json()
        second = _enqueue(client)

        assert second.status_code == 202
        assert second.json()["created"] is False
        assert second.json()["job_id"] == first["job_id"]

    def test_enqueue_validation(self, client):
        response = client.post("/jobs", json={"project_id": "", "commit_ref": "abc123", "test_run_id": "r"})
        assert response.status_code == 422

        response = client.post("/jobs", json={"project_id": "proj-1", "test_run_id": "r"})
        assert response.status_code == 422

    def test_finished_run_is_rejected(self, client, api_env):
        _enqueue(client)
        ResultStore(api_env["HEALIFY_RESULTS_DB"]).finish_test_run("run-1", TestRunStatus.PASSED, passed=3)

        response = _enqueue(client)

        assert response.status_code == 409
        assert response.json()["queued"] is False
        assert "PASSED" in response.json()["reason"]

    def test_queue_unavailable(self, client):
        mock_service = MagicMock()
        mock_service.enqueue.return_value = EnqueueResult(
            queued=False,
            test_run_id="run-1",
            unavailable=True,
            reason="Not queued: queue backend unavailable",
        )

        with patch("healify.api.routers.jobs.get_scheduler_service", return_value=mock_service):
            response = _enqueue(client)

        assert response.status_code == 503
        assert response.json()["queued"] is False
        assert response.json()["reason"].startswith("Not queued")

    def test_status_of_queued_run(self, client):
        _enqueue(client)

        response = client.get("/jobs/run-1")

        assert response.status_code == 200
        data = response.json()
        assert data["found"] is True
        assert data["test_run_status"] == "PENDING"
        assert data["queue_state"] == "QUEUED"
        assert data["progress"] == 0

    def test_status_with_results(self, client, api_env):
        _enqueue(client)
        ResultStore(api_env["HEALIFY_RESULTS_DB"]).finish_test_run(
            "run-1", TestRunStatus.PARTIAL, passed=7, failed=3, healed=1
        )

        data = client.get("/jobs/run-1").json()

        assert data["test_run_status"] == "PARTIAL"
        assert data["results_summary"] == {"passed": 7, "failed": 3, "healed": 1, "total": 10}

    def test_status_unknown(self, client):
        response = client.get("/jobs/nope")

        assert response.status_code == 404
        assert response.json()["found"] is False

    def test_cancel_queued(self, client):
        _enqueue(client)

        response = client.post("/jobs/run-1/cancel")

        assert response.status_code == 200
        assert response.json()["test_run_status"] == "CANCELLED"
        assert response.json()["queue_state"] == "CANCELLED"

    def test_cancel_unknown(self, client):
        assert client.post("/jobs/nope/cancel").status_code == 404

    def test_cancel_running(self, client, service):
        _enqueue(client)
        service.queue_manager.claim_next("worker-test")

        response = client.post("/jobs/run-1/cancel")

        assert response.status_code == 400


class TestHealEndpoint:

    def test_heal(self, client):
        response = client.post("/heal", json={
            "selector": "#submit-btn",
            "htmlContext": '<form><button data-testid="submit-form">Pay</button></form>',
            "testName": "checkout submits the form",
        })

        assert response.status_code == 200
        data = response.json()
        assert data["fixed_selector"] == "[data-testid='submit-form']"
        assert data["confidence"] == 0.88
        assert data["selector_type"] == "TESTID"
        assert data["needs_review"] is False

    def test_blank_selector(self, client):
        response = client.post("/heal", json={"selector": "   "})

        assert response.status_code == 400

    def test_engine_not_configured(self, client):
        with patch(
            "healify.api.routers.heal.get_scheduler_service",
            return_value=MagicMock(healing_engine=None),
        ):
            response = client.post("/heal", json={"selector": "#x"})

        assert response.status_code == 503


class TestSchedulerEndpoints:

    def test_status_while_stopped(self, client):
        response = client.get("/scheduler/status")

        assert response.status_code == 200
        data = response.json()
        assert data["scheduler_running"] is False
        assert data["state"] == "STOPPED"
        assert data["concurrency"] == 1

    def test_start_and_stop(self, client):
        started = client.post("/scheduler/start", json={"run_recovery": True})
        assert started.status_code == 200
        assert started.json()["success"] is True
        assert client.get("/scheduler/status").json()["scheduler_running"] is True

        again = client.post("/scheduler/start", json={})
        assert again.json()["message"] == "Scheduler is already running"

        stopped = client.post("/scheduler/stop", json={"timeout": 5})
        assert stopped.status_code == 200
        assert client.get("/scheduler/status").json()["scheduler_running"] is False

    def test_stop_while_stopped(self, client):
        response = client.post("/scheduler/stop", json={})

        assert response.json()["message"] == "Scheduler is already stopped"


class TestAuthEnabled:

    @pytest.fixture
    def auth_client(self, api_env):
        with patch.dict(os.environ, {"API_AUTH_ENABLED": "true", "API_KEY": TEST_API_KEY}):
            main_module = _reload_app()
            with TestClient(main_module.app) as test_client:
                yield test_client

    def test_health_needs_no_key(self, auth_client):
        assert auth_client.get("/health").status_code == 200

    def test_missing_key(self, auth_client):
        response = auth_client.get("/scheduler/status")

        assert response.status_code == 401
        assert "Missing API key" in response.json()["detail"]

    def test_wrong_key(self, auth_client):
        response = auth_client.get("/scheduler/status", headers={"X-API-Key": "wrong"})

        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid API key"

    def test_valid_key(self, auth_client):
        response = auth_client.post(
            "/jobs",
            json={"project_id": "proj-1", "commit_ref": "abc123", "test_run_id": "run-1"},
            headers={"X-API-Key": TEST_API_KEY},
        )

        assert response.status_code == 202
