"""
Tests for the command-line interface.

Commands run through main(argv) against temporary databases.
"""

import json
import logging
import os
from unittest.mock import patch

import pytest

from healify.cli import (
    EXIT_INVALID_INPUT,
    EXIT_NOT_FOUND,
    EXIT_NOT_QUEUED,
    EXIT_SUCCESS,
    create_parser,
    main,
)
from healify.pipeline.entities import TestRunStatus
from healify.pipeline.store import ResultStore


@pytest.fixture(autouse=True)
def cli_env(tmp_path):
    env = {
        "HEALIFY_QUEUE_DB": str(tmp_path / "queue.db"),
        "HEALIFY_RESULTS_DB": str(tmp_path / "results.db"),
        "HEALIFY_WORKDIR_ROOT": str(tmp_path / "work"),
        "LOG_DIR": str(tmp_path / "logs"),
        "ANTHROPIC_API_KEY": "",
    }
    with patch.dict(os.environ, env, clear=False):
        yield env

    healify_logger = logging.getLogger("healify")
    for handler in list(healify_logger.handlers):
        handler.close()
    healify_logger.handlers.clear()
    healify_logger.propagate = True


def _output(capsys) -> dict:
    return json.loads(capsys.readouterr().out)


class TestParser:

    def test_enqueue_arguments(self):
        args = create_parser().parse_args([
            "enqueue", "proj-1", "abc123", "--test-run-id", "run-1", "--branch", "main",
        ])

        assert args.command == "enqueue"
        assert args.project_id == "proj-1"
        assert args.commit_ref == "abc123"
        assert args.test_run_id == "run-1"
        assert args.branch == "main"

    def test_worker_defaults(self):
        args = create_parser().parse_args(["worker"])

        assert args.skip_recovery is False
        assert args.stop_timeout == 30.0

    def test_no_command_prints_help(self, capsys):
        assert main([]) == EXIT_SUCCESS
        assert "usage" in capsys.readouterr().out.lower()


class TestProjectCommands:

    def test_register_project(self, capsys, cli_env):
        code = main([
            "register-project", "proj-1",
            "--name", "Webapp",
            "--repository", "https://github.com/acme/webapp",
            "--owner", "user-1",
        ])

        assert code == EXIT_SUCCESS
        assert _output(capsys)["repository"] == "https://github.com/acme/webapp"
        project = ResultStore(cli_env["HEALIFY_RESULTS_DB"]).get_project("proj-1")
        assert project.owner_user_id == "user-1"

    def test_update_keeps_unset_fields(self, capsys, cli_env):
        main(["register-project", "proj-1", "--name", "Webapp", "--repository", "acme/webapp"])
        capsys.readouterr()

        main(["register-project", "proj-1", "--test-command", "test:e2e"])

        project = ResultStore(cli_env["HEALIFY_RESULTS_DB"]).get_project("proj-1")
        assert project.name == "Webapp"
        assert project.repository == "acme/webapp"
        assert project.test_command == "test:e2e"

    def test_set_credential(self, cli_env):
        assert main(["set-credential", "user-1", "ghp_abc"]) == EXIT_SUCCESS
        assert ResultStore(cli_env["HEALIFY_RESULTS_DB"]).get_credential("user-1") == "ghp_abc"

    def test_blank_credential_rejected(self):
        assert main(["set-credential", "user-1", "  "]) == EXIT_INVALID_INPUT


class TestQueueCommands:

    def test_enqueue_and_status(self, capsys):
        assert main(["enqueue", "proj-1", "abc123", "--test-run-id", "run-1"]) == EXIT_SUCCESS
        enqueued = _output(capsys)
        assert enqueued["queued"] is True
        assert enqueued["created"] is True

        assert main(["status", "run-1"]) == EXIT_SUCCESS
        status = _output(capsys)
        assert status["test_run_status"] == "PENDING"
        assert status["queue_state"] == "QUEUED"

    def test_enqueue_generates_test_run_id(self, capsys):
        main(["enqueue", "proj-1", "abc123"])

        assert _output(capsys)["test_run_id"]

    def test_enqueue_finished_run(self, capsys, cli_env):
        main(["enqueue", "proj-1", "abc123", "--test-run-id", "run-1"])
        capsys.readouterr()
        ResultStore(cli_env["HEALIFY_RESULTS_DB"]).finish_test_run("run-1", TestRunStatus.PASSED, passed=1)

        assert main(["enqueue", "proj-1", "abc123", "--test-run-id", "run-1"]) == EXIT_NOT_QUEUED
        assert _output(capsys)["queued"] is False

    def test_status_unknown(self, capsys):
        assert main(["status", "nope"]) == EXIT_NOT_FOUND
        assert _output(capsys)["found"] is False

    def test_cancel(self, capsys):
        main(["enqueue", "proj-1", "abc123", "--test-run-id", "run-1"])
        capsys.readouterr()

        assert main(["cancel", "run-1"]) == EXIT_SUCCESS
        assert _output(capsys)["test_run_status"] == "CANCELLED"

    def test_cancel_unknown(self):
        assert main(["cancel", "nope"]) == EXIT_NOT_FOUND


class TestHealCommand:

    def test_heal_with_html_file(self, capsys, tmp_path):
        html = tmp_path / "page.html"
        html.write_text('<form><button data-testid="submit-form">Pay</button></form>', encoding="utf-8")

        code = main(["heal", "#submit-btn", "--html-file", str(html)])

        assert code == EXIT_SUCCESS
        result = _output(capsys)
        assert result["fixed_selector"] == "[data-testid='submit-form']"
        assert result["needs_review"] is False

    def test_missing_html_file(self, tmp_path):
        assert main(["heal", "#x", "--html-file", str(tmp_path / "missing.html")]) == EXIT_INVALID_INPUT
