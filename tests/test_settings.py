"""
Tests for environment-driven settings.
"""

import os
from pathlib import Path
from unittest.mock import patch

from healify.infra.settings import DEFAULT_CLAUDE_MODEL, Settings


SETTINGS_ENV = (
    "HEALIFY_QUEUE_DB",
    "HEALIFY_RESULTS_DB",
    "HEALIFY_WORKDIR_ROOT",
    "WORKER_CONCURRENCY",
    "WORKER_AUTOSTART",
    "JOB_MAX_ATTEMPTS",
    "JOB_BACKOFF_BASE_SECONDS",
    "JOB_TIMEOUT_SECONDS",
    "RUNNER_INSTALL_BROWSERS",
    "ANTHROPIC_API_KEY",
    "CLAUDE_MODEL",
    "AI_TIMEOUT_SECONDS",
    "LOG_LEVEL",
)


def _clean_env(**values) -> dict:
    env = {key: value for key, value in os.environ.items() if key not in SETTINGS_ENV}
    env.update(values)
    return env


class TestDefaults:

    def test_defaults(self):
        with patch.dict(os.environ, _clean_env(), clear=True):
            settings = Settings.from_env()

        assert settings.queue_db_path == Path("data/queue.db")
        assert settings.results_db_path == Path("data/results.db")
        assert settings.workdir_root is None
        assert settings.worker_concurrency == 2
        assert settings.worker_autostart is False
        assert settings.job_max_attempts == 3
        assert settings.job_backoff_base_seconds == 5
        assert settings.job_timeout_seconds == 1200
        assert settings.install_browsers is True
        assert settings.anthropic_api_key is None
        assert settings.claude_model == DEFAULT_CLAUDE_MODEL


class TestOverrides:

    def test_values_from_environment(self):
        env = _clean_env(
            HEALIFY_QUEUE_DB="/var/healify/q.db",
            HEALIFY_WORKDIR_ROOT="/tmp/healify",
            WORKER_CONCURRENCY="4",
            WORKER_AUTOSTART="yes",
            JOB_MAX_ATTEMPTS="5",
            RUNNER_INSTALL_BROWSERS="off",
            ANTHROPIC_API_KEY="  sk-test  ",
            AI_TIMEOUT_SECONDS="12.5",
            LOG_LEVEL="DEBUG",
        )
        with patch.dict(os.environ, env, clear=True):
            settings = Settings.from_env()

        assert settings.queue_db_path == Path("/var/healify/q.db")
        assert settings.workdir_root == Path("/tmp/healify")
        assert settings.worker_concurrency == 4
        assert settings.worker_autostart is True
        assert settings.job_max_attempts == 5
        assert settings.install_browsers is False
        assert settings.anthropic_api_key == "sk-test"
        assert settings.ai_timeout_seconds == 12.5
        assert settings.log_level == "DEBUG"

    def test_invalid_numbers_fall_back(self):
        env = _clean_env(WORKER_CONCURRENCY="many", JOB_TIMEOUT_SECONDS="soon", AI_TIMEOUT_SECONDS="x")
        with patch.dict(os.environ, env, clear=True):
            settings = Settings.from_env()

        assert settings.worker_concurrency == 2
        assert settings.job_timeout_seconds == 1200
        assert settings.ai_timeout_seconds == 30.0

    def test_lower_bounds(self):
        with patch.dict(os.environ, _clean_env(WORKER_CONCURRENCY="0", JOB_MAX_ATTEMPTS="-1"), clear=True):
            settings = Settings.from_env()

        assert settings.worker_concurrency == 1
        assert settings.job_max_attempts == 1

    def test_blank_values_use_defaults(self):
        with patch.dict(os.environ, _clean_env(ANTHROPIC_API_KEY="", CLAUDE_MODEL="   "), clear=True):
            settings = Settings.from_env()

        assert settings.anthropic_api_key is None
        assert settings.claude_model == DEFAULT_CLAUDE_MODEL

    def test_unrecognized_bool_uses_default(self):
        with patch.dict(os.environ, _clean_env(WORKER_AUTOSTART="maybe"), clear=True):
            assert Settings.from_env().worker_autostart is False
