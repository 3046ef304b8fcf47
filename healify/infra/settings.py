"""
Environment-driven configuration for Healify.

All knobs are read from environment variables (a .env file is loaded by
the entry points via python-dotenv). Settings.from_env() takes a snapshot;
components receive plain values from it and never read the environment
themselves.

Environment Variables:
- HEALIFY_QUEUE_DB: SQLite file for the job queue (default: data/queue.db)
- HEALIFY_RESULTS_DB: SQLite file for test runs and findings (default: data/results.db)
- HEALIFY_WORKDIR_ROOT: Parent directory for job workspaces (default: system temp)
- WORKER_CONCURRENCY: Number of worker threads (default: 2)
- JOB_MAX_ATTEMPTS / JOB_BACKOFF_BASE_SECONDS: Retry policy (default: 3 / 5)
- JOB_TIMEOUT_SECONDS: Wall-clock budget per job, also the claim lease (default: 1200)
- ANTHROPIC_API_KEY / CLAUDE_MODEL: Generative suggestion backend
- GITHUB_API_URL: Source-control API base URL
- LOG_LEVEL / LOG_DIR: Logging
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

DEFAULT_CLAUDE_MODEL = "claude-sonnet-4-5-20250929"


# =============================================================================
# Environment Helpers
# =============================================================================

def _get_env_bool(key: str, default: bool = False) -> bool:
    """Get boolean value from environment variable."""
    val = os.getenv(key, "").lower()
    if val in ("true", "1", "yes", "on"):
        return True
    elif val in ("false", "0", "no", "off"):
        return False
    return default


def _get_env_int(key: str, default: int) -> int:
    """Get integer value from environment variable."""
    val = os.getenv(key)
    if val is not None:
        try:
            return int(val)
        except ValueError:
            logger.warning(f"[Settings] Invalid integer for {key}: {val}, using default: {default}")
    return default


def _get_env_float(key: str, default: float) -> float:
    """Get float value from environment variable."""
    val = os.getenv(key)
    if val is not None:
        try:
            return float(val)
        except ValueError:
            logger.warning(f"[Settings] Invalid number for {key}: {val}, using default: {default}")
    return default


def _get_env_str(key: str, default: Optional[str] = None) -> Optional[str]:
    """Get non-empty string value from environment variable."""
    val = os.getenv(key)
    if val is None or val.strip() == "":
        return default
    return val.strip()


# =============================================================================
# Settings
# =============================================================================

@dataclass(frozen=True)
class Settings:
    """Snapshot of runtime configuration."""

    # Storage
    queue_db_path: Path = Path("data/queue.db")
    results_db_path: Path = Path("data/results.db")
    workdir_root: Optional[Path] = None

    # Worker pool and queue policy
    worker_concurrency: int = 2
    poll_interval: float = 1.0
    maintenance_interval: float = 30.0
    worker_autostart: bool = False
    job_max_attempts: int = 3
    job_backoff_base_seconds: int = 5
    job_timeout_seconds: int = 1200

    # Retention
    completed_keep_count: int = 100
    completed_keep_seconds: int = 3600
    failed_keep_seconds: int = 7 * 24 * 3600

    # Runner
    clone_timeout_seconds: int = 60
    install_timeout_seconds: int = 300
    test_timeout_seconds: int = 600
    install_browsers: bool = True

    # Generative backend
    anthropic_api_key: Optional[str] = None
    claude_model: str = DEFAULT_CLAUDE_MODEL
    ai_timeout_seconds: float = 30.0
    ai_dom_char_budget: int = 8000

    # Source control
    github_api_url: str = "https://api.github.com"
    github_timeout_seconds: float = 20.0

    # Logging
    log_level: str = "INFO"
    log_dir: Path = Path("logs")

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from the current environment."""
        workdir_root = _get_env_str("HEALIFY_WORKDIR_ROOT")
        return cls(
            queue_db_path=Path(_get_env_str("HEALIFY_QUEUE_DB", "data/queue.db")),
            results_db_path=Path(_get_env_str("HEALIFY_RESULTS_DB", "data/results.db")),
            workdir_root=Path(workdir_root) if workdir_root else None,
            worker_concurrency=max(1, _get_env_int("WORKER_CONCURRENCY", 2)),
            poll_interval=_get_env_float("WORKER_POLL_INTERVAL", 1.0),
            maintenance_interval=_get_env_float("WORKER_MAINTENANCE_INTERVAL", 30.0),
            worker_autostart=_get_env_bool("WORKER_AUTOSTART", False),
            job_max_attempts=max(1, _get_env_int("JOB_MAX_ATTEMPTS", 3)),
            job_backoff_base_seconds=_get_env_int("JOB_BACKOFF_BASE_SECONDS", 5),
            job_timeout_seconds=_get_env_int("JOB_TIMEOUT_SECONDS", 1200),
            completed_keep_count=_get_env_int("JOB_COMPLETED_KEEP_COUNT", 100),
            completed_keep_seconds=_get_env_int("JOB_COMPLETED_KEEP_SECONDS", 3600),
            failed_keep_seconds=_get_env_int("JOB_FAILED_KEEP_SECONDS", 7 * 24 * 3600),
            clone_timeout_seconds=_get_env_int("CLONE_TIMEOUT_SECONDS", 60),
            install_timeout_seconds=_get_env_int("INSTALL_TIMEOUT_SECONDS", 300),
            test_timeout_seconds=_get_env_int("TEST_TIMEOUT_SECONDS", 600),
            install_browsers=_get_env_bool("RUNNER_INSTALL_BROWSERS", True),
            anthropic_api_key=_get_env_str("ANTHROPIC_API_KEY"),
            claude_model=_get_env_str("CLAUDE_MODEL", DEFAULT_CLAUDE_MODEL),
            ai_timeout_seconds=_get_env_float("AI_TIMEOUT_SECONDS", 30.0),
            ai_dom_char_budget=_get_env_int("AI_DOM_CHAR_BUDGET", 8000),
            github_api_url=_get_env_str("GITHUB_API_URL", "https://api.github.com"),
            github_timeout_seconds=_get_env_float("GITHUB_TIMEOUT_SECONDS", 20.0),
            log_level=_get_env_str("LOG_LEVEL", "INFO"),
            log_dir=Path(_get_env_str("LOG_DIR", "logs")),
        )
