"""
Scheduler Test Fixtures.

Base fixtures:
  - Empty queue database
  - Mocked clock at fixed time
  - Queue components sharing that clock

Per-test fixtures:
  - create_job factory for QUEUED jobs
  - claim helper for RUNNING jobs
"""

import pytest
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Generator

from healify.scheduler import (
    Dispatcher,
    Job,
    JobSpec,
    JobStatus,
    PersistenceAdapter,
    QueueManager,
    RecoveryManager,
    RetryController,
)


# Fixed time for deterministic tests
FIXED_DATETIME = datetime(2026, 1, 1, 0, 0, 0, tzinfo=timezone.utc)


class MockClock:
    """
    Mock clock for deterministic time control.

    - Starts at fixed epoch
    - Advances only when explicitly ticked
    """

    def __init__(self, start_time: datetime = FIXED_DATETIME):
        self._current = start_time

    def now(self) -> datetime:
        return self._current

    def tick(self, seconds: float = 1) -> None:
        """Advance time by specified seconds."""
        self._current += timedelta(seconds=seconds)

    def set(self, time: datetime) -> None:
        """Set time to specific value."""
        self._current = time


class RecordingProcessor:
    """Processor that acks every job and remembers what it saw."""

    def __init__(self, queue_manager: QueueManager):
        self.queue_manager = queue_manager
        self.processed: list[Job] = []

    def process(self, job: Job) -> None:
        self.processed.append(job)
        self.queue_manager.ack(job.job_id)


class CrashingProcessor:
    """Processor that raises without acking or nacking."""

    def __init__(self):
        self.calls = 0

    def process(self, job: Job) -> None:
        self.calls += 1
        raise RuntimeError("processor exploded")


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest.fixture
def temp_db_path() -> Generator[str, None, None]:
    """Create a temporary database file."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = f.name

    yield db_path

    # Cleanup
    Path(db_path).unlink(missing_ok=True)
    # Also cleanup WAL and SHM files
    Path(f"{db_path}-wal").unlink(missing_ok=True)
    Path(f"{db_path}-shm").unlink(missing_ok=True)


@pytest.fixture
def persistence(temp_db_path: str) -> PersistenceAdapter:
    """Create a fresh PersistenceAdapter with empty database."""
    return PersistenceAdapter(temp_db_path)


# =============================================================================
# Component Fixtures
# =============================================================================


@pytest.fixture
def mock_clock() -> MockClock:
    """Create a mock clock at fixed time."""
    return MockClock()


@pytest.fixture
def retry_controller(persistence: PersistenceAdapter, mock_clock: MockClock) -> RetryController:
    """RetryController with 3 attempts and a 5s base delay."""
    return RetryController(persistence, clock=mock_clock, max_attempts=3, base_delay_seconds=5)


@pytest.fixture
def queue_manager(
    persistence: PersistenceAdapter,
    retry_controller: RetryController,
    mock_clock: MockClock,
) -> QueueManager:
    """Create a QueueManager with the test database."""
    return QueueManager(
        persistence,
        retry_controller=retry_controller,
        clock=mock_clock,
        lease_seconds=600,
    )


@pytest.fixture
def recovery_manager(
    persistence: PersistenceAdapter,
    queue_manager: QueueManager,
    mock_clock: MockClock,
) -> RecoveryManager:
    """Create a RecoveryManager."""
    return RecoveryManager(
        persistence,
        queue_manager,
        clock=mock_clock,
        completed_keep_count=2,
        completed_keep_seconds=3600,
        failed_keep_seconds=7 * 24 * 3600,
    )


@pytest.fixture
def dispatcher(queue_manager: QueueManager, recovery_manager: RecoveryManager) -> Dispatcher:
    """Dispatcher with fast polling for tests."""
    return Dispatcher(
        queue_manager=queue_manager,
        recovery_manager=recovery_manager,
        concurrency=2,
        poll_interval=0.05,
        maintenance_interval=60.0,
    )


# =============================================================================
# Job Factory Fixtures
# =============================================================================


@pytest.fixture
def create_job(queue_manager: QueueManager, mock_clock: MockClock) -> Callable:
    """
    Factory fixture for enqueuing jobs.

    Each job is enqueued one second after the previous one so that
    creation order is unambiguous.
    """
    counter = {"n": 0}

    def _create(
        test_run_id: str = None,
        project_id: str = "proj-1",
        commit_ref: str = "abc123",
        metadata: dict = None,
    ) -> Job:
        counter["n"] += 1
        handle = queue_manager.enqueue(
            JobSpec(
                project_id=project_id,
                commit_ref=commit_ref,
                test_run_id=test_run_id or f"run-{counter['n']}",
                metadata=metadata or {},
            )
        )
        mock_clock.tick(1)
        return queue_manager.get_job(handle.job_id)

    return _create


# =============================================================================
# Assertion Helpers
# =============================================================================


def assert_job_status(persistence: PersistenceAdapter, job_id: str, expected: JobStatus) -> None:
    """Assert job has expected status."""
    job = persistence.get_job(job_id)
    assert job is not None, f"Job {job_id} not found"
    assert job.status == expected, f"Expected {expected}, got {job.status}"


def assert_queue_order(queue_manager: QueueManager, expected_job_ids: list) -> None:
    """Assert queue order matches expected job IDs."""
    queued = queue_manager.list_queued()
    actual_ids = [j.job_id for j in queued]
    assert actual_ids == expected_job_ids, f"Queue order mismatch: {actual_ids} != {expected_job_ids}"
