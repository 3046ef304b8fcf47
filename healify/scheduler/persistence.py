"""
Persistence Adapter for the job queue.

SQLite with WAL mode. Every state change is a single conditional UPDATE
whose WHERE clause names the expected current status, and the rowcount
is checked. That makes claims exclusive across threads and processes
sharing the same database file.

Provides:
- Idempotent job creation keyed by test_run_id
- Atomic claim (QUEUED -> RUNNING) with a lease
- Requeue / fail / complete transitions
- Lease-expiry and retention queries
"""

import json
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional, Tuple

from .entities import (
    Job,
    JobStatus,
    ACTIVE_JOB_STATUSES,
)
from .errors import (
    ConcurrencyViolationError,
    InvalidOperationError,
    JobNotFoundError,
    QueueUnavailableError,
)


DEFAULT_BUSY_TIMEOUT_SECONDS = 5.0


class PersistenceAdapter:
    """
    SQLite-based storage for jobs.

    - Does NOT contain retry or retention policy
    - Does NOT validate beyond state preconditions
    """

    def __init__(self, db_path: str | Path, busy_timeout: float = DEFAULT_BUSY_TIMEOUT_SECONDS):
        """
        Initialize persistence adapter.

        Args:
            db_path: Path to SQLite database file
            busy_timeout: Seconds to wait on a locked database before failing
        """
        self.db_path = str(db_path)
        self.busy_timeout = busy_timeout
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection with WAL mode enabled."""
        try:
            conn = sqlite3.connect(self.db_path, timeout=self.busy_timeout)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA journal_mode=WAL")
        except sqlite3.Error as e:
            raise QueueUnavailableError(f"Queue backend unavailable: {e}") from e
        return conn

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        """Context manager for read-only database access."""
        conn = self._get_connection()
        try:
            yield conn
        except sqlite3.OperationalError as e:
            raise QueueUnavailableError(f"Queue backend unavailable: {e}") from e
        finally:
            conn.close()

    @contextmanager
    def _transaction(self, immediate: bool = False) -> Iterator[sqlite3.Connection]:
        """
        Context manager for database transactions.

        immediate=True takes the write lock up front, for read-then-write
        sequences that must not interleave with another writer.
        """
        conn = self._get_connection()
        try:
            if immediate:
                conn.execute("BEGIN IMMEDIATE")
            yield conn
            conn.commit()
        except sqlite3.OperationalError as e:
            conn.rollback()
            raise QueueUnavailableError(f"Queue backend unavailable: {e}") from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._transaction() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS jobs (
                    job_id TEXT PRIMARY KEY,
                    test_run_id TEXT NOT NULL UNIQUE,
                    project_id TEXT NOT NULL,
                    commit_ref TEXT NOT NULL,
                    metadata TEXT NOT NULL DEFAULT '{}',
                    status TEXT NOT NULL,
                    attempts INTEGER NOT NULL DEFAULT 0,
                    max_attempts INTEGER NOT NULL DEFAULT 3,
                    available_at TEXT NOT NULL,
                    progress INTEGER NOT NULL DEFAULT 0,
                    last_error TEXT,
                    claimed_by TEXT,
                    lease_expires_at TEXT,
                    created_at TEXT NOT NULL,
                    started_at TEXT,
                    finished_at TEXT
                )
            """)

            # Index for claim ordering
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_jobs_claim_order
                ON jobs (status, available_at, created_at)
            """)

            # Index for retention sweeps
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_jobs_finished
                ON jobs (status, finished_at)
            """)

    # =========================================================================
    # Row Mapping
    # =========================================================================

    def _row_to_job(self, row: sqlite3.Row) -> Job:
        return Job(
            job_id=row["job_id"],
            test_run_id=row["test_run_id"],
            project_id=row["project_id"],
            commit_ref=row["commit_ref"],
            metadata=json.loads(row["metadata"]) if row["metadata"] else {},
            status=JobStatus(row["status"]),
            attempts=row["attempts"],
            max_attempts=row["max_attempts"],
            available_at=row["available_at"],
            progress=row["progress"],
            last_error=row["last_error"],
            claimed_by=row["claimed_by"],
            lease_expires_at=row["lease_expires_at"],
            created_at=row["created_at"],
            started_at=row["started_at"],
            finished_at=row["finished_at"],
        )

    def _require_job(self, conn: sqlite3.Connection, job_id: str) -> sqlite3.Row:
        row = conn.execute("SELECT * FROM jobs WHERE job_id = ?", (job_id,)).fetchone()
        if row is None:
            raise JobNotFoundError(job_id)
        return row

    # =========================================================================
    # Job Creation
    # =========================================================================

    def create_or_get_job(self, job: Job) -> Tuple[Job, bool]:
        """
        Store a job unless an active one exists for the same test run.

        - No row for test_run_id: insert, return (job, True)
        - Active row (QUEUED/RUNNING): return (existing, False)
        - Terminal row: replace it with the new job, return (job, True)
        """
        with self._transaction(immediate=True) as conn:
            row = conn.execute(
                "SELECT * FROM jobs WHERE test_run_id = ?",
                (job.test_run_id,),
            ).fetchone()

            if row is not None and JobStatus(row["status"]) in ACTIVE_JOB_STATUSES:
                return self._row_to_job(row), False

            if row is not None:
                conn.execute("DELETE FROM jobs WHERE job_id = ?", (row["job_id"],))

            conn.execute(
                """
                INSERT INTO jobs
                (job_id, test_run_id, project_id, commit_ref, metadata, status,
                 attempts, max_attempts, available_at, progress, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    job.job_id,
                    job.test_run_id,
                    job.project_id,
                    job.commit_ref,
                    json.dumps(job.metadata),
                    job.status.value,
                    job.attempts,
                    job.max_attempts,
                    job.available_at,
                    job.progress,
                    job.created_at,
                ),
            )
        return job, True

    # =========================================================================
    # Queries
    # =========================================================================

    def get_job(self, job_id: str) -> Optional[Job]:
        """Get a job by ID."""
        with self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM jobs WHERE job_id = ?",
                (job_id,),
            ).fetchone()
        return self._row_to_job(row) if row else None

    def get_job_by_test_run(self, test_run_id: str) -> Optional[Job]:
        """Get the job for a test run, if one exists."""
        with self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM jobs WHERE test_run_id = ?",
                (test_run_id,),
            ).fetchone()
        return self._row_to_job(row) if row else None

    def get_next_eligible_job_id(self, now: str) -> Optional[str]:
        """Oldest QUEUED job whose backoff delay has elapsed."""
        with self._connection() as conn:
            row = conn.execute(
                """
                SELECT job_id FROM jobs
                WHERE status = ? AND available_at <= ?
                ORDER BY available_at ASC, created_at ASC
                LIMIT 1
                """,
                (JobStatus.QUEUED.value, now),
            ).fetchone()
        return row["job_id"] if row else None

    def list_jobs_by_status(self, status: JobStatus, limit: int = 100) -> list[Job]:
        """List jobs with a status in claim order."""
        with self._connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM jobs WHERE status = ?
                ORDER BY available_at ASC, created_at ASC
                LIMIT ?
                """,
                (status.value, limit),
            ).fetchall()
        return [self._row_to_job(row) for row in rows]

    def count_jobs_by_status(self, status: JobStatus) -> int:
        """Count jobs with a status."""
        with self._connection() as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS n FROM jobs WHERE status = ?",
                (status.value,),
            ).fetchone()
        return row["n"]

    def get_expired_leases(self, now: str) -> list[Job]:
        """RUNNING jobs whose lease ran out (worker crashed or hung)."""
        with self._connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM jobs
                WHERE status = ? AND lease_expires_at IS NOT NULL AND lease_expires_at < ?
                ORDER BY lease_expires_at ASC
                """,
                (JobStatus.RUNNING.value, now),
            ).fetchall()
        return [self._row_to_job(row) for row in rows]

    # =========================================================================
    # State Transitions
    # =========================================================================

    def atomic_claim_job(
        self,
        job_id: str,
        worker_id: str,
        now: str,
        lease_expires_at: str,
    ) -> Job:
        """
        Atomically claim a QUEUED job: QUEUED -> RUNNING, attempts + 1.

        Raises:
            JobNotFoundError: If the job does not exist
            ConcurrencyViolationError: If another worker got there first
        """
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE jobs
                SET status = ?, attempts = attempts + 1, claimed_by = ?,
                    lease_expires_at = ?, started_at = ?
                WHERE job_id = ? AND status = ? AND available_at <= ?
                """,
                (
                    JobStatus.RUNNING.value,
                    worker_id,
                    lease_expires_at,
                    now,
                    job_id,
                    JobStatus.QUEUED.value,
                    now,
                ),
            )

            if cursor.rowcount == 0:
                row = self._require_job(conn, job_id)
                raise ConcurrencyViolationError(
                    job_id,
                    expected_status=JobStatus.QUEUED.value,
                    actual_status=row["status"],
                )

            row = self._require_job(conn, job_id)
        return self._row_to_job(row)

    def _transition(
        self,
        job_id: str,
        expected: tuple[JobStatus, ...],
        assignments: str,
        values: tuple,
        claim: Optional[Tuple[str, int]] = None,
    ) -> Job:
        """
        Conditional UPDATE from one of the expected statuses.

        claim=(claimed_by, attempts) additionally requires the job to still
        be held by that claim; a worker whose lease was recovered and handed
        to someone else gets InvalidOperationError.
        """
        placeholders = ", ".join("?" for _ in expected)
        where = f"job_id = ? AND status IN ({placeholders})"
        params = (*values, job_id, *(s.value for s in expected))
        if claim is not None:
            where += " AND claimed_by = ? AND attempts = ?"
            params = (*params, *claim)

        with self._transaction() as conn:
            cursor = conn.execute(f"UPDATE jobs SET {assignments} WHERE {where}", params)
            if cursor.rowcount == 0:
                row = self._require_job(conn, job_id)
                if row["status"] in {s.value for s in expected} and claim is not None:
                    raise InvalidOperationError(
                        f"Job {job_id} is held by {row['claimed_by']} (attempt {row['attempts']}), "
                        f"not by {claim[0]} (attempt {claim[1]})"
                    )
                raise InvalidOperationError(
                    f"Job {job_id} is {row['status']}, expected one of "
                    f"{[s.value for s in expected]}"
                )
            row = self._require_job(conn, job_id)
        return self._row_to_job(row)

    def complete_job(self, job_id: str, now: str, claim: Optional[Tuple[str, int]] = None) -> Job:
        """RUNNING -> COMPLETED."""
        return self._transition(
            job_id,
            (JobStatus.RUNNING,),
            "status = ?, progress = 100, finished_at = ?, claimed_by = NULL, lease_expires_at = NULL",
            (JobStatus.COMPLETED.value, now),
            claim,
        )

    def requeue_job(
        self, job_id: str, error: str, available_at: str, claim: Optional[Tuple[str, int]] = None
    ) -> Job:
        """RUNNING -> QUEUED, eligible again at available_at."""
        return self._transition(
            job_id,
            (JobStatus.RUNNING,),
            "status = ?, last_error = ?, available_at = ?, claimed_by = NULL, lease_expires_at = NULL",
            (JobStatus.QUEUED.value, error, available_at),
            claim,
        )

    def fail_job(self, job_id: str, error: str, now: str, claim: Optional[Tuple[str, int]] = None) -> Job:
        """RUNNING -> FAILED (retries exhausted)."""
        return self._transition(
            job_id,
            (JobStatus.RUNNING,),
            "status = ?, last_error = ?, finished_at = ?, claimed_by = NULL, lease_expires_at = NULL",
            (JobStatus.FAILED.value, error, now),
            claim,
        )

    def cancel_job(self, job_id: str, now: str) -> Job:
        """QUEUED -> CANCELLED."""
        return self._transition(
            job_id,
            (JobStatus.QUEUED,),
            "status = ?, last_error = ?, finished_at = ?",
            (JobStatus.CANCELLED.value, "Cancelled before execution", now),
        )

    def update_progress(self, job_id: str, progress: int) -> bool:
        """Record progress for a RUNNING job. Returns False if it is no longer RUNNING."""
        with self._transaction() as conn:
            cursor = conn.execute(
                "UPDATE jobs SET progress = ? WHERE job_id = ? AND status = ?",
                (progress, job_id, JobStatus.RUNNING.value),
            )
        return cursor.rowcount == 1

    # =========================================================================
    # Retention
    # =========================================================================

    def delete_completed_jobs(self, finished_before: str, keep_count: int) -> int:
        """
        Prune COMPLETED jobs older than finished_before, and all but the
        newest keep_count of the rest.
        """
        with self._transaction() as conn:
            by_age = conn.execute(
                "DELETE FROM jobs WHERE status = ? AND finished_at < ?",
                (JobStatus.COMPLETED.value, finished_before),
            ).rowcount
            by_count = conn.execute(
                """
                DELETE FROM jobs
                WHERE status = ? AND job_id NOT IN (
                    SELECT job_id FROM jobs WHERE status = ?
                    ORDER BY finished_at DESC LIMIT ?
                )
                """,
                (JobStatus.COMPLETED.value, JobStatus.COMPLETED.value, keep_count),
            ).rowcount
        return by_age + by_count

    def delete_failed_jobs(self, finished_before: str) -> int:
        """Prune FAILED and CANCELLED jobs older than the retention window."""
        with self._transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM jobs WHERE status IN (?, ?) AND finished_at < ?",
                (JobStatus.FAILED.value, JobStatus.CANCELLED.value, finished_before),
            )
        return cursor.rowcount
