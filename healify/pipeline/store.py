"""
Result Store.

SQLite persistence for test runs, healing findings and pull-request
records, plus the project and credential tables that external
collaborators populate.

Idempotency guards live in the SQL:
- test runs are inserted with INSERT OR IGNORE keyed by test_run_id
- terminal test runs are never updated again
- a finding's decision changes only while it is ANALYZING
- a finding's pr_url is written only while it is NULL
"""

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional, Tuple

from healify.models import Failure, HealingDecision, HealingSuggestion, SelectorType
from .entities import (
    HealingFinding,
    Project,
    PullRequestRecord,
    TestRun,
    TestRunStatus,
    TERMINAL_TEST_RUN_STATUSES,
    now_iso,
)


_TERMINAL_VALUES = tuple(s.value for s in TERMINAL_TEST_RUN_STATUSES)
_TERMINAL_PLACEHOLDERS = ", ".join("?" for _ in _TERMINAL_VALUES)


class ResultStore:
    """SQLite-based storage for pipeline results."""

    def __init__(self, db_path: str | Path, busy_timeout: float = 5.0):
        """
        Initialize result store.

        Args:
            db_path: Path to SQLite database file
            busy_timeout: Seconds to wait on a locked database
        """
        self.db_path = str(db_path)
        self.busy_timeout = busy_timeout
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection with WAL mode enabled."""
        conn = sqlite3.connect(self.db_path, timeout=self.busy_timeout)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        return conn

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        """Context manager for database connections."""
        conn = self._get_connection()
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Context manager for database transactions."""
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._transaction() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS projects (
                    project_id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    repository TEXT,
                    owner_user_id TEXT,
                    test_command TEXT,
                    created_at TEXT NOT NULL
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS scm_credentials (
                    user_id TEXT NOT NULL,
                    provider TEXT NOT NULL,
                    access_token TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    PRIMARY KEY (user_id, provider)
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS test_runs (
                    test_run_id TEXT PRIMARY KEY,
                    project_id TEXT NOT NULL,
                    status TEXT NOT NULL,
                    commit_ref TEXT,
                    branch TEXT,
                    commit_message TEXT,
                    commit_author TEXT,
                    passed INTEGER NOT NULL DEFAULT 0,
                    failed INTEGER NOT NULL DEFAULT 0,
                    healed INTEGER NOT NULL DEFAULT 0,
                    total INTEGER NOT NULL DEFAULT 0,
                    error TEXT,
                    created_at TEXT NOT NULL,
                    started_at TEXT,
                    finished_at TEXT
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS healing_findings (
                    finding_id TEXT PRIMARY KEY,
                    test_run_id TEXT NOT NULL,
                    test_name TEXT NOT NULL,
                    test_file TEXT NOT NULL,
                    failed_selector TEXT NOT NULL,
                    selector_type TEXT NOT NULL,
                    error_message TEXT NOT NULL,
                    dom_snapshot_before TEXT,
                    dom_snapshot_after TEXT,
                    decision TEXT NOT NULL,
                    proposed_selector TEXT,
                    proposed_selector_type TEXT,
                    confidence REAL,
                    reasoning TEXT,
                    pr_url TEXT,
                    pr_branch TEXT,
                    applied_at TEXT,
                    publish_error TEXT,
                    created_at TEXT NOT NULL,
                    FOREIGN KEY (test_run_id) REFERENCES test_runs(test_run_id)
                )
            """)

            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_findings_test_run
                ON healing_findings (test_run_id)
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS pull_requests (
                    finding_id TEXT PRIMARY KEY,
                    url TEXT NOT NULL,
                    branch_name TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    FOREIGN KEY (finding_id) REFERENCES healing_findings(finding_id)
                )
            """)

    # =========================================================================
    # Projects and Credentials
    # =========================================================================

    def save_project(self, project: Project) -> Project:
        """Insert or update a project."""
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO projects (project_id, name, repository, owner_user_id, test_command, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(project_id) DO UPDATE SET
                    name = excluded.name,
                    repository = excluded.repository,
                    owner_user_id = excluded.owner_user_id,
                    test_command = excluded.test_command
                """,
                (
                    project.project_id,
                    project.name,
                    project.repository,
                    project.owner_user_id,
                    project.test_command,
                    project.created_at,
                ),
            )
        return project

    def get_project(self, project_id: str) -> Optional[Project]:
        """Get a project by ID."""
        with self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM projects WHERE project_id = ?",
                (project_id,),
            ).fetchone()

        if row is None:
            return None

        return Project(
            project_id=row["project_id"],
            name=row["name"],
            repository=row["repository"],
            owner_user_id=row["owner_user_id"],
            test_command=row["test_command"],
            created_at=row["created_at"],
        )

    def set_credential(self, user_id: str, access_token: str, provider: str = "github") -> None:
        """Store a source-control access token for a user."""
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO scm_credentials (user_id, provider, access_token, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(user_id, provider) DO UPDATE SET
                    access_token = excluded.access_token,
                    updated_at = excluded.updated_at
                """,
                (user_id, provider, access_token, now_iso()),
            )

    def get_credential(self, user_id: str, provider: str = "github") -> Optional[str]:
        """Get a user's access token, if any."""
        with self._connection() as conn:
            row = conn.execute(
                "SELECT access_token FROM scm_credentials WHERE user_id = ? AND provider = ?",
                (user_id, provider),
            ).fetchone()
        return row["access_token"] if row else None

    # =========================================================================
    # Test Runs
    # =========================================================================

    def _row_to_test_run(self, row: sqlite3.Row) -> TestRun:
        return TestRun(
            test_run_id=row["test_run_id"],
            project_id=row["project_id"],
            status=TestRunStatus(row["status"]),
            commit_ref=row["commit_ref"],
            branch=row["branch"],
            commit_message=row["commit_message"],
            commit_author=row["commit_author"],
            passed=row["passed"],
            failed=row["failed"],
            healed=row["healed"],
            total=row["total"],
            error=row["error"],
            created_at=row["created_at"],
            started_at=row["started_at"],
            finished_at=row["finished_at"],
        )

    def create_test_run(self, run: TestRun) -> Tuple[TestRun, bool]:
        """
        Create a test run unless one already exists with the same ID.

        Returns:
            (stored_run, created)
        """
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                INSERT OR IGNORE INTO test_runs
                (test_run_id, project_id, status, commit_ref, branch, commit_message,
                 commit_author, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    run.test_run_id,
                    run.project_id,
                    run.status.value,
                    run.commit_ref,
                    run.branch,
                    run.commit_message,
                    run.commit_author,
                    run.created_at,
                ),
            )
            created = cursor.rowcount == 1
            row = conn.execute(
                "SELECT * FROM test_runs WHERE test_run_id = ?",
                (run.test_run_id,),
            ).fetchone()
        return self._row_to_test_run(row), created

    def get_test_run(self, test_run_id: str) -> Optional[TestRun]:
        """Get a test run by ID."""
        with self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM test_runs WHERE test_run_id = ?",
                (test_run_id,),
            ).fetchone()
        return self._row_to_test_run(row) if row else None

    def mark_test_run_running(self, test_run_id: str) -> bool:
        """PENDING/RUNNING -> RUNNING. False if the run is terminal or missing."""
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE test_runs
                SET status = ?, started_at = COALESCE(started_at, ?), error = NULL
                WHERE test_run_id = ? AND status IN (?, ?)
                """,
                (
                    TestRunStatus.RUNNING.value,
                    now_iso(),
                    test_run_id,
                    TestRunStatus.PENDING.value,
                    TestRunStatus.RUNNING.value,
                ),
            )
        return cursor.rowcount == 1

    def release_test_run(self, test_run_id: str, error: str) -> bool:
        """Back to PENDING with the error visible, while a retry is scheduled."""
        with self._transaction() as conn:
            cursor = conn.execute(
                "UPDATE test_runs SET status = ?, error = ? WHERE test_run_id = ? AND status IN (?, ?)",
                (
                    TestRunStatus.PENDING.value,
                    error,
                    test_run_id,
                    TestRunStatus.PENDING.value,
                    TestRunStatus.RUNNING.value,
                ),
            )
        return cursor.rowcount == 1

    def finish_test_run(
        self,
        test_run_id: str,
        status: TestRunStatus,
        passed: int = 0,
        failed: int = 0,
        healed: int = 0,
        error: Optional[str] = None,
    ) -> bool:
        """
        Move a test run to a terminal status.

        Returns:
            False if the run was already terminal (terminal states are final)
        """
        with self._transaction() as conn:
            cursor = conn.execute(
                f"""
                UPDATE test_runs
                SET status = ?, passed = ?, failed = ?, healed = ?, total = ?,
                    error = ?, finished_at = ?
                WHERE test_run_id = ? AND status NOT IN ({_TERMINAL_PLACEHOLDERS})
                """,
                (
                    status.value,
                    passed,
                    failed,
                    healed,
                    passed + failed,
                    error,
                    now_iso(),
                    test_run_id,
                    *_TERMINAL_VALUES,
                ),
            )
        return cursor.rowcount == 1

    def set_test_run_error(self, test_run_id: str, error: str) -> bool:
        """Record an error on a non-terminal run without changing its status."""
        with self._transaction() as conn:
            cursor = conn.execute(
                f"UPDATE test_runs SET error = ? WHERE test_run_id = ? AND status NOT IN ({_TERMINAL_PLACEHOLDERS})",
                (error, test_run_id, *_TERMINAL_VALUES),
            )
        return cursor.rowcount == 1

    # =========================================================================
    # Findings
    # =========================================================================

    def _row_to_finding(self, row: sqlite3.Row) -> HealingFinding:
        return HealingFinding(
            finding_id=row["finding_id"],
            test_run_id=row["test_run_id"],
            failure=Failure(
                test_name=row["test_name"],
                test_file=row["test_file"],
                failed_selector=row["failed_selector"],
                selector_type=SelectorType.parse(row["selector_type"]),
                error_message=row["error_message"],
                dom_snapshot_before=row["dom_snapshot_before"],
                dom_snapshot_after=row["dom_snapshot_after"],
            ),
            decision=HealingDecision(row["decision"]),
            proposed_selector=row["proposed_selector"],
            proposed_selector_type=(
                SelectorType.parse(row["proposed_selector_type"])
                if row["proposed_selector_type"] else None
            ),
            confidence=row["confidence"],
            reasoning=row["reasoning"],
            pr_url=row["pr_url"],
            pr_branch=row["pr_branch"],
            applied_at=row["applied_at"],
            publish_error=row["publish_error"],
            created_at=row["created_at"],
        )

    def create_finding(self, finding: HealingFinding) -> Tuple[HealingFinding, bool]:
        """
        Insert a finding unless its ID already exists.

        Returns:
            (stored_finding, created)
        """
        failure = finding.failure
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                INSERT OR IGNORE INTO healing_findings
                (finding_id, test_run_id, test_name, test_file, failed_selector, selector_type,
                 error_message, dom_snapshot_before, dom_snapshot_after, decision, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    finding.finding_id,
                    finding.test_run_id,
                    failure.test_name,
                    failure.test_file,
                    failure.failed_selector,
                    failure.selector_type.value,
                    failure.error_message,
                    failure.dom_snapshot_before,
                    failure.dom_snapshot_after,
                    finding.decision.value,
                    finding.created_at,
                ),
            )
            created = cursor.rowcount == 1
            row = conn.execute(
                "SELECT * FROM healing_findings WHERE finding_id = ?",
                (finding.finding_id,),
            ).fetchone()
        return self._row_to_finding(row), created

    def get_finding(self, finding_id: str) -> Optional[HealingFinding]:
        """Get a finding by ID."""
        with self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM healing_findings WHERE finding_id = ?",
                (finding_id,),
            ).fetchone()
        return self._row_to_finding(row) if row else None

    def list_findings(self, test_run_id: str) -> list[HealingFinding]:
        """List findings of a test run in creation order."""
        with self._connection() as conn:
            rows = conn.execute(
                "SELECT * FROM healing_findings WHERE test_run_id = ? ORDER BY created_at ASC, rowid ASC",
                (test_run_id,),
            ).fetchall()
        return [self._row_to_finding(row) for row in rows]

    def record_decision(
        self,
        finding_id: str,
        decision: HealingDecision,
        suggestion: Optional[HealingSuggestion] = None,
        reasoning: Optional[str] = None,
    ) -> bool:
        """
        Move a finding out of ANALYZING.

        Returns:
            False if the finding was already decided
        """
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE healing_findings
                SET decision = ?, proposed_selector = ?, proposed_selector_type = ?,
                    confidence = ?, reasoning = ?
                WHERE finding_id = ? AND decision = ?
                """,
                (
                    decision.value,
                    suggestion.new_selector if suggestion else None,
                    suggestion.selector_type.value if suggestion else None,
                    suggestion.confidence if suggestion else None,
                    reasoning if reasoning is not None else (suggestion.reasoning if suggestion else None),
                    finding_id,
                    HealingDecision.ANALYZING.value,
                ),
            )
        return cursor.rowcount == 1

    def record_publish_error(self, finding_id: str, reason: str) -> None:
        """Keep the reason the last publish attempt did not open a PR."""
        with self._transaction() as conn:
            conn.execute(
                "UPDATE healing_findings SET publish_error = ? WHERE finding_id = ? AND pr_url IS NULL",
                (reason, finding_id),
            )

    def record_pull_request(self, finding_id: str, url: str, branch_name: str) -> bool:
        """
        Attach a PR to a finding (at most once).

        Returns:
            False if the finding already has a PR
        """
        now = now_iso()
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE healing_findings
                SET pr_url = ?, pr_branch = ?, applied_at = ?, publish_error = NULL
                WHERE finding_id = ? AND pr_url IS NULL
                """,
                (url, branch_name, now, finding_id),
            )
            if cursor.rowcount == 0:
                return False
            conn.execute(
                "INSERT INTO pull_requests (finding_id, url, branch_name, created_at) VALUES (?, ?, ?, ?)",
                (finding_id, url, branch_name, now),
            )
        return True

    def get_pull_request(self, finding_id: str) -> Optional[PullRequestRecord]:
        """Get the PR record of a finding."""
        with self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM pull_requests WHERE finding_id = ?",
                (finding_id,),
            ).fetchone()
        if row is None:
            return None
        return PullRequestRecord(
            finding_id=row["finding_id"],
            url=row["url"],
            branch_name=row["branch_name"],
            created_at=row["created_at"],
        )

    def count_healed(self, test_run_id: str) -> int:
        """Findings of a run that were auto-healed and carry a PR."""
        with self._connection() as conn:
            row = conn.execute(
                """
                SELECT COUNT(*) AS n FROM healing_findings
                WHERE test_run_id = ? AND decision = ? AND pr_url IS NOT NULL
                """,
                (test_run_id, HealingDecision.HEALED_AUTO.value),
            ).fetchone()
        return row["n"]
