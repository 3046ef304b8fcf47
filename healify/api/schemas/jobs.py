"""
Job schemas.

Enqueue, status and cancel of test-run jobs.
"""

from typing import Optional
from pydantic import BaseModel, Field


class JobCreateRequest(BaseModel):
    """Request to run a project's suite for a commit."""

    project_id: str = Field(..., min_length=1, description="Project whose suite is executed")
    commit_ref: str = Field(..., min_length=1, description="Commit SHA (or ref) to test")
    test_run_id: str = Field(
        ...,
        min_length=1,
        description="Caller-provided TestRun ID. Re-sending the same ID never creates a second run",
    )
    branch: Optional[str] = Field(default=None, description="Branch the commit belongs to")
    commit_message: Optional[str] = Field(default=None, description="Commit message (for display)")
    commit_author: Optional[str] = Field(default=None, description="Commit author (for display)")
    repository: Optional[str] = Field(
        default=None,
        description="Clone URL. Defaults to the project's linked repository",
        json_schema_extra={"examples": ["https://github.com/acme/webapp.git"]},
    )

    def metadata(self) -> dict:
        return {
            key: value
            for key, value in {
                "branch": self.branch,
                "commit_message": self.commit_message,
                "commit_author": self.commit_author,
                "repository": self.repository,
            }.items()
            if value is not None
        }


class JobCreateResponse(BaseModel):
    """Response from enqueue."""

    queued: bool = Field(..., description="False when the job was not accepted")
    test_run_id: str
    job_id: Optional[str] = Field(default=None, description="Queue job ID")
    created: bool = Field(default=False, description="False when an active job was reused")
    reason: Optional[str] = Field(default=None, description="Why the job was not queued")


class ResultsSummary(BaseModel):
    """Counts of a finished test run."""

    passed: int = 0
    failed: int = 0
    healed: int = 0
    total: int = 0


class JobStatusResponse(BaseModel):
    """Status of a test run and its job."""

    found: bool
    test_run_id: str
    test_run_status: Optional[str] = Field(
        default=None,
        description="PENDING / RUNNING / PASSED / FAILED / HEALED / PARTIAL / CANCELLED",
    )
    queue_state: Optional[str] = Field(
        default=None,
        description="QUEUED / RUNNING / COMPLETED / FAILED / CANCELLED (null once pruned)",
    )
    progress: int = Field(default=0, ge=0, le=100, description="Job progress percentage")
    results_summary: Optional[ResultsSummary] = None
    last_error: Optional[str] = None
