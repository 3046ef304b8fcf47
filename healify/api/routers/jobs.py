"""
Jobs router.

- POST /jobs - Enqueue a test run (202 queued, 503 not queued, 409 finished)
- GET /jobs/{test_run_id} - Poll status (404 when unknown)
- POST /jobs/{test_run_id}/cancel - Cancel a run whose job is still QUEUED
"""

from fastapi import APIRouter, HTTPException
from fastapi.responses import JSONResponse

from healify.scheduler.errors import (
    InvalidOperationError,
    JobNotFoundError,
    QueueUnavailableError,
)
from healify.scheduler.service import StatusView
from ..schemas.jobs import (
    JobCreateRequest,
    JobCreateResponse,
    JobStatusResponse,
    ResultsSummary,
)
from .._scheduler_state import get_scheduler_service


router = APIRouter()


def _status_to_response(view: StatusView) -> JobStatusResponse:
    return JobStatusResponse(
        found=view.found,
        test_run_id=view.test_run_id,
        test_run_status=view.test_run_status,
        queue_state=view.queue_state,
        progress=view.progress,
        results_summary=ResultsSummary(**view.results_summary) if view.results_summary else None,
        last_error=view.last_error,
    )


@router.post("", response_model=JobCreateResponse, status_code=202)
async def create_job(request: JobCreateRequest):
    """
    Enqueue a test run.

    Idempotent on test_run_id: sending the same ID again returns the
    existing job (created=false). When the queue backend is unavailable
    the response is 503 with queued=false; a run that already finished
    gives 409.
    """
    service = get_scheduler_service()

    try:
        result = service.enqueue(
            project_id=request.project_id,
            commit_ref=request.commit_ref,
            test_run_id=request.test_run_id,
            metadata=request.metadata(),
        )
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to enqueue job: {str(e)}"
        )

    body = JobCreateResponse(
        queued=result.queued,
        test_run_id=result.test_run_id,
        job_id=result.job_id,
        created=result.created,
        reason=result.reason,
    )
    if result.unavailable:
        return JSONResponse(status_code=503, content=body.model_dump())
    if not result.queued:
        return JSONResponse(status_code=409, content=body.model_dump())
    return body


@router.get("/{test_run_id}", response_model=JobStatusResponse)
async def get_job_status(test_run_id: str):
    """
    Status of a test run: TestRun state, queue state, progress and results.
    """
    service = get_scheduler_service()

    try:
        view = service.get_status(test_run_id)
    except QueueUnavailableError as e:
        raise HTTPException(status_code=503, detail=f"Queue unavailable: {e}")
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to get job status: {str(e)}"
        )

    if not view.found:
        return JSONResponse(status_code=404, content=_status_to_response(view).model_dump())

    return _status_to_response(view)


@router.post("/{test_run_id}/cancel", response_model=JobStatusResponse)
async def cancel_job(test_run_id: str):
    """
    Cancel a test run whose job has not started yet.

    RUNNING jobs are not preempted.
    """
    service = get_scheduler_service()

    try:
        view = service.cancel(test_run_id)
    except JobNotFoundError:
        raise HTTPException(status_code=404, detail=f"Job not found for test run: {test_run_id}")
    except InvalidOperationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except QueueUnavailableError as e:
        raise HTTPException(status_code=503, detail=f"Queue unavailable: {e}")
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to cancel job: {str(e)}"
        )

    return _status_to_response(view)
