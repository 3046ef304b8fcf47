"""
FastAPI application entry point.

Enqueue and status endpoints for the healing pipeline, a synchronous
/heal endpoint, and scheduler control. Optional API key authentication.
"""

import logging
from contextlib import asynccontextmanager
from fastapi import Depends, FastAPI

from healify import __version__
from healify.infra.settings import Settings
from .routers import jobs, heal, scheduler
from ._scheduler_state import (
    init_scheduler_service,
    shutdown_scheduler_service,
)
from .dependencies.auth import verify_api_key, API_AUTH_ENABLED


logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Creates the scheduler service on startup (workers start only when
    WORKER_AUTOSTART=true) and stops it on shutdown.
    """
    settings = Settings.from_env()
    service = init_scheduler_service(settings)
    if settings.worker_autostart and not service.is_running:
        stats = service.start(run_recovery=True, blocking=False)
        logger.info(f"Workers started with the API (recovery: {stats})")

    yield

    shutdown_scheduler_service()


tags_metadata = [
    {
        "name": "jobs",
        "description": "Enqueue test runs and poll their status",
    },
    {
        "name": "heal",
        "description": "Synchronous selector healing for a single failure report",
    },
    {
        "name": "scheduler",
        "description": "Worker pool control - start, stop and status",
    },
]

app = FastAPI(
    title="Healify API",
    lifespan=lifespan,
    description="""
## Healify API

Runs end-to-end suites of linked repositories, heals broken selectors and
opens pull requests for high-confidence fixes.

### Authentication
When `API_AUTH_ENABLED=true`, all endpoints except `/health` require
an `X-API-Key` header matching the `API_KEY` environment variable.

### Usage
```bash
# Start server
uvicorn healify.api.main:app --host 127.0.0.1 --port 8000

# Enqueue a run
curl -X POST http://localhost:8000/jobs \\
  -H "Content-Type: application/json" \\
  -d '{"project_id": "p1", "commit_ref": "abc123", "test_run_id": "run-1"}'

# Poll it
curl http://localhost:8000/jobs/run-1
```
    """,
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_tags=tags_metadata,
)


# Health check - NO authentication
@app.get("/health")
async def health_check():
    """Health check endpoint. Not authenticated."""
    return {"status": "ok", "version": __version__}


auth_dependency = [Depends(verify_api_key)] if API_AUTH_ENABLED else []

app.include_router(
    jobs.router, prefix="/jobs", tags=["jobs"], dependencies=auth_dependency
)
app.include_router(
    heal.router, prefix="/heal", tags=["heal"], dependencies=auth_dependency
)
app.include_router(
    scheduler.router, prefix="/scheduler", tags=["scheduler"], dependencies=auth_dependency
)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="127.0.0.1", port=8000)
