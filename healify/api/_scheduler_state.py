"""
SchedulerService singleton for the API process.

Created during the FastAPI lifespan. Workers start only if
WORKER_AUTOSTART=true or after POST /scheduler/start.
"""

from typing import Optional

from healify.infra.settings import Settings
from healify.scheduler.service import SchedulerService


_scheduler_service: Optional[SchedulerService] = None


def init_scheduler_service(settings: Optional[Settings] = None) -> SchedulerService:
    """
    Initialize the scheduler service singleton.

    Args:
        settings: Runtime configuration (read from the environment if omitted)
    """
    global _scheduler_service

    if _scheduler_service is not None:
        return _scheduler_service

    _scheduler_service = SchedulerService.create(settings or Settings.from_env())
    return _scheduler_service


def get_scheduler_service() -> SchedulerService:
    """
    Get the scheduler service singleton.

    Raises:
        RuntimeError: If the service was not initialized
    """
    if _scheduler_service is None:
        raise RuntimeError(
            "Scheduler service not initialized. "
            "Ensure init_scheduler_service() is called during startup."
        )

    return _scheduler_service


def shutdown_scheduler_service() -> None:
    """Stop workers (if running) and drop the singleton."""
    global _scheduler_service

    if _scheduler_service is not None:
        if _scheduler_service.is_running:
            _scheduler_service.stop()

        _scheduler_service = None
