"""
Per-job scratch directories.
"""

import logging
import shutil
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional


logger = logging.getLogger(__name__)


@contextmanager
def job_workspace(job_id: str, root: Optional[Path] = None) -> Iterator[Path]:
    """
    Create an isolated directory for one job and remove it afterwards.

    Removal runs on every exit path, including errors and timeouts.
    """
    if root is not None:
        Path(root).mkdir(parents=True, exist_ok=True)
    path = Path(tempfile.mkdtemp(prefix=f"healify-{job_id}-", dir=root))
    logger.debug(f"[Job {job_id}] Workspace created: {path}")
    try:
        yield path
    finally:
        shutil.rmtree(path, ignore_errors=True)
        if path.exists():
            logger.warning(f"[Job {job_id}] Workspace could not be fully removed: {path}")
        else:
            logger.debug(f"[Job {job_id}] Workspace removed: {path}")
