"""
API Routers package.
"""

from . import jobs, heal, scheduler

__all__ = ["jobs", "heal", "scheduler"]
