"""
Routes package for the tierflow API.

This package contains the FastAPI routers for:
- tasks: Task intake, classification, advancement and abort
- tiers: Workflow tier catalog
- lock: Resource lock status
"""

from .lock import router as lock_router
from .tasks import router as tasks_router
from .tiers import router as tiers_router

__all__ = [
    "lock_router",
    "tasks_router",
    "tiers_router",
]
