"""Resource lock status endpoint for the tierflow API."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter
from pydantic import BaseModel

from tierflow.runtime.types._time import _datetime_to_iso

from .tasks import get_scheduler

router = APIRouter(prefix="/lock", tags=["lock"])


class LockStatusResponse(BaseModel):
    """Current state of the resource lock (the token is never exposed)."""

    name: str
    held: bool
    holder_id: Optional[str] = None
    acquired_at: Optional[str] = None
    stale: bool = False
    stale_after_minutes: float


@router.get("", response_model=LockStatusResponse)
async def get_lock_status():
    """Report who holds the resource lock and whether it has gone stale."""
    lock = get_scheduler().resource_lock
    state = lock.holder()
    return LockStatusResponse(
        name=lock.name,
        held=state is not None,
        holder_id=state.holder_id if state is not None else None,
        acquired_at=_datetime_to_iso(state.acquired_at) if state is not None else None,
        stale=lock.is_stale(),
        stale_after_minutes=lock.stale_after.total_seconds() / 60,
    )
