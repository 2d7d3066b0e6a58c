"""Workflow tier catalog endpoints for the tierflow API."""

from __future__ import annotations

from typing import Any, Dict, List

from fastapi import APIRouter
from pydantic import BaseModel, Field

from tierflow.runtime.types import workflow_tier_to_dict

from .tasks import get_scheduler

router = APIRouter(prefix="/tiers", tags=["tiers"])


class TierListResponse(BaseModel):
    """Response for list tiers endpoint."""

    tiers: List[Dict[str, Any]]
    guarded_roles: List[str] = Field(default_factory=list)


@router.get("", response_model=TierListResponse)
async def list_tiers():
    """List the configured workflow tiers and the roles that need the resource lock."""
    registry = get_scheduler().registry
    return TierListResponse(
        tiers=[workflow_tier_to_dict(t) for t in registry.tiers],
        guarded_roles=sorted(registry.guarded_roles),
    )
