"""
Task endpoints for the tierflow API.

Provides REST endpoints for:
- Classifying a task signal without starting it
- Starting a task (classify + select + persist)
- Listing active tasks and reading one task's full history
- Advancing a task one phase (or until it stops making progress)
- Aborting a task
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from tierflow.runtime.classifier import classify
from tierflow.runtime.errors import ExecutionStateError, TaskNotFoundError, TaskSignalError
from tierflow.runtime.execution import TaskExecution, task_execution_to_dict
from tierflow.runtime.scheduler import DEFAULT_ABORT_REASON, PhaseScheduler
from tierflow.runtime.selector import roles_for, select
from tierflow.runtime.types import TaskSignal, task_signal_from_dict
from tierflow.runtime.types._time import _datetime_to_iso

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/tasks", tags=["tasks"])


# =============================================================================
# Pydantic Models
# =============================================================================


class TaskSignalRequest(BaseModel):
    """Structured intake signal for a task."""

    files_affected: int = Field(..., ge=0, description="Number of files the change touches")
    lines_affected: int = Field(..., ge=0, description="Approximate changed line count")
    modules_affected: int = Field(..., ge=0, description="Number of modules/packages touched")
    task_type: str = Field(..., description="bug_fix, feature, refactor, investigation or hotfix")
    breaking_change: bool = Field(False, description="Whether public contracts change")
    familiarity: int = Field(5, ge=1, le=10, description="Familiarity with the area, 1..10")
    estimated_minutes: int = Field(0, ge=0, description="Rough effort estimate")


class TaskStartRequest(TaskSignalRequest):
    """Request to start a new task."""

    task_id: Optional[str] = Field(None, description="Custom task ID (generated if not provided)")


class ClassificationResponse(BaseModel):
    """Classification and tier selection for a signal."""

    score: int
    band: str
    promoted_by: List[str] = Field(default_factory=list)
    tier_id: str
    widened: bool = False
    phases: List[str] = Field(default_factory=list)
    roles: List[str] = Field(default_factory=list)


class TaskSummary(BaseModel):
    """Task summary for list and action endpoints."""

    task_id: str
    status: str
    band: str
    tier_id: str
    current_phase: Optional[str] = None
    current_phase_index: int = 0
    phase_count: int = 0
    handoff_count: int = 0
    skipped_phases: List[str] = Field(default_factory=list)
    blocked_reason: Optional[str] = None
    abort_reason: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class TaskListResponse(BaseModel):
    """Response for list tasks endpoint."""

    tasks: List[TaskSummary]


class AbortRequest(BaseModel):
    """Request to abort a task."""

    reason: str = Field(DEFAULT_ABORT_REASON, description="Human-readable abort reason")


# =============================================================================
# Scheduler access
# =============================================================================

_scheduler: Optional[PhaseScheduler] = None


def get_scheduler() -> PhaseScheduler:
    """Get or create the process-wide scheduler."""
    global _scheduler
    if _scheduler is None:
        _scheduler = PhaseScheduler()
    return _scheduler


def set_scheduler(scheduler: Optional[PhaseScheduler]) -> None:
    """Replace the process-wide scheduler (None resets it)."""
    global _scheduler
    _scheduler = scheduler


# =============================================================================
# Helpers
# =============================================================================


def _to_signal(request: TaskSignalRequest) -> TaskSignal:
    try:
        signal = task_signal_from_dict(request.model_dump(exclude={"task_id"}))
    except TaskSignalError as e:
        raise _invalid_signal(e)
    return signal


def _invalid_signal(error: TaskSignalError) -> HTTPException:
    return HTTPException(
        status_code=422,
        detail={
            "error": "invalid_signal",
            "message": str(error),
            "details": {"problems": error.problems},
        },
    )


def _not_found(task_id: str) -> HTTPException:
    return HTTPException(
        status_code=404,
        detail={
            "error": "task_not_found",
            "message": f"Task '{task_id}' not found",
            "details": {"task_id": task_id},
        },
    )


def _conflict(task_id: str, error: ExecutionStateError) -> HTTPException:
    return HTTPException(
        status_code=409,
        detail={
            "error": "invalid_state",
            "message": str(error),
            "details": {"task_id": task_id},
        },
    )


def _summarize(execution: TaskExecution) -> TaskSummary:
    phase = execution.current_phase
    return TaskSummary(
        task_id=execution.task_id,
        status=execution.status.value,
        band=execution.score.band.value,
        tier_id=execution.tier.tier_id.value,
        current_phase=phase.name if phase is not None else None,
        current_phase_index=execution.current_phase_index,
        phase_count=execution.phase_count,
        handoff_count=len(execution.handoffs),
        skipped_phases=[m.phase_name for m in execution.skipped],
        blocked_reason=execution.blocked_reason,
        abort_reason=execution.abort_reason,
        created_at=_datetime_to_iso(execution.created_at),
        updated_at=_datetime_to_iso(execution.updated_at),
    )


def _load(scheduler: PhaseScheduler, task_id: str) -> TaskExecution:
    try:
        return scheduler.get(task_id)
    except TaskNotFoundError:
        raise _not_found(task_id)


# =============================================================================
# Endpoints
# =============================================================================


@router.post("/classify", response_model=ClassificationResponse)
async def classify_task(request: TaskSignalRequest):
    """Classify a signal and report the tier it would run under.

    Nothing is persisted.
    """
    signal = _to_signal(request)
    scheduler = get_scheduler()
    try:
        score = classify(signal)
    except TaskSignalError as e:
        raise _invalid_signal(e)
    tier = select(score, signal.task_type, scheduler.registry)
    return ClassificationResponse(
        score=score.score,
        band=score.band.value,
        promoted_by=list(score.promoted_by),
        tier_id=tier.tier_id.value,
        widened=tier.widened,
        phases=tier.phase_names,
        roles=roles_for(tier),
    )


@router.post("", response_model=TaskSummary, status_code=201)
def start_task(request: TaskStartRequest):
    """Start a new task.

    Raises:
        422: Invalid signal.
        409: A task with the requested ID already exists.
    """
    signal = _to_signal(request)
    scheduler = get_scheduler()
    try:
        execution = scheduler.start(signal, task_id=request.task_id)
    except TaskSignalError as e:
        raise _invalid_signal(e)
    except ExecutionStateError as e:
        raise _conflict(request.task_id or "", e)
    return _summarize(execution)


@router.get("", response_model=TaskListResponse)
async def list_tasks():
    """List active (non-archived) tasks, oldest first."""
    scheduler = get_scheduler()
    return TaskListResponse(tasks=[_summarize(e) for e in scheduler.list_active()])


@router.get("/{task_id}")
async def get_task(task_id: str):
    """Get a task's full state, including its handoff history.

    Raises:
        404: Task not found.
    """
    execution = _load(get_scheduler(), task_id)
    content: Dict[str, Any] = task_execution_to_dict(execution)
    return JSONResponse(content=content)


@router.post("/{task_id}/advance", response_model=TaskSummary)
def advance_task(task_id: str, until_stalled: bool = False):
    """Advance a task by one phase, or until it stops making progress.

    Args:
        task_id: Task identifier.
        until_stalled: Keep advancing until terminal, BLOCKED, or a phase
            fails its mandatory checklist.

    Raises:
        404: Task not found.
        409: Task was archived by another request mid-advance.
    """
    scheduler = get_scheduler()
    execution = _load(scheduler, task_id)
    try:
        if until_stalled:
            scheduler.run(execution)
        else:
            scheduler.advance(execution)
    except ExecutionStateError as e:
        raise _conflict(task_id, e)
    return _summarize(execution)


@router.post("/{task_id}/abort", response_model=TaskSummary)
def abort_task(task_id: str, request: Optional[AbortRequest] = None):
    """Abort a task.

    Raises:
        404: Task not found.
        409: Task already completed.
    """
    scheduler = get_scheduler()
    execution = _load(scheduler, task_id)
    reason = request.reason if request is not None else DEFAULT_ABORT_REASON
    try:
        scheduler.abort(execution, reason)
    except ExecutionStateError as e:
        raise _conflict(task_id, e)
    return _summarize(execution)
