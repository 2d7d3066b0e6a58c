# tierflow/runtime package
# Orchestration core: classify a task, select a workflow tier, drive its
# phases, and carry structured handoffs between them.
#
# Core components:
#   - types: Core dataclasses (TaskSignal, ComplexityScore, HandoffRecord, WorkflowTier)
#   - classifier / selector: pure decision functions
#   - scheduler: PhaseScheduler state machine
#   - handoff_store: append-only handoff log
#   - resource_lock: durable mutex for the UI-automation tool surface
#   - storage: durable TaskExecution persistence
#
# Usage:
#     from tierflow.runtime import PhaseScheduler, TaskSignal, TaskType
#     scheduler = PhaseScheduler()
#     execution = scheduler.start(TaskSignal(1, 10, 1, TaskType.BUG_FIX))
#     while not execution.is_terminal:
#         scheduler.advance(execution)

from typing import TYPE_CHECKING

from .types import (
    Band,
    ComplexityScore,
    HandoffRecord,
    TaskId,
    TaskSignal,
    TaskType,
    TierId,
    WorkflowTier,
    generate_task_id,
)

# Components that touch tierflow.config are imported lazily to avoid
# circular imports (tierflow.config imports tierflow.runtime.types)
if TYPE_CHECKING:
    from .classifier import classify as classify
    from .execution import ExecutionStatus as ExecutionStatus
    from .execution import TaskExecution as TaskExecution
    from .resource_lock import ResourceLock as ResourceLock
    from .scheduler import PhaseScheduler as PhaseScheduler
    from .selector import select as select

__all__ = [
    # Types
    "TaskId",
    "TaskType",
    "Band",
    "TaskSignal",
    "ComplexityScore",
    "HandoffRecord",
    "TierId",
    "WorkflowTier",
    "generate_task_id",
    # Components (imported lazily)
    "classify",
    "select",
    "TaskExecution",
    "ExecutionStatus",
    "ResourceLock",
    "PhaseScheduler",
]

_LAZY = {
    "classify": (".classifier", "classify"),
    "select": (".selector", "select"),
    "TaskExecution": (".execution", "TaskExecution"),
    "ExecutionStatus": (".execution", "ExecutionStatus"),
    "ResourceLock": (".resource_lock", "ResourceLock"),
    "PhaseScheduler": (".scheduler", "PhaseScheduler"),
}


def __getattr__(name: str):
    """Lazy import for components to avoid circular dependencies."""
    if name in _LAZY:
        from importlib import import_module

        module_name, attr = _LAZY[name]
        return getattr(import_module(module_name, __name__), attr)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
