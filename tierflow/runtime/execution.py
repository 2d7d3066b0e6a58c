"""
execution.py - Live, scheduler-owned state of one task.

A TaskExecution is created at classification time, mutated only by the
phase scheduler, and archived once it reaches COMPLETED or ABORTED.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .handoff_store import HandoffStore
from .types._ids import TaskId
from .types._time import _datetime_to_iso, _iso_to_datetime, _utcnow
from .types.handoff import HandoffRecord, HistoryEntry, PhaseSkipped, history_entry_from_dict, history_entry_to_dict
from .types.signal import (
    ComplexityScore,
    TaskSignal,
    complexity_score_from_dict,
    complexity_score_to_dict,
    task_signal_from_dict,
    task_signal_to_dict,
)
from .types.tier import PhaseSpec, WorkflowTier, workflow_tier_from_dict, workflow_tier_to_dict


class ExecutionStatus(str, Enum):
    """Lifecycle status of a TaskExecution.

    BLOCKED is recoverable (returns to RUNNING once the resource frees up);
    COMPLETED and ABORTED are terminal.
    """

    RUNNING = "running"
    BLOCKED = "blocked"
    COMPLETED = "completed"
    ABORTED = "aborted"

    @property
    def is_terminal(self) -> bool:
        return self in (ExecutionStatus.COMPLETED, ExecutionStatus.ABORTED)


@dataclass(eq=False)
class TaskExecution:
    """Live state for one task, owned exclusively by the phase scheduler.

    Attributes:
        task_id: Unique task identifier.
        signal: The immutable intake signal.
        score: Complexity classification of the signal.
        tier: The selected workflow tier (carried verbatim).
        current_phase_index: 0-based index of the phase to run next.
        status: Lifecycle status.
        store: Append-only handoff history.
        blocked_reason: Why the execution is BLOCKED (pollable, not an error).
        abort_reason: Human-readable reason for ABORTED.
        created_at: When the execution was created.
        updated_at: Last state change.
    """

    task_id: TaskId
    signal: TaskSignal
    score: ComplexityScore
    tier: WorkflowTier
    current_phase_index: int = 0
    status: ExecutionStatus = ExecutionStatus.RUNNING
    store: HandoffStore = field(default_factory=HandoffStore)
    blocked_reason: Optional[str] = None
    abort_reason: Optional[str] = None
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    @property
    def handoffs(self) -> Tuple[HandoffRecord, ...]:
        """Handoff records in write order (skip markers excluded)."""
        return self.store.records()

    @property
    def history(self) -> Tuple[HistoryEntry, ...]:
        """Records and PhaseSkipped markers in write order."""
        return self.store.entries()

    @property
    def skipped(self) -> Tuple[PhaseSkipped, ...]:
        return self.store.markers()

    @property
    def phase_count(self) -> int:
        return len(self.tier.phases)

    @property
    def current_phase(self) -> Optional[PhaseSpec]:
        if 0 <= self.current_phase_index < self.phase_count:
            return self.tier.phases[self.current_phase_index]
        return None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def touch(self) -> None:
        self.updated_at = _utcnow()

    def refresh_from(self, other: "TaskExecution") -> None:
        """Adopt the mutable state of another copy of the same task."""
        self.current_phase_index = other.current_phase_index
        self.status = other.status
        self.store = other.store
        self.blocked_reason = other.blocked_reason
        self.abort_reason = other.abort_reason
        self.updated_at = other.updated_at


# =============================================================================
# Serialization Functions
# =============================================================================


def task_execution_to_dict(execution: TaskExecution) -> Dict[str, Any]:
    """Convert TaskExecution to a dictionary for serialization.

    The full history is included so a restarted orchestrator can resume
    with every prior contract artifact intact.
    """
    return {
        "task_id": execution.task_id,
        "signal": task_signal_to_dict(execution.signal),
        "score": complexity_score_to_dict(execution.score),
        "tier": workflow_tier_to_dict(execution.tier),
        "current_phase_index": execution.current_phase_index,
        "status": execution.status.value,
        "history": [history_entry_to_dict(e) for e in execution.history],
        "blocked_reason": execution.blocked_reason,
        "abort_reason": execution.abort_reason,
        "created_at": _datetime_to_iso(execution.created_at),
        "updated_at": _datetime_to_iso(execution.updated_at),
    }


def task_execution_from_dict(data: Dict[str, Any]) -> TaskExecution:
    """Parse TaskExecution from a dictionary."""
    history: List[HistoryEntry] = [history_entry_from_dict(e) for e in data.get("history", [])]
    return TaskExecution(
        task_id=data["task_id"],
        signal=task_signal_from_dict(data["signal"]),
        score=complexity_score_from_dict(data["score"]),
        tier=workflow_tier_from_dict(data["tier"]),
        current_phase_index=data.get("current_phase_index", 0),
        status=ExecutionStatus(data.get("status", ExecutionStatus.RUNNING.value)),
        store=HandoffStore(history),
        blocked_reason=data.get("blocked_reason"),
        abort_reason=data.get("abort_reason"),
        created_at=_iso_to_datetime(data.get("created_at")) or _utcnow(),
        updated_at=_iso_to_datetime(data.get("updated_at")) or _utcnow(),
    )
