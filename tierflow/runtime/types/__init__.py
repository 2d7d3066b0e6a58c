"""
types - Core type definitions for the orchestration core.

All types are dataclasses with explicit ``*_to_dict`` / ``*_from_dict``
serialization functions so every structure round-trips through JSON
without loss.

Usage:
    from tierflow.runtime.types import (
        TaskId, RoleId, generate_task_id, generate_lock_token,
        TaskType, Band, TaskSignal, ComplexityScore,
        task_signal_to_dict, task_signal_from_dict,
        complexity_score_to_dict, complexity_score_from_dict,
        ChangeKind, FileTouch, ChecklistItem, HandoffMetrics,
        HandoffRecord, PhaseSkipped, HistoryEntry,
        handoff_record_to_dict, handoff_record_from_dict,
        phase_skipped_to_dict, phase_skipped_from_dict,
        PhaseMode, TierId, SkipRule, SKIP_RULES, RoleSpec, PhaseSpec, WorkflowTier,
        workflow_tier_to_dict, workflow_tier_from_dict,
    )
"""

from __future__ import annotations

from ._ids import RoleId, TaskId, generate_lock_token, generate_task_id
from .handoff import (
    ChangeKind,
    ChecklistItem,
    FileTouch,
    HandoffMetrics,
    HandoffRecord,
    HistoryEntry,
    PhaseSkipped,
    handoff_record_from_dict,
    handoff_record_to_dict,
    history_entry_from_dict,
    history_entry_to_dict,
    phase_skipped_from_dict,
    phase_skipped_to_dict,
)
from .signal import (
    Band,
    ComplexityScore,
    TaskSignal,
    TaskType,
    complexity_score_from_dict,
    complexity_score_to_dict,
    task_signal_from_dict,
    task_signal_to_dict,
)
from .tier import (
    SKIP_RULES,
    PhaseMode,
    PhaseSpec,
    RoleSpec,
    SkipRule,
    TierId,
    WorkflowTier,
    phase_spec_from_dict,
    phase_spec_to_dict,
    workflow_tier_from_dict,
    workflow_tier_to_dict,
)

__all__ = [
    # IDs
    "TaskId",
    "RoleId",
    "generate_task_id",
    "generate_lock_token",
    # Intake
    "TaskType",
    "Band",
    "TaskSignal",
    "ComplexityScore",
    "task_signal_to_dict",
    "task_signal_from_dict",
    "complexity_score_to_dict",
    "complexity_score_from_dict",
    # Handoff
    "ChangeKind",
    "FileTouch",
    "ChecklistItem",
    "HandoffMetrics",
    "HandoffRecord",
    "PhaseSkipped",
    "HistoryEntry",
    "handoff_record_to_dict",
    "handoff_record_from_dict",
    "phase_skipped_to_dict",
    "phase_skipped_from_dict",
    "history_entry_to_dict",
    "history_entry_from_dict",
    # Tiers
    "PhaseMode",
    "TierId",
    "SkipRule",
    "SKIP_RULES",
    "RoleSpec",
    "PhaseSpec",
    "WorkflowTier",
    "phase_spec_to_dict",
    "phase_spec_from_dict",
    "workflow_tier_to_dict",
    "workflow_tier_from_dict",
]
