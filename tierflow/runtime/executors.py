"""
executors.py - Role executor interface and registry.

This module defines the contract between the scheduler and the external
actors (human or automated) that perform the work of a phase:
- RoleExecutor: Base interface for all executors
- ExecutionContext: What an executor sees (prior handoffs, lock token, cancel flag)
- PhaseOutcome: What an executor reports back
- ExecutorRegistry: Role to executor lookup
- StubRoleExecutor: Canned successful outcomes for stub mode and tests

Executors are treated as opaque, possibly slow, possibly failing calls.
Retry policy belongs to the executor, not the scheduler.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

from tierflow.config.runtime_config import is_stub_mode

from .types._ids import RoleId, TaskId
from .types.handoff import ChecklistItem, FileTouch, HandoffMetrics, HandoffRecord
from .types.signal import ComplexityScore, TaskSignal
from .types.tier import TierId

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PhaseOutcome:
    """Structured result of one role executing one phase.

    Attributes:
        summary: Short description of what the role did.
        files_touched: Files the role changed.
        decisions: Decisions later phases must honor.
        contract_artifacts: Named structured payloads (API shapes, schemas).
        checklist_results: Verification checklist results.
        success: Whether the role considers its work complete.
        open_edge_cases: Known gaps left for later phases.
        metrics: Quantitative summary of the role's work.
        error: Failure detail when success is False.
    """

    summary: str
    files_touched: Tuple[FileTouch, ...] = ()
    decisions: Tuple[str, ...] = ()
    contract_artifacts: Dict[str, Any] = field(default_factory=dict)
    checklist_results: Tuple[ChecklistItem, ...] = ()
    success: bool = True
    open_edge_cases: Tuple[str, ...] = ()
    metrics: HandoffMetrics = field(default_factory=HandoffMetrics)
    error: Optional[str] = None

    @classmethod
    def failure(cls, role: RoleId, message: str) -> "PhaseOutcome":
        """Outcome for a role that failed, raised, or timed out."""
        return cls(
            summary=f"[{role}] failed: {message}",
            success=False,
            error=message,
            metrics=HandoffMetrics(confidence_percent=0),
        )


@dataclass(frozen=True)
class ExecutionContext:
    """Context provided to a role executor for one phase.

    Attributes:
        task_id: The task being executed.
        phase_name: Name of the phase being executed.
        phase_index: 0-based phase index within the tier.
        role: The role this executor is acting as.
        signal: The task's intake signal.
        score: The task's complexity classification.
        tier_id: The selected tier.
        prior_handoffs: Every handoff record written before this phase.
        lock_token: Proof of resource lock ownership for guarded phases.
        cancel_event: Set when the task is being aborted; executors should
            stop at the next safe point.
    """

    task_id: TaskId
    phase_name: str
    phase_index: int
    role: RoleId
    signal: TaskSignal
    score: ComplexityScore
    tier_id: TierId
    prior_handoffs: Tuple[HandoffRecord, ...] = ()
    lock_token: Optional[str] = None
    cancel_event: threading.Event = field(default_factory=threading.Event, compare=False)

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def artifact(self, name: str) -> Optional[Any]:
        """Latest contract artifact with this name from prior handoffs."""
        for record in reversed(self.prior_handoffs):
            if name in record.contract_artifacts:
                return record.contract_artifacts[name]
        return None


class RoleExecutor(ABC):
    """Abstract base class for role executors.

    Executors are responsible for:
    - Performing the work of one role in one phase
    - Reporting a structured PhaseOutcome

    Executors do NOT own:
    - Phase ordering or skipping (that's the scheduler's job)
    - Handoff persistence (that's the handoff store's job)
    - Resource lock acquisition (the scheduler holds it and passes the token)
    """

    @property
    @abstractmethod
    def executor_id(self) -> str:
        """Unique identifier for this executor."""
        ...

    @abstractmethod
    def execute(self, phase_name: str, role: RoleId, context: ExecutionContext) -> PhaseOutcome:
        """Perform the role's work for a phase.

        Args:
            phase_name: Name of the phase being executed.
            role: The role to act as.
            context: Prior handoffs, lock token and cancellation flag.

        Returns:
            The role's structured outcome.
        """
        ...


class StubRoleExecutor(RoleExecutor):
    """Executor that reports canned success without doing any work."""

    @property
    def executor_id(self) -> str:
        return "stub"

    def execute(self, phase_name: str, role: RoleId, context: ExecutionContext) -> PhaseOutcome:
        return PhaseOutcome(
            summary=f"[{role}] {phase_name} completed (stub)",
            decisions=(f"{role}: no changes required in stub mode",),
            checklist_results=(ChecklistItem(item=f"{phase_name}:{role} reported", satisfied=True),),
        )


class ExecutorRegistry:
    """Maps role ids to executors, with an optional fallback."""

    def __init__(self, default: Optional[RoleExecutor] = None):
        self._executors: Dict[RoleId, RoleExecutor] = {}
        self._default = default

    def register(self, role: RoleId, executor: RoleExecutor) -> None:
        self._executors[role] = executor

    def get(self, role: RoleId) -> Optional[RoleExecutor]:
        """Executor for a role, the default executor, or None."""
        return self._executors.get(role, self._default)

    @property
    def roles(self) -> Tuple[RoleId, ...]:
        return tuple(sorted(self._executors))


def build_default_registry() -> ExecutorRegistry:
    """Registry for the configured executor mode.

    Stub mode falls back to StubRoleExecutor for every role; external mode
    starts empty and roles must be registered explicitly.
    """
    if is_stub_mode():
        logger.info("Role executors running in stub mode")
        return ExecutorRegistry(default=StubRoleExecutor())
    return ExecutorRegistry()
