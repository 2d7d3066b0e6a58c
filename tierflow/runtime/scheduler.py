"""
scheduler.py - Phase scheduler for task executions.

The PhaseScheduler drives a TaskExecution through its tier's phase list:

    RUNNING --advance--> RUNNING (next phase) --...--> COMPLETED
       |  ^                 |
       |  +---lock free-----+-- lock busy --> BLOCKED
       +--abort-----------------------------> ABORTED

Each advance() call:
1. Writes PhaseSkipped markers for any run of phases whose skip rule holds
2. Acquires the resource lock (bounded wait) if the phase has a guarded role
3. Dispatches the phase's roles and merges their outcomes into one record
4. Appends the record and moves on only if its mandatory checklist is met
5. Releases the lock and persists the execution

A phase whose record has unsatisfied mandatory items stays current; calling
advance() again re-runs it, and resolve() accepts a correction record.

Usage:
    from tierflow.runtime.scheduler import PhaseScheduler

    scheduler = PhaseScheduler()
    execution = scheduler.start(signal)
    scheduler.run(execution)
"""

from __future__ import annotations

import logging
import threading
from typing import Dict, List, Optional, Tuple

from filelock import Timeout

from tierflow.config.runtime_config import (
    LockSettings,
    SchedulerSettings,
    get_lock_settings,
    get_scheduler_settings,
)
from tierflow.config.tier_registry import TierRegistry

from .classifier import classify
from .errors import ExecutionStateError, TaskNotFoundError
from .execution import ExecutionStatus, TaskExecution
from .executors import ExecutionContext, ExecutorRegistry, build_default_registry
from .parallel import PhaseDispatcher, merge_results
from .resource_lock import ResourceLock, get_resource_lock
from .selector import select
from .storage import ExecutionStore
from .types._ids import TaskId, generate_task_id
from .types.handoff import HandoffRecord
from .types.signal import TaskSignal
from .types.tier import PhaseSpec

logger = logging.getLogger(__name__)

DEFAULT_ABORT_REASON = "aborted by operator"


class _ExecutionHandle:
    """In-process coordination state for one task.

    phase_lock serializes advance/resolve/abort on the same task;
    cancel_event is shared with every in-flight executor context.
    """

    def __init__(self) -> None:
        self.cancel_event = threading.Event()
        self.phase_lock = threading.Lock()


class PhaseScheduler:
    """Finite-state scheduler for task executions.

    One scheduler can drive many tasks; each task is advanced by at most one
    caller at a time. Only the ResourceLock is shared across tasks.
    """

    def __init__(
        self,
        registry: Optional[TierRegistry] = None,
        executors: Optional[ExecutorRegistry] = None,
        lock: Optional[ResourceLock] = None,
        store: Optional[ExecutionStore] = None,
        settings: Optional[SchedulerSettings] = None,
        lock_settings: Optional[LockSettings] = None,
    ):
        """Initialize the scheduler.

        Args:
            registry: Tier registry (process-wide by default).
            executors: Role executor registry (built from executor mode by default).
            lock: Resource lock (process-wide by default).
            store: Execution persistence (configured state dir by default).
            settings: Scheduler settings (from runtime config by default).
            lock_settings: Lock settings (from runtime config by default).
        """
        self._registry = registry or TierRegistry.get_instance()
        self._executors = executors or build_default_registry()
        self._lock = lock or get_resource_lock()
        self._store = store or ExecutionStore()
        self._settings = settings or get_scheduler_settings()
        self._lock_settings = lock_settings or get_lock_settings()
        self._dispatcher = PhaseDispatcher(
            self._executors,
            max_workers=self._settings.max_workers,
            join_timeout_seconds=self._settings.join_timeout_seconds,
        )
        self._handles: Dict[TaskId, _ExecutionHandle] = {}
        self._handles_lock = threading.Lock()

    @property
    def store(self) -> ExecutionStore:
        return self._store

    @property
    def resource_lock(self) -> ResourceLock:
        return self._lock

    @property
    def registry(self) -> TierRegistry:
        return self._registry

    def shutdown(self) -> None:
        self._dispatcher.shutdown()

    def _handle(self, task_id: TaskId) -> _ExecutionHandle:
        with self._handles_lock:
            handle = self._handles.get(task_id)
            if handle is None:
                handle = _ExecutionHandle()
                self._handles[task_id] = handle
            return handle

    def _drop_handle(self, task_id: TaskId) -> None:
        with self._handles_lock:
            self._handles.pop(task_id, None)

    # -------------------------------------------------------------------------
    # Intake
    # -------------------------------------------------------------------------

    def start(self, signal: TaskSignal, task_id: Optional[TaskId] = None) -> TaskExecution:
        """Classify a signal, select its tier and create a RUNNING execution.

        Raises:
            TaskSignalError: If the signal is malformed (nothing is created).
            ExecutionStateError: If an execution with the same id already exists.
        """
        score = classify(signal)
        tier = select(score, signal.task_type, self._registry)
        task_id = task_id or generate_task_id()
        if self._store.exists(task_id):
            raise ExecutionStateError(f"Task '{task_id}' already exists")

        execution = TaskExecution(task_id=task_id, signal=signal, score=score, tier=tier)
        self._store.save(execution)
        logger.info(
            "Started task '%s': band=%s tier=%s%s phases=%s",
            task_id,
            score.band.value,
            tier.tier_id.value,
            " (widened)" if tier.widened else "",
            tier.phase_names,
        )
        return execution

    # -------------------------------------------------------------------------
    # State transitions
    # -------------------------------------------------------------------------

    def advance(self, execution: TaskExecution) -> TaskExecution:
        """Run the current phase and move on if its handoff is satisfied.

        Terminal executions are returned unchanged. BLOCKED executions retry
        the lock. A copy that is behind the persisted state (another caller
        moved the task on) is refreshed first. The execution is persisted
        after every transition.
        """
        if execution.is_terminal:
            return execution

        handle = self._handle(execution.task_id)
        with handle.phase_lock:
            self._refresh(execution)
            if execution.is_terminal:
                self._drop_handle(execution.task_id)
                return execution
            if handle.cancel_event.is_set():
                return execution

            if execution.status == ExecutionStatus.BLOCKED:
                execution.status = ExecutionStatus.RUNNING
                execution.blocked_reason = None

            self._skip_ahead(execution)
            if execution.is_terminal:
                self._finish(execution)
                return execution

            phase = execution.current_phase
            guarded = execution.tier.requires_guarded_tool(phase)
            token: Optional[str] = None
            if guarded:
                if not self._lock.acquire(execution.task_id, timeout=self._lock_settings.wait_seconds):
                    self._block(execution, phase)
                    return execution
                token = self._lock.token_for(execution.task_id)

            try:
                record = self._run_phase(execution, phase, token, handle)
            finally:
                if guarded:
                    self._lock.release(execution.task_id)

            if handle.cancel_event.is_set():
                # Aborted mid-phase; partial results are discarded
                logger.info("Discarding results of phase '%s' for aborted task '%s'", phase.name, execution.task_id)
                return execution

            self._commit(execution, record)
            return execution

    def run(self, execution: TaskExecution, max_steps: Optional[int] = None) -> TaskExecution:
        """Advance repeatedly until the execution stops making progress.

        Stops on a terminal status, on BLOCKED, or when the current phase's
        handoff leaves unsatisfied mandatory items.
        """
        steps = 0
        while not execution.is_terminal:
            if max_steps is not None and steps >= max_steps:
                break
            before = execution.current_phase_index
            self.advance(execution)
            steps += 1
            if execution.status == ExecutionStatus.BLOCKED:
                break
            if execution.current_phase_index == before and not execution.is_terminal:
                break
        return execution

    def resolve(self, execution: TaskExecution, record: HandoffRecord) -> TaskExecution:
        """Append a correction record for the current phase.

        Used when a human (or a follow-up executor) settles the items that
        kept a phase from completing. Advances if the record is satisfied.

        Raises:
            ExecutionStateError: If the execution is terminal or the record
                is not for the current phase.
        """
        handle = self._handle(execution.task_id)
        with handle.phase_lock:
            self._refresh(execution)
            if execution.is_terminal:
                raise ExecutionStateError(
                    f"Cannot resolve task '{execution.task_id}': it is {execution.status.value}"
                )
            phase = execution.current_phase
            if record.phase_index != execution.current_phase_index or record.from_phase != phase.name:
                raise ExecutionStateError(
                    f"Correction for phase {record.phase_index} ('{record.from_phase}') does not match "
                    f"current phase {execution.current_phase_index} ('{phase.name}')"
                )
            logger.info("Resolving phase '%s' of task '%s' with a correction record", phase.name, execution.task_id)
            self._commit(execution, record)
            return execution

    def abort(self, execution: TaskExecution, reason: str = DEFAULT_ABORT_REASON) -> TaskExecution:
        """Abort an execution cooperatively.

        Signals in-flight executors, waits (bounded) for the current phase to
        return, marks the execution ABORTED, releases the resource lock and
        archives the execution.

        If the in-flight phase does not return within ``abort_wait_seconds``
        the task is aborted anyway and the resource lock is released while
        that phase's executors may still be running. A guarded executor that
        ignores its cancel event can then overlap with the lock's next holder.

        Raises:
            ExecutionStateError: If the execution already COMPLETED.
        """
        self._refresh(execution)
        if execution.status == ExecutionStatus.ABORTED:
            return execution
        if execution.status == ExecutionStatus.COMPLETED:
            raise ExecutionStateError(f"Cannot abort task '{execution.task_id}': it already completed")

        reason = reason.strip() or DEFAULT_ABORT_REASON
        handle = self._handle(execution.task_id)
        handle.cancel_event.set()
        acquired = handle.phase_lock.acquire(timeout=self._settings.abort_wait_seconds)
        if not acquired:
            phase = execution.current_phase
            logger.warning(
                "Task '%s': phase '%s' still in flight after %.1fs (roles: %s); "
                "aborting anyway, resource lock released while they may still run",
                execution.task_id,
                phase.name if phase is not None else None,
                self._settings.abort_wait_seconds,
                list(phase.required_roles) if phase is not None else [],
            )
        try:
            if acquired:
                self._refresh(execution)
            already_terminal = execution.is_terminal
            if not already_terminal:
                execution.status = ExecutionStatus.ABORTED
                execution.abort_reason = reason
                execution.blocked_reason = None
                execution.touch()
        finally:
            self._lock.release(execution.task_id)
            if acquired:
                handle.phase_lock.release()

        if already_terminal:
            # Another caller finished the task while this abort waited
            self._drop_handle(execution.task_id)
            if execution.status == ExecutionStatus.COMPLETED:
                raise ExecutionStateError(f"Cannot abort task '{execution.task_id}': it already completed")
            return execution

        logger.info("Aborted task '%s': %s", execution.task_id, reason)
        self._finish(execution)
        return execution

    def resume(self, task_id: TaskId) -> TaskExecution:
        """Reload a persisted execution after an orchestrator restart.

        Raises:
            TaskNotFoundError: If the task was never persisted.
        """
        execution = self._store.load(task_id)
        if not execution.is_terminal:
            logger.info(
                "Resumed task '%s' at phase %d/%d (%s)",
                task_id,
                execution.current_phase_index,
                execution.phase_count,
                execution.status.value,
            )
        return execution

    def get(self, task_id: TaskId) -> TaskExecution:
        """Load a persisted execution (active or archived)."""
        return self._store.load(task_id)

    def list_active(self) -> List[TaskExecution]:
        return self._store.list_active()

    # -------------------------------------------------------------------------
    # Internals (callers hold the task's phase lock)
    # -------------------------------------------------------------------------

    def _refresh(self, execution: TaskExecution) -> None:
        """Adopt the persisted state if another caller has moved the task on."""
        try:
            persisted = self._store.load(execution.task_id)
        except TaskNotFoundError:
            return
        if (
            (persisted.is_terminal and not execution.is_terminal)
            or len(persisted.history) > len(execution.history)
            or persisted.updated_at > execution.updated_at
        ):
            logger.info(
                "Task '%s': refreshing out-of-date copy (phase %d, %s) from stored state (phase %d, %s)",
                execution.task_id,
                execution.current_phase_index,
                execution.status.value,
                persisted.current_phase_index,
                persisted.status.value,
            )
            execution.refresh_from(persisted)

    def _skip_ahead(self, execution: TaskExecution) -> None:
        """Write markers for consecutive skippable phases; complete past the end."""
        while True:
            phase = execution.current_phase
            if phase is None:
                break
            rule = phase.should_skip(execution.signal, execution.score)
            if rule is None:
                break
            execution.store.mark_skipped(phase.name, execution.current_phase_index, rule)
            logger.info("Task '%s': skipped phase '%s' (%s)", execution.task_id, phase.name, rule)
            execution.current_phase_index += 1

        if execution.current_phase is None:
            self._complete(execution)

    def _run_phase(
        self,
        execution: TaskExecution,
        phase: PhaseSpec,
        token: Optional[str],
        handle: _ExecutionHandle,
    ) -> HandoffRecord:
        index = execution.current_phase_index
        prior: Tuple[HandoffRecord, ...] = execution.handoffs
        contexts = {
            role: ExecutionContext(
                task_id=execution.task_id,
                phase_name=phase.name,
                phase_index=index,
                role=role,
                signal=execution.signal,
                score=execution.score,
                tier_id=execution.tier.tier_id,
                prior_handoffs=prior,
                lock_token=token,
                cancel_event=handle.cancel_event,
            )
            for role in phase.required_roles
        }
        results = self._dispatcher.dispatch(phase, contexts)
        return merge_results(phase, index, self._next_phase_name(execution, index), results)

    def _next_phase_name(self, execution: TaskExecution, index: int) -> Optional[str]:
        """Name of the next phase that will actually run, past any skippable ones."""
        for phase in execution.tier.phases[index + 1 :]:
            if phase.should_skip(execution.signal, execution.score) is None:
                return phase.name
        return None

    def _commit(self, execution: TaskExecution, record: HandoffRecord) -> None:
        stored = execution.store.append(record)
        if execution.store.can_advance_from(execution.current_phase_index):
            logger.info(
                "Task '%s': phase '%s' handed off (record #%d)",
                execution.task_id,
                stored.from_phase,
                stored.sequence,
            )
            execution.current_phase_index += 1
            if execution.current_phase is None:
                self._complete(execution)
        else:
            logger.warning(
                "Task '%s': phase '%s' has %d unsatisfied mandatory item(s); staying on phase",
                execution.task_id,
                stored.from_phase,
                len(stored.unsatisfied_mandatory),
            )
        execution.touch()
        self._finish(execution)

    def _block(self, execution: TaskExecution, phase: PhaseSpec) -> None:
        try:
            holder = self._lock.holder()
        except Timeout:
            holder = None
        holder_id = holder.holder_id if holder is not None else "unknown"
        execution.status = ExecutionStatus.BLOCKED
        execution.blocked_reason = (
            f"phase '{phase.name}' waiting for resource lock '{self._lock.name}' held by task '{holder_id}'"
        )
        execution.touch()
        self._store.save(execution)
        logger.info("Task '%s' blocked: %s", execution.task_id, execution.blocked_reason)

    def _complete(self, execution: TaskExecution) -> None:
        execution.status = ExecutionStatus.COMPLETED
        execution.blocked_reason = None
        execution.touch()
        logger.info(
            "Task '%s' completed (%d handoffs, %d skipped)",
            execution.task_id,
            len(execution.handoffs),
            len(execution.skipped),
        )

    def _finish(self, execution: TaskExecution) -> None:
        """Persist the execution, or archive it and drop its handle if terminal."""
        if execution.is_terminal:
            self._lock.release(execution.task_id)
            self._store.archive(execution)
            self._drop_handle(execution.task_id)
        else:
            self._store.save(execution)
