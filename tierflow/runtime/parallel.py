"""
parallel.py - Role dispatch for a single phase (fan-out / fan-in).

This module runs a phase's required roles against their executors and
merges what they report into one HandoffRecord.

Key features:
- Sequential phases run roles one after another in declared order
- Parallel phases run all roles concurrently behind a join barrier
- Bounded waits: a role that misses the join deadline is recorded as failed
- Failures (exceptions, success=False, timeouts, missing executors,
  malformed outcomes) become unsatisfied mandatory checklist items instead
  of propagating

A role that misses the deadline is abandoned, not stopped: its thread keeps
running until the executor returns or notices the cancel event.

Usage:
    from tierflow.runtime.parallel import PhaseDispatcher

    dispatcher = PhaseDispatcher(registry, max_workers=4, join_timeout_seconds=600)
    results = dispatcher.dispatch(phase, contexts)
    record = merge_results(phase, phase_index, next_phase_name, results)
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .executors import ExecutionContext, ExecutorRegistry, PhaseOutcome
from .handoff_store import check_payload
from .types._ids import RoleId
from .types._time import _utcnow
from .types.handoff import ChecklistItem, FileTouch, HandoffMetrics, HandoffRecord
from .types.tier import PhaseMode, PhaseSpec

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RoleResult:
    """Result from a single role's execution within a phase."""

    role: RoleId
    outcome: PhaseOutcome
    started_at: datetime
    duration_ms: int = 0
    timed_out: bool = False

    @property
    def succeeded(self) -> bool:
        return self.outcome.success and not self.timed_out


class PhaseDispatcher:
    """Dispatches a phase's roles to their executors.

    Parallel phases share one thread pool; the controller blocks on the
    join barrier until every role returns or the join timeout expires.
    """

    def __init__(
        self,
        registry: ExecutorRegistry,
        max_workers: int = 8,
        join_timeout_seconds: float = 1800.0,
    ):
        """Initialize the dispatcher.

        Args:
            registry: Role to executor lookup.
            max_workers: Maximum concurrently running executors.
            join_timeout_seconds: Deadline for all of a phase's roles to return.
        """
        self._registry = registry
        self._join_timeout = join_timeout_seconds
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="tierflow-role")

    def shutdown(self) -> None:
        """Shutdown the thread pool without waiting for stragglers."""
        self._executor.shutdown(wait=False)

    def dispatch(
        self,
        phase: PhaseSpec,
        contexts: Mapping[RoleId, ExecutionContext],
    ) -> List[RoleResult]:
        """Run every required role of a phase and return results in role order.

        Args:
            phase: The phase being executed.
            contexts: One ExecutionContext per required role.

        Returns:
            One RoleResult per required role, in declared order.
        """
        logger.info(
            "Dispatching phase '%s' (%s) to roles: %s",
            phase.name,
            phase.mode.value,
            list(phase.required_roles),
        )
        deadline = time.monotonic() + self._join_timeout
        if phase.mode == PhaseMode.PARALLEL and len(phase.required_roles) > 1:
            return self._dispatch_parallel(phase, contexts, deadline)
        return self._dispatch_sequential(phase, contexts, deadline)

    def _dispatch_sequential(
        self,
        phase: PhaseSpec,
        contexts: Mapping[RoleId, ExecutionContext],
        deadline: float,
    ) -> List[RoleResult]:
        results: List[RoleResult] = []
        for role in phase.required_roles:
            ctx = contexts[role]
            if ctx.cancelled:
                results.append(self._failed(role, "cancelled before start"))
                continue
            started_at = _utcnow()
            future = self._executor.submit(self._run_role, phase.name, role, ctx)
            done, _ = wait([future], timeout=max(deadline - time.monotonic(), 0.0))
            if not done:
                future.cancel()
                results.append(self._timed_out(phase.name, role, started_at))
                continue
            results.append(future.result())
        return results

    def _dispatch_parallel(
        self,
        phase: PhaseSpec,
        contexts: Mapping[RoleId, ExecutionContext],
        deadline: float,
    ) -> List[RoleResult]:
        started_at = _utcnow()
        futures: Dict[RoleId, Future] = {
            role: self._executor.submit(self._run_role, phase.name, role, contexts[role])
            for role in phase.required_roles
        }

        # Fan-in barrier: partial results are never acted upon
        pending = set(futures.values())
        while pending:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            _, pending = wait(pending, timeout=remaining, return_when=FIRST_COMPLETED)

        results: List[RoleResult] = []
        for role, future in futures.items():
            if future.done():
                results.append(future.result())
            else:
                future.cancel()
                results.append(self._timed_out(phase.name, role, started_at))
        return results

    def _run_role(self, phase_name: str, role: RoleId, ctx: ExecutionContext) -> RoleResult:
        """Execute a single role (runs in the thread pool)."""
        started_at = _utcnow()
        start = time.monotonic()
        executor = self._registry.get(role)
        if executor is None:
            outcome = PhaseOutcome.failure(role, "no executor registered for role")
        elif ctx.cancelled:
            outcome = PhaseOutcome.failure(role, "cancelled before start")
        else:
            try:
                outcome = executor.execute(phase_name, role, ctx)
            except Exception as e:
                # Executors are external; their failures are recorded, not raised
                logger.warning("Executor '%s' raised in phase '%s': %s", role, phase_name, e)
                outcome = PhaseOutcome.failure(role, f"{type(e).__name__}: {e}")
            else:
                outcome = self._checked(phase_name, role, outcome)

        duration_ms = int((time.monotonic() - start) * 1000)
        if outcome.metrics.elapsed_minutes == 0:
            outcome = replace(
                outcome,
                metrics=replace(outcome.metrics, elapsed_minutes=round(duration_ms / 60000.0, 3)),
            )
        logger.debug(
            "Role '%s' finished phase '%s' in %dms (success=%s)",
            role,
            phase_name,
            duration_ms,
            outcome.success,
        )
        return RoleResult(role=role, outcome=outcome, started_at=started_at, duration_ms=duration_ms)

    def _checked(self, phase_name: str, role: RoleId, outcome: Any) -> PhaseOutcome:
        """Turn a malformed executor result into a failed outcome."""
        if not isinstance(outcome, PhaseOutcome):
            return PhaseOutcome.failure(role, f"executor returned {type(outcome).__name__}, expected PhaseOutcome")
        problems = check_payload(outcome.metrics, outcome.contract_artifacts, outcome.checklist_results)
        if not problems:
            return outcome
        logger.warning(
            "Executor '%s' returned an invalid outcome in phase '%s': %s",
            role,
            phase_name,
            "; ".join(problems),
        )
        return PhaseOutcome.failure(role, "invalid outcome: " + "; ".join(problems))

    def _failed(self, role: RoleId, message: str) -> RoleResult:
        return RoleResult(role=role, outcome=PhaseOutcome.failure(role, message), started_at=_utcnow())

    def _timed_out(self, phase_name: str, role: RoleId, started_at: datetime) -> RoleResult:
        logger.warning(
            "Role '%s' missed the %gs join deadline in phase '%s'; its executor may still be running",
            role,
            self._join_timeout,
            phase_name,
        )
        return RoleResult(
            role=role,
            outcome=PhaseOutcome.failure(role, f"timed out after {self._join_timeout:g}s"),
            started_at=started_at,
            duration_ms=int(self._join_timeout * 1000),
            timed_out=True,
        )


# =============================================================================
# Merging
# =============================================================================


def _merge_artifacts(results: List[RoleResult]) -> Dict[str, Any]:
    merged: Dict[str, Any] = {}
    for result in results:
        for name, payload in result.outcome.contract_artifacts.items():
            if name in merged and merged[name] != payload:
                # Conflicting contracts are kept side by side, namespaced by role
                logger.warning("Contract artifact '%s' reported differently by '%s'", name, result.role)
                merged[f"{result.role}.{name}"] = payload
            else:
                merged.setdefault(name, payload)
    return merged


def _merge_metrics(results: List[RoleResult]) -> HandoffMetrics:
    if not results:
        return HandoffMetrics()
    metrics = [r.outcome.metrics for r in results]
    return HandoffMetrics(
        files_changed=sum(m.files_changed for m in metrics),
        lines_added=sum(m.lines_added for m in metrics),
        lines_removed=sum(m.lines_removed for m in metrics),
        confidence_percent=min(m.confidence_percent for m in metrics),
        elapsed_minutes=round(sum(m.elapsed_minutes for m in metrics), 3),
    )


def _dedupe(items) -> Tuple:
    return tuple(dict.fromkeys(items))


def merge_results(
    phase: PhaseSpec,
    phase_index: int,
    to_phase: Optional[str],
    results: List[RoleResult],
) -> HandoffRecord:
    """Merge every role's outcome into one HandoffRecord.

    Summaries, decisions and edge cases are concatenated in role order;
    counts and elapsed time are summed; confidence is the lowest reported;
    checklists are unioned. Each failed role adds an unsatisfied mandatory
    checklist item so the phase cannot be left until it is re-run or resolved.
    """
    checklist: List[ChecklistItem] = []
    for result in results:
        checklist.extend(result.outcome.checklist_results)
        if not result.succeeded:
            reason = result.outcome.error or "reported failure"
            checklist.append(
                ChecklistItem(item=f"{result.role} completed {phase.name}: {reason}", satisfied=False)
            )

    files: List[FileTouch] = [f for r in results for f in r.outcome.files_touched]
    return HandoffRecord(
        from_phase=phase.name,
        to_phase=to_phase,
        phase_index=phase_index,
        summary="\n".join(r.outcome.summary for r in results if r.outcome.summary),
        files_touched=_dedupe(files),
        key_decisions=_dedupe(d for r in results for d in r.outcome.decisions),
        contract_artifacts=_merge_artifacts(results),
        open_edge_cases=_dedupe(e for r in results for e in r.outcome.open_edge_cases),
        metrics=_merge_metrics(results),
        verification_checklist=_dedupe(checklist),
        roles=tuple(r.role for r in results),
    )
