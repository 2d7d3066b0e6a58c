"""
Test fixtures and utilities for tierflow tests.

Every test runs against its own state directory under tmp_path, with the
runtime config cache, tier registry and resource lock singletons reset.
"""

import threading
from pathlib import Path
from typing import Callable, List, Optional, Tuple

import pytest

from tierflow.config.runtime_config import LockSettings, SchedulerSettings, reset_config
from tierflow.config.tier_registry import TierRegistry
from tierflow.runtime.executors import (
    ExecutionContext,
    ExecutorRegistry,
    PhaseOutcome,
    RoleExecutor,
    StubRoleExecutor,
)
from tierflow.runtime.resource_lock import ResourceLock, reset_resource_lock
from tierflow.runtime.scheduler import PhaseScheduler
from tierflow.runtime.storage import ExecutionStore
from tierflow.runtime.types import ChecklistItem, TaskSignal, TaskType

_ENV_VARS = (
    "TIERFLOW_CONFIG",
    "TIERFLOW_LOCK_STALE_MINUTES",
    "TIERFLOW_LOCK_WAIT_SECONDS",
    "TIERFLOW_JOIN_TIMEOUT_SECONDS",
    "TIERFLOW_MAX_WORKERS",
    "TIERFLOW_EXECUTOR_MODE",
)


# ============================================================================
# Isolation
# ============================================================================


@pytest.fixture(autouse=True)
def state_dir(tmp_path, monkeypatch) -> Path:
    """Point the durable state directory at tmp_path and reset singletons."""
    path = tmp_path / "state"
    monkeypatch.setenv("TIERFLOW_STATE_DIR", str(path))
    for var in _ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    reset_config()
    TierRegistry.reset()
    reset_resource_lock()
    yield path
    reset_config()
    TierRegistry.reset()
    reset_resource_lock()


# ============================================================================
# Signals
# ============================================================================


def make_signal(**overrides) -> TaskSignal:
    """Build a TaskSignal at TRIVIAL levels, with overrides."""
    fields = dict(
        files_affected=1,
        lines_affected=10,
        modules_affected=1,
        task_type=TaskType.BUG_FIX,
        breaking_change=False,
        familiarity=8,
        estimated_minutes=15,
    )
    fields.update(overrides)
    return TaskSignal(**fields)


@pytest.fixture
def trivial_signal() -> TaskSignal:
    return make_signal()


# ============================================================================
# Executors
# ============================================================================


class RecordingExecutor(RoleExecutor):
    """Executor that records every call and returns a configurable outcome."""

    def __init__(self, outcome: Optional[Callable[[str, str, ExecutionContext], PhaseOutcome]] = None):
        self.calls: List[Tuple[str, str]] = []
        self.contexts: List[ExecutionContext] = []
        self._outcome = outcome
        self._lock = threading.Lock()

    @property
    def executor_id(self) -> str:
        return "recording"

    def execute(self, phase_name: str, role: str, context: ExecutionContext) -> PhaseOutcome:
        with self._lock:
            self.calls.append((phase_name, role))
            self.contexts.append(context)
        if self._outcome is not None:
            return self._outcome(phase_name, role, context)
        return PhaseOutcome(
            summary=f"{role} did {phase_name}",
            checklist_results=(ChecklistItem(item=f"{phase_name}:{role}", satisfied=True),),
        )

    def phases(self) -> List[str]:
        """Distinct phase names in call order."""
        seen: List[str] = []
        for phase_name, _ in self.calls:
            if phase_name not in seen:
                seen.append(phase_name)
        return seen


@pytest.fixture
def recording_executor() -> RecordingExecutor:
    return RecordingExecutor()


# ============================================================================
# Scheduler
# ============================================================================


FAST_SCHEDULER = SchedulerSettings(join_timeout_seconds=5.0, max_workers=4, abort_wait_seconds=2.0)
NO_WAIT_LOCK = LockSettings(
    name="ui-automation",
    stale_after_minutes=30.0,
    wait_seconds=0.0,
    poll_interval_seconds=0.01,
)


@pytest.fixture
def resource_lock(state_dir: Path) -> ResourceLock:
    return ResourceLock(state_dir=state_dir, poll_interval_seconds=0.01)


@pytest.fixture
def execution_store(state_dir: Path) -> ExecutionStore:
    return ExecutionStore(state_dir)


@pytest.fixture
def make_scheduler(resource_lock, execution_store):
    """Factory for schedulers sharing the test's lock and store."""
    created: List[PhaseScheduler] = []

    def _make(
        executors: Optional[ExecutorRegistry] = None,
        settings: SchedulerSettings = FAST_SCHEDULER,
        lock_settings: LockSettings = NO_WAIT_LOCK,
        lock: Optional[ResourceLock] = None,
    ) -> PhaseScheduler:
        scheduler = PhaseScheduler(
            executors=executors or ExecutorRegistry(default=StubRoleExecutor()),
            lock=lock or resource_lock,
            store=execution_store,
            settings=settings,
            lock_settings=lock_settings,
        )
        created.append(scheduler)
        return scheduler

    yield _make
    for scheduler in created:
        scheduler.shutdown()


@pytest.fixture
def scheduler(make_scheduler) -> PhaseScheduler:
    return make_scheduler()
