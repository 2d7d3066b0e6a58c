"""
Tests for storage.py - durable TaskExecution persistence.

These tests verify:
- Executions round-trip through disk with full history
- Atomic writes leave no temp files behind
- Archiving moves terminal executions out of the active set, for good
- Corrupt files are reported or skipped
"""

from __future__ import annotations

import json

import pytest

from conftest import make_signal

from tierflow.config.tier_registry import get_tier
from tierflow.runtime.classifier import classify
from tierflow.runtime.errors import ExecutionStateError, TaskNotFoundError
from tierflow.runtime.execution import ExecutionStatus, TaskExecution
from tierflow.runtime.storage import ExecutionStore
from tierflow.runtime.types import ChecklistItem, FileTouch, HandoffRecord, TierId


def _execution(task_id: str = "task-1") -> TaskExecution:
    signal = make_signal()
    execution = TaskExecution(
        task_id=task_id,
        signal=signal,
        score=classify(signal),
        tier=get_tier(TierId.LIGHTWEIGHT_3),
    )
    execution.store.append(
        HandoffRecord(
            from_phase="locate",
            to_phase="fix",
            phase_index=0,
            summary="found it",
            files_touched=(FileTouch("app/models.py"),),
            contract_artifacts={"root_cause": {"file": "app/models.py", "line": 42}},
            verification_checklist=(ChecklistItem(item="reproduced", satisfied=True),),
            roles=("implementer",),
        )
    )
    execution.store.mark_skipped("fix", 1, "quick_task")
    execution.current_phase_index = 2
    return execution


class TestSaveLoad:
    """Tests for persisting and loading executions."""

    def test_round_trip(self, execution_store):
        execution = _execution()
        execution_store.save(execution)
        loaded = execution_store.load("task-1")

        assert loaded.task_id == execution.task_id
        assert loaded.signal == execution.signal
        assert loaded.score == execution.score
        assert loaded.tier == execution.tier
        assert loaded.current_phase_index == 2
        assert loaded.history == execution.history
        assert loaded.handoffs[0].contract_artifacts["root_cause"]["line"] == 42

    def test_layout(self, execution_store, state_dir):
        execution_store.save(_execution())
        path = state_dir / "tasks" / "task-1.json"
        assert path.exists()
        assert json.loads(path.read_text(encoding="utf-8"))["status"] == "running"
        assert list(path.parent.glob("*.tmp")) == []

    def test_load_missing(self, execution_store):
        with pytest.raises(TaskNotFoundError) as exc_info:
            execution_store.load("task-nope")
        assert str(exc_info.value) == "Task 'task-nope' not found"

    def test_load_corrupt(self, execution_store, state_dir):
        path = state_dir / "tasks" / "task-bad.json"
        path.parent.mkdir(parents=True)
        path.write_text("{", encoding="utf-8")
        with pytest.raises(ExecutionStateError):
            execution_store.load("task-bad")

    def test_default_state_dir_from_config(self, state_dir):
        assert ExecutionStore().state_dir == state_dir


class TestListing:
    """Tests for listing active executions."""

    def test_lists_active_only(self, execution_store):
        execution_store.save(_execution("task-a"))
        done = _execution("task-b")
        done.status = ExecutionStatus.COMPLETED
        execution_store.save(done)
        execution_store.archive(done)

        assert [e.task_id for e in execution_store.list_active()] == ["task-a"]
        assert execution_store.list_archived() == ["task-b"]

    def test_skips_corrupt_files(self, execution_store, state_dir):
        execution_store.save(_execution("task-a"))
        (state_dir / "tasks" / "task-bad.json").write_text("not json", encoding="utf-8")
        assert [e.task_id for e in execution_store.list_active()] == ["task-a"]

    def test_empty_store(self, execution_store):
        assert execution_store.list_active() == []
        assert execution_store.list_archived() == []


class TestArchive:
    """Tests for archiving terminal executions."""

    def test_archive_moves_file(self, execution_store, state_dir):
        execution = _execution()
        execution_store.save(execution)
        execution.status = ExecutionStatus.ABORTED
        execution.abort_reason = "superseded"
        execution_store.archive(execution)

        assert not (state_dir / "tasks" / "task-1.json").exists()
        assert execution_store.is_archived("task-1")
        assert execution_store.load("task-1").abort_reason == "superseded"

    def test_archive_requires_terminal(self, execution_store):
        with pytest.raises(ExecutionStateError):
            execution_store.archive(_execution())

    def test_save_refuses_archived_task(self, execution_store, state_dir):
        execution = _execution()
        execution_store.save(execution)
        execution.status = ExecutionStatus.COMPLETED
        execution_store.archive(execution)

        execution.status = ExecutionStatus.RUNNING
        with pytest.raises(ExecutionStateError):
            execution_store.save(execution)
        assert not (state_dir / "tasks" / "task-1.json").exists()
        assert execution_store.load("task-1").status == ExecutionStatus.COMPLETED
