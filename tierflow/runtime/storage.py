"""
storage.py - Durable persistence for task executions.

The storage layout is:

    <state_dir>/
      tasks/
        <task_id>.json     # live TaskExecution (RUNNING or BLOCKED)
      archive/
        <task_id>.json     # terminal TaskExecution (COMPLETED or ABORTED)
      locks/
        <name>.lock.json   # resource lock marker (see resource_lock.py)

Each execution is a single JSON document holding the signal, score, tier
and full handoff history, rewritten atomically after every transition.

Usage:
    from tierflow.runtime.storage import ExecutionStore

    store = ExecutionStore(state_dir)
    store.save(execution)
    execution = store.load(task_id)
    for execution in store.list_active():
        ...
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

from tierflow.config.runtime_config import get_state_dir

from .errors import ExecutionStateError, TaskNotFoundError
from .execution import TaskExecution, task_execution_from_dict, task_execution_to_dict
from .types._ids import TaskId

logger = logging.getLogger(__name__)

TASKS_DIR = "tasks"
ARCHIVE_DIR = "archive"


# -----------------------------------------------------------------------------
# Atomic File I/O Helpers
# -----------------------------------------------------------------------------


def _atomic_write_json(path: Path, data: Any, indent: int = 2) -> None:
    """Write JSON data to a file atomically.

    Writes to a temporary file in the same directory, fsyncs it, and
    renames it over the destination so readers never see a partial file.

    Args:
        path: Destination file path.
        data: JSON-serializable data.
        indent: JSON indentation level.
    """
    parent = path.parent
    parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_path = tempfile.mkstemp(suffix=".tmp", prefix=path.name + ".", dir=parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=indent, ensure_ascii=False)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except Exception:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


def _read_json(path: Path) -> Optional[Dict[str, Any]]:
    """Read a JSON document, returning None if the file is missing or corrupt."""
    if not path.exists():
        return None
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except json.JSONDecodeError as e:
        logger.warning("Corrupt JSON at %s: %s", path, e)
        return None
    except OSError as e:
        logger.warning("Failed to read %s: %s", path, e)
        return None


class ExecutionStore:
    """Filesystem-backed store of TaskExecutions.

    Writes are serialized per store instance; each file is replaced
    atomically so a crash leaves the previous committed state readable.
    """

    def __init__(self, state_dir: Optional[Path] = None):
        self._state_dir = Path(state_dir) if state_dir is not None else get_state_dir()
        self._lock = threading.Lock()

    @property
    def state_dir(self) -> Path:
        return self._state_dir

    @property
    def tasks_dir(self) -> Path:
        return self._state_dir / TASKS_DIR

    @property
    def archive_dir(self) -> Path:
        return self._state_dir / ARCHIVE_DIR

    def _active_path(self, task_id: TaskId) -> Path:
        return self.tasks_dir / f"{task_id}.json"

    def _archived_path(self, task_id: TaskId) -> Path:
        return self.archive_dir / f"{task_id}.json"

    def save(self, execution: TaskExecution) -> Path:
        """Persist an execution under tasks/, replacing any previous state.

        Raises:
            ExecutionStateError: If the task has already been archived.
        """
        path = self._active_path(execution.task_id)
        with self._lock:
            if self._archived_path(execution.task_id).exists():
                raise ExecutionStateError(f"Task '{execution.task_id}' is archived; its state can no longer change")
            _atomic_write_json(path, task_execution_to_dict(execution))
        logger.debug(
            "Saved task '%s' (status=%s, phase=%d)",
            execution.task_id,
            execution.status.value,
            execution.current_phase_index,
        )
        return path

    def exists(self, task_id: TaskId) -> bool:
        return self._active_path(task_id).exists() or self._archived_path(task_id).exists()

    def is_archived(self, task_id: TaskId) -> bool:
        return self._archived_path(task_id).exists()

    def load(self, task_id: TaskId) -> TaskExecution:
        """Load an execution, looking in tasks/ first and then archive/.

        Raises:
            TaskNotFoundError: If no state exists for the task.
            ExecutionStateError: If the stored state is unreadable.
        """
        for path in (self._active_path(task_id), self._archived_path(task_id)):
            if not path.exists():
                continue
            data = _read_json(path)
            if data is None:
                raise ExecutionStateError(f"Stored state for task '{task_id}' at {path} is unreadable")
            return task_execution_from_dict(data)
        raise TaskNotFoundError(task_id)

    def list_active(self) -> List[TaskExecution]:
        """All non-archived executions, oldest first. Corrupt files are skipped."""
        if not self.tasks_dir.exists():
            return []
        executions: List[TaskExecution] = []
        for path in sorted(self.tasks_dir.glob("*.json")):
            data = _read_json(path)
            if data is None:
                continue
            executions.append(task_execution_from_dict(data))
        executions.sort(key=lambda e: e.created_at)
        return executions

    def list_archived(self) -> List[TaskId]:
        """Task ids of archived executions, sorted."""
        if not self.archive_dir.exists():
            return []
        return sorted(p.stem for p in self.archive_dir.glob("*.json"))

    def archive(self, execution: TaskExecution) -> Path:
        """Move a terminal execution from tasks/ to archive/.

        Raises:
            ExecutionStateError: If the execution is not terminal.
        """
        if not execution.is_terminal:
            raise ExecutionStateError(
                f"Only terminal executions can be archived; task '{execution.task_id}' "
                f"is {execution.status.value}"
            )
        target = self._archived_path(execution.task_id)
        with self._lock:
            _atomic_write_json(target, task_execution_to_dict(execution))
            active = self._active_path(execution.task_id)
            if active.exists():
                active.unlink()
        logger.info("Archived task '%s' (%s)", execution.task_id, execution.status.value)
        return target
