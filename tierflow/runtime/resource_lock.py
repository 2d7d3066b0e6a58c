"""
resource_lock.py - Durable mutual exclusion for the UI-automation tool surface.

At most one task may hold the lock at a time. The holder is recorded in a
JSON marker file so the lock outlives the process that took it; a lock
older than the staleness timeout is reclaimed by the next acquirer, since
the holder has presumably crashed.

    <state_dir>/locks/<name>.lock.json    # {"holder_id", "acquired_at", "token"}
    <state_dir>/locks/<name>.lock.json.guard

Marker reads and writes happen under a filelock.FileLock on the guard file
(cross-process) and a threading.Lock (in-process), so check-then-write is
atomic across both.

Usage:
    from tierflow.runtime.resource_lock import get_resource_lock

    lock = get_resource_lock()
    if lock.acquire(task_id, timeout=5):
        try:
            token = lock.token_for(task_id)
            ...
        finally:
            lock.release(task_id)
"""

from __future__ import annotations

import json
import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from filelock import FileLock, Timeout

from tierflow.config.runtime_config import get_lock_settings, get_state_dir

from .storage import _atomic_write_json
from .types._ids import TaskId, generate_lock_token
from .types._time import _datetime_to_iso, _iso_to_datetime, _utcnow

logger = logging.getLogger(__name__)

LOCKS_DIR = "locks"
GUARD_TIMEOUT_SECONDS = 10.0


@dataclass(frozen=True)
class LockState:
    """Current holder of the resource lock.

    Attributes:
        holder_id: Task id of the holder.
        acquired_at: When the lock was (last) acquired.
        token: Opaque ownership proof handed to executors.
    """

    holder_id: TaskId
    acquired_at: datetime
    token: str

    def age(self, now: datetime) -> timedelta:
        return now - self.acquired_at


def lock_state_to_dict(state: LockState) -> Dict[str, Any]:
    return {
        "holder_id": state.holder_id,
        "acquired_at": _datetime_to_iso(state.acquired_at),
        "token": state.token,
    }


def lock_state_from_dict(data: Dict[str, Any]) -> LockState:
    acquired_at = _iso_to_datetime(data["acquired_at"])
    if acquired_at is None:
        raise ValueError("acquired_at is required")
    return LockState(holder_id=data["holder_id"], acquired_at=acquired_at, token=data["token"])


class ResourceLock:
    """Durable, stale-reclaiming mutex keyed by task id."""

    def __init__(
        self,
        state_dir: Optional[Path] = None,
        name: Optional[str] = None,
        stale_after_minutes: Optional[float] = None,
        poll_interval_seconds: Optional[float] = None,
        clock: Optional[Callable[[], datetime]] = None,
        guard_timeout_seconds: float = GUARD_TIMEOUT_SECONDS,
    ):
        """Initialize the lock.

        Args:
            state_dir: Durable state directory (configured default if None).
            name: Marker name (configured default if None).
            stale_after_minutes: Age after which the lock is reclaimable.
            poll_interval_seconds: Delay between attempts in a bounded wait.
            clock: Returns the current UTC time; injectable for tests.
            guard_timeout_seconds: How long one attempt waits for the guard file.
        """
        settings = get_lock_settings()
        state_dir = Path(state_dir) if state_dir is not None else get_state_dir()
        self.name = name or settings.name
        self.stale_after = timedelta(
            minutes=stale_after_minutes if stale_after_minutes is not None else settings.stale_after_minutes
        )
        self._poll_interval = (
            poll_interval_seconds if poll_interval_seconds is not None else settings.poll_interval_seconds
        )
        self._clock = clock or _utcnow
        self._path = state_dir / LOCKS_DIR / f"{self.name}.lock.json"
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._guard = FileLock(str(self._path) + ".guard", timeout=guard_timeout_seconds)
        self._mutex = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    # -------------------------------------------------------------------------
    # Marker I/O (callers hold the guard)
    # -------------------------------------------------------------------------

    def _read(self) -> Optional[LockState]:
        if not self._path.exists():
            return None
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
            return lock_state_from_dict(data)
        except (json.JSONDecodeError, KeyError, ValueError, TypeError) as e:
            # Unreadable marker is treated as released
            logger.warning("Discarding corrupt lock marker %s: %s", self._path, e)
            self._path.unlink(missing_ok=True)
            return None

    def _write(self, state: LockState) -> None:
        _atomic_write_json(self._path, lock_state_to_dict(state))

    def _stale(self, state: LockState) -> bool:
        return state.age(self._clock()) > self.stale_after

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def try_acquire(self, task_id: TaskId) -> bool:
        """Single non-blocking acquisition attempt.

        A guard file held too long by another process counts as contention.
        """
        try:
            with self._mutex, self._guard:
                return self._claim(task_id)
        except Timeout:
            logger.warning("Guard for lock '%s' is busy; task '%s' did not get the lock", self.name, task_id)
            return False

    def _claim(self, task_id: TaskId) -> bool:
        """Check-and-set the marker (caller holds the guard)."""
        current = self._read()
        now = self._clock()
        if current is not None and current.holder_id != task_id:
            if not self._stale(current):
                return False
            logger.warning(
                "Reclaiming stale lock '%s' from task '%s' (age=%.0fm) for task '%s'",
                self.name,
                current.holder_id,
                current.age(now).total_seconds() / 60,
                task_id,
            )
            current = None

        if current is not None:
            # Re-acquire by the holder refreshes the timestamp, keeps the token
            state = LockState(holder_id=task_id, acquired_at=now, token=current.token)
        else:
            state = LockState(holder_id=task_id, acquired_at=now, token=generate_lock_token())
            logger.info("Lock '%s' acquired by task '%s'", self.name, task_id)
        self._write(state)
        return True

    def acquire(self, task_id: TaskId, timeout: float = 0.0) -> bool:
        """Acquire the lock for a task, waiting up to ``timeout`` seconds.

        A timeout of 0 makes a single attempt. Stale locks are reclaimed.

        Returns:
            True if the task holds the lock on return.
        """
        deadline = time.monotonic() + max(timeout, 0.0)
        while True:
            if self.try_acquire(task_id):
                return True
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                logger.debug("Lock '%s' busy; task '%s' gave up after %.2fs", self.name, task_id, timeout)
                return False
            time.sleep(min(self._poll_interval, remaining))

    def release(self, task_id: TaskId) -> bool:
        """Release the lock if the task holds it.

        Idempotent: releasing a lock the task does not hold is a no-op.
        Never raises; a busy guard or an I/O error is logged and the marker
        is left for staleness reclamation.

        Returns:
            True if a lock held by the task was removed.
        """
        try:
            with self._mutex, self._guard:
                current = self._read()
                if current is None or current.holder_id != task_id:
                    return False
                self._path.unlink(missing_ok=True)
        except Timeout:
            logger.warning("Could not take guard for lock '%s' to release it for task '%s'", self.name, task_id)
            return False
        except OSError as e:
            logger.warning("Failed to release lock '%s' for task '%s': %s", self.name, task_id, e)
            return False
        logger.info("Lock '%s' released by task '%s'", self.name, task_id)
        return True

    def force_release(self) -> Optional[LockState]:
        """Remove the lock regardless of holder, returning the evicted state."""
        with self._mutex, self._guard:
            current = self._read()
            self._path.unlink(missing_ok=True)
        if current is not None:
            logger.warning("Lock '%s' force-released from task '%s'", self.name, current.holder_id)
        return current

    def holder(self) -> Optional[LockState]:
        """Current lock state, or None if free."""
        with self._mutex, self._guard:
            return self._read()

    def is_held_by(self, task_id: TaskId) -> bool:
        current = self.holder()
        return current is not None and current.holder_id == task_id

    def is_stale(self) -> bool:
        """Whether the lock is held but older than the staleness timeout."""
        current = self.holder()
        return current is not None and self._stale(current)

    def token_for(self, task_id: TaskId) -> Optional[str]:
        """Ownership token if the task holds the lock."""
        current = self.holder()
        if current is not None and current.holder_id == task_id:
            return current.token
        return None

    def verify_token(self, token: Optional[str], task_id: Optional[TaskId] = None) -> bool:
        """Whether a token proves current ownership (optionally by a given task)."""
        current = self.holder()
        if token is None or current is None or current.token != token:
            return False
        return task_id is None or current.holder_id == task_id


# -----------------------------------------------------------------------------
# Process-wide instance
# -----------------------------------------------------------------------------

_default_lock: Optional[ResourceLock] = None
_default_lock_guard = threading.Lock()


def get_resource_lock() -> ResourceLock:
    """Get the process-wide ResourceLock for the configured state directory."""
    global _default_lock
    with _default_lock_guard:
        if _default_lock is None:
            _default_lock = ResourceLock()
        return _default_lock


def reset_resource_lock() -> None:
    """Reset the process-wide instance (for testing)."""
    global _default_lock
    with _default_lock_guard:
        _default_lock = None
