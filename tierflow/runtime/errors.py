# tierflow/runtime/errors.py
"""Exception hierarchy for the orchestration core."""

from __future__ import annotations

from typing import List, Optional, Sequence


class TierflowError(Exception):
    """Base class for all orchestration core errors."""


class TaskSignalError(TierflowError, ValueError):
    """Raised when a TaskSignal is malformed.

    Classification fails fast on these; no ComplexityScore and no
    TaskExecution is produced.
    """

    def __init__(self, problems: Sequence[str]) -> None:
        self.problems: List[str] = list(problems)
        super().__init__(f"Invalid task signal: {'; '.join(self.problems)}")


class TierConfigError(TierflowError):
    """Raised when the tier configuration cannot be loaded or is inconsistent."""

    def __init__(self, message: str, source: Optional[str] = None) -> None:
        self.source = source
        if source:
            message = f"{source}: {message}"
        super().__init__(message)


class ExecutionStateError(TierflowError):
    """Raised for operations that are illegal in the execution's current state."""


class TaskNotFoundError(TierflowError, KeyError):
    """Raised when a persisted task cannot be found."""

    def __init__(self, task_id: str) -> None:
        self.task_id = task_id
        super().__init__(task_id)

    def __str__(self) -> str:
        return f"Task '{self.task_id}' not found"


class HandoffValidationError(TierflowError, ValueError):
    """Raised when a handoff record is structurally malformed."""

    def __init__(self, problems: Sequence[str]) -> None:
        self.problems: List[str] = list(problems)
        super().__init__(f"Invalid handoff record: {'; '.join(self.problems)}")
