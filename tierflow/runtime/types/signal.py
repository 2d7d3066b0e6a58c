"""Task intake types: the raw task signal and its derived complexity score."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Tuple

from ..errors import TaskSignalError

FAMILIARITY_MIN = 1
FAMILIARITY_MAX = 10


class TaskType(str, Enum):
    """Kind of development task being orchestrated."""

    BUG_FIX = "bug_fix"
    FEATURE = "feature"
    REFACTOR = "refactor"
    INVESTIGATION = "investigation"
    HOTFIX = "hotfix"


class Band(str, Enum):
    """Complexity band, ordered from least to most process."""

    TRIVIAL = "trivial"
    SIMPLE = "simple"
    MEDIUM = "medium"
    COMPLEX = "complex"

    @property
    def rank(self) -> int:
        return _BAND_ORDER.index(self)

    def promoted(self, steps: int = 1) -> "Band":
        """Return the band ``steps`` higher, capped at COMPLEX."""
        return _BAND_ORDER[min(self.rank + steps, len(_BAND_ORDER) - 1)]

    def at_least(self, other: "Band") -> "Band":
        return self if self.rank >= other.rank else other


_BAND_ORDER: Tuple[Band, ...] = (Band.TRIVIAL, Band.SIMPLE, Band.MEDIUM, Band.COMPLEX)


@dataclass(frozen=True)
class TaskSignal:
    """Structured signals extracted from an incoming task.

    Attributes:
        files_affected: Number of files the change touches.
        lines_affected: Number of lines added plus removed.
        modules_affected: Number of distinct modules touched.
        task_type: Kind of task.
        breaking_change: Whether the change breaks a public contract.
        familiarity: Team familiarity with the area, 1 (none) to 10 (owner).
        estimated_minutes: Up-front effort estimate.
    """

    files_affected: int
    lines_affected: int
    modules_affected: int
    task_type: TaskType
    breaking_change: bool = False
    familiarity: int = 5
    estimated_minutes: int = 0

    def validate(self) -> List[str]:
        """Return a list of problems with this signal (empty if well-formed)."""
        problems: List[str] = []
        for name in ("files_affected", "lines_affected", "modules_affected", "estimated_minutes"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                problems.append(f"{name} must be an integer, got {value!r}")
            elif value < 0:
                problems.append(f"{name} must be non-negative, got {value}")
        if isinstance(self.familiarity, bool) or not isinstance(self.familiarity, int):
            problems.append(f"familiarity must be an integer, got {self.familiarity!r}")
        elif not FAMILIARITY_MIN <= self.familiarity <= FAMILIARITY_MAX:
            problems.append(
                f"familiarity must be between {FAMILIARITY_MIN} and {FAMILIARITY_MAX}, "
                f"got {self.familiarity}"
            )
        if not isinstance(self.task_type, TaskType):
            problems.append(f"task_type must be a TaskType, got {self.task_type!r}")
        if not isinstance(self.breaking_change, bool):
            problems.append(f"breaking_change must be a boolean, got {self.breaking_change!r}")
        return problems


@dataclass(frozen=True)
class ComplexityScore:
    """Deterministic classification of a TaskSignal.

    Attributes:
        score: Weighted numeric score (informational).
        band: Complexity band that gates workflow selection.
        promoted_by: Names of the promotion rules that raised the band.
    """

    score: int
    band: Band
    promoted_by: Tuple[str, ...] = ()


# =============================================================================
# Serialization Functions
# =============================================================================


def task_signal_to_dict(signal: TaskSignal) -> Dict[str, Any]:
    """Convert TaskSignal to a dictionary for serialization."""
    return {
        "files_affected": signal.files_affected,
        "lines_affected": signal.lines_affected,
        "modules_affected": signal.modules_affected,
        "task_type": signal.task_type.value,
        "breaking_change": signal.breaking_change,
        "familiarity": signal.familiarity,
        "estimated_minutes": signal.estimated_minutes,
    }


def task_signal_from_dict(data: Dict[str, Any]) -> TaskSignal:
    """Parse TaskSignal from a dictionary.

    Raises:
        TaskSignalError: If required fields are missing or the task type is unknown.
    """
    missing = [k for k in ("files_affected", "lines_affected", "modules_affected", "task_type") if k not in data]
    if missing:
        raise TaskSignalError([f"missing field '{k}'" for k in missing])

    raw_type = data["task_type"]
    try:
        task_type = raw_type if isinstance(raw_type, TaskType) else TaskType(str(raw_type).lower())
    except ValueError:
        valid = ", ".join(t.value for t in TaskType)
        raise TaskSignalError([f"unknown task_type {raw_type!r} (expected one of: {valid})"]) from None

    return TaskSignal(
        files_affected=data["files_affected"],
        lines_affected=data["lines_affected"],
        modules_affected=data["modules_affected"],
        task_type=task_type,
        breaking_change=data.get("breaking_change", False),
        familiarity=data.get("familiarity", 5),
        estimated_minutes=data.get("estimated_minutes", 0),
    )


def complexity_score_to_dict(score: ComplexityScore) -> Dict[str, Any]:
    """Convert ComplexityScore to a dictionary for serialization."""
    return {
        "score": score.score,
        "band": score.band.value,
        "promoted_by": list(score.promoted_by),
    }


def complexity_score_from_dict(data: Dict[str, Any]) -> ComplexityScore:
    """Parse ComplexityScore from a dictionary."""
    return ComplexityScore(
        score=int(data.get("score", 0)),
        band=Band(data.get("band", Band.TRIVIAL.value)),
        promoted_by=tuple(data.get("promoted_by", [])),
    )
