"""Handoff types for cross-phase communication.

This module contains the HandoffRecord type, the PhaseSkipped history
marker, and their serialization functions. Records are written once and
never edited; a correction is a new record for the same phase.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from ._time import _datetime_to_iso, _iso_to_datetime, _utcnow


class ChangeKind(str, Enum):
    """How a phase touched a file."""

    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"
    RENAMED = "renamed"


@dataclass(frozen=True)
class FileTouch:
    """A single (path, change kind) pair reported by a phase."""

    path: str
    change_kind: ChangeKind = ChangeKind.MODIFIED


@dataclass(frozen=True)
class ChecklistItem:
    """One verification checklist entry.

    Mandatory items that are not satisfied block phase advancement.
    """

    item: str
    satisfied: bool
    mandatory: bool = True


@dataclass(frozen=True)
class HandoffMetrics:
    """Quantitative summary of a phase's work."""

    files_changed: int = 0
    lines_added: int = 0
    lines_removed: int = 0
    confidence_percent: int = 100
    elapsed_minutes: float = 0.0


@dataclass(frozen=True)
class HandoffRecord:
    """Durable per-phase handoff for cross-phase communication.

    Attributes:
        from_phase: Name of the phase that produced this record.
        to_phase: Next phase that will run, past any skipped ones (None if none remains).
        phase_index: 0-based index of from_phase within the tier.
        summary: Compressed summary of the phase output.
        files_touched: Files the phase reported touching.
        key_decisions: Decisions later phases must honor, in order.
        contract_artifacts: Named structured payloads (API shapes, schemas)
            that later phases depend on verbatim.
        open_edge_cases: Known gaps handed to later phases.
        metrics: Quantitative summary.
        verification_checklist: Checklist results; unsatisfied mandatory
            items block advancement.
        roles: Roles whose outcomes were merged into this record.
        sequence: Position in the execution's history (assigned on append).
        created_at: When the record was produced.
    """

    from_phase: str
    to_phase: Optional[str]
    phase_index: int
    summary: str
    files_touched: Tuple[FileTouch, ...] = ()
    key_decisions: Tuple[str, ...] = ()
    contract_artifacts: Dict[str, Any] = field(default_factory=dict)
    open_edge_cases: Tuple[str, ...] = ()
    metrics: HandoffMetrics = field(default_factory=HandoffMetrics)
    verification_checklist: Tuple[ChecklistItem, ...] = ()
    roles: Tuple[str, ...] = ()
    sequence: int = 0
    created_at: datetime = field(default_factory=_utcnow)

    @property
    def unsatisfied_mandatory(self) -> List[ChecklistItem]:
        return [c for c in self.verification_checklist if c.mandatory and not c.satisfied]

    @property
    def satisfied(self) -> bool:
        """True when no mandatory checklist item is unsatisfied."""
        return not self.unsatisfied_mandatory


@dataclass(frozen=True)
class PhaseSkipped:
    """History marker written in place of a record for a skipped phase."""

    phase_name: str
    phase_index: int
    rule: str
    sequence: int = 0
    created_at: datetime = field(default_factory=_utcnow)


HistoryEntry = Union[HandoffRecord, PhaseSkipped]


# =============================================================================
# Serialization Functions
# =============================================================================


def handoff_record_to_dict(record: HandoffRecord) -> Dict[str, Any]:
    """Convert HandoffRecord to a dictionary for serialization.

    Args:
        record: The HandoffRecord to convert.

    Returns:
        Dictionary representation suitable for JSON/YAML serialization.
    """
    return {
        "kind": "handoff",
        "from_phase": record.from_phase,
        "to_phase": record.to_phase,
        "phase_index": record.phase_index,
        "summary": record.summary,
        "files_touched": [
            {"path": f.path, "change_kind": f.change_kind.value} for f in record.files_touched
        ],
        "key_decisions": list(record.key_decisions),
        "contract_artifacts": dict(record.contract_artifacts),
        "open_edge_cases": list(record.open_edge_cases),
        "metrics": {
            "files_changed": record.metrics.files_changed,
            "lines_added": record.metrics.lines_added,
            "lines_removed": record.metrics.lines_removed,
            "confidence_percent": record.metrics.confidence_percent,
            "elapsed_minutes": record.metrics.elapsed_minutes,
        },
        "verification_checklist": [
            {"item": c.item, "satisfied": c.satisfied, "mandatory": c.mandatory}
            for c in record.verification_checklist
        ],
        "roles": list(record.roles),
        "sequence": record.sequence,
        "created_at": _datetime_to_iso(record.created_at),
    }


def handoff_record_from_dict(data: Dict[str, Any]) -> HandoffRecord:
    """Parse HandoffRecord from a dictionary.

    Args:
        data: Dictionary with HandoffRecord fields.

    Returns:
        Parsed HandoffRecord instance.
    """
    metrics = data.get("metrics", {})
    return HandoffRecord(
        from_phase=data.get("from_phase", ""),
        to_phase=data.get("to_phase"),
        phase_index=data.get("phase_index", 0),
        summary=data.get("summary", ""),
        files_touched=tuple(
            FileTouch(path=f["path"], change_kind=ChangeKind(f.get("change_kind", "modified")))
            for f in data.get("files_touched", [])
        ),
        key_decisions=tuple(data.get("key_decisions", [])),
        contract_artifacts=dict(data.get("contract_artifacts", {})),
        open_edge_cases=tuple(data.get("open_edge_cases", [])),
        metrics=HandoffMetrics(
            files_changed=metrics.get("files_changed", 0),
            lines_added=metrics.get("lines_added", 0),
            lines_removed=metrics.get("lines_removed", 0),
            confidence_percent=metrics.get("confidence_percent", 100),
            elapsed_minutes=metrics.get("elapsed_minutes", 0.0),
        ),
        verification_checklist=tuple(
            ChecklistItem(
                item=c.get("item", ""),
                satisfied=c.get("satisfied", False),
                mandatory=c.get("mandatory", True),
            )
            for c in data.get("verification_checklist", [])
        ),
        roles=tuple(data.get("roles", [])),
        sequence=data.get("sequence", 0),
        created_at=_iso_to_datetime(data.get("created_at")) or _utcnow(),
    )


def phase_skipped_to_dict(marker: PhaseSkipped) -> Dict[str, Any]:
    """Convert PhaseSkipped to a dictionary for serialization."""
    return {
        "kind": "phase_skipped",
        "phase_name": marker.phase_name,
        "phase_index": marker.phase_index,
        "rule": marker.rule,
        "sequence": marker.sequence,
        "created_at": _datetime_to_iso(marker.created_at),
    }


def phase_skipped_from_dict(data: Dict[str, Any]) -> PhaseSkipped:
    """Parse PhaseSkipped from a dictionary."""
    return PhaseSkipped(
        phase_name=data.get("phase_name", ""),
        phase_index=data.get("phase_index", 0),
        rule=data.get("rule", ""),
        sequence=data.get("sequence", 0),
        created_at=_iso_to_datetime(data.get("created_at")) or _utcnow(),
    )


def history_entry_to_dict(entry: HistoryEntry) -> Dict[str, Any]:
    if isinstance(entry, PhaseSkipped):
        return phase_skipped_to_dict(entry)
    return handoff_record_to_dict(entry)


def history_entry_from_dict(data: Dict[str, Any]) -> HistoryEntry:
    if data.get("kind") == "phase_skipped":
        return phase_skipped_from_dict(data)
    return handoff_record_from_dict(data)
