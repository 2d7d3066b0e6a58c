"""
handoff_store.py - Append-only per-task handoff log.

Every phase boundary writes exactly one entry: a HandoffRecord when the
phase ran, or a PhaseSkipped marker when its skip rule held. Entries are
never edited or removed; a correction is a new record for the same phase,
and the latest record for a phase is the one that counts.

Whether the scheduler may leave a phase is recomputed purely from the
entry list: the latest record for that phase must exist and must have no
unsatisfied mandatory checklist items.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import replace
from typing import Any, Iterable, List, Mapping, Optional, Tuple

from .errors import HandoffValidationError
from .types.handoff import ChecklistItem, HandoffMetrics, HandoffRecord, HistoryEntry, PhaseSkipped

logger = logging.getLogger(__name__)


def check_payload(
    metrics: HandoffMetrics,
    contract_artifacts: Mapping[str, Any],
    checklist: Iterable[ChecklistItem],
) -> List[str]:
    """Return problems with the executor-reported parts of a record."""
    problems: List[str] = []
    for name in ("files_changed", "lines_added", "lines_removed", "elapsed_minutes"):
        if getattr(metrics, name) < 0:
            problems.append(f"metrics.{name} must be non-negative, got {getattr(metrics, name)}")
    if not 0 <= metrics.confidence_percent <= 100:
        problems.append(f"metrics.confidence_percent must be within 0..100, got {metrics.confidence_percent}")
    try:
        json.dumps(dict(contract_artifacts))
    except (TypeError, ValueError) as e:
        problems.append(f"contract_artifacts must be JSON-serializable: {e}")
    for item in checklist:
        if not item.item:
            problems.append("checklist items need a description")
            break
    return problems


def check_record(record: HandoffRecord) -> List[str]:
    """Return structural problems with a record (empty if well-formed)."""
    problems: List[str] = []
    if not record.from_phase:
        problems.append("from_phase is required")
    if record.phase_index < 0:
        problems.append(f"phase_index must be non-negative, got {record.phase_index}")
    problems.extend(check_payload(record.metrics, record.contract_artifacts, record.verification_checklist))
    return problems


class HandoffStore:
    """Append-only log of HandoffRecords and PhaseSkipped markers for one task."""

    def __init__(self, entries: Iterable[HistoryEntry] = ()):
        self._entries: List[HistoryEntry] = list(entries)
        self._lock = threading.Lock()

    def __len__(self) -> int:
        """Number of handoff records (markers excluded)."""
        return len(self.records())

    def _next_sequence(self) -> int:
        return len(self._entries) + 1

    def append(self, record: HandoffRecord) -> HandoffRecord:
        """Validate and append a record, returning it with its sequence assigned.

        Raises:
            HandoffValidationError: If the record is structurally malformed.
        """
        problems = check_record(record)
        if problems:
            raise HandoffValidationError(problems)
        with self._lock:
            stored = replace(record, sequence=self._next_sequence())
            self._entries.append(stored)
        logger.debug(
            "Handoff #%d written for phase '%s' (satisfied=%s)",
            stored.sequence,
            stored.from_phase,
            stored.satisfied,
        )
        return stored

    def mark_skipped(self, phase_name: str, phase_index: int, rule: str) -> PhaseSkipped:
        """Append a PhaseSkipped marker."""
        with self._lock:
            marker = PhaseSkipped(
                phase_name=phase_name,
                phase_index=phase_index,
                rule=rule,
                sequence=self._next_sequence(),
            )
            self._entries.append(marker)
        return marker

    def entries(self) -> Tuple[HistoryEntry, ...]:
        """Full history in write order."""
        with self._lock:
            return tuple(self._entries)

    def records(self) -> Tuple[HandoffRecord, ...]:
        return tuple(e for e in self.entries() if isinstance(e, HandoffRecord))

    def markers(self) -> Tuple[PhaseSkipped, ...]:
        return tuple(e for e in self.entries() if isinstance(e, PhaseSkipped))

    def latest_for_phase(self, phase_index: int) -> Optional[HandoffRecord]:
        """The most recent record written for a phase, if any."""
        for entry in reversed(self.entries()):
            if isinstance(entry, HandoffRecord) and entry.phase_index == phase_index:
                return entry
        return None

    def blocking_items(self, phase_index: int) -> List[ChecklistItem]:
        """Unsatisfied mandatory items on the phase's latest record."""
        record = self.latest_for_phase(phase_index)
        return record.unsatisfied_mandatory if record is not None else []

    def can_advance_from(self, phase_index: int) -> bool:
        """Whether the phase has a record with no unsatisfied mandatory items."""
        record = self.latest_for_phase(phase_index)
        return record is not None and record.satisfied
