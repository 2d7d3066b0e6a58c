"""
classifier.py - Complexity classification of incoming tasks.

Turns a TaskSignal into a ComplexityScore. The numeric score is a weighted
sum of the count-like fields and is informational; the band is gated by
``files_affected`` and only ever promoted (never demoted) by the secondary
fields. Ambiguity resolves toward more process.

Usage:
    from tierflow.runtime.classifier import classify

    score = classify(signal)
    score.band          # Band.SIMPLE
    score.promoted_by   # ("breaking_change",)
"""

from __future__ import annotations

import logging
from typing import List

from .errors import TaskSignalError
from .types.signal import Band, ComplexityScore, TaskSignal, TaskType

logger = logging.getLogger(__name__)

# Band gates on files_affected
TRIVIAL_MAX_FILES = 2
SIMPLE_MAX_FILES = 5
MEDIUM_MAX_FILES = 15

# Secondary modifiers
TRIVIAL_MAX_LINES = 50
CROSS_MODULE_MIN_MODULES = 2
LOW_FAMILIARITY_MAX = 4

# Score weights
WEIGHT_FILE = 4
LINES_PER_POINT = 25
WEIGHT_EXTRA_MODULE = 6
WEIGHT_BREAKING = 10
FAMILIARITY_CEILING = 10


def compute_score(signal: TaskSignal) -> int:
    """Weighted combination of the signal's count-like fields."""
    return (
        WEIGHT_FILE * signal.files_affected
        + signal.lines_affected // LINES_PER_POINT
        + WEIGHT_EXTRA_MODULE * max(signal.modules_affected - 1, 0)
        + (FAMILIARITY_CEILING - signal.familiarity)
        + (WEIGHT_BREAKING if signal.breaking_change else 0)
    )


def classify(signal: TaskSignal) -> ComplexityScore:
    """Classify a task signal into a complexity band.

    Args:
        signal: The task's structured intake signal.

    Returns:
        ComplexityScore with the weighted score, band, and the names of
        the promotion rules that fired.

    Raises:
        TaskSignalError: If the signal is malformed (no score is produced).
    """
    problems = signal.validate()
    if problems:
        raise TaskSignalError(problems)

    promoted_by: List[str] = []
    files = signal.files_affected

    if files <= TRIVIAL_MAX_FILES and signal.task_type == TaskType.BUG_FIX:
        band = Band.TRIVIAL
        if signal.lines_affected > TRIVIAL_MAX_LINES:
            band = band.at_least(Band.SIMPLE)
            promoted_by.append("large_diff")
    elif files <= SIMPLE_MAX_FILES:
        band = Band.SIMPLE
        if (
            signal.modules_affected >= CROSS_MODULE_MIN_MODULES
            and signal.familiarity <= LOW_FAMILIARITY_MAX
        ):
            band = band.at_least(Band.MEDIUM)
            promoted_by.append("unfamiliar_cross_module")
    elif files <= MEDIUM_MAX_FILES:
        band = Band.MEDIUM
    else:
        band = Band.COMPLEX

    if signal.breaking_change:
        before = band
        band = band.promoted()
        if band != before:
            promoted_by.append("breaking_change")

    score = ComplexityScore(score=compute_score(signal), band=band, promoted_by=tuple(promoted_by))
    logger.debug(
        "Classified %s signal (files=%d, lines=%d, modules=%d) as %s (score=%d, promoted_by=%s)",
        signal.task_type.value,
        signal.files_affected,
        signal.lines_affected,
        signal.modules_affected,
        band.value,
        score.score,
        list(promoted_by),
    )
    return score
