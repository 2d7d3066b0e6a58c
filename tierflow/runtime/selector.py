"""
selector.py - Workflow tier selection.

Maps a (ComplexityScore, TaskType) pair to a WorkflowTier using a fixed,
first-match-wins decision table. Selection is pure: the same inputs always
yield the same tier.

    | Condition          | Tier                                    |
    |--------------------|-----------------------------------------|
    | type == HOTFIX     | EXTENDED_8                              |
    | band == TRIVIAL    | LIGHTWEIGHT_3                           |
    | band == SIMPLE     | STANDARD_5                              |
    | band == MEDIUM     | FULL_7                                  |
    | band == COMPLEX    | FULL_7 (widened roles, same phase count)|

COMPLEX tasks get widened roles in whichever tier they land in.
"""

from __future__ import annotations

import logging
from typing import Callable, List, Optional, Tuple

from tierflow.config.tier_registry import TierRegistry

from .types.signal import Band, ComplexityScore, TaskType
from .types.tier import TierId, WorkflowTier

logger = logging.getLogger(__name__)

Condition = Callable[[ComplexityScore, TaskType], bool]

DECISION_TABLE: Tuple[Tuple[str, Condition, TierId], ...] = (
    ("hotfix_override", lambda s, t: t == TaskType.HOTFIX, TierId.EXTENDED_8),
    ("trivial", lambda s, t: s.band == Band.TRIVIAL, TierId.LIGHTWEIGHT_3),
    ("simple", lambda s, t: s.band == Band.SIMPLE, TierId.STANDARD_5),
    ("medium", lambda s, t: s.band == Band.MEDIUM, TierId.FULL_7),
    ("complex", lambda s, t: s.band == Band.COMPLEX, TierId.FULL_7),
)


def select_tier_id(score: ComplexityScore, task_type: TaskType) -> Tuple[TierId, str]:
    """Return the matching tier id and the name of the row that matched."""
    for row_name, condition, tier_id in DECISION_TABLE:
        if condition(score, task_type):
            return tier_id, row_name
    # Every band has a row, so this is unreachable for well-formed scores
    raise ValueError(f"no tier for band={score.band!r}, type={task_type!r}")


def select(
    score: ComplexityScore,
    task_type: TaskType,
    registry: Optional[TierRegistry] = None,
) -> WorkflowTier:
    """Select the workflow tier for a classified task.

    Args:
        score: Output of classify().
        task_type: The task's type (HOTFIX overrides the score).
        registry: Tier registry to read from (process-wide by default).

    Returns:
        The selected WorkflowTier, widened when the band is COMPLEX.
    """
    registry = registry or TierRegistry.get_instance()
    tier_id, row_name = select_tier_id(score, task_type)
    tier = registry.get(tier_id)
    if score.band == Band.COMPLEX:
        tier = tier.with_widened_roles()
    logger.debug(
        "Selected %s via '%s' for band=%s type=%s (widened=%s)",
        tier.tier_id.value,
        row_name,
        score.band.value,
        task_type.value,
        tier.widened,
    )
    return tier


def roles_for(tier: WorkflowTier) -> List[str]:
    """Roles participating in a tier, in first-use order across its phases."""
    ordered: List[str] = []
    for phase in tier.phases:
        for role in phase.required_roles:
            if role not in ordered:
                ordered.append(role)
    for role in sorted(tier.default_roles):
        if role not in ordered:
            ordered.append(role)
    return ordered
