"""Tier types: phases, roles, skip rules and workflow tiers.

Tiers are static configuration loaded by tierflow.config.tier_registry.
These types are self-contained so a persisted TaskExecution carries its
tier verbatim, independent of later config edits.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, List, Optional, Tuple

from ..errors import TierConfigError
from .signal import Band, ComplexityScore, TaskSignal


class PhaseMode(str, Enum):
    """How a phase dispatches its required roles."""

    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"


class TierId(str, Enum):
    """Named workflow tiers; the suffix is the tier's phase count."""

    LIGHTWEIGHT_3 = "lightweight_3"
    STANDARD_5 = "standard_5"
    FULL_7 = "full_7"
    EXTENDED_8 = "extended_8"

    @property
    def phase_count(self) -> int:
        return int(self.value.rsplit("_", 1)[1])


# =============================================================================
# Skip Rules
# =============================================================================

SkipPredicate = Callable[[TaskSignal, ComplexityScore], bool]

SKIP_RULES: Dict[str, SkipPredicate] = {
    # Design adds little when the team owns the code and the change is small
    "familiar_codebase": lambda s, c: s.familiarity >= 8 and c.band in (Band.TRIVIAL, Band.SIMPLE),
    "small_change": lambda s, c: s.lines_affected <= 50 and not s.breaking_change,
    "not_breaking": lambda s, c: not s.breaking_change,
    "single_module": lambda s, c: s.modules_affected <= 1,
    "quick_task": lambda s, c: 0 < s.estimated_minutes <= 30,
    "not_complex": lambda s, c: c.band != Band.COMPLEX,
}


@dataclass(frozen=True)
class SkipRule:
    """A named skip predicate over (TaskSignal, ComplexityScore)."""

    name: str
    predicate: SkipPredicate = field(compare=False, repr=False)

    def __call__(self, signal: TaskSignal, score: ComplexityScore) -> bool:
        return bool(self.predicate(signal, score))

    @classmethod
    def named(cls, name: str) -> "SkipRule":
        """Resolve a rule from SKIP_RULES by name.

        Raises:
            TierConfigError: If no rule has that name.
        """
        if name not in SKIP_RULES:
            raise TierConfigError(
                f"unknown skip rule '{name}' (known: {', '.join(sorted(SKIP_RULES))})"
            )
        return cls(name=name, predicate=SKIP_RULES[name])


# =============================================================================
# Tier Definitions
# =============================================================================


@dataclass(frozen=True)
class RoleSpec:
    """A collaborating role from the catalog.

    Attributes:
        role_id: Unique role key (e.g. "implementer-backend").
        description: What the role does.
        guarded_tool: Whether the role drives the guarded UI-automation
            surface and therefore needs the resource lock.
    """

    role_id: str
    description: str = ""
    guarded_tool: bool = False


@dataclass(frozen=True)
class PhaseSpec:
    """One step in a workflow tier.

    Attributes:
        name: Phase name, unique within the tier.
        mode: SEQUENTIAL runs roles in order; PARALLEL runs them concurrently.
        required_roles: Roles dispatched for this phase (ordered, no duplicates).
        optional: Whether the phase may be skipped at all.
        skip_if: Rule that skips an optional phase when it holds.
        widened_roles: Roles added when the task is COMPLEX.
    """

    name: str
    mode: PhaseMode = PhaseMode.SEQUENTIAL
    required_roles: Tuple[str, ...] = ()
    optional: bool = False
    skip_if: Optional[SkipRule] = None
    widened_roles: Tuple[str, ...] = ()

    def should_skip(self, signal: TaskSignal, score: ComplexityScore) -> Optional[str]:
        """Return the name of the skip rule that applies, or None."""
        if not self.optional or self.skip_if is None:
            return None
        return self.skip_if.name if self.skip_if(signal, score) else None

    def widened(self) -> "PhaseSpec":
        """Return a copy with widened_roles merged into required_roles."""
        extra = tuple(r for r in self.widened_roles if r not in self.required_roles)
        if not extra:
            return self
        roles = self.required_roles + extra
        mode = PhaseMode.PARALLEL if len(roles) > 1 else self.mode
        return replace(self, required_roles=roles, mode=mode)


@dataclass(frozen=True)
class WorkflowTier:
    """A named, ordered workflow configuration.

    Attributes:
        tier_id: Which tier this is.
        phases: Ordered phase specifications.
        default_roles: Roles participating in this tier.
        guarded_roles: Roles (from the catalog) that need the resource lock.
        widened: Whether COMPLEX role widening has been applied.
        description: Human-readable purpose of the tier.
    """

    tier_id: TierId
    phases: Tuple[PhaseSpec, ...]
    default_roles: FrozenSet[str]
    guarded_roles: FrozenSet[str] = frozenset()
    widened: bool = False
    description: str = ""

    @property
    def phase_names(self) -> List[str]:
        return [p.name for p in self.phases]

    def requires_guarded_tool(self, phase: PhaseSpec) -> bool:
        """Whether any of the phase's roles drives the guarded tool surface."""
        return any(role in self.guarded_roles for role in phase.required_roles)

    def with_widened_roles(self) -> "WorkflowTier":
        """Return a copy with every phase widened (same phase count)."""
        if self.widened:
            return self
        phases = tuple(p.widened() for p in self.phases)
        roles = set(self.default_roles)
        for phase in phases:
            roles.update(phase.required_roles)
        return replace(self, phases=phases, default_roles=frozenset(roles), widened=True)


# =============================================================================
# Serialization Functions
# =============================================================================


def phase_spec_to_dict(phase: PhaseSpec) -> Dict[str, Any]:
    """Convert PhaseSpec to a dictionary for serialization."""
    return {
        "name": phase.name,
        "mode": phase.mode.value,
        "required_roles": list(phase.required_roles),
        "optional": phase.optional,
        "skip_if": phase.skip_if.name if phase.skip_if else None,
        "widened_roles": list(phase.widened_roles),
    }


def phase_spec_from_dict(data: Dict[str, Any]) -> PhaseSpec:
    """Parse PhaseSpec from a dictionary, resolving the skip rule by name."""
    skip_name = data.get("skip_if")
    return PhaseSpec(
        name=data["name"],
        mode=PhaseMode(data.get("mode", PhaseMode.SEQUENTIAL.value)),
        required_roles=tuple(data.get("required_roles", [])),
        optional=data.get("optional", False),
        skip_if=SkipRule.named(skip_name) if skip_name else None,
        widened_roles=tuple(data.get("widened_roles", [])),
    )


def workflow_tier_to_dict(tier: WorkflowTier) -> Dict[str, Any]:
    """Convert WorkflowTier to a dictionary for serialization."""
    return {
        "tier_id": tier.tier_id.value,
        "phases": [phase_spec_to_dict(p) for p in tier.phases],
        "default_roles": sorted(tier.default_roles),
        "guarded_roles": sorted(tier.guarded_roles),
        "widened": tier.widened,
        "description": tier.description,
    }


def workflow_tier_from_dict(data: Dict[str, Any]) -> WorkflowTier:
    """Parse WorkflowTier from a dictionary."""
    return WorkflowTier(
        tier_id=TierId(data["tier_id"]),
        phases=tuple(phase_spec_from_dict(p) for p in data.get("phases", [])),
        default_roles=frozenset(data.get("default_roles", [])),
        guarded_roles=frozenset(data.get("guarded_roles", [])),
        widened=data.get("widened", False),
        description=data.get("description", ""),
    )

