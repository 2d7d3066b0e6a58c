"""
tier_registry.py - Load workflow tiers from tiers.yaml

This module provides the single source of truth for workflow tiers, their
phases, and the role catalog. Tiers are static configuration: loaded once
per process and read-only thereafter.

Usage:
    from tierflow.config.tier_registry import TierRegistry, TierId

    registry = TierRegistry.get_instance()
    tier = registry.get(TierId.STANDARD_5)
    for phase in tier.phases:
        print(phase.name, phase.mode, phase.required_roles)
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, FrozenSet, List, Optional

import yaml

from tierflow.runtime.errors import TierConfigError
from tierflow.runtime.types.tier import (
    PhaseMode,
    PhaseSpec,
    RoleSpec,
    SkipRule,
    TierId,
    WorkflowTier,
)

logger = logging.getLogger(__name__)

_CONFIG_FILE = Path(__file__).parent / "tiers.yaml"


# =============================================================================
# Registry
# =============================================================================


class TierRegistry:
    """Registry of all workflow tiers and the role catalog."""

    _instance: Optional["TierRegistry"] = None

    def __init__(self, config_path: Path = _CONFIG_FILE):
        self._source = str(config_path)
        try:
            with open(config_path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except OSError as e:
            raise TierConfigError(f"cannot read tier config: {e}", self._source) from e
        except yaml.YAMLError as e:
            raise TierConfigError(f"invalid YAML: {e}", self._source) from e

        self._roles: Dict[str, RoleSpec] = self._load_roles(data.get("roles") or {})
        guarded = frozenset(r.role_id for r in self._roles.values() if r.guarded_tool)

        self._tiers: Dict[TierId, WorkflowTier] = {}
        for tier_data in data.get("tiers") or []:
            tier = self._load_tier(tier_data, guarded)
            if tier.tier_id in self._tiers:
                raise TierConfigError(f"duplicate tier '{tier.tier_id.value}'", self._source)
            self._tiers[tier.tier_id] = tier

        missing = [t.value for t in TierId if t not in self._tiers]
        if missing:
            raise TierConfigError(f"missing tier definitions: {', '.join(missing)}", self._source)

        logger.debug("Loaded %d tiers and %d roles from %s", len(self._tiers), len(self._roles), self._source)

    def _load_roles(self, roles_data: Dict[str, Any]) -> Dict[str, RoleSpec]:
        roles: Dict[str, RoleSpec] = {}
        for role_id, role_data in roles_data.items():
            role_data = role_data or {}
            roles[role_id] = RoleSpec(
                role_id=role_id,
                description=role_data.get("description", ""),
                guarded_tool=bool(role_data.get("guarded_tool", False)),
            )
        return roles

    def _load_tier(self, tier_data: Dict[str, Any], guarded: FrozenSet[str]) -> WorkflowTier:
        try:
            tier_id = TierId(tier_data["id"])
        except (KeyError, ValueError) as e:
            raise TierConfigError(f"invalid tier id in {tier_data!r}", self._source) from e

        location = f"tier '{tier_id.value}'"
        default_roles = frozenset(tier_data.get("default_roles", []))
        self._check_roles_known(default_roles, location)

        phases: List[PhaseSpec] = []
        seen_names = set()
        for phase_data in tier_data.get("phases", []):
            phase = self._load_phase(phase_data, location)
            if phase.name in seen_names:
                raise TierConfigError(f"{location}: duplicate phase '{phase.name}'", self._source)
            seen_names.add(phase.name)
            outside = set(phase.required_roles) - default_roles
            if outside:
                raise TierConfigError(
                    f"{location}: phase '{phase.name}' uses roles outside default_roles: "
                    f"{', '.join(sorted(outside))}",
                    self._source,
                )
            phases.append(phase)

        if len(phases) != tier_id.phase_count:
            raise TierConfigError(
                f"{location}: expected {tier_id.phase_count} phases, found {len(phases)}",
                self._source,
            )

        return WorkflowTier(
            tier_id=tier_id,
            phases=tuple(phases),
            default_roles=default_roles,
            guarded_roles=guarded,
            description=tier_data.get("description", ""),
        )

    def _load_phase(self, phase_data: Dict[str, Any], location: str) -> PhaseSpec:
        name = phase_data.get("name")
        if not name:
            raise TierConfigError(f"{location}: phase without a name", self._source)
        where = f"{location} phase '{name}'"

        roles = tuple(dict.fromkeys(phase_data.get("roles", [])))
        if not roles:
            raise TierConfigError(f"{where}: no roles", self._source)
        widened = tuple(phase_data.get("widened_roles", []))
        self._check_roles_known(roles + widened, where)

        try:
            mode = PhaseMode(phase_data.get("mode", PhaseMode.SEQUENTIAL.value))
        except ValueError as e:
            raise TierConfigError(f"{where}: invalid mode {phase_data.get('mode')!r}", self._source) from e

        optional = bool(phase_data.get("optional", False))
        skip_name = phase_data.get("skip_if")
        skip_rule = None
        if skip_name:
            if not optional:
                raise TierConfigError(f"{where}: skip_if requires optional: true", self._source)
            try:
                skip_rule = SkipRule.named(skip_name)
            except TierConfigError as e:
                raise TierConfigError(f"{where}: {e}", self._source) from e

        return PhaseSpec(
            name=name,
            mode=mode,
            required_roles=roles,
            optional=optional,
            skip_if=skip_rule,
            widened_roles=widened,
        )

    def _check_roles_known(self, roles, location: str) -> None:
        unknown = sorted(set(roles) - set(self._roles))
        if unknown:
            raise TierConfigError(f"{location}: unknown roles {', '.join(unknown)}", self._source)

    @classmethod
    def get_instance(cls, config_path: Path = _CONFIG_FILE) -> "TierRegistry":
        if cls._instance is None:
            cls._instance = cls(config_path)
        return cls._instance

    @classmethod
    def reset(cls) -> None:
        """Reset singleton for testing."""
        cls._instance = None

    @property
    def tiers(self) -> List[WorkflowTier]:
        """All tiers, in TierId order."""
        return [self._tiers[t] for t in TierId]

    @property
    def roles(self) -> Dict[str, RoleSpec]:
        return dict(self._roles)

    @property
    def guarded_roles(self) -> FrozenSet[str]:
        return frozenset(r.role_id for r in self._roles.values() if r.guarded_tool)

    def get(self, tier_id: TierId) -> WorkflowTier:
        return self._tiers[tier_id]


def get_tier(tier_id: TierId) -> WorkflowTier:
    """Get a tier from the process-wide registry."""
    return TierRegistry.get_instance().get(tier_id)
