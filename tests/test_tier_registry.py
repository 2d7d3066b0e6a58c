"""
Tests for tier_registry.py - workflow tier loading and validation.

These tests verify:
- The shipped tiers.yaml loads with the expected shape
- Malformed configuration fails at load time with TierConfigError
"""

from __future__ import annotations

import copy
from pathlib import Path
from typing import Any, Dict

import pytest
import yaml

from tierflow.config.tier_registry import _CONFIG_FILE, TierRegistry, get_tier
from tierflow.runtime.errors import TierConfigError
from tierflow.runtime.types import PhaseMode, TierId


@pytest.fixture
def shipped_config() -> Dict[str, Any]:
    with open(_CONFIG_FILE, encoding="utf-8") as f:
        return yaml.safe_load(f)


def _write(tmp_path: Path, data: Dict[str, Any]) -> Path:
    path = tmp_path / "tiers.yaml"
    path.write_text(yaml.safe_dump(data), encoding="utf-8")
    return path


def _tier(data: Dict[str, Any], tier_id: str) -> Dict[str, Any]:
    return next(t for t in data["tiers"] if t["id"] == tier_id)


class TestShippedTiers:
    """Tests for the default tiers.yaml."""

    def test_every_tier_has_its_phase_count(self):
        registry = TierRegistry()
        for tier in registry.tiers:
            assert len(tier.phases) == tier.tier_id.phase_count

    def test_guarded_roles(self):
        registry = TierRegistry()
        assert registry.guarded_roles == frozenset({"ui-verifier", "diagnostician"})

    def test_standard_tier_shape(self):
        tier = get_tier(TierId.STANDARD_5)
        assert tier.phase_names == ["analyze", "design", "implement", "verify", "ui_verify"]
        implement = tier.phases[2]
        assert implement.mode == PhaseMode.PARALLEL
        assert implement.required_roles == ("implementer-backend", "implementer-frontend")
        assert tier.phases[1].optional and tier.phases[1].skip_if.name == "familiar_codebase"

    def test_guarded_phase_detection(self):
        tier = get_tier(TierId.EXTENDED_8)
        guarded = [p.name for p in tier.phases if tier.requires_guarded_tool(p)]
        assert guarded == ["diagnose", "test"]

    def test_get_instance_is_cached(self):
        assert TierRegistry.get_instance() is TierRegistry.get_instance()


class TestConfigErrors:
    """Tests for load-time validation."""

    def test_missing_file(self, tmp_path):
        with pytest.raises(TierConfigError, match="cannot read"):
            TierRegistry(tmp_path / "nope.yaml")

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "tiers.yaml"
        path.write_text("tiers: [unclosed", encoding="utf-8")
        with pytest.raises(TierConfigError, match="invalid YAML"):
            TierRegistry(path)

    def test_missing_tier(self, tmp_path, shipped_config):
        data = copy.deepcopy(shipped_config)
        data["tiers"] = [t for t in data["tiers"] if t["id"] != "full_7"]
        with pytest.raises(TierConfigError, match="missing tier definitions: full_7"):
            TierRegistry(_write(tmp_path, data))

    def test_wrong_phase_count(self, tmp_path, shipped_config):
        data = copy.deepcopy(shipped_config)
        _tier(data, "lightweight_3")["phases"].pop()
        with pytest.raises(TierConfigError, match="expected 3 phases, found 2"):
            TierRegistry(_write(tmp_path, data))

    def test_unknown_role(self, tmp_path, shipped_config):
        data = copy.deepcopy(shipped_config)
        _tier(data, "lightweight_3")["phases"][0]["roles"] = ["wizard"]
        with pytest.raises(TierConfigError, match="unknown roles wizard"):
            TierRegistry(_write(tmp_path, data))

    def test_phase_role_outside_default_roles(self, tmp_path, shipped_config):
        data = copy.deepcopy(shipped_config)
        _tier(data, "lightweight_3")["phases"][0]["roles"] = ["architect"]
        with pytest.raises(TierConfigError, match="outside default_roles"):
            TierRegistry(_write(tmp_path, data))

    def test_skip_if_requires_optional(self, tmp_path, shipped_config):
        data = copy.deepcopy(shipped_config)
        _tier(data, "lightweight_3")["phases"][0]["skip_if"] = "small_change"
        with pytest.raises(TierConfigError, match="skip_if requires optional"):
            TierRegistry(_write(tmp_path, data))

    def test_unknown_skip_rule(self, tmp_path, shipped_config):
        data = copy.deepcopy(shipped_config)
        phase = _tier(data, "lightweight_3")["phases"][0]
        phase["optional"] = True
        phase["skip_if"] = "full_moon"
        with pytest.raises(TierConfigError, match="unknown skip rule 'full_moon'"):
            TierRegistry(_write(tmp_path, data))

    def test_duplicate_phase_name(self, tmp_path, shipped_config):
        data = copy.deepcopy(shipped_config)
        _tier(data, "lightweight_3")["phases"][1]["name"] = "locate"
        with pytest.raises(TierConfigError, match="duplicate phase 'locate'"):
            TierRegistry(_write(tmp_path, data))

    def test_invalid_mode(self, tmp_path, shipped_config):
        data = copy.deepcopy(shipped_config)
        _tier(data, "lightweight_3")["phases"][0]["mode"] = "round_robin"
        with pytest.raises(TierConfigError, match="invalid mode"):
            TierRegistry(_write(tmp_path, data))
