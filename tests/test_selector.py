"""
Tests for workflow tier selection.

These tests verify:
- The decision table maps each band to its tier
- HOTFIX overrides the score
- COMPLEX tasks get widened roles without changing the phase count
"""

from __future__ import annotations

import pytest

from conftest import make_signal

from tierflow.runtime.classifier import classify
from tierflow.runtime.selector import roles_for, select, select_tier_id
from tierflow.runtime.types import Band, ComplexityScore, PhaseMode, TaskType, TierId


def _select(signal):
    return select(classify(signal), signal.task_type)


class TestDecisionTable:
    """Tests for the band to tier mapping."""

    @pytest.mark.parametrize(
        "band, tier_id",
        [
            (Band.TRIVIAL, TierId.LIGHTWEIGHT_3),
            (Band.SIMPLE, TierId.STANDARD_5),
            (Band.MEDIUM, TierId.FULL_7),
            (Band.COMPLEX, TierId.FULL_7),
        ],
    )
    def test_band_rows(self, band, tier_id):
        score = ComplexityScore(score=0, band=band)
        assert select_tier_id(score, TaskType.FEATURE)[0] == tier_id

    @pytest.mark.parametrize("band", list(Band))
    def test_hotfix_overrides_every_band(self, band):
        score = ComplexityScore(score=0, band=band)
        tier_id, row = select_tier_id(score, TaskType.HOTFIX)
        assert tier_id == TierId.EXTENDED_8
        assert row == "hotfix_override"

    def test_selection_is_pure(self):
        signal = make_signal(files_affected=9)
        assert _select(signal) == _select(signal)


class TestScenarios:
    """End-to-end classification plus selection scenarios."""

    def test_trivial_bug_fix_runs_lightweight(self):
        tier = _select(make_signal())
        assert tier.tier_id == TierId.LIGHTWEIGHT_3
        assert tier.phase_names == ["locate", "fix", "verify"]
        assert not tier.widened

    def test_breaking_bug_fix_runs_standard(self):
        tier = _select(make_signal(breaking_change=True))
        assert tier.tier_id == TierId.STANDARD_5
        assert len(tier.phases) == 5

    def test_complex_feature_runs_widened_full(self):
        tier = _select(make_signal(files_affected=20, task_type=TaskType.FEATURE))
        assert tier.tier_id == TierId.FULL_7
        assert tier.widened
        assert len(tier.phases) == 7
        assert {"security-reviewer", "performance-reviewer", "implementer-data"} <= tier.default_roles

    def test_trivial_hotfix_runs_extended(self):
        tier = _select(make_signal(task_type=TaskType.HOTFIX))
        assert tier.tier_id == TierId.EXTENDED_8
        assert tier.phase_names[1] == "diagnose"


class TestWidening:
    """Tests for COMPLEX role widening."""

    def test_widened_phases_gain_roles(self):
        tier = _select(make_signal(files_affected=20, task_type=TaskType.FEATURE))
        review = tier.phases[tier.phase_names.index("review")]
        assert review.required_roles == ("reviewer", "security-reviewer", "performance-reviewer")
        assert review.mode == PhaseMode.PARALLEL

    def test_medium_task_is_not_widened(self):
        tier = _select(make_signal(files_affected=10, task_type=TaskType.FEATURE))
        review = tier.phases[tier.phase_names.index("review")]
        assert review.required_roles == ("reviewer",)
        assert review.mode == PhaseMode.SEQUENTIAL

    def test_complex_hotfix_is_widened(self):
        tier = _select(make_signal(files_affected=20, task_type=TaskType.HOTFIX))
        assert tier.tier_id == TierId.EXTENDED_8
        assert tier.widened
        assert len(tier.phases) == 8

    def test_roles_for_lists_first_use_order(self):
        tier = _select(make_signal())
        assert roles_for(tier) == ["implementer", "verifier"]
