"""
Tests for complexity classification.

These tests verify classify():
- Band gates on files_affected, by task type
- Secondary promotions (large diff, unfamiliar cross-module, breaking change)
- Determinism and monotonic promotion
- Fail-fast rejection of malformed signals
"""

from __future__ import annotations

import pytest

from conftest import make_signal

from tierflow.runtime.classifier import classify, compute_score
from tierflow.runtime.errors import TaskSignalError
from tierflow.runtime.types import Band, TaskType, task_signal_from_dict


class TestBandGates:
    """Tests for the files_affected band gates."""

    def test_small_bug_fix_is_trivial(self):
        score = classify(make_signal())
        assert score.band == Band.TRIVIAL
        assert score.promoted_by == ()

    def test_small_feature_is_simple(self):
        """Only bug fixes qualify for TRIVIAL."""
        score = classify(make_signal(task_type=TaskType.FEATURE))
        assert score.band == Band.SIMPLE

    @pytest.mark.parametrize(
        "files, band",
        [(2, Band.TRIVIAL), (3, Band.SIMPLE), (5, Band.SIMPLE), (6, Band.MEDIUM), (15, Band.MEDIUM), (16, Band.COMPLEX)],
    )
    def test_file_count_boundaries(self, files, band):
        assert classify(make_signal(files_affected=files)).band == band

    def test_twenty_file_feature_is_complex(self):
        score = classify(make_signal(files_affected=20, task_type=TaskType.FEATURE))
        assert score.band == Band.COMPLEX


class TestPromotions:
    """Tests for secondary promotion rules."""

    def test_large_diff_promotes_trivial_to_simple(self):
        score = classify(make_signal(lines_affected=51))
        assert score.band == Band.SIMPLE
        assert score.promoted_by == ("large_diff",)

    def test_fifty_lines_stays_trivial(self):
        assert classify(make_signal(lines_affected=50)).band == Band.TRIVIAL

    def test_unfamiliar_cross_module_promotes_simple_to_medium(self):
        score = classify(make_signal(files_affected=4, modules_affected=2, familiarity=4))
        assert score.band == Band.MEDIUM
        assert "unfamiliar_cross_module" in score.promoted_by

    def test_familiar_cross_module_stays_simple(self):
        score = classify(make_signal(files_affected=4, modules_affected=2, familiarity=5))
        assert score.band == Band.SIMPLE

    def test_breaking_change_promotes_one_step(self):
        score = classify(make_signal(breaking_change=True))
        assert score.band == Band.SIMPLE
        assert score.promoted_by == ("breaking_change",)

    def test_breaking_change_promotes_medium_to_complex(self):
        score = classify(make_signal(files_affected=10, breaking_change=True))
        assert score.band == Band.COMPLEX

    def test_breaking_change_caps_at_complex(self):
        score = classify(make_signal(files_affected=30, breaking_change=True))
        assert score.band == Band.COMPLEX
        assert "breaking_change" not in score.promoted_by

    def test_promotions_stack(self):
        score = classify(make_signal(lines_affected=200, breaking_change=True))
        assert score.band == Band.MEDIUM
        assert score.promoted_by == ("large_diff", "breaking_change")


class TestDeterminism:
    """Tests for determinism and monotonicity."""

    def test_same_signal_same_score(self):
        signal = make_signal(files_affected=7, lines_affected=300, modules_affected=3, familiarity=3)
        assert classify(signal) == classify(signal)

    @pytest.mark.parametrize("files", [1, 2, 4, 8, 15, 40])
    def test_breaking_never_lowers_band(self, files):
        base = classify(make_signal(files_affected=files))
        breaking = classify(make_signal(files_affected=files, breaking_change=True))
        assert breaking.band.rank >= base.band.rank

    @pytest.mark.parametrize("files", [1, 3, 6, 20])
    def test_more_lines_never_lowers_band(self, files):
        small = classify(make_signal(files_affected=files, lines_affected=5))
        large = classify(make_signal(files_affected=files, lines_affected=5000))
        assert large.band.rank >= small.band.rank

    def test_lower_familiarity_never_lowers_band(self):
        familiar = classify(make_signal(files_affected=4, modules_affected=3, familiarity=9))
        unfamiliar = classify(make_signal(files_affected=4, modules_affected=3, familiarity=1))
        assert unfamiliar.band.rank >= familiar.band.rank

    def test_score_weights(self):
        # 4*1 files + 10//25 lines + 0 extra modules + (10 - 8) familiarity
        assert compute_score(make_signal()) == 6
        assert compute_score(make_signal(breaking_change=True)) == 16
        assert compute_score(make_signal(modules_affected=3)) == 18


class TestInvalidSignals:
    """Tests for fail-fast validation."""

    def test_negative_counts_rejected(self):
        with pytest.raises(TaskSignalError) as exc_info:
            classify(make_signal(files_affected=-1, lines_affected=-5))
        assert len(exc_info.value.problems) == 2

    @pytest.mark.parametrize("familiarity", [0, 11])
    def test_familiarity_out_of_range(self, familiarity):
        with pytest.raises(TaskSignalError, match="familiarity"):
            classify(make_signal(familiarity=familiarity))

    def test_plain_string_task_type_rejected(self):
        with pytest.raises(TaskSignalError, match="task_type"):
            classify(make_signal(task_type="bug_fix"))

    def test_error_is_value_error(self):
        with pytest.raises(ValueError):
            classify(make_signal(modules_affected=-2))


class TestSignalFromDict:
    """Tests for parsing intake payloads."""

    def test_task_type_is_case_insensitive(self):
        signal = task_signal_from_dict(
            {"files_affected": 1, "lines_affected": 1, "modules_affected": 1, "task_type": "HOTFIX"}
        )
        assert signal.task_type == TaskType.HOTFIX
        assert signal.familiarity == 5

    def test_missing_fields_reported(self):
        with pytest.raises(TaskSignalError) as exc_info:
            task_signal_from_dict({"files_affected": 1})
        assert len(exc_info.value.problems) == 3

    def test_unknown_task_type(self):
        with pytest.raises(TaskSignalError, match="unknown task_type"):
            task_signal_from_dict(
                {"files_affected": 1, "lines_affected": 1, "modules_affected": 1, "task_type": "chore"}
            )
