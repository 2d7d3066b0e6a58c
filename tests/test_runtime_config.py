"""
Tests for runtime_config.py - runtime settings with environment overrides.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from tierflow.config.runtime_config import (
    get_executor_mode,
    get_lock_settings,
    get_scheduler_settings,
    get_state_dir,
    is_stub_mode,
    reset_config,
)
from tierflow.runtime.executors import StubRoleExecutor, build_default_registry


@pytest.fixture
def custom_config(tmp_path, monkeypatch):
    """Write a runtime.yaml and point TIERFLOW_CONFIG at it."""

    def _write(text: str) -> Path:
        path = tmp_path / "runtime.yaml"
        path.write_text(text, encoding="utf-8")
        monkeypatch.setenv("TIERFLOW_CONFIG", str(path))
        reset_config()
        return path

    return _write


class TestDefaults:
    """Tests for the shipped defaults."""

    def test_lock_defaults(self):
        settings = get_lock_settings()
        assert settings.name == "ui-automation"
        assert settings.stale_after_minutes == 30
        assert settings.wait_seconds == 5

    def test_scheduler_defaults(self):
        settings = get_scheduler_settings()
        assert settings.join_timeout_seconds == 1800
        assert settings.max_workers == 8

    def test_stub_mode_by_default(self):
        assert get_executor_mode() == "stub"
        assert is_stub_mode()

    def test_state_dir_env(self, state_dir):
        assert get_state_dir() == state_dir

    def test_state_dir_default(self, monkeypatch):
        monkeypatch.delenv("TIERFLOW_STATE_DIR")
        assert get_state_dir() == Path(".tierflow")


class TestEnvironmentOverrides:
    """Tests for environment variable precedence."""

    def test_lock_overrides(self, monkeypatch):
        monkeypatch.setenv("TIERFLOW_LOCK_STALE_MINUTES", "10")
        monkeypatch.setenv("TIERFLOW_LOCK_WAIT_SECONDS", "0")
        settings = get_lock_settings()
        assert settings.stale_after_minutes == 10
        assert settings.wait_seconds == 0

    def test_scheduler_overrides(self, monkeypatch):
        monkeypatch.setenv("TIERFLOW_JOIN_TIMEOUT_SECONDS", "90")
        monkeypatch.setenv("TIERFLOW_MAX_WORKERS", "3")
        settings = get_scheduler_settings()
        assert settings.join_timeout_seconds == 90
        assert settings.max_workers == 3

    def test_unparseable_value_falls_back(self, monkeypatch, caplog):
        monkeypatch.setenv("TIERFLOW_MAX_WORKERS", "lots")
        assert get_scheduler_settings().max_workers == 8
        assert "Invalid TIERFLOW_MAX_WORKERS" in caplog.text

    def test_out_of_range_is_clamped(self, monkeypatch, caplog):
        monkeypatch.setenv("TIERFLOW_LOCK_STALE_MINUTES", "0.1")
        monkeypatch.setenv("TIERFLOW_MAX_WORKERS", "500")
        assert get_lock_settings().stale_after_minutes == 1.0
        assert get_scheduler_settings().max_workers == 64
        assert "Clamping" in caplog.text

    def test_executor_mode_env(self, monkeypatch):
        monkeypatch.setenv("TIERFLOW_EXECUTOR_MODE", "EXTERNAL")
        assert get_executor_mode() == "external"
        assert not is_stub_mode()

    def test_invalid_executor_mode(self, monkeypatch, caplog):
        monkeypatch.setenv("TIERFLOW_EXECUTOR_MODE", "magic")
        assert get_executor_mode() == "stub"
        assert "Invalid executor mode" in caplog.text


class TestConfigFile:
    """Tests for loading an alternative runtime.yaml."""

    def test_partial_section_merges_with_defaults(self, custom_config):
        custom_config("lock:\n  stale_after_minutes: 12\n")
        settings = get_lock_settings()
        assert settings.stale_after_minutes == 12
        assert settings.name == "ui-automation"
        assert get_scheduler_settings().max_workers == 8

    def test_env_beats_file(self, custom_config, monkeypatch):
        custom_config("scheduler:\n  max_workers: 2\n")
        monkeypatch.setenv("TIERFLOW_MAX_WORKERS", "6")
        assert get_scheduler_settings().max_workers == 6

    def test_missing_file_uses_defaults(self, tmp_path, monkeypatch):
        monkeypatch.setenv("TIERFLOW_CONFIG", str(tmp_path / "absent.yaml"))
        reset_config()
        assert get_lock_settings().wait_seconds == 5

    def test_state_dir_from_file(self, custom_config, monkeypatch, tmp_path):
        monkeypatch.delenv("TIERFLOW_STATE_DIR")
        custom_config(f"state:\n  dir: {tmp_path / 'elsewhere'}\n")
        assert get_state_dir() == tmp_path / "elsewhere"


class TestExecutorRegistry:
    """Tests for the executor mode wiring."""

    def test_stub_mode_registry_has_default(self):
        assert isinstance(build_default_registry().get("anything"), StubRoleExecutor)

    def test_external_mode_registry_is_empty(self, monkeypatch):
        monkeypatch.setenv("TIERFLOW_EXECUTOR_MODE", "external")
        assert build_default_registry().get("anything") is None
