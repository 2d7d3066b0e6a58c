"""Runtime configuration registry for the orchestration core.

Provides centralized configuration for the resource lock, the phase
scheduler, executor mode, and the durable state directory.
Environment variables take precedence over YAML config.

Usage:
    from tierflow.config.runtime_config import get_lock_settings, get_state_dir

    lock = get_lock_settings()      # LockSettings(stale_after_minutes=30.0, ...)
    state_dir = get_state_dir()     # Path(".tierflow")

Environment overrides:
    TIERFLOW_CONFIG                 - alternative runtime.yaml path
    TIERFLOW_STATE_DIR              - durable state directory
    TIERFLOW_LOCK_STALE_MINUTES     - resource lock staleness timeout
    TIERFLOW_LOCK_WAIT_SECONDS      - bounded wait when acquiring the lock
    TIERFLOW_JOIN_TIMEOUT_SECONDS   - fan-in barrier timeout for parallel phases
    TIERFLOW_MAX_WORKERS            - thread pool size for parallel phases
    TIERFLOW_EXECUTOR_MODE          - "stub" or "external"
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)

_CONFIG_PATH = Path(__file__).parent / "runtime.yaml"
_cached_config: Optional[Dict[str, Any]] = None

VALID_EXECUTOR_MODES = ("stub", "external")

# Sanity bounds; values outside are clamped with a warning
LOCK_STALE_MIN_MINUTES = 1.0
LOCK_STALE_MAX_MINUTES = 24 * 60.0
LOCK_WAIT_MAX_SECONDS = 600.0
JOIN_TIMEOUT_MIN_SECONDS = 1.0
JOIN_TIMEOUT_MAX_SECONDS = 6 * 3600.0
MAX_WORKERS_LIMIT = 64


@dataclass(frozen=True)
class LockSettings:
    """Resolved resource lock configuration.

    Attributes:
        name: Marker name of the guarded tool surface.
        stale_after_minutes: Age after which an unreleased lock is reclaimed.
        wait_seconds: Bounded wait used by the scheduler before BLOCKED.
        poll_interval_seconds: Delay between acquisition attempts while waiting.
    """

    name: str
    stale_after_minutes: float
    wait_seconds: float
    poll_interval_seconds: float


@dataclass(frozen=True)
class SchedulerSettings:
    """Resolved phase scheduler configuration.

    Attributes:
        join_timeout_seconds: Fan-in barrier timeout for a phase's executors.
        max_workers: Thread pool size for PARALLEL phases.
        abort_wait_seconds: How long abort waits for in-flight work to return.
    """

    join_timeout_seconds: float
    max_workers: int
    abort_wait_seconds: float


def _config_path() -> Path:
    override = os.environ.get("TIERFLOW_CONFIG")
    return Path(override) if override else _CONFIG_PATH


def _load_config() -> Dict[str, Any]:
    """Load runtime.yaml configuration, with caching."""
    global _cached_config
    if _cached_config is not None:
        return _cached_config

    path = _config_path()
    if path.exists():
        with open(path, encoding="utf-8") as f:
            loaded = yaml.safe_load(f) or {}
        # Missing sections fall back to defaults section by section
        merged = _default_config()
        for section, values in loaded.items():
            if isinstance(values, dict) and isinstance(merged.get(section), dict):
                merged[section] = {**merged[section], **values}
            else:
                merged[section] = values
        _cached_config = merged
    else:
        _cached_config = _default_config()

    return _cached_config


def _default_config() -> Dict[str, Any]:
    """Return default configuration if runtime.yaml doesn't exist."""
    return {
        "version": "1.0",
        "state": {
            "dir": ".tierflow",
        },
        "lock": {
            "name": "ui-automation",
            "stale_after_minutes": 30,
            "wait_seconds": 5,
            "poll_interval_seconds": 0.25,
        },
        "scheduler": {
            "join_timeout_seconds": 1800,
            "max_workers": 8,
            "abort_wait_seconds": 60,
        },
        "executors": {
            "mode": "stub",
        },
    }


def reset_config() -> None:
    """Reset cached config (for testing)."""
    global _cached_config
    _cached_config = None


def _clamp(value: float, name: str, min_val: float, max_val: float) -> float:
    """Clamp a numeric setting to sanity bounds with logging."""
    if value < min_val:
        logger.warning("Setting '%s' value %s is below minimum %s. Clamping.", name, value, min_val)
        return min_val
    if value > max_val:
        logger.warning("Setting '%s' value %s exceeds maximum %s. Clamping.", name, value, max_val)
        return max_val
    return value


def _env_number(env_var: str, fallback: Any) -> float:
    """Read a numeric env override, ignoring (and logging) unparseable values."""
    raw = os.environ.get(env_var)
    if raw is None or raw == "":
        return float(fallback)
    try:
        return float(raw)
    except ValueError:
        logger.warning("Invalid %s value '%s' (expected a number). Using %s.", env_var, raw, fallback)
        return float(fallback)


def get_section(section: str) -> Dict[str, Any]:
    """Get a raw config section (empty dict if absent)."""
    return dict(_load_config().get(section) or {})


def get_state_dir() -> Path:
    """Get the durable state directory.

    Environment variable precedence (highest to lowest):
    1. TIERFLOW_STATE_DIR
    2. Config file state.dir
    3. Default: ".tierflow"
    """
    env_value = os.environ.get("TIERFLOW_STATE_DIR")
    if env_value:
        return Path(env_value)
    return Path(get_section("state").get("dir", ".tierflow"))


def get_lock_settings() -> LockSettings:
    """Get resolved resource lock settings."""
    section = get_section("lock")
    stale = _env_number("TIERFLOW_LOCK_STALE_MINUTES", section.get("stale_after_minutes", 30))
    wait = _env_number("TIERFLOW_LOCK_WAIT_SECONDS", section.get("wait_seconds", 5))
    poll = float(section.get("poll_interval_seconds", 0.25))
    return LockSettings(
        name=str(section.get("name", "ui-automation")),
        stale_after_minutes=_clamp(stale, "lock.stale_after_minutes", LOCK_STALE_MIN_MINUTES, LOCK_STALE_MAX_MINUTES),
        wait_seconds=_clamp(wait, "lock.wait_seconds", 0.0, LOCK_WAIT_MAX_SECONDS),
        poll_interval_seconds=_clamp(poll, "lock.poll_interval_seconds", 0.01, 10.0),
    )


def get_scheduler_settings() -> SchedulerSettings:
    """Get resolved phase scheduler settings."""
    section = get_section("scheduler")
    join_timeout = _env_number("TIERFLOW_JOIN_TIMEOUT_SECONDS", section.get("join_timeout_seconds", 1800))
    workers = _env_number("TIERFLOW_MAX_WORKERS", section.get("max_workers", 8))
    abort_wait = float(section.get("abort_wait_seconds", 60))
    return SchedulerSettings(
        join_timeout_seconds=_clamp(
            join_timeout, "scheduler.join_timeout_seconds", JOIN_TIMEOUT_MIN_SECONDS, JOIN_TIMEOUT_MAX_SECONDS
        ),
        max_workers=int(_clamp(workers, "scheduler.max_workers", 1, MAX_WORKERS_LIMIT)),
        abort_wait_seconds=_clamp(abort_wait, "scheduler.abort_wait_seconds", 0.0, JOIN_TIMEOUT_MAX_SECONDS),
    )


def get_executor_mode() -> str:
    """Get the role executor mode, respecting environment variable overrides.

    Environment variable precedence (highest to lowest):
    1. TIERFLOW_EXECUTOR_MODE
    2. Config file executors.mode
    3. Default: "stub"

    Returns:
        "stub" or "external". Logs a warning and returns "stub" if an
        invalid value is configured.
    """
    value = os.environ.get("TIERFLOW_EXECUTOR_MODE") or get_section("executors").get("mode", "stub")
    mode = str(value).lower()
    if mode not in VALID_EXECUTOR_MODES:
        logger.warning(
            "Invalid executor mode '%s' (valid: %s). Falling back to 'stub'.",
            value,
            ", ".join(VALID_EXECUTOR_MODES),
        )
        return "stub"
    return mode


def is_stub_mode() -> bool:
    """Check if role executors should run in stub mode."""
    return get_executor_mode() == "stub"
