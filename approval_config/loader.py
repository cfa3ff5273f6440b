"""
Configuration Loader (``approval_config.loader``).

Responsibility
--------------
Loads a YAML file and parses it into a ``PortalConfig``.  This is internal
tooling; the single public entry point for runtime config is
``approval_config.get_active_config()``.

Invariants enforced
-------------------
* Every parsed object is a frozen ``PortalConfig``.
* Intervals and windows must be positive; the due-alert window and the
  refresh cadence must be non-negative integers.
* ``log_level`` must name a standard logging level.
* ``compute_checksum`` produces a deterministic SHA-256 hash for
  configuration identity and change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Invalid values  -> ``ValueError`` with a descriptive message.
"""

from __future__ import annotations

import hashlib
import json
import logging
from pathlib import Path
from typing import Any

import yaml

from approval_config.schema import PortalConfig

_KNOWN_KEYS = frozenset(
    {
        "database_url",
        "poll_interval_seconds",
        "idle_timeout_seconds",
        "due_alert_window_days",
        "full_refresh_every_ticks",
        "tracking_base",
        "device_state_path",
        "log_level",
        "role_permissions",
    }
)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the top level is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping, got {type(data).__name__}")
    return data


def _positive_float(data: dict[str, Any], key: str, default: float) -> float:
    value = float(data.get(key, default))
    if value <= 0:
        raise ValueError(f"{key} must be positive, got {value}")
    return value


def _non_negative_int(data: dict[str, Any], key: str, default: int) -> int:
    raw = data.get(key, default)
    if isinstance(raw, bool) or not isinstance(raw, int) or raw < 0:
        raise ValueError(f"{key} must be a non-negative integer, got {raw!r}")
    return raw


def _log_level(data: dict[str, Any], default: str) -> str:
    name = str(data.get("log_level", default)).strip().upper()
    if name not in logging.getLevelNamesMapping():
        raise ValueError(f"log_level must be a logging level name, got {name!r}")
    return name


def parse_role_permissions(data: Any) -> dict[str, dict[str, bool]]:
    """Parse ``role -> {capability -> bool}``."""
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError("role_permissions must be a mapping of role -> capabilities")
    parsed: dict[str, dict[str, bool]] = {}
    for role, capabilities in data.items():
        if not isinstance(capabilities, dict):
            raise ValueError(f"role_permissions.{role} must be a mapping")
        parsed[str(role)] = {str(k): bool(v) for k, v in capabilities.items()}
    return parsed


def parse_portal_config(data: dict[str, Any]) -> PortalConfig:
    """Parse a raw mapping into a ``PortalConfig``."""
    unknown = set(data) - _KNOWN_KEYS
    if unknown:
        raise ValueError(f"Unknown configuration keys: {sorted(unknown)}")

    defaults = PortalConfig()
    return PortalConfig(
        database_url=str(data.get("database_url", defaults.database_url)),
        poll_interval_seconds=_positive_float(
            data, "poll_interval_seconds", defaults.poll_interval_seconds,
        ),
        idle_timeout_seconds=_positive_float(
            data, "idle_timeout_seconds", defaults.idle_timeout_seconds,
        ),
        due_alert_window_days=_non_negative_int(
            data, "due_alert_window_days", defaults.due_alert_window_days,
        ),
        full_refresh_every_ticks=_non_negative_int(
            data, "full_refresh_every_ticks", defaults.full_refresh_every_ticks,
        ),
        tracking_base=_non_negative_int(data, "tracking_base", defaults.tracking_base),
        device_state_path=str(data.get("device_state_path", defaults.device_state_path)),
        log_level=_log_level(data, defaults.log_level),
        role_permissions=parse_role_permissions(data.get("role_permissions")),
        checksum=compute_checksum(data),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 checksum of the canonical JSON serialization."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
