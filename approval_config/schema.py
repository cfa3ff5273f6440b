"""
PortalConfig schema.

The typed runtime configuration of the portal.  YAML fragments are parsed
into this type by the loader; defaults here are the values the portal runs
with when no file is supplied.
"""

from __future__ import annotations

from dataclasses import dataclass, field

DEFAULT_POLL_INTERVAL_SECONDS = 15.0
DEFAULT_IDLE_TIMEOUT_SECONDS = 60 * 60.0
DEFAULT_DUE_ALERT_WINDOW_DAYS = 2
DEFAULT_TRACKING_BASE = 1000


@dataclass(frozen=True)
class PortalConfig:
    """Runtime configuration for the approval portal."""

    database_url: str = "sqlite:///approval_portal.db"
    poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS
    idle_timeout_seconds: float = DEFAULT_IDLE_TIMEOUT_SECONDS
    due_alert_window_days: int = DEFAULT_DUE_ALERT_WINDOW_DAYS
    # 0 = scan due dates on first load only
    full_refresh_every_ticks: int = 0
    tracking_base: int = DEFAULT_TRACKING_BASE
    device_state_path: str = "~/.approval_portal/device_state.json"
    log_level: str = "INFO"
    # role -> {capability -> bool}
    role_permissions: dict[str, dict[str, bool]] = field(default_factory=dict)
    checksum: str = ""
