"""
approval_config -- single public entrypoint for portal configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  No other component reads configuration files
    or environment variables directly.

Architecture position:
    Configuration -- sits beside ``approval_kernel`` and below
    ``approval_session``.  The kernel never imports from this package; the
    session wiring passes plain values (intervals, overrides, URLs) down.

Failure modes:
    - ``FileNotFoundError`` -- an explicit path (or the environment
      variable) names a file that does not exist.
    - ``ValueError`` -- invalid values in the file.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from approval_config.loader import load_yaml_file, parse_portal_config
from approval_config.schema import PortalConfig

_logger = logging.getLogger("approval_kernel.config")

CONFIG_ENV_VAR = "APPROVAL_PORTAL_CONFIG"


def get_active_config(path: Path | str | None = None) -> PortalConfig:
    """The ONLY public configuration entrypoint.

    Resolution order: explicit ``path``, then the file named by
    ``APPROVAL_PORTAL_CONFIG``, then built-in defaults.
    """
    source = path or os.environ.get(CONFIG_ENV_VAR)
    if source:
        config = parse_portal_config(load_yaml_file(Path(source).expanduser()))
    else:
        config = parse_portal_config({})

    _logger.info(
        "portal_config_loaded",
        extra={
            "source": str(source) if source else "defaults",
            "checksum": config.checksum,
            "poll_interval_seconds": config.poll_interval_seconds,
            "idle_timeout_seconds": config.idle_timeout_seconds,
            "role_override_count": len(config.role_permissions),
        },
    )
    return config


__all__ = ["PortalConfig", "get_active_config"]
