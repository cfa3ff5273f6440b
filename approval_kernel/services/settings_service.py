"""
SettingsService -- administrator-edited role permission overrides.

Responsibility:
    Reads and writes the ``role -> {capability -> bool}`` override table
    that ``resolve_permissions`` merges over the built-in defaults.  The
    document service re-reads it on every transition so a revoked
    capability takes effect immediately.

Architecture position:
    Kernel > Services -- imperative shell.

Invariants enforced:
    - Only holders of ``can_manage_settings`` may change overrides.
    - Unknown capability keys are rejected on write (ignored on read).

Failure modes:
    - PermissionDeniedError if the actor lacks ``can_manage_settings``.
    - ValueError for an unknown capability key.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from sqlalchemy import delete, select

from approval_kernel.domain.permissions import (
    Actor,
    Capability,
    normalize_capability_key,
    resolve_for_actor,
)
from approval_kernel.exceptions import PermissionDeniedError
from approval_kernel.logging_config import get_logger
from approval_kernel.models.settings import RolePermissionOverrideModel
from approval_kernel.services.base import BaseService

logger = get_logger("services.settings")


class SettingsService(BaseService[RolePermissionOverrideModel]):
    """Persistence for role permission overrides."""

    def load_role_overrides(self) -> dict[str, dict[str, bool]]:
        """Return every stored override grouped by role."""
        rows = self.session.execute(select(RolePermissionOverrideModel)).scalars().all()
        overrides: dict[str, dict[str, bool]] = {}
        for row in rows:
            overrides.setdefault(row.role, {})[row.capability] = row.allowed
        return overrides

    def set_role_permissions(
        self,
        role: str,
        permissions: Mapping[str, Any],
        actor: Actor,
    ) -> dict[str, bool]:
        """Merge ``permissions`` into the overrides stored for ``role``.

        Returns the full override map for the role after the update.
        """
        self._require_settings_capability(actor, "set_role_permissions")

        normalized: dict[Capability, bool] = {}
        for key, value in permissions.items():
            capability = normalize_capability_key(str(key))
            if capability is None:
                raise ValueError(f"Unknown capability key: {key}")
            normalized[capability] = bool(value)

        existing = {
            row.capability: row
            for row in self.session.execute(
                select(RolePermissionOverrideModel).where(
                    RolePermissionOverrideModel.role == role
                )
            ).scalars()
        }
        for capability, allowed in normalized.items():
            row = existing.get(capability.value)
            if row is None:
                self.session.add(
                    RolePermissionOverrideModel(
                        role=role, capability=capability.value, allowed=allowed,
                    )
                )
            else:
                row.allowed = allowed
        self.session.flush()

        logger.info(
            "role_permissions_updated",
            extra={
                "role": role,
                "changed": {c.value: v for c, v in normalized.items()},
                "updated_by": actor.username,
            },
        )
        return self.load_role_overrides().get(role, {})

    def clear_role_permissions(self, role: str, actor: Actor) -> int:
        """Drop every override for ``role``; it falls back to defaults."""
        self._require_settings_capability(actor, "clear_role_permissions")
        result = self.session.execute(
            delete(RolePermissionOverrideModel).where(
                RolePermissionOverrideModel.role == role
            )
        )
        self.session.flush()
        logger.info(
            "role_permissions_cleared",
            extra={"role": role, "removed": result.rowcount, "updated_by": actor.username},
        )
        return result.rowcount

    def _require_settings_capability(self, actor: Actor, operation: str) -> None:
        capabilities = resolve_for_actor(actor, self.load_role_overrides())
        if not capabilities.allows(Capability.MANAGE_SETTINGS):
            logger.warning(
                "settings_change_denied",
                extra={"actor": actor.username, "operation": operation},
            )
            raise PermissionDeniedError(
                "settings", actor.username, operation, Capability.MANAGE_SETTINGS.value,
            )
