"""
PermissionResolver -- role to capability mapping.

Responsibility:
    Computes the effective ``CapabilityMap`` of a user from their role, the
    system-wide role permission overrides, and any per-user standing grant.
    Every transition gate in the state machine is expressed as a single
    capability looked up in this map.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  Leaf module: imports
    nothing from the rest of the kernel.

Invariants enforced:
    - Totality: the resolved map contains every ``Capability``.
    - Determinism: same (role, overrides, user) always yields the same map.
    - Custom (non built-in) roles default to all-false.
    - Overrides merge per key; unknown keys are ignored.
    - A per-user ``can_manage_trade`` grant forces that one capability true
      regardless of role defaults and overrides.

Failure modes:
    (none) -- resolution never raises.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any


class Role(str, Enum):
    """Built-in roles. Administrators may also define custom role ids."""

    ADMIN = "admin"
    CEO = "ceo"
    MANAGER = "manager"
    FINANCIAL = "financial"
    SALES_MANAGER = "sales_manager"
    FACTORY_MANAGER = "factory_manager"
    WAREHOUSE_KEEPER = "warehouse_keeper"
    SECURITY_GUARD = "security_guard"
    SECURITY_HEAD = "security_head"
    USER = "user"


BUILTIN_ROLES: frozenset[str] = frozenset(r.value for r in Role)


class Capability(str, Enum):
    """Closed set of named boolean capabilities."""

    VIEW_ALL = "can_view_all"
    CREATE_PAYMENT_ORDER = "can_create_payment_order"
    VIEW_PAYMENT_ORDERS = "can_view_payment_orders"
    VIEW_EXIT_PERMITS = "can_view_exit_permits"
    APPROVE_FINANCIAL = "can_approve_financial"
    APPROVE_MANAGER = "can_approve_manager"
    APPROVE_CEO = "can_approve_ceo"
    EDIT_OWN = "can_edit_own"
    EDIT_ALL = "can_edit_all"
    DELETE_OWN = "can_delete_own"
    DELETE_ALL = "can_delete_all"
    MANAGE_TRADE = "can_manage_trade"
    MANAGE_SETTINGS = "can_manage_settings"
    CREATE_EXIT_PERMIT = "can_create_exit_permit"
    APPROVE_EXIT_CEO = "can_approve_exit_ceo"
    APPROVE_EXIT_FACTORY = "can_approve_exit_factory"
    APPROVE_EXIT_WAREHOUSE = "can_approve_exit_warehouse"
    APPROVE_EXIT_SECURITY = "can_approve_exit_security"
    VIEW_EXIT_ARCHIVE = "can_view_exit_archive"
    EDIT_EXIT_ARCHIVE = "can_edit_exit_archive"
    MANAGE_WAREHOUSE = "can_manage_warehouse"
    VIEW_WAREHOUSE_REPORTS = "can_view_warehouse_reports"
    APPROVE_DISPATCH = "can_approve_dispatch"
    VIEW_SECURITY = "can_view_security"
    CREATE_SECURITY_LOG = "can_create_security_log"
    APPROVE_SECURITY_SUPERVISOR = "can_approve_security_supervisor"


_CAPABILITY_BY_VALUE: dict[str, Capability] = {c.value: c for c in Capability}

# Legacy setting keys stored by older clients.
_KEY_ALIASES: dict[str, str] = {
    "can_approve_bijak": Capability.APPROVE_DISPATCH.value,
}

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


@dataclass(frozen=True)
class Actor:
    """The authenticated user performing an operation.

    ``full_name`` is what gets stamped into approver slots and compared
    against ``Document.requester``.
    """

    username: str
    full_name: str
    role: str
    can_manage_trade: bool = False


@dataclass(frozen=True)
class CapabilityMap:
    """Total mapping Capability -> bool, stored as the granted subset."""

    granted: frozenset[Capability]

    def allows(self, capability: Capability) -> bool:
        return capability in self.granted

    def __getitem__(self, capability: Capability) -> bool:
        return self.allows(capability)

    def __len__(self) -> int:
        return len(Capability)

    def allows_any(self, capabilities: frozenset[Capability] | tuple[Capability, ...]) -> bool:
        return any(c in self.granted for c in capabilities)

    def to_dict(self) -> dict[str, bool]:
        return {c.value: c in self.granted for c in Capability}


# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------

def _all_but(*excluded: Role) -> frozenset[str]:
    return frozenset(BUILTIN_ROLES - {r.value for r in excluded})


def _only(*included: Role) -> frozenset[str]:
    return frozenset(r.value for r in included)


DEFAULT_GRANTS: dict[Capability, frozenset[str]] = {
    Capability.VIEW_ALL: _all_but(
        Role.USER, Role.SALES_MANAGER, Role.WAREHOUSE_KEEPER,
        Role.SECURITY_GUARD, Role.SECURITY_HEAD,
    ),
    Capability.CREATE_PAYMENT_ORDER: _all_but(
        Role.FACTORY_MANAGER, Role.WAREHOUSE_KEEPER, Role.SALES_MANAGER,
        Role.SECURITY_GUARD, Role.SECURITY_HEAD,
    ),
    Capability.VIEW_PAYMENT_ORDERS: _only(
        Role.ADMIN, Role.CEO, Role.MANAGER, Role.FINANCIAL,
    ),
    Capability.VIEW_EXIT_PERMITS: _only(
        Role.ADMIN, Role.CEO, Role.SALES_MANAGER, Role.FACTORY_MANAGER,
        Role.WAREHOUSE_KEEPER, Role.SECURITY_HEAD,
    ),
    Capability.APPROVE_FINANCIAL: _only(Role.FINANCIAL, Role.ADMIN),
    Capability.APPROVE_MANAGER: _only(Role.MANAGER, Role.ADMIN),
    Capability.APPROVE_CEO: _only(Role.CEO, Role.ADMIN),
    Capability.EDIT_OWN: frozenset(BUILTIN_ROLES),
    Capability.EDIT_ALL: _only(Role.ADMIN, Role.CEO),
    Capability.DELETE_OWN: frozenset(BUILTIN_ROLES),
    Capability.DELETE_ALL: _only(Role.ADMIN),
    Capability.MANAGE_TRADE: _only(Role.ADMIN, Role.CEO, Role.MANAGER),
    Capability.MANAGE_SETTINGS: _only(Role.ADMIN),
    Capability.CREATE_EXIT_PERMIT: _only(Role.SALES_MANAGER, Role.ADMIN, Role.CEO),
    Capability.APPROVE_EXIT_CEO: _only(Role.CEO, Role.ADMIN),
    Capability.APPROVE_EXIT_FACTORY: _only(Role.FACTORY_MANAGER, Role.ADMIN),
    Capability.APPROVE_EXIT_WAREHOUSE: _only(
        Role.WAREHOUSE_KEEPER, Role.ADMIN, Role.CEO, Role.FACTORY_MANAGER,
    ),
    Capability.APPROVE_EXIT_SECURITY: _only(
        Role.SECURITY_GUARD, Role.SECURITY_HEAD, Role.ADMIN, Role.CEO,
    ),
    Capability.VIEW_EXIT_ARCHIVE: _only(
        Role.ADMIN, Role.CEO, Role.FACTORY_MANAGER, Role.SECURITY_HEAD,
        Role.WAREHOUSE_KEEPER,
    ),
    Capability.EDIT_EXIT_ARCHIVE: _only(Role.ADMIN),
    Capability.MANAGE_WAREHOUSE: _only(Role.ADMIN, Role.WAREHOUSE_KEEPER),
    Capability.VIEW_WAREHOUSE_REPORTS: _only(
        Role.ADMIN, Role.WAREHOUSE_KEEPER, Role.FACTORY_MANAGER, Role.CEO,
        Role.SALES_MANAGER,
    ),
    Capability.APPROVE_DISPATCH: _only(Role.ADMIN, Role.CEO),
    Capability.VIEW_SECURITY: _only(
        Role.ADMIN, Role.CEO, Role.FACTORY_MANAGER, Role.SECURITY_HEAD,
        Role.SECURITY_GUARD,
    ),
    Capability.CREATE_SECURITY_LOG: _only(
        Role.SECURITY_GUARD, Role.SECURITY_HEAD, Role.ADMIN,
    ),
    Capability.APPROVE_SECURITY_SUPERVISOR: _only(Role.SECURITY_HEAD, Role.ADMIN),
}


def default_capabilities(role: str) -> frozenset[Capability]:
    """Capabilities granted to ``role`` before any override is applied."""
    return frozenset(
        cap for cap, roles in DEFAULT_GRANTS.items() if role in roles
    )


def normalize_capability_key(key: str) -> Capability | None:
    """Map a stored setting key to a Capability, or None if unknown.

    Accepts the canonical snake_case value and the camelCase spelling used
    by older settings documents (``canApproveCeo``).
    """
    if key in _CAPABILITY_BY_VALUE:
        return _CAPABILITY_BY_VALUE[key]
    snake = _CAMEL_BOUNDARY.sub("_", key).lower()
    snake = _KEY_ALIASES.get(snake, snake)
    return _CAPABILITY_BY_VALUE.get(snake)


def resolve_permissions(
    role: str,
    overrides: Mapping[str, Mapping[str, Any]] | None = None,
    user: Actor | None = None,
) -> CapabilityMap:
    """Resolve the effective capability map for ``role``.

    Args:
        role: Built-in or custom role id.
        overrides: ``role -> {capability_key -> bool}`` from system
            settings.  Only the entry for ``role`` is consulted.
        user: Optional user whose standing grants are applied last.

    Returns:
        A total ``CapabilityMap``.
    """
    granted = set(default_capabilities(role))

    role_overrides = (overrides or {}).get(role) or {}
    for key, value in role_overrides.items():
        capability = normalize_capability_key(str(key))
        if capability is None:
            continue
        if bool(value):
            granted.add(capability)
        else:
            granted.discard(capability)

    if user is not None and user.can_manage_trade:
        granted.add(Capability.MANAGE_TRADE)

    return CapabilityMap(granted=frozenset(granted))


def resolve_for_actor(
    actor: Actor,
    overrides: Mapping[str, Mapping[str, Any]] | None = None,
) -> CapabilityMap:
    """Shorthand for ``resolve_permissions(actor.role, overrides, actor)``."""
    return resolve_permissions(actor.role, overrides, actor)
