"""
Pure domain layer.

This module contains immutable data and transition logic with NO
dependencies on:
- ORM (SQLAlchemy)
- Database
- I/O

Time enters only through an injected Clock.
"""

from approval_kernel.domain.clock import (
    Clock,
    DeterministicClock,
    SystemClock,
    epoch_millis,
    from_epoch_millis,
)
from approval_kernel.domain.document import Document
from approval_kernel.domain.notifications import (
    NotificationEvent,
    classify_change,
    scan_due_dates,
)
from approval_kernel.domain.permissions import (
    Actor,
    Capability,
    CapabilityMap,
    Role,
    resolve_for_actor,
    resolve_permissions,
)
from approval_kernel.domain.state_machine import ApprovalStateMachine, can_approve
from approval_kernel.domain.workflow import (
    DocumentKind,
    TransitionOperation,
    WorkflowDefinition,
    get_workflow,
)

__all__ = [
    "Actor",
    "ApprovalStateMachine",
    "Capability",
    "CapabilityMap",
    "Clock",
    "DeterministicClock",
    "Document",
    "DocumentKind",
    "NotificationEvent",
    "Role",
    "SystemClock",
    "TransitionOperation",
    "WorkflowDefinition",
    "can_approve",
    "classify_change",
    "epoch_millis",
    "from_epoch_millis",
    "get_workflow",
    "resolve_for_actor",
    "resolve_permissions",
    "scan_due_dates",
]
