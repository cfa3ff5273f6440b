"""
Workflow definitions -- approval chains for every document kind.

Responsibility:
    Declares, as frozen data, the ordered approval stages of each document
    kind together with the status values, the approver slot each stage
    stamps, the capability that gates it, the roles that are notified when
    it becomes current, and the mirror-image void chain.  Transition tables
    are derived from these declarations, never written by hand.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - A chain of N stages has exactly N + 1 forward statuses and N void
      statuses; every status belongs to exactly one of {forward chain,
      reject, void chain, voided}.
    - Exactly one approve edge leaves every non-terminal forward status and
      every void status.
    - The void stage at index k is gated by the capability of forward
      stage k.

Failure modes:
    - ValueError at import time if a definition is structurally malformed.
    - UnsupportedDocumentKindError from ``get_workflow`` for unknown kinds.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from approval_kernel.domain.permissions import Capability, Role
from approval_kernel.exceptions import (
    UnknownStatusError,
    UnsupportedDocumentKindError,
)


class DocumentKind(str, Enum):
    """Document kinds that share the approval engine."""

    PAYMENT_ORDER = "payment_order"
    EXIT_PERMIT = "exit_permit"
    WAREHOUSE_DISPATCH = "warehouse_dispatch"


class TransitionOperation(str, Enum):
    """Operations the state machine accepts."""

    APPROVE = "approve"
    REJECT = "reject"
    EDIT = "edit"
    REQUEST_VOID = "request_void"


REJECTED = "rejected"
VOIDED = "voided"


class PaymentOrderStatus(str, Enum):
    PENDING = "pending"
    APPROVED_FINANCE = "approved_finance"
    APPROVED_MANAGER = "approved_manager"
    APPROVED_CEO = "approved_ceo"
    REJECTED = REJECTED
    VOID_PENDING_FINANCE = "void_pending_finance"
    VOID_PENDING_MANAGER = "void_pending_manager"
    VOID_PENDING_CEO = "void_pending_ceo"
    VOIDED = VOIDED


class ExitPermitStatus(str, Enum):
    PENDING_CEO = "pending_ceo"
    PENDING_FACTORY = "pending_factory"
    PENDING_WAREHOUSE = "pending_warehouse"
    PENDING_SECURITY = "pending_security"
    EXITED = "exited"
    REJECTED = REJECTED
    VOID_PENDING_CEO = "void_pending_ceo"
    VOID_PENDING_FACTORY = "void_pending_factory"
    VOID_PENDING_WAREHOUSE = "void_pending_warehouse"
    VOID_PENDING_SECURITY = "void_pending_security"
    VOIDED = VOIDED


class DispatchStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = REJECTED
    VOID_PENDING_CEO = "void_pending_ceo"
    VOIDED = VOIDED


@dataclass(frozen=True)
class ApprovalStage:
    """One sequential approval step."""

    slot: str
    capability: Capability
    notify_roles: frozenset[str]
    label: str


@dataclass(frozen=True)
class WorkflowDefinition:
    """
    An N-stage approval chain plus its void mirror.

    ``statuses[k]`` is the status while stage k is awaited; ``statuses[N]``
    is the terminal success status.  ``void_statuses[k]`` is the status
    while the void approval of stage k is awaited.
    """

    kind: DocumentKind
    stages: tuple[ApprovalStage, ...]
    statuses: tuple[str, ...]
    void_statuses: tuple[str, ...]
    create_capability: Capability
    completion_roles: frozenset[str] = field(default_factory=frozenset)
    rejected_status: str = REJECTED
    voided_status: str = VOIDED

    def __post_init__(self) -> None:
        n = len(self.stages)
        if n == 0:
            raise ValueError(f"{self.kind.value}: a workflow needs at least one stage")
        if len(self.statuses) != n + 1:
            raise ValueError(f"{self.kind.value}: expected {n + 1} forward statuses")
        if len(self.void_statuses) != n:
            raise ValueError(f"{self.kind.value}: expected {n} void statuses")
        everything = (
            list(self.statuses)
            + list(self.void_statuses)
            + [self.rejected_status, self.voided_status]
        )
        if len(set(everything)) != len(everything):
            raise ValueError(f"{self.kind.value}: status values must be distinct")

    # -- status sets --------------------------------------------------------

    @property
    def initial_status(self) -> str:
        return self.statuses[0]

    @property
    def final_status(self) -> str:
        return self.statuses[-1]

    @property
    def open_statuses(self) -> frozenset[str]:
        """Non-terminal forward statuses (the ones Reject applies to)."""
        return frozenset(self.statuses[:-1])

    @property
    def terminal_statuses(self) -> frozenset[str]:
        return frozenset({self.final_status, self.voided_status})

    @property
    def all_statuses(self) -> frozenset[str]:
        return frozenset(
            self.statuses
            + self.void_statuses
            + (self.rejected_status, self.voided_status)
        )

    @property
    def stage_capabilities(self) -> frozenset[Capability]:
        return frozenset(stage.capability for stage in self.stages)

    # -- lookups ------------------------------------------------------------

    def require_known(self, status: str) -> None:
        if status not in self.all_statuses:
            raise UnknownStatusError(self.kind.value, status)

    def is_void_status(self, status: str) -> bool:
        return status in self.void_statuses

    def current_stage(self, status: str) -> ApprovalStage | None:
        """The stage whose approval is awaited in ``status``, if any."""
        if status in self.open_statuses:
            return self.stages[self.statuses.index(status)]
        if status in self.void_statuses:
            return self.stages[self.void_statuses.index(status)]
        return None

    def approve_target(self, status: str) -> str | None:
        """The single status an approval moves to, or None if none exists."""
        if status in self.open_statuses:
            return self.statuses[self.statuses.index(status) + 1]
        if status in self.void_statuses:
            index = self.void_statuses.index(status)
            if index + 1 < len(self.void_statuses):
                return self.void_statuses[index + 1]
            return self.voided_status
        return None

    def transitions(self) -> dict[str, frozenset[str]]:
        """Full transition table: status -> reachable statuses."""
        table: dict[str, frozenset[str]] = {}
        for status in self.all_statuses:
            targets: set[str] = set()
            approve = self.approve_target(status)
            if approve is not None:
                targets.add(approve)
            if status in self.open_statuses:
                targets.add(self.rejected_status)
                targets.add(self.initial_status)
            if status == self.rejected_status:
                targets.add(self.void_statuses[0])
                targets.add(self.initial_status)
            table[status] = frozenset(targets)
        return table


# =============================================================================
# Definitions
# =============================================================================

PAYMENT_ORDER_WORKFLOW = WorkflowDefinition(
    kind=DocumentKind.PAYMENT_ORDER,
    stages=(
        ApprovalStage(
            slot="financial",
            capability=Capability.APPROVE_FINANCIAL,
            notify_roles=frozenset({Role.FINANCIAL.value}),
            label="financial",
        ),
        ApprovalStage(
            slot="manager",
            capability=Capability.APPROVE_MANAGER,
            notify_roles=frozenset({Role.MANAGER.value}),
            label="management",
        ),
        ApprovalStage(
            slot="ceo",
            capability=Capability.APPROVE_CEO,
            notify_roles=frozenset({Role.CEO.value}),
            label="final",
        ),
    ),
    statuses=(
        PaymentOrderStatus.PENDING.value,
        PaymentOrderStatus.APPROVED_FINANCE.value,
        PaymentOrderStatus.APPROVED_MANAGER.value,
        PaymentOrderStatus.APPROVED_CEO.value,
    ),
    void_statuses=(
        PaymentOrderStatus.VOID_PENDING_FINANCE.value,
        PaymentOrderStatus.VOID_PENDING_MANAGER.value,
        PaymentOrderStatus.VOID_PENDING_CEO.value,
    ),
    create_capability=Capability.CREATE_PAYMENT_ORDER,
    # The financial team pays once the CEO has signed.
    completion_roles=frozenset({Role.FINANCIAL.value}),
)

EXIT_PERMIT_WORKFLOW = WorkflowDefinition(
    kind=DocumentKind.EXIT_PERMIT,
    stages=(
        ApprovalStage(
            slot="ceo",
            capability=Capability.APPROVE_EXIT_CEO,
            notify_roles=frozenset({Role.CEO.value}),
            label="CEO",
        ),
        ApprovalStage(
            slot="factory",
            capability=Capability.APPROVE_EXIT_FACTORY,
            notify_roles=frozenset({Role.FACTORY_MANAGER.value}),
            label="factory",
        ),
        ApprovalStage(
            slot="warehouse",
            capability=Capability.APPROVE_EXIT_WAREHOUSE,
            notify_roles=frozenset({Role.WAREHOUSE_KEEPER.value}),
            label="warehouse",
        ),
        ApprovalStage(
            slot="security",
            capability=Capability.APPROVE_EXIT_SECURITY,
            notify_roles=frozenset({Role.SECURITY_HEAD.value}),
            label="security",
        ),
    ),
    statuses=(
        ExitPermitStatus.PENDING_CEO.value,
        ExitPermitStatus.PENDING_FACTORY.value,
        ExitPermitStatus.PENDING_WAREHOUSE.value,
        ExitPermitStatus.PENDING_SECURITY.value,
        ExitPermitStatus.EXITED.value,
    ),
    void_statuses=(
        ExitPermitStatus.VOID_PENDING_CEO.value,
        ExitPermitStatus.VOID_PENDING_FACTORY.value,
        ExitPermitStatus.VOID_PENDING_WAREHOUSE.value,
        ExitPermitStatus.VOID_PENDING_SECURITY.value,
    ),
    create_capability=Capability.CREATE_EXIT_PERMIT,
    completion_roles=frozenset({Role.SALES_MANAGER.value}),
)

WAREHOUSE_DISPATCH_WORKFLOW = WorkflowDefinition(
    kind=DocumentKind.WAREHOUSE_DISPATCH,
    stages=(
        ApprovalStage(
            slot="ceo",
            capability=Capability.APPROVE_DISPATCH,
            notify_roles=frozenset({Role.CEO.value}),
            label="CEO",
        ),
    ),
    statuses=(
        DispatchStatus.PENDING.value,
        DispatchStatus.APPROVED.value,
    ),
    void_statuses=(DispatchStatus.VOID_PENDING_CEO.value,),
    create_capability=Capability.MANAGE_WAREHOUSE,
    completion_roles=frozenset({Role.WAREHOUSE_KEEPER.value}),
)

WORKFLOWS: dict[DocumentKind, WorkflowDefinition] = {
    wf.kind: wf
    for wf in (PAYMENT_ORDER_WORKFLOW, EXIT_PERMIT_WORKFLOW, WAREHOUSE_DISPATCH_WORKFLOW)
}


def get_workflow(kind: DocumentKind | str) -> WorkflowDefinition:
    """Look up the workflow for a document kind."""
    try:
        return WORKFLOWS[DocumentKind(kind)]
    except (ValueError, KeyError):
        raise UnsupportedDocumentKindError(str(kind)) from None
