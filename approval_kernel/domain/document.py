"""
Document -- the immutable snapshot every transition operates on.

Responsibility:
    Generalizes payment orders, exit permits and warehouse dispatch notes
    into one record: identity, tracking number, status, requester, approver
    slots for the forward and void chains, rejection details, timestamps and
    an opaque kind-specific payload.

Architecture position:
    Kernel > Domain -- pure data, zero I/O.

Invariants enforced:
    - ``updated_at >= created_at``.
    - ``rejection_reason`` is set iff ``status`` is the reject state
      (maintained by the state machine, checked by ``is_consistent``).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from approval_kernel.domain.workflow import DocumentKind, get_workflow


@dataclass(frozen=True)
class Document:
    """Snapshot of a document as returned by the authoritative store."""

    document_id: str
    kind: DocumentKind
    tracking_number: int
    status: str
    requester: str
    created_at: int
    updated_at: int
    approvals: dict[str, str] = field(default_factory=dict)
    void_approvals: dict[str, str] = field(default_factory=dict)
    rejection_reason: str | None = None
    rejected_by: str | None = None
    company: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)
    version: int = 1

    def is_requested_by(self, full_name: str) -> bool:
        return self.requester == full_name

    def approver(self, slot: str) -> str | None:
        return self.approvals.get(slot)

    def is_consistent(self) -> bool:
        """Check the structural invariants of the snapshot."""
        workflow = get_workflow(self.kind)
        if self.status not in workflow.all_statuses:
            return False
        if self.updated_at < self.created_at:
            return False
        is_rejected = self.status == workflow.rejected_status
        if is_rejected != (self.rejection_reason is not None):
            return False
        if self.void_approvals and not (
            workflow.is_void_status(self.status)
            or self.status == workflow.voided_status
        ):
            return False
        return True


@dataclass(frozen=True)
class TransitionRecord:
    """One entry of a document's transition history."""

    document_id: str
    operation: str
    from_status: str | None
    to_status: str
    actor: str
    occurred_at: int
    resulting_version: int
    reason: str | None = None
