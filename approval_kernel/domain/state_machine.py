"""
ApprovalStateMachine -- pure transition logic for every document kind.

Responsibility:
    Given a ``Document`` snapshot, an ``Actor`` and the system role
    overrides, computes the next snapshot for Approve, Reject, Edit and
    RequestVoid, or raises a typed error.  The same code drives the forward
    chain and the void chain of every kind; only the ``WorkflowDefinition``
    differs.

Architecture position:
    Kernel > Domain -- pure functional core.  Time comes from the injected
    ``Clock``; nothing here touches the store.

Invariants enforced:
    - Approve advances exactly one stage and stamps exactly one slot.
    - Reject applies only to non-terminal forward statuses.
    - Edit always resets to the initial status and clears every approver
      slot and the rejection fields.
    - RequestVoid applies only to the reject status; void approvals never
      re-enter the forward chain; nothing applies to ``voided``.
    - Status is checked before permission: an actor asking for an illegal
      transition gets ``InvalidStateTransitionError`` whatever their role.

Failure modes:
    - InvalidStateTransitionError -- operation not legal from the status.
    - PermissionDeniedError -- actor lacks the gating capability.
    - UnknownStatusError -- snapshot carries a status outside its workflow.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import replace
from typing import Any

from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.document import Document
from approval_kernel.domain.permissions import (
    Actor,
    Capability,
    CapabilityMap,
    resolve_for_actor,
)
from approval_kernel.domain.workflow import (
    TransitionOperation,
    WorkflowDefinition,
    get_workflow,
)
from approval_kernel.exceptions import (
    InvalidStateTransitionError,
    PermissionDeniedError,
)

DEFAULT_REJECTION_REASON = "No reason given"

RoleOverrides = Mapping[str, Mapping[str, Any]]


def can_approve(
    document: Document,
    actor: Actor,
    overrides: RoleOverrides | None = None,
) -> bool:
    """Whether ``actor`` may approve the document's current stage.

    False for rejected and terminal statuses.  This is the same predicate
    the state machine enforces, so UIs can use it to show or hide actions.
    """
    stage = get_workflow(document.kind).current_stage(document.status)
    if stage is None:
        return False
    return resolve_for_actor(actor, overrides).allows(stage.capability)


def _holds_any_stage(workflow: WorkflowDefinition, capabilities: CapabilityMap) -> bool:
    return capabilities.allows_any(tuple(workflow.stage_capabilities))


class ApprovalStateMachine:
    """
    Stateless transition calculator.

    Contract:
        Every method takes a snapshot and returns a *new* snapshot; inputs
        are never mutated.  Permissions are re-resolved from
        ``role_overrides`` on every call.
    """

    def __init__(
        self,
        clock: Clock | None = None,
        role_overrides: RoleOverrides | None = None,
    ):
        self._clock = clock or SystemClock()
        self._overrides: RoleOverrides = role_overrides or {}

    def capabilities_for(self, actor: Actor) -> CapabilityMap:
        return resolve_for_actor(actor, self._overrides)

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    def apply(
        self,
        document: Document,
        operation: TransitionOperation | str,
        actor: Actor,
        payload: dict[str, Any] | None = None,
        reason: str | None = None,
    ) -> Document:
        """Dispatch ``operation`` to the matching method."""
        op = TransitionOperation(operation)
        if op is TransitionOperation.APPROVE:
            return self.approve(document, actor)
        if op is TransitionOperation.REJECT:
            return self.reject(document, actor, reason)
        if op is TransitionOperation.EDIT:
            return self.edit(document, actor, payload)
        return self.request_void(document, actor)

    def approve(self, document: Document, actor: Actor) -> Document:
        """Advance the forward or void chain by exactly one stage."""
        workflow = get_workflow(document.kind)
        workflow.require_known(document.status)

        target = workflow.approve_target(document.status)
        stage = workflow.current_stage(document.status)
        if target is None or stage is None:
            raise InvalidStateTransitionError(
                document.document_id, document.status, TransitionOperation.APPROVE.value,
            )

        if not self.capabilities_for(actor).allows(stage.capability):
            raise PermissionDeniedError(
                document.document_id,
                actor.username,
                TransitionOperation.APPROVE.value,
                stage.capability.value,
            )

        if workflow.is_void_status(document.status):
            return replace(
                document,
                status=target,
                void_approvals={**document.void_approvals, stage.slot: actor.full_name},
                updated_at=self._now(document),
            )
        return replace(
            document,
            status=target,
            approvals={**document.approvals, stage.slot: actor.full_name},
            updated_at=self._now(document),
        )

    def reject(
        self,
        document: Document,
        actor: Actor,
        reason: str | None = None,
    ) -> Document:
        """Move a non-terminal forward document to the reject status."""
        workflow = get_workflow(document.kind)
        workflow.require_known(document.status)

        if document.status not in workflow.open_statuses:
            raise InvalidStateTransitionError(
                document.document_id, document.status, TransitionOperation.REJECT.value,
            )

        if not _holds_any_stage(workflow, self.capabilities_for(actor)):
            raise PermissionDeniedError(
                document.document_id, actor.username, TransitionOperation.REJECT.value,
            )

        text = (reason or "").strip() or DEFAULT_REJECTION_REASON
        return replace(
            document,
            status=workflow.rejected_status,
            rejection_reason=text,
            rejected_by=actor.full_name,
            updated_at=self._now(document),
        )

    def edit(
        self,
        document: Document,
        actor: Actor,
        payload: dict[str, Any] | None = None,
    ) -> Document:
        """Replace the payload and restart the chain from the initial status."""
        workflow = get_workflow(document.kind)
        workflow.require_known(document.status)

        editable = workflow.open_statuses | {workflow.rejected_status}
        if document.status not in editable:
            raise InvalidStateTransitionError(
                document.document_id, document.status, TransitionOperation.EDIT.value,
            )

        capabilities = self.capabilities_for(actor)
        own = document.is_requested_by(actor.full_name)
        allowed = (
            capabilities.allows(Capability.EDIT_ALL)
            or (own and capabilities.allows(Capability.EDIT_OWN))
            or (own and document.status == workflow.rejected_status)
        )
        if not allowed:
            raise PermissionDeniedError(
                document.document_id,
                actor.username,
                TransitionOperation.EDIT.value,
                Capability.EDIT_ALL.value,
            )

        return replace(
            document,
            status=workflow.initial_status,
            payload=dict(payload) if payload is not None else dict(document.payload),
            approvals={},
            void_approvals={},
            rejection_reason=None,
            rejected_by=None,
            updated_at=self._now(document),
        )

    def request_void(self, document: Document, actor: Actor) -> Document:
        """Start the void chain of a rejected document."""
        workflow = get_workflow(document.kind)
        workflow.require_known(document.status)

        if document.status != workflow.rejected_status:
            raise InvalidStateTransitionError(
                document.document_id,
                document.status,
                TransitionOperation.REQUEST_VOID.value,
            )

        capabilities = self.capabilities_for(actor)
        allowed = (
            document.is_requested_by(actor.full_name)
            or capabilities.allows(Capability.EDIT_ALL)
            or _holds_any_stage(workflow, capabilities)
        )
        if not allowed:
            raise PermissionDeniedError(
                document.document_id,
                actor.username,
                TransitionOperation.REQUEST_VOID.value,
            )

        return replace(
            document,
            status=workflow.void_statuses[0],
            void_approvals={},
            rejection_reason=None,
            rejected_by=None,
            updated_at=self._now(document),
        )

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _now(self, document: Document) -> int:
        # updated_at never moves backwards, even with a skewed clock.
        return max(self._clock.now_millis(), document.updated_at, document.created_at)
