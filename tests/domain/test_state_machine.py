"""
Tests for approval_kernel.domain.state_machine.ApprovalStateMachine.

Forward-chain Approve, Reject and Edit, the ordering of status and
permission checks, and immutability of input snapshots.
"""

import pytest

from approval_kernel.domain.document import Document
from approval_kernel.domain.permissions import Capability, Role
from approval_kernel.domain.state_machine import (
    DEFAULT_REJECTION_REASON,
    ApprovalStateMachine,
    can_approve,
)
from approval_kernel.domain.workflow import DocumentKind, TransitionOperation
from approval_kernel.exceptions import (
    InvalidStateTransitionError,
    PermissionDeniedError,
    UnknownStatusError,
)


@pytest.fixture
def machine(deterministic_clock) -> ApprovalStateMachine:
    return ApprovalStateMachine(deterministic_clock)


# =============================================================================
# Payment order scenario
# =============================================================================


class TestPaymentOrderScenario:
    """Alice requests, Bob approves the financial stage, Carol cannot."""

    def test_financial_approval_stamps_slot(self, machine, make_document, bob):
        doc = make_document(requester="Alice")

        result = machine.approve(doc, bob)

        assert result.status == "approved_finance"
        assert result.approvals == {"financial": "Bob"}
        assert result.approver("financial") == "Bob"

    def test_manager_cannot_approve_financial_stage(self, machine, make_document, carol):
        doc = make_document(requester="Alice")

        with pytest.raises(PermissionDeniedError) as exc_info:
            machine.approve(doc, carol)

        assert exc_info.value.capability == Capability.APPROVE_FINANCIAL.value
        assert exc_info.value.code == "PERMISSION_DENIED"
        assert doc.status == "pending"

    def test_full_chain(self, machine, make_document, bob, carol, ceo):
        doc = make_document()
        doc = machine.approve(doc, bob)
        doc = machine.approve(doc, carol)
        doc = machine.approve(doc, ceo)

        assert doc.status == "approved_ceo"
        assert doc.approvals == {"financial": "Bob", "manager": "Carol", "ceo": "Dana"}

    def test_final_approval_then_invalid(self, machine, make_document, ceo):
        doc = make_document(status="approved_manager")

        final = machine.approve(doc, ceo)
        assert final.status == "approved_ceo"

        with pytest.raises(InvalidStateTransitionError) as exc_info:
            machine.approve(final, ceo)
        assert exc_info.value.current_status == "approved_ceo"


# =============================================================================
# Approve
# =============================================================================


class TestApprove:
    def test_input_snapshot_is_not_mutated(self, machine, make_document, bob):
        doc = make_document()
        machine.approve(doc, bob)
        assert doc.status == "pending"
        assert doc.approvals == {}

    def test_updated_at_moves_to_clock(self, machine, make_document, bob, deterministic_clock):
        doc = make_document(updated_at=1_000)
        result = machine.approve(doc, bob)
        assert result.updated_at == deterministic_clock.now_millis()

    def test_updated_at_never_moves_backwards(self, machine, make_document, bob, deterministic_clock):
        future = deterministic_clock.now_millis() + 60_000
        doc = make_document(updated_at=future)
        result = machine.approve(doc, bob)
        assert result.updated_at == future

    def test_status_checked_before_permission(self, machine, make_document, alice):
        doc = make_document(status="approved_ceo")
        with pytest.raises(InvalidStateTransitionError):
            machine.approve(doc, alice)

    def test_unknown_status_raises(self, machine, make_document, admin):
        doc = make_document()
        bogus = Document(**{**doc.__dict__, "status": "archived"})
        with pytest.raises(UnknownStatusError):
            machine.approve(bogus, admin)

    def test_override_grants_stage(self, deterministic_clock, make_document, alice):
        machine = ApprovalStateMachine(
            deterministic_clock,
            {Role.USER.value: {"canApproveFinancial": True}},
        )
        result = machine.approve(make_document(), alice)
        assert result.approvals["financial"] == "Alice"

    def test_override_revokes_stage(self, deterministic_clock, make_document, bob):
        machine = ApprovalStateMachine(
            deterministic_clock,
            {Role.FINANCIAL.value: {Capability.APPROVE_FINANCIAL.value: False}},
        )
        with pytest.raises(PermissionDeniedError):
            machine.approve(make_document(), bob)

    def test_exit_permit_chain(self, machine, make_document, make_actor):
        doc = make_document(kind=DocumentKind.EXIT_PERMIT)
        for role, expected in (
            (Role.CEO, "pending_factory"),
            (Role.FACTORY_MANAGER, "pending_warehouse"),
            (Role.WAREHOUSE_KEEPER, "pending_security"),
            (Role.SECURITY_GUARD, "exited"),
        ):
            doc = machine.approve(doc, make_actor(role))
            assert doc.status == expected
        assert set(doc.approvals) == {"ceo", "factory", "warehouse", "security"}

    def test_dispatch_needs_dispatch_capability(self, machine, make_document, make_actor):
        doc = make_document(kind=DocumentKind.WAREHOUSE_DISPATCH)
        with pytest.raises(PermissionDeniedError):
            machine.approve(doc, make_actor(Role.WAREHOUSE_KEEPER))
        assert machine.approve(doc, make_actor(Role.CEO)).status == "approved"


# =============================================================================
# Reject
# =============================================================================


class TestReject:
    @pytest.mark.parametrize("status", ["pending", "approved_finance", "approved_manager"])
    def test_reject_from_open_statuses(self, machine, make_document, carol, status):
        result = machine.reject(make_document(status=status), carol, "Wrong amount")
        assert result.status == "rejected"
        assert result.rejection_reason == "Wrong amount"
        assert result.rejected_by == "Carol"
        assert result.is_consistent()

    @pytest.mark.parametrize(
        "status", ["approved_ceo", "rejected", "void_pending_finance", "voided"],
    )
    def test_reject_elsewhere_is_invalid(self, machine, make_document, admin, status):
        with pytest.raises(InvalidStateTransitionError):
            machine.reject(make_document(status=status), admin, "No")

    def test_blank_reason_gets_default(self, machine, make_document, bob):
        result = machine.reject(make_document(), bob, "   ")
        assert result.rejection_reason == DEFAULT_REJECTION_REASON

    def test_reject_requires_a_stage_capability(self, machine, make_document, alice):
        with pytest.raises(PermissionDeniedError):
            machine.reject(make_document(), alice, "No")

    def test_reject_keeps_approvals(self, machine, make_document, carol):
        doc = make_document(status="approved_finance", approvals={"financial": "Bob"})
        assert machine.reject(doc, carol).approvals == {"financial": "Bob"}


# =============================================================================
# Edit
# =============================================================================


class TestEdit:
    def test_edit_resets_everything(self, machine, make_document, ceo):
        doc = make_document(
            status="approved_manager",
            approvals={"financial": "Bob", "manager": "Carol"},
            payload={"amount": 10},
        )

        result = machine.edit(doc, ceo, {"amount": 12})

        assert result.status == "pending"
        assert result.approvals == {}
        assert result.void_approvals == {}
        assert result.rejection_reason is None
        assert result.rejected_by is None
        assert result.payload == {"amount": 12}

    def test_requester_edits_own_rejected_document(self, machine, make_document, alice):
        doc = make_document(status="rejected", requester="Alice")
        result = machine.edit(doc, alice, {"amount": 1})
        assert result.status == "pending"
        assert result.rejection_reason is None
        assert result.is_consistent()

    def test_requester_without_edit_own_can_still_fix_rejection(
        self, deterministic_clock, make_document, alice,
    ):
        machine = ApprovalStateMachine(
            deterministic_clock, {Role.USER.value: {Capability.EDIT_OWN.value: False}},
        )
        with pytest.raises(PermissionDeniedError):
            machine.edit(make_document(requester="Alice"), alice, {})
        assert machine.edit(
            make_document(status="rejected", requester="Alice"), alice, {},
        ).status == "pending"

    def test_stranger_cannot_edit(self, machine, make_document, bob):
        with pytest.raises(PermissionDeniedError):
            machine.edit(make_document(requester="Alice"), bob, {})

    def test_edit_without_payload_keeps_payload(self, machine, make_document, alice):
        doc = make_document(payload={"amount": 5})
        assert machine.edit(doc, alice).payload == {"amount": 5}

    @pytest.mark.parametrize("status", ["approved_ceo", "void_pending_manager", "voided"])
    def test_edit_terminal_or_void_is_invalid(self, machine, make_document, admin, status):
        with pytest.raises(InvalidStateTransitionError):
            machine.edit(make_document(status=status), admin, {})


# =============================================================================
# Dispatch and helpers
# =============================================================================


class TestApplyAndCanApprove:
    def test_apply_dispatches_by_operation(self, machine, make_document, bob):
        result = machine.apply(make_document(), "approve", bob)
        assert result.status == "approved_finance"

        rejected = machine.apply(
            make_document(), TransitionOperation.REJECT, bob, reason="late",
        )
        assert rejected.rejection_reason == "late"

    def test_apply_unknown_operation(self, machine, make_document, bob):
        with pytest.raises(ValueError):
            machine.apply(make_document(), "archive", bob)

    def test_can_approve_matches_machine(self, make_document, bob, carol):
        doc = make_document()
        assert can_approve(doc, bob)
        assert not can_approve(doc, carol)
        assert not can_approve(make_document(status="rejected"), bob)
