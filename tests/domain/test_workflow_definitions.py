"""
Tests for approval_kernel.domain.workflow.

The transition tables are derived from the stage declarations; these tests
pin the shape of every table.
"""

from dataclasses import FrozenInstanceError

import pytest

from approval_kernel.domain.permissions import Capability
from approval_kernel.domain.workflow import (
    EXIT_PERMIT_WORKFLOW,
    PAYMENT_ORDER_WORKFLOW,
    WAREHOUSE_DISPATCH_WORKFLOW,
    WORKFLOWS,
    ApprovalStage,
    DocumentKind,
    ExitPermitStatus,
    PaymentOrderStatus,
    WorkflowDefinition,
    get_workflow,
)
from approval_kernel.exceptions import UnknownStatusError, UnsupportedDocumentKindError

ALL_WORKFLOWS = list(WORKFLOWS.values())


class TestRegistry:
    def test_every_kind_has_a_workflow(self):
        assert set(WORKFLOWS) == set(DocumentKind)

    def test_lookup_by_string(self):
        assert get_workflow("exit_permit") is EXIT_PERMIT_WORKFLOW

    def test_unknown_kind_raises(self):
        with pytest.raises(UnsupportedDocumentKindError) as exc_info:
            get_workflow("purchase_request")
        assert exc_info.value.code == "UNSUPPORTED_DOCUMENT_KIND"

    def test_definitions_are_frozen(self):
        with pytest.raises(FrozenInstanceError):
            PAYMENT_ORDER_WORKFLOW.statuses = ()  # type: ignore[misc]


class TestPaymentOrderChain:
    def test_forward_chain(self):
        wf = PAYMENT_ORDER_WORKFLOW
        assert wf.approve_target("pending") == "approved_finance"
        assert wf.approve_target("approved_finance") == "approved_manager"
        assert wf.approve_target("approved_manager") == "approved_ceo"
        assert wf.approve_target("approved_ceo") is None

    def test_void_chain(self):
        wf = PAYMENT_ORDER_WORKFLOW
        assert wf.approve_target("void_pending_finance") == "void_pending_manager"
        assert wf.approve_target("void_pending_manager") == "void_pending_ceo"
        assert wf.approve_target("void_pending_ceo") == "voided"
        assert wf.approve_target("voided") is None

    def test_stage_gates(self):
        wf = PAYMENT_ORDER_WORKFLOW
        assert wf.current_stage("pending").capability is Capability.APPROVE_FINANCIAL
        assert wf.current_stage("approved_finance").capability is Capability.APPROVE_MANAGER
        assert wf.current_stage("approved_manager").capability is Capability.APPROVE_CEO

    def test_void_stage_uses_forward_stage_capability(self):
        wf = PAYMENT_ORDER_WORKFLOW
        for index, status in enumerate(wf.void_statuses):
            assert wf.current_stage(status) is wf.stages[index]

    def test_rejected_has_no_stage(self):
        assert PAYMENT_ORDER_WORKFLOW.current_stage("rejected") is None


class TestExitPermitChain:
    def test_four_stages_end_in_exited(self):
        wf = EXIT_PERMIT_WORKFLOW
        assert len(wf.stages) == 4
        assert wf.initial_status == ExitPermitStatus.PENDING_CEO.value
        assert wf.final_status == ExitPermitStatus.EXITED.value

    def test_security_stage_is_last(self):
        stage = EXIT_PERMIT_WORKFLOW.current_stage("pending_security")
        assert stage.capability is Capability.APPROVE_EXIT_SECURITY
        assert EXIT_PERMIT_WORKFLOW.approve_target("pending_security") == "exited"


class TestDispatchChain:
    def test_single_ceo_stage(self):
        wf = WAREHOUSE_DISPATCH_WORKFLOW
        assert wf.statuses == ("pending", "approved")
        assert wf.current_stage("pending").capability is Capability.APPROVE_DISPATCH
        assert wf.approve_target("void_pending_ceo") == "voided"


class TestTransitionTables:
    @pytest.mark.parametrize("workflow", ALL_WORKFLOWS, ids=lambda wf: wf.kind.value)
    def test_every_status_is_in_the_table(self, workflow):
        assert set(workflow.transitions()) == workflow.all_statuses

    @pytest.mark.parametrize("workflow", ALL_WORKFLOWS, ids=lambda wf: wf.kind.value)
    def test_terminal_statuses_have_no_exits(self, workflow):
        table = workflow.transitions()
        for status in workflow.terminal_statuses:
            assert table[status] == frozenset()

    @pytest.mark.parametrize("workflow", ALL_WORKFLOWS, ids=lambda wf: wf.kind.value)
    def test_exactly_one_approve_edge_from_active_statuses(self, workflow):
        active = workflow.open_statuses | set(workflow.void_statuses)
        for status in workflow.all_statuses:
            target = workflow.approve_target(status)
            if status in active:
                assert target is not None, status
            else:
                assert target is None, status

    @pytest.mark.parametrize("workflow", ALL_WORKFLOWS, ids=lambda wf: wf.kind.value)
    def test_void_chain_never_reenters_forward_chain(self, workflow):
        table = workflow.transitions()
        forward = set(workflow.statuses)
        for status in workflow.void_statuses:
            assert not (table[status] & forward)

    @pytest.mark.parametrize("workflow", ALL_WORKFLOWS, ids=lambda wf: wf.kind.value)
    def test_rejected_leads_to_void_or_edit(self, workflow):
        assert workflow.transitions()[workflow.rejected_status] == frozenset(
            {workflow.void_statuses[0], workflow.initial_status}
        )

    def test_require_known_rejects_foreign_status(self):
        with pytest.raises(UnknownStatusError):
            PAYMENT_ORDER_WORKFLOW.require_known(ExitPermitStatus.EXITED.value)
        PAYMENT_ORDER_WORKFLOW.require_known(PaymentOrderStatus.VOIDED.value)


class TestMalformedDefinitions:
    def _stage(self) -> ApprovalStage:
        return ApprovalStage("ceo", Capability.APPROVE_CEO, frozenset({"ceo"}), "CEO")

    def test_status_count_must_match_stages(self):
        with pytest.raises(ValueError, match="forward statuses"):
            WorkflowDefinition(
                kind=DocumentKind.PAYMENT_ORDER,
                stages=(self._stage(),),
                statuses=("a",),
                void_statuses=("v",),
                create_capability=Capability.CREATE_PAYMENT_ORDER,
            )

    def test_statuses_must_be_distinct(self):
        with pytest.raises(ValueError, match="distinct"):
            WorkflowDefinition(
                kind=DocumentKind.PAYMENT_ORDER,
                stages=(self._stage(),),
                statuses=("a", "rejected"),
                void_statuses=("v",),
                create_capability=Capability.CREATE_PAYMENT_ORDER,
            )

    def test_needs_a_stage(self):
        with pytest.raises(ValueError, match="at least one stage"):
            WorkflowDefinition(
                kind=DocumentKind.PAYMENT_ORDER,
                stages=(),
                statuses=("a",),
                void_statuses=(),
                create_capability=Capability.CREATE_PAYMENT_ORDER,
            )
