"""
approval_kernel.services.document_service -- Authoritative document store.

Responsibility:
    Creates documents, applies Approve / Reject / Edit / RequestVoid through
    the pure ``ApprovalStateMachine`` and persists the result with a
    conditional write, deletes documents, and records an append-only
    transition history.  This is the server-side authority: permissions are
    re-resolved from the stored role overrides on every call, whatever the
    client believed.

Architecture position:
    Kernel > Services.  May import from domain/, models/, selectors/, db/.

Invariants enforced:
    - Compare-and-swap: a transition is written with
      ``WHERE id = :id AND version = :v AND status = :s``; zero affected
      rows means another writer got there first.
    - Every applied transition bumps ``version`` by one and appends one
      history row.
    - New documents start in the workflow's initial status with a fresh
      tracking number.

Failure modes:
    - DocumentNotFoundError if the id does not exist.
    - PermissionDeniedError / InvalidStateTransitionError from the state
      machine (nothing is written).
    - ConcurrentModificationError if the stored snapshot changed.
    - PersistenceFailureError if the database is unreachable.  The caller's
      transaction must be rolled back; nothing is applied.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import replace
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import delete, select, update
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.orm import Session

from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.document import Document
from approval_kernel.domain.permissions import Actor, Capability, resolve_for_actor
from approval_kernel.domain.state_machine import ApprovalStateMachine, RoleOverrides
from approval_kernel.domain.workflow import DocumentKind, TransitionOperation, get_workflow
from approval_kernel.exceptions import (
    ApprovalKernelError,
    ConcurrentModificationError,
    DocumentNotFoundError,
    InvalidStateTransitionError,
    PermissionDeniedError,
    PersistenceFailureError,
)
from approval_kernel.logging_config import LogContext, get_logger
from approval_kernel.models.document import DocumentModel, DocumentTransitionModel
from approval_kernel.selectors.document_selector import parse_document_id
from approval_kernel.services.base import BaseService
from approval_kernel.services.sequence_service import (
    DEFAULT_TRACKING_BASE,
    SequenceService,
)
from approval_kernel.services.settings_service import SettingsService

logger = get_logger("services.document")


@contextmanager
def store_errors(operation: str) -> Iterator[None]:
    """Translate driver-level failures into PersistenceFailureError."""
    try:
        yield
    except (OperationalError, DBAPIError) as exc:
        logger.error(
            "document_store_unavailable",
            extra={"operation": operation, "reason": str(exc.orig or exc)},
        )
        raise PersistenceFailureError(operation, str(exc.orig or exc)) from exc


class DocumentService(BaseService[DocumentModel]):
    """Writes documents and applies workflow transitions."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        role_overrides: RoleOverrides | None = None,
        tracking_base: int = DEFAULT_TRACKING_BASE,
    ) -> None:
        super().__init__(session)
        self._clock = clock or SystemClock()
        # None means "read the stored overrides on every call".
        self._fixed_overrides = role_overrides
        self._tracking_base = tracking_base
        self._sequences = SequenceService(session)

    # -------------------------------------------------------------------------
    # Create / delete
    # -------------------------------------------------------------------------

    def create_document(
        self,
        kind: DocumentKind,
        actor: Actor,
        payload: dict[str, Any] | None = None,
        company: str | None = None,
    ) -> Document:
        """Create a document in its workflow's initial status."""
        workflow = get_workflow(kind)
        with store_errors("create_document"):
            overrides = self._role_overrides()
            if not resolve_for_actor(actor, overrides).allows(workflow.create_capability):
                logger.warning(
                    "document_create_denied",
                    extra={"kind": workflow.kind.value, "actor": actor.username},
                )
                raise PermissionDeniedError(
                    "new", actor.username, "create", workflow.create_capability.value,
                )

            now_ms = self._clock.now_millis()
            tracking_number = self._sequences.next_tracking_number(
                workflow.kind, company, base=self._tracking_base,
            )
            document = Document(
                document_id=str(uuid4()),
                kind=workflow.kind,
                tracking_number=tracking_number,
                status=workflow.initial_status,
                requester=actor.full_name,
                created_at=now_ms,
                updated_at=now_ms,
                company=company,
                payload=dict(payload or {}),
                version=1,
            )
            self.session.add(DocumentModel.from_dto(document))
            self.session.flush()
            self._record_history(document, "create", None, actor, None)

        logger.info(
            "document_created",
            extra={
                "document_id": document.document_id,
                "kind": workflow.kind.value,
                "tracking_number": tracking_number,
                "company": company,
                "requester": actor.full_name,
            },
        )
        return document

    def delete_document(self, document_id: str, actor: Actor) -> None:
        """Delete a document and its history.

        Holders of ``can_delete_all`` may delete anything; requesters with
        ``can_delete_own`` may delete their own document while it is in the
        initial or rejected status.
        """
        with store_errors("delete_document"):
            model = self._load_model(document_id)
            document = model.to_dto()
            workflow = get_workflow(document.kind)
            capabilities = resolve_for_actor(actor, self._role_overrides())

            if not capabilities.allows(Capability.DELETE_ALL):
                own = document.is_requested_by(actor.full_name)
                if not (own and capabilities.allows(Capability.DELETE_OWN)):
                    raise PermissionDeniedError(
                        document_id, actor.username, "delete", Capability.DELETE_ALL.value,
                    )
                if document.status not in (workflow.initial_status, workflow.rejected_status):
                    raise InvalidStateTransitionError(document_id, document.status, "delete")

            self.session.execute(
                delete(DocumentTransitionModel).where(
                    DocumentTransitionModel.document_id == model.id
                )
            )
            self.session.delete(model)
            self.session.flush()

        logger.info(
            "document_deleted",
            extra={
                "document_id": document_id,
                "kind": document.kind.value,
                "status": document.status,
                "deleted_by": actor.username,
            },
        )

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def apply_transition(
        self,
        document_id: str,
        operation: TransitionOperation | str,
        actor: Actor,
        payload: dict[str, Any] | None = None,
        reason: str | None = None,
        expected_version: int | None = None,
    ) -> Document:
        """Apply one workflow operation and persist it atomically.

        Args:
            document_id: Target document.
            operation: approve, reject, edit or request_void.
            actor: Authenticated user performing the operation.
            payload: New payload (edit only).
            reason: Rejection reason (reject only; blank gets a default).
            expected_version: Version the caller last saw.  When given, a
                mismatch fails fast with ConcurrentModificationError.

        Returns:
            The persisted snapshot.
        """
        op = TransitionOperation(operation)
        with LogContext.bind(actor=actor.username, document_id=str(document_id)):
            with store_errors(op.value):
                current = self._load_model(document_id).to_dto()

                if expected_version is not None and expected_version != current.version:
                    raise ConcurrentModificationError(
                        document_id, expected_version, current.status,
                    )

                machine = ApprovalStateMachine(self._clock, self._role_overrides())
                try:
                    proposed = machine.apply(current, op, actor, payload=payload, reason=reason)
                except ApprovalKernelError as exc:
                    logger.warning(
                        "document_transition_refused",
                        extra={
                            "operation": op.value,
                            "status": current.status,
                            "code": exc.code,
                        },
                    )
                    raise

                applied = self._compare_and_swap(current, proposed)
                self._record_history(applied, op.value, current.status, actor, applied.rejection_reason)

            logger.info(
                "document_transition_applied",
                extra={
                    "operation": op.value,
                    "kind": applied.kind.value,
                    "tracking_number": applied.tracking_number,
                    "from_status": current.status,
                    "to_status": applied.status,
                    "version": applied.version,
                },
            )
        return applied

    def approve(self, document_id: str, actor: Actor, **kwargs: Any) -> Document:
        return self.apply_transition(document_id, TransitionOperation.APPROVE, actor, **kwargs)

    def reject(self, document_id: str, actor: Actor, reason: str | None = None, **kwargs: Any) -> Document:
        return self.apply_transition(
            document_id, TransitionOperation.REJECT, actor, reason=reason, **kwargs,
        )

    def edit(self, document_id: str, actor: Actor, payload: dict[str, Any], **kwargs: Any) -> Document:
        return self.apply_transition(
            document_id, TransitionOperation.EDIT, actor, payload=payload, **kwargs,
        )

    def request_void(self, document_id: str, actor: Actor, **kwargs: Any) -> Document:
        return self.apply_transition(document_id, TransitionOperation.REQUEST_VOID, actor, **kwargs)

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _role_overrides(self) -> RoleOverrides:
        if self._fixed_overrides is not None:
            return self._fixed_overrides
        return SettingsService(self.session).load_role_overrides()

    def _load_model(self, document_id: str) -> DocumentModel:
        """Load document model by id, raise if not found."""
        doc_uuid = parse_document_id(document_id)
        model = None
        if doc_uuid is not None:
            model = self.session.execute(
                select(DocumentModel)
                .where(DocumentModel.id == doc_uuid)
                .execution_options(populate_existing=True)
            ).scalar_one_or_none()
        if model is None:
            raise DocumentNotFoundError(document_id)
        return model

    def _compare_and_swap(self, current: Document, proposed: Document) -> Document:
        applied = replace(proposed, version=current.version + 1)
        result = self.session.execute(
            update(DocumentModel)
            .where(
                DocumentModel.id == UUID(current.document_id),
                DocumentModel.version == current.version,
                DocumentModel.status == current.status,
            )
            .values(
                status=applied.status,
                approvals=applied.approvals,
                void_approvals=applied.void_approvals,
                rejection_reason=applied.rejection_reason,
                rejected_by=applied.rejected_by,
                payload=applied.payload,
                updated_at=applied.updated_at,
                version=applied.version,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.warning(
                "document_concurrent_modification",
                extra={"expected_version": current.version, "status": current.status},
            )
            raise ConcurrentModificationError(
                current.document_id, current.version, current.status,
            )
        return applied

    def _record_history(
        self,
        document: Document,
        operation: str,
        from_status: str | None,
        actor: Actor,
        reason: str | None,
    ) -> None:
        self.session.add(
            DocumentTransitionModel(
                document_id=UUID(document.document_id),
                operation=operation,
                from_status=from_status,
                to_status=document.status,
                actor=actor.full_name,
                reason=reason if operation == TransitionOperation.REJECT.value else None,
                occurred_at=document.updated_at,
                resulting_version=document.version,
            )
        )
        self.session.flush()
