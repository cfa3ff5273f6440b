"""
Module: approval_kernel.selectors.document_selector
Responsibility: Read-only queries over documents: the authoritative list the
    notification engine polls, single lookups, per-user approval inboxes
    ("cartable") and transition history.
Architecture position: Kernel > Selectors.  Returns frozen domain snapshots.

Invariants enforced:
    - Lists are ordered newest-first by ``updated_at``.
    - The cartable is derived from status and capability on every call;
      it is never stored.

Failure modes:
    - DocumentNotFoundError from ``get`` for an unknown id.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select

from approval_kernel.domain.document import Document, TransitionRecord
from approval_kernel.domain.permissions import Actor, resolve_for_actor
from approval_kernel.domain.state_machine import RoleOverrides
from approval_kernel.domain.workflow import DocumentKind, get_workflow
from approval_kernel.exceptions import DocumentNotFoundError
from approval_kernel.models.document import DocumentModel, DocumentTransitionModel
from approval_kernel.selectors.base import BaseSelector


def parse_document_id(document_id: str) -> UUID | None:
    try:
        return UUID(str(document_id))
    except ValueError:
        return None


class DocumentSelector(BaseSelector[DocumentModel]):
    """Read-side queries for documents."""

    def list_documents(
        self,
        kind: DocumentKind | None = None,
        updated_since: int | None = None,
    ) -> list[Document]:
        """Latest snapshot of every document, optionally filtered."""
        stmt = select(DocumentModel)
        if kind is not None:
            stmt = stmt.where(DocumentModel.kind == DocumentKind(kind).value)
        if updated_since is not None:
            stmt = stmt.where(DocumentModel.updated_at > updated_since)
        stmt = stmt.order_by(DocumentModel.updated_at.desc())
        return [
            model.to_dto()
            for model in self.session.execute(
                stmt.execution_options(populate_existing=True)
            ).scalars()
        ]

    def find(self, document_id: str) -> Document | None:
        doc_uuid = parse_document_id(document_id)
        if doc_uuid is None:
            return None
        model = self.session.execute(
            select(DocumentModel)
            .where(DocumentModel.id == doc_uuid)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        return model.to_dto() if model is not None else None

    def get(self, document_id: str) -> Document:
        document = self.find(document_id)
        if document is None:
            raise DocumentNotFoundError(document_id)
        return document

    def cartable(
        self,
        actor: Actor,
        overrides: RoleOverrides | None = None,
        kind: DocumentKind | None = None,
    ) -> list[Document]:
        """Documents whose current stage ``actor`` is allowed to approve."""
        capabilities = resolve_for_actor(actor, overrides)
        inbox: list[Document] = []
        for document in self.list_documents(kind):
            stage = get_workflow(document.kind).current_stage(document.status)
            if stage is not None and capabilities.allows(stage.capability):
                inbox.append(document)
        return inbox

    def transition_history(self, document_id: str) -> list[TransitionRecord]:
        """Applied transitions of a document, oldest first."""
        doc_uuid = parse_document_id(document_id)
        if doc_uuid is None:
            return []
        rows = self.session.execute(
            select(DocumentTransitionModel)
            .where(DocumentTransitionModel.document_id == doc_uuid)
            .order_by(
                DocumentTransitionModel.occurred_at,
                DocumentTransitionModel.resulting_version,
            )
        ).scalars()
        return [row.to_dto() for row in rows]
