"""
Module: approval_kernel.models.document
Responsibility: ORM persistence for documents and their transition history.

Architecture position: Kernel > Models.  May import from db/base.py only
    (domain types are imported lazily inside to_dto/from_dto).

Invariants enforced:
    - Tracking numbers are unique per (kind, company).
    - ``version`` increases by exactly one on every applied transition; the
      service writes with ``WHERE version = :expected`` so two concurrent
      approvals of the same stage cannot both succeed.
    - Transition history rows are append-only.

Failure modes:
    - IntegrityError on duplicate tracking number.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import JSON, ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from approval_kernel.db.base import Base, UUIDString

if TYPE_CHECKING:
    from approval_kernel.domain.document import Document, TransitionRecord


class DocumentModel(Base):
    """Persistent document snapshot (payment order, exit permit, dispatch note)."""

    __tablename__ = "documents"

    __table_args__ = (
        UniqueConstraint(
            "kind", "company", "tracking_number",
            name="uq_documents_tracking_number",
        ),
        Index("ix_documents_kind_updated_at", "kind", "updated_at"),
        Index("ix_documents_kind_status", "kind", "status"),
    )

    kind: Mapped[str] = mapped_column(String(50), nullable=False)
    tracking_number: Mapped[int] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False)
    requester: Mapped[str] = mapped_column(String(200), nullable=False)
    company: Mapped[str | None] = mapped_column(String(200), nullable=True)
    approvals: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    void_approvals: Mapped[dict[str, Any]] = mapped_column(
        JSON, nullable=False, default=dict,
    )
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    rejected_by: Mapped[str | None] = mapped_column(String(200), nullable=True)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[int] = mapped_column(nullable=False)
    updated_at: Mapped[int] = mapped_column(nullable=False)
    version: Mapped[int] = mapped_column(nullable=False, default=1)

    def __repr__(self) -> str:
        return (
            f"<Document {self.kind}#{self.tracking_number} "
            f"status={self.status} v{self.version}>"
        )

    def to_dto(self) -> Document:
        """Convert ORM model to frozen domain snapshot."""
        from approval_kernel.domain.document import Document
        from approval_kernel.domain.workflow import DocumentKind

        return Document(
            document_id=str(self.id),
            kind=DocumentKind(self.kind),
            tracking_number=self.tracking_number,
            status=self.status,
            requester=self.requester,
            created_at=self.created_at,
            updated_at=self.updated_at,
            approvals=dict(self.approvals or {}),
            void_approvals=dict(self.void_approvals or {}),
            rejection_reason=self.rejection_reason,
            rejected_by=self.rejected_by,
            company=self.company,
            payload=dict(self.payload or {}),
            version=self.version,
        )

    @classmethod
    def from_dto(cls, dto: Document) -> DocumentModel:
        """Create ORM model from a domain snapshot."""
        return cls(
            id=UUID(dto.document_id),
            kind=dto.kind.value,
            tracking_number=dto.tracking_number,
            status=dto.status,
            requester=dto.requester,
            company=dto.company,
            approvals=dict(dto.approvals),
            void_approvals=dict(dto.void_approvals),
            rejection_reason=dto.rejection_reason,
            rejected_by=dto.rejected_by,
            payload=dict(dto.payload),
            created_at=dto.created_at,
            updated_at=dto.updated_at,
            version=dto.version,
        )


class DocumentTransitionModel(Base):
    """One applied transition. Append-only."""

    __tablename__ = "document_transitions"

    __table_args__ = (
        Index("ix_document_transitions_document", "document_id", "occurred_at"),
    )

    document_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("documents.id", ondelete="CASCADE"),
        nullable=False,
    )
    operation: Mapped[str] = mapped_column(String(50), nullable=False)
    from_status: Mapped[str | None] = mapped_column(String(50), nullable=True)
    to_status: Mapped[str] = mapped_column(String(50), nullable=False)
    actor: Mapped[str] = mapped_column(String(200), nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    occurred_at: Mapped[int] = mapped_column(nullable=False)
    resulting_version: Mapped[int] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return (
            f"<DocumentTransition {self.document_id} {self.operation} "
            f"{self.from_status}->{self.to_status}>"
        )

    def to_dto(self) -> TransitionRecord:
        """Convert ORM model to frozen history record."""
        from approval_kernel.domain.document import TransitionRecord

        return TransitionRecord(
            document_id=str(self.document_id),
            operation=self.operation,
            from_status=self.from_status,
            to_status=self.to_status,
            actor=self.actor,
            occurred_at=self.occurred_at,
            resulting_version=self.resulting_version,
            reason=self.reason,
        )
