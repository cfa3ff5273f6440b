"""
Pytest fixtures for the approval portal test suite.

Provides:
- Structured logging configured once per run, with per-test log capture
- A deterministic clock
- In-memory SQLite sessions (schema created fresh per test)
- Actor and document factories
"""

import json
import logging
from io import StringIO
from typing import Generator
from uuid import uuid4

import pytest
from sqlalchemy.orm import Session, sessionmaker

from approval_kernel.db.base import Base
from approval_kernel.db.engine import get_engine, init_engine_from_url, reset_engine
from approval_kernel.domain.clock import DeterministicClock
from approval_kernel.domain.document import Document
from approval_kernel.domain.permissions import Actor, Role
from approval_kernel.domain.workflow import DocumentKind, get_workflow
from approval_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from approval_kernel.services.document_service import DocumentService

import approval_kernel.models  # noqa: F401


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture approval_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, document_service):
            document_service.approve(...)
            logs = captured_logs()
            assert any(r["message"] == "document_transition_applied" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("approval_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Clock
# =============================================================================


@pytest.fixture
def deterministic_clock() -> DeterministicClock:
    """Clock fixed at 2024-01-01 12:00 UTC until advanced."""
    return DeterministicClock()


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture
def engine():
    """Fresh in-memory SQLite database with the full schema."""
    init_engine_from_url("sqlite:///:memory:")
    eng = get_engine()
    Base.metadata.create_all(eng)
    yield eng
    Base.metadata.drop_all(eng)
    reset_engine()


@pytest.fixture
def session_factory(engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, expire_on_commit=False)


@pytest.fixture
def session(session_factory) -> Generator[Session, None, None]:
    sess = session_factory()
    yield sess
    sess.rollback()
    sess.close()


@pytest.fixture
def document_service(session, deterministic_clock) -> DocumentService:
    """DocumentService that reads stored role overrides on every call."""
    return DocumentService(session, clock=deterministic_clock)


# =============================================================================
# Actors
# =============================================================================


@pytest.fixture
def make_actor():
    """Factory: make_actor(role, full_name=None, username=None)."""

    def _make(
        role: str | Role,
        full_name: str | None = None,
        username: str | None = None,
        can_manage_trade: bool = False,
    ) -> Actor:
        role_id = role.value if isinstance(role, Role) else role
        name = full_name or f"{role_id.title()} User"
        return Actor(
            username=username or name.lower().replace(" ", "."),
            full_name=name,
            role=role_id,
            can_manage_trade=can_manage_trade,
        )

    return _make


@pytest.fixture
def alice(make_actor) -> Actor:
    """Ordinary requester."""
    return make_actor(Role.USER, "Alice")


@pytest.fixture
def bob(make_actor) -> Actor:
    """Financial approver."""
    return make_actor(Role.FINANCIAL, "Bob")


@pytest.fixture
def carol(make_actor) -> Actor:
    """Manager approver."""
    return make_actor(Role.MANAGER, "Carol")


@pytest.fixture
def ceo(make_actor) -> Actor:
    return make_actor(Role.CEO, "Dana")


@pytest.fixture
def admin(make_actor) -> Actor:
    return make_actor(Role.ADMIN, "Root Admin")


# =============================================================================
# Documents
# =============================================================================


@pytest.fixture
def make_document():
    """Factory for in-memory snapshots (no database)."""

    def _make(
        kind: DocumentKind = DocumentKind.PAYMENT_ORDER,
        status: str | None = None,
        requester: str = "Alice",
        updated_at: int = 1_700_000_000_000,
        **fields,
    ) -> Document:
        workflow = get_workflow(kind)
        resolved = status or workflow.initial_status
        if resolved == workflow.rejected_status:
            fields.setdefault("rejection_reason", "Missing invoice")
            fields.setdefault("rejected_by", "Bob")
        return Document(
            document_id=fields.pop("document_id", str(uuid4())),
            kind=kind,
            tracking_number=fields.pop("tracking_number", 1001),
            status=resolved,
            requester=requester,
            created_at=fields.pop("created_at", updated_at),
            updated_at=updated_at,
            **fields,
        )

    return _make
