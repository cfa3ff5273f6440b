"""
Notification rules -- which document changes a given user should hear about.

Responsibility:
    Pure decision table mapping (kind, status, user role, requester) to at
    most one ``NotificationEvent``, plus the due-date scan that aggregates
    upcoming cheque dates into a single alert.  The stateful polling engine
    that feeds documents through these rules lives in
    ``approval_session.notification_engine``.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - ``classify_change`` yields at most one event per document snapshot;
      rules are evaluated in order and the first match wins.
    - A user never hears about their own newly created document while it
      sits in its initial status.
    - ``scan_due_dates`` emits at most one aggregated event, counting only
      dates with ``0 <= diff_days <= window``.

Failure modes:
    (none) -- unparseable dates are skipped.
"""

from __future__ import annotations

import math
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Any

from approval_kernel.domain.document import Document
from approval_kernel.domain.permissions import Actor, Role
from approval_kernel.domain.workflow import DocumentKind, get_workflow

DUE_ALERT_CHANNEL = "due_dates"
_DAY = timedelta(days=1)


@dataclass(frozen=True)
class NotificationEvent:
    """An ephemeral, per-session notification. Never persisted server-side."""

    event_id: str
    title: str
    body: str
    created_at: int
    channel: str
    document_id: str | None = None
    status: str | None = None
    read: bool = False

    @property
    def dedupe_key(self) -> tuple[str | None, str | None]:
        return (self.document_id, self.status)


_KIND_NOUNS: dict[DocumentKind, str] = {
    DocumentKind.PAYMENT_ORDER: "Payment order",
    DocumentKind.EXIT_PERMIT: "Exit permit",
    DocumentKind.WAREHOUSE_DISPATCH: "Dispatch note",
}


def _event(document: Document, title: str, body: str, now_ms: int) -> NotificationEvent:
    return NotificationEvent(
        event_id=f"{document.document_id}:{document.status}:{document.updated_at}",
        title=title,
        body=body,
        created_at=now_ms,
        channel=DocumentKind(document.kind).value,
        document_id=document.document_id,
        status=document.status,
    )


def _requester_outcome(
    document: Document,
    noun: str,
    now_ms: int,
) -> NotificationEvent | None:
    workflow = get_workflow(document.kind)
    status = document.status
    number = document.tracking_number

    if status == workflow.final_status:
        return _event(
            document,
            f"{noun} approved",
            f"Your request ({number}) was fully approved.",
            now_ms,
        )
    if status == workflow.rejected_status:
        reason = document.rejection_reason or "unspecified"
        return _event(
            document,
            f"{noun} rejected",
            f"{noun} {number} was rejected. Reason: {reason}",
            now_ms,
        )
    if status == workflow.voided_status:
        return _event(
            document,
            f"{noun} voided",
            f"{noun} {number} has been voided.",
            now_ms,
        )
    return None


def classify_change(
    document: Document,
    user: Actor,
    now_ms: int,
) -> NotificationEvent | None:
    """Decide whether ``user`` should be notified about ``document``.

    Evaluated in order, first match wins:

    1. own document in the initial status -> nothing
    2. own document fully approved, rejected (with reason) or voided
       -> the requester outcome, whatever the user's role
    3. admin -> "status changed"
    4. initial status, first-stage role -> "new request"
    5. stage k approved, stage k+1 role -> "awaiting you"
    6. final status, completion role -> "fully approved"
    7. void pending stage k, stage k role -> "void awaiting you"
    """
    workflow = get_workflow(document.kind)
    status = document.status
    noun = _KIND_NOUNS[DocumentKind(document.kind)]
    number = document.tracking_number
    own = document.is_requested_by(user.full_name)

    if status == workflow.initial_status and own:
        return None

    if own:
        outcome = _requester_outcome(document, noun, now_ms)
        if outcome is not None:
            return outcome

    if user.role == Role.ADMIN.value:
        return _event(
            document,
            f"Status changed ({number})",
            f"{noun} {number} is now '{status}'.",
            now_ms,
        )

    if status in workflow.open_statuses:
        stage = workflow.current_stage(status)
        if stage is not None and user.role in stage.notify_roles:
            if status == workflow.initial_status:
                return _event(
                    document,
                    f"New {noun.lower()}",
                    f"No. {number} | requested by {document.requester}",
                    now_ms,
                )
            return _event(
                document,
                f"{noun} {number} advanced",
                f"{noun} {number} is awaiting your {stage.label} approval.",
                now_ms,
            )
        return None

    if status == workflow.final_status:
        if user.role in workflow.completion_roles:
            return _event(
                document,
                f"{noun} approved",
                f"{noun} {number} was fully approved and is ready for action.",
                now_ms,
            )
        return None

    if workflow.is_void_status(status):
        stage = workflow.current_stage(status)
        if stage is not None and user.role in stage.notify_roles:
            return _event(
                document,
                f"Void request ({number})",
                f"Voiding {noun.lower()} {number} awaits your {stage.label} approval.",
                now_ms,
            )
    return None


# =============================================================================
# Due-date scan
# =============================================================================


def parse_due_date(value: Any) -> date | None:
    """Parse an ISO ``YYYY-MM-DD`` date (or datetime prefix); None if invalid."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        return None
    try:
        return date.fromisoformat(value.strip()[:10])
    except ValueError:
        return None


def diff_days(due: date, now: datetime) -> int:
    """Whole days until ``due`` (midnight, in ``now``'s timezone), rounded up."""
    due_moment = datetime.combine(due, time.min, tzinfo=now.tzinfo)
    return math.ceil((due_moment - now) / _DAY)


def iter_due_dates(document: Document) -> Iterable[date]:
    """Yield cheque due dates carried in a payment order's payment lines."""
    for line in document.payload.get("payment_details") or ():
        if not isinstance(line, dict):
            continue
        if line.get("method") != "cheque":
            continue
        due = parse_due_date(line.get("cheque_date"))
        if due is not None:
            yield due


def scan_due_dates(
    documents: Iterable[Document],
    now: datetime,
    window_days: int = 2,
) -> NotificationEvent | None:
    """Aggregate every due date within ``[0, window_days]`` into one alert."""
    count = sum(
        1
        for document in documents
        for due in iter_due_dates(document)
        if 0 <= diff_days(due, now) <= window_days
    )
    if count == 0:
        return None
    now_ms = int(now.timestamp() * 1000)
    return NotificationEvent(
        event_id=f"{DUE_ALERT_CHANNEL}:{now_ms}",
        title="Cheque due-date alert",
        body=f"{count} cheque(s) fall due within the next {window_days} days.",
        created_at=now_ms,
        channel=DUE_ALERT_CHANNEL,
    )
