"""
NotificationDiffEngine -- poll, diff, classify.

Responsibility:
    On every tick, fetches the authoritative document list, selects the
    documents that changed since the device's ``last_notification_check``
    checkpoint, runs each through the pure decision table in
    ``approval_kernel.domain.notifications`` and hands the resulting events
    to a sink.  On a full refresh (first load, then every
    ``full_refresh_every_ticks`` ticks when configured) it also runs the
    aggregated due-date scan.

Architecture position:
    Session layer -- stateful shell around the pure rules.  Knows nothing
    about SQLAlchemy; the document source is any zero-argument callable.

Invariants enforced:
    - At most one event per ``(document_id, status)`` per tick.
    - A document snapshot already seen with the same status and
      ``updated_at`` is never reported twice, even if it is delivered
      again or out of order.
    - The checkpoint advances only after a successful fetch; a failed
      fetch leaves it untouched so the next tick retries the window.
    - The checkpoint is the tick's start time, taken before the fetch, so
      a change committed while the fetch is in flight is reported on the
      next tick instead of being lost.

Failure modes:
    - Exceptions from the document source propagate to the caller (the
      scheduler logs them and keeps polling).
    - Changes overwritten between two polls are not reported (accepted).
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import replace

from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.document import Document
from approval_kernel.domain.notifications import (
    NotificationEvent,
    classify_change,
    scan_due_dates,
)
from approval_kernel.domain.permissions import Actor
from approval_kernel.logging_config import get_logger
from approval_session.device_store import DeviceStateStore

logger = get_logger("session.notifications")

DocumentSource = Callable[[], Sequence[Document]]
NotificationSink = Callable[[NotificationEvent], None]


class NotificationDiffEngine:
    """Per-session change detector.

    Contract:
        ``tick()`` returns the events produced by that tick (already passed
        to ``sink``) and appends them to ``inbox``, newest first.
    """

    def __init__(
        self,
        user: Actor,
        fetch_documents: DocumentSource,
        store: DeviceStateStore,
        clock: Clock | None = None,
        sink: NotificationSink | None = None,
        due_alert_window_days: int = 2,
        full_refresh_every_ticks: int = 0,
    ):
        self._user = user
        self._fetch = fetch_documents
        self._store = store
        self._clock = clock or SystemClock()
        self._sink = sink
        self._due_window = due_alert_window_days
        self._refresh_every = full_refresh_every_ticks
        self._tick_count = 0
        self._last_seen: dict[str, Document] = {}
        self._inbox: list[NotificationEvent] = []

    @property
    def last_seen_documents(self) -> dict[str, Document]:
        return dict(self._last_seen)

    @property
    def inbox(self) -> list[NotificationEvent]:
        return list(self._inbox)

    def tick(self, full_refresh: bool = False) -> list[NotificationEvent]:
        """Run one poll-diff-notify cycle."""
        tick_start = self._clock.now()
        tick_start_ms = self._clock.now_millis()
        first_load = self._tick_count == 0

        documents = list(self._fetch())
        last_check = self._store.last_notification_check

        events: list[NotificationEvent] = []
        emitted: set[tuple[str | None, str | None]] = set()
        for document in documents:
            if document.updated_at <= last_check:
                continue
            if self._already_seen(document):
                continue
            event = classify_change(document, self._user, tick_start_ms)
            if event is None or event.dedupe_key in emitted:
                continue
            emitted.add(event.dedupe_key)
            events.append(event)

        if full_refresh or first_load or self._refresh_due():
            due_alert = scan_due_dates(documents, tick_start, self._due_window)
            if due_alert is not None:
                events.append(due_alert)

        self._store.set_last_notification_check(tick_start_ms)
        self._last_seen = {d.document_id: d for d in documents}
        self._tick_count += 1

        for event in events:
            self._inbox.insert(0, event)
            if self._sink is not None:
                self._sink(event)

        logger.debug(
            "notification_tick_completed",
            extra={
                "user": self._user.username,
                "documents": len(documents),
                "events": len(events),
                "checkpoint": tick_start_ms,
            },
        )
        return events

    def mark_all_read(self) -> None:
        """Mark every inbox event read and advance each channel's marker."""
        latest: dict[str, int] = {}
        for event in self._inbox:
            latest[event.channel] = max(latest.get(event.channel, 0), event.created_at)
        self._inbox = [replace(event, read=True) for event in self._inbox]
        for channel, millis in latest.items():
            self._store.mark_read(channel, millis)

    def unread_count(self) -> int:
        return self._store.unread_count(self._inbox)

    def clear(self) -> None:
        self._inbox = []

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _already_seen(self, document: Document) -> bool:
        previous = self._last_seen.get(document.document_id)
        if previous is None:
            return False
        if previous.status == document.status and previous.updated_at >= document.updated_at:
            return True
        # Older snapshot delivered after a newer one
        return previous.updated_at > document.updated_at

    def _refresh_due(self) -> bool:
        return self._refresh_every > 0 and self._tick_count % self._refresh_every == 0

