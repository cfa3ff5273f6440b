"""
PortalSession -- one logged-in user's session.

Responsibility:
    Wires the pieces a session needs: the notification engine polling the
    document store, the idle guard, and the scheduler that owns both
    periodic tasks.  User actions go through ``transition()`` so they count
    as activity and run in their own committed (or rolled back) database
    transaction.

Architecture position:
    Session layer -- outermost shell.  Reads ``PortalConfig``; everything
    below receives plain values.

Invariants enforced:
    - ``logout()`` is idempotent and stops every periodic task.
    - Permissions for a transition are the configured role overrides with
      the stored overrides merged on top, re-read on every call.
    - A failed transition leaves the store untouched (rolled back).

Failure modes:
    - PersistenceFailureError when the store is unreachable.
    - Typed workflow errors from ``DocumentService`` propagate unchanged.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any, Callable
from uuid import uuid4

from sqlalchemy.orm import Session

from approval_config.schema import PortalConfig
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.document import Document
from approval_kernel.domain.notifications import NotificationEvent
from approval_kernel.domain.permissions import Actor
from approval_kernel.domain.state_machine import RoleOverrides
from approval_kernel.domain.workflow import DocumentKind, TransitionOperation
from approval_kernel.logging_config import LogContext, configure_logging, get_logger
from approval_kernel.selectors.document_selector import DocumentSelector
from approval_kernel.services.document_service import DocumentService, store_errors
from approval_kernel.services.settings_service import SettingsService
from approval_session.device_store import DeviceStateStore
from approval_session.notification_engine import NotificationDiffEngine, NotificationSink
from approval_session.scheduler import PeriodicScheduler
from approval_session.session_guard import SessionGuard

logger = get_logger("session.portal")

NOTIFICATION_TASK = "notifications"
IDLE_CHECK_TASK = "idle_check"


class PortalSession:
    """A logged-in user, their notification feed and their idle timer."""

    def __init__(
        self,
        user: Actor,
        config: PortalConfig,
        session_factory: Callable[[], Session],
        clock: Clock | None = None,
        device_store: DeviceStateStore | None = None,
        on_logout: Callable[[str], Any] | None = None,
        sink: NotificationSink | None = None,
    ):
        self.user = user
        self.config = config
        self.session_id = str(uuid4())
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._on_logout = on_logout
        self._active = False
        self._logged_out = False

        configure_logging(level=config.log_level)

        self.device_store = device_store or DeviceStateStore(config.device_state_path)
        self.notifications = NotificationDiffEngine(
            user=user,
            fetch_documents=self._fetch,
            store=self.device_store,
            clock=self._clock,
            sink=sink,
            due_alert_window_days=config.due_alert_window_days,
            full_refresh_every_ticks=config.full_refresh_every_ticks,
        )
        self.guard = SessionGuard(
            on_timeout=lambda: self.logout("idle_timeout"),
            idle_timeout_seconds=config.idle_timeout_seconds,
            clock=self._clock,
        )
        self.scheduler = PeriodicScheduler(
            clock=self._clock, name=f"portal-session-{user.username}",
        )

    @property
    def is_active(self) -> bool:
        return self._active

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start(self, background: bool = True) -> list[NotificationEvent]:
        """Log in: first full load, then periodic polling and idle checks.

        Returns the events produced by the first load.
        """
        if self._logged_out:
            raise RuntimeError("Session already logged out")
        if self._active:
            return []

        with LogContext.bind(session_id=self.session_id, actor=self.user.username):
            events = self.notifications.tick(full_refresh=True)
            self.guard.start()
            self.scheduler.add_task(
                NOTIFICATION_TASK, self.config.poll_interval_seconds, self.notifications.tick,
            )
            self.scheduler.add_task(
                IDLE_CHECK_TASK,
                min(self.config.poll_interval_seconds, self.config.idle_timeout_seconds),
                self.guard.check,
            )
            if background:
                self.scheduler.start()
            self._active = True
            logger.info(
                "portal_session_started",
                extra={
                    "session_id": self.session_id,
                    "role": self.user.role,
                    "poll_interval_seconds": self.config.poll_interval_seconds,
                    "initial_events": len(events),
                },
            )
        return events

    def logout(self, reason: str = "user_logout") -> None:
        """End the session. Safe to call more than once."""
        if self._logged_out:
            return
        self._logged_out = True
        self._active = False
        self.scheduler.stop()
        self.guard.stop()
        logger.info(
            "portal_session_ended",
            extra={
                "session_id": self.session_id,
                "actor": self.user.username,
                "reason": reason,
            },
        )
        if self._on_logout is not None:
            self._on_logout(reason)

    def record_activity(self) -> None:
        self.guard.record_activity()

    def refresh(self) -> list[NotificationEvent]:
        """Full data refresh, including the due-date scan."""
        self.record_activity()
        return self.notifications.tick(full_refresh=True)

    # -------------------------------------------------------------------------
    # User actions
    # -------------------------------------------------------------------------

    def documents(self, kind: DocumentKind | None = None) -> list[Document]:
        self.record_activity()
        with self._unit_of_work("list_documents") as session:
            return DocumentSelector(session).list_documents(kind)

    def cartable(self, kind: DocumentKind | None = None) -> list[Document]:
        """Documents awaiting this user's approval."""
        self.record_activity()
        with self._unit_of_work("cartable") as session:
            overrides = self._role_overrides(session)
            return DocumentSelector(session).cartable(self.user, overrides, kind)

    def create(
        self,
        kind: DocumentKind,
        payload: dict[str, Any] | None = None,
        company: str | None = None,
    ) -> Document:
        self.record_activity()
        with self._unit_of_work("create_document") as session:
            return self._document_service(session).create_document(
                kind, self.user, payload=payload, company=company,
            )

    def transition(
        self,
        document_id: str,
        operation: TransitionOperation | str,
        **kwargs: Any,
    ) -> Document:
        """Apply a workflow operation as this user."""
        self.record_activity()
        with LogContext.bind(session_id=self.session_id):
            with self._unit_of_work(TransitionOperation(operation).value) as session:
                return self._document_service(session).apply_transition(
                    document_id, operation, self.user, **kwargs,
                )

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    @contextmanager
    def _unit_of_work(self, operation: str) -> Iterator[Session]:
        session = self._session_factory()
        try:
            with store_errors(operation):
                yield session
                session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def _fetch(self) -> list[Document]:
        with self._unit_of_work("poll_documents") as session:
            return DocumentSelector(session).list_documents()

    def _role_overrides(self, session: Session) -> RoleOverrides:
        merged = {role: dict(caps) for role, caps in self.config.role_permissions.items()}
        for role, caps in SettingsService(session).load_role_overrides().items():
            merged.setdefault(role, {}).update(caps)
        return merged

    def _document_service(self, session: Session) -> DocumentService:
        return DocumentService(
            session,
            clock=self._clock,
            role_overrides=self._role_overrides(session),
            tracking_base=self.config.tracking_base,
        )
