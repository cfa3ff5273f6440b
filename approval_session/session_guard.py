"""
SessionGuard -- idle timeout for a logged-in session.

Responsibility:
    Keeps one timer that is re-armed on every activity signal (input,
    navigation, explicit ``record_activity`` calls).  When the idle window
    elapses without activity, the forced-logout callback runs.

Invariants enforced:
    - The logout callback fires at most once per guard.
    - Activity after the guard has fired does not revive it.
    - Only one timer is live at any time.
    - A timer callback never fires before the idle window, measured on
      the injected clock, has elapsed.

Failure modes:
    - Exceptions from the logout callback are logged and swallowed by the
      timer thread; the guard still counts as fired.
"""

from __future__ import annotations

import threading
from typing import Any, Callable

from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.logging_config import get_logger

logger = get_logger("session.guard")

DEFAULT_IDLE_TIMEOUT_SECONDS = 3600.0

TimerFactory = Callable[[float, Callable[[], None]], Any]


class SessionGuard:
    """Fires ``on_timeout`` once after ``idle_timeout_seconds`` of inactivity.

    ``check()`` applies the same rule against the injected clock and is what
    the session scheduler and the tests drive; the timer covers the case
    where no scheduler is running.
    """

    def __init__(
        self,
        on_timeout: Callable[[], Any],
        idle_timeout_seconds: float = DEFAULT_IDLE_TIMEOUT_SECONDS,
        clock: Clock | None = None,
        timer_factory: TimerFactory = threading.Timer,
    ):
        if idle_timeout_seconds <= 0:
            raise ValueError(
                f"idle_timeout_seconds must be positive, got {idle_timeout_seconds}"
            )
        self._on_timeout = on_timeout
        self._timeout = idle_timeout_seconds
        self._clock = clock or SystemClock()
        self._timer_factory = timer_factory
        self._lock = threading.Lock()
        self._timer: Any = None
        self._last_activity: float = self._now()
        self._fired = False
        self._started = False

    @property
    def fired(self) -> bool:
        return self._fired

    @property
    def last_activity(self) -> float:
        """Epoch seconds of the last recorded activity."""
        return self._last_activity

    @property
    def idle_timeout_seconds(self) -> float:
        return self._timeout

    def start(self) -> None:
        """Arm the timer; counts as activity."""
        with self._lock:
            if self._fired:
                return
            self._started = True
            self._last_activity = self._now()
            self._rearm()

    def record_activity(self) -> None:
        """Reset the idle window."""
        with self._lock:
            if self._fired:
                return
            self._last_activity = self._now()
            if self._started:
                self._rearm()

    def check(self) -> bool:
        """Fire if the idle window has elapsed. Returns ``fired``."""
        with self._lock:
            idle = self._expire()
        if idle is not None:
            self._notify(idle)
        return self._fired

    def stop(self) -> None:
        """Disarm without firing (explicit logout)."""
        with self._lock:
            self._started = False
            self._cancel()

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _now(self) -> float:
        return self._clock.now().timestamp()

    def _rearm(self, delay: float | None = None) -> None:
        self._cancel()
        timer = self._timer_factory(self._timeout if delay is None else delay, self._on_timer)
        if hasattr(timer, "daemon"):
            timer.daemon = True
        timer.start()
        self._timer = timer

    def _cancel(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_timer(self) -> None:
        # A callback can already be running when record_activity re-arms;
        # the idle window is re-measured so fresh activity always wins.
        with self._lock:
            if not self._started:
                return
            idle = self._expire()
            if idle is None:
                self._rearm(self._timeout - (self._now() - self._last_activity))
                return
        self._notify(idle)

    def _expire(self) -> float | None:
        """Mark the guard fired if the window elapsed. Caller holds the lock."""
        if self._fired:
            return None
        idle = self._now() - self._last_activity
        if idle < self._timeout:
            return None
        self._fired = True
        self._started = False
        self._cancel()
        return idle

    def _notify(self, idle: float) -> None:
        logger.warning(
            "session_idle_timeout",
            extra={"idle_seconds": idle, "timeout_seconds": self._timeout},
        )
        try:
            self._on_timeout()
        except Exception:
            logger.exception("session_timeout_callback_failed")
