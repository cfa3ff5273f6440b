"""
Tests for approval_session.session_guard.SessionGuard.

Timers are replaced by a fake factory so the tests control firing; the
idle rule itself is checked through ``check()`` and the deterministic clock.
"""

import pytest

from approval_session.session_guard import SessionGuard


class FakeTimer:
    def __init__(self, interval, callback):
        self.interval = interval
        self.callback = callback
        self.started = False
        self.cancelled = False
        self.daemon = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        if not self.cancelled:
            self.callback()


class FakeTimerFactory:
    def __init__(self):
        self.timers: list[FakeTimer] = []

    def __call__(self, interval, callback):
        timer = FakeTimer(interval, callback)
        self.timers.append(timer)
        return timer

    @property
    def live(self) -> list[FakeTimer]:
        return [t for t in self.timers if t.started and not t.cancelled]


@pytest.fixture
def timers() -> FakeTimerFactory:
    return FakeTimerFactory()


@pytest.fixture
def logouts() -> list[int]:
    return []


@pytest.fixture
def guard(deterministic_clock, timers, logouts) -> SessionGuard:
    return SessionGuard(
        on_timeout=lambda: logouts.append(1),
        idle_timeout_seconds=3600,
        clock=deterministic_clock,
        timer_factory=timers,
    )


class TestTimer:
    def test_start_arms_one_daemon_timer(self, guard, timers):
        guard.start()
        assert len(timers.live) == 1
        assert timers.live[0].interval == 3600
        assert timers.live[0].daemon is True

    def test_activity_rearms(self, guard, timers):
        guard.start()
        first = timers.live[0]
        guard.record_activity()
        assert first.cancelled
        assert len(timers.live) == 1
        assert timers.live[0] is not first

    def test_activity_before_start_does_not_arm(self, guard, timers):
        guard.record_activity()
        assert timers.timers == []

    def test_timer_fires_logout_once(self, guard, timers, logouts, deterministic_clock):
        guard.start()
        timer = timers.live[0]
        deterministic_clock.advance(3600)
        timer.fire()
        timer.callback()
        assert logouts == [1]
        assert guard.fired

    def test_in_flight_callback_after_activity_does_not_log_out(
        self, guard, timers, logouts, deterministic_clock,
    ):
        guard.start()
        stale = timers.live[0]
        deterministic_clock.advance(3600)
        guard.record_activity()

        stale.callback()

        assert logouts == []
        assert not guard.fired
        assert len(timers.live) == 1
        assert timers.live[0].interval == 3600

    def test_early_callback_rearms_for_remaining_time(
        self, guard, timers, logouts, deterministic_clock,
    ):
        guard.start()
        deterministic_clock.advance(3599)
        timers.live[0].fire()

        assert logouts == []
        assert timers.live[0].interval == pytest.approx(1)
        deterministic_clock.advance(1)
        timers.live[0].fire()
        assert logouts == [1]

    def test_stop_disarms(self, guard, timers, logouts):
        guard.start()
        timer = timers.live[0]
        guard.stop()
        timer.fire()
        assert logouts == []
        assert timers.live == []


class TestCheck:
    def test_not_idle_yet(self, guard, deterministic_clock, logouts):
        guard.start()
        deterministic_clock.advance(3599)
        assert guard.check() is False
        assert logouts == []

    def test_fires_after_idle_window(self, guard, deterministic_clock, logouts, captured_logs):
        guard.start()
        deterministic_clock.advance(3600)
        assert guard.check() is True
        assert guard.check() is True
        assert logouts == [1]
        timeouts = [r for r in captured_logs() if r["message"] == "session_idle_timeout"]
        assert timeouts[0]["idle_seconds"] == 3600

    def test_activity_resets_window(self, guard, deterministic_clock, logouts):
        guard.start()
        deterministic_clock.advance(3000)
        guard.record_activity()
        deterministic_clock.advance(3000)
        assert guard.check() is False
        assert guard.last_activity == deterministic_clock.now().timestamp() - 3000

    def test_activity_after_firing_does_not_revive(self, guard, deterministic_clock, timers, logouts):
        guard.start()
        deterministic_clock.advance(3600)
        guard.check()
        guard.record_activity()
        guard.start()
        assert timers.live == []
        assert logouts == [1]

    def test_callback_failure_is_logged(self, deterministic_clock, timers, captured_logs):
        def explode():
            raise RuntimeError("ui gone")

        guard = SessionGuard(explode, 10, clock=deterministic_clock, timer_factory=timers)
        guard.start()
        deterministic_clock.advance(10)

        assert guard.check() is True
        assert any(r["message"] == "session_timeout_callback_failed" for r in captured_logs())


def test_timeout_must_be_positive():
    with pytest.raises(ValueError):
        SessionGuard(lambda: None, 0)
