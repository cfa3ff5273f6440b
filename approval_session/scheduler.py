"""
PeriodicScheduler -- named periodic tasks with an explicit lifecycle.

Contract:
    Owns every recurring job of a logged-in session (notification polling,
    idle checks).  Each task has a name, an interval and a callback.
    ``tick()`` runs whatever is due (public for testing); ``start()`` /
    ``stop()`` drive the same ``tick()`` from a daemon thread.

Invariants enforced:
    - All due-time arithmetic uses the injected Clock.
    - A failing task is logged and rescheduled; it never stops the loop or
      the other tasks.
    - A task never runs concurrently with itself: ticks are serialized.
    - Graceful shutdown: ``stop()`` signals the loop and joins the thread.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any, Callable

from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.logging_config import get_logger

logger = get_logger("session.scheduler")


@dataclass
class ScheduledTask:
    """Mutable bookkeeping for one registered task."""

    name: str
    interval_seconds: float
    callback: Callable[[], Any]
    next_due: float
    run_count: int = 0
    failure_count: int = 0


class PeriodicScheduler:
    """In-process scheduler for a session's periodic tasks.

    Non-goals:
        - NOT a distributed scheduler.
        - Does NOT catch up missed runs: a late task runs once, then resumes
          its normal interval.
    """

    def __init__(
        self,
        clock: Clock | None = None,
        resolution_seconds: float = 0.5,
        name: str = "session-scheduler",
    ):
        self._clock = clock or SystemClock()
        self._resolution = resolution_seconds
        self._name = name
        self._tasks: dict[str, ScheduledTask] = {}
        self._lock = threading.RLock()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    # -------------------------------------------------------------------------
    # Task registry
    # -------------------------------------------------------------------------

    def add_task(
        self,
        name: str,
        interval_seconds: float,
        callback: Callable[[], Any],
        run_immediately: bool = False,
    ) -> None:
        """Register (or replace) a task."""
        if interval_seconds <= 0:
            raise ValueError(f"interval_seconds must be positive, got {interval_seconds}")
        now = self._now()
        with self._lock:
            self._tasks[name] = ScheduledTask(
                name=name,
                interval_seconds=interval_seconds,
                callback=callback,
                next_due=now if run_immediately else now + interval_seconds,
            )
        logger.debug(
            "scheduler_task_added",
            extra={"task": name, "interval_seconds": interval_seconds},
        )

    def remove_task(self, name: str) -> bool:
        with self._lock:
            removed = self._tasks.pop(name, None) is not None
        if removed:
            logger.debug("scheduler_task_removed", extra={"task": name})
        return removed

    def task(self, name: str) -> ScheduledTask | None:
        with self._lock:
            return self._tasks.get(name)

    @property
    def task_names(self) -> list[str]:
        with self._lock:
            return sorted(self._tasks)

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------

    def tick(self) -> int:
        """Run every task that is due (public for testing).

        Returns the number of tasks that ran.
        """
        ran = 0
        with self._lock:
            now = self._now()
            due = [t for t in self._tasks.values() if t.next_due <= now]
            for task in due:
                if self._stop_event.is_set():
                    break
                self._run_task(task)
                task.next_due = self._now() + task.interval_seconds
                ran += 1
        return ran

    def run_now(self, name: str) -> None:
        """Run a task immediately and restart its interval."""
        with self._lock:
            task = self._tasks.get(name)
            if task is None:
                raise KeyError(name)
            self._run_task(task)
            task.next_due = self._now() + task.interval_seconds

    def start(self) -> None:
        """Start the scheduler in a background thread."""
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name=self._name,
            daemon=True,
        )
        self._thread.start()
        logger.info("scheduler_started", extra={"tasks": self.task_names})

    def stop(self, timeout: float = 30.0) -> None:
        """Signal stop and wait for the scheduler thread to finish."""
        self._stop_event.set()
        if (
            self._thread is not None
            and self._thread.is_alive()
            and self._thread is not threading.current_thread()
        ):
            self._thread.join(timeout=timeout)
        logger.info("scheduler_stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _now(self) -> float:
        return self._clock.now().timestamp()

    def _run_task(self, task: ScheduledTask) -> None:
        try:
            task.callback()
            task.run_count += 1
        except Exception:
            task.failure_count += 1
            logger.exception(
                "scheduled_task_failed",
                extra={"task": task.name, "failure_count": task.failure_count},
            )

    def _run_loop(self) -> None:
        """Background loop. Exits when stop_event is set."""
        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception:
                logger.exception("scheduler_tick_exception")
            self._stop_event.wait(timeout=self._resolution)
