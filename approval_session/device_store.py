"""
DeviceStateStore -- durable per-device client state.

Responsibility:
    Persists the small amount of state a logged-in device needs across
    restarts: the ``last_notification_check`` checkpoint of the notification
    engine and per-channel read markers (``channel -> last_read_ms``).
    Stored as one JSON document, written atomically.

Invariants enforced:
    - ``last_notification_check`` never moves backwards.
    - Read markers never move backwards.
    - A missing or corrupt file reads as empty state; a corrupt file is
      logged, not silently accepted.

Failure modes:
    - OSError from the filesystem on write propagates.
"""

from __future__ import annotations

import json
import os
import threading
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from approval_kernel.domain.notifications import NotificationEvent
from approval_kernel.logging_config import get_logger

logger = get_logger("session.device_store")

LAST_NOTIFICATION_CHECK_KEY = "last_notification_check"
READ_STATE_KEY = "read_state"


class DeviceStateStore:
    """JSON-file backed device state."""

    def __init__(self, path: Path | str):
        self._path = Path(path).expanduser()
        self._lock = threading.Lock()
        self._state: dict[str, Any] = self._load()

    @property
    def path(self) -> Path:
        return self._path

    # -- notification checkpoint --------------------------------------------

    @property
    def last_notification_check(self) -> int:
        with self._lock:
            return int(self._state.get(LAST_NOTIFICATION_CHECK_KEY, 0))

    def set_last_notification_check(self, millis: int) -> int:
        """Advance the checkpoint; returns the stored value."""
        with self._lock:
            current = int(self._state.get(LAST_NOTIFICATION_CHECK_KEY, 0))
            stored = max(current, int(millis))
            self._state[LAST_NOTIFICATION_CHECK_KEY] = stored
            self._save()
        return stored

    # -- read state ---------------------------------------------------------

    def last_read(self, channel: str) -> int:
        with self._lock:
            return int(self._state.get(READ_STATE_KEY, {}).get(channel, 0))

    def mark_read(self, channel: str, millis: int) -> None:
        with self._lock:
            read_state = self._state.setdefault(READ_STATE_KEY, {})
            read_state[channel] = max(int(read_state.get(channel, 0)), int(millis))
            self._save()
        logger.debug("channel_marked_read", extra={"channel": channel, "read_at": millis})

    def unread_count(self, events: Iterable[NotificationEvent]) -> int:
        """Events newer than their channel's read marker."""
        with self._lock:
            read_state = dict(self._state.get(READ_STATE_KEY, {}))
        return sum(
            1
            for event in events
            if not event.read and event.created_at > int(read_state.get(event.channel, 0))
        )

    # -- persistence --------------------------------------------------------

    def _load(self) -> dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            with open(self._path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError):
            logger.warning("device_state_unreadable", extra={"path": str(self._path)}, exc_info=True)
            return {}
        if not isinstance(data, dict):
            logger.warning("device_state_unreadable", extra={"path": str(self._path)})
            return {}
        return data

    def _save(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(self._state, f, sort_keys=True)
        os.replace(tmp, self._path)
