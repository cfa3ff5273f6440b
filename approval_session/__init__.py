"""
Session layer: one logged-in user's periodic work.

Owns the notification poller, the idle guard and the scheduler that runs
them, plus the device-local state that survives restarts.
"""

from approval_session.device_store import DeviceStateStore
from approval_session.notification_engine import NotificationDiffEngine
from approval_session.portal import PortalSession
from approval_session.scheduler import PeriodicScheduler
from approval_session.session_guard import SessionGuard

__all__ = [
    "DeviceStateStore",
    "NotificationDiffEngine",
    "PeriodicScheduler",
    "PortalSession",
    "SessionGuard",
]
