"""Value types and stores used by the wifiwatch supervisor.

Link and session types describe what the driver reports, the history
classes persist the connection log, and the notification system delivers
user-facing alerts.
"""
from .link_state import AuthMaterial, ConnectRequest, ConnectionSession, LinkState, LinkStatus
from .history_entry import HistoryEntry, format_duration
from .connection_history import ConnectionHistory, MAX_HISTORY_ENTRIES
from .notification_system import Notification, NotificationKind, NotificationSystem

__all__ = [
    "AuthMaterial",
    "ConnectRequest",
    "ConnectionSession",
    "LinkState",
    "LinkStatus",
    "HistoryEntry",
    "format_duration",
    "ConnectionHistory",
    "MAX_HISTORY_ENTRIES",
    "Notification",
    "NotificationKind",
    "NotificationSystem",
]
