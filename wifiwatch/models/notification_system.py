from __future__ import annotations
import logging
import shutil
import subprocess
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Mapping, Optional, Protocol

logger = logging.getLogger(__name__)


class NotificationKind(Enum):
    CONNECTED = "connection-success"
    CONNECTION_FAILED = "connection-failure"
    DISCONNECTED = "disconnection"
    RECONNECTING = "reconnecting"


@dataclass(frozen=True)
class Notification:
    kind: NotificationKind
    ssid: str
    title: str
    body: str

    @property
    def identifier(self) -> str:
        return self.kind.value


def build_notification(kind: NotificationKind, ssid: str, extra: Optional[Mapping[str, Any]] = None) -> Notification:
    """Compose the user-facing title and body for an event."""
    extra = extra or {}
    if kind is NotificationKind.CONNECTED:
        if extra.get("auto"):
            body = f'Automatically connected to "{ssid}"'
        else:
            body = f'Connected to "{ssid}"'
        return Notification(kind, ssid, "Connected", body)
    if kind is NotificationKind.CONNECTION_FAILED:
        reason = extra.get("reason")
        if reason:
            body = f'Failed to connect to "{ssid}": {reason}'
        else:
            body = f'Failed to connect to "{ssid}"'
        return Notification(kind, ssid, "Connection Failed", body)
    if kind is NotificationKind.DISCONNECTED:
        return Notification(kind, ssid, "Disconnected", f'Disconnected from "{ssid}"')
    return Notification(kind, ssid, "Reconnecting", f'Attempting to reconnect to "{ssid}"')


class NotificationBackend(Protocol):
    def authorize(self) -> bool: ...

    def deliver(self, notification: Notification) -> None: ...


class LoggingBackend:
    """Writes notifications to the application log."""

    def authorize(self) -> bool:
        return True

    def deliver(self, notification: Notification) -> None:
        if notification.kind in (NotificationKind.CONNECTED, NotificationKind.RECONNECTING):
            logger.info("NOTIFY %s: %s", notification.title, notification.body)
        else:
            logger.warning("NOTIFY %s: %s", notification.title, notification.body)


class NotifySendBackend:
    """Desktop notifications through the freedesktop ``notify-send`` tool."""

    def __init__(self, app_name: str = "wifiwatch", timeout: float = 5.0) -> None:
        self.app_name = app_name
        self.timeout = timeout

    def authorize(self) -> bool:
        return shutil.which("notify-send") is not None

    def deliver(self, notification: Notification) -> None:
        result = subprocess.run(
            ["notify-send", "--app-name", self.app_name, notification.title, notification.body],
            capture_output=True,
            text=True,
            timeout=self.timeout,
        )
        if result.returncode != 0:
            raise RuntimeError(result.stderr.strip() or f"notify-send exited with code {result.returncode}")


class NotificationSystem:
    """Best-effort user alerts for connection lifecycle events.

    Every call is dropped silently when notifications are disabled in the
    preferences or the backend refused authorization. Delivery errors are
    logged and never reach the caller.
    """

    def __init__(
        self,
        backend: Optional[NotificationBackend] = None,
        *,
        enabled: Optional[Callable[[], bool]] = None,
        background: bool = False,
    ) -> None:
        self.backend: NotificationBackend = backend if backend is not None else LoggingBackend()
        self._enabled = enabled or (lambda: True)
        self.background = background
        self.authorized = False
        self.request_authorization()

    def request_authorization(self) -> bool:
        try:
            self.authorized = bool(self.backend.authorize())
        except Exception as exc:
            logger.error("Notification authorization error: %s", exc)
            self.authorized = False
        logger.debug("Notification authorization: %s", self.authorized)
        return self.authorized

    @property
    def is_enabled(self) -> bool:
        try:
            return bool(self._enabled())
        except Exception as exc:
            logger.warning("Could not read notification preference: %s", exc)
            return False

    def notify(self, kind: NotificationKind, ssid: str, extra: Optional[Mapping[str, Any]] = None) -> bool:
        """Send a notification; returns whether delivery was dispatched."""
        if not self.is_enabled:
            return False
        if not self.authorized:
            return False
        try:
            notification = build_notification(kind, ssid, extra)
        except Exception:
            logger.exception("Could not build %s notification", kind)
            return False
        if self.background:
            thread = threading.Thread(target=self._deliver, args=(notification,), daemon=True)
            thread.start()
        else:
            self._deliver(notification)
        return True

    def _deliver(self, notification: Notification) -> None:
        try:
            self.backend.deliver(notification)
        except Exception as exc:
            logger.error("Failed to send notification %s: %s", notification.identifier, exc)
