"""Tests for the best-effort notification system."""
from __future__ import annotations

import subprocess
import threading
import unittest
from typing import List
from unittest.mock import patch

from wifiwatch.models.notification_system import (
    Notification,
    NotificationKind,
    NotificationSystem,
    NotifySendBackend,
    build_notification,
)


class _Backend:
    def __init__(self, *, authorized: bool = True, fail: bool = False) -> None:
        self.authorized = authorized
        self.fail = fail
        self.delivered: List[Notification] = []
        self.event = threading.Event()

    def authorize(self) -> bool:
        return self.authorized

    def deliver(self, notification: Notification) -> None:
        if self.fail:
            raise RuntimeError("notification daemon unavailable")
        self.delivered.append(notification)
        self.event.set()


class NotificationSystemTest(unittest.TestCase):
    def test_delivers_when_enabled_and_authorized(self) -> None:
        backend = _Backend()
        notifier = NotificationSystem(backend)
        self.assertTrue(notifier.notify(NotificationKind.DISCONNECTED, "Home"))
        self.assertEqual(backend.delivered[0].body, 'Disconnected from "Home"')
        self.assertEqual(backend.delivered[0].identifier, "disconnection")

    def test_disabled_preference_suppresses(self) -> None:
        backend = _Backend()
        notifier = NotificationSystem(backend, enabled=lambda: False)
        self.assertFalse(notifier.notify(NotificationKind.CONNECTED, "Home"))
        self.assertEqual(backend.delivered, [])

    def test_denied_authorization_suppresses(self) -> None:
        backend = _Backend(authorized=False)
        notifier = NotificationSystem(backend)
        self.assertFalse(notifier.authorized)
        self.assertFalse(notifier.notify(NotificationKind.RECONNECTING, "Home"))
        self.assertEqual(backend.delivered, [])

    def test_authorization_can_be_requested_again(self) -> None:
        backend = _Backend(authorized=False)
        notifier = NotificationSystem(backend)
        backend.authorized = True
        self.assertTrue(notifier.request_authorization())
        self.assertTrue(notifier.notify(NotificationKind.RECONNECTING, "Home"))

    def test_delivery_errors_are_logged_not_raised(self) -> None:
        notifier = NotificationSystem(_Backend(fail=True))
        with self.assertLogs("wifiwatch.models.notification_system", level="ERROR"):
            notifier.notify(NotificationKind.CONNECTED, "Home")

    def test_failing_preference_read_suppresses(self) -> None:
        def _broken() -> bool:
            raise OSError("store locked")

        backend = _Backend()
        notifier = NotificationSystem(backend, enabled=_broken)
        self.assertFalse(notifier.notify(NotificationKind.CONNECTED, "Home"))

    def test_background_delivery(self) -> None:
        backend = _Backend()
        notifier = NotificationSystem(backend, background=True)
        notifier.notify(NotificationKind.CONNECTED, "Home", {"auto": True})
        self.assertTrue(backend.event.wait(timeout=2.0))
        self.assertEqual(backend.delivered[0].body, 'Automatically connected to "Home"')


class NotificationTextTest(unittest.TestCase):
    def test_messages(self) -> None:
        self.assertEqual(build_notification(NotificationKind.CONNECTED, "A").body, 'Connected to "A"')
        self.assertEqual(
            build_notification(NotificationKind.CONNECTION_FAILED, "A", {"reason": "bad key"}).body,
            'Failed to connect to "A": bad key',
        )
        self.assertEqual(build_notification(NotificationKind.CONNECTION_FAILED, "A").body, 'Failed to connect to "A"')
        reconnecting = build_notification(NotificationKind.RECONNECTING, "A")
        self.assertEqual(reconnecting.title, "Reconnecting")
        self.assertEqual(reconnecting.body, 'Attempting to reconnect to "A"')


class NotifySendBackendTest(unittest.TestCase):
    def test_authorize_depends_on_binary(self) -> None:
        with patch("wifiwatch.models.notification_system.shutil.which", return_value=None):
            self.assertFalse(NotifySendBackend().authorize())
        with patch("wifiwatch.models.notification_system.shutil.which", return_value="/usr/bin/notify-send"):
            self.assertTrue(NotifySendBackend().authorize())

    def test_deliver_invokes_notify_send(self) -> None:
        completed = subprocess.CompletedProcess(args=[], returncode=0, stdout="", stderr="")
        with patch("wifiwatch.models.notification_system.subprocess.run", return_value=completed) as run:
            NotifySendBackend(app_name="test").deliver(build_notification(NotificationKind.DISCONNECTED, "Home"))
        cmd = run.call_args.args[0]
        self.assertEqual(cmd[:3], ["notify-send", "--app-name", "test"])
        self.assertEqual(cmd[-1], 'Disconnected from "Home"')

    def test_deliver_raises_on_failure(self) -> None:
        completed = subprocess.CompletedProcess(args=[], returncode=1, stdout="", stderr="no dbus")
        with patch("wifiwatch.models.notification_system.subprocess.run", return_value=completed):
            with self.assertRaises(RuntimeError):
                NotifySendBackend().deliver(build_notification(NotificationKind.DISCONNECTED, "Home"))


if __name__ == "__main__":
    unittest.main()
