"""Connection lifecycle supervisor with bounded automatic reconnection."""
from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from time import monotonic
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from wifiwatch.driver import Connector, CredentialLookup, DriverStateReader
from wifiwatch.metrics import MetricsLogger
from wifiwatch.models.connection_history import ConnectionHistory
from wifiwatch.models.link_state import ConnectRequest, ConnectionSession, LinkStatus
from wifiwatch.models.notification_system import NotificationKind, NotificationSystem
from wifiwatch.preferences import Preferences

logger = logging.getLogger(__name__)


class SupervisorPhase(Enum):
    IDLE = "idle"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


@dataclass(slots=True)
class SupervisorConfig:
    """Timing and retry settings for :class:`ConnectionSupervisor`."""

    poll_interval: float = 5.0
    reconnect_delay: float = 2.0
    max_attempts: int = 3
    connect_timeout: Optional[float] = None
    record_failures: bool = False

    def __post_init__(self) -> None:
        if self.poll_interval <= 0:
            raise ValueError("poll_interval must be positive")
        if self.reconnect_delay < 0:
            raise ValueError("reconnect_delay must not be negative")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.connect_timeout is not None and self.connect_timeout <= 0:
            raise ValueError("connect_timeout must be positive when provided")


@dataclass
class SupervisorState:
    phase: SupervisorPhase = SupervisorPhase.IDLE
    last_ssid: Optional[str] = None
    session: Optional[ConnectionSession] = None
    attempts: int = 0
    attempt_task: Optional["asyncio.Task[bool]"] = None
    # ssid whose connection was already announced by the reconnect path
    reconnected_ssid: Optional[str] = None
    last_status: Optional[LinkStatus] = None


class ConnectionSupervisor:
    """Poll the driver, track transitions and reconnect when the link drops.

    One instance owns all lifecycle state. The poll loop and the reconnect
    task both mutate it under ``_lock``; at most one reconnect attempt is in
    flight at any time and at most ``max_attempts`` are made until the next
    successful connection resets the counter.
    """

    def __init__(
        self,
        driver: DriverStateReader,
        credentials: CredentialLookup,
        connector: Connector,
        *,
        history: Optional[ConnectionHistory] = None,
        notifier: Optional[NotificationSystem] = None,
        preferences: Optional[Preferences] = None,
        config: Optional[SupervisorConfig] = None,
        log: Union[MetricsLogger, str, Path, None] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.driver = driver
        self.credentials = credentials
        self.connector = connector
        self.history = history if history is not None else ConnectionHistory()
        self.preferences = preferences
        if notifier is None:
            notifier = NotificationSystem(
                enabled=preferences.is_notifications_enabled if preferences is not None else None
            )
        self.notifier = notifier
        self.config = config if config is not None else SupervisorConfig()

        if isinstance(log, MetricsLogger):
            self.metrics: Optional[MetricsLogger] = log
        elif log is None:
            self.metrics = None
        else:
            self.metrics = MetricsLogger(log)

        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._lock = threading.RLock()
        self.state = SupervisorState()
        self._stop_event: Optional[asyncio.Event] = None

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------
    @property
    def attempts(self) -> int:
        with self._lock:
            return self.state.attempts

    @property
    def in_progress(self) -> bool:
        with self._lock:
            task = self.state.attempt_task
            return task is not None and not task.done()

    @property
    def phase(self) -> SupervisorPhase:
        with self._lock:
            return self.state.phase

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            session = self.state.session
            status = self.state.last_status
            return {
                "phase": self.state.phase.value,
                "ssid": self.state.last_ssid,
                "session_started_at": session.started_at.isoformat() if session else None,
                "session_elapsed": session.elapsed(self._clock()) if session else None,
                "attempts": self.state.attempts,
                "max_attempts": self.config.max_attempts,
                "reconnect_in_progress": self.in_progress,
                "link_state": status.state.value if status else None,
                "rssi": status.rssi if status else None,
            }

    # ------------------------------------------------------------------
    # Poll step
    # ------------------------------------------------------------------
    async def poll_once(self) -> SupervisorPhase:
        """Query the driver once and apply any transition. Never raises."""
        try:
            status = await asyncio.to_thread(self.driver.query_link_state)
            if not isinstance(status, LinkStatus):
                raise TypeError(f"driver returned {type(status).__name__}, expected LinkStatus")
        except Exception as exc:
            logger.warning("Link state query failed: %s", exc)
            status = LinkStatus.error()

        with self._lock:
            self.state.last_status = status

        try:
            if status.is_connected:
                if status.ssid and status.ssid != self.state.last_ssid:
                    await self._handle_new_connection(status.ssid)
            else:
                await self._handle_disconnection()
        except Exception:
            logger.exception("Poll step failed while handling %s", status.state.value)
        return self.phase

    async def _handle_new_connection(self, ssid: str) -> None:
        with self._lock:
            previous = self.state.last_ssid
            announced = self.state.reconnected_ssid == ssid
            self.state.reconnected_ssid = None
            self.state.last_ssid = ssid
            self.state.session = ConnectionSession(ssid, self._clock())
            self.state.attempts = 0
            self.state.phase = SupervisorPhase.CONNECTED

        if previous is not None:
            # switched networks without an observed drop
            self.history.record_disconnection(previous)
        self.history.record_connection(ssid)
        logger.info("Connection established to %s", ssid)
        await self._log_event("connected", status="ok", ssid=ssid, extra={"auto": announced})
        if not announced:
            self.notifier.notify(NotificationKind.CONNECTED, ssid)

    async def _handle_disconnection(self) -> None:
        with self._lock:
            previous = self.state.last_ssid
            if previous is None:
                return
            session = self.state.session
            self.state.session = None
            self.state.last_ssid = None
            self.state.reconnected_ssid = None
            self.state.phase = SupervisorPhase.IDLE

        self.history.record_disconnection(previous)
        self.notifier.notify(NotificationKind.DISCONNECTED, previous)
        elapsed = session.elapsed(self._clock()) if session else None
        logger.info("Disconnected from %s", previous)
        await self._log_event("disconnected", status="ok", ssid=previous, extra={"duration": elapsed})

        if self._preference("is_auto_reconnect_enabled"):
            self.request_reconnect(previous)

    # ------------------------------------------------------------------
    # Reconnect
    # ------------------------------------------------------------------
    def request_reconnect(self, ssid: str) -> bool:
        """Schedule a reconnect attempt; returns False when throttled.

        Must be called from inside the running event loop.
        """
        with self._lock:
            if self.in_progress:
                logger.debug("Reconnect to %s skipped: attempt already in flight", ssid)
                return False
            if self.state.attempts >= self.config.max_attempts:
                logger.info(
                    "Reconnect to %s skipped: %d/%d attempts used",
                    ssid,
                    self.state.attempts,
                    self.config.max_attempts,
                )
                return False
            self.state.attempts += 1
            attempt = self.state.attempts
            self.state.phase = SupervisorPhase.RECONNECTING
            loop = asyncio.get_running_loop()
            self.state.attempt_task = loop.create_task(
                self._reconnect(ssid, attempt),
                name=f"wifiwatch-reconnect-{ssid}-{attempt}",
            )

        logger.info("Attempting to reconnect to %s (attempt %d/%d)", ssid, attempt, self.config.max_attempts)
        self.notifier.notify(NotificationKind.RECONNECTING, ssid)
        return True

    def cancel_reconnect(self) -> bool:
        with self._lock:
            task = self.state.attempt_task
            if task is None or task.done():
                return False
            task.cancel()
        logger.info("Reconnect attempt cancelled")
        return True

    async def join_reconnect(self) -> Optional[bool]:
        """Wait for the in-flight attempt; ``None`` if absent or cancelled."""
        with self._lock:
            task = self.state.attempt_task
        if task is None:
            return None
        await asyncio.wait({task})
        if task.cancelled():
            return None
        return task.result()

    async def _reconnect(self, ssid: str, attempt: int) -> bool:
        try:
            await asyncio.sleep(self.config.reconnect_delay)

            try:
                auth = await asyncio.to_thread(self.credentials.lookup_credential, ssid)
            except Exception as exc:
                logger.error("Credential lookup for %s failed: %s", ssid, exc)
                auth = None
            if auth is None:
                logger.error("No saved credentials for %s", ssid)
                await self._log_event("reconnect", status="no_credentials", ssid=ssid, extra={"attempt": attempt})
                return False

            request = ConnectRequest(ssid=ssid, auth=auth, auto_initiated=True, save_on_success=False)
            success, reason = await self._connect(request)
            if success:
                with self._lock:
                    self.state.attempts = 0
                logger.info("Reconnection successful to %s", ssid)
                if self._mark_auto_connected(ssid):
                    self.notifier.notify(NotificationKind.CONNECTED, ssid, {"auto": True})
                await self._log_event("reconnect", status="ok", ssid=ssid, extra={"attempt": attempt})
                return True

            logger.error("Reconnection failed to %s: %s", ssid, reason)
            self.notifier.notify(NotificationKind.CONNECTION_FAILED, ssid, {"reason": reason})
            if self.config.record_failures:
                self.history.record_failure(ssid, reason or "reconnect failed")
            await self._log_event(
                "reconnect",
                status="failed",
                ssid=ssid,
                message=reason,
                extra={"attempt": attempt},
            )
            return False
        except asyncio.CancelledError:
            logger.debug("Reconnect attempt %d to %s cancelled", attempt, ssid)
            raise
        finally:
            with self._lock:
                if self.state.phase is SupervisorPhase.RECONNECTING:
                    self.state.phase = SupervisorPhase.IDLE

    async def _connect(self, request: ConnectRequest) -> Tuple[bool, Optional[str]]:
        try:
            if self.config.connect_timeout is not None:
                success = await asyncio.wait_for(self.connector.connect(request), self.config.connect_timeout)
            else:
                success = await self.connector.connect(request)
        except asyncio.TimeoutError:
            return False, f"timed out after {self.config.connect_timeout:g}s"
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            return False, str(exc) or type(exc).__name__
        if success:
            return True, None
        return False, "connection failed"

    # ------------------------------------------------------------------
    # Auto-connect on launch
    # ------------------------------------------------------------------
    def _auto_connect_candidates(self) -> List[str]:
        saved = getattr(self.credentials, "saved_networks", None)
        if not callable(saved):
            return []
        networks = list(saved())
        epoch = datetime.min.replace(tzinfo=timezone.utc)

        def _last_seen(ssid: str) -> datetime:
            entry = self.history.get_last_successful_connection(ssid)
            return entry.connected_at if entry else epoch

        return sorted(networks, key=_last_seen, reverse=True)

    async def auto_connect(self) -> Optional[str]:
        """Join the most recently used saved network when the link is down."""
        if not self._preference("is_auto_connect_enabled"):
            return None
        try:
            status = await asyncio.to_thread(self.driver.query_link_state)
        except Exception as exc:
            logger.warning("Link state query failed before auto-connect: %s", exc)
            status = LinkStatus.error()
        if status.is_connected:
            return None

        for ssid in self._auto_connect_candidates():
            try:
                auth = await asyncio.to_thread(self.credentials.lookup_credential, ssid)
            except Exception as exc:
                logger.error("Credential lookup for %s failed: %s", ssid, exc)
                continue
            if auth is None:
                continue
            request = ConnectRequest(ssid=ssid, auth=auth, auto_initiated=True, save_on_success=False)
            success, reason = await self._connect(request)
            await self._log_event(
                "auto_connect",
                status="ok" if success else "failed",
                ssid=ssid,
                message=reason,
            )
            if success:
                logger.info("Automatically connected to %s", ssid)
                if self._mark_auto_connected(ssid):
                    self.notifier.notify(NotificationKind.CONNECTED, ssid, {"auto": True})
                return ssid
            logger.info("Auto-connect to %s failed: %s", ssid, reason)
        return None

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------
    async def run(self, runtime: Optional[float] = None) -> None:
        """Poll at ``poll_interval`` until stopped or ``runtime`` elapses."""
        stop_event = asyncio.Event()
        self._stop_event = stop_event
        deadline = monotonic() + runtime if runtime else None

        await self._log_event("monitor_start", status="pending")
        stop_status = "ok"
        try:
            await self.auto_connect()
            while not stop_event.is_set():
                if deadline and monotonic() >= deadline:
                    break
                await self.poll_once()
                await self._sleep_with_stop(self.config.poll_interval, stop_event, deadline)
        except asyncio.CancelledError:
            stop_status = "cancelled"
            raise
        finally:
            stop_event.set()
            self.cancel_reconnect()
            await self._log_event("monitor_stop", status=stop_status)

    def request_stop(self) -> None:
        if self._stop_event:
            self._stop_event.set()

    async def _sleep_with_stop(
        self,
        duration: float,
        stop_event: asyncio.Event,
        deadline: Optional[float],
    ) -> None:
        wait_time = duration
        if deadline:
            wait_time = min(wait_time, max(0.0, deadline - monotonic()))
            if wait_time <= 0:
                return
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=wait_time)
        except asyncio.TimeoutError:
            pass

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _mark_auto_connected(self, ssid: str) -> bool:
        """Remember an automatic join; False if a poll already announced it."""
        with self._lock:
            if self.state.last_ssid == ssid:
                return False
            self.state.reconnected_ssid = ssid
            return True

    def _preference(self, name: str) -> bool:
        if self.preferences is None:
            return False
        try:
            return bool(getattr(self.preferences, name)())
        except Exception as exc:
            logger.warning("Could not read preference %s: %s", name, exc)
            return False

    async def _log_event(
        self,
        event: str,
        *,
        status: Optional[str] = None,
        ssid: Optional[str] = None,
        message: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        if not self.metrics:
            return
        try:
            await self.metrics.log_async(event, status=status, ssid=ssid, message=message, extra=extra)
        except Exception:  # pragma: no cover - I/O failure safeguard
            logger.debug("Metrics logging failed for %s", event, exc_info=True)


__all__ = ["ConnectionSupervisor", "SupervisorConfig", "SupervisorPhase", "SupervisorState"]
