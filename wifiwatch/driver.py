"""Driver-facing collaborator interfaces and an iwd-backed implementation."""
from __future__ import annotations

import asyncio
import logging
import re
import subprocess
from typing import Awaitable, Callable, List, Optional, Protocol

from wifiwatch.models.link_state import AuthMaterial, ConnectRequest, LinkState, LinkStatus

logger = logging.getLogger(__name__)

CompletionCallback = Callable[[bool], None]
CallbackConnect = Callable[[str, AuthMaterial, bool, bool, CompletionCallback], None]

_ANSI_ESCAPE = re.compile(r"\x1B(?:[@-Z\\-_]|\[[0-?]*[ -/]*[@-~])")


class DriverStateReader(Protocol):
	def query_link_state(self) -> LinkStatus: ...


class CredentialLookup(Protocol):
	def lookup_credential(self, ssid: str) -> Optional[AuthMaterial]: ...


class Connector(Protocol):
	def connect(self, request: ConnectRequest) -> Awaitable[bool]: ...


class CallbackConnector:
	"""Adapt a callback-style connect function into an awaitable connector.

	The wrapped function must invoke its completion callback exactly once, from
	any thread. Later invocations are ignored.
	"""

	def __init__(self, connect_fn: CallbackConnect) -> None:
		self._connect_fn = connect_fn

	async def connect(self, request: ConnectRequest) -> bool:
		loop = asyncio.get_running_loop()
		future: asyncio.Future[bool] = loop.create_future()

		def _resolve(success: bool) -> None:
			if not future.done():
				future.set_result(bool(success))

		def _on_complete(success: bool) -> None:
			loop.call_soon_threadsafe(_resolve, success)

		self._connect_fn(
			request.ssid,
			request.auth,
			request.auto_initiated,
			request.save_on_success,
			_on_complete,
		)
		return await future


# ---------------------------------------------------------------------------
# iwd (iwctl) implementation
# ---------------------------------------------------------------------------
def _run_command(cmd: List[str], timeout: float = 30) -> subprocess.CompletedProcess:
	return subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)


def _strip_ansi(text: str) -> str:
	return _ANSI_ESCAPE.sub("", text)


def parse_station_show(output: str) -> LinkStatus:
	"""Parse ``iwctl station <dev> show`` output into a :class:`LinkStatus`."""
	state: Optional[str] = None
	ssid: Optional[str] = None
	rssi: Optional[int] = None
	for line in _strip_ansi(output).splitlines():
		match = re.search(r"Connected network\s{2,}(.+)", line)
		if match:
			ssid = match.group(1).strip() or None
			continue
		match = re.search(r"^\s*State\s{2,}(\S+)", line)
		if match:
			state = match.group(1).strip().lower()
			continue
		match = re.search(r"^\s*(?:Average )?RSSI\s{2,}(-?\d+)", line)
		if match and rssi is None:
			rssi = int(match.group(1))
	if state is None:
		return LinkStatus.error()
	if state == "connected":
		return LinkStatus(LinkState.CONNECTED, ssid=ssid, rssi=rssi)
	return LinkStatus(LinkState.NOT_CONNECTED)


class IwdDriver:
	"""Link-state reader and connector for interfaces managed by iwd."""

	def __init__(self, device: Optional[str] = None, *, command_timeout: float = 10.0, connect_timeout: float = 45.0) -> None:
		self._device = device
		self.command_timeout = command_timeout
		self.connect_timeout = connect_timeout

	@property
	def device(self) -> Optional[str]:
		if self._device is None:
			self._device = self._discover_device()
		return self._device

	def _discover_device(self) -> Optional[str]:
		try:
			result = _run_command(["iw", "dev"], timeout=self.command_timeout)
		except (FileNotFoundError, subprocess.TimeoutExpired) as exc:
			logger.warning("Could not list wireless devices: %s", exc)
			return None
		if result.returncode != 0:
			return None
		for line in result.stdout.splitlines():
			parts = line.strip().split()
			if len(parts) >= 2 and parts[0] == "Interface":
				return parts[1]
		return None

	def query_link_state(self) -> LinkStatus:
		device = self.device
		if not device:
			return LinkStatus.error()
		try:
			result = _run_command(["iwctl", "station", device, "show"], timeout=self.command_timeout)
		except (FileNotFoundError, subprocess.TimeoutExpired) as exc:
			logger.debug("iwctl query failed: %s", exc)
			return LinkStatus.error()
		if result.returncode != 0:
			logger.debug("iwctl exited with %s: %s", result.returncode, result.stderr.strip())
			return LinkStatus.error()
		return parse_station_show(result.stdout)

	async def connect(self, request: ConnectRequest) -> bool:
		return await asyncio.to_thread(self._connect_blocking, request)

	def _connect_blocking(self, request: ConnectRequest) -> bool:
		device = self.device
		if not device:
			logger.error("No wireless device available to connect %s", request.ssid)
			return False
		if request.auth.passphrase:
			args = ["iwctl", "--passphrase", request.auth.passphrase, "station", device, "connect", request.ssid]
		else:
			args = ["iwctl", "station", device, "connect", request.ssid]
		try:
			result = _run_command(args, timeout=self.connect_timeout)
		except FileNotFoundError:
			logger.error("iwctl not found")
			return False
		except subprocess.TimeoutExpired:
			logger.error("Connection to %s timed out", request.ssid)
			return False
		if result.returncode != 0:
			logger.error("Connection to %s failed: %s", request.ssid, result.stderr.strip() or result.returncode)
			return False
		logger.info(
			"Connected to %s (%s)",
			request.ssid,
			"auto" if request.auto_initiated else "user",
		)
		return True


__all__ = [
	"CallbackConnector",
	"Connector",
	"CredentialLookup",
	"DriverStateReader",
	"IwdDriver",
	"parse_station_show",
]
