"""wifiwatch command-line interface."""
from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import logging
import os
import signal
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.table import Table

from wifiwatch.driver import IwdDriver
from wifiwatch.metrics import MetricsLogger
from wifiwatch.models.connection_history import DEFAULT_DISPLAY_LIMIT, ConnectionHistory
from wifiwatch.models.history_entry import HistoryEntry, format_duration
from wifiwatch.models.link_state import AuthMaterial
from wifiwatch.models.notification_system import LoggingBackend, NotificationSystem, NotifySendBackend
from wifiwatch.preferences import CredentialStore, Preferences, SqlPreferences, parse_bool
from wifiwatch.reconnect import ConnectionSupervisor, SupervisorConfig

DEFAULT_EVENT_LOG = os.getenv("WIFIWATCH_EVENT_LOG", "wifiwatch-events.csv")
HISTORY_LIMIT = int(os.getenv("WIFIWATCH_HISTORY_LIMIT", str(DEFAULT_DISPLAY_LIMIT)))


def _open_store(args: argparse.Namespace) -> SqlPreferences:
	if args.db:
		return SqlPreferences.at_path(args.db)
	return SqlPreferences()


def _entry_row(entry: HistoryEntry, show_duration: bool) -> List[str]:
	row = [
		entry.ssid,
		entry.connected_at.astimezone().strftime("%Y-%m-%d %H:%M:%S"),
		entry.disconnected_at.astimezone().strftime("%Y-%m-%d %H:%M:%S") if entry.disconnected_at else "-",
	]
	if show_duration:
		row.append(format_duration(entry.duration) or "-")
	row.append("ok" if entry.success else f"failed: {entry.failure_reason or 'unknown'}")
	return row


async def _cmd_monitor(args: argparse.Namespace) -> int:
	store = _open_store(args)
	preferences = Preferences(store)
	history = ConnectionHistory(store)
	credentials = CredentialStore(store)
	backend = NotifySendBackend() if args.desktop_notify else LoggingBackend()
	notifier = NotificationSystem(backend, enabled=preferences.is_notifications_enabled, background=True)
	driver = IwdDriver(device=args.device)
	config = SupervisorConfig(
		poll_interval=args.poll_interval,
		reconnect_delay=args.reconnect_delay,
		max_attempts=args.max_attempts,
		connect_timeout=args.connect_timeout,
		record_failures=args.record_failures,
	)
	supervisor = ConnectionSupervisor(
		driver,
		credentials,
		driver,
		history=history,
		notifier=notifier,
		preferences=preferences,
		config=config,
		log=MetricsLogger(Path(args.log)),
	)

	def _signal_handler(*_: Any) -> None:
		supervisor.request_stop()

	loop = asyncio.get_running_loop()
	for sig in (signal.SIGINT, signal.SIGTERM):
		with contextlib.suppress(NotImplementedError):
			loop.add_signal_handler(sig, _signal_handler)

	try:
		await supervisor.run(runtime=args.runtime)
	except KeyboardInterrupt:
		supervisor.request_stop()
	return 0


async def _cmd_history(args: argparse.Namespace) -> int:
	store = _open_store(args)
	history = ConnectionHistory(store)
	if args.clear:
		history.clear_history()
		sys.stdout.write("Connection history cleared\n")
		return 0

	entries = history.get_history(args.limit)
	if args.json:
		payload = []
		for entry in entries:
			item: Dict[str, Any] = entry.to_dict()
			item["duration"] = entry.duration
			payload.append(item)
		json.dump(payload, sys.stdout, indent=2)
		sys.stdout.write("\n")
		return 0

	show_duration = args.durations or Preferences(store).is_show_connection_duration_enabled()
	table = Table(title="Connection History", show_lines=False)
	columns = ["SSID", "CONNECTED", "DISCONNECTED"]
	if show_duration:
		columns.append("DURATION")
	columns.append("RESULT")
	for column in columns:
		table.add_column(column)
	for entry in entries:
		table.add_row(*_entry_row(entry, show_duration))
	Console().print(table)
	return 0


def _parse_assignment(raw: str) -> tuple[str, bool]:
	key, sep, value = raw.partition("=")
	if not sep or not key.strip():
		raise ValueError(f"expected key=value, got {raw!r}")
	return key.strip(), parse_bool(value)


async def _cmd_config(args: argparse.Namespace) -> int:
	preferences = Preferences(_open_store(args))
	for raw in args.set or []:
		key, value = _parse_assignment(raw)
		try:
			preferences.set_bool(key, value)
		except KeyError as exc:
			raise ValueError(f"unknown preference {key!r}; expected one of {', '.join(preferences)}") from exc

	values = preferences.as_dict()
	if args.json:
		json.dump(values, sys.stdout, indent=2)
		sys.stdout.write("\n")
		return 0
	table = Table(title="Preferences")
	table.add_column("KEY")
	table.add_column("VALUE")
	for key, value in values.items():
		table.add_row(key, "on" if value else "off")
	Console().print(table)
	return 0


async def _cmd_credentials(args: argparse.Namespace) -> int:
	credentials = CredentialStore(_open_store(args))
	if args.action == "list":
		for ssid in credentials.saved_networks():
			sys.stdout.write(f"{ssid}\n")
		return 0
	if not args.ssid:
		raise ValueError(f"credentials {args.action} requires an SSID")
	if args.action == "save":
		auth = AuthMaterial(passphrase=args.passphrase, security="psk" if args.passphrase else "open")
		credentials.save(args.ssid, auth)
		sys.stdout.write(f"Saved {args.ssid}\n")
		return 0
	if not credentials.remove(args.ssid):
		sys.stdout.write(f"No saved credentials for {args.ssid}\n")
		return 1
	sys.stdout.write(f"Removed {args.ssid}\n")
	return 0


async def _cmd_serve(args: argparse.Namespace) -> int:
	import uvicorn

	if args.db:
		os.environ["WIFIWATCH_DB"] = str(args.db)
	config = uvicorn.Config("wifiwatch.api:app", host=args.host, port=args.port, log_level="info")
	await uvicorn.Server(config).serve()
	return 0


def _build_parser() -> argparse.ArgumentParser:
	parser = argparse.ArgumentParser(description="wifiwatch connection supervisor")
	parser.add_argument("--db", help="Path to the preferences database")
	parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
	sub = parser.add_subparsers(dest="command", required=True)

	monitor = sub.add_parser("monitor", help="Supervise the wireless link and reconnect on drops")
	monitor.add_argument("--device", help="Wireless interface (default: first from `iw dev`)")
	monitor.add_argument("--log", default=DEFAULT_EVENT_LOG, help="Path to event CSV")
	monitor.add_argument("--poll-interval", type=float, default=5.0, help="Link polling interval seconds")
	monitor.add_argument("--reconnect-delay", type=float, default=2.0, help="Delay before a reconnect attempt")
	monitor.add_argument("--max-attempts", type=int, default=3, help="Reconnect attempts per drop")
	monitor.add_argument("--connect-timeout", type=float, help="Abandon a reconnect after this many seconds")
	monitor.add_argument("--record-failures", action="store_true", help="Store failed reconnects in history")
	monitor.add_argument("--desktop-notify", action="store_true", help="Send notifications with notify-send")
	monitor.add_argument("--runtime", type=float, help="Optional monitor duration seconds")
	monitor.set_defaults(handler=_cmd_monitor)

	history = sub.add_parser("history", help="Show the connection history")
	history.add_argument("--limit", type=int, default=HISTORY_LIMIT, help="Maximum entries to show")
	history.add_argument("--json", action="store_true", help="Output JSON")
	history.add_argument("--durations", action="store_true", help="Always show session durations")
	history.add_argument("--clear", action="store_true", help="Delete all history entries")
	history.set_defaults(handler=_cmd_history)

	config = sub.add_parser("config", help="Show or change preferences")
	config.add_argument("--set", action="append", metavar="KEY=VALUE", help="Set a boolean preference")
	config.add_argument("--json", action="store_true", help="Output JSON")
	config.set_defaults(handler=_cmd_config)

	creds = sub.add_parser("credentials", help="Manage saved networks")
	creds.add_argument("action", choices=["list", "save", "remove"])
	creds.add_argument("ssid", nargs="?", help="Network name")
	creds.add_argument("--passphrase", help="Passphrase (omit for open networks)")
	creds.set_defaults(handler=_cmd_credentials)

	serve = sub.add_parser("serve", help="Run the HTTP API")
	serve.add_argument("--host", default="127.0.0.1")
	serve.add_argument("--port", type=int, default=8000)
	serve.set_defaults(handler=_cmd_serve)

	return parser


def main(argv: Optional[List[str]] = None) -> int:
	parser = _build_parser()
	args = parser.parse_args(argv)
	logging.basicConfig(
		level=logging.DEBUG if args.verbose else logging.INFO,
		format="%(asctime)s %(levelname)s %(name)s: %(message)s",
	)
	try:
		return asyncio.run(args.handler(args))
	except ValueError as exc:
		parser.error(str(exc))
	return 2


if __name__ == "__main__":
	sys.exit(main())
