"""Tests for the capped, persisted connection history."""
from __future__ import annotations

import json
import unittest
from datetime import datetime, timedelta, timezone
from typing import Any

from wifiwatch.models.connection_history import HISTORY_KEY, MAX_HISTORY_ENTRIES, ConnectionHistory
from wifiwatch.models.history_entry import HistoryEntry
from wifiwatch.preferences import MemoryPreferences


class _Clock:
    def __init__(self) -> None:
        self.now = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class _BrokenStore(MemoryPreferences):
    def set(self, key: str, value: Any) -> None:
        raise OSError("disk full")


class ConnectionHistoryTest(unittest.TestCase):
    def setUp(self) -> None:
        self.clock = _Clock()
        self.store = MemoryPreferences()
        self.history = ConnectionHistory(self.store, clock=self.clock)

    def test_capacity_and_newest_first_ordering(self) -> None:
        for index in range(150):
            self.history.record_connection(f"net-{index}")
            self.clock.advance(1)

        self.assertEqual(len(self.history), MAX_HISTORY_ENTRIES)
        latest = self.history.get_history(5)
        self.assertEqual([e.ssid for e in latest], ["net-149", "net-148", "net-147", "net-146", "net-145"])
        everything = self.history.get_history(1000)
        self.assertEqual(len(everything), MAX_HISTORY_ENTRIES)
        self.assertEqual(everything[-1].ssid, "net-50")
        stamps = [e.connected_at for e in everything]
        self.assertEqual(stamps, sorted(stamps, reverse=True))

        persisted = json.loads(self.store.get(HISTORY_KEY))
        self.assertEqual(len(persisted), MAX_HISTORY_ENTRIES)

    def test_get_history_respects_limit(self) -> None:
        for ssid in ("a", "b", "c"):
            self.history.record_connection(ssid)
        self.assertEqual(len(self.history.get_history(2)), 2)
        self.assertEqual(self.history.get_history(0), [])
        self.assertEqual(len(self.history.get_history()), 3)

    def test_disconnection_without_open_entry_is_noop(self) -> None:
        self.history.record_connection("Home")
        self.history.record_disconnection("Home")
        before = self.history.get_history(100)

        self.assertIsNone(self.history.record_disconnection("Home"))
        self.assertIsNone(self.history.record_disconnection("Elsewhere"))
        self.assertEqual(self.history.get_history(100), before)

    def test_connect_then_disconnect_closes_entry_with_duration(self) -> None:
        self.history.record_connection("X")
        self.clock.advance(30)
        closed = self.history.record_disconnection("X")

        self.assertIsNotNone(closed)
        entries = self.history.get_history()
        self.assertEqual(len(entries), 1)
        entry = entries[0]
        self.assertTrue(entry.success)
        self.assertIsNotNone(entry.disconnected_at)
        self.assertEqual(entry.duration, 30.0)
        self.assertEqual(entry.duration, (entry.disconnected_at - entry.connected_at).total_seconds())

    def test_disconnection_replaces_entry_in_place(self) -> None:
        self.history.record_connection("A")
        self.clock.advance(5)
        self.history.record_connection("B")
        self.clock.advance(5)
        self.history.record_disconnection("A")

        entries = self.history.get_history()
        self.assertEqual([e.ssid for e in entries], ["B", "A"])
        self.assertTrue(entries[0].is_open)
        self.assertFalse(entries[1].is_open)

    def test_disconnection_closes_most_recent_open_entry(self) -> None:
        self.history.record_connection("A")
        self.clock.advance(1)
        self.history.record_connection("A")
        self.history.record_disconnection("A")

        newest, oldest = self.history.get_history()
        self.assertFalse(newest.is_open)
        self.assertTrue(oldest.is_open)
        self.assertIs(self.history.open_entry("A"), oldest)

    def test_record_failure_is_closed_and_unsuccessful(self) -> None:
        entry = self.history.record_failure("Cafe", "wrong passphrase")
        self.assertFalse(entry.success)
        self.assertEqual(entry.connected_at, entry.disconnected_at)
        self.assertEqual(entry.duration, 0.0)
        self.assertEqual(entry.failure_reason, "wrong passphrase")
        self.assertIsNone(self.history.record_disconnection("Cafe"))

    def test_last_successful_connection(self) -> None:
        self.history.record_connection("Home")
        self.clock.advance(10)
        self.history.record_failure("Home", "timeout")
        self.clock.advance(10)
        self.history.record_connection("Office")

        last = self.history.get_last_successful_connection("Home")
        self.assertIsNotNone(last)
        self.assertTrue(last.success)
        self.assertIsNone(self.history.get_last_successful_connection("Nowhere"))

    def test_clear_history_persists_empty_state(self) -> None:
        self.history.record_connection("Home")
        self.history.clear_history()
        self.assertEqual(len(self.history), 0)
        self.assertEqual(json.loads(self.store.get(HISTORY_KEY)), [])

    def test_round_trip_through_store(self) -> None:
        self.history.record_connection("Home")
        self.clock.advance(42)
        self.history.record_disconnection("Home")
        self.history.record_failure("Office", "no credentials")
        self.history.record_connection("Cafe")

        reloaded = ConnectionHistory(self.store, clock=self.clock)
        self.assertEqual(reloaded.get_history(100), self.history.get_history(100))

    def test_unreadable_document_loads_as_empty(self) -> None:
        for raw in ("not json", json.dumps({"ssid": "x"}), json.dumps([{"ssid": 3}]), 17):
            self.store.set(HISTORY_KEY, raw)
            self.assertEqual(len(ConnectionHistory(self.store)), 0)

    def test_success_flag_must_be_boolean(self) -> None:
        entry = {"ssid": "Home", "connectedAt": "2024-01-01T09:00:00+00:00", "success": "false"}
        with self.assertRaises(ValueError):
            HistoryEntry.from_dict(entry)
        self.store.set(HISTORY_KEY, json.dumps([entry]))
        self.assertEqual(len(ConnectionHistory(self.store)), 0)

        entry["success"] = False
        self.assertFalse(HistoryEntry.from_dict(entry).success)
        self.assertTrue(HistoryEntry.from_dict({k: v for k, v in entry.items() if k != "success"}).success)

    def test_persist_failure_keeps_memory_authoritative(self) -> None:
        history = ConnectionHistory(_BrokenStore(), clock=self.clock)
        with self.assertLogs("wifiwatch.models.connection_history", level="ERROR"):
            history.record_connection("Home")
        self.assertEqual(len(history), 1)
        self.assertEqual(history.get_history()[0].ssid, "Home")

    def test_history_without_store_stays_in_memory(self) -> None:
        history = ConnectionHistory(clock=self.clock)
        history.record_connection("Home")
        self.assertEqual(len(history), 1)


if __name__ == "__main__":
    unittest.main()
