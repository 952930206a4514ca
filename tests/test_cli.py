"""Tests for the command-line entry points that do not touch the radio."""
from __future__ import annotations

import contextlib
import io
import json
import tempfile
import unittest
from pathlib import Path
from typing import List, Tuple

from wifiwatch.cli import main
from wifiwatch.models.connection_history import ConnectionHistory
from wifiwatch.preferences import SqlPreferences


class CliTest(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.db = str(Path(self._tmp.name, "prefs.sqlite3"))

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def _run(self, *argv: str) -> Tuple[int, str]:
        buffer = io.StringIO()
        with contextlib.redirect_stdout(buffer):
            code = main(["--db", self.db, *argv])
        return code, buffer.getvalue()

    def test_config_set_and_show(self) -> None:
        code, out = self._run("config", "--set", "enableAutoReconnect=off", "--json")
        self.assertEqual(code, 0)
        values = json.loads(out)
        self.assertFalse(values["enableAutoReconnect"])
        self.assertTrue(values["enableNotifications"])

    def test_config_rejects_unknown_key(self) -> None:
        with contextlib.redirect_stderr(io.StringIO()):
            with self.assertRaises(SystemExit):
                self._run("config", "--set", "legacyUI=on")

    def test_credentials_lifecycle(self) -> None:
        self.assertEqual(self._run("credentials", "save", "Home", "--passphrase", "hunter22")[0], 0)
        self.assertEqual(self._run("credentials", "save", "Library")[0], 0)
        code, out = self._run("credentials", "list")
        self.assertEqual(out.splitlines(), ["Home", "Library"])
        self.assertEqual(self._run("credentials", "remove", "Home")[0], 0)
        self.assertEqual(self._run("credentials", "remove", "Home")[0], 1)

    def test_history_json_and_clear(self) -> None:
        store = SqlPreferences.at_path(self.db)
        history = ConnectionHistory(store)
        history.record_connection("Home")
        history.record_disconnection("Home")
        store.engine.dispose()

        code, out = self._run("history", "--json", "--limit", "5")
        self.assertEqual(code, 0)
        entries: List[dict] = json.loads(out)
        self.assertEqual(len(entries), 1)
        self.assertEqual(entries[0]["ssid"], "Home")
        self.assertIsNotNone(entries[0]["duration"])

        self.assertEqual(self._run("history", "--clear")[0], 0)
        self.assertEqual(json.loads(self._run("history", "--json")[1]), [])

    def test_history_table_renders(self) -> None:
        store = SqlPreferences.at_path(self.db)
        ConnectionHistory(store).record_failure("Cafe", "wrong passphrase")
        store.engine.dispose()
        code, out = self._run("history", "--durations")
        self.assertEqual(code, 0)
        self.assertIn("Cafe", out)


if __name__ == "__main__":
    unittest.main()
