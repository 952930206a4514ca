from __future__ import annotations
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Callable, List, Optional
import json
import logging
import threading

from .history_entry import HistoryEntry

if TYPE_CHECKING:  # pragma: no cover - typing only
    from wifiwatch.preferences import PreferenceStore

logger = logging.getLogger(__name__)

HISTORY_KEY = "ConnectionHistory"
MAX_HISTORY_ENTRIES = 100
DEFAULT_DISPLAY_LIMIT = 20


def dump_entries(entries: List[HistoryEntry]) -> str:
    return json.dumps([entry.to_dict() for entry in entries], separators=(",", ":"))


def load_entries(raw: str) -> List[HistoryEntry]:
    payload = json.loads(raw)
    if not isinstance(payload, list):
        raise ValueError("history document must be a JSON array")
    return [HistoryEntry.from_dict(item) for item in payload]


class ConnectionHistory:
    """Capped, newest-first log of connection sessions.

    The log is loaded once from the preference store and written back after
    every mutation. Storage problems never propagate: a bad document loads as
    an empty history and a failed write leaves the in-memory list in charge.
    """

    def __init__(
        self,
        store: Optional["PreferenceStore"] = None,
        *,
        key: str = HISTORY_KEY,
        capacity: int = MAX_HISTORY_ENTRIES,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.store = store
        self.key = key
        self.capacity = capacity
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._lock = threading.Lock()
        self.history: List[HistoryEntry] = self._load()

    def record_connection(self, ssid: str) -> HistoryEntry:
        entry = HistoryEntry(ssid=ssid, connected_at=self._now())
        self._add_entry(entry)
        logger.debug("record_connection: %s", entry)
        return entry

    def record_disconnection(self, ssid: str) -> Optional[HistoryEntry]:
        with self._lock:
            index = self._open_index(ssid)
            if index is None:
                logger.debug("record_disconnection: no open session for %s", ssid)
                return None
            updated = self.history[index].closed(self._now())
            self.history[index] = updated
            self._save()
        logger.debug("record_disconnection: %s", updated)
        return updated

    def record_failure(self, ssid: str, reason: str) -> HistoryEntry:
        now = self._now()
        entry = HistoryEntry(
            ssid=ssid,
            connected_at=now,
            disconnected_at=now,
            success=False,
            failure_reason=reason,
        )
        self._add_entry(entry)
        logger.debug("record_failure: %s", entry)
        return entry

    def get_history(self, limit: int = DEFAULT_DISPLAY_LIMIT) -> List[HistoryEntry]:
        with self._lock:
            return list(self.history[: max(0, limit)])

    def get_last_successful_connection(self, ssid: str) -> Optional[HistoryEntry]:
        with self._lock:
            return next((e for e in self.history if e.ssid == ssid and e.success), None)

    def open_entry(self, ssid: str) -> Optional[HistoryEntry]:
        with self._lock:
            index = self._open_index(ssid)
            return self.history[index] if index is not None else None

    def clear_history(self) -> None:
        with self._lock:
            self.history.clear()
            self._save()
        logger.info("Connection history cleared")

    def __len__(self) -> int:
        with self._lock:
            return len(self.history)

    def _add_entry(self, entry: HistoryEntry) -> None:
        with self._lock:
            self.history.insert(0, entry)
            if len(self.history) > self.capacity:
                del self.history[self.capacity:]
            self._save()

    def _open_index(self, ssid: str) -> Optional[int]:
        for index, entry in enumerate(self.history):
            if entry.ssid == ssid and entry.disconnected_at is None:
                return index
        return None

    def _now(self) -> datetime:
        return self._clock()

    def _load(self) -> List[HistoryEntry]:
        if self.store is None:
            return []
        try:
            raw = self.store.get(self.key, None)
            if raw is None:
                return []
            entries = load_entries(raw)
        except Exception as exc:
            logger.warning("Discarding unreadable connection history: %s", exc)
            return []
        return entries[: self.capacity]

    def _save(self) -> None:
        # caller holds self._lock
        if self.store is None:
            return
        try:
            self.store.set(self.key, dump_entries(self.history))
        except Exception:
            logger.error("Failed to persist connection history", exc_info=True)
