"""Key-value preference storage shared by the supervisor, CLI and API.

Values are JSON-encoded so the same store can hold flags, the saved-network
table and the serialized connection history. ``SqlPreferences`` keeps them in
a single SQLite table through SQLAlchemy; ``MemoryPreferences`` is used by
tests and short-lived tools.
"""
from __future__ import annotations

import json
import logging
import os
import threading
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, Optional, Protocol

from sqlalchemy import Column, MetaData, String, Table, Text, create_engine, delete, insert, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool

from wifiwatch.models.link_state import AuthMaterial

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = Path(os.getenv("WIFIWATCH_DB", str(Path.home() / ".wifiwatch" / "wifiwatch.sqlite3")))

ENABLE_NOTIFICATIONS = "enableNotifications"
ENABLE_AUTO_CONNECT = "enableAutoConnect"
ENABLE_AUTO_RECONNECT = "enableAutoReconnect"
SHOW_CONNECTION_DURATION = "showConnectionDuration"
SAVED_NETWORKS_KEY = "SavedNetworks"

DEFAULT_PREFERENCES: Mapping[str, bool] = {
    ENABLE_NOTIFICATIONS: True,
    ENABLE_AUTO_CONNECT: True,
    ENABLE_AUTO_RECONNECT: True,
    SHOW_CONNECTION_DURATION: False,
}


class PreferenceStore(Protocol):
    def get(self, key: str, default: Any = None) -> Any: ...

    def set(self, key: str, value: Any) -> None: ...

    def delete(self, key: str) -> None: ...

    def keys(self) -> List[str]: ...


class MemoryPreferences:
    """Dictionary-backed store; values are round-tripped through JSON."""

    def __init__(self, initial: Optional[Mapping[str, Any]] = None) -> None:
        self._lock = threading.Lock()
        self._data: Dict[str, str] = {}
        for key, value in (initial or {}).items():
            self.set(key, value)

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            raw = self._data.get(key)
        if raw is None:
            return default
        return json.loads(raw)

    def set(self, key: str, value: Any) -> None:
        encoded = json.dumps(value)
        with self._lock:
            self._data[key] = encoded

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def keys(self) -> List[str]:
        with self._lock:
            return sorted(self._data)


class SqlPreferences:
    """SQLAlchemy-backed store using a ``preferences(key, value)`` table."""

    def __init__(self, url: Optional[str] = None, *, engine: Optional[Engine] = None) -> None:
        if engine is None:
            if url is None:
                DEFAULT_DB_PATH.parent.mkdir(parents=True, exist_ok=True)
                url = f"sqlite:///{DEFAULT_DB_PATH}"
            engine = _create_engine(url)
        self.engine = engine
        self._metadata = MetaData()
        self._table = Table(
            "preferences",
            self._metadata,
            Column("key", String(255), primary_key=True),
            Column("value", Text, nullable=False),
        )
        self._metadata.create_all(self.engine)

    @classmethod
    def at_path(cls, path: str | Path) -> "SqlPreferences":
        db_path = Path(path)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        return cls(f"sqlite:///{db_path}")

    def get(self, key: str, default: Any = None) -> Any:
        with self.engine.connect() as conn:
            raw = conn.execute(select(self._table.c.value).where(self._table.c.key == key)).scalar_one_or_none()
        if raw is None:
            return default
        return json.loads(raw)

    def set(self, key: str, value: Any) -> None:
        encoded = json.dumps(value)
        with self.engine.begin() as conn:
            result = conn.execute(update(self._table).where(self._table.c.key == key).values(value=encoded))
            if result.rowcount == 0:
                conn.execute(insert(self._table).values(key=key, value=encoded))

    def delete(self, key: str) -> None:
        with self.engine.begin() as conn:
            conn.execute(delete(self._table).where(self._table.c.key == key))

    def keys(self) -> List[str]:
        with self.engine.connect() as conn:
            return sorted(conn.execute(select(self._table.c.key)).scalars())


def _create_engine(url: str) -> Engine:
    if url in ("sqlite://", "sqlite:///:memory:"):
        return create_engine(url, connect_args={"check_same_thread": False}, poolclass=StaticPool)
    if url.startswith("sqlite"):
        return create_engine(url, connect_args={"check_same_thread": False})
    return create_engine(url)


class Preferences:
    """Typed view over a store with registered defaults."""

    def __init__(self, store: PreferenceStore, defaults: Optional[Mapping[str, Any]] = None) -> None:
        self.store = store
        self._defaults: Dict[str, Any] = dict(DEFAULT_PREFERENCES)
        if defaults:
            self._defaults.update(defaults)

    def register_defaults(self, defaults: Mapping[str, Any]) -> None:
        self._defaults.update(defaults)

    def get_bool(self, key: str) -> bool:
        try:
            value = self.store.get(key, None)
        except (SQLAlchemyError, ValueError) as exc:
            logger.warning("Preference %s unreadable, using default: %s", key, exc)
            value = None
        if value is None:
            return bool(self._defaults.get(key, False))
        return bool(value)

    def set_bool(self, key: str, value: bool) -> None:
        if key not in self._defaults:
            raise KeyError(f"unknown preference {key!r}")
        self.store.set(key, bool(value))
        logger.debug("Preference %s set to %s", key, bool(value))

    def is_notifications_enabled(self) -> bool:
        return self.get_bool(ENABLE_NOTIFICATIONS)

    def is_auto_connect_enabled(self) -> bool:
        return self.get_bool(ENABLE_AUTO_CONNECT)

    def is_auto_reconnect_enabled(self) -> bool:
        return self.get_bool(ENABLE_AUTO_RECONNECT)

    def is_show_connection_duration_enabled(self) -> bool:
        return self.get_bool(SHOW_CONNECTION_DURATION)

    def as_dict(self) -> Dict[str, bool]:
        return {key: self.get_bool(key) for key in self._defaults}

    def __iter__(self) -> Iterator[str]:
        return iter(self._defaults)


def parse_bool(raw: str) -> bool:
    value = raw.strip().lower()
    if value in ("1", "true", "yes", "on"):
        return True
    if value in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"invalid boolean value: {raw!r}")


class CredentialStore:
    """Saved-network table kept under a single preference key.

    Passphrases are stored as-is; encrypting them is left to the host
    keychain integration.
    """

    def __init__(self, store: PreferenceStore, key: str = SAVED_NETWORKS_KEY) -> None:
        self.store = store
        self.key = key
        self._lock = threading.Lock()

    def _load(self) -> Dict[str, Dict[str, Any]]:
        try:
            data = self.store.get(self.key, {})
        except (SQLAlchemyError, ValueError) as exc:
            logger.error("Saved networks unreadable: %s", exc)
            return {}
        return data if isinstance(data, dict) else {}

    def save(self, ssid: str, auth: AuthMaterial) -> None:
        if not ssid:
            raise ValueError("ssid must not be empty")
        with self._lock:
            data = self._load()
            data[ssid] = {"passphrase": auth.passphrase, "security": auth.security, "extra": dict(auth.extra)}
            self.store.set(self.key, data)
        logger.info("Saved credentials for %s", ssid)

    def remove(self, ssid: str) -> bool:
        with self._lock:
            data = self._load()
            if ssid not in data:
                return False
            del data[ssid]
            self.store.set(self.key, data)
        logger.info("Removed credentials for %s", ssid)
        return True

    def saved_networks(self) -> List[str]:
        return list(self._load())

    def lookup_credential(self, ssid: str) -> Optional[AuthMaterial]:
        record = self._load().get(ssid)
        if not isinstance(record, dict):
            return None
        return AuthMaterial(
            passphrase=record.get("passphrase"),
            security=str(record.get("security") or "psk"),
            extra=dict(record.get("extra") or {}),
        )


__all__ = [
    "CredentialStore",
    "DEFAULT_PREFERENCES",
    "MemoryPreferences",
    "PreferenceStore",
    "Preferences",
    "SqlPreferences",
    "parse_bool",
]
