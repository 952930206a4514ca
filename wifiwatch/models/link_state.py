from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class LinkState(Enum):
    """Association status reported by the wireless driver."""

    CONNECTED = "connected"
    NOT_CONNECTED = "not_connected"
    ERROR = "error"


@dataclass(frozen=True)
class LinkStatus:
    """Result of a single driver state query."""
    state: LinkState
    ssid: Optional[str] = None
    rssi: Optional[int] = None

    @property
    def is_connected(self) -> bool:
        return self.state is LinkState.CONNECTED

    @classmethod
    def error(cls) -> "LinkStatus":
        return cls(LinkState.ERROR)


@dataclass
class ConnectionSession:
    """The live association the supervisor is tracking."""
    ssid: str
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def elapsed(self, now: Optional[datetime] = None) -> float:
        now = now or datetime.now(timezone.utc)
        return (now - self.started_at).total_seconds()


@dataclass(frozen=True)
class AuthMaterial:
    """Stored authentication for a network (passphrase or open)."""
    passphrase: Optional[str] = None
    security: str = "psk"
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_open(self) -> bool:
        return self.passphrase is None


@dataclass(frozen=True)
class ConnectRequest:
    """Bundle handed to the connect operation."""
    ssid: str
    auth: AuthMaterial
    auto_initiated: bool = False
    save_on_success: bool = False
