from __future__ import annotations
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Dict, Optional


def _parse_timestamp(raw: Any) -> Optional[datetime]:
    if raw is None:
        return None
    if not isinstance(raw, str):
        raise ValueError(f"timestamp must be an ISO string, got {type(raw).__name__}")
    parsed = datetime.fromisoformat(raw)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_duration(seconds: Optional[float]) -> str:
    """Render a duration as ``1h 02m 03s`` style text."""
    if seconds is None:
        return ""
    total = max(0, int(round(seconds)))
    hours, rest = divmod(total, 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{hours}h {minutes:02d}m {secs:02d}s"
    if minutes:
        return f"{minutes}m {secs:02d}s"
    return f"{secs}s"


@dataclass(frozen=True)
class HistoryEntry:
    """Represents a single connection session or failed attempt."""
    ssid: str
    connected_at: datetime
    disconnected_at: Optional[datetime] = None
    success: bool = True
    failure_reason: Optional[str] = None

    @property
    def is_open(self) -> bool:
        return self.disconnected_at is None

    @property
    def duration(self) -> Optional[float]:
        if self.disconnected_at is None:
            return None
        return (self.disconnected_at - self.connected_at).total_seconds()

    def closed(self, at: datetime) -> "HistoryEntry":
        return replace(self, disconnected_at=at)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ssid": self.ssid,
            "connectedAt": self.connected_at.isoformat(),
            "disconnectedAt": self.disconnected_at.isoformat() if self.disconnected_at else None,
            "success": self.success,
            "failureReason": self.failure_reason,
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "HistoryEntry":
        if not isinstance(payload, dict):
            raise ValueError("history entry must be a JSON object")
        ssid = payload.get("ssid")
        if not isinstance(ssid, str):
            raise ValueError("history entry is missing a string 'ssid'")
        connected_at = _parse_timestamp(payload.get("connectedAt"))
        if connected_at is None:
            raise ValueError("history entry is missing 'connectedAt'")
        success = payload.get("success", True)
        if not isinstance(success, bool):
            raise ValueError("history entry 'success' must be a boolean")
        reason = payload.get("failureReason")
        return cls(
            ssid=ssid,
            connected_at=connected_at,
            disconnected_at=_parse_timestamp(payload.get("disconnectedAt")),
            success=success,
            failure_reason=str(reason) if reason is not None else None,
        )
