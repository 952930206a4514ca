"""CSV event log for supervisor transitions and reconnect attempts."""
from __future__ import annotations

import asyncio
import contextlib
import contextvars
import csv
import json
import threading
from collections import deque
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple


DEFAULT_FIELDS: Sequence[str] = ("timestamp", "event", "status", "ssid", "message", "extra")

# layers pushed by MetricsLogger.scope; copied into to_thread workers with the context
_SCOPE: contextvars.ContextVar[Tuple[Mapping[str, Any], ...]] = contextvars.ContextVar(
    "wifiwatch_metrics_scope", default=()
)


def _encode_extra(extra: Mapping[str, Any]) -> str:
    if not extra:
        return ""
    try:
        return json.dumps(extra, separators=(",", ":"), sort_keys=True, default=str)
    except (TypeError, ValueError):
        return repr(dict(extra))


@dataclass(slots=True)
class EventRecord:
    """One row of the event log."""

    timestamp: str
    event: str
    status: str = ""
    ssid: str = ""
    message: str = ""
    extra: str = ""

    @classmethod
    def create(
        cls,
        when: datetime,
        event: str,
        *,
        status: Optional[str],
        ssid: Optional[str],
        message: Optional[str],
        extra: Mapping[str, Any],
    ) -> "EventRecord":
        if when.tzinfo is None:
            when = when.replace(tzinfo=timezone.utc)
        return cls(
            timestamp=when.astimezone(timezone.utc).isoformat(timespec="milliseconds"),
            event=event,
            status=status or "",
            ssid=ssid or "",
            message=message or "",
            extra=_encode_extra(extra),
        )


class MetricsLogger:
    """Append-only CSV log of link events.

    Every row is flushed on write so the API and ``tail -f`` see it at once.
    Extra context pushed with :meth:`scope` is merged into the ``extra``
    column of rows written inside the block, including rows written through
    :meth:`log_async`.
    """

    def __init__(
        self,
        path: str | Path,
        *,
        fields: Sequence[str] | None = None,
        static_extra: Mapping[str, Any] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.path = Path(path)
        self.fields: Sequence[str] = tuple(fields) if fields is not None else DEFAULT_FIELDS
        if not self.fields:
            raise ValueError("fields must contain at least one column")
        self.static_extra: Dict[str, Any] = dict(static_extra or {})
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._lock = threading.Lock()

        self.path.parent.mkdir(parents=True, exist_ok=True)
        if not self.path.exists() or self.path.stat().st_size == 0:
            self._append(None)

    def log(
        self,
        event: str,
        *,
        status: Optional[str] = None,
        ssid: Optional[str] = None,
        message: Optional[str] = None,
        extra: Optional[Mapping[str, Any]] = None,
    ) -> None:
        merged: Dict[str, Any] = dict(self.static_extra)
        for layer in _SCOPE.get():
            merged.update(layer)
        merged.update(extra or {})
        record = EventRecord.create(
            self._now(), event, status=status, ssid=ssid, message=message, extra=merged
        )
        self._append(record)

    async def log_async(self, event: str, **kwargs: Any) -> None:
        await asyncio.to_thread(self.log, event, **kwargs)

    def tail(self, limit: int = 50) -> List[Dict[str, str]]:
        """Return the last ``limit`` rows, oldest first."""
        if limit <= 0:
            return []
        with self._lock, self.path.open("r", newline="", encoding="utf-8") as handle:
            return list(deque(csv.DictReader(handle), maxlen=limit))

    @contextlib.contextmanager
    def scope(self, extra: Mapping[str, Any] | None = None, **fields: Any) -> Iterator[None]:
        layer = {**(extra or {}), **fields}
        token = _SCOPE.set(_SCOPE.get() + (layer,))
        try:
            yield
        finally:
            _SCOPE.reset(token)

    def _append(self, record: Optional[EventRecord]) -> None:
        # None writes the header row
        with self._lock, self.path.open("a", newline="", encoding="utf-8") as handle:
            writer = csv.DictWriter(handle, fieldnames=self.fields, extrasaction="ignore")
            if record is None:
                writer.writeheader()
            else:
                row = asdict(record)
                writer.writerow({key: row.get(key, "") for key in self.fields})
            handle.flush()

    def _now(self) -> datetime:
        try:
            return self._clock()
        except Exception:  # pragma: no cover - faulty injected clock
            return datetime.now(timezone.utc)


__all__ = ["DEFAULT_FIELDS", "EventRecord", "MetricsLogger"]
