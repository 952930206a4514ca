from __future__ import annotations
import asyncio, logging, os, time
from pathlib import Path
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Query

from wifiwatch.driver import IwdDriver
from wifiwatch.metrics import MetricsLogger
from wifiwatch.models.connection_history import MAX_HISTORY_ENTRIES, ConnectionHistory
from wifiwatch.models.notification_system import NotificationSystem
from wifiwatch.preferences import CredentialStore, PreferenceStore, Preferences, SqlPreferences
from wifiwatch.reconnect import ConnectionSupervisor, SupervisorConfig

logger = logging.getLogger("wifiwatch.api")

app = FastAPI(title="wifiwatch API", version="0.1.0")

_store: Optional[PreferenceStore] = None
_history: Optional[ConnectionHistory] = None
_supervisor: Optional[ConnectionSupervisor] = None
_task: Optional[asyncio.Task] = None


def _get_store() -> PreferenceStore:
    global _store
    if _store is None:
        db_path = os.getenv("WIFIWATCH_DB")
        _store = SqlPreferences.at_path(db_path) if db_path else SqlPreferences()
    return _store


def _get_history() -> ConnectionHistory:
    global _history
    if _history is None:
        _history = ConnectionHistory(_get_store())
    return _history


@app.get("/health")
async def health():
    return {"status": "ok", "time": time.time()}


@app.get("/status")
async def status():
    if _supervisor is None:
        return {"status": "idle"}
    running = _task is not None and not _task.done()
    return {"status": "running" if running else "stopped", **_supervisor.snapshot()}


@app.get("/history")
async def history(limit: int = Query(20, ge=1, le=MAX_HISTORY_ENTRIES)):
    entries = []
    for entry in _get_history().get_history(limit):
        item: Dict[str, Any] = entry.to_dict()
        item["duration"] = entry.duration
        entries.append(item)
    return {"count": len(entries), "entries": entries}


@app.delete("/history")
async def clear_history():
    _get_history().clear_history()
    return {"status": "cleared"}


@app.get("/events")
async def events(limit: int = Query(50, ge=1, le=1000)):
    metrics = _supervisor.metrics if _supervisor else None
    if metrics is None:
        return {"count": 0, "events": []}
    rows = await asyncio.to_thread(metrics.tail, limit)
    return {"count": len(rows), "events": rows}


@app.get("/preferences")
async def get_preferences():
    return Preferences(_get_store()).as_dict()


@app.put("/preferences")
async def put_preferences(values: Dict[str, bool]):
    preferences = Preferences(_get_store())
    unknown = [key for key in values if key not in preferences.as_dict()]
    if unknown:
        raise HTTPException(status_code=400, detail=f"Unknown preferences: {', '.join(sorted(unknown))}")
    for key, value in values.items():
        preferences.set_bool(key, value)
    return preferences.as_dict()


@app.post("/monitor/start")
async def start(
    device: Optional[str] = Query(None, description="Wireless interface name"),
    log: str = Query("wifiwatch-events.csv"),
    poll_interval: float = Query(5.0, gt=0, description="Link polling interval seconds"),
    reconnect_delay: float = Query(2.0, ge=0, description="Delay before a reconnect attempt"),
    max_attempts: int = Query(3, ge=1, le=20, description="Reconnect attempts per drop"),
    connect_timeout: Optional[float] = Query(None, gt=0, description="Reconnect timeout seconds"),
    record_failures: bool = Query(False),
    runtime: Optional[float] = Query(None, gt=0, description="Optional monitor duration"),
):
    global _supervisor, _task
    if _task and not _task.done():
        return {"status": "already-running", "device": device}

    store = _get_store()
    preferences = Preferences(store)
    driver = IwdDriver(device=device)
    _supervisor = ConnectionSupervisor(
        driver,
        CredentialStore(store),
        driver,
        history=_get_history(),
        notifier=NotificationSystem(enabled=preferences.is_notifications_enabled),
        preferences=preferences,
        config=SupervisorConfig(
            poll_interval=poll_interval,
            reconnect_delay=reconnect_delay,
            max_attempts=max_attempts,
            connect_timeout=connect_timeout,
            record_failures=record_failures,
        ),
        log=MetricsLogger(Path(log)),
    )
    _task = asyncio.create_task(_supervisor.run(runtime=runtime))
    return {"status": "started", "device": device, "log": log, "runtime": runtime}


@app.post("/monitor/stop")
async def stop():
    global _task
    if _task:
        if _supervisor:
            _supervisor.request_stop()
        _task.cancel()
        try:
            await _task
        except asyncio.CancelledError:
            pass
        except Exception:
            logger.exception("monitor stop encountered error")
        _task = None
        return {"status": "stopped"}
    return {"status": "idle"}
