"""Simple smoke test to ensure the model package imports correctly."""
from datetime import datetime, timedelta, timezone

from wifiwatch.models import ConnectionHistory, HistoryEntry, LinkStatus, NotificationSystem, format_duration


def test_imports():
    start = datetime(2024, 1, 1, tzinfo=timezone.utc)
    entry = HistoryEntry(ssid="Home", connected_at=start, disconnected_at=start + timedelta(seconds=3723))
    assert entry.duration == 3723.0
    assert format_duration(entry.duration) == "1h 02m 03s"
    assert format_duration(75) == "1m 15s"
    assert format_duration(None) == ""
    assert not LinkStatus.error().is_connected
    assert len(ConnectionHistory()) == 0
    assert callable(NotificationSystem().notify)


def test_entry_round_trip():
    start = datetime(2024, 1, 1, 9, 30, tzinfo=timezone.utc)
    entry = HistoryEntry(ssid="Office", connected_at=start, success=False, failure_reason="timeout")
    assert HistoryEntry.from_dict(entry.to_dict()) == entry


if __name__ == "__main__":
    test_imports()
    test_entry_round_trip()
    print("models import smoke test: OK")
