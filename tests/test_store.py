import json
from datetime import datetime, timezone
from zoneinfo import ZoneInfo

from calintel.models import Attendee, Category, EventCandidate, Frequency, Priority, RecurrenceRule, TimeInterval
from calintel.store import load_events, save_events

TZ = ZoneInfo("America/Phoenix")


def test_missing_snapshot_is_empty(tmp_path):
    assert load_events(str(tmp_path / "missing.json"), TZ) == []


def test_load_reads_wrapped_and_bare_lists(tmp_path):
    raw = {
        "id": "e1",
        "title": "Standup",
        "startDate": "2024-01-16T09:00:00",
        "endDate": "2024-01-16T09:15:00",
        "recurrence": "FREQ=WEEKLY;BYDAY=MO,TU,WE,TH,FR",
        "metadata": {"category": "meeting", "priority": "high"},
    }
    wrapped = tmp_path / "wrapped.json"
    bare = tmp_path / "bare.json"
    wrapped.write_text(json.dumps({"events": [raw]}), encoding="utf-8")
    bare.write_text(json.dumps([raw]), encoding="utf-8")

    (a,) = load_events(str(wrapped), TZ)
    (b,) = load_events(str(bare), TZ)

    assert a.id == b.id == "e1"
    assert a.start == datetime(2024, 1, 16, 16, 0, tzinfo=timezone.utc)
    assert a.category is Category.MEETING
    assert a.priority is Priority.HIGH
    assert a.recurrence.by_day == ("MO", "TU", "WE", "TH", "FR")
    assert a.source == "snapshot"


def test_load_skips_invalid_entries(tmp_path, caplog):
    p = tmp_path / "events.json"
    p.write_text(
        json.dumps(
            [
                {"title": "No times"},
                "not an object",
                {"title": "Ok", "startDate": "2024-01-16T09:00:00Z", "endDate": "2024-01-16T10:00:00Z"},
            ]
        ),
        encoding="utf-8",
    )

    events = load_events(str(p), TZ)

    assert [e.title for e in events] == ["Ok"]
    assert "Dropped invalid event No times" in caplog.text


def test_save_then_load_keeps_event(tmp_path):
    event = EventCandidate(
        id="e9",
        title="Review",
        interval=TimeInterval(
            datetime(2024, 2, 1, 17, 0, tzinfo=timezone.utc),
            datetime(2024, 2, 1, 18, 0, tzinfo=timezone.utc),
        ),
        location="Room 2",
        attendees=[Attendee("ann@example.com", "Ann")],
        recurrence=RecurrenceRule(Frequency.MONTHLY, by_month_day=(1,)),
        tags=["q1"],
    )
    path = tmp_path / "nested" / "events.json"

    save_events(str(path), [event])
    (loaded,) = load_events(str(path), TZ)

    assert loaded.interval == event.interval
    assert loaded.location == "Room 2"
    assert loaded.attendees == event.attendees
    assert loaded.recurrence == event.recurrence
    assert loaded.tags == ["q1"]
