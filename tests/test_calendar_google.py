from datetime import datetime, timezone
from zoneinfo import ZoneInfo

import httplib2
import pytest
from googleapiclient.errors import HttpError

from calintel.calendar_google import GoogleCalendarMutator, classify_http_error, event_body, event_from_item, patch_body
from calintel.errors import ExternalCapabilityError
from calintel.models import Attendee, Category, EventCandidate, Frequency, Priority, RecurrenceRule, TimeInterval

TZ = ZoneInfo("America/Phoenix")


def _http_error(status: int) -> HttpError:
    return HttpError(httplib2.Response({"status": status}), b"{}")


class _Request:
    def __init__(self, result=None, error=None):
        self.result = result
        self.error = error

    def execute(self):
        if self.error is not None:
            raise self.error
        return self.result


class _Events:
    def __init__(self, pages=None, error=None):
        self.pages = list(pages or [])
        self.error = error
        self.calls = []

    def list(self, **kwargs):
        self.calls.append(("list", kwargs))
        return _Request(self.pages.pop(0) if self.pages else {}, self.error)

    def insert(self, **kwargs):
        self.calls.append(("insert", kwargs))
        return _Request({"id": "created1", **kwargs["body"]}, self.error)

    def patch(self, **kwargs):
        self.calls.append(("patch", kwargs))
        item = {
            "id": kwargs["eventId"],
            "summary": "Patched",
            "start": {"dateTime": "2024-01-16T09:00:00-07:00"},
            "end": {"dateTime": "2024-01-16T10:00:00-07:00"},
        }
        return _Request(item, self.error)

    def delete(self, **kwargs):
        self.calls.append(("delete", kwargs))
        return _Request("", self.error)


class _Service:
    def __init__(self, events: _Events):
        self._events = events

    def events(self):
        return self._events


def _event(event_id="abc123def", **kwargs) -> EventCandidate:
    return EventCandidate(
        id=event_id,
        title="Standup",
        interval=TimeInterval(
            datetime(2024, 1, 16, 16, 0, tzinfo=timezone.utc),
            datetime(2024, 1, 16, 16, 15, tzinfo=timezone.utc),
        ),
        **kwargs,
    )


def test_event_body_uses_local_wall_time_and_private_properties():
    event = _event(
        location="Office",
        category=Category.MEETING,
        priority=Priority.HIGH,
        attendees=[Attendee("ann@example.com", "Ann")],
        recurrence=RecurrenceRule(Frequency.WEEKLY, by_day=("TU",)),
    )

    body = event_body(event, TZ)

    assert body["id"] == "abc123def"
    assert body["summary"] == "Standup"
    assert body["start"] == {"dateTime": "2024-01-16T09:00:00-07:00", "timeZone": "America/Phoenix"}
    assert body["location"] == "Office"
    assert body["attendees"] == [{"email": "ann@example.com", "displayName": "Ann"}]
    assert body["recurrence"] == ["RRULE:FREQ=WEEKLY;BYDAY=TU"]
    assert body["extendedProperties"]["private"] == {"category": "meeting", "priority": "high"}


def test_event_body_omits_ids_google_would_reject():
    assert "id" not in event_body(_event("Local-Event_1"), TZ)


def test_event_body_all_day_uses_dates():
    event = EventCandidate(
        id="x",
        title="Offsite",
        interval=TimeInterval(
            datetime(2024, 3, 3, 7, 0, tzinfo=timezone.utc),
            datetime(2024, 3, 4, 7, 0, tzinfo=timezone.utc),
            True,
        ),
    )

    body = event_body(event, TZ)

    assert body["start"] == {"date": "2024-03-03"}
    assert body["end"] == {"date": "2024-03-04"}


def test_patch_body_maps_only_given_fields():
    body = patch_body({"title": "New", "location": None, "recurrence": None}, TZ)

    assert body == {"summary": "New", "location": "", "recurrence": []}


def test_patch_body_sends_dates_for_all_day_times():
    patch = {
        "start": datetime(2024, 3, 3, 7, 0, tzinfo=timezone.utc),
        "end": datetime(2024, 3, 4, 7, 0, tzinfo=timezone.utc),
        "all_day": True,
    }

    body = patch_body(patch, TZ)

    assert body == {"start": {"date": "2024-03-03"}, "end": {"date": "2024-03-04"}}


def test_event_from_item_reads_timed_and_all_day_items():
    timed = event_from_item(
        {
            "id": "g1",
            "summary": "Review",
            "start": {"dateTime": "2024-01-16T17:00:00Z"},
            "end": {"dateTime": "2024-01-16T18:00:00Z"},
            "recurrence": ["EXDATE:20240123T170000Z", "RRULE:FREQ=DAILY;COUNT=3"],
            "extendedProperties": {"private": {"category": "work", "priority": "urgent"}},
        },
        TZ,
    )
    all_day = event_from_item(
        {"id": "g2", "start": {"date": "2024-03-03"}, "end": {"date": "2024-03-04"}},
        TZ,
    )

    assert timed.start == datetime(2024, 1, 16, 17, 0, tzinfo=timezone.utc)
    assert timed.recurrence == RecurrenceRule(Frequency.DAILY, count=3)
    assert timed.category is Category.WORK
    assert timed.priority is Priority.URGENT
    assert timed.source == "google"
    assert all_day.all_day
    assert all_day.title == "(No title)"
    assert all_day.interval.duration_minutes == 24 * 60


def test_event_from_item_tolerates_unknown_properties():
    item = {
        "id": "g3",
        "summary": "Odd",
        "start": {"dateTime": "2024-01-16T17:00:00Z"},
        "end": {"dateTime": "2024-01-16T18:00:00Z"},
        "recurrence": ["RRULE:INTERVAL=2"],
        "extendedProperties": {"private": {"category": "hobby", "priority": "meh"}},
    }

    event = event_from_item(item, TZ)

    assert event.recurrence is None
    assert event.category is Category.OTHER
    assert event.priority is Priority.MEDIUM


@pytest.mark.parametrize("status,expected", [(429, "quota_exceeded"), (403, "permission_denied"), (404, None)])
def test_classify_http_error(status, expected):
    assert classify_http_error(_http_error(status)) == expected


def test_list_events_follows_pages_and_skips_cancelled():
    item = {
        "start": {"dateTime": "2024-01-16T17:00:00Z"},
        "end": {"dateTime": "2024-01-16T18:00:00Z"},
    }
    events = _Events(
        pages=[
            {"items": [{"id": "a", "summary": "A", **item}, {"id": "b", "status": "cancelled", **item}], "nextPageToken": "p2"},
            {"items": [{"id": "c", "summary": "C", **item}, {"id": "broken", "start": {}, "end": {}}]},
        ]
    )
    mutator = GoogleCalendarMutator(_Service(events), "work", "America/Phoenix")

    listed = mutator.list_events(
        datetime(2024, 1, 16, tzinfo=timezone.utc), datetime(2024, 1, 17, tzinfo=timezone.utc)
    )

    assert [e.id for e in listed] == ["a", "c"]
    assert events.calls[0][1]["calendarId"] == "work"
    assert events.calls[0][1]["pageToken"] is None
    assert events.calls[1][1]["pageToken"] == "p2"


def test_create_update_delete_call_the_api():
    events = _Events()
    mutator = GoogleCalendarMutator(_Service(events), timezone_name="America/Phoenix")

    created = mutator.create(_event("Local-Event_1"))
    updated = mutator.update("g1", {"title": "Patched"})
    mutator.delete("g1")

    assert created.id == "created1"
    assert created.title == "Standup"
    assert updated.title == "Patched"
    assert [c[0] for c in events.calls] == ["insert", "patch", "delete"]
    assert events.calls[1][1]["body"] == {"summary": "Patched"}
    assert events.calls[2][1] == {"calendarId": "primary", "eventId": "g1"}


def test_http_errors_become_typed_capability_errors():
    mutator = GoogleCalendarMutator(_Service(_Events(error=_http_error(429))))

    with pytest.raises(ExternalCapabilityError) as exc:
        mutator.delete("g1")

    assert exc.value.operation == "delete"
    assert exc.value.sync_conflict_type == "quota_exceeded"
    assert isinstance(exc.value.__cause__, HttpError)
