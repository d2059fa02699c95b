import re
from datetime import datetime, timezone
from zoneinfo import ZoneInfo

import pytest

from calintel.parsing import build_candidates, candidate_from_raw

TZ = ZoneInfo("UTC")


def _raw(**extra):
    return {"title": "Review", "startDate": "2024-01-16T14:00:00Z", "endDate": "2024-01-16T15:00:00Z", **extra}


def test_non_object_metadata_drops_only_that_event():
    events, warnings = build_candidates([_raw(title="Bad", metadata="work"), _raw(title="Good")], TZ)

    assert [e.title for e in events] == ["Good"]
    assert warnings == ["Dropped invalid event Bad: metadata must be an object"]


def test_string_resource_is_one_resource():
    event = candidate_from_raw(_raw(resources="projector"), TZ)

    assert event.resources == frozenset({"projector"})


@pytest.mark.parametrize(
    "extra,message",
    [
        ({"resources": 42}, "resources must be a list of strings"),
        ({"attendees": "ann@example.com"}, "attendees must be a list"),
        ({"recurrence": 7}, "recurrence must be an RRULE string"),
        ({"metadata": {"tags": {"a": 1}}}, "tags must be a list of strings"),
    ],
)
def test_malformed_fields_raise_value_error(extra, message):
    with pytest.raises(ValueError, match=message):
        candidate_from_raw(_raw(**extra), TZ)


def test_non_object_entries_are_dropped():
    events, warnings = build_candidates(["Review at 2", _raw()], TZ)

    assert len(events) == 1
    assert warnings == ["Dropped invalid event #1: not an object"]


def test_generated_ids_are_base32hex():
    event = candidate_from_raw(_raw(), TZ)

    assert re.fullmatch(r"[0-9a-v]{32}", event.id)
    assert event.start == datetime(2024, 1, 16, 14, 0, tzinfo=timezone.utc)
