from __future__ import annotations
from datetime import datetime, timedelta
import logging
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo

import caldav
from caldav.elements import dav
from caldav.lib import error as caldav_error
import vobject
from vobject.icalendar import utc as ical_utc

from .errors import ExternalCapabilityError, RecurrenceParseError
from .models import Attendee, EventCandidate, TimeInterval
from .recurrence import generate_rule, parse_rule
from .sync import patched_interval

logger = logging.getLogger(__name__)

ICLOUD_CALDAV_URL = "https://caldav.icloud.com/"
_ICAL_COMPAT_MSG = "Ical data was modified to avoid compatibility issues"


class _IcalCompatibilityFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        return _ICAL_COMPAT_MSG not in record.getMessage()


def _install_ical_compatibility_filter() -> None:
    root_logger = logging.getLogger()
    if any(isinstance(f, _IcalCompatibilityFilter) for f in root_logger.filters):
        return
    root_logger.addFilter(_IcalCompatibilityFilter())


def _as_datetime(value: Any, tz: ZoneInfo) -> datetime:
    if isinstance(value, datetime):
        return value.astimezone(tz) if value.tzinfo else value.replace(tzinfo=tz)
    return datetime.combine(value, datetime.min.time(), tzinfo=tz)


def _text(vevent: Any, name: str) -> Optional[str]:
    if not hasattr(vevent, name):
        return None
    value = getattr(vevent, name).value
    return str(value) if value else None


def event_from_vevent(vevent: Any, tz: ZoneInfo) -> EventCandidate:
    dtstart = vevent.dtstart.value
    # dtstart may be date (all-day) or datetime
    all_day = not isinstance(dtstart, datetime)
    start = _as_datetime(dtstart, tz)
    if hasattr(vevent, "dtend"):
        end = _as_datetime(vevent.dtend.value, tz)
    else:
        end = start + (timedelta(days=1) if all_day else timedelta(hours=1))

    recurrence = None
    rrule = _text(vevent, "rrule")
    if rrule:
        try:
            recurrence = parse_rule(rrule)
        except RecurrenceParseError as e:
            logger.debug("Ignoring RRULE %r: %s", rrule, e)

    attendees = []
    for a in vevent.contents.get("attendee", []):
        email = str(a.value).replace("mailto:", "").replace("MAILTO:", "")
        name = a.params.get("CN", [None])[0]
        status = a.params.get("PARTSTAT", [None])[0]
        attendees.append(Attendee(email=email, display_name=name, response_status=status.lower() if status else None))

    return EventCandidate(
        id=str(vevent.uid.value),
        title=_text(vevent, "summary") or "(No title)",
        interval=TimeInterval(start, end, all_day),
        location=_text(vevent, "location"),
        description=_text(vevent, "description"),
        attendees=attendees,
        recurrence=recurrence,
        source="icloud",
    )


def _set(vevent: Any, name: str, value: Any) -> None:
    existing = vevent.contents.get(name)
    if value is None or value == "":
        if existing:
            del vevent.contents[name]
        return
    if existing:
        existing[0].value = value
    else:
        vevent.add(name).value = value


def _set_times(vevent: Any, interval: TimeInterval, tz: ZoneInfo) -> None:
    if interval.all_day:
        start: Any = interval.start.astimezone(tz).date()
        end: Any = interval.end.astimezone(tz).date()
        if end <= start:
            end = start + timedelta(days=1)
    else:
        # vobject only writes a bare UTC value for its own utc tzinfo
        start = interval.start.astimezone(ical_utc)
        end = interval.end.astimezone(ical_utc)
    _set(vevent, "dtstart", start)
    _set(vevent, "dtend", end)


def _set_attendees(vevent: Any, attendees: List[Attendee]) -> None:
    vevent.contents.pop("attendee", None)
    for a in attendees:
        line = vevent.add("attendee")
        line.value = f"mailto:{a.email}"
        if a.display_name:
            line.params["CN"] = [a.display_name]
        if a.response_status:
            line.params["PARTSTAT"] = [a.response_status.upper()]


def event_to_ical(event: EventCandidate, tz: ZoneInfo) -> str:
    cal = vobject.iCalendar()
    vevent = cal.add("vevent")
    _set(vevent, "uid", event.id)
    _set(vevent, "summary", event.title)
    _set_times(vevent, event.interval, tz)
    _set(vevent, "location", event.location)
    _set(vevent, "description", event.description)
    if event.recurrence:
        _set(vevent, "rrule", generate_rule(event.recurrence))
    _set_attendees(vevent, event.attendees)
    return cal.serialize()


class ICloudCalendarMutator:
    """Calendar mutation port for one iCloud CalDAV calendar."""

    def __init__(self, calendar: Any, timezone_name: str = "UTC") -> None:
        self.calendar = calendar
        self.tz = ZoneInfo(timezone_name)

    @classmethod
    def connect(
        cls,
        username: str,
        app_password: str,
        calendar_name: Optional[str] = None,
        timezone_name: str = "UTC",
    ) -> "ICloudCalendarMutator":
        _install_ical_compatibility_filter()

        client = caldav.DAVClient(
            url=ICLOUD_CALDAV_URL,
            username=username,
            password=app_password,
        )
        try:
            calendars = client.principal().calendars()
        except caldav_error.DAVError as e:
            raise ExternalCapabilityError("connect", e, _classify(e)) from e

        for cal in calendars:
            name = getattr(cal, "name", None) or cal.get_properties([dav.DisplayName()]).get(dav.DisplayName(), "")
            if calendar_name is None or name == calendar_name:
                return cls(cal, timezone_name)
        raise ValueError(f"No iCloud calendar named {calendar_name!r}")

    def _object(self, operation: str, event_id: str) -> Any:
        try:
            return self.calendar.event_by_uid(event_id)
        except caldav_error.DAVError as e:
            raise ExternalCapabilityError(operation, e, _classify(e)) from e

    def list_events(self, start: datetime, end: datetime) -> List[EventCandidate]:
        try:
            results = self.calendar.date_search(start, end)
        except caldav_error.DAVError as e:
            raise ExternalCapabilityError("list", e, _classify(e)) from e

        events: List[EventCandidate] = []
        for r in results:
            vevent = getattr(r.vobject_instance, "vevent", None)
            if vevent is None:
                continue
            try:
                events.append(event_from_vevent(vevent, self.tz))
            except (AttributeError, ValueError) as e:
                logger.warning("Skipping iCloud event: %s", e)
        return events

    def create(self, event: EventCandidate) -> EventCandidate:
        try:
            self.calendar.save_event(event_to_ical(event, self.tz))
        except caldav_error.DAVError as e:
            raise ExternalCapabilityError("create", e, _classify(e)) from e
        return event

    def update(self, event_id: str, patch: Dict[str, Any]) -> EventCandidate:
        obj = self._object("update", event_id)
        vevent = obj.vobject_instance.vevent
        current = event_from_vevent(vevent, self.tz)

        if "title" in patch:
            _set(vevent, "summary", patch["title"])
        if "description" in patch:
            _set(vevent, "description", patch["description"])
        if "location" in patch:
            _set(vevent, "location", patch["location"])
        if "start" in patch or "end" in patch:
            _set_times(vevent, patched_interval(current.interval, patch), self.tz)
        if "recurrence" in patch:
            rule = patch["recurrence"]
            _set(vevent, "rrule", generate_rule(rule) if rule else None)
        if "attendees" in patch:
            _set_attendees(vevent, patch["attendees"])

        try:
            obj.save()
        except caldav_error.DAVError as e:
            raise ExternalCapabilityError("update", e, _classify(e)) from e
        return event_from_vevent(vevent, self.tz)

    def delete(self, event_id: str) -> None:
        obj = self._object("delete", event_id)
        try:
            obj.delete()
        except caldav_error.DAVError as e:
            raise ExternalCapabilityError("delete", e, _classify(e)) from e


def _classify(e: Exception) -> Optional[str]:
    if isinstance(e, caldav_error.AuthorizationError):
        return "permission_denied"
    return None
