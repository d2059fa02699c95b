from __future__ import annotations
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo
import logging
import os
import re

from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from .errors import ExternalCapabilityError, RecurrenceParseError
from .models import Attendee, Category, EventCandidate, Priority, TimeInterval
from .recurrence import generate_rule, parse_rule

logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/calendar.events"]

# Google event ids are base32hex: lowercase a-v and digits.
_GOOGLE_ID_RE = re.compile(r"^[0-9a-v]{5,1024}$")
_QUOTA_REASONS = ("rateLimitExceeded", "userRateLimitExceeded", "quotaExceeded", "dailyLimitExceeded")

def _get_creds(credentials_path: str, token_path: str) -> Credentials:
    if os.path.exists(token_path):
        creds = Credentials.from_authorized_user_file(token_path, SCOPES)
        if creds.valid:
            return creds
        if creds.expired and creds.refresh_token:
            creds.refresh(Request())
            with open(token_path, "w", encoding="utf-8") as f:
                f.write(creds.to_json())
            return creds

    flow = InstalledAppFlow.from_client_secrets_file(credentials_path, SCOPES)
    creds = flow.run_local_server(port=0)
    os.makedirs(os.path.dirname(token_path) or ".", exist_ok=True)
    with open(token_path, "w", encoding="utf-8") as f:
        f.write(creds.to_json())
    return creds

def classify_http_error(e: HttpError) -> Optional[str]:
    status = getattr(e.resp, "status", None)
    text = str(e)
    if status == 429 or any(reason in text for reason in _QUOTA_REASONS):
        return "quota_exceeded"
    if status == 403:
        return "permission_denied"
    return None

def _time_field(value: datetime, all_day: bool, tz: ZoneInfo) -> Dict[str, str]:
    local = value.astimezone(tz)
    if all_day:
        return {"date": local.date().isoformat()}
    return {"dateTime": local.isoformat(), "timeZone": tz.key}

def _attendees_body(attendees: List[Attendee]) -> List[Dict[str, str]]:
    body = []
    for a in attendees:
        item = {"email": a.email}
        if a.display_name:
            item["displayName"] = a.display_name
        if a.response_status:
            item["responseStatus"] = a.response_status
        body.append(item)
    return body

def event_body(event: EventCandidate, tz: ZoneInfo) -> Dict[str, Any]:
    body: Dict[str, Any] = {
        "summary": event.title,
        "start": _time_field(event.start, event.all_day, tz),
        "end": _time_field(event.end, event.all_day, tz),
        "extendedProperties": {
            "private": {"category": event.category.value, "priority": event.priority.value},
        },
    }
    if _GOOGLE_ID_RE.match(event.id):
        body["id"] = event.id
    if event.location:
        body["location"] = event.location
    if event.description:
        body["description"] = event.description
    if event.attendees:
        body["attendees"] = _attendees_body(event.attendees)
    if event.recurrence:
        body["recurrence"] = ["RRULE:" + generate_rule(event.recurrence)]
    return body

def patch_body(patch: Dict[str, Any], tz: ZoneInfo) -> Dict[str, Any]:
    body: Dict[str, Any] = {}
    all_day = bool(patch.get("all_day", False))
    if "title" in patch:
        body["summary"] = patch["title"]
    if "description" in patch:
        body["description"] = patch["description"] or ""
    if "location" in patch:
        body["location"] = patch["location"] or ""
    if "start" in patch:
        body["start"] = _time_field(patch["start"], all_day, tz)
    if "end" in patch:
        body["end"] = _time_field(patch["end"], all_day, tz)
    if "attendees" in patch:
        body["attendees"] = _attendees_body(patch["attendees"])
    if "recurrence" in patch:
        rule = patch["recurrence"]
        body["recurrence"] = ["RRULE:" + generate_rule(rule)] if rule else []
    return body

def event_from_item(item: Dict[str, Any], tz: ZoneInfo) -> EventCandidate:
    start_obj = item.get("start", {})
    end_obj = item.get("end", {})

    # All-day events have "date" not "dateTime"
    if "date" in start_obj:
        start = datetime.fromisoformat(start_obj["date"]).replace(tzinfo=tz)
        end = datetime.fromisoformat(end_obj["date"]).replace(tzinfo=tz) if "date" in end_obj else start + timedelta(days=1)
        all_day = True
    else:
        start = datetime.fromisoformat(start_obj["dateTime"].replace("Z", "+00:00"))
        end = datetime.fromisoformat(end_obj["dateTime"].replace("Z", "+00:00"))
        all_day = False

    recurrence = None
    for line in item.get("recurrence", []):
        if line.startswith("RRULE:"):
            try:
                recurrence = parse_rule(line)
            except RecurrenceParseError as e:
                logger.debug("Ignoring recurrence %r on %s: %s", line, item.get("id"), e)
            break

    private = (item.get("extendedProperties") or {}).get("private") or {}
    try:
        category = Category(private.get("category", "other"))
    except ValueError:
        category = Category.OTHER
    try:
        priority = Priority(private.get("priority", "medium"))
    except ValueError:
        priority = Priority.MEDIUM

    return EventCandidate(
        id=item["id"],
        title=item.get("summary", "(No title)"),
        interval=TimeInterval(start, end, all_day),
        location=item.get("location") or None,
        description=item.get("description") or None,
        category=category,
        priority=priority,
        attendees=[
            Attendee(
                email=a["email"],
                display_name=a.get("displayName"),
                response_status=a.get("responseStatus"),
            )
            for a in item.get("attendees", [])
            if a.get("email")
        ],
        recurrence=recurrence,
        source="google",
    )

class GoogleCalendarMutator:
    """Calendar mutation port backed by the Google Calendar v3 API."""

    def __init__(self, service: Any, calendar_id: str = "primary", timezone_name: str = "UTC") -> None:
        self.service = service
        self.calendar_id = calendar_id
        self.tz = ZoneInfo(timezone_name)

    @classmethod
    def from_files(
        cls,
        credentials_path: str,
        token_path: str,
        calendar_id: str = "primary",
        timezone_name: str = "UTC",
    ) -> "GoogleCalendarMutator":
        creds = _get_creds(credentials_path, token_path)
        service = build("calendar", "v3", credentials=creds, cache_discovery=False)
        return cls(service, calendar_id, timezone_name)

    def _execute(self, operation: str, request: Any) -> Any:
        try:
            return request.execute()
        except HttpError as e:
            raise ExternalCapabilityError(operation, e, classify_http_error(e)) from e
        except (GoogleAuthError, OSError) as e:
            raise ExternalCapabilityError(operation, e) from e

    def list_events(self, time_min: datetime, time_max: datetime) -> List[EventCandidate]:
        events: List[EventCandidate] = []
        page_token = None
        while True:
            resp = self._execute(
                "list",
                self.service.events().list(
                    calendarId=self.calendar_id,
                    timeMin=time_min.isoformat(),
                    timeMax=time_max.isoformat(),
                    singleEvents=False,
                    pageToken=page_token,
                ),
            )
            for item in resp.get("items", []):
                if item.get("status") == "cancelled":
                    continue
                try:
                    events.append(event_from_item(item, self.tz))
                except (KeyError, ValueError) as e:
                    logger.warning("Skipping Google event %s: %s", item.get("id"), e)
            page_token = resp.get("nextPageToken")
            if not page_token:
                return events

    def create(self, event: EventCandidate) -> EventCandidate:
        item = self._execute(
            "create",
            self.service.events().insert(calendarId=self.calendar_id, body=event_body(event, self.tz)),
        )
        return event_from_item(item, self.tz)

    def update(self, event_id: str, patch: Dict[str, Any]) -> EventCandidate:
        item = self._execute(
            "update",
            self.service.events().patch(
                calendarId=self.calendar_id,
                eventId=event_id,
                body=patch_body(patch, self.tz),
            ),
        )
        return event_from_item(item, self.tz)

    def delete(self, event_id: str) -> None:
        self._execute(
            "delete",
            self.service.events().delete(calendarId=self.calendar_id, eventId=event_id),
        )
