from __future__ import annotations

import logging
import re
import uuid
from datetime import date, datetime, time, timedelta
from typing import Any, Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo

from .parsing import ParseContext, ParseResult
from .timeutils import parse_hhmm, resolve_relative_date

logger = logging.getLogger(__name__)

_DAYS = "monday|tuesday|wednesday|thursday|friday|saturday|sunday"
_MONTHS = {
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "may": 5, "jun": 6,
    "jul": 7, "aug": 8, "sep": 9, "oct": 10, "nov": 11, "dec": 12,
}

_ALL_DAY_RE = re.compile(r"\b(?:all[-\s]day|entire\s+day|whole\s+day)\b", re.I)
_RANGE_RE = re.compile(
    r"\b(from\s+)?(\d{1,2})(?::(\d{2}))?\s*(am|pm)?\s*(?:-|to|until|till)\s*(\d{1,2})(?::(\d{2}))?\s*(am|pm)?\b",
    re.I,
)
_TIME_MERIDIEM_RE = re.compile(r"\b(?:at\s+)?(\d{1,2})(?::(\d{2}))?\s*(am|pm)\b", re.I)
_TIME_24H_RE = re.compile(r"\b(?:at\s+)?(\d{1,2}):(\d{2})\b", re.I)
_TIME_AT_RE = re.compile(r"\bat\s+(\d{1,2})\b(?![:/\-]\d)", re.I)
_NOON_RE = re.compile(r"\b(?:at\s+)?(noon|midnight)\b", re.I)

_DURATION_RE = re.compile(
    r"\b(?:for|lasting)\s+(an?|half\s+an|\d+(?:\.\d+)?)\s*(hours?|hrs?|h|minutes?|mins?)\b", re.I
)
_DURATION_ADJ_RE = re.compile(r"\b(\d+)[-\s](hours?|hrs?|minutes?|mins?)\b", re.I)

_ISO_DATE_RE = re.compile(r"(?<!until )\b(?:on\s+)?(\d{4})-(\d{2})-(\d{2})\b", re.I)
_US_DATE_RE = re.compile(r"\b(?:on\s+)?(\d{1,2})/(\d{1,2})/(\d{4})\b", re.I)
_MONTH_DATE_RE = re.compile(
    r"\b(?:on\s+)?(jan(?:uary)?|feb(?:ruary)?|mar(?:ch)?|apr(?:il)?|may|june?|july?|aug(?:ust)?"
    r"|sep(?:t(?:ember)?)?|oct(?:ober)?|nov(?:ember)?|dec(?:ember)?)\.?\s+(\d{1,2})(?:st|nd|rd|th)?"
    r"(?:,?\s+(\d{4}))?\b",
    re.I,
)
_RELATIVE_RE = re.compile(
    r"\b(?:on\s+)?(today|tonight|tomorrow|next\s+week|this\s+weekend|(?:(?:next|this)\s+)?(?:" + _DAYS + r"))\b",
    re.I,
)

_KNOWN_PLACE_RE = re.compile(
    r"\b(?:(?:at|in|from)\s+(?:the\s+)?)?(conference\s+room(?:\s+[a-z0-9]\b)?|meeting\s+room(?:\s+[a-z0-9]\b)?"
    r"|office|home|starbucks|coffee\s+shop|zoom|teams|google\s+meet|skype|remote)\b",
    re.I,
)
_AT_PLACE_RE = re.compile(r"\b(?:at|in)\s+(?:the\s+)?([A-Z][\w'&.-]*(?:\s+(?:[A-Z0-9][\w'&.-]*|of))*)")
_NOT_PLACES = {d.capitalize() for d in _DAYS.split("|")} | {
    "January", "February", "March", "April", "May", "June", "July", "August",
    "September", "October", "November", "December", "Noon", "Midnight",
}

_RECURRENCE_WORDS_RE = re.compile(
    r"\b(?:every\s+(?:other\s+|\d+\s+)?(?:day|week|month|year|weekday|weekend|" + _DAYS + r")s?"
    r"|each\s+(?:day|week|month|year)|daily|weekly|monthly|yearly|annually|weekdays?|weekends?"
    r"|(?:for|repeat)\s+\d+\s+times?|until\s+\d{4}-\d{2}-\d{2}|on\s+the\s+\d{1,2}(?:st|nd|rd|th)?"
    r"|of\s+(?:the|each|every)\s+month|(?:first|second|third|fourth|last)\s+(?:day|" + _DAYS + r"))\b",
    re.I,
)
_PRIORITY_WORDS_RE = re.compile(r"\b(?:urgent|critical|important|optional|high\s+priority|low\s+priority)\b", re.I)
_FILLER_RE = re.compile(
    r"^\s*(?:i\s+have\s+|i\s+need\s+to\s+|schedule\s+|add\s+|book\s+|set\s+up\s+|remind\s+me\s+to\s+"
    r"|there\s+is\s+)?(?:an?\s+)?",
    re.I,
)
_EDGE_WORDS = {"at", "on", "in", "from", "to", "for", "the", "and", "a", "an"}

_PRIORITIES = [
    ("urgent", re.compile(r"\b(?:urgent|critical|asap)\b")),
    ("high", re.compile(r"\b(?:important|high\s+priority)\b")),
    ("low", re.compile(r"\b(?:optional|low\s+priority)\b")),
]
_CATEGORIES = [
    ("focus", re.compile(r"\b(?:focus|deep\s+work|study)\b")),
    ("break", re.compile(r"\b(?:break|lunch|coffee)\b")),
    ("meeting", re.compile(r"\b(?:meeting|standup|stand-up|call|sync|1:1|interview|review)\b")),
    ("personal", re.compile(r"\b(?:gym|exercise|workout|dinner|doctor|dentist|personal|family|birthday)\b")),
    ("work", re.compile(r"\b(?:work|project|deadline|report)\b")),
]
_ENERGY = [
    ("high", re.compile(r"\b(?:high\s+energy|gym|workout|exercise|presentation|interview|workshop|run)\b")),
    ("low", re.compile(r"\b(?:low\s+energy|break|lunch|coffee|reading|meditation|walk|admin)\b")),
]


def _clock(hour: int, minute: int, meridiem: Optional[str]) -> Optional[time]:
    if minute > 59:
        return None
    if meridiem:
        if not 1 <= hour <= 12:
            return None
        hour = hour % 12 + (12 if meridiem.lower() == "pm" else 0)
    elif hour > 23:
        return None
    return time(hour, minute)


def _bare(hour: int, minute: int) -> Optional[time]:
    # A bare "at 3" or "from 2 to 4" means the afternoon.
    if 1 <= hour <= 7:
        hour += 12
    return _clock(hour, minute, None)


def _title_case(value: str) -> str:
    return " ".join(w.capitalize() if len(w) > 1 else w.upper() for w in value.split())


class HeuristicTextParser:
    """Keyword and regex parser for a single event; used when no model is configured or it fails."""

    name = "heuristic"

    def __init__(self, default_duration_minutes: int = 60) -> None:
        self.default_duration_minutes = default_duration_minutes

    def parse(self, text: str, context: ParseContext) -> ParseResult:
        tz = ZoneInfo(context.timezone)
        now = context.current_date.astimezone(tz)
        spans: List[Tuple[int, int]] = []

        all_day = self._take(_ALL_DAY_RE, text, spans) is not None
        start_t, end_t = self._time_range(text, spans)
        if start_t is None:
            start_t = self._single_time(text, spans)
        duration = self._duration(text, spans)
        day = self._date(text, now, spans)
        location = self._location(text, spans)

        lowered = text.lower()
        category = self._first_match(_CATEGORIES, lowered) or "other"
        title = self._title(text, spans) or category.capitalize()
        if title == "Other":
            title = "Event"

        if day is None and start_t is None and not all_day:
            logger.debug("No date or time found in %r", text)
            return ParseResult(
                message="Could not find a date or time for this event",
                needs_clarification=True,
                clarification_questions=[f'When should "{title}" take place?'],
            )

        questions: List[str] = []
        suggestions: List[str] = []
        if day is None:
            day = now.date()
            if start_t is not None and datetime.combine(day, start_t, tzinfo=tz) < now:
                day += timedelta(days=1)
            suggestions.append(f"No date given; assumed {day.isoformat()}")
        if start_t is None and not all_day:
            start_t = parse_hhmm(context.working_hours.start)
            questions.append(f'What time should "{title}" start?')

        if all_day:
            start = datetime.combine(day, time(0, 0), tzinfo=tz)
            end = start + timedelta(days=1)
        else:
            start = datetime.combine(day, start_t, tzinfo=tz)
            if end_t is not None:
                end = datetime.combine(day, end_t, tzinfo=tz)
                if end <= start:
                    end += timedelta(days=1)
            else:
                end = start + timedelta(minutes=duration or self.default_duration_minutes)

        confidence = 0.5
        if start_t is not None and not questions:
            confidence += 0.2
        if not suggestions:
            confidence += 0.2
        if location:
            confidence += 0.1

        raw: Dict[str, Any] = {
            "id": uuid.uuid4().hex,
            "title": title,
            "startDate": start.isoformat(),
            "endDate": end.isoformat(),
            "isAllDay": all_day,
            "confidence": min(confidence, 0.9),
            "metadata": {
                "source": "user_input",
                "priority": self._first_match(_PRIORITIES, lowered) or "medium",
                "category": category,
                "tags": [],
            },
        }
        if location:
            raw["location"] = location
        energy = self._first_match(_ENERGY, lowered)
        if energy:
            raw["energyLevel"] = energy

        return ParseResult(
            events=[raw],
            message=f'Scheduled "{title}" on {start:%A, %B} {start.day}'
            + ("" if all_day else f" at {start:%H:%M}"),
            needs_clarification=bool(questions),
            clarification_questions=questions,
            suggestions=suggestions,
        )

    def _take(self, pattern: re.Pattern, text: str, spans: List[Tuple[int, int]]) -> Optional[re.Match]:
        m = pattern.search(text)
        if m:
            spans.append(m.span())
        return m

    def _time_range(self, text: str, spans: List[Tuple[int, int]]) -> Tuple[Optional[time], Optional[time]]:
        for m in _RANGE_RE.finditer(text):
            has_from, h1, m1, ap1, h2, m2, ap2 = m.groups()
            if not (has_from or ap1 or ap2 or m1 or m2):
                continue
            h1, h2 = int(h1), int(h2)
            min1, min2 = int(m1 or 0), int(m2 or 0)
            if ap1 or ap2:
                start = _clock(h1, min1, ap1 or ap2)
                end = _clock(h2, min2, ap2 or ap1)
                if not ap1 and start and end and start >= end:
                    start = _clock(h1, min1, "am")
            else:
                start, end = _bare(h1, min1), _bare(h2, min2)
            if start is None or end is None:
                continue
            spans.append(m.span())
            return start, end
        return None, None

    def _single_time(self, text: str, spans: List[Tuple[int, int]]) -> Optional[time]:
        m = self._take(_TIME_MERIDIEM_RE, text, spans)
        if m:
            return _clock(int(m.group(1)), int(m.group(2) or 0), m.group(3))
        m = self._take(_TIME_24H_RE, text, spans)
        if m:
            return _clock(int(m.group(1)), int(m.group(2)), None)
        m = self._take(_NOON_RE, text, spans)
        if m:
            return time(12, 0) if m.group(1).lower() == "noon" else time(0, 0)
        m = self._take(_TIME_AT_RE, text, spans)
        if m:
            return _bare(int(m.group(1)), 0)
        return None

    def _duration(self, text: str, spans: List[Tuple[int, int]]) -> Optional[int]:
        m = self._take(_DURATION_RE, text, spans) or self._take(_DURATION_ADJ_RE, text, spans)
        if not m:
            return None
        amount, unit = m.group(1).lower(), m.group(2).lower()
        if amount.startswith("half"):
            value = 0.5
        elif amount in ("a", "an"):
            value = 1.0
        else:
            value = float(amount)
        minutes = value * 60 if unit.startswith("h") else value
        return max(1, int(round(minutes)))

    def _date(self, text: str, now: datetime, spans: List[Tuple[int, int]]) -> Optional[date]:
        today = now.date()
        for m in _ISO_DATE_RE.finditer(text):
            try:
                found = date(int(m.group(1)), int(m.group(2)), int(m.group(3)))
            except ValueError:
                continue
            spans.append(m.span())
            return found
        for m in _US_DATE_RE.finditer(text):
            try:
                found = date(int(m.group(3)), int(m.group(1)), int(m.group(2)))
            except ValueError:
                continue
            spans.append(m.span())
            return found
        for m in _MONTH_DATE_RE.finditer(text):
            month = _MONTHS[m.group(1)[:3].lower()]
            year = int(m.group(3)) if m.group(3) else today.year
            try:
                found = date(year, month, int(m.group(2)))
                if not m.group(3) and found < today:
                    found = date(year + 1, month, int(m.group(2)))
            except ValueError:
                continue
            spans.append(m.span())
            return found
        for m in _RELATIVE_RE.finditer(text):
            found = resolve_relative_date(m.group(1), now)
            if found is not None:
                spans.append(m.span())
                return found
        return None

    def _location(self, text: str, spans: List[Tuple[int, int]]) -> Optional[str]:
        for m in _AT_PLACE_RE.finditer(text):
            place = m.group(1).rstrip(".")
            if place.split()[0] in _NOT_PLACES:
                continue
            spans.append(m.span())
            return place
        m = self._take(_KNOWN_PLACE_RE, text, spans)
        if m:
            return _title_case(m.group(1))
        return None

    def _title(self, text: str, spans: List[Tuple[int, int]]) -> str:
        spans = spans + [m.span() for m in _RECURRENCE_WORDS_RE.finditer(text)]
        spans += [m.span() for m in _PRIORITY_WORDS_RE.finditer(text)]
        chars = list(text)
        for start, end in spans:
            for i in range(start, end):
                chars[i] = " "
        remaining = _FILLER_RE.sub("", "".join(chars))

        words = [w.strip(",.;:!?-") for w in remaining.split()]
        words = [w for w in words if w]
        while words and words[-1].lower() in _EDGE_WORDS:
            words.pop()
        while words and words[0].lower() in _EDGE_WORDS:
            words.pop(0)
        title = " ".join(words)
        return title[:1].upper() + title[1:]

    def _first_match(self, table, lowered: str) -> Optional[str]:
        for value, pattern in table:
            if pattern.search(lowered):
                return value
        return None
