from __future__ import annotations

import calendar
import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import Callable, Iterator, List, Optional, Sequence, Tuple
from zoneinfo import ZoneInfo

from .errors import RecurrenceParseError
from .models import WEEKDAY_CODES, WEEKDAY_NAMES, Frequency, RecurrenceRule
from .timeutils import normalize_text

logger = logging.getLogger(__name__)

_DAY_ALTERNATION = "monday|tuesday|wednesday|thursday|friday|saturday|sunday"
_DAY_TO_CODE = {name.lower(): code for name, code in zip(WEEKDAY_NAMES, WEEKDAY_CODES)}
_POSITIONS = {"first": 1, "second": 2, "third": 3, "fourth": 4, "fifth": 5, "last": -1}
_POSITION_NAMES = {1: "first", 2: "second", 3: "third", 4: "fourth", 5: "fifth", -1: "last"}
_UNIT_TO_FREQUENCY = {
    "day": Frequency.DAILY,
    "week": Frequency.WEEKLY,
    "month": Frequency.MONTHLY,
    "year": Frequency.YEARLY,
}

_CUE_RE = re.compile(
    r"\b(every|each|daily|weekly|monthly|yearly|annually|recurring|repeat|repeats|regular|routine|"
    r"weekdays?|weekends?|first|second|third|fourth|last|(?:" + _DAY_ALTERNATION + r")s?)\b"
)
_DAY_NAME_RE = re.compile(r"\b(" + _DAY_ALTERNATION + r")s?\b")
_EVERY_UNIT_RE = re.compile(r"\bevery\s+(?:(\d+|other)\s+)?(day|week|month|year)s?\b")
_EACH_UNIT_RE = re.compile(r"\beach\s+(day|week|month|year)\b")
_OF_MONTH_RE = re.compile(r"\bof\s+(?:the|each|every)\s+month\b")
_KEYWORD_FREQUENCIES: Sequence[Tuple[re.Pattern, Frequency]] = (
    (re.compile(r"\bdaily\b"), Frequency.DAILY),
    (re.compile(r"\bweekly\b"), Frequency.WEEKLY),
    (re.compile(r"\bmonthly\b"), Frequency.MONTHLY),
    (re.compile(r"\b(?:yearly|annually)\b"), Frequency.YEARLY),
)
_DAY_SPECIFIC_RE = re.compile(
    r"\b(?:every|each)\s+(?:other\s+)?(?:" + _DAY_ALTERNATION + r")\b"
    r"|\b(?:" + _DAY_ALTERNATION + r")\s+and\s+(?:" + _DAY_ALTERNATION + r")\b"
    r"|\b(?:" + _DAY_ALTERNATION + r")s\b"
)
_EVERY_OTHER_DAY_RE = re.compile(r"\bevery\s+other\s+(?:" + _DAY_ALTERNATION + r")\b")
_WEEKDAYS_RE = re.compile(r"\bweekdays?\b")
_WEEKENDS_RE = re.compile(r"\bweekends?\b")
_COUNT_RE = re.compile(r"\b(?:for|repeat)\s+(\d+)\s+times?\b")
_UNTIL_RE = re.compile(r"\buntil\s+(\d{4}-\d{2}-\d{2})\b")
_MONTH_DAY_RE = re.compile(r"\bthe\s+(\d{1,2})(?:st|nd|rd|th)?\b|\b(\d{1,2})(?:st|nd|rd|th)\b")
_LAST_DAY_RE = re.compile(r"\blast\s+day\b")
_POSITION_RE = re.compile(r"\b(first|second|third|fourth|fifth|last)\s+(" + _DAY_ALTERNATION + r")\b")
_BYDAY_ITEM_RE = re.compile(r"^([+-]?\d)?(MO|TU|WE|TH|FR|SA|SU)$")

# Upper bound on generated cycles before giving up on finding another date.
_MAX_CYCLES = 1000


@dataclass
class ParsedRecurrence:
    has_recurrence: bool
    confidence: float
    rule: Optional[RecurrenceRule] = None
    suggestions: List[str] = field(default_factory=list)
    rrule: Optional[str] = None
    description: Optional[str] = None
    next_occurrences: List[datetime] = field(default_factory=list)


def ordinal_suffix(num: int) -> str:
    num = abs(num)
    if 11 <= num % 100 <= 13:
        return "th"
    return {1: "st", 2: "nd", 3: "rd"}.get(num % 10, "th")


def _join_names(names: Sequence[str]) -> str:
    if len(names) == 1:
        return names[0]
    return f"{', '.join(names[:-1])} and {names[-1]}"


def _canonical_days(codes) -> Tuple[str, ...]:
    return tuple(code for code in WEEKDAY_CODES if code in set(codes))


def validate_rule(rule: RecurrenceRule) -> RecurrenceRule:
    """Raise RecurrenceParseError if a structured rule is malformed; returns it with a coerced frequency."""
    if not isinstance(rule, RecurrenceRule):
        raise RecurrenceParseError(f"Expected RecurrenceRule, got {type(rule).__name__}")
    try:
        frequency = Frequency(rule.frequency)
    except ValueError:
        raise RecurrenceParseError(f"Unknown frequency: {rule.frequency!r}") from None

    if isinstance(rule.interval, bool) or not isinstance(rule.interval, int) or rule.interval < 1:
        raise RecurrenceParseError(f"Interval must be an integer >= 1, got {rule.interval!r}")
    for code in rule.by_day:
        if code not in WEEKDAY_CODES:
            raise RecurrenceParseError(f"Unknown weekday code: {code!r}")
    for day in rule.by_month_day:
        if isinstance(day, bool) or not isinstance(day, int) or day == 0 or abs(day) > 31:
            raise RecurrenceParseError(f"Day of month out of range: {day!r}")
    if rule.by_set_pos is not None:
        pos = rule.by_set_pos
        if isinstance(pos, bool) or not isinstance(pos, int) or pos == 0 or abs(pos) > 5:
            raise RecurrenceParseError(f"Set position out of range: {pos!r}")
    if rule.count is not None:
        if isinstance(rule.count, bool) or not isinstance(rule.count, int) or rule.count < 1:
            raise RecurrenceParseError(f"Count must be an integer >= 1, got {rule.count!r}")
    if rule.until is not None:
        if not isinstance(rule.until, datetime) or rule.until.tzinfo is None:
            raise RecurrenceParseError("Until must be a timezone-aware datetime")
    if rule.count is not None and rule.until is not None:
        raise RecurrenceParseError("Count and until are mutually exclusive")

    if frequency is not rule.frequency:
        return RecurrenceRule(
            frequency=frequency,
            interval=rule.interval,
            by_day=rule.by_day,
            by_month_day=rule.by_month_day,
            by_set_pos=rule.by_set_pos,
            count=rule.count,
            until=rule.until,
        )
    return rule


def generate_rule(rule: RecurrenceRule) -> str:
    rule = validate_rule(rule)
    parts = [f"FREQ={rule.frequency.value}"]
    if rule.interval > 1:
        parts.append(f"INTERVAL={rule.interval}")
    if rule.by_day:
        parts.append(f"BYDAY={','.join(rule.by_day)}")
    if rule.by_month_day:
        parts.append(f"BYMONTHDAY={','.join(str(d) for d in rule.by_month_day)}")
    if rule.by_set_pos is not None:
        parts.append(f"BYSETPOS={rule.by_set_pos}")
    if rule.count is not None:
        parts.append(f"COUNT={rule.count}")
    elif rule.until is not None:
        parts.append(f"UNTIL={rule.until.astimezone(timezone.utc).strftime('%Y%m%dT%H%M%SZ')}")
    return ";".join(parts)


def _parse_int(key: str, value: str) -> int:
    try:
        return int(value)
    except ValueError:
        raise RecurrenceParseError(f"{key} expects an integer, got {value!r}") from None


def _parse_until(value: str) -> datetime:
    for fmt in ("%Y%m%dT%H%M%SZ", "%Y%m%dT%H%M%S", "%Y%m%d"):
        try:
            parsed = datetime.strptime(value, fmt)
        except ValueError:
            continue
        return parsed.replace(tzinfo=timezone.utc)
    raise RecurrenceParseError(f"UNTIL is not a UTC timestamp: {value!r}")


def parse_rule(value: str) -> RecurrenceRule:
    """Read a canonical FREQ=...;INTERVAL=... string back into a RecurrenceRule."""
    text = value.strip()
    if text.upper().startswith("RRULE:"):
        text = text[len("RRULE:"):]
    if not text:
        raise RecurrenceParseError("Empty recurrence rule")

    fields = {}
    for chunk in text.split(";"):
        if not chunk:
            continue
        key, sep, raw = chunk.partition("=")
        if not sep or not raw:
            raise RecurrenceParseError(f"Malformed rule part: {chunk!r}")
        fields[key.strip().upper()] = raw.strip()

    if "FREQ" not in fields:
        raise RecurrenceParseError("Rule has no FREQ")
    try:
        frequency = Frequency(fields["FREQ"].upper())
    except ValueError:
        raise RecurrenceParseError(f"Unknown frequency: {fields['FREQ']!r}") from None

    by_day: List[str] = []
    set_pos: Optional[int] = None
    for item in filter(None, fields.get("BYDAY", "").upper().split(",")):
        match = _BYDAY_ITEM_RE.match(item.strip())
        if not match:
            raise RecurrenceParseError(f"Malformed BYDAY entry: {item!r}")
        if match.group(1):
            set_pos = int(match.group(1))
        by_day.append(match.group(2))
    if "BYSETPOS" in fields:
        set_pos = _parse_int("BYSETPOS", fields["BYSETPOS"].split(",")[0])

    unsupported = sorted(set(fields) - {"FREQ", "INTERVAL", "BYDAY", "BYMONTHDAY", "BYSETPOS", "COUNT", "UNTIL"})
    if unsupported:
        logger.debug("Ignoring unsupported recurrence parts: %s", ", ".join(unsupported))

    rule = RecurrenceRule(
        frequency=frequency,
        interval=_parse_int("INTERVAL", fields["INTERVAL"]) if "INTERVAL" in fields else 1,
        by_day=tuple(by_day),
        by_month_day=tuple(
            _parse_int("BYMONTHDAY", d) for d in filter(None, fields.get("BYMONTHDAY", "").split(","))
        ),
        by_set_pos=set_pos,
        count=_parse_int("COUNT", fields["COUNT"]) if "COUNT" in fields else None,
        until=_parse_until(fields["UNTIL"]) if "UNTIL" in fields else None,
    )
    return validate_rule(rule)


class RecurrenceEngine:
    """Detects recurrence in free text and expands rules into concrete occurrences."""

    def __init__(self, timezone_name: str = "UTC", now: Optional[Callable[[], datetime]] = None) -> None:
        self._tz = ZoneInfo(timezone_name)
        self._now = now or (lambda: datetime.now(tz=self._tz))

    def parse_recurrence(self, text: str) -> ParsedRecurrence:
        lowered = normalize_text(text)
        if not _CUE_RE.search(lowered):
            return ParsedRecurrence(has_recurrence=False, confidence=0.9)

        rule, confidence, suggestions = self._identify(lowered)
        logger.debug("Recurrence %s from %r (confidence %.2f)", rule, text, confidence)
        return ParsedRecurrence(
            has_recurrence=True,
            confidence=confidence,
            rule=rule,
            suggestions=suggestions,
            rrule=generate_rule(rule),
            description=self.generate_description(rule),
            next_occurrences=self.next_occurrences(rule, self._now(), 5),
        )

    def generate_rule(self, rule: RecurrenceRule) -> str:
        return generate_rule(rule)

    def generate_description(self, rule: RecurrenceRule) -> str:
        rule = validate_rule(rule)
        unit = rule.frequency.unit
        parts = [f"Every {unit}" if rule.interval == 1 else f"Every {rule.interval} {unit}s"]

        day_names = [WEEKDAY_NAMES[WEEKDAY_CODES.index(code)] for code in rule.by_day]
        position = None
        if rule.by_set_pos is not None:
            position = _POSITION_NAMES.get(rule.by_set_pos, f"{rule.by_set_pos}{ordinal_suffix(rule.by_set_pos)}")

        if day_names and position:
            parts.append(f"on the {position} {_join_names(day_names)}")
        elif day_names:
            parts.append(f"on {_join_names(day_names)}")

        if rule.by_month_day:
            labels = ["last day" if d == -1 else f"{d}{ordinal_suffix(d)}" for d in rule.by_month_day]
            parts.append(f"on the {_join_names(labels)}")
        elif position and not day_names:
            parts.append(f"on the {position}")

        if rule.count is not None:
            parts.append(f"for {rule.count} times")
        elif rule.until is not None:
            local = rule.until.astimezone(self._tz)
            parts.append(f"until {local:%B} {local.day}, {local.year}")
        return " ".join(parts)

    def next_occurrences(self, rule: RecurrenceRule, start: datetime, n: int) -> List[datetime]:
        """Up to `n` instants (UTC) of `rule` anchored at `start`, in chronological order.

        The anchor itself is the first candidate; every occurrence keeps the
        anchor's wall-clock time in the engine timezone.
        """
        rule = validate_rule(rule)
        if n <= 0:
            return []
        if start.tzinfo is None:
            start = start.replace(tzinfo=self._tz)
        if rule.count is not None:
            n = min(n, rule.count)

        anchor = start.astimezone(self._tz)
        occurrences: List[datetime] = []
        for occurrence in self._iter_occurrences(rule, anchor):
            if rule.until is not None and occurrence > rule.until:
                break
            occurrences.append(occurrence.astimezone(timezone.utc))
            if len(occurrences) >= n:
                break
        return occurrences

    # -- text extraction -------------------------------------------------

    def _identify(self, text: str) -> Tuple[RecurrenceRule, float, List[str]]:
        suggestions: List[str] = []
        count, until = self._extract_bounds(text, suggestions)
        frequency, interval = self._detect_frequency(text)

        if frequency is Frequency.DAILY or frequency is Frequency.YEARLY:
            return RecurrenceRule(frequency, interval, count=count, until=until), 0.9, suggestions

        if frequency is Frequency.WEEKLY:
            by_day = self._extract_days(text)
            if not by_day:
                suggestions.append("Consider specifying which days of the week")
            return (
                RecurrenceRule(Frequency.WEEKLY, interval, by_day=by_day, count=count, until=until),
                0.9 if by_day else 0.7,
                suggestions,
            )

        if frequency is Frequency.MONTHLY:
            return self._monthly(text, interval, count, until, suggestions)

        if _DAY_SPECIFIC_RE.search(text) or _WEEKDAYS_RE.search(text) or _WEEKENDS_RE.search(text):
            interval = 2 if _EVERY_OTHER_DAY_RE.search(text) else interval
            rule = RecurrenceRule(
                Frequency.WEEKLY, interval, by_day=self._extract_days(text), count=count, until=until
            )
            return rule, 0.9, suggestions

        suggestions.append("Could not determine specific recurrence pattern. Defaulting to weekly.")
        return RecurrenceRule(Frequency.WEEKLY, interval, count=count, until=until), 0.5, suggestions

    def _monthly(
        self,
        text: str,
        interval: int,
        count: Optional[int],
        until: Optional[datetime],
        suggestions: List[str],
    ) -> Tuple[RecurrenceRule, float, List[str]]:
        by_day: Tuple[str, ...] = ()
        by_month_day: Tuple[int, ...] = ()
        set_pos: Optional[int] = None

        position = _POSITION_RE.search(text)
        if position:
            set_pos = _POSITIONS[position.group(1)]
            by_day = (_DAY_TO_CODE[position.group(2)],)
        elif _LAST_DAY_RE.search(text):
            by_month_day = (-1,)
        else:
            by_month_day = self._extract_month_days(text)
            if not by_month_day:
                by_day = self._extract_days(text)

        qualified = bool(by_day or by_month_day)
        if not qualified:
            suggestions.append("Consider specifying which day of the month or week")
        rule = RecurrenceRule(
            Frequency.MONTHLY,
            interval,
            by_day=by_day,
            by_month_day=by_month_day,
            by_set_pos=set_pos,
            count=count,
            until=until,
        )
        return rule, 0.9 if qualified else 0.7, suggestions

    def _detect_frequency(self, text: str) -> Tuple[Optional[Frequency], int]:
        match = _EVERY_UNIT_RE.search(text)
        if match:
            amount, unit = match.groups()
            if amount == "other":
                interval = 2
            else:
                interval = max(1, int(amount)) if amount else 1
            return _UNIT_TO_FREQUENCY[unit], interval

        frequency = None
        match = _EACH_UNIT_RE.search(text)
        if match:
            frequency = _UNIT_TO_FREQUENCY[match.group(1)]
        else:
            for pattern, candidate in _KEYWORD_FREQUENCIES:
                if pattern.search(text):
                    frequency = candidate
                    break
        if frequency is None and _OF_MONTH_RE.search(text):
            frequency = Frequency.MONTHLY
        if frequency is None:
            return None, 1

        # "N <unit>" only counts when the unit agrees with the frequency
        numbered = re.search(rf"\b(\d+)\s+{frequency.unit}s?\b", text)
        return frequency, max(1, int(numbered.group(1))) if numbered else 1

    def _extract_bounds(self, text: str, suggestions: List[str]) -> Tuple[Optional[int], Optional[datetime]]:
        count = None
        match = _COUNT_RE.search(text)
        if match:
            count = int(match.group(1))
            if count < 1:
                suggestions.append("Repeat count must be at least 1; ignoring it")
                count = None

        until = None
        match = _UNTIL_RE.search(text)
        if match:
            try:
                end_day = date.fromisoformat(match.group(1))
            except ValueError:
                suggestions.append(f"Could not read end date {match.group(1)!r}")
            else:
                until = datetime.combine(end_day, time(23, 59, 59), tzinfo=self._tz).astimezone(timezone.utc)

        if count is not None and until is not None:
            suggestions.append("Both a repeat count and an end date were given; using the count")
            until = None
        return count, until

    def _extract_days(self, text: str) -> Tuple[str, ...]:
        codes = {_DAY_TO_CODE[m.group(1)] for m in _DAY_NAME_RE.finditer(text)}
        if _WEEKDAYS_RE.search(text):
            codes.update(WEEKDAY_CODES[:5])
        if _WEEKENDS_RE.search(text):
            codes.update(WEEKDAY_CODES[5:])
        return _canonical_days(codes)

    def _extract_month_days(self, text: str) -> Tuple[int, ...]:
        days = []
        for match in _MONTH_DAY_RE.finditer(text):
            day = int(match.group(1) or match.group(2))
            if 1 <= day <= 31 and day not in days:
                days.append(day)
        return tuple(sorted(days))

    # -- expansion -------------------------------------------------------

    def _iter_occurrences(self, rule: RecurrenceRule, anchor: datetime) -> Iterator[datetime]:
        wall = anchor.time()
        first_day = anchor.date()

        def at(day: date) -> datetime:
            return datetime.combine(day, wall, tzinfo=self._tz)

        if rule.frequency is Frequency.DAILY:
            for k in range(_MAX_CYCLES):
                day = first_day + timedelta(days=k * rule.interval)
                if rule.by_day and WEEKDAY_CODES[day.weekday()] not in rule.by_day:
                    continue
                yield at(day)

        elif rule.frequency is Frequency.WEEKLY:
            if not rule.by_day:
                for k in range(_MAX_CYCLES):
                    yield at(first_day + timedelta(weeks=k * rule.interval))
                return
            week_start = first_day - timedelta(days=first_day.weekday())
            targets = sorted(WEEKDAY_CODES.index(code) for code in rule.by_day)
            for k in range(_MAX_CYCLES):
                base = week_start + timedelta(weeks=k * rule.interval)
                for weekday in targets:
                    day = base + timedelta(days=weekday)
                    if day >= first_day:
                        yield at(day)

        elif rule.frequency is Frequency.MONTHLY:
            for k in range(_MAX_CYCLES):
                month_index = first_day.month - 1 + k * rule.interval
                year, month = first_day.year + month_index // 12, month_index % 12 + 1
                for day in self._days_in_month(rule, year, month, first_day.day):
                    if day >= first_day:
                        yield at(day)

        elif rule.frequency is Frequency.YEARLY:
            for k in range(_MAX_CYCLES):
                try:
                    day = first_day.replace(year=first_day.year + k * rule.interval)
                except ValueError:
                    continue  # Feb 29 in a non-leap year
                yield at(day)

    def _days_in_month(self, rule: RecurrenceRule, year: int, month: int, anchor_day: int) -> List[date]:
        last = calendar.monthrange(year, month)[1]
        if rule.by_month_day:
            days = set()
            for value in rule.by_month_day:
                day = value if value > 0 else last + 1 + value
                if 1 <= day <= last:
                    days.add(date(year, month, day))
            return sorted(days)

        if rule.by_day:
            wanted = {WEEKDAY_CODES.index(code) for code in rule.by_day}
            matching = [date(year, month, d) for d in range(1, last + 1) if date(year, month, d).weekday() in wanted]
            if rule.by_set_pos is None:
                return matching
            index = rule.by_set_pos - 1 if rule.by_set_pos > 0 else rule.by_set_pos
            if -len(matching) <= index < len(matching):
                return [matching[index]]
            return []

        if anchor_day <= last:
            return [date(year, month, anchor_day)]
        return []
