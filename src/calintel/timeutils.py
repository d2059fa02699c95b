from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo

_WEEKDAYS = {
    "monday": 0,
    "tuesday": 1,
    "wednesday": 2,
    "thursday": 3,
    "friday": 4,
    "saturday": 5,
    "sunday": 6,
}


def normalize_text(value: str | None) -> str:
    if not value:
        return ""
    return " ".join(value.strip().lower().split())


def parse_hhmm(s: str) -> time:
    hh, mm = s.strip().split(":")[:2]
    return time(hour=int(hh), minute=int(mm))


def to_utc(value: datetime, tz: ZoneInfo) -> datetime:
    """Normalise to UTC; naive datetimes are read as wall time in `tz`."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=tz)
    return value.astimezone(timezone.utc)


def parse_instant(value: str, tz: ZoneInfo) -> datetime:
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return to_utc(datetime.fromisoformat(text), tz)


def local_hhmm(value: datetime, tz: ZoneInfo) -> str:
    return value.astimezone(tz).strftime("%H:%M")


def local_weekday_name(value: datetime, tz: ZoneInfo) -> str:
    return value.astimezone(tz).strftime("%A")


def next_weekday(base: date, weekday: int, include_today: bool = True) -> date:
    days_ahead = (weekday - base.weekday()) % 7
    if days_ahead == 0 and not include_today:
        days_ahead = 7
    return base + timedelta(days=days_ahead)


def resolve_relative_date(phrase: str, base: datetime) -> Optional[date]:
    """Resolve today/tomorrow/yesterday/next week/<weekday>/next <weekday> against `base`."""
    text = normalize_text(phrase)
    today = base.date()
    if text == "today" or text == "tonight":
        return today
    if text == "tomorrow":
        return today + timedelta(days=1)
    if text == "yesterday":
        return today - timedelta(days=1)
    if text == "next week":
        return today + timedelta(weeks=1)
    if text == "this weekend":
        return next_weekday(today, 5)

    skip_this_week = False
    if text.startswith("next "):
        text = text[len("next "):]
        skip_this_week = True
    elif text.startswith("this "):
        text = text[len("this "):]

    weekday = _WEEKDAYS.get(text)
    if weekday is None:
        return None
    return next_weekday(today, weekday, include_today=not skip_this_week)
