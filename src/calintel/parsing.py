from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence, Tuple
from zoneinfo import ZoneInfo

from .models import (
    Attendee,
    Category,
    EnergyLevel,
    EventCandidate,
    Priority,
    TimeInterval,
    UserPattern,
    WorkingHours,
)
from .recurrence import generate_rule, parse_rule
from .timeutils import parse_instant

logger = logging.getLogger(__name__)


class FallbackPolicy(str, Enum):
    """When the orchestrator switches from the primary parser to the fallback one."""

    NEVER = "never"
    ON_ERROR = "on_error"
    ON_EMPTY = "on_empty"      # on error, or when no events come back


@dataclass
class ParseContext:
    current_date: datetime
    timezone: str = "UTC"
    working_hours: WorkingHours = WorkingHours()
    existing_events: List[EventCandidate] = field(default_factory=list)
    preferences: Optional[UserPattern] = None


@dataclass
class ParseResult:
    events: List[Dict[str, Any]] = field(default_factory=list)   # raw, JSON-shaped
    message: str = ""
    needs_clarification: bool = False
    clarification_questions: List[str] = field(default_factory=list)
    suggestions: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "ParseResult":
        events = payload.get("events") or []
        if not isinstance(events, list):
            raise ValueError("'events' must be a list")
        return cls(
            events=[e for e in events if isinstance(e, dict)],
            message=str(payload.get("message") or ""),
            needs_clarification=bool(payload.get("needsClarification", False)),
            clarification_questions=[str(q) for q in payload.get("clarificationQuestions") or []],
            suggestions=[str(s) for s in payload.get("suggestions") or []],
            warnings=[str(w) for w in payload.get("warnings") or []],
        )


class TextParser(Protocol):
    name: str

    def parse(self, text: str, context: ParseContext) -> ParseResult:
        ...


def _enum_or_default(enum_cls, value: Any, default):
    if value is None or value == "":
        return default
    try:
        return enum_cls(str(value).lower())
    except ValueError:
        logger.debug("Unknown %s %r, using %s", enum_cls.__name__, value, default)
        return default


def _instant(value: Any, tz: ZoneInfo, label: str) -> datetime:
    if isinstance(value, datetime):
        return parse_instant(value.isoformat(), tz)
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"missing {label}")
    return parse_instant(value, tz)


def _string_list(value: Any, label: str) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value] if value.strip() else []
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value]
    raise ValueError(f"{label} must be a list of strings")


def candidate_from_raw(raw: Mapping[str, Any], tz: ZoneInfo, source: str = "user_input") -> EventCandidate:
    """Validate one JSON-shaped event and build an EventCandidate; raises ValueError when invalid."""
    title = str(raw.get("title") or "").strip()
    if not title:
        raise ValueError("missing title")
    all_day = bool(raw.get("isAllDay", False))
    interval = TimeInterval(
        _instant(raw.get("startDate"), tz, "startDate"),
        _instant(raw.get("endDate"), tz, "endDate"),
        all_day,
    )

    metadata = raw.get("metadata") or {}
    if not isinstance(metadata, Mapping):
        raise ValueError("metadata must be an object")
    recurrence = raw.get("recurrence")
    if isinstance(recurrence, Mapping):
        recurrence = recurrence.get("rule")
    if recurrence is not None and not isinstance(recurrence, str):
        raise ValueError("recurrence must be an RRULE string")
    raw_attendees = raw.get("attendees") or []
    if not isinstance(raw_attendees, (list, tuple)):
        raise ValueError("attendees must be a list")

    try:
        confidence = float(raw.get("confidence", 0.0) or 0.0)
    except (TypeError, ValueError):
        confidence = 0.0

    attendees = [
        Attendee(
            email=str(a["email"]),
            display_name=a.get("displayName"),
            response_status=a.get("responseStatus"),
        )
        for a in raw_attendees
        if isinstance(a, Mapping) and a.get("email")
    ]

    return EventCandidate(
        id=str(raw.get("id") or uuid.uuid4().hex),
        title=title,
        interval=interval,
        location=(raw.get("location") or None),
        description=(raw.get("description") or None),
        category=_enum_or_default(Category, metadata.get("category"), Category.OTHER),
        priority=_enum_or_default(Priority, metadata.get("priority"), Priority.MEDIUM),
        energy_level=_enum_or_default(EnergyLevel, raw.get("energyLevel"), None),
        resources=frozenset(_string_list(raw.get("resources"), "resources")),
        attendees=attendees,
        confidence=max(0.0, min(1.0, confidence)),
        recurrence=parse_rule(recurrence) if recurrence else None,
        tags=_string_list(metadata.get("tags"), "tags"),
        source=str(metadata.get("source") or source),
    )


def build_candidates(
    raws: Sequence[Mapping[str, Any]], tz: ZoneInfo, source: str = "user_input"
) -> Tuple[List[EventCandidate], List[str]]:
    """Build candidates from raw parser output, dropping invalid ones with a warning each."""
    events: List[EventCandidate] = []
    warnings: List[str] = []
    for index, raw in enumerate(raws):
        if not isinstance(raw, Mapping):
            warnings.append(f"Dropped invalid event #{index + 1}: not an object")
            continue
        try:
            events.append(candidate_from_raw(raw, tz, source))
        except ValueError as e:
            title = raw.get("title") or f"#{index + 1}"
            logger.warning("Dropping invalid event %s: %s", title, e)
            warnings.append(f"Dropped invalid event {title}: {e}")
    return events, warnings


def candidate_to_raw(event: EventCandidate) -> Dict[str, Any]:
    raw: Dict[str, Any] = {
        "id": event.id,
        "title": event.title,
        "startDate": event.start.isoformat(),
        "endDate": event.end.isoformat(),
        "isAllDay": event.all_day,
        "confidence": round(event.confidence, 4),
        "metadata": {
            "priority": event.priority.value,
            "category": event.category.value,
            "tags": list(event.tags),
            "source": event.source,
        },
    }
    if event.location:
        raw["location"] = event.location
    if event.description:
        raw["description"] = event.description
    if event.energy_level:
        raw["energyLevel"] = event.energy_level.value
    if event.resources:
        raw["resources"] = sorted(event.resources)
    if event.attendees:
        raw["attendees"] = [
            {
                k: v
                for k, v in (
                    ("email", a.email),
                    ("displayName", a.display_name),
                    ("responseStatus", a.response_status),
                )
                if v is not None
            }
            for a in event.attendees
        ]
    if event.recurrence:
        raw["recurrence"] = generate_rule(event.recurrence)
    return raw
