from __future__ import annotations

import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Sequence
from zoneinfo import ZoneInfo

from .models import FACTOR_NAMES, ConfidenceBreakdown, EventCandidate, UserPattern, WorkingHours
from .timeutils import local_hhmm, local_weekday_name, normalize_text, parse_hhmm

logger = logging.getLogger(__name__)

FACTOR_WEIGHTS: Dict[str, float] = {
    "time_clarity": 0.20,
    "date_clarity": 0.20,
    "location_clarity": 0.10,
    "title_clarity": 0.15,
    "context_relevance": 0.10,
    "ambiguity_level": 0.10,
    "completeness": 0.10,
    "consistency": 0.05,
}

_TIME_PATTERNS = [
    re.compile(r"\d{1,2}:\d{2}\s*(am|pm)", re.I),
    re.compile(r"\d{1,2}\s*(am|pm)\b", re.I),
    re.compile(r"\d{1,2}:\d{2}"),
    re.compile(r"\bat\s+\d{1,2}", re.I),
    re.compile(r"\bfrom\s+\d{1,2}", re.I),
    re.compile(r"\buntil\s+\d{1,2}", re.I),
    re.compile(r"\b(noon|midnight)\b", re.I),
]

_DURATION_PATTERNS = [
    re.compile(r"\bfor\s+\d+\s*(hour|minute|hr|min)", re.I),
    re.compile(r"\blasting\s+\d+", re.I),
    re.compile(r"\d+\s*(hour|minute|hr|min)", re.I),
]

_DATE_PATTERNS = [
    re.compile(r"\b(today|tonight|tomorrow|yesterday)\b", re.I),
    re.compile(r"\b(monday|tuesday|wednesday|thursday|friday|saturday|sunday)\b", re.I),
    re.compile(
        r"\b(january|february|march|april|may|june|july|august|september|october|november|december)\b",
        re.I,
    ),
    re.compile(r"\d{1,2}/\d{1,2}/\d{4}"),
    re.compile(r"\d{4}-\d{2}-\d{2}"),
    re.compile(r"\b\d{1,2}(st|nd|rd|th)\b", re.I),
]

_SPECIFIC_LOCATION = [
    re.compile(r"\broom\s+\w+", re.I),
    re.compile(r"\bbuilding\s+\w+", re.I),
    re.compile(r"\baddress\b", re.I),
    re.compile(r"\bstreet\b", re.I),
    re.compile(r"\bavenue\b", re.I),
    re.compile(r"\broad\b", re.I),
    re.compile(r"^\d+\s+\w+"),
]

_ACTION_WORDS = (
    "meeting", "call", "appointment", "session", "work", "lunch", "dinner",
    "gym", "exercise", "break", "focus", "study", "read", "write",
)
_GENERIC_TITLES = {"event", "thing", "stuff", "meeting", "call"}

_HEDGE = re.compile(
    r"\b(maybe|possibly|might|could|perhaps|probably|sometime|later|soon|eventually)\b", re.I
)
_DISJUNCTION = re.compile(r"\b(or|either)\b", re.I)
_TRAILING_INCOMPLETE = re.compile(r"\b(and|or|but|with|at|on|to|from|for)\s*$", re.I)

_SUGGESTIONS = {
    "time_clarity": 'Be more specific about the time (e.g., "2:30 PM" instead of "afternoon")',
    "date_clarity": 'Specify the date more clearly (e.g., "tomorrow" or "next Monday")',
    "location_clarity": 'Include the location if relevant (e.g., "meeting at the office")',
    "title_clarity": 'Use a more descriptive title (e.g., "Team standup meeting" instead of "meeting")',
    "context_relevance": "Consider scheduling during your usual working hours",
    "ambiguity_level": 'Avoid ambiguous words like "maybe" or "sometime"',
    "completeness": "Include more details like duration, location, or description",
    "consistency": "Consider scheduling at times that match your usual patterns",
}

_WARNINGS = {
    "time_clarity": "Time specification is unclear - event may be scheduled incorrectly",
    "date_clarity": "Date specification is unclear - event may be scheduled on wrong date",
    "location_clarity": "Location is unclear - check where this event takes place",
    "title_clarity": "Event title is vague - it may be hard to recognise later",
    "context_relevance": "Event falls outside your usual schedule",
    "ambiguity_level": "Input is highly ambiguous - consider providing more specific details",
    "completeness": "Event information is incomplete - some details may be missing",
    "consistency": "Event does not match your usual patterns",
}


def default_user_patterns() -> UserPattern:
    return UserPattern(
        preferred_times=("09:00", "14:00", "16:00"),
        preferred_days=("Monday", "Tuesday", "Wednesday", "Thursday", "Friday"),
        common_locations=("Office", "Home", "Conference Room"),
        event_categories=("work", "personal", "meeting"),
        average_duration=60,
        working_hours=WorkingHours(start="09:00", end="17:00"),
    )


def weighted_overall(factors: Dict[str, float]) -> float:
    total = sum(FACTOR_WEIGHTS.values())
    score = sum(factors[name] * weight for name, weight in FACTOR_WEIGHTS.items()) / total
    return _clamp(score)


def average_breakdowns(breakdowns: Sequence[ConfidenceBreakdown]) -> ConfidenceBreakdown:
    """Factor-wise mean of several breakdowns; suggestions and warnings are unioned in order."""
    if not breakdowns:
        return ConfidenceBreakdown()
    averaged = {
        name: sum(getattr(b, name) for b in breakdowns) / len(breakdowns) for name in FACTOR_NAMES
    }
    suggestions: List[str] = []
    warnings: List[str] = []
    for b in breakdowns:
        suggestions.extend(b.suggestions)
        warnings.extend(b.warnings)
    return ConfidenceBreakdown(
        **averaged,
        overall=weighted_overall(averaged),
        suggestions=list(dict.fromkeys(suggestions)),
        warnings=list(dict.fromkeys(warnings)),
    )


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


class ConfidenceScorer:
    def __init__(
        self,
        timezone_name: str = "UTC",
        user_patterns: Optional[UserPattern] = None,
        now: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.tz = ZoneInfo(timezone_name)
        self.user_patterns = user_patterns or default_user_patterns()
        self._now = now or (lambda: datetime.now(timezone.utc))

    def now(self) -> datetime:
        return self._now()

    def calculate_confidence(
        self,
        event: EventCandidate,
        source_text: str,
        user_patterns: Optional[UserPattern] = None,
    ) -> ConfidenceBreakdown:
        patterns = user_patterns or self.user_patterns
        factors = {
            "time_clarity": self._time_clarity(event, source_text),
            "date_clarity": self._date_clarity(event, source_text),
            "location_clarity": self._location_clarity(event, patterns),
            "title_clarity": self._title_clarity(event),
            "context_relevance": self._context_relevance(event, patterns),
            "ambiguity_level": self._ambiguity_level(source_text),
            "completeness": self._completeness(event),
            "consistency": self._consistency(event, patterns),
        }
        factors = {name: _clamp(value) for name, value in factors.items()}
        breakdown = ConfidenceBreakdown(
            **factors,
            overall=weighted_overall(factors),
            suggestions=[_SUGGESTIONS[n] for n in FACTOR_NAMES if factors[n] < 0.7],
            warnings=[_WARNINGS[n] for n in FACTOR_NAMES if factors[n] < 0.5],
        )
        logger.debug("Confidence for %r: %.2f %s", event.title, breakdown.overall, factors)
        return breakdown

    def _time_clarity(self, event: EventCandidate, text: str) -> float:
        score = 0.5
        if any(p.search(text) for p in _TIME_PATTERNS):
            score += 0.3
        if any(p.search(text) for p in _DURATION_PATTERNS):
            score += 0.2
        if 6 <= event.start.astimezone(self.tz).hour <= 22:
            score += 0.1
        if 15 <= event.interval.duration_minutes <= 480:
            score += 0.1
        return score

    def _date_clarity(self, event: EventCandidate, text: str) -> float:
        score = 0.5
        if any(p.search(text) for p in _DATE_PATTERNS):
            score += 0.3
        now = self.now()
        if event.start > now:
            score += 0.2
        if event.start - now <= timedelta(days=365):
            score += 0.1
        return score

    def _location_clarity(self, event: EventCandidate, patterns: UserPattern) -> float:
        score = 0.5
        location = (event.location or "").strip()
        if location:
            score += 0.3
            if any(p.search(location) for p in _SPECIFIC_LOCATION):
                score += 0.2
            if _known(location, patterns.common_locations):
                score += 0.2
        return score

    def _title_clarity(self, event: EventCandidate) -> float:
        score = 0.5
        title = event.title.strip().lower()
        if len(title) > 3:
            score += 0.2
            if any(word in title for word in _ACTION_WORDS):
                score += 0.2
            if title not in _GENERIC_TITLES:
                score += 0.1
        return score

    def _context_relevance(self, event: EventCandidate, patterns: UserPattern) -> float:
        score = 0.5
        hour = event.start.astimezone(self.tz).hour
        if parse_hhmm(patterns.working_hours.start).hour <= hour <= parse_hhmm(patterns.working_hours.end).hour:
            score += 0.2
        if _known(event.category.value, patterns.event_categories):
            score += 0.2
        if local_hhmm(event.start, self.tz) in patterns.preferred_times:
            score += 0.1
        return score

    def _ambiguity_level(self, text: str) -> float:
        score = 0.5
        hedges = len(_HEDGE.findall(text))
        if hedges:
            score -= 0.3 + 0.1 * (hedges - 1)
        if _DISJUNCTION.search(text):
            score -= 0.2
        if _TRAILING_INCOMPLETE.search(text.strip()):
            score -= 0.2
        return max(0.0, score)

    def _completeness(self, event: EventCandidate) -> float:
        # title, start and end are guaranteed by EventCandidate
        score = 0.5 + (0.2 if event.title.strip() else 0.0) + 0.2 + 0.2
        if event.location:
            score += 0.1
        if event.description:
            score += 0.1
        if event.category:
            score += 0.1
        if event.priority:
            score += 0.1
        if 0 < event.interval.duration_minutes <= 480:
            score += 0.1
        return score

    def _consistency(self, event: EventCandidate, patterns: UserPattern) -> float:
        score = 0.5
        if local_hhmm(event.start, self.tz) in patterns.preferred_times:
            score += 0.2
        if local_weekday_name(event.start, self.tz) in patterns.preferred_days:
            score += 0.2
        if event.location and _known(event.location, patterns.common_locations):
            score += 0.2
        if patterns.average_duration > 0:
            diff = abs(event.interval.duration_minutes - patterns.average_duration)
            score += max(0.0, 1 - diff / patterns.average_duration) * 0.2
        return score


def _known(value: str, known: Sequence[str]) -> bool:
    needle = normalize_text(value)
    return any(normalize_text(k) == needle for k in known)
