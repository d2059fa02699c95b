from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Tuple

WEEKDAY_CODES: Tuple[str, ...] = ("MO", "TU", "WE", "TH", "FR", "SA", "SU")
WEEKDAY_NAMES: Tuple[str, ...] = (
    "Monday",
    "Tuesday",
    "Wednesday",
    "Thursday",
    "Friday",
    "Saturday",
    "Sunday",
)


class Frequency(str, Enum):
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    YEARLY = "YEARLY"

    @property
    def unit(self) -> str:
        return {"DAILY": "day", "WEEKLY": "week", "MONTHLY": "month", "YEARLY": "year"}[self.value]


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ConflictType(str, Enum):
    OVERLAP = "overlap"
    SAME_TIME = "same_time"
    TRAVEL_TIME = "travel_time"
    INSUFFICIENT_BREAK = "insufficient_break"
    ENERGY_MISMATCH = "energy_mismatch"
    RESOURCE_CONFLICT = "resource_conflict"


class EnergyLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def ordinal(self) -> int:
        return {"low": 1, "medium": 2, "high": 3}[self.value]


class Category(str, Enum):
    WORK = "work"
    PERSONAL = "personal"
    MEETING = "meeting"
    BREAK = "break"
    FOCUS = "focus"
    OTHER = "other"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class ResolutionType(str, Enum):
    RESCHEDULE = "reschedule"
    SHORTEN = "shorten"
    EXTEND = "extend"
    MOVE_LOCATION = "move_location"
    SPLIT = "split"
    CANCEL = "cancel"
    MERGE = "merge"


class Impact(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class SyncConflictType(str, Enum):
    CONCURRENT_EDIT = "concurrent_edit"
    DELETED_MODIFIED = "deleted_modified"
    PERMISSION_DENIED = "permission_denied"
    QUOTA_EXCEEDED = "quota_exceeded"


class SyncResolution(str, Enum):
    LOCAL_WINS = "local_wins"
    REMOTE_WINS = "remote_wins"
    MERGE = "merge"
    MANUAL = "manual"
    PENDING = "pending"


@dataclass(frozen=True)
class TimeInterval:
    start: datetime             # timezone-aware, normalised to UTC
    end: datetime               # timezone-aware, normalised to UTC
    all_day: bool = False

    def __post_init__(self) -> None:
        if self.start.tzinfo is None or self.end.tzinfo is None:
            raise ValueError("TimeInterval requires timezone-aware datetimes")
        object.__setattr__(self, "start", self.start.astimezone(timezone.utc))
        object.__setattr__(self, "end", self.end.astimezone(timezone.utc))
        if self.all_day:
            if self.end < self.start:
                raise ValueError("All-day interval ends before it starts")
        elif self.start >= self.end:
            raise ValueError("Interval start must be before its end")

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    @property
    def duration_minutes(self) -> int:
        return int(self.duration.total_seconds() // 60)

    def overlaps(self, other: "TimeInterval") -> bool:
        return self.start < other.end and other.start < self.end

    def overlap_minutes(self, other: "TimeInterval") -> int:
        if not self.overlaps(other):
            return 0
        span = min(self.end, other.end) - max(self.start, other.start)
        return int(span.total_seconds() // 60)

    def gap_minutes(self, other: "TimeInterval") -> Optional[int]:
        """Minutes between two disjoint intervals, None when they overlap."""
        if self.end <= other.start:
            return int((other.start - self.end).total_seconds() // 60)
        if other.end <= self.start:
            return int((self.start - other.end).total_seconds() // 60)
        return None


@dataclass(frozen=True)
class Attendee:
    email: str
    display_name: Optional[str] = None
    response_status: Optional[str] = None   # accepted / declined / tentative / needsAction


@dataclass(frozen=True)
class RecurrenceRule:
    frequency: Frequency
    interval: int = 1
    by_day: Tuple[str, ...] = ()
    by_month_day: Tuple[int, ...] = ()
    by_set_pos: Optional[int] = None    # 1..4, -1 = last
    count: Optional[int] = None
    until: Optional[datetime] = None


@dataclass(frozen=True)
class ResolutionStrategy:
    type: ResolutionType
    description: str
    confidence: float
    impact: Impact
    new_start: Optional[datetime] = None
    new_end: Optional[datetime] = None
    new_location: Optional[str] = None


@dataclass(frozen=True, kw_only=True)
class ConflictRecord:
    type: ConflictType
    severity: Severity
    event_id: str
    event_title: str
    other_event_id: str
    other_event_title: str
    suggestion: str
    resolution: Optional[ResolutionStrategy] = None

    def involves(self, event_id: str) -> bool:
        return event_id in (self.event_id, self.other_event_id)

    def counterpart_title(self, event_id: str) -> str:
        return self.event_title if event_id == self.other_event_id else self.other_event_title


@dataclass(frozen=True, kw_only=True)
class OverlapConflict(ConflictRecord):
    """overlap and same_time"""
    overlap_minutes: int


@dataclass(frozen=True, kw_only=True)
class BreakConflict(ConflictRecord):
    gap_minutes: int
    next_start: datetime


@dataclass(frozen=True, kw_only=True)
class TravelTimeConflict(ConflictRecord):
    gap_minutes: int
    travel_minutes: int
    distance_meters: Optional[int]
    next_start: datetime


@dataclass(frozen=True, kw_only=True)
class EnergyConflict(ConflictRecord):
    gap_minutes: int
    energy_level: EnergyLevel
    other_energy_level: EnergyLevel


@dataclass(frozen=True, kw_only=True)
class ResourceConflict(ConflictRecord):
    overlap_minutes: int
    shared_resources: Tuple[str, ...]


@dataclass
class EventCandidate:
    id: str
    title: str
    interval: TimeInterval
    location: Optional[str] = None
    description: Optional[str] = None
    category: Category = Category.OTHER
    priority: Priority = Priority.MEDIUM
    energy_level: Optional[EnergyLevel] = None
    resources: FrozenSet[str] = frozenset()
    attendees: List[Attendee] = field(default_factory=list)
    confidence: float = 0.0
    recurrence: Optional[RecurrenceRule] = None
    conflicts: List[ConflictRecord] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)
    source: str = "user_input"

    @property
    def start(self) -> datetime:
        return self.interval.start

    @property
    def end(self) -> datetime:
        return self.interval.end

    @property
    def all_day(self) -> bool:
        return self.interval.all_day


@dataclass
class ConflictAnalysis:
    conflicts: List[ConflictRecord] = field(default_factory=list)
    total_conflicts: int = 0
    critical_conflicts: int = 0
    overall_severity: Severity = Severity.LOW
    suggestions: List[str] = field(default_factory=list)
    resolution_strategies: List[ResolutionStrategy] = field(default_factory=list)


FACTOR_NAMES: Tuple[str, ...] = (
    "time_clarity",
    "date_clarity",
    "location_clarity",
    "title_clarity",
    "context_relevance",
    "ambiguity_level",
    "completeness",
    "consistency",
)


@dataclass
class ConfidenceBreakdown:
    time_clarity: float = 0.0
    date_clarity: float = 0.0
    location_clarity: float = 0.0
    title_clarity: float = 0.0
    context_relevance: float = 0.0
    ambiguity_level: float = 0.0
    completeness: float = 0.0
    consistency: float = 0.0
    overall: float = 0.0
    suggestions: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def factors(self) -> Dict[str, float]:
        return {name: getattr(self, name) for name in FACTOR_NAMES}


@dataclass(frozen=True)
class WorkingHours:
    start: str = "09:00"
    end: str = "17:00"


@dataclass(frozen=True)
class UserPattern:
    """Read-only learned preferences; owned by an external profile store."""

    preferred_times: Tuple[str, ...] = ()       # "HH:MM"
    preferred_days: Tuple[str, ...] = ()        # "Monday"...
    common_locations: Tuple[str, ...] = ()
    event_categories: Tuple[str, ...] = ()
    average_duration: int = 60                  # minutes
    working_hours: WorkingHours = WorkingHours()


@dataclass
class SyncConflict:
    id: str
    type: SyncConflictType
    local_event: EventCandidate
    remote_event: Optional[EventCandidate]
    detected_at: datetime
    resolution: SyncResolution = SyncResolution.PENDING
    message: str = ""
    merged_event: Optional[EventCandidate] = None

    @property
    def event_id(self) -> str:
        return self.local_event.id
