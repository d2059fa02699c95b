from __future__ import annotations

import logging
from dataclasses import replace
from datetime import timedelta
from typing import Collection, Iterable, List, Optional, Sequence

from .models import (
    BreakConflict,
    ConflictAnalysis,
    ConflictRecord,
    ConflictType,
    EnergyConflict,
    EventCandidate,
    Impact,
    OverlapConflict,
    ResolutionStrategy,
    ResolutionType,
    ResourceConflict,
    Severity,
    TravelTimeConflict,
)
from .timeutils import normalize_text
from .travel import PlaceholderTravelEstimator, TravelTimeEstimator

logger = logging.getLogger(__name__)

_TYPE_ADVICE = {
    ConflictType.OVERLAP: "Consider using a calendar app with conflict detection",
    ConflictType.SAME_TIME: "Consider using a calendar app with conflict detection",
    ConflictType.TRAVEL_TIME: "Add travel time buffers between events at different locations",
    ConflictType.INSUFFICIENT_BREAK: "Schedule regular breaks between intensive activities",
    ConflictType.ENERGY_MISMATCH: "Group similar energy level activities together",
    ConflictType.RESOURCE_CONFLICT: "Use a resource booking system to avoid conflicts",
}


def overlap_severity(minutes: int) -> Severity:
    if minutes > 60:
        return Severity.CRITICAL
    if minutes > 30:
        return Severity.HIGH
    if minutes > 15:
        return Severity.MEDIUM
    return Severity.LOW


def overall_severity(conflicts: Sequence[ConflictRecord]) -> Severity:
    critical = sum(1 for c in conflicts if c.severity is Severity.CRITICAL)
    high = sum(1 for c in conflicts if c.severity is Severity.HIGH)
    medium = sum(1 for c in conflicts if c.severity is Severity.MEDIUM)
    if critical > 0:
        return Severity.CRITICAL
    if high > 2:
        return Severity.HIGH
    if high > 0 or medium > 3:
        return Severity.MEDIUM
    return Severity.LOW


class ConflictDetector:
    def __init__(
        self,
        travel_time_buffer: int = 15,
        break_time_buffer: int = 10,
        energy_window: int = 30,
        travel_estimator: Optional[TravelTimeEstimator] = None,
    ) -> None:
        self.travel_time_buffer = travel_time_buffer
        self.break_time_buffer = break_time_buffer
        self.energy_window = energy_window
        self._travel = travel_estimator or PlaceholderTravelEstimator()

    def estimate_travel_time(self, origin: str, destination: str) -> int:
        return self._travel.estimate(origin, destination).minutes

    def analyze_conflicts(
        self,
        events: Sequence[EventCandidate],
        focus_ids: Optional[Collection[str]] = None,
    ) -> ConflictAnalysis:
        """Pairwise scan of `events`; with `focus_ids`, only pairs touching one of those ids are checked.

        Each scanned event gets its `conflicts` list replaced by the records that involve it.
        With `focus_ids`, only the focus events are updated; the others are left untouched.
        """
        conflicts: List[ConflictRecord] = []
        for i, first in enumerate(events):
            for second in events[i + 1:]:
                if focus_ids is not None and first.id not in focus_ids and second.id not in focus_ids:
                    continue
                for record in self._check_pair(first, second):
                    conflicts.append(replace(record, resolution=self.generate_resolution_strategy(record)))

        for event in events:
            if focus_ids is None or event.id in focus_ids:
                event.conflicts = [c for c in conflicts if c.involves(event.id)]

        strategies = [c.resolution for c in conflicts if c.resolution is not None]
        analysis = ConflictAnalysis(
            conflicts=conflicts,
            total_conflicts=len(conflicts),
            critical_conflicts=sum(1 for c in conflicts if c.severity is Severity.CRITICAL),
            overall_severity=overall_severity(conflicts),
            suggestions=self._suggestions(conflicts, strategies),
            resolution_strategies=strategies,
        )
        logger.debug(
            "Scanned %d events: %d conflicts (%d critical), severity=%s",
            len(events),
            analysis.total_conflicts,
            analysis.critical_conflicts,
            analysis.overall_severity.value,
        )
        return analysis

    def generate_resolution_strategy(self, conflict: ConflictRecord) -> ResolutionStrategy:
        if isinstance(conflict, OverlapConflict):
            if conflict.type is ConflictType.SAME_TIME or conflict.overlap_minutes > 60:
                return ResolutionStrategy(
                    type=ResolutionType.RESCHEDULE,
                    description="Reschedule one of the overlapping events to a different time",
                    confidence=0.9,
                    impact=Impact.HIGH,
                )
            if conflict.overlap_minutes > 30:
                return ResolutionStrategy(
                    type=ResolutionType.SHORTEN,
                    description="Shorten one of the events to reduce overlap",
                    confidence=0.7,
                    impact=Impact.MEDIUM,
                )
            return ResolutionStrategy(
                type=ResolutionType.EXTEND,
                description="Add buffer time to prevent future overlaps",
                confidence=0.6,
                impact=Impact.LOW,
            )
        if isinstance(conflict, TravelTimeConflict):
            return ResolutionStrategy(
                type=ResolutionType.RESCHEDULE,
                description="Reschedule one event to allow sufficient travel time",
                new_start=conflict.next_start + timedelta(minutes=self.travel_time_buffer),
                confidence=0.8,
                impact=Impact.MEDIUM,
            )
        if isinstance(conflict, BreakConflict):
            return ResolutionStrategy(
                type=ResolutionType.EXTEND,
                description="Add more break time between events",
                new_start=conflict.next_start + timedelta(minutes=self.break_time_buffer),
                confidence=0.7,
                impact=Impact.LOW,
            )
        if isinstance(conflict, EnergyConflict):
            return ResolutionStrategy(
                type=ResolutionType.RESCHEDULE,
                description="Reschedule to group similar energy level events together",
                confidence=0.6,
                impact=Impact.LOW,
            )
        if isinstance(conflict, ResourceConflict):
            return ResolutionStrategy(
                type=ResolutionType.RESCHEDULE,
                description="Reschedule one event to avoid resource conflicts",
                confidence=0.9,
                impact=Impact.HIGH,
            )
        raise TypeError(f"Unhandled conflict record: {type(conflict).__name__}")

    def _check_pair(self, a: EventCandidate, b: EventCandidate) -> Iterable[ConflictRecord]:
        ia, ib = a.interval, b.interval
        later = b if (b.start, b.end) >= (a.start, a.end) else a
        common = dict(event_id=a.id, event_title=a.title, other_event_id=b.id, other_event_title=b.title)

        if a.start == b.start:
            yield OverlapConflict(
                type=ConflictType.SAME_TIME,
                severity=Severity.CRITICAL,
                suggestion="Events are scheduled at exactly the same time.",
                overlap_minutes=ia.overlap_minutes(ib),
                **common,
            )
        elif ia.overlaps(ib):
            minutes = ia.overlap_minutes(ib)
            yield OverlapConflict(
                type=ConflictType.OVERLAP,
                severity=overlap_severity(minutes),
                suggestion=_overlap_suggestion(minutes),
                overlap_minutes=minutes,
                **common,
            )

        gap = ia.gap_minutes(ib)
        if gap is not None and 0 < gap < self.break_time_buffer:
            yield BreakConflict(
                type=ConflictType.INSUFFICIENT_BREAK,
                severity=Severity.MEDIUM,
                suggestion=f"Only {gap} minutes between events. Consider adding more break time.",
                gap_minutes=gap,
                next_start=later.start,
                **common,
            )

        if (
            gap is not None
            and gap < self.travel_time_buffer
            and a.location
            and b.location
            and normalize_text(a.location) != normalize_text(b.location)
        ):
            earlier = a if later is b else b
            estimate = self._travel.estimate(earlier.location, later.location)
            if gap < estimate.minutes:
                yield TravelTimeConflict(
                    type=ConflictType.TRAVEL_TIME,
                    severity=Severity.HIGH,
                    suggestion=(
                        "Insufficient travel time between locations. "
                        f"Estimated travel time: {estimate.minutes} minutes."
                    ),
                    gap_minutes=gap,
                    travel_minutes=estimate.minutes,
                    distance_meters=estimate.distance_meters,
                    next_start=later.start,
                    **common,
                )

        if a.energy_level and b.energy_level and gap is not None and gap < self.energy_window:
            if abs(a.energy_level.ordinal - b.energy_level.ordinal) >= 2:
                yield EnergyConflict(
                    type=ConflictType.ENERGY_MISMATCH,
                    severity=Severity.MEDIUM,
                    suggestion="Energy mismatch detected. Consider scheduling similar energy level events together.",
                    gap_minutes=gap,
                    energy_level=a.energy_level,
                    other_energy_level=b.energy_level,
                    **common,
                )

        shared = sorted(set(a.resources) & set(b.resources))
        if shared and ia.overlaps(ib):
            yield ResourceConflict(
                type=ConflictType.RESOURCE_CONFLICT,
                severity=Severity.HIGH,
                suggestion=f"Resource conflict detected. Both events require: {', '.join(shared)}",
                overlap_minutes=ia.overlap_minutes(ib),
                shared_resources=tuple(shared),
                **common,
            )

    def _suggestions(self, conflicts: Sequence[ConflictRecord], strategies: Sequence[ResolutionStrategy]) -> List[str]:
        suggestions = [_TYPE_ADVICE[c.type] for c in conflicts]
        if len(conflicts) > 5:
            suggestions.append("Consider reducing the number of events or spreading them out")
        if strategies:
            suggestions.append("Review the suggested resolutions and implement the most suitable ones")
        return list(dict.fromkeys(suggestions))


def _overlap_suggestion(minutes: int) -> str:
    if minutes > 60:
        return "Major time overlap detected. One event must be rescheduled."
    if minutes > 30:
        return "Significant time overlap. Consider rescheduling one event."
    if minutes > 15:
        return "Minor time overlap. Consider adjusting times."
    return "Small time overlap. Consider adding buffer time."
