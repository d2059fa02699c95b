from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterator, List, Optional, Protocol, Sequence, Set, Union

from .errors import ExternalCapabilityError, SyncInProgressError
from .models import Attendee, EventCandidate, SyncConflict, SyncConflictType, SyncResolution, TimeInterval

logger = logging.getLogger(__name__)

# Fields compared when deciding whether two copies of an event diverged.
EDIT_FIELDS = ("title", "description", "start", "end", "location")
# Fields carried in an update patch.
PATCH_FIELDS = ("title", "description", "start", "end", "location", "recurrence", "attendees")

# Per-field rule used when a conflict is resolved with the merge strategy.
MERGE_PRECEDENCE: Dict[str, str] = {
    "id": "remote",
    "title": "local",
    "interval": "local",
    "location": "remote_if_set",
    "description": "union_lines",
    "attendees": "union_by_email",
    "category": "local",
    "priority": "local",
    "energy_level": "local",
    "resources": "local",
    "recurrence": "local",
    "tags": "local",
    "confidence": "local",
    "source": "local",
}


class CalendarMutator(Protocol):
    def create(self, event: EventCandidate) -> Any:
        ...

    def update(self, event_id: str, patch: Dict[str, Any]) -> Any:
        ...

    def delete(self, event_id: str) -> None:
        ...


@dataclass
class EventUpdate:
    event_id: str
    patch: Dict[str, Any]
    conflict_id: Optional[str] = None


@dataclass
class SyncDelta:
    creates: List[EventCandidate] = field(default_factory=list)
    updates: List[EventUpdate] = field(default_factory=list)
    deletes: List[str] = field(default_factory=list)
    adopt_remote: List[str] = field(default_factory=list)       # remote copy kept as is
    unresolved: List[SyncConflict] = field(default_factory=list)

    @property
    def operation_count(self) -> int:
        return len(self.creates) + len(self.updates) + len(self.deletes)

    @property
    def is_empty(self) -> bool:
        return self.operation_count == 0


@dataclass
class OperationResult:
    event_id: str
    operation: str                          # create / update / delete
    success: bool
    result: Any = None
    error: Optional[str] = None
    conflict_type: Optional[SyncConflictType] = None


@dataclass
class ApplyResult:
    results: List[OperationResult] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if not r.success)


@dataclass
class SyncReport:
    conflicts: List[SyncConflict]
    delta: SyncDelta
    applied: Optional[ApplyResult]
    started_at: datetime
    duration_seconds: float
    total_events: int

    @property
    def synced_events(self) -> int:
        return self.applied.succeeded if self.applied else 0

    @property
    def failed_events(self) -> int:
        return self.applied.failed if self.applied else 0


def event_patch(source: EventCandidate, target: EventCandidate) -> Dict[str, Any]:
    """Fields of `source` that differ from `target`, keyed by patch field name.

    `all_day` is included when the flag changes or when the patched times belong to an all-day event.
    """
    patch: Dict[str, Any] = {}
    for name in PATCH_FIELDS:
        value = getattr(source, name)
        if value != getattr(target, name):
            patch[name] = value
    if source.all_day != target.all_day:
        patch.update(start=source.start, end=source.end, all_day=source.all_day)
    elif source.all_day and ("start" in patch or "end" in patch):
        patch["all_day"] = True
    return patch


def has_concurrent_edits(local: EventCandidate, remote: EventCandidate) -> bool:
    return any(getattr(local, name) != getattr(remote, name) for name in EDIT_FIELDS)


def merge_descriptions(local: Optional[str], remote: Optional[str]) -> Optional[str]:
    if not local and not remote:
        return None
    if not local:
        return remote
    if not remote:
        return local
    lines = [line for line in local.split("\n") + remote.split("\n") if line.strip()]
    return "\n".join(dict.fromkeys(lines))


def merge_attendees(local: Sequence[Attendee], remote: Sequence[Attendee]) -> List[Attendee]:
    by_email: Dict[str, Attendee] = {}
    for attendee in remote:
        by_email[attendee.email.lower()] = attendee
    for attendee in local:
        by_email[attendee.email.lower()] = attendee
    return list(by_email.values())


def merge_events(local: EventCandidate, remote: Optional[EventCandidate]) -> EventCandidate:
    if remote is None:
        return replace(local, attendees=list(local.attendees), conflicts=[], tags=list(local.tags))

    values: Dict[str, Any] = {}
    for name, rule in MERGE_PRECEDENCE.items():
        mine, theirs = getattr(local, name), getattr(remote, name)
        if rule == "local":
            values[name] = mine
        elif rule == "remote":
            values[name] = theirs
        elif rule == "remote_if_set":
            values[name] = theirs or mine
        elif rule == "union_lines":
            values[name] = merge_descriptions(mine, theirs)
        elif rule == "union_by_email":
            values[name] = merge_attendees(mine, theirs)
        else:
            raise ValueError(f"Unknown merge rule {rule!r} for field {name!r}")
    values["tags"] = list(values["tags"])
    return EventCandidate(**values)


class SyncReconciler:
    def __init__(self, clock: Optional[Callable[[], datetime]] = None) -> None:
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._guard = threading.Lock()

    @property
    def in_progress(self) -> bool:
        return self._guard.locked()

    @contextmanager
    def _single_flight(self) -> Iterator[None]:
        if not self._guard.acquire(blocking=False):
            raise SyncInProgressError()
        try:
            yield
        finally:
            self._guard.release()

    def detect_conflicts(
        self, local: Sequence[EventCandidate], remote: Sequence[EventCandidate]
    ) -> List[SyncConflict]:
        remote_by_id = {e.id: e for e in remote}
        detected_at = self._clock()
        conflicts: List[SyncConflict] = []
        for event in local:
            other = remote_by_id.get(event.id)
            if other is None:
                conflicts.append(
                    SyncConflict(
                        id=f"conflict-deleted-{event.id}",
                        type=SyncConflictType.DELETED_MODIFIED,
                        local_event=event,
                        remote_event=None,
                        detected_at=detected_at,
                        message="Event was deleted remotely but modified locally",
                    )
                )
            elif has_concurrent_edits(event, other):
                conflicts.append(
                    SyncConflict(
                        id=f"conflict-{event.id}",
                        type=SyncConflictType.CONCURRENT_EDIT,
                        local_event=event,
                        remote_event=other,
                        detected_at=detected_at,
                        message="Event was modified in both local and remote calendars",
                    )
                )
        logger.debug("Detected %d sync conflicts", len(conflicts))
        return conflicts

    def resolve_conflicts(
        self,
        conflicts: Sequence[SyncConflict],
        strategy: Union[SyncResolution, str],
    ) -> List[SyncConflict]:
        strategy = SyncResolution(strategy)
        if strategy is SyncResolution.PENDING:
            raise ValueError("pending is not a resolution strategy")

        resolved: List[SyncConflict] = []
        for conflict in conflicts:
            if strategy is SyncResolution.MERGE:
                resolved.append(
                    replace(
                        conflict,
                        resolution=SyncResolution.MERGE,
                        merged_event=merge_events(conflict.local_event, conflict.remote_event),
                        message="Events merged successfully",
                    )
                )
            elif strategy is SyncResolution.MANUAL:
                resolved.append(
                    replace(conflict, resolution=SyncResolution.PENDING, message="Awaiting manual resolution")
                )
            else:
                resolved.append(replace(conflict, resolution=strategy))
        return resolved

    def compute_delta(
        self,
        local: Sequence[EventCandidate],
        remote: Sequence[EventCandidate],
        resolved_conflicts: Sequence[SyncConflict] = (),
    ) -> SyncDelta:
        local_by_id = {e.id: e for e in local}
        remote_by_id = {e.id: e for e in remote}
        covered: Set[str] = set()
        for conflict in resolved_conflicts:
            covered.add(conflict.local_event.id)
            if conflict.remote_event is not None:
                covered.add(conflict.remote_event.id)

        delta = SyncDelta()
        for conflict in resolved_conflicts:
            self._resolution_ops(conflict, delta)

        for event_id, event in local_by_id.items():
            if event_id in covered:
                continue
            other = remote_by_id.get(event_id)
            if other is None:
                delta.creates.append(event)
                continue
            patch = event_patch(event, other)
            if patch:
                delta.updates.append(EventUpdate(event_id=event_id, patch=patch))

        for event_id in remote_by_id:
            if event_id not in local_by_id and event_id not in covered:
                delta.deletes.append(event_id)
        return delta

    def _resolution_ops(self, conflict: SyncConflict, delta: SyncDelta) -> None:
        resolution = conflict.resolution
        if resolution in (SyncResolution.MANUAL, SyncResolution.PENDING):
            delta.unresolved.append(conflict)
            return
        if resolution is SyncResolution.REMOTE_WINS:
            delta.adopt_remote.append(conflict.event_id)
            return

        winner = conflict.local_event
        if resolution is SyncResolution.MERGE and conflict.merged_event is not None:
            winner = conflict.merged_event

        if conflict.remote_event is None:
            delta.creates.append(winner)
            return
        patch = event_patch(winner, conflict.remote_event)
        if patch:
            delta.updates.append(
                EventUpdate(event_id=conflict.remote_event.id, patch=patch, conflict_id=conflict.id)
            )

    def apply_changes(self, delta: SyncDelta, mutator: CalendarMutator) -> ApplyResult:
        with self._single_flight():
            return self._apply(delta, mutator)

    def _apply(self, delta: SyncDelta, mutator: CalendarMutator) -> ApplyResult:
        outcome = ApplyResult()
        for update in delta.updates:
            outcome.results.append(
                self._run("update", update.event_id, lambda u=update: mutator.update(u.event_id, u.patch))
            )
        for event in delta.creates:
            outcome.results.append(self._run("create", event.id, lambda e=event: mutator.create(e)))
        for event_id in delta.deletes:
            outcome.results.append(self._run("delete", event_id, lambda i=event_id: mutator.delete(i)))
        return outcome

    def _run(self, operation: str, event_id: str, call: Callable[[], Any]) -> OperationResult:
        try:
            result = call()
        except ExternalCapabilityError as e:
            logger.warning("%s %s failed: %s", operation, event_id, e)
            conflict_type = SyncConflictType(e.sync_conflict_type) if e.sync_conflict_type else None
            return OperationResult(event_id, operation, False, error=str(e), conflict_type=conflict_type)
        except Exception as e:
            logger.warning("%s %s failed: %s", operation, event_id, e)
            return OperationResult(event_id, operation, False, error=str(e))
        return OperationResult(event_id, operation, True, result=result)

    def synchronize(
        self,
        local: Sequence[EventCandidate],
        remote: Sequence[EventCandidate],
        strategy: Union[SyncResolution, str],
        mutator: Optional[CalendarMutator] = None,
    ) -> SyncReport:
        """One full pass: detect, resolve, diff and, when a mutator is given, apply."""
        with self._single_flight():
            started_at = self._clock()
            t0 = time.monotonic()
            conflicts = self.resolve_conflicts(self.detect_conflicts(local, remote), strategy)
            delta = self.compute_delta(local, remote, conflicts)
            applied = self._apply(delta, mutator) if mutator is not None else None
            report = SyncReport(
                conflicts=conflicts,
                delta=delta,
                applied=applied,
                started_at=started_at,
                duration_seconds=time.monotonic() - t0,
                total_events=len(local) + len(remote),
            )
        logger.info(
            "Sync pass: %d conflicts, %d creates, %d updates, %d deletes, %d ok, %d failed",
            len(conflicts),
            len(delta.creates),
            len(delta.updates),
            len(delta.deletes),
            report.synced_events,
            report.failed_events,
        )
        return report


def patched_interval(current: TimeInterval, patch: Dict[str, Any]) -> TimeInterval:
    return TimeInterval(
        patch.get("start", current.start),
        patch.get("end", current.end),
        patch.get("all_day", current.all_day),
    )
