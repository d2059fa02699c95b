from __future__ import annotations

import json
import logging
import os
from dataclasses import fields, is_dataclass, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional
from zoneinfo import ZoneInfo

from dotenv import load_dotenv

from .calendar_google import GoogleCalendarMutator
from .calendar_icloud import ICloudCalendarMutator
from .config import AppConfig, load_config
from .conflicts import ConflictDetector
from .errors import ExternalCapabilityError, InputError, SyncInProgressError
from .models import EventCandidate
from .orchestrator import NLPOrchestrator, format_analysis
from .parser_heuristic import HeuristicTextParser
from .parser_model import ModelTextParser
from .parsing import TextParser
from .recurrence import RecurrenceEngine
from .store import load_events, save_events
from .sync import SyncReconciler, SyncReport
from .timeutils import parse_instant
from .travel import build_travel_estimator

CONFIG_PATH_DEFAULT = "config.yaml"


def to_jsonable(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if is_dataclass(value) and not isinstance(value, type):
        return {f.name: to_jsonable(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, dict):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (set, frozenset)):
        return sorted(to_jsonable(v) for v in value)
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    return value


def build_orchestrator(cfg: AppConfig, clock: Optional[Callable[[], datetime]] = None) -> NLPOrchestrator:
    heuristic = HeuristicTextParser(default_duration_minutes=cfg.parser.default_duration_minutes)
    parser: TextParser = heuristic
    fallback: Optional[TextParser] = None
    if cfg.parser.strategy == "model":
        api_key = os.environ.get("OPENAI_API_KEY", "")
        if api_key:
            parser = ModelTextParser(
                api_key,
                model=cfg.parser.model,
                base_url=cfg.parser.base_url,
                timeout_seconds=cfg.parser.timeout_seconds,
                default_duration_minutes=cfg.parser.default_duration_minutes,
            )
            fallback = heuristic
        else:
            print("parser.strategy is model but OPENAI_API_KEY not set; using heuristic parser.")

    detector = ConflictDetector(
        travel_time_buffer=cfg.conflicts.travel_time_buffer_minutes,
        break_time_buffer=cfg.conflicts.break_time_buffer_minutes,
        energy_window=cfg.conflicts.energy_window_minutes,
        travel_estimator=build_travel_estimator(cfg.travel.provider, cfg.travel.user_agent),
    )
    return NLPOrchestrator(
        parser,
        fallback_parser=fallback,
        fallback_policy=cfg.parser.fallback,
        timezone_name=cfg.timezone,
        user_patterns=cfg.user_patterns,
        conflict_detector=detector,
        min_length=cfg.input.min_length,
        max_length=cfg.input.max_length,
        clock=clock,
    )


def build_mutator(cfg: AppConfig):
    """Calendar adapter for `sync.source`, or None when its credentials are not set."""
    if cfg.sync.source == "google":
        creds_path = os.environ.get("GOOGLE_CREDENTIALS_JSON", "")
        token_path = os.environ.get("GOOGLE_TOKEN_JSON", "")
        if not (creds_path and token_path):
            print("sync.source is google but GOOGLE_CREDENTIALS_JSON/GOOGLE_TOKEN_JSON not set.")
            return None
        return GoogleCalendarMutator.from_files(creds_path, token_path, cfg.google.calendar_id, cfg.timezone)

    user = os.environ.get("ICLOUD_USERNAME", "")
    pw = os.environ.get("ICLOUD_APP_PASSWORD", "")
    if not (user and pw):
        print("sync.source is icloud but ICLOUD_USERNAME/ICLOUD_APP_PASSWORD not set.")
        return None
    return ICloudCalendarMutator.connect(user, pw, cfg.icloud.calendar_name, cfg.timezone)


def run_analyze(
    cfg: AppConfig,
    text: str,
    events_path: Optional[str] = None,
    now_iso: Optional[str] = None,
    as_json: bool = False,
) -> int:
    tz = ZoneInfo(cfg.timezone)
    clock = None
    if now_iso:
        fixed_now = parse_instant(now_iso, tz)

        def clock() -> datetime:
            return fixed_now

    existing = load_events(events_path, tz) if events_path else []
    orchestrator = build_orchestrator(cfg, clock)
    try:
        analysis = orchestrator.analyze(text, existing)
    except InputError as e:
        for reason in e.reasons:
            print(f"Invalid input: {reason}")
        return 2
    except ExternalCapabilityError as e:
        print(f"Analysis failed: {e}")
        return 1

    if as_json:
        print(json.dumps(to_jsonable(analysis), indent=2, ensure_ascii=False))
    else:
        print(format_analysis(analysis), end="")
    return 0


def run_recurrence(cfg: AppConfig, text: str, count: int = 5) -> int:
    tz = ZoneInfo(cfg.timezone)
    engine = RecurrenceEngine(cfg.timezone)
    parsed = engine.parse_recurrence(text)
    if not parsed.has_recurrence:
        print("No recurrence found")
        return 1

    print(f"RRULE: {parsed.rrule}")
    print(f"Description: {parsed.description}")
    print(f"Confidence: {parsed.confidence * 100:.0f}%")
    print("Next occurrences:")
    for occurrence in engine.next_occurrences(parsed.rule, datetime.now(tz), count):
        print(f"- {occurrence.astimezone(tz):%a %Y-%m-%d %H:%M}")
    for suggestion in parsed.suggestions:
        print(f"Note: {suggestion}")
    return 0


def _print_report(report: SyncReport, dry_run: bool) -> None:
    delta = report.delta
    print(
        f"Sync {'plan' if dry_run else 'pass'}: {len(report.conflicts)} conflicts, "
        f"{len(delta.creates)} creates, {len(delta.updates)} updates, {len(delta.deletes)} deletes, "
        f"{len(delta.adopt_remote)} kept remote, {len(delta.unresolved)} awaiting manual resolution"
    )
    for conflict in report.conflicts:
        print(f"- {conflict.id} [{conflict.type.value}] {conflict.resolution.value}: {conflict.message}")
    if report.applied is not None:
        print(f"Applied {report.synced_events} changes; {report.failed_events} failed")
        for result in report.applied.results:
            if not result.success:
                kind = f" [{result.conflict_type.value}]" if result.conflict_type else ""
                print(f"- {result.operation} {result.event_id}{kind}: {result.error}")


def _in_window(events: List[EventCandidate], start: datetime, end: datetime) -> List[EventCandidate]:
    return [e for e in events if e.end > start and e.start < end]


def _record_remote_ids(local_path: str, tz: ZoneInfo, report: SyncReport) -> None:
    """Rewrite snapshot ids with the ids the calendar assigned on create."""
    renamed: Dict[str, str] = {}
    for result in report.applied.results:
        created = result.result
        if result.operation == "create" and result.success and isinstance(created, EventCandidate):
            if created.id != result.event_id:
                renamed[result.event_id] = created.id
    if not renamed:
        return
    events = [replace(e, id=renamed.get(e.id, e.id)) for e in load_events(local_path, tz)]
    save_events(local_path, events)
    print(f"Recorded {len(renamed)} new remote ids in {local_path}")


def run_sync(cfg: AppConfig, local_path: str, strategy: Optional[str] = None, dry_run: bool = False) -> int:
    tz = ZoneInfo(cfg.timezone)
    window_start = datetime.now(timezone.utc)
    window_end = window_start + timedelta(days=cfg.sync.lookahead_days)

    try:
        mutator = build_mutator(cfg)
        if mutator is None:
            return 1
        remote = mutator.list_events(window_start, window_end)
    except ExternalCapabilityError as e:
        print(f"Could not read {cfg.sync.source} calendar: {e}")
        return 1

    local = _in_window(load_events(local_path, tz), window_start, window_end)
    print(f"Loaded {len(local)} local and {len(remote)} remote events")

    reconciler = SyncReconciler()
    try:
        report = reconciler.synchronize(
            local,
            remote,
            strategy or cfg.sync.strategy,
            mutator=None if dry_run else mutator,
        )
    except SyncInProgressError as e:
        print(str(e))
        return 1

    _print_report(report, dry_run)
    if report.applied is not None:
        _record_remote_ids(local_path, tz, report)
    return 0 if report.failed_events == 0 else 1


def main(argv: Optional[List[str]] = None) -> int:
    import argparse

    ap = argparse.ArgumentParser(prog="calintel")
    ap.add_argument("--config", default=CONFIG_PATH_DEFAULT)
    sub = ap.add_subparsers(dest="command", required=True)

    analyze = sub.add_parser("analyze", help="Parse scheduling text and analyze the resulting events")
    analyze.add_argument("text")
    analyze.add_argument("--events", help="JSON snapshot of existing events")
    analyze.add_argument("--now", help="ISO timestamp used as the current time")
    analyze.add_argument("--json", action="store_true")

    recurrence = sub.add_parser("recurrence", help="Detect a recurrence rule in text")
    recurrence.add_argument("text")
    recurrence.add_argument("--count", type=int, default=5)

    sync = sub.add_parser("sync", help="Reconcile a local event snapshot with the remote calendar")
    sync.add_argument("--local", required=True, help="JSON snapshot of local events")
    sync.add_argument("--strategy", choices=["local_wins", "remote_wins", "merge", "manual"])
    sync.add_argument("--dry-run", action="store_true")

    args = ap.parse_args(argv)

    load_dotenv()
    cfg = load_config(args.config)
    logging.basicConfig(
        level=os.environ.get("CALINTEL_LOG_LEVEL", cfg.logging.level).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "analyze":
        return run_analyze(cfg, args.text, args.events, args.now, args.json)
    if args.command == "recurrence":
        return run_recurrence(cfg, args.text, args.count)
    return run_sync(cfg, args.local, args.strategy, args.dry_run)


if __name__ == "__main__":
    raise SystemExit(main())
