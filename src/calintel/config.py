from __future__ import annotations
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional
import yaml

from .confidence import default_user_patterns
from .models import SyncResolution, UserPattern, WorkingHours
from .parsing import FallbackPolicy

PARSER_STRATEGIES = ("model", "heuristic")
TRAVEL_PROVIDERS = ("placeholder", "osrm")
SYNC_SOURCES = ("google", "icloud")

@dataclass
class InputConfig:
    min_length: int = 3
    max_length: int = 1000

@dataclass
class ConflictsConfig:
    travel_time_buffer_minutes: int = 15
    break_time_buffer_minutes: int = 10
    energy_window_minutes: int = 30

@dataclass
class TravelConfig:
    provider: str = "placeholder"
    user_agent: str = "calintel/0.1"

@dataclass
class ParserConfig:
    strategy: str = "heuristic"
    fallback: FallbackPolicy = FallbackPolicy.ON_ERROR
    model: str = "gpt-4o-mini"
    base_url: str = "https://api.openai.com/v1"
    timeout_seconds: float = 30.0
    default_duration_minutes: int = 60

@dataclass
class SyncConfig:
    strategy: SyncResolution = SyncResolution.MERGE
    source: str = "google"
    lookahead_days: int = 30

@dataclass
class GoogleConfig:
    calendar_id: str = "primary"

@dataclass
class ICloudConfig:
    calendar_name: Optional[str] = None

@dataclass
class LoggingConfig:
    level: str = "INFO"

@dataclass
class AppConfig:
    timezone: str = "UTC"
    input: InputConfig = field(default_factory=InputConfig)
    conflicts: ConflictsConfig = field(default_factory=ConflictsConfig)
    travel: TravelConfig = field(default_factory=TravelConfig)
    parser: ParserConfig = field(default_factory=ParserConfig)
    user_patterns: UserPattern = field(default_factory=default_user_patterns)
    sync: SyncConfig = field(default_factory=SyncConfig)
    google: GoogleConfig = field(default_factory=GoogleConfig)
    icloud: ICloudConfig = field(default_factory=ICloudConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

def _choice(value: Any, allowed: tuple, key: str) -> str:
    value = str(value)
    if value not in allowed:
        raise ValueError(f"{key} must be one of {', '.join(allowed)}; got {value!r}")
    return value

def _user_patterns(data: Dict[str, Any]) -> UserPattern:
    defaults = default_user_patterns()
    hours = data.get("working_hours", {})
    return UserPattern(
        preferred_times=tuple(data.get("preferred_times", defaults.preferred_times)),
        preferred_days=tuple(data.get("preferred_days", defaults.preferred_days)),
        common_locations=tuple(data.get("common_locations", defaults.common_locations)),
        event_categories=tuple(data.get("event_categories", defaults.event_categories)),
        average_duration=int(data.get("average_duration", defaults.average_duration)),
        working_hours=WorkingHours(
            start=str(hours.get("start", defaults.working_hours.start)),
            end=str(hours.get("end", defaults.working_hours.end)),
        ),
    )

def load_config(path: str) -> AppConfig:
    p = Path(path)
    if not p.exists():
        return AppConfig()
    data: Dict[str, Any] = yaml.safe_load(p.read_text(encoding="utf-8")) or {}

    input_ = data.get("input", {})
    conflicts = data.get("conflicts", {})
    travel = data.get("travel", {})
    parser = data.get("parser", {})
    sync = data.get("sync", {})
    google = data.get("google", {})
    icloud = data.get("icloud", {})
    logging_ = data.get("logging", {})

    return AppConfig(
        timezone=str(data.get("timezone", "UTC")),
        input=InputConfig(
            min_length=int(input_.get("min_length", 3)),
            max_length=int(input_.get("max_length", 1000)),
        ),
        conflicts=ConflictsConfig(
            travel_time_buffer_minutes=int(conflicts.get("travel_time_buffer_minutes", 15)),
            break_time_buffer_minutes=int(conflicts.get("break_time_buffer_minutes", 10)),
            energy_window_minutes=int(conflicts.get("energy_window_minutes", 30)),
        ),
        travel=TravelConfig(
            provider=_choice(travel.get("provider", "placeholder"), TRAVEL_PROVIDERS, "travel.provider"),
            user_agent=str(travel.get("user_agent", "calintel/0.1")),
        ),
        parser=ParserConfig(
            strategy=_choice(parser.get("strategy", "heuristic"), PARSER_STRATEGIES, "parser.strategy"),
            fallback=FallbackPolicy(str(parser.get("fallback", "on_error"))),
            model=str(parser.get("model", "gpt-4o-mini")),
            base_url=str(parser.get("base_url", "https://api.openai.com/v1")),
            timeout_seconds=float(parser.get("timeout_seconds", 30)),
            default_duration_minutes=int(parser.get("default_duration_minutes", 60)),
        ),
        user_patterns=_user_patterns(data.get("user_patterns", {})),
        sync=SyncConfig(
            strategy=SyncResolution(str(sync.get("strategy", "merge"))),
            source=_choice(sync.get("source", "google"), SYNC_SOURCES, "sync.source"),
            lookahead_days=int(sync.get("lookahead_days", 30)),
        ),
        google=GoogleConfig(
            calendar_id=str(google.get("calendar_id", "primary")),
        ),
        icloud=ICloudConfig(
            calendar_name=icloud.get("calendar_name"),
        ),
        logging=LoggingConfig(
            level=str(logging_.get("level", "INFO")).upper(),
        ),
    )
