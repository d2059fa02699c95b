from __future__ import annotations
from pathlib import Path
from typing import Any, Dict, List, Sequence
from zoneinfo import ZoneInfo
import json
import logging

from .models import EventCandidate
from .parsing import build_candidates, candidate_to_raw

logger = logging.getLogger(__name__)

def load_events(path: str, tz: ZoneInfo) -> List[EventCandidate]:
    """Read an event snapshot: either {"events": [...]} or a bare list of events."""
    p = Path(path)
    if not p.exists():
        return []
    data: Any = json.loads(p.read_text(encoding="utf-8"))
    raws = data.get("events", []) if isinstance(data, dict) else data
    if not isinstance(raws, list):
        raise ValueError(f"{path}: expected a list of events")
    events, warnings = build_candidates([r for r in raws if isinstance(r, dict)], tz, source="snapshot")
    for w in warnings:
        logger.warning("%s: %s", path, w)
    return events

def save_events(path: str, events: Sequence[EventCandidate]) -> None:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    payload: Dict[str, Any] = {"events": [candidate_to_raw(e) for e in events]}
    p.write_text(json.dumps(payload, indent=2), encoding="utf-8")
