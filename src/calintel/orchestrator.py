from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, List, Optional, Sequence, Tuple
from zoneinfo import ZoneInfo

from .confidence import ConfidenceScorer, average_breakdowns, default_user_patterns, weighted_overall
from .conflicts import ConflictDetector
from .errors import ExternalCapabilityError, InputError
from .models import (
    FACTOR_NAMES,
    ConfidenceBreakdown,
    ConflictAnalysis,
    EventCandidate,
    Severity,
    UserPattern,
)
from .parsing import FallbackPolicy, ParseContext, ParseResult, TextParser, build_candidates
from .recurrence import ParsedRecurrence, RecurrenceEngine

logger = logging.getLogger(__name__)

NEUTRAL_FACTOR_SCORE = 0.8
MIN_RECURRENCE_CONFIDENCE = 0.7
CRITICAL_WARNING = "Critical scheduling conflicts detected - these events cannot be scheduled as requested"


@dataclass
class AnalysisOptions:
    detect_conflicts: bool = True
    score_confidence: bool = True
    parse_recurrence: bool = True
    user_patterns: Optional[UserPattern] = None


@dataclass
class AnalysisMetadata:
    processing_time_ms: float
    timezone: str
    total_events: int
    has_conflicts: bool
    overall_confidence: float
    parser: Optional[str] = None
    parser_message: str = ""
    clarification_questions: List[str] = field(default_factory=list)


@dataclass
class NLPAnalysis:
    events: List[EventCandidate]
    conflicts: ConflictAnalysis
    recurrence: Optional[ParsedRecurrence]
    confidence: ConfidenceBreakdown
    overall_confidence: float
    suggestions: List[str]
    warnings: List[str]
    metadata: AnalysisMetadata


def scale_confidence(overall: float, conflicts: ConflictAnalysis) -> float:
    if conflicts.critical_conflicts > 0:
        factor = 0.7
    elif conflicts.total_conflicts > 3:
        factor = 0.8
    elif conflicts.total_conflicts > 0:
        factor = 0.9
    else:
        factor = 1.0
    return max(0.0, min(1.0, overall * factor))


def neutral_breakdown() -> ConfidenceBreakdown:
    factors = {name: NEUTRAL_FACTOR_SCORE for name in FACTOR_NAMES}
    return ConfidenceBreakdown(**factors, overall=weighted_overall(factors))


def _unique(items: Sequence[str]) -> List[str]:
    return list(dict.fromkeys(i for i in items if i))


class NLPOrchestrator:
    """Runs one text request through parsing, recurrence, conflict and confidence analysis."""

    def __init__(
        self,
        parser: TextParser,
        fallback_parser: Optional[TextParser] = None,
        fallback_policy: FallbackPolicy = FallbackPolicy.ON_ERROR,
        timezone_name: str = "UTC",
        user_patterns: Optional[UserPattern] = None,
        conflict_detector: Optional[ConflictDetector] = None,
        min_length: int = 3,
        max_length: int = 1000,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.parser = parser
        self.fallback_parser = fallback_parser
        self.fallback_policy = FallbackPolicy(fallback_policy)
        self.timezone_name = timezone_name
        self.tz = ZoneInfo(timezone_name)
        self.user_patterns = user_patterns or default_user_patterns()
        self.min_length = min_length
        self.max_length = max_length
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.conflict_detector = conflict_detector or ConflictDetector()
        self.recurrence_engine = RecurrenceEngine(timezone_name, now=self._clock)
        self.confidence_scorer = ConfidenceScorer(timezone_name, self.user_patterns, now=self._clock)

    def validate_input(self, text: Optional[str]) -> str:
        """Return the stripped text or raise InputError listing every reason it was rejected."""
        stripped = (text or "").strip()
        reasons: List[str] = []
        if not stripped:
            reasons.append("Input cannot be empty")
        elif len(stripped) < self.min_length:
            reasons.append("Input too short to parse meaningful events")
        if len(text or "") > self.max_length:
            reasons.append("Input too long. Please break down into smaller chunks")
        if reasons:
            raise InputError(reasons)
        return stripped

    def analyze(
        self,
        text: str,
        existing_events: Sequence[EventCandidate] = (),
        options: Optional[AnalysisOptions] = None,
    ) -> NLPAnalysis:
        text = self.validate_input(text)
        options = options or AnalysisOptions()
        patterns = options.user_patterns or self.user_patterns
        t0 = time.perf_counter()

        context = ParseContext(
            current_date=self._clock(),
            timezone=self.timezone_name,
            working_hours=patterns.working_hours,
            existing_events=list(existing_events),
            preferences=patterns,
        )
        parsed, parser_name, warnings = self._parse(text, context)
        events, dropped = build_candidates(parsed.events, self.tz)
        warnings.extend(dropped)

        if not events:
            logger.info("No events parsed from input (parser=%s)", parser_name)
            return NLPAnalysis(
                events=[],
                conflicts=ConflictAnalysis(),
                recurrence=None,
                confidence=ConfidenceBreakdown(
                    suggestions=["No events were parsed from the input"],
                    warnings=["Input could not be parsed into calendar events"],
                ),
                overall_confidence=0.0,
                suggestions=_unique(parsed.suggestions + ["No events were parsed from the input"]),
                warnings=_unique(warnings + parsed.warnings + ["Input could not be parsed into calendar events"]),
                metadata=AnalysisMetadata(
                    processing_time_ms=(time.perf_counter() - t0) * 1000,
                    timezone=self.timezone_name,
                    total_events=0,
                    has_conflicts=False,
                    overall_confidence=0.0,
                    parser=parser_name,
                    parser_message=parsed.message,
                    clarification_questions=list(parsed.clarification_questions),
                ),
            )

        recurrence = None
        if options.parse_recurrence:
            recurrence = self.recurrence_engine.parse_recurrence(text)
            if recurrence.has_recurrence and recurrence.confidence >= MIN_RECURRENCE_CONFIDENCE:
                for event in events:
                    if event.recurrence is None:
                        event.recurrence = recurrence.rule

        if options.detect_conflicts:
            conflicts = self.conflict_detector.analyze_conflicts(
                events + list(existing_events), focus_ids={e.id for e in events}
            )
        else:
            conflicts = ConflictAnalysis()

        if options.score_confidence:
            breakdowns = []
            for event in events:
                breakdown = self.confidence_scorer.calculate_confidence(event, text, patterns)
                event.confidence = breakdown.overall
                breakdowns.append(breakdown)
            confidence = average_breakdowns(breakdowns)
        else:
            confidence = neutral_breakdown()

        overall = scale_confidence(confidence.overall, conflicts)
        suggestions = self._suggestions(parsed, recurrence, conflicts, confidence, len(events))
        warnings = self._warnings(warnings, parsed, conflicts, confidence)

        analysis = NLPAnalysis(
            events=events,
            conflicts=conflicts,
            recurrence=recurrence,
            confidence=confidence,
            overall_confidence=overall,
            suggestions=suggestions,
            warnings=warnings,
            metadata=AnalysisMetadata(
                processing_time_ms=(time.perf_counter() - t0) * 1000,
                timezone=self.timezone_name,
                total_events=len(events),
                has_conflicts=conflicts.total_conflicts > 0,
                overall_confidence=overall,
                parser=parser_name,
                parser_message=parsed.message,
                clarification_questions=list(parsed.clarification_questions),
            ),
        )
        logger.debug(
            "Analyzed %d events: %d conflicts, confidence %.2f",
            len(events),
            conflicts.total_conflicts,
            overall,
        )
        return analysis

    def _parse(self, text: str, context: ParseContext) -> Tuple[ParseResult, str, List[str]]:
        warnings: List[str] = []
        try:
            result = self.parser.parse(text, context)
        except Exception as e:
            if self.fallback_parser is None or self.fallback_policy is FallbackPolicy.NEVER:
                raise ExternalCapabilityError("parse", e) from e
            logger.info("Parser %s failed (%s); falling back to %s", self.parser.name, e, self.fallback_parser.name)
            warnings.append(f"Primary parser failed; used {self.fallback_parser.name} parser instead")
            return self._parse_fallback(text, context), self.fallback_parser.name, warnings

        if (
            not result.events
            and self.fallback_parser is not None
            and self.fallback_policy is FallbackPolicy.ON_EMPTY
        ):
            logger.info("Parser %s returned no events; falling back to %s", self.parser.name, self.fallback_parser.name)
            warnings.append(f"Primary parser found no events; used {self.fallback_parser.name} parser instead")
            return self._parse_fallback(text, context), self.fallback_parser.name, warnings
        return result, self.parser.name, warnings

    def _parse_fallback(self, text: str, context: ParseContext) -> ParseResult:
        try:
            return self.fallback_parser.parse(text, context)
        except Exception as e:
            raise ExternalCapabilityError("parse", e) from e

    def _suggestions(
        self,
        parsed: ParseResult,
        recurrence: Optional[ParsedRecurrence],
        conflicts: ConflictAnalysis,
        confidence: ConfidenceBreakdown,
        event_count: int,
    ) -> List[str]:
        suggestions = list(parsed.suggestions)
        if recurrence is not None:
            suggestions.extend(recurrence.suggestions)
        suggestions.extend(conflicts.suggestions)
        suggestions.extend(confidence.suggestions)
        if recurrence is not None and recurrence.has_recurrence and recurrence.description:
            suggestions.append(f"Recurring event detected: {recurrence.description}")
        if event_count > 5:
            suggestions.append("Consider breaking down large schedules into smaller chunks")
        if conflicts.overall_severity is Severity.CRITICAL:
            suggestions.append("Critical conflicts detected. Please review and resolve before scheduling.")
        return _unique(suggestions)

    def _warnings(
        self,
        warnings: List[str],
        parsed: ParseResult,
        conflicts: ConflictAnalysis,
        confidence: ConfidenceBreakdown,
    ) -> List[str]:
        warnings = warnings + list(parsed.warnings)
        if conflicts.critical_conflicts > 0:
            warnings.append(f"{conflicts.critical_conflicts} critical conflicts detected")
        if conflicts.overall_severity is Severity.HIGH:
            warnings.append("High severity conflicts detected")
        warnings.extend(confidence.warnings)
        if confidence.overall < 0.5:
            warnings.append("Low confidence in parsed events. Please review and clarify.")
        if parsed.needs_clarification:
            warnings.append("Input requires clarification for accurate parsing")
        warnings = _unique(warnings)
        if conflicts.critical_conflicts > 0:
            warnings.insert(0, CRITICAL_WARNING)
        return warnings


def format_analysis(analysis: NLPAnalysis) -> str:
    tz = ZoneInfo(analysis.metadata.timezone)
    lines = [
        "NLP Analysis Results:",
        f"- Total Events: {analysis.metadata.total_events}",
        f"- Overall Confidence: {analysis.overall_confidence * 100:.1f}%",
        f"- Processing Time: {analysis.metadata.processing_time_ms:.0f}ms",
        f"- Has Conflicts: {'Yes' if analysis.metadata.has_conflicts else 'No'}",
    ]
    if analysis.conflicts.total_conflicts > 0:
        lines.append(
            f"- Conflicts: {analysis.conflicts.total_conflicts} ({analysis.conflicts.critical_conflicts} critical)"
        )
    if analysis.recurrence is not None and analysis.recurrence.has_recurrence:
        lines.append(f"- Recurrence: {analysis.recurrence.description or 'Detected'}")

    if analysis.events:
        lines.append("")
        lines.append("Events:")
        for e in analysis.events:
            start = e.start.astimezone(tz)
            end = e.end.astimezone(tz)
            when = f"{start:%Y-%m-%d}" if e.all_day else f"{start:%Y-%m-%d %H:%M}-{end:%H:%M}"
            where = f" @ {e.location}" if e.location else ""
            lines.append(f"- {when} {e.title}{where} ({e.confidence * 100:.0f}%)")
            for c in e.conflicts:
                lines.append(f"    ! {c.type.value} [{c.severity.value}] with {c.counterpart_title(e.id)}: {c.suggestion}")

    if analysis.suggestions:
        lines.append("")
        lines.append("Suggestions:")
        lines.extend(f"- {s}" for s in analysis.suggestions)
    if analysis.warnings:
        lines.append("")
        lines.append("Warnings:")
        lines.extend(f"- {w}" for w in analysis.warnings)
    return "\n".join(lines) + "\n"
