from datetime import datetime, timedelta, timezone

import pytest

from calintel.confidence import (
    FACTOR_WEIGHTS,
    ConfidenceScorer,
    average_breakdowns,
    default_user_patterns,
    weighted_overall,
)
from calintel.models import FACTOR_NAMES, Category, ConfidenceBreakdown, EventCandidate, TimeInterval, UserPattern

NOW = datetime(2024, 1, 15, 8, 0, tzinfo=timezone.utc)  # Monday


def _scorer() -> ConfidenceScorer:
    return ConfidenceScorer("UTC", now=lambda: NOW)


def _event(title="Team planning meeting", start=None, minutes=60, **kwargs) -> EventCandidate:
    start = start or datetime(2024, 1, 16, 14, 0, tzinfo=timezone.utc)
    return EventCandidate(
        id="e1",
        title=title,
        interval=TimeInterval(start, start + timedelta(minutes=minutes)),
        **kwargs,
    )


def test_weights_sum_to_one():
    assert sum(FACTOR_WEIGHTS.values()) == pytest.approx(1.0)
    assert set(FACTOR_WEIGHTS) == set(FACTOR_NAMES)


@pytest.mark.parametrize(
    "text,event",
    [
        ("Team planning meeting tomorrow at 2pm for 1 hour in the Office", _event(location="Office")),
        ("maybe something or other with", _event(title="x", start=datetime(2023, 1, 1, 3, 0, tzinfo=timezone.utc), minutes=5)),
        ("", _event(minutes=900)),
    ],
)
def test_scores_are_bounded(text, event):
    breakdown = _scorer().calculate_confidence(event, text)

    for name in FACTOR_NAMES:
        assert 0.0 <= getattr(breakdown, name) <= 1.0
    assert 0.0 <= breakdown.overall <= 1.0


def test_hedge_word_lowers_ambiguity_and_overall():
    scorer = _scorer()
    event = _event()

    plain = scorer.calculate_confidence(event, "Team planning meeting tomorrow at 2pm")
    hedged = scorer.calculate_confidence(event, "Maybe team planning meeting tomorrow at 2pm")

    assert plain.ambiguity_level == pytest.approx(0.5)
    assert hedged.ambiguity_level == pytest.approx(0.2)
    assert hedged.overall < plain.overall
    assert "Input is highly ambiguous - consider providing more specific details" in hedged.warnings


def test_each_extra_hedge_lowers_ambiguity_further():
    scorer = _scorer()

    one = scorer.calculate_confidence(_event(), "could we do planning tomorrow at 2pm")
    two = scorer.calculate_confidence(_event(), "could we do planning tomorrow at 2pm maybe")

    assert one.ambiguity_level == pytest.approx(0.2)
    assert two.ambiguity_level == pytest.approx(0.1)
    assert two.ambiguity_level < one.ambiguity_level


def test_hedge_words_match_whole_words_only():
    breakdown = _scorer().calculate_confidence(_event(), "Review the Coulder report soonish at 2pm tomorrow")

    assert breakdown.ambiguity_level == pytest.approx(0.5)


def test_disjunction_and_trailing_connector_reduce_ambiguity():
    breakdown = _scorer().calculate_confidence(_event(), "call mom or dad tomorrow at")

    assert breakdown.ambiguity_level == pytest.approx(0.1)


def test_time_clarity_saturates_at_one():
    breakdown = _scorer().calculate_confidence(_event(title="Lunch"), "Lunch at 12:30 pm for 1 hour")

    assert breakdown.time_clarity == pytest.approx(1.0)


def test_date_clarity_depends_on_text_and_clock():
    scorer = _scorer()

    future = scorer.calculate_confidence(_event(), "planning tomorrow")
    past = scorer.calculate_confidence(_event(start=NOW - timedelta(days=3)), "planning")

    assert future.date_clarity == pytest.approx(1.0)
    assert past.date_clarity == pytest.approx(0.6)


def test_location_clarity_levels():
    scorer = _scorer()

    assert scorer.calculate_confidence(_event(), "x").location_clarity == pytest.approx(0.5)
    assert scorer.calculate_confidence(_event(location="Cafe Luna"), "x").location_clarity == pytest.approx(0.8)
    assert scorer.calculate_confidence(_event(location="Room 4B"), "x").location_clarity == pytest.approx(1.0)
    assert scorer.calculate_confidence(_event(location=" office "), "x").location_clarity == pytest.approx(1.0)


def test_title_clarity_levels():
    scorer = _scorer()

    assert scorer.calculate_confidence(_event(title="Mtg"), "x").title_clarity == pytest.approx(0.5)
    assert scorer.calculate_confidence(_event(title="call"), "x").title_clarity == pytest.approx(0.9)
    assert scorer.calculate_confidence(_event(title="Quarterly planning meeting"), "x").title_clarity == pytest.approx(1.0)


def test_context_and_consistency_use_user_patterns():
    scorer = _scorer()
    usual = _event(category=Category.WORK, location="Office")  # Tuesday 14:00, 60 minutes
    odd = _event(start=datetime(2024, 1, 20, 23, 15, tzinfo=timezone.utc), minutes=180)  # Saturday night

    usual_score = scorer.calculate_confidence(usual, "x")
    odd_score = scorer.calculate_confidence(odd, "x")

    assert usual_score.context_relevance == pytest.approx(1.0)
    assert usual_score.consistency == pytest.approx(1.0)
    assert odd_score.context_relevance == pytest.approx(0.5)
    assert odd_score.consistency == pytest.approx(0.5)
    assert "Consider scheduling during your usual working hours" in odd_score.suggestions


def test_missing_location_suggests_it_without_warning():
    breakdown = _scorer().calculate_confidence(_event(), "Team planning meeting tomorrow at 2pm")

    assert 'Include the location if relevant (e.g., "meeting at the office")' in breakdown.suggestions
    assert "Location is unclear - check where this event takes place" not in breakdown.warnings


def test_explicit_patterns_override_scorer_defaults():
    scorer = _scorer()
    patterns = default_user_patterns()
    night_owl = UserPattern(
        preferred_times=("23:15",),
        preferred_days=("Saturday",),
        common_locations=(),
        event_categories=(),
        average_duration=180,
        working_hours=patterns.working_hours,
    )
    event = _event(start=datetime(2024, 1, 20, 23, 15, tzinfo=timezone.utc), minutes=180)

    assert scorer.calculate_confidence(event, "x").consistency == pytest.approx(0.5)
    assert scorer.calculate_confidence(event, "x", night_owl).consistency == pytest.approx(1.0)


def test_weighted_overall_and_average():
    ones = {name: 1.0 for name in FACTOR_NAMES}
    halves = {name: 0.5 for name in FACTOR_NAMES}

    assert weighted_overall(ones) == pytest.approx(1.0)

    averaged = average_breakdowns(
        [
            ConfidenceBreakdown(**ones, overall=1.0, suggestions=["a"], warnings=["w"]),
            ConfidenceBreakdown(**halves, overall=0.5, suggestions=["a", "b"]),
        ]
    )
    assert averaged.time_clarity == pytest.approx(0.75)
    assert averaged.overall == pytest.approx(0.75)
    assert averaged.suggestions == ["a", "b"]
    assert averaged.warnings == ["w"]
    assert average_breakdowns([]).overall == 0.0
