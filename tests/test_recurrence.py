from datetime import datetime, timezone
from zoneinfo import ZoneInfo

import pytest

from calintel.errors import RecurrenceParseError
from calintel.models import Frequency, RecurrenceRule
from calintel.recurrence import RecurrenceEngine, generate_rule, ordinal_suffix, parse_rule


def _engine(tz: str = "UTC") -> RecurrenceEngine:
    fixed = datetime(2024, 1, 2, 9, 0, tzinfo=timezone.utc)
    return RecurrenceEngine(tz, now=lambda: fixed)


def test_every_tuesday_is_weekly_on_tuesday():
    parsed = _engine().parse_recurrence("Team sync every Tuesday at 10am")

    assert parsed.has_recurrence
    assert parsed.rrule == "FREQ=WEEKLY;BYDAY=TU"
    assert parsed.confidence == 0.9
    assert parsed.description == "Every week on Tuesday"


def test_every_day_for_five_times_sets_count():
    parsed = _engine().parse_recurrence("every day for 5 times")

    assert parsed.rule == RecurrenceRule(Frequency.DAILY, count=5)
    assert parsed.rrule == "FREQ=DAILY;COUNT=5"
    assert parsed.description == "Every day for 5 times"
    assert len(parsed.next_occurrences) == 5


def test_every_other_week_doubles_interval():
    parsed = _engine().parse_recurrence("1:1 every other week on Monday")

    assert parsed.rrule == "FREQ=WEEKLY;INTERVAL=2;BYDAY=MO"
    assert parsed.description == "Every 2 weeks on Monday"


def test_first_monday_of_every_month():
    parsed = _engine().parse_recurrence("board review the first Monday of every month")

    assert parsed.rrule == "FREQ=MONTHLY;BYDAY=MO;BYSETPOS=1"
    assert parsed.description == "Every month on the first Monday"


def test_last_day_of_the_month_uses_negative_month_day():
    parsed = _engine().parse_recurrence("pay rent on the last day of the month")

    assert parsed.rule.by_month_day == (-1,)
    assert parsed.rrule == "FREQ=MONTHLY;BYMONTHDAY=-1"
    assert parsed.description == "Every month on the last day"


def test_weekdays_expand_to_monday_through_friday():
    parsed = _engine().parse_recurrence("standup on weekdays")

    assert parsed.rule.by_day == ("MO", "TU", "WE", "TH", "FR")


def test_weekly_without_days_is_less_confident_and_asks_for_days():
    parsed = _engine().parse_recurrence("weekly review")

    assert parsed.rule.frequency is Frequency.WEEKLY
    assert parsed.confidence == 0.7
    assert "Consider specifying which days of the week" in parsed.suggestions


def test_count_wins_over_until_with_suggestion():
    parsed = _engine().parse_recurrence("every day for 3 times until 2024-05-01")

    assert parsed.rule.count == 3
    assert parsed.rule.until is None
    assert "Both a repeat count and an end date were given; using the count" in parsed.suggestions


def test_until_is_end_of_day_in_engine_timezone():
    parsed = _engine("America/New_York").parse_recurrence("every day until 2024-03-01")

    assert parsed.rule.until == datetime(2024, 3, 2, 4, 59, 59, tzinfo=timezone.utc)
    assert parsed.rrule == "FREQ=DAILY;UNTIL=20240302T045959Z"
    assert parsed.description == "Every day until March 1, 2024"


def test_text_without_cues_has_no_recurrence():
    parsed = _engine().parse_recurrence("Lunch with Sam tomorrow at noon")

    assert not parsed.has_recurrence
    assert parsed.rule is None
    assert parsed.confidence == 0.9


def test_next_occurrences_weekly_from_tuesday():
    engine = _engine()
    rule = RecurrenceRule(Frequency.WEEKLY, by_day=("MO", "WE", "FR"))
    start = datetime(2024, 1, 2, 9, 0, tzinfo=timezone.utc)  # Tuesday

    occurrences = engine.next_occurrences(rule, start, 3)

    assert occurrences == [
        datetime(2024, 1, 3, 9, 0, tzinfo=timezone.utc),
        datetime(2024, 1, 5, 9, 0, tzinfo=timezone.utc),
        datetime(2024, 1, 8, 9, 0, tzinfo=timezone.utc),
    ]


def test_next_occurrences_respects_count_and_until():
    engine = _engine()
    start = datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)

    counted = engine.next_occurrences(RecurrenceRule(Frequency.DAILY, count=3), start, 10)
    bounded = engine.next_occurrences(
        RecurrenceRule(Frequency.DAILY, until=datetime(2024, 1, 3, 23, 59, 59, tzinfo=timezone.utc)),
        start,
        10,
    )

    assert len(counted) == 3
    assert [o.day for o in bounded] == [1, 2, 3]


def test_monthly_on_31st_skips_short_months():
    engine = _engine()
    rule = RecurrenceRule(Frequency.MONTHLY, by_month_day=(31,))

    occurrences = engine.next_occurrences(rule, datetime(2024, 1, 31, 8, 0, tzinfo=timezone.utc), 3)

    assert [(o.month, o.day) for o in occurrences] == [(1, 31), (3, 31), (5, 31)]


def test_occurrences_keep_wall_clock_across_dst():
    tz = ZoneInfo("America/New_York")
    engine = RecurrenceEngine("America/New_York")
    start = datetime(2024, 3, 8, 9, 0, tzinfo=tz)

    occurrences = engine.next_occurrences(RecurrenceRule(Frequency.DAILY), start, 3)

    assert [o.astimezone(tz).hour for o in occurrences] == [9, 9, 9]
    assert occurrences[0].hour == 14 and occurrences[2].hour == 13


def test_next_occurrences_with_zero_requested_is_empty():
    assert _engine().next_occurrences(RecurrenceRule(Frequency.DAILY), datetime.now(timezone.utc), 0) == []


def test_generate_rule_rejects_count_with_until():
    rule = RecurrenceRule(
        Frequency.DAILY,
        count=2,
        until=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )

    with pytest.raises(RecurrenceParseError):
        generate_rule(rule)


def test_generate_rule_rejects_bad_interval_and_weekday():
    with pytest.raises(RecurrenceParseError):
        generate_rule(RecurrenceRule(Frequency.DAILY, interval=0))
    with pytest.raises(RecurrenceParseError):
        generate_rule(RecurrenceRule(Frequency.WEEKLY, by_day=("XX",)))


def test_parse_rule_accepts_prefix_and_ordinal_byday():
    rule = parse_rule("RRULE:FREQ=MONTHLY;BYDAY=-1FR")

    assert rule.frequency is Frequency.MONTHLY
    assert rule.by_day == ("FR",)
    assert rule.by_set_pos == -1


def test_parse_rule_reads_until_and_interval():
    rule = parse_rule("FREQ=WEEKLY;INTERVAL=2;BYDAY=MO,WE;UNTIL=20240301T000000Z")

    assert rule.interval == 2
    assert rule.by_day == ("MO", "WE")
    assert rule.until == datetime(2024, 3, 1, tzinfo=timezone.utc)


@pytest.mark.parametrize("value", ["", "INTERVAL=2", "FREQ=SOMETIMES", "FREQ=DAILY;COUNT=x", "FREQ=WEEKLY;BYDAY=XY"])
def test_parse_rule_rejects_malformed_strings(value):
    with pytest.raises(RecurrenceParseError):
        parse_rule(value)


def test_description_joins_several_days():
    engine = _engine()
    rule = RecurrenceRule(Frequency.WEEKLY, interval=2, by_day=("MO", "WE", "FR"))

    assert engine.generate_description(rule) == "Every 2 weeks on Monday, Wednesday and Friday"


@pytest.mark.parametrize(
    "num,suffix",
    [(1, "st"), (2, "nd"), (3, "rd"), (4, "th"), (11, "th"), (12, "th"), (13, "th"), (21, "st"), (22, "nd"), (23, "rd"), (111, "th")],
)
def test_ordinal_suffix(num, suffix):
    assert ordinal_suffix(num) == suffix


def test_month_day_descriptions_use_ordinals():
    rule = RecurrenceRule(Frequency.MONTHLY, by_month_day=(11, 12, 13, 21, 22, 23))

    assert _engine().generate_description(rule) == "Every month on the 11th, 12th, 13th, 21st, 22nd and 23rd"


def test_last_weekday_of_month():
    engine = _engine()
    parsed = engine.parse_recurrence("retro on the last Friday of every month")

    assert parsed.rrule == "FREQ=MONTHLY;BYDAY=FR;BYSETPOS=-1"
    assert parsed.description == "Every month on the last Friday"
    occurrences = engine.next_occurrences(parsed.rule, datetime(2024, 1, 2, 9, 0, tzinfo=timezone.utc), 3)
    assert [(o.month, o.day) for o in occurrences] == [(1, 26), (2, 23), (3, 29)]
