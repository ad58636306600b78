from datetime import date, datetime, timezone
from types import SimpleNamespace
import uuid

import pytest

from app.domain.enums import Frequency
from app.domain.schemas.event import EventCreateIn
from app.services.recurrence import (
    DAY_VALUES,
    LAST_DAY_OF_MONTH,
    RecurrenceRule,
    Weekday,
    WeekdaySet,
    expand_event_occurrences,
    format_recurrence_pattern,
    generate_occurrences,
    get_next_occurrence,
    is_event_occurrence,
    is_occurrence,
    matches_pattern,
    parse_recurrence_rule,
)

MON_WED = WeekdaySet.of(Weekday.MONDAY, Weekday.WEDNESDAY)


def _event(**kw):
    fields = dict(
        id=uuid.uuid4(),
        start_date=datetime(2024, 3, 3, 15, 0, tzinfo=timezone.utc),  # 10:00 in New York (EST)
        timezone="America/New_York",
        is_recurring=True,
        recurrence_frequency="WEEKLY",
        recurrence_interval=1,
        recurrence_days_of_week=None,
        recurrence_day_of_month=None,
        recurrence_end_date=None,
        recurrence_count=None,
    )
    fields.update(kw)
    return SimpleNamespace(**fields)


# ---------- weekday mask ----------
def test_weekday_mask_round_trips_bit_for_bit():
    days = WeekdaySet.of(Weekday.SUNDAY, Weekday.SATURDAY)
    assert days.mask == 65
    assert WeekdaySet(days.mask) == days
    assert list(WeekdaySet.from_mask(10)) == [Weekday.MONDAY, Weekday.WEDNESDAY]
    assert DAY_VALUES["SUNDAY"] == 1 and DAY_VALUES["SATURDAY"] == 64


def test_empty_mask_means_start_weekday():
    assert WeekdaySet.from_mask(0) is None
    assert WeekdaySet.from_mask(None) is None


def test_mask_out_of_range_rejected():
    with pytest.raises(ValueError):
        WeekdaySet(128)


# ---------- generation ----------
def test_weekly_on_selected_days():
    rule = RecurrenceRule(Frequency.WEEKLY, days_of_week=MON_WED)
    got = generate_occurrences(date(2024, 1, 1), rule, date(2024, 1, 1), date(2024, 1, 14))
    assert got == [date(2024, 1, 1), date(2024, 1, 3), date(2024, 1, 8), date(2024, 1, 10)]


def test_weekly_anchor_week_skips_days_before_start():
    rule = RecurrenceRule(Frequency.WEEKLY, days_of_week=MON_WED)
    got = generate_occurrences(date(2024, 1, 3), rule, date(2024, 1, 1), date(2024, 1, 14))
    assert got == [date(2024, 1, 3), date(2024, 1, 8), date(2024, 1, 10)]


def test_biweekly_defaults_to_start_weekday():
    rule = RecurrenceRule(Frequency.BIWEEKLY)
    got = generate_occurrences(date(2024, 1, 1), rule, date(2024, 1, 1), date(2024, 1, 31))
    assert got == [date(2024, 1, 1), date(2024, 1, 15), date(2024, 1, 29)]


def test_monthly_day_31_clamps_to_month_end():
    rule = RecurrenceRule(Frequency.MONTHLY, day_of_month=31)
    got = generate_occurrences(date(2024, 1, 31), rule, date(2024, 1, 1), date(2024, 4, 30))
    assert got == [date(2024, 1, 31), date(2024, 2, 29), date(2024, 3, 31), date(2024, 4, 30)]


def test_monthly_last_day_sentinel():
    rule = RecurrenceRule(Frequency.MONTHLY, day_of_month=LAST_DAY_OF_MONTH)
    got = generate_occurrences(date(2023, 1, 15), rule, date(2023, 1, 1), date(2023, 4, 30))
    assert got == [date(2023, 1, 31), date(2023, 2, 28), date(2023, 3, 31), date(2023, 4, 30)]


def test_yearly_feb_29_only_in_leap_years():
    rule = RecurrenceRule(Frequency.YEARLY)
    got = generate_occurrences(date(2024, 2, 29), rule, date(2024, 1, 1), date(2032, 12, 31))
    assert got == [date(2024, 2, 29), date(2028, 2, 29), date(2032, 2, 29)]


def test_daily_interval_far_into_the_future():
    rule = RecurrenceRule(Frequency.DAILY, interval=3)
    got = generate_occurrences(date(2024, 1, 1), rule, date(2024, 3, 1), date(2024, 3, 10))
    assert got == [date(2024, 3, 1), date(2024, 3, 4), date(2024, 3, 7), date(2024, 3, 10)]


def test_count_includes_occurrences_before_range():
    rule = RecurrenceRule(Frequency.DAILY, count=5)
    got = generate_occurrences(date(2024, 1, 1), rule, date(2024, 1, 4), date(2024, 1, 31))
    assert got == [date(2024, 1, 4), date(2024, 1, 5)]


def test_end_date_is_inclusive():
    rule = RecurrenceRule(Frequency.WEEKLY, end_date=date(2024, 1, 15))
    got = generate_occurrences(date(2024, 1, 1), rule, date(2024, 1, 1), date(2024, 2, 28))
    assert got == [date(2024, 1, 1), date(2024, 1, 8), date(2024, 1, 15)]


def test_max_occurrences_caps_output():
    rule = RecurrenceRule(Frequency.DAILY)
    got = generate_occurrences(date(2024, 1, 1), rule, date(2024, 1, 1), date(2024, 12, 31), max_occurrences=3)
    assert got == [date(2024, 1, 1), date(2024, 1, 2), date(2024, 1, 3)]


def test_generation_is_restartable():
    rule = RecurrenceRule(Frequency.WEEKLY, days_of_week=MON_WED)
    args = (date(2024, 1, 1), rule, date(2024, 2, 1), date(2024, 3, 1))
    assert generate_occurrences(*args) == generate_occurrences(*args)


@pytest.mark.parametrize(
    "rule",
    [
        RecurrenceRule(Frequency.DAILY, interval=0),
        RecurrenceRule(Frequency.MONTHLY, day_of_month=40),
        RecurrenceRule(Frequency.DAILY, count=-1),
        RecurrenceRule("HOURLY"),
    ],
)
def test_malformed_rule_yields_nothing(rule):
    assert generate_occurrences(date(2024, 1, 1), rule, date(2024, 1, 1), date(2024, 2, 1)) == []


def test_mixed_naive_and_aware_bounds_yield_nothing():
    rule = RecurrenceRule(Frequency.DAILY)
    start = datetime(2024, 1, 1, 9, 0)
    assert generate_occurrences(start, rule, datetime(2024, 1, 1, tzinfo=timezone.utc), datetime(2024, 1, 5, tzinfo=timezone.utc)) == []


# ---------- membership ----------
def test_matches_pattern_and_is_occurrence():
    start = date(2024, 1, 1)
    rule = RecurrenceRule(Frequency.WEEKLY, days_of_week=MON_WED, count=2)
    assert matches_pattern(date(2024, 1, 10), start, rule)
    assert not matches_pattern(date(2024, 1, 9), start, rule)
    assert is_occurrence(date(2024, 1, 3), start, rule)
    # fits the pattern but the count was used up by Jan 1 and Jan 3
    assert not is_occurrence(date(2024, 1, 8), start, rule)


def test_next_occurrence_after_a_given_date():
    rule = RecurrenceRule(Frequency.WEEKLY, days_of_week=MON_WED)
    assert get_next_occurrence(date(2024, 1, 1), rule, after=date(2024, 1, 4)) == date(2024, 1, 8)


def test_next_occurrence_none_when_series_ended():
    rule = RecurrenceRule(Frequency.DAILY, count=2)
    assert get_next_occurrence(date(2024, 1, 1), rule, after=date(2024, 2, 1)) is None


# ---------- event expansion ----------
def test_event_keeps_wall_clock_time_across_dst():
    event = _event()
    got = expand_event_occurrences(
        event, datetime(2024, 3, 1, tzinfo=timezone.utc), datetime(2024, 3, 20, tzinfo=timezone.utc)
    )
    assert got == [
        datetime(2024, 3, 3, 15, 0, tzinfo=timezone.utc),
        datetime(2024, 3, 10, 14, 0, tzinfo=timezone.utc),
        datetime(2024, 3, 17, 14, 0, tzinfo=timezone.utc),
    ]


def test_is_event_occurrence_requires_exact_start():
    event = _event()
    assert is_event_occurrence(event, datetime(2024, 3, 10, 14, 0, tzinfo=timezone.utc))
    assert not is_event_occurrence(event, datetime(2024, 3, 10, 15, 0, tzinfo=timezone.utc))


def test_non_recurring_event_has_its_start_only():
    event = _event(is_recurring=False, recurrence_frequency=None)
    assert parse_recurrence_rule(event) is None
    window = (datetime(2024, 3, 1, tzinfo=timezone.utc), datetime(2024, 3, 31, tzinfo=timezone.utc))
    assert expand_event_occurrences(event, *window) == [event.start_date]
    assert expand_event_occurrences(event, datetime(2024, 4, 1, tzinfo=timezone.utc), datetime(2024, 4, 30, tzinfo=timezone.utc)) == []


def test_unparseable_stored_rule_expands_to_nothing():
    event = _event(recurrence_frequency="FORTNIGHTLY")
    assert parse_recurrence_rule(event) is None
    assert expand_event_occurrences(
        event, datetime(2024, 3, 1, tzinfo=timezone.utc), datetime(2024, 3, 20, tzinfo=timezone.utc)
    ) == []


# ---------- formatting ----------
@pytest.mark.parametrize(
    "rule,start,expected",
    [
        (RecurrenceRule(Frequency.DAILY), None, "Every day"),
        (RecurrenceRule(Frequency.DAILY, interval=3), None, "Every 3 days"),
        (RecurrenceRule(Frequency.WEEKLY, days_of_week=MON_WED), None, "Weekly on Mon, Wed"),
        (RecurrenceRule(Frequency.BIWEEKLY), date(2024, 1, 1), "Every 2 weeks on Mon"),
        (RecurrenceRule(Frequency.MONTHLY, day_of_month=LAST_DAY_OF_MONTH), None, "Monthly on the last day"),
        (RecurrenceRule(Frequency.MONTHLY, interval=2, day_of_month=22), None, "Every 2 months on the 22nd"),
        (RecurrenceRule(Frequency.MONTHLY), date(2024, 1, 11), "Monthly on the 11th"),
        (RecurrenceRule(Frequency.YEARLY), date(2024, 3, 5), "Yearly on March 5"),
        (RecurrenceRule(Frequency.WEEKLY, end_date=date(2024, 3, 1)), date(2024, 1, 1), "Weekly on Mon until Mar 01, 2024"),
        (RecurrenceRule(Frequency.DAILY, count=5), None, "Every day for 5 occurrences"),
        (RecurrenceRule(Frequency.DAILY, count=1), None, "Every day for 1 occurrence"),
    ],
)
def test_format_recurrence_pattern(rule, start, expected):
    assert format_recurrence_pattern(rule, start) == expected


def test_format_without_rule_is_empty():
    assert format_recurrence_pattern(None) == ""


def test_event_payload_weekdays_encode_through_weekday_set():
    payload = EventCreateIn(
        title="Midweek Study",
        start_date=datetime(2030, 1, 7, 18, 0, tzinfo=timezone.utc),
        timezone="UTC",
        is_recurring=True,
        recurrence_frequency=Frequency.WEEKLY,
        recurrence_days_of_week=[3, 1, 1],
    )
    assert payload.days_of_week_mask() == MON_WED.mask == 10
    assert EventCreateIn(title="One-off", start_date=datetime(2030, 1, 7), timezone="UTC").days_of_week_mask() is None
