# app/services/recurrence.py
"""
Recurring event occurrence calculator.

Expands a master event's recurrence rule into concrete occurrence dates inside a
queried window. Occurrences are never stored; a registration refers to one by
(event_id, occurrence_date).

Everything here is pure. A malformed rule yields an empty list instead of an
exception because the callers are listing/calendar read paths.
"""
from __future__ import annotations

import calendar
import enum
import logging
from dataclasses import dataclass, replace
from datetime import date, datetime, time, timedelta, timezone
from typing import Iterator, Optional, Sequence, TypeVar
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from ..domain.enums import Frequency
from ..domain.timeutil import as_utc

log = logging.getLogger(__name__)

LAST_DAY_OF_MONTH = -1
DEFAULT_HORIZON = timedelta(days=365)

D = TypeVar("D", date, datetime)


class Weekday(enum.IntEnum):
    """Bit index in the stored weekday mask (0 = Sunday)."""

    SUNDAY = 0
    MONDAY = 1
    TUESDAY = 2
    WEDNESDAY = 3
    THURSDAY = 4
    FRIDAY = 5
    SATURDAY = 6

    @property
    def bit(self) -> int:
        return 1 << self.value

    @property
    def short_name(self) -> str:
        return self.name[:3].title()

    @classmethod
    def of(cls, d: date) -> "Weekday":
        # date.weekday() is Monday=0
        return cls((d.weekday() + 1) % 7)


# Bitmask values: 1=Sun, 2=Mon, 4=Tue, 8=Wed, 16=Thu, 32=Fri, 64=Sat
DAY_VALUES = {day.name: day.bit for day in Weekday}


@dataclass(frozen=True)
class WeekdaySet:
    """Typed view over the 7-bit weekday mask; `mask` round-trips bit for bit."""

    mask: int = 0

    def __post_init__(self) -> None:
        if not isinstance(self.mask, int) or not 0 <= self.mask <= 0x7F:
            raise ValueError(f"weekday mask out of range: {self.mask!r}")

    @classmethod
    def of(cls, *days: Weekday) -> "WeekdaySet":
        mask = 0
        for day in days:
            mask |= Weekday(day).bit
        return cls(mask)

    @classmethod
    def from_mask(cls, mask: Optional[int]) -> Optional["WeekdaySet"]:
        # NULL and 0 both mean "the start date's weekday"
        if not mask:
            return None
        return cls(mask)

    def __contains__(self, day: object) -> bool:
        if not isinstance(day, int):
            return False
        return 0 <= day <= 6 and bool(self.mask & (1 << day))

    def __iter__(self) -> Iterator[Weekday]:
        return (day for day in Weekday if self.mask & day.bit)

    def __len__(self) -> int:
        return bin(self.mask).count("1")

    def __bool__(self) -> bool:
        return self.mask != 0


@dataclass(frozen=True)
class RecurrenceRule:
    frequency: Frequency
    interval: int = 1
    days_of_week: Optional[WeekdaySet] = None   # WEEKLY / BIWEEKLY only
    day_of_month: Optional[int] = None          # MONTHLY only; 1..31 or LAST_DAY_OF_MONTH
    end_date: Optional[date] = None
    count: Optional[int] = None

    @property
    def effective_interval(self) -> int:
        return 2 if self.frequency == Frequency.BIWEEKLY else self.interval


def parse_recurrence_rule(event) -> Optional[RecurrenceRule]:
    """Build a rule from an Event row; None when the event does not recur."""
    if not event.is_recurring or not event.recurrence_frequency:
        return None
    try:
        return RecurrenceRule(
            frequency=Frequency(event.recurrence_frequency),
            interval=event.recurrence_interval or 1,
            days_of_week=WeekdaySet.from_mask(event.recurrence_days_of_week),
            day_of_month=event.recurrence_day_of_month,
            end_date=event.recurrence_end_date,
            count=event.recurrence_count,
        )
    except ValueError as exc:
        log.warning("recurrence_rule_unparseable", extra={"event_id": str(event.id), "error": str(exc)})
        return None


def _rule_problem(rule: RecurrenceRule, max_occurrences: int) -> Optional[str]:
    try:
        freq = Frequency(rule.frequency)
    except ValueError:
        return f"unsupported frequency {rule.frequency!r}"
    if not isinstance(max_occurrences, int) or max_occurrences <= 0:
        return "max_occurrences must be positive"
    if freq != Frequency.BIWEEKLY and (not isinstance(rule.interval, int) or rule.interval < 1):
        return f"invalid interval {rule.interval!r}"
    if rule.days_of_week is not None and not isinstance(rule.days_of_week, WeekdaySet):
        return "days_of_week must be a WeekdaySet"
    dom = rule.day_of_month
    if dom is not None and dom != LAST_DAY_OF_MONTH and not (isinstance(dom, int) and 1 <= dom <= 31):
        return f"invalid day_of_month {dom!r}"
    if rule.count is not None and (not isinstance(rule.count, int) or rule.count < 0):
        return f"invalid count {rule.count!r}"
    return None


def _coerce(value: date, like: date, *, end: bool = False) -> date:
    # a bare date bound against datetime occurrences covers that whole day
    if isinstance(like, datetime) and not isinstance(value, datetime):
        return datetime.combine(value, time.max if end else time.min, tzinfo=like.tzinfo)
    return value


def generate_occurrences(
    start: D,
    rule: RecurrenceRule,
    range_start: D,
    range_end: D,
    max_occurrences: int = 100,
) -> list[D]:
    """
    Occurrence dates of `rule` anchored at `start` that fall in [range_start, range_end].

    Occurrences before range_start still count toward rule.count but are not returned.
    Generation stops at range_end, rule.end_date, rule.count or max_occurrences,
    whichever comes first. Returns [] for a malformed rule.
    """
    problem = _rule_problem(rule, max_occurrences)
    if problem:
        log.warning("recurrence_rule_rejected", extra={"reason": problem})
        return []

    try:
        range_start = _coerce(range_start, start)
        range_end = _coerce(range_end, start, end=True)
        if rule.end_date is not None:
            rule = replace(rule, end_date=_coerce(rule.end_date, start, end=True))
        return _collect(start, rule, range_start, range_end, max_occurrences)
    except (TypeError, ValueError, OverflowError) as exc:
        # e.g. naive vs aware datetimes, or date vs datetime bounds
        log.warning("recurrence_expansion_failed", extra={"error": str(exc)})
        return []


def _collect(start, rule: RecurrenceRule, range_start, range_end, limit: int) -> list:
    out = []
    counted = 0
    # a count limit needs every occurrence from the start tallied, so no skipping then
    skip_to = range_start if rule.count is None else None

    for candidate in _candidates(start, rule, skip_to):
        if candidate > range_end:
            break
        if rule.count is not None and counted >= rule.count:
            break
        if rule.end_date is not None and candidate > rule.end_date:
            break
        counted += 1
        if candidate >= range_start:
            out.append(candidate)
            if len(out) >= limit:
                break
    return out


def _candidates(start, rule: RecurrenceRule, skip_to) -> Iterator:
    freq = Frequency(rule.frequency)
    steppers = {
        Frequency.DAILY: _daily,
        Frequency.WEEKLY: _weekly,
        Frequency.BIWEEKLY: _weekly,
        Frequency.MONTHLY: _monthly,
        Frequency.YEARLY: _yearly,
    }
    try:
        yield from steppers[freq](start, rule, skip_to)
    except OverflowError:
        # ran off the end of the calendar (year 9999)
        return


def _first_period(periods_until_skip: int, interval: int) -> int:
    # land one interval short of the target so a valid occurrence is never jumped over
    return max(0, periods_until_skip // interval - 1)


def _daily(start, rule: RecurrenceRule, skip_to) -> Iterator:
    step = timedelta(days=rule.interval)
    k = _first_period((skip_to - start).days, rule.interval) if skip_to is not None else 0
    cursor = start + k * step
    while True:
        yield cursor
        cursor += step


def _start_of_week(d):
    return d - timedelta(days=Weekday.of(d))


def _weekly(start, rule: RecurrenceRule, skip_to) -> Iterator:
    interval = rule.effective_interval
    days: Sequence[Weekday] = list(rule.days_of_week) if rule.days_of_week else [Weekday.of(start)]
    week0 = _start_of_week(start)
    k = _first_period((skip_to - week0).days // 7, interval) if skip_to is not None else 0
    while True:
        week = week0 + timedelta(weeks=k * interval)
        for day in days:
            candidate = week + timedelta(days=int(day))
            # the anchor week can hold selected days that precede the start date
            if candidate >= start:
                yield candidate
        k += 1


def target_day(rule: RecurrenceRule, start: date, year: int, month: int) -> int:
    last = calendar.monthrange(year, month)[1]
    if rule.day_of_month == LAST_DAY_OF_MONTH:
        return last
    nominal = rule.day_of_month if rule.day_of_month is not None else start.day
    return min(nominal, last)


def _monthly(start, rule: RecurrenceRule, skip_to) -> Iterator:
    k = 0
    if skip_to is not None:
        months = (skip_to.year - start.year) * 12 + (skip_to.month - start.month)
        k = _first_period(months, rule.interval)
    while True:
        years, month0 = divmod(start.month - 1 + k * rule.interval, 12)
        year, month = start.year + years, month0 + 1
        if year > date.max.year:
            return
        candidate = start.replace(year=year, month=month, day=target_day(rule, start, year, month))
        if candidate >= start:
            yield candidate
        k += 1


def _yearly(start, rule: RecurrenceRule, skip_to) -> Iterator:
    k = _first_period(skip_to.year - start.year, rule.interval) if skip_to is not None else 0
    while True:
        year = start.year + k * rule.interval
        if year > date.max.year:
            return
        k += 1
        # Feb 29 anchors only recur in leap years
        if start.month == 2 and start.day == 29 and not calendar.isleap(year):
            continue
        yield start.replace(year=year)


def _same_clock(a: date, b: date) -> bool:
    if isinstance(a, datetime) and isinstance(b, datetime):
        return a.timetz() == b.timetz()
    return True


def matches_pattern(candidate: D, start: D, rule: RecurrenceRule) -> bool:
    """True when `candidate` fits the rule's day pattern (termination limits not applied)."""
    if _rule_problem(rule, 1) or candidate < start or not _same_clock(candidate, start):
        return False
    freq = Frequency(rule.frequency)
    if freq == Frequency.DAILY:
        return (candidate - start).days % rule.interval == 0
    if freq in (Frequency.WEEKLY, Frequency.BIWEEKLY):
        weeks = (_start_of_week(candidate) - _start_of_week(start)).days // 7
        if weeks % rule.effective_interval:
            return False
        if rule.days_of_week:
            return Weekday.of(candidate) in rule.days_of_week
        return Weekday.of(candidate) == Weekday.of(start)
    if freq == Frequency.MONTHLY:
        months = (candidate.year - start.year) * 12 + (candidate.month - start.month)
        if months % rule.interval:
            return False
        return candidate.day == target_day(rule, start, candidate.year, candidate.month)
    years = candidate.year - start.year
    return years % rule.interval == 0 and (candidate.month, candidate.day) == (start.month, start.day)


def is_occurrence(candidate: D, start: D, rule: RecurrenceRule) -> bool:
    """Pattern membership plus the rule's end date / count limits."""
    try:
        if not matches_pattern(candidate, start, rule):
            return False
    except TypeError:
        return False
    return generate_occurrences(start, rule, candidate, candidate, 1) == [candidate]


def _now_like(start: date) -> date:
    if isinstance(start, datetime):
        return datetime.now(timezone.utc) if start.tzinfo else datetime.now()
    return date.today()


def get_next_occurrence(
    start: D,
    rule: RecurrenceRule,
    after: Optional[D] = None,
    horizon: timedelta = DEFAULT_HORIZON,
) -> Optional[D]:
    """First occurrence on or after `after` (default: now), looking at most `horizon` ahead."""
    after = after if after is not None else _now_like(start)
    found = generate_occurrences(start, rule, after, after + horizon, 1)
    return found[0] if found else None


def _zone(name: Optional[str]) -> ZoneInfo | timezone:
    try:
        return ZoneInfo(name) if name else timezone.utc
    except (ZoneInfoNotFoundError, ValueError):
        log.warning("unknown_event_timezone", extra={"timezone": name})
        return timezone.utc


def expand_event_occurrences(
    event,
    range_start: datetime,
    range_end: datetime,
    max_occurrences: int = 100,
) -> list[datetime]:
    """
    Occurrences of an Event row as UTC datetimes.

    The pattern is walked in the event's local wall-clock time so a 10:00 service
    stays at 10:00 across DST changes. A non-recurring event yields its own start.
    """
    start_utc = as_utc(event.start_date)
    range_start, range_end = as_utc(range_start), as_utc(range_end)
    rule = parse_recurrence_rule(event)
    if rule is None:
        if event.is_recurring:
            return []
        return [start_utc] if range_start <= start_utc <= range_end else []

    tz = _zone(event.timezone)

    def to_local(dt: datetime) -> datetime:
        return as_utc(dt).astimezone(tz).replace(tzinfo=None)

    if rule.end_date is not None:
        end = rule.end_date
        rule = replace(rule, end_date=to_local(end) if isinstance(end, datetime) else end)

    local = generate_occurrences(
        to_local(start_utc), rule, to_local(range_start), to_local(range_end), max_occurrences
    )
    return [d.replace(tzinfo=tz).astimezone(timezone.utc) for d in local]


def local_start(event) -> datetime:
    """The event start as wall-clock time in its own timezone."""
    return as_utc(event.start_date).astimezone(_zone(event.timezone))


def is_event_occurrence(event, when: datetime) -> bool:
    """True when `when` is exactly one of the event's (UTC) occurrence start times."""
    when = as_utc(when)
    return expand_event_occurrences(event, when, when, 1) == [when]


def _ordinal(n: int) -> str:
    if 10 <= n % 100 <= 20:
        suffix = "th"
    else:
        suffix = {1: "st", 2: "nd", 3: "rd"}.get(n % 10, "th")
    return f"{n}{suffix}"


def format_recurrence_pattern(rule: Optional[RecurrenceRule], start: Optional[date] = None) -> str:
    """Human readable rule, e.g. 'Every 2 weeks on Mon, Wed until Mar 01, 2024'."""
    if rule is None:
        return ""

    freq = Frequency(rule.frequency)
    n = rule.interval

    if freq == Frequency.DAILY:
        text = "Every day" if n == 1 else f"Every {n} days"
    elif freq in (Frequency.WEEKLY, Frequency.BIWEEKLY):
        weeks = rule.effective_interval
        text = "Weekly" if weeks == 1 else f"Every {weeks} weeks"
        if rule.days_of_week:
            text += " on " + ", ".join(day.short_name for day in rule.days_of_week)
        elif start is not None:
            text += f" on {Weekday.of(start).short_name}"
    elif freq == Frequency.MONTHLY:
        text = "Monthly" if n == 1 else f"Every {n} months"
        if rule.day_of_month == LAST_DAY_OF_MONTH:
            text += " on the last day"
        elif rule.day_of_month is not None:
            text += f" on the {_ordinal(rule.day_of_month)}"
        elif start is not None:
            text += f" on the {_ordinal(start.day)}"
    else:
        text = "Yearly" if n == 1 else f"Every {n} years"
        if start is not None:
            text += f" on {start.strftime('%B')} {start.day}"

    if rule.end_date is not None:
        text += f" until {rule.end_date.strftime('%b %d, %Y')}"
    elif rule.count:
        text += f" for {rule.count} occurrence{'s' if rule.count > 1 else ''}"
    return text
