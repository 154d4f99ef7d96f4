"""Calendar helpers shared by rotation and the consistency ledger.

Days are counted as integer indexes since 1970-01-01 (UTC). Weeks start on
a configurable ISO weekday (1 = Monday ... 7 = Sunday).
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone

EPOCH = date(1970, 1, 1)

# School-year buckets used to narrow catalog search
PERIODS: tuple[tuple[str, tuple[int, ...]], ...] = (
    ("9-10", (9, 10)),
    ("11-12", (11, 12)),
    ("1-2", (1, 2)),
    ("3-8", (3, 4, 5, 6, 7, 8)),
)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def to_day_index(value: date | datetime) -> int:
    """Convert a date or datetime (UTC) into a day index."""
    if isinstance(value, datetime):
        value = _as_utc(value).date()
    return (value - EPOCH).days


def from_day_index(day: int) -> date:
    return EPOCH + timedelta(days=day)


# Day indexes that map to a representable date
MIN_DAY = to_day_index(date.min)
MAX_DAY = to_day_index(date.max)


def is_valid_day(day: int) -> bool:
    return isinstance(day, int) and not isinstance(day, bool) and MIN_DAY <= day <= MAX_DAY


def today_index(now: datetime | None = None) -> int:
    return to_day_index(now or utc_now())


def day_position(day: int, week_starts_on: int = 1) -> int:
    """Position of a day inside its week, 1 (first day) to 7 (last day)."""
    weekday = from_day_index(day).isoweekday()
    return (weekday - week_starts_on) % 7 + 1


def week_start(day: int, week_starts_on: int = 1) -> int:
    """Day index of the first day of the week containing ``day``."""
    return day - (day_position(day, week_starts_on) - 1)


def weeks_between(earlier: int, later: int, week_starts_on: int = 1) -> int:
    """Number of week boundaries crossed going from ``earlier`` to ``later``."""
    return (week_start(later, week_starts_on) - week_start(earlier, week_starts_on)) // 7


def next_week_boundary(moment: datetime, week_starts_on: int = 1) -> datetime:
    """First week start strictly after ``moment`` (midnight UTC).

    A moment lying exactly on a week start rolls over to the following one.
    """
    first_day = week_start(to_day_index(moment), week_starts_on) + 7
    return datetime.combine(from_day_index(first_day), time.min, tzinfo=timezone.utc)


def school_period(moment: datetime) -> str:
    """Map the calendar month of ``moment`` to its period bucket."""
    month = _as_utc(moment).month
    for name, months in PERIODS:
        if month in months:
            return name
    return PERIODS[0][0]
