"""Tests for calendar helpers."""

from datetime import date, datetime, timezone

import pytest

from classquest.core.weeks import (
    day_position,
    from_day_index,
    next_week_boundary,
    school_period,
    to_day_index,
    week_start,
    weeks_between,
)

MONDAY = to_day_index(date(2025, 3, 3))


class TestDayIndex:
    """Tests for day index conversion."""

    def test_epoch_is_day_zero(self):
        """1970-01-01 is day 0."""
        assert to_day_index(date(1970, 1, 1)) == 0

    def test_datetime_uses_utc_date(self):
        """Aware datetimes are converted to their UTC date."""
        moment = datetime(2025, 3, 3, 23, 30, tzinfo=timezone.utc)
        assert to_day_index(moment) == MONDAY

    def test_roundtrip(self):
        """from_day_index inverts to_day_index."""
        assert from_day_index(MONDAY) == date(2025, 3, 3)


class TestDayPosition:
    """Tests for position of a day inside its week."""

    def test_monday_start(self):
        """With Monday start, Monday is 1 and Sunday is 7."""
        assert day_position(MONDAY) == 1
        assert day_position(MONDAY + 6) == 7

    def test_sunday_start(self):
        """With Sunday start, Sunday is 1 and Monday is 2."""
        assert day_position(MONDAY - 1, week_starts_on=7) == 1
        assert day_position(MONDAY, week_starts_on=7) == 2

    def test_week_start(self):
        """week_start returns the first day of the week."""
        assert week_start(MONDAY + 4) == MONDAY


class TestWeeksBetween:
    """Tests for week boundary counting."""

    def test_same_week(self):
        """Days in the same week cross no boundary."""
        assert weeks_between(MONDAY, MONDAY + 6) == 0

    def test_adjacent_days_across_boundary(self):
        """Sunday to Monday crosses one boundary."""
        assert weeks_between(MONDAY + 6, MONDAY + 7) == 1

    def test_configurable_week_start(self):
        """Saturday to Sunday crosses a boundary only for Sunday-start weeks."""
        saturday = MONDAY + 5
        assert weeks_between(saturday, saturday + 1) == 0
        assert weeks_between(saturday, saturday + 1, week_starts_on=7) == 1


class TestNextWeekBoundary:
    """Tests for challenge expiry boundary."""

    def test_midweek_assignment(self):
        """A Wednesday assignment expires the following Monday at midnight."""
        moment = datetime(2025, 3, 5, 10, 0, tzinfo=timezone.utc)
        assert next_week_boundary(moment) == datetime(2025, 3, 10, tzinfo=timezone.utc)

    def test_assignment_on_boundary(self):
        """An assignment exactly at Monday midnight lasts a full week."""
        moment = datetime(2025, 3, 10, tzinfo=timezone.utc)
        assert next_week_boundary(moment) == datetime(2025, 3, 17, tzinfo=timezone.utc)


class TestSchoolPeriod:
    """Tests for period buckets."""

    @pytest.mark.parametrize(
        "month,expected",
        [(9, "9-10"), (10, "9-10"), (11, "11-12"), (12, "11-12"), (1, "1-2"), (2, "1-2"), (3, "3-8"), (8, "3-8")],
    )
    def test_month_buckets(self, month, expected):
        """Each month maps to its bucket."""
        assert school_period(datetime(2025, month, 15, tzinfo=timezone.utc)) == expected
