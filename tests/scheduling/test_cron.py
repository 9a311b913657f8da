"""Tests for cron parsing and next-occurrence search."""

from datetime import UTC, datetime, timedelta, timezone

import pytest

from sagaflow.core.errors import CronFormatError
from sagaflow.core.scheduling import CronExpression, get_next_occurrence

T = datetime(2024, 1, 1, 10, 15, 30)  # a Monday


def _scan(cron: CronExpression, after: datetime, limit: timedelta) -> datetime | None:
    candidate = after.replace(second=0, microsecond=0) + timedelta(minutes=1)
    while candidate < after + limit:
        if cron.matches(candidate):
            return candidate
        candidate += timedelta(minutes=1)
    return None


class TestParse:
    def test_wildcards(self):
        cron = CronExpression.parse("* * * * *")
        assert cron.minutes == frozenset(range(60))
        assert cron.hours == frozenset(range(24))
        assert cron.days_of_month == frozenset(range(1, 32))
        assert cron.months == frozenset(range(1, 13))
        assert cron.days_of_week == frozenset(range(7))

    @pytest.mark.parametrize(
        "field,expected",
        [
            ("5", {5}),
            ("1-4", {1, 2, 3, 4}),
            ("*/15", {0, 15, 30, 45}),
            ("10-50/20", {10, 30, 50}),
            ("5/20", {5, 25, 45}),
            ("1,2,40-42", {1, 2, 40, 41, 42}),
            ("0-59/30,7", {0, 7, 30}),
        ],
    )
    def test_minute_field_grammar(self, field, expected):
        assert CronExpression.parse(f"{field} * * * *").minutes == frozenset(expected)

    def test_extra_whitespace_is_ignored(self):
        cron = CronExpression.parse("  0   12 * *  1-5 ")
        assert str(cron) == "0   12 * *  1-5"
        assert cron.days_of_week == frozenset({1, 2, 3, 4, 5})

    @pytest.mark.parametrize(
        "expression",
        [
            "",
            "* * * *",
            "* * * * * *",
            "60 * * * *",
            "* 24 * * *",
            "* * 0 * *",
            "* * 32 * *",
            "* * * 0 *",
            "* * * 13 *",
            "* * * * 7",
            "*/0 * * * *",
            "*/ * * * *",
            "5-1 * * * *",
            "-5 * * * *",
            "a * * * *",
            "1,,2 * * * *",
            "* * * JAN *",
            "١ * * * *",
        ],
    )
    def test_invalid_expressions(self, expression):
        with pytest.raises(CronFormatError):
            CronExpression.parse(expression)

    def test_error_carries_expression(self):
        with pytest.raises(CronFormatError) as exc_info:
            CronExpression.parse("99 * * * *")
        assert exc_info.value.expression == "99 * * * *"
        assert isinstance(exc_info.value, ValueError)

    def test_non_string_rejected(self):
        with pytest.raises(CronFormatError):
            CronExpression.parse(None)

    def test_try_parse(self):
        assert CronExpression.try_parse("0 * * * *") is not None
        assert CronExpression.try_parse("bogus") is None


class TestMatches:
    def test_seconds_are_ignored(self):
        cron = CronExpression.parse("15 10 * * *")
        assert cron.matches(T)
        assert not cron.matches(T.replace(minute=16))

    def test_sunday_is_zero(self):
        cron = CronExpression.parse("* * * * 0")
        assert cron.matches(datetime(2024, 1, 7, 12, 0))
        assert not cron.matches(datetime(2024, 1, 8, 12, 0))

    def test_day_of_month_and_weekday_must_both_match(self):
        cron = CronExpression.parse("0 0 13 * 5")
        assert cron.matches(datetime(2024, 9, 13))
        assert not cron.matches(datetime(2024, 1, 13))
        assert not cron.matches(datetime(2024, 1, 5))


class TestNextOccurrence:
    def test_every_minute_rounds_up(self):
        assert get_next_occurrence("* * * * *", T) == datetime(2024, 1, 1, 10, 16)

    def test_strictly_after_whole_minute(self):
        assert get_next_occurrence("* * * * *", T.replace(second=0)) == datetime(2024, 1, 1, 10, 16)

    def test_minute_literal(self):
        assert get_next_occurrence("30 * * * *", T) == datetime(2024, 1, 1, 10, 30)
        assert get_next_occurrence("30 * * * *", datetime(2024, 1, 1, 10, 30)) == datetime(2024, 1, 1, 11, 30)

    def test_rolls_over_day(self):
        assert get_next_occurrence("0 9 * * *", T) == datetime(2024, 1, 2, 9, 0)

    def test_weekday(self):
        assert get_next_occurrence("0 9 * * 1", T) == datetime(2024, 1, 8, 9, 0)
        assert get_next_occurrence("0 0 * * 0", T) == datetime(2024, 1, 7, 0, 0)

    def test_rolls_over_year(self):
        assert get_next_occurrence("0 0 1 1 *", datetime(2024, 6, 1)) == datetime(2025, 1, 1)

    def test_friday_the_thirteenth(self):
        assert get_next_occurrence("0 0 13 * 5", T) == datetime(2024, 9, 13)

    def test_leap_day(self):
        cron = CronExpression.parse("0 12 29 2 *")
        assert cron.next_occurrence(datetime(2024, 3, 1)) == datetime(2028, 2, 29, 12, 0)
        assert cron.next_occurrence(datetime(2024, 3, 1), horizon=timedelta(days=365)) is None

    def test_impossible_date_returns_none(self):
        assert get_next_occurrence("0 0 31 2 *", T) is None

    def test_accepts_parsed_expression(self):
        cron = CronExpression.parse("*/10 * * * *")
        assert get_next_occurrence(cron, T) == datetime(2024, 1, 1, 10, 20)

    def test_tzinfo_preserved(self):
        tz = timezone(timedelta(hours=5))
        after = datetime(2024, 1, 1, 23, 59, tzinfo=tz)
        result = get_next_occurrence("0 0 * * *", after)
        assert result == datetime(2024, 1, 2, 0, 0, tzinfo=tz)
        assert result.tzinfo is tz

    def test_aware_utc(self):
        result = get_next_occurrence("45 * * * *", T.replace(tzinfo=UTC))
        assert result == datetime(2024, 1, 1, 10, 45, tzinfo=UTC)

    @pytest.mark.parametrize(
        "expression",
        ["*/7 3-5 * * *", "0 0 * * 6", "59 23 28-31 * *", "5/20 */6 1,15 * 1-5", "0 12 * 2,3 *"],
    )
    def test_agrees_with_minute_scan(self, expression):
        cron = CronExpression.parse(expression)
        window = timedelta(days=40)
        for after in (T, datetime(2024, 2, 27, 23, 59, 59), datetime(2023, 12, 31, 23, 30)):
            assert cron.next_occurrence(after, horizon=window) == _scan(cron, after, window)
