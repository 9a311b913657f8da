"""Five-field cron expressions.

Manifesto:
    Recurring schedules are described with the classic five cron fields
    and nothing more: no seconds, no years, no ``L``/``W``/``#`` and no
    month or weekday names. Every field must match for a minute to fire.

Field grammar (per field, comma-separated terms)::

    *        every value in the field's range
    5        a literal
    1-5      an inclusive range
    */15     every 15th value from the field minimum
    10-50/5  every 5th value of a range
    5/20     every 20th value from 5 to the field maximum

    ┌──────── minute        0-59
    │ ┌────── hour          0-23
    │ │ ┌──── day of month  1-31
    │ │ │ ┌── month         1-12
    │ │ │ │ ┌ day of week   0-6 (Sunday = 0)
    * * * * *

Tags:
    sagaflow, scheduling, cron, parser

Doc-Types:
    api-reference
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from sagaflow.core.errors import CronFormatError

DEFAULT_HORIZON = timedelta(days=1461)

_FIELDS: tuple[tuple[str, int, int], ...] = (
    ("minute", 0, 59),
    ("hour", 0, 23),
    ("day_of_month", 1, 31),
    ("month", 1, 12),
    ("day_of_week", 0, 6),
)


def _parse_int(text: str, expression: str, field_name: str) -> int:
    if not (text.isascii() and text.isdigit()):
        raise CronFormatError(
            f"Invalid {field_name} value '{text}' in cron expression '{expression}'",
            expression=expression,
        )
    return int(text)


def _parse_field(text: str, lo: int, hi: int, field_name: str, expression: str) -> frozenset[int]:
    values: set[int] = set()
    for term in text.split(","):
        if not term:
            raise CronFormatError(f"Empty {field_name} term in cron expression '{expression}'", expression=expression)

        base, _, step_text = term.partition("/")
        step = 1
        if step_text or term.endswith("/"):
            step = _parse_int(step_text, expression, field_name)
            if step <= 0:
                raise CronFormatError(
                    f"Step must be positive in {field_name} term '{term}'", expression=expression
                )

        if base == "*":
            start, stop = lo, hi
        elif "-" in base:
            first, _, last = base.partition("-")
            start = _parse_int(first, expression, field_name)
            stop = _parse_int(last, expression, field_name)
            if start > stop:
                raise CronFormatError(
                    f"Range {start}-{stop} is reversed in {field_name} of '{expression}'",
                    expression=expression,
                )
        else:
            start = _parse_int(base, expression, field_name)
            # "5/20" runs from the literal to the end of the field
            stop = hi if step_text else start

        if start < lo or stop > hi:
            raise CronFormatError(
                f"{field_name} value out of bounds [{lo}-{hi}] in '{expression}'",
                expression=expression,
            )
        values.update(range(start, stop + 1, step))
    return frozenset(values)


def _weekday(dt: datetime) -> int:
    """Day of week with Sunday = 0 (``datetime.weekday`` has Monday = 0)."""
    return (dt.weekday() + 1) % 7


@dataclass(frozen=True)
class CronExpression:
    """A parsed cron expression; build one with :meth:`parse`."""

    expression: str
    minutes: frozenset[int]
    hours: frozenset[int]
    days_of_month: frozenset[int]
    months: frozenset[int]
    days_of_week: frozenset[int]

    @classmethod
    def parse(cls, expression: str) -> CronExpression:
        """Parse ``expression``.

        Raises:
            CronFormatError: wrong field count, non-numeric terms, zero steps,
                reversed ranges, or values outside a field's bounds
        """
        if not isinstance(expression, str):
            raise CronFormatError(f"Cron expression must be a string, got {type(expression).__name__}")
        parts = expression.split()
        if len(parts) != len(_FIELDS):
            raise CronFormatError(
                f"Cron expression must have 5 fields, got {len(parts)}: '{expression}'",
                expression=expression,
            )
        parsed = [
            _parse_field(part, lo, hi, field_name, expression)
            for part, (field_name, lo, hi) in zip(parts, _FIELDS, strict=True)
        ]
        return cls(expression.strip(), *parsed)

    @classmethod
    def try_parse(cls, expression: str) -> CronExpression | None:
        try:
            return cls.parse(expression)
        except CronFormatError:
            return None

    def matches(self, dt: datetime) -> bool:
        """True when every field matches ``dt`` (seconds are ignored)."""
        return (
            dt.minute in self.minutes
            and dt.hour in self.hours
            and self._day_matches(dt)
            and dt.month in self.months
        )

    def _day_matches(self, dt: datetime) -> bool:
        return dt.day in self.days_of_month and _weekday(dt) in self.days_of_week

    def next_occurrence(self, after: datetime, horizon: timedelta | None = None) -> datetime | None:
        """Smallest matching minute strictly after ``after``.

        The search starts at the next whole minute and gives up at
        ``after + horizon`` (four years by default), returning ``None``.
        Whole hours, days and months that cannot match are skipped, which
        gives the same answer as testing every minute. The tzinfo of
        ``after`` is carried over unchanged.
        """
        limit = after + (horizon if horizon is not None else DEFAULT_HORIZON)
        candidate = after.replace(second=0, microsecond=0) + timedelta(minutes=1)

        while candidate < limit:
            if candidate.month not in self.months:
                candidate = _first_of_next_month(candidate)
            elif not self._day_matches(candidate):
                candidate = candidate.replace(hour=0, minute=0) + timedelta(days=1)
            elif candidate.hour not in self.hours:
                candidate = candidate.replace(minute=0) + timedelta(hours=1)
            elif candidate.minute not in self.minutes:
                candidate += timedelta(minutes=1)
            else:
                return candidate
        return None

    def __str__(self) -> str:
        return self.expression


def _first_of_next_month(dt: datetime) -> datetime:
    if dt.month == 12:
        return dt.replace(year=dt.year + 1, month=1, day=1, hour=0, minute=0)
    return dt.replace(month=dt.month + 1, day=1, hour=0, minute=0)


def get_next_occurrence(expression: str | CronExpression, after: datetime) -> datetime | None:
    """Next time ``expression`` fires strictly after ``after``, or ``None``.

    Example:
        >>> get_next_occurrence("30 * * * *", datetime(2024, 1, 1, 10, 15))
        datetime.datetime(2024, 1, 1, 10, 30)
    """
    cron = expression if isinstance(expression, CronExpression) else CronExpression.parse(expression)
    return cron.next_occurrence(after)


__all__ = [
    "CronExpression",
    "DEFAULT_HORIZON",
    "get_next_occurrence",
]
