"""
Offset and duration grammar used by rule conditions and due-date configs.

Two textual forms are accepted:

- date offsets: ``[+-]?<int><unit>`` with unit day(s), week(s), month(s), year(s),
  e.g. ``+90days`` or ``-6months``
- durations: ``<int><unit>`` with unit minute(s), hour(s), day(s), week(s),
  month(s), year(s), e.g. ``30days``

Both parse into an ``Offset`` (unit enum plus signed integer amount).
"""

import calendar
import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from enum import Enum
from typing import TypeVar, Union

DateLike = TypeVar("DateLike", date, datetime)

_OFFSET_PATTERN = re.compile(r"^([+-]?)(\d+)(days?|weeks?|months?|years?)$", re.IGNORECASE)
_DURATION_PATTERN = re.compile(r"^(\d+)(minutes?|hours?|days?|weeks?|months?|years?)$", re.IGNORECASE)


class OffsetUnit(str, Enum):
    """Calendar or clock unit of an offset."""
    MINUTE = "minute"
    HOUR = "hour"
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"

    @classmethod
    def from_token(cls, token: str) -> "OffsetUnit":
        return cls(token.lower().rstrip("s"))


@dataclass(frozen=True)
class Offset:
    """A signed amount of one unit."""

    amount: int
    unit: OffsetUnit

    def apply(self, value: DateLike) -> DateLike:
        """Shift a date or datetime by this offset using calendar arithmetic.

        Month and year steps keep the day of month, clamped to the last day of
        the target month.
        """
        if self.unit is OffsetUnit.MONTH:
            return add_months(value, self.amount)
        if self.unit is OffsetUnit.YEAR:
            return add_months(value, self.amount * 12)
        return value + self.to_timedelta()

    def to_timedelta(self) -> timedelta:
        """Fixed-length approximation (month = 30 days, year = 365 days)."""
        if self.unit is OffsetUnit.MINUTE:
            return timedelta(minutes=self.amount)
        if self.unit is OffsetUnit.HOUR:
            return timedelta(hours=self.amount)
        if self.unit is OffsetUnit.DAY:
            return timedelta(days=self.amount)
        if self.unit is OffsetUnit.WEEK:
            return timedelta(weeks=self.amount)
        if self.unit is OffsetUnit.MONTH:
            return timedelta(days=30 * self.amount)
        return timedelta(days=365 * self.amount)

    def __str__(self) -> str:
        plural = "s" if abs(self.amount) != 1 else ""
        return f"{self.amount}{self.unit.value}{plural}"


def parse_offset(text: str) -> Offset:
    """Parse a signed calendar offset such as ``+90days``.

    Raises:
        ValueError: If the text does not match the offset grammar
    """
    match = _OFFSET_PATTERN.match(text.strip()) if isinstance(text, str) else None
    if not match:
        raise ValueError(f"Invalid offset format: {text}")
    sign, amount, unit = match.groups()
    value = int(amount)
    return Offset(amount=-value if sign == "-" else value, unit=OffsetUnit.from_token(unit))


def parse_duration(text: str) -> Offset:
    """Parse an unsigned duration such as ``30days`` or ``2hours``.

    Raises:
        ValueError: If the text does not match the duration grammar
    """
    match = _DURATION_PATTERN.match(text.strip()) if isinstance(text, str) else None
    if not match:
        raise ValueError(f"Invalid time value format: {text}")
    amount, unit = match.groups()
    return Offset(amount=int(amount), unit=OffsetUnit.from_token(unit))


def add_months(value: DateLike, months: int) -> DateLike:
    """Add calendar months, clamping the day to the end of the target month."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def to_date(value: Union[date, datetime]) -> date:
    """Drop the time component of a datetime."""
    return value.date() if isinstance(value, datetime) else value
