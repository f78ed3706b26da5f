"""
Date Helpers

The ledger works with naive datetimes in local time. Due-date
comparisons are done per calendar day (local midnight), never per
instant, so everything that compares "is this due yet" goes through
start_of_local_day.
"""

import calendar
from datetime import date, datetime, time, timedelta
from typing import Callable, Optional, Union

Clock = Callable[[], datetime]

DateLike = Union[date, datetime, str]


def local_now() -> datetime:
    """Default clock: current local time, naive."""
    return datetime.now()


def days_in_month(year: int, month: int) -> int:
    if not 1 <= month <= 12:
        raise ValueError(f"Month out of range: {month}")
    return calendar.monthrange(year, month)[1]


def clamp_day_of_month(year: int, month: int, day: int) -> int:
    """
    Clamp a day-of-month to the last valid day of the given month.

    clamp_day_of_month(2025, 2, 31) == 28
    """
    if day < 1:
        raise ValueError(f"Day must be at least 1, got {day}")
    return min(day, days_in_month(year, month))


def as_local_datetime(value: DateLike) -> datetime:
    """
    Normalize a date-ish value to a naive local datetime.

    - date → local midnight of that day
    - aware datetime → converted to local time, tzinfo dropped
    - ISO string → parsed, then normalized as above
    """
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            return value.astimezone().replace(tzinfo=None)
        return value
    if isinstance(value, date):
        return datetime.combine(value, time.min)
    raise TypeError(f"Unsupported date value: {value!r}")


def start_of_local_day(value: DateLike) -> datetime:
    """Truncate to local midnight."""
    dt = as_local_datetime(value)
    return datetime.combine(dt.date(), time.min)


def end_of_local_day(value: DateLike) -> datetime:
    dt = as_local_datetime(value)
    return datetime.combine(dt.date(), time.max)


def start_of_month(value: DateLike) -> datetime:
    dt = as_local_datetime(value)
    return datetime(dt.year, dt.month, 1)


def end_of_month(value: DateLike) -> datetime:
    dt = as_local_datetime(value)
    last = days_in_month(dt.year, dt.month)
    return datetime.combine(date(dt.year, dt.month, last), time.max)


def start_of_year(value: DateLike) -> datetime:
    return datetime(as_local_datetime(value).year, 1, 1)


def end_of_year(value: DateLike) -> datetime:
    return datetime.combine(date(as_local_datetime(value).year, 12, 31), time.max)


def add_months(value: date, months: int, day: Optional[int] = None) -> date:
    """
    Move a date by a number of months, anchoring on day 1 first.

    The result lands on `day` (default: the original day-of-month),
    clamped to the target month, so Jan 31 + 1 month is Feb 28/29
    rather than a date in March.
    """
    month_index = value.year * 12 + (value.month - 1) + months
    year, month = divmod(month_index, 12)
    month += 1
    target_day = value.day if day is None else day
    return date(year, month, clamp_day_of_month(year, month, target_day))


def add_years(value: date, years: int, day: Optional[int] = None) -> date:
    return add_months(value, years * 12, day)


def add_weeks(value: date, weeks: int) -> date:
    return value + timedelta(weeks=weeks)
