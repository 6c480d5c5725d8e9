"""Calendar-day helpers. All streak math happens on local calendar days."""
from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Callable, Optional, Union

Clock = Callable[[], datetime]


def local_now() -> datetime:
    return datetime.now()


def normalize_day(value: Union[date, datetime, str]) -> date:
    """Collapse a datetime / ISO string / date to its calendar day.

    Aware datetimes are converted to local time first. Strings must be a
    complete ISO date or timestamp.
    """
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone()
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        if len(value) > 10:
            return normalize_day(datetime.fromisoformat(value))
        return date.fromisoformat(value)
    raise TypeError(f"cannot interpret {value!r} as a calendar day")


def day_key(day: date) -> str:
    return day.isoformat()


def parse_day_key(key: str) -> date:
    return date.fromisoformat(key)


def optional_day(value: Optional[str]) -> Optional[date]:
    return date.fromisoformat(value) if value else None


def day_range(start: date, end: date):
    """Yield each day from start to end, both inclusive."""
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def first_of_next_month(day: date) -> date:
    if day.month == 12:
        return date(day.year + 1, 1, 1)
    return date(day.year, day.month + 1, 1)
