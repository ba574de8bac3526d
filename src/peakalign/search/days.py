"""Local mean solar day windows.

A location's calendar date is taken in local mean time, i.e. UTC shifted by
longitude / 15 hours, rounded to whole seconds so sample instants stay on
whole seconds.
"""

from datetime import date, datetime, time, timedelta, timezone
from typing import Iterator

SECONDS_PER_DEGREE = 240


def local_offset(longitude: float) -> timedelta:
    return timedelta(seconds=round(longitude * SECONDS_PER_DEGREE))


def local_day_window(day: date, longitude: float) -> tuple[datetime, datetime]:
    """Return the UTC [start, end) instants of ``day`` in local mean time."""
    midnight = datetime.combine(day, time(0), tzinfo=timezone.utc)
    start = midnight - local_offset(longitude)
    return start, start + timedelta(days=1)


def local_date(instant: datetime, longitude: float) -> date:
    return (instant.astimezone(timezone.utc) + local_offset(longitude)).date()


def iter_days(year_start: int, year_end: int) -> Iterator[date]:
    day = date(year_start, 1, 1)
    last = date(year_end, 12, 31)
    while day <= last:
        yield day
        day += timedelta(days=1)


def count_days(year_start: int, year_end: int) -> int:
    return (date(year_end, 12, 31) - date(year_start, 1, 1)).days + 1


def sample_times(start: datetime, end: datetime, step_seconds: int) -> list[datetime]:
    """Instants from ``start`` (inclusive) to ``end`` (exclusive)."""
    step = timedelta(seconds=step_seconds)
    count = int((end - start).total_seconds() // step_seconds)
    if start + count * step < end:
        count += 1
    return [start + i * step for i in range(count)]
