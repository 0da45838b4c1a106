"""
Interval arithmetic shared by slot generation and validation.

Intervals are half-open ``[start, end)`` ranges of timezone-aware instants.
Availability windows are wall-clock times in the operator's timezone and are
only turned into instants once a calendar date is known.
"""

from datetime import date, datetime, time, timedelta, timezone
from typing import Iterator, NamedTuple

import pytz


class Interval(NamedTuple):
    start: datetime
    end: datetime


class TimeWindow(NamedTuple):
    start: time
    end: time


def overlaps(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    """Return True if ``[a_start, a_end)`` and ``[b_start, b_end)`` overlap.

    Touching endpoints are not an overlap, so back-to-back bookings are allowed.
    """
    return a_start < b_end and b_start < a_end


def overlaps_any(start: datetime, end: datetime, intervals) -> bool:
    return any(overlaps(start, end, interval.start, interval.end) for interval in intervals)


def day_of_week(value: date) -> int:
    """Day index with Sunday as 0 and Saturday as 6."""
    return (value.weekday() + 1) % 7


def get_timezone(label: str | None):
    try:
        return pytz.timezone(label or "UTC")
    except pytz.UnknownTimeZoneError as exc:
        raise ValueError(f"Unknown timezone '{label}'") from exc


def to_utc(value: datetime) -> datetime:
    """Normalize an instant to aware UTC. Naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_naive_utc(value: datetime) -> datetime:
    return to_utc(value).replace(tzinfo=None)


def localize(value: date, wall_clock: time, tz) -> datetime:
    """Attach ``tz`` to the wall-clock time on ``value`` and return it in UTC."""
    return tz.localize(datetime.combine(value, wall_clock)).astimezone(timezone.utc)


def local_day_bounds(value: date, tz) -> Interval:
    """UTC instants bounding the local calendar day ``value`` in ``tz``."""
    return Interval(
        localize(value, time.min, tz),
        localize(value + timedelta(days=1), time.min, tz),
    )


def window_interval(value: date, window: TimeWindow, tz) -> Interval:
    return Interval(localize(value, window.start, tz), localize(value, window.end, tz))


def iterate_slot_starts(window: Interval, duration: timedelta) -> Iterator[datetime]:
    """Yield fixed-duration starts from the window start; no partial trailing slot."""
    current = window.start
    while current + duration <= window.end:
        yield current
        current += duration


def format_time_of_day(value: datetime, tz) -> str:
    return value.astimezone(tz).strftime("%H:%M")


def parse_time_of_day(value: str) -> time:
    """Parse a ``HH:MM`` wall-clock string."""
    try:
        parsed = datetime.strptime(value, "%H:%M")
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Invalid time '{value}', expected HH:MM") from exc
    return parsed.time()
