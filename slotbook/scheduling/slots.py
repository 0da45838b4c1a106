"""
Slot generation

Produces the bookable start times of one day for an operator:
availability windows for the weekday, minus confirmed bookings, minus
remote calendar busy intervals, walked in fixed-duration increments.
"""

import logging
from datetime import date, timedelta

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from slotbook.core import config
from slotbook.models.user import User
from slotbook.scheduling.errors import SlotResolutionError, UpstreamUnavailableError
from slotbook.scheduling.intervals import (
    Interval,
    day_of_week,
    format_time_of_day,
    get_timezone,
    iterate_slot_starts,
    local_day_bounds,
    overlaps_any,
    window_interval,
)
from slotbook.scheduling.queries import list_availability_rules, list_busy_intervals, list_confirmed_bookings

logger = logging.getLogger(__name__)


def get_slot_duration() -> timedelta:
    return timedelta(minutes=config.SLOT_DURATION_MINUTES)


def fetch_busy_intervals(db: Session, user: User, calendar_factory, range_start, range_end) -> list[Interval]:
    """Build a calendar client for this call only and query it."""
    if calendar_factory is None:
        return []
    calendar = calendar_factory.for_user(db, user)
    return list_busy_intervals(calendar, range_start, range_end)


def generate_slots(
    db: Session,
    user: User,
    target_date: date,
    calendar_factory=None,
    duration: timedelta | None = None,
) -> list[str]:
    """Return the day's bookable start times as sorted ``HH:MM`` strings.

    An empty list means either no availability on that weekday or every
    slot is taken. Remote calendar failures fail open: the day is resolved
    against internal bookings only.
    """
    duration = duration or get_slot_duration()
    resolution_error = f'Could not resolve slots for user {user.id} on {target_date}'

    try:
        tz = get_timezone(user.timezone)
        windows = list_availability_rules(db, user.id, day_of_week(target_date))
        if not windows:
            return []

        day = local_day_bounds(target_date, tz)
        bookings = list_confirmed_bookings(db, user.id, day.start, day.end)
    except (OverflowError, SQLAlchemyError, ValueError) as exc:
        raise SlotResolutionError(resolution_error) from exc

    try:
        busy_intervals = fetch_busy_intervals(db, user, calendar_factory, day.start, day.end)
    except UpstreamUnavailableError:
        logger.warning(
            'Calendar busy times unavailable for user %s on %s, using bookings only',
            user.id,
            target_date,
            exc_info=True,
        )
        busy_intervals = []
    except SQLAlchemyError as exc:
        # Reading or refreshing stored calendar credentials is a store failure.
        raise SlotResolutionError(resolution_error) from exc

    slot_starts = set()
    for window in windows:
        for slot_start in iterate_slot_starts(window_interval(target_date, window, tz), duration):
            slot_end = slot_start + duration
            if overlaps_any(slot_start, slot_end, bookings):
                continue
            if overlaps_any(slot_start, slot_end, busy_intervals):
                continue
            slot_starts.add(slot_start)

    return [format_time_of_day(slot_start, tz) for slot_start in sorted(slot_starts)]
