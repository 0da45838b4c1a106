"""
Booking-time slot validation

Re-checks a single proposed slot against availability rules, confirmed
bookings and remote calendar busy times. The slot may have gone stale
since it was generated, so nothing from generation is reused. Validation
never writes bookings or outbox rows and can be retried freely. The one
write it can trigger belongs to the calendar collaborator: building a
client may refresh and commit the operator's OAuth credentials.
"""

import logging
from datetime import datetime, timedelta
from typing import NamedTuple

from sqlalchemy.orm import Session

from slotbook.core import config
from slotbook.models.user import User
from slotbook.scheduling.errors import (
    REASON_BOOKING_CONFLICT,
    REASON_CALENDAR_CONFLICT,
    REASON_CALENDAR_UNAVAILABLE,
    REASON_NOT_AVAILABLE,
    REASON_OUTSIDE_HOURS,
    SlotValidationError,
    UpstreamUnavailableError,
)
from slotbook.scheduling.intervals import day_of_week, get_timezone, overlaps_any, to_utc, window_interval
from slotbook.scheduling.queries import list_availability_rules, list_confirmed_bookings
from slotbook.scheduling.slots import fetch_busy_intervals, get_slot_duration

logger = logging.getLogger(__name__)


class SlotCheck(NamedTuple):
    accepted: bool
    reason: str | None = None


def validate_slot(
    db: Session,
    user: User,
    start: datetime,
    calendar_factory=None,
    duration: timedelta | None = None,
    calendar_fail_open: bool | None = None,
) -> SlotCheck:
    """Check that ``[start, start + duration)`` can be booked right now.

    Checks run in order and stop at the first failure: weekday
    availability, containment in a window, booking conflicts, calendar
    conflicts. When the calendar cannot be queried the slot is rejected
    with ``calendar_unavailable`` unless ``calendar_fail_open`` (default
    ``CALENDAR_VALIDATION_FAIL_OPEN``) is set.
    """
    duration = duration or get_slot_duration()
    if calendar_fail_open is None:
        calendar_fail_open = config.CALENDAR_VALIDATION_FAIL_OPEN

    tz = get_timezone(user.timezone)
    start = to_utc(start)
    try:
        end = start + duration
        local_date = start.astimezone(tz).date()
    except OverflowError as exc:
        raise SlotValidationError('Requested time is outside the supported date range.') from exc

    windows = list_availability_rules(db, user.id, day_of_week(local_date))
    if not windows:
        return SlotCheck(False, REASON_NOT_AVAILABLE)

    # Windows are compared as instants on the start's local date, so a slot
    # running past midnight is never contained.
    contained = False
    for window in windows:
        try:
            bounds = window_interval(local_date, window, tz)
        except OverflowError:
            continue
        if bounds.start <= start and end <= bounds.end:
            contained = True
            break
    if not contained:
        return SlotCheck(False, REASON_OUTSIDE_HOURS)

    if list_confirmed_bookings(db, user.id, start, end):
        return SlotCheck(False, REASON_BOOKING_CONFLICT)

    try:
        busy_intervals = fetch_busy_intervals(db, user, calendar_factory, start, end)
    except UpstreamUnavailableError:
        if not calendar_fail_open:
            logger.warning('Calendar busy times unavailable for user %s, rejecting slot %s', user.id, start)
            return SlotCheck(False, REASON_CALENDAR_UNAVAILABLE)
        logger.warning('Calendar busy times unavailable for user %s, accepting slot %s', user.id, start)
        busy_intervals = []

    if overlaps_any(start, end, busy_intervals):
        return SlotCheck(False, REASON_CALENDAR_CONFLICT)

    return SlotCheck(True)
