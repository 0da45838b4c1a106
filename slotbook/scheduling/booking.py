"""
Booking orchestration

Validates a proposed slot, then persists the booking together with its
outbox tasks. Calendar sync and emails are delivered later from the
outbox, so a booking can exist before the calendar or inbox reflects it.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from slotbook.models.booking import Booking
from slotbook.models.user import User
from slotbook.scheduling.errors import SlotConflictError, SlotValidationError
from slotbook.scheduling.intervals import get_timezone, to_utc
from slotbook.scheduling.queries import create_booking
from slotbook.scheduling.slots import get_slot_duration
from slotbook.scheduling.validation import validate_slot

logger = logging.getLogger(__name__)


def resolve_start_instant(start: datetime, timezone_label: str | None) -> datetime:
    """Aware UTC start; naive values are wall-clock times in the operator's zone."""
    start = start.replace(second=0, microsecond=0)
    if start.tzinfo is None:
        start = get_timezone(timezone_label).localize(start)
    return to_utc(start)


def book_slot(
    db: Session,
    user: User,
    guest_name: str,
    guest_email: str,
    guest_notes: str | None,
    start: datetime,
    calendar_factory=None,
    now: datetime | None = None,
    calendar_fail_open: bool | None = None,
) -> Booking:
    try:
        start = resolve_start_instant(start, user.timezone)
    except OverflowError as exc:
        raise SlotValidationError('Requested time is outside the supported date range.') from exc
    except ValueError as exc:
        raise SlotValidationError('Operator timezone is invalid.') from exc

    now = to_utc(now) if now else datetime.now(timezone.utc)
    if start <= now:
        raise SlotValidationError('Bookings must be scheduled in the future.')

    duration = get_slot_duration()
    check = validate_slot(
        db,
        user,
        start,
        calendar_factory=calendar_factory,
        duration=duration,
        calendar_fail_open=calendar_fail_open,
    )
    if not check.accepted:
        logger.info('Rejected booking for user %s at %s: %s', user.id, start, check.reason)
        raise SlotConflictError(check.reason)

    booking = create_booking(db, user, guest_name, guest_email, guest_notes, start, duration)
    logger.info('Booking %s created for user %s at %s', booking.id, user.id, start)
    return booking
