"""
Read queries behind slot generation and validation, plus the guarded
booking insert.

Validation is optimistic: ``validate_slot`` is a pre-check and the
persistence layer enforces exclusivity. ``create_booking`` locks the
operator row, re-checks for overlaps inside its transaction and relies on
the partial unique index on ``(user_id, start_time)`` for confirmed
bookings, so two racing requests for the same slot cannot both commit.
"""

from datetime import datetime, timedelta

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from slotbook.models.availability import AvailabilityRule
from slotbook.models.booking import BOOKING_STATUS_CONFIRMED, Booking
from slotbook.models.user import User
from slotbook.scheduling.errors import NotFoundError, PersistenceConflictError
from slotbook.scheduling.intervals import Interval, TimeWindow, to_naive_utc, to_utc
from slotbook.tasks.outbox import enqueue_booking_tasks


def get_user_by_widget_token(db: Session, widget_token: str) -> User:
    normalized_token = widget_token.strip()
    user = None
    if normalized_token:
        user = db.query(User).filter(User.widget_token == normalized_token).first()
    if user is None:
        raise NotFoundError('Widget not found.')
    return user


def list_availability_rules(db: Session, user_id: int, day_of_week: int) -> list[TimeWindow]:
    rules = db.query(AvailabilityRule.start_time, AvailabilityRule.end_time).filter(
        AvailabilityRule.user_id == user_id,
        AvailabilityRule.day_of_week == day_of_week,
    ).all()
    return [TimeWindow(start_time, end_time) for start_time, end_time in rules]


def list_confirmed_bookings(db: Session, user_id: int, range_start: datetime, range_end: datetime) -> list[Interval]:
    """Confirmed bookings overlapping ``[range_start, range_end)``."""
    bookings = db.query(Booking.start_time, Booking.end_time).filter(
        Booking.user_id == user_id,
        Booking.status == BOOKING_STATUS_CONFIRMED,
        Booking.start_time < to_naive_utc(range_end),
        Booking.end_time > to_naive_utc(range_start),
    ).all()
    return [Interval(to_utc(start_time), to_utc(end_time)) for start_time, end_time in bookings]


def list_busy_intervals(calendar, range_start: datetime, range_end: datetime) -> list[Interval]:
    """Busy intervals from the remote calendar.

    ``calendar`` is a per-call client or None when the operator has no
    connected calendar. Raises ``UpstreamUnavailableError`` on failure;
    whether to fail open is left to the caller.
    """
    if calendar is None:
        return []
    return [
        Interval(to_utc(busy.start), to_utc(busy.end))
        for busy in calendar.get_busy_intervals(range_start, range_end)
    ]


def create_booking(
    db: Session,
    user: User,
    guest_name: str,
    guest_email: str,
    guest_notes: str | None,
    start: datetime,
    duration: timedelta,
) -> Booking:
    start_time = to_naive_utc(start)
    end_time = start_time + duration

    try:
        db.query(User.id).filter(User.id == user.id).with_for_update().one()

        conflicting = db.query(Booking.id).filter(
            Booking.user_id == user.id,
            Booking.status == BOOKING_STATUS_CONFIRMED,
            Booking.start_time < end_time,
            Booking.end_time > start_time,
        ).first()
        if conflicting:
            db.rollback()
            raise PersistenceConflictError()

        booking = Booking(
            user_id=user.id,
            guest_name=guest_name,
            guest_email=guest_email,
            guest_notes=guest_notes,
            start_time=start_time,
            end_time=end_time,
            timezone=user.timezone,
            status=BOOKING_STATUS_CONFIRMED,
        )
        db.add(booking)
        db.flush()
        enqueue_booking_tasks(db, booking)
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise PersistenceConflictError() from exc

    db.refresh(booking)
    return booking
