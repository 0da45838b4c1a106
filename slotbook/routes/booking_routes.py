from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from slotbook.auth.dependencies import get_current_user
from slotbook.database import get_db
from slotbook.models.booking import BOOKING_STATUS_CANCELLED, BOOKING_STATUS_CONFIRMED, Booking
from slotbook.models.user import User
from slotbook.routes.common import database_unavailable, ensure_database_ready
from slotbook.scheduling.intervals import to_utc

router = APIRouter(tags=['bookings'])


class BookingResponse(BaseModel):
    id: int
    guest_name: str
    guest_email: str
    guest_notes: str | None = None
    start_time: datetime
    end_time: datetime
    status: str


class OperatorBookingResponse(BookingResponse):
    timezone: str | None = None
    external_event_id: str | None = None


class BookingListResponse(BaseModel):
    upcoming: list[OperatorBookingResponse]
    past: list[OperatorBookingResponse]


def booking_to_response(booking: Booking, response_model=BookingResponse):
    fields = {
        'id': booking.id,
        'guest_name': booking.guest_name,
        'guest_email': booking.guest_email,
        'guest_notes': booking.guest_notes,
        'start_time': to_utc(booking.start_time),
        'end_time': to_utc(booking.end_time),
        'status': booking.status or BOOKING_STATUS_CONFIRMED,
    }
    if response_model is OperatorBookingResponse:
        fields['timezone'] = booking.timezone
        fields['external_event_id'] = booking.external_event_id
    return response_model(**fields)


def is_upcoming(booking: Booking, now: datetime) -> bool:
    return booking.status == BOOKING_STATUS_CONFIRMED and to_utc(booking.start_time) > now


def split_bookings(bookings: list[Booking], now: datetime) -> BookingListResponse:
    """Upcoming confirmed bookings first, everything else is past."""
    now = to_utc(now)
    return BookingListResponse(
        upcoming=[booking_to_response(b, OperatorBookingResponse) for b in bookings if is_upcoming(b, now)],
        past=[booking_to_response(b, OperatorBookingResponse) for b in bookings if not is_upcoming(b, now)],
    )


@router.get('', response_model=BookingListResponse)
def list_bookings(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        bookings = db.query(Booking).filter(
            Booking.user_id == current_user.id,
        ).order_by(Booking.start_time.asc()).all()
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc

    return split_bookings(bookings, datetime.now(timezone.utc))


@router.post('/{booking_id}/cancel', response_model=OperatorBookingResponse)
def cancel_booking(
    booking_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        booking = db.query(Booking).filter(Booking.id == booking_id).first()

        if not booking:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail='Booking not found.',
            )

        if booking.user_id != current_user.id:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail='Only the owner of this booking can cancel it.',
            )

        if booking.status != BOOKING_STATUS_CANCELLED:
            booking.status = BOOKING_STATUS_CANCELLED
            db.commit()
            db.refresh(booking)

        return booking_to_response(booking, OperatorBookingResponse)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc
