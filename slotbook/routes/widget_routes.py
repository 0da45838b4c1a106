import logging
import re
from datetime import date, datetime

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from slotbook.core import config
from slotbook.database import get_db
from slotbook.integrations.google_calendar import CalendarClientFactory, get_calendar_factory
from slotbook.routes.booking_routes import BookingResponse, booking_to_response
from slotbook.routes.common import database_unavailable, ensure_database_ready, get_widget_user
from slotbook.scheduling.booking import book_slot
from slotbook.scheduling.errors import (
    REASON_CALENDAR_UNAVAILABLE,
    SlotConflictError,
    SlotResolutionError,
    SlotValidationError,
)
from slotbook.scheduling.slots import generate_slots
from slotbook.tasks.outbox import process_booking_tasks

router = APIRouter(tags=['widget'])

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')
MAX_GUEST_NAME_LENGTH = 200
SLOTS_UNAVAILABLE_MESSAGE = 'Available times could not be loaded. Please try again.'


class SlotsResponse(BaseModel):
    date: date
    timezone: str
    slots: list[str]
    message: str | None = None


class CreateBookingRequest(BaseModel):
    guest_name: str
    guest_email: str
    start_time: datetime
    guest_notes: str | None = None

    @field_validator('guest_name')
    @classmethod
    def validate_guest_name(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Guest name is required.')
        if len(normalized) > MAX_GUEST_NAME_LENGTH:
            raise ValueError(f'Guest name must be {MAX_GUEST_NAME_LENGTH} characters or fewer.')
        return normalized

    @field_validator('guest_email')
    @classmethod
    def validate_guest_email(cls, value: str) -> str:
        normalized = value.strip().lower()
        if not EMAIL_PATTERN.match(normalized):
            raise ValueError('A valid guest email is required.')
        return normalized

    @field_validator('guest_notes')
    @classmethod
    def validate_guest_notes(cls, value: str | None) -> str | None:
        if value is None:
            return None

        normalized = value.strip()
        if not normalized:
            return None

        if len(normalized) > config.MAX_GUEST_NOTES_LENGTH:
            raise ValueError(f'Notes must be {config.MAX_GUEST_NOTES_LENGTH} characters or fewer.')

        return normalized


@router.get('/{widget_token}/slots', response_model=SlotsResponse)
def list_widget_slots(
    widget_token: str,
    slot_date: date = Query(..., alias='date'),
    db: Session = Depends(get_db),
    calendar_factory: CalendarClientFactory = Depends(get_calendar_factory),
):
    ensure_database_ready()
    user = get_widget_user(widget_token, db)

    try:
        slots = generate_slots(db, user, slot_date, calendar_factory=calendar_factory)
    except SlotResolutionError:
        logger.exception('Slot resolution failed for widget user %s on %s', user.id, slot_date)
        return SlotsResponse(date=slot_date, timezone=user.timezone, slots=[], message=SLOTS_UNAVAILABLE_MESSAGE)

    return SlotsResponse(date=slot_date, timezone=user.timezone, slots=slots)


@router.post('/{widget_token}/bookings', response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
def create_widget_booking(
    widget_token: str,
    data: CreateBookingRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    calendar_factory: CalendarClientFactory = Depends(get_calendar_factory),
):
    ensure_database_ready()
    user = get_widget_user(widget_token, db)

    try:
        booking = book_slot(
            db,
            user,
            guest_name=data.guest_name,
            guest_email=data.guest_email,
            guest_notes=data.guest_notes,
            start=data.start_time,
            calendar_factory=calendar_factory,
        )
    except SlotValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except SlotConflictError as exc:
        status_code = status.HTTP_409_CONFLICT
        if exc.reason == REASON_CALENDAR_UNAVAILABLE:
            status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        raise HTTPException(
            status_code=status_code,
            detail={'reason': exc.reason, 'message': exc.message},
        ) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Booking failed for widget user %s', user.id)
        raise database_unavailable() from exc

    background_tasks.add_task(process_booking_tasks, booking.id)
    return booking_to_response(booking)
