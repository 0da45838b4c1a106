"""Outbox task handlers for post-booking side effects."""

import logging

from sqlalchemy.orm import Session

from slotbook.integrations import notifications
from slotbook.integrations.google_calendar import CalendarClientFactory
from slotbook.models.booking import Booking
from slotbook.models.outbox import TASK_CALENDAR_EVENT, TASK_GUEST_CONFIRMATION, TASK_OPERATOR_NOTIFICATION
from slotbook.models.user import User

logger = logging.getLogger(__name__)


def make_calendar_event_handler(calendar_factory: CalendarClientFactory):
    def handle_calendar_event(db: Session, booking: Booking, operator: User) -> None:
        if booking.external_event_id:
            return

        calendar = calendar_factory.for_user(db, operator)
        if calendar is None:
            logger.info('User %s has no connected calendar, skipping event for booking %s', operator.id, booking.id)
            return

        booking.external_event_id = calendar.create_event(booking)

    return handle_calendar_event


def handle_guest_confirmation(db: Session, booking: Booking, operator: User) -> None:
    notifications.send_booking_confirmation(booking, operator)


def handle_operator_notification(db: Session, booking: Booking, operator: User) -> None:
    notifications.send_operator_notification(booking, operator)


def get_default_handlers(calendar_factory: CalendarClientFactory | None = None) -> dict:
    return {
        TASK_CALENDAR_EVENT: make_calendar_event_handler(calendar_factory or CalendarClientFactory()),
        TASK_GUEST_CONFIRMATION: handle_guest_confirmation,
        TASK_OPERATOR_NOTIFICATION: handle_operator_notification,
    }
