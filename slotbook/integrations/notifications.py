"""
Booking emails sent through Resend.

Guest input is escaped before it is placed in HTML bodies. Times are shown
in the operator's timezone.
"""

import logging
from datetime import datetime
from html import escape

import resend

from slotbook.core import config
from slotbook.models.booking import Booking
from slotbook.models.user import User
from slotbook.scheduling.intervals import get_timezone, to_utc

logger = logging.getLogger(__name__)


class EmailNotConfiguredError(RuntimeError):
    pass


def _ics_timestamp(value: datetime) -> str:
    return to_utc(value).strftime("%Y%m%dT%H%M%SZ")


def _ics_text(value: str) -> str:
    return value.replace("\\", "\\\\").replace(";", "\\;").replace(",", "\\,").replace("\n", "\\n")


def build_ics(booking: Booking, operator: User, now: datetime | None = None) -> str:
    organizer = operator.name or "Admin"
    lines = [
        "BEGIN:VCALENDAR",
        "VERSION:2.0",
        "PRODID:-//Scheduler//EN",
        "METHOD:REQUEST",
        "BEGIN:VEVENT",
        f"UID:booking-{booking.id}@slotbook",
        f"DTSTAMP:{_ics_timestamp(now or datetime.utcnow())}",
        f"DTSTART:{_ics_timestamp(booking.start_time)}",
        f"DTEND:{_ics_timestamp(booking.end_time)}",
        f"SUMMARY:{_ics_text(f'Appointment with {organizer}')}",
        f"DESCRIPTION:{_ics_text(booking.guest_notes or '')}",
        f"ATTENDEE;CN={_ics_text(booking.guest_name)};RSVP=TRUE:mailto:{booking.guest_email}",
        f"ORGANIZER;CN={_ics_text(organizer)}:mailto:{operator.email}",
        "STATUS:CONFIRMED",
        "END:VEVENT",
        "END:VCALENDAR",
    ]
    return "\r\n".join(lines) + "\r\n"


def format_booking_time(booking: Booking, timezone_label: str | None) -> str:
    local_start = to_utc(booking.start_time).astimezone(get_timezone(timezone_label))
    return f"{local_start.strftime('%A, %B %d, %Y')} at {local_start.strftime('%I:%M %p').lstrip('0')}"


def send_email(to: str, subject: str, html: str, attachments: list[dict] | None = None) -> dict:
    if not config.RESEND_API_KEY:
        raise EmailNotConfiguredError("Email service not configured: RESEND_API_KEY is missing")

    resend.api_key = config.RESEND_API_KEY
    email_data = {
        "from": config.EMAIL_FROM_ADDRESS,
        "to": [to],
        "subject": subject,
        "html": html,
    }
    if attachments:
        email_data["attachments"] = attachments

    response = resend.Emails.send(email_data)
    logger.info("Email '%s' sent to %s", subject, to)
    return response


def send_booking_confirmation(booking: Booking, operator: User) -> dict:
    when = format_booking_time(booking, booking.timezone or operator.timezone)
    notes = f"<p><strong>Notes:</strong> {escape(booking.guest_notes)}</p>" if booking.guest_notes else ""
    html = (
        "<h2>Your appointment is confirmed!</h2>"
        f"<p>Hello {escape(booking.guest_name)},</p>"
        f"<p>Your appointment has been scheduled with {escape(operator.name or 'us')}.</p>"
        f"<p><strong>Date &amp; Time:</strong> {when}</p>"
        f"{notes}"
        "<p>A calendar invite is attached to this email.</p>"
    )
    attachment = {
        "filename": "appointment.ics",
        "content": list(build_ics(booking, operator).encode("utf-8")),
    }
    return send_email(booking.guest_email, "Appointment Confirmed", html, [attachment])


def send_operator_notification(booking: Booking, operator: User) -> dict:
    when = format_booking_time(booking, operator.timezone)
    notes = f"<p><strong>Notes:</strong> {escape(booking.guest_notes)}</p>" if booking.guest_notes else ""
    html = (
        "<h2>New Appointment Booked</h2>"
        "<p>You have a new appointment scheduled.</p>"
        f"<p><strong>Guest:</strong> {escape(booking.guest_name)} ({escape(booking.guest_email)})</p>"
        f"<p><strong>Date &amp; Time:</strong> {when}</p>"
        f"{notes}"
    )
    return send_email(operator.email, "New Appointment Booked", html)
