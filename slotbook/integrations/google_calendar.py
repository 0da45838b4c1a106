"""
Google Calendar client

A new client is built for every call from the operator's stored
credentials; there is no process-wide client or session. Every request is
bounded by ``CALENDAR_TIMEOUT_SECONDS`` and any transport, timeout or HTTP
failure surfaces as ``UpstreamUnavailableError``.
"""

import logging
from datetime import datetime, timedelta

import httpx
from sqlalchemy.orm import Session

from slotbook.core import config
from slotbook.models.booking import Booking
from slotbook.models.calendar_account import CalendarAccount
from slotbook.models.user import User
from slotbook.scheduling.errors import UpstreamUnavailableError
from slotbook.scheduling.intervals import Interval, to_utc

logger = logging.getLogger(__name__)

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_CALENDAR_API = "https://www.googleapis.com/calendar/v3"
TOKEN_REFRESH_MARGIN = timedelta(minutes=5)


def _format_instant(value: datetime) -> str:
    return to_utc(value).strftime("%Y-%m-%dT%H:%M:%SZ")


def _parse_instant(value: str) -> datetime:
    return to_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))


class GoogleCalendarClient:
    def __init__(
        self,
        access_token: str,
        calendar_id: str = "primary",
        timeout: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        self.access_token = access_token
        self.calendar_id = calendar_id
        self.timeout = timeout if timeout is not None else config.CALENDAR_TIMEOUT_SECONDS
        self.transport = transport

    def _request(self, method: str, path: str, payload: dict) -> dict:
        try:
            with httpx.Client(
                base_url=GOOGLE_CALENDAR_API,
                timeout=self.timeout,
                transport=self.transport,
                headers={"Authorization": f"Bearer {self.access_token}"},
            ) as client:
                response = client.request(method, path, json=payload)
                response.raise_for_status()
                return response.json()
        except httpx.TimeoutException as exc:
            raise UpstreamUnavailableError(f"Calendar request timed out: {method} {path}") from exc
        except httpx.HTTPStatusError as exc:
            raise UpstreamUnavailableError(
                f"Calendar request failed with status {exc.response.status_code}: {method} {path}"
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise UpstreamUnavailableError(f"Calendar request failed: {method} {path}") from exc

    def get_busy_intervals(self, range_start: datetime, range_end: datetime) -> list[Interval]:
        data = self._request(
            "POST",
            "/freeBusy",
            {
                "timeMin": _format_instant(range_start),
                "timeMax": _format_instant(range_end),
                "items": [{"id": self.calendar_id}],
            },
        )

        try:
            calendar = data.get("calendars", {}).get(self.calendar_id, {})
            errors = calendar.get("errors")
            busy_intervals = [
                Interval(_parse_instant(busy["start"]), _parse_instant(busy["end"]))
                for busy in calendar.get("busy", [])
            ]
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            raise UpstreamUnavailableError(f"Calendar {self.calendar_id} returned a malformed free/busy response") from exc

        if errors:
            raise UpstreamUnavailableError(f"Calendar {self.calendar_id} returned errors: {errors}")

        return busy_intervals

    def create_event(self, booking: Booking) -> str | None:
        """Create an event for the booking and return its id."""
        event = self._request(
            "POST",
            f"/calendars/{self.calendar_id}/events",
            {
                "summary": f"Appointment with {booking.guest_name}",
                "description": booking.guest_notes or "",
                "start": {"dateTime": _format_instant(booking.start_time)},
                "end": {"dateTime": _format_instant(booking.end_time)},
                "attendees": [{"email": booking.guest_email}],
            },
        )
        event_id = event.get("id")
        logger.info("Calendar event %s created for booking %s", event_id, booking.id)
        return event_id


class CalendarClientFactory:
    """Builds a ``GoogleCalendarClient`` per call from stored credentials."""

    def __init__(self, timeout: float | None = None, transport: httpx.BaseTransport | None = None):
        self.timeout = timeout
        self.transport = transport

    def for_user(self, db: Session, user: User) -> GoogleCalendarClient | None:
        """Return a client for the user's calendar, or None if none is connected.

        An expiring access token is refreshed and committed on ``db``.
        """
        account = db.query(CalendarAccount).filter(
            CalendarAccount.user_id == user.id,
            CalendarAccount.provider == "google",
        ).first()

        if account is None or not account.access_token:
            return None

        access_token = self.get_valid_access_token(db, account)
        return GoogleCalendarClient(
            access_token,
            calendar_id=account.calendar_id or "primary",
            timeout=self.timeout,
            transport=self.transport,
        )

    def get_valid_access_token(self, db: Session, account: CalendarAccount) -> str:
        expires_at = account.token_expires_at
        if expires_at is None or expires_at > datetime.utcnow() + TOKEN_REFRESH_MARGIN:
            return account.access_token

        if not account.refresh_token:
            raise UpstreamUnavailableError(f"Calendar token for user {account.user_id} expired without refresh token")

        logger.info("Refreshing calendar access token for user %s", account.user_id)
        try:
            with httpx.Client(timeout=self.timeout or config.CALENDAR_TIMEOUT_SECONDS, transport=self.transport) as client:
                response = client.post(
                    GOOGLE_TOKEN_URL,
                    data={
                        "client_id": config.GOOGLE_CLIENT_ID,
                        "client_secret": config.GOOGLE_CLIENT_SECRET,
                        "refresh_token": account.refresh_token,
                        "grant_type": "refresh_token",
                    },
                )
                response.raise_for_status()
                tokens = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise UpstreamUnavailableError(f"Calendar token refresh failed for user {account.user_id}") from exc

        try:
            access_token = tokens.get("access_token")
            expires_in = int(tokens.get("expires_in", 3600))
        except (AttributeError, TypeError, ValueError) as exc:
            raise UpstreamUnavailableError(f"Calendar token refresh for user {account.user_id} returned a malformed response") from exc
        if not access_token:
            raise UpstreamUnavailableError(f"Calendar token refresh for user {account.user_id} returned no access token")

        account.access_token = access_token
        account.token_expires_at = datetime.utcnow() + timedelta(seconds=expires_in)
        db.commit()
        return access_token


def get_calendar_factory() -> CalendarClientFactory:
    return CalendarClientFactory()
