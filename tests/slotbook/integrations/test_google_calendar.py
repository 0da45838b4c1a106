import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from slotbook.integrations.google_calendar import (
    GOOGLE_TOKEN_URL,
    CalendarClientFactory,
    GoogleCalendarClient,
)
from slotbook.models.booking import Booking
from slotbook.models.calendar_account import CalendarAccount
from slotbook.scheduling.errors import UpstreamUnavailableError
from slotbook.scheduling.intervals import Interval

RANGE_START = datetime(2026, 1, 5, 0, 0, tzinfo=timezone.utc)
RANGE_END = datetime(2026, 1, 6, 0, 0, tzinfo=timezone.utc)


def client_for(handler) -> GoogleCalendarClient:
    return GoogleCalendarClient('access-token', transport=httpx.MockTransport(handler))


def test_get_busy_intervals_parses_free_busy_response() -> None:
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(
            200,
            json={
                'calendars': {
                    'primary': {
                        'busy': [
                            {'start': '2026-01-05T10:00:00Z', 'end': '2026-01-05T11:00:00Z'},
                            {'start': '2026-01-05T15:00:00+01:00', 'end': '2026-01-05T15:30:00+01:00'},
                        ]
                    }
                }
            },
        )

    busy = client_for(handler).get_busy_intervals(RANGE_START, RANGE_END)

    assert busy == [
        Interval(datetime(2026, 1, 5, 10, 0, tzinfo=timezone.utc), datetime(2026, 1, 5, 11, 0, tzinfo=timezone.utc)),
        Interval(datetime(2026, 1, 5, 14, 0, tzinfo=timezone.utc), datetime(2026, 1, 5, 14, 30, tzinfo=timezone.utc)),
    ]
    assert requests[0].url.path.endswith('/freeBusy')
    assert requests[0].headers['authorization'] == 'Bearer access-token'
    assert json.loads(requests[0].content) == {
        'timeMin': '2026-01-05T00:00:00Z',
        'timeMax': '2026-01-06T00:00:00Z',
        'items': [{'id': 'primary'}],
    }


def test_empty_calendar_returns_no_busy_intervals() -> None:
    client = client_for(lambda request: httpx.Response(200, json={'calendars': {'primary': {'busy': []}}}))

    assert client.get_busy_intervals(RANGE_START, RANGE_END) == []


def test_http_error_becomes_upstream_unavailable() -> None:
    client = client_for(lambda request: httpx.Response(500, json={'error': 'backend'}))

    with pytest.raises(UpstreamUnavailableError):
        client.get_busy_intervals(RANGE_START, RANGE_END)


def test_timeout_becomes_upstream_unavailable() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout('timed out', request=request)

    with pytest.raises(UpstreamUnavailableError):
        client_for(handler).get_busy_intervals(RANGE_START, RANGE_END)


def test_calendar_level_errors_become_upstream_unavailable() -> None:
    client = client_for(
        lambda request: httpx.Response(
            200,
            json={'calendars': {'primary': {'errors': [{'domain': 'global', 'reason': 'notFound'}]}}},
        )
    )

    with pytest.raises(UpstreamUnavailableError):
        client.get_busy_intervals(RANGE_START, RANGE_END)


@pytest.mark.parametrize(
    'payload',
    [
        {'calendars': {'primary': {'busy': [{'start': 'garbage', 'end': 'x'}]}}},
        {'calendars': {'primary': {'busy': [{'end': '2026-01-05T11:00:00Z'}]}}},
        {'calendars': {'primary': {'busy': [None]}}},
        {'calendars': ['primary']},
        ['not', 'an', 'object'],
    ],
)
def test_malformed_free_busy_response_becomes_upstream_unavailable(payload) -> None:
    client = client_for(lambda request: httpx.Response(200, json=payload))

    with pytest.raises(UpstreamUnavailableError):
        client.get_busy_intervals(RANGE_START, RANGE_END)


def test_create_event_returns_event_id() -> None:
    payloads = []

    def handler(request: httpx.Request) -> httpx.Response:
        payloads.append(json.loads(request.content))
        return httpx.Response(200, json={'id': 'evt-123'})

    booking = Booking(
        id=7,
        guest_name='Ada Guest',
        guest_email='ada@example.com',
        guest_notes='Bring documents',
        start_time=datetime(2026, 1, 5, 10, 0),
        end_time=datetime(2026, 1, 5, 10, 30),
    )

    assert client_for(handler).create_event(booking) == 'evt-123'
    assert payloads[0]['summary'] == 'Appointment with Ada Guest'
    assert payloads[0]['start'] == {'dateTime': '2026-01-05T10:00:00Z'}
    assert payloads[0]['attendees'] == [{'email': 'ada@example.com'}]


def test_factory_returns_none_without_connected_calendar(db, operator) -> None:
    assert CalendarClientFactory().for_user(db, operator) is None


def test_factory_builds_client_from_valid_token(db, operator) -> None:
    db.add(
        CalendarAccount(
            user_id=operator.id,
            access_token='stored-token',
            refresh_token='refresh-token',
            token_expires_at=datetime.utcnow() + timedelta(hours=1),
            calendar_id='work',
        )
    )
    db.commit()

    client = CalendarClientFactory(timeout=2).for_user(db, operator)

    assert client.access_token == 'stored-token'
    assert client.calendar_id == 'work'
    assert client.timeout == 2


def test_factory_returns_a_new_client_per_call(db, operator) -> None:
    db.add(CalendarAccount(user_id=operator.id, access_token='stored-token'))
    db.commit()
    factory = CalendarClientFactory()

    assert factory.for_user(db, operator) is not factory.for_user(db, operator)


def test_factory_refreshes_expiring_token(db, operator) -> None:
    db.add(
        CalendarAccount(
            user_id=operator.id,
            access_token='old-token',
            refresh_token='refresh-token',
            token_expires_at=datetime.utcnow() + timedelta(minutes=1),
        )
    )
    db.commit()

    def handler(request: httpx.Request) -> httpx.Response:
        assert str(request.url) == GOOGLE_TOKEN_URL
        assert b'grant_type=refresh_token' in request.content
        return httpx.Response(200, json={'access_token': 'new-token', 'expires_in': 3600})

    client = CalendarClientFactory(transport=httpx.MockTransport(handler)).for_user(db, operator)

    account = db.query(CalendarAccount).filter(CalendarAccount.user_id == operator.id).one()
    assert client.access_token == 'new-token'
    assert account.access_token == 'new-token'
    assert account.token_expires_at > datetime.utcnow() + timedelta(minutes=50)


def test_factory_reports_failed_refresh_as_upstream_unavailable(db, operator) -> None:
    db.add(
        CalendarAccount(
            user_id=operator.id,
            access_token='old-token',
            refresh_token='refresh-token',
            token_expires_at=datetime.utcnow() - timedelta(minutes=1),
        )
    )
    db.commit()

    factory = CalendarClientFactory(transport=httpx.MockTransport(lambda request: httpx.Response(400)))

    with pytest.raises(UpstreamUnavailableError):
        factory.for_user(db, operator)
