import os
from datetime import time, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')

from slotbook.database import Base  # noqa: E402
from slotbook.models import availability, booking, calendar_account, outbox, user  # noqa: E402,F401
from slotbook.models.availability import AvailabilityRule  # noqa: E402
from slotbook.models.booking import BOOKING_STATUS_CONFIRMED, Booking  # noqa: E402
from slotbook.models.user import User  # noqa: E402
from slotbook.scheduling.errors import UpstreamUnavailableError  # noqa: E402


class FakeCalendar:
    def __init__(self, busy=None, error=None, event_id='evt-1'):
        self.busy = busy or []
        self.error = error
        self.event_id = event_id
        self.busy_queries = []
        self.created_events = []

    def get_busy_intervals(self, range_start, range_end):
        self.busy_queries.append((range_start, range_end))
        if self.error:
            raise self.error
        return self.busy

    def create_event(self, booking):
        if self.error:
            raise self.error
        self.created_events.append(booking.id)
        return self.event_id


class FakeCalendarFactory:
    def __init__(self, calendar=None):
        self.calendar = calendar
        self.calls = 0

    def for_user(self, db, user):
        self.calls += 1
        return self.calendar


@pytest.fixture
def session_factory(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'slotbook.db'}")
    Base.metadata.create_all(bind=engine)
    try:
        yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def operator(db):
    user = User(email='operator@example.com', name='Operator', timezone='UTC', widget_token='widget-token')
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def add_rule(db):
    def _add_rule(user, day_of_week, start, end):
        rule = AvailabilityRule(
            user_id=user.id,
            day_of_week=day_of_week,
            start_time=time.fromisoformat(start),
            end_time=time.fromisoformat(end),
        )
        db.add(rule)
        db.commit()
        return rule

    return _add_rule


@pytest.fixture
def add_booking(db):
    def _add_booking(user, start, minutes=30, status=BOOKING_STATUS_CONFIRMED):
        booking = Booking(
            user_id=user.id,
            guest_name='Guest',
            guest_email='guest@example.com',
            start_time=start,
            end_time=start + timedelta(minutes=minutes),
            timezone=user.timezone,
            status=status,
        )
        db.add(booking)
        db.commit()
        db.refresh(booking)
        return booking

    return _add_booking


@pytest.fixture
def make_calendar_factory():
    def _make(busy=None, error=None):
        return FakeCalendarFactory(FakeCalendar(busy=busy, error=error))

    return _make


@pytest.fixture
def calendar_down():
    return UpstreamUnavailableError('calendar timed out')
