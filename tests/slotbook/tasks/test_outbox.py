from datetime import datetime, timedelta

import pytest

from slotbook.core import config
from slotbook.models.booking import BOOKING_STATUS_CONFIRMED, Booking
from slotbook.models.outbox import (
    TASK_CALENDAR_EVENT,
    TASK_GUEST_CONFIRMATION,
    TASK_OPERATOR_NOTIFICATION,
    TASK_STATUS_DONE,
    TASK_STATUS_FAILED,
    TASK_STATUS_PENDING,
    TASK_STATUS_PROCESSING,
    OutboxTask,
)
from slotbook.tasks import handlers
from slotbook.tasks.outbox import claim_task, enqueue_booking_tasks, process_pending_tasks

NOW = datetime(2026, 1, 5, 8, 0)


@pytest.fixture
def booking_with_tasks(db, operator, add_booking):
    booking = add_booking(operator, datetime(2026, 1, 5, 10, 0))
    enqueue_booking_tasks(db, booking)
    db.commit()
    for task in db.query(OutboxTask).all():
        task.next_attempt_at = NOW - timedelta(minutes=1)
    db.commit()
    return booking


def recording_handlers(calls: list, failing_kind: str | None = None) -> dict:
    def make(kind):
        def handler(db, booking, operator):
            calls.append((kind, booking.id, operator.id))
            if kind == failing_kind:
                raise RuntimeError(f'{kind} is down')

        return handler

    return {kind: make(kind) for kind in (TASK_CALENDAR_EVENT, TASK_GUEST_CONFIRMATION, TASK_OPERATOR_NOTIFICATION)}


def test_successful_tasks_are_marked_done(db, operator, booking_with_tasks) -> None:
    calls = []

    completed = process_pending_tasks(db, recording_handlers(calls), now=NOW)

    assert completed == 3
    assert {kind for kind, _, _ in calls} == {TASK_CALENDAR_EVENT, TASK_GUEST_CONFIRMATION, TASK_OPERATOR_NOTIFICATION}
    assert all(booking_id == booking_with_tasks.id and user_id == operator.id for _, booking_id, user_id in calls)
    assert {task.status for task in db.query(OutboxTask).all()} == {TASK_STATUS_DONE}


def test_failed_task_is_rescheduled_and_booking_is_untouched(db, booking_with_tasks) -> None:
    calls = []

    completed = process_pending_tasks(db, recording_handlers(calls, failing_kind=TASK_GUEST_CONFIRMATION), now=NOW)

    assert completed == 2
    failed = db.query(OutboxTask).filter(OutboxTask.kind == TASK_GUEST_CONFIRMATION).one()
    assert failed.status == TASK_STATUS_PENDING
    assert failed.attempts == 1
    assert 'is down' in failed.last_error
    assert failed.next_attempt_at == NOW + timedelta(seconds=config.OUTBOX_RETRY_BASE_SECONDS)

    booking = db.get(Booking, booking_with_tasks.id)
    assert booking.status == BOOKING_STATUS_CONFIRMED


def test_rescheduled_task_is_not_retried_before_it_is_due(db, booking_with_tasks) -> None:
    calls = []
    process_pending_tasks(db, recording_handlers(calls, failing_kind=TASK_GUEST_CONFIRMATION), now=NOW)
    calls.clear()

    assert process_pending_tasks(db, recording_handlers(calls), now=NOW + timedelta(seconds=1)) == 0
    assert calls == []

    later = NOW + timedelta(seconds=config.OUTBOX_RETRY_BASE_SECONDS)
    assert process_pending_tasks(db, recording_handlers(calls), now=later) == 1
    assert calls == [(TASK_GUEST_CONFIRMATION, booking_with_tasks.id, booking_with_tasks.user_id)]


def test_task_fails_permanently_after_max_attempts(db, booking_with_tasks, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config, 'OUTBOX_MAX_ATTEMPTS', 1)

    process_pending_tasks(db, recording_handlers([], failing_kind=TASK_CALENDAR_EVENT), now=NOW)

    task = db.query(OutboxTask).filter(OutboxTask.kind == TASK_CALENDAR_EVENT).one()
    assert task.status == TASK_STATUS_FAILED
    assert task.attempts == 1


def test_tasks_for_cancelled_booking_complete_without_running(db, booking_with_tasks) -> None:
    booking_with_tasks.status = 'cancelled'
    db.commit()
    calls = []

    assert process_pending_tasks(db, recording_handlers(calls), now=NOW) == 3
    assert calls == []


def test_processing_can_be_limited_to_one_booking(db, operator, add_booking, booking_with_tasks) -> None:
    other = add_booking(operator, datetime(2026, 1, 5, 11, 0))
    enqueue_booking_tasks(db, other)
    db.commit()
    calls = []

    process_pending_tasks(db, recording_handlers(calls), now=datetime.utcnow() + timedelta(seconds=1), booking_id=other.id)

    assert {booking_id for _, booking_id, _ in calls} == {other.id}


def test_calendar_handler_attaches_external_event_id(db, operator, booking_with_tasks, make_calendar_factory) -> None:
    calendar_factory = make_calendar_factory()
    handler = handlers.make_calendar_event_handler(calendar_factory)

    handler(db, booking_with_tasks, operator)
    db.commit()

    assert db.get(Booking, booking_with_tasks.id).external_event_id == 'evt-1'
    assert calendar_factory.calendar.created_events == [booking_with_tasks.id]


def test_calendar_handler_skips_operator_without_calendar(db, operator, booking_with_tasks) -> None:
    calendar_factory = handlers.CalendarClientFactory()

    handlers.make_calendar_event_handler(calendar_factory)(db, booking_with_tasks, operator)

    assert booking_with_tasks.external_event_id is None


def test_default_handlers_send_both_emails(db, operator, booking_with_tasks, monkeypatch: pytest.MonkeyPatch) -> None:
    sent = []
    monkeypatch.setattr(handlers.notifications, 'send_booking_confirmation', lambda b, o: sent.append(('guest', b.id)))
    monkeypatch.setattr(handlers.notifications, 'send_operator_notification', lambda b, o: sent.append(('operator', b.id)))

    default_handlers = handlers.get_default_handlers(handlers.CalendarClientFactory())
    completed = process_pending_tasks(db, default_handlers, now=NOW)

    assert completed == 3
    assert sorted(sent) == [('guest', booking_with_tasks.id), ('operator', booking_with_tasks.id)]


def test_task_can_only_be_claimed_once(session_factory, booking_with_tasks) -> None:
    first = session_factory()
    second = session_factory()
    try:
        task_id = first.query(OutboxTask.id).order_by(OutboxTask.id.asc()).first().id

        assert claim_task(first, task_id, NOW) is True
        assert claim_task(second, task_id, NOW) is False
        assert second.get(OutboxTask, task_id).status == TASK_STATUS_PROCESSING
    finally:
        first.close()
        second.close()


def test_overlapping_runners_deliver_each_task_once(session_factory, booking_with_tasks) -> None:
    background = session_factory()
    cron = session_factory()
    calls = []
    cron_handlers = recording_handlers(calls)
    background_handlers = recording_handlers(calls)
    deliver_guest_confirmation = background_handlers[TASK_GUEST_CONFIRMATION]

    def guest_confirmation_with_cron_run(db, booking, operator):
        deliver_guest_confirmation(db, booking, operator)
        process_pending_tasks(cron, cron_handlers, now=NOW)

    background_handlers[TASK_GUEST_CONFIRMATION] = guest_confirmation_with_cron_run
    try:
        delivered = process_pending_tasks(background, background_handlers, now=NOW)

        assert delivered == 2
        assert sorted(kind for kind, _, _ in calls) == sorted(
            [TASK_CALENDAR_EVENT, TASK_GUEST_CONFIRMATION, TASK_OPERATOR_NOTIFICATION]
        )
        assert {task.status for task in background.query(OutboxTask).all()} == {TASK_STATUS_DONE}
    finally:
        background.close()
        cron.close()


def test_expired_claim_is_picked_up_again(db, booking_with_tasks, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config, 'OUTBOX_CLAIM_TIMEOUT_SECONDS', 60)
    task_id = db.query(OutboxTask.id).order_by(OutboxTask.id.asc()).first().id
    assert claim_task(db, task_id, NOW)
    calls = []

    assert process_pending_tasks(db, recording_handlers(calls), now=NOW + timedelta(seconds=1)) == 2
    assert process_pending_tasks(db, recording_handlers(calls), now=NOW + timedelta(seconds=61)) == 1
    assert db.get(OutboxTask, task_id).status == TASK_STATUS_DONE
