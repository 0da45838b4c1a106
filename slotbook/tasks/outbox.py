"""
Booking outbox

Post-booking side effects (calendar event, guest confirmation, operator
notification) are written as outbox rows in the same transaction as the
booking and delivered afterwards. A failed delivery is retried with
exponential backoff and never touches the booking itself.

Run ``python -m slotbook.tasks.outbox`` periodically to retry due tasks.
Runners may overlap with the background run after a booking: each task is
claimed with a conditional update before its handler runs, so only one
runner delivers it. A claim left behind by a crashed runner expires after
``OUTBOX_CLAIM_TIMEOUT_SECONDS``.
"""

import logging
from datetime import datetime, timedelta

from sqlalchemy import or_
from sqlalchemy.orm import Session

from slotbook.core import config
from slotbook.database import SessionLocal
from slotbook.models.booking import BOOKING_STATUS_CONFIRMED, Booking
from slotbook.models.outbox import (
    BOOKING_TASK_KINDS,
    TASK_STATUS_DONE,
    TASK_STATUS_FAILED,
    TASK_STATUS_PENDING,
    TASK_STATUS_PROCESSING,
    OutboxTask,
)
from slotbook.models.user import User
from slotbook.tasks.handlers import get_default_handlers

logger = logging.getLogger(__name__)


def enqueue_booking_tasks(db: Session, booking: Booking) -> list[OutboxTask]:
    """Add one pending task per side effect. The caller commits."""
    tasks = [
        OutboxTask(
            booking_id=booking.id,
            kind=kind,
            status=TASK_STATUS_PENDING,
            attempts=0,
            next_attempt_at=datetime.utcnow(),
        )
        for kind in BOOKING_TASK_KINDS
    ]
    db.add_all(tasks)
    return tasks


def retry_delay(attempts: int) -> timedelta:
    return timedelta(seconds=config.OUTBOX_RETRY_BASE_SECONDS * 2 ** max(attempts - 1, 0))


def _due_filter(now: datetime):
    return (
        or_(OutboxTask.status == TASK_STATUS_PENDING, OutboxTask.status == TASK_STATUS_PROCESSING),
        OutboxTask.next_attempt_at <= now,
    )


def claim_task(db: Session, task_id: int, now: datetime) -> bool:
    """Mark a due task as processing. Returns False if another runner holds it."""
    claimed = db.query(OutboxTask).filter(OutboxTask.id == task_id, *_due_filter(now)).update(
        {
            OutboxTask.status: TASK_STATUS_PROCESSING,
            OutboxTask.next_attempt_at: now + timedelta(seconds=config.OUTBOX_CLAIM_TIMEOUT_SECONDS),
        },
        synchronize_session=False,
    )
    db.commit()
    return claimed == 1


def process_pending_tasks(
    db: Session,
    handlers: dict,
    now: datetime | None = None,
    booking_id: int | None = None,
    limit: int | None = None,
) -> int:
    """Deliver due pending tasks and return how many completed.

    ``handlers`` maps a task kind to ``handler(db, booking, operator)``.
    Tasks whose booking is gone or no longer confirmed complete without
    running their handler.
    """
    now = now or datetime.utcnow()

    query = db.query(OutboxTask.id).filter(*_due_filter(now))
    if booking_id is not None:
        query = query.filter(OutboxTask.booking_id == booking_id)
    task_ids = [row.id for row in query.order_by(OutboxTask.id.asc()).limit(limit or config.OUTBOX_BATCH_SIZE).all()]

    completed = 0
    for task_id in task_ids:
        if not claim_task(db, task_id, now):
            logger.info('Outbox task %s already claimed by another runner', task_id)
            continue

        task = db.get(OutboxTask, task_id)
        try:
            booking = db.get(Booking, task.booking_id)
            if booking is None or booking.status != BOOKING_STATUS_CONFIRMED:
                logger.info('Skipping %s task %s, booking %s is not confirmed', task.kind, task.id, task.booking_id)
            else:
                handler = handlers[task.kind]
                operator = db.get(User, booking.user_id)
                handler(db, booking, operator)

            task.status = TASK_STATUS_DONE
            task.attempts += 1
            task.last_error = None
            db.commit()
            completed += 1
        except Exception as exc:
            db.rollback()
            task = db.get(OutboxTask, task_id)
            task.attempts += 1
            task.last_error = str(exc)[:500]
            if task.attempts >= config.OUTBOX_MAX_ATTEMPTS:
                task.status = TASK_STATUS_FAILED
                logger.error('Outbox task %s (%s) failed permanently: %s', task.id, task.kind, exc)
            else:
                task.status = TASK_STATUS_PENDING
                task.next_attempt_at = now + retry_delay(task.attempts)
                logger.warning('Outbox task %s (%s) failed, retry %s scheduled: %s', task.id, task.kind, task.attempts, exc)
            db.commit()

    if completed:
        logger.info('Outbox delivered %s task(s)', completed)

    return completed


def process_booking_tasks(booking_id: int) -> None:
    """Background entry point scheduled right after a booking is created."""
    db = SessionLocal()
    try:
        process_pending_tasks(db, get_default_handlers(), booking_id=booking_id)
    except Exception:
        logger.exception('Outbox processing failed for booking %s', booking_id)
    finally:
        db.close()


def main() -> None:
    logging.basicConfig(level=config.LOG_LEVEL)
    db = SessionLocal()
    try:
        process_pending_tasks(db, get_default_handlers())
    finally:
        db.close()


if __name__ == '__main__':
    main()
