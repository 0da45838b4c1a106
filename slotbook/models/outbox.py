"""Outbox model definitions."""

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String
from slotbook.database import Base

TASK_CALENDAR_EVENT = "calendar_event"
TASK_GUEST_CONFIRMATION = "guest_confirmation"
TASK_OPERATOR_NOTIFICATION = "operator_notification"
BOOKING_TASK_KINDS = (TASK_CALENDAR_EVENT, TASK_GUEST_CONFIRMATION, TASK_OPERATOR_NOTIFICATION)

TASK_STATUS_PENDING = "pending"
TASK_STATUS_PROCESSING = "processing"
TASK_STATUS_DONE = "done"
TASK_STATUS_FAILED = "failed"


class OutboxTask(Base):
    """Represents a post-booking side effect waiting to be delivered."""
    __tablename__ = "outbox_tasks"
    __table_args__ = (
        Index("idx_outbox_status_due", "status", "next_attempt_at"),
    )

    id = Column(Integer, primary_key=True)
    booking_id = Column(Integer, ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False)
    kind = Column(String, nullable=False)
    status = Column(String, nullable=False, default=TASK_STATUS_PENDING)
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(String)
    next_attempt_at = Column(DateTime, default=datetime.utcnow)
    created_at = Column(DateTime, default=datetime.utcnow)
