"""Booking model definitions."""

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, text
from slotbook.database import Base

BOOKING_STATUS_CONFIRMED = "confirmed"
BOOKING_STATUS_CANCELLED = "cancelled"


class Booking(Base):
    """Represents a guest appointment. Instants are stored as naive UTC."""
    __tablename__ = "bookings"
    __table_args__ = (
        Index("idx_bookings_user_time_range", "user_id", "start_time", "end_time"),
        # Two confirmed bookings can never share a start for the same operator,
        # whichever request commits first wins.
        Index(
            "uq_bookings_user_start_confirmed",
            "user_id",
            "start_time",
            unique=True,
            sqlite_where=text("status = 'confirmed'"),
            postgresql_where=text("status = 'confirmed'"),
        ),
    )

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    guest_name = Column(String, nullable=False)
    guest_email = Column(String, nullable=False)
    guest_notes = Column(String)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    timezone = Column(String)
    status = Column(String, nullable=False, default=BOOKING_STATUS_CONFIRMED)
    external_event_id = Column(String)
    created_at = Column(DateTime, default=datetime.utcnow)
