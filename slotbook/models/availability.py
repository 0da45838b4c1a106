"""Availability model definitions."""

from sqlalchemy import CheckConstraint, Column, ForeignKey, Index, Integer, Time
from slotbook.database import Base


class AvailabilityRule(Base):
    """Represents one weekly availability window for an operator.

    ``day_of_week`` counts from Sunday (0) to Saturday (6). Windows never
    cross midnight: ``start_time`` is always before ``end_time``.
    """
    __tablename__ = "availability_rules"
    __table_args__ = (
        CheckConstraint("day_of_week >= 0 AND day_of_week <= 6", name="ck_availability_day_of_week"),
        CheckConstraint("start_time < end_time", name="ck_availability_window_order"),
        Index("idx_availability_user_day", "user_id", "day_of_week"),
    )

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    day_of_week = Column(Integer, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
