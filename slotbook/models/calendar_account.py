"""Remote calendar credential model definitions."""

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String
from slotbook.database import Base


class CalendarAccount(Base):
    """Represents OAuth credentials for an operator's remote calendar."""
    __tablename__ = "calendar_accounts"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False)
    provider = Column(String, nullable=False, default="google")
    access_token = Column(String)
    refresh_token = Column(String)
    token_expires_at = Column(DateTime)
    calendar_id = Column(String, nullable=False, default="primary")
