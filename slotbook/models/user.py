"""User model definitions."""

import secrets
from datetime import datetime

from sqlalchemy import Column, DateTime, Integer, String
from slotbook.database import Base


def generate_widget_token() -> str:
    return secrets.token_urlsafe(16)


class User(Base):
    """Represents an operator account that publishes a booking widget."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    name = Column(String)
    timezone = Column(String, nullable=False, default="UTC")
    widget_token = Column(String, unique=True, index=True, nullable=False, default=generate_widget_token)
    created_at = Column(DateTime, default=datetime.utcnow)
