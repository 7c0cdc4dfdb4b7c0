"""
SQLAlchemy ORM models for database tables.

This module contains database table definitions using SQLAlchemy.
For Pydantic request/response schemas, see schemas.py.
"""

import enum

from sqlalchemy import CheckConstraint, Column, Integer, String, Text
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class Direction(str, enum.Enum):
    OUTBOUND = "out"
    INBOUND = "in"


# Statuses the carrier is known to report. Anything else is still stored,
# it only produces a warning in the logs.
KNOWN_STATUSES = frozenset({
    "queued",
    "sending",
    "sent",
    "delivered",
    "delivery_failed",
    "delivery_unconfirmed",
    "sending_failed",
    "failed",
    "expired",
    "received",
    "webhook_delivered",
})


class MessageRecord(Base):
    """
    One sent or received SMS.

    Table: messages
    Primary Key: id (autoincrement, assigned on insert)
    Only ``status`` changes after creation; it is located for updates through
    ``provider_message_id``.
    """
    __tablename__ = "messages"
    __table_args__ = (
        CheckConstraint("direction IN ('in', 'out')", name="ck_messages_direction"),
        {"sqlite_autoincrement": True},
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    direction = Column(String, nullable=False)
    from_number = Column(String, nullable=False)
    to_number = Column(String, nullable=False)
    body = Column(Text, nullable=True)
    status = Column(String, nullable=True)
    provider_message_id = Column(String, nullable=True, index=True)
    created_at = Column(String, nullable=False)  # Server time ISO-8601

    def __repr__(self) -> str:
        return (
            f"<MessageRecord id={self.id} direction={self.direction} "
            f"provider_message_id={self.provider_message_id} status={self.status}>"
        )
