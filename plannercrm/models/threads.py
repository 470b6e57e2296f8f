"""Mailbox thread models — threads, stored messages, and their project link."""

from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Column,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from ..database import UTCDateTime
from .base import Base


class EmailThread(Base):
    __tablename__ = "email_threads"
    id = Column(Integer, primary_key=True)
    owner_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    provider_thread_id = Column(String(255), nullable=False)
    subject = Column(Text)
    participant_emails = Column(JSON, default=list)

    linked_project_id = Column(Integer, ForeignKey("projects.id", ondelete="SET NULL"))
    link_confidence = Column(Float)
    link_method = Column(String(20))  # AUTO | USER
    dismissed_at = Column(UTCDateTime)

    created_at = Column(UTCDateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        UTCDateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    messages = relationship(
        "EmailMessage", back_populates="thread", cascade="all, delete-orphan",
        order_by="EmailMessage.sent_at",
    )

    __table_args__ = (
        Index("ix_email_threads_owner_provider", "owner_id", "provider_thread_id", unique=True),
    )


class EmailMessage(Base):
    __tablename__ = "email_messages"
    id = Column(Integer, primary_key=True)
    owner_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    thread_id = Column(Integer, ForeignKey("email_threads.id", ondelete="CASCADE"), nullable=False)
    provider_message_id = Column(String(255), nullable=False)
    direction = Column(String(10), nullable=False)  # inbound | outbound
    from_email = Column(String(255))
    to_emails = Column(JSON, default=list)
    subject = Column(Text)
    body = Column(Text)
    sent_at = Column(UTCDateTime, nullable=False)

    supplier_id = Column(Integer, ForeignKey("suppliers.id", ondelete="SET NULL"))
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="SET NULL"))

    thread = relationship("EmailThread", back_populates="messages")

    __table_args__ = (
        Index("ix_email_messages_owner_provider", "owner_id", "provider_message_id", unique=True),
        Index("ix_email_messages_thread_sent", "thread_id", "sent_at"),
    )
