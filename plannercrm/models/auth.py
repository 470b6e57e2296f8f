"""Owner accounts — the planner whose mailbox is analyzed."""

from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, Integer, String, Text

from ..database import UTCDateTime
from .base import Base


class User(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True)
    email = Column(String(255), nullable=False, unique=True, index=True)
    name = Column(String(255))
    is_active = Column(Boolean, default=True)

    # Free-text description of the events this planner runs; fed to the scorer
    event_context = Column(Text)

    # Mailbox connection (tokens are issued by the auth layer)
    mailbox_connected = Column(Boolean, default=False)
    access_token = Column(Text)
    token_expires_at = Column(UTCDateTime)

    # Live sync bookkeeping
    mailbox_history_id = Column(String(64))
    poll_requested_at = Column(UTCDateTime)
    last_polled_at = Column(UTCDateTime)
    # Resume point of a poll window that max_pages cut short
    poll_cursor = Column(String(255))
    poll_window_max_at = Column(UTCDateTime)

    created_at = Column(UTCDateTime, default=lambda: datetime.now(timezone.utc))
