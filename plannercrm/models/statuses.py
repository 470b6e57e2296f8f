"""Signal lexicon models — the pipeline status catalog and per-owner overrides."""

from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)

from ..database import UTCDateTime
from .base import Base


class StatusDefinition(Base):
    __tablename__ = "status_definitions"
    id = Column(Integer, primary_key=True)
    slug = Column(String(50), nullable=False, unique=True)
    name = Column(String(100), nullable=False)
    description = Column(Text)
    order = Column(Integer, nullable=False)
    color = Column(String(20))
    inbound_signals = Column(JSON, default=list)
    outbound_signals = Column(JSON, default=list)
    thread_patterns = Column(JSON, default=list)
    exclude_patterns = Column(JSON, default=list)
    is_system = Column(Boolean, default=True)
    updated_at = Column(
        UTCDateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )


class StatusOverride(Base):
    """Per-owner enable/disable flag. The catalog row itself is never mutated."""

    __tablename__ = "status_overrides"
    id = Column(Integer, primary_key=True)
    owner_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    slug = Column(String(50), ForeignKey("status_definitions.slug"), nullable=False)
    is_enabled = Column(Boolean, nullable=False, default=True)

    __table_args__ = (
        Index("ix_status_overrides_owner_slug", "owner_id", "slug", unique=True),
    )
