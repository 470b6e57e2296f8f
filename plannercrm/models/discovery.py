"""Mailbox discovery models — backfill runs and supplier candidates."""

from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)

from ..database import UTCDateTime
from .base import Base


class RunStatus:
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    ACTIVE = frozenset({PENDING, RUNNING})
    TERMINAL = frozenset({COMPLETED, FAILED, CANCELLED})


class EnrichmentStatus:
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"


class CandidateStatus:
    NEW = "NEW"
    ACCEPTED = "ACCEPTED"
    DISMISSED = "DISMISSED"
    MERGED = "MERGED"


class BackfillRun(Base):
    """One resumable mailbox scan. Progress state is persisted after every tick."""

    __tablename__ = "backfill_runs"
    id = Column(Integer, primary_key=True)
    owner_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    # Equals owner_id while PENDING/RUNNING, NULL otherwise. The unique index
    # makes "one active run per owner" a database constraint.
    active_owner_id = Column(Integer, unique=True)
    status = Column(String(20), nullable=False, default=RunStatus.PENDING)
    timeframe_months = Column(Integer, nullable=False, default=6)
    event_context = Column(Text)
    scan_since = Column(UTCDateTime, nullable=False)
    cursor = Column(Text)

    scanned_messages = Column(Integer, default=0)
    discovered_contacts = Column(Integer, default=0)
    created_candidates = Column(Integer, default=0)
    errors_count = Column(Integer, default=0)
    consecutive_failures = Column(Integer, default=0)
    last_error = Column(Text)

    enrichment_status = Column(String(20), nullable=False, default=EnrichmentStatus.PENDING)
    enriched_count = Column(Integer, default=0)
    auto_imported_count = Column(Integer, default=0)

    created_at = Column(UTCDateTime, default=lambda: datetime.now(timezone.utc))
    started_at = Column(UTCDateTime)
    completed_at = Column(UTCDateTime)

    __table_args__ = (
        Index("ix_backfill_runs_owner_status", "owner_id", "status"),
    )


# ── Relevance tagged union ───────────────────────────────────────────


@dataclass(frozen=True)
class Unknown:
    """Not yet scored."""


@dataclass(frozen=True)
class Relevant:
    confidence: float


@dataclass(frozen=True)
class NotRelevant:
    confidence: float


class SupplierCandidate(Base):
    """A discovered external contact, not yet confirmed as a supplier."""

    __tablename__ = "supplier_candidates"
    id = Column(Integer, primary_key=True)
    owner_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    email = Column(String(255), nullable=False)
    domain = Column(String(255), nullable=False, index=True)
    display_name = Column(String(255))
    source = Column(String(50), default="backfill")
    status = Column(String(20), nullable=False, default=CandidateStatus.NEW)
    message_count = Column(Integer, default=0)
    first_seen_at = Column(UTCDateTime)
    last_seen_at = Column(UTCDateTime)
    email_context_json = Column(JSON, default=list)

    # Enrichment output
    suggested_supplier_name = Column(String(255))
    suggested_categories = Column(JSON, default=list)
    primary_category = Column(String(100))
    confidence = Column(Float)
    is_relevant = Column(Boolean)
    enrichment_json = Column(JSON)
    enriched_at = Column(UTCDateTime)
    last_enrichment_error = Column(Text)

    supplier_id = Column(Integer, ForeignKey("suppliers.id", ondelete="SET NULL"))

    created_at = Column(UTCDateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        UTCDateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        Index("ix_supplier_candidates_owner_email", "owner_id", "email", unique=True),
        Index("ix_supplier_candidates_owner_status", "owner_id", "status"),
    )

    @property
    def relevance(self):
        if self.is_relevant is None:
            return Unknown()
        if self.is_relevant:
            return Relevant(self.confidence or 0.0)
        return NotRelevant(self.confidence or 0.0)
