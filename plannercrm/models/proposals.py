"""Status proposals — detection output awaiting a human decision."""

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


class ProposalStatus:
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"
    SUPERSEDED = "SUPERSEDED"


class StatusProposal(Base):
    __tablename__ = "status_proposals"
    id = Column(Integer, primary_key=True)
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    supplier_id = Column(Integer, ForeignKey("suppliers.id", ondelete="CASCADE"), nullable=False)
    project_supplier_id = Column(
        Integer, ForeignKey("project_suppliers.id", ondelete="CASCADE"), nullable=False
    )
    message_id = Column(Integer, ForeignKey("email_messages.id", ondelete="SET NULL"))
    thread_id = Column(Integer, ForeignKey("email_threads.id", ondelete="SET NULL"))

    # "project:supplier" while PENDING, NULL once resolved/expired/superseded
    open_pair_key = Column(String(64), unique=True)
    status = Column(String(20), nullable=False, default=ProposalStatus.PENDING)

    from_status = Column(String(50))
    to_status = Column(String(50), nullable=False)
    confidence = Column(Float, nullable=False)
    matched_signals = Column(JSON, default=list)
    reasoning = Column(Text)

    created_at = Column(UTCDateTime, default=lambda: datetime.now(timezone.utc))
    expires_at = Column(UTCDateTime, nullable=False)
    resolved_at = Column(UTCDateTime)
    resolved_by_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"))

    project = relationship("Project")
    supplier = relationship("Supplier")
    project_supplier = relationship("ProjectSupplier")

    __table_args__ = (
        Index("ix_status_proposals_status_expires", "status", "expires_at"),
        Index("ix_status_proposals_pair", "project_id", "supplier_id"),
    )


def pair_key(project_id: int, supplier_id: int) -> str:
    return f"{project_id}:{supplier_id}"
