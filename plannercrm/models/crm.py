"""CRM records the core reads and writes — projects, suppliers, and the
project-supplier relationship that carries the pipeline status."""

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
from sqlalchemy.orm import relationship

from ..database import UTCDateTime
from .base import Base


class Project(Base):
    __tablename__ = "projects"
    id = Column(Integer, primary_key=True)
    owner_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    event_type = Column(String(100))
    venue = Column(String(255))
    event_date = Column(UTCDateTime)
    notes = Column(Text)
    created_at = Column(UTCDateTime, default=lambda: datetime.now(timezone.utc))

    suppliers = relationship(
        "ProjectSupplier", back_populates="project", cascade="all, delete-orphan"
    )


class Supplier(Base):
    __tablename__ = "suppliers"
    id = Column(Integer, primary_key=True)
    owner_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), index=True)
    # Null for personal-domain suppliers (gmail.com etc.); they are never grouped
    domain = Column(String(255), index=True)
    is_personal_domain = Column(Boolean, default=False)
    contact_name = Column(String(255))
    categories = Column(JSON, default=list)
    primary_category = Column(String(100))
    source = Column(String(50), default="manual")
    created_at = Column(UTCDateTime, default=lambda: datetime.now(timezone.utc))

    projects = relationship("ProjectSupplier", back_populates="supplier")


class ProjectSupplier(Base):
    __tablename__ = "project_suppliers"
    id = Column(Integer, primary_key=True)
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    supplier_id = Column(Integer, ForeignKey("suppliers.id", ondelete="CASCADE"), nullable=False)
    status_slug = Column(String(50))
    status_history = Column(JSON, default=list)
    updated_at = Column(
        UTCDateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    project = relationship("Project", back_populates="suppliers")
    supplier = relationship("Supplier", back_populates="projects")

    __table_args__ = (
        Index("ix_project_suppliers_pair", "project_id", "supplier_id", unique=True),
    )
