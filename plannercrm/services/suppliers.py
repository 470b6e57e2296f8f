"""
services/suppliers.py — Supplier / project-supplier store used by the core

Business Rules:
- A business-domain supplier is matched by exact email, then by domain
- Personal-domain suppliers are matched by exact email only (domain is NULL)
- Status changes on a project-supplier append to its status_history

Called by: services/candidate_store.py, services/enrichment.py,
           services/mailbox_sync.py, services/proposals.py
Depends on: models, services/email_utils.py
"""

import logging
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from ..models import ProjectSupplier, Supplier
from .email_utils import extract_domain, is_personal_domain, normalize_email

log = logging.getLogger(__name__)


def name_from_domain(domain: str) -> str:
    """'bloom-and-co.com' -> 'Bloom And Co'."""
    stem = (domain or "").split(".")[0]
    return " ".join(w.capitalize() for w in stem.replace("_", "-").split("-") if w) or domain


def find_supplier_for_address(db: Session, owner_id: int, email: str) -> Supplier | None:
    email = normalize_email(email)
    if not email:
        return None
    q = db.query(Supplier).filter(Supplier.owner_id == owner_id)
    supplier = q.filter(Supplier.email == email).first()
    if supplier:
        return supplier
    domain = extract_domain(email)
    if domain and not is_personal_domain(domain):
        return q.filter(Supplier.domain == domain).order_by(Supplier.id).first()
    return None


def create_supplier(
    db: Session,
    owner_id: int,
    *,
    name: str,
    email: str,
    contact_name: str | None = None,
    categories: list[str] | None = None,
    primary_category: str | None = None,
    source: str = "discovery",
) -> Supplier:
    email = normalize_email(email)
    domain = extract_domain(email)
    personal = is_personal_domain(domain)
    categories = list(categories or [])
    supplier = Supplier(
        owner_id=owner_id,
        name=name,
        email=email,
        domain=None if personal else domain,
        is_personal_domain=personal,
        contact_name=contact_name,
        categories=categories,
        primary_category=primary_category or (categories[0] if categories else None),
        source=source,
    )
    db.add(supplier)
    db.flush()
    log.info("Supplier created: %s <%s> (owner %d)", name, email, owner_id)
    return supplier


def find_or_create_supplier(db: Session, owner_id: int, *, email: str, **kwargs) -> tuple[Supplier, bool]:
    existing = find_supplier_for_address(db, owner_id, email)
    if existing:
        return existing, False
    return create_supplier(db, owner_id, email=email, **kwargs), True


def get_project_supplier(db: Session, project_id: int, supplier_id: int) -> ProjectSupplier | None:
    return (
        db.query(ProjectSupplier)
        .filter(ProjectSupplier.project_id == project_id,
                ProjectSupplier.supplier_id == supplier_id)
        .first()
    )


def ensure_project_supplier(db: Session, project_id: int, supplier_id: int) -> ProjectSupplier:
    ps = get_project_supplier(db, project_id, supplier_id)
    if ps is None:
        ps = ProjectSupplier(project_id=project_id, supplier_id=supplier_id, status_history=[])
        db.add(ps)
        db.flush()
    return ps


def set_project_supplier_status(
    db: Session,
    ps: ProjectSupplier,
    to_status: str,
    *,
    changed_by: int | None = None,
    proposal_id: int | None = None,
) -> ProjectSupplier:
    entry = {
        "from": ps.status_slug,
        "to": to_status,
        "changed_at": datetime.now(timezone.utc).isoformat(),
        "changed_by": changed_by,
        "proposal_id": proposal_id,
    }
    # Reassign so the JSON column is flagged dirty
    ps.status_history = list(ps.status_history or []) + [entry]
    ps.status_slug = to_status
    db.flush()
    return ps
