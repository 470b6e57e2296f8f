"""
services/candidate_store.py — Deduplicated directory of discovered contacts

Business Rules:
- (owner_id, email) is unique; a repeat sighting bumps message_count and
  last_seen_at instead of creating a row
- Status moves one way: NEW -> ACCEPTED | DISMISSED; any of those -> MERGED
- A candidate with supplier_id set is ACCEPTED or MERGED
- Irrelevant NEW candidates are hidden from the default review list
- Bulk operations report per-id outcomes and never abort siblings

Called by: services/backfill.py, services/enrichment.py, routers/candidates.py
Depends on: models, services/suppliers.py, services/email_utils.py
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..errors import ConflictError, CRMError, ForbiddenError, NotFoundError
from ..models import CandidateStatus, Supplier, SupplierCandidate
from . import suppliers as supplier_store
from .email_utils import extract_domain, normalize_email

log = logging.getLogger(__name__)

MAX_EMAIL_CONTEXTS = 5
MAX_BULK = 100


# ── Sightings ────────────────────────────────────────────────────────


def _merge_context(existing: list | None, context: dict | None) -> list:
    contexts = list(existing or [])
    if context:
        contexts.append(context)
    contexts.sort(key=lambda c: c.get("date") or "", reverse=True)
    return contexts[:MAX_EMAIL_CONTEXTS]


def record_sighting(
    db: Session,
    owner_id: int,
    email: str,
    display_name: str | None = None,
    *,
    seen_at: datetime | None = None,
    context: dict | None = None,
    source: str = "backfill",
) -> tuple[SupplierCandidate, bool]:
    """Upsert one sighting. Returns (candidate, created)."""
    email = normalize_email(email)
    if not email or "@" not in email:
        raise ValueError(f"invalid email address: {email!r}")
    seen_at = seen_at or datetime.now(timezone.utc)

    candidate = _find(db, owner_id, email)
    if candidate is None:
        try:
            with db.begin_nested():
                candidate = SupplierCandidate(
                    owner_id=owner_id,
                    email=email,
                    domain=extract_domain(email),
                    display_name=display_name,
                    source=source,
                    status=CandidateStatus.NEW,
                    message_count=1,
                    first_seen_at=seen_at,
                    last_seen_at=seen_at,
                    email_context_json=_merge_context([], context),
                )
                db.add(candidate)
            return candidate, True
        except IntegrityError:
            # Lost an insert race for the same address; fall through to update
            candidate = _find(db, owner_id, email)

    candidate.message_count = (candidate.message_count or 0) + 1
    if candidate.last_seen_at is None or seen_at > candidate.last_seen_at:
        candidate.last_seen_at = seen_at
    if candidate.first_seen_at is None or seen_at < candidate.first_seen_at:
        candidate.first_seen_at = seen_at
    if display_name and not candidate.display_name:
        candidate.display_name = display_name
    if context:
        candidate.email_context_json = _merge_context(candidate.email_context_json, context)
    db.flush()
    return candidate, False


def _find(db: Session, owner_id: int, email: str) -> SupplierCandidate | None:
    return (
        db.query(SupplierCandidate)
        .filter(SupplierCandidate.owner_id == owner_id, SupplierCandidate.email == email)
        .first()
    )


# ── Review surface ───────────────────────────────────────────────────


def get_candidate(db: Session, owner_id: int, candidate_id: int) -> SupplierCandidate:
    candidate = db.get(SupplierCandidate, candidate_id)
    if candidate is None:
        raise NotFoundError("Candidate not found")
    if candidate.owner_id != owner_id:
        raise ForbiddenError("Candidate belongs to another owner")
    return candidate


def list_candidates(
    db: Session,
    owner_id: int,
    *,
    status: str | None = None,
    search: str | None = None,
    include_irrelevant: bool = False,
    limit: int = 100,
    offset: int = 0,
) -> tuple[list[SupplierCandidate], int]:
    q = db.query(SupplierCandidate).filter(SupplierCandidate.owner_id == owner_id)
    if status:
        q = q.filter(SupplierCandidate.status == status)
    if not include_irrelevant:
        q = q.filter(or_(SupplierCandidate.is_relevant.is_(None),
                         SupplierCandidate.is_relevant.is_(True)))
    if search:
        term = f"%{search.strip().lower()}%"
        q = q.filter(or_(
            SupplierCandidate.email.ilike(term),
            SupplierCandidate.domain.ilike(term),
            SupplierCandidate.display_name.ilike(term),
            SupplierCandidate.suggested_supplier_name.ilike(term),
        ))
    total = q.count()
    rows = (
        q.order_by(
            SupplierCandidate.confidence.is_(None),
            SupplierCandidate.confidence.desc(),
            SupplierCandidate.message_count.desc(),
            SupplierCandidate.last_seen_at.desc(),
        )
        .offset(offset)
        .limit(limit)
        .all()
    )
    return rows, total


def promote(
    db: Session,
    candidate: SupplierCandidate,
    *,
    supplier_name: str | None = None,
    categories: list[str] | None = None,
    primary_category: str | None = None,
    source: str = "discovery",
) -> Supplier:
    """Create or link the supplier for a NEW candidate and mark it ACCEPTED."""
    if candidate.status != CandidateStatus.NEW:
        raise ConflictError(f"Candidate already {candidate.status.lower()}")
    categories = categories if categories is not None else list(candidate.suggested_categories or [])
    name = (
        supplier_name
        or candidate.suggested_supplier_name
        or candidate.display_name
        or supplier_store.name_from_domain(candidate.domain)
    )
    supplier, _ = supplier_store.find_or_create_supplier(
        db,
        candidate.owner_id,
        email=candidate.email,
        name=name,
        contact_name=candidate.display_name,
        categories=categories,
        primary_category=primary_category or candidate.primary_category,
        source=source,
    )
    candidate.status = CandidateStatus.ACCEPTED
    candidate.supplier_id = supplier.id
    db.flush()
    log.info("Candidate %d accepted as supplier %d", candidate.id, supplier.id)
    return supplier


def accept_candidate(db: Session, owner_id: int, candidate_id: int, **overrides) -> SupplierCandidate:
    candidate = get_candidate(db, owner_id, candidate_id)
    promote(db, candidate, source="manual", **overrides)
    db.commit()
    return candidate


def dismiss_candidate(db: Session, owner_id: int, candidate_id: int) -> SupplierCandidate:
    candidate = get_candidate(db, owner_id, candidate_id)
    if candidate.status != CandidateStatus.NEW:
        raise ConflictError(f"Candidate already {candidate.status.lower()}")
    candidate.status = CandidateStatus.DISMISSED
    db.commit()
    log.info("Candidate %d dismissed", candidate.id)
    return candidate


def merge_candidate(db: Session, owner_id: int, candidate_id: int, supplier_id: int) -> SupplierCandidate:
    """Fold a (possibly already resolved) candidate into an existing supplier."""
    candidate = get_candidate(db, owner_id, candidate_id)
    if candidate.status == CandidateStatus.MERGED:
        raise ConflictError("Candidate already merged")
    supplier = db.get(Supplier, supplier_id)
    if supplier is None:
        raise NotFoundError("Supplier not found")
    if supplier.owner_id != owner_id:
        raise ForbiddenError("Supplier belongs to another owner")
    candidate.status = CandidateStatus.MERGED
    candidate.supplier_id = supplier.id
    db.commit()
    log.info("Candidate %d merged into supplier %d", candidate.id, supplier.id)
    return candidate


def _bulk(db: Session, owner_id: int, candidate_ids: list[int], action) -> dict:
    if len(candidate_ids) > MAX_BULK:
        raise ValueError(f"at most {MAX_BULK} candidates per bulk request")
    results = []
    for cid in dict.fromkeys(candidate_ids):
        try:
            candidate = action(db, owner_id, cid)
            results.append({"id": cid, "ok": True, "supplier_id": candidate.supplier_id})
        except CRMError as e:
            db.rollback()
            results.append({"id": cid, "ok": False, "error": e.message})
    ok = sum(1 for r in results if r["ok"])
    return {"succeeded": ok, "failed": len(results) - ok, "results": results}


def bulk_accept(db: Session, owner_id: int, candidate_ids: list[int]) -> dict:
    return _bulk(db, owner_id, candidate_ids, accept_candidate)


def bulk_dismiss(db: Session, owner_id: int, candidate_ids: list[int]) -> dict:
    return _bulk(db, owner_id, candidate_ids, dismiss_candidate)
