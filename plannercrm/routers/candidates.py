"""Supplier candidate API — review queue for contacts discovered in the mailbox."""

import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..database import get_db
from ..dependencies import get_scorer, require_user
from ..models import NotRelevant, Relevant, SupplierCandidate, User
from ..schemas.candidates import (
    AcceptCandidateRequest,
    BulkCandidateRequest,
    EnrichCandidatesRequest,
    MergeCandidateRequest,
)
from ..services import candidate_store, enrichment
from ..services.scorer import CandidateScorer

router = APIRouter(tags=["candidates"])
log = logging.getLogger(__name__)


def candidate_to_dict(c: SupplierCandidate) -> dict:
    relevance = c.relevance
    if isinstance(relevance, Relevant):
        relevance_label = "relevant"
    elif isinstance(relevance, NotRelevant):
        relevance_label = "not_relevant"
    else:
        relevance_label = "unknown"
    return {
        "id": c.id,
        "email": c.email,
        "domain": c.domain,
        "display_name": c.display_name,
        "source": c.source,
        "status": c.status,
        "message_count": c.message_count or 0,
        "first_seen_at": c.first_seen_at.isoformat() if c.first_seen_at else None,
        "last_seen_at": c.last_seen_at.isoformat() if c.last_seen_at else None,
        "relevance": relevance_label,
        "confidence": c.confidence,
        "suggested_supplier_name": c.suggested_supplier_name,
        "suggested_categories": c.suggested_categories or [],
        "primary_category": c.primary_category,
        "enriched": c.enriched_at is not None,
        "last_enrichment_error": c.last_enrichment_error,
        "supplier_id": c.supplier_id,
        "email_context": c.email_context_json or [],
    }


@router.get("/api/supplier-candidates")
def api_list_candidates(
    status: str = Query(None, pattern="^(NEW|ACCEPTED|DISMISSED|MERGED)$"),
    search: str = Query(None, max_length=200),
    include_irrelevant: bool = Query(False),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    user: User = Depends(require_user),
    db: Session = Depends(get_db),
):
    rows, total = candidate_store.list_candidates(
        db, user.id, status=status, search=search,
        include_irrelevant=include_irrelevant, limit=limit, offset=offset,
    )
    return {"items": [candidate_to_dict(c) for c in rows], "total": total,
            "limit": limit, "offset": offset}


@router.get("/api/supplier-candidates/{candidate_id}")
def api_get_candidate(
    candidate_id: int,
    user: User = Depends(require_user),
    db: Session = Depends(get_db),
):
    return candidate_to_dict(candidate_store.get_candidate(db, user.id, candidate_id))


@router.post("/api/supplier-candidates/bulk-accept")
def api_bulk_accept(
    body: BulkCandidateRequest,
    user: User = Depends(require_user),
    db: Session = Depends(get_db),
):
    return candidate_store.bulk_accept(db, user.id, body.ids)


@router.post("/api/supplier-candidates/bulk-dismiss")
def api_bulk_dismiss(
    body: BulkCandidateRequest,
    user: User = Depends(require_user),
    db: Session = Depends(get_db),
):
    return candidate_store.bulk_dismiss(db, user.id, body.ids)


@router.post("/api/supplier-candidates/enrich")
async def api_enrich_candidates(
    body: EnrichCandidatesRequest,
    user: User = Depends(require_user),
    scorer: CandidateScorer = Depends(get_scorer),
    db: Session = Depends(get_db),
):
    """Score a batch of candidates now; high-confidence relevant ones are imported."""
    return await enrichment.enrich(
        db, user.id, body.ids, scorer,
        event_context=user.event_context,
        scrape_domain=body.scrape_domain,
        auto_import_threshold=body.auto_import_threshold,
    )


@router.post("/api/supplier-candidates/{candidate_id}/accept")
def api_accept_candidate(
    candidate_id: int,
    body: AcceptCandidateRequest | None = None,
    user: User = Depends(require_user),
    db: Session = Depends(get_db),
):
    overrides = body.model_dump(exclude_none=True) if body else {}
    candidate = candidate_store.accept_candidate(db, user.id, candidate_id, **overrides)
    return candidate_to_dict(candidate)


@router.post("/api/supplier-candidates/{candidate_id}/dismiss")
def api_dismiss_candidate(
    candidate_id: int,
    user: User = Depends(require_user),
    db: Session = Depends(get_db),
):
    return candidate_to_dict(candidate_store.dismiss_candidate(db, user.id, candidate_id))


@router.post("/api/supplier-candidates/{candidate_id}/merge")
def api_merge_candidate(
    candidate_id: int,
    body: MergeCandidateRequest,
    user: User = Depends(require_user),
    db: Session = Depends(get_db),
):
    candidate = candidate_store.merge_candidate(db, user.id, candidate_id, body.supplier_id)
    return candidate_to_dict(candidate)
