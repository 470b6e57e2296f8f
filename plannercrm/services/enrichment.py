"""
services/enrichment.py — Candidate enrichment step

Scores NEW, not-yet-enriched candidates with the pluggable scorer and merges
the results.

Business Rules:
- Irrelevant -> stays NEW, hidden from the default review list (dismissed)
- Relevant and confidence >= auto_import_threshold -> supplier created or
  linked, candidate ACCEPTED (imported)
- Relevant below the threshold -> stays NEW for manual review (needs_review)
- Already enriched or non-NEW candidates are skipped, so re-running is a no-op
- A scorer failure leaves that candidate unenriched for the next run and
  never aborts its siblings
- Scorer chunks run concurrently (bounded); DB merges are sequential

Called by: routers/candidates.py, routers/backfill.py, scheduler.py
Depends on: services/scorer.py, services/candidate_store.py, services/website_scraper.py
"""

import asyncio
import logging
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from ..config import settings
from ..errors import ConflictError, ForbiddenError, NotFoundError, ScorerError
from ..models import BackfillRun, CandidateStatus, EnrichmentStatus, RunStatus, SupplierCandidate, User
from . import candidate_store
from .scorer import CandidateScorer, ScorerInput, ScorerResult
from .website_scraper import homepage_summary

log = logging.getLogger(__name__)


def _chunks(items: list, size: int) -> list[list]:
    return [items[i:i + size] for i in range(0, len(items), max(size, 1))]


def build_input(candidate: SupplierCandidate, website_summary: str | None = None) -> ScorerInput:
    contexts = candidate.email_context_json or []
    return ScorerInput(
        candidate_id=candidate.id,
        email=candidate.email,
        domain=candidate.domain,
        display_name=candidate.display_name,
        sample_subjects=[c["subject"] for c in contexts if c.get("subject")],
        sample_excerpts=[c["content"] for c in contexts if c.get("content")],
        website_summary=website_summary,
    )


async def _score_chunk(scorer: CandidateScorer, chunk: list[ScorerInput], context: str,
                       sem: asyncio.Semaphore) -> dict:
    async with sem:
        try:
            return await asyncio.wait_for(
                scorer.classify_batch(chunk, context), timeout=settings.scorer_timeout_seconds
            )
        except asyncio.TimeoutError:
            err = ScorerError("scorer timed out")
        except ScorerError as e:
            err = e
        except Exception as e:
            err = ScorerError(f"scorer failed: {type(e).__name__}: {e}")
    log.warning("Scorer chunk of %d failed: %s", len(chunk), err.message)
    return {item.candidate_id: err for item in chunk}


def _merge(db: Session, candidate: SupplierCandidate, result: ScorerResult,
           threshold: float) -> str:
    candidate.is_relevant = result.is_relevant
    candidate.confidence = result.confidence
    candidate.suggested_supplier_name = result.suggested_supplier_name
    candidate.suggested_categories = result.suggested_categories
    candidate.primary_category = result.primary_category
    candidate.enrichment_json = result.raw or {"reasoning": result.reasoning}
    candidate.enriched_at = datetime.now(timezone.utc)
    candidate.last_enrichment_error = None

    if not result.is_relevant:
        return "dismissed"
    if result.confidence >= threshold:
        candidate_store.promote(db, candidate, source="auto-import")
        log.info("Auto-imported candidate %d (%.2f)", candidate.id, result.confidence)
        return "imported"
    return "needs_review"


async def enrich(
    db: Session,
    owner_id: int,
    candidate_ids: list[int],
    scorer: CandidateScorer,
    *,
    event_context: str | None = None,
    scrape_domain: bool = False,
    auto_import_threshold: float | None = None,
) -> dict:
    """Score and merge a batch. Returns {enriched, imported, dismissed, needs_review, failed}."""
    threshold = settings.auto_import_threshold if auto_import_threshold is None else auto_import_threshold
    counts = {"enriched": 0, "imported": 0, "dismissed": 0, "needs_review": 0, "failed": 0}
    if not candidate_ids:
        return counts

    rows = db.query(SupplierCandidate).filter(SupplierCandidate.id.in_(candidate_ids)).all()
    if any(c.owner_id != owner_id for c in rows):
        raise ForbiddenError("Candidate belongs to another owner")
    pending = [c for c in rows if c.status == CandidateStatus.NEW and c.enriched_at is None]
    if not pending:
        return counts

    summaries: dict[int, str | None] = {}
    if scrape_domain:
        fetched = await asyncio.gather(*[homepage_summary(c.domain) for c in pending])
        summaries = {c.id: s for c, s in zip(pending, fetched)}

    inputs = [build_input(c, summaries.get(c.id)) for c in pending]
    sem = asyncio.Semaphore(settings.enrichment_concurrency)
    chunk_results = await asyncio.gather(*[
        _score_chunk(scorer, chunk, event_context or "", sem)
        for chunk in _chunks(inputs, settings.enrichment_batch_size)
    ])
    results: dict[int, ScorerResult | ScorerError] = {}
    for r in chunk_results:
        results.update(r)

    for candidate in pending:
        result = results.get(candidate.id) or ScorerError("no result")
        if isinstance(result, ScorerError):
            candidate.last_enrichment_error = result.message
            counts["failed"] += 1
            continue
        outcome = _merge(db, candidate, result, threshold)
        counts["enriched"] += 1
        counts[outcome] += 1

    db.commit()
    log.info(
        "Enrichment for owner %d: %d enriched, %d imported, %d needs review, %d failed",
        owner_id, counts["enriched"], counts["imported"], counts["needs_review"], counts["failed"],
    )
    return counts


async def run_enrichment_for_run(db: Session, run_id: int, owner_id: int,
                                 scorer: CandidateScorer, *, scrape_domain: bool = False) -> dict:
    """Enrich every unenriched NEW candidate of the owner after a completed scan."""
    run = db.get(BackfillRun, run_id)
    if run is None:
        raise NotFoundError("Backfill run not found")
    if run.owner_id != owner_id:
        raise ForbiddenError("Backfill run belongs to another owner")
    if run.status != RunStatus.COMPLETED:
        raise ConflictError("Enrichment starts only after discovery completes")
    if run.enrichment_status == EnrichmentStatus.RUNNING:
        raise ConflictError("Enrichment already running for this run")

    run.enrichment_status = EnrichmentStatus.RUNNING
    db.commit()

    ids = [
        cid for (cid,) in db.query(SupplierCandidate.id).filter(
            SupplierCandidate.owner_id == owner_id,
            SupplierCandidate.status == CandidateStatus.NEW,
            SupplierCandidate.enriched_at.is_(None),
        )
    ]
    context = run.event_context
    if not context:
        owner = db.get(User, owner_id)
        context = owner.event_context if owner else None

    try:
        counts = await enrich(db, owner_id, ids, scorer,
                              event_context=context, scrape_domain=scrape_domain)
    except Exception:
        db.rollback()
        run.enrichment_status = EnrichmentStatus.PENDING
        db.commit()
        raise

    run.enriched_count = (run.enriched_count or 0) + counts["enriched"]
    run.auto_imported_count = (run.auto_imported_count or 0) + counts["imported"]
    run.enrichment_status = EnrichmentStatus.COMPLETED
    db.commit()
    log.info("Run %d enrichment completed", run.id)
    return counts
