"""Backfill API — start, drive, cancel and enrich mailbox discovery runs."""

import logging

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from ..config import settings
from ..database import get_db
from ..dependencies import get_mailbox_client, get_scorer, require_user
from ..models import BackfillRun, User
from ..rate_limit import limiter
from ..schemas.backfill import EnrichRunRequest, StartRunRequest, TickResponse
from ..services import backfill, enrichment
from ..services.mailbox_client import MailboxClient
from ..services.scorer import CandidateScorer

router = APIRouter(tags=["backfill"])
log = logging.getLogger(__name__)


def _iso(dt):
    return dt.isoformat() if dt else None


def run_to_dict(run: BackfillRun) -> dict:
    return {
        "id": run.id,
        "status": run.status,
        "timeframe_months": run.timeframe_months,
        "event_context": run.event_context,
        "scan_since": _iso(run.scan_since),
        "cursor": run.cursor,
        "scanned_messages": run.scanned_messages or 0,
        "discovered_contacts": run.discovered_contacts or 0,
        "created_candidates": run.created_candidates or 0,
        "errors_count": run.errors_count or 0,
        "last_error": run.last_error,
        "enrichment_status": run.enrichment_status,
        "enriched_count": run.enriched_count or 0,
        "auto_imported_count": run.auto_imported_count or 0,
        "created_at": _iso(run.created_at),
        "started_at": _iso(run.started_at),
        "completed_at": _iso(run.completed_at),
    }


@router.post("/api/backfill/runs")
def api_start_run(
    body: StartRunRequest,
    user: User = Depends(require_user),
    db: Session = Depends(get_db),
):
    """Start a discovery run. 409 if one is already active."""
    run = backfill.start_run(db, user.id, body.timeframe_months, body.event_context)
    return run_to_dict(run)


@router.get("/api/backfill/runs")
def api_list_runs(
    limit: int = Query(20, ge=1, le=100),
    user: User = Depends(require_user),
    db: Session = Depends(get_db),
):
    return {"items": [run_to_dict(r) for r in backfill.list_runs(db, user.id, limit)]}


@router.get("/api/backfill/runs/active")
def api_active_run(
    user: User = Depends(require_user),
    db: Session = Depends(get_db),
):
    run = backfill.get_active_run(db, user.id)
    return {"run": run_to_dict(run) if run else None}


@router.get("/api/backfill/runs/{run_id}")
def api_get_run(
    run_id: int,
    user: User = Depends(require_user),
    db: Session = Depends(get_db),
):
    return run_to_dict(backfill.get_run(db, run_id, user.id))


@router.post("/api/backfill/runs/{run_id}/tick", response_model=TickResponse)
@limiter.limit(settings.rate_limit_tick)
async def api_tick_run(
    request: Request,
    run_id: int,
    user: User = Depends(require_user),
    client: MailboxClient = Depends(get_mailbox_client),
    db: Session = Depends(get_db),
):
    """Process one page. Poll until done=true."""
    result = await backfill.tick(db, run_id, user.id, client)
    return result.as_dict()


@router.post("/api/backfill/runs/{run_id}/cancel")
def api_cancel_run(
    run_id: int,
    user: User = Depends(require_user),
    db: Session = Depends(get_db),
):
    return run_to_dict(backfill.cancel_run(db, run_id, user.id))


@router.post("/api/backfill/runs/{run_id}/restart")
def api_restart_run(
    run_id: int,
    user: User = Depends(require_user),
    db: Session = Depends(get_db),
):
    return run_to_dict(backfill.restart_run(db, run_id, user.id))


@router.post("/api/backfill/runs/{run_id}/enrich")
async def api_enrich_run(
    run_id: int,
    body: EnrichRunRequest | None = None,
    user: User = Depends(require_user),
    scorer: CandidateScorer = Depends(get_scorer),
    db: Session = Depends(get_db),
):
    """Enrich the owner's pending candidates once discovery has completed."""
    scrape = body.scrape_domain if body else False
    counts = await enrichment.run_enrichment_for_run(db, run_id, user.id, scorer,
                                                     scrape_domain=scrape)
    run = backfill.get_run(db, run_id, user.id)
    return {"run": run_to_dict(run), **counts}
