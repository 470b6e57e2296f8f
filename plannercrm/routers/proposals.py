"""Proposals API — pending status proposals and threads awaiting a project link."""

import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..database import get_db
from ..dependencies import require_user
from ..models import StatusProposal, User
from ..schemas.proposals import LinkThreadRequest, ResolveProposalRequest
from ..services import proposals, thread_linker

router = APIRouter(tags=["proposals"])
log = logging.getLogger(__name__)


def proposal_to_dict(p: StatusProposal) -> dict:
    return {
        "id": p.id,
        "project_id": p.project_id,
        "project_name": p.project.name if p.project else None,
        "supplier_id": p.supplier_id,
        "supplier_name": p.supplier.name if p.supplier else None,
        "status": p.status,
        "from_status": p.from_status,
        "to_status": p.to_status,
        "confidence": p.confidence,
        "matched_signals": p.matched_signals or [],
        "reasoning": p.reasoning,
        "message_id": p.message_id,
        "thread_id": p.thread_id,
        "created_at": p.created_at.isoformat() if p.created_at else None,
        "expires_at": p.expires_at.isoformat() if p.expires_at else None,
        "resolved_at": p.resolved_at.isoformat() if p.resolved_at else None,
    }


@router.get("/api/proposals")
def api_list_proposals(
    user: User = Depends(require_user),
    db: Session = Depends(get_db),
):
    return {"items": [proposal_to_dict(p) for p in proposals.list_pending(db, user.id)]}


@router.get("/api/proposals/count")
def api_count_proposals(
    user: User = Depends(require_user),
    db: Session = Depends(get_db),
):
    pending = proposals.count_pending(db, user.id)
    threads = thread_linker.count_threads_needing_link(db, user.id)
    return {"proposals": pending, "threads": threads, "total": pending + threads}


@router.post("/api/proposals/{proposal_id}/resolve")
def api_resolve_proposal(
    proposal_id: int,
    body: ResolveProposalRequest,
    user: User = Depends(require_user),
    db: Session = Depends(get_db),
):
    """Accept commits the status change; reject just closes the proposal."""
    return proposal_to_dict(proposals.resolve(db, user.id, proposal_id, body.action))


@router.get("/api/proposals/threads")
def api_threads_needing_link(
    limit: int = Query(50, ge=1, le=200),
    user: User = Depends(require_user),
    db: Session = Depends(get_db),
):
    items = thread_linker.threads_needing_link(db, user.id, limit)
    return {
        "items": [
            {
                **t,
                "matches": [
                    {"project_id": m.project_id, "project_name": m.project_name,
                     "score": m.score, "match_reasons": m.reasons}
                    for m in t["matches"]
                ],
            }
            for t in items
        ]
    }


@router.post("/api/proposals/threads/{thread_id}/link")
def api_link_thread(
    thread_id: int,
    body: LinkThreadRequest,
    user: User = Depends(require_user),
    db: Session = Depends(get_db),
):
    thread = thread_linker.link_thread(db, user.id, thread_id, body.project_id)
    return {"thread_id": thread.id, "project_id": thread.linked_project_id, "status": "linked"}


@router.post("/api/proposals/threads/{thread_id}/dismiss")
def api_dismiss_thread(
    thread_id: int,
    user: User = Depends(require_user),
    db: Session = Depends(get_db),
):
    thread = thread_linker.dismiss_thread(db, user.id, thread_id)
    return {"thread_id": thread.id, "status": "dismissed"}
