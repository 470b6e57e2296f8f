"""
services/proposals.py — Pending status proposals and their resolution

Business Rules:
- At most one PENDING proposal per (project, supplier); a newer detection
  supersedes the open one (or expires it, if it is already past due)
- Never created below the minimum emission threshold, nor when the
  suggested status equals the current one
- accept commits to_status to the project-supplier and appends history;
  reject has no side effect
- Resolution is a conditional UPDATE on status='PENDING', so the second
  resolve of the same proposal raises StaleProposalError
- Expiry never touches supplier status

Called by: services/mailbox_sync.py, routers/proposals.py, scheduler.py
Depends on: models, services/suppliers.py, services/status_detection.py
"""

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy.orm import Session, joinedload

from ..config import settings
from ..errors import ForbiddenError, NotFoundError, StaleProposalError
from ..models import EmailMessage, Project, ProposalStatus, StatusProposal, pair_key
from . import signal_lexicon
from . import suppliers as supplier_store
from .status_detection import Detection, detect

log = logging.getLogger(__name__)

ACCEPT = "accept"
REJECT = "reject"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _close(proposal: StatusProposal, status: str) -> None:
    proposal.status = status
    proposal.open_pair_key = None
    proposal.resolved_at = _now()


def propose(
    db: Session,
    *,
    project_id: int,
    supplier_id: int,
    detection: Detection,
    message_id: int | None = None,
    thread_id: int | None = None,
) -> StatusProposal | None:
    """Record a detection as the pair's single open proposal. Caller commits."""
    if detection.confidence < settings.proposal_min_confidence:
        return None
    ps = supplier_store.ensure_project_supplier(db, project_id, supplier_id)
    if detection.to_status == ps.status_slug:
        return None

    key = pair_key(project_id, supplier_id)
    now = _now()
    open_ = db.query(StatusProposal).filter(StatusProposal.open_pair_key == key).first()
    if open_ is not None:
        if open_.expires_at <= now:
            _close(open_, ProposalStatus.EXPIRED)
            log.info("Proposal %d expired", open_.id)
        else:
            _close(open_, ProposalStatus.SUPERSEDED)
            log.info("Proposal %d superseded", open_.id)
        db.flush()

    proposal = StatusProposal(
        project_id=project_id,
        supplier_id=supplier_id,
        project_supplier_id=ps.id,
        message_id=message_id,
        thread_id=thread_id,
        open_pair_key=key,
        status=ProposalStatus.PENDING,
        from_status=ps.status_slug,
        to_status=detection.to_status,
        confidence=detection.confidence,
        matched_signals=list(detection.matched_signals),
        reasoning=detection.reasoning,
        created_at=now,
        expires_at=now + timedelta(days=settings.proposal_expiry_days),
    )
    db.add(proposal)
    db.flush()
    log.info(
        "Proposal %d created: project %d supplier %d %s -> %s (%.2f)",
        proposal.id, project_id, supplier_id, proposal.from_status, proposal.to_status,
        proposal.confidence,
    )
    return proposal


def expire_old_proposals(db: Session) -> int:
    now = _now()
    count = (
        db.query(StatusProposal)
        .filter(StatusProposal.status == ProposalStatus.PENDING,
                StatusProposal.expires_at <= now)
        .update(
            {"status": ProposalStatus.EXPIRED, "open_pair_key": None, "resolved_at": now},
            synchronize_session=False,
        )
    )
    db.commit()
    if count:
        log.info("Expired %d stale proposals", count)
    return count


def list_pending(db: Session, owner_id: int) -> list[StatusProposal]:
    expire_old_proposals(db)
    return (
        db.query(StatusProposal)
        .join(Project, StatusProposal.project_id == Project.id)
        .options(joinedload(StatusProposal.project), joinedload(StatusProposal.supplier))
        .filter(Project.owner_id == owner_id, StatusProposal.status == ProposalStatus.PENDING)
        .order_by(StatusProposal.created_at.desc())
        .all()
    )


def count_pending(db: Session, owner_id: int) -> int:
    return (
        db.query(StatusProposal)
        .join(Project, StatusProposal.project_id == Project.id)
        .filter(Project.owner_id == owner_id,
                StatusProposal.status == ProposalStatus.PENDING,
                StatusProposal.expires_at > _now())
        .count()
    )


def get_proposal(db: Session, owner_id: int, proposal_id: int) -> StatusProposal:
    proposal = db.get(StatusProposal, proposal_id)
    if proposal is None:
        raise NotFoundError("Proposal not found")
    if proposal.project.owner_id != owner_id:
        raise ForbiddenError("Proposal belongs to another owner")
    return proposal


def resolve(db: Session, owner_id: int, proposal_id: int, action: str) -> StatusProposal:
    if action not in (ACCEPT, REJECT):
        raise ValueError(f"unknown action: {action}")
    proposal = get_proposal(db, owner_id, proposal_id)
    now = _now()
    new_status = ProposalStatus.ACCEPTED if action == ACCEPT else ProposalStatus.REJECTED

    won = (
        db.query(StatusProposal)
        .filter(StatusProposal.id == proposal_id,
                StatusProposal.status == ProposalStatus.PENDING,
                StatusProposal.expires_at > now)
        .update(
            {"status": new_status, "open_pair_key": None,
             "resolved_at": now, "resolved_by_id": owner_id},
            synchronize_session=False,
        )
    )
    if not won:
        db.rollback()
        raise StaleProposalError("Proposal is expired or already resolved")

    if action == ACCEPT:
        supplier_store.set_project_supplier_status(
            db, proposal.project_supplier, proposal.to_status,
            changed_by=owner_id, proposal_id=proposal.id,
        )
    db.commit()
    db.refresh(proposal)
    log.info("Proposal %d %s by owner %d", proposal.id, new_status.lower(), owner_id)
    return proposal


def propose_for_message(db: Session, owner_id: int, message: EmailMessage) -> StatusProposal | None:
    """Run detection on a stored message against its thread and record the result.

    Needs both a supplier and a project: the message's own project stamp,
    else the thread's linked project. Caller commits.
    """
    thread = message.thread
    project_id = message.project_id or (thread.linked_project_id if thread else None)
    if not project_id or not message.supplier_id:
        return None

    history = (
        db.query(EmailMessage)
        .filter(EmailMessage.thread_id == message.thread_id,
                EmailMessage.sent_at < message.sent_at)
        .order_by(EmailMessage.sent_at)
        .all()
    )
    ps = supplier_store.get_project_supplier(db, project_id, message.supplier_id)
    detection = detect(
        message,
        history,
        signal_lexicon.effective_statuses(db, owner_id),
        from_status=ps.status_slug if ps else None,
    )
    if detection is None:
        return None
    return propose(
        db,
        project_id=project_id,
        supplier_id=message.supplier_id,
        detection=detection,
        message_id=message.id,
        thread_id=message.thread_id,
    )
