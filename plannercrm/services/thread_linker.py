"""
services/thread_linker.py — Thread-to-project matching and the pending-link queue

Business Rules:
- Candidate projects: the owner's projects whose event is not more than
  30 days in the past (or has no date)
- Weighted score, capped at 1.0, with a named reason per contribution:
    shared participant with a project supplier  +0.40
    project name in subject                     +0.35 (fuzzy >= 85: +0.25)
    venue mentioned in subject or body          +0.20
    latest message within 30/90/180 days of the event date  +0.25/+0.15/+0.05
- AUTO when top >= 0.8 and leads the runner-up by >= 0.2; AMBIGUOUS when
  anything scored; otherwise NO_MATCH
- Linked or dismissed threads leave the pending set for good

Called by: services/mailbox_sync.py, routers/proposals.py
Depends on: models, services/proposals.py, thefuzz
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from sqlalchemy.orm import Session
from thefuzz import fuzz

from ..config import settings
from ..errors import ConflictError, ForbiddenError, NotFoundError
from ..models import EmailMessage, EmailThread, Project, ProjectSupplier, Supplier
from . import proposals

log = logging.getLogger(__name__)

AUTO = "AUTO"
AMBIGUOUS = "AMBIGUOUS"
NO_MATCH = "NO_MATCH"

FUZZY_NAME_MIN = 85
PAST_EVENT_GRACE_DAYS = 30


@dataclass
class ProjectMatch:
    project_id: int
    project_name: str
    score: float
    reasons: list[str] = field(default_factory=list)


@dataclass
class LinkDecision:
    kind: str
    matches: list[ProjectMatch]

    @property
    def best(self) -> ProjectMatch | None:
        return self.matches[0] if self.matches else None


def _candidate_projects(db: Session, owner_id: int) -> list[Project]:
    cutoff = datetime.now(timezone.utc) - timedelta(days=PAST_EVENT_GRACE_DAYS)
    return (
        db.query(Project)
        .filter(Project.owner_id == owner_id)
        .filter((Project.event_date.is_(None)) | (Project.event_date >= cutoff))
        .all()
    )


def _supplier_emails_by_project(db: Session, project_ids: list[int]) -> dict[int, set[str]]:
    out: dict[int, set[str]] = {pid: set() for pid in project_ids}
    if not project_ids:
        return out
    rows = (
        db.query(ProjectSupplier.project_id, Supplier.email)
        .join(Supplier, ProjectSupplier.supplier_id == Supplier.id)
        .filter(ProjectSupplier.project_id.in_(project_ids))
        .all()
    )
    for pid, email in rows:
        if email:
            out[pid].add(email.lower())
    return out


def score_project(
    project: Project,
    *,
    subject: str,
    bodies: list[str],
    participants: set[str],
    supplier_emails: set[str],
    latest_at: datetime | None,
) -> ProjectMatch:
    score = 0.0
    reasons = []
    subject_l = (subject or "").lower()

    if participants & supplier_emails:
        score += 0.4
        reasons.append("Supplier already on project")

    name = (project.name or "").strip().lower()
    if name and name in subject_l:
        score += 0.35
        reasons.append(f'Project name "{project.name}" in subject')
    elif name and subject_l and fuzz.partial_ratio(name, subject_l) >= FUZZY_NAME_MIN:
        score += 0.25
        reasons.append(f'Subject resembles project name "{project.name}"')

    venue = (project.venue or "").strip().lower()
    if venue and (venue in subject_l or any(venue in (b or "").lower() for b in bodies)):
        score += 0.2
        reasons.append(f'Venue "{project.venue}" mentioned')

    if project.event_date and latest_at:
        days = abs((project.event_date - latest_at).days)
        for limit, bonus in ((30, 0.25), (90, 0.15), (180, 0.05)):
            if days <= limit:
                score += bonus
                reasons.append(f"Event date within {limit} days")
                break

    return ProjectMatch(project.id, project.name, round(min(score, 1.0), 4), reasons)


def score_thread(db: Session, owner_id: int, thread: EmailThread) -> list[ProjectMatch]:
    """Rank the owner's candidate projects for a thread, best first, zero scores dropped."""
    projects = _candidate_projects(db, owner_id)
    if not projects:
        return []
    emails_by_project = _supplier_emails_by_project(db, [p.id for p in projects])
    messages = thread.messages
    participants = {e.lower() for e in thread.participant_emails or []}
    latest_at = max((m.sent_at for m in messages), default=None)
    bodies = [m.body for m in messages]

    matches = [
        score_project(
            p,
            subject=thread.subject or "",
            bodies=bodies,
            participants=participants,
            supplier_emails=emails_by_project[p.id],
            latest_at=latest_at,
        )
        for p in projects
    ]
    matches = [m for m in matches if m.score > 0]
    matches.sort(key=lambda m: m.score, reverse=True)
    return matches


def decide(matches: list[ProjectMatch]) -> LinkDecision:
    if not matches:
        return LinkDecision(NO_MATCH, [])
    top = matches[0].score
    runner_up = matches[1].score if len(matches) > 1 else 0.0
    if top >= settings.thread_auto_link_threshold and top - runner_up >= settings.thread_auto_link_margin:
        return LinkDecision(AUTO, matches)
    return LinkDecision(AMBIGUOUS, matches)


# ── Pending-link queue ───────────────────────────────────────────────


def _pending_query(db: Session, owner_id: int):
    has_supplier_msg = (
        db.query(EmailMessage.id)
        .filter(EmailMessage.thread_id == EmailThread.id,
                EmailMessage.supplier_id.isnot(None))
        .exists()
    )
    return db.query(EmailThread).filter(
        EmailThread.owner_id == owner_id,
        EmailThread.linked_project_id.is_(None),
        EmailThread.dismissed_at.is_(None),
        has_supplier_msg,
    )


def count_threads_needing_link(db: Session, owner_id: int) -> int:
    return _pending_query(db, owner_id).count()


def threads_needing_link(db: Session, owner_id: int, limit: int = 50) -> list[dict]:
    threads = _pending_query(db, owner_id).order_by(EmailThread.updated_at.desc()).limit(limit).all()
    out = []
    for thread in threads:
        out.append({
            "thread_id": thread.id,
            "subject": thread.subject,
            "participant_emails": thread.participant_emails or [],
            "matches": score_thread(db, owner_id, thread),
        })
    return out


def get_thread(db: Session, owner_id: int, thread_id: int) -> EmailThread:
    thread = db.get(EmailThread, thread_id)
    if thread is None:
        raise NotFoundError("Thread not found")
    if thread.owner_id != owner_id:
        raise ForbiddenError("Thread belongs to another owner")
    return thread


def apply_link(db: Session, owner_id: int, thread: EmailThread, project: Project, *,
               method: str, confidence: float | None) -> EmailThread:
    """Attach thread to project, stamp its messages, and re-run detection. Caller commits."""
    thread.linked_project_id = project.id
    thread.link_method = method
    thread.link_confidence = confidence
    for msg in thread.messages:
        if msg.project_id is None:
            msg.project_id = project.id
    db.flush()

    latest = max((m for m in thread.messages if m.supplier_id), key=lambda m: m.sent_at, default=None)
    if latest is not None:
        proposals.propose_for_message(db, owner_id, latest)
    log.info("Thread %d linked to project %d (%s)", thread.id, project.id, method)
    return thread


def link_thread(db: Session, owner_id: int, thread_id: int, project_id: int) -> EmailThread:
    thread = get_thread(db, owner_id, thread_id)
    if thread.dismissed_at is not None:
        raise ConflictError("Thread was dismissed")
    project = db.get(Project, project_id)
    if project is None:
        raise NotFoundError("Project not found")
    if project.owner_id != owner_id:
        raise ForbiddenError("Project belongs to another owner")
    apply_link(db, owner_id, thread, project, method="USER", confidence=1.0)
    db.commit()
    return thread


def dismiss_thread(db: Session, owner_id: int, thread_id: int) -> EmailThread:
    thread = get_thread(db, owner_id, thread_id)
    if thread.dismissed_at is None:
        thread.dismissed_at = datetime.now(timezone.utc)
        db.commit()
        log.info("Thread %d dismissed", thread.id)
    return thread
