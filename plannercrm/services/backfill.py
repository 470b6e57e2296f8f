"""
services/backfill.py — Resumable mailbox backfill run state machine

A run scans the owner's sent mail back to `scan_since`, one bounded page per
tick, recording each recipient as a supplier candidate. All progress (cursor,
counters) is persisted after every tick, so ticks resume across restarts.

Business Rules:
- At most one PENDING/RUNNING run per owner, enforced by the unique
  active_owner_id column at insert time (IntegrityError -> ConflictError)
- PENDING -> RUNNING on the first successful tick; COMPLETED when the
  provider reports no further pages; FAILED after 3 consecutive retryable
  failures or on the first fatal one; CANCELLED on user request
- A tick on a terminal run is a no-op returning done=True
- The page is fetched in full before any write, so a failed tick leaves the
  cursor unchanged and counts nothing
- A failure while processing a fetched page rolls the page back and counts
  as a retryable tick failure
- Only outbound mail is harvested: the owner's recipients (To/Cc/Bcc), never
  inbound senders
- Cancel keeps every candidate already created

Called by: routers/backfill.py, scheduler.py
Depends on: services/candidate_store.py, services/mailbox_sync.py, services/mailbox_client.py
"""

import asyncio
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..config import settings
from ..errors import ConflictError, ForbiddenError, NotFoundError, ProviderError, ProviderFatalError
from ..models import BackfillRun, EnrichmentStatus, RunStatus, User
from . import candidate_store, mailbox_sync
from .email_utils import extract_display_name, extract_email, extract_meaningful_content, normalize_email
from .mailbox_client import HistoryPage, MailboxClient

log = logging.getLogger(__name__)

MIN_TIMEFRAME_MONTHS = 1
MAX_TIMEFRAME_MONTHS = 24
DAYS_PER_MONTH = 30


@dataclass
class TickResult:
    done: bool
    scanned: int
    discovered: int
    created: int
    next_cursor: str | None
    status: str
    error: str | None = None

    def as_dict(self) -> dict:
        return asdict(self)


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ── Lifecycle ────────────────────────────────────────────────────────


def get_run(db: Session, run_id: int, owner_id: int) -> BackfillRun:
    run = db.get(BackfillRun, run_id)
    if run is None:
        raise NotFoundError("Backfill run not found")
    if run.owner_id != owner_id:
        raise ForbiddenError("Backfill run belongs to another owner")
    return run


def get_active_run(db: Session, owner_id: int) -> BackfillRun | None:
    return db.query(BackfillRun).filter(BackfillRun.active_owner_id == owner_id).first()


def list_runs(db: Session, owner_id: int, limit: int = 20) -> list[BackfillRun]:
    return (
        db.query(BackfillRun)
        .filter(BackfillRun.owner_id == owner_id)
        .order_by(BackfillRun.created_at.desc(), BackfillRun.id.desc())
        .limit(limit)
        .all()
    )


def _commit_active(db: Session, owner_id: int) -> None:
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError("A backfill run is already active for this owner")


def start_run(
    db: Session,
    owner_id: int,
    timeframe_months: int | None = None,
    event_context: str | None = None,
) -> BackfillRun:
    months = timeframe_months or settings.backfill_default_timeframe_months
    if not MIN_TIMEFRAME_MONTHS <= months <= MAX_TIMEFRAME_MONTHS:
        raise ValueError(f"timeframe_months must be {MIN_TIMEFRAME_MONTHS}-{MAX_TIMEFRAME_MONTHS}")
    if get_active_run(db, owner_id) is not None:
        raise ConflictError("A backfill run is already active for this owner")

    if event_context is None:
        owner = db.get(User, owner_id)
        event_context = owner.event_context if owner else None

    now = _now()
    run = BackfillRun(
        owner_id=owner_id,
        active_owner_id=owner_id,
        status=RunStatus.PENDING,
        timeframe_months=months,
        event_context=event_context,
        scan_since=now - timedelta(days=months * DAYS_PER_MONTH),
        enrichment_status=EnrichmentStatus.PENDING,
        created_at=now,
    )
    db.add(run)
    _commit_active(db, owner_id)
    log.info("Backfill run %d started for owner %d (%d months)", run.id, owner_id, months)
    return run


def _finish(run: BackfillRun, status: str) -> None:
    run.status = status
    run.active_owner_id = None
    run.completed_at = _now()


def cancel_run(db: Session, run_id: int, owner_id: int) -> BackfillRun:
    run = get_run(db, run_id, owner_id)
    if run.status in RunStatus.ACTIVE:
        _finish(run, RunStatus.CANCELLED)
        db.commit()
        log.info("Backfill run %d cancelled", run.id)
    return run


def restart_run(db: Session, run_id: int, owner_id: int) -> BackfillRun:
    """Re-open a FAILED or CANCELLED run from the first page."""
    run = get_run(db, run_id, owner_id)
    if run.status not in (RunStatus.FAILED, RunStatus.CANCELLED):
        raise ConflictError(f"Cannot restart a {run.status.lower()} run")
    if get_active_run(db, owner_id) is not None:
        raise ConflictError("A backfill run is already active for this owner")
    run.status = RunStatus.PENDING
    run.active_owner_id = owner_id
    run.cursor = None
    run.consecutive_failures = 0
    run.last_error = None
    run.completed_at = None
    _commit_active(db, owner_id)
    log.info("Backfill run %d restarted", run.id)
    return run


# ── Tick ─────────────────────────────────────────────────────────────


def _record_failure(db: Session, run: BackfillRun, message: str, *, fatal: bool) -> TickResult:
    run.errors_count = (run.errors_count or 0) + 1
    run.consecutive_failures = (run.consecutive_failures or 0) + 1
    run.last_error = message
    if fatal or run.consecutive_failures >= settings.backfill_max_consecutive_failures:
        _finish(run, RunStatus.FAILED)
        log.error("Backfill run %d failed: %s", run.id, message)
    else:
        log.warning("Backfill run %d tick failed (%d in a row): %s",
                    run.id, run.consecutive_failures, message)
    db.commit()
    return TickResult(
        done=run.status == RunStatus.FAILED,
        scanned=0, discovered=0, created=0,
        next_cursor=run.cursor, status=run.status, error=message,
    )


def _process_page(db: Session, owner_id: int, page: HistoryPage) -> tuple[set[str], int]:
    """Record every recipient of the page's outbound mail and ingest each message."""
    owner = db.get(User, owner_id)
    own_address = normalize_email(owner.email)
    discovered: set[str] = set()
    created = 0

    for msg in page.messages:
        if msg.direction == "outbound":
            context = {
                "subject": msg.subject,
                "content": extract_meaningful_content(msg.body),
                "date": msg.sent_at.isoformat(),
            }
            seen_in_msg: set[str] = set()
            for raw in msg.to:
                address = extract_email(raw)
                if not address or address == own_address or address in seen_in_msg:
                    continue
                seen_in_msg.add(address)
                _, is_new = candidate_store.record_sighting(
                    db, owner_id, address, extract_display_name(raw),
                    seen_at=msg.sent_at, context=context,
                )
                discovered.add(address)
                created += int(is_new)
        mailbox_sync.ingest_message(db, owner, msg)
    return discovered, created


async def tick(db: Session, run_id: int, owner_id: int, client: MailboxClient) -> TickResult:
    """Advance a run by one page. Safe to call repeatedly; never concurrently for one run."""
    run = get_run(db, run_id, owner_id)
    if run.status in RunStatus.TERMINAL:
        return TickResult(True, 0, 0, 0, run.cursor, run.status)

    try:
        page = await asyncio.wait_for(
            client.list_history_page(owner_id, run.cursor, run.scan_since,
                                     sent_only=True, page_size=settings.backfill_page_size),
            timeout=settings.provider_timeout_seconds,
        )
    except asyncio.TimeoutError:
        return _record_failure(db, run, "mailbox provider timed out", fatal=False)
    except ProviderFatalError as e:
        return _record_failure(db, run, e.message, fatal=True)
    except ProviderError as e:
        return _record_failure(db, run, e.message, fatal=False)

    # A cancel may have landed while the page was in flight
    db.refresh(run)
    if run.status in RunStatus.TERMINAL:
        return TickResult(True, 0, 0, 0, run.cursor, run.status)

    try:
        discovered, created = _process_page(db, owner_id, page)
    except Exception as e:
        # Nothing from a half-processed page is kept; the cursor stays put
        db.rollback()
        log.exception("Backfill run %d page processing failed", run.id)
        return _record_failure(db, run, f"page processing failed: {e}", fatal=False)

    run.scanned_messages = (run.scanned_messages or 0) + len(page.messages)
    run.discovered_contacts = (run.discovered_contacts or 0) + len(discovered)
    run.created_candidates = (run.created_candidates or 0) + created
    run.consecutive_failures = 0
    run.last_error = None
    run.cursor = page.next_cursor
    if run.status == RunStatus.PENDING:
        run.status = RunStatus.RUNNING
        run.started_at = _now()
        log.info("Backfill run %d running", run.id)
    if not page.has_more:
        _finish(run, RunStatus.COMPLETED)
        log.info("Backfill run %d completed: %d scanned, %d candidates",
                 run.id, run.scanned_messages, run.created_candidates)
    db.commit()

    log.debug("Backfill run %d tick: scanned=%d discovered=%d created=%d",
              run.id, len(page.messages), len(discovered), created)
    return TickResult(
        done=run.status == RunStatus.COMPLETED,
        scanned=len(page.messages),
        discovered=len(discovered),
        created=created,
        next_cursor=run.cursor,
        status=run.status,
    )
