"""Background scheduler — drives discovery and proposal housekeeping.

Runs one tick every `scheduler_interval_seconds`. Each tick:
  - Backfill: advances every PENDING/RUNNING run by one page
  - Enrichment: scores candidates for runs whose discovery just completed
  - Proposals: expires past-due pending proposals
  - Mailbox: polls owners flagged by the push-notification hook

Jobs are isolated; one failing job rolls back and the rest still run.
"""

import asyncio
import logging

from .config import settings
from .database import SessionLocal
from .dependencies import get_scorer
from .models import BackfillRun, EnrichmentStatus, RunStatus, User
from .services import backfill, enrichment, mailbox_sync, proposals
from .services.mailbox_client import GmailClient, MailboxClient

log = logging.getLogger(__name__)


def _client_for(user: User) -> MailboxClient | None:
    if not user.mailbox_connected or not user.access_token:
        return None
    return GmailClient(user.access_token, timeout=settings.provider_timeout_seconds)


async def start_scheduler():
    """Launch the background scheduler loop. Call once on app startup."""
    log.info(f"Background scheduler started, tick every {settings.scheduler_interval_seconds}s")

    # Let the app finish booting before the first tick
    await asyncio.sleep(10)

    while True:
        try:
            await _scheduler_tick()
        except Exception as e:
            log.error(f"Scheduler tick error: {e}")
        await asyncio.sleep(settings.scheduler_interval_seconds)


async def _advance_backfill_runs(db) -> int:
    runs = db.query(BackfillRun).filter(BackfillRun.status.in_(RunStatus.ACTIVE)).all()
    advanced = 0
    for run in runs:
        owner = db.get(User, run.owner_id)
        client = _client_for(owner) if owner else None
        if client is None:
            log.debug(f"Backfill run {run.id}: owner has no connected mailbox, skipping")
            continue
        try:
            await backfill.tick(db, run.id, run.owner_id, client)
            advanced += 1
        except Exception as e:
            log.error(f"Backfill tick error for run {run.id}: {e}")
            db.rollback()
    return advanced


async def _enrich_completed_runs(db) -> int:
    runs = (
        db.query(BackfillRun)
        .filter(BackfillRun.status == RunStatus.COMPLETED,
                BackfillRun.enrichment_status == EnrichmentStatus.PENDING)
        .all()
    )
    for run in runs:
        try:
            await enrichment.run_enrichment_for_run(db, run.id, run.owner_id, get_scorer())
        except Exception as e:
            log.error(f"Enrichment error for run {run.id}: {e}")
            db.rollback()
    return len(runs)


async def _poll_requested_mailboxes(db) -> int:
    owners = db.query(User).filter(User.poll_requested_at.isnot(None)).all()
    polled = 0
    for owner in owners:
        client = _client_for(owner)
        if client is None:
            continue
        try:
            await mailbox_sync.poll_mailbox(db, owner, client)
            polled += 1
        except Exception as e:
            log.error(f"Mailbox poll error for {owner.email}: {e}")
            db.rollback()
    return polled


async def _scheduler_tick():
    """Run every job once."""
    db = SessionLocal()
    try:
        for name, job in (
            ("backfill", _advance_backfill_runs),
            ("enrichment", _enrich_completed_runs),
            ("mailbox poll", _poll_requested_mailboxes),
        ):
            try:
                await job(db)
            except Exception as e:
                log.error(f"Scheduler {name} job error: {e}")
                db.rollback()

        try:
            proposals.expire_old_proposals(db)
        except Exception as e:
            log.error(f"Proposal expiry error: {e}")
            db.rollback()
    finally:
        db.close()
