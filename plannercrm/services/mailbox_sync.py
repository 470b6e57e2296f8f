"""
services/mailbox_sync.py — Message ingestion, live polling and the push hook

Every message seen by the system (backfill page or live poll) goes through
ingest_message, which keeps threads and messages in the database and feeds
status detection.

Business Rules:
- Messages are deduplicated on (owner, provider message id)
- The counterpart is the sender for inbound mail, the recipients for outbound
- Unlinked threads auto-link only on an AUTO decision; dismissed threads
  are never re-surfaced or auto-linked
- The push hook only stamps poll_requested_at; the scheduler polls later
- A poll cut short by max_pages keeps its cursor and resumes the same window

Called by: services/backfill.py, routers/mailbox.py, scheduler.py
Depends on: services/thread_linker.py, services/proposals.py, services/suppliers.py
"""

import asyncio
import base64
import json
import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy.orm import Session

from ..config import settings
from ..errors import ProviderError
from ..models import EmailMessage, EmailThread, Project, User
from . import proposals, thread_linker
from .email_utils import normalize_email
from .mailbox_client import MailboxClient, MailboxMessage
from .suppliers import find_supplier_for_address

log = logging.getLogger(__name__)

INITIAL_POLL_WINDOW = timedelta(days=1)


def _counterparts(owner: User, msg: MailboxMessage) -> list[str]:
    own = normalize_email(owner.email)
    if msg.direction == "inbound":
        candidates = [msg.from_email]
    else:
        candidates = msg.recipient_emails
    return [e for e in (normalize_email(c) for c in candidates) if e and e != own]


def _upsert_thread(db: Session, owner: User, msg: MailboxMessage, participants: list[str]) -> EmailThread:
    thread = (
        db.query(EmailThread)
        .filter(EmailThread.owner_id == owner.id, EmailThread.provider_thread_id == msg.thread_id)
        .first()
    )
    if thread is None:
        thread = EmailThread(
            owner_id=owner.id,
            provider_thread_id=msg.thread_id,
            subject=msg.subject,
            participant_emails=[],
        )
        db.add(thread)
    merged = list(thread.participant_emails or [])
    for email in participants:
        if email not in merged:
            merged.append(email)
    thread.participant_emails = merged
    if not thread.subject and msg.subject:
        thread.subject = msg.subject
    db.flush()
    return thread


def ingest_message(db: Session, owner: User, msg: MailboxMessage) -> EmailMessage | None:
    """Store one provider message and run linking/detection. None if already stored.

    Flushes only; the caller owns the transaction.
    """
    exists = (
        db.query(EmailMessage.id)
        .filter(EmailMessage.owner_id == owner.id, EmailMessage.provider_message_id == msg.id)
        .first()
    )
    if exists:
        return None

    counterparts = _counterparts(owner, msg)
    participants = counterparts + ([normalize_email(msg.from_email)] if msg.direction == "inbound" else [])
    thread = _upsert_thread(db, owner, msg, list(dict.fromkeys(participants)))

    supplier = None
    for address in counterparts:
        supplier = find_supplier_for_address(db, owner.id, address)
        if supplier:
            break

    stored = EmailMessage(
        owner_id=owner.id,
        thread=thread,
        provider_message_id=msg.id,
        direction=msg.direction,
        from_email=normalize_email(msg.from_email),
        to_emails=msg.recipient_emails,
        subject=msg.subject,
        body=msg.body,
        sent_at=msg.sent_at,
        supplier_id=supplier.id if supplier else None,
        project_id=thread.linked_project_id,
    )
    db.add(stored)
    db.flush()

    if supplier is None:
        return stored

    if thread.linked_project_id is None and thread.dismissed_at is None:
        decision = thread_linker.decide(thread_linker.score_thread(db, owner.id, thread))
        if decision.kind == thread_linker.AUTO:
            project = db.get(Project, decision.best.project_id)
            thread_linker.apply_link(db, owner.id, thread, project,
                                     method="AUTO", confidence=decision.best.score)
        return stored

    if thread.linked_project_id is not None:
        proposals.propose_for_message(db, owner.id, stored)
    return stored


async def poll_mailbox(db: Session, owner: User, client: MailboxClient, *,
                       max_pages: int | None = None) -> dict:
    """Ingest both directions of mail newer than the last poll, oldest first.

    The provider lists newest first. When max_pages ends a poll before the
    window is exhausted, the cursor is kept and the next poll resumes the
    same window; last_polled_at only moves once every page has been read.
    """
    max_pages = max_pages or settings.mailbox_poll_max_pages
    if owner.last_polled_at is None:
        owner.last_polled_at = datetime.now(timezone.utc) - INITIAL_POLL_WINDOW
    since = owner.last_polled_at
    cursor = owner.poll_cursor
    exhausted = False
    fetched: list[MailboxMessage] = []
    for _ in range(max_pages):
        try:
            page = await asyncio.wait_for(
                client.list_history_page(owner.id, cursor, since, sent_only=False,
                                         page_size=settings.backfill_page_size),
                timeout=settings.provider_timeout_seconds,
            )
        except asyncio.TimeoutError:
            raise ProviderError("mailbox provider timed out")
        fetched.extend(page.messages)
        cursor = page.next_cursor
        if not page.has_more:
            exhausted = True
            break

    ingested = 0
    for msg in sorted(fetched, key=lambda m: m.sent_at):
        if ingest_message(db, owner, msg) is not None:
            ingested += 1

    seen = [m.sent_at for m in fetched]
    if owner.poll_window_max_at is not None:
        seen.append(owner.poll_window_max_at)
    window_max = max(seen, default=None)
    if exhausted:
        owner.last_polled_at = max(window_max or since, since)
        owner.poll_cursor = None
        owner.poll_window_max_at = None
        owner.poll_requested_at = None
    else:
        # Leave poll_requested_at set so the scheduler picks the window up again
        owner.poll_cursor = cursor
        owner.poll_window_max_at = window_max
        owner.poll_requested_at = owner.poll_requested_at or datetime.now(timezone.utc)
    db.commit()
    log.info("Polled mailbox for owner %d: %d fetched, %d new, complete=%s",
             owner.id, len(fetched), ingested, exhausted)
    return {"fetched": len(fetched), "ingested": ingested, "complete": exhausted}


def handle_push_notification(db: Session, envelope: dict) -> User | None:
    """Decode a Pub/Sub push envelope and flag the mailbox owner for polling."""
    data = ((envelope or {}).get("message") or {}).get("data")
    if not data:
        return None
    try:
        payload = json.loads(base64.b64decode(data + "=" * (-len(data) % 4)))
    except (ValueError, TypeError):
        log.warning("Push notification with undecodable payload ignored")
        return None

    if not isinstance(payload, dict):
        return None
    email = normalize_email(payload.get("emailAddress", ""))
    owner = db.query(User).filter(User.email == email).first() if email else None
    if owner is None:
        log.warning("Push notification for unknown mailbox %r", email)
        return None
    owner.poll_requested_at = datetime.now(timezone.utc)
    if payload.get("historyId"):
        owner.mailbox_history_id = str(payload["historyId"])
    db.commit()
    log.info("Poll requested for owner %d", owner.id)
    return owner
