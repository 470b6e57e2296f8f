"""Mailbox API — push notification hook and on-demand polling."""

import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from ..database import get_db
from ..dependencies import get_mailbox_client, require_user
from ..models import User
from ..services import mailbox_sync
from ..services.mailbox_client import MailboxClient

router = APIRouter(tags=["mailbox"])
log = logging.getLogger(__name__)


@router.post("/api/mailbox/notifications")
async def api_push_notification(request: Request, db: Session = Depends(get_db)):
    """Pub/Sub push endpoint. Always 200 so the subscription does not retry."""
    try:
        envelope = await request.json()
    except ValueError:
        envelope = {}
    owner = mailbox_sync.handle_push_notification(db, envelope)
    return {"status": "queued" if owner else "ignored"}


@router.get("/api/mailbox/process-new")
async def api_process_new(
    user: User = Depends(require_user),
    client: MailboxClient = Depends(get_mailbox_client),
    db: Session = Depends(get_db),
):
    return await mailbox_sync.poll_mailbox(db, user, client)
