"""
dependencies.py — Shared FastAPI Dependencies

Reusable dependency functions for authentication and for the external
collaborators (mailbox client, scorer). All routers import from here
instead of building their own, so tests can swap them via
app.dependency_overrides.

Business Rules:
- get_user returns None if not logged in (non-throwing)
- require_user raises 401 if not logged in, 403 if deactivated
- get_mailbox_client raises 400 if the owner has no connected mailbox

Called by: all routers
Depends on: models, database, config, services/mailbox_client.py, services/scorer.py
"""

import logging

from fastapi import Depends, HTTPException, Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .config import settings
from .database import get_db
from .models import User
from .services.mailbox_client import GmailClient, MailboxClient
from .services.scorer import CandidateScorer, ClaudeScorer

log = logging.getLogger(__name__)


# ── Authentication ────────────────────────────────────────────────────


def get_user(request: Request, db: Session) -> User | None:
    """Return current user from session, or None if not logged in."""
    uid = request.session.get("user_id")
    if not uid:
        return None
    try:
        return db.get(User, uid)
    except SQLAlchemyError:
        request.session.clear()
        return None


def require_user(request: Request, db: Session = Depends(get_db)) -> User:
    """Dependency: raises 401 if no authenticated user, 403 if deactivated."""
    user = get_user(request, db)
    if not user:
        raise HTTPException(401, "Not authenticated")
    if not getattr(user, "is_active", True):
        request.session.clear()
        raise HTTPException(403, "Account deactivated")
    return user


# ── External collaborators ────────────────────────────────────────────


def get_mailbox_client(user: User = Depends(require_user)) -> MailboxClient:
    if not user.mailbox_connected or not user.access_token:
        raise HTTPException(400, "Mailbox not connected")
    return GmailClient(user.access_token, timeout=settings.provider_timeout_seconds)


def get_scorer() -> CandidateScorer:
    return ClaudeScorer(timeout=settings.scorer_timeout_seconds)
