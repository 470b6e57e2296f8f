"""Status catalog API — pipeline stages and per-owner enable/disable."""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..database import get_db
from ..dependencies import require_user
from ..models import User
from ..schemas.statuses import StatusConfigRequest
from ..services import signal_lexicon

router = APIRouter(tags=["statuses"])


@router.get("/api/statuses")
def api_list_statuses(
    user: User = Depends(require_user),
    db: Session = Depends(get_db),
):
    return {
        "items": [
            {
                "slug": s.slug,
                "name": s.name,
                "description": s.description,
                "order": s.order,
                "color": s.color,
                "inbound_signals": s.inbound_signals or [],
                "outbound_signals": s.outbound_signals or [],
                "thread_patterns": s.thread_patterns or [],
                "exclude_patterns": s.exclude_patterns or [],
                "is_system": s.is_system,
                "is_enabled": enabled,
            }
            for s, enabled in signal_lexicon.list_statuses(db, user.id)
        ]
    }


@router.patch("/api/statuses/{slug}/config")
def api_configure_status(
    slug: str,
    body: StatusConfigRequest,
    user: User = Depends(require_user),
    db: Session = Depends(get_db),
):
    override = signal_lexicon.set_status_enabled(db, user.id, slug, body.is_enabled)
    return {"slug": override.slug, "is_enabled": override.is_enabled}
