"""
services/signal_lexicon.py — Pipeline status catalog and signal matching

The catalog of vendor pipeline stages, each with the literal phrases that
suggest a vendor relationship has reached it. Status detection reads the
effective view (catalog joined with the owner's overrides).

Business Rules:
- slug is the immutable identity; order is the canonical forward progression
- Catalog rows are seeded idempotently and never deleted
- Per-owner overrides only toggle is_enabled; a missing override means enabled
- Matching is case-insensitive substring; an exclude phrase vetoes the status

Called by: main.py (seed), services/status_detection.py, routers/statuses.py
Depends on: models
"""

import logging

from sqlalchemy.orm import Session

from ..errors import NotFoundError
from ..models import StatusDefinition, StatusOverride

log = logging.getLogger(__name__)

# ── Thread pattern vocabulary ────────────────────────────────────────
FIRST_OUTBOUND = "first-outbound"
REPLY_TO_OUTBOUND = "reply-to-outbound"
BACK_AND_FORTH = "back-and-forth"
AFTER_PREFIX = "after:"

# ── Built-in catalog ─────────────────────────────────────────────────

STATUS_CATALOG = [
    {
        "slug": "needed",
        "name": "Needed",
        "description": "Vendor is needed for this category but not yet contacted.",
        "order": 1,
        "color": "#6B7280",
        "inbound_signals": [],
        "outbound_signals": [],
        "thread_patterns": [],
        "exclude_patterns": [],
    },
    {
        "slug": "shortlisted",
        "name": "Shortlisted",
        "description": "Vendor identified as a potential option but not yet formally contacted.",
        "order": 2,
        "color": "#8B5CF6",
        "inbound_signals": [],
        "outbound_signals": [],
        "thread_patterns": [],
        "exclude_patterns": [],
    },
    {
        "slug": "rfq-sent",
        "name": "RFQ Sent",
        "description": "Planner asked about availability, pricing, or services. Awaiting a reply.",
        "order": 3,
        "color": "#3B82F6",
        "inbound_signals": [],
        "outbound_signals": [
            "quote", "pricing", "proposal", "rates", "availability", "packages",
            "services", "what do you charge", "are you available",
        ],
        "thread_patterns": [FIRST_OUTBOUND],
        "exclude_patterns": [],
    },
    {
        "slug": "quote-received",
        "name": "Quote Received",
        "description": "Vendor provided actual pricing or attached a quote document.",
        "order": 4,
        "color": "#06B6D4",
        "inbound_signals": [
            "$", "per hour", "per day", "rate is", "cost is", "price is", "total is",
            "estimate is", "proposal attached", "here's what we charge", "our pricing",
            "quote attached", "attached is the quote", "quote is attached", "pricing below",
        ],
        "outbound_signals": [],
        "thread_patterns": [REPLY_TO_OUTBOUND, "after:rfq-sent"],
        "exclude_patterns": [
            "will send quote", "quote to follow", "send you pricing",
            "send quote later", "pricing soon",
        ],
    },
    {
        "slug": "negotiating",
        "name": "Negotiating",
        "description": "Back-and-forth about terms, pricing adjustments, or deal specifics.",
        "order": 5,
        "color": "#F59E0B",
        "inbound_signals": [
            "counter", "discount", "best price", "we can do", "final offer",
            "adjusted", "special rate",
        ],
        "outbound_signals": [
            "budget is", "can you do", "lower", "negotiate", "flexibility",
            "discount", "better rate",
        ],
        "thread_patterns": [BACK_AND_FORTH],
        "exclude_patterns": [],
    },
    {
        "slug": "confirmed",
        "name": "Confirmed",
        "description": "Vendor agreed to do the work or committed to the event.",
        "order": 6,
        "color": "#10B981",
        "inbound_signals": [
            "yes we can", "we can do", "we can fulfil", "we can fulfill",
            "we're available", "available on", "confirm", "booked", "reserved",
            "looking forward", "see you on", "you're all set", "count us in",
            "happy to help", "we'd be delighted", "we'll be there",
        ],
        "outbound_signals": [
            "confirm", "proceed", "go ahead", "let's do it", "book", "reserve",
            "we'd like to move forward",
        ],
        "thread_patterns": ["after:quote-received", "after:negotiating"],
        "exclude_patterns": ["can no longer", "unable to", "unfortunately"],
    },
    {
        "slug": "contracted",
        "name": "Contracted",
        "description": "A formal contract has been signed by both parties.",
        "order": 7,
        "color": "#059669",
        "inbound_signals": [
            "contract signed", "agreement attached", "please sign", "docusign",
            "signed copy", "countersigned",
        ],
        "outbound_signals": [
            "signed", "contract attached", "returning the signed", "executed",
        ],
        "thread_patterns": ["after:confirmed"],
        "exclude_patterns": [],
    },
    {
        "slug": "deposit-paid",
        "name": "Deposit Paid",
        "description": "Initial deposit, retainer, or booking fee has been paid.",
        "order": 8,
        "color": "#7C3AED",
        "inbound_signals": [
            "deposit received", "payment received", "thank you for your payment",
            "retainer received",
        ],
        "outbound_signals": [
            "deposit sent", "paid deposit", "payment sent", "transferred", "wired",
        ],
        "thread_patterns": ["after:contracted", "after:confirmed"],
        "exclude_patterns": [],
    },
    {
        "slug": "fulfilled",
        "name": "Fulfilled",
        "description": "Vendor delivered their services; the event has happened.",
        "order": 9,
        "color": "#14B8A6",
        "inbound_signals": [
            "delivered", "completed", "thank you for having us", "hope you enjoyed",
            "great event", "pleasure working with you",
        ],
        "outbound_signals": [
            "thank you for the service", "great job", "wonderful service",
            "appreciate your work",
        ],
        "thread_patterns": ["after:deposit-paid"],
        "exclude_patterns": ["can no longer fulfill", "unable to fulfill"],
    },
    {
        "slug": "paid-in-full",
        "name": "Paid in Full",
        "description": "Final payment made; all financial obligations complete.",
        "order": 10,
        "color": "#22C55E",
        "inbound_signals": [
            "final payment received", "paid in full", "balance cleared", "all settled",
        ],
        "outbound_signals": [
            "final payment", "remaining balance", "full payment sent",
        ],
        "thread_patterns": ["after:fulfilled", "after:deposit-paid"],
        "exclude_patterns": [],
    },
    {
        "slug": "cancelled",
        "name": "Cancelled",
        "description": "Either party withdrew; the booking is no longer happening.",
        "order": 11,
        "color": "#EF4444",
        "inbound_signals": [
            "can no longer", "unable to", "unfortunately we", "have to cancel",
            "backing out", "cannot accommodate", "regret to inform", "apologies but",
            "sorry but we can't", "must decline", "withdraw",
        ],
        "outbound_signals": [
            "have to cancel", "no longer need", "going with another", "decided against",
            "cancelling", "won't be proceeding",
        ],
        "thread_patterns": [],
        "exclude_patterns": [],
    },
]


# ── Matching ─────────────────────────────────────────────────────────


def match_signals(text: str | None, signals: list[str] | None) -> list[str]:
    """Distinct signal phrases found in text, in catalog order."""
    if not text or not signals:
        return []
    lowered = text.lower()
    matched = []
    for phrase in signals:
        p = phrase.lower()
        if p and p in lowered and phrase not in matched:
            matched.append(phrase)
    return matched


def is_excluded(text: str | None, exclude_patterns: list[str] | None) -> bool:
    return bool(match_signals(text, exclude_patterns))


def signals_for(status: StatusDefinition, direction: str) -> list[str]:
    if direction == "inbound":
        return status.inbound_signals or []
    return status.outbound_signals or []


# ── Catalog & overrides ──────────────────────────────────────────────


def seed_statuses(db: Session) -> int:
    """Upsert the built-in catalog. Returns the number of rows inserted."""
    existing = {s.slug: s for s in db.query(StatusDefinition).all()}
    inserted = 0
    for entry in STATUS_CATALOG:
        row = existing.get(entry["slug"])
        if row is None:
            db.add(StatusDefinition(is_system=True, **entry))
            inserted += 1
            continue
        for key, value in entry.items():
            setattr(row, key, value)
    db.commit()
    if inserted:
        log.info("Seeded %d status definitions", inserted)
    return inserted


def _overrides(db: Session, owner_id: int) -> dict[str, bool]:
    rows = db.query(StatusOverride).filter(StatusOverride.owner_id == owner_id).all()
    return {r.slug: r.is_enabled for r in rows}


def list_statuses(db: Session, owner_id: int) -> list[tuple[StatusDefinition, bool]]:
    """Every catalog row with the owner's effective is_enabled flag."""
    overrides = _overrides(db, owner_id)
    rows = db.query(StatusDefinition).order_by(StatusDefinition.order).all()
    return [(row, overrides.get(row.slug, True)) for row in rows]


def effective_statuses(db: Session, owner_id: int) -> list[StatusDefinition]:
    return [row for row, enabled in list_statuses(db, owner_id) if enabled]


def get_status(db: Session, slug: str) -> StatusDefinition | None:
    return db.query(StatusDefinition).filter(StatusDefinition.slug == slug).first()


def set_status_enabled(db: Session, owner_id: int, slug: str, enabled: bool) -> StatusOverride:
    if get_status(db, slug) is None:
        raise NotFoundError(f"Unknown status '{slug}'")
    override = (
        db.query(StatusOverride)
        .filter(StatusOverride.owner_id == owner_id, StatusOverride.slug == slug)
        .first()
    )
    if override is None:
        override = StatusOverride(owner_id=owner_id, slug=slug, is_enabled=enabled)
        db.add(override)
    else:
        override.is_enabled = enabled
    db.commit()
    log.info("Status %s %s for owner %d", slug, "enabled" if enabled else "disabled", owner_id)
    return override
