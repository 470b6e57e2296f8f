"""
services/scorer.py — Candidate relevance scorer contract and Claude implementation

Business Rules:
- Failures are per-candidate: classify raises ScorerError, classify_batch
  maps each failed id to a ScorerError instead of raising
- Categories are normalized to slugs from the fixed event taxonomy; unknown
  names are dropped
- Confidence is clamped to 0..1

Called by: services/enrichment.py, dependencies.py
Depends on: utils/claude_client.py
"""

import logging
import re
from dataclasses import dataclass, field

from ..errors import ScorerError
from ..utils.claude_client import claude_structured

log = logging.getLogger(__name__)

CATEGORY_NAMES = [
    "Venue", "Catering", "Bar Service", "Photography", "Videography", "DJ",
    "Live Music", "Officiant", "Planner", "Florist", "Decor", "Lighting",
    "Rentals", "Signage", "Stationery", "Hair Stylist", "Makeup Artist",
    "Dress/Attire", "Jewelry", "Photo Booth", "Entertainment", "Games",
    "Transportation", "Bakery", "Ice Cream", "Coffee", "Food Truck",
    "AV Production", "Live Streaming", "Security", "Valet", "Childcare",
    "Pet Services", "Favors", "Calligraphy", "Travel", "Insurance", "Speakers",
    "Team Building", "Exhibitor", "Registration", "Swag",
]


def name_to_slug(name: str) -> str:
    slug = re.sub(r"\s+", "-", (name or "").strip().lower()).replace("/", "-")
    return re.sub(r"[^a-z0-9-]", "", slug)


CATEGORY_SLUGS = [name_to_slug(n) for n in CATEGORY_NAMES]


@dataclass
class ScorerInput:
    candidate_id: int
    email: str
    domain: str
    display_name: str | None = None
    sample_subjects: list[str] = field(default_factory=list)
    sample_excerpts: list[str] = field(default_factory=list)
    website_summary: str | None = None


@dataclass
class ScorerResult:
    is_relevant: bool
    confidence: float
    suggested_supplier_name: str | None = None
    suggested_categories: list[str] = field(default_factory=list)
    primary_category: str | None = None
    reasoning: str | None = None
    raw: dict | None = None


def normalize_result(item: dict) -> ScorerResult:
    """Coerce a raw scorer payload into a ScorerResult with slug categories."""
    slugs = []
    for name in item.get("categories") or []:
        slug = name_to_slug(name)
        if slug in CATEGORY_SLUGS and slug not in slugs:
            slugs.append(slug)
    primary = name_to_slug(item.get("primary_category") or "")
    if primary not in CATEGORY_SLUGS:
        primary = slugs[0] if slugs else None
    confidence = item.get("confidence")
    if not isinstance(confidence, (int, float)):
        confidence = 0.5
    return ScorerResult(
        is_relevant=item.get("is_relevant") is True,
        confidence=max(0.0, min(1.0, float(confidence))),
        suggested_supplier_name=item.get("suggested_name") or None,
        suggested_categories=slugs,
        primary_category=primary,
        reasoning=item.get("reasoning"),
        raw=item,
    )


class CandidateScorer:
    """Pluggable relevance scorer."""

    async def classify(self, item: ScorerInput, context: str) -> ScorerResult:
        raise NotImplementedError

    async def classify_batch(
        self, items: list[ScorerInput], context: str
    ) -> dict[int, ScorerResult | ScorerError]:
        out: dict[int, ScorerResult | ScorerError] = {}
        for item in items:
            try:
                out[item.candidate_id] = await self.classify(item, context)
            except ScorerError as e:
                out[item.candidate_id] = e
        return out


# ── Claude implementation ────────────────────────────────────────────

SYSTEM_PROMPT = """You classify email contacts for an event planner.

AVAILABLE CATEGORIES (pick from this exact list, can assign multiple per contact):
{categories}

Rules:
- A freelancer using gmail.com can still be a supplier - judge by name and context, not email domain
- Mark is_relevant=false for personal contacts, newsletters, unrelated businesses and marketing senders
- Only mark is_relevant=true if the contact could plausibly provide services for the events described
- Categories must come from the list above
- confidence is 0-1: how sure you are this is a relevant supplier
- Return one result per contact, carrying its index"""

CLASSIFY_SCHEMA = {
    "type": "object",
    "properties": {
        "results": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "index": {"type": "integer"},
                    "suggested_name": {"type": ["string", "null"]},
                    "categories": {"type": "array", "items": {"type": "string"}},
                    "primary_category": {"type": ["string", "null"]},
                    "confidence": {"type": "number"},
                    "is_relevant": {"type": "boolean"},
                    "reasoning": {"type": "string"},
                },
                "required": ["index", "confidence", "is_relevant"],
            },
        }
    },
    "required": ["results"],
}


def _describe(i: int, item: ScorerInput) -> str:
    line = f"{i}. Email: {item.email}, Domain: {item.domain}"
    if item.display_name:
        line += f", Name: {item.display_name}"
    if item.sample_subjects:
        line += "\n   Subjects: " + " | ".join(item.sample_subjects[:5])
    if item.sample_excerpts:
        line += "\n   Excerpts: " + " | ".join(item.sample_excerpts[:3])
    if item.website_summary:
        line += f"\n   Website: {item.website_summary}"
    return line


class ClaudeScorer(CandidateScorer):
    def __init__(self, *, timeout: float = 45, model_tier: str = "fast"):
        self.timeout = timeout
        self.model_tier = model_tier

    async def classify(self, item: ScorerInput, context: str) -> ScorerResult:
        result = (await self.classify_batch([item], context))[item.candidate_id]
        if isinstance(result, ScorerError):
            raise result
        return result

    async def classify_batch(self, items, context):
        if not items:
            return {}
        listing = "\n".join(_describe(i + 1, item) for i, item in enumerate(items))
        prompt = (
            f'USER\'S EVENT TYPES: "{context or "Various events"}"\n\n'
            f"Classify these {len(items)} contacts:\n\n{listing}"
        )
        data = await claude_structured(
            prompt,
            CLASSIFY_SCHEMA,
            system=SYSTEM_PROMPT.format(categories=", ".join(CATEGORY_NAMES)),
            model_tier=self.model_tier,
            timeout=self.timeout,
        )
        if not data:
            err = ScorerError("scorer returned no result")
            return {item.candidate_id: err for item in items}

        out: dict[int, ScorerResult | ScorerError] = {}
        for raw in data.get("results") or []:
            idx = raw.get("index")
            if isinstance(idx, int) and 1 <= idx <= len(items):
                out[items[idx - 1].candidate_id] = normalize_result(raw)
        for item in items:
            if item.candidate_id not in out:
                out[item.candidate_id] = ScorerError("candidate missing from scorer reply")
        return out
