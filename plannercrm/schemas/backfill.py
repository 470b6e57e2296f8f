"""schemas/backfill.py — Pydantic models for backfill run endpoints."""

from __future__ import annotations

from pydantic import BaseModel, Field


class StartRunRequest(BaseModel):
    timeframe_months: int = Field(default=6, ge=1, le=24)
    event_context: str | None = Field(default=None, max_length=2000)


class EnrichRunRequest(BaseModel):
    scrape_domain: bool = False


class TickResponse(BaseModel):
    done: bool
    scanned: int
    discovered: int
    created: int
    next_cursor: str | None = None
    status: str
    error: str | None = None
