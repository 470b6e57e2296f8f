"""schemas/candidates.py — Pydantic models for supplier candidate review."""

from __future__ import annotations

from pydantic import BaseModel, Field


class AcceptCandidateRequest(BaseModel):
    supplier_name: str | None = Field(default=None, max_length=255)
    categories: list[str] | None = None
    primary_category: str | None = None


class BulkCandidateRequest(BaseModel):
    ids: list[int] = Field(..., min_length=1, max_length=100)


class MergeCandidateRequest(BaseModel):
    supplier_id: int


class EnrichCandidatesRequest(BaseModel):
    ids: list[int] = Field(..., min_length=1, max_length=500)
    scrape_domain: bool = False
    auto_import_threshold: float | None = Field(default=None, ge=0, le=1)
