"""schemas/proposals.py — Pydantic models for proposal and thread-link resolution."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel


class ResolveProposalRequest(BaseModel):
    action: Literal["accept", "reject"]


class LinkThreadRequest(BaseModel):
    project_id: int
