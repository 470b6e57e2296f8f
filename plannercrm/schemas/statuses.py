"""schemas/statuses.py — Pydantic models for the status catalog."""

from pydantic import BaseModel


class StatusConfigRequest(BaseModel):
    is_enabled: bool
