"""Claude API client — schema-constrained JSON output via forced tool use.

Two model tiers:
  - fast: claude-haiku-4-5 for high-volume classification (candidate batches)
  - smart: claude-sonnet-4-5 for harder single-item calls

Usage:
    from plannercrm.utils.claude_client import claude_structured
    result = await claude_structured(
        prompt="Classify these contacts...",
        schema=CLASSIFY_SCHEMA,
        system="You classify email contacts for an event planner.",
    )
"""

import logging
from typing import Any

import httpx

from ..config import settings

log = logging.getLogger("plannercrm.claude")

API_URL = "https://api.anthropic.com/v1/messages"
API_VERSION = "2023-06-01"

MODELS = {
    "fast": "claude-haiku-4-5-20251001",
    "smart": "claude-sonnet-4-5-20250929",
}


def _headers(*, cache: bool = False) -> dict:
    h = {
        "x-api-key": settings.anthropic_api_key,
        "anthropic-version": API_VERSION,
        "content-type": "application/json",
    }
    if cache:
        h["anthropic-beta"] = "prompt-caching-2024-07-31"
    return h


async def claude_structured(
    prompt: str,
    schema: dict,
    *,
    system: str = "",
    model_tier: str = "fast",
    max_tokens: int = 2048,
    cache_system: bool = True,
    timeout: float = 30,
) -> dict | None:
    """Call Claude and return the tool input matching `schema`.

    Returns None when no API key is configured, on a non-200 response, or
    when the reply carries no tool_use block. Callers decide whether None
    is an error.
    """
    if not settings.anthropic_api_key:
        log.warning("Claude call skipped: ANTHROPIC_API_KEY not configured")
        return None

    body: dict[str, Any] = {
        "model": MODELS.get(model_tier, MODELS["fast"]),
        "max_tokens": max_tokens,
        "messages": [{"role": "user", "content": prompt}],
        "tools": [
            {
                "name": "structured_output",
                "description": "Return structured data matching the required schema.",
                "input_schema": schema,
            }
        ],
        "tool_choice": {"type": "tool", "name": "structured_output"},
    }
    if system:
        block = {"type": "text", "text": system}
        if cache_system:
            block["cache_control"] = {"type": "ephemeral"}
        body["system"] = [block]

    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            resp = await client.post(API_URL, headers=_headers(cache=cache_system), json=body)
    except httpx.HTTPError as e:
        log.warning(f"Claude structured call failed: {e}")
        return None

    if resp.status_code != 200:
        log.warning(f"Claude API {resp.status_code}: {resp.text[:200]}")
        return None

    for block in resp.json().get("content", []):
        if block.get("type") == "tool_use" and block.get("name") == "structured_output":
            return block.get("input")

    log.warning("Claude structured output: no tool_use block in response")
    return None
