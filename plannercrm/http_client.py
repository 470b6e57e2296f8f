"""Shared HTTP client for outbound page fetches (homepage scraping).

Module-level singleton httpx.AsyncClient with connection pooling and
redirect following. Per-request timeout overrides via
http_redirect.get(url, timeout=10).
"""

import httpx

_LIMITS = httpx.Limits(
    max_connections=50,
    max_keepalive_connections=20,
    keepalive_expiry=30,
)

http_redirect = httpx.AsyncClient(
    timeout=30,
    limits=_LIMITS,
    follow_redirects=True,
    headers={"User-Agent": "Mozilla/5.0 (compatible; PlannerCRM/1.0)"},
)


async def close_clients():
    """Shut down the shared client. Called from the app lifespan on shutdown."""
    try:
        await http_redirect.aclose()
    except RuntimeError:
        pass
