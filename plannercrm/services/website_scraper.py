"""Website scraper — one-line homepage summary for candidate enrichment."""

import html
import logging
import re

import httpx

from ..http_client import http_redirect
from .email_utils import is_personal_domain

log = logging.getLogger(__name__)

TIMEOUT = 10
MAX_SUMMARY = 300

_TITLE_RE = re.compile(r"<title[^>]*>(.*?)</title>", re.IGNORECASE | re.DOTALL)
_META_DESC_RE = re.compile(
    r"<meta[^>]+name=[\"'](?:description|og:description)[\"'][^>]*content=[\"'](.*?)[\"']",
    re.IGNORECASE | re.DOTALL,
)


async def _fetch_page(client: httpx.AsyncClient, url: str) -> str | None:
    """Fetch a single page, return text content or None."""
    try:
        r = await client.get(url, timeout=TIMEOUT)
        if r.status_code == 200 and "text" in r.headers.get("content-type", ""):
            return r.text[:500_000]  # Cap at 500KB
    except httpx.HTTPError as e:
        log.debug(f"Homepage fetch failed for {url}: {e}")
    return None


def summarize_html(page: str) -> str | None:
    parts = []
    title = _TITLE_RE.search(page)
    if title:
        parts.append(" ".join(html.unescape(title.group(1)).split()))
    desc = _META_DESC_RE.search(page)
    if desc:
        parts.append(" ".join(html.unescape(desc.group(1)).split()))
    summary = " - ".join(p for p in parts if p)
    return summary[:MAX_SUMMARY] or None


async def homepage_summary(domain: str, client: httpx.AsyncClient | None = None) -> str | None:
    """Title + meta description of https://<domain>/. None for personal domains."""
    if not domain or is_personal_domain(domain):
        return None
    page = await _fetch_page(client or http_redirect, f"https://{domain}/")
    return summarize_html(page) if page else None
