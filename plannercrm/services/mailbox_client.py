"""Mailbox provider adapter — history paging and message fetch over Gmail REST.

Usage:
    from plannercrm.services.mailbox_client import GmailClient
    client = GmailClient(user.access_token)
    page = await client.list_history_page(user.id, run.cursor, run.scan_since)
    msg = await client.get_message(page.messages[0].id)

429, rate-limit 403s, 5xx and timeouts surface as ProviderError (retryable by
the caller); 401, other 403s and other client errors as ProviderFatalError.
A listed message that is gone by the time it is fetched (404) is skipped.
"""

import asyncio
import base64
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

import httpx

from ..errors import ProviderError, ProviderFatalError, ProviderNotFoundError
from . import email_utils

log = logging.getLogger("plannercrm.mailbox")

GMAIL_BASE = "https://gmail.googleapis.com/gmail/v1/users/me"

MAX_RETRIES = 2
BACKOFF_BASE = 2  # seconds, exponential: 2, 4

# 403 reasons Gmail uses for throttling rather than for denied access
RATE_LIMIT_REASONS = frozenset({"rateLimitExceeded", "userRateLimitExceeded"})


@dataclass
class MailboxMessage:
    id: str
    thread_id: str
    from_email: str
    sent_at: datetime
    direction: str  # inbound | outbound
    from_name: str | None = None
    to: list[str] = field(default_factory=list)
    subject: str = ""
    body: str = ""

    @property
    def recipient_emails(self) -> list[str]:
        out = []
        for raw in self.to:
            addr = email_utils.extract_email(raw)
            if addr and addr not in out:
                out.append(addr)
        return out


@dataclass
class HistoryPage:
    messages: list[MailboxMessage]
    next_cursor: str | None
    has_more: bool


class MailboxClient:
    """Contract every mailbox provider implements."""

    async def list_history_page(
        self,
        owner_id: int,
        cursor: str | None,
        older_than: datetime,
        *,
        sent_only: bool = True,
        page_size: int = 30,
    ) -> HistoryPage:
        """One page of messages dated after the `older_than` cutoff.

        The cutoff is the oldest point the scan reaches back to; nothing
        before it is ever returned.
        """
        raise NotImplementedError

    async def get_message(self, message_id: str) -> MailboxMessage:
        raise NotImplementedError


# ── MIME decoding ────────────────────────────────────────────────────


def _decode_base64url(data: str) -> str:
    padded = data + "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(padded).decode("utf-8", errors="replace")


def extract_body(payload: dict) -> str:
    """Prefer text/plain, then text/html, then recurse into nested parts."""
    body = payload.get("body") or {}
    if body.get("data"):
        return _decode_base64url(body["data"])

    parts = payload.get("parts") or []
    for mime in ("text/plain", "text/html"):
        for part in parts:
            data = (part.get("body") or {}).get("data")
            if part.get("mimeType") == mime and data:
                text = _decode_base64url(data)
                return email_utils.strip_html(text) if mime == "text/html" else text
    for part in parts:
        if part.get("parts"):
            nested = extract_body(part)
            if nested:
                return nested
    return ""


def parse_gmail_message(data: dict) -> MailboxMessage:
    payload = data.get("payload") or {}
    headers = {h["name"].lower(): h.get("value", "") for h in payload.get("headers", [])}

    sender = headers.get("from", "")
    recipients = []
    for name in ("to", "cc", "bcc"):
        recipients.extend(email_utils.split_recipients(headers.get(name, "")))

    internal_ms = int(data.get("internalDate") or 0)
    direction = "outbound" if "SENT" in (data.get("labelIds") or []) else "inbound"

    return MailboxMessage(
        id=data["id"],
        thread_id=data.get("threadId") or data["id"],
        from_email=email_utils.extract_email(sender) or "",
        from_name=email_utils.extract_display_name(sender),
        to=recipients,
        subject=headers.get("subject", ""),
        body=extract_body(payload),
        sent_at=datetime.fromtimestamp(internal_ms / 1000, tz=timezone.utc),
        direction=direction,
    )


def _is_rate_limited(resp: httpx.Response) -> bool:
    """True for a 403 whose error reasons are Gmail quota throttling."""
    try:
        body = resp.json()
    except ValueError:
        return False
    if not isinstance(body, dict):
        return False
    error = body.get("error") if isinstance(body.get("error"), dict) else {}
    reasons = {e.get("reason") for e in error.get("errors") or [] if isinstance(e, dict)}
    reasons.add(body.get("reason"))
    return bool(reasons & RATE_LIMIT_REASONS)


class GmailClient(MailboxClient):
    """Gmail REST client with bounded retry on 429 / 5xx."""

    def __init__(self, access_token: str, *, timeout: float = 60,
                 max_retries: int = MAX_RETRIES,
                 transport: httpx.AsyncBaseTransport | None = None):
        self.timeout = timeout
        self.max_retries = max_retries
        self._transport = transport
        self._headers = {"Authorization": f"Bearer {access_token}"}

    async def list_history_page(self, owner_id, cursor, older_than, *,
                                sent_only=True, page_size=30) -> HistoryPage:
        after = int(older_than.timestamp())
        query = f"in:sent after:{after}" if sent_only else f"after:{after}"
        params = {"q": query, "maxResults": page_size}
        if cursor:
            params["pageToken"] = cursor

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            listing = await self._get(client, f"{GMAIL_BASE}/messages", params)
            refs = listing.get("messages") or []
            fetched = await asyncio.gather(*[self._fetch_listed(client, ref["id"]) for ref in refs])

        messages = [parse_gmail_message(m) for m in fetched if m is not None]
        next_cursor = listing.get("nextPageToken")
        log.debug("Gmail page for owner %s: %d messages, more=%s",
                  owner_id, len(messages), bool(next_cursor))
        return HistoryPage(messages=messages, next_cursor=next_cursor,
                           has_more=bool(next_cursor))

    async def get_message(self, message_id: str) -> MailboxMessage:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            data = await self._get(client, f"{GMAIL_BASE}/messages/{message_id}",
                                   {"format": "full"})
        return parse_gmail_message(data)

    async def _fetch_listed(self, client: httpx.AsyncClient, message_id: str) -> dict | None:
        try:
            return await self._get(client, f"{GMAIL_BASE}/messages/{message_id}", {"format": "full"})
        except ProviderNotFoundError:
            log.info("Gmail message %s deleted since listing, skipping", message_id)
            return None

    # ── Internal retry logic ────────────────────────────────────────

    async def _get(self, client: httpx.AsyncClient, url: str, params: dict) -> dict:
        last_error = "no attempts"
        for attempt in range(self.max_retries + 1):
            try:
                resp = await client.get(url, params=params, headers=self._headers)
            except (httpx.TimeoutException, httpx.TransportError) as e:
                last_error = f"connection error: {e}"
                log.warning("Gmail connection error (attempt %d): %s", attempt + 1, e)
            else:
                if resp.status_code == 200:
                    return resp.json()
                throttled = resp.status_code == 403 and _is_rate_limited(resp)
                if resp.status_code in (401, 403) and not throttled:
                    raise ProviderFatalError(f"Gmail rejected credentials ({resp.status_code})")
                if resp.status_code == 404:
                    raise ProviderNotFoundError(f"Gmail 404: {url}")
                if throttled or resp.status_code == 429 or resp.status_code >= 500:
                    last_error = f"Gmail {resp.status_code}"
                    log.warning("Gmail %d (attempt %d)", resp.status_code, attempt + 1)
                else:
                    raise ProviderFatalError(f"Gmail {resp.status_code}: {resp.text[:300]}")
            if attempt < self.max_retries:
                await asyncio.sleep(BACKOFF_BASE ** (attempt + 1))
        raise ProviderError(last_error)
