"""
tests/test_mailbox_client.py -- Tests for the Gmail mailbox adapter
Covers: MIME body extraction, message parsing (direction, recipients, date),
history paging query, retry / error classification (quota 403s, deleted messages)
Called by: pytest
Depends on: plannercrm.services.mailbox_client, httpx.MockTransport
"""

import base64
from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from plannercrm.errors import ProviderError, ProviderFatalError, ProviderNotFoundError
from plannercrm.services.mailbox_client import GmailClient, extract_body, parse_gmail_message


def _b64(text: str) -> str:
    return base64.urlsafe_b64encode(text.encode()).decode().rstrip("=")


def _gmail_message(msg_id="m1", labels=("SENT",), body="Hello there"):
    return {
        "id": msg_id,
        "threadId": "t1",
        "labelIds": list(labels),
        "internalDate": "1767225600000",
        "payload": {
            "headers": [
                {"name": "From", "value": "Planner <planner@eventco.com>"},
                {"name": "To", "value": '"Doe, Jane" <jane@bloomandco.com>'},
                {"name": "Cc", "value": "dj@beats.io"},
                {"name": "Subject", "value": "Smith Wedding"},
            ],
            "mimeType": "multipart/alternative",
            "parts": [
                {"mimeType": "text/html", "body": {"data": _b64(f"<p>{body}</p>")}},
                {"mimeType": "text/plain", "body": {"data": _b64(body)}},
            ],
        },
    }


# ── Parsing ──────────────────────────────────────────────────────────


def test_extract_body_prefers_plain_text():
    assert extract_body(_gmail_message()["payload"]) == "Hello there"


def test_extract_body_falls_back_to_html_and_nested_parts():
    payload = {"parts": [{"mimeType": "multipart/related", "parts": [
        {"mimeType": "text/html", "body": {"data": _b64("<div>Quote &amp; terms</div>")}},
    ]}]}
    assert "Quote & terms" in extract_body(payload)


def test_parse_sent_message():
    msg = parse_gmail_message(_gmail_message())
    assert msg.direction == "outbound"
    assert msg.from_email == "planner@eventco.com"
    assert msg.from_name == "Planner"
    assert msg.recipient_emails == ["jane@bloomandco.com", "dj@beats.io"]
    assert msg.subject == "Smith Wedding"
    assert msg.sent_at == datetime(2026, 1, 1, tzinfo=timezone.utc)
    assert msg.thread_id == "t1"


def test_parse_inbound_message():
    assert parse_gmail_message(_gmail_message(labels=("INBOX",))).direction == "inbound"


# ── HTTP ─────────────────────────────────────────────────────────────


def _client(handler, **kwargs):
    return GmailClient("tok", transport=httpx.MockTransport(handler), **kwargs)


@pytest.mark.asyncio
async def test_list_history_page():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if request.url.path.endswith("/messages"):
            return httpx.Response(200, json={"messages": [{"id": "m1"}, {"id": "m2"}],
                                             "nextPageToken": "next"})
        msg_id = request.url.path.rsplit("/", 1)[-1]
        return httpx.Response(200, json=_gmail_message(msg_id))

    since = datetime(2025, 7, 1, tzinfo=timezone.utc)
    page = await _client(handler).list_history_page(1, "cur", since)

    assert [m.id for m in page.messages] == ["m1", "m2"]
    assert page.next_cursor == "next"
    assert page.has_more is True
    listing = seen[0]
    assert listing.url.params["q"] == f"in:sent after:{int(since.timestamp())}"
    assert listing.url.params["pageToken"] == "cur"
    assert listing.headers["Authorization"] == "Bearer tok"


@pytest.mark.asyncio
async def test_last_page_has_no_more():
    def handler(request):
        return httpx.Response(200, json={})

    page = await _client(handler).list_history_page(1, None, datetime.now(timezone.utc),
                                                     sent_only=False)
    assert page.messages == []
    assert page.has_more is False


@pytest.mark.asyncio
async def test_unauthorized_is_fatal():
    def handler(request):
        return httpx.Response(401, json={"error": "invalid_grant"})

    with pytest.raises(ProviderFatalError):
        await _client(handler).get_message("m1")


@pytest.mark.asyncio
async def test_bad_request_is_fatal():
    def handler(request):
        return httpx.Response(400, text="bad query")

    with pytest.raises(ProviderFatalError):
        await _client(handler).get_message("m1")


@pytest.mark.asyncio
async def test_rate_limit_retried_then_succeeds():
    responses = [httpx.Response(429), httpx.Response(200, json=_gmail_message())]

    def handler(request):
        return responses.pop(0)

    with patch("plannercrm.services.mailbox_client.asyncio.sleep", new=AsyncMock()) as sleep:
        msg = await _client(handler, max_retries=2).get_message("m1")
    assert msg.id == "m1"
    sleep.assert_awaited_once_with(2)


def _quota_403(reason="userRateLimitExceeded"):
    return httpx.Response(403, json={"error": {"code": 403, "message": "Rate Limit Exceeded",
                                               "errors": [{"reason": reason, "domain": "usageLimits"}]}})


@pytest.mark.asyncio
async def test_quota_403_retried_then_succeeds():
    responses = [_quota_403(), httpx.Response(200, json=_gmail_message())]

    def handler(request):
        return responses.pop(0)

    with patch("plannercrm.services.mailbox_client.asyncio.sleep", new=AsyncMock()) as sleep:
        msg = await _client(handler, max_retries=2).get_message("m1")
    assert msg.id == "m1"
    sleep.assert_awaited_once_with(2)


@pytest.mark.asyncio
async def test_quota_403_exhausts_to_retryable():
    def handler(request):
        return _quota_403("rateLimitExceeded")

    with patch("plannercrm.services.mailbox_client.asyncio.sleep", new=AsyncMock()):
        with pytest.raises(ProviderError) as exc:
            await _client(handler, max_retries=1).get_message("m1")
    assert not isinstance(exc.value, ProviderFatalError)


@pytest.mark.asyncio
async def test_permission_403_is_fatal():
    def handler(request):
        return _quota_403("insufficientPermissions")

    with pytest.raises(ProviderFatalError):
        await _client(handler).get_message("m1")


@pytest.mark.asyncio
async def test_server_errors_exhaust_to_retryable():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(503)

    with patch("plannercrm.services.mailbox_client.asyncio.sleep", new=AsyncMock()):
        with pytest.raises(ProviderError) as exc:
            await _client(handler, max_retries=2).get_message("m1")
    assert len(calls) == 3
    assert not isinstance(exc.value, ProviderFatalError)


@pytest.mark.asyncio
async def test_transport_error_is_retryable():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    with patch("plannercrm.services.mailbox_client.asyncio.sleep", new=AsyncMock()):
        with pytest.raises(ProviderError):
            await _client(handler, max_retries=1).get_message("m1")


@pytest.mark.asyncio
async def test_message_deleted_after_listing_is_skipped():
    def handler(request):
        if request.url.path.endswith("/messages"):
            return httpx.Response(200, json={"messages": [{"id": "m1"}, {"id": "gone"}]})
        if request.url.path.endswith("/gone"):
            return httpx.Response(404, json={"error": {"code": 404, "message": "Not Found"}})
        return httpx.Response(200, json=_gmail_message("m1"))

    page = await _client(handler).list_history_page(1, None, datetime.now(timezone.utc))
    assert [m.id for m in page.messages] == ["m1"]
    assert page.has_more is False


@pytest.mark.asyncio
async def test_get_missing_message_raises():
    def handler(request):
        return httpx.Response(404)

    with pytest.raises(ProviderNotFoundError):
        await _client(handler).get_message("gone")
