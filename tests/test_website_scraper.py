"""
tests/test_website_scraper.py -- Tests for the homepage summary used in enrichment
Covers: title/meta extraction, personal-domain skip, non-200 and transport failures
Called by: pytest
Depends on: plannercrm.services.website_scraper, httpx.MockTransport
"""

import httpx
import pytest

from plannercrm.services.website_scraper import homepage_summary, summarize_html

PAGE = """<html><head>
<title>  Bloom &amp; Co |
  Wedding Florals </title>
<meta name="description" content="Seasonal arrangements for weddings and events">
</head><body>Hi</body></html>"""


def test_summarize_html():
    assert summarize_html(PAGE) == "Bloom & Co | Wedding Florals - Seasonal arrangements for weddings and events"
    assert summarize_html("<html><body>nothing</body></html>") is None


def _client(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_homepage_summary_fetches_https_root():
    seen = []

    def handler(request):
        seen.append(str(request.url))
        return httpx.Response(200, text=PAGE, headers={"content-type": "text/html"})

    async with _client(handler) as client:
        summary = await homepage_summary("bloomandco.com", client)
    assert summary.startswith("Bloom & Co")
    assert seen == ["https://bloomandco.com/"]


@pytest.mark.asyncio
async def test_personal_domain_skipped():
    def handler(request):
        raise AssertionError("should not fetch")

    async with _client(handler) as client:
        assert await homepage_summary("gmail.com", client) is None


@pytest.mark.asyncio
async def test_fetch_failures_return_none():
    async with _client(lambda r: httpx.Response(404)) as client:
        assert await homepage_summary("gone.com", client) is None

    def refuse(request):
        raise httpx.ConnectError("refused", request=request)

    async with _client(refuse) as client:
        assert await homepage_summary("down.com", client) is None
