"""
tests/test_email_utils.py -- Tests for address parsing and body excerpting
Covers: extract_email, extract_display_name, split_recipients, personal
domains, clean_subject, extract_meaningful_content
Called by: pytest
Depends on: plannercrm.services.email_utils
"""

from plannercrm.services.email_utils import (
    clean_subject,
    extract_display_name,
    extract_domain,
    extract_email,
    extract_meaningful_content,
    is_personal_domain,
    normalize_email,
    split_recipients,
    strip_html,
    truncate_at_word_boundary,
)

# ── Address parsing ──────────────────────────────────────────────────


def test_extract_email_from_named_address():
    assert extract_email('"Jane Doe" <Jane@BloomAndCo.com>') == "jane@bloomandco.com"


def test_extract_email_bare_and_invalid():
    assert extract_email("dj@beats.io") == "dj@beats.io"
    assert extract_email("undisclosed-recipients:;") is None
    assert extract_email("") is None


def test_extract_display_name():
    assert extract_display_name('"Jane Doe" <jane@bloomandco.com>') == "Jane Doe"
    assert extract_display_name("Sam Lee <sam@x.com>") == "Sam Lee"
    assert extract_display_name("sam@x.com") is None
    assert extract_display_name("<sam@x.com>") is None


def test_normalize_and_domain():
    assert normalize_email("  Jane@FlowerShop.COM ") == "jane@flowershop.com"
    assert extract_domain("Jane@FlowerShop.com") == "flowershop.com"
    assert extract_domain("not-an-address") == ""


def test_personal_domains():
    assert is_personal_domain("gmail.com")
    assert is_personal_domain("ICLOUD.com")
    assert not is_personal_domain("bloomandco.com")
    assert not is_personal_domain("")


def test_split_recipients_respects_quotes():
    header = '"Doe, Jane" <jane@bloomandco.com>, dj@beats.io'
    assert split_recipients(header) == ['"Doe, Jane" <jane@bloomandco.com>', "dj@beats.io"]
    assert split_recipients("") == []
    assert split_recipients("Jane Doe <jane@bloomandco.com>") == ['"Jane Doe" <jane@bloomandco.com>']


def test_clean_subject_strips_reply_prefixes():
    assert clean_subject("RE: Fwd: re: Smith Wedding florals") == "Smith Wedding florals"
    assert clean_subject(None) == ""


# ── Body content ─────────────────────────────────────────────────────


def test_strip_html_unescapes():
    text = strip_html("<p>Fish &amp; chips</p><script>alert(1)</script>")
    assert "Fish & chips" in text
    assert "alert" not in text


def test_meaningful_content_drops_greeting_and_signature():
    body = (
        "<p>Hi Jane,</p><p>Can you send pricing for the June 14 wedding?</p>"
        "<p>Thanks,<br>Sam</p>"
    )
    assert extract_meaningful_content(body) == "Can you send pricing for the June 14 wedding?"


def test_meaningful_content_drops_quoted_reply():
    body = "Looking for a DJ for 150 guests.\nOn Mon, Jan 5, Sam wrote:\n> earlier text"
    assert extract_meaningful_content(body) == "Looking for a DJ for 150 guests."


def test_meaningful_content_truncates_at_word_boundary():
    body = "word " * 200
    result = extract_meaningful_content(body, max_length=100)
    assert result.endswith("...")
    assert len(result) <= 103
    assert "wor..." not in result


def test_meaningful_content_empty():
    assert extract_meaningful_content(None) == ""
    assert extract_meaningful_content("") == ""


def test_truncate_short_text_untouched():
    assert truncate_at_word_boundary("short", 10) == "short"
