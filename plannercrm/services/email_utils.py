"""Email address and body helpers shared by discovery, ingestion and enrichment.

Business Rules:
- Addresses are normalized lowercase and trimmed before any lookup
- Personal-domain senders (gmail.com etc.) are never grouped by domain
- Body excerpts strip HTML, greetings, signatures and quoted replies, then
  truncate at a word boundary

Called by: services/backfill.py, services/mailbox_sync.py, services/mailbox_client.py,
           services/enrichment.py, services/suppliers.py
Depends on: stdlib email.utils (pure functions)
"""

import html
import re
from email.utils import getaddresses

PERSONAL_DOMAINS = frozenset({
    # Major providers
    "gmail.com", "googlemail.com",
    "yahoo.com", "yahoo.co.uk", "ymail.com",
    "hotmail.com", "hotmail.co.uk",
    "outlook.com", "outlook.co.uk",
    "live.com", "live.co.uk", "msn.com",
    # Apple
    "icloud.com", "me.com", "mac.com",
    # Others
    "aol.com", "protonmail.com", "proton.me", "mail.com",
    "zoho.com", "fastmail.com", "tutanota.com", "gmx.com", "gmx.net",
    "yandex.com", "hey.com", "comcast.net", "verizon.net", "att.net",
})

_EMAIL_RE = re.compile(r"[A-Z0-9._%+\-]+@[A-Z0-9.\-]+\.[A-Z]{2,}", re.IGNORECASE)
_SUBJECT_PREFIX_RE = re.compile(r"^\s*((re|fw|fwd|aw|sv)\s*:\s*)+", re.IGNORECASE)

# ── Address parsing ──────────────────────────────────────────────────


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def extract_email(value: str) -> str | None:
    """Pull the address out of "Name <addr>" or a bare address."""
    if not value:
        return None
    match = _EMAIL_RE.search(value)
    return match.group(0).lower() if match else None


def extract_display_name(value: str) -> str | None:
    """Name part of "Jane Doe <jane@x.com>", unquoted. None for bare addresses."""
    if not value or "<" not in value:
        return None
    name = value.split("<", 1)[0].strip().strip('"').strip("'").strip()
    if not name or "@" in name:
        return None
    return name


def extract_domain(email: str) -> str:
    email = normalize_email(email)
    return email.split("@", 1)[1] if "@" in email else ""


def is_personal_domain(domain: str) -> bool:
    return (domain or "").lower() in PERSONAL_DOMAINS


def split_recipients(header: str) -> list[str]:
    """Split a To/Cc/Bcc header into "Name" <addr> or bare-address entries."""
    if not header:
        return []
    return [f'"{name}" <{addr}>' if name else addr
            for name, addr in getaddresses([header]) if addr]


def clean_subject(subject: str | None) -> str:
    return _SUBJECT_PREFIX_RE.sub("", subject or "").strip()


# ── Body content extraction ──────────────────────────────────────────

_GREETING_PATTERNS = [
    re.compile(
        r"^(Hi|Hello|Dear|Hey|Good\s*morning|Good\s*afternoon|Good\s*evening|Greetings)"
        r"[,\s]*[^,\n]{0,50}[,\s]*",
        re.IGNORECASE,
    ),
    re.compile(r"^(To whom it may concern)[,:\s]*", re.IGNORECASE),
    re.compile(r"^(I hope this (email|message) finds you well)[.\s]*", re.IGNORECASE),
    re.compile(r"^(Thank you for (your|reaching out|contacting))[^.]*[.\s]*", re.IGNORECASE),
    re.compile(r"^(Just following up|Following up on)[^.]*[.\s]*", re.IGNORECASE),
]

_SIGNATURE_PATTERNS = [
    re.compile(
        r"\n(Best|Thanks|Thank you|Regards|Cheers|Sincerely|Warmly|Kind regards|"
        r"Best regards|Many thanks|With thanks|Yours|Respectfully)[,\s]*.*",
        re.IGNORECASE | re.DOTALL,
    ),
    re.compile(r"\n--\s*.*", re.DOTALL),
    re.compile(r"\n(Sent from my|Sent via|Get Outlook for).*", re.IGNORECASE | re.DOTALL),
    # Quoted reply or forwarded content
    re.compile(
        r"\n(On\s.+\swrote:|From:\s.+|-{4,}\s*Forwarded\s+message).*",
        re.IGNORECASE | re.DOTALL,
    ),
    re.compile(r"\n.*unsubscribe.*", re.IGNORECASE | re.DOTALL),
]


def strip_html(text: str) -> str:
    text = re.sub(r"<(script|style)[^>]*>.*?</\1>", "", text, flags=re.IGNORECASE | re.DOTALL)
    text = re.sub(r"</?(div|p|br|tr|li|h[1-6])[^>]*>", "\n", text, flags=re.IGNORECASE)
    text = re.sub(r"<[^>]+>", " ", text)
    return html.unescape(text)


def truncate_at_word_boundary(text: str, max_length: int) -> str:
    if len(text) <= max_length:
        return text
    cut = text[:max_length]
    last_space = cut.rfind(" ")
    if last_space > max_length * 0.7:
        cut = cut[:last_space]
    return cut.rstrip(" ,.;:") + "..."


def extract_meaningful_content(body: str | None, max_length: int = 400) -> str:
    """Short, signal-bearing excerpt of an email body for the scorer."""
    if not body:
        return ""
    text = strip_html(body)
    text = text.replace("\r\n", "\n").replace("\r", "\n").replace("\xa0", " ")
    text = re.sub(r"[ \t]+", " ", text)
    text = re.sub(r"\n\s*\n+", "\n\n", text).strip()

    # Signatures first: greeting patterns are anchored to the start
    for pattern in _SIGNATURE_PATTERNS:
        text = pattern.sub("", text)
    text = text.strip()
    for pattern in _GREETING_PATTERNS:
        text = pattern.sub("", text)
    text = re.sub(r"\n{2,}", "\n", text.strip())

    return truncate_at_word_boundary(text, max_length).strip()
