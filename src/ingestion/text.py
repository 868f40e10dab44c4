"""
Text and URL helpers shared by the feed parser, page extractor and reconciler.

Excerpts are truncated, never rewritten: no summarization happens anywhere in
the pipeline.
"""

import hashlib
import html
import re
from datetime import datetime, timezone
from urllib.parse import urljoin, urlsplit, urlunsplit

from bs4 import BeautifulSoup

EXCERPT_MAX_LENGTH = 500

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


def clean_text(text: str) -> str:
    """
    Clean text content by removing excessive whitespace and control characters.

    Args:
        text: Raw text content

    Returns:
        Cleaned text
    """
    text = " ".join(text.split())
    text = _CONTROL_CHARS.sub("", text)
    return text.strip()


def strip_html(content: str | None) -> str:
    """Convert an HTML fragment to plain text."""
    if not content:
        return ""
    soup = BeautifulSoup(content, "html.parser")
    for element in soup(["script", "style"]):
        element.decompose()
    return clean_text(html.unescape(soup.get_text(separator=" ")))


def truncate_excerpt(text: str | None, max_length: int = EXCERPT_MAX_LENGTH) -> str | None:
    """
    Truncate an excerpt to ``max_length`` characters.

    Longer text is cut to ``max_length - 3`` characters followed by "...".
    """
    if not text:
        return None
    if len(text) > max_length:
        return text[: max_length - 3] + "..."
    return text


def normalize_url(url: str) -> str:
    """
    Normalize a URL for identity comparisons.

    Lowercases scheme and host, drops the fragment and strips a trailing
    slash. Path and query case are preserved.

    >>> normalize_url("HTTPS://Example.COM/Path/")
    'https://example.com/Path'
    """
    url = url.strip()
    parts = urlsplit(url)
    if not parts.scheme or not parts.netloc:
        return url.rstrip("/")
    normalized = urlunsplit(
        (parts.scheme.lower(), parts.netloc.lower(), parts.path, parts.query, "")
    )
    return normalized.rstrip("/")


def origin_of(url: str) -> str:
    """Return ``scheme://host[:port]`` for a URL."""
    parts = urlsplit(url)
    return f"{parts.scheme.lower()}://{parts.netloc.lower()}"


def host_of(url: str) -> str:
    """Return the lowercase hostname of a URL (empty string if none)."""
    return (urlsplit(url).hostname or "").lower()


def resolve_url(url: str | None, base: str | None) -> str | None:
    """Resolve a possibly relative URL against ``base``."""
    if not url:
        return None
    url = url.strip()
    if url.startswith("//"):
        return f"https:{url}"
    if base and not urlsplit(url).scheme:
        return urljoin(base, url)
    return url


def content_fingerprint(url: str, title: str) -> str:
    """
    Stable fingerprint over an item's identity-relevant fields.

    SHA256 of ``"{url}|{title}"`` truncated to 32 hex characters. Unlike
    Python's built-in hash(), this is deterministic across processes.
    """
    return hashlib.sha256(f"{url}|{title}".encode("utf-8")).hexdigest()[:32]


def parse_iso_datetime(value: str | None) -> datetime | None:
    """Parse an ISO-8601 timestamp, assuming UTC when no offset is given."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
