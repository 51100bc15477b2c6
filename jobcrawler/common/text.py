"""
Text Helpers for Job Normalization and Deduplication

Pure functions used by the processor when cleaning free-text fields and when
building the keys that identify duplicate companies and job posts.

Key Concepts:
- Whitespace normalization: "Data  Engineer" → "Data Engineer"
- Case folding for dedupe keys: "  ACME Corp " → "acme corp"
- HTML cleanup: tags removed, entities unescaped, length capped
- Domain extraction: "https://www.Acme.com/jobs" → "acme.com"
"""

import html
import re
from typing import Optional
from urllib.parse import urlparse

HTML_TAG_PATTERN = re.compile(r'<[^>]*>')
WHITESPACE_PATTERN = re.compile(r'\s+')


def normalize_whitespace(text: Optional[str]) -> str:
    """
    Normalize whitespace in a string.

    Removes leading/trailing whitespace and collapses runs of spaces, tabs and
    newlines into a single space.

    Examples:
        >>> normalize_whitespace("  Data   Engineer  ")
        'Data Engineer'
        >>> normalize_whitespace(None)
        ''

    Args:
        text: Input string to normalize

    Returns:
        Normalized string, or empty string if input is None/empty
    """
    if not text:
        return ""

    return WHITESPACE_PATTERN.sub(' ', text.strip())


def dedupe_key(text: Optional[str]) -> str:
    """
    Build the case-insensitive key used for duplicate detection.

    Matches the SQL expression LOWER(TRIM(value)) used by the clean database
    lookups, so Python-side and database-side comparisons agree.

    Examples:
        >>> dedupe_key("  Acme Corp ")
        'acme corp'

    Args:
        text: Company name or job title

    Returns:
        Trimmed, lower-cased string ('' for None)
    """
    if not text:
        return ""

    return text.strip().lower()


def strip_html(text: Optional[str], max_length: int = 10000) -> Optional[str]:
    """
    Remove HTML markup from a description and cap its length.

    Tags are replaced by spaces (so "<li>a</li><li>b</li>" keeps the words
    apart), entities such as "&amp;" are unescaped, and whitespace is
    collapsed before truncating to max_length characters.

    Examples:
        >>> strip_html("<p>Python &amp; SQL</p>")
        'Python & SQL'

    Args:
        text: Raw description (may contain HTML)
        max_length: Maximum number of characters to keep

    Returns:
        Cleaned text, or None if input is empty or cleans down to nothing
    """
    if not text:
        return None

    cleaned = HTML_TAG_PATTERN.sub(' ', text)
    cleaned = html.unescape(cleaned)
    cleaned = normalize_whitespace(cleaned)

    if not cleaned:
        return None

    return cleaned[:max_length]


def extract_domain(url: Optional[str]) -> Optional[str]:
    """
    Derive a company domain from a URL.

    The host is lower-cased and a leading "www." is removed. URLs given
    without a scheme ("acme.com/careers") are accepted.

    Examples:
        >>> extract_domain("https://www.Acme.com/jobs/1")
        'acme.com'
        >>> extract_domain("not a url") is None
        True

    Args:
        url: Company URL from the raw store

    Returns:
        Domain string, or None if no host can be determined
    """
    if not url or not isinstance(url, str):
        return None

    candidate = url.strip()
    if '://' not in candidate:
        candidate = f"http://{candidate}"

    try:
        hostname = urlparse(candidate).hostname
    except ValueError:
        return None

    if not hostname or '.' not in hostname or ' ' in hostname:
        return None

    hostname = hostname.lower()
    if hostname.startswith('www.'):
        hostname = hostname[4:]

    return hostname or None
