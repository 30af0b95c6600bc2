"""
Text normalization for stable content hashing and delta detection.

Two crawls of an unchanged venue page must normalize to the same string, so
everything that changes between crawls without carrying business meaning is
stripped here: timestamps, dates, tracking ids and parameters, cookie and
legal boilerplate, footers, session tokens and the current year. Weekly hours
tables that sites render starting from "today" are re-sorted Monday first.

Any change here affects both trimming and delta detection; update
backend/tests/test_normalize.py alongside it.
"""

from __future__ import annotations

import hashlib
import re
from urllib.parse import urlsplit

BINARY_MIN_LENGTH = 100
BINARY_RATIO = 0.3

_DAYS = r"Monday|Tuesday|Wednesday|Thursday|Friday|Saturday|Sunday|Mon|Tue|Wed|Thu|Fri|Sat|Sun"
_MONTHS = (
    r"Jan|Feb|Mar|Apr|May|Jun|Jul|Aug|Sep|Oct|Nov|Dec|January|February|March|April|May|"
    r"June|July|August|September|October|November|December"
)

DAY_ORDER = {
    "mon": 0, "tue": 1, "wed": 2, "thu": 3, "fri": 4, "sat": 5, "sun": 6,
    "monday": 0, "tuesday": 1, "wednesday": 2, "thursday": 3, "friday": 4,
    "saturday": 5, "sunday": 6,
}

_NON_PRINTABLE_RE = re.compile(r"[^\x20-\x7E\n\r\t]")
_ISO_TIMESTAMP_RE = re.compile(r"\d{4}-\d{2}-\d{2}(T\d{2}:\d{2}:\d{2}(\.\d{3})?Z?)?")
_WEEKDAY_DATE_RE = re.compile(
    rf"\b({_DAYS})\s+({_MONTHS})\s+\d{{1,2}}(st|nd|rd|th)?(,\s+\d{{4}})?\b", re.IGNORECASE
)
_MONTH_DAY_RE = re.compile(rf"\b({_MONTHS})\s+\d{{1,2}}(st|nd|rd|th)?(,\s+\d{{4}})?\b", re.IGNORECASE)

# "Mon 10AM-1AM", "Monday: 10:00 AM - 1:00 AM", "Mon 10AM–1AM"
HOURS_BLOCK_RE = re.compile(
    rf"\b({_DAYS})[:\s]+\d{{1,2}}(?::\d{{2}})?\s*(?:AM|PM)\s*[-–—to]+\s*"
    r"\d{1,2}(?::\d{2})?\s*(?:AM|PM)",
    re.IGNORECASE,
)
_LEADING_DAY_RE = re.compile(rf"^({_DAYS})", re.IGNORECASE)
MIN_HOURS_BLOCKS = 3

_TRACKING_PARAM_RE = re.compile(
    r"[?&](sid|fbclid|utm_[^=\s&]+|gclid|_ga|_gid|ref|source|tracking|campaign|matchtype|"
    r"gad_source|gad_campaignid|gbraid|gclsrc|dclid|msclkid|li_fat_id|mc_[^=\s&]+|hsa_[^=\s&]+)"
    r"=[^\s&\"'\]]+",
    re.IGNORECASE,
)
_DANGLING_QUERY_RE = re.compile(r"\?(&|$)")

# (pattern, flags) pairs stripped after tracking params, in order
_NOISE_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(pattern, flags)
    for pattern, flags in (
        # placeholders
        (r"Loading\s+product\s+options\.\.\.|Loading\.\.\.", re.IGNORECASE),
        # store / location counts, e.g. "United States (5829)"
        (r"\(\d{3,}\)", 0),
        # social
        (
            r"\b(Facebook|Instagram|Twitter|TikTok|YouTube|Pinterest|LinkedIn|Yelp|Google)"
            r"\s+(page|icon|link)\b",
            re.IGNORECASE,
        ),
        (r"\bFollow\s+us\s+on\b.*?(?=\.|$)", re.IGNORECASE | re.MULTILINE),
        (r"\bFind\s+us\s+on\b.*?(?=\.|$)", re.IGNORECASE | re.MULTILINE),
        # cookie consent / reCAPTCHA / legal
        (r"This\s+site\s+is\s+protected\s+by\s+reCAPTCHA\s+and\s+the\s+Google[^.]*\.", re.IGNORECASE),
        (r"Privacy\s+Policy\s+Terms\s+of\s+Service", re.IGNORECASE),
        (r"We\s+use\s+cookies[^.]*\.", re.IGNORECASE),
        (r"Accept\s+(All\s+)?Cookies", re.IGNORECASE),
        (r"Cookie\s+(Policy|Settings|Preferences)", re.IGNORECASE),
        # navigation / UI chrome
        (
            r"\b(Skip\s+to\s+(main\s+)?content|Return\s+to\s+Nav|Back\s+to\s+top|"
            r"Close\s+(menu|modal|dialog)?)\b",
            re.IGNORECASE,
        ),
        (r"\bOrder\s+(Now|Online)\b", re.IGNORECASE),
        (r"\bNo\s+description\s+added\.?", re.IGNORECASE),
        # footers
        (r"Copyright\s+©\s+\d{4}", re.IGNORECASE),
        (r"All\s+rights\s+reserved", re.IGNORECASE),
        (r"Powered\s+by\s+[^\s]+", re.IGNORECASE),
        (r"©\s+\d{4}\s+[^\n]+", re.IGNORECASE),
        # session ids and tracking tokens
        (r"\b(session|sid|token|tracking)[-_]?[a-z0-9]{8,}\b", re.IGNORECASE),
        # standalone years
        (r"\b20[2-3]\d\b", 0),
    )
)
_WHITESPACE_RE = re.compile(r"\s+")


def looks_binary(text: str) -> bool:
    if len(text) <= BINARY_MIN_LENGTH:
        return False
    non_printable = len(_NON_PRINTABLE_RE.findall(text))
    return non_printable / len(text) > BINARY_RATIO


def _day_rank(block: str) -> int:
    match = _LEADING_DAY_RE.match(block)
    if not match:
        return 99
    return DAY_ORDER.get(match.group(1).lower(), 99)


def canonicalize_hours(text: str) -> str:
    """Re-sort weekly hours fragments Monday to Sunday when a table is present."""
    blocks = [match.group(0) for match in HOURS_BLOCK_RE.finditer(text)]
    if len(blocks) < MIN_HOURS_BLOCKS:
        return text
    ordered = iter(sorted(blocks, key=_day_rank))
    return HOURS_BLOCK_RE.sub(lambda _match: next(ordered, ""), text)


def _normalize_pass(text: str) -> str:
    if looks_binary(text):
        return ""

    text = _ISO_TIMESTAMP_RE.sub("", text)
    text = _WEEKDAY_DATE_RE.sub("", text)
    text = _MONTH_DAY_RE.sub("", text)
    text = canonicalize_hours(text)

    # analytics / GTM ids
    text = re.sub(r"gtm-[a-z0-9]+", "", text, flags=re.IGNORECASE)
    text = re.sub(r"UA-\d+-\d+", "", text)
    text = re.sub(r"G-[A-Z0-9]+", "", text)

    text = _TRACKING_PARAM_RE.sub("", text)
    text = _DANGLING_QUERY_RE.sub("", text)

    for pattern in _NOISE_PATTERNS:
        text = pattern.sub("", text)

    return _WHITESPACE_RE.sub(" ", text).strip()


def normalize_text(text: str | None) -> str:
    """
    Normalize scraped page text for hashing and comparison.

    Passes are repeated until the text stops changing, so the result is a
    fixed point: normalize_text(normalize_text(s)) == normalize_text(s).
    Every step deletes text except the hours sort, which only permutes it,
    so the loop ends once the length stops shrinking and no new ordering
    appears.
    """
    if not text or not isinstance(text, str):
        return ""
    current = text
    seen_at_length: set[str] = set()
    while True:
        cleaned = _normalize_pass(current)
        if cleaned == current:
            return current
        if len(cleaned) < len(current):
            seen_at_length.clear()
        elif cleaned in seen_at_length:
            return cleaned
        seen_at_length.add(cleaned)
        current = cleaned


def normalize_url(url: str | None) -> str:
    """Reduce a url to origin + path; query strings and fragments never survive."""
    if not url or not isinstance(url, str):
        return url or ""
    try:
        parts = urlsplit(url)
        host = parts.hostname
        if not parts.scheme or not host:
            raise ValueError(f"not an absolute url: {url!r}")
        port = f":{parts.port}" if parts.port else ""
    except ValueError:
        return url.split("?")[0].split("#")[0]
    path = parts.path or "/"
    return f"{parts.scheme.lower()}://{host}{port}{path}"


def content_hash(text: str | None) -> str:
    return hashlib.sha256(normalize_text(text).encode("utf-8")).hexdigest()


def has_content_changed(previous: str | None, current: str | None) -> bool:
    return content_hash(previous) != content_hash(current)


__all__ = [
    "canonicalize_hours",
    "content_hash",
    "has_content_changed",
    "looks_binary",
    "normalize_text",
    "normalize_url",
]
