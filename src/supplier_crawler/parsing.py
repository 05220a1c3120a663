"""
String helpers for turning raw card text into SupplierRecord fields.
"""

import re
from dataclasses import dataclass
from typing import Optional

DEFAULT_ORIGIN = "https://www.alibaba.com"

CANONICAL_CHINA = "China"
_CHINA_VARIANTS = ("china", "中国", "prc")
_CHINA_CODES = ("cn",)

_SCHEME_RE = re.compile(r"^https?://", re.IGNORECASE)
_LOCATION_SPLIT_RE = re.compile(r"[,，\s]+")
_PARENTHETICAL_RE = re.compile(r"[(（][^)）]*[)）]")
_YEAR_RE = re.compile(r"(\d{4})")
_PHONE_RE = re.compile(r"(\+?\d{1,4}[-.\s]?\d{3,4}[-.\s]?\d{3,4}[-.\s]?\d{3,4})")
_EMAIL_RE = re.compile(r"([a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,})")


def normalize_url(url: Optional[str], origin: str = DEFAULT_ORIGIN) -> str:
    """
    Make a scraped href absolute.

    ``//host/x`` gets ``https:``, ``/x`` gets the marketplace origin, a
    scheme-less ``host/x`` gets ``https://``; absolute URLs are returned
    unchanged. Applying it twice gives the same result as applying it once.

    Args:
        url: Raw href (may be None or empty)
        origin: Scheme and host used for root-relative paths

    Returns:
        Absolute URL, or "" for empty input
    """
    if not url:
        return ""
    url = url.strip()
    if not url:
        return ""

    if url.startswith("//"):
        return f"https:{url}"
    if url.startswith("/"):
        return f"{origin.rstrip('/')}{url}"
    if not _SCHEME_RE.match(url):
        return f"https://{url}"
    return url


@dataclass
class Location:
    """Positional split of a card's location line."""
    country: str = ""
    province: str = ""
    city: str = ""
    district: str = ""


def canonical_country(token: str) -> str:
    lowered = token.lower()
    if any(variant in lowered for variant in _CHINA_VARIANTS) or lowered in _CHINA_CODES:
        return CANONICAL_CHINA
    return token


def parse_location(location: Optional[str]) -> Location:
    """
    Split a location string into country, province, city and district.

    Parenthetical qualifiers such as "(Mainland)" are dropped, then the text
    is split on ASCII or full-width commas and whitespace and the tokens are
    assigned by position. China variants become "China". This is a
    heuristic: multi-word names like "Hong Kong" are split too.
    """
    if not location:
        return Location()

    cleaned = _PARENTHETICAL_RE.sub(" ", location)
    parts = [p for p in _LOCATION_SPLIT_RE.split(cleaned) if p.strip()]
    if not parts:
        return Location()

    result = Location(country=canonical_country(parts[0]))
    if len(parts) >= 2:
        result.province = parts[1]
    if len(parts) >= 3:
        result.city = parts[2]
    if len(parts) >= 4:
        result.district = parts[3]
    return result


def parse_year(text: Optional[str]) -> str:
    """First four-digit number in ``text``, e.g. "Est. 2012" -> "2012"."""
    if not text:
        return ""
    match = _YEAR_RE.search(text)
    return match.group(1) if match else ""


def extract_phone(text: Optional[str]) -> str:
    """First phone-number-looking run in ``text``."""
    if not text:
        return ""
    match = _PHONE_RE.search(text)
    return match.group(1).strip() if match else ""


def extract_email(text: Optional[str]) -> str:
    """First e-mail address in ``text``."""
    if not text:
        return ""
    match = _EMAIL_RE.search(text)
    return match.group(1) if match else ""


def clean_text(text: Optional[str]) -> str:
    """Collapse internal whitespace."""
    if not text:
        return ""
    return " ".join(text.split())
