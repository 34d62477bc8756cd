"""
Normalization of adapter output into NormalizedItems.

Text is whitespace-collapsed and HTML-stripped, URLs are canonicalized, publish
strings are resolved to civil-offset datetimes and every item gets a deterministic id.
"""

import hashlib
import logging
import re
from typing import Iterable, List, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from bs4 import BeautifulSoup

from .models import Domain, NormalizedItem, RawCandidate, Tier, VerifiedBy
from .temporal import format_instant, parse_instant

logger = logging.getLogger(__name__)

# Tracking parameters removed from canonical URLs
TRACKING_PARAMS = {"fbclid", "gclid", "mc_cid", "mc_eid"}

MAX_SUMMARY_LENGTH = 600

_AREAS_RE = re.compile(
    r"(?:areas?\s+affected|affected\s+areas?|affected\s+locations?)\s*[:\-]\s*(.+?)(?:\.\s|$|\n)",
    re.IGNORECASE,
)
_AREA_SPLIT_RE = re.compile(r"\s*(?:,|;|\band\b|&|/)\s*", re.IGNORECASE)


def normalize_whitespace(text: Optional[str]) -> str:
    if not text:
        return ""
    return re.sub(r"\s+", " ", text).strip()


def strip_html(text: Optional[str]) -> str:
    """Drop markup and collapse whitespace. Plain text passes through unchanged."""
    if not text:
        return ""
    if "<" not in text and "&" not in text:
        return normalize_whitespace(text)
    return normalize_whitespace(BeautifulSoup(text, "lxml").get_text(separator=" "))


def truncate(text: str, limit: int = MAX_SUMMARY_LENGTH) -> str:
    if len(text) <= limit:
        return text
    cut = text[:limit].rsplit(" ", 1)[0]
    return cut.rstrip(" ,;:") + "…"


def canonical_url(url: str) -> str:
    """
    Canonical absolute URL: lower-cased scheme/host, no fragment, no tracking params.
    """
    url = (url or "").strip()
    if not url:
        return ""
    parts = urlsplit(url)
    query = [
        (k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True)
        if k.lower() not in TRACKING_PARAMS and not k.lower().startswith("utm_")
    ]
    path = parts.path or "/"
    return urlunsplit((parts.scheme.lower(), parts.netloc.lower(), path, urlencode(query), ""))


def uniq_areas(areas: Iterable[str]) -> List[str]:
    """Ordered, case-insensitively de-duplicated area names."""
    seen = set()
    result = []
    for area in areas:
        cleaned = normalize_whitespace(area).strip(" .,;:")
        key = cleaned.lower()
        if cleaned and key not in seen:
            seen.add(key)
            result.append(cleaned)
    return result


def extract_affected_areas(text: str, whitelist: Optional[Iterable[str]] = None) -> List[str]:
    """
    Pull area names from an "AREAS AFFECTED: a, b and c" list, or failing that,
    any whitelisted location mentioned in the text.
    """
    if not text:
        return []
    match = _AREAS_RE.search(text)
    if match:
        parts = [p for p in _AREA_SPLIT_RE.split(match.group(1)) if 1 < len(p.strip()) <= 60]
        if parts:
            return uniq_areas(parts)
    if whitelist:
        found = [loc for loc in whitelist if re.search(rf"\b{re.escape(loc)}\b", text, re.IGNORECASE)]
        return uniq_areas(found)
    return []


def make_item_id(source: str, url: str, published_iso: str) -> str:
    """sha256 of source|canonical url|publish time, first 16 hex chars."""
    key = f"{source}|{canonical_url(url)}|{published_iso}"
    return hashlib.sha256(key.encode("utf-8")).hexdigest()[:16]


class Normalizer:
    """Turns one adapter's RawCandidates into NormalizedItems."""

    def __init__(self, source: str, source_label: str, tier: Tier, domain: Optional[Domain],
                 verified_by: VerifiedBy = VerifiedBy.UNKNOWN, adapter: str = ""):
        self.source = source
        self.source_label = source_label
        self.tier = tier
        self.domain = domain
        self.verified_by = verified_by
        self.adapter = adapter or source

    def normalize(self, raw: RawCandidate) -> Optional[NormalizedItem]:
        """
        Args:
            raw: Adapter output

        Returns:
            NormalizedItem, or None when the candidate has no title, URL or domain
        """
        title = strip_html(raw.title)
        url = canonical_url(raw.url)
        domain = raw.domain or self.domain
        if not title or not url or domain is None:
            logger.debug(f"{self.source}: discarding candidate without title/url/domain: {raw.title!r}")
            return None

        published = parse_instant(raw.published_at)
        if raw.published_at and published is None:
            logger.warning(f"{self.source}: unparseable publish time {raw.published_at!r} for {url}")

        summary = truncate(strip_html(raw.summary)) or None
        published_iso = format_instant(published) if published else ""

        return NormalizedItem(
            id=make_item_id(self.source, url, published_iso),
            source=self.source,
            source_label=normalize_whitespace(raw.source_label) or self.source_label,
            tier=self.tier,
            domain=domain,
            title=title,
            official_url=url,
            published_at=published,
            summary=summary,
            status=raw.status if domain == Domain.POWER else None,
            affected_areas=uniq_areas(raw.affected_areas),
            verified_by=self.verified_by,
            confidence=raw.confidence,
            adapter=self.adapter,
            window_text=normalize_whitespace(raw.window_text) or None,
        )

    def normalize_all(self, candidates: Iterable[RawCandidate]) -> List[NormalizedItem]:
        items = []
        for raw in candidates:
            item = self.normalize(raw)
            if item is not None:
                items.append(item)
        return items
