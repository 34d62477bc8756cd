"""
Data models for the outage/news ingestion pipeline.

RawCandidate -> NormalizedItem -> Payload.

These are stdlib dataclasses; serialization to the public camelCase JSON shape
happens in ``to_dict()`` so the rest of the pipeline works with datetimes and enums.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class Tier(Enum):
    """Provenance class of a source, used to arbitrate duplicate reports."""
    OFFICIAL = "OFFICIAL"
    MEDIA = "MEDIA"
    COMMUNITY = "COMMUNITY"
    UNKNOWN = "UNKNOWN"


class Domain(Enum):
    """Vertical an item belongs to."""
    POWER = "POWER"
    EXAMS = "EXAMS"


class Status(Enum):
    """Outage status (POWER vertical only)."""
    PLANNED = "PLANNED"
    UNPLANNED = "UNPLANNED"
    RESTORED = "RESTORED"


class VerifiedBy(Enum):
    """Which kind of authority corroborated a report."""
    DISCO = "DISCO"
    TCN = "TCN"
    REGULATORY = "REGULATORY"
    MEDIA = "MEDIA"
    COMMUNITY = "COMMUNITY"
    UNKNOWN = "UNKNOWN"


# Lower rank wins during representative selection
TIER_RANK = {
    Tier.OFFICIAL: 0,
    Tier.MEDIA: 1,
    Tier.COMMUNITY: 2,
    Tier.UNKNOWN: 2,
}


def parse_enum(enum_cls, value, default=None):
    """Lenient enum lookup by value or name (case-insensitive)."""
    if value is None:
        return default
    if isinstance(value, enum_cls):
        return value
    key = str(value).strip().upper()
    for member in enum_cls:
        if member.value == key or member.name == key:
            return member
    return default


@dataclass
class PlannedWindow:
    """Explicit start/end of an announced interruption."""
    start: datetime
    end: Optional[datetime] = None
    timezone: str = "Africa/Lagos"

    def to_dict(self) -> Dict[str, Any]:
        from .temporal import format_instant

        d = {"start": format_instant(self.start), "timezone": self.timezone}
        if self.end is not None:
            d["end"] = format_instant(self.end)
        return d


@dataclass
class RawCandidate:
    """One item as extracted by an adapter, before normalization."""
    title: str
    url: str
    summary: Optional[str] = None
    published_at: Optional[str] = None
    window_text: Optional[str] = None
    status: Optional[Status] = None
    affected_areas: List[str] = field(default_factory=list)
    confidence: Optional[float] = None
    domain: Optional[Domain] = None
    source_label: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class NormalizedItem:
    """Canonical unit flowing through classification, dedup and retention."""
    id: str
    source: str
    source_label: str
    tier: Tier
    domain: Domain
    title: str
    official_url: str
    published_at: Optional[datetime]
    summary: Optional[str] = None
    status: Optional[Status] = None
    planned_window: Optional[PlannedWindow] = None
    affected_areas: List[str] = field(default_factory=list)
    verified_by: VerifiedBy = VerifiedBy.UNKNOWN
    confidence: Optional[float] = None
    adapter: str = ""
    # Text the window extractor scans; not serialized
    window_text: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the public payload shape (camelCase, optional keys omitted)."""
        from .temporal import format_instant

        d: Dict[str, Any] = {
            "id": self.id,
            "source": self.source,
            "sourceLabel": self.source_label,
            "tier": self.tier.value,
            "domain": self.domain.value,
            "title": self.title,
            "publishedAt": format_instant(self.published_at) if self.published_at else None,
            "affectedAreas": list(self.affected_areas),
            "verifiedBy": self.verified_by.value,
            "officialUrl": self.official_url,
        }
        if self.summary:
            d["summary"] = self.summary
        if self.status is not None:
            d["status"] = self.status.value
        if self.planned_window is not None:
            d["plannedWindow"] = self.planned_window.to_dict()
        if self.confidence is not None:
            d["confidence"] = round(self.confidence, 4)
        return d


@dataclass
class Payload:
    """Terminal artifact of one pipeline run."""
    generated_at: datetime
    items: List[NormalizedItem] = field(default_factory=list)
    latest_official_by_domain: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        from .temporal import format_instant

        return {
            "generatedAt": format_instant(self.generated_at),
            "items": [item.to_dict() for item in self.items],
            "latestOfficialByDomain": dict(self.latest_official_by_domain),
        }
