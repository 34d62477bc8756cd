"""
Cross-source deduplication and merge.

Greedy single pass: each item joins the most similar existing cluster in its domain
(token Jaccard above the threshold) or starts a new one. Each cluster collapses to
one representative chosen by source priority, tier, a per-domain tie-break and
finally item id. The representative absorbs useful fields from the rest.
"""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional, Set, Tuple

from .models import Domain, NormalizedItem, Status, TIER_RANK
from .normalize import uniq_areas

logger = logging.getLogger(__name__)

SIMILARITY_THRESHOLD = 0.7
DEFAULT_PRIORITY_SOURCES = ("tcn",)


class TieBreak(Enum):
    """How to pick between same-tier duplicates."""
    EARLIEST = "earliest"
    RICHEST = "richest"


DEFAULT_TIE_BREAKS = {
    Domain.POWER: TieBreak.EARLIEST,
    Domain.EXAMS: TieBreak.RICHEST,
}

_TOKEN_SPLIT_RE = re.compile(r"[^a-z0-9]+")


def tokenize(text: Optional[str]) -> Set[str]:
    return {token for token in _TOKEN_SPLIT_RE.split((text or "").lower()) if token}


def jaccard(a: Set[str], b: Set[str]) -> float:
    union = a | b
    if not union:
        return 0.0
    return len(a & b) / len(union)


def similarity(a: NormalizedItem, b: NormalizedItem) -> float:
    """Title Jaccard, or the summary Jaccard when both have summaries and it is higher."""
    score = jaccard(tokenize(a.title), tokenize(b.title))
    if a.summary and b.summary:
        score = max(score, jaccard(tokenize(a.summary), tokenize(b.summary)))
    return score


@dataclass
class Cluster:
    """Items judged to describe the same event."""
    representative: NormalizedItem
    members: List[NormalizedItem] = field(default_factory=list)

    @property
    def suppressed(self) -> List[NormalizedItem]:
        return [m for m in self.members if m is not self.representative]


class Deduplicator:
    """Clusters near-duplicate items per domain and merges each cluster."""

    def __init__(
        self,
        threshold: float = SIMILARITY_THRESHOLD,
        priority_sources: Iterable[str] = DEFAULT_PRIORITY_SOURCES,
        tie_breaks: Optional[Dict[Domain, TieBreak]] = None,
    ):
        self.threshold = threshold
        self.priority_sources = tuple(s.lower() for s in priority_sources)
        self.tie_breaks = dict(DEFAULT_TIE_BREAKS)
        if tie_breaks:
            self.tie_breaks.update(tie_breaks)

    def is_priority(self, item: NormalizedItem) -> bool:
        source = item.source.lower()
        return any(source == p or source.startswith(p + "_") for p in self.priority_sources)

    def rank_key(self, item: NormalizedItem) -> Tuple:
        """Sort key for representative selection; the smallest key wins."""
        tie_break = self.tie_breaks.get(item.domain, TieBreak.EARLIEST)
        if tie_break == TieBreak.RICHEST:
            tie_value = -len(item.summary or "")
        else:
            tie_value = item.published_at.timestamp() if item.published_at else float("inf")
        return (
            0 if self.is_priority(item) else 1,
            TIER_RANK[item.tier],
            tie_value,
            item.id,
        )

    def cluster(self, items: Iterable[NormalizedItem]) -> List[Cluster]:
        clusters: List[Cluster] = []
        by_domain: Dict[Domain, List[Cluster]] = {}

        for item in items:
            best: Optional[Cluster] = None
            best_score = self.threshold
            for candidate in by_domain.get(item.domain, []):
                score = similarity(item, candidate.representative)
                if score > best_score:
                    best, best_score = candidate, score

            if best is None:
                new_cluster = Cluster(representative=item, members=[item])
                clusters.append(new_cluster)
                by_domain.setdefault(item.domain, []).append(new_cluster)
                continue

            best.members.append(item)
            if self.rank_key(item) < self.rank_key(best.representative):
                logger.debug(
                    f"{item.source} ({item.tier.value}) replaces {best.representative.source} "
                    f"as representative of '{item.title[:60]}'"
                )
                best.representative = item

        return clusters

    @staticmethod
    def merge(cluster: Cluster) -> NormalizedItem:
        """Fold suppressed members' areas, summary, confidence and window into the representative."""
        rep = cluster.representative
        for other in cluster.suppressed:
            rep.affected_areas = uniq_areas(rep.affected_areas + other.affected_areas)
            if not rep.summary and other.summary:
                rep.summary = other.summary
            if other.confidence is not None:
                rep.confidence = other.confidence if rep.confidence is None else max(rep.confidence, other.confidence)
            if rep.status == Status.PLANNED and rep.planned_window is None and other.planned_window is not None:
                rep.planned_window = other.planned_window
        return rep

    def dedupe(self, items: Iterable[NormalizedItem]) -> List[NormalizedItem]:
        clusters = self.cluster(items)
        merged = [self.merge(c) for c in clusters]
        suppressed = sum(len(c.suppressed) for c in clusters)
        if suppressed:
            logger.info(f"Dedup suppressed {suppressed} duplicate(s) into {len(merged)} item(s)")
        return merged
