"""
Per-run diagnostics for ingestion reliability monitoring.

Records per-adapter outcomes (counts, errors, duration, sample titles, latest publish)
and per-stage drop counts, and summarizes the final items by domain and tier.
"""

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from .base_fetcher import AdapterResult
from .models import NormalizedItem
from .temporal import civil_now, format_instant

logger = logging.getLogger(__name__)

SAMPLE_TITLES = 3


@dataclass
class AdapterDiagnostics:
    """Outcome for a single adapter in one run."""
    adapter: str
    name: str = ""
    tier: str = ""
    candidates: int = 0
    normalized: int = 0
    error: Optional[str] = None
    timed_out: bool = False
    duration_s: float = 0.0
    sample_titles: List[str] = field(default_factory=list)
    latest_published_at: Optional[str] = None
    status: str = "OK"  # OK, PARTIAL, FAILED, EMPTY

    def record_result(self, result: AdapterResult):
        """Record what the adapter returned."""
        self.candidates = len(result.candidates)
        self.error = result.error
        self.timed_out = result.timed_out
        self.duration_s = round(result.duration_s, 3)
        self.sample_titles = [c.title for c in result.candidates[:SAMPLE_TITLES]]
        self.update_status()

    def record_items(self, items: List[NormalizedItem]):
        """Record normalized output and the newest publish time."""
        self.normalized = len(items)
        published = [item.published_at for item in items if item.published_at is not None]
        if published:
            self.latest_published_at = format_instant(max(published))

    def update_status(self):
        if self.error or self.timed_out:
            self.status = "PARTIAL" if self.candidates else "FAILED"
        elif self.candidates == 0:
            self.status = "EMPTY"
        else:
            self.status = "OK"


@dataclass
class RunDiagnostics:
    """Diagnostics for one pipeline run."""
    started_at: datetime = field(default_factory=civil_now)
    finished_at: Optional[datetime] = None
    classifier: str = ""
    adapters: Dict[str, AdapterDiagnostics] = field(default_factory=dict)
    stage_drops: Dict[str, int] = field(default_factory=dict)
    item_counts: Dict[str, int] = field(default_factory=dict)
    total_items: int = 0

    def get_or_create(self, adapter_id: str, name: str = "", tier: str = "") -> AdapterDiagnostics:
        """Get existing adapter diagnostics or create new one."""
        if adapter_id not in self.adapters:
            self.adapters[adapter_id] = AdapterDiagnostics(adapter=adapter_id, name=name, tier=tier)
        return self.adapters[adapter_id]

    def record_drop(self, stage: str, count: int):
        if count > 0:
            self.stage_drops[stage] = self.stage_drops.get(stage, 0) + count

    def record_items(self, items: List[NormalizedItem]):
        """Count final items per domain_tier, e.g. POWER_OFFICIAL."""
        counts: Dict[str, int] = {}
        for item in items:
            key = f"{item.domain.value}_{item.tier.value}"
            counts[key] = counts.get(key, 0) + 1
        self.item_counts = counts
        self.total_items = len(items)

    def finish(self):
        self.finished_at = civil_now()

    def get_summary(self) -> Dict[str, Any]:
        """Get summary of adapter health across the run."""
        statuses = {"OK": 0, "PARTIAL": 0, "FAILED": 0, "EMPTY": 0}
        for diag in self.adapters.values():
            statuses[diag.status] = statuses.get(diag.status, 0) + 1

        failed = [d.adapter for d in self.adapters.values() if d.status == "FAILED"]
        return {
            "total_adapters": len(self.adapters),
            "status_counts": statuses,
            "failed_adapters": failed,
            "total_items": self.total_items,
        }

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dict."""
        return {
            "started_at": format_instant(self.started_at),
            "finished_at": format_instant(self.finished_at) if self.finished_at else None,
            "classifier": self.classifier,
            "adapters": {k: asdict(v) for k, v in self.adapters.items()},
            "stage_drops": dict(self.stage_drops),
            "item_counts": dict(self.item_counts),
            "summary": self.get_summary(),
        }

    def log_summary(self):
        for diag in self.adapters.values():
            line = (
                f"[{diag.adapter}] status={diag.status} items={diag.candidates} "
                f"duration={diag.duration_s:.2f}s latest={diag.latest_published_at or '-'}"
            )
            if diag.sample_titles:
                line += " top=" + " | ".join(diag.sample_titles)
            if diag.error:
                logger.warning(f"{line} error={diag.error}")
            else:
                logger.info(line)

        summary = self.get_summary()
        logger.info(
            f"Run complete: {self.total_items} item(s) "
            f"{self.item_counts} drops={self.stage_drops} failed={summary['failed_adapters']}"
        )
