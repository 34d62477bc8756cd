"""Retention filter and final ordering of payload items."""

import logging
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from .models import NormalizedItem, Status
from .temporal import civil_now

logger = logging.getLogger(__name__)

DEFAULT_RETENTION_DAYS = 30


class RetentionFilter:
    """Drops stale items, keeping announced windows that are still ahead."""

    def __init__(self, retention_days: int = DEFAULT_RETENTION_DAYS):
        self.retention_days = retention_days

    def keep(self, item: NormalizedItem, now: datetime) -> bool:
        if item.published_at is None:
            logger.warning(f"Dropping {item.id} from {item.source}: unresolved publish time")
            return False

        if item.published_at >= now - timedelta(days=self.retention_days):
            return True

        window = item.planned_window
        return item.status == Status.PLANNED and window is not None and window.start >= now

    def apply(self, items: List[NormalizedItem], now: Optional[datetime] = None) -> List[NormalizedItem]:
        now = now or civil_now()
        return [item for item in items if self.keep(item, now)]


def _sort_key(item: NormalizedItem) -> Tuple:
    if item.status == Status.PLANNED:
        if item.planned_window is not None:
            return (0, 0, item.planned_window.start.timestamp(), item.id)
        published = item.published_at.timestamp() if item.published_at else 0.0
        return (0, 1, published, item.id)
    published = item.published_at.timestamp() if item.published_at else 0.0
    return (1, 0, -published, item.id)


def sort_items(items: List[NormalizedItem]) -> List[NormalizedItem]:
    """
    PLANNED first by window start (windowless planned items after, by publish time),
    then everything else newest first. Ties break on id.
    """
    return sorted(items, key=_sort_key)
