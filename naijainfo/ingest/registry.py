"""Static adapter registry: config type name -> adapter class."""

import logging
from typing import Any, Dict, List

from .base_fetcher import BaseAdapter
from .fetch_feeders import FeederTableAdapter
from .fetch_rss import FeedAdapter
from .fetch_web import ScrapeAdapter
from .settings import ConfigError

logger = logging.getLogger(__name__)

ADAPTER_TYPES = {
    FeedAdapter.type_name: FeedAdapter,
    ScrapeAdapter.type_name: ScrapeAdapter,
    FeederTableAdapter.type_name: FeederTableAdapter,
}


def build_adapter(source: Dict[str, Any]) -> BaseAdapter:
    adapter_cls = ADAPTER_TYPES.get(source.get("type"))
    if adapter_cls is None:
        raise ConfigError(f"{source.get('id')}: unknown adapter type '{source.get('type')}'")
    return adapter_cls(source)


def build_adapters(sources: List[Dict[str, Any]]) -> List[BaseAdapter]:
    """
    Instantiate enabled sources in file order.

    Args:
        sources: Entries from config/sources.yaml

    Returns:
        Adapters in registry order
    """
    adapters = []
    for source in sources:
        if not source.get("enabled", True):
            logger.info(f"Skipping disabled source: {source.get('id')}")
            continue
        adapters.append(build_adapter(source))
    return adapters
