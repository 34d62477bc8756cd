"""RSS/Atom feed adapter."""

import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional, Pattern, Tuple
from urllib.parse import urljoin

import feedparser

from .base_fetcher import BaseAdapter, FetchError
from .classifier import classify_domain
from .fetch_context import FEED_ACCEPT
from .models import RawCandidate, parse_enum, Status
from .normalize import extract_affected_areas, strip_html

logger = logging.getLogger(__name__)


def entry_published(entry) -> Optional[str]:
    """ISO publish time of a feed entry, or the raw string if feedparser could not parse it."""
    for key in ("published_parsed", "updated_parsed"):
        parsed = entry.get(key)
        if parsed:
            return datetime(*parsed[:6], tzinfo=timezone.utc).isoformat()
    return entry.get("published") or entry.get("updated")


def entry_body(entry) -> str:
    if "content" in entry and entry.content:
        return entry.content[0].get("value", "")
    return entry.get("summary", "")


class FeedAdapter(BaseAdapter):
    """
    Adapter for RSS/Atom feeds.

    Config keys beyond the common ones:
        relay: list of {pattern, label} rules naming the utility a media story relays
        areas: location whitelist used for affected-area extraction
        status: default status for feeds that only carry one kind of notice
    """

    type_name = "rss"

    def __init__(self, source_config: Dict[str, Any]):
        super().__init__(source_config)
        self.relay_rules: List[Tuple[Pattern, str]] = [
            (re.compile(rule["pattern"], re.IGNORECASE), rule["label"])
            for rule in source_config.get("relay", [])
        ]
        self.area_whitelist = source_config.get("areas")
        self.default_status = parse_enum(Status, source_config.get("status"))

    def relay_label(self, text: str) -> Optional[str]:
        """Attribution like 'Abuja Electricity Distribution Company (via Guardian)'."""
        for pattern, label in self.relay_rules:
            if pattern.search(text):
                return f"{label} (via {self.name})"
        return None

    def _fetch_impl(self, ctx) -> Iterator[RawCandidate]:
        """Parse each feed and yield matching entries."""
        for feed_url, doc in self.fetch_documents(ctx, accept=FEED_ACCEPT):
            feed = feedparser.parse(doc.text)

            if feed.bozo and not feed.entries:
                raise FetchError(self.source_id, f"Feed parse error for {feed_url}: {feed.bozo_exception}")

            for entry in feed.entries:
                title = strip_html(entry.get("title", ""))
                link = entry.get("link", "")
                if not title or not link:
                    continue

                body = strip_html(entry_body(entry))
                text = f"{title} {body}"

                if not self.matches_keywords(text) or self.is_blacklisted(text):
                    continue

                domain = None
                if self.auto_domain:
                    domain = classify_domain(text)
                    if domain is None:
                        continue

                yield RawCandidate(
                    title=title,
                    url=urljoin(feed_url, link),
                    summary=body or None,
                    published_at=entry_published(entry),
                    window_text=text,
                    status=self.default_status,
                    affected_areas=extract_affected_areas(body, self.area_whitelist),
                    domain=domain,
                    source_label=self.relay_label(text),
                    raw={"feed_url": feed_url, "guid": entry.get("id")},
                )
