"""Listing-page scraper for utility and regulator sites using CSS selectors."""

import logging
import re
from datetime import datetime, timedelta
from typing import Any, Dict, Iterator, Optional, Tuple
from urllib.parse import parse_qsl, urlencode, urljoin, urlsplit, urlunsplit

from .base_fetcher import BaseAdapter, FetchError
from .models import RawCandidate, Status, parse_enum
from .normalize import extract_affected_areas, normalize_whitespace, truncate
from .temporal import find_instant, format_instant, parse_instant

logger = logging.getLogger(__name__)

DEFAULT_NODE_SELECTOR = "article, .post, .td_module_wrap, .blog-post, .news-item, .card"
DEFAULT_TITLE_SELECTOR = "h1, h2, h3, h4, .entry-title, .td-module-title, .title"
DEFAULT_DATE_SELECTOR = "time, .date, .entry-date, .post-date, .td-post-date, .published"
DEFAULT_BODY_SELECTOR = ".entry-summary, .td-excerpt, .excerpt, .summary, p"
DEFAULT_ARTICLE_SELECTOR = ".entry-content, .post-content, .td-post-content, article, main"

DEFAULT_MIN_TITLE_LENGTH = 10
DEFAULT_MAX_AGE_DAYS = 90
DEFAULT_MAX_ARTICLES = 30

_SLUG_RE = re.compile(r"[^a-z0-9]+")
MAX_SLUG_LENGTH = 80


def notice_url(page_url: str, title: str) -> str:
    """Per-notice URL for a card with no link of its own: page URL plus a title slug."""
    slug = _SLUG_RE.sub("-", title.lower()).strip("-")[:MAX_SLUG_LENGTH].rstrip("-")
    parts = urlsplit(page_url)
    query = parse_qsl(parts.query, keep_blank_values=True) + [("notice", slug)]
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query), ""))


def node_date(node, date_selector: str) -> Optional[datetime]:
    """Resolve the publish date of a listing node from time[datetime], a date element, or its text."""
    date_elem = node.select_one(date_selector)
    if date_elem is not None:
        if date_elem.has_attr("datetime"):
            parsed = parse_instant(date_elem["datetime"])
            if parsed:
                return parsed
        parsed = parse_instant(date_elem.get_text(" ", strip=True))
        if parsed:
            return parsed
    return find_instant(node.get_text(" ", strip=True))


class ScrapeAdapter(BaseAdapter):
    """
    Adapter for HTML listing pages.

    Config keys beyond the common ones:
        selectors: {node, title, date, body, article} CSS overrides
        min_title_length: shorter titles are discarded (navigation links, labels)
        max_age_days: staleness bound for listed items
        follow_links / max_articles: fetch each matching article for its body and date
        areas: location whitelist for affected-area extraction
        status: default status for sources that only publish one kind of notice
    """

    type_name = "scrape"

    def __init__(self, source_config: Dict[str, Any]):
        super().__init__(source_config)
        selectors = source_config.get("selectors", {}) or {}
        self.node_selector = selectors.get("node", DEFAULT_NODE_SELECTOR)
        self.title_selector = selectors.get("title", DEFAULT_TITLE_SELECTOR)
        self.date_selector = selectors.get("date", DEFAULT_DATE_SELECTOR)
        self.body_selector = selectors.get("body", DEFAULT_BODY_SELECTOR)
        self.article_selector = selectors.get("article", DEFAULT_ARTICLE_SELECTOR)
        self.min_title_length = source_config.get("min_title_length", DEFAULT_MIN_TITLE_LENGTH)
        self.max_age_days = source_config.get("max_age_days", DEFAULT_MAX_AGE_DAYS)
        self.follow_links = bool(source_config.get("follow_links", False))
        self.max_articles = source_config.get("max_articles", DEFAULT_MAX_ARTICLES)
        self.area_whitelist = source_config.get("areas")
        self.default_status = parse_enum(Status, source_config.get("status"))

    def _extract_title(self, node, page_url: str) -> Tuple[str, Optional[str]]:
        title_elem = node.select_one(self.title_selector)
        link_elem = None
        if title_elem is not None:
            link_elem = title_elem if title_elem.name == "a" else title_elem.find("a")
        if link_elem is None:
            link_elem = node.find("a", href=True)

        title = normalize_whitespace(title_elem.get_text(" ")) if title_elem is not None else ""
        if not title and link_elem is not None:
            title = normalize_whitespace(link_elem.get_text(" "))

        link = None
        if link_elem is not None and link_elem.get("href"):
            link = urljoin(page_url, link_elem["href"])
        return title, link

    def _extract_body(self, node, title: str) -> str:
        parts = []
        for elem in node.select(self.body_selector):
            text = normalize_whitespace(elem.get_text(" "))
            if text and text != title and text not in parts:
                parts.append(text)
        return truncate(" ".join(parts))

    def _fetch_article(self, ctx, url: str) -> Tuple[str, Optional[datetime]]:
        """Body text and publish time of an article page."""
        doc = ctx.get(url, source_id=self.source_id)
        soup = ctx.soup(doc.text)

        published = None
        meta = soup.find("meta", attrs={"property": "article:published_time"})
        if meta is not None and meta.get("content"):
            published = parse_instant(meta["content"])
        if published is None:
            published = node_date(soup, self.date_selector)

        container = soup.select_one(self.article_selector)
        body = ""
        if container is not None:
            body = normalize_whitespace(" ".join(p.get_text(" ") for p in container.find_all("p")))
            body = body or normalize_whitespace(container.get_text(" "))
        return truncate(body), published

    def _fetch_impl(self, ctx) -> Iterator[RawCandidate]:
        """Walk listing nodes, filter, optionally follow links, and yield candidates."""
        cutoff = ctx.now - timedelta(days=self.max_age_days)
        seen_links = set()

        for page_url, doc in self.fetch_documents(ctx):
            soup = ctx.soup(doc.text)
            followed = 0

            for node in soup.select(self.node_selector):
                title, link = self._extract_title(node, page_url)
                if len(title) < self.min_title_length:
                    continue

                key = link or f"{page_url}|{title}"
                if key in seen_links:
                    continue

                body = self._extract_body(node, title)
                text = f"{title} {body}"
                if not self.matches_keywords(text) or self.is_blacklisted(text):
                    continue

                published = node_date(node, self.date_selector)

                if self.follow_links and link and not doc.from_fixture and followed < self.max_articles:
                    followed += 1
                    try:
                        article_body, article_published = self._fetch_article(ctx, link)
                    except FetchError as e:
                        logger.warning(f"{self.source_id}: article fetch failed, using listing text: {e}")
                    else:
                        body = article_body or body
                        published = published or article_published
                        text = f"{title} {body}"

                if published is None:
                    logger.debug(f"{self.source_id}: no date for '{title[:60]}', skipping")
                    continue
                if published < cutoff:
                    continue

                seen_links.add(key)
                yield RawCandidate(
                    title=title,
                    url=link or notice_url(page_url, title),
                    summary=body or None,
                    published_at=format_instant(published),
                    window_text=text,
                    status=self.default_status,
                    affected_areas=extract_affected_areas(text, self.area_whitelist),
                    raw={"page_url": page_url},
                )
