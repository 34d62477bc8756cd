"""
Shared fetch context handed to every adapter in a run.

Owns the HTTP session configuration, timeouts, the offline fixture toggle and a
thread-safe per-run document cache. One context is built per pipeline run and
discarded afterwards.
"""

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional, Tuple

import requests
from bs4 import BeautifulSoup
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .base_fetcher import FetchError
from .settings import REPO_ROOT
from .temporal import civil_now

logger = logging.getLogger(__name__)

USER_AGENT = "NaijaInfo-Ingest/1.0 (+https://ng-power-exams.local)"

# Request timeout (connect, read) in seconds
REQUEST_TIMEOUT = (5, 20)
PROBE_TIMEOUT = 2

# Session-level retry for network transients
_retry = Retry(total=1, allowed_methods=["GET", "HEAD"], backoff_factor=1, status_forcelist=[502, 503, 504])
_session = requests.Session()
_session.mount("https://", HTTPAdapter(max_retries=_retry))
_session.mount("http://", HTTPAdapter(max_retries=_retry))

HTML_ACCEPT = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"
FEED_ACCEPT = "application/rss+xml, application/atom+xml, application/xml;q=0.9, text/xml;q=0.8, */*;q=0.5"

DEFAULT_HEADERS = {
    "User-Agent": USER_AGENT,
    "Accept-Language": "en-NG,en;q=0.9",
    "Connection": "keep-alive",
}


@dataclass
class FetchResult:
    """Body of one fetched document."""
    url: str
    text: str
    status_code: int = 200
    from_fixture: bool = False
    from_cache: bool = False


@dataclass
class ProbeResult:
    """Outcome of a reachability check."""
    url: str
    ok: bool
    status_code: Optional[int] = None
    error: Optional[str] = None
    elapsed_s: float = 0.0


class DocumentCache:
    """
    Thread-safe in-memory document cache keyed by URL.

    Entries expire after ``ttl_seconds``. Lives for one run.
    """

    def __init__(self, ttl_seconds: float = 600):
        self.ttl_seconds = ttl_seconds
        self._entries: Dict[str, Tuple[float, FetchResult]] = {}
        self._lock = threading.Lock()

    def get(self, url: str) -> Optional[FetchResult]:
        with self._lock:
            entry = self._entries.get(url)
            if entry is None:
                return None
            stored_at, result = entry
            if time.monotonic() - stored_at > self.ttl_seconds:
                del self._entries[url]
                return None
            return result

    def put(self, url: str, result: FetchResult):
        with self._lock:
            self._entries[url] = (time.monotonic(), result)

    def clear(self):
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


def resolve_fixtures_dir(fixtures_dir: str) -> Path:
    path = Path(fixtures_dir)
    if path.is_absolute() or path.exists():
        return path
    return REPO_ROOT / fixtures_dir


class FetchContext:
    """Network (or fixture) access shared by all adapters in a run."""

    def __init__(
        self,
        offline: bool = False,
        fixtures_dir: str = "fixtures",
        timeout: Tuple[float, float] = REQUEST_TIMEOUT,
        probe_timeout: float = PROBE_TIMEOUT,
        cache: Optional[DocumentCache] = None,
        session: Optional[requests.Session] = None,
        user_agent: str = USER_AGENT,
        now: Optional[datetime] = None,
    ):
        self.offline = offline
        # Reference instant for staleness checks during this run
        self.now = now or civil_now()
        self.fixtures_dir = resolve_fixtures_dir(fixtures_dir)
        self.timeout = tuple(timeout)
        self.probe_timeout = probe_timeout
        self.cache = cache if cache is not None else DocumentCache()
        self.session = session or _session
        self.headers = dict(DEFAULT_HEADERS, **{"User-Agent": user_agent})

    @classmethod
    def from_settings(cls, settings, now: Optional[datetime] = None) -> "FetchContext":
        return cls(
            now=now,
            offline=settings.offline,
            fixtures_dir=settings.fixtures_dir,
            timeout=settings.request_timeout,
            probe_timeout=settings.probe_timeout,
            cache=DocumentCache(settings.cache_ttl_seconds),
        )

    def load_fixture(self, fixture: Optional[str], url: str, source_id: str = "") -> FetchResult:
        if not fixture:
            raise FetchError(source_id, f"Offline mode and no fixture configured for {url}")
        path = self.fixtures_dir / fixture
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as e:
            raise FetchError(source_id, f"Fixture {path} unreadable: {e}", e) from e
        logger.debug(f"{source_id}: using fixture {path} for {url}")
        return FetchResult(url=url, text=text, from_fixture=True)

    def get(
        self,
        url: str,
        source_id: str = "",
        fixture: Optional[str] = None,
        accept: str = HTML_ACCEPT,
    ) -> FetchResult:
        """
        Fetch a document, honouring offline mode and the run cache.

        Args:
            url: Absolute URL
            source_id: Adapter id for error attribution
            fixture: Fixture file name used in offline mode
            accept: Accept header value

        Raises:
            FetchError: On network/HTTP failure or missing fixture
        """
        if self.offline:
            return self.load_fixture(fixture, url, source_id)

        cached = self.cache.get(url)
        if cached is not None:
            return FetchResult(url=cached.url, text=cached.text, status_code=cached.status_code, from_cache=True)

        try:
            response = self.session.get(
                url,
                timeout=self.timeout,
                headers=dict(self.headers, Accept=accept),
            )
            response.raise_for_status()
        except requests.RequestException as e:
            raise FetchError(source_id, f"Fetch failed for {url}: {e}", e) from e

        result = FetchResult(url=url, text=response.text, status_code=response.status_code)
        self.cache.put(url, result)
        return result

    @staticmethod
    def soup(html: str) -> BeautifulSoup:
        return BeautifulSoup(html, "lxml")

    def probe(self, url: str) -> ProbeResult:
        """HEAD request with the short probe timeout."""
        started = time.monotonic()
        try:
            response = self.session.head(
                url,
                timeout=self.probe_timeout,
                headers=self.headers,
                allow_redirects=True,
            )
        except requests.RequestException as e:
            return ProbeResult(url=url, ok=False, error=str(e), elapsed_s=time.monotonic() - started)
        return ProbeResult(
            url=url,
            ok=response.status_code < 400,
            status_code=response.status_code,
            elapsed_s=time.monotonic() - started,
        )
