"""Abstract base class for all source adapters with failure isolation."""

import logging
import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Pattern, Tuple

from .models import Domain, RawCandidate, Tier, VerifiedBy, parse_enum
from .normalize import Normalizer

logger = logging.getLogger(__name__)

# Default provenance tag per tier when a source does not set verified_by
DEFAULT_VERIFIED_BY = {
    Tier.OFFICIAL: VerifiedBy.DISCO,
    Tier.MEDIA: VerifiedBy.MEDIA,
    Tier.COMMUNITY: VerifiedBy.COMMUNITY,
    Tier.UNKNOWN: VerifiedBy.UNKNOWN,
}


class FetchError(Exception):
    """Exception raised when a fetch or parse step fails."""
    def __init__(self, source_id: str, message: str, original_error: Optional[Exception] = None):
        self.source_id = source_id
        self.message = message
        self.original_error = original_error
        super().__init__(f"{source_id}: {message}")


@dataclass
class AdapterResult:
    """Outcome of one adapter run. Candidates are kept even when an error occurred."""
    adapter: str
    candidates: List[RawCandidate] = field(default_factory=list)
    error: Optional[str] = None
    duration_s: float = 0.0
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None and not self.timed_out


def compile_pattern(value: Any) -> Optional[Pattern]:
    """Compile a keyword config value: a regex string or a list of literal words."""
    if not value:
        return None
    if isinstance(value, (list, tuple)):
        value = r"\b(" + "|".join(re.escape(str(v)) for v in value) + r")\b"
    return re.compile(str(value), re.IGNORECASE)


def compile_patterns(values: Any) -> List[Pattern]:
    if not values:
        return []
    if isinstance(values, str):
        values = [values]
    return [re.compile(str(v), re.IGNORECASE) for v in values]


class BaseAdapter(ABC):
    """
    Abstract base for all source adapters.

    Subclasses implement ``_fetch_impl`` as a generator of RawCandidates. ``run``
    drives it, so whatever was yielded before a failure is kept.
    """

    type_name = "base"

    def __init__(self, source_config: Dict[str, Any]):
        self.source_id = source_config["id"]
        self.name = source_config.get("name", self.source_id)
        self.tier = parse_enum(Tier, source_config.get("tier"), Tier.UNKNOWN)

        domain = source_config.get("domain")
        self.auto_domain = str(domain).lower() == "auto"
        self.domain = None if self.auto_domain else parse_enum(Domain, domain)

        self.verified_by = parse_enum(
            VerifiedBy, source_config.get("verified_by"), DEFAULT_VERIFIED_BY[self.tier]
        )
        self.urls: List[str] = list(source_config.get("urls") or [source_config["url"]])
        self.fixture: Optional[str] = source_config.get("fixture")
        self.limit: Optional[int] = source_config.get("limit")
        self.model_threshold: Optional[float] = source_config.get("model_threshold")
        self.keywords = compile_pattern(source_config.get("keywords"))
        self.blacklist = compile_patterns(source_config.get("blacklist"))
        self.config = source_config

    @abstractmethod
    def _fetch_impl(self, ctx) -> Iterator[RawCandidate]:
        """
        Internal extraction - to be overridden by subclasses.

        Args:
            ctx: FetchContext for the run

        Yields:
            RawCandidate per extracted item

        Raises:
            FetchError (or anything else) on failure
        """
        pass

    def run(self, ctx) -> AdapterResult:
        """
        Run the adapter, never raising.

        Args:
            ctx: FetchContext for the run

        Returns:
            AdapterResult with candidates extracted before any failure
        """
        started = time.monotonic()
        candidates: List[RawCandidate] = []
        error = None

        try:
            for candidate in self._fetch_impl(ctx):
                candidates.append(candidate)
                if self.limit and len(candidates) >= self.limit:
                    break
        except FetchError as e:
            error = str(e)
            logger.warning(f"{self.source_id} failed after {len(candidates)} item(s): {e}")
        except Exception as e:
            error = f"{type(e).__name__}: {e}"
            logger.error(f"{self.source_id} crashed after {len(candidates)} item(s): {e}", exc_info=True)

        duration = time.monotonic() - started
        logger.info(f"{self.source_id}: {len(candidates)} candidate(s) in {duration:.2f}s")
        return AdapterResult(
            adapter=self.source_id,
            candidates=candidates,
            error=error,
            duration_s=duration,
        )

    def fetch_documents(self, ctx, accept: Optional[str] = None) -> Iterator[Tuple[str, Any]]:
        """
        Yield (url, FetchResult) for each configured URL.

        Offline, only the first URL is served (from the adapter's fixture). Online,
        a failing URL is logged and skipped; if every URL fails the last error is raised.
        """
        if ctx.offline:
            yield self.urls[0], ctx.get(self.urls[0], source_id=self.source_id, fixture=self.fixture)
            return

        last_error: Optional[FetchError] = None
        fetched = 0
        for url in self.urls:
            try:
                if accept:
                    doc = ctx.get(url, source_id=self.source_id, accept=accept)
                else:
                    doc = ctx.get(url, source_id=self.source_id)
            except FetchError as e:
                logger.warning(f"{self.source_id}: {e}")
                last_error = e
                continue
            fetched += 1
            yield url, doc

        if fetched == 0 and last_error is not None:
            raise last_error

    def matches_keywords(self, text: str) -> bool:
        return self.keywords is None or bool(self.keywords.search(text or ""))

    def is_blacklisted(self, text: str) -> bool:
        return any(p.search(text or "") for p in self.blacklist)

    def normalizer(self) -> Normalizer:
        return Normalizer(
            source=self.source_id,
            source_label=self.name,
            tier=self.tier,
            domain=self.domain,
            verified_by=self.verified_by,
            adapter=self.source_id,
        )

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.source_id}>"
