"""
Tests for source adapters against offline fixtures and a mocked HTTP session.

Fixtures live in fixtures/ and are dated around mid October 2026, so every test
pins the run clock to NOW.
"""

import sys
from datetime import datetime
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
import requests

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from naijainfo.ingest.base_fetcher import AdapterResult, BaseAdapter, FetchError
from naijainfo.ingest.fetch_context import DocumentCache, FetchContext, FetchResult
from naijainfo.ingest.fetch_feeders import FeederTableAdapter, format_hours, parse_hours
from naijainfo.ingest.fetch_web import notice_url
from naijainfo.ingest.models import Domain, RawCandidate, Status, Tier, VerifiedBy
from naijainfo.ingest.registry import build_adapters
from naijainfo.ingest.settings import load_sources
from naijainfo.ingest.temporal import CIVIL_OFFSET


REPO_ROOT = Path(__file__).resolve().parent.parent
FIXTURES_DIR = REPO_ROOT / "fixtures"
NOW = datetime(2026, 10, 18, 12, 0, tzinfo=CIVIL_OFFSET)

LINKLESS_TABLE_SOURCE = {
    "id": "ikeja_oshodi",
    "name": "Ikeja Electric",
    "type": "scrape",
    "tier": "OFFICIAL",
    "domain": "POWER",
    "status": "PLANNED",
    "url": "https://www.ikejaelectric.com/cnn/index3.php?menu_bu=OSHODI",
    "fixture": "ikeja_unit_table.html",
    "selectors": {"node": "tr", "title": "td.notice", "date": "td.date"},
    "keywords": r"\boutage\b",
}


def offline_ctx():
    return FetchContext(offline=True, fixtures_dir=str(FIXTURES_DIR), now=NOW)


def online_ctx():
    return FetchContext(offline=False, fixtures_dir=str(FIXTURES_DIR), now=NOW)


def source_config(source_id):
    return next(s for s in load_sources() if s["id"] == source_id)


def adapter_for(source_id):
    return build_adapters([source_config(source_id)])[0]


def run_offline(source_id) -> AdapterResult:
    result = adapter_for(source_id).run(offline_ctx())
    assert result.ok, result.error
    return result


def _mock_response(text, status_code=200):
    response = MagicMock()
    response.text = text
    response.status_code = status_code
    if status_code >= 400:
        response.raise_for_status.side_effect = requests.HTTPError(f"{status_code} Error")
    return response


class StubAdapter(BaseAdapter):
    """Yields preset candidates, then optionally fails."""

    type_name = "stub"

    def __init__(self, candidates, error=None):
        super().__init__({"id": "stub", "url": "https://stub.ng", "tier": "MEDIA", "domain": "POWER"})
        self.candidates = candidates
        self.error = error

    def _fetch_impl(self, ctx):
        for candidate in self.candidates:
            yield candidate
        if self.error is not None:
            raise self.error


# =============================================================================
# RSS
# =============================================================================

class TestFeedAdapter:
    """Tests for FeedAdapter."""

    def test_keyword_filter(self):
        """Entries without any configured keyword are skipped."""
        result = run_offline("tcn_feed")
        titles = [c.title for c in result.candidates]

        assert titles == [
            "Planned maintenance on Kainji-Jebba 330kV line",
            "Grid restored after partial disturbance",
        ]

    def test_entry_fields(self):
        candidate = run_offline("tcn_feed").candidates[0]

        assert candidate.url.startswith("https://www.tcn.org.ng/planned-maintenance")
        assert candidate.published_at == "2026-10-15T09:00:00+00:00"
        assert "<p>" not in candidate.summary
        assert candidate.affected_areas == ["Ilorin", "Jebba", "Mokwa"]
        assert "25/10/2026" in candidate.window_text

    def test_auto_domain_routes_and_drops(self):
        """Media feeds route each entry to a domain and drop unmatched ones."""
        result = run_offline("vanguard")
        domains = {c.title: c.domain for c in result.candidates}

        assert domains == {
            "Nationwide blackout as national grid collapses again": Domain.POWER,
            "NECO releases 2026 SSCE external results": Domain.EXAMS,
        }

    def test_relay_label(self):
        candidate = run_offline("guardian").candidates[0]
        assert candidate.source_label == "Abuja Electricity Distribution Company (via Guardian)"

    def test_no_relay_match(self):
        candidate = run_offline("punch").candidates[0]
        assert candidate.source_label is None

    def test_limit(self):
        config = dict(source_config("tcn_feed"), limit=1)
        result = build_adapters([config])[0].run(offline_ctx())
        assert len(result.candidates) == 1

    def test_normalized_provenance(self):
        adapter = adapter_for("jamb_feed")
        items = adapter.normalizer().normalize_all(adapter.run(offline_ctx()).candidates)

        assert len(items) == 2
        assert all(i.domain == Domain.EXAMS for i in items)
        assert all(i.tier == Tier.OFFICIAL for i in items)
        assert all(i.verified_by == VerifiedBy.REGULATORY for i in items)

    def test_broken_feed_fails(self):
        ctx = online_ctx()
        with patch.object(ctx.session, "get", return_value=_mock_response("<html><p>oops")):
            result = adapter_for("punch").run(ctx)

        assert not result.ok
        assert result.candidates == []


# =============================================================================
# Scrape
# =============================================================================

class TestScrapeAdapter:
    """Tests for ScrapeAdapter."""

    def test_listing_filters(self):
        """Short titles and items beyond the staleness bound are skipped."""
        result = run_offline("tcn_news")

        assert len(result.candidates) == 1
        candidate = result.candidates[0]
        assert candidate.title.startswith("Public Notice: Shutdown of Kumbotso")
        assert candidate.url == "https://www.tcn.org.ng/public-notice-shutdown-of-kumbotso-substation/"
        assert candidate.published_at == "2026-10-16T11:00:00+01:00"
        assert candidate.affected_areas == ["Kano"]

    def test_blacklist_and_undated(self):
        result = run_offline("ekedc_news")
        assert [c.title for c in result.candidates] == ["Scheduled maintenance: Lekki 2 feeder"]

    def test_date_from_text(self):
        candidate = run_offline("ekedc_news").candidates[0]
        assert candidate.published_at == "2026-10-14T09:00:00+01:00"

    def test_default_status_and_areas(self):
        candidate = run_offline("ikeja_outages").candidates[0]

        assert candidate.status == Status.PLANNED
        assert candidate.affected_areas == ["Alausa", "Agidingbi", "Oregun"]
        assert candidate.url == "https://www.ikejaelectric.com/cnn/notice.php?id=4412"

    def test_min_title_length(self):
        result = run_offline("nerc_news")
        assert [c.title for c in result.candidates] == [
            "NERC directs DisCos to publish supply interruption schedules"
        ]

    def test_linkless_rows_get_distinct_urls(self):
        """Rows without a link of their own stay apart by title."""
        adapter = build_adapters([LINKLESS_TABLE_SOURCE])[0]
        result = adapter.run(offline_ctx())

        urls = [c.url for c in result.candidates]
        assert urls == [
            "https://www.ikejaelectric.com/cnn/index3.php?menu_bu=OSHODI"
            "&notice=planned-outage-on-alausa-11kv-feeder",
            "https://www.ikejaelectric.com/cnn/index3.php?menu_bu=OSHODI"
            "&notice=planned-outage-on-oregun-33kv-feeder",
        ]
        items = adapter.normalizer().normalize_all(result.candidates)
        assert len({i.id for i in items}) == 2

    def test_notice_url(self):
        url = notice_url("https://x.ng/notices", "  Outage: Lekki / Ajah!  ")
        assert url == "https://x.ng/notices?notice=outage-lekki-ajah"
        assert notice_url("https://x.ng/n?bu=IKEJA#top", "A b") == "https://x.ng/n?bu=IKEJA&notice=a-b"

    def test_follow_links_online(self):
        listing = (FIXTURES_DIR / "nerc_news.html").read_text()
        article = (
            "<html><head><meta property='article:published_time' content='2026-10-12T15:30:00+01:00'></head>"
            "<body><div class='entry-content'><p>Distribution companies must publish schedules.</p>"
            "<p>Sanctions apply.</p></div></body></html>"
        )

        def fake_get(url, **kwargs):
            return _mock_response(article if "directs-discos" in url else listing)

        ctx = online_ctx()
        with patch.object(ctx.session, "get", side_effect=fake_get):
            result = adapter_for("nerc_news").run(ctx)

        candidate = result.candidates[0]
        assert candidate.summary == "Distribution companies must publish schedules. Sanctions apply."
        # Listing date wins over the article meta
        assert candidate.published_at == "2026-10-12T09:00:00+01:00"

    def test_article_failure_keeps_listing_text(self):
        listing = (FIXTURES_DIR / "nerc_news.html").read_text()

        def fake_get(url, **kwargs):
            if "directs-discos" in url:
                return _mock_response("", status_code=500)
            return _mock_response(listing)

        ctx = online_ctx()
        with patch.object(ctx.session, "get", side_effect=fake_get):
            result = adapter_for("nerc_news").run(ctx)

        assert result.ok
        assert result.candidates[0].summary.startswith("The Commission has directed")


# =============================================================================
# Feeder tables
# =============================================================================

class TestFeederTableAdapter:
    """Tests for FeederTableAdapter."""

    def test_low_supply_and_downgraded_rows(self):
        result = run_offline("jed_feeders")
        titles = [c.title for c in result.candidates]

        assert titles == [
            "Bukuru feeder recorded 3.5 hours of supply",
            "Tudun Wada feeder recorded 2 hours of supply",
            "Gombe Road feeder recorded 4 hours of supply",
            "Dadin Kowa feeder downgraded in Gombe",
        ]
        assert all(c.status == Status.UNPLANNED for c in result.candidates)
        assert all(c.published_at == "2026-10-17T09:00:00+01:00" for c in result.candidates)

    def test_row_urls_are_unique(self):
        urls = [c.url for c in run_offline("jed_feeders").candidates]

        assert len(urls) == len(set(urls))
        assert urls[0] == "https://jedplc.com/feeder-availability.php?feeder=Bukuru"

    def test_aggregation_over_bound(self):
        config = dict(source_config("jed_feeders"), aggregate_over=2)
        result = FeederTableAdapter(config).run(offline_ctx())
        titles = [c.title for c in result.candidates]

        assert titles == [
            "3 feeders experiencing low supply hours",
            "Dadin Kowa feeder downgraded in Gombe",
        ]
        assert result.candidates[0].url == "https://jedplc.com/feeder-availability.php"
        assert result.candidates[0].affected_areas == ["Bukuru", "Jos Metro", "Gombe"]

    def test_page_without_date_uses_run_day(self):
        html = (
            "<table><tr><th>Feeder</th><th>Hours</th></tr>"
            "<tr><td>Zaria Road</td><td>1</td></tr></table>"
        )
        ctx = online_ctx()
        with patch.object(ctx.session, "get", return_value=_mock_response(html)):
            result = FeederTableAdapter({"id": "feeders", "url": "https://x.ng/feeders"}).run(ctx)

        assert result.candidates[0].published_at == "2026-10-18T00:00:00+01:00"

    def test_hours_helpers(self):
        assert parse_hours("3,5 hrs") == 3.5
        assert parse_hours("N/A") is None
        assert format_hours(1.0) == "1 hour"
        assert format_hours(2.5) == "2.5 hours"


# =============================================================================
# Base adapter and fetch context
# =============================================================================

class TestAdapterIsolation:
    """run() never raises and keeps partial output."""

    def test_partial_output_kept(self):
        candidates = [RawCandidate(title="Feeder fault in Yaba", url="https://stub.ng/1")]
        result = StubAdapter(candidates, error=FetchError("stub", "connection reset")).run(offline_ctx())

        assert len(result.candidates) == 1
        assert result.error == "stub: connection reset"
        assert not result.ok

    def test_unexpected_exception_captured(self):
        result = StubAdapter([], error=KeyError("title")).run(offline_ctx())

        assert result.candidates == []
        assert result.error.startswith("KeyError")

    def test_network_error(self):
        ctx = online_ctx()
        with patch.object(ctx.session, "get", side_effect=requests.ConnectionError("refused")):
            result = adapter_for("tcn_feed").run(ctx)

        assert not result.ok
        assert "Fetch failed" in result.error

    def test_failing_url_skipped(self):
        """Multi-URL sources keep going when one URL fails."""
        page = (FIXTURES_DIR / "ikeja_outages.html").read_text()

        def fake_get(url, **kwargs):
            if url.endswith("menu_bu=ABULE"):
                raise requests.Timeout("read timeout")
            return _mock_response(page)

        ctx = online_ctx()
        with patch.object(ctx.session, "get", side_effect=fake_get):
            result = adapter_for("ikeja_outages").run(ctx)

        assert result.ok
        # Same notice listed under every business unit is emitted once
        assert len(result.candidates) == 1

    def test_missing_fixture(self):
        config = dict(source_config("punch"), fixture="nope.xml")
        result = build_adapters([config])[0].run(offline_ctx())
        assert "unreadable" in result.error


class TestFetchContext:
    """Tests for FetchContext and DocumentCache."""

    def test_cache_serves_repeat_requests(self):
        ctx = online_ctx()
        with patch.object(ctx.session, "get", return_value=_mock_response("<rss/>")) as mock_get:
            first = ctx.get("https://punchng.com/feed/", source_id="punch")
            second = ctx.get("https://punchng.com/feed/", source_id="punch")

        assert mock_get.call_count == 1
        assert not first.from_cache
        assert second.from_cache

    def test_request_carries_timeout_and_user_agent(self):
        ctx = online_ctx()
        with patch.object(ctx.session, "get", return_value=_mock_response("ok")) as mock_get:
            ctx.get("https://nerc.gov.ng/", source_id="nerc_news")

        kwargs = mock_get.call_args.kwargs
        assert kwargs["timeout"] == ctx.timeout
        assert kwargs["headers"]["User-Agent"].startswith("NaijaInfo-Ingest")

    def test_http_error_raises_fetch_error(self):
        ctx = online_ctx()
        with patch.object(ctx.session, "get", return_value=_mock_response("", status_code=404)):
            with pytest.raises(FetchError):
                ctx.get("https://nerc.gov.ng/missing", source_id="nerc_news")

    def test_offline_without_fixture(self):
        with pytest.raises(FetchError, match="no fixture"):
            offline_ctx().get("https://x.ng", source_id="x")

    def test_cache_expiry(self):
        cache = DocumentCache(ttl_seconds=0)
        cache.put("https://x.ng", FetchResult(url="https://x.ng", text="a"))
        with patch("naijainfo.ingest.fetch_context.time.monotonic", return_value=10 ** 9):
            assert cache.get("https://x.ng") is None

    def test_probe(self):
        ctx = online_ctx()
        response = MagicMock(status_code=405)
        with patch.object(ctx.session, "head", return_value=response):
            probe = ctx.probe("https://www.tcn.org.ng/feed/")

        assert probe.ok is False
        assert probe.status_code == 405

    def test_probe_network_error(self):
        ctx = online_ctx()
        with patch.object(ctx.session, "head", side_effect=requests.ConnectionError("dns")):
            probe = ctx.probe("https://www.tcn.org.ng/feed/")

        assert probe.ok is False
        assert "dns" in probe.error
