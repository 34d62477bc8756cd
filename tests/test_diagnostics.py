"""Tests for per-run adapter diagnostics and API key checks."""

import os
import sys
from datetime import datetime, timedelta
from pathlib import Path
from unittest.mock import patch

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from naijainfo.config.secrets import MissingAPIKeyError, check_keys, get_openai_key, has_openai_key
from naijainfo.ingest.base_fetcher import AdapterResult
from naijainfo.ingest.diagnostics import AdapterDiagnostics, RunDiagnostics
from naijainfo.ingest.models import Domain, NormalizedItem, RawCandidate, Tier
from naijainfo.ingest.temporal import CIVIL_OFFSET


NOW = datetime(2026, 10, 18, 12, 0, tzinfo=CIVIL_OFFSET)


def candidates(n):
    return [RawCandidate(title=f"Notice {i}", url=f"https://x.ng/{i}") for i in range(n)]


def make_item(item_id, domain=Domain.POWER, tier=Tier.OFFICIAL, hours_ago=1):
    return NormalizedItem(
        id=item_id,
        source="tcn_feed",
        source_label="Transmission Company of Nigeria",
        tier=tier,
        domain=domain,
        title="Grid restored",
        official_url="https://www.tcn.org.ng/",
        published_at=NOW - timedelta(hours=hours_ago),
    )


class TestAdapterStatus:
    """Tests for AdapterDiagnostics status transitions."""

    def test_ok(self):
        diag = AdapterDiagnostics(adapter="tcn_feed")
        diag.record_result(AdapterResult(adapter="tcn_feed", candidates=candidates(4), duration_s=0.12345))

        assert diag.status == "OK"
        assert diag.candidates == 4
        assert diag.sample_titles == ["Notice 0", "Notice 1", "Notice 2"]
        assert diag.duration_s == 0.123

    def test_empty(self):
        diag = AdapterDiagnostics(adapter="tcn_feed")
        diag.record_result(AdapterResult(adapter="tcn_feed"))
        assert diag.status == "EMPTY"

    def test_failed(self):
        diag = AdapterDiagnostics(adapter="tcn_feed")
        diag.record_result(AdapterResult(adapter="tcn_feed", error="tcn_feed: timeout"))
        assert diag.status == "FAILED"

    def test_partial(self):
        diag = AdapterDiagnostics(adapter="tcn_feed")
        diag.record_result(AdapterResult(adapter="tcn_feed", candidates=candidates(1), error="boom"))
        assert diag.status == "PARTIAL"

    def test_latest_published(self):
        diag = AdapterDiagnostics(adapter="tcn_feed")
        diag.record_items([make_item("1", hours_ago=5), make_item("2", hours_ago=2)])

        assert diag.normalized == 2
        assert diag.latest_published_at == "2026-10-18T10:00:00+01:00"


class TestRunDiagnostics:
    """Tests for RunDiagnostics aggregation."""

    def test_drops_accumulate(self):
        run = RunDiagnostics()
        run.record_drop("dedup", 2)
        run.record_drop("dedup", 1)
        run.record_drop("retention", 0)

        assert run.stage_drops == {"dedup": 3}

    def test_item_counts_by_domain_and_tier(self):
        run = RunDiagnostics()
        run.record_items([
            make_item("1"),
            make_item("2", tier=Tier.MEDIA),
            make_item("3", domain=Domain.EXAMS),
            make_item("4"),
        ])

        assert run.item_counts == {"POWER_OFFICIAL": 2, "POWER_MEDIA": 1, "EXAMS_OFFICIAL": 1}
        assert run.total_items == 4

    def test_summary_and_dict(self):
        run = RunDiagnostics(classifier="heuristic")
        run.get_or_create("a").record_result(AdapterResult(adapter="a", candidates=candidates(1)))
        run.get_or_create("b").record_result(AdapterResult(adapter="b", error="b: down"))
        run.finish()

        summary = run.get_summary()
        data = run.to_dict()

        assert summary["failed_adapters"] == ["b"]
        assert summary["status_counts"]["OK"] == 1
        assert data["classifier"] == "heuristic"
        assert data["adapters"]["b"]["error"] == "b: down"
        assert data["finished_at"] is not None

    def test_get_or_create_reuses(self):
        run = RunDiagnostics()
        assert run.get_or_create("a", name="A") is run.get_or_create("a")


class TestSecrets:
    """Tests for API key helpers."""

    def test_missing_key(self):
        with patch.dict(os.environ, {"OPENAI_API_KEY": ""}):
            assert has_openai_key() is False
            assert check_keys() == {"OPENAI_API_KEY": "MISSING"}
            with pytest.raises(MissingAPIKeyError):
                get_openai_key()

    def test_present_key(self):
        with patch.dict(os.environ, {"OPENAI_API_KEY": " sk-test "}):
            assert has_openai_key() is True
            assert get_openai_key() == "sk-test"
