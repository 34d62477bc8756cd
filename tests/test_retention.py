"""Tests for naijainfo/ingest/retention.py."""

import sys
from datetime import datetime, timedelta
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from naijainfo.ingest.models import Domain, NormalizedItem, PlannedWindow, Status, Tier
from naijainfo.ingest.retention import RetentionFilter, sort_items
from naijainfo.ingest.temporal import CIVIL_OFFSET


NOW = datetime(2026, 10, 18, 12, 0, tzinfo=CIVIL_OFFSET)


def make_item(item_id, published_at, status=None, window_start=None, domain=Domain.POWER):
    window = PlannedWindow(start=window_start) if window_start is not None else None
    return NormalizedItem(
        id=item_id,
        source="ikeja_outages",
        source_label="Ikeja Electric",
        tier=Tier.OFFICIAL,
        domain=domain,
        title=f"Notice {item_id}",
        official_url=f"https://www.ikejaelectric.com/cnn/notice.php?id={item_id}",
        published_at=published_at,
        status=status,
        planned_window=window,
    )


class TestRetentionFilter:
    """Tests for RetentionFilter.keep."""

    def test_stale_unplanned_dropped(self):
        item = make_item("0000000000000001", NOW - timedelta(days=45), Status.UNPLANNED)
        assert RetentionFilter(30).apply([item], NOW) == []

    def test_stale_planned_with_future_window_kept(self):
        """An old announcement of an interruption still ahead stays visible."""
        item = make_item("0000000000000001", NOW - timedelta(days=45), Status.PLANNED,
                         window_start=NOW + timedelta(days=10))
        assert RetentionFilter(30).apply([item], NOW) == [item]

    def test_stale_planned_with_past_window_dropped(self):
        item = make_item("0000000000000001", NOW - timedelta(days=45), Status.PLANNED,
                         window_start=NOW - timedelta(days=40))
        assert RetentionFilter(30).apply([item], NOW) == []

    def test_stale_planned_without_window_dropped(self):
        item = make_item("0000000000000001", NOW - timedelta(days=45), Status.PLANNED)
        assert RetentionFilter(30).apply([item], NOW) == []

    def test_recent_item_kept(self):
        item = make_item("0000000000000001", NOW - timedelta(days=2), Status.RESTORED)
        assert RetentionFilter(30).apply([item], NOW) == [item]

    def test_boundary_is_inclusive(self):
        item = make_item("0000000000000001", NOW - timedelta(days=30))
        assert RetentionFilter(30).keep(item, NOW)

    def test_unresolved_publish_time_dropped(self, caplog):
        item = make_item("0000000000000001", None)

        assert RetentionFilter(30).apply([item], NOW) == []
        assert "unresolved publish time" in caplog.text

    def test_exams_items_use_same_window(self):
        old = make_item("0000000000000001", NOW - timedelta(days=31), domain=Domain.EXAMS)
        new = make_item("0000000000000002", NOW - timedelta(days=29), domain=Domain.EXAMS)
        assert RetentionFilter(30).apply([old, new], NOW) == [new]


class TestSortItems:
    """Tests for the final ordering."""

    def test_planned_by_window_then_others_newest_first(self):
        late_window = make_item("0000000000000001", NOW - timedelta(days=1), Status.PLANNED,
                                window_start=NOW + timedelta(days=9))
        early_window = make_item("0000000000000002", NOW - timedelta(days=3), Status.PLANNED,
                                 window_start=NOW + timedelta(days=2))
        no_window = make_item("0000000000000003", NOW - timedelta(days=1), Status.PLANNED)
        old_unplanned = make_item("0000000000000004", NOW - timedelta(days=5), Status.UNPLANNED)
        new_restored = make_item("0000000000000005", NOW - timedelta(hours=2), Status.RESTORED)
        exams = make_item("0000000000000006", NOW - timedelta(days=1), domain=Domain.EXAMS)

        result = sort_items([old_unplanned, exams, no_window, late_window, new_restored, early_window])

        assert [i.id for i in result] == [
            "0000000000000002",
            "0000000000000001",
            "0000000000000003",
            "0000000000000005",
            "0000000000000006",
            "0000000000000004",
        ]

    def test_ties_break_on_id(self):
        a = make_item("00000000000000bb", NOW - timedelta(days=1))
        b = make_item("00000000000000aa", NOW - timedelta(days=1))
        assert [i.id for i in sort_items([a, b])] == ["00000000000000aa", "00000000000000bb"]

    def test_empty(self):
        assert sort_items([]) == []
