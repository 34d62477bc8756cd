"""
Feeder availability table adapter.

Distribution companies publish daily tables of feeders with their supply hours and
band. Feeders at or below the low-supply bound, or flagged as downgraded, become
UNPLANNED outage items; a long list of them collapses into one aggregate item.
"""

import logging
import re
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional
from urllib.parse import urlencode

from .base_fetcher import BaseAdapter
from .models import Domain, RawCandidate, Status
from .normalize import normalize_whitespace, uniq_areas
from .temporal import find_instant, format_instant, to_civil

logger = logging.getLogger(__name__)

DEFAULT_LOW_SUPPLY_HOURS = 4
DEFAULT_AGGREGATE_OVER = 5
FEEDER_CONFIDENCE = 0.9
MAX_AGGREGATE_AREAS = 10

# Normalized header text -> field
HEADER_FIELDS = {
    "feeder name": "feeder",
    "feeder": "feeder",
    "business unit": "business_unit",
    "undertaking": "business_unit",
    "location": "business_unit",
    "station": "business_unit",
    "band": "band",
    "customer band": "band",
    "band class": "band",
    "hours of availability": "hours",
    "hours availability": "hours",
    "hours of supply": "hours",
    "hours": "hours",
    "remarks": "remarks",
    "status": "remarks",
    "comment": "remarks",
    "downgraded from": "remarks",
}

_DOWNGRADE_RE = re.compile(r"downgrad", re.IGNORECASE)
_AREA_SPLIT_RE = re.compile(r"[,/;&]+")


def normalize_header(header: str) -> str:
    return re.sub(r"[^a-z0-9]+", " ", header.lower()).strip()


def parse_hours(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    match = re.search(r"(\d+(?:\.\d+)?)", value.replace(",", "."))
    return float(match.group(1)) if match else None


def format_hours(hours: float) -> str:
    whole = int(hours) if hours == int(hours) else hours
    return f"{whole} hour{'' if hours == 1 else 's'}"


class FeederTableAdapter(BaseAdapter):
    """Adapter for feeder availability / downgraded feeder tables."""

    type_name = "feeder_table"

    def __init__(self, source_config: Dict[str, Any]):
        super().__init__(source_config)
        if self.domain is None:
            self.domain = Domain.POWER
        self.low_supply_hours = source_config.get("low_supply_hours", DEFAULT_LOW_SUPPLY_HOURS)
        self.aggregate_over = source_config.get("aggregate_over", DEFAULT_AGGREGATE_OVER)

    def page_date(self, soup, now: datetime) -> datetime:
        """Date printed on the page, or the civil day of the fetch."""
        time_elem = soup.find("time")
        if time_elem is not None:
            found = find_instant(time_elem.get("datetime", "") + " " + time_elem.get_text(" "))
            if found:
                return found
        for elem in soup.select("h1, h2, h3, caption, p"):
            found = find_instant(elem.get_text(" "))
            if found:
                return found
        # Midnight keeps ids stable for repeated runs on the same day
        return to_civil(now).replace(hour=0, minute=0, second=0, microsecond=0)

    def parse_rows(self, soup) -> List[Dict[str, str]]:
        rows = []
        for table in soup.find_all("table"):
            header_cells = table.select("thead th") or table.select("tr th")
            headers = [HEADER_FIELDS.get(normalize_header(th.get_text(" ")), "") for th in header_cells]

            for tr in table.find_all("tr"):
                cells = [normalize_whitespace(td.get_text(" ")) for td in tr.find_all("td")]
                if not cells:
                    continue
                row: Dict[str, str] = {}
                if headers and len(headers) == len(cells):
                    for name, value in zip(headers, cells):
                        if name and name not in row:
                            row[name] = value
                row.setdefault("feeder", cells[0])
                if row["feeder"]:
                    rows.append(row)
        return rows

    def build_candidate(self, page_url: str, row: Dict[str, str], hours: Optional[float],
                        published: datetime) -> RawCandidate:
        feeder = row["feeder"]
        business_unit = row.get("business_unit") or None
        if hours is None:
            title = f"{feeder} feeder downgraded in {business_unit or 'service area'}"
            supply = "downgraded supply levels"
        else:
            supply = format_hours(hours)
            title = f"{feeder} feeder recorded {supply} of supply"

        parts = [f"{feeder} feeder serving {business_unit or 'customers'} reported {supply}."]
        if row.get("band"):
            parts.append(f"Band classification: {row['band']}.")
        if row.get("remarks"):
            parts.append(row["remarks"])

        areas = [a for a in _AREA_SPLIT_RE.split(business_unit or "") if a.strip()]
        return RawCandidate(
            title=title,
            url=f"{page_url}?{urlencode({'feeder': feeder})}",
            summary=" ".join(parts),
            published_at=format_instant(published),
            status=Status.UNPLANNED,
            affected_areas=uniq_areas(areas),
            confidence=FEEDER_CONFIDENCE,
            raw={"feeder": feeder, "hours": hours, "band": row.get("band")},
        )

    def aggregate(self, page_url: str, low_supply: List[RawCandidate], published: datetime) -> RawCandidate:
        areas: List[str] = []
        for candidate in low_supply:
            areas.extend(candidate.affected_areas)
        count = len(low_supply)
        return RawCandidate(
            title=f"{count} feeders experiencing low supply hours",
            url=page_url,
            summary=(
                f"Currently tracking {count} feeders with reduced availability. "
                "Check the official source for the full list."
            ),
            published_at=format_instant(published),
            status=Status.UNPLANNED,
            affected_areas=uniq_areas(areas)[:MAX_AGGREGATE_AREAS],
            confidence=FEEDER_CONFIDENCE,
            raw={"feeders": [c.raw.get("feeder") for c in low_supply]},
        )

    def _fetch_impl(self, ctx) -> Iterator[RawCandidate]:
        seen = set()
        for page_url, doc in self.fetch_documents(ctx):
            soup = ctx.soup(doc.text)
            published = self.page_date(soup, ctx.now)
            downgrade_page = bool(_DOWNGRADE_RE.search(page_url))

            low_supply: List[RawCandidate] = []
            downgraded: List[RawCandidate] = []
            for row in self.parse_rows(soup):
                hours = parse_hours(row.get("hours"))
                is_downgraded = downgrade_page or bool(_DOWNGRADE_RE.search(row.get("remarks", "")))
                if hours is None and not is_downgraded:
                    continue
                if hours is not None and hours > self.low_supply_hours:
                    continue

                candidate = self.build_candidate(page_url, row, hours, published)
                if candidate.url in seen:
                    continue
                seen.add(candidate.url)
                (low_supply if hours is not None else downgraded).append(candidate)

            if len(low_supply) > self.aggregate_over:
                logger.info(f"{self.source_id}: aggregating {len(low_supply)} low-supply feeders")
                yield self.aggregate(page_url, low_supply, published)
            else:
                yield from low_supply
            yield from downgraded
