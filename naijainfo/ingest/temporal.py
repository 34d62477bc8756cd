"""
Temporal parsing for outage notices.

Two jobs:
- ``parse_instant``: resolve the many publish-date shapes adapters see
  (RFC-822 pubDate, ISO, "12 Oct 2025, 3:15 PM", "12/10/2025") to an aware datetime.
- ``extract_window``: pull an explicit planned interruption window out of prose.

All wall-clock values are interpreted in the target region's civil time, which is a
fixed UTC+01:00 offset (West Africa Time has no DST). This is deliberately a constant
offset and not a tz-database zone.
"""

import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from email.utils import parsedate_to_datetime
from typing import List, Optional, Tuple, Union

from .models import PlannedWindow

CIVIL_TZ_NAME = "Africa/Lagos"
CIVIL_OFFSET = timezone(timedelta(hours=1), "WAT")

DEFAULT_START_TIME = time(9, 0)
DEFAULT_END_TIME = time(17, 0)

# Max gap (chars) between a date token and a standalone time token that belongs to it
NEARBY_TIME_CHARS = 40

# A yearless "12 Oct" landing this far before publication is read as next year
PARTIAL_DATE_ROLLOVER_DAYS = 30

MONTHS = {
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "may": 5, "jun": 6,
    "jul": 7, "aug": 8, "sep": 9, "oct": 10, "nov": 11, "dec": 12,
}

_YEAR_END = r"(?![:\d])"

_ISO_DATE_RE = re.compile(r"\b(\d{4})-(\d{1,2})-(\d{1,2})\b")
_NUMERIC_DATE_RE = re.compile(r"\b(\d{1,2})[/-](\d{1,2})[/-](\d{4}|\d{2})\b" + _YEAR_END)
_DAY_MONTH_YEAR_RE = re.compile(
    r"\b(\d{1,2})(?:st|nd|rd|th)?\s+(?:of\s+)?([A-Za-z]{3,9})\.?,?\s+(\d{4}|\d{2})\b" + _YEAR_END
)
_MONTH_DAY_YEAR_RE = re.compile(
    r"\b([A-Za-z]{3,9})\.?\s+(\d{1,2})(?:st|nd|rd|th)?,?\s+(\d{4})\b" + _YEAR_END
)
# Yearless dates only accept real month names, so "2 Marina Road" is not 2 March
_MONTH_NAME = (
    r"(jan(?:uary)?|feb(?:ruary)?|mar(?:ch)?|apr(?:il)?|may|june?|july?|aug(?:ust)?"
    r"|sept?(?:ember)?|oct(?:ober)?|nov(?:ember)?|dec(?:ember)?)"
)
_DAY_MONTH_RE = re.compile(
    r"\b(\d{1,2})(?:st|nd|rd|th)?\s+(?:of\s+)?" + _MONTH_NAME + r"\b", re.IGNORECASE
)
_MONTH_DAY_RE = re.compile(
    r"\b" + _MONTH_NAME + r"\.?\s+(\d{1,2})(?:st|nd|rd|th)?\b(?!:)", re.IGNORECASE
)

_TIME_RE = re.compile(
    r"\b(\d{1,2})(?::(\d{2}))?(?:\s*(am|pm|a\.m\.|p\.m\.)(?![a-z]))?",
    re.IGNORECASE,
)

_RANGE_GAP_RE = re.compile(r"^\s*(?:-|to|until|till|through|and)\s*$", re.IGNORECASE)
_FROM_RE = re.compile(r"\b(?:from|starting|start(?:s|ing)? at|begins? at)\s*$", re.IGNORECASE)
_UNTIL_RE = re.compile(r"\b(?:until|till|to|ends? at)\s*$", re.IGNORECASE)
_BETWEEN_RE = re.compile(r"\bbetween\s*$", re.IGNORECASE)

# Publish-date shapes that fromisoformat / RFC-822 parsing do not cover
_PUB_DAY_MONTH_RE = re.compile(
    r"\b(\d{1,2})(?:st|nd|rd|th)?[\s-]+([A-Za-z]{3,9})\.?,?[\s-]+(\d{4})"
    r"(?:[,\s]+(?:at\s+)?(\d{1,2}):(\d{2})(?:\s*(AM|PM))?)?",
    re.IGNORECASE,
)
_PUB_MONTH_DAY_RE = re.compile(
    r"\b([A-Za-z]{3,9})\.?\s+(\d{1,2})(?:st|nd|rd|th)?,?\s+(\d{4})"
    r"(?:[,\s]+(?:at\s+)?(\d{1,2}):(\d{2})(?:\s*(AM|PM))?)?",
    re.IGNORECASE,
)
_PUB_SLASH_RE = re.compile(
    r"\b(\d{1,2})/(\d{1,2})/(\d{4})(?:\s+(\d{1,2}):(\d{2})(?:\s*(AM|PM))?)?",
    re.IGNORECASE,
)
_ISO_DATE_ONLY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_RFC822_RE = re.compile(
    r"^(?:[A-Za-z]{3},\s*)?\d{1,2}\s+[A-Za-z]{3}\s+\d{2,4}\s+\d{1,2}:\d{2}(?::\d{2})?"
    r"\s+(?:[+-]\d{4}|GMT|UTC?|Z|[ECMP][SD]T)$"
)


@dataclass
class _DateToken:
    start: int
    end: int
    value: date


@dataclass
class _TimeToken:
    start: int
    end: int
    value: time


# =============================================================================
# Instants
# =============================================================================

def to_civil(dt: datetime) -> datetime:
    """Express an instant at the fixed civil offset. Naive values are civil wall time."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=CIVIL_OFFSET)
    return dt.astimezone(CIVIL_OFFSET)


def civil_now() -> datetime:
    return datetime.now(CIVIL_OFFSET)


def format_instant(dt: datetime) -> str:
    """ISO-8601 at +01:00. Keeps microseconds when present so re-parsing is lossless."""
    return to_civil(dt).isoformat()


def normalize_year(year: str) -> int:
    if len(year) == 2:
        return int(f"20{year}")
    return int(year)


def month_from_word(word: str) -> Optional[int]:
    """Month number from its name, matched on the first three letters."""
    if not word or len(word) < 3:
        return None
    return MONTHS.get(word[:3].lower())


def _apply_meridiem(hours: int, meridiem: Optional[str]) -> int:
    if not meridiem:
        return hours
    meridiem = meridiem.lower().replace(".", "")
    if meridiem == "pm" and hours < 12:
        return hours + 12
    if meridiem == "am" and hours == 12:
        return 0
    return hours


def _civil_datetime(year: int, month: int, day: int, hours: int = 9, minutes: int = 0) -> Optional[datetime]:
    try:
        return datetime(year, month, day, hours, minutes, tzinfo=CIVIL_OFFSET)
    except ValueError:
        return None


def parse_instant(raw: Union[str, datetime, None]) -> Optional[datetime]:
    """
    Resolve a source-provided publish timestamp to an aware datetime.

    Accepts ISO-8601 (with offset, ``Z``, naive or date-only), RFC-822 (RSS pubDate),
    ``12 Oct 2025[, 3:15 PM]``, ``12-Oct-2025``, ``October 12, 2025`` and
    ``12/10/2025 [3:15 PM]`` (day first). Naive wall-clock values are civil time;
    date-only values resolve to 09:00 civil.

    Returns:
        Aware datetime, or None if the value cannot be interpreted
    """
    if raw is None:
        return None
    if isinstance(raw, datetime):
        return raw if raw.tzinfo else raw.replace(tzinfo=CIVIL_OFFSET)

    text = str(raw).strip()
    if not text:
        return None

    if _ISO_DATE_ONLY_RE.match(text):
        year, month, day = (int(part) for part in text.split("-"))
        return _civil_datetime(year, month, day)

    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=CIVIL_OFFSET)
    except ValueError:
        pass

    if _RFC822_RE.match(text):
        try:
            parsed = parsedate_to_datetime(text)
            # "-0000" yields a naive value meaning UTC
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
        except (TypeError, ValueError, IndexError):
            pass

    return find_instant(text)


def find_instant(text: str) -> Optional[datetime]:
    """
    First human-readable date (with optional clock time) found anywhere in text.

    Used for scraped listing cards where the date sits among other words.
    """
    if not text:
        return None
    found = []

    for m in _PUB_DAY_MONTH_RE.finditer(text):
        day, month_word, year, hours, minutes, meridiem = m.groups()
        month = month_from_word(month_word)
        if month:
            found.append((m.start(), int(year), month, int(day), hours, minutes, meridiem))
            break

    for m in _PUB_MONTH_DAY_RE.finditer(text):
        month_word, day, year, hours, minutes, meridiem = m.groups()
        month = month_from_word(month_word)
        if month:
            found.append((m.start(), int(year), month, int(day), hours, minutes, meridiem))
            break

    m = _PUB_SLASH_RE.search(text)
    if m:
        day, month, year, hours, minutes, meridiem = m.groups()
        found.append((m.start(), int(year), int(month), int(day), hours, minutes, meridiem))

    m = _ISO_DATE_RE.search(text)
    if m:
        found.append((m.start(), int(m.group(1)), int(m.group(2)), int(m.group(3)), None, None, None))

    for _, year, month, day, hours, minutes, meridiem in sorted(found, key=lambda f: f[0]):
        resolved = _civil_datetime(
            year, month, day,
            _apply_meridiem(int(hours), meridiem) if hours else 9,
            int(minutes) if minutes else 0,
        )
        if resolved is not None:
            return resolved
    return None


# =============================================================================
# Planned windows
# =============================================================================

def sanitize(text: str) -> str:
    text = re.sub(r"[\t\r\n]+", " ", text or "")
    text = re.sub(r"[–—]", "-", text)
    return re.sub(r"\s+", " ", text).strip()


def _overlaps(start: int, end: int, spans: List[Tuple[int, int]]) -> bool:
    return any(start < s_end and s_start < end for s_start, s_end in spans)


def _find_dates(text: str, published: Optional[datetime]) -> List[_DateToken]:
    """All calendar-date tokens in text order; earlier patterns claim overlapping spans."""
    tokens: List[_DateToken] = []
    spans: List[Tuple[int, int]] = []

    def claim(match, value: Optional[date]):
        if value is None or _overlaps(match.start(), match.end(), spans):
            return
        spans.append((match.start(), match.end()))
        tokens.append(_DateToken(match.start(), match.end(), value))

    def safe_date(year: int, month: Optional[int], day: int) -> Optional[date]:
        if not month:
            return None
        try:
            return date(year, month, day)
        except ValueError:
            return None

    for m in _ISO_DATE_RE.finditer(text):
        claim(m, safe_date(int(m.group(1)), int(m.group(2)), int(m.group(3))))
    for m in _NUMERIC_DATE_RE.finditer(text):
        claim(m, safe_date(normalize_year(m.group(3)), int(m.group(2)), int(m.group(1))))
    for m in _DAY_MONTH_YEAR_RE.finditer(text):
        claim(m, safe_date(normalize_year(m.group(3)), month_from_word(m.group(2)), int(m.group(1))))
    for m in _MONTH_DAY_YEAR_RE.finditer(text):
        claim(m, safe_date(int(m.group(3)), month_from_word(m.group(1)), int(m.group(2))))

    if published is not None:
        pub_date = to_civil(published).date()

        def yearless(month: Optional[int], day: int) -> Optional[date]:
            value = safe_date(pub_date.year, month, day)
            if value and value < pub_date - timedelta(days=PARTIAL_DATE_ROLLOVER_DAYS):
                value = safe_date(pub_date.year + 1, month, day)
            return value

        for m in _DAY_MONTH_RE.finditer(text):
            claim(m, yearless(month_from_word(m.group(2)), int(m.group(1))))
        for m in _MONTH_DAY_RE.finditer(text):
            claim(m, yearless(month_from_word(m.group(1)), int(m.group(2))))

    tokens.sort(key=lambda t: t.start)
    return tokens


def parse_time_token(hours_raw: str, minutes_raw: Optional[str], meridiem: Optional[str]) -> Optional[time]:
    """
    Validate a time token. A bare number with neither a colon nor am/pm is not a time.
    """
    if minutes_raw is None and not meridiem:
        return None
    hours = int(hours_raw)
    minutes = int(minutes_raw) if minutes_raw is not None else 0
    if minutes > 59:
        return None
    if meridiem:
        if not 1 <= hours <= 12:
            return None
        hours = _apply_meridiem(hours, meridiem)
    elif hours > 23:
        return None
    return time(hours, minutes)


def _find_times(text: str, date_spans: List[Tuple[int, int]]) -> List[_TimeToken]:
    tokens = []
    for m in _TIME_RE.finditer(text):
        if _overlaps(m.start(), m.end(), date_spans):
            continue
        value = parse_time_token(m.group(1), m.group(2), m.group(3))
        if value is not None:
            tokens.append(_TimeToken(m.start(), m.end(), value))
    return tokens


def _find_range(text: str, times: List[_TimeToken]) -> Tuple[Optional[_TimeToken], Optional[_TimeToken]]:
    """Locate a start/end time pair. Either side may be missing for from/until phrasing."""
    for first, second in zip(times, times[1:]):
        gap = text[first.end:second.start]
        if not _RANGE_GAP_RE.match(gap):
            continue
        if gap.strip().lower() == "and" and not _BETWEEN_RE.search(text[:first.start]):
            continue
        return first, second

    start = end = None
    for token in times:
        prefix = text[max(0, token.start - 20):token.start]
        if start is None and _FROM_RE.search(prefix):
            start = token
        elif end is None and _UNTIL_RE.search(prefix):
            end = token
    return start, end


def _distance(a_start: int, a_end: int, b_start: int, b_end: int) -> int:
    if a_end <= b_start:
        return b_start - a_end
    if b_end <= a_start:
        return a_start - b_end
    return 0


def _nearest_time(token: _DateToken, times: List[_TimeToken], used: List[_TimeToken]) -> Optional[_TimeToken]:
    best = None
    best_distance = NEARBY_TIME_CHARS + 1
    for candidate in times:
        if candidate in used:
            continue
        gap = _distance(token.start, token.end, candidate.start, candidate.end)
        if gap < best_distance:
            best, best_distance = candidate, gap
    return best


def _at(day: date, clock: Optional[_TimeToken], fallback: time) -> datetime:
    value = clock.value if clock is not None else fallback
    return datetime.combine(day, value, tzinfo=CIVIL_OFFSET)


def _window(start: datetime, end: Optional[datetime]) -> PlannedWindow:
    # Never emit an inverted window
    if end is not None and end < start:
        end = None
    return PlannedWindow(start=start, end=end, timezone=CIVIL_TZ_NAME)


def extract_window(
    text: str,
    published_at: Union[str, datetime, None] = None,
) -> Optional[PlannedWindow]:
    """
    Extract an explicit planned window from free text.

    Args:
        text: Title and body of a notice
        published_at: Publication instant used to resolve yearless dates and
            date-less time ranges

    Returns:
        PlannedWindow at the civil offset, or None when the text has no window
    """
    normalized = sanitize(text)
    if not normalized:
        return None

    published = parse_instant(published_at) if published_at is not None else None

    dates = _find_dates(normalized, published)
    times = _find_times(normalized, [(d.start, d.end) for d in dates])
    range_start, range_end = _find_range(normalized, times)

    distinct: List[_DateToken] = []
    for token in dates:
        if all(token.value != seen.value for seen in distinct):
            distinct.append(token)

    # 1. explicit time range anchored on the date closest to it
    if dates and (range_start or range_end):
        span_start = (range_start or range_end).start
        span_end = (range_end or range_start).end
        anchor = min(dates, key=lambda d: _distance(d.start, d.end, span_start, span_end))
        return _window(
            _at(anchor.value, range_start, DEFAULT_START_TIME),
            _at(anchor.value, range_end, DEFAULT_END_TIME),
        )

    # 2. two distinct dates: start day / end day
    if len(distinct) >= 2:
        first, second = distinct[0], distinct[1]
        used: List[_TimeToken] = []
        first_time = _nearest_time(first, times, used)
        if first_time is not None:
            used.append(first_time)
        second_time = _nearest_time(second, times, used)
        return _window(
            _at(first.value, first_time, DEFAULT_START_TIME),
            _at(second.value, second_time, DEFAULT_END_TIME),
        )

    # 3. a single date: start only
    if distinct:
        only = distinct[0]
        return _window(_at(only.value, _nearest_time(only, times, []), DEFAULT_START_TIME), None)

    # time range with no date: fall back to the publication day
    if published is not None and (range_start or range_end):
        pub_day = to_civil(published).date()
        return _window(
            _at(pub_day, range_start, DEFAULT_START_TIME),
            _at(pub_day, range_end, DEFAULT_END_TIME),
        )

    return None
