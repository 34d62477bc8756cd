"""
Status and relevance classification.

Two interchangeable strategies behind ``RelevanceClassifier``:

- HeuristicClassifier: keyword vocabularies, always available, never gated.
- LLMClassifier: OpenAI chat completion returning a JSON judgement. Any failure
  (missing key, network, malformed output) falls back to the heuristic judgement.

``build_classifier(settings)`` picks the model tier only when it is enabled and an
API key is configured. ``classify_items`` is the pipeline stage: it applies the
per-adapter confidence gate, resolves status and attaches planned windows.
"""

import json
import logging
import re
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from .models import Domain, NormalizedItem, PlannedWindow, Status, parse_enum
from .normalize import uniq_areas
from .temporal import CIVIL_TZ_NAME, civil_now, extract_window, format_instant, parse_instant

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_TIMEOUT_SECONDS = 15.0

# Relevance vocabularies
EXAM_KEYWORDS = re.compile(
    r"\b(JAMB|UTME|results?|slips?|checker|CAPS|WAEC|SSCE|BECE|NECO|token|e-?PIN|admissions?|release[sd]?)\b",
    re.IGNORECASE,
)
POWER_KEYWORDS = re.compile(
    r"\b(outages?|maintenance|restoration|restored|grid|transmission|feeders?|load|power|electricity|"
    r"disco|fault|interruptions?|upgrade|supply)\b",
    re.IGNORECASE,
)

# Domain routing for mixed media feeds
EXAMS_DOMAIN_RE = re.compile(r"\b(JAMB|WAEC|NECO|UTME|SSCE|BECE|results?|slips?|checker)\b", re.IGNORECASE)
POWER_DOMAIN_RE = re.compile(
    r"\b(power|grid|outages?|electricity|disco|transmission|TCN|Ikeja|Kaduna|Eko|Jos|EKEDC|PHCN|load[- ]shedding)\b",
    re.IGNORECASE,
)

# Status vocabularies; PLANNED is checked first
PLANNED_RE = re.compile(
    r"\b(planned|maintenance|scheduled|upgrade|shut\s?down|preventive|outage\s+notice)\b",
    re.IGNORECASE,
)
RESTORED_RE = re.compile(
    r"\b(restored|restoration|resum(?:ed|es|ption)|back\s+on|reconnected|normal\s+supply)\b",
    re.IGNORECASE,
)

_FENCE_RE = re.compile(r"^```[a-zA-Z]*\s*|\s*```$")


def classify_status(text: str) -> Status:
    if PLANNED_RE.search(text or ""):
        return Status.PLANNED
    if RESTORED_RE.search(text or ""):
        return Status.RESTORED
    return Status.UNPLANNED


def classify_domain(text: str) -> Optional[Domain]:
    """EXAMS vocabulary wins over POWER; None when neither matches."""
    if EXAMS_DOMAIN_RE.search(text or ""):
        return Domain.EXAMS
    if POWER_DOMAIN_RE.search(text or ""):
        return Domain.POWER
    return None


def is_relevant(domain: Domain, text: str) -> bool:
    pattern = EXAM_KEYWORDS if domain == Domain.EXAMS else POWER_KEYWORDS
    return bool(pattern.search(text or ""))


def item_text(item: NormalizedItem) -> str:
    return " ".join(part for part in (item.title, item.summary) if part)


def strip_fences(content: str) -> str:
    """Remove markdown code fences and any prose around the JSON object."""
    text = _FENCE_RE.sub("", (content or "").strip())
    start, end = text.find("{"), text.rfind("}")
    if start == -1 or end < start:
        return text
    return text[start:end + 1]


@dataclass
class Judgement:
    """One classifier verdict for one item."""
    relevant: bool
    status: Optional[Status] = None
    confidence: Optional[float] = None
    affected_areas: List[str] = field(default_factory=list)
    reason: str = ""
    from_model: bool = False


class RelevanceClassifier(ABC):
    """Strategy interface for relevance/status judgements."""

    name = "base"
    model_available = False

    @abstractmethod
    def judge(self, item: NormalizedItem) -> Judgement:
        pass

    def heuristic_judge(self, item: NormalizedItem) -> Judgement:
        """Keyword judgement, used where the model tier is not consulted."""
        text = item_text(item)
        return Judgement(
            relevant=is_relevant(item.domain, text),
            status=classify_status(text) if item.domain == Domain.POWER else None,
            reason="keyword match",
        )

    def extract_window(self, item: NormalizedItem, now: datetime) -> Optional[PlannedWindow]:
        """Model-assisted window extraction; the heuristic tier has none."""
        return None


class HeuristicClassifier(RelevanceClassifier):
    """Keyword-only classifier."""

    name = "heuristic"

    def judge(self, item: NormalizedItem) -> Judgement:
        return self.heuristic_judge(item)


JUDGE_SYSTEM_PROMPT = (
    "You screen Nigerian news posts and utility notices for a public information feed "
    "covering electricity supply (outages, maintenance, restoration) and national exams "
    "(JAMB, WAEC, NECO results and registration). Reply with a single JSON object only."
)

JUDGE_USER_TEMPLATE = """Domain: {domain}
Title: {title}
Summary: {summary}

Is this item a concrete, current {domain_label} update useful to the public?

Respond with JSON:
{{"isRelevant": true|false, "confidence": 0.0-1.0, "reason": "short reason",
  "extractedInfo": {{"affectedAreas": ["area", ...], "outageType": "PLANNED"|"UNPLANNED"|"RESTORED"|null}}}}"""

WINDOW_SYSTEM_PROMPT = (
    "You extract scheduled power interruption windows from notices. "
    "Times are Nigerian local time (UTC+01:00). Reply with a single JSON object only."
)

WINDOW_USER_TEMPLATE = """Published: {published}
Title: {title}
Text: {text}

Respond with JSON: {{"start": "ISO-8601 with offset" or null, "end": "ISO-8601 with offset" or null}}"""


def get_openai_client(timeout: float = DEFAULT_TIMEOUT_SECONDS):
    """Lazy-load OpenAI client."""
    from openai import OpenAI
    from naijainfo.config.secrets import get_openai_key
    return OpenAI(api_key=get_openai_key(), timeout=timeout, max_retries=0)


def parse_model_judgement(content: str) -> Judgement:
    """
    Parse the model's JSON verdict.

    Raises:
        ValueError: If the content is not a usable verdict
    """
    data = json.loads(strip_fences(content))
    if not isinstance(data, dict) or "isRelevant" not in data:
        raise ValueError("verdict missing isRelevant")

    confidence = float(data.get("confidence", 0.0))
    confidence = min(max(confidence, 0.0), 1.0)

    info = data.get("extractedInfo") or {}
    areas = info.get("affectedAreas") or []
    if not isinstance(areas, list):
        areas = []

    return Judgement(
        relevant=bool(data["isRelevant"]),
        status=parse_enum(Status, info.get("outageType")),
        confidence=confidence,
        affected_areas=uniq_areas(str(a) for a in areas),
        reason=str(data.get("reason", "")),
        from_model=True,
    )


class LLMClassifier(RelevanceClassifier):
    """OpenAI-backed classifier with heuristic fallback."""

    name = "llm"
    model_available = True

    def __init__(self, model: str = DEFAULT_MODEL, timeout: float = DEFAULT_TIMEOUT_SECONDS,
                 client=None, fallback: Optional[RelevanceClassifier] = None):
        self.model = model
        self.timeout = timeout
        self._client = client
        self.fallback = fallback or HeuristicClassifier()

    @property
    def client(self):
        if self._client is None:
            self._client = get_openai_client(self.timeout)
        return self._client

    def heuristic_judge(self, item: NormalizedItem) -> Judgement:
        return self.fallback.judge(item)

    def _complete(self, system_prompt: str, user_prompt: str) -> str:
        response = self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            temperature=0,
            max_completion_tokens=300,
        )
        return response.choices[0].message.content or ""

    def judge(self, item: NormalizedItem) -> Judgement:
        prompt = JUDGE_USER_TEMPLATE.format(
            domain=item.domain.value,
            domain_label="electricity supply" if item.domain == Domain.POWER else "exam",
            title=item.title,
            summary=item.summary or "",
        )
        try:
            judgement = parse_model_judgement(self._complete(JUDGE_SYSTEM_PROMPT, prompt))
        except Exception as e:
            logger.warning(f"Model classification failed for {item.id}, using heuristics: {e}")
            return self.heuristic_judge(item)

        if item.domain != Domain.POWER:
            judgement.status = None
        return judgement

    def extract_window(self, item: NormalizedItem, now: datetime) -> Optional[PlannedWindow]:
        prompt = WINDOW_USER_TEMPLATE.format(
            published=format_instant(item.published_at) if item.published_at else "unknown",
            title=item.title,
            text=item.window_text or item.summary or "",
        )
        try:
            data = json.loads(strip_fences(self._complete(WINDOW_SYSTEM_PROMPT, prompt)))
        except Exception as e:
            logger.warning(f"Model window extraction failed for {item.id}: {e}")
            return None
        if not isinstance(data, dict):
            return None

        start = parse_instant(data.get("start"))
        end = parse_instant(data.get("end"))
        # Only future windows are trusted from the model
        if start is None or start <= now:
            return None
        if end is not None and end < start:
            end = None
        return PlannedWindow(start=start, end=end, timezone=CIVIL_TZ_NAME)


def build_classifier(settings) -> RelevanceClassifier:
    """Model tier when enabled and credentialed, heuristics otherwise."""
    from naijainfo.config.secrets import has_openai_key

    if settings.classifier_enabled and has_openai_key():
        logger.info(f"Using model classifier ({settings.classifier_model})")
        return LLMClassifier(model=settings.classifier_model, timeout=settings.classifier_timeout)
    logger.info("Using heuristic classifier")
    return HeuristicClassifier()


def resolve_status(item: NormalizedItem, judgement: Judgement) -> Optional[Status]:
    """Adapter-provided status, then the model's outage type, then keywords."""
    if item.domain != Domain.POWER:
        return None
    if item.status is not None:
        return item.status
    if judgement.status is not None:
        return judgement.status
    return classify_status(item_text(item))


def classify_item(
    item: NormalizedItem,
    classifier: RelevanceClassifier,
    threshold: Optional[float] = None,
    now: Optional[datetime] = None,
) -> Tuple[Optional[NormalizedItem], str]:
    """
    Classify one item in place.

    Args:
        item: Normalized item
        classifier: Strategy to consult
        threshold: Adapter's model confidence gate (None = no model call)
        now: Reference instant for model window acceptance

    Returns:
        Tuple of (item or None if dropped, drop reason)
    """
    now = now or civil_now()
    use_model = classifier.model_available and threshold is not None

    if classifier.model_available and not use_model:
        judgement = classifier.heuristic_judge(item)
    else:
        judgement = classifier.judge(item)

    if not judgement.relevant:
        return None, "irrelevant"
    if judgement.from_model and threshold is not None:
        if (judgement.confidence or 0.0) < threshold:
            return None, "below_threshold"

    if judgement.from_model:
        item.confidence = judgement.confidence
        item.affected_areas = uniq_areas(item.affected_areas + judgement.affected_areas)

    item.status = resolve_status(item, judgement)

    if item.status == Status.PLANNED:
        if item.planned_window is None:
            source_text = item.window_text or item_text(item)
            item.planned_window = extract_window(source_text, item.published_at)
        if item.planned_window is None and classifier.model_available:
            item.planned_window = classifier.extract_window(item, now)
    else:
        item.planned_window = None

    return item, ""


def classify_items(
    items: List[NormalizedItem],
    classifier: RelevanceClassifier,
    thresholds: Optional[Dict[str, float]] = None,
    max_workers: int = 4,
    now: Optional[datetime] = None,
) -> Tuple[List[NormalizedItem], Dict[str, int]]:
    """
    Run the classification stage over all items, preserving input order.

    Model calls run on a thread pool capped at ``max_workers``.

    Returns:
        Tuple of (kept items, drop counts by reason)
    """
    thresholds = thresholds or {}
    now = now or civil_now()

    def work(item):
        return classify_item(item, classifier, thresholds.get(item.adapter), now)

    if classifier.model_available and items:
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            results = list(executor.map(work, items))
    else:
        results = [work(item) for item in items]

    kept = []
    drops: Dict[str, int] = {}
    for item, reason in results:
        if item is None:
            drops[reason] = drops.get(reason, 0) + 1
        else:
            kept.append(item)
    return kept, drops
