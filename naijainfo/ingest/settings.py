"""
Ingestion settings.

``config/ingest.yaml`` holds pipeline knobs and ``config/sources.yaml`` the adapter
registry. Both are looked up relative to the working directory first, then the repo
root. Every key has a module-level default; a handful of environment variables
override the file (NEWS_OFFLINE, NAIJAINFO_FIXTURES_DIR, INGEST_MAX_CONCURRENCY,
INGEST_OUTPUT_DIR).
"""

import logging
import os
from dataclasses import dataclass, field, replace
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

logger = logging.getLogger(__name__)

REPO_ROOT = Path(__file__).resolve().parent.parent.parent

DEFAULT_CONCURRENCY = 4
DEFAULT_RETENTION_DAYS = 30
DEFAULT_RUN_TIMEOUT_SECONDS = 300
DEFAULT_CONNECT_TIMEOUT = 5
DEFAULT_READ_TIMEOUT = 20
DEFAULT_PROBE_TIMEOUT = 2
DEFAULT_CACHE_TTL_SECONDS = 600
DEFAULT_SIMILARITY_THRESHOLD = 0.7
DEFAULT_CLASSIFIER_MODEL = "gpt-4o-mini"
DEFAULT_CLASSIFIER_TIMEOUT = 15
DEFAULT_OUTPUT_DIR = "public/live"
DEFAULT_FIXTURES_DIR = "fixtures"
DEFAULT_SOURCES_PATH = "config/sources.yaml"

KNOWN_ADAPTER_TYPES = ("rss", "scrape", "feeder_table")


class ConfigError(Exception):
    """Raised when configuration is missing or malformed."""
    pass


@dataclass(frozen=True)
class IngestSettings:
    """Immutable run configuration."""
    offline: bool = False
    fixtures_dir: str = DEFAULT_FIXTURES_DIR
    concurrency: int = DEFAULT_CONCURRENCY
    retention_days: int = DEFAULT_RETENTION_DAYS
    run_timeout_seconds: float = DEFAULT_RUN_TIMEOUT_SECONDS
    request_timeout: Tuple[float, float] = (DEFAULT_CONNECT_TIMEOUT, DEFAULT_READ_TIMEOUT)
    probe_timeout: float = DEFAULT_PROBE_TIMEOUT
    cache_ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS
    similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD
    priority_sources: Tuple[str, ...] = ("tcn",)
    tie_breaks: Dict[str, str] = field(default_factory=lambda: {"POWER": "earliest", "EXAMS": "richest"})
    classifier_enabled: bool = True
    classifier_model: str = DEFAULT_CLASSIFIER_MODEL
    classifier_timeout: float = DEFAULT_CLASSIFIER_TIMEOUT
    output_dir: str = DEFAULT_OUTPUT_DIR
    sources_path: str = DEFAULT_SOURCES_PATH

    def with_overrides(self, **changes) -> "IngestSettings":
        return replace(self, **{k: v for k, v in changes.items() if v is not None})


def find_config_file(relative_path: str) -> Optional[Path]:
    """Resolve a config path against cwd, then the repo root."""
    candidates = [Path(relative_path), REPO_ROOT / relative_path]
    for path in candidates:
        if path.exists():
            return path
    return None


def load_yaml_config(relative_path: str = "config/ingest.yaml") -> Dict[str, Any]:
    """
    Load a YAML config file.

    Returns:
        Config dict or empty dict if file not found or unreadable
    """
    path = find_config_file(relative_path)
    if path is None:
        return {}
    try:
        with open(path, "r") as f:
            return yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning(f"Failed to load config from {path}: {e}")
        return {}


def _env_flag(name: str) -> Optional[bool]:
    value = os.environ.get(name)
    if value is None or value.strip() == "":
        return None
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str) -> Optional[int]:
    value = os.environ.get(name, "").strip()
    if not value:
        return None
    try:
        parsed = int(value)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {value!r}")
    if parsed < 1:
        raise ConfigError(f"{name} must be positive, got {parsed}")
    return parsed


def settings_from_dict(config: Dict[str, Any]) -> IngestSettings:
    http = config.get("http", {}) or {}
    dedup = config.get("dedup", {}) or {}
    classifier = config.get("classifier", {}) or {}
    output = config.get("output", {}) or {}

    tie_breaks = {"POWER": "earliest", "EXAMS": "richest"}
    for domain, rule in (dedup.get("tie_break", {}) or {}).items():
        rule = str(rule).lower()
        if rule not in ("earliest", "richest"):
            raise ConfigError(f"Unknown tie_break '{rule}' for {domain}")
        tie_breaks[str(domain).upper()] = rule

    try:
        return IngestSettings(
            offline=bool(config.get("offline", False)),
            fixtures_dir=str(config.get("fixtures_dir", DEFAULT_FIXTURES_DIR)),
            concurrency=int(config.get("concurrency", DEFAULT_CONCURRENCY)),
            retention_days=int(config.get("retention_days", DEFAULT_RETENTION_DAYS)),
            run_timeout_seconds=float(config.get("run_timeout_seconds", DEFAULT_RUN_TIMEOUT_SECONDS)),
            request_timeout=(
                float(http.get("connect_timeout", DEFAULT_CONNECT_TIMEOUT)),
                float(http.get("read_timeout", DEFAULT_READ_TIMEOUT)),
            ),
            probe_timeout=float(http.get("probe_timeout", DEFAULT_PROBE_TIMEOUT)),
            cache_ttl_seconds=float(http.get("cache_ttl_seconds", DEFAULT_CACHE_TTL_SECONDS)),
            similarity_threshold=float(dedup.get("similarity_threshold", DEFAULT_SIMILARITY_THRESHOLD)),
            priority_sources=tuple(dedup.get("priority_sources", ["tcn"])),
            tie_breaks=tie_breaks,
            classifier_enabled=bool(classifier.get("enabled", True)),
            classifier_model=str(classifier.get("model", DEFAULT_CLASSIFIER_MODEL)),
            classifier_timeout=float(classifier.get("timeout_seconds", DEFAULT_CLASSIFIER_TIMEOUT)),
            output_dir=str(output.get("dir", DEFAULT_OUTPUT_DIR)),
            sources_path=str(config.get("sources_path", DEFAULT_SOURCES_PATH)),
        )
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid ingest config: {e}") from e


def load_settings(config: Optional[Dict[str, Any]] = None) -> IngestSettings:
    """
    Build settings from config/ingest.yaml (or a given dict) plus environment overrides.

    Raises:
        ConfigError: On malformed values
    """
    settings = settings_from_dict(load_yaml_config() if config is None else config)
    settings = settings.with_overrides(
        offline=_env_flag("NEWS_OFFLINE"),
        fixtures_dir=os.environ.get("NAIJAINFO_FIXTURES_DIR") or None,
        concurrency=_env_int("INGEST_MAX_CONCURRENCY"),
        output_dir=os.environ.get("INGEST_OUTPUT_DIR") or None,
    )
    if settings.concurrency < 1:
        raise ConfigError(f"concurrency must be positive, got {settings.concurrency}")
    return settings


@lru_cache(maxsize=1)
def get_settings() -> IngestSettings:
    """Process-wide settings, built once."""
    return load_settings()


def load_sources(path: Optional[str] = None) -> List[Dict[str, Any]]:
    """
    Load adapter definitions from config/sources.yaml.

    Args:
        path: Override path (defaults to settings.sources_path)

    Returns:
        List of source dicts in file order

    Raises:
        ConfigError: If the file is missing or an entry is invalid
    """
    relative = path or DEFAULT_SOURCES_PATH
    resolved = find_config_file(relative)
    if resolved is None:
        raise ConfigError(f"Sources config not found: {relative}")

    try:
        with open(resolved, "r") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Failed to load sources from {resolved}: {e}") from e

    sources = data.get("sources")
    if not isinstance(sources, list):
        raise ConfigError(f"{resolved}: expected a top-level 'sources' list")

    seen = set()
    for source in sources:
        source_id = source.get("id")
        if not source_id:
            raise ConfigError(f"{resolved}: source without id: {source}")
        if source_id in seen:
            raise ConfigError(f"{resolved}: duplicate source id '{source_id}'")
        seen.add(source_id)
        if source.get("type") not in KNOWN_ADAPTER_TYPES:
            raise ConfigError(f"{source_id}: unknown adapter type '{source.get('type')}'")
        if not (source.get("urls") or source.get("url")):
            raise ConfigError(f"{source_id}: no url configured")

    return sources
