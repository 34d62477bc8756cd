"""
Payload assembly, validation and the outbound sink.

``build_payload`` turns the sorted items into a Payload; ``validate_payload`` checks
the serialized form against ``schema/payload.schema.json``; ``JsonFileSink`` writes
``feed.json`` and ``version.json`` atomically.
"""

import hashlib
import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import jsonschema

from .models import NormalizedItem, Payload, Tier
from .temporal import civil_now, format_instant

logger = logging.getLogger(__name__)

SCHEMA_PATH = Path(__file__).resolve().parent / "schema" / "payload.schema.json"

FEED_FILENAME = "feed.json"
VERSION_FILENAME = "version.json"


class PayloadValidationError(Exception):
    """Raised when a payload does not conform to the published schema."""
    pass


def latest_official_by_domain(items: List[NormalizedItem]) -> Dict[str, str]:
    """Most recent OFFICIAL-tier publish time per domain."""
    latest: Dict[str, datetime] = {}
    for item in items:
        if item.tier != Tier.OFFICIAL or item.published_at is None:
            continue
        key = item.domain.value
        if key not in latest or item.published_at > latest[key]:
            latest[key] = item.published_at
    return {domain: format_instant(ts) for domain, ts in sorted(latest.items())}


def build_payload(items: List[NormalizedItem], generated_at: Optional[datetime] = None) -> Payload:
    return Payload(
        generated_at=generated_at or civil_now(),
        items=list(items),
        latest_official_by_domain=latest_official_by_domain(items),
    )


def load_schema(schema_path: Path = SCHEMA_PATH) -> Dict[str, Any]:
    with open(schema_path) as f:
        return json.load(f)


def validate_payload(data: Dict[str, Any], schema_path: Path = SCHEMA_PATH) -> bool:
    """
    Validate a serialized payload.

    Args:
        data: Output of Payload.to_dict()
        schema_path: JSON schema to validate against

    Returns:
        True if valid

    Raises:
        PayloadValidationError: If validation fails
    """
    try:
        jsonschema.validate(data, load_schema(schema_path))
    except jsonschema.ValidationError as e:
        path = ".".join(str(p) for p in e.absolute_path) if e.absolute_path else "<root>"
        raise PayloadValidationError(f"Payload invalid at {path}: {e.message}") from e

    ids = [item["id"] for item in data.get("items", [])]
    if len(ids) != len(set(ids)):
        raise PayloadValidationError("Payload contains duplicate item ids")
    return True


def compute_content_hash(content: bytes) -> str:
    return hashlib.sha256(content).hexdigest()


class PayloadSink(ABC):
    """Outbound boundary for a finished payload."""

    @abstractmethod
    def write(self, payload: Payload) -> None:
        pass


class JsonFileSink(PayloadSink):
    """Writes feed.json + version.json under an output directory."""

    def __init__(self, output_dir: str = "public/live", schema_path: Path = SCHEMA_PATH):
        self.output_dir = Path(output_dir)
        self.schema_path = schema_path

    @staticmethod
    def _write_atomic(path: Path, content: bytes):
        # Write to temp then rename
        temp_path = path.with_suffix(".tmp")
        try:
            with open(temp_path, "wb") as f:
                f.write(content)
            temp_path.replace(path)
        except Exception:
            if temp_path.exists():
                temp_path.unlink()
            raise

    def write(self, payload: Payload) -> None:
        """
        Validate and persist the payload.

        Raises:
            PayloadValidationError: If the payload fails schema validation
            OSError: On filesystem failure
        """
        data = payload.to_dict()
        validate_payload(data, self.schema_path)

        content = json.dumps(data, indent=2, ensure_ascii=False).encode("utf-8")
        version = {
            "generatedAt": data["generatedAt"],
            "itemCount": len(data["items"]),
            "sha256": compute_content_hash(content),
        }

        self.output_dir.mkdir(parents=True, exist_ok=True)
        self._write_atomic(self.output_dir / FEED_FILENAME, content)
        self._write_atomic(
            self.output_dir / VERSION_FILENAME,
            json.dumps(version, indent=2).encode("utf-8"),
        )
        logger.info(f"Wrote {version['itemCount']} item(s) to {self.output_dir / FEED_FILENAME}")
