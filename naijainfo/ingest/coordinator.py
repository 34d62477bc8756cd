"""
Ingestion coordinator.

Runs one batch pass over all configured adapters:

    FETCHING -> AGGREGATING -> NORMALIZING -> CLASSIFYING -> DEDUPLICATING
    -> FILTERING -> SORTING -> PUBLISHED

- Adapters fan out on a bounded thread pool; a slow or broken source never
  blocks or fails the others.
- Results are aggregated in registry order regardless of completion order.
- The payload is handed to the sink only after the whole pass succeeded, and
  ``current_payload`` is replaced only after the sink accepted it.
"""

import json
import logging
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from .base_fetcher import AdapterResult, BaseAdapter
from .classifier import RelevanceClassifier, build_classifier, classify_items
from .dedup import Deduplicator, TieBreak
from .diagnostics import RunDiagnostics
from .fetch_context import FetchContext, ProbeResult
from .models import Domain, NormalizedItem, Payload, parse_enum
from .payload import JsonFileSink, PayloadSink, PayloadValidationError, build_payload
from .registry import build_adapters
from .retention import RetentionFilter, sort_items
from .settings import ConfigError, IngestSettings, get_settings, load_settings, load_sources
from .temporal import civil_now

logger = logging.getLogger(__name__)


class RunStage(Enum):
    """Pipeline stage of the coordinator."""
    IDLE = "IDLE"
    FETCHING = "FETCHING"
    AGGREGATING = "AGGREGATING"
    NORMALIZING = "NORMALIZING"
    CLASSIFYING = "CLASSIFYING"
    DEDUPLICATING = "DEDUPLICATING"
    FILTERING = "FILTERING"
    SORTING = "SORTING"
    PUBLISHED = "PUBLISHED"


class IngestTimeoutError(Exception):
    """Raised when adapters are still running at the run deadline."""
    def __init__(self, timeout_seconds: float, pending: List[str]):
        self.timeout_seconds = timeout_seconds
        self.pending = pending
        super().__init__(
            f"Run exceeded {timeout_seconds}s with {len(pending)} adapter(s) pending: {', '.join(pending)}"
        )


@dataclass
class RunResult:
    """Payload and diagnostics of one completed run."""
    payload: Payload
    diagnostics: RunDiagnostics


def _tie_breaks(settings: IngestSettings) -> Dict[Domain, TieBreak]:
    rules = {}
    for domain_name, rule in settings.tie_breaks.items():
        domain = parse_enum(Domain, domain_name)
        if domain is not None:
            rules[domain] = TieBreak(rule)
    return rules


class IngestionCoordinator:
    """Coordinates adapters, classification, dedup and retention into one payload."""

    def __init__(
        self,
        adapters: Optional[List[BaseAdapter]] = None,
        settings: Optional[IngestSettings] = None,
        classifier: Optional[RelevanceClassifier] = None,
        sink: Optional[PayloadSink] = None,
    ):
        self.settings = settings or get_settings()
        if adapters is None:
            adapters = build_adapters(load_sources(self.settings.sources_path))
        self.adapters = adapters
        self.classifier = classifier or build_classifier(self.settings)
        self.sink = sink
        self.deduplicator = Deduplicator(
            threshold=self.settings.similarity_threshold,
            priority_sources=self.settings.priority_sources,
            tie_breaks=_tie_breaks(self.settings),
        )
        self.retention = RetentionFilter(self.settings.retention_days)

        self.stage = RunStage.IDLE
        self.stage_history: List[RunStage] = []
        self.current_payload: Optional[Payload] = None
        self.last_diagnostics: Optional[RunDiagnostics] = None

    def _enter(self, stage: RunStage):
        self.stage = stage
        self.stage_history.append(stage)
        logger.debug(f"Stage: {stage.value}")

    def make_context(self, now: Optional[datetime] = None) -> FetchContext:
        return FetchContext.from_settings(self.settings, now=now)

    def fetch_all(self, ctx: FetchContext) -> List[AdapterResult]:
        """
        Run every adapter on a bounded pool.

        Returns:
            One AdapterResult per adapter, in registry order

        Raises:
            IngestTimeoutError: If adapters are still running at the run deadline
        """
        if not self.adapters:
            return []

        executor = ThreadPoolExecutor(
            max_workers=self.settings.concurrency,
            thread_name_prefix="adapter",
        )
        futures = [executor.submit(adapter.run, ctx) for adapter in self.adapters]
        done, pending = wait(futures, timeout=self.settings.run_timeout_seconds)

        if pending:
            executor.shutdown(wait=False, cancel_futures=True)
            names = [a.source_id for a, f in zip(self.adapters, futures) if f in pending]
            raise IngestTimeoutError(self.settings.run_timeout_seconds, names)
        executor.shutdown(wait=True)

        results = []
        for adapter, future in zip(self.adapters, futures):
            try:
                results.append(future.result())
            except Exception as e:
                # run() traps adapter errors; this only covers failures outside it
                logger.error(f"{adapter.source_id} raised outside its run loop: {e}")
                results.append(AdapterResult(adapter=adapter.source_id, error=f"{type(e).__name__}: {e}"))
        return results

    def normalize_results(
        self, results: List[AdapterResult], diagnostics: RunDiagnostics
    ) -> List[NormalizedItem]:
        items: List[NormalizedItem] = []
        for adapter, result in zip(self.adapters, results):
            diag = diagnostics.get_or_create(adapter.source_id, name=adapter.name, tier=adapter.tier.value)
            normalized = adapter.normalizer().normalize_all(result.candidates)
            diag.record_items(normalized)
            diagnostics.record_drop("normalize", len(result.candidates) - len(normalized))
            items.extend(normalized)
        return items

    def run(self, now: Optional[datetime] = None) -> RunResult:
        """
        Execute one full ingestion pass.

        Args:
            now: Reference instant for retention and window acceptance

        Returns:
            RunResult with the published payload and diagnostics

        Raises:
            IngestTimeoutError: Fetching exceeded the run deadline (nothing published)
            PayloadValidationError: The payload failed schema validation in the sink
            OSError: The sink could not write
        """
        now = now or civil_now()
        diagnostics = RunDiagnostics(classifier=self.classifier.name)
        ctx = self.make_context(now)
        self.stage_history = []

        try:
            self._enter(RunStage.FETCHING)
            results = self.fetch_all(ctx)

            self._enter(RunStage.AGGREGATING)
            for adapter, result in zip(self.adapters, results):
                diag = diagnostics.get_or_create(adapter.source_id, name=adapter.name, tier=adapter.tier.value)
                diag.record_result(result)
            if not any(result.candidates for result in results):
                logger.warning("All adapters returned zero items; publishing an empty payload")

            self._enter(RunStage.NORMALIZING)
            items = self.normalize_results(results, diagnostics)

            self._enter(RunStage.CLASSIFYING)
            thresholds = {
                a.source_id: a.model_threshold for a in self.adapters if a.model_threshold is not None
            }
            items, drops = classify_items(
                items, self.classifier, thresholds,
                max_workers=self.settings.concurrency, now=now,
            )
            for reason, count in drops.items():
                diagnostics.record_drop(f"classify_{reason}", count)

            self._enter(RunStage.DEDUPLICATING)
            before = len(items)
            items = self.deduplicator.dedupe(items)
            diagnostics.record_drop("dedup", before - len(items))

            self._enter(RunStage.FILTERING)
            before = len(items)
            items = self.retention.apply(items, now)
            diagnostics.record_drop("retention", before - len(items))

            self._enter(RunStage.SORTING)
            items = sort_items(items)
            diagnostics.record_items(items)
            payload = build_payload(items, generated_at=now)

            if self.sink is not None:
                self.sink.write(payload)

            self.current_payload = payload
            self._enter(RunStage.PUBLISHED)
            diagnostics.finish()
            diagnostics.log_summary()
            self.last_diagnostics = diagnostics
            return RunResult(payload=payload, diagnostics=diagnostics)
        finally:
            ctx.cache.clear()
            self._enter(RunStage.IDLE)


def probe_sources(
    adapters: List[BaseAdapter], ctx: FetchContext, max_workers: int = 4
) -> Dict[str, List[ProbeResult]]:
    """HEAD-check every adapter URL with the short probe timeout."""
    jobs = [(adapter.source_id, url) for adapter in adapters for url in adapter.urls]
    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        probes = list(executor.map(lambda job: ctx.probe(job[1]), jobs))

    results: Dict[str, List[ProbeResult]] = {adapter.source_id: [] for adapter in adapters}
    for (source_id, _), probe in zip(jobs, probes):
        results[source_id].append(probe)
    return results


def main(argv=None) -> int:
    """CLI entry point."""
    import argparse
    from naijainfo.config.secrets import check_keys, has_openai_key
    from naijainfo.logging_config import configure_logging

    parser = argparse.ArgumentParser(description="Ingest outage and exam news into the live feed")
    parser.add_argument("--offline", action="store_true",
                        help="Use fixtures instead of the network")
    parser.add_argument("--output", default=None,
                        help="Output directory for feed.json/version.json")
    parser.add_argument("--sources", default=None,
                        help="Path to sources.yaml")
    parser.add_argument("--check-sources", action="store_true",
                        help="Probe every source URL and exit")
    parser.add_argument("--check-config", action="store_true",
                        help="Validate configuration and list adapters")
    parser.add_argument("--diagnostics", default=None,
                        help="Write run diagnostics JSON to this path")
    parser.add_argument("--verbose", action="store_true",
                        help="Debug logging")
    args = parser.parse_args(argv)

    configure_logging(logging.DEBUG if args.verbose else logging.INFO)

    try:
        settings = load_settings().with_overrides(
            offline=True if args.offline else None,
            output_dir=args.output,
            sources_path=args.sources,
        )
        adapters = build_adapters(load_sources(settings.sources_path))
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        return 2

    if args.check_config:
        print(f"\nConfiguration OK: {len(adapters)} adapter(s)")
        for adapter in adapters:
            threshold = f" model_threshold={adapter.model_threshold}" if adapter.model_threshold else ""
            print(f"  {adapter.source_id:<24} {adapter.type_name:<13} {adapter.tier.value:<10}{threshold}")
        print()
        for key_name, key_status in check_keys().items():
            print(f"{key_name}: {key_status}")
        if settings.classifier_enabled and not has_openai_key():
            print("Model classifier enabled but no key set: community sources use heuristics only.")
        return 0

    if args.check_sources:
        results = probe_sources(adapters, FetchContext.from_settings(settings), settings.concurrency)
        all_ok = True
        for source_id, probes in results.items():
            for probe in probes:
                mark = "✓" if probe.ok else "✗"
                detail = probe.status_code if probe.status_code is not None else probe.error
                print(f"  {mark} {source_id:<24} {probe.url} ({detail}, {probe.elapsed_s:.2f}s)")
                all_ok = all_ok and probe.ok
        return 0 if all_ok else 1

    coordinator = IngestionCoordinator(
        adapters=adapters,
        settings=settings,
        sink=JsonFileSink(settings.output_dir),
    )

    try:
        result = coordinator.run()
    except IngestTimeoutError as e:
        logger.error(f"Ingest aborted: {e}")
        return 1
    except (PayloadValidationError, OSError) as e:
        logger.error(f"Publishing failed: {e}")
        return 1

    if args.diagnostics:
        with open(args.diagnostics, "w") as f:
            json.dump(result.diagnostics.to_dict(), f, indent=2)

    summary = result.diagnostics.get_summary()
    print(f"\n✓ Ingest complete: {len(result.payload.items)} item(s) -> {settings.output_dir}")
    if summary["failed_adapters"]:
        print(f"  Failed adapters: {', '.join(summary['failed_adapters'])}")
    return 0


if __name__ == "__main__":
    import sys
    sys.exit(main())
