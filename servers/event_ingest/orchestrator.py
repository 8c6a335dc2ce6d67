"""
Ingestion orchestrator.

One run drives the requested source adapters, deduplicates the combined
batch once, and upserts the surviving events by (source, sourceId).
Partial failure never raises: every source's outcome is reported in the
returned RunStats.
"""

import asyncio
import random
import time
from datetime import datetime, timezone
from typing import Any, Callable, Optional, Union

import structlog

from .dedup import MERGE_THRESHOLD, build_exclusions, find_duplicates, merge_survivors
from .errors import ConfigError, DuplicateKeyError, FetchError, StorageError
from .fetch import BrowserFetcher, Fetcher, HttpFetcher
from .models import (
    MUTABLE_FIELDS,
    BatchEvent,
    CanonicalEvent,
    RunStats,
    ScrapeOptions,
    SourceFailure,
    SourceRunStats,
    utcnow,
)
from .politeness import DEFAULT_POLITENESS, FALLBACK_POLITENESS, PolitenessConfig, PolitenessController
from .resilience.health import HealthMonitor
from .sources import ADAPTERS, SourceAdapter, create_adapter
from .storage.base import EventStore

logger = structlog.get_logger()

AdapterFactory = Callable[
    [str, PolitenessController, Fetcher, Optional[BrowserFetcher]], SourceAdapter
]
OptionsInput = dict[str, Union[ScrapeOptions, dict[str, Any]]]

# Written on every update; a key the fresh document lacks is set to None
UPDATED_KEYS = tuple(
    field.alias or name
    for name, field in CanonicalEvent.model_fields.items()
    if name not in ("source", "source_id", "scraped_at")
)


def _comparable(value: Any) -> Any:
    # Mongo hands back naive UTC datetimes unless the client is tz-aware.
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    return value


def changed_fields(existing: dict[str, Any], document: dict[str, Any]) -> list[str]:
    """Mutable fields whose stored value differs from the fresh document."""
    return [
        field
        for field in MUTABLE_FIELDS
        if _comparable(existing.get(field)) != _comparable(document.get(field))
    ]


class _SourceOutcome:
    def __init__(self, stats: SourceRunStats):
        self.stats = stats
        self.events: list[CanonicalEvent] = []
        self.failure: Optional[SourceFailure] = None


class IngestionOrchestrator:
    """Runs sources, deduplicates, and upserts into an EventStore."""

    def __init__(
        self,
        store: EventStore,
        *,
        adapter_factory: Optional[AdapterFactory] = None,
        http: Optional[Fetcher] = None,
        browser: Optional[BrowserFetcher] = None,
        politeness: Optional[dict[str, PolitenessConfig]] = None,
        concurrency: int = 4,
        run_timeout: Optional[float] = None,
        threshold: float = MERGE_THRESHOLD,
        weights: Optional[dict[str, float]] = None,
        rng: Optional[random.Random] = None,
        health: Optional[HealthMonitor] = None,
    ):
        """Initialize orchestrator.

        Args:
            store: Where surviving events are upserted
            adapter_factory: Builds an adapter by source name (create_adapter)
            http: Shared fetcher; an HttpFetcher is opened per run when omitted
            browser: Shared browser; one is created per run when omitted and
                a requested source renders pages (only with the default http)
            politeness: Per-source pacing overrides over DEFAULT_POLITENESS
            concurrency: Sources run at once (1 means sequential)
            run_timeout: Seconds before new fetches stop being issued
            threshold: Composite similarity needed to merge
            weights: Title/venue/date similarity weights
            rng: Random source for politeness delays
            health: Health monitor shared across runs
        """
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.store = store
        self.adapter_factory = adapter_factory or create_adapter
        self.http = http
        self.browser = browser
        self.politeness = {**DEFAULT_POLITENESS, **(politeness or {})}
        self.concurrency = concurrency
        self.run_timeout = run_timeout
        self.threshold = threshold
        self.weights = weights
        self.rng = rng
        self.health = health or HealthMonitor()

    async def run(
        self,
        sources: list[str],
        options: Optional[OptionsInput] = None,
    ) -> RunStats:
        """
        Run one ingestion pass.

        Args:
            sources: Source names, in the order their events are combined
            options: Per-source ScrapeOptions (or dicts of them)

        Returns:
            RunStats with counters, per-source stats and failures
        """
        start = time.monotonic()
        names = list(dict.fromkeys(sources))
        scrape_options = {name: self._options_for(name, options) for name in names}
        report = RunStats()

        logger.info("run_started", sources=names, concurrency=self.concurrency)

        politeness = self._politeness_for(scrape_options)
        http, owns_http = (self.http, False) if self.http is not None else (HttpFetcher(), True)
        browser, owns_browser = self._browser_for(scrape_options, owns_http)

        try:
            outcomes = await self._scrape_all(names, scrape_options, politeness, http, browser)
            report.cancelled = politeness.cancelled

            batch: list[CanonicalEvent] = []
            for outcome in outcomes:
                report.sources.append(outcome.stats)
                if outcome.failure is not None:
                    report.failures.append(outcome.failure)
                if outcome.stats.status != "error":
                    report.fetched += outcome.stats.fetched
                    report.normalised += outcome.stats.normalised
                    batch.extend(outcome.events)

            survivors = self._deduplicate(batch, report)
            await self._upsert_all(survivors, report)
        finally:
            if owns_browser and browser is not None:
                await browser.close()
            if owns_http:
                await http.aclose()

        report.duration = round(time.monotonic() - start, 3)
        logger.info(
            "run_finished",
            fetched=report.fetched,
            normalised=report.normalised,
            duplicate_pairs_found=report.duplicate_pairs_found,
            merged=report.merged,
            inserted=report.inserted,
            updated=report.updated,
            skipped_unchanged=report.skipped_unchanged,
            skipped_error=report.skipped_error,
            failed_sources=report.failed_sources,
            cancelled=report.cancelled,
            duration=report.duration,
        )
        return report

    # Setup

    @staticmethod
    def _options_for(name: str, options: Optional[OptionsInput]) -> ScrapeOptions:
        value = (options or {}).get(name)
        if value is None:
            return ScrapeOptions()
        if isinstance(value, ScrapeOptions):
            return value
        return ScrapeOptions.model_validate(value)

    def _politeness_for(self, scrape_options: dict[str, ScrapeOptions]) -> PolitenessController:
        """Fresh controller for this run with per-source option overrides."""
        configs = dict(self.politeness)
        for name, opts in scrape_options.items():
            config = opts.politeness or configs.get(name, FALLBACK_POLITENESS)
            if opts.detail_fetch_delay_ms is not None:
                config = config.with_min_delay(opts.detail_fetch_delay_ms)
            configs[name] = config
        return PolitenessController(configs, rng=self.rng)

    def _browser_for(
        self, scrape_options: dict[str, ScrapeOptions], owns_http: bool
    ) -> tuple[Optional[BrowserFetcher], bool]:
        if self.browser is not None:
            return self.browser, False
        if not owns_http:
            return None, False
        for name, opts in scrape_options.items():
            adapter_cls = ADAPTERS.get(name)
            wants = opts.use_browser if opts.use_browser is not None else (
                adapter_cls is not None and adapter_cls.default_use_browser
            )
            if wants:
                # Chromium starts on the first page request.
                return BrowserFetcher(), True
        return None, False

    # Scraping

    async def _scrape_all(
        self,
        names: list[str],
        scrape_options: dict[str, ScrapeOptions],
        politeness: PolitenessController,
        http: Fetcher,
        browser: Optional[BrowserFetcher],
    ) -> list[_SourceOutcome]:
        semaphore = asyncio.Semaphore(self.concurrency)
        tasks = [
            asyncio.create_task(
                self._scrape_source(name, scrape_options[name], politeness, http, browser, semaphore)
            )
            for name in names
        ]
        if not tasks:
            return []

        done, pending = await asyncio.wait(tasks, timeout=self.run_timeout)
        if pending:
            logger.warning("run_timeout", timeout=self.run_timeout, pending=len(pending))
            politeness.cancel()
            # In-flight fetches finish under their own request timeouts.
            await asyncio.wait(pending)

        return [task.result() for task in tasks]

    async def _scrape_source(
        self,
        name: str,
        options: ScrapeOptions,
        politeness: PolitenessController,
        http: Fetcher,
        browser: Optional[BrowserFetcher],
        semaphore: asyncio.Semaphore,
    ) -> _SourceOutcome:
        outcome = _SourceOutcome(SourceRunStats(source=name))

        async with semaphore:
            try:
                adapter = self.adapter_factory(name, politeness, http, browser)
                outcome.events = await adapter.scrape(options, outcome.stats)
            except ConfigError as e:
                self._fail(outcome, "config", e)
            except FetchError as e:
                self._fail(outcome, "fetch", e)
            except Exception as e:
                logger.exception("source_scrape_crashed", source=name)
                self._fail(outcome, "scrape", e)

        if outcome.stats.status == "cancelled":
            outcome.failure = SourceFailure(
                source=name,
                stage="cancelled",
                error_type="RunCancelledError",
                message=f"Run timed out; kept {len(outcome.events)} events",
            )
        self.health.record(outcome.stats)
        return outcome

    def _fail(self, outcome: _SourceOutcome, stage: str, error: Exception) -> None:
        stats = outcome.stats
        stats.status = "error"
        stats.error_message = str(error)
        outcome.events = []
        outcome.failure = SourceFailure(
            source=stats.source,
            stage=stage,
            error_type=type(error).__name__,
            message=str(error),
        )
        logger.warning(
            "source_fetch_failed",
            source=stats.source,
            stage=stage,
            error_type=type(error).__name__,
            error=str(error),
        )

    # Deduplication

    def _deduplicate(self, batch: list[CanonicalEvent], report: RunStats) -> list[CanonicalEvent]:
        """Drop repeated natural keys, then merge cross-source duplicates into their survivors."""
        unique: dict[str, CanonicalEvent] = {}
        for event in batch:
            if event.batch_id in unique:
                report.merged += 1
                logger.debug("repeated_key_collapsed", batch_id=event.batch_id)
                continue
            unique[event.batch_id] = event

        pairs = find_duplicates(
            BatchEvent.wrap(list(unique.values())),
            threshold=self.threshold,
            weights=self.weights,
        )
        exclusions = build_exclusions(pairs, unique)

        report.duplicate_pairs = pairs
        report.duplicate_pairs_found = sum(1 for p in pairs if p.should_merge)
        report.exclusions = list(exclusions.values())
        report.merged += len(exclusions)

        return merge_survivors(unique, exclusions)

    # Storage

    async def _upsert_all(self, events: list[CanonicalEvent], report: RunStats) -> None:
        storage_failed: set[str] = set()

        for event in events:
            try:
                outcome = await self.upsert(event)
            except DuplicateKeyError:
                report.skipped_error += 1
                logger.info("duplicate_key_skipped", source=event.source, source_id=event.source_id)
                continue
            except StorageError as e:
                report.skipped_error += 1
                logger.error(
                    "upsert_failed",
                    source=event.source,
                    source_id=event.source_id,
                    error=str(e),
                )
                if event.source not in storage_failed:
                    storage_failed.add(event.source)
                    report.failures.append(SourceFailure(
                        source=event.source,
                        stage="storage",
                        error_type=type(e).__name__,
                        message=str(e),
                    ))
                continue

            if outcome == "inserted":
                report.inserted += 1
            elif outcome == "updated":
                report.updated += 1
            else:
                report.skipped_unchanged += 1

    async def upsert(self, event: CanonicalEvent) -> str:
        """
        Insert or update one event by its natural key.

        Returns:
            "inserted", "updated" or "unchanged"

        Raises:
            DuplicateKeyError: Insert lost a race for the same key
            StorageError: Store unreachable or write rejected
        """
        document = event.to_document()
        existing = await self.store.find_one(event.source, event.source_id)

        if existing is None:
            await self.store.insert(document)
            return "inserted"

        changed = changed_fields(existing, document)
        if not changed:
            return "unchanged"

        patch = {key: document.get(key) for key in UPDATED_KEYS}
        patch["lastUpdated"] = utcnow()

        await self.store.update(existing["_id"], patch)
        logger.debug(
            "event_updated",
            source=event.source,
            source_id=event.source_id,
            changed=changed,
        )
        return "updated"
