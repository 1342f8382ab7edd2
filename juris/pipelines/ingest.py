"""Ingestion driver: runs each raw result through the record state machine.

Per record:

    fetched -> normalized -> {rejected_duplicate | enriched} -> committed | rejected

Every per-record failure ends in a terminal state and is folded into the
run statistics; nothing a single record does can abort the run. Records
are processed one at a time. ``process`` depends only on its input and
the shared store, so several could run concurrently.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, Mapping

from ai.embeddings import get_embedding_provider
from juris.config import Settings, Tribunal, settings
from juris.db import get_session_factory
from juris.errors import (
    ConfigurationError,
    DetailNotFoundError,
    FetchError,
    StoreError,
    TransientFetchError,
    ValidationError,
)
from juris.fetcher import PageFetcher
from juris.records import (
    ALLOWED_TRANSITIONS,
    CommitOutcome,
    JudicialRecord,
    RecordState,
    utcnow,
)
from juris.store import DecisionStore, SqlDecisionStore
from .committer import IngestionCommitter
from .dedup import DedupGate
from .enrichment import EmbeddingEnricher
from .normalization import merge_detail, normalize_record, validate_record

logger = logging.getLogger(__name__)

OUTCOME_STATES = {
    CommitOutcome.INSERTED: RecordState.COMMITTED,
    CommitOutcome.DUPLICATE_REJECTED: RecordState.REJECTED_DUPLICATE,
    CommitOutcome.INVALID: RecordState.REJECTED_INVALID,
}


class InvalidTransition(RuntimeError):
    """Raised when a record is moved along an edge the state machine lacks."""
    pass


@dataclass
class RecordResult:
    """Terminal result of one record's pipeline run."""
    natural_key: str | None
    state: RecordState
    history: list[RecordState]
    detail: str | None = None
    retryable: bool = False
    changed: bool = False


class RecordRun:
    """State machine for a single raw result."""

    def __init__(self, raw: Mapping[str, Any]) -> None:
        self.raw = raw
        self.natural_key: str | None = None
        self.state = RecordState.FETCHED
        self.history = [RecordState.FETCHED]

    @property
    def label(self) -> str:
        return self.natural_key or str(self.raw.get("rol") or "<no rol>")

    def advance(self, state: RecordState) -> None:
        if self.state.is_terminal:
            raise InvalidTransition(f"{self.label} already {self.state.value}")
        allowed = ALLOWED_TRANSITIONS[self.state]
        if state is not RecordState.FAILED and state not in allowed:
            raise InvalidTransition(f"{self.label}: {self.state.value} -> {state.value}")
        self.state = state
        self.history.append(state)

    def finish(self, state: RecordState, detail: str | None = None, **flags: bool) -> RecordResult:
        self.advance(state)
        return RecordResult(self.natural_key, self.state, list(self.history), detail, **flags)


@dataclass
class RunStats:
    """Counters for one run; owned by the driver and returned at the end."""
    processed: int = 0
    succeeded: int = 0
    duplicate: int = 0
    invalid: int = 0
    errors: int = 0
    changed: int = 0
    deferred: list[str] = field(default_factory=list)
    aborted: bool = False
    started_at: datetime = field(default_factory=utcnow)
    finished_at: datetime | None = None

    def record(self, result: RecordResult) -> None:
        self.processed += 1
        if result.state is RecordState.COMMITTED:
            self.succeeded += 1
        elif result.state is RecordState.REJECTED_DUPLICATE:
            self.duplicate += 1
            self.changed += int(result.changed)
        elif result.state is RecordState.REJECTED_INVALID:
            self.invalid += 1
        else:
            self.errors += 1
            if result.retryable and result.natural_key:
                self.deferred.append(result.natural_key)

    @property
    def duration_seconds(self) -> float:
        end = self.finished_at or utcnow()
        return (end - self.started_at).total_seconds()

    def summary(self) -> dict[str, Any]:
        return {
            "processed": self.processed,
            "succeeded": self.succeeded,
            "duplicate": self.duplicate,
            "invalid": self.invalid,
            "errors": self.errors,
            "changed": self.changed,
            "deferred": list(self.deferred),
            "aborted": self.aborted,
            "duration_seconds": round(self.duration_seconds, 3),
        }


def log_summary(stats: RunStats) -> None:
    logger.info("=== RUN SUMMARY ===", extra={"summary": stats.summary()})
    logger.info(f"Duration: {stats.duration_seconds:.1f} seconds")
    logger.info(f"Processed: {stats.processed}")
    logger.info(f"Succeeded: {stats.succeeded}")
    logger.info(f"Duplicates: {stats.duplicate}")
    logger.info(f"Invalid: {stats.invalid}")
    logger.info(f"Errors: {stats.errors}")
    if stats.changed:
        logger.info(f"Changed upstream: {stats.changed}")
    if stats.deferred:
        logger.info(f"Deferred for retry: {', '.join(stats.deferred)}")
    if stats.aborted:
        logger.warning("Run was aborted before all results were processed")


class IngestionPipeline:
    """Normalize -> dedup -> fetch detail -> enrich -> commit, per record."""

    def __init__(
        self,
        store: DecisionStore,
        *,
        fetcher: PageFetcher | None = None,
        enricher: EmbeddingEnricher | None = None,
    ) -> None:
        self.store = store
        self.fetcher = fetcher
        self.enricher = enricher
        self.gate = DedupGate(store)
        self.committer = IngestionCommitter(store)

    async def aclose(self) -> None:
        for resource in (self.fetcher, getattr(self.enricher, "provider", None)):
            close = getattr(resource, "aclose", None)
            if close is not None:
                await close()

    async def process(self, raw: Mapping[str, Any]) -> RecordResult:
        """Run one raw result to a terminal state. Never raises."""
        run = RecordRun(raw)
        try:
            return await self._process(run)
        except ValidationError as e:
            logger.warning(f"Invalid result {run.label}: {e}")
            return run.finish(RecordState.REJECTED_INVALID, str(e))
        except TransientFetchError as e:
            logger.error(f"Transient failure processing {run.label}: {e}")
            return run.finish(RecordState.FAILED, str(e), retryable=True)
        except FetchError as e:
            logger.error(f"Source refused request for {run.label}: {e}")
            return run.finish(RecordState.FAILED, str(e))
        except StoreError as e:
            logger.error(f"Store failure processing {run.label}: {e}")
            return run.finish(RecordState.FAILED, str(e))
        except Exception as e:
            logger.error(f"Error processing {run.label}: {e}", exc_info=True)
            return run.finish(RecordState.FAILED, str(e))

    async def _process(self, run: RecordRun) -> RecordResult:
        record = normalize_record(run.raw)
        run.natural_key = record.natural_key
        run.advance(RecordState.NORMALIZED)
        logger.info(f"Processing: {record.natural_key}")

        if await self.gate.is_duplicate(record.natural_key):
            changed = await self._content_changed(record)
            logger.info(f"Duplicate found: {record.natural_key}")
            return run.finish(RecordState.REJECTED_DUPLICATE, changed=changed)

        if self.fetcher is not None and record.source_url and not record.full_text:
            record = await self._with_detail(run.raw, record)

        # Checked before enrichment so invalid records never cost an embedding call.
        validate_record(record)

        if self.enricher is not None:
            record = await self.enricher.enrich(record)
        run.advance(RecordState.ENRICHED)

        outcome = await self.committer.commit(record)
        return run.finish(OUTCOME_STATES[outcome])

    async def _with_detail(self, raw: Mapping[str, Any], record: JudicialRecord) -> JudicialRecord:
        try:
            detail = await self.fetcher.fetch_detail(record.source_url)
        except DetailNotFoundError as e:
            logger.warning(f"Detail page missing for {record.natural_key}, using listing data: {e}")
            return record
        return normalize_record(merge_detail(raw, detail))

    async def _content_changed(self, record: JudicialRecord) -> bool:
        if not record.full_text:
            return False
        try:
            changed = await self.gate.content_changed(record)
        except StoreError as e:
            logger.warning(f"Could not compare content for {record.natural_key}: {e}")
            return False
        if changed:
            logger.info(f"Content changed upstream for stored decision {record.natural_key}")
        return changed

    async def run(
        self,
        items: Iterable[Mapping[str, Any]],
        *,
        stop_event: asyncio.Event | None = None,
    ) -> RunStats:
        """Process ``items`` sequentially and return the run statistics.

        Setting ``stop_event`` stops the run between records; the summary
        is logged even if the run is cancelled. A cancelled run does not
        count a record whose shielded insert completes after cancellation.
        """
        stats = RunStats()
        items = list(items)
        logger.info(f"Processing {len(items)} results...")
        try:
            for index, raw in enumerate(items, start=1):
                if stop_event is not None and stop_event.is_set():
                    logger.warning(f"Stop requested, skipping {len(items) - index + 1} remaining result(s)")
                    stats.aborted = True
                    break
                stats.record(await self.process(raw))
        except asyncio.CancelledError:
            stats.aborted = True
            logger.warning(
                f"Run cancelled after {stats.processed} result(s); an insert already in flight "
                "may still complete and is not counted in this summary"
            )
            raise
        finally:
            stats.finished_at = utcnow()
            log_summary(stats)
        return stats

    async def scrape(
        self,
        tribunal: Tribunal,
        *,
        max_records: int,
        stop_event: asyncio.Event | None = None,
    ) -> RunStats:
        """Fetch one results page for ``tribunal`` and ingest up to ``max_records``."""
        if self.fetcher is None:
            raise ConfigurationError("Scraping requires a page fetcher")

        url = self.fetcher.search_url(tribunal)
        logger.info(f"Scraping {tribunal.value} from {url}")
        try:
            rows = await self.fetcher.fetch_listing(url)
        except (TransientFetchError, FetchError) as e:
            logger.error(f"Could not load results page {url}: {e}")
            stats = RunStats(errors=1, aborted=True)
            stats.finished_at = utcnow()
            log_summary(stats)
            return stats
        return await self.run(rows[:max_records], stop_event=stop_event)


def build_pipeline(config: Settings | None = None, *, fetch_details: bool = True) -> IngestionPipeline:
    """Wire the SQL store, page fetcher and embedding provider from settings.

    Raises:
        ConfigurationError: if a required credential is missing
    """
    config = config or settings
    config.check_required()

    store = SqlDecisionStore(get_session_factory(), scraper_version=config.scraper.version)
    fetcher = PageFetcher.from_settings(config.scraper) if fetch_details else None
    enricher = None
    if config.embeddings.enabled:
        enricher = EmbeddingEnricher(
            get_embedding_provider(config.embeddings),
            max_input_chars=config.embeddings.max_input_chars,
        )
    logger.info(
        f"Pipeline ready (detail fetch: {'on' if fetcher else 'off'}, "
        f"embeddings: {'on' if enricher else 'off'})"
    )
    return IngestionPipeline(store, fetcher=fetcher, enricher=enricher)
