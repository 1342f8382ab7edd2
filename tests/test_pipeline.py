"""End-to-end tests for the ingestion driver using in-memory fakes."""
import asyncio

import httpx
import pytest

from juris.config import Tribunal
from juris.errors import ConfigurationError, DetailNotFoundError, FetchError, TransientFetchError
from juris.fetcher import PageFetcher
from juris.pipelines.enrichment import EmbeddingEnricher
from juris.pipelines.ingest import (
    IngestionPipeline,
    InvalidTransition,
    RecordRun,
    RunStats,
)
from juris.records import EmbeddingView, RecordState

from helpers import FakeFetcher, FakeProvider, FakeStore, raw_item


def listing_only(rol: str, **overrides):
    """A results-page row: metadata and link, no text bodies."""
    return raw_item(rol, texto_completo=None, considerandos=None, resolucion=None, **overrides)


async def test_repeated_key_in_one_run(pipeline, store):
    stats = await pipeline.run([raw_item("A"), raw_item("B"), raw_item("A")])

    assert sorted(store.records) == ["A", "B"]
    assert stats.processed == 3
    assert stats.succeeded == 2
    assert stats.duplicate == 1
    assert stats.errors == 0
    assert stats.aborted is False


async def test_duplicate_is_rejected_before_fetch_and_embedding(store, fetcher, provider, pipeline):
    await pipeline.run([raw_item("A")])
    provider.calls.clear()

    stats = await pipeline.run([listing_only("A")])

    assert stats.duplicate == 1
    assert fetcher.calls == []
    assert provider.calls == []
    assert store.insert_calls == ["A"]


async def test_race_past_the_gate_is_a_duplicate_not_an_error(provider):
    store = FakeStore()
    pipeline = IngestionPipeline(store, enricher=EmbeddingEnricher(provider))
    await pipeline.run([raw_item("A")])

    store.hide_existing = True
    stats = await pipeline.run([raw_item("A")])

    assert stats.duplicate == 1
    assert stats.errors == 0
    assert len(store.records) == 1


async def test_failed_existence_check_still_commits_once(provider):
    store = FakeStore(fail_exists=True)
    pipeline = IngestionPipeline(store, enricher=EmbeddingEnricher(provider))

    stats = await pipeline.run([raw_item("A"), raw_item("A")])

    assert stats.succeeded == 1
    assert stats.duplicate == 1
    assert stats.errors == 0


async def test_empty_text_is_invalid_and_costs_no_embedding(pipeline, store, provider):
    stats = await pipeline.run([raw_item("A", texto_completo="", enlace=None)])

    assert stats.invalid == 1
    assert stats.succeeded == 0
    assert provider.calls == []
    assert store.records == {}


async def test_missing_key_is_invalid(pipeline):
    result = await pipeline.process(raw_item(rol=""))
    assert result.state is RecordState.REJECTED_INVALID
    assert result.history == [RecordState.FETCHED, RecordState.REJECTED_INVALID]
    assert result.natural_key is None


async def test_detail_page_is_merged_into_listing_row(store, provider):
    detail = {
        "texto_completo": "Santiago. Vistos: se acoge el recurso.",
        "considerandos": "PRIMERO: Que procede.",
        "resolucion": "Se acoge.",
        "rol": "OTRO-ROL",
    }
    fetcher = FakeFetcher({"https://juris.example/detalle/A": detail})
    pipeline = IngestionPipeline(store, fetcher=fetcher, enricher=EmbeddingEnricher(provider))

    stats = await pipeline.run([listing_only("A")])

    assert stats.succeeded == 1
    assert fetcher.calls == ["https://juris.example/detalle/A"]
    stored = store.records["A"]
    assert stored.full_text == "Santiago. Vistos: se acoge el recurso."
    assert stored.court == "Corte Suprema"
    assert set(stored.embeddings) == set(EmbeddingView)


async def test_rows_with_text_skip_the_detail_fetch(pipeline, fetcher):
    await pipeline.run([raw_item("A")])
    assert fetcher.calls == []


async def test_transient_fetch_failure_defers_and_run_continues(store, provider):
    fetcher = FakeFetcher({
        "https://juris.example/detalle/A": TransientFetchError("timed out"),
        "https://juris.example/detalle/B": {"texto_completo": "Texto B."},
    })
    pipeline = IngestionPipeline(store, fetcher=fetcher, enricher=EmbeddingEnricher(provider))

    stats = await pipeline.run([listing_only("A"), listing_only("B")])

    assert stats.errors == 1
    assert stats.deferred == ["A"]
    assert stats.succeeded == 1
    assert list(store.records) == ["B"]


async def test_missing_detail_page_proceeds_with_listing_data(store):
    fetcher = FakeFetcher({"https://juris.example/detalle/A": DetailNotFoundError("404")})
    pipeline = IngestionPipeline(store, fetcher=fetcher)

    result = await pipeline.process(listing_only("A"))

    assert fetcher.calls == ["https://juris.example/detalle/A"]
    # The listing row alone has no text, so it ends as invalid rather than failed.
    assert result.state is RecordState.REJECTED_INVALID
    assert result.history == [RecordState.FETCHED, RecordState.NORMALIZED, RecordState.REJECTED_INVALID]
    assert result.retryable is False


async def test_store_failure_is_isolated_to_one_record(provider):
    store = FakeStore(fail_insert={"B"})
    pipeline = IngestionPipeline(store, enricher=EmbeddingEnricher(provider))

    stats = await pipeline.run([raw_item("A"), raw_item("B"), raw_item("C")])

    assert stats.succeeded == 2
    assert stats.errors == 1
    assert stats.deferred == []
    assert sorted(store.records) == ["A", "C"]


async def test_embedding_failure_still_commits(store):
    provider = FakeProvider(fail_on={"Fisco con Pérez (A)"})
    pipeline = IngestionPipeline(store, enricher=EmbeddingEnricher(provider))

    stats = await pipeline.run([raw_item("A")])

    assert stats.succeeded == 1
    stored = store.records["A"]
    assert EmbeddingView.TITLE not in stored.embeddings
    assert stored.processing_errors == ["embedding:title: quota exceeded"]


async def test_stop_event_aborts_between_records(pipeline, store):
    stop = asyncio.Event()
    stop.set()

    stats = await pipeline.run([raw_item("A"), raw_item("B")], stop_event=stop)

    assert stats.aborted is True
    assert stats.processed == 0
    assert store.records == {}
    assert stats.finished_at is not None


class SlowStore(FakeStore):
    """Holds each insert until ``release`` is set."""

    def __init__(self):
        super().__init__()
        self.started = asyncio.Event()
        self.release = asyncio.Event()
        self.inserted = asyncio.Event()

    async def insert(self, record):
        self.started.set()
        await self.release.wait()
        await super().insert(record)
        self.inserted.set()


async def test_cancelled_run_lets_in_flight_insert_finish(caplog):
    store = SlowStore()
    task = asyncio.create_task(IngestionPipeline(store).run([raw_item("A"), raw_item("B")]))
    await store.started.wait()

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    store.release.set()
    await asyncio.wait_for(store.inserted.wait(), timeout=1)

    assert list(store.records) == ["A"]
    assert "not counted in this summary" in caplog.text


async def test_changed_content_is_counted_not_overwritten(pipeline, store):
    await pipeline.run([raw_item("A")])
    original = store.records["A"].full_text

    stats = await pipeline.run([raw_item("A", texto_completo="Texto modificado por la fuente.")])

    assert stats.duplicate == 1
    assert stats.changed == 1
    assert store.records["A"].full_text == original

    again = await pipeline.run([raw_item("A")])
    assert again.changed == 0


async def test_committed_record_history(pipeline):
    result = await pipeline.process(raw_item("A"))
    assert result.history == [
        RecordState.FETCHED,
        RecordState.NORMALIZED,
        RecordState.ENRICHED,
        RecordState.COMMITTED,
    ]

    duplicate = await pipeline.process(raw_item("A"))
    assert duplicate.history == [
        RecordState.FETCHED,
        RecordState.NORMALIZED,
        RecordState.REJECTED_DUPLICATE,
    ]


def test_terminal_state_cannot_move():
    run = RecordRun(raw_item("A"))
    run.advance(RecordState.NORMALIZED)
    run.advance(RecordState.REJECTED_DUPLICATE)
    with pytest.raises(InvalidTransition):
        run.advance(RecordState.FAILED)


def test_undeclared_edge_is_refused():
    run = RecordRun(raw_item("A"))
    with pytest.raises(InvalidTransition):
        run.advance(RecordState.COMMITTED)


def test_stats_summary_shape():
    summary = RunStats(processed=2, succeeded=1, duplicate=1).summary()
    assert summary["processed"] == 2
    assert summary["succeeded"] == 1
    assert summary["duplicate"] == 1
    assert summary["deferred"] == []
    assert summary["aborted"] is False


async def test_scrape_caps_listing_rows(store):
    fetcher = FakeFetcher(listing=[raw_item(f"R-{i}") for i in range(5)])
    pipeline = IngestionPipeline(store, fetcher=fetcher)

    stats = await pipeline.scrape(Tribunal.CORTE_SUPREMA, max_records=3)

    assert fetcher.calls == ["https://juris.example/busqueda?Corte_Suprema"]
    assert stats.processed == 3
    assert sorted(store.records) == ["R-0", "R-1", "R-2"]


async def test_scrape_listing_failure_aborts(store):
    class BrokenFetcher(FakeFetcher):
        async def fetch_listing(self, url):
            raise TransientFetchError("503")

    stats = await IngestionPipeline(store, fetcher=BrokenFetcher()).scrape(Tribunal.PENALES, max_records=10)

    assert stats.aborted is True
    assert stats.errors == 1
    assert stats.processed == 0


async def test_scrape_refused_listing_still_returns_summary(store):
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(403)))
    fetcher = PageFetcher(base_url="https://juris.example", delay=0, max_attempts=1, client=client)

    stats = await IngestionPipeline(store, fetcher=fetcher).scrape(Tribunal.CORTE_SUPREMA, max_records=5)

    assert stats.aborted is True
    assert stats.errors == 1
    assert stats.finished_at is not None
    await fetcher.aclose()


async def test_refused_detail_page_fails_only_that_record(store):
    fetcher = FakeFetcher({
        "https://juris.example/detalle/A": FetchError("403"),
        "https://juris.example/detalle/B": {"texto_completo": "Texto B."},
    })
    pipeline = IngestionPipeline(store, fetcher=fetcher)

    stats = await pipeline.run([listing_only("A"), listing_only("B")])

    assert stats.errors == 1
    assert stats.deferred == []
    assert stats.succeeded == 1


async def test_scrape_without_fetcher_is_a_configuration_error(store):
    with pytest.raises(ConfigurationError):
        await IngestionPipeline(store).scrape(Tribunal.CIVIL, max_records=1)
