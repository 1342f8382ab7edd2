import pytest

from juris.pipelines.enrichment import EmbeddingEnricher
from juris.pipelines.ingest import IngestionPipeline

from helpers import FakeFetcher, FakeProvider, FakeStore


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def fetcher() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture
def pipeline(store: FakeStore, fetcher: FakeFetcher, provider: FakeProvider) -> IngestionPipeline:
    return IngestionPipeline(store, fetcher=fetcher, enricher=EmbeddingEnricher(provider))
