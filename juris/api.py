"""FastAPI app exposing ingestion runs, decision lookup and similarity search."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import date, datetime
from typing import Any, AsyncIterator

from fastapi import Depends, FastAPI, HTTPException, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from ai.embeddings import EmbeddingProvider, get_embedding_provider
from .config import Tribunal, settings
from .db import get_session_factory
from .errors import ConfigurationError, StoreError, TransientFetchError
from .logging_config import setup_logging
from .pipelines.ingest import IngestionPipeline, RunStats, build_pipeline
from .records import EmbeddingView
from .search import MAX_LIMIT, search_text
from .store import DecisionStore, SqlDecisionStore

logger = logging.getLogger(__name__)


# Pydantic request/response models
class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str


class ErrorResponse(BaseModel):
    """Error response."""
    error: str
    detail: str | None = None


class IngestRequest(BaseModel):
    """Raw results to ingest, keyed by the source site's field names."""
    items: list[dict[str, Any]] = Field(min_length=1, max_length=1000)


class ScrapeRequest(BaseModel):
    """Scrape run options; defaults come from settings."""
    tribunal: Tribunal | None = None
    max_records: int | None = Field(default=None, ge=1, le=10000)


class RunSummaryResponse(BaseModel):
    """Counts for one ingestion run."""
    processed: int
    succeeded: int
    duplicate: int
    invalid: int
    errors: int
    changed: int
    deferred: list[str]
    aborted: bool
    duration_seconds: float

    @classmethod
    def from_stats(cls, stats: RunStats) -> RunSummaryResponse:
        return cls(**stats.summary())


class SearchRequest(BaseModel):
    """Semantic search request."""
    query: str = Field(min_length=1, max_length=2000)
    view: EmbeddingView = EmbeddingView.CONTENT
    limit: int = Field(default=10, ge=1, le=MAX_LIMIT)


class SearchHitDTO(BaseModel):
    """Single search hit."""
    natural_key: str
    case_title: str | None
    decision_date: date | None
    similarity: float


class SearchResponse(BaseModel):
    """Search response."""
    view: EmbeddingView
    hits: list[SearchHitDTO]


class DecisionResponse(BaseModel):
    """Stored decision without its vectors."""
    natural_key: str
    source_url: str | None
    case_title: str | None
    court: str | None
    result_label: str | None
    subject_matter: str | None
    descriptors: list[str]
    decision_date: date | None
    decision_date_raw: str | None
    date_unparsed: bool
    full_text: str | None
    reasoning_text: str | None
    ruling_text: str | None
    dissent_text: str | None
    content_hash: str | None
    embedding_views: list[EmbeddingView]
    quality_score: int
    ingested_at: datetime
    updated_at: datetime


# Dependencies
def get_store() -> DecisionStore:
    return SqlDecisionStore(get_session_factory(), scraper_version=settings.scraper.version)


async def get_pipeline() -> AsyncIterator[IngestionPipeline]:
    pipeline = build_pipeline(settings)
    try:
        yield pipeline
    finally:
        await pipeline.aclose()


async def get_provider() -> AsyncIterator[EmbeddingProvider | None]:
    if not settings.embeddings.enabled:
        yield None
        return
    provider = get_embedding_provider(settings.embeddings)
    try:
        yield provider
    finally:
        close = getattr(provider, "aclose", None)
        if close is not None:
            await close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup/shutdown logic."""
    # Startup
    setup_logging()
    settings.check_required()
    logger.info("Application starting up")

    yield

    # Shutdown
    logger.info("Application shutting down")


app = FastAPI(
    title="Jurisprudencia Ingest",
    version=settings.version,
    description="Court decision ingestion with deduplication and semantic search",
    lifespan=lifespan,
)


# Exception handlers
@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request, exc: ConfigurationError):
    """Handle missing credentials."""
    logger.error(f"Configuration error: {exc}")
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content=ErrorResponse(error="configuration_error", detail=str(exc)).model_dump(),
    )


@app.exception_handler(StoreError)
async def store_error_handler(request, exc: StoreError):
    """Handle database failures."""
    logger.error(f"Store error: {exc}")
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content=ErrorResponse(error="store_error", detail=str(exc)).model_dump(),
    )


@app.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    """Health check endpoint."""
    return HealthResponse(status="ok", version=settings.version)


@app.post("/ingest", response_model=RunSummaryResponse)
async def ingest(
    request: IngestRequest,
    pipeline: IngestionPipeline = Depends(get_pipeline),
) -> RunSummaryResponse:
    """Ingest raw results and return the run summary."""
    logger.info(f"Received {len(request.items)} results for ingestion")
    stats = await pipeline.run(request.items)
    return RunSummaryResponse.from_stats(stats)


@app.post("/scrape", response_model=RunSummaryResponse)
async def scrape(
    request: ScrapeRequest = ScrapeRequest(),
    pipeline: IngestionPipeline = Depends(get_pipeline),
) -> RunSummaryResponse:
    """Scrape one results page of the configured court and ingest it."""
    stats = await pipeline.scrape(
        request.tribunal or settings.scraper.tribunal,
        max_records=request.max_records or settings.scraper.max_records,
    )
    return RunSummaryResponse.from_stats(stats)


@app.post("/search", response_model=SearchResponse)
async def search(
    request: SearchRequest,
    store: DecisionStore = Depends(get_store),
    provider: EmbeddingProvider | None = Depends(get_provider),
) -> SearchResponse:
    """Semantic search over one embedding view."""
    if provider is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Embeddings are disabled",
        )
    try:
        hits = await search_text(store, provider, request.view, request.query, request.limit)
    except TransientFetchError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e)) from e

    return SearchResponse(
        view=request.view,
        hits=[SearchHitDTO(**vars(hit)) for hit in hits],
    )


@app.get("/decisions/{natural_key}", response_model=DecisionResponse)
async def get_decision(
    natural_key: str,
    store: DecisionStore = Depends(get_store),
) -> DecisionResponse:
    """Retrieve a stored decision by case identifier."""
    record = await store.get(natural_key)
    if record is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Decision {natural_key} not found",
        )
    fields = {name: value for name, value in vars(record).items() if name in DecisionResponse.model_fields}
    return DecisionResponse(**fields, embedding_views=sorted(record.embeddings, key=lambda v: v.value))


@app.get("/statistics")
async def statistics(store: DecisionStore = Depends(get_store)) -> dict[str, Any]:
    """Aggregate figures over the stored decisions."""
    return await store.statistics()


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "app": settings.app_name,
        "version": settings.version,
        "endpoints": {
            "health": "/health",
            "ingest": "/ingest",
            "scrape": "/scrape",
            "search": "/search",
            "decision": "/decisions/{natural_key}",
            "statistics": "/statistics",
            "docs": "/docs",
        },
    }
