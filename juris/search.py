"""Similarity search over stored decision embeddings."""
from __future__ import annotations

import logging
from typing import Sequence

from ai.embeddings import EmbeddingProvider
from .records import EmbeddingView
from .store import DecisionStore, SearchHit

logger = logging.getLogger(__name__)

MAX_LIMIT = 100


async def search_similar(
    store: DecisionStore,
    view: EmbeddingView,
    vector: Sequence[float],
    limit: int = 10,
) -> list[SearchHit]:
    """Decisions most similar to ``vector`` on ``view``, best first."""
    if not 1 <= limit <= MAX_LIMIT:
        raise ValueError(f"limit must be between 1 and {MAX_LIMIT}")
    hits = await store.search(view, vector, limit)
    return sorted(hits, key=lambda hit: hit.similarity, reverse=True)


async def search_text(
    store: DecisionStore,
    provider: EmbeddingProvider,
    view: EmbeddingView,
    query: str,
    limit: int = 10,
) -> list[SearchHit]:
    """Embed ``query`` and search ``view`` with the resulting vector."""
    if not query.strip():
        raise ValueError("query must not be empty")
    vector = await provider.embed(query)
    logger.debug(f"Embedded search query ({len(vector)} dims) for view {view.value}")
    return await search_similar(store, view, vector, limit)
