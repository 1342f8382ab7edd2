"""Embedding enrichment stage.

Each view of a record is embedded independently. A failing view is logged
and left absent; it never blocks the other views or the commit. Empty
views are skipped without calling the provider.
"""
from __future__ import annotations

import dataclasses
import logging
from typing import Callable, Iterable

from ai.embeddings import EmbeddingError, EmbeddingProvider
from ..errors import TransientFetchError
from ..records import EmbeddingView, JudicialRecord

logger = logging.getLogger(__name__)


def _join(*parts: str | None) -> str:
    return " ".join(p for p in parts if p).strip()


def title_view(record: JudicialRecord) -> str:
    return record.case_title or ""


def content_view(record: JudicialRecord) -> str:
    body = _join(record.reasoning_text, record.ruling_text) or record.full_text or ""
    return _join(record.case_title, body)


def descriptors_view(record: JudicialRecord) -> str:
    return _join(record.subject_matter, "; ".join(record.descriptors))


VIEW_TEXT: dict[EmbeddingView, Callable[[JudicialRecord], str]] = {
    EmbeddingView.TITLE: title_view,
    EmbeddingView.CONTENT: content_view,
    EmbeddingView.DESCRIPTORS: descriptors_view,
}


class EmbeddingEnricher:
    """Attaches one vector per view using an embedding provider."""

    def __init__(
        self,
        provider: EmbeddingProvider,
        *,
        views: Iterable[EmbeddingView] = tuple(EmbeddingView),
        max_input_chars: int = 8000,
    ) -> None:
        self.provider = provider
        self.views = tuple(views)
        self.max_input_chars = max_input_chars

    async def enrich(self, record: JudicialRecord) -> JudicialRecord:
        """Return a copy of ``record`` with embeddings added.

        Text fields are never touched; views that already carry a vector
        are kept as-is.
        """
        embeddings = dict(record.embeddings)
        errors = list(record.processing_errors)

        for view in self.views:
            if view in embeddings:
                continue
            text = VIEW_TEXT[view](record)[: self.max_input_chars].strip()
            if not text:
                logger.debug(f"Skipping empty {view.value} view for {record.natural_key}")
                continue
            try:
                embeddings[view] = await self.provider.embed(text)
            except (TransientFetchError, EmbeddingError) as e:
                logger.warning(f"Embedding {view.value} failed for {record.natural_key}: {e}")
                errors.append(f"embedding:{view.value}: {e}")
            except Exception as e:
                logger.error(f"Unexpected embedding failure on {view.value} for {record.natural_key}: {e}", exc_info=True)
                errors.append(f"embedding:{view.value}: {e}")

        logger.info(
            f"Embedded {len(embeddings) - len(record.embeddings)} view(s) for {record.natural_key}"
        )
        return dataclasses.replace(record, embeddings=embeddings, processing_errors=errors)
