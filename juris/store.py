"""Persistent decision store backed by PostgreSQL + pgvector.

The table's unique constraint on ``natural_key`` is the authoritative
duplicate guard; ``insert`` translates a violation into ``DuplicateError``.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Any, Protocol, Sequence

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .errors import DuplicateError, StoreError
from .models import VIEW_COLUMNS, JudicialDecision
from .records import EmbeddingView, JudicialRecord

logger = logging.getLogger(__name__)


@dataclass
class SearchHit:
    """Single similarity search result."""
    natural_key: str
    case_title: str | None
    decision_date: date | None
    similarity: float


class DecisionStore(Protocol):
    """Operations the pipeline needs from persistent storage."""

    async def exists(self, natural_key: str) -> bool: ...

    async def insert(self, record: JudicialRecord) -> None: ...

    async def stored_hash(self, natural_key: str) -> str | None: ...

    async def get(self, natural_key: str) -> JudicialRecord | None: ...

    async def search(
        self, view: EmbeddingView, vector: Sequence[float], limit: int
    ) -> list[SearchHit]: ...

    async def statistics(self) -> dict[str, Any]: ...


def to_row(record: JudicialRecord, scraper_version: str | None = None) -> JudicialDecision:
    """Map a record onto a new ORM row."""
    return JudicialDecision(
        natural_key=record.natural_key,
        source_url=record.source_url,
        case_title=record.case_title,
        court=record.court,
        result_label=record.result_label,
        subject_matter=record.subject_matter,
        descriptors=list(record.descriptors) or None,
        decision_date=record.decision_date,
        decision_date_raw=record.decision_date_raw,
        date_unparsed=record.date_unparsed,
        full_text=record.full_text,
        reasoning_text=record.reasoning_text,
        ruling_text=record.ruling_text,
        dissent_text=record.dissent_text,
        embedding_title=record.embeddings.get(EmbeddingView.TITLE),
        embedding_content=record.embeddings.get(EmbeddingView.CONTENT),
        embedding_descriptors=record.embeddings.get(EmbeddingView.DESCRIPTORS),
        content_hash=record.content_hash,
        scraper_version=scraper_version,
        char_count=record.char_count,
        word_count=record.word_count,
        paragraph_count=record.paragraph_count,
        quality_score=record.quality_score,
        is_valid=True,
        processing_errors=list(record.processing_errors) or None,
        ingested_at=record.ingested_at,
        updated_at=record.updated_at,
    )


def to_record(row: JudicialDecision) -> JudicialRecord:
    """Map an ORM row back to a record."""
    embeddings = {}
    for view, column in VIEW_COLUMNS.items():
        vector = getattr(row, column.key)
        if vector is not None:
            embeddings[view] = [float(x) for x in vector]

    return JudicialRecord(
        natural_key=row.natural_key,
        source_url=row.source_url,
        case_title=row.case_title,
        court=row.court,
        result_label=row.result_label,
        subject_matter=row.subject_matter,
        full_text=row.full_text,
        reasoning_text=row.reasoning_text,
        ruling_text=row.ruling_text,
        dissent_text=row.dissent_text,
        decision_date=row.decision_date,
        decision_date_raw=row.decision_date_raw,
        date_unparsed=row.date_unparsed,
        descriptors=list(row.descriptors or []),
        content_hash=row.content_hash,
        embeddings=embeddings,
        processing_errors=list(row.processing_errors or []),
        quality_score=row.quality_score,
        ingested_at=row.ingested_at,
        updated_at=row.updated_at,
    )


class SqlDecisionStore:
    """``DecisionStore`` over an async SQLAlchemy session factory.

    Every operation opens its own short-lived session, so one store can be
    shared by concurrent pipeline workers.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        scraper_version: str | None = None,
    ) -> None:
        self._session_factory = session_factory
        self.scraper_version = scraper_version

    async def exists(self, natural_key: str) -> bool:
        query = select(JudicialDecision.id).where(JudicialDecision.natural_key == natural_key).limit(1)
        try:
            async with self._session_factory() as session:
                result = await session.execute(query)
                return result.first() is not None
        except SQLAlchemyError as e:
            raise StoreError(f"Existence check failed for {natural_key}: {e}") from e

    async def insert(self, record: JudicialRecord) -> None:
        """Insert one record atomically.

        Raises:
            DuplicateError: if the natural key is already stored
            StoreError: on any other database failure
        """
        row = to_row(record, self.scraper_version)
        async with self._session_factory() as session:
            session.add(row)
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                if await self.exists(record.natural_key):
                    raise DuplicateError(record.natural_key) from e
                raise StoreError(f"Insert rejected for {record.natural_key}: {e.orig}") from e
            except SQLAlchemyError as e:
                await session.rollback()
                raise StoreError(f"Insert failed for {record.natural_key}: {e}") from e

    async def stored_hash(self, natural_key: str) -> str | None:
        query = select(JudicialDecision.content_hash).where(JudicialDecision.natural_key == natural_key)
        try:
            async with self._session_factory() as session:
                return (await session.execute(query)).scalar_one_or_none()
        except SQLAlchemyError as e:
            raise StoreError(f"Hash lookup failed for {natural_key}: {e}") from e

    async def get(self, natural_key: str) -> JudicialRecord | None:
        query = select(JudicialDecision).where(JudicialDecision.natural_key == natural_key)
        try:
            async with self._session_factory() as session:
                row = (await session.execute(query)).scalar_one_or_none()
        except SQLAlchemyError as e:
            raise StoreError(f"Lookup failed for {natural_key}: {e}") from e
        return to_record(row) if row is not None else None

    async def search(
        self,
        view: EmbeddingView,
        vector: Sequence[float],
        limit: int,
    ) -> list[SearchHit]:
        """Nearest decisions for ``vector`` on one view, most similar first.

        Similarity is ``1 - cosine_distance`` (pgvector ``<=>``).
        """
        column = VIEW_COLUMNS[view]
        distance = column.cosine_distance(list(vector))
        query = (
            select(
                JudicialDecision.natural_key,
                JudicialDecision.case_title,
                JudicialDecision.decision_date,
                (1 - distance).label("similarity"),
            )
            .where(column.is_not(None))
            .order_by(distance)
            .limit(limit)
        )
        try:
            async with self._session_factory() as session:
                rows = (await session.execute(query)).all()
        except SQLAlchemyError as e:
            raise StoreError(f"Similarity search failed on {view.value}: {e}") from e

        hits = [SearchHit(row[0], row[1], row[2], float(row[3])) for row in rows]
        logger.info(f"Search on {view.value} returned {len(hits)} hits (limit={limit})")
        return hits

    async def statistics(self) -> dict[str, Any]:
        """Aggregate figures over the stored decisions."""
        query = select(
            func.count(JudicialDecision.id),
            func.count(func.distinct(JudicialDecision.subject_matter)),
            func.min(JudicialDecision.decision_date),
            func.max(JudicialDecision.decision_date),
            func.avg(JudicialDecision.word_count),
            func.avg(JudicialDecision.quality_score),
            func.count(JudicialDecision.embedding_content),
            func.count(JudicialDecision.id).filter(JudicialDecision.is_valid.is_(False)),
        )
        try:
            async with self._session_factory() as session:
                row = (await session.execute(query)).one()
        except SQLAlchemyError as e:
            raise StoreError(f"Statistics query failed: {e}") from e

        total, subjects, oldest, newest, avg_words, avg_quality, with_embeddings, invalid = row
        return {
            "total_decisions": total,
            "total_subject_matters": subjects,
            "oldest_decision": oldest,
            "newest_decision": newest,
            "average_words": float(avg_words) if avg_words is not None else None,
            "average_quality": float(avg_quality) if avg_quality is not None else None,
            "with_content_embeddings": with_embeddings,
            "invalid": invalid,
        }
