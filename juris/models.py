"""SQLAlchemy models (2.x style) for the decision store.

One table keyed by the case identifier, using PostgreSQL with pgvector
for the per-view embeddings. PostgreSQL-only indexes and triggers are
attached as DDL events so the table can also be created on SQLite.
"""

from __future__ import annotations

from datetime import date, datetime, timezone

from pgvector.sqlalchemy import Vector
from sqlalchemy import (
    JSON,
    DDL,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    event,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from .config import settings
from .records import EmbeddingView

EMBEDDING_DIM = settings.embeddings.dim


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


class JudicialDecision(Base):
    """Judicial decisions table."""
    __tablename__ = "judicial_decisions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    natural_key: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    source_url: Mapped[str | None] = mapped_column(Text)

    # Descriptive metadata
    case_title: Mapped[str | None] = mapped_column(Text)
    court: Mapped[str | None] = mapped_column(String(200), index=True)
    result_label: Mapped[str | None] = mapped_column(String(200))
    subject_matter: Mapped[str | None] = mapped_column(String(200), index=True)
    descriptors: Mapped[list[str] | None] = mapped_column(JSON)
    decision_date: Mapped[date | None] = mapped_column(Date, index=True)
    decision_date_raw: Mapped[str | None] = mapped_column(String(100))
    date_unparsed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Text bodies
    full_text: Mapped[str] = mapped_column(Text, nullable=False)
    reasoning_text: Mapped[str | None] = mapped_column(Text)
    ruling_text: Mapped[str | None] = mapped_column(Text)
    dissent_text: Mapped[str | None] = mapped_column(Text)

    # One vector column per embedding view
    embedding_title: Mapped[list[float] | None] = mapped_column(Vector(EMBEDDING_DIM))
    embedding_content: Mapped[list[float] | None] = mapped_column(Vector(EMBEDDING_DIM))
    embedding_descriptors: Mapped[list[float] | None] = mapped_column(Vector(EMBEDDING_DIM))

    # Processing metadata
    content_hash: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    scraper_version: Mapped[str | None] = mapped_column(String(20))
    char_count: Mapped[int | None] = mapped_column(Integer)
    word_count: Mapped[int | None] = mapped_column(Integer)
    paragraph_count: Mapped[int | None] = mapped_column(Integer)
    quality_score: Mapped[int] = mapped_column(Integer, default=100, nullable=False)
    is_valid: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    processing_errors: Mapped[list[str] | None] = mapped_column(JSON)

    ingested_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        onupdate=_utcnow,
        nullable=False,
    )

    __table_args__ = (
        CheckConstraint("quality_score >= 0 AND quality_score <= 100", name="ck_quality_score_range"),
        Index("ix_judicial_decisions_ingested_at", "ingested_at"),
    )


VIEW_COLUMNS = {
    EmbeddingView.TITLE: JudicialDecision.embedding_title,
    EmbeddingView.CONTENT: JudicialDecision.embedding_content,
    EmbeddingView.DESCRIPTORS: JudicialDecision.embedding_descriptors,
}


_table = JudicialDecision.__table__

POSTGRES_DDL = [
    # Full-text search over body fields
    "CREATE INDEX IF NOT EXISTS ix_judicial_decisions_full_text_fts "
    "ON judicial_decisions USING gin (to_tsvector('spanish', full_text))",
    "CREATE INDEX IF NOT EXISTS ix_judicial_decisions_case_title_fts "
    "ON judicial_decisions USING gin (to_tsvector('spanish', coalesce(case_title, '')))",
    *(
        f"CREATE INDEX IF NOT EXISTS ix_judicial_decisions_{column.key} "
        f"ON judicial_decisions USING ivfflat ({column.key} vector_cosine_ops) WITH (lists = 100)"
        for column in VIEW_COLUMNS.values()
    ),
    """
    CREATE OR REPLACE FUNCTION judicial_decisions_touch_updated_at()
    RETURNS TRIGGER AS $$
    BEGIN
        NEW.updated_at = NOW();
        RETURN NEW;
    END;
    $$ LANGUAGE plpgsql
    """,
    """
    CREATE TRIGGER judicial_decisions_updated_at
        BEFORE UPDATE ON judicial_decisions
        FOR EACH ROW EXECUTE FUNCTION judicial_decisions_touch_updated_at()
    """,
    # Same digest as juris.pipelines.fingerprint.content_hash
    """
    CREATE OR REPLACE FUNCTION judicial_decisions_content_hash()
    RETURNS TRIGGER AS $$
    BEGIN
        NEW.content_hash = encode(
            sha256(convert_to(NEW.natural_key || NEW.full_text || coalesce(NEW.reasoning_text, ''), 'UTF8')),
            'hex'
        );
        RETURN NEW;
    END;
    $$ LANGUAGE plpgsql
    """,
    """
    CREATE TRIGGER judicial_decisions_content_hash
        BEFORE INSERT OR UPDATE OF natural_key, full_text, reasoning_text ON judicial_decisions
        FOR EACH ROW EXECUTE FUNCTION judicial_decisions_content_hash()
    """,
]

for _statement in POSTGRES_DDL:
    event.listen(_table, "after_create", DDL(_statement).execute_if(dialect="postgresql"))
