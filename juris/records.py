"""In-memory record types shared by the pipeline stages."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EmbeddingView(str, Enum):
    """Named text projections of a record that are vectorized independently."""
    TITLE = "title"
    CONTENT = "content"
    DESCRIPTORS = "descriptors"


class RecordState(str, Enum):
    """Per-record pipeline states."""
    FETCHED = "fetched"
    NORMALIZED = "normalized"
    ENRICHED = "enriched"
    COMMITTED = "committed"
    REJECTED_DUPLICATE = "rejected_duplicate"
    REJECTED_INVALID = "rejected_invalid"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset({
    RecordState.COMMITTED,
    RecordState.REJECTED_DUPLICATE,
    RecordState.REJECTED_INVALID,
    RecordState.FAILED,
})

# Any non-terminal state may also move to FAILED.
ALLOWED_TRANSITIONS: dict[RecordState, frozenset[RecordState]] = {
    RecordState.FETCHED: frozenset({RecordState.NORMALIZED, RecordState.REJECTED_INVALID}),
    RecordState.NORMALIZED: frozenset({
        RecordState.ENRICHED,
        RecordState.REJECTED_DUPLICATE,
        RecordState.REJECTED_INVALID,
    }),
    RecordState.ENRICHED: frozenset({
        RecordState.COMMITTED,
        RecordState.REJECTED_DUPLICATE,
        RecordState.REJECTED_INVALID,
    }),
}


class CommitOutcome(str, Enum):
    """Result of a single commit attempt."""
    INSERTED = "inserted"
    DUPLICATE_REJECTED = "duplicate_rejected"
    INVALID = "invalid"


@dataclass
class JudicialRecord:
    """Canonical judicial decision, normalized from raw scrape output."""
    natural_key: str
    source_url: str | None = None
    case_title: str | None = None
    court: str | None = None
    result_label: str | None = None
    subject_matter: str | None = None
    full_text: str | None = None
    reasoning_text: str | None = None
    ruling_text: str | None = None
    dissent_text: str | None = None
    decision_date: date | None = None
    decision_date_raw: str | None = None  # verbatim source text when unparsed
    date_unparsed: bool = False
    descriptors: list[str] = field(default_factory=list)
    content_hash: str | None = None
    embeddings: dict[EmbeddingView, list[float]] = field(default_factory=dict)
    processing_errors: list[str] = field(default_factory=list)
    quality_score: int = 100
    ingested_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def char_count(self) -> int:
        return len(self.full_text or "")

    @property
    def word_count(self) -> int:
        return len((self.full_text or "").split())

    @property
    def paragraph_count(self) -> int:
        return sum(1 for block in (self.full_text or "").split("\n") if block.strip())
