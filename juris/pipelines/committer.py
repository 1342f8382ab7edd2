"""Ingestion committer: the single write of a record to the store."""
from __future__ import annotations

import asyncio
import logging

from ..errors import DuplicateError, ValidationError
from ..records import CommitOutcome, JudicialRecord, utcnow
from ..store import DecisionStore
from .fingerprint import record_hash
from .normalization import score_quality, validate_record

logger = logging.getLogger(__name__)


class IngestionCommitter:
    """Validates, fingerprints and inserts records."""

    def __init__(self, store: DecisionStore) -> None:
        self.store = store

    async def commit(self, record: JudicialRecord) -> CommitOutcome:
        """Insert ``record`` once.

        The content hash is recomputed here so it always matches the text
        being written. A unique-key violation at insert time is a normal
        duplicate outcome, not an error.

        Raises:
            StoreError: on any store failure other than a duplicate key
        """
        try:
            validate_record(record)
        except ValidationError as e:
            logger.warning(f"Rejected invalid decision: {e}")
            return CommitOutcome.INVALID

        record.content_hash = record_hash(record)
        record.quality_score = score_quality(record)
        record.updated_at = utcnow()

        try:
            # A cancelled run still lets an in-flight insert finish, but the
            # cancelled run never counts it in its summary.
            await asyncio.shield(self.store.insert(record))
        except DuplicateError:
            logger.info(f"Duplicate rejected at insert: {record.natural_key}")
            return CommitOutcome.DUPLICATE_REJECTED

        logger.info(f"Decision stored: {record.natural_key}")
        return CommitOutcome.INSERTED
