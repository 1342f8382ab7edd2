"""Dedup gate: cheap existence check before any expensive stage.

Runs before detail pages are fetched and before embeddings are generated.
It is an optimization only; the store's uniqueness constraint is what
guarantees at most one record per case identifier.
"""
from __future__ import annotations

import logging

from ..errors import StoreError
from ..records import JudicialRecord
from ..store import DecisionStore
from .fingerprint import record_hash

logger = logging.getLogger(__name__)


class DedupGate:
    """Existence and change checks against the store."""

    def __init__(self, store: DecisionStore) -> None:
        self.store = store

    async def is_duplicate(self, natural_key: str) -> bool:
        """True if the key is already stored.

        A failing lookup counts as "not stored" so the record still reaches
        the committer, where the unique constraint decides.
        """
        try:
            return await self.store.exists(natural_key)
        except StoreError as e:
            logger.warning(f"Existence check failed for {natural_key}, deferring to commit: {e}")
            return False

    async def content_changed(self, record: JudicialRecord) -> bool:
        """True if the stored fingerprint differs from ``record``'s content."""
        stored = await self.store.stored_hash(record.natural_key)
        return stored is not None and stored != record_hash(record)
