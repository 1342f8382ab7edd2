"""Content fingerprint used for change detection and cheap equality checks."""
from __future__ import annotations

import hashlib

from ..records import JudicialRecord


def content_hash(natural_key: str, full_text: str | None, reasoning_text: str | None) -> str:
    """SHA-256 hex digest over ``natural_key + full_text + reasoning_text``.

    Absent texts hash as empty strings. The database trigger computes the
    same digest, so both sides must keep this concatenation order.
    """
    payload = f"{natural_key}{full_text or ''}{reasoning_text or ''}"
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def record_hash(record: JudicialRecord) -> str:
    return content_hash(record.natural_key, record.full_text, record.reasoning_text)
