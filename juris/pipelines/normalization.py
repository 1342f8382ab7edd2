"""Normalization of raw scraped fields into ``JudicialRecord`` values.

Raw mappings use the source site's field names (rol, fecha, tribunal, ...).
Normalization never fails on malformed dates or text; the only hard error
is a missing case identifier.
"""
from __future__ import annotations

import logging
import re
import unicodedata
from datetime import date, datetime
from typing import Any, Mapping, NamedTuple

from bs4 import BeautifulSoup

from ..errors import EmptyTextError, MissingKeyError
from ..records import JudicialRecord
from .fingerprint import content_hash

logger = logging.getLogger(__name__)

# Tried in order; the first format that consumes the whole string wins.
DATE_FORMATS = (
    "%d/%m/%Y",
    "%d-%m-%Y",
    "%Y-%m-%d",
    "%d/%m/%y",
    "%d-%m-%y",
)

TEXT_FIELDS = ("texto_completo", "considerandos", "resolucion", "votos_minoria")

SHORT_TEXT_CHARS = 500

_HTML_TAG = re.compile(r"</?[A-Za-z][^<>]*>")
_INLINE_SPACE = re.compile(r"[ \t\r\f\v\u00a0]+")
_DESCRIPTOR_SPLIT = re.compile(r"[;,\n]")


class ParsedDate(NamedTuple):
    """Outcome of date parsing; ``raw`` is kept only when parsing failed."""
    value: date | None
    raw: str | None
    unparsed: bool


def normalize_whitespace(text: str) -> str:
    """Normalize whitespace: collapse multiple spaces, remove leading/trailing."""
    text = re.sub(r'\s+', ' ', text)
    return text.strip()


def clean_html(text: str) -> str:
    """Remove HTML markup from text; text without tags is returned as-is."""
    if not _HTML_TAG.search(text):
        return text
    return BeautifulSoup(text, "html.parser").get_text(" ")


def clean_field(value: Any) -> str | None:
    """Trim a short metadata field; empty input becomes ``None``."""
    if value is None:
        return None
    text = normalize_whitespace(str(value))
    return text or None


def normalize_body(value: Any) -> str | None:
    """Normalize a text body while keeping paragraph breaks.

    Strips markup, composes Unicode, collapses inline whitespace and
    drops blank lines. Empty input becomes ``None``.
    """
    if value is None:
        return None
    text = unicodedata.normalize("NFC", clean_html(str(value)))
    lines = (_INLINE_SPACE.sub(" ", line).strip() for line in text.split("\n"))
    text = "\n".join(line for line in lines if line)
    return text or None


def parse_decision_date(value: Any) -> ParsedDate:
    """Parse a free-text decision date.

    Args:
        value: Raw date text as shown by the source

    Returns:
        ParsedDate with the date, or with the verbatim text and
        ``unparsed=True`` when no known format matches
    """
    raw = clean_field(value)
    if raw is None:
        return ParsedDate(None, None, False)

    for fmt in DATE_FORMATS:
        try:
            return ParsedDate(datetime.strptime(raw, fmt).date(), None, False)
        except ValueError:
            continue

    logger.warning(f"Unrecognized date format: {raw!r}")
    return ParsedDate(None, raw, True)


def split_descriptors(value: Any) -> list[str]:
    """Split a descriptor field into unique keywords, preserving order."""
    if not value:
        return []
    parts = value if isinstance(value, (list, tuple)) else _DESCRIPTOR_SPLIT.split(str(value))
    keywords: list[str] = []
    seen: set[str] = set()
    for part in parts:
        keyword = clean_field(part)
        if keyword and keyword.casefold() not in seen:
            seen.add(keyword.casefold())
            keywords.append(keyword)
    return keywords


def merge_detail(listing: Mapping[str, Any], detail: Mapping[str, Any]) -> dict[str, Any]:
    """Overlay detail-page fields on listing fields.

    Empty detail values never erase a value already present in the listing,
    and the case identifier is never replaced once assigned.
    """
    merged = dict(listing)
    for key, value in detail.items():
        if key == "rol" and clean_field(listing.get("rol")):
            continue
        if value not in (None, "", [], ()):
            merged[key] = value
    return merged


def score_quality(record: JudicialRecord) -> int:
    """Heuristic completeness indicator in the 0-100 range."""
    score = 100
    if not record.full_text:
        score -= 50
    elif record.char_count < SHORT_TEXT_CHARS:
        score -= 15
    if record.decision_date is None:
        score -= 20
    if not record.case_title:
        score -= 10
    if not record.court:
        score -= 10
    if not record.reasoning_text:
        score -= 10
    if not record.ruling_text:
        score -= 10
    if not record.source_url:
        score -= 5
    return max(0, min(100, score))


def normalize_record(raw: Mapping[str, Any]) -> JudicialRecord:
    """Build a canonical record from a raw field mapping.

    Raises:
        MissingKeyError: if the mapping has no usable ``rol``
    """
    natural_key = clean_field(raw.get("rol"))
    if natural_key is None:
        raise MissingKeyError("Raw input has no case identifier (rol)")

    parsed_date = parse_decision_date(raw.get("fecha"))
    full_text, reasoning, ruling, dissent = (normalize_body(raw.get(name)) for name in TEXT_FIELDS)

    record = JudicialRecord(
        natural_key=natural_key,
        source_url=clean_field(raw.get("enlace")),
        case_title=clean_field(raw.get("caratulado")),
        court=clean_field(raw.get("tribunal")),
        result_label=clean_field(raw.get("resultado")),
        subject_matter=clean_field(raw.get("materia")),
        full_text=full_text,
        reasoning_text=reasoning,
        ruling_text=ruling,
        dissent_text=dissent,
        decision_date=parsed_date.value,
        decision_date_raw=parsed_date.raw,
        date_unparsed=parsed_date.unparsed,
        descriptors=split_descriptors(raw.get("descriptores")),
    )
    record.content_hash = content_hash(record.natural_key, record.full_text, record.reasoning_text)
    record.quality_score = score_quality(record)
    return record


def validate_record(record: JudicialRecord) -> None:
    """Reject records that must never be persisted.

    Raises:
        EmptyTextError: if the record has no full text
    """
    if not record.full_text or not record.full_text.strip():
        raise EmptyTextError(f"Decision {record.natural_key} has no full text")
