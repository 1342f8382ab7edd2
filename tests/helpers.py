"""In-memory fakes for the store, page fetcher and embedding provider."""
from __future__ import annotations

import dataclasses
from typing import Any, Sequence

import numpy as np

from ai.embeddings import EmbeddingError
from juris.config import Tribunal
from juris.errors import DuplicateError, StoreError
from juris.records import EmbeddingView, JudicialRecord
from juris.store import SearchHit

DIM = 4


class FakeStore:
    """Dict-backed store with a unique key, like the real table."""

    def __init__(self, *, hide_existing: bool = False, fail_exists: bool = False, fail_insert: set[str] | None = None):
        self.records: dict[str, JudicialRecord] = {}
        self.hide_existing = hide_existing
        self.fail_exists = fail_exists
        self.fail_insert = fail_insert or set()
        self.exists_calls: list[str] = []
        self.insert_calls: list[str] = []

    async def exists(self, natural_key: str) -> bool:
        self.exists_calls.append(natural_key)
        if self.fail_exists:
            raise StoreError("connection refused")
        if self.hide_existing:
            return False
        return natural_key in self.records

    async def insert(self, record: JudicialRecord) -> None:
        self.insert_calls.append(record.natural_key)
        if record.natural_key in self.fail_insert:
            raise StoreError("disk full")
        if record.natural_key in self.records:
            raise DuplicateError(record.natural_key)
        self.records[record.natural_key] = dataclasses.replace(record)

    async def stored_hash(self, natural_key: str) -> str | None:
        record = self.records.get(natural_key)
        return record.content_hash if record else None

    async def get(self, natural_key: str) -> JudicialRecord | None:
        return self.records.get(natural_key)

    async def search(self, view: EmbeddingView, vector: Sequence[float], limit: int) -> list[SearchHit]:
        query = np.asarray(vector, dtype=float)
        hits = []
        for record in self.records.values():
            stored = record.embeddings.get(view)
            if stored is None:
                continue
            stored_arr = np.asarray(stored, dtype=float)
            similarity = float(query @ stored_arr / (np.linalg.norm(query) * np.linalg.norm(stored_arr)))
            hits.append(SearchHit(record.natural_key, record.case_title, record.decision_date, similarity))
        hits.sort(key=lambda hit: hit.similarity, reverse=True)
        return hits[:limit]

    async def statistics(self) -> dict[str, Any]:
        return {"total_decisions": len(self.records)}


class FakeFetcher:
    """Serves canned detail pages; values may be exceptions to raise."""

    def __init__(self, details: dict[str, Any] | None = None, listing: list[dict[str, Any]] | None = None):
        self.details = details or {}
        self.listing = listing or []
        self.calls: list[str] = []

    def search_url(self, tribunal: Tribunal) -> str:
        return f"https://juris.example/busqueda?{tribunal.value}"

    async def fetch_detail(self, url: str) -> dict[str, Any]:
        self.calls.append(url)
        detail = self.details[url]
        if isinstance(detail, Exception):
            raise detail
        return dict(detail)

    async def fetch_listing(self, url: str) -> list[dict[str, Any]]:
        self.calls.append(url)
        return [dict(row) for row in self.listing]


class FakeProvider:
    """Deterministic embeddings; texts in ``fail_on`` raise ``EmbeddingError``."""

    dim = DIM

    def __init__(self, fail_on: set[str] | None = None, error: Exception | None = None):
        self.fail_on = fail_on or set()
        self.error = error
        self.calls: list[str] = []

    async def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        if text in self.fail_on:
            raise self.error or EmbeddingError("quota exceeded")
        return vector_for(text)


def vector_for(text: str) -> list[float]:
    return [float(len(text)), float(text.count(" ")), 1.0, float(sum(map(ord, text)) % 97)]


def raw_item(rol: str = "1234-2024", **overrides: Any) -> dict[str, Any]:
    item = {
        "rol": rol,
        "fecha": "15/03/2024",
        "tribunal": "Corte Suprema",
        "caratulado": f"Fisco con Pérez ({rol})",
        "enlace": f"https://juris.example/detalle/{rol}",
        "texto_completo": f"Santiago, quince de marzo. Vistos: recurso {rol}.\nSe acoge el recurso.",
        "considerandos": "PRIMERO: Que el recurso cumple los requisitos.",
        "resolucion": "Se acoge el recurso de casación.",
        "materia": "Civil",
        "descriptores": "casación; nulidad",
    }
    item.update(overrides)
    return item
