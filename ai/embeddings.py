"""Embedding providers for decision text views.

Two backends share one async contract: the OpenAI embeddings API over
httpx, and a local sentence-transformers model run in a worker thread.
Transient failures (timeouts, transport errors, 429/5xx) are retried with
tenacity and surface as ``TransientFetchError``; anything else raises
``EmbeddingError``.
"""
from __future__ import annotations

import asyncio
import logging
from functools import lru_cache
from typing import TYPE_CHECKING, Protocol, Sequence

import httpx
import numpy as np
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from juris.config import EmbeddingBackend, EmbeddingSettings
from juris.errors import TransientFetchError

if TYPE_CHECKING:
    from sentence_transformers import SentenceTransformer

logger = logging.getLogger(__name__)


class EmbeddingError(Exception):
    """Raised when embedding computation fails."""
    pass


class EmbeddingProvider(Protocol):
    """Turns one text into one fixed-length vector."""
    dim: int

    async def embed(self, text: str) -> list[float]: ...


def _check_vector(vector: Sequence[float] | np.ndarray, dim: int) -> list[float]:
    try:
        array = np.asarray(vector, dtype=np.float64)
    except (TypeError, ValueError) as e:
        raise EmbeddingError(f"Embedding is not numeric: {e}") from e
    if array.shape != (dim,):
        raise EmbeddingError(f"Expected {dim}-dimensional embedding, got shape {array.shape}")
    if not np.isfinite(array).all():
        raise EmbeddingError("Embedding contains non-finite values")
    return array.tolist()


class OpenAIEmbeddingProvider:
    """OpenAI embeddings endpoint client."""

    def __init__(
        self,
        api_key: str,
        *,
        model: str = "text-embedding-3-small",
        dim: int = 1536,
        api_url: str = "https://api.openai.com/v1/embeddings",
        timeout: float = 30.0,
        max_attempts: int = 3,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.model = model
        self.dim = dim
        self.api_url = api_url
        self.max_attempts = max_attempts
        self._headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def embed(self, text: str) -> list[float]:
        """Embed a single text with retry on transient failures.

        Args:
            text: Non-empty text to embed

        Returns:
            Embedding vector of length ``dim``

        Raises:
            ValueError: If text is empty
            TransientFetchError: If every attempt timed out or was throttled
            EmbeddingError: On auth, quota or response errors
        """
        if not text or not text.strip():
            raise ValueError("Cannot embed empty text")

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=1, min=2, max=10),
            retry=retry_if_exception_type(TransientFetchError),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        return await retrying(self._request, text.strip())

    async def _request(self, text: str) -> list[float]:
        payload = {"model": self.model, "input": text, "encoding_format": "float"}
        try:
            response = await self._client.post(self.api_url, headers=self._headers, json=payload)
        except httpx.TimeoutException as e:
            raise TransientFetchError(f"Embedding request timed out: {e}") from e
        except httpx.TransportError as e:
            raise TransientFetchError(f"Embedding request failed: {e}") from e

        if response.status_code == 429 or response.status_code >= 500:
            raise TransientFetchError(f"Embedding API returned {response.status_code}")
        if response.status_code in (401, 403):
            raise EmbeddingError(f"Embedding API rejected credentials ({response.status_code})")
        if response.status_code != 200:
            raise EmbeddingError(f"Embedding API error {response.status_code}: {response.text[:200]}")

        try:
            vector = response.json()["data"][0]["embedding"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise EmbeddingError(f"Malformed embedding response: {e}") from e
        return _check_vector(vector, self.dim)


@lru_cache(maxsize=2)
def _load_model(model_name: str, device: str) -> SentenceTransformer:
    """Load and cache a sentence transformer model.

    Raises:
        EmbeddingError: If the package is missing or model loading fails
    """
    try:
        from sentence_transformers import SentenceTransformer
    except ImportError as e:
        raise EmbeddingError(
            "sentence-transformers backend requires the 'local' extra"
        ) from e

    try:
        logger.info(f"Loading embedding model: {model_name} on device: {device}")
        return SentenceTransformer(model_name, device=device)
    except Exception as e:
        logger.error(f"Failed to load embedding model: {e}")
        raise EmbeddingError(f"Model loading failed: {e}") from e


class SentenceTransformerProvider:
    """Local sentence-transformers model."""

    def __init__(self, model_name: str, *, dim: int, device: str = "cpu", timeout: float = 30.0) -> None:
        self.model_name = model_name
        self.dim = dim
        self.device = device
        self.timeout = timeout

    def _encode(self, text: str) -> list[float]:
        model = _load_model(self.model_name, self.device)
        vector = model.encode(
            [text],
            show_progress_bar=False,
            convert_to_numpy=True,
            normalize_embeddings=True,
        )[0]
        return _check_vector(vector, self.dim)

    async def embed(self, text: str) -> list[float]:
        if not text or not text.strip():
            raise ValueError("Cannot embed empty text")
        try:
            return await asyncio.wait_for(asyncio.to_thread(self._encode, text.strip()), self.timeout)
        except asyncio.TimeoutError as e:
            raise TransientFetchError(f"Local embedding timed out after {self.timeout}s") from e


def get_embedding_provider(config: EmbeddingSettings) -> EmbeddingProvider:
    """Build the provider selected by ``EMBEDDING_BACKEND``."""
    if config.backend is EmbeddingBackend.SENTENCE_TRANSFORMERS:
        return SentenceTransformerProvider(
            config.model_name,
            dim=config.dim,
            device=config.device,
            timeout=config.timeout,
        )

    api_key = config.openai_api_key.get_secret_value() if config.openai_api_key else ""
    return OpenAIEmbeddingProvider(
        api_key,
        model=config.model_name,
        dim=config.dim,
        api_url=config.api_url,
        timeout=config.timeout,
        max_attempts=config.max_attempts,
    )
