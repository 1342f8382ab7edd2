"""Page fetcher for the judicial search site.

Returns raw field mappings keyed by the site's own field names; all
typing and cleanup happens in the normalizer. Requests are spaced by a
minimum delay to respect upstream rate limits.
"""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Any
from urllib.parse import urljoin

import httpx
from bs4 import BeautifulSoup, Tag
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .config import ScraperSettings, Tribunal
from .errors import DetailNotFoundError, FetchError, TransientFetchError

logger = logging.getLogger(__name__)

SEARCH_PATHS = {
    Tribunal.CORTE_SUPREMA: "/busqueda?Corte_Suprema",
    Tribunal.CORTE_DE_APELACIONES: "/busqueda?Corte_de_Apelaciones",
    Tribunal.PENALES: "/busqueda?Penales",
    Tribunal.FAMILIA: "/busqueda?Familia",
    Tribunal.LABORAL: "/busqueda?Laboral",
    Tribunal.CIVIL: "/busqueda?Civil",
}

DETAIL_SELECTORS = {
    "rol": ".rol",
    "fecha": ".fecha-sentencia",
    "tribunal": ".tribunal",
    "caratulado": ".caratulado",
    "materia": ".materia",
    "resultado": ".resultado-recurso",
    "texto_completo": ".texto-sentencia",
    "considerandos": ".considerandos",
    "resolucion": ".resolucion",
    "votos_minoria": ".voto-minoria",
}

LISTING_ROW = ".resultado"
LISTING_SELECTORS = {
    "rol": ".rol",
    "fecha": ".fecha",
    "tribunal": ".tribunal",
    "caratulado": ".caratulado",
}


class RateLimiter:
    """Enforces a minimum delay between consecutive requests."""

    def __init__(self, min_interval: float) -> None:
        self.min_interval = min_interval
        self._last: float | None = None
        self._lock = asyncio.Lock()

    async def wait(self) -> None:
        async with self._lock:
            if self._last is not None:
                remaining = self.min_interval - (time.monotonic() - self._last)
                if remaining > 0:
                    await asyncio.sleep(remaining)
            self._last = time.monotonic()


def _text(node: Tag, selector: str) -> str:
    found = node.select_one(selector)
    return found.get_text("\n", strip=True) if found else ""


def parse_detail(html: str) -> dict[str, Any]:
    """Extract the raw fields of a decision detail page."""
    soup = BeautifulSoup(html, "html.parser")
    fields: dict[str, Any] = {name: _text(soup, selector) for name, selector in DETAIL_SELECTORS.items()}
    fields["descriptores"] = [li.get_text(strip=True) for li in soup.select(".descriptores li")]
    return fields


def parse_listing(html: str, base_url: str) -> list[dict[str, Any]]:
    """Extract the result rows of one search results page."""
    soup = BeautifulSoup(html, "html.parser")
    rows = []
    for row in soup.select(LISTING_ROW):
        item: dict[str, Any] = {name: _text(row, selector) for name, selector in LISTING_SELECTORS.items()}
        link = row.select_one("a[href]")
        item["enlace"] = urljoin(base_url, link["href"]) if link else ""
        if item["rol"] or item["fecha"] or item["tribunal"]:
            rows.append(item)
    return rows


class PageFetcher:
    """httpx-based fetcher for listing and detail pages."""

    def __init__(
        self,
        *,
        base_url: str = "https://juris.pjud.cl",
        delay: float = 2.0,
        timeout: float = 15.0,
        max_attempts: int = 3,
        user_agent: str = "Mozilla/5.0",
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url
        self.max_attempts = max_attempts
        self._limiter = RateLimiter(delay)
        self._client = client or httpx.AsyncClient(
            timeout=timeout,
            follow_redirects=True,
            headers={
                "User-Agent": user_agent,
                "Accept-Language": "es-ES,es;q=0.9,en;q=0.8",
                "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            },
        )

    @classmethod
    def from_settings(cls, config: ScraperSettings) -> PageFetcher:
        return cls(
            base_url=config.base_url,
            delay=config.delay_between_requests,
            timeout=config.request_timeout,
            max_attempts=config.max_attempts,
            user_agent=config.user_agent,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    def search_url(self, tribunal: Tribunal) -> str:
        return urljoin(self.base_url, SEARCH_PATHS[tribunal])

    async def fetch_detail(self, url: str) -> dict[str, Any]:
        """Fetch a decision detail page.

        Raises:
            TransientFetchError: On timeout or network failure after retries
            DetailNotFoundError: If the page does not exist
            FetchError: If the site refuses the request
        """
        html = await self._get(url)
        return parse_detail(html)

    async def fetch_listing(self, url: str) -> list[dict[str, Any]]:
        """Fetch one results page (no pagination)."""
        html = await self._get(url)
        rows = parse_listing(html, self.base_url)
        logger.info(f"Found {len(rows)} results at {url}")
        return rows

    async def _get(self, url: str) -> str:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=1, min=2, max=10),
            retry=retry_if_exception_type(TransientFetchError),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        return await retrying(self._limited_get, url)

    async def _limited_get(self, url: str) -> str:
        await self._limiter.wait()
        return await self._get_once(url)

    async def _get_once(self, url: str) -> str:
        try:
            response = await self._client.get(url)
        except httpx.TimeoutException as e:
            raise TransientFetchError(f"Timed out fetching {url}") from e
        except httpx.TransportError as e:
            raise TransientFetchError(f"Network error fetching {url}: {e}") from e

        if response.status_code == 404:
            raise DetailNotFoundError(f"Page not found: {url}")
        if response.status_code == 429 or response.status_code >= 500:
            raise TransientFetchError(f"{url} returned {response.status_code}")
        if response.is_error:
            raise FetchError(f"{url} returned {response.status_code}")
        return response.text
