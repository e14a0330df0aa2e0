"""
Pokémon TCG catalog API client.

Stateless paginated reads of sets and cards. Rate limiting is handled by
honouring ``Retry-After`` on HTTP 429 for a bounded number of attempts;
every other failure surfaces as ``CatalogError``.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from types import TracebackType
from typing import Any

import httpx

from cardmirror.config import (
    DEFAULT_RETRY_AFTER_SECONDS,
    MAX_CATALOG_PAGE_SIZE,
    settings,
)
from cardmirror.models.catalog import BaseCard, CatalogSet
from cardmirror.parsers.catalog import parse_cards, parse_sets

logger = logging.getLogger(__name__)

USER_AGENT = "CardMirror/1.0"


class CatalogError(Exception):
    """Raised when a catalog request fails."""

    pass


def _retry_after_seconds(response: httpx.Response) -> float:
    value = response.headers.get("Retry-After")
    if value is None:
        return DEFAULT_RETRY_AFTER_SECONDS
    try:
        return max(float(value), 0.0)
    except ValueError:
        return DEFAULT_RETRY_AFTER_SECONDS


def build_id_query(card_ids: list[str]) -> str:
    """Build the catalog search expression for a batch of card ids."""
    return "(" + " OR ".join(f"id:{card_id}" for card_id in card_ids) + ")"


class CatalogClient:
    """
    Async client for the catalog API.

    Usage:
        async with CatalogClient() as catalog:
            sets = await catalog.fetch_sets()
    """

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        *,
        timeout: float | None = None,
        max_retries: int | None = None,
        client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.base_url = (base_url or settings.catalog_api_url).rstrip("/")
        self.max_retries = settings.catalog_max_retries if max_retries is None else max_retries
        self._sleep = sleep

        headers = {"User-Agent": USER_AGENT, "Content-Type": "application/json"}
        key = settings.catalog_api_key if api_key is None else api_key
        if key:
            headers["X-Api-Key"] = key
        else:
            logger.warning("No catalog API key configured; requests are heavily rate limited")

        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            headers=headers,
            timeout=timeout or settings.catalog_timeout,
            follow_redirects=True,
        )

    async def __aenter__(self) -> "CatalogClient":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _get(self, path: str, params: dict[str, Any]) -> list[dict[str, Any]]:
        """
        GET a catalog endpoint and return its ``data`` list.

        Raises:
            CatalogError: On transport errors, non-2xx responses, or
                when 429 retries are exhausted
        """
        url = f"{self.base_url}{path}"
        attempt = 0

        while True:
            try:
                response = await self._client.get(url, params=params)
            except httpx.RequestError as e:
                raise CatalogError(f"Catalog request to {path} failed: {e}") from e

            if response.status_code == httpx.codes.TOO_MANY_REQUESTS and attempt < self.max_retries:
                attempt += 1
                delay = _retry_after_seconds(response)
                logger.warning(
                    "Catalog rate limited on %s; retry %d/%d in %.1fs",
                    path,
                    attempt,
                    self.max_retries,
                    delay,
                )
                await self._sleep(delay)
                continue

            try:
                response.raise_for_status()
            except httpx.HTTPStatusError as e:
                raise CatalogError(
                    f"Catalog request to {path} failed: HTTP {e.response.status_code}"
                ) from e

            try:
                payload = response.json()
            except ValueError as e:
                raise CatalogError(f"Catalog returned invalid JSON for {path}") from e

            data = payload.get("data") if isinstance(payload, dict) else None
            return data if isinstance(data, list) else []

    async def fetch_sets(self) -> list[CatalogSet]:
        """Fetch every set, newest release first."""
        records = await self._get("/sets", {"orderBy": "-releaseDate"})
        return parse_sets(records)

    async def fetch_cards_page(
        self,
        set_id: str,
        page: int,
        page_size: int = MAX_CATALOG_PAGE_SIZE,
    ) -> list[BaseCard]:
        """
        Fetch one page of a set's cards ordered by collector number.

        Args:
            set_id: Catalog set id
            page: 1-based page number
            page_size: Cards per page (capped at the catalog maximum)
        """
        params = {
            "q": f"set.id:{set_id}",
            "orderBy": "number",
            "page": page,
            "pageSize": min(page_size, MAX_CATALOG_PAGE_SIZE),
        }
        return parse_cards(await self._get("/cards", params))

    async def fetch_set_cards(
        self,
        set_id: str,
        page_size: int = MAX_CATALOG_PAGE_SIZE,
    ) -> list[BaseCard]:
        """Fetch all cards of a set, following pagination to the last short page."""
        page_size = min(page_size, MAX_CATALOG_PAGE_SIZE)
        cards: list[BaseCard] = []
        page = 1

        while True:
            batch = await self.fetch_cards_page(set_id, page, page_size)
            cards.extend(batch)
            if len(batch) < page_size:
                return cards
            page += 1

    async def fetch_cards_by_ids(self, card_ids: list[str]) -> list[BaseCard]:
        """Fetch a batch of cards by id in a single search request."""
        if not card_ids:
            return []
        params = {
            "q": build_id_query(card_ids),
            "pageSize": min(len(card_ids), MAX_CATALOG_PAGE_SIZE),
        }
        return parse_cards(await self._get("/cards", params))
