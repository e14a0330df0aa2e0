import re
from collections.abc import AsyncGenerator, Iterator
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

import httpx
import pytest
import respx
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from cardmirror.models.db import Base
from cardmirror.services.catalog_client import CatalogClient
from cardmirror.services.progress import SetLockRegistry
from cardmirror.services.sync_engine import SyncEngine

CATALOG_URL = "https://catalog.test/v2"


class FakeClock:
    """Deterministic clock: every ``now()`` is one minute after the last."""

    def __init__(self, start: datetime | None = None):
        self.current = start or datetime(2024, 1, 1, 12, 0, 0)
        self.sleeps: list[float] = []

    def now(self) -> datetime:
        self.current += timedelta(minutes=1)
        return self.current

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)


class FakeCatalog:
    """In-memory stand-in for the catalog API, served through respx."""

    def __init__(self) -> None:
        self.sets: list[dict[str, Any]] = []
        self.cards: dict[str, list[dict[str, Any]]] = {}
        self.requests: list[httpx.Request] = []
        self.fail_status: int | None = None
        # Queries containing any of these substrings answer HTTP 500
        self.failing_queries: set[str] = set()

    def add_set(
        self, set_id: str, total: int, cards: list[dict[str, Any]] | None = None, **extra: Any
    ) -> dict[str, Any]:
        record = {"id": set_id, "name": extra.pop("name", set_id.title()), "total": total, **extra}
        self.sets.append(record)
        self.cards[set_id] = cards if cards is not None else []
        return record

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail_status is not None:
            return httpx.Response(self.fail_status)

        if request.url.path.endswith("/sets"):
            return httpx.Response(200, json={"data": self.sets})

        params = request.url.params
        query = params.get("q", "")
        if any(token in query for token in self.failing_queries):
            return httpx.Response(500)
        page_size = int(params.get("pageSize", 250))

        if query.startswith("set.id:"):
            cards = self.cards.get(query.split(":", 1)[1], [])
            page = int(params.get("page", 1))
            return httpx.Response(
                200, json={"data": cards[(page - 1) * page_size : page * page_size]}
            )

        wanted = set(re.findall(r"id:([^\s)]+)", query))
        found = [c for cards in self.cards.values() for c in cards if c["id"] in wanted]
        return httpx.Response(200, json={"data": found[:page_size]})

    def card_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path.endswith("/cards")]


def make_raw_card(
    card_id: str,
    number: str | int = 1,
    prices: dict[str, Any] | None = None,
    **extra: Any,
) -> dict[str, Any]:
    """A catalog card record shaped like the Pokémon TCG API payload."""
    record: dict[str, Any] = {
        "id": card_id,
        "name": extra.pop("name", f"Card {card_id}"),
        "number": str(number),
        "rarity": extra.pop("rarity", "Rare Holo"),
        "supertype": extra.pop("supertype", "Pokémon"),
        "types": extra.pop("types", ["Fire"]),
        "images": {
            "small": f"https://images.test/{card_id}.png",
            "large": f"https://images.test/{card_id}_hires.png",
        },
        "tcgplayer": {"url": f"https://prices.test/{card_id}"},
    }
    if prices is not None:
        record["tcgplayer"]["prices"] = prices
    record.update(extra)
    return record


def make_set_cards(set_id: str, count: int, market: float = 2.0) -> list[dict[str, Any]]:
    return [
        make_raw_card(f"{set_id}-{n}", number=n, prices={"normal": {"market": market}})
        for n in range(1, count + 1)
    ]


@pytest.fixture
async def async_engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    """File-backed SQLite engine so concurrent sessions share one database."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'mirror.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(async_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Provide a database session for tests."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_catalog() -> Iterator[FakeCatalog]:
    fake = FakeCatalog()
    with respx.mock(assert_all_called=False) as mock:
        mock.route(host="catalog.test").mock(side_effect=fake.handler)
        yield fake


@pytest.fixture
async def catalog(fake_catalog: FakeCatalog) -> AsyncGenerator[CatalogClient, None]:
    async with CatalogClient(base_url=CATALOG_URL, api_key="test-key", max_retries=0) as client:
        yield client


@pytest.fixture
def sync_engine(
    catalog: CatalogClient,
    session_factory: async_sessionmaker[AsyncSession],
    clock: FakeClock,
) -> SyncEngine:
    return SyncEngine(
        catalog,
        session_factory,
        clock=clock,
        locks=SetLockRegistry(),
    )
