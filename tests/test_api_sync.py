"""Tests for sync API endpoints."""

from collections.abc import AsyncGenerator

import pytest
from conftest import FakeCatalog, make_set_cards
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cardmirror.api.sync import get_sync_engine
from cardmirror.db.database import get_session
from cardmirror.main import app
from cardmirror.services.sync_engine import SyncEngine


@pytest.fixture
async def client(
    sync_engine: SyncEngine,
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncClient, None]:
    """Provide an async test client wired to the test engine and database."""

    async def override_get_session():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_sync_engine] = lambda: sync_engine

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


class TestTriggerSync:
    async def test_default_mode_is_prices(
        self, client: AsyncClient, fake_catalog: FakeCatalog, sync_engine: SyncEngine
    ) -> None:
        fake_catalog.add_set("base1", 10, make_set_cards("base1", 10))
        await sync_engine.sync_sets()

        response = await client.get("/sync")

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["cardsUpdated"] == 10
        assert data["setsCompleted"] == 1
        assert data["setId"] == "base1"

    async def test_sets_mode(self, client: AsyncClient, fake_catalog: FakeCatalog) -> None:
        fake_catalog.add_set("base1", 102)
        fake_catalog.add_set("jungle", 64)

        response = await client.get("/sync", params={"mode": "sets"})

        data = response.json()
        assert data["success"] is True
        assert data["count"] == 2

    async def test_single_set_via_query(
        self, client: AsyncClient, fake_catalog: FakeCatalog
    ) -> None:
        fake_catalog.add_set("base1", 3, make_set_cards("base1", 3))

        response = await client.get("/sync", params={"mode": "single-set", "setId": "base1"})

        data = response.json()
        assert data["success"] is True
        assert data["cardsUpdated"] == 3

    async def test_single_set_without_id_is_rejected(self, client: AsyncClient) -> None:
        response = await client.get("/sync", params={"mode": "single-set"})

        assert response.status_code == 400
        assert "setId" in response.json()["detail"]

    async def test_unknown_mode_is_rejected(self, client: AsyncClient) -> None:
        response = await client.get("/sync", params={"mode": "everything"})

        assert response.status_code == 422

    async def test_limit_must_be_positive(self, client: AsyncClient) -> None:
        response = await client.get("/sync", params={"limit": 0})

        assert response.status_code == 422

    async def test_failure_is_reported_in_body(
        self, client: AsyncClient, fake_catalog: FakeCatalog
    ) -> None:
        """A failed sync still answers 200 so schedulers log the message."""
        fake_catalog.fail_status = 500

        response = await client.get("/sync", params={"mode": "sets"})

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is False
        assert "HTTP 500" in data["message"]


class TestTriggerSyncPost:
    async def test_body_options(self, client: AsyncClient, fake_catalog: FakeCatalog) -> None:
        fake_catalog.add_set("base1", 2, make_set_cards("base1", 2))

        response = await client.post("/sync", json={"mode": "single-set", "setId": "base1"})

        data = response.json()
        assert data["success"] is True
        assert data["cardsUpdated"] == 2

    async def test_query_overrides_body(
        self, client: AsyncClient, fake_catalog: FakeCatalog
    ) -> None:
        fake_catalog.add_set("base1", 2)

        response = await client.post("/sync?mode=sets", json={"mode": "prices"})

        assert response.json()["count"] == 1

    async def test_empty_body(self, client: AsyncClient) -> None:
        response = await client.post("/sync")

        assert response.status_code == 200
        assert response.json()["message"] == "No sets to sync"


class TestSyncStatus:
    async def test_status_after_sync(self, client: AsyncClient, fake_catalog: FakeCatalog) -> None:
        fake_catalog.add_set("base1", 2, make_set_cards("base1", 2))
        await client.get("/sync", params={"mode": "sets"})
        await client.get("/sync", params={"mode": "single-set", "setId": "base1"})

        response = await client.get("/sync/status")

        assert response.status_code == 200
        data = response.json()
        assert data["sets"]["total"] == 1
        assert data["cards"]["total"] == 2
        assert data["is_complete"] is False
        statuses = {row["entity_type"]: row["status"] for row in data["sync_metadata"]}
        assert statuses == {"sets": "success", "single_set": "success"}

    async def test_empty_mirror(self, client: AsyncClient) -> None:
        response = await client.get("/sync/status")

        data = response.json()
        assert data["sync_metadata"] == []
        assert data["sets"] == {"total": 0, "price_synced": 0, "metadata_synced": 0}
