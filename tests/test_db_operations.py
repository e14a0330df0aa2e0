"""Tests for database operations."""

from datetime import datetime

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cardmirror.db.operations import (
    CursorConflictError,
    count_unsynced_sets,
    get_edition_cards,
    get_local_base_card_ids,
    get_set,
    get_sets_by_release,
    get_sets_for_sync,
    get_sync_metadata,
    get_sync_status,
    record_sync_status,
    update_set_cursor,
    upsert_cards,
    upsert_prices,
    upsert_sets,
)
from cardmirror.models.catalog import BaseCard, CatalogSet
from cardmirror.models.db import CardDB, PriceDB
from cardmirror.models.sync import CursorKind, SyncStatus
from cardmirror.services.edition_resolver import build_edition_rows

NOW = datetime(2024, 3, 1, 8, 0)


def catalog_set(set_id: str, total: int = 10, release: str = "2000/01/01", **kw) -> CatalogSet:
    return CatalogSet(
        id=set_id,
        name=kw.pop("name", set_id.title()),
        release_date=release,
        total_cards=total,
        **kw,
    )


def edition_rows(set_id: str, card_id: str, prices: dict) -> tuple[list[dict], list[dict]]:
    rows = build_edition_rows(
        BaseCard(id=card_id, name=card_id, supertype="Pokémon", price_variants=prices), set_id, NOW
    )
    return [c for c, _ in rows], [p for _, p in rows]


async def all_rows(session: AsyncSession, model: type) -> list[tuple]:
    result = await session.execute(select(model))
    rows = result.scalars().all()
    columns = [c.key for c in model.__table__.columns]
    return sorted(tuple(getattr(r, c) for c in columns) for r in rows)


class TestUpsertSets:
    async def test_insert_assigns_insertion_order(self, session: AsyncSession) -> None:
        await upsert_sets(session, [catalog_set("b"), catalog_set("a")])
        await upsert_sets(session, [catalog_set("c")])
        await session.commit()

        sets = await get_sets_for_sync(session)

        assert [(s.id, s.insertion_seq) for s in sets] == [("b", 1), ("a", 2), ("c", 3)]

    async def test_update_preserves_cursors_and_order(self, session: AsyncSession) -> None:
        await upsert_sets(session, [catalog_set("a"), catalog_set("b")])
        await update_set_cursor(session, "b", CursorKind.PRICE, 5, expected_version=0)
        await session.commit()

        await upsert_sets(session, [catalog_set("b", total=99, name="Renamed")])
        await session.commit()
        session.expire_all()

        card_set = await get_set(session, "b")
        assert card_set is not None
        assert card_set.name == "Renamed"
        assert card_set.total_cards == 99
        assert card_set.price_sync_progress == 5
        assert card_set.price_sync_version == 1
        assert card_set.metadata_sync_version == 0
        assert card_set.insertion_seq == 2

    async def test_empty_input(self, session: AsyncSession) -> None:
        assert await upsert_sets(session, []) == 0

    async def test_sets_by_release(self, session: AsyncSession) -> None:
        await upsert_sets(
            session,
            [catalog_set("old", release="1999/01/09"), catalog_set("new", release="2023/03/31")],
        )
        await session.commit()

        assert [s.id for s in await get_sets_by_release(session)] == ["new", "old"]
        assert [s.id for s in await get_sets_by_release(session, limit=1)] == ["new"]


class TestUpsertCardsAndPrices:
    async def test_rerun_is_idempotent(self, session: AsyncSession) -> None:
        """Writing the same chunk twice leaves the same rows as writing it once."""
        await upsert_sets(session, [catalog_set("base1")])
        cards, prices = edition_rows(
            "base1", "base1-4", {"1stEditionHolofoil": {"market": 400}, "holofoil": {"market": 90}}
        )

        await upsert_cards(session, cards)
        await upsert_prices(session, prices)
        await session.commit()
        once = (await all_rows(session, CardDB), await all_rows(session, PriceDB))

        await upsert_cards(session, cards)
        await upsert_prices(session, prices)
        await session.commit()
        session.expire_all()
        twice = (await all_rows(session, CardDB), await all_rows(session, PriceDB))

        assert once == twice
        assert len(once[0]) == 2

    async def test_overwrites_all_listed_columns(self, session: AsyncSession) -> None:
        await upsert_sets(session, [catalog_set("base1")])
        _, prices = edition_rows("base1", "base1-4", {"normal": {"low": 1, "market": 2, "high": 3}})
        cards, _ = edition_rows("base1", "base1-4", {})
        await upsert_cards(session, cards)
        await upsert_prices(session, prices)
        await session.commit()

        _, new_prices = edition_rows("base1", "base1-4", {"normal": {"market": 10}})
        await upsert_prices(session, new_prices)
        await session.commit()
        session.expire_all()

        price = (await session.execute(select(PriceDB))).scalar_one()
        assert price.tcgplayer_market == 10
        assert price.tcgplayer_low == pytest.approx(8)
        assert price.tcgplayer_high == pytest.approx(15)

    async def test_duplicate_keys_in_batch_collapse(self, session: AsyncSession) -> None:
        await upsert_sets(session, [catalog_set("base1")])
        cards, _ = edition_rows("base1", "base1-4", {})
        renamed = dict(cards[0], name="Second")

        written = await upsert_cards(session, [cards[0], renamed])
        await session.commit()

        assert written == 1
        card = (await session.execute(select(CardDB))).scalar_one()
        assert card.name == "Second"


class TestCardQueries:
    async def test_local_base_ids_paginate_distinct(self, session: AsyncSession) -> None:
        await upsert_sets(session, [catalog_set("s")])
        for n in range(1, 6):
            cards, _ = edition_rows(
                "s", f"s-{n}", {"normal": {"market": 1}, "reverseHolofoil": {"market": 2}}
            )
            await upsert_cards(session, cards)
        await session.commit()

        first = await get_local_base_card_ids(session, "s", 0, 3)
        rest = await get_local_base_card_ids(session, "s", 3, 3)

        assert first == ["s-1", "s-2", "s-3"]
        assert rest == ["s-4", "s-5"]

    async def test_edition_cards_for_base_ids(self, session: AsyncSession) -> None:
        await upsert_sets(session, [catalog_set("s")])
        cards, _ = edition_rows(
            "s", "s-1", {"normal": {"market": 1}, "reverseHolofoil": {"market": 2}}
        )
        await upsert_cards(session, cards)
        await session.commit()

        editions = await get_edition_cards(session, ["s-1"])

        assert [e.id for e in editions] == ["s-1-reverse-holofoil", "s-1-unlimited"]
        assert await get_edition_cards(session, []) == []


class TestSetCursor:
    async def test_update_and_stamp(self, session: AsyncSession) -> None:
        await upsert_sets(session, [catalog_set("s")])
        await session.commit()

        version = await update_set_cursor(
            session, "s", CursorKind.METADATA, 0, expected_version=0, last_sync=NOW
        )
        await session.commit()
        session.expire_all()

        card_set = await get_set(session, "s")
        assert version == 1
        assert card_set.metadata_sync_progress == 0
        assert card_set.last_metadata_sync == NOW
        assert card_set.last_price_sync is None

    async def test_stale_version_conflicts(self, session: AsyncSession) -> None:
        await upsert_sets(session, [catalog_set("s")])
        await update_set_cursor(session, "s", CursorKind.PRICE, 50, expected_version=0)
        await session.commit()

        with pytest.raises(CursorConflictError, match="modified concurrently"):
            await update_set_cursor(session, "s", CursorKind.PRICE, 50, expected_version=0)

    async def test_cursor_kinds_version_independently(self, session: AsyncSession) -> None:
        """A price write never invalidates a metadata writer, and vice versa."""
        await upsert_sets(session, [catalog_set("s")])
        await update_set_cursor(session, "s", CursorKind.PRICE, 50, expected_version=0)
        await session.commit()

        version = await update_set_cursor(session, "s", CursorKind.METADATA, 50, expected_version=0)
        await session.commit()
        session.expire_all()

        card_set = await get_set(session, "s")
        assert version == 1
        assert card_set.price_sync_version == 1
        assert card_set.metadata_sync_version == 1

    async def test_count_unsynced(self, session: AsyncSession) -> None:
        await upsert_sets(session, [catalog_set("a"), catalog_set("b"), catalog_set("c")])
        await update_set_cursor(session, "a", CursorKind.METADATA, 0, 0, last_sync=NOW)
        await session.commit()

        assert await count_unsynced_sets(session, CursorKind.METADATA) == 2
        assert await count_unsynced_sets(session, CursorKind.METADATA, exclude={"b"}) == 1
        assert await count_unsynced_sets(session, CursorKind.PRICE) == 3


class TestSyncStatus:
    async def test_record_overwrites(self, session: AsyncSession) -> None:
        await record_sync_status(session, "prices", SyncStatus.IN_PROGRESS, "started", NOW)
        await record_sync_status(session, "prices", SyncStatus.SUCCESS, "done", NOW)
        await session.commit()

        row = await get_sync_metadata(session, "prices")
        assert row is not None
        assert row.status == "success"
        assert row.message == "done"

    async def test_summary_counts(self, session: AsyncSession) -> None:
        await upsert_sets(session, [catalog_set("s")])
        cards, prices = edition_rows("s", "s-1", {"normal": {"market": 1}})
        await upsert_cards(session, cards)
        await upsert_prices(session, prices)
        await record_sync_status(session, "sets", SyncStatus.SUCCESS, "Synced 1 sets", NOW)
        await session.commit()

        summary = await get_sync_status(session)

        assert summary["sets"] == {"total": 1, "price_synced": 0, "metadata_synced": 0}
        assert summary["cards"] == {"total": 1, "with_complete_data": 1, "priced": 1}
        assert summary["is_complete"] is False
        assert summary["sync_metadata"][0]["entity_type"] == "sets"
