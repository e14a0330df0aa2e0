"""
Resumable catalog sync engine.

Pulls sets, cards and prices from the catalog API and writes them as
edition-aware rows. Price and metadata syncs run in fixed-size chunks so
one invocation stays inside a short execution budget; each set carries a
cursor recording how far its current pass has got.

Chunk protocol:
1. Pick the set that has waited longest (never-synced first).
2. Fetch at most ``chunk_size`` cards starting at the set's cursor.
3. Upsert the resulting rows and the advanced cursor in one transaction.

A chunk that fails before commit leaves the cursor where it was, and
upserts are idempotent, so re-running the same invocation is always safe.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Collection
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cardmirror.config import MAX_CATALOG_PAGE_SIZE, settings
from cardmirror.db.operations import (
    CursorConflictError,
    count_unsynced_sets,
    get_edition_cards,
    get_local_base_card_ids,
    get_set,
    get_sets_by_release,
    get_sets_for_sync,
    record_sync_status,
    update_set_cursor,
    upsert_cards,
    upsert_prices,
    upsert_sets,
)
from cardmirror.models.catalog import BaseCard
from cardmirror.models.db import CardSetDB
from cardmirror.models.sync import CursorKind, SyncMode, SyncResult, SyncStatus
from cardmirror.services.catalog_client import CatalogClient, CatalogError
from cardmirror.services.edition_resolver import build_edition_rows, card_row
from cardmirror.services.progress import (
    SetLockRegistry,
    SetSyncQueue,
    advance_cursor,
    chunk_size_for,
    page_window,
)
from cardmirror.services.scheduler import Clock, SystemClock

logger = logging.getLogger(__name__)

ChunkRunner = Callable[[Collection[str]], Awaitable[SyncResult]]

# Shared by every engine in the process so concurrent requests serialize per set
_process_locks = SetLockRegistry()


def _default_session_factory() -> async_sessionmaker[AsyncSession]:
    from cardmirror.db.database import async_session_factory

    return async_session_factory


class SyncEngine:
    """
    Drives every sync mode against one catalog client and database.

    Attributes:
        catalog: Catalog API client
        session_factory: Factory for database sessions
        clock: Time source for timestamps and rate-limit delays
        chunk_size: Cards per chunk in chunked modes
        page_size: Catalog page size used to locate a chunk
    """

    def __init__(
        self,
        catalog: CatalogClient,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        *,
        clock: Clock | None = None,
        chunk_size: int | None = None,
        page_size: int | None = None,
        batch_size: int | None = None,
        batch_delay: float | None = None,
        metadata_delay: float | None = None,
        locks: SetLockRegistry | None = None,
    ):
        self.catalog = catalog
        self.session_factory = session_factory or _default_session_factory()
        self.clock: Clock = clock or SystemClock()
        self.chunk_size = chunk_size or settings.chunk_size
        # Offsets are computed against the page size the catalog actually serves
        self.page_size = min(page_size or settings.catalog_page_size, MAX_CATALOG_PAGE_SIZE)
        self.batch_size = batch_size or settings.full_sync_batch_size
        self.batch_delay = settings.full_sync_batch_delay if batch_delay is None else batch_delay
        self.metadata_delay = (
            settings.metadata_all_delay if metadata_delay is None else metadata_delay
        )
        self.locks = locks or _process_locks

    # --- Entry point ---

    async def run(
        self,
        mode: SyncMode | str,
        set_id: str | None = None,
        limit: int | None = None,
    ) -> SyncResult:
        """
        Run one sync mode and record its status in ``sync_metadata``.

        Args:
            mode: Sync mode
            set_id: Required for single-set mode
            limit: Chunks per call for chunked modes, max sets for full mode

        Raises:
            ValueError: For an unknown mode, a missing set id, or limit < 1
        """
        mode = SyncMode(mode)
        if mode is SyncMode.SINGLE_SET and not set_id:
            raise ValueError("setId is required for single-set mode")
        if limit is not None and limit < 1:
            raise ValueError(f"limit must be at least 1, got {limit}")

        logger.info("Starting sync with mode: %s", mode.value)
        await self._record(mode, SyncStatus.IN_PROGRESS, f"Sync started ({mode.value})")

        try:
            result = await self._dispatch(mode, set_id, limit)
        except Exception as e:
            logger.exception("Sync %s failed", mode.value)
            result = SyncResult.failure(f"Sync failed: {e}")

        status = SyncStatus.SUCCESS if result.success else SyncStatus.FAILED
        await self._record(mode, status, result.message)
        logger.info("Sync %s finished (%s): %s", mode.value, status.value, result.message)
        return result

    async def _dispatch(self, mode: SyncMode, set_id: str | None, limit: int | None) -> SyncResult:
        if mode is SyncMode.FULL:
            return await self.full_sync(limit)
        if mode is SyncMode.SETS:
            return await self.sync_sets()
        if mode is SyncMode.SINGLE_SET:
            return await self.sync_single_set(set_id or "")
        if mode is SyncMode.CARD_METADATA:
            return await self.sync_metadata(limit or 1)
        if mode is SyncMode.CARD_METADATA_ALL:
            return await self.sync_all_metadata()
        return await self.sync_prices(limit or 1)

    async def _record(self, mode: SyncMode, status: SyncStatus, message: str) -> None:
        """Write the mode's status row. A failed write is logged, never raised."""
        try:
            async with self.session_factory() as session:
                await record_sync_status(
                    session, mode.entity_type, status, message, self.clock.now()
                )
                await session.commit()
        except SQLAlchemyError as e:
            logger.error("Failed to record %s status for %s: %s", status.value, mode.value, e)

    # --- Whole-catalog modes ---

    async def sync_sets(self) -> SyncResult:
        """Refresh the full set list from the catalog."""
        try:
            sets = await self.catalog.fetch_sets()
        except CatalogError as e:
            logger.error("Failed to fetch sets: %s", e)
            return SyncResult.failure(f"Failed to fetch sets: {e}")

        async with self.session_factory() as session:
            try:
                count = await upsert_sets(session, sets)
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                logger.error("Failed to store sets: %s", e)
                return SyncResult.failure(f"Failed to store sets: {e}")

        logger.info("Synced %d sets", count)
        return SyncResult(count=count, message=f"Synced {count} sets")

    async def sync_single_set(self, set_id: str) -> SyncResult:
        """Fetch every card of one set and upsert all editions and prices."""
        logger.info("Syncing cards for set %s...", set_id)
        try:
            cards = await self.catalog.fetch_set_cards(set_id, self.page_size)
        except CatalogError as e:
            logger.error("Failed to fetch cards for %s: %s", set_id, e)
            return SyncResult.failure(f"Failed to fetch cards for {set_id}: {e}")

        card_rows, price_rows = self._expand(cards, set_id)

        async with self.session_factory() as session:
            try:
                await upsert_cards(session, card_rows)
                await upsert_prices(session, price_rows)
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                logger.error("Error upserting cards for %s: %s", set_id, e)
                return SyncResult.failure(f"Failed to store cards for {set_id}: {e}")

        logger.info("Synced %d cards (%d editions) for set %s", len(cards), len(card_rows), set_id)
        return SyncResult(
            cards_updated=len(cards),
            count=len(cards),
            sets_processed=1,
            message=f"Synced {len(cards)} cards for set {set_id}",
        )

    async def full_sync(self, limit: int | None = None) -> SyncResult:
        """
        Refresh sets, then every set's cards in concurrent batches.

        A failing set is counted and skipped; it never stops the run.
        """
        sets_result = await self.sync_sets()
        if not sets_result.success:
            return SyncResult.failure(f"Failed to sync sets: {sets_result.message}")

        async with self.session_factory() as session:
            set_ids = [s.id for s in await get_sets_by_release(session, limit)]

        total = SyncResult(count=sets_result.count)
        for start in range(0, len(set_ids), self.batch_size):
            batch = set_ids[start : start + self.batch_size]
            results = await asyncio.gather(
                *(self.sync_single_set(set_id) for set_id in batch),
                return_exceptions=True,
            )
            for set_id, result in zip(batch, results, strict=True):
                if isinstance(result, SyncResult) and result.success:
                    total.cards_updated += result.cards_updated
                    total.sets_processed += 1
                else:
                    if isinstance(result, BaseException):
                        logger.error("Unexpected error syncing set %s: %r", set_id, result)
                    total.sets_failed += 1

            if start + self.batch_size < len(set_ids):
                await self.clock.sleep(self.batch_delay)

        total.message = (
            f"Synced {total.cards_updated} cards from {total.sets_processed} sets"
            f" ({total.sets_failed} failed)"
        )
        return total

    # --- Chunked modes ---

    async def sync_prices(self, limit: int = 1) -> SyncResult:
        """Run up to ``limit`` price chunks, each on the longest-waiting set."""
        return await self._run_chunks(self.sync_price_chunk, limit)

    async def sync_metadata(self, limit: int = 1) -> SyncResult:
        """Run up to ``limit`` metadata chunks, each on the longest-waiting set."""
        return await self._run_chunks(self.sync_metadata_chunk, limit)

    async def _run_chunks(self, runner: ChunkRunner, limit: int) -> SyncResult:
        total = SyncResult()
        last = SyncResult()
        for _ in range(limit):
            last = await runner(())
            total.merge(last)
            if not last.success:
                total.success = False
                break
            if last.sets_processed == 0:
                break

        if limit == 1:
            total.message = last.message
            total.set_id = last.set_id
        else:
            total.message = (
                f"Updated {total.cards_updated} cards, completed {total.sets_completed} sets"
            )
            if not total.success:
                total.message += f"; stopped: {last.message}"
        return total

    async def sync_all_metadata(self) -> SyncResult:
        """
        Repeat metadata chunks until every set has completed one pass.

        Keeps no state of its own: killing and restarting it simply
        resumes from the per-set cursors. A set whose chunk fails is
        skipped for the rest of this run.
        """
        logger.info("Starting complete card metadata sync (all sets)...")
        total = SyncResult()
        failed: set[str] = set()
        calls = 0

        while True:
            async with self.session_factory() as session:
                remaining = await count_unsynced_sets(session, CursorKind.METADATA, exclude=failed)
            if remaining == 0:
                break
            if calls:
                await self.clock.sleep(self.metadata_delay)

            calls += 1
            result = await self.sync_metadata_chunk(failed)
            total.merge(result)
            if not result.success:
                total.sets_failed += 1
                if result.set_id:
                    failed.add(result.set_id)
                else:
                    break
            elif result.sets_processed == 0:
                break

        total.message = (
            f"Complete! Synced metadata for {total.cards_updated} cards,"
            f" completed {total.sets_completed} sets in {calls} chunks"
            f" ({total.sets_failed} failed)"
        )
        return total

    async def sync_price_chunk(self, exclude: Collection[str] = ()) -> SyncResult:
        """Process one price chunk of the longest-waiting set."""
        return await self._chunk(CursorKind.PRICE, self._price_chunk, exclude)

    async def sync_metadata_chunk(self, exclude: Collection[str] = ()) -> SyncResult:
        """Process one metadata chunk of the longest-waiting set."""
        return await self._chunk(CursorKind.METADATA, self._metadata_chunk, exclude)

    async def _chunk(
        self,
        kind: CursorKind,
        process: Callable[[CardSetDB], Awaitable[SyncResult]],
        exclude: Collection[str],
    ) -> SyncResult:
        async with self.session_factory() as session:
            sets = [s for s in await get_sets_for_sync(session) if s.id not in exclude]
        candidate = self._pick_set(SetSyncQueue(sets, kind), kind)
        if candidate is None:
            return SyncResult(message="No sets to sync")

        async with self.locks.hold(kind, candidate.id):
            # Re-read under the lock; a previous holder may have moved the cursor
            async with self.session_factory() as session:
                card_set = await get_set(session, candidate.id)
            if card_set is None:
                return SyncResult.failure(f"Set {candidate.id} disappeared", set_id=candidate.id)
            return await process(card_set)

    def _pick_set(self, queue: SetSyncQueue, kind: CursorKind) -> CardSetDB | None:
        """
        Longest-waiting set whose cursor nobody in this process is working on.

        When every set is busy, falls back to the head of the queue and
        waits for its lock.
        """
        head = queue.peek()
        while queue:
            card_set = queue.pop()
            if not self.locks.is_locked(kind, card_set.id):
                return card_set
        return head

    async def _price_chunk(self, card_set: CardSetDB) -> SyncResult:
        set_id = card_set.id
        cursor = card_set.price_sync_progress
        total = card_set.total_cards
        version = card_set.price_sync_version
        want = chunk_size_for(cursor, total, self.chunk_size)

        try:
            cards = await self._fetch_price_window(set_id, cursor, want)
        except CatalogError as e:
            logger.error("Failed to fetch price chunk for %s at %d: %s", set_id, cursor, e)
            return SyncResult.failure(f"Failed to fetch cards for {set_id}: {e}", set_id=set_id)

        card_rows, price_rows = self._expand(cards, set_id)

        async def write(session: AsyncSession) -> None:
            await upsert_cards(session, card_rows)
            await upsert_prices(session, price_rows)

        return await self._commit_chunk(
            CursorKind.PRICE, set_id, cursor, total, version, len(cards), len(cards), write
        )

    async def _fetch_price_window(self, set_id: str, offset: int, count: int) -> list[BaseCard]:
        """Fetch ``count`` cards of a set starting at ``offset``, crossing pages if needed."""
        cards: list[BaseCard] = []
        if count <= 0:
            return cards

        page, start = page_window(offset, self.page_size)
        while len(cards) < count:
            batch = await self.catalog.fetch_cards_page(set_id, page, self.page_size)
            cards.extend(batch[start : start + count - len(cards)])
            if len(batch) < self.page_size:
                break
            page += 1
            start = 0
        return cards

    async def _metadata_chunk(self, card_set: CardSetDB) -> SyncResult:
        set_id = card_set.id
        cursor = card_set.metadata_sync_progress
        total = card_set.total_cards
        version = card_set.metadata_sync_version
        want = chunk_size_for(cursor, total, self.chunk_size)

        async with self.session_factory() as session:
            base_ids = await get_local_base_card_ids(session, set_id, cursor, want) if want else []
            editions = await get_edition_cards(session, base_ids)

        fetched: dict[str, BaseCard] = {}
        if base_ids:
            try:
                fetched = {c.id: c for c in await self.catalog.fetch_cards_by_ids(base_ids)}
            except CatalogError as e:
                logger.error("Failed to fetch metadata chunk for %s at %d: %s", set_id, cursor, e)
                return SyncResult.failure(
                    f"Failed to fetch metadata for {set_id}: {e}", set_id=set_id
                )

        rows: list[dict[str, Any]] = []
        for edition_card in editions:
            base_card = fetched.get(edition_card.base_card_id)
            if base_card is None:
                continue
            row = card_row(base_card, edition_card.set_id, edition_card.edition)
            row["id"] = edition_card.id
            rows.append(row)

        updated = len({row["base_card_id"] for row in rows})
        missing = len(base_ids) - len(fetched)
        if missing > 0:
            logger.warning("%d cards of %s were not returned by the catalog", missing, set_id)

        async def write(session: AsyncSession) -> None:
            await upsert_cards(session, rows)

        return await self._commit_chunk(
            CursorKind.METADATA, set_id, cursor, total, version, len(base_ids), updated, write
        )

    async def _commit_chunk(
        self,
        kind: CursorKind,
        set_id: str,
        cursor: int,
        total: int,
        version: int,
        processed: int,
        cards_updated: int,
        write: Callable[[AsyncSession], Awaitable[None]],
    ) -> SyncResult:
        """Write a chunk's rows and its advanced cursor in one transaction."""
        advance = advance_cursor(cursor, processed, total, self.clock.now())

        async with self.session_factory() as session:
            try:
                await write(session)
                await update_set_cursor(
                    session, set_id, kind, advance.cursor, version, advance.last_sync
                )
                await session.commit()
            except (SQLAlchemyError, CursorConflictError) as e:
                await session.rollback()
                logger.error(
                    "Failed to commit %s chunk for %s at %d: %s", kind.value, set_id, cursor, e
                )
                return SyncResult.failure(
                    f"Failed to store {kind.value} chunk for {set_id}: {e}", set_id=set_id
                )

        if advance.completed:
            message = f"Completed {kind.value} sync for set {set_id} ({cursor + processed} cards)"
        else:
            message = f"Updated {processed} cards in set {set_id} ({advance.cursor}/{total})"
        logger.info("%s", message)

        return SyncResult(
            cards_updated=cards_updated,
            count=processed,
            sets_processed=1,
            sets_completed=1 if advance.completed else 0,
            message=message,
            set_id=set_id,
        )

    def _expand(
        self, cards: list[BaseCard], set_id: str
    ) -> tuple[list[dict[str, Any]], list[dict[str, Any]]]:
        now = self.clock.now()
        card_rows: list[dict[str, Any]] = []
        price_rows: list[dict[str, Any]] = []
        for card in cards:
            for card_data, price_data in build_edition_rows(card, set_id, now):
                card_rows.append(card_data)
                price_rows.append(price_data)
        return card_rows, price_rows
