"""
Database operations for the catalog mirror.

Upserts are keyed on primary id and overwrite every listed column, so
re-running a chunk produces the same rows as running it once. Cursor
writes are guarded by a per-cursor version counter on the set.
"""

from collections.abc import Collection, Sequence
from datetime import datetime
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from cardmirror.models.catalog import CatalogSet
from cardmirror.models.db import Base, CardDB, CardSetDB, PriceDB, SyncMetadataDB
from cardmirror.models.sync import CursorKind, SyncStatus

# Rows per INSERT statement, keeps bind parameters under driver limits
UPSERT_BATCH_SIZE = 500

# Columns maintained by the sync engine rather than the catalog
_SET_ENGINE_COLUMNS = frozenset(
    {
        "insertion_seq",
        "price_sync_progress",
        "last_price_sync",
        "price_sync_version",
        "metadata_sync_progress",
        "last_metadata_sync",
        "metadata_sync_version",
    }
)


class CursorConflictError(Exception):
    """Raised when a set's cursor changed under a concurrent writer."""

    def __init__(self, set_id: str, expected_version: int):
        self.set_id = set_id
        self.expected_version = expected_version
        super().__init__(
            f"Cursor for set '{set_id}' was modified concurrently "
            f"(expected version {expected_version})"
        )


def _insert_for(session: AsyncSession) -> Any:
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert
    if dialect == "sqlite":
        return sqlite.insert
    msg = f"Upserts are not supported on dialect '{dialect}'"
    raise NotImplementedError(msg)


async def _upsert(
    session: AsyncSession,
    model: type[Base],
    rows: Sequence[dict[str, Any]],
    key: str,
    exclude_from_update: frozenset[str] = frozenset(),
) -> int:
    """
    INSERT ... ON CONFLICT (key) DO UPDATE for a batch of rows.

    Duplicate keys within the batch collapse to the last row. All rows
    must carry the same columns.

    Returns:
        Number of distinct rows written.
    """
    unique = list({row[key]: row for row in rows}.values())
    if not unique:
        return 0

    insert = _insert_for(session)
    for start in range(0, len(unique), UPSERT_BATCH_SIZE):
        batch = unique[start : start + UPSERT_BATCH_SIZE]
        stmt = insert(model).values(batch)
        columns = [c for c in batch[0] if c != key and c not in exclude_from_update]
        if columns:
            stmt = stmt.on_conflict_do_update(
                index_elements=[key],
                set_={c: stmt.excluded[c] for c in columns},
            )
        else:
            stmt = stmt.on_conflict_do_nothing(index_elements=[key])
        await session.execute(stmt)

    return len(unique)


# --- Gateway Upserts ---


async def upsert_sets(session: AsyncSession, sets: Sequence[CatalogSet]) -> int:
    """
    Insert or update catalog sets.

    New sets get the next insertion sequence numbers in listing order.
    Cursor columns are never written here.
    """
    if not sets:
        return 0

    ids = [s.id for s in sets]
    existing = set(
        (await session.execute(select(CardSetDB.id).where(CardSetDB.id.in_(ids)))).scalars().all()
    )
    max_seq = (await session.execute(select(func.max(CardSetDB.insertion_seq)))).scalar() or 0

    rows: list[dict[str, Any]] = []
    next_seq = max_seq
    for s in sets:
        if s.id in existing:
            seq = 0
        else:
            next_seq += 1
            seq = next_seq
        rows.append(
            {
                "id": s.id,
                "name": s.name,
                "series": s.series,
                "release_date": s.release_date,
                "total_cards": s.total_cards,
                "logo": s.logo,
                "symbol": s.symbol,
                "insertion_seq": seq,
                "price_sync_progress": 0,
                "price_sync_version": 0,
                "metadata_sync_progress": 0,
                "metadata_sync_version": 0,
            }
        )

    return await _upsert(session, CardSetDB, rows, "id", _SET_ENGINE_COLUMNS)


async def upsert_cards(session: AsyncSession, rows: Sequence[dict[str, Any]]) -> int:
    """Insert or overwrite edition card rows keyed on ``cards.id``."""
    return await _upsert(session, CardDB, rows, "id")


async def upsert_prices(session: AsyncSession, rows: Sequence[dict[str, Any]]) -> int:
    """Insert or overwrite price rows keyed on ``prices.card_id``."""
    return await _upsert(session, PriceDB, rows, "card_id")


# --- Set Queries ---


async def get_set(session: AsyncSession, set_id: str) -> CardSetDB | None:
    """Get a set by id. Returns None if it is not mirrored yet."""
    result = await session.execute(select(CardSetDB).where(CardSetDB.id == set_id))
    return result.scalar_one_or_none()


async def get_sets_for_sync(session: AsyncSession) -> list[CardSetDB]:
    """All sets in insertion order."""
    result = await session.execute(select(CardSetDB).order_by(CardSetDB.insertion_seq))
    return list(result.scalars().all())


async def get_sets_by_release(session: AsyncSession, limit: int | None = None) -> list[CardSetDB]:
    """Sets ordered newest release first."""
    stmt = select(CardSetDB).order_by(
        CardSetDB.release_date.desc().nulls_last(), CardSetDB.insertion_seq
    )
    if limit is not None:
        stmt = stmt.limit(limit)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def count_unsynced_sets(
    session: AsyncSession, kind: CursorKind, exclude: Collection[str] = ()
) -> int:
    """Number of sets whose cursor has never completed a pass, ignoring ``exclude``."""
    column = getattr(CardSetDB, kind.timestamp_column)
    stmt = select(func.count()).select_from(CardSetDB).where(column.is_(None))
    if exclude:
        stmt = stmt.where(CardSetDB.id.not_in(list(exclude)))
    result = await session.execute(stmt)
    return int(result.scalar_one())


async def update_set_cursor(
    session: AsyncSession,
    set_id: str,
    kind: CursorKind,
    cursor: int,
    expected_version: int,
    last_sync: datetime | None = None,
) -> int:
    """
    Persist a set's cursor if nobody else moved it first.

    Args:
        set_id: Set to update
        kind: Which cursor to write
        cursor: New cursor value
        expected_version: Version of this cursor read before the chunk started
        last_sync: New last-sync timestamp; None leaves it untouched

    Returns:
        The new version of this cursor.

    Raises:
        CursorConflictError: If the version no longer matches
    """
    values: dict[str, Any] = {
        kind.progress_column: cursor,
        kind.version_column: expected_version + 1,
    }
    if last_sync is not None:
        values[kind.timestamp_column] = last_sync

    version_column = getattr(CardSetDB, kind.version_column)
    result = await session.execute(
        update(CardSetDB)
        .where(CardSetDB.id == set_id, version_column == expected_version)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    # rowcount is available on UPDATE results; type stubs incomplete for async
    if int(result.rowcount) != 1:  # type: ignore[attr-defined]
        raise CursorConflictError(set_id, expected_version)
    return expected_version + 1


# --- Card Queries ---


async def get_local_base_card_ids(
    session: AsyncSession, set_id: str, offset: int, limit: int
) -> list[str]:
    """Distinct base card ids already mirrored for a set, in stable order."""
    result = await session.execute(
        select(CardDB.base_card_id)
        .where(CardDB.set_id == set_id)
        .distinct()
        .order_by(CardDB.base_card_id)
        .offset(offset)
        .limit(limit)
    )
    return list(result.scalars().all())


async def get_edition_cards(session: AsyncSession, base_card_ids: Sequence[str]) -> list[CardDB]:
    """Every stored edition row of the given base cards."""
    if not base_card_ids:
        return []
    result = await session.execute(
        select(CardDB).where(CardDB.base_card_id.in_(base_card_ids)).order_by(CardDB.id)
    )
    return list(result.scalars().all())


# --- Sync Status ---


async def record_sync_status(
    session: AsyncSession,
    entity_type: str,
    status: SyncStatus,
    message: str,
    last_sync: datetime,
) -> None:
    """Overwrite the status row for one sync mode."""
    await _upsert(
        session,
        SyncMetadataDB,
        [
            {
                "entity_type": entity_type,
                "status": status.value,
                "message": message,
                "last_sync": last_sync,
            }
        ],
        "entity_type",
    )


async def get_sync_metadata(session: AsyncSession, entity_type: str) -> SyncMetadataDB | None:
    result = await session.execute(
        select(SyncMetadataDB).where(SyncMetadataDB.entity_type == entity_type)
    )
    return result.scalar_one_or_none()


async def get_sync_status(session: AsyncSession) -> dict[str, Any]:
    """
    Operator summary of mirror completeness.

    Returns:
        Dict with per-mode status rows, set counts and card counts.
    """
    metadata = (
        (await session.execute(select(SyncMetadataDB).order_by(SyncMetadataDB.entity_type)))
        .scalars()
        .all()
    )

    async def count(*criteria: Any, model: type[Base] = CardSetDB) -> int:
        stmt = select(func.count()).select_from(model)
        if criteria:
            stmt = stmt.where(*criteria)
        return int((await session.execute(stmt)).scalar_one())

    total_sets = await count()
    price_synced = await count(CardSetDB.last_price_sync.is_not(None))
    metadata_synced = await count(CardSetDB.last_metadata_sync.is_not(None))
    total_cards = await count(model=CardDB)
    complete_cards = await count(CardDB.supertype.is_not(None), model=CardDB)
    total_prices = await count(model=PriceDB)

    return {
        "sync_metadata": [
            {
                "entity_type": row.entity_type,
                "status": row.status,
                "message": row.message,
                "last_sync": row.last_sync,
            }
            for row in metadata
        ],
        "sets": {
            "total": total_sets,
            "price_synced": price_synced,
            "metadata_synced": metadata_synced,
        },
        "cards": {
            "total": total_cards,
            "with_complete_data": complete_cards,
            "priced": total_prices,
        },
        "is_complete": total_sets > 0
        and metadata_synced == total_sets
        and complete_cards == total_cards,
    }
