from cardmirror.db.database import async_session_factory, get_session, init_db
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

__all__ = [
    "CursorConflictError",
    "async_session_factory",
    "count_unsynced_sets",
    "get_edition_cards",
    "get_local_base_card_ids",
    "get_session",
    "get_set",
    "get_sets_by_release",
    "get_sets_for_sync",
    "get_sync_metadata",
    "get_sync_status",
    "init_db",
    "record_sync_status",
    "update_set_cursor",
    "upsert_cards",
    "upsert_prices",
    "upsert_sets",
]
