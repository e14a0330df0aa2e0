"""
CardMirror services.

Catalog access, edition resolution, progress bookkeeping and the sync
engine that ties them together.
"""

from cardmirror.services.catalog_client import CatalogClient, CatalogError
from cardmirror.services.edition_resolver import (
    build_edition_rows,
    build_tcgplayer_search_url,
    deduplicate_editions,
    edition_id,
    extract_base_card_id,
    resolve_editions,
    slug,
)
from cardmirror.services.progress import (
    CursorAdvance,
    SetLockRegistry,
    SetSyncQueue,
    advance_cursor,
    chunk_size_for,
    page_window,
)
from cardmirror.services.scheduler import Clock, PeriodicTrigger, SystemClock
from cardmirror.services.sync_engine import SyncEngine

__all__ = [
    "CatalogClient",
    "CatalogError",
    "Clock",
    "CursorAdvance",
    "PeriodicTrigger",
    "SetLockRegistry",
    "SetSyncQueue",
    "SyncEngine",
    "SystemClock",
    "advance_cursor",
    "build_edition_rows",
    "build_tcgplayer_search_url",
    "chunk_size_for",
    "deduplicate_editions",
    "edition_id",
    "extract_base_card_id",
    "page_window",
    "resolve_editions",
    "slug",
]
