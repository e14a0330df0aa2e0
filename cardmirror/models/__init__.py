from cardmirror.models.catalog import BaseCard, CatalogSet
from cardmirror.models.edition import Edition, EditionData, EditionPrices, PriceVariant
from cardmirror.models.sync import CursorKind, SyncMode, SyncResult, SyncStatus

__all__ = [
    "BaseCard",
    "CatalogSet",
    "CursorKind",
    "Edition",
    "EditionData",
    "EditionPrices",
    "PriceVariant",
    "SyncMode",
    "SyncResult",
    "SyncStatus",
]
