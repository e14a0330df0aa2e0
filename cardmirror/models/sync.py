"""
Sync modes, cursor kinds and the result envelope returned by every mode.
"""

from dataclasses import dataclass
from enum import Enum


class SyncMode(str, Enum):
    """Entry points of the sync engine."""

    FULL = "full"
    SETS = "sets"
    SINGLE_SET = "single-set"
    PRICES = "prices"
    CARD_METADATA = "card-metadata"
    CARD_METADATA_ALL = "card-metadata-all"

    @property
    def entity_type(self) -> str:
        """Key of the ``sync_metadata`` row this mode reports into."""
        return _ENTITY_TYPES[self]


_ENTITY_TYPES: dict[SyncMode, str] = {
    SyncMode.FULL: "full",
    SyncMode.SETS: "sets",
    SyncMode.SINGLE_SET: "single_set",
    SyncMode.PRICES: "prices",
    SyncMode.CARD_METADATA: "card_metadata",
    SyncMode.CARD_METADATA_ALL: "card_metadata",
}


class SyncStatus(str, Enum):
    """Values of ``sync_metadata.status``."""

    IN_PROGRESS = "in_progress"
    SUCCESS = "success"
    FAILED = "failed"


class CursorKind(str, Enum):
    """Which of a set's two resumable cursors a chunk advances."""

    PRICE = "price"
    METADATA = "metadata"

    @property
    def progress_column(self) -> str:
        return f"{self.value}_sync_progress"

    @property
    def timestamp_column(self) -> str:
        return f"last_{self.value}_sync"

    @property
    def version_column(self) -> str:
        return f"{self.value}_sync_version"


@dataclass
class SyncResult:
    """
    Outcome of one sync call.

    Attributes:
        success: False when the unit of work was abandoned
        cards_updated: Catalog cards written (before edition expansion)
        count: Mode-specific item count (sets listed, cards in a set)
        sets_processed: Sets touched successfully
        sets_completed: Sets whose cursor wrapped to 0 in this call
        sets_failed: Sets abandoned in multi-set drivers
        message: Human-readable summary
        set_id: Set a single-set or chunk call worked on
    """

    success: bool = True
    cards_updated: int = 0
    count: int = 0
    sets_processed: int = 0
    sets_completed: int = 0
    sets_failed: int = 0
    message: str = ""
    set_id: str | None = None

    @classmethod
    def failure(cls, message: str, set_id: str | None = None) -> "SyncResult":
        return cls(success=False, message=message, set_id=set_id)

    def merge(self, other: "SyncResult") -> None:
        """Accumulate counters from another result into this one."""
        self.cards_updated += other.cards_updated
        self.count += other.count
        self.sets_processed += other.sets_processed
        self.sets_completed += other.sets_completed
        self.sets_failed += other.sets_failed
