"""
Resumable progress bookkeeping for chunked syncs.

Each set carries two cursors (price and metadata). A cursor is the
offset of the next card to process; it wraps back to 0 exactly when a
pass over the set completes, and only then is the set's last-sync
timestamp advanced.

INVARIANTS:
- 0 <= cursor <= total_cards
- A chunk never reaches past total_cards
- Within a set, the cursor only grows until it wraps to 0
"""

import asyncio
import heapq
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from cardmirror.models.sync import CursorKind


@dataclass(frozen=True, slots=True)
class CursorAdvance:
    """
    New cursor state after a chunk.

    Attributes:
        cursor: Value to persist
        completed: True when the pass over the set finished
        last_sync: New last-sync timestamp, or None to leave it untouched
    """

    cursor: int
    completed: bool
    last_sync: datetime | None


def chunk_size_for(cursor: int, total_cards: int, chunk_size: int) -> int:
    """
    Number of cards the next chunk should cover.

    Sets with an unknown total (0) get a full chunk.
    """
    if total_cards <= 0:
        return chunk_size
    return max(min(chunk_size, total_cards - cursor), 0)


def advance_cursor(
    cursor: int,
    processed: int,
    total_cards: int,
    now: datetime,
) -> CursorAdvance:
    """
    Compute the cursor after processing ``processed`` cards from ``cursor``.

    A chunk that processed nothing means the catalog ran out before the
    declared total; the set is still completed so a wrong total cannot
    pin the scheduler on it forever.
    """
    new_cursor = cursor + processed
    if processed == 0 or new_cursor >= total_cards:
        return CursorAdvance(cursor=0, completed=True, last_sync=now)
    return CursorAdvance(cursor=new_cursor, completed=False, last_sync=None)


def page_window(offset: int, page_size: int) -> tuple[int, int]:
    """Map a card offset to a 1-based catalog page and the offset within it."""
    return offset // page_size + 1, offset % page_size


def _sync_priority(card_set: Any, kind: CursorKind) -> tuple[Any, ...]:
    last_sync = getattr(card_set, kind.timestamp_column)
    if last_sync is None:
        return (0, card_set.insertion_seq, card_set.id)
    return (1, last_sync, card_set.insertion_seq, card_set.id)


class SetSyncQueue:
    """
    Priority queue of sets ordered for fair round-robin syncing.

    Never-synced sets come first, then the oldest last-sync, with ties
    broken by insertion order. Popping the head repeatedly visits every
    set before any set is visited twice.
    """

    def __init__(self, sets: Iterable[Any], kind: CursorKind):
        self.kind = kind
        self._heap: list[tuple[tuple[Any, ...], int, Any]] = []
        self._counter = 0
        for card_set in sets:
            self.push(card_set)

    def push(self, card_set: Any) -> None:
        heapq.heappush(self._heap, (_sync_priority(card_set, self.kind), self._counter, card_set))
        self._counter += 1

    def peek(self) -> Any | None:
        return self._heap[0][2] if self._heap else None

    def pop(self) -> Any:
        """
        Remove and return the set most in need of syncing.

        Raises:
            IndexError: If the queue is empty
        """
        return heapq.heappop(self._heap)[2]

    def __len__(self) -> int:
        return len(self._heap)


class SetLockRegistry:
    """
    Single-flight locks keyed by (cursor kind, set id).

    Two chunk calls for the same set cursor within one process run one
    after the other, so neither can overwrite the other's cursor.
    """

    def __init__(self) -> None:
        self._locks: dict[tuple[CursorKind, str], asyncio.Lock] = {}

    @asynccontextmanager
    async def hold(self, kind: CursorKind, set_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault((kind, set_id), asyncio.Lock())
        async with lock:
            yield

    def is_locked(self, kind: CursorKind, set_id: str) -> bool:
        lock = self._locks.get((kind, set_id))
        return lock is not None and lock.locked()
