"""
Clock and periodic trigger for driving sync runs.

In production an external cron hits the HTTP endpoint; ``PeriodicTrigger``
is the in-process equivalent used by the CLI. Both only ever call
``SyncEngine.run``, so all progress lives in the database and a trigger
can be stopped and restarted at any point.
"""

import asyncio
import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Protocol

from cardmirror.models.sync import SyncMode, SyncResult

if TYPE_CHECKING:
    from cardmirror.services.sync_engine import SyncEngine

logger = logging.getLogger(__name__)


class Clock(Protocol):
    """Source of time and delays for the sync engine."""

    def now(self) -> datetime: ...

    async def sleep(self, seconds: float) -> None: ...


class SystemClock:
    """Wall clock in UTC backed by ``asyncio.sleep``."""

    def now(self) -> datetime:
        return datetime.now(UTC)

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


class PeriodicTrigger:
    """
    Calls one sync mode on a fixed interval.

    Attributes:
        engine: Engine to invoke
        mode: Sync mode run on every tick
        interval: Seconds between the end of one run and the next
        limit: Passed through to ``SyncEngine.run``
        clock: Clock used for the waits
    """

    def __init__(
        self,
        engine: "SyncEngine",
        mode: SyncMode,
        interval: float,
        *,
        limit: int | None = None,
        set_id: str | None = None,
        clock: Clock | None = None,
    ):
        if interval < 0:
            raise ValueError(f"interval must be non-negative, got {interval}")
        self.engine = engine
        self.mode = mode
        self.interval = interval
        self.limit = limit
        self.set_id = set_id
        self.clock = clock or engine.clock
        self.runs = 0

    async def run_once(self) -> SyncResult:
        """Run the configured mode once."""
        self.runs += 1
        result = await self.engine.run(self.mode, set_id=self.set_id, limit=self.limit)
        logger.info(
            "Trigger run %d (%s): success=%s cards=%d sets_completed=%d",
            self.runs,
            self.mode.value,
            result.success,
            result.cards_updated,
            result.sets_completed,
        )
        return result

    async def run(self, max_runs: int | None = None) -> list[SyncResult]:
        """
        Run until ``max_runs`` ticks have fired, or forever when None.

        Failed runs are logged and the schedule continues.
        """
        results: list[SyncResult] = []
        while max_runs is None or len(results) < max_runs:
            results.append(await self.run_once())
            if max_runs is not None and len(results) >= max_runs:
                break
            await self.clock.sleep(self.interval)
        return results
