"""
Run a catalog sync from the command line or a cron job.

Usage:
    python -m cardmirror.jobs.run_sync --mode prices --limit 3
    python -m cardmirror.jobs.run_sync --mode single-set --set-id base1
    python -m cardmirror.jobs.run_sync --mode prices --every 300
"""

import argparse
import asyncio
import logging

from cardmirror.db.database import init_db
from cardmirror.models.sync import SyncMode, SyncResult
from cardmirror.services.catalog_client import CatalogClient
from cardmirror.services.scheduler import PeriodicTrigger
from cardmirror.services.sync_engine import SyncEngine

logger = logging.getLogger(__name__)


async def run_sync(
    mode: SyncMode,
    set_id: str | None = None,
    limit: int | None = None,
    every: float | None = None,
    runs: int | None = None,
) -> list[SyncResult]:
    """
    Run one sync, or a periodic series of syncs when ``every`` is set.

    Args:
        mode: Sync mode
        set_id: Set for single-set mode
        limit: Chunks per call, or max sets for full mode
        every: Seconds between runs; None runs once
        runs: Stop after this many periodic runs; None runs forever

    Returns:
        Results of every run, in order
    """
    await init_db()

    async with CatalogClient() as catalog:
        engine = SyncEngine(catalog)
        if every is None:
            return [await engine.run(mode, set_id=set_id, limit=limit)]

        trigger = PeriodicTrigger(engine, mode, every, limit=limit, set_id=set_id)
        return await trigger.run(max_runs=runs)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Sync the Pokémon TCG catalog into the database")
    parser.add_argument(
        "--mode",
        default=SyncMode.PRICES.value,
        choices=[m.value for m in SyncMode],
        help="Sync mode (default: prices)",
    )
    parser.add_argument("--set-id", help="Catalog set id, required for single-set")
    parser.add_argument(
        "--limit",
        type=int,
        help="Chunks per call for prices/card-metadata, max sets for full",
    )
    parser.add_argument(
        "--every",
        type=float,
        help="Repeat the sync every N seconds",
    )
    parser.add_argument(
        "--runs",
        type=int,
        help="With --every, stop after N runs",
    )
    return parser


def main() -> None:
    """CLI entry point."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    args = build_parser().parse_args()

    results = asyncio.run(
        run_sync(
            SyncMode(args.mode),
            set_id=args.set_id,
            limit=args.limit,
            every=args.every,
            runs=args.runs,
        )
    )

    failed = [r for r in results if not r.success]
    for result in results:
        logger.info("%s", result.message)
    if failed:
        raise SystemExit(1)


if __name__ == "__main__":
    main()
