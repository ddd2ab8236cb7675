"""Sync entrypoint - Standalone script for running one synchronization pass.

Usage:
    python -m coincatalog.sync_entrypoint              # Sync the configured top-N assets
    python -m coincatalog.sync_entrypoint 500          # Override the asset cap for this run
"""

import asyncio
import sys
from typing import Optional

from coincatalog.core.db import SessionLocal
from coincatalog.core.logging import get_logger
from coincatalog.ingestion.coingecko import CoinGeckoFeed
from coincatalog.services.sync_service import SyncCoordinator, SyncResult

logger = get_logger("sync_entrypoint")


async def run_sync_job(max_assets: Optional[int] = None) -> Optional[SyncResult]:
    """Run a single pass in this process.

    History is only read here; closing stale ``running`` rows is left to
    server startup, which knows no pass of its own is in flight.
    """
    coordinator = SyncCoordinator(CoinGeckoFeed(), SessionLocal, max_assets=max_assets)
    coordinator.restore()
    return await coordinator.run_sync("cli")


def main():
    """Main entry point for a one-off sync."""
    logger.info("Sync job starting...")

    max_assets: Optional[int] = None
    if len(sys.argv) > 1:
        try:
            max_assets = int(sys.argv[1])
        except ValueError:
            logger.error(f"Invalid asset cap: {sys.argv[1]}. Must be a positive integer")
            sys.exit(1)
        if max_assets < 1:
            logger.error("Asset cap must be a positive integer")
            sys.exit(1)

    result = asyncio.run(run_sync_job(max_assets))
    logger.info(f"Sync job completed: {result}")

    if result is None or result.status != "success":
        sys.exit(1)

    return result


if __name__ == "__main__":
    main()
