#!/usr/bin/env python3
"""
Cache Warming Script

Precompute dashboard cache entries outside the API process.

Usage:
    python scripts/warm_cache.py warm                 # one cycle, then exit
    python scripts/warm_cache.py warm --shop 3        # one shop only
    python scripts/warm_cache.py start --interval 300 # run until interrupted
"""

import asyncio
import argparse
import json
import logging
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv

from stockpulse.cache import create_cache
from stockpulse.cache.config import get_cache_config
from stockpulse.cache.warming import CacheWarmer, create_warming_executor
from stockpulse.dashboard import DashboardComposer, DashboardFetchers
from stockpulse.database import get_session_factory


logger = logging.getLogger("warm_cache")


def setup_logging(verbose: bool = False):
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[
            logging.StreamHandler(),
        ]
    )


def build_warmer():
    config = get_cache_config()
    cache = create_cache(config)
    executor = create_warming_executor(config)
    fetchers = DashboardFetchers(get_session_factory(), config=config, executor=executor)
    composer = DashboardComposer(cache, fetchers.as_slices(), config)
    warmer = CacheWarmer(composer, fetchers.list_active_shop_ids, config=config)
    return warmer, cache, executor


async def run_once(shop_id: int = None) -> int:
    """Run one warming cycle. Returns a process exit code."""
    warmer, cache, executor = build_warmer()
    try:
        if shop_id is not None:
            report = await warmer.warm_shop(shop_id)
        else:
            report = await warmer.warm_all()
    finally:
        executor.shutdown(wait=False)
        await cache.close()

    print(json.dumps(report.to_dict(), indent=2))
    return 0 if report.failed == 0 else 1


async def run_forever(interval: int = None):
    """Run the warming loop until interrupted."""
    warmer, cache, executor = build_warmer()
    await warmer.start(interval)
    try:
        while True:
            await asyncio.sleep(3600)
    finally:
        await warmer.stop()
        executor.shutdown(wait=False)
        await cache.close()


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Warm the StockPulse dashboard cache"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    warm = subparsers.add_parser("warm", help="Run one warming cycle")
    warm.add_argument(
        "--shop",
        type=int,
        help="Warm a single shop instead of every target"
    )

    start = subparsers.add_parser("start", help="Run the warming loop")
    start.add_argument(
        "--interval",
        type=int,
        help="Seconds between cycles (default: CACHE_WARMING_INTERVAL_SECONDS)"
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Verbose logging"
    )

    args = parser.parse_args()

    load_dotenv()
    setup_logging(args.verbose)

    if args.command == "warm":
        sys.exit(asyncio.run(run_once(args.shop)))

    try:
        asyncio.run(run_forever(args.interval))
    except KeyboardInterrupt:
        logger.info("Warming stopped")


if __name__ == "__main__":
    main()
