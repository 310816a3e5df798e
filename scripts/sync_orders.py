#!/usr/bin/env python
"""Script to run one marketplace order sync outside the API server.

This script:
1. Fetches orders created in the last SYNC_LOOKBACK_DAYS from Shopee and TikTok
2. Attributes new orders to users and credits pending cashback
3. Moves cashback to available for orders that reached COMPLETED

Usage:
    python scripts/sync_orders.py
    python scripts/sync_orders.py --lookback-days 30

Requirements:
    - SUPABASE_URL, SUPABASE_SECRET_KEY environment variables must be set
    - Marketplace credentials (SHOPEE_*, TIKTOK_*) for the platforms to sync

Note:
    - Safe to run repeatedly; already-synced orders are only updated
    - Do not run while the API server's scheduler is mid-sync against the
      same database; the run guard is per process
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Add the project root to the path
sys.path.insert(0, str(Path(__file__).parent.parent))

from affhelper.core.config import get_settings
from affhelper.providers.registry import shutdown_providers
from affhelper.services.order_sync_service import TRIGGER_MANUAL, build_order_sync_service

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run one marketplace order sync")
    parser.add_argument(
        "--lookback-days",
        type=int,
        default=None,
        help="Days of order history to fetch (default: SYNC_LOOKBACK_DAYS)",
    )
    return parser.parse_args()


async def main() -> None:
    """Main entry point for the sync script."""
    args = parse_args()
    service = build_order_sync_service(get_settings())
    if args.lookback_days is not None:
        service.lookback_days = args.lookback_days

    logger.info("Starting order sync (lookback %d days)...", service.lookback_days)
    try:
        result = await service.run_sync(TRIGGER_MANUAL)
    except Exception as e:
        logger.error("Order sync failed: %s", e, exc_info=True)
        sys.exit(1)
    finally:
        await shutdown_providers()

    if result is None:
        logger.error("Order sync already in progress")
        sys.exit(1)

    logger.info("=" * 60)
    logger.info("Order sync complete!")
    logger.info("Orders synced: %d", result.synced)
    logger.info("Skipped (already known or unattributable): %d", result.skipped)
    logger.info("Failed: %d", result.failed)
    for platform, summary in result.per_platform.items():
        logger.info("  %s: %d synced, %d skipped, %d failed", platform.value, summary.synced, summary.skipped, summary.failed)
    logger.info("=" * 60)

    if result.failed_platforms:
        logger.warning("Order fetch failed for: %s", ", ".join(p.value for p in result.failed_platforms))
        sys.exit(1)
    if result.failed > 0:
        logger.warning("Some orders failed to sync. Check logs for details.")
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
