#!/usr/bin/env python3
"""
Manual trigger and backfill for the daily_platform_metrics snapshot.

Usage:
    python scripts/compute_platform_metrics.py                 # yesterday (business tz)
    python scripts/compute_platform_metrics.py 2026-02-22      # specific day
    python scripts/compute_platform_metrics.py --backfill 14   # last 14 days, oldest first
"""

import asyncio
import sys
from datetime import timedelta
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from health_engine.db.session import engine
from health_engine.logging_config import setup_logging
from health_engine.worker.platform_metrics_job import (
    InvalidTargetDayError,
    platform_metrics_job,
    yesterday_in_business_tz,
)


async def backfill(days: int) -> int:
    yesterday = yesterday_in_business_tz()
    succeeded = failed = 0

    print(f"Backfilling {days} days sequentially")
    for offset in range(days - 1, -1, -1):
        day = yesterday - timedelta(days=offset)
        try:
            result = await platform_metrics_job.compute_daily(day)
        except Exception as e:
            failed += 1
            print(f"  FAIL {day}: {e}")
            continue

        if result["success"]:
            succeeded += 1
            print(f"  OK   {day} ({result['durationMs']}ms)")
        else:
            failed += 1
            print(f"  SKIP {day}: {result.get('reason')}")

    print(f"Backfill complete: {succeeded} succeeded, {failed} failed")
    return 0 if failed == 0 else 1


async def compute_one(day) -> int:
    result = await platform_metrics_job.compute_daily(day)
    if result["success"]:
        print(f"Complete: {result['day']} computed ({result['durationMs']}ms)")
        return 0
    print(f"Skipped {result['day']}: {result.get('reason')}")
    return 1


async def main(day, backfill_days) -> int:
    try:
        if backfill_days:
            return await backfill(backfill_days)
        return await compute_one(day)
    except InvalidTargetDayError as e:
        print(f"Error: {e}")
        return 2
    finally:
        await platform_metrics_job.lock_manager.close()
        await engine.dispose()


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Compute the daily platform metrics snapshot")
    parser.add_argument(
        "day",
        nargs="?",
        default=None,
        help="Day to compute as YYYY-MM-DD (default: yesterday in the business timezone)",
    )
    parser.add_argument(
        "--backfill",
        type=int,
        default=0,
        metavar="N",
        help="Compute the last N days ending yesterday, oldest first",
    )

    args = parser.parse_args()
    if args.backfill < 0:
        parser.error("--backfill must be positive")

    setup_logging()
    sys.exit(asyncio.run(main(args.day, args.backfill)))
