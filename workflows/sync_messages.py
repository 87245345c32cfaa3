#!/usr/bin/env python3
"""
Message Sync

Pulls new SMS for active rentals into phone_messages. Runs once, or
every --interval seconds until SIGINT/SIGTERM.

Usage:
    python workflows/sync_messages.py
    python workflows/sync_messages.py --provider smspva
    python workflows/sync_messages.py --phone-id 42
    python workflows/sync_messages.py --interval 60
"""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

import argparse
import asyncio
import signal
from typing import Optional

from loguru import logger

from db.client import init_db, close_db
from lib.providers.registry import ALL_PROVIDERS
from services.rentals.service import RentalService

# Global shutdown flag
shutdown_requested = False


def handle_shutdown(signum, frame):
    global shutdown_requested
    logger.info("Shutdown requested, finishing current sync...")
    shutdown_requested = True


async def _sleep_until_next(interval: float) -> None:
    """Sleep in 1s steps so a shutdown request is noticed quickly."""
    remaining = interval
    while remaining > 0 and not shutdown_requested:
        step = min(1.0, remaining)
        await asyncio.sleep(step)
        remaining -= step


async def run(provider: Optional[str] = None, phone_id: Optional[int] = None, interval: float = 0) -> int:
    """Run sync once or in a loop. Returns the number of new messages stored."""
    signal.signal(signal.SIGTERM, handle_shutdown)
    signal.signal(signal.SIGINT, handle_shutdown)

    await init_db()
    service = RentalService()
    total_new = 0

    try:
        while True:
            if phone_id is not None:
                result = await service.sync_one(phone_id)
                total_new += result.new_messages
                if result.skipped:
                    logger.info(f"Phone {phone_id} skipped: {result.skipped}")
                else:
                    logger.info(f"Phone {phone_id}: {result.new_messages} new messages")
            else:
                report = await service.sync_all(provider)
                total_new += report.total_new_messages
                for failure in report.errors:
                    logger.warning(f"  {failure.provider} {failure.phone_number}: {failure.error}")

            if not interval or shutdown_requested:
                break
            await _sleep_until_next(interval)
            if shutdown_requested:
                break
    finally:
        await close_db()

    logger.success(f"Sync stopped. Total: {total_new} new messages")
    return total_new


def main():
    parser = argparse.ArgumentParser(description="Sync inbound SMS for active rentals")
    parser.add_argument("--provider", type=str, choices=ALL_PROVIDERS, default=None, help="Only sync one provider")
    parser.add_argument("--phone-id", type=int, default=None, help="Sync a single phone_numbers row")
    parser.add_argument("--interval", type=float, default=0, help="Repeat every N seconds (0 = run once)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    args = parser.parse_args()

    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if args.verbose else "INFO", format="<level>{level: <8}</level> | {message}")

    asyncio.run(run(provider=args.provider, phone_id=args.phone_id, interval=args.interval))


if __name__ == "__main__":
    main()
