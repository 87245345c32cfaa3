#!/usr/bin/env python3
"""
Rentals CLI

Manual rental operations against one provider.

Usage:
    python workflows/rentals.py catalog --provider smspva
    python workflows/rentals.py rent --provider smspva --service opt1 --country DE
    python workflows/rentals.py status --provider smspva --booking-id 123
    python workflows/rentals.py extend --provider anosim --booking-id 55 --hours 24
    python workflows/rentals.py cancel --provider sms_activate --booking-id 987
    python workflows/rentals.py reconcile --provider gogetsms
    python workflows/rentals.py messages --phone-id 42
    python workflows/rentals.py balance
"""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

import argparse
import asyncio

from loguru import logger

from db.client import init_db, close_db
from lib.providers.errors import ProviderError
from lib.providers.registry import ADAPTER_CLASSES, SMS_ACTIVATE, ProviderRegistry
from services.rentals.service import RentalService


async def show_catalog(service: RentalService, args) -> None:
    catalog = await service.list_catalog(args.provider, rent_time=args.rent_time, country=args.country)
    logger.info(f"{args.provider} catalog ({catalog.source}): {len(catalog.services)} services, {len(catalog.countries)} countries")
    for svc in sorted(catalog.services.values(), key=lambda s: s.name):
        logger.info(f"  {svc.code:<12} {svc.name:<24} {svc.price:>7.2f} {svc.currency}  stock {svc.count}")
    for country in catalog.countries.values():
        logger.info(f"  country {country.code:<6} {country.name}")


async def show_balances(registry: ProviderRegistry) -> None:
    for tag in ADAPTER_CLASSES:
        adapter = registry.get(tag)
        if not adapter.is_available():
            logger.info(f"  {tag:<14} not configured")
            continue
        try:
            balance = await adapter.get_balance()
            logger.info(f"  {tag:<14} {balance:.2f}")
        except ProviderError as e:
            logger.warning(f"  {tag:<14} {e}")


async def run(args) -> None:
    registry = ProviderRegistry()
    if args.command == "balance":
        await show_balances(registry)
        return
    if args.command == "catalog":
        await show_catalog(RentalService(registry=registry), args)
        return

    await init_db()
    service = RentalService(registry=registry)
    try:
        if args.command == "rent":
            phone = await service.rent(
                args.provider, args.service, rent_time=args.rent_time,
                country=args.country, operator=args.operator,
            )
            logger.success(f"Rented {phone.phone_number} (booking {phone.rent_id}, until {phone.end_date})")
        elif args.command == "status":
            messages = await service.get_status(args.provider, args.booking_id)
            logger.info(f"{len(messages)} messages")
            for m in messages:
                code = f" [code {m.code}]" if m.code else ""
                logger.info(f"  {m.received_at:%Y-%m-%d %H:%M:%S} {m.sender}: {m.message}{code}")
        elif args.command == "extend":
            ack = await service.extend(args.provider, args.booking_id, args.hours)
            logger.success(f"{ack.message} (until {ack.expires_at})")
        elif args.command == "cancel":
            ack = await service.cancel(args.provider, args.booking_id)
            if ack.success:
                logger.success(ack.message or "Cancelled")
            else:
                logger.warning(f"Upstream cancel failed, local row removed: {ack.message}")
        elif args.command == "reconcile":
            result = await service.reconcile(args.provider)
            logger.success(
                f"{result.provider}: {result.upstream_active} active upstream, "
                f"{result.inserted} inserted, {result.already_known} already known"
            )
        elif args.command == "messages":
            stored = await service.get_stored_messages(args.phone_id, limit=args.limit)
            logger.info(f"{len(stored)} stored messages for row {args.phone_id}")
            for m in stored:
                logger.info(f"  {m.received_at:%Y-%m-%d %H:%M:%S} [{m.message_source}] {m.sender}: {m.message}")
    except (ProviderError, ValueError) as e:
        logger.error(str(e))
        raise SystemExit(1)
    finally:
        await close_db()


def main():
    parser = argparse.ArgumentParser(description="Rental operations")
    parser.add_argument("command", choices=["catalog", "rent", "status", "extend", "cancel", "reconcile", "messages", "balance"])
    parser.add_argument("--provider", type=str, choices=list(ADAPTER_CLASSES), default=SMS_ACTIVATE)
    parser.add_argument("--service", type=str, default="ot", help="Service code")
    parser.add_argument("--country", type=str, default="0", help="Country code (canonical id or ISO)")
    parser.add_argument("--operator", type=str, default="any")
    parser.add_argument("--rent-time", type=str, default="4", help="Rental length in hours")
    parser.add_argument("--booking-id", type=str, help="Provider booking id")
    parser.add_argument("--hours", type=int, default=4, help="Hours to extend by")
    parser.add_argument("--phone-id", type=int, help="Local phone_numbers row id")
    parser.add_argument("--limit", type=int, default=20)
    args = parser.parse_args()

    if args.command in ("status", "extend", "cancel") and not args.booking_id:
        parser.error("--booking-id is required")
    if args.command == "messages" and not args.phone_id:
        parser.error("--phone-id is required")

    logger.remove()
    logger.add(sys.stderr, level="INFO", format="<level>{level: <8}</level> | {message}")

    asyncio.run(run(args))


if __name__ == "__main__":
    main()
