"""Message sync engine.

Polls the owning provider for each active rental, drops messages that
are already stored and inserts the rest. Bulk sync runs small batches
concurrently with a pause in between; one number failing never stops
the batch.
"""

import asyncio
import os
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional

from loguru import logger

from db.models.phone_number import PhoneNumber
from lib.providers.errors import ErrorKind, ProviderError, kind_for_status
from lib.providers.models import ProviderMessage
from lib.providers.registry import ANOSIM, DEFAULT_PROVIDER, RECEIVE_SMS_ONLINE, ProviderRegistry
from lib.receive_sms.parser import SCRAPING_SOURCE
from lib.receive_sms.scraper import ReceiveSmsScraper
from services.rentals.repo import IPhoneRepo
from services.rentals.resolver import RentalResolver


BATCH_SIZE = int(os.getenv("SMS_SYNC_BATCH_SIZE", "5"))
BATCH_DELAY = float(os.getenv("SMS_SYNC_BATCH_DELAY", "2.0"))

# Scraped messages with a full page timestamp are matched within this many
# seconds; inferred timestamps drift between polls and use exact text dedup.
DEDUP_WINDOW_SECONDS = 60.0


@dataclass
class SyncResult:
    """Outcome of syncing one rental."""
    phone_number_id: int
    new_messages: int = 0
    # set when the rental was not polled (e.g. booking no longer active)
    skipped: Optional[str] = None


@dataclass
class SyncFailure:
    phone_number_id: int
    phone_number: str
    provider: str
    error: str
    kind: Optional[str] = None


@dataclass
class SyncReport:
    total_numbers: int = 0
    total_new_messages: int = 0
    results: List[SyncResult] = field(default_factory=list)
    errors: List[SyncFailure] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return len(self.results)


class MessageSyncEngine:
    """Pulls inbound messages for stored rentals into phone_messages."""

    def __init__(
        self,
        repo: IPhoneRepo,
        registry: Optional[ProviderRegistry] = None,
        scraper: Optional[ReceiveSmsScraper] = None,
        resolver: Optional[RentalResolver] = None,
        batch_size: int = BATCH_SIZE,
        batch_delay: float = BATCH_DELAY,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._repo = repo
        self._registry = registry or ProviderRegistry()
        self._scraper = scraper
        self._resolver = resolver
        self.batch_size = max(1, batch_size)
        self.batch_delay = batch_delay
        self._sleep = sleep

    @property
    def scraper(self) -> ReceiveSmsScraper:
        if self._scraper is None:
            self._scraper = ReceiveSmsScraper()
        return self._scraper

    @property
    def resolver(self) -> RentalResolver:
        if self._resolver is None:
            self._resolver = RentalResolver(self._registry.get(ANOSIM), self._repo)
        return self._resolver

    # =========================================================================
    # Fetch
    # =========================================================================

    async def _scrape(self, phone: PhoneNumber) -> List[ProviderMessage]:
        if not phone.external_url:
            raise ProviderError(ErrorKind.NOT_FOUND, "No inbox URL stored", provider=RECEIVE_SMS_ONLINE)
        result = await self.scraper.scrape_messages(phone.external_url)
        if not result.success:
            status = result.debug_info.http_status
            kind = kind_for_status(status) if status and status >= 400 else ErrorKind.CONNECTION_ERROR
            tried = ", ".join(result.debug_info.strategies_tried) or "none"
            raise ProviderError(kind, f"{result.error} (tried: {tried})", provider=RECEIVE_SMS_ONLINE, status_code=status)
        return result.messages

    async def _booking_id(self, phone: PhoneNumber, provider: str) -> Optional[str]:
        """Booking id to poll with, or None if the rental must not be polled."""
        if provider == ANOSIM and not phone.order_booking_id:
            info = await self.resolver.resolve_and_persist(phone)
            return info.booking_id if info.is_active else None
        if not phone.rent_id:
            raise ProviderError(ErrorKind.NOT_FOUND, f"No booking id stored for {phone.phone_number}", provider=provider)
        return phone.rent_id

    # =========================================================================
    # Store
    # =========================================================================

    async def _is_duplicate(self, phone_number_id: int, message: ProviderMessage) -> bool:
        if message.source == SCRAPING_SOURCE and message.exact_time:
            return await self._repo.find_duplicate_message(
                phone_number_id,
                message.sender,
                message.message,
                received_at=message.received_at,
                window_seconds=DEDUP_WINDOW_SECONDS,
            )
        return await self._repo.find_duplicate_message(phone_number_id, message.sender, message.message)

    async def store_messages(self, phone_number_id: int, messages: List[ProviderMessage]) -> int:
        """Insert messages that are not already stored. Returns the number inserted."""
        inserted = 0
        for message in messages:
            if not message.sender or not message.message:
                continue
            # sequential check-then-insert also dedups within one batch
            if await self._is_duplicate(phone_number_id, message):
                continue
            await self._repo.insert_message(phone_number_id, message)
            inserted += 1
        return inserted

    # =========================================================================
    # Sync
    # =========================================================================

    async def sync_phone(self, phone: PhoneNumber) -> SyncResult:
        provider = phone.provider or DEFAULT_PROVIDER
        if not phone.is_active:
            logger.debug(f"Skipping {phone.phone_number}: status {phone.status}")
            return SyncResult(phone_number_id=phone.id, skipped=f"Rental is {phone.status}")

        if provider == RECEIVE_SMS_ONLINE:
            messages = await self._scrape(phone)
        else:
            booking_id = await self._booking_id(phone, provider)
            if booking_id is None:
                logger.warning(f"[{provider}] booking for {phone.phone_number} is no longer active")
                return SyncResult(phone_number_id=phone.id, skipped="Booking is not active")
            messages = await self._registry.get(provider).get_messages(booking_id)

        new_count = await self.store_messages(phone.id, messages)
        await self._repo.touch_last_check(phone.id)
        if new_count:
            logger.success(f"[{provider}] {phone.phone_number}: {new_count} new messages")
        else:
            logger.debug(f"[{provider}] {phone.phone_number}: no new messages")
        return SyncResult(phone_number_id=phone.id, new_messages=new_count)

    async def sync_one(self, phone_number_id: int) -> SyncResult:
        phone = await self._repo.get_phone_number(phone_number_id)
        if phone is None:
            raise ValueError(f"Phone number {phone_number_id} not found")
        return await self.sync_phone(phone)

    async def sync_all(self, provider: Optional[str] = None) -> SyncReport:
        """Sync every active rental (optionally one provider) in batches."""
        phones = await self._repo.get_active_phone_numbers(provider)
        report = SyncReport(total_numbers=len(phones))
        if not phones:
            logger.info("No active phone numbers to sync")
            return report

        logger.info(f"Syncing {len(phones)} numbers in batches of {self.batch_size}")
        for start in range(0, len(phones), self.batch_size):
            if start:
                await self._sleep(self.batch_delay)
            batch = phones[start:start + self.batch_size]
            outcomes = await asyncio.gather(*(self.sync_phone(p) for p in batch), return_exceptions=True)
            for phone, outcome in zip(batch, outcomes):
                if isinstance(outcome, BaseException):
                    if not isinstance(outcome, Exception):
                        raise outcome
                    kind = outcome.kind.value if isinstance(outcome, ProviderError) else None
                    logger.warning(f"Sync failed for {phone.phone_number}: {outcome}")
                    report.errors.append(SyncFailure(
                        phone_number_id=phone.id,
                        phone_number=phone.phone_number,
                        provider=phone.provider or DEFAULT_PROVIDER,
                        error=str(outcome),
                        kind=kind,
                    ))
                else:
                    report.results.append(outcome)
                    report.total_new_messages += outcome.new_messages

        logger.info(
            f"Sync complete: {report.succeeded}/{report.total_numbers} numbers, "
            f"{report.total_new_messages} new messages, {len(report.errors)} errors"
        )
        return report
