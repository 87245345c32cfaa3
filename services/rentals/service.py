"""Rental service.

Single entry point for the controller layer and scheduled jobs: rent,
poll, cancel and extend through the provider adapters, and keep the
phone_numbers / phone_messages tables in step with what the providers
report. Uses dependency injection for repo, registry and sync engine.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, List, Optional

from loguru import logger

from db.models.phone_message import PhoneMessage
from db.models.phone_number import PhoneNumber
from lib.providers.base import IProviderAdapter, rent_hours
from lib.providers.errors import ProviderError, is_already_inactive
from lib.providers.gogetsms import parse_webhook_payload
from lib.providers.models import Ack, Catalog, ProviderMessage, utcnow
from lib.providers.registry import ANOSIM, GOGETSMS, RECEIVE_SMS_ONLINE, ProviderRegistry
from services.rentals.repo import IPhoneRepo, PhoneRepo
from services.rentals.sync import MessageSyncEngine, SyncReport, SyncResult


# Lifetime assumed for rentals discovered upstream without an end date
RECONCILE_DEFAULT_HOURS = 4

# ActiveRental.status values that mean the rental is over
INACTIVE_STATES = {"inactive", "invalid", "expired", "cancelled", "finished", "closed"}


@dataclass
class ReconcileResult:
    """Result of reconciling provider rentals with local rows."""
    provider: str
    upstream_active: int
    inserted: int
    already_known: int


@dataclass
class WebhookResult:
    accepted: bool
    new_messages: int = 0
    phone_number_id: Optional[int] = None
    reason: Optional[str] = None


class IRentalService(ABC):
    """Interface for the rental service."""

    @abstractmethod
    async def rent(
        self,
        provider: str,
        service: str,
        rent_time: str = "4",
        country: str = "0",
        operator: str = "any",
    ) -> PhoneNumber:
        """Rent a number and store it."""
        pass

    @abstractmethod
    async def get_status(
        self,
        provider: str,
        booking_id: str,
        page: int = 0,
        page_size: int = 10,
    ) -> List[ProviderMessage]:
        """Current messages for a booking; new ones are stored."""
        pass

    @abstractmethod
    async def cancel(self, provider: str, booking_id: str) -> Ack:
        """Cancel upstream and drop the local row."""
        pass

    @abstractmethod
    async def extend(self, provider: str, booking_id: str, hours: int) -> Ack:
        """Extend a rental."""
        pass

    @abstractmethod
    async def sync_one(self, phone_number_id: int) -> SyncResult:
        """Sync one stored rental."""
        pass

    @abstractmethod
    async def sync_all(self, provider: Optional[str] = None) -> SyncReport:
        """Sync all active rentals."""
        pass

    @abstractmethod
    async def list_catalog(
        self,
        provider: str,
        rent_time: str = "4",
        operator: str = "any",
        country: str = "0",
    ) -> Catalog:
        """Services and countries a provider sells."""
        pass


class RentalService(IRentalService):
    """Implementation of the rental service."""

    def __init__(
        self,
        repo: Optional[IPhoneRepo] = None,
        registry: Optional[ProviderRegistry] = None,
        engine: Optional[MessageSyncEngine] = None,
    ):
        self._repo = repo or PhoneRepo()
        self._registry = registry or ProviderRegistry()
        self._engine = engine or MessageSyncEngine(self._repo, registry=self._registry)

    def _adapter(self, provider: str) -> IProviderAdapter:
        try:
            return self._registry.get(provider)
        except KeyError:
            raise ValueError(f"Provider {provider!r} does not support this operation")

    # =========================================================================
    # Rentals
    # =========================================================================

    async def rent(
        self,
        provider: str,
        service: str,
        rent_time: str = "4",
        country: str = "0",
        operator: str = "any",
    ) -> PhoneNumber:
        adapter = self._adapter(provider)
        result = await adapter.rent(service, rent_time=rent_time, operator=operator, country=country)

        # a recycled number may still have an old active row
        existing = await self._repo.get_by_phone_number(result.phone_number)
        if existing:
            logger.warning(f"{result.phone_number} already active as row {existing.id}, marking it expired")
            await self._repo.update_status(existing.id, "expired")

        end_date = result.expires_at or utcnow() + timedelta(hours=rent_hours(rent_time))
        phone = await self._repo.insert_phone_number(
            phone_number=result.phone_number,
            provider=provider,
            rent_id=result.booking_id,
            service=result.service,
            country=result.country,
            end_date=end_date,
            order_id=result.order_id,
            order_booking_id=result.booking_id if provider == ANOSIM else None,
        )
        logger.success(f"[{provider}] stored rental {phone.phone_number} (row {phone.id}, booking {phone.rent_id})")
        return phone

    async def get_status(
        self,
        provider: str,
        booking_id: str,
        page: int = 0,
        page_size: int = 10,
    ) -> List[ProviderMessage]:
        adapter = self._adapter(provider)
        messages = await adapter.get_messages(booking_id, page=page, page_size=page_size)
        phone = await self._repo.get_by_rent_id(booking_id, provider)
        if phone:
            new_count = await self._engine.store_messages(phone.id, messages)
            if new_count:
                logger.info(f"[{provider}] stored {new_count} new messages for {phone.phone_number}")
        return messages

    async def cancel(self, provider: str, booking_id: str) -> Ack:
        """Cancel a rental.

        The local row is removed whatever the upstream outcome. Failures
        that mean the rental is already gone upstream count as success.
        Scraped inboxes have no upstream rental, only the row is removed.
        """
        if provider == RECEIVE_SMS_ONLINE:
            await self._repo.delete_by_rent_id(booking_id, provider)
            logger.info(f"[{provider}] removed scraped inbox {booking_id}")
            return Ack(provider=provider, booking_id=booking_id, message="Scraped inbox removed")

        adapter = self._adapter(provider)
        try:
            ack = await adapter.cancel(booking_id)
        except ProviderError as e:
            if is_already_inactive(e):
                logger.info(f"[{provider}] {booking_id} already inactive upstream ({e.kind.value})")
                ack = Ack(provider=provider, booking_id=booking_id, message="Rental was already inactive")
            else:
                logger.warning(f"[{provider}] cancel of {booking_id} failed upstream: {e}")
                ack = Ack(provider=provider, booking_id=booking_id, success=False, message=str(e))
        await self._repo.delete_by_rent_id(booking_id, provider)
        return ack

    async def extend(self, provider: str, booking_id: str, hours: int) -> Ack:
        adapter = self._adapter(provider)
        ack = await adapter.extend(booking_id, hours)
        phone = await self._repo.get_by_rent_id(booking_id, provider)
        if phone:
            end_date = ack.expires_at or (phone.end_date or utcnow()) + timedelta(hours=hours)
            await self._repo.update_end_date(phone.id, end_date)
            ack.expires_at = end_date
        return ack

    async def list_catalog(
        self,
        provider: str,
        rent_time: str = "4",
        operator: str = "any",
        country: str = "0",
    ) -> Catalog:
        return await self._adapter(provider).get_catalog(rent_time=rent_time, operator=operator, country=country)

    async def get_balance(self, provider: str) -> float:
        return await self._adapter(provider).get_balance()

    async def get_stored_messages(self, phone_number_id: int, limit: int = 50) -> List[PhoneMessage]:
        phone = await self._repo.get_phone_number(phone_number_id)
        if phone is None:
            raise ValueError(f"Phone number {phone_number_id} not found")
        return await self._repo.get_messages(phone_number_id, limit=limit)

    # =========================================================================
    # Sync
    # =========================================================================

    async def sync_one(self, phone_number_id: int) -> SyncResult:
        return await self._engine.sync_one(phone_number_id)

    async def sync_all(self, provider: Optional[str] = None) -> SyncReport:
        return await self._engine.sync_all(provider)

    async def reconcile(self, provider: str) -> ReconcileResult:
        """Insert rentals the provider reports as active but we have no row for."""
        adapter = self._adapter(provider)
        rentals = await adapter.list_active()
        inserted = 0
        known = 0
        for rental in rentals:
            if rental.status in INACTIVE_STATES:
                continue
            if await self._repo.get_by_rent_id(rental.booking_id, provider) or \
                    await self._repo.get_by_phone_number(rental.phone_number):
                known += 1
                continue
            await self._repo.insert_phone_number(
                phone_number=rental.phone_number,
                provider=provider,
                rent_id=rental.booking_id,
                service="unknown",
                country="0",
                end_date=rental.expires_at or utcnow() + timedelta(hours=RECONCILE_DEFAULT_HOURS),
                order_id=rental.order_id,
                order_booking_id=rental.booking_id if provider == ANOSIM else None,
            )
            inserted += 1
            logger.info(f"[{provider}] reconciled missing rental {rental.phone_number}")
        return ReconcileResult(
            provider=provider,
            upstream_active=len(rentals),
            inserted=inserted,
            already_known=known,
        )

    async def ingest_webhook(self, provider: str, payload: Any) -> WebhookResult:
        """Store a pushed message. Unknown numbers are acknowledged and ignored."""
        if provider != GOGETSMS:
            raise ValueError(f"Provider {provider!r} does not send webhooks")
        parsed = parse_webhook_payload(payload)
        if parsed is None:
            raise ValueError("Webhook payload is missing id, phone or text")

        phone = await self._repo.get_by_rent_id(parsed["booking_id"], provider) or \
            await self._repo.get_by_phone_number(parsed["phone_number"])
        if phone is None:
            logger.warning(f"[{provider}] webhook for unknown number {parsed['phone_number']}")
            return WebhookResult(accepted=True, reason="Phone number not found")

        new_count = await self._engine.store_messages(phone.id, [parsed["message"]])
        return WebhookResult(accepted=True, new_messages=new_count, phone_number_id=phone.id)
