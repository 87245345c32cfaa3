"""Rentals repository - phone_numbers / phone_messages access."""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from db.client import queries, get_conn
from db.models.phone_message import PhoneMessage
from db.models.phone_number import PhoneNumber
from lib.providers.models import ProviderMessage


class IPhoneRepo(ABC):
    """Storage contract the rental core needs."""

    # =========================================================================
    # phone_numbers
    # =========================================================================

    @abstractmethod
    async def get_phone_number(self, phone_number_id: int) -> Optional[PhoneNumber]:
        pass

    @abstractmethod
    async def get_by_rent_id(self, rent_id: str, provider: Optional[str] = None) -> Optional[PhoneNumber]:
        pass

    @abstractmethod
    async def get_by_phone_number(self, phone_number: str) -> Optional[PhoneNumber]:
        """Active row for a number."""
        pass

    @abstractmethod
    async def get_active_phone_numbers(self, provider: Optional[str] = None) -> List[PhoneNumber]:
        pass

    @abstractmethod
    async def insert_phone_number(
        self,
        phone_number: str,
        provider: str,
        rent_id: Optional[str],
        service: str,
        country: str,
        end_date: Optional[datetime],
        status: str = "active",
        order_id: Optional[str] = None,
        order_booking_id: Optional[str] = None,
        external_url: Optional[str] = None,
    ) -> PhoneNumber:
        pass

    @abstractmethod
    async def update_status(self, phone_number_id: int, status: str) -> None:
        pass

    @abstractmethod
    async def update_resolved_booking(
        self,
        phone_number_id: int,
        order_id: str,
        booking_id: str,
        status: str,
        end_date: Optional[datetime],
    ) -> None:
        """Persist a resolved order/booking pair (booking id becomes rent_id)."""
        pass

    @abstractmethod
    async def touch_last_check(self, phone_number_id: int) -> None:
        pass

    @abstractmethod
    async def update_end_date(self, phone_number_id: int, end_date: datetime) -> None:
        pass

    @abstractmethod
    async def delete_by_rent_id(self, rent_id: str, provider: Optional[str] = None) -> None:
        pass

    # =========================================================================
    # phone_messages
    # =========================================================================

    @abstractmethod
    async def find_duplicate_message(
        self,
        phone_number_id: int,
        sender: str,
        message: str,
        received_at: Optional[datetime] = None,
        window_seconds: Optional[float] = None,
    ) -> bool:
        """Same sender+text stored, optionally within +/- window_seconds of received_at."""
        pass

    @abstractmethod
    async def insert_message(self, phone_number_id: int, message: ProviderMessage) -> int:
        pass

    @abstractmethod
    async def count_messages(self, phone_number_id: int) -> int:
        pass

    @abstractmethod
    async def get_messages(self, phone_number_id: int, limit: int = 50) -> List[PhoneMessage]:
        """Stored messages, newest first."""
        pass


class PhoneRepo(IPhoneRepo):
    """Postgres implementation via aiosql."""

    async def get_phone_number(self, phone_number_id: int) -> Optional[PhoneNumber]:
        async with get_conn() as conn:
            result = await queries.get_phone_number_by_id(conn, phone_number_id=phone_number_id)
            return PhoneNumber.model_validate(dict(result)) if result else None

    async def get_by_rent_id(self, rent_id: str, provider: Optional[str] = None) -> Optional[PhoneNumber]:
        async with get_conn() as conn:
            result = await queries.get_phone_number_by_rent_id(conn, rent_id=rent_id, provider=provider)
            return PhoneNumber.model_validate(dict(result)) if result else None

    async def get_by_phone_number(self, phone_number: str) -> Optional[PhoneNumber]:
        async with get_conn() as conn:
            result = await queries.get_phone_number_by_number(conn, phone_number=phone_number)
            return PhoneNumber.model_validate(dict(result)) if result else None

    async def get_active_phone_numbers(self, provider: Optional[str] = None) -> List[PhoneNumber]:
        async with get_conn() as conn:
            results = await queries.get_active_phone_numbers(conn, provider=provider)
            return [PhoneNumber.model_validate(dict(r)) for r in results]

    async def insert_phone_number(
        self,
        phone_number: str,
        provider: str,
        rent_id: Optional[str],
        service: str,
        country: str,
        end_date: Optional[datetime],
        status: str = "active",
        order_id: Optional[str] = None,
        order_booking_id: Optional[str] = None,
        external_url: Optional[str] = None,
    ) -> PhoneNumber:
        async with get_conn() as conn:
            result = await queries.insert_phone_number(
                conn,
                phone_number=phone_number,
                provider=provider,
                rent_id=rent_id,
                order_id=order_id,
                order_booking_id=order_booking_id,
                external_url=external_url,
                service=service,
                country=country,
                status=status,
                end_date=end_date,
            )
            return PhoneNumber.model_validate(dict(result))

    async def update_status(self, phone_number_id: int, status: str) -> None:
        async with get_conn() as conn:
            await queries.update_phone_number_status(conn, phone_number_id=phone_number_id, status=status)

    async def update_resolved_booking(
        self,
        phone_number_id: int,
        order_id: str,
        booking_id: str,
        status: str,
        end_date: Optional[datetime],
    ) -> None:
        async with get_conn() as conn:
            await queries.update_resolved_booking(
                conn,
                phone_number_id=phone_number_id,
                order_id=order_id,
                order_booking_id=booking_id,
                rent_id=booking_id,
                status=status,
                end_date=end_date,
            )

    async def touch_last_check(self, phone_number_id: int) -> None:
        async with get_conn() as conn:
            await queries.touch_last_message_check(conn, phone_number_id=phone_number_id)

    async def update_end_date(self, phone_number_id: int, end_date: datetime) -> None:
        async with get_conn() as conn:
            await queries.update_phone_number_end_date(conn, phone_number_id=phone_number_id, end_date=end_date)

    async def delete_by_rent_id(self, rent_id: str, provider: Optional[str] = None) -> None:
        async with get_conn() as conn:
            await queries.delete_phone_number_by_rent_id(conn, rent_id=rent_id, provider=provider)

    async def find_duplicate_message(
        self,
        phone_number_id: int,
        sender: str,
        message: str,
        received_at: Optional[datetime] = None,
        window_seconds: Optional[float] = None,
    ) -> bool:
        async with get_conn() as conn:
            if received_at is not None and window_seconds is not None:
                found = await queries.find_duplicate_message_within_window(
                    conn,
                    phone_number_id=phone_number_id,
                    sender=sender,
                    message=message,
                    received_at=received_at,
                    window_seconds=float(window_seconds),
                )
            else:
                found = await queries.find_duplicate_message(
                    conn, phone_number_id=phone_number_id, sender=sender, message=message,
                )
            return found is not None

    async def insert_message(self, phone_number_id: int, message: ProviderMessage) -> int:
        async with get_conn() as conn:
            return await queries.insert_phone_message(
                conn,
                phone_number_id=phone_number_id,
                sender=message.sender,
                message=message.message,
                received_at=message.received_at,
                message_source=message.source,
                raw=message.raw,
            )

    async def count_messages(self, phone_number_id: int) -> int:
        async with get_conn() as conn:
            result = await queries.count_phone_messages(conn, phone_number_id=phone_number_id)
            return int(result or 0)

    async def get_messages(self, phone_number_id: int, limit: int = 50) -> List[PhoneMessage]:
        async with get_conn() as conn:
            results = await queries.get_phone_messages(conn, phone_number_id=phone_number_id, limit=limit)
            return [PhoneMessage.model_validate(dict(r)) for r in results]


class MockPhoneRepo(IPhoneRepo):
    """In-memory repo for unit testing."""

    def __init__(self, phones: Optional[List[PhoneNumber]] = None):
        self.phones: dict[int, PhoneNumber] = {p.id: p for p in (phones or [])}
        self.messages: dict[int, List[ProviderMessage]] = {}
        self.touched: List[int] = []
        self._next_id = max(self.phones, default=0) + 1

    async def get_phone_number(self, phone_number_id: int) -> Optional[PhoneNumber]:
        return self.phones.get(phone_number_id)

    async def get_by_rent_id(self, rent_id: str, provider: Optional[str] = None) -> Optional[PhoneNumber]:
        for p in self.phones.values():
            if p.rent_id == rent_id and (provider is None or (p.provider or "sms_activate") == provider):
                return p
        return None

    async def get_by_phone_number(self, phone_number: str) -> Optional[PhoneNumber]:
        for p in self.phones.values():
            if p.phone_number == phone_number and p.is_active:
                return p
        return None

    async def get_active_phone_numbers(self, provider: Optional[str] = None) -> List[PhoneNumber]:
        return [
            p for p in self.phones.values()
            if p.is_active and (provider is None or (p.provider or "sms_activate") == provider)
        ]

    async def insert_phone_number(
        self,
        phone_number: str,
        provider: str,
        rent_id: Optional[str],
        service: str,
        country: str,
        end_date: Optional[datetime],
        status: str = "active",
        order_id: Optional[str] = None,
        order_booking_id: Optional[str] = None,
        external_url: Optional[str] = None,
    ) -> PhoneNumber:
        phone = PhoneNumber(
            id=self._next_id,
            phone_number=phone_number,
            provider=provider,
            rent_id=rent_id,
            order_id=order_id,
            order_booking_id=order_booking_id,
            external_url=external_url,
            service=service,
            country=country,
            status=status,
            end_date=end_date,
        )
        self.phones[phone.id] = phone
        self._next_id += 1
        return phone

    async def update_status(self, phone_number_id: int, status: str) -> None:
        self.phones[phone_number_id].status = status

    async def update_resolved_booking(
        self,
        phone_number_id: int,
        order_id: str,
        booking_id: str,
        status: str,
        end_date: Optional[datetime],
    ) -> None:
        phone = self.phones[phone_number_id]
        phone.order_id = order_id
        phone.order_booking_id = booking_id
        phone.rent_id = booking_id
        phone.status = status
        if end_date is not None:
            phone.end_date = end_date

    async def touch_last_check(self, phone_number_id: int) -> None:
        self.touched.append(phone_number_id)

    async def update_end_date(self, phone_number_id: int, end_date: datetime) -> None:
        self.phones[phone_number_id].end_date = end_date

    async def delete_by_rent_id(self, rent_id: str, provider: Optional[str] = None) -> None:
        for p in list(self.phones.values()):
            if p.rent_id == rent_id and (provider is None or (p.provider or "sms_activate") == provider):
                del self.phones[p.id]
                self.messages.pop(p.id, None)

    async def find_duplicate_message(
        self,
        phone_number_id: int,
        sender: str,
        message: str,
        received_at: Optional[datetime] = None,
        window_seconds: Optional[float] = None,
    ) -> bool:
        for m in self.messages.get(phone_number_id, []):
            if m.sender != sender or m.message != message:
                continue
            if received_at is None or window_seconds is None:
                return True
            if abs((m.received_at - received_at).total_seconds()) <= window_seconds:
                return True
        return False

    async def insert_message(self, phone_number_id: int, message: ProviderMessage) -> int:
        self.messages.setdefault(phone_number_id, []).append(message)
        return sum(len(v) for v in self.messages.values())

    async def count_messages(self, phone_number_id: int) -> int:
        return len(self.messages.get(phone_number_id, []))

    async def get_messages(self, phone_number_id: int, limit: int = 50) -> List[PhoneMessage]:
        stored = [
            PhoneMessage(
                id=i + 1,
                phone_number_id=phone_number_id,
                sender=m.sender,
                message=m.message,
                received_at=m.received_at,
                message_source=m.source,
                raw=m.raw,
            )
            for i, m in enumerate(self.messages.get(phone_number_id, []))
        ]
        stored.sort(key=lambda m: m.received_at, reverse=True)
        return stored[:limit]
