"""Order -> booking resolution for providers that split the two (Anosim).

An Anosim order is a purchase; each of its orderBookings is one phone
number with its own SMS stream. Rentals stored with only an order id (or
a stale id) are matched by phone number against the live order list and
the booking id is written back, so later polls use it directly.
"""

import re
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from loguru import logger

from db.models.phone_number import PhoneNumber
from lib.providers.anosim import AnosimClient
from lib.providers.errors import ResolveError
from lib.providers.models import parse_timestamp, utcnow
from services.rentals.repo import IPhoneRepo


@dataclass
class BookingInfo:
    order_id: str
    booking_id: str
    phone_number: str
    is_active: bool
    end_date: Optional[datetime] = None


def _digits(number: str) -> str:
    return re.sub(r"\D", "", number or "")


def _booking_is_active(booking: dict, end_date: Optional[datetime]) -> bool:
    state = booking.get("state")
    if state:
        return str(state).lower() == "active"
    return end_date is None or end_date > utcnow()


class RentalResolver:
    """Resolve and persist Anosim booking ids."""

    def __init__(self, adapter: AnosimClient, repo: IPhoneRepo):
        self._adapter = adapter
        self._repo = repo

    async def resolve(self, phone_number: str, stored_order_id: Optional[str] = None) -> BookingInfo:
        """Find the booking that delivered `phone_number`.

        Raises ResolveError when nothing matches or several bookings match
        and neither the stored order id nor booking state singles one out.
        """
        wanted = _digits(phone_number)
        if not wanted:
            raise ResolveError(f"Cannot resolve empty phone number {phone_number!r}", provider=self._adapter.name)

        candidates: List[BookingInfo] = []
        for order in await self._adapter.get_orders():
            if not isinstance(order, dict):
                continue
            for booking in order.get("orderBookings") or []:
                if not isinstance(booking, dict) or booking.get("id") is None:
                    continue
                sim = booking.get("simCard") or {}
                number = str(sim.get("phoneNumber") or booking.get("number") or "")
                if _digits(number) != wanted:
                    continue
                end_date = parse_timestamp(booking.get("endDate"))
                candidates.append(BookingInfo(
                    order_id=str(order.get("id") or booking.get("orderId") or ""),
                    booking_id=str(booking["id"]),
                    phone_number=phone_number,
                    is_active=_booking_is_active(booking, end_date),
                    end_date=end_date,
                ))

        if stored_order_id and len(candidates) > 1:
            in_order = [c for c in candidates if c.order_id == str(stored_order_id)]
            candidates = in_order or candidates
        if len(candidates) > 1:
            active = [c for c in candidates if c.is_active]
            candidates = active or candidates

        if not candidates:
            raise ResolveError(f"No booking found for {phone_number}", provider=self._adapter.name)
        if len(candidates) > 1:
            ids = ", ".join(c.booking_id for c in candidates)
            raise ResolveError(f"Ambiguous bookings for {phone_number}: {ids}", provider=self._adapter.name)

        info = candidates[0]
        logger.debug(f"Resolved {phone_number} -> order {info.order_id}, booking {info.booking_id}")
        return info

    async def resolve_and_persist(self, phone: PhoneNumber) -> BookingInfo:
        """Resolve a stored rental and write the booking id back.

        Inactive bookings are persisted as `expired`.
        """
        info = await self.resolve(phone.phone_number, stored_order_id=phone.order_id)
        status = "active" if info.is_active else "expired"
        await self._repo.update_resolved_booking(
            phone.id,
            order_id=info.order_id,
            booking_id=info.booking_id,
            status=status,
            end_date=info.end_date,
        )
        logger.info(f"Stored booking {info.booking_id} for {phone.phone_number} ({status})")
        return info
