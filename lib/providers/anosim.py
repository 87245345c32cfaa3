"""Anosim REST API adapter.

Anosim separates an order (a purchase) from its order bookings (one phone
number each). Rentals are bought by product id; SMS, extension and cancel
address the booking id. Authentication is an `apikey` query parameter.
"""

import re
from datetime import timedelta
from typing import Any, Dict, List, Optional

from loguru import logger

from lib.providers.base import BaseProviderClient, ResponseShape, match_shape, rent_hours
from lib.providers.codes import ANOSIM_PRODUCT_ALIASES
from lib.providers.errors import ErrorKind, ProviderError
from lib.providers.models import (
    Ack,
    ActiveRental,
    Catalog,
    CatalogCountry,
    CatalogService,
    ProviderMessage,
    RentalResult,
    parse_timestamp,
    utcnow,
)


API_BASE_URL = "https://anosim.net/api/v1"

RENTAL_TYPES = ("RentalFull", "RentalService")

# Anosim does not report stock
DEFAULT_STOCK = 99

# Germany full-rental products are told apart by price: rent hours -> (min, max)
GERMANY_PRICE_BANDS = {
    4: (2, 4),
    24: (3.5, 4.5),
    168: (10, 12),
    720: (28, 32),
    2160: (58, 62),
    4320: (98, 102),
    8760: (148, 152),
}
DEFAULT_PRICE_BAND = (10, 12)


def _product_price(product: dict) -> float:
    try:
        return float(product.get("price") or 999)
    except (TypeError, ValueError):
        return 999.0


def select_product(products: List[dict], service: str, rent_time: str, service_name: Optional[str]) -> Optional[dict]:
    """Pick the rental product matching a service request.

    `service` is "full", "full_<country>" or a canonical service code whose
    product name is `service_name`.
    """
    rentals = [p for p in products if p.get("rentalType") in RENTAL_TYPES]

    if service == "full" or service.startswith("full_"):
        full = [p for p in rentals if p.get("rentalType") == "RentalFull"]
        if service == "full":
            return full[0] if full else None
        requested = service[len("full_"):].lower()
        country_products = [p for p in full if str(p.get("country", "")).lower() == requested]
        if not country_products:
            return None
        if requested == "germany":
            low, high = GERMANY_PRICE_BANDS.get(rent_hours(rent_time, default=168), DEFAULT_PRICE_BAND)
            for p in country_products:
                if low <= _product_price(p) <= high:
                    return p
        return country_products[0]

    if not service_name:
        return None
    wanted = service_name.lower()
    service_products = [p for p in rentals if p.get("rentalType") == "RentalService" and p.get("service")]
    for p in service_products:
        if wanted in p["service"].lower():
            return p
    for p in service_products:
        if p["service"].lower() in wanted:
            return p
    return None


def service_code_for_product(name: str, aliases: Dict[str, str]) -> str:
    """Canonical service code for an Anosim product name."""
    lowered = name.lower()
    for product_name, code in aliases.items():
        if product_name.lower() in lowered:
            return code
    return re.sub(r"[^a-z0-9]", "", lowered)[:8] or "ot"


# =============================================================================
# Response shapes
# =============================================================================

def _booking_number(booking: dict) -> str:
    sim = booking.get("simCard") or {}
    return str(booking.get("number") or sim.get("phoneNumber") or "").strip()


def _order_flat(order: Any) -> Optional[dict]:
    # {"id": 5, "number": "4915...", "orderId": 3}
    if isinstance(order, dict) and order.get("number") and order.get("id") is not None:
        return {
            "booking_id": str(order["id"]),
            "order_id": str(order.get("orderId") or order["id"]),
            "phone": str(order["number"]).strip(),
            "end": order.get("endDate"),
            "country": order.get("country"),
        }
    return None


def _order_with_bookings(order: Any) -> Optional[dict]:
    # {"id": 3, "orderBookings": [{"id": 5, "simCard": {"phoneNumber": "..."}}]}
    if not isinstance(order, dict):
        return None
    for booking in order.get("orderBookings") or []:
        phone = _booking_number(booking)
        if phone and booking.get("id") is not None:
            return {
                "booking_id": str(booking["id"]),
                "order_id": str(order.get("id") or booking.get("orderId") or booking["id"]),
                "phone": phone,
                "end": booking.get("endDate"),
                "country": booking.get("country"),
            }
    return None


ORDER_SHAPES = (
    ResponseShape("flat_booking", _order_flat),
    ResponseShape("order_bookings", _order_with_bookings),
)


def normalize_sms(payload: Any) -> List[ProviderMessage]:
    """Normalize /Sms items: {messageSender, messageText, messageDate}."""
    if isinstance(payload, dict):
        payload = payload.get("sms") or payload.get("messages") or []
    if not isinstance(payload, list):
        return []
    messages = []
    for item in payload:
        if not isinstance(item, dict):
            continue
        text = item.get("messageText") or item.get("message") or ""
        if not str(text).strip():
            continue
        sender = item.get("messageSender") or item.get("from") or "Unknown"
        received = parse_timestamp(item.get("messageDate") or item.get("receivedAt")) or utcnow()
        messages.append(ProviderMessage(sender=str(sender), message=str(text).strip(), received_at=received))
    return messages


class AnosimClient(BaseProviderClient):
    """Anosim API client.

    Usage:
        client = AnosimClient()
        rental = await client.rent("wa", country="43")
        orders = await client.get_orders()
    """

    name = "anosim"
    base_url = API_BASE_URL
    api_key_env = "ANOSIM_API_KEY"

    async def _api(
        self,
        method: str,
        path: str,
        params: Optional[dict] = None,
        json: Optional[dict] = None,
        idempotent: bool = True,
    ) -> Any:
        self._require_key()
        query = {"apikey": self.api_key}
        if params:
            query.update(params)
        return await self._call(method, path, params=query, json=json, label=f"{method} {path}", idempotent=idempotent)

    # =========================================================================
    # Raw endpoints
    # =========================================================================

    async def get_balance(self) -> float:
        payload = await self._api("GET", "/Balance")
        value = payload.get("accountBalanceInUSD", payload.get("balance")) if isinstance(payload, dict) else payload
        try:
            return float(value)
        except (TypeError, ValueError):
            raise self._error(ErrorKind.UNEXPECTED_RESPONSE, f"Unexpected balance response: {payload!r}")

    async def get_countries(self) -> List[dict]:
        payload = await self._api("GET", "/Countries")
        return payload if isinstance(payload, list) else []

    async def get_products(self, country_id: Optional[str] = None) -> List[dict]:
        params = {"countryId": country_id} if country_id else None
        payload = await self._api("GET", "/Products", params=params)
        return payload if isinstance(payload, list) else []

    async def create_order(self, product_id: str, amount: int = 1, provider_id: int = 0) -> Any:
        return await self._api(
            "POST", "/Orders",
            json={"productId": int(product_id), "amount": amount, "providerId": provider_id},
            idempotent=False,
        )

    async def get_current_bookings(self) -> List[dict]:
        payload = await self._api("GET", "/OrderBookingsCurrent")
        return payload if isinstance(payload, list) else []

    async def get_order_booking(self, booking_id: str) -> Optional[dict]:
        payload = await self._api("GET", f"/OrderBookings/{booking_id}")
        return payload if isinstance(payload, dict) else None

    async def get_orders(self) -> List[dict]:
        """All orders, each with its orderBookings."""
        payload = await self._api("GET", "/Orders")
        return payload if isinstance(payload, list) else []

    # =========================================================================
    # Catalog
    # =========================================================================

    async def get_catalog(self, rent_time: str = "4", operator: str = "any", country: str = "0") -> Catalog:
        self._require_key()
        key = (str(rent_time), str(operator), str(country))
        cached = self._cached_catalog(key)
        if cached:
            return cached

        countries: Dict[str, CatalogCountry] = {}
        try:
            for c in await self.get_countries():
                if c.get("id") is not None and c.get("country"):
                    code = str(c["id"])
                    countries[code] = CatalogCountry(code=code, name=c["country"])
        except ProviderError as e:
            if not e.retryable:
                raise
            logger.warning(f"[anosim] /Countries failed: {e}")

        country_id = self.translator.country_or_default(country)
        try:
            products = await self.get_products(country_id)
        except ProviderError as e:
            if not e.retryable:
                raise
            logger.warning(f"[anosim] /Products failed: {e}")
            products = []

        services = self._services_from_products(products)
        if not services:
            logger.warning("[anosim] no rental products, using curated fallback")
            catalog = self.translator.fallback_catalog()
            if countries:
                catalog.countries = countries
            return catalog

        if not countries:
            countries = self.translator.fallback_catalog().countries
        catalog = Catalog(provider=self.name, services=services, countries=countries)
        return self._store_catalog(key, catalog)

    def _services_from_products(self, products: List[dict]) -> Dict[str, CatalogService]:
        aliases = dict(ANOSIM_PRODUCT_ALIASES)
        aliases.update({name: code for code, name in self.translator.tables.services.items()})
        services: Dict[str, CatalogService] = {}
        for p in products:
            rental_type = p.get("rentalType")
            if rental_type == "RentalFull":
                country_name = str(p.get("country") or "unknown")
                code = f"full_{country_name.lower()}"
                name = f"Full {country_name} Rental"
            elif rental_type == "RentalService" and (p.get("service") or "").strip():
                name = p["service"].strip()
                code = service_code_for_product(name, aliases)
            else:
                continue
            price = _product_price(p)
            existing = services.get(code)
            if existing is None or price < existing.price:
                services[code] = CatalogService(code=code, name=name, price=price, count=DEFAULT_STOCK)
        return services

    # =========================================================================
    # Rentals
    # =========================================================================

    async def rent(self, service: str, rent_time: str = "4", operator: str = "any", country: str = "0") -> RentalResult:
        self._require_key()
        country_id = self.translator.country_or_default(country)
        products = await self.get_products(country_id)

        rentals = [p for p in products if p.get("rentalType") in RENTAL_TYPES]
        if not rentals:
            raise self._error(ErrorKind.NO_NUMBERS_AVAILABLE, f"No rental products for country {country_id}")

        service_name = self.translator.translate_service(service)
        product = select_product(rentals, service, rent_time, service_name)
        if not product:
            available = ", ".join(
                f"{p.get('rentalType')}:{p.get('service') or 'Full'}:{p.get('country')}" for p in rentals[:5]
            )
            raise self._error(
                ErrorKind.PRODUCT_NOT_FOUND,
                f"No rental product for service {service}. Available: {available}",
            )

        logger.info(f"[anosim] ordering product {product.get('id')} ({product.get('rentalType')} {product.get('service') or product.get('country')})")
        order = await self.create_order(str(product["id"]))

        matched = match_shape(ORDER_SHAPES, order)
        if matched:
            shape, booking = matched
        else:
            booking = await self._booking_from_current(order)
            shape = "current_bookings"

        end = parse_timestamp(booking.get("end"))
        if end is None and product.get("durationInMinutes"):
            end = utcnow() + timedelta(minutes=int(product["durationInMinutes"]))

        resolved_service = service
        if product.get("rentalType") == "RentalFull":
            resolved_service = f"full_{str(booking.get('country') or product.get('country') or '').lower()}"

        logger.success(f"[anosim] rented {booking['phone']} (booking {booking['booking_id']}, shape {shape})")
        return RentalResult(
            provider=self.name,
            booking_id=booking["booking_id"],
            phone_number=booking["phone"],
            order_id=booking["order_id"],
            service=resolved_service,
            country=country,
            expires_at=end,
            cost=_product_price(product) if product.get("price") is not None else None,
        )

    async def _booking_from_current(self, order: Any) -> dict:
        """Order came back with an id only: find the live booking it created.

        Bookings that name another order are skipped. More than one
        remaining candidate is an error rather than a guess.
        """
        if not isinstance(order, dict) or order.get("id") is None:
            raise self._error(ErrorKind.UNEXPECTED_RESPONSE, f"Order created but no booking returned: {order!r}")
        order_id = str(order["id"])
        now = utcnow()
        live = []
        for b in await self.get_current_bookings():
            if not isinstance(b, dict) or b.get("id") is None or not _booking_number(b):
                continue
            end = parse_timestamp(b.get("endDate"))
            if end is None or end > now:
                live.append(b)

        candidates = [b for b in live if str(b.get("orderId")) == order_id]
        if not candidates:
            candidates = [b for b in live if b.get("orderId") is None]
        if not candidates:
            raise self._error(ErrorKind.NO_NUMBERS_AVAILABLE, "Order created but no active phone number found")
        if len(candidates) > 1:
            ids = ", ".join(str(b["id"]) for b in candidates)
            raise self._error(
                ErrorKind.UNEXPECTED_RESPONSE,
                f"Order {order_id} matches several current bookings ({ids})",
            )

        b = candidates[0]
        return {
            "booking_id": str(b["id"]),
            "order_id": order_id,
            "phone": _booking_number(b),
            "end": b.get("endDate"),
            "country": b.get("country"),
        }

    async def get_messages(self, booking_id: str, page: int = 0, page_size: int = 10) -> List[ProviderMessage]:
        payload = await self._api("GET", f"/Sms/{booking_id}")
        return normalize_sms(payload)

    async def extend(self, booking_id: str, hours: int) -> Ack:
        payload = await self._api(
            "POST", "/OrderBookings",
            json={"orderBookingId": int(booking_id), "extentionInMinutes": int(hours) * 60},
            idempotent=False,
        )
        end = parse_timestamp(payload.get("endDate")) if isinstance(payload, dict) else None
        return Ack(
            provider=self.name,
            booking_id=booking_id,
            message=f"Rental extended by {hours} hours",
            expires_at=end,
            raw=payload,
        )

    async def cancel(self, booking_id: str) -> Ack:
        payload = await self._api("PATCH", f"/OrderBookings/{booking_id}")
        return Ack(provider=self.name, booking_id=booking_id, message="Booking cancelled", raw=payload)

    async def list_active(self) -> List[ActiveRental]:
        rentals = []
        for b in await self.get_current_bookings():
            phone = _booking_number(b)
            if b.get("id") is None or not phone:
                continue
            state = str(b.get("state") or "Active")
            rentals.append(ActiveRental(
                provider=self.name,
                booking_id=str(b["id"]),
                phone_number=phone,
                service=b.get("productName") or b.get("service"),
                status=state.lower(),
                expires_at=parse_timestamp(b.get("endTime") or b.get("endDate")),
                order_id=str(b["orderId"]) if b.get("orderId") is not None else None,
            ))
        return rentals