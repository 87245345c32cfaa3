"""SMSPVA rental API adapter.

All calls are GET https://smspva.com/api/rent.php?method=<name>&apikey=<key>.
Successful JSON responses carry {"status": 1, "data": ...}; failures carry
{"status": 0, "msg": "..."}. Rentals are sold in week/month units.
"""

import math
from datetime import timedelta
from typing import Any, Dict, List, Optional

from loguru import logger

from lib.providers.base import BaseProviderClient, ResponseShape, match_shape, rent_hours
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


API_BASE_URL = "https://smspva.com/api/rent.php"

# Countries queried one by one to assemble the service catalog
CATALOG_COUNTRIES = ("US", "DE", "UK", "RU", "FR")

NO_NUMBERS_PHRASES = ("no numbers available", "no numbers", "incorrect method")

# orders[].state
RENTAL_STATES = {
    0: "inactive",
    1: "active",
    2: "activating",
    -1: "invalid",
}

HOURS_PER_WEEK = 168
HOURS_PER_MONTH = 24 * 30


def rent_period(hours: int) -> tuple:
    """(dtype, dcount) for a create call: always whole weeks."""
    return "week", max(1, math.ceil(hours / HOURS_PER_WEEK))


def prolong_period(hours: int) -> tuple:
    """(dtype, dcount) for a prolong call."""
    if hours <= HOURS_PER_WEEK:
        return "week", max(1, math.ceil(hours / HOURS_PER_WEEK))
    return "month", math.ceil(hours / HOURS_PER_MONTH)


# =============================================================================
# Response shapes
# =============================================================================

def _booking_from_obj(obj: Any) -> Optional[Dict[str, Any]]:
    if not isinstance(obj, dict):
        return None
    pnumber = str(obj.get("pnumber") or obj.get("number") or "").strip()
    booking_id = obj.get("id")
    if not pnumber or booking_id in (None, ""):
        return None
    ccode = str(obj.get("ccode") or "").strip()
    return {
        "id": str(booking_id),
        "phone": f"{ccode}{pnumber}" if ccode else pnumber,
        "until": obj.get("until"),
    }


def _rent_data_object(payload: Any) -> Optional[Dict[str, Any]]:
    if isinstance(payload, dict) and payload.get("status") == 1:
        return _booking_from_obj(payload.get("data"))
    return None


def _rent_data_list(payload: Any) -> Optional[Dict[str, Any]]:
    if isinstance(payload, dict) and payload.get("status") == 1 and isinstance(payload.get("data"), list):
        for item in payload["data"]:
            booking = _booking_from_obj(item)
            if booking:
                return booking
    return None


def _rent_legacy_text(payload: Any) -> Optional[Dict[str, Any]]:
    # "id:phone"
    if isinstance(payload, str) and ":" in payload:
        booking_id, _, phone = payload.partition(":")
        if booking_id.strip() and phone.strip() and not payload.upper().startswith(("ERROR", "BAD_")):
            return {"id": booking_id.strip(), "phone": phone.strip(), "until": None}
    return None


RENT_SHAPES = (
    ResponseShape("data_object", _rent_data_object),
    ResponseShape("data_list", _rent_data_list),
    ResponseShape("legacy_text", _rent_legacy_text),
)


def _country_rows(payload: Any) -> Optional[List[dict]]:
    """getcountries rows; None when `data` is not a list."""
    data = payload.get("data")
    if data is None:
        return []
    if not isinstance(data, list):
        return None
    return [c for c in data if isinstance(c, dict)]


def _service_rows(payload: Any) -> Optional[List[dict]]:
    """getdata `data.services` rows; None when the nesting is wrong."""
    data = payload.get("data")
    if data is None:
        return []
    if not isinstance(data, dict):
        return None
    services = data.get("services") or []
    if not isinstance(services, list):
        return None
    return [s for s in services if isinstance(s, dict)]


def _normalize_sms(item: Any) -> Optional[ProviderMessage]:
    if not isinstance(item, dict):
        return None
    text = item.get("text") or item.get("message") or ""
    if not str(text).strip():
        return None
    sender = item.get("sender") or item.get("from") or "SMSPVA"
    received = parse_timestamp(item.get("date") or item.get("time")) or utcnow()
    return ProviderMessage(sender=str(sender), message=str(text).strip(), received_at=received)


def _sms_split_lists(payload: Any) -> Optional[List[dict]]:
    # {"status":1, "data": {"SmsList": [...], "OtherSms": [...]}}
    if not isinstance(payload, dict) or payload.get("status") != 1:
        return None
    data = payload.get("data")
    if not isinstance(data, dict) or not ("SmsList" in data or "OtherSms" in data):
        return None
    return list(data.get("SmsList") or []) + list(data.get("OtherSms") or [])


def _sms_data_array(payload: Any) -> Optional[List[dict]]:
    # {"status":1, "data": [...]}
    if isinstance(payload, dict) and payload.get("status") == 1 and isinstance(payload.get("data"), list):
        return list(payload["data"])
    return None


def _sms_top_level_array(payload: Any) -> Optional[List[dict]]:
    if isinstance(payload, list):
        return list(payload)
    return None


MESSAGE_SHAPES = (
    ResponseShape("split_lists", _sms_split_lists),
    ResponseShape("data_array", _sms_data_array),
    ResponseShape("top_level_array", _sms_top_level_array),
)


def normalize_messages(payload: Any) -> List[ProviderMessage]:
    """Normalize any known SMSPVA message payload into ProviderMessages."""
    matched = match_shape(MESSAGE_SHAPES, payload)
    if not matched:
        return []
    _, items = matched
    messages = []
    for item in items:
        msg = _normalize_sms(item)
        if msg:
            messages.append(msg)
    return messages


class SmspvaClient(BaseProviderClient):
    """SMSPVA rental API client.

    Usage:
        client = SmspvaClient()
        rental = await client.rent("opt1", rent_time="168", country="DE")
        messages = await client.get_messages(rental.booking_id)
    """

    name = "smspva"
    base_url = API_BASE_URL
    api_key_env = "SMSPVA_API_KEY"

    async def _method(self, method: str, idempotent: bool = True, **params) -> Any:
        self._require_key()
        query = {"method": method, "apikey": self.api_key}
        query.update({k: v for k, v in params.items() if v is not None})
        return await self._call("GET", params=query, label=method, idempotent=idempotent)

    def _status_error(self, payload: Any, action: str) -> ProviderError:
        msg = payload.get("msg") if isinstance(payload, dict) else payload
        return self._error(ErrorKind.API_ERROR, f"{action} failed: {msg or 'unknown'}")

    # =========================================================================
    # Balance / catalog
    # =========================================================================

    async def get_balance(self) -> float:
        payload = await self._method("balance")
        if isinstance(payload, dict) and payload.get("status") == 1:
            data = payload.get("data")
            value = data.get("balance") if isinstance(data, dict) else data
            try:
                return float(value)
            except (TypeError, ValueError):
                pass
        raise self._error(ErrorKind.UNEXPECTED_RESPONSE, f"Unexpected balance response: {payload!r}")

    async def get_catalog(self, rent_time: str = "4", operator: str = "any", country: str = "0") -> Catalog:
        self._require_key()
        key = (str(rent_time), str(operator), str(country))
        cached = self._cached_catalog(key)
        if cached:
            return cached

        countries: Dict[str, CatalogCountry] = {}
        try:
            payload = await self._method("getcountries")
            if isinstance(payload, dict) and payload.get("status") == 1:
                rows = _country_rows(payload)
                if rows is None:
                    raise self._error(ErrorKind.UNEXPECTED_RESPONSE, f"Unexpected getcountries data: {payload!r:.200}")
                for c in rows:
                    code = str(c.get("code") or "").strip()
                    name = str(c.get("name") or "").strip()
                    if code and name:
                        countries[code] = CatalogCountry(code=code, name=name)
        except ProviderError as e:
            logger.warning(f"[smspva] getcountries failed: {e}")

        services = await self._collect_services()

        if not services:
            logger.warning("[smspva] live catalog empty, using curated fallback")
            catalog = self.translator.fallback_catalog()
            if countries:
                catalog.countries = countries
            return catalog

        if not countries:
            countries = self.translator.fallback_catalog().countries
        catalog = Catalog(provider=self.name, services=services, countries=countries)
        logger.info(f"[smspva] catalog: {len(services)} services, {len(countries)} countries")
        return self._store_catalog(key, catalog)

    async def _collect_services(self) -> Dict[str, CatalogService]:
        """Merge per-country getdata results into one service map.

        An entry with stock replaces an earlier entry without stock.
        """
        merged: Dict[str, CatalogService] = {}
        for country in CATALOG_COUNTRIES:
            try:
                payload = await self._method("getdata", country=country)
            except ProviderError as e:
                if not e.retryable:
                    raise
                logger.debug(f"[smspva] getdata {country} failed: {e}")
                continue
            if not isinstance(payload, dict) or payload.get("status") != 1:
                continue
            rows = _service_rows(payload)
            if rows is None:
                logger.warning(f"[smspva] getdata {country}: unexpected data shape, skipped")
                continue
            for s in rows:
                code = s.get("service")
                if not code:
                    continue
                code = str(code)
                entry = CatalogService(
                    code=code,
                    name=str(s.get("name") or self.translator.service_name(code)).strip(),
                    price=_to_float(s.get("price_day")),
                    count=_to_int(s.get("count")),
                )
                existing = merged.get(code)
                if existing is None or (existing.count == 0 and entry.count > 0):
                    merged[code] = entry
        return merged

    async def check_service_availability(self, country: str, service: str) -> bool:
        """Whether getdata reports stock for a service in a country."""
        try:
            payload = await self._method("getdata", country=country)
        except ProviderError as e:
            logger.debug(f"[smspva] availability check failed: {e}")
            return False
        if not isinstance(payload, dict) or payload.get("status") != 1:
            return False
        for s in _service_rows(payload) or []:
            if s.get("service") == service:
                return _to_int(s.get("count")) > 0
        return False

    # =========================================================================
    # Rentals
    # =========================================================================

    async def rent(self, service: str, rent_time: str = "4", operator: str = "any", country: str = "0") -> RentalResult:
        self._require_key()
        native_country = self.translator.country_or_default(country)
        native_service = self.translator.service_or_default(service)
        hours = rent_hours(rent_time)
        dtype, dcount = rent_period(hours)

        logger.info(f"[smspva] renting {native_service} in {native_country} for {dcount} {dtype}(s)")
        payload = await self._method(
            "create",
            idempotent=False,
            dtype=dtype,
            dcount=dcount,
            country=native_country,
            service=native_service,
            provider=operator if operator and operator != "any" else None,
        )

        if isinstance(payload, str) and payload.upper().startswith(("ERROR", "BAD_")):
            raise self._error(ErrorKind.API_ERROR, f"Rental failed: {payload}")

        if isinstance(payload, dict) and payload.get("status") == 0:
            msg = str(payload.get("msg") or "")
            if any(p in msg.lower() for p in NO_NUMBERS_PHRASES):
                has_stock = await self.check_service_availability(native_country, native_service)
                if not has_stock:
                    raise self._error(
                        ErrorKind.NO_NUMBERS_AVAILABLE,
                        f"No numbers available for {native_service} in {native_country}",
                    )
            raise self._error(ErrorKind.API_ERROR, f"Rental failed: {msg or 'unknown error'}")

        matched = match_shape(RENT_SHAPES, payload)
        if not matched:
            raise self._error(ErrorKind.UNEXPECTED_RESPONSE, f"No phone number in rent response: {payload!r}")
        shape, booking = matched

        expires_at = parse_timestamp(booking["until"]) or utcnow() + timedelta(hours=dcount * HOURS_PER_WEEK)
        logger.success(f"[smspva] rented {booking['phone']} (id {booking['id']}, shape {shape})")
        return RentalResult(
            provider=self.name,
            booking_id=booking["id"],
            phone_number=booking["phone"],
            service=service,
            country=country,
            expires_at=expires_at,
        )

    async def get_messages(self, booking_id: str, page: int = 0, page_size: int = 10) -> List[ProviderMessage]:
        payload = await self._method("sms", id=booking_id)
        if isinstance(payload, dict) and payload.get("status") == 0:
            # status 0 here means an empty inbox
            return []
        return normalize_messages(payload)

    async def extend(self, booking_id: str, hours: int) -> Ack:
        dtype, dcount = prolong_period(int(hours))
        payload = await self._method("prolong", idempotent=False, id=booking_id, dtype=dtype, dcount=dcount)
        if isinstance(payload, dict) and payload.get("status") == 1:
            data = payload.get("data")
            until = parse_timestamp(data.get("until")) if isinstance(data, dict) else None
            return Ack(
                provider=self.name,
                booking_id=booking_id,
                message=f"Rental extended by {hours} hours",
                expires_at=until,
                raw=data,
            )
        raise self._status_error(payload, "Extension")

    async def cancel(self, booking_id: str) -> Ack:
        payload = await self._method("delete", id=booking_id)
        if isinstance(payload, dict) and payload.get("status") == 1:
            return Ack(provider=self.name, booking_id=booking_id, message="Rental cancelled")
        raise self._status_error(payload, "Cancel")

    async def list_active(self) -> List[ActiveRental]:
        payload = await self._method("orders")
        if not isinstance(payload, dict) or payload.get("status") != 1:
            return []
        data = payload.get("data")
        if not isinstance(data, list):
            return []
        rentals = []
        for item in data:
            booking = _booking_from_obj(item)
            if not booking:
                continue
            state = RENTAL_STATES.get(_to_int(item.get("state"), default=1), "unknown")
            rentals.append(ActiveRental(
                provider=self.name,
                booking_id=booking["id"],
                phone_number=booking["phone"],
                service=item.get("sname") or item.get("scode"),
                status=state,
                expires_at=parse_timestamp(item.get("until")),
                can_extend=bool(item.get("canprolong")) if "canprolong" in item else None,
                has_new_sms=bool(item.get("hasnewsms")) if "hasnewsms" in item else None,
            ))
        return rentals


def _to_float(value: Any, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _to_int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default
