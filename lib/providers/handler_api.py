"""Shared client for handler_api.php style providers.

SMS-Activate and GoGetSMS expose the same dialect: every call is
GET <base>?api_key=<key>&action=<name>&..., errors come back as bare
tokens ("BAD_KEY", "NO_NUMBERS") or {"status": "error", "message": ...}
and successful rental calls return {"status": "success", ...}.
"""

from typing import Any, Dict, List, Optional

from loguru import logger

from lib.providers.base import BaseProviderClient, ResponseShape, match_shape, rent_hours
from lib.providers.errors import ErrorKind, ProviderError, classify_token
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


# setRentStatus code for cancellation
STATUS_CANCEL = "2"


def _values(payload: Any) -> List[dict]:
    """`values` may be a list or an index-keyed object."""
    values = payload.get("values") if isinstance(payload, dict) else None
    if isinstance(values, dict):
        return [v for v in values.values() if isinstance(v, dict)]
    if isinstance(values, list):
        return [v for v in values if isinstance(v, dict)]
    return []


def _phone_object(payload: Any) -> Optional[dict]:
    # {"status": "success", "phone": {"id": 1, "endDate": "...", "number": 4477...}}
    if isinstance(payload, dict) and payload.get("status") == "success" and isinstance(payload.get("phone"), dict):
        phone = payload["phone"]
        number = str(phone.get("number") or "").strip()
        if number and phone.get("id") is not None:
            return {"id": str(phone["id"]), "phone": number, "end": phone.get("endDate"), "cost": phone.get("cost")}
    return None


def _flat_phone(payload: Any) -> Optional[dict]:
    # {"id": 1, "number": 4477..., "endDate": "..."}
    if isinstance(payload, dict) and payload.get("id") is not None and (payload.get("number") or payload.get("phone_number")):
        number = str(payload.get("number") or payload.get("phone_number")).strip()
        return {"id": str(payload["id"]), "phone": number, "end": payload.get("endDate"), "cost": payload.get("cost")}
    return None


RENT_SHAPES = (
    ResponseShape("phone_object", _phone_object),
    ResponseShape("flat_phone", _flat_phone),
)


def normalize_status(payload: Any) -> List[ProviderMessage]:
    """Normalize getRentStatus: {"status":"success","values":{"0":{phoneFrom,text,date}}}."""
    messages = []
    for item in _values(payload):
        text = item.get("text") or item.get("message") or ""
        if not str(text).strip():
            continue
        sender = item.get("phoneFrom") or item.get("sender") or "Unknown"
        received = parse_timestamp(item.get("date")) or utcnow()
        messages.append(ProviderMessage(sender=str(sender), message=str(text).strip(), received_at=received))
    return messages


class HandlerApiClient(BaseProviderClient):
    """Base for SMS-Activate compatible handler APIs."""

    async def _action(self, action: str, idempotent: bool = True, **params) -> Any:
        self._require_key()
        query = {"api_key": self.api_key, "action": action}
        query.update({k: v for k, v in params.items() if v is not None})
        payload = await self._call("GET", params=query, label=action, idempotent=idempotent)
        self._raise_for_payload(payload, action)
        return payload

    def _raise_for_payload(self, payload: Any, action: str) -> None:
        if isinstance(payload, str):
            error = classify_token(payload, provider=self.name)
            if error is not None:
                raise error
        if isinstance(payload, dict) and payload.get("status") == "error":
            message = str(payload.get("message") or payload.get("error") or "Unknown API error")
            error = classify_token(message, provider=self.name)
            if error is not None:
                raise error
            raise self._error(ErrorKind.API_ERROR, f"{action}: {message}", upstream_code=message)

    # =========================================================================
    # Balance / catalog
    # =========================================================================

    async def get_balance(self) -> float:
        payload = await self._action("getBalance")
        # "ACCESS_BALANCE:12.34"
        if isinstance(payload, str) and payload.startswith("ACCESS_BALANCE"):
            try:
                return float(payload.split(":", 1)[1])
            except (IndexError, ValueError):
                pass
        if isinstance(payload, (int, float)):
            return float(payload)
        raise self._error(ErrorKind.UNEXPECTED_RESPONSE, f"Unexpected balance response: {payload!r}")

    def _services_from_payload(self, payload: Any) -> Dict[str, CatalogService]:
        services: Dict[str, CatalogService] = {}
        raw = payload.get("services") if isinstance(payload, dict) else None
        if not isinstance(raw, dict):
            return services
        for code, info in raw.items():
            if not isinstance(info, dict):
                continue
            canonical = self.translator.canonical_service(code) or code
            services[canonical] = CatalogService(
                code=canonical,
                name=self.translator.service_name(canonical),
                price=_to_float(info.get("cost", info.get("price"))),
                count=_to_int(info.get("quant", info.get("quantity", info.get("count")))),
            )
        return services

    def _countries_from_payload(self, payload: Any) -> Dict[str, CatalogCountry]:
        countries: Dict[str, CatalogCountry] = {}
        raw = payload.get("countries") if isinstance(payload, dict) else None
        if isinstance(raw, dict):
            # {"0": 0, "1": 16} (index -> id) or {"16": "United Kingdom"}
            for key, value in raw.items():
                code = str(value) if isinstance(value, (int, str)) and str(value).isdigit() else str(key)
                name = value if isinstance(value, str) and not value.isdigit() else self.translator.country_name(code)
                countries[code] = CatalogCountry(code=code, name=name)
        elif isinstance(raw, list):
            for value in raw:
                code = str(value)
                countries[code] = CatalogCountry(code=code, name=self.translator.country_name(code))
        return countries

    async def get_catalog(self, rent_time: str = "4", operator: str = "any", country: str = "0") -> Catalog:
        self._require_key()
        key = (str(rent_time), str(operator), str(country))
        cached = self._cached_catalog(key)
        if cached:
            return cached

        native_country = self.translator.country_or_default(country)
        try:
            payload = await self._action(
                "getRentServicesAndCountries",
                rent_time=str(rent_hours(rent_time)),
                operator=operator or "any",
                country=native_country,
            )
        except ProviderError as e:
            if not e.retryable:
                raise
            logger.warning(f"[{self.name}] catalog request failed: {e}")
            payload = None

        services = self._services_from_payload(payload)
        if not services:
            logger.warning(f"[{self.name}] live catalog empty, using curated fallback")
            return self.translator.fallback_catalog()

        countries = self._countries_from_payload(payload) or self.translator.fallback_catalog().countries
        catalog = Catalog(provider=self.name, services=services, countries=countries)
        logger.info(f"[{self.name}] catalog: {len(services)} services, {len(countries)} countries")
        return self._store_catalog(key, catalog)

    # =========================================================================
    # Rentals
    # =========================================================================

    async def _rent_request(self, service: str, rent_time: str, operator: str, country: str) -> Any:
        return await self._action(
            "getRentNumber",
            idempotent=False,
            service=service,
            rent_time=rent_time,
            operator=operator if operator and operator != "any" else None,
            country=country,
        )

    def _canonical_country_for(self, native_country: str, requested: str) -> str:
        return requested

    async def rent(self, service: str, rent_time: str = "4", operator: str = "any", country: str = "0") -> RentalResult:
        self._require_key()
        native_service = self.translator.service_or_default(service)
        if not native_service:
            raise self._error(ErrorKind.PRODUCT_NOT_FOUND, f"Unsupported service code: {service}")
        native_country = self.translator.country_or_default(country)
        hours = str(rent_hours(rent_time))

        logger.info(f"[{self.name}] renting {native_service} in {native_country} for {hours}h")
        payload, used_country = await self._rent_with_fallback(native_service, hours, operator, native_country)

        matched = match_shape(RENT_SHAPES, payload)
        if not matched:
            raise self._error(ErrorKind.UNEXPECTED_RESPONSE, f"No phone number in rent response: {payload!r}")
        shape, phone = matched

        logger.success(f"[{self.name}] rented {phone['phone']} (id {phone['id']}, shape {shape})")
        return RentalResult(
            provider=self.name,
            booking_id=phone["id"],
            phone_number=phone["phone"],
            service=service,
            country=self._canonical_country_for(used_country, country),
            expires_at=parse_timestamp(phone.get("end")),
            cost=_to_float(phone.get("cost")) if phone.get("cost") is not None else None,
        )

    async def _rent_with_fallback(self, service: str, hours: str, operator: str, country: str) -> tuple:
        payload = await self._rent_request(service, hours, operator, country)
        return payload, country

    async def get_messages(self, booking_id: str, page: int = 0, page_size: int = 10) -> List[ProviderMessage]:
        payload = await self._action("getRentStatus", id=booking_id, page=str(page), size=str(page_size))
        return normalize_status(payload)

    async def set_rent_status(self, booking_id: str, status: str) -> Any:
        return await self._action("setRentStatus", id=booking_id, status=status)

    async def extend(self, booking_id: str, hours: int) -> Ack:
        payload = await self._action("continueRentNumber", idempotent=False, id=booking_id, rent_time=str(int(hours)))
        matched = match_shape(RENT_SHAPES, payload)
        expires_at = parse_timestamp(matched[1].get("end")) if matched else None
        return Ack(
            provider=self.name,
            booking_id=booking_id,
            message=f"Rental extended by {hours} hours",
            expires_at=expires_at,
            raw=payload,
        )

    async def cancel(self, booking_id: str) -> Ack:
        payload = await self.set_rent_status(booking_id, STATUS_CANCEL)
        return Ack(provider=self.name, booking_id=booking_id, message="Rental cancelled", raw=payload)

    async def list_active(self) -> List[ActiveRental]:
        payload = await self._action("getRentList")
        items = payload if isinstance(payload, list) else _values(payload)
        rentals = []
        for item in items:
            if not isinstance(item, dict):
                continue
            number = str(item.get("phone") or item.get("number") or "").strip()
            if item.get("id") is None or not number:
                continue
            rentals.append(ActiveRental(
                provider=self.name,
                booking_id=str(item["id"]),
                phone_number=number,
                service=item.get("service"),
                status=str(item.get("status") or "active").lower(),
                expires_at=parse_timestamp(item.get("endDate")),
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
