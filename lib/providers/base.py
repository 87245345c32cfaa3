"""Provider adapter interface and shared HTTP plumbing.

Each provider adapter implements IProviderAdapter against its own REST
dialect. BaseProviderClient supplies credential checks, httpx client
construction, retry/classification and ordered response-shape matching.
"""

import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, Generic, List, Optional, Sequence, Tuple, TypeVar

import httpx
from loguru import logger

from lib.providers.codes import CodeTranslator, get_translator
from lib.providers.errors import ErrorKind, ProviderError, classify_http_error
from lib.providers.models import Ack, ActiveRental, Catalog, ProviderMessage, RentalResult
from lib.providers.retry import DEFAULT_ATTEMPTS, DEFAULT_DELAY, retry_async


# Per-call timeout (seconds)
DEFAULT_TIMEOUT = float(os.getenv("SMS_PROVIDER_TIMEOUT", "15"))

T = TypeVar("T")


@dataclass(frozen=True)
class ResponseShape(Generic[T]):
    """One named upstream response layout and how to extract from it.

    `extract` returns None when the payload does not fit this layout.
    """
    name: str
    extract: Callable[[Any], Optional[T]]


def match_shape(shapes: Sequence[ResponseShape[T]], payload: Any) -> Optional[Tuple[str, T]]:
    """Try each shape in order, return (shape name, result) for the first hit."""
    for shape in shapes:
        try:
            result = shape.extract(payload)
        except (KeyError, IndexError, TypeError, AttributeError, ValueError):
            result = None
        if result is not None:
            return shape.name, result
    return None


class IProviderAdapter(ABC):
    """Common capability set of a rental provider."""

    name: str = ""

    @abstractmethod
    def is_available(self) -> bool:
        """True iff the provider credential is configured."""
        pass

    @abstractmethod
    async def get_catalog(
        self,
        rent_time: str = "4",
        operator: str = "any",
        country: str = "0",
    ) -> Catalog:
        """Purchasable services and countries, never empty."""
        pass

    @abstractmethod
    async def rent(
        self,
        service: str,
        rent_time: str = "4",
        operator: str = "any",
        country: str = "0",
    ) -> RentalResult:
        """Rent a number."""
        pass

    @abstractmethod
    async def get_messages(
        self,
        booking_id: str,
        page: int = 0,
        page_size: int = 10,
    ) -> List[ProviderMessage]:
        """Inbound messages for a booking."""
        pass

    @abstractmethod
    async def extend(self, booking_id: str, hours: int) -> Ack:
        """Extend a rental by `hours`."""
        pass

    @abstractmethod
    async def cancel(self, booking_id: str) -> Ack:
        """Cancel a rental."""
        pass

    @abstractmethod
    async def list_active(self) -> List[ActiveRental]:
        """Rentals the provider reports as live."""
        pass

    @abstractmethod
    async def get_balance(self) -> float:
        """Account balance."""
        pass


class BaseProviderClient(IProviderAdapter):
    """Shared plumbing for provider adapters.

    Subclasses set `name`, `base_url` and `api_key_env`.
    """

    base_url: str = ""
    api_key_env: str = ""

    def __init__(
        self,
        api_key: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
        translator: Optional[CodeTranslator] = None,
        attempts: int = DEFAULT_ATTEMPTS,
        retry_delay: float = DEFAULT_DELAY,
        proxy_url: Optional[str] = None,
    ):
        key = api_key if api_key is not None else os.getenv(self.api_key_env, "")
        self.api_key = (key or "").strip()
        self.timeout = timeout
        self.translator = translator or get_translator(self.name)
        self.attempts = attempts
        self.retry_delay = retry_delay
        self._proxy_url = proxy_url or os.getenv("SMS_PROXY_URL") or None
        self._catalog_cache: Dict[Tuple[str, str, str], Catalog] = {}
        if self.api_key:
            logger.debug(f"[{self.name}] configured with key {self.api_key[:5]}...")

    # =========================================================================
    # Credentials
    # =========================================================================

    def is_available(self) -> bool:
        return bool(self.api_key)

    def _require_key(self) -> None:
        if not self.is_available():
            raise self._error(
                ErrorKind.NO_API_KEY,
                f"{self.api_key_env} is not configured",
            )

    # =========================================================================
    # HTTP
    # =========================================================================

    def _get_client_kwargs(self) -> dict:
        """Get httpx client kwargs with optional proxy."""
        kwargs = {"timeout": self.timeout}
        if self._proxy_url:
            kwargs["proxy"] = self._proxy_url
        return kwargs

    async def _request(
        self,
        method: str,
        url: str,
        params: Optional[dict] = None,
        json: Optional[dict] = None,
    ) -> httpx.Response:
        """Single HTTP attempt; raises on non-2xx."""
        async with httpx.AsyncClient(**self._get_client_kwargs()) as client:
            resp = await client.request(method, url, params=params, json=json)
            resp.raise_for_status()
            return resp

    async def _call(
        self,
        method: str,
        path: str = "",
        params: Optional[dict] = None,
        json: Optional[dict] = None,
        label: Optional[str] = None,
        idempotent: bool = True,
    ) -> Any:
        """HTTP call with retry and classification, returns decoded body.

        Purchases (rent, extend) pass idempotent=False and get one attempt:
        a timed-out purchase may still have gone through upstream.
        """
        url = f"{self.base_url}{path}"
        label = label or f"{method} {path or url}"

        async def attempt() -> httpx.Response:
            return await self._request(method, url, params=params, json=json)

        resp = await retry_async(
            attempt,
            attempts=self.attempts if idempotent else 1,
            delay=self.retry_delay,
            classify=self._classify,
            label=f"[{self.name}] {label}",
        )
        return self._decode(resp)

    @staticmethod
    def _decode(resp: httpx.Response) -> Any:
        """JSON body when it parses, otherwise the stripped text."""
        text = resp.text
        if not text:
            return None
        try:
            return resp.json()
        except ValueError:
            return text.strip()

    def _classify(self, exc: BaseException) -> ProviderError:
        return classify_http_error(exc, provider=self.name)

    def _error(self, kind: ErrorKind, message: str, **kwargs) -> ProviderError:
        return ProviderError(kind, message, provider=self.name, **kwargs)

    # =========================================================================
    # Catalog caching
    # =========================================================================

    def _cached_catalog(self, key: Tuple[str, str, str]) -> Optional[Catalog]:
        return self._catalog_cache.get(key)

    def _store_catalog(self, key: Tuple[str, str, str], catalog: Catalog) -> Catalog:
        # fallback catalogs are not cached so the next call retries upstream
        if catalog.source == "live":
            self._catalog_cache[key] = catalog
        return catalog

    def clear_catalog_cache(self) -> None:
        self._catalog_cache.clear()


def rent_hours(rent_time: Any, default: int = 4) -> int:
    """Parse a rent time hint ("4", 24, "168") into whole hours."""
    try:
        hours = int(float(rent_time))
    except (TypeError, ValueError):
        return default
    return hours if hours > 0 else default


class MockProviderAdapter(IProviderAdapter):
    """Mock adapter for unit testing.

    `messages` maps booking id -> messages, or an exception to raise.
    """

    def __init__(
        self,
        name: str = "mock",
        messages: Optional[Dict[str, Any]] = None,
        rentals: Optional[List[RentalResult]] = None,
        active: Optional[List[ActiveRental]] = None,
        cancel_error: Optional[Exception] = None,
        extend_until: Optional[Any] = None,
    ):
        self.name = name
        self.messages = messages or {}
        self._rentals = list(rentals or [])
        self.active = active or []
        self.cancel_error = cancel_error
        self.extend_until = extend_until
        self.calls: List[tuple] = []

    def is_available(self) -> bool:
        return True

    async def get_catalog(self, rent_time: str = "4", operator: str = "any", country: str = "0") -> Catalog:
        self.calls.append(("get_catalog", rent_time, operator, country))
        return Catalog(provider=self.name)

    async def rent(self, service: str, rent_time: str = "4", operator: str = "any", country: str = "0") -> RentalResult:
        self.calls.append(("rent", service, rent_time, country))
        return self._rentals.pop(0)

    async def get_messages(self, booking_id: str, page: int = 0, page_size: int = 10) -> List[ProviderMessage]:
        self.calls.append(("get_messages", booking_id))
        result = self.messages.get(booking_id, [])
        if isinstance(result, Exception):
            raise result
        return list(result)

    async def extend(self, booking_id: str, hours: int) -> Ack:
        self.calls.append(("extend", booking_id, hours))
        return Ack(provider=self.name, booking_id=booking_id, expires_at=self.extend_until)

    async def cancel(self, booking_id: str) -> Ack:
        self.calls.append(("cancel", booking_id))
        if self.cancel_error is not None:
            raise self.cancel_error
        return Ack(provider=self.name, booking_id=booking_id, message="Rental cancelled")

    async def list_active(self) -> List[ActiveRental]:
        return list(self.active)

    async def get_balance(self) -> float:
        return 10.0
