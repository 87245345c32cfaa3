"""GoGetSMS rental API adapter.

Same handler_api.php dialect as SMS-Activate, but rental calls take
two-letter ISO country codes and numeric service ids. The account is
limited to 10 requests per minute, enforced client-side.
"""

import asyncio
import time
from collections import deque
from typing import Any, Deque, Optional

import httpx
from loguru import logger

from lib.providers.errors import ProviderError
from lib.providers.handler_api import HandlerApiClient
from lib.providers.models import ProviderMessage, parse_timestamp, utcnow


API_BASE_URL = "https://www.gogetsms.com/handler_api.php"

MAX_REQUESTS = 10
TIME_WINDOW = 60.0

# Tried in order when the requested country is rejected with BAD_COUNTRY
FALLBACK_COUNTRIES = ("GB", "US", "RU")


class SlidingWindowLimiter:
    """At most `max_requests` acquisitions per `window` seconds."""

    def __init__(self, max_requests: int = MAX_REQUESTS, window: float = TIME_WINDOW):
        self.max_requests = max_requests
        self.window = window
        self._stamps: Deque[float] = deque()
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        async with self._lock:
            while True:
                now = time.monotonic()
                while self._stamps and now - self._stamps[0] >= self.window:
                    self._stamps.popleft()
                if len(self._stamps) < self.max_requests:
                    self._stamps.append(now)
                    return
                wait = self.window - (now - self._stamps[0])
                logger.info(f"[gogetsms] rate limit reached, waiting {wait:.1f}s")
                await asyncio.sleep(wait)


class GoGetSmsClient(HandlerApiClient):
    """GoGetSMS rental client.

    Usage:
        client = GoGetSmsClient()
        rental = await client.rent("wa", rent_time="4", country="16")
    """

    name = "gogetsms"
    base_url = API_BASE_URL
    api_key_env = "GOGETSMS_API_KEY"

    def __init__(self, *args, limiter: Optional[SlidingWindowLimiter] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self._limiter = limiter or SlidingWindowLimiter()

    async def _request(self, method: str, url: str, params: Optional[dict] = None, json: Optional[dict] = None) -> httpx.Response:
        await self._limiter.acquire()
        return await super()._request(method, url, params=params, json=json)

    async def _rent_with_fallback(self, service: str, hours: str, operator: str, country: str) -> tuple:
        try:
            payload = await self._rent_request(service, hours, operator, country)
            return payload, country
        except ProviderError as e:
            if e.upstream_code != "BAD_COUNTRY":
                raise
            original = e

        for fallback in FALLBACK_COUNTRIES:
            if fallback == country:
                continue
            logger.info(f"[gogetsms] {country} rejected, trying {fallback}")
            try:
                payload = await self._rent_request(service, hours, operator, fallback)
                return payload, fallback
            except ProviderError as e:
                logger.debug(f"[gogetsms] fallback {fallback} failed: {e}")
                continue
        raise original

    def _canonical_country_for(self, native_country: str, requested: str) -> str:
        if native_country == self.translator.country_or_default(requested):
            return requested
        return self.translator.canonical_country(native_country) or requested


def parse_webhook_payload(payload: Any) -> Optional[dict]:
    """Validate a push notification {id, phone, text, sender, date}.

    Returns phone_number/booking_id plus a ProviderMessage, or None when
    required fields are missing.
    """
    if not isinstance(payload, dict):
        return None
    if not payload.get("id") or not payload.get("phone") or not str(payload.get("text") or "").strip():
        return None
    message = ProviderMessage(
        sender=str(payload.get("sender") or "Unknown"),
        message=str(payload["text"]).strip(),
        received_at=parse_timestamp(payload.get("date")) or utcnow(),
        source="webhook",
    )
    return {
        "booking_id": str(payload["id"]),
        "phone_number": str(payload["phone"]).strip(),
        "message": message,
    }
