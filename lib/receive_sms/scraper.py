"""Inbox scraper for receive-sms-online.info.

The provider has no API: each rented number has a private inbox page
(https://receive-sms-online.info/private.php?phone=...&key=...) that we
fetch and parse. Fetching walks a strategy chain until one returns a
usable page:

  1. cached relay     last known good relay for this URL (fast timeout),
                      only while its failure rate is below 50%
  2. direct           rotated desktop user agent, browser headers
  3. relays           top 3 relay paths by success rate / response time
  4. mobile           iPhone user agent

Pages that match block/error wording are treated as failures even with
HTTP 200. scrape_messages() never raises: total failure comes back as
ScrapeResult(success=False) with debug info.
"""

import asyncio
import itertools
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, Dict, List, Optional, Tuple
from urllib.parse import parse_qs, urlparse

import httpx
from loguru import logger

from lib.providers.models import ProviderMessage, utcnow
from lib.receive_sms.parser import parse_messages
from lib.receive_sms.relay import RelayPathCache, relay_url


INBOX_HOST = "receive-sms-online.info"
INBOX_PATH = "/private.php"

MIN_INTERVAL = 3.0
MAX_BACKOFF_MULTIPLIER = 8
FAST_TIMEOUT = 12.0
TIMEOUT = 20.0
CACHED_PATH_MAX_FAILURE_RATE = 0.5
TOP_RELAYS = 3

USER_AGENTS = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:109.0) Gecko/20100101 Firefox/121.0",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.1 Safari/605.1.15",
)
MOBILE_USER_AGENT = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.0 Mobile/15E148 Safari/604.1"
)

BROWSER_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
    "Accept-Encoding": "gzip, deflate, br",
    "DNT": "1",
    "Upgrade-Insecure-Requests": "1",
    "Sec-Fetch-Dest": "document",
    "Sec-Fetch-Mode": "navigate",
    "Sec-Fetch-Site": "none",
    "Cache-Control": "no-cache",
}
MOBILE_HEADERS = {
    "User-Agent": MOBILE_USER_AGENT,
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
    "Accept-Encoding": "gzip, deflate, br",
    "Upgrade-Insecure-Requests": "1",
}
RELAY_HEADERS = {
    "Accept": "application/json, text/html, */*",
    "Cache-Control": "no-cache",
    "User-Agent": USER_AGENTS[0],
}

ERROR_SIGNATURES = (
    "access denied",
    "forbidden",
    "error 403",
    "blocked",
    "bot detected",
    "cloudflare",
    "security check",
    "captcha",
    "rate limit",
    "too many requests",
)


class FetchError(Exception):
    """One fetch strategy failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class ScrapeDebugInfo:
    http_status: Optional[int] = None
    content_length: Optional[int] = None
    fetch_method: Optional[str] = None
    response_time: Optional[float] = None
    service_accessible: bool = False
    strategies_tried: List[str] = field(default_factory=list)
    last_error: Optional[str] = None


@dataclass
class ScrapeResult:
    success: bool
    messages: List[ProviderMessage] = field(default_factory=list)
    error: Optional[str] = None
    last_scraped_at: datetime = field(default_factory=utcnow)
    debug_info: ScrapeDebugInfo = field(default_factory=ScrapeDebugInfo)


def validate_url(url: str) -> bool:
    """True for https://receive-sms-online.info/private.php?phone=..&key=.."""
    try:
        parsed = urlparse(url or "")
    except ValueError:
        return False
    if parsed.scheme not in ("http", "https"):
        return False
    host = (parsed.hostname or "").lower()
    if host not in (INBOX_HOST, f"www.{INBOX_HOST}"):
        return False
    if parsed.path != INBOX_PATH:
        return False
    query = parse_qs(parsed.query)
    return bool(query.get("phone")) and bool(query.get("key"))


def is_error_page(html: str) -> bool:
    lowered = html.lower()
    return any(signature in lowered for signature in ERROR_SIGNATURES)


class ReceiveSmsScraper:
    """Scrapes private inbox pages with rate limiting and relay rotation.

    One instance is shared by all syncs in a process; per-URL bookkeeping
    (last request time, consecutive failures) sits behind an asyncio.Lock.
    """

    def __init__(
        self,
        relays: Optional[RelayPathCache] = None,
        min_interval: float = MIN_INTERVAL,
        fast_timeout: float = FAST_TIMEOUT,
        timeout: float = TIMEOUT,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.relays = relays or RelayPathCache()
        self.min_interval = min_interval
        self.fast_timeout = fast_timeout
        self.timeout = timeout
        self._sleep = sleep
        self._clock = clock
        self._last_request: Dict[str, float] = {}
        self._failures: Dict[str, int] = {}
        self._lock = asyncio.Lock()
        self._user_agents = itertools.cycle(USER_AGENTS)

    # =========================================================================
    # Rate limiting
    # =========================================================================

    def failure_count(self, url: str) -> int:
        return self._failures.get(url, 0)

    async def _wait_turn(self, url: str) -> None:
        """Keep min_interval * min(2^failures, 8) between requests to one URL."""
        async with self._lock:
            now = self._clock()
            multiplier = min(2 ** self._failures.get(url, 0), MAX_BACKOFF_MULTIPLIER)
            last = self._last_request.get(url)
            wait = 0.0
            if last is not None:
                wait = max(0.0, last + self.min_interval * multiplier - now)
            # reserve the slot before sleeping so concurrent callers queue behind it
            self._last_request[url] = now + wait
        if wait > 0:
            logger.debug(f"Rate limiting {url}: waiting {wait:.1f}s")
            await self._sleep(wait)

    async def _record_outcome(self, url: str, ok: bool) -> None:
        async with self._lock:
            if ok:
                self._failures.pop(url, None)
            else:
                self._failures[url] = self._failures.get(url, 0) + 1

    # =========================================================================
    # Fetching
    # =========================================================================

    async def _get(self, url: str, headers: dict, timeout: float) -> httpx.Response:
        async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as client:
            return await client.get(url, headers=headers)

    async def _fetch_direct(self, url: str, timeout: float) -> Tuple[str, int]:
        headers = {"User-Agent": next(self._user_agents), **BROWSER_HEADERS}
        return self._page(await self._get(url, headers, timeout))

    async def _fetch_mobile(self, url: str, timeout: float) -> Tuple[str, int]:
        return self._page(await self._get(url, MOBILE_HEADERS, timeout))

    async def _fetch_relay(self, url: str, path: str, timeout: float) -> Tuple[str, int]:
        resp = await self._get(relay_url(path, url), RELAY_HEADERS, timeout)
        if resp.status_code >= 400:
            raise FetchError(f"Relay returned HTTP {resp.status_code}", resp.status_code)
        if "application/json" in resp.headers.get("content-type", ""):
            # allorigins /get wraps the page as {"contents": "..."}
            data = resp.json()
            html = (data.get("contents") or data.get("data") or "") if isinstance(data, dict) else ""
            return html, resp.status_code
        return resp.text, resp.status_code

    @staticmethod
    def _page(resp: httpx.Response) -> Tuple[str, int]:
        if resp.status_code >= 400:
            raise FetchError(f"HTTP {resp.status_code}", resp.status_code)
        return resp.text, resp.status_code

    async def _attempt(
        self,
        method: str,
        fetch: Callable[[], Awaitable[Tuple[str, int]]],
        debug: ScrapeDebugInfo,
        path: Optional[str] = None,
    ) -> Optional[str]:
        """Run one strategy. Returns the page or None; feeds relay stats."""
        debug.strategies_tried.append(method)
        started = self._clock()
        status = 0
        html = None
        try:
            html, status = await fetch()
            debug.http_status = status
            if not html or is_error_page(html):
                debug.last_error = f"{method}: blocked or empty page"
                html = None
        except FetchError as e:
            status = e.status_code or 0
            debug.http_status = e.status_code
            debug.last_error = f"{method}: {e}"
        except (httpx.HTTPError, ValueError) as e:
            debug.last_error = f"{method}: {type(e).__name__}: {e}"

        elapsed = self._clock() - started
        if path is not None:
            await self.relays.record(path, ok=html is not None, response_time=elapsed, status=status)
        if html is None:
            logger.debug(f"Scrape strategy {method} failed: {debug.last_error}")
        return html

    async def _fetch_page(self, url: str, debug: ScrapeDebugInfo) -> Optional[str]:
        cached = await self.relays.get_cached(url)
        if cached and self.relays.failure_rate(cached.path) < CACHED_PATH_MAX_FAILURE_RATE:
            html = await self._attempt(
                "cached-relay",
                lambda: self._fetch_relay(url, cached.path, self.fast_timeout),
                debug,
                path=cached.path,
            )
            if html:
                debug.fetch_method = "cached-relay"
                return html
            await self.relays.clear_cached(url)

        html = await self._attempt("direct", lambda: self._fetch_direct(url, self.timeout), debug)
        if html:
            debug.fetch_method = "direct"
            return html

        for path in await self.relays.ranked(TOP_RELAYS, exclude=cached.path if cached else None):
            html = await self._attempt(
                "relay",
                lambda: self._fetch_relay(url, path, self.timeout),
                debug,
                path=path,
            )
            if html:
                debug.fetch_method = "relay"
                await self.relays.set_cached(url, path)
                return html

        html = await self._attempt("mobile", lambda: self._fetch_mobile(url, self.timeout), debug)
        if html:
            debug.fetch_method = "mobile"
            return html
        return None

    # =========================================================================
    # Entry point
    # =========================================================================

    async def scrape_messages(self, url: str) -> ScrapeResult:
        """Fetch and parse one inbox page. Never raises."""
        started = self._clock()
        debug = ScrapeDebugInfo()

        if not validate_url(url):
            debug.last_error = "Invalid receive-sms-online.info URL"
            return ScrapeResult(success=False, error=debug.last_error, debug_info=debug)

        try:
            await self._wait_turn(url)
            html = await self._fetch_page(url, debug)
        except Exception as e:
            logger.error(f"Unexpected scrape failure for {url}: {e}")
            html = None
            debug.last_error = f"{type(e).__name__}: {e}"

        debug.response_time = self._clock() - started
        if html is None:
            await self._record_outcome(url, ok=False)
            error = debug.last_error or "All fetch methods failed - service may be blocking requests"
            logger.warning(f"Scrape failed after {', '.join(debug.strategies_tried) or 'no strategies'}: {error}")
            return ScrapeResult(success=False, error=error, debug_info=debug)

        await self._record_outcome(url, ok=True)
        debug.content_length = len(html)
        debug.service_accessible = True
        try:
            messages = parse_messages(html)
        except Exception as e:
            logger.error(f"Failed to parse inbox page for {url}: {e}")
            return ScrapeResult(success=False, error=f"Parse error: {e}", debug_info=debug)
        logger.info(f"Scraped {len(messages)} messages via {debug.fetch_method} in {debug.response_time:.1f}s")
        return ScrapeResult(success=True, messages=messages, debug_info=debug)
