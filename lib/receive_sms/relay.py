"""Relay path bookkeeping for the receive-sms-online scraper.

A relay path is a public fetch-through endpoint: the target URL is
appended (percent-encoded) to the path. RelayPathCache keeps two small
maps behind one asyncio.Lock so concurrent syncs can share them:

  - per-path stats (success/fail counts, avg response time, 403 count)
    used to rank relays for future attempts
  - per-target-URL "last known good" path, evicted after a TTL
"""

import asyncio
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional, Tuple
from urllib.parse import quote

from loguru import logger


RELAY_PATHS: Tuple[str, ...] = (
    "https://api.allorigins.win/raw?url=",
    "https://api.allorigins.win/get?url=",
    "https://corsproxy.io/?",
    "https://cors-anywhere.herokuapp.com/",
    "https://thingproxy.freeboard.io/fetch/",
    "https://cors-proxy.htmldriven.com/?url=",
)

CACHE_TTL = 10 * 60.0
MAX_ENTRIES = 500


def relay_url(path: str, target: str) -> str:
    return f"{path}{quote(target, safe='')}"


@dataclass
class PathStats:
    """Running performance of one relay path."""
    success_count: int = 0
    fail_count: int = 0
    avg_response_time: float = 0.0
    last_success: Optional[float] = None
    blocked_count: int = 0

    @property
    def attempts(self) -> int:
        return self.success_count + self.fail_count

    @property
    def success_rate(self) -> float:
        return self.success_count / self.attempts if self.attempts else 0.0

    @property
    def failure_rate(self) -> float:
        return self.fail_count / self.attempts if self.attempts else 0.0


@dataclass
class CachedPath:
    path: str
    stored_at: float


class RelayPathCache:
    """Bounded, TTL-evicted relay bookkeeping shared across scrapes.

    Usage:
        cache = RelayPathCache()
        await cache.record(path, ok=True, response_time=0.8, status=200)
        for path in await cache.ranked(top_n=3):
            ...
    """

    def __init__(
        self,
        paths: Iterable[str] = RELAY_PATHS,
        ttl: float = CACHE_TTL,
        max_entries: int = MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.paths = tuple(paths)
        self.ttl = ttl
        self.max_entries = max_entries
        self._clock = clock
        self._stats: "OrderedDict[str, PathStats]" = OrderedDict()
        self._cached: "OrderedDict[str, CachedPath]" = OrderedDict()
        self._lock = asyncio.Lock()

    # =========================================================================
    # Last known good path per target URL
    # =========================================================================

    async def get_cached(self, url: str) -> Optional[CachedPath]:
        async with self._lock:
            entry = self._cached.get(url)
            if entry is None:
                return None
            if self._clock() - entry.stored_at >= self.ttl:
                del self._cached[url]
                return None
            self._cached.move_to_end(url)
            return entry

    async def set_cached(self, url: str, path: str) -> None:
        async with self._lock:
            self._cached[url] = CachedPath(path=path, stored_at=self._clock())
            self._cached.move_to_end(url)
            self._evict()

    async def clear_cached(self, url: str) -> None:
        async with self._lock:
            self._cached.pop(url, None)

    # =========================================================================
    # Path performance
    # =========================================================================

    async def record(self, path: str, ok: bool, response_time: float, status: int = 0) -> PathStats:
        """Fold one attempt into the path's running stats."""
        async with self._lock:
            stats = self._stats.get(path)
            if stats is None:
                stats = PathStats()
                self._stats[path] = stats
            self._stats.move_to_end(path)

            if ok:
                stats.success_count += 1
                if stats.success_count == 1:
                    stats.avg_response_time = response_time
                else:
                    stats.avg_response_time = (stats.avg_response_time + response_time) / 2
                stats.last_success = self._clock()
            else:
                stats.fail_count += 1
                if status == 403:
                    stats.blocked_count += 1
                    logger.debug(f"Relay blocked (403): {path}")
            self._evict()
            return stats

    async def ranked(self, top_n: int = 3, exclude: Optional[str] = None) -> List[str]:
        """Configured paths ordered by success rate, then response time.

        Untried paths rank as if fully successful so that they get
        explored once the known ones start failing.
        """
        async with self._lock:
            def sort_key(item: Tuple[int, str]):
                index, path = item
                stats = self._stats.get(path)
                if stats is None or not stats.attempts:
                    return (-1.0, 1, 0.0, index)
                return (-stats.success_rate, 0, stats.avg_response_time, index)

            ordered = sorted(enumerate(self.paths), key=sort_key)
            return [path for _, path in ordered if path != exclude][:top_n]

    def stats(self, path: str) -> Optional[PathStats]:
        return self._stats.get(path)

    def failure_rate(self, path: str) -> float:
        """Current failure rate of a path; 0.0 when untried."""
        stats = self._stats.get(path)
        return stats.failure_rate if stats else 0.0

    def _evict(self) -> None:
        now = self._clock()
        for url in [u for u, e in self._cached.items() if now - e.stored_at >= self.ttl]:
            del self._cached[url]
        while len(self._cached) > self.max_entries:
            self._cached.popitem(last=False)
        while len(self._stats) > self.max_entries:
            self._stats.popitem(last=False)
