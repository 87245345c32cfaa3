"""Tests for relay path ranking and caching."""

import pytest

from lib.receive_sms.relay import RELAY_PATHS, RelayPathCache, relay_url


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.mark.no_db
def test_relay_url_encodes_target():
    url = relay_url("https://corsproxy.io/?", "https://receive-sms-online.info/private.php?phone=1&key=a")
    assert url == "https://corsproxy.io/?https%3A%2F%2Freceive-sms-online.info%2Fprivate.php%3Fphone%3D1%26key%3Da"


@pytest.mark.no_db
@pytest.mark.asyncio
async def test_ranked_defaults_to_configured_order():
    cache = RelayPathCache()
    assert await cache.ranked(3) == list(RELAY_PATHS[:3])


@pytest.mark.no_db
@pytest.mark.asyncio
async def test_ranked_by_success_rate_then_speed():
    """Should rank proven fast paths first and failing paths last."""
    cache = RelayPathCache(clock=FakeClock())
    p0, p1, p2, p3, p4, p5 = RELAY_PATHS
    await cache.record(p0, ok=False, response_time=5.0)
    await cache.record(p1, ok=True, response_time=2.0)
    await cache.record(p2, ok=True, response_time=0.5)

    assert await cache.ranked(6) == [p2, p1, p3, p4, p5, p0]
    assert await cache.ranked(3, exclude=p2) == [p1, p3, p4]


@pytest.mark.no_db
@pytest.mark.asyncio
async def test_record_running_stats():
    """Should average response times and count 403 blocks."""
    cache = RelayPathCache(clock=FakeClock())
    path = RELAY_PATHS[0]
    await cache.record(path, ok=True, response_time=1.0)
    await cache.record(path, ok=True, response_time=3.0)
    stats = await cache.record(path, ok=False, response_time=0.2, status=403)

    assert stats.avg_response_time == 2.0
    assert stats.success_count == 2
    assert stats.blocked_count == 1
    assert stats.failure_rate == pytest.approx(1 / 3)
    assert cache.stats(path) is stats


@pytest.mark.no_db
@pytest.mark.asyncio
async def test_cached_path_expires_after_ttl():
    clock = FakeClock()
    cache = RelayPathCache(ttl=600, clock=clock)
    await cache.record(RELAY_PATHS[1], ok=False, response_time=1.0)
    await cache.record(RELAY_PATHS[1], ok=True, response_time=1.0)
    await cache.set_cached("u", RELAY_PATHS[1])

    entry = await cache.get_cached("u")
    assert entry.path == RELAY_PATHS[1]
    assert cache.failure_rate(entry.path) == 0.5

    clock.now += 600
    assert await cache.get_cached("u") is None


@pytest.mark.no_db
@pytest.mark.asyncio
async def test_cache_is_bounded():
    cache = RelayPathCache(max_entries=2, clock=FakeClock())
    for url in ("a", "b", "c"):
        await cache.set_cached(url, RELAY_PATHS[0])

    assert await cache.get_cached("a") is None
    assert await cache.get_cached("c") is not None

    await cache.clear_cached("c")
    assert await cache.get_cached("c") is None


@pytest.mark.no_db
@pytest.mark.asyncio
async def test_cached_path_failure_rate_is_live():
    """Failures recorded after caching should count against the cached path."""
    cache = RelayPathCache(clock=FakeClock())
    path = RELAY_PATHS[0]
    await cache.record(path, ok=True, response_time=1.0)
    await cache.set_cached("u", path)
    assert cache.failure_rate(path) == 0.0

    for _ in range(3):
        await cache.record(path, ok=False, response_time=1.0)

    entry = await cache.get_cached("u")
    assert entry.path == path
    assert cache.failure_rate(entry.path) == 0.75
    assert cache.failure_rate(RELAY_PATHS[5]) == 0.0
