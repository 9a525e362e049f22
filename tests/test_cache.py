import asyncio
from datetime import datetime, timedelta

import pytest
from sqlalchemy.pool import StaticPool

from disaster_response import models
from disaster_response.cache import DatabaseCache, MemoryCache, hashed_key
from disaster_response.database import build_session_factory


class FakeClock:
    def __init__(self):
        self.now = datetime(2024, 1, 1, 12, 0, 0)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)


def sqlite_cache(clock):
    session_factory = build_session_factory(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    models.CacheEntry.__table__.create(session_factory.kw["bind"])
    return DatabaseCache(session_factory, clock=clock)


@pytest.fixture(params=["memory", "database"])
def cache_and_clock(request):
    clock = FakeClock()
    if request.param == "memory":
        return MemoryCache(clock=clock), clock
    return sqlite_cache(clock), clock


def test_entry_expires_after_ttl(cache_and_clock):
    cache, clock = cache_and_clock

    async def scenario():
        await cache.set("k", {"value": 1}, ttl_seconds=60)
        clock.advance(59)
        before = await cache.get("k")
        clock.advance(1)
        after = await cache.get("k")
        return before, after

    before, after = asyncio.run(scenario())
    assert before == {"value": 1}
    assert after is None


def test_clear_expired_removes_only_expired(cache_and_clock):
    cache, clock = cache_and_clock

    async def scenario():
        await cache.set("short", [1], ttl_seconds=10)
        await cache.set("long", [2], ttl_seconds=100)
        clock.advance(10)
        stats_before = await cache.stats()
        removed = await cache.clear_expired()
        return stats_before, removed, await cache.get("long"), await cache.stats()

    stats_before, removed, survivor, stats_after = asyncio.run(scenario())
    assert stats_before == {"total": 2, "expired": 1}
    assert removed == 1
    assert survivor == [2]
    assert stats_after == {"total": 1, "expired": 0}


def test_set_overwrites_and_delete_removes(cache_and_clock):
    cache, _ = cache_and_clock

    async def scenario():
        await cache.set("k", "first")
        await cache.set("k", "second")
        value = await cache.get("k")
        await cache.delete("k")
        return value, await cache.get("k")

    value, gone = asyncio.run(scenario())
    assert value == "second"
    assert gone is None


def test_remember_calls_producer_once_and_skips_none():
    cache = MemoryCache(clock=FakeClock())
    calls = []

    async def producer():
        calls.append(1)
        return {"n": len(calls)}

    async def nothing():
        calls.append(0)
        return None

    async def scenario():
        first = await cache.remember("a", 60, producer)
        second = await cache.remember("a", 60, producer)
        await cache.remember("b", 60, nothing)
        await cache.remember("b", 60, nothing)
        return first, second

    first, second = asyncio.run(scenario())
    assert first == second == {"n": 1}
    assert calls == [1, 0, 0]


def test_memory_cache_returns_copies():
    cache = MemoryCache(clock=FakeClock())

    async def scenario():
        await cache.set("k", {"items": [1]})
        fetched = await cache.get("k")
        fetched["items"].append(2)
        return await cache.get("k")

    assert asyncio.run(scenario()) == {"items": [1]}


def test_hashed_key_is_stable():
    assert hashed_key("geocoding", "nyc") == hashed_key("geocoding", "nyc")
    assert hashed_key("geocoding", "nyc") != hashed_key("geocoding", "la")
    assert hashed_key("geocoding", "nyc").startswith("geocoding:")
