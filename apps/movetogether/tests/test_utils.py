"""
Tests for datetime helpers, the TTL cache and the keyed lock registry.
"""

import asyncio
from datetime import date, datetime, timezone, timedelta

import pytest

from movetogether.utils.datetime_utils import inclusive_day_count, normalize_date
from movetogether.utils.ttl_cache import KeyedLock, TTLCache


# ---------------------------------------------------------------------------
# normalize_date
# ---------------------------------------------------------------------------


class TestNormalizeDate:
    def test_plain_iso_string(self):
        assert normalize_date("2026-03-02") == date(2026, 3, 2)

    def test_timestamp_keeps_local_date(self):
        # Late evening in UTC-8 is the next day in UTC; the local date wins
        assert normalize_date("2026-03-02T23:30:00-08:00") == date(2026, 3, 2)

    def test_utc_timestamp(self):
        assert normalize_date("2026-03-02T00:00:00.000Z") == date(2026, 3, 2)

    def test_datetime_uses_own_date(self):
        aware = datetime(2026, 3, 2, 23, 30, tzinfo=timezone(timedelta(hours=-8)))
        assert normalize_date(aware) == date(2026, 3, 2)

    def test_date_passthrough(self):
        assert normalize_date(date(2026, 3, 2)) == date(2026, 3, 2)

    def test_invalid_string(self):
        with pytest.raises(ValueError):
            normalize_date("03/02/2026")

    def test_invalid_type(self):
        with pytest.raises(ValueError):
            normalize_date(20260302)


def test_inclusive_day_count():
    assert inclusive_day_count(date(2026, 3, 1), date(2026, 3, 7)) == 7
    assert inclusive_day_count(date(2026, 3, 1), date(2026, 3, 1)) == 1


# ---------------------------------------------------------------------------
# TTLCache
# ---------------------------------------------------------------------------


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class TestTTLCache:
    def test_entry_visible_until_expiry(self):
        clock = FakeClock()
        cache = TTLCache(ttl_seconds=60, clock=clock)
        cache.set("competition-1")
        assert "competition-1" in cache

        clock.now += 59
        assert "competition-1" in cache

        clock.now += 1
        assert "competition-1" not in cache

    def test_get_default(self):
        cache = TTLCache(ttl_seconds=60)
        assert cache.get("missing", "fallback") == "fallback"

    def test_evict_expired(self):
        clock = FakeClock()
        cache = TTLCache(ttl_seconds=10, clock=clock)
        cache.set("a")
        clock.now += 5
        cache.set("b")
        clock.now += 6
        assert cache.evict_expired() == 1
        assert len(cache) == 1
        assert "b" in cache

    def test_full_cache_evicts_expired_first(self):
        clock = FakeClock()
        cache = TTLCache(ttl_seconds=10, max_entries=2, clock=clock)
        cache.set("a")
        cache.set("b")
        clock.now += 11
        cache.set("c")
        assert len(cache) == 1

    def test_discard(self):
        cache = TTLCache(ttl_seconds=60)
        cache.set("a")
        cache.discard("a")
        assert "a" not in cache


# ---------------------------------------------------------------------------
# KeyedLock
# ---------------------------------------------------------------------------


class TestKeyedLock:
    @pytest.mark.asyncio
    async def test_same_key_serializes(self):
        locks = KeyedLock()
        order = []

        async def worker(name):
            async with locks.acquire(("c1", "u1")):
                order.append(f"{name}-start")
                await asyncio.sleep(0.01)
                order.append(f"{name}-end")

        await asyncio.gather(worker("a"), worker("b"))
        assert order == ["a-start", "a-end", "b-start", "b-end"]

    @pytest.mark.asyncio
    async def test_different_keys_do_not_block(self):
        locks = KeyedLock()
        entered = asyncio.Event()

        async def holder():
            async with locks.acquire(("c1", "u1")):
                await asyncio.wait_for(entered.wait(), timeout=1)

        async def other():
            async with locks.acquire(("c1", "u2")):
                entered.set()

        await asyncio.gather(holder(), other())
        assert entered.is_set()

    @pytest.mark.asyncio
    async def test_idle_locks_are_dropped(self):
        locks = KeyedLock()
        async with locks.acquire("k"):
            assert locks.is_locked("k")
            assert len(locks) == 1
        assert len(locks) == 0
        assert not locks.is_locked("k")

    @pytest.mark.asyncio
    async def test_lock_released_on_error(self):
        locks = KeyedLock()
        with pytest.raises(RuntimeError):
            async with locks.acquire("k"):
                raise RuntimeError("boom")
        assert len(locks) == 0
