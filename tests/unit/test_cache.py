# Copyright (c) 2026 StoreGuard Contributors. All Rights Reserved.
"""Unit tests for TTLCache."""

from storeguard.core.cache import TTLCache


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


class TestTTLCache:
    def test_set_and_get(self):
        cache = TTLCache(ttl=5, clock=FakeClock())
        cache.set("a", 1)
        assert cache.get("a") == 1

    def test_missing_returns_none(self):
        cache = TTLCache(ttl=5)
        assert cache.get("nope") is None

    def test_entry_expires(self):
        clock = FakeClock()
        cache = TTLCache(ttl=5, clock=clock)
        cache.set("a", 1)
        clock.now += 4.9
        assert cache.get("a") == 1
        clock.now += 0.2
        assert cache.get("a") is None
        assert len(cache) == 0

    def test_zero_ttl_disables_caching(self):
        cache = TTLCache(ttl=0)
        cache.set("a", 1)
        assert cache.get("a") is None

    def test_discard(self):
        cache = TTLCache(ttl=5)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.discard("a", "missing")
        assert cache.get("a") is None
        assert cache.get("b") == 2

    def test_size_bound_evicts_soonest_expiry(self):
        clock = FakeClock()
        cache = TTLCache(ttl=5, max_entries=2, clock=clock)
        cache.set("old", 1)
        clock.now += 1
        cache.set("mid", 2)
        clock.now += 1
        cache.set("new", 3)
        assert len(cache) == 2
        assert cache.get("old") is None
        assert cache.get("new") == 3

    def test_clear(self):
        cache = TTLCache(ttl=5)
        cache.set("a", 1)
        cache.clear()
        assert len(cache) == 0
