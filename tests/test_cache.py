"""Tests for the in-process TTL cache."""
from market_alerts.core.cache import TTLCache


class Tick:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def test_entry_served_until_ttl_then_expires():
    clock = Tick()
    cache = TTLCache(ttl_seconds=10, clock=clock)
    cache.set("k", "v")

    clock.now = 9.9
    assert cache.get("k") == "v"

    clock.now = 10.0
    assert cache.get("k") is None
    assert len(cache) == 0


def test_get_or_compute_only_computes_on_miss():
    clock = Tick()
    cache = TTLCache(ttl_seconds=5, clock=clock)
    calls = []

    def compute():
        calls.append(1)
        return len(calls)

    assert cache.get_or_compute("k", compute) == 1
    assert cache.get_or_compute("k", compute) == 1
    clock.now = 6
    assert cache.get_or_compute("k", compute) == 2


def test_zero_ttl_disables_caching():
    cache = TTLCache(ttl_seconds=0)
    cache.set("k", "v")

    assert cache.get("k") is None


def test_clear():
    cache = TTLCache(ttl_seconds=60)
    cache.set("a", 1)
    cache.set("b", 2)

    cache.clear()

    assert len(cache) == 0


def test_none_result_is_cached():
    cache = TTLCache(ttl_seconds=60, clock=Tick())
    calls = []

    def compute():
        calls.append(1)
        return None

    assert cache.get_or_compute("k", compute) is None
    assert cache.get_or_compute("k", compute) is None
    assert len(calls) == 1
    assert len(cache) == 1
