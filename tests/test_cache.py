"""Tests for TTLCache."""

from savepoint.core.cache import TTLCache


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def test_entries_expire_after_ttl():
    clock = FakeClock()
    cache = TTLCache(5, clock=clock)
    cache.set("key", "value")

    clock.now += 4.9
    assert cache.get("key") == "value"

    clock.now += 0.1
    assert cache.get("key") is None
    assert "key" not in cache


def test_invalidate_all_drops_everything():
    cache = TTLCache(300, clock=FakeClock())
    cache.set(("commits", "/repo", 30), [1, 2])
    cache.set(("page", "/repo", 0, 20), "page")
    assert len(cache) == 2

    cache.invalidate_all()

    assert len(cache) == 0
    assert cache.get(("commits", "/repo", 30), "missing") == "missing"


def test_falsy_values_are_cached():
    cache = TTLCache(60, clock=FakeClock())
    cache.set("empty", [])
    assert "empty" in cache
    assert cache.get("empty", None) == []
    assert cache.invalidate("empty") == []
