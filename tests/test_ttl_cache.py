import pytest

from energy_backend.core.ttl_cache import TTLCache


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def test_seen_within_window():
    clock = FakeClock()
    cache = TTLCache(1.0, clock=clock)

    assert cache.seen("a") is False
    clock.now = 0.5
    assert cache.seen("a") is True
    assert "a" in cache


def test_entry_expires_after_ttl():
    clock = FakeClock()
    cache = TTLCache(1.0, clock=clock)
    cache.seen("a")

    clock.now = 1.0
    assert "a" not in cache
    assert cache.seen("a") is False
    assert len(cache) == 1


def test_oldest_entry_evicted_when_full():
    cache = TTLCache(60.0, maxsize=2, clock=FakeClock())
    for key in ("a", "b", "c"):
        cache.seen(key)

    assert len(cache) == 2
    assert "a" not in cache
    assert "b" in cache and "c" in cache


def test_clear():
    cache = TTLCache(60.0, clock=FakeClock())
    cache.seen("a")
    cache.clear()
    assert len(cache) == 0


@pytest.mark.parametrize("ttl,maxsize", [(0, 10), (-1, 10), (1, 0)])
def test_invalid_arguments(ttl, maxsize):
    with pytest.raises(ValueError):
        TTLCache(ttl, maxsize=maxsize)
