from price_service.cache import CacheStore
from conftest import FakeClock


def test_get_returns_none_for_missing_key() -> None:
    cache = CacheStore(clock=FakeClock())
    assert cache.get("nadac", "https://example.test/a") is None


def test_put_then_get_within_ttl() -> None:
    clock = FakeClock()
    cache = CacheStore(clock=clock)
    payload = [{"ndc": "1"}]
    cache.put("nadac", "k", payload, 900)
    clock.advance(899.9)
    assert cache.get("nadac", "k") is payload


def test_entry_is_stale_once_expiry_is_reached_but_not_purged() -> None:
    clock = FakeClock()
    cache = CacheStore(clock=clock)
    cache.put("goodrx", "k", {"price": 1}, 60)
    clock.advance(60)
    assert cache.get("goodrx", "k") is None
    assert cache.size() == 1


def test_next_put_overwrites_stale_entry() -> None:
    clock = FakeClock()
    cache = CacheStore(clock=clock)
    cache.put("goodrx", "k", "old", 60)
    clock.advance(61)
    cache.put("goodrx", "k", "new", 60)
    assert cache.get("goodrx", "k") == "new"
    assert cache.stats() == {"goodrx": 1}


def test_zero_ttl_disables_caching() -> None:
    cache = CacheStore(clock=FakeClock())
    cache.put("goodrx", "k", "value", 0)
    assert cache.get("goodrx", "k") is None
    assert cache.size() == 0


def test_buckets_are_isolated() -> None:
    cache = CacheStore(clock=FakeClock())
    cache.put("rxnorm_find", "k", 1, 100)
    cache.put("rxnorm_name", "k", 2, 100)
    assert cache.get("rxnorm_find", "k") == 1
    assert cache.get("rxnorm_name", "k") == 2
    assert cache.stats() == {"rxnorm_find": 1, "rxnorm_name": 1}
