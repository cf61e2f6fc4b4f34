from __future__ import annotations

from dacloud.cache.memory import MAX_ENTRIES, MemoryCacheProvider


def test_set_get_remove() -> None:
    cache = MemoryCacheProvider()
    cache.set("k", {"model": "iPhone"})
    assert cache.get("k") == {"model": "iPhone"}

    cache.remove("k")
    assert cache.get("k") is None
    cache.remove("k")


def test_missing_key_is_a_miss() -> None:
    assert MemoryCacheProvider().get("nope") is None


def test_clear_empties_cache() -> None:
    cache = MemoryCacheProvider()
    cache.set("a", 1)
    cache.set("b", 2)
    cache.clear()
    assert cache.list_keys() == []


def test_overflow_clears_everything_before_insert() -> None:
    cache = MemoryCacheProvider(max_entries=3)
    for key in ("a", "b", "c"):
        cache.set(key, key)
    assert sorted(cache.list_keys()) == ["a", "b", "c"]

    cache.set("d", "d")
    assert cache.list_keys() == ["d"]
    assert cache.get("a") is None


def test_default_bound() -> None:
    cache = MemoryCacheProvider()
    for index in range(MAX_ENTRIES):
        cache.set(str(index), index)
    assert len(cache.list_keys()) == MAX_ENTRIES

    cache.set("overflow", 1)
    assert cache.list_keys() == ["overflow"]
