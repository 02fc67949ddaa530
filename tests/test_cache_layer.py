from __future__ import annotations

from cache_layer import _RoleCache, cache_clear, cache_get_or_set, cache_stats, role_key


def test_misses_are_not_cached():
    cache = _RoleCache(ttl=60)
    calls = []

    def load():
        calls.append(1)
        return None

    assert cache.get_or_set("ROLE:u1", load) is None
    assert cache.get_or_set("ROLE:u1", load) is None
    assert len(calls) == 2


def test_hits_skip_the_loader_until_deleted():
    cache = _RoleCache(ttl=60)
    assert cache.get_or_set("ROLE:u1", lambda: "hr") == "hr"
    assert cache.get_or_set("ROLE:u1", lambda: "candidate") == "hr"
    cache.delete("ROLE:u1")
    assert cache.get_or_set("ROLE:u1", lambda: "candidate") == "candidate"

    stats = cache.stats()
    assert stats["hits"] == 1
    assert stats["size"] == 1


def test_module_cache_helpers():
    cache_clear()
    key = role_key(" u9 ")
    assert key == "ROLE:u9"
    assert cache_get_or_set(key, lambda: "candidate") == "candidate"
    assert cache_stats()["size"] == 1
    cache_clear()
    assert cache_stats()["size"] == 0
