from __future__ import annotations

import threading
from typing import Any, Callable

from cachetools import TTLCache


ROLE_PREFIX = "ROLE:"


def role_key(user_id: str) -> str:
    return f"{ROLE_PREFIX}{str(user_id or '').strip()}"


class _RoleCache:
    """Thread-safe TTL cache for profile roles looked up on every request."""

    def __init__(self, ttl: int = 60, max_items: int = 10_000):
        self._lock = threading.RLock()
        self._hits = 0
        self._misses = 0
        self._cache = TTLCache(maxsize=max_items, ttl=ttl)

    def configure(self, *, ttl: int, max_items: int = 10_000) -> None:
        ttl = max(1, min(3600, int(ttl)))
        with self._lock:
            self._cache = TTLCache(maxsize=max(100, int(max_items)), ttl=ttl)
            self._hits = 0
            self._misses = 0

    def get(self, key: str) -> Any:
        with self._lock:
            val = self._cache.get(key)
            if val is None:
                self._misses += 1
            else:
                self._hits += 1
            return val

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._cache[key] = value

    def get_or_set(self, key: str, factory: Callable[[], Any]) -> Any:
        val = self.get(key)
        if val is not None:
            return val
        computed = factory()
        # Misses (e.g. no profile yet) are not cached.
        if computed is not None:
            self.set(key, computed)
        return computed

    def delete(self, key: str) -> None:
        with self._lock:
            self._cache.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()
            self._hits = 0
            self._misses = 0

    def stats(self) -> dict[str, Any]:
        with self._lock:
            total = self._hits + self._misses
            return {
                "size": len(self._cache),
                "maxsize": self._cache.maxsize,
                "ttl": self._cache.ttl,
                "hits": self._hits,
                "misses": self._misses,
                "hit_rate": round((self._hits / total * 100) if total else 0.0, 2),
            }


_cache = _RoleCache()


def configure_cache(ttl: int, max_items: int = 10_000) -> None:
    _cache.configure(ttl=ttl, max_items=max_items)


def cache_get_or_set(key: str, factory: Callable[[], Any]) -> Any:
    return _cache.get_or_set(key, factory)


def cache_delete(key: str) -> None:
    _cache.delete(key)


def cache_clear() -> None:
    _cache.clear()


def cache_stats() -> dict[str, Any]:
    return _cache.stats()
