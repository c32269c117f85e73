"""
Query Result Cache

LRU cache with TTL for catalog list and search pages.

- List pages change only after a sync run: TTL 1 hour
- Search pages: TTL 5 minutes
- Cache key: MD5 hash of operation + entity type + query + paging
- Max size: QUERY_CACHE_MAX_SIZE entries (LRU eviction)

Usage:
    cache = QueryCache(max_size=1000)
    page = cache.get("list", "comics", page=2, per_page=20)
    if page is None:
        page = await build_page(...)
        cache.set("list", "comics", page, ttl_seconds=3600, page=2, per_page=20)
"""
import hashlib
import logging
import time
from collections import OrderedDict
from typing import Any, Dict, Optional, Tuple

logger = logging.getLogger(__name__)


class QueryCache:
    """
    LRU cache with per-entry TTL.

    Safe for single-threaded async usage (standard in asyncio).
    """

    def __init__(self, ttl_seconds: int = 3600, max_size: int = 1000):
        self.ttl_seconds = ttl_seconds
        self.max_size = max_size
        # key -> (expires_at, value)
        self._cache: "OrderedDict[str, Tuple[float, Any]]" = OrderedDict()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def _make_key(self, operation: str, entity_type: str, **params) -> str:
        key_parts = [operation, entity_type]
        for k, v in sorted(params.items()):
            if v is not None:
                key_parts.append(f"{k}={str(v).lower().strip()}")
        return hashlib.md5("|".join(key_parts).encode()).hexdigest()

    def get(self, operation: str, entity_type: str, **params) -> Optional[Any]:
        """Return the cached value, or None on miss/expiry."""
        key = self._make_key(operation, entity_type, **params)

        if key not in self._cache:
            self._misses += 1
            return None

        expires_at, value = self._cache[key]
        if time.time() > expires_at:
            del self._cache[key]
            self._misses += 1
            return None

        self._cache.move_to_end(key)
        self._hits += 1
        logger.debug(f"[QUERY_CACHE] Hit: {operation}/{entity_type} {params}")
        return value

    def set(
        self,
        operation: str,
        entity_type: str,
        value: Any,
        ttl_seconds: Optional[int] = None,
        **params,
    ) -> None:
        key = self._make_key(operation, entity_type, **params)
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds

        if key in self._cache:
            del self._cache[key]

        while len(self._cache) >= self.max_size:
            self._cache.popitem(last=False)
            self._evictions += 1

        self._cache[key] = (time.time() + ttl, value)

    def clear(self) -> None:
        """Drop every entry. run_full_sync calls this on the cache it is handed."""
        count = len(self._cache)
        self._cache.clear()
        logger.info(f"[QUERY_CACHE] Cleared {count} entries")

    def __len__(self) -> int:
        return len(self._cache)

    def stats(self) -> Dict[str, Any]:
        total = self._hits + self._misses
        return {
            "size": len(self._cache),
            "max_size": self.max_size,
            "hits": self._hits,
            "misses": self._misses,
            "evictions": self._evictions,
            "hit_rate": round(self._hits / total, 3) if total else 0.0,
        }
