"""
Query result cache.
Thread-safe LRU keyed by (collection, limit, threshold, query vector digest).
The lock only guards dict operations; callers embed and query the store
outside of it.

Entries may carry an expiry (the `cache_ttl` system setting). Every
invalidation bumps a generation counter: a caller reads `generation` before
querying the store and hands it back to `put`, which drops the result if a
write invalidated the cache in the meantime.
"""

import hashlib
import threading
import time
from collections import OrderedDict
from typing import Any, Callable, Dict, List, NamedTuple, Optional, Tuple

import numpy as np

from ..core.config import QUERY_CACHE_CAPACITY, CACHE_QUANTIZE_DECIMALS
from ..util.logging import logger


class CacheKey(NamedTuple):
    collection_id: str
    limit: int
    threshold: float
    vector_digest: str


def vector_digest(vector, decimals: int = CACHE_QUANTIZE_DECIMALS) -> str:
    """Digest of the quantized float32 bit pattern of a query vector."""
    arr = np.asarray(vector, dtype=np.float32)
    if decimals is not None:
        # round away float noise so equal queries share a key; +0.0 folds -0.0
        arr = np.round(arr, decimals) + np.float32(0.0)
    return hashlib.blake2b(np.ascontiguousarray(arr).tobytes(), digest_size=16).hexdigest()


def make_key(collection_id: str, limit: int, threshold: float, vector) -> CacheKey:
    return CacheKey(collection_id, int(limit), round(float(threshold), 6), vector_digest(vector))


class QueryCache:
    """Bounded LRU mapping a query descriptor to an ordered result list."""

    def __init__(self, capacity: int = QUERY_CACHE_CAPACITY, clock: Callable[[], float] = time.monotonic):
        if capacity < 0:
            raise ValueError("capacity must be >= 0")
        # value: (expires_at or None, results)
        self._cache: "OrderedDict[CacheKey, Tuple[Optional[float], List[Any]]]" = OrderedDict()
        self._capacity = capacity
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._expired = 0
        self._generation = 0
        self.clock = clock

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def generation(self) -> int:
        """Counter bumped by every invalidation."""
        with self._lock:
            return self._generation

    def get(self, key: CacheKey) -> Optional[List[Any]]:
        """Get results from cache, marking the entry most recently used. Expired entries count as misses."""
        now = self.clock()
        with self._lock:
            entry = self._cache.get(key)
            if entry is not None:
                expires_at, results = entry
                if expires_at is None or now < expires_at:
                    self._cache.move_to_end(key)
                    self._hits += 1
                    return list(results)
                del self._cache[key]
                self._expired += 1
            self._misses += 1
            return None

    def put(self, key: CacheKey, results: List[Any], ttl: Optional[float] = None, generation: Optional[int] = None) -> bool:
        """
        Store results, evicting the least recently used entry when full.

        Args:
            key: Cache key from make_key
            results: Ordered results to store (copied)
            ttl: Seconds until the entry expires; None or <= 0 keeps it until evicted
            generation: Value of `generation` read before the results were computed;
                the put is skipped if the cache was invalidated since

        Returns:
            True when the entry was stored
        """
        if self._capacity == 0:
            return False

        expires_at = self.clock() + ttl if ttl is not None and ttl > 0 else None
        with self._lock:
            if generation is not None and generation != self._generation:
                return False
            if key in self._cache:
                self._cache.move_to_end(key)
            else:
                while len(self._cache) >= self._capacity:
                    self._cache.popitem(last=False)
            self._cache[key] = (expires_at, list(results))
            return True

    def clear(self) -> int:
        """Drop every entry; returns how many were removed."""
        with self._lock:
            removed = len(self._cache)
            self._cache.clear()
            self._generation += 1
        logger.log_cache("invalidated", {"scope": "all", "entries": removed})
        return removed

    def invalidate_collection(self, collection_id: str) -> int:
        """Drop only the entries computed against one collection."""
        with self._lock:
            stale = [k for k in self._cache if k.collection_id == collection_id]
            for k in stale:
                del self._cache[k]
            self._generation += 1
        logger.log_cache("invalidated", {"scope": collection_id, "entries": len(stale)})
        return len(stale)

    def purge_expired(self) -> int:
        """Remove expired entries; returns how many were dropped."""
        now = self.clock()
        with self._lock:
            expired = [k for k, (expires_at, _) in self._cache.items() if expires_at is not None and now >= expires_at]
            for k in expired:
                del self._cache[k]
            self._expired += len(expired)
        if expired:
            logger.log_cache("expired", {"entries": len(expired)})
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)

    def stats(self) -> Dict[str, Any]:
        """Return cache statistics."""
        with self._lock:
            total = self._hits + self._misses
            return {
                "size": len(self._cache),
                "capacity": self._capacity,
                "hits": self._hits,
                "misses": self._misses,
                "expired": self._expired,
                "hit_rate": (self._hits / total * 100) if total > 0 else 0,
            }
