"""
cache_store.py
--------------
A small, thread-safe TTL cache for API responses, with category tags.

Features:
- TTL fixed per entry at write time
- Stale reads on request (allow_stale=True), flagged as stale
- Category-scoped clears and substring invalidation
- Optional LRU soft cap
- hit/miss/stale/eviction counters

The store is constructed explicitly and handed to whatever needs it; nothing
in this module is a process-wide singleton.
"""
from __future__ import annotations
from dataclasses import dataclass
from collections import OrderedDict
from threading import RLock
from time import time
from typing import Any, Callable, Dict, List, Optional

from app_types import CacheCategory

DEFAULT_TTL_SECONDS = 5 * 60


@dataclass(frozen=True)
class CacheEntry:
    key: str
    value: Any
    stored_at: float
    ttl: float
    category: CacheCategory = CacheCategory.API_RESPONSES

    @property
    def expires_at(self) -> float:
        return self.stored_at + self.ttl

    def is_fresh(self, now: float) -> bool:
        return now - self.stored_at < self.ttl


@dataclass(frozen=True)
class CacheHit:
    value: Any
    stale: bool
    entry: CacheEntry


class CacheStore:
    """
    TTL key/value store.
    - get(): CacheHit or None. Stale entries are only returned with allow_stale=True,
      but they are kept around so a later stale-allowed read can still use them.
    - set(): stores value with TTL (store default if not given); evicts LRU over maxsize
    - clear(category): drops one category, or everything
    - get_stats(): counters plus per-category entry counts

    Stored values must be treated as read-only by callers.
    """
    def __init__(
        self,
        default_ttl: float = DEFAULT_TTL_SECONDS,
        maxsize: Optional[int] = None,
        stale_retention: Optional[float] = None,
        clock: Callable[[], float] = time,
    ) -> None:
        if default_ttl <= 0:
            raise ValueError("default_ttl must be > 0")
        self.default_ttl = default_ttl
        self.maxsize = maxsize or None
        self.stale_retention = stale_retention
        self._clock = clock
        self._store: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = RLock()
        self._hits = 0
        self._misses = 0
        self._stale_hits = 0
        self._evictions = 0

    def _now(self) -> float:
        return self._clock()

    def _is_dead(self, entry: CacheEntry, now: float) -> bool:
        # Past the stale window: no longer worth serving even as a fallback.
        if self.stale_retention is None:
            return False
        return now - entry.expires_at >= self.stale_retention

    def get(self, key: str, allow_stale: bool = False) -> Optional[CacheHit]:
        with self._lock:
            now = self._now()
            entry = self._store.get(key)
            if entry is not None and self._is_dead(entry, now):
                self._store.pop(key, None)
                entry = None
            if entry is None:
                self._misses += 1
                return None

            if entry.is_fresh(now):
                self._store.move_to_end(key)
                self._hits += 1
                return CacheHit(value=entry.value, stale=False, entry=entry)

            self._misses += 1
            if not allow_stale:
                return None
            self._stale_hits += 1
            return CacheHit(value=entry.value, stale=True, entry=entry)

    def fallback(self, key: str) -> Optional[CacheHit]:
        """
        Stale-allowed read used after a failed refetch. The miss that triggered the
        refetch was already counted, so only the stale hit is recorded here.
        """
        with self._lock:
            now = self._now()
            entry = self._store.get(key)
            if entry is not None and self._is_dead(entry, now):
                self._store.pop(key, None)
                entry = None
            if entry is None:
                return None
            if entry.is_fresh(now):
                return CacheHit(value=entry.value, stale=False, entry=entry)
            self._stale_hits += 1
            return CacheHit(value=entry.value, stale=True, entry=entry)

    def set(
        self,
        key: str,
        value: Any,
        ttl: Optional[float] = None,
        category: CacheCategory = CacheCategory.API_RESPONSES,
    ) -> CacheEntry:
        ttl = self.default_ttl if ttl is None else ttl
        if ttl <= 0:
            raise ValueError(f"ttl must be > 0, got {ttl}")
        with self._lock:
            entry = CacheEntry(
                key=key,
                value=value,
                stored_at=self._now(),
                ttl=ttl,
                category=CacheCategory(category),
            )
            self._store[key] = entry
            self._store.move_to_end(key)
            if self.maxsize is not None:
                while len(self._store) > self.maxsize:
                    self._store.popitem(last=False)
                    self._evictions += 1
            return entry

    def has(self, key: str) -> bool:
        with self._lock:
            return key in self._store

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._store.keys())

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._store.pop(key, None) is not None

    def invalidate_pattern(self, pattern: str) -> int:
        """Delete every entry whose key contains `pattern`. Returns how many went."""
        with self._lock:
            doomed = [k for k in self._store if pattern in k]
            for k in doomed:
                del self._store[k]
            return len(doomed)

    def prune_expired(self) -> int:
        with self._lock:
            now = self._now()
            if self.stale_retention is None:
                doomed = [k for k, e in self._store.items() if not e.is_fresh(now)]
            else:
                doomed = [k for k, e in self._store.items() if self._is_dead(e, now)]
            for k in doomed:
                del self._store[k]
            return len(doomed)

    def clear(self, category: Optional[CacheCategory] = None) -> None:
        with self._lock:
            if category is None:
                self._store.clear()
                self._hits = self._misses = self._stale_hits = self._evictions = 0
                return
            category = CacheCategory(category)
            for k in [k for k, e in self._store.items() if e.category == category]:
                del self._store[k]

    def get_stats(self) -> dict:
        with self._lock:
            by_category: Dict[str, int] = {}
            for entry in self._store.values():
                by_category[entry.category.value] = by_category.get(entry.category.value, 0) + 1
            lookups = self._hits + self._misses
            return {
                "entry_count": len(self._store),
                "maxsize": self.maxsize,
                "default_ttl_seconds": self.default_ttl,
                "hits": self._hits,
                "misses": self._misses,
                "stale_hits": self._stale_hits,
                "evictions": self._evictions,
                "hit_rate": round(self._hits / lookups, 4) if lookups else 0.0,
                "by_category": by_category,
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)
