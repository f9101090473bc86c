"""
strategies.py
-------------
Read strategies on top of CacheStore.

- CACHE_FIRST: fresh entry wins; otherwise fetch. Stale entry is served if the fetch fails.
- NETWORK_FIRST: always fetch; fall back to any cached entry on failure.
- STALE_WHILE_REVALIDATE: serve whatever is cached, refresh in the background if stale.
  Nothing cached at all -> plain cache-first fetch.
- CACHE_ONLY / NETWORK_ONLY: never fetch / never read.

All network calls for one key share a single in-flight task (see dedupe.py).
"""
from __future__ import annotations
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from app_types import CacheStrategy
from cache_store import CacheStore
from dedupe import RequestDeduplicator
from errors import CacheMiss
from policies import EndpointPolicy

logger = logging.getLogger("uvicorn.error")

FetchFn = Callable[[], Awaitable[Any]]


@dataclass(frozen=True)
class CacheResult:
    value: Any
    stale: bool = False
    from_cache: bool = False


class CacheStrategyEngine:
    def __init__(self, store: CacheStore, deduplicator: Optional[RequestDeduplicator] = None) -> None:
        self.store = store
        self.deduplicator = deduplicator or RequestDeduplicator()
        self._background: Set["asyncio.Task[Any]"] = set()
        self._generation: Dict[str, int] = {}
        self.upstream_calls = 0

    async def execute(self, key: str, fetch_fn: FetchFn, policy: EndpointPolicy) -> Any:
        result = await self.execute_with_meta(key, fetch_fn, policy)
        return result.value

    async def execute_with_meta(self, key: str, fetch_fn: FetchFn, policy: EndpointPolicy) -> CacheResult:
        strategy = policy.strategy
        if strategy == CacheStrategy.CACHE_FIRST:
            return await self._cache_first(key, fetch_fn, policy)
        if strategy == CacheStrategy.NETWORK_FIRST:
            return await self._network_first(key, fetch_fn, policy)
        if strategy == CacheStrategy.STALE_WHILE_REVALIDATE:
            return await self._stale_while_revalidate(key, fetch_fn, policy)
        if strategy == CacheStrategy.CACHE_ONLY:
            return self._cache_only(key)
        if strategy == CacheStrategy.NETWORK_ONLY:
            return CacheResult(await self._fetch(key, fetch_fn, policy))
        return await self._cache_first(key, fetch_fn, policy)

    # -----------------------------------------------------------
    # Strategies
    # -----------------------------------------------------------
    async def _cache_first(self, key: str, fetch_fn: FetchFn, policy: EndpointPolicy) -> CacheResult:
        hit = self.store.get(key)
        if hit is not None:
            logger.info("CACHE HIT → key=%s", key)
            return CacheResult(hit.value, stale=False, from_cache=True)

        logger.info("CACHE MISS → key=%s", key)
        try:
            return CacheResult(await self._fetch(key, fetch_fn, policy))
        except Exception as e:
            hit = self.store.fallback(key)
            if hit is None:
                raise
            logger.warning("SERVE STALE → key=%s after fetch error: %s", key, e)
            return CacheResult(hit.value, stale=hit.stale, from_cache=True)

    async def _network_first(self, key: str, fetch_fn: FetchFn, policy: EndpointPolicy) -> CacheResult:
        try:
            return CacheResult(await self._fetch(key, fetch_fn, policy))
        except Exception as e:
            hit = self.store.get(key, allow_stale=True)
            if hit is None:
                raise
            logger.warning("SERVE CACHED → key=%s stale=%s after fetch error: %s", key, hit.stale, e)
            return CacheResult(hit.value, stale=hit.stale, from_cache=True)

    async def _stale_while_revalidate(self, key: str, fetch_fn: FetchFn, policy: EndpointPolicy) -> CacheResult:
        hit = self.store.get(key, allow_stale=True)
        if hit is None:
            logger.info("CACHE MISS → key=%s (swr, fetching)", key)
            return CacheResult(await self._fetch(key, fetch_fn, policy))

        if hit.stale:
            logger.info("CACHE STALE → key=%s (swr, revalidating in background)", key)
            self._spawn_revalidation(key, fetch_fn, policy)
        else:
            logger.info("CACHE HIT → key=%s", key)
        return CacheResult(hit.value, stale=hit.stale, from_cache=True)

    def _cache_only(self, key: str) -> CacheResult:
        hit = self.store.get(key, allow_stale=True)
        if hit is None:
            raise CacheMiss(key)
        return CacheResult(hit.value, stale=hit.stale, from_cache=True)

    # -----------------------------------------------------------
    # Network + background refresh
    # -----------------------------------------------------------
    async def _fetch(self, key: str, fetch_fn: FetchFn, policy: EndpointPolicy) -> Any:
        generation = self._generation.get(key, 0)

        async def fetch_and_store() -> Any:
            self.upstream_calls += 1
            logger.info("UPSTREAM CALL → key=%s strategy=%s", key, policy.strategy.value)
            value = await fetch_fn()
            if self._generation.get(key, 0) == generation:
                self.store.set(key, value, ttl=policy.ttl, category=policy.category)
            else:
                logger.info("SUPERSEDED → key=%s (result not stored)", key)
            return value

        return await self.deduplicator.dedupe(key, fetch_and_store)

    def supersede(self, predicate: Callable[[str], bool]) -> List[str]:
        """
        Called after a write. In-flight fetches for matching keys started before the
        write: later reads must not join them and their results must not be stored.
        """
        keys = self.deduplicator.forget(predicate)
        for key in keys:
            self._generation[key] = self._generation.get(key, 0) + 1
        return keys

    def _spawn_revalidation(self, key: str, fetch_fn: FetchFn, policy: EndpointPolicy) -> None:
        task = asyncio.ensure_future(self._revalidate(key, fetch_fn, policy))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _revalidate(self, key: str, fetch_fn: FetchFn, policy: EndpointPolicy) -> None:
        try:
            await self._fetch(key, fetch_fn, policy)
            logger.info("REVALIDATED → key=%s", key)
        except Exception as e:
            logger.warning("Background revalidation failed for %s: %s", key, e)

    def background_count(self) -> int:
        return len(self._background)

    async def wait_for_background(self) -> None:
        """Wait until every background refresh spawned so far has finished."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
