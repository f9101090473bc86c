"""
Tests for the read strategies and request deduplication.
"""

import asyncio
import logging

import pytest

from app_types import CacheStrategy
from dedupe import RequestDeduplicator
from errors import CacheMiss, NetworkFailure
from policies import EndpointPolicy


def policy(strategy, ttl=300):
    return EndpointPolicy("/ponds", ttl, strategy)


class CountingFetch:
    """Fetch function returning successive values; optionally gated on an event."""

    def __init__(self, *values, gate=None):
        self.values = list(values)
        self.calls = 0
        self.gate = gate

    async def __call__(self):
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        value = self.values[min(self.calls, len(self.values)) - 1]
        if isinstance(value, Exception):
            raise value
        return value


class TestCacheFirst:
    """CACHE_FIRST."""

    @pytest.mark.asyncio
    async def test_miss_fetches_and_stores(self, engine, store):
        fetch = CountingFetch(["pond"])
        result = await engine.execute_with_meta("get_/ponds", fetch, policy(CacheStrategy.CACHE_FIRST))

        assert result.value == ["pond"]
        assert result.from_cache is False
        assert store.get("get_/ponds").value == ["pond"]

    @pytest.mark.asyncio
    async def test_fresh_hit_skips_fetch(self, engine):
        fetch = CountingFetch("a", "b")
        p = policy(CacheStrategy.CACHE_FIRST)
        await engine.execute("k", fetch, p)
        assert await engine.execute("k", fetch, p) == "a"
        assert fetch.calls == 1

    @pytest.mark.asyncio
    async def test_stale_entry_is_refetched(self, engine, clock):
        fetch = CountingFetch("a", "b")
        p = policy(CacheStrategy.CACHE_FIRST, ttl=10)
        await engine.execute("k", fetch, p)
        clock.advance(11)

        assert await engine.execute("k", fetch, p) == "b"
        assert fetch.calls == 2

    @pytest.mark.asyncio
    async def test_failed_fetch_degrades_to_stale(self, engine, clock):
        p = policy(CacheStrategy.CACHE_FIRST, ttl=10)
        await engine.execute("k", CountingFetch("old"), p)
        clock.advance(11)

        result = await engine.execute_with_meta("k", CountingFetch(NetworkFailure("down")), p)
        assert result.value == "old"
        assert result.stale is True

    @pytest.mark.asyncio
    async def test_refetched_stale_entry_is_not_a_stale_hit(self, engine, store, clock):
        p = policy(CacheStrategy.CACHE_FIRST, ttl=10)
        await engine.execute("k", CountingFetch("a"), p)
        clock.advance(11)

        await engine.execute("k", CountingFetch("b"), p)

        assert store.get_stats()["stale_hits"] == 0

    @pytest.mark.asyncio
    async def test_failed_fetch_without_entry_propagates(self, engine):
        error = NetworkFailure("down", status_code=503)
        with pytest.raises(NetworkFailure) as info:
            await engine.execute("k", CountingFetch(error), policy(CacheStrategy.CACHE_FIRST))
        assert info.value is error


class TestNetworkFirst:
    """NETWORK_FIRST."""

    @pytest.mark.asyncio
    async def test_always_fetches(self, engine):
        fetch = CountingFetch("a", "b")
        p = policy(CacheStrategy.NETWORK_FIRST)
        await engine.execute("k", fetch, p)
        assert await engine.execute("k", fetch, p) == "b"
        assert fetch.calls == 2

    @pytest.mark.asyncio
    async def test_falls_back_to_stale_entry(self, engine, clock):
        p = policy(CacheStrategy.NETWORK_FIRST, ttl=5)
        await engine.execute("k", CountingFetch("old"), p)
        clock.advance(100)

        result = await engine.execute_with_meta("k", CountingFetch(RuntimeError("boom")), p)
        assert result.value == "old"
        assert result.stale is True
        assert result.from_cache is True

    @pytest.mark.asyncio
    async def test_falls_back_to_fresh_entry_unflagged(self, engine):
        p = policy(CacheStrategy.NETWORK_FIRST)
        await engine.execute("k", CountingFetch("cached"), p)

        result = await engine.execute_with_meta("k", CountingFetch(RuntimeError("boom")), p)
        assert result.value == "cached"
        assert result.stale is False

    @pytest.mark.asyncio
    async def test_error_without_entry_propagates(self, engine):
        with pytest.raises(RuntimeError, match="boom"):
            await engine.execute("k", CountingFetch(RuntimeError("boom")), policy(CacheStrategy.NETWORK_FIRST))


class TestStaleWhileRevalidate:
    """STALE_WHILE_REVALIDATE."""

    @pytest.mark.asyncio
    async def test_empty_cache_fetches_synchronously(self, engine):
        fetch = CountingFetch(["p1", "p2"])
        value = await engine.execute("get_/ponds", fetch, policy(CacheStrategy.STALE_WHILE_REVALIDATE))

        assert value == ["p1", "p2"]
        assert fetch.calls == 1
        assert engine.background_count() == 0

    @pytest.mark.asyncio
    async def test_fresh_entry_does_not_revalidate(self, engine):
        fetch = CountingFetch("a", "b")
        p = policy(CacheStrategy.STALE_WHILE_REVALIDATE)
        await engine.execute("k", fetch, p)
        await engine.execute("k", fetch, p)

        assert fetch.calls == 1
        assert engine.background_count() == 0

    @pytest.mark.asyncio
    async def test_stale_entry_served_while_refreshing(self, engine, store, clock):
        gate = asyncio.Event()
        first = ["pond-a"]
        fetch = CountingFetch(first, ["pond-a", "pond-b"])
        p = policy(CacheStrategy.STALE_WHILE_REVALIDATE, ttl=300)

        assert await engine.execute("get_/ponds", fetch, p) == first
        clock.advance(301)

        fetch.gate = gate
        result = await engine.execute_with_meta("get_/ponds", fetch, p)

        # Returned immediately, the refresh is still waiting on the gate
        assert result.value is first
        assert result.stale is True
        assert engine.background_count() == 1

        gate.set()
        await engine.wait_for_background()

        assert fetch.calls == 2
        hit = store.get("get_/ponds")
        assert hit.value == ["pond-a", "pond-b"]
        assert hit.stale is False

    @pytest.mark.asyncio
    async def test_background_failure_is_logged_not_raised(self, engine, clock, caplog):
        p = policy(CacheStrategy.STALE_WHILE_REVALIDATE, ttl=10)
        await engine.execute("k", CountingFetch("old"), p)
        clock.advance(11)

        with caplog.at_level(logging.WARNING, logger="uvicorn.error"):
            value = await engine.execute("k", CountingFetch(NetworkFailure("down")), p)
            await engine.wait_for_background()

        assert value == "old"
        assert "Background revalidation failed" in caplog.text


class TestOtherStrategies:
    """CACHE_ONLY / NETWORK_ONLY."""

    @pytest.mark.asyncio
    async def test_cache_only_miss_raises(self, engine):
        fetch = CountingFetch("a")
        with pytest.raises(CacheMiss):
            await engine.execute("k", fetch, policy(CacheStrategy.CACHE_ONLY))
        assert fetch.calls == 0

    @pytest.mark.asyncio
    async def test_cache_only_returns_stale_flagged(self, engine, store, clock):
        store.set("k", "v", ttl=1)
        clock.advance(5)
        result = await engine.execute_with_meta("k", CountingFetch("x"), policy(CacheStrategy.CACHE_ONLY))
        assert (result.value, result.stale) == ("v", True)

    @pytest.mark.asyncio
    async def test_network_only_has_no_fallback(self, engine, store):
        store.set("k", "cached")
        with pytest.raises(NetworkFailure):
            await engine.execute("k", CountingFetch(NetworkFailure("x")), policy(CacheStrategy.NETWORK_ONLY))


class TestDeduplication:
    """Concurrent reads of one key share a single fetch."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("strategy", [
        CacheStrategy.CACHE_FIRST,
        CacheStrategy.NETWORK_FIRST,
        CacheStrategy.STALE_WHILE_REVALIDATE,
    ])
    async def test_concurrent_callers_fetch_once(self, engine, strategy):
        gate = asyncio.Event()
        fetch = CountingFetch(["shared"], gate=gate)
        p = policy(strategy)

        tasks = [asyncio.ensure_future(engine.execute("get_/ponds", fetch, p)) for _ in range(5)]
        await asyncio.sleep(0)
        gate.set()
        results = await asyncio.gather(*tasks)

        assert fetch.calls == 1
        assert all(r is results[0] for r in results)
        assert engine.upstream_calls == 1

    @pytest.mark.asyncio
    async def test_failure_is_shared_and_then_cleared(self):
        dedup = RequestDeduplicator()
        gate = asyncio.Event()
        fetch = CountingFetch(RuntimeError("boom"), "ok", gate=gate)

        tasks = [asyncio.ensure_future(dedup.dedupe("k", fetch)) for _ in range(3)]
        await asyncio.sleep(0)
        assert dedup.in_flight("k")
        gate.set()
        results = await asyncio.gather(*tasks, return_exceptions=True)

        assert all(isinstance(r, RuntimeError) for r in results)
        assert fetch.calls == 1
        assert dedup.pending_count() == 0

        assert await dedup.dedupe("k", fetch) == "ok"
        assert fetch.calls == 2

    @pytest.mark.asyncio
    async def test_abandoned_caller_does_not_cancel_fetch(self, engine, store):
        gate = asyncio.Event()
        fetch = CountingFetch("value", gate=gate)
        p = policy(CacheStrategy.CACHE_FIRST)

        abandoned = asyncio.ensure_future(engine.execute("k", fetch, p))
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        abandoned.cancel()
        with pytest.raises(asyncio.CancelledError):
            await abandoned

        gate.set()
        assert await engine.execute("k", fetch, p) == "value"
        assert fetch.calls == 1
        assert store.get("k").value == "value"

    @pytest.mark.asyncio
    async def test_superseded_fetch_is_not_joined_or_stored(self, engine, store):
        early_gate, late_gate = asyncio.Event(), asyncio.Event()
        p = policy(CacheStrategy.NETWORK_ONLY)

        early = asyncio.ensure_future(engine.execute("get_/ponds", CountingFetch("old", gate=early_gate), p))
        await asyncio.sleep(0)
        assert engine.supersede(lambda key: "_/ponds" in key) == ["get_/ponds"]
        assert not engine.deduplicator.in_flight("get_/ponds")

        late_fetch = CountingFetch("new", gate=late_gate)
        late = asyncio.ensure_future(engine.execute("get_/ponds", late_fetch, p))
        await asyncio.sleep(0)
        late_gate.set()
        assert await late == "new"
        early_gate.set()
        assert await early == "old"

        assert late_fetch.calls == 1
        assert store.get("get_/ponds").value == "new"

    @pytest.mark.asyncio
    async def test_forget_only_matching_keys(self):
        dedup = RequestDeduplicator()
        gate = asyncio.Event()
        tasks = [
            asyncio.ensure_future(dedup.dedupe(key, CountingFetch(key, gate=gate)))
            for key in ("get_/ponds", "get_/expenses")
        ]
        await asyncio.sleep(0)

        assert dedup.forget(lambda key: "ponds" in key) == ["get_/ponds"]
        assert dedup.pending_count() == 1
        gate.set()
        assert await asyncio.gather(*tasks) == ["get_/ponds", "get_/expenses"]
        assert dedup.pending_count() == 0
