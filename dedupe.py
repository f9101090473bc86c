"""
dedupe.py
---------
Collapses concurrent identical reads into a single in-flight task.

A caller that gives up (its task is cancelled) stops waiting, but the shared
task keeps running so its result still lands in the cache for later callers.
"""
from __future__ import annotations
import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List

logger = logging.getLogger("uvicorn.error")


class RequestDeduplicator:
    def __init__(self) -> None:
        self._pending: Dict[str, "asyncio.Task[Any]"] = {}

    def in_flight(self, key: str) -> bool:
        return key in self._pending

    def pending_count(self) -> int:
        return len(self._pending)

    async def dedupe(self, key: str, producer: Callable[[], Awaitable[Any]]) -> Any:
        task = self._pending.get(key)
        if task is None:
            task = asyncio.ensure_future(producer())
            self._pending[key] = task
            task.add_done_callback(lambda t: self._settle(key, t))
        else:
            logger.info("DEDUPE JOIN → key=%s", key)
        return await asyncio.shield(task)

    def forget(self, predicate: Callable[[str], bool]) -> List[str]:
        """
        Detach pending tasks whose key matches `predicate`. The tasks keep running for
        the callers already waiting on them; the next dedupe() for that key starts fresh.
        """
        keys = [key for key in self._pending if predicate(key)]
        for key in keys:
            del self._pending[key]
            logger.info("DEDUPE FORGET → key=%s", key)
        return keys

    def _settle(self, key: str, task: "asyncio.Task[Any]") -> None:
        if self._pending.get(key) is task:
            del self._pending[key]
        # Mark the error as retrieved; every waiter that is still around gets it re-raised.
        if not task.cancelled() and task.exception() is not None:
            logger.debug("DEDUPE FAILED → key=%s error=%r", key, task.exception())
