from __future__ import annotations
import asyncio
import time
from typing import Awaitable, Callable, List, Optional

import redis.asyncio as redis

from ...errors import UpstreamFailure
from ...logs import get_logger
from . import _memory, _redis

log = get_logger("pricecache")

Fetch = Callable[[], Awaitable[List[dict]]]


class PriceCache:
    """Distributor price list with a fixed TTL.

    Concurrent misses share one in-flight fetch. A failed fetch returns
    an empty list and leaves the previous snapshot alone; callers must
    read empty as "temporarily unavailable".
    """

    def __init__(self, fetch: Fetch, store) -> None:
        self.fetch = fetch
        self.store = store
        self._lock = asyncio.Lock()
        self._inflight: Optional[asyncio.Task] = None

    async def get(self) -> List[dict]:
        entries = await self.store.load()
        if entries is not None:
            log.debug("pricelist.cache_hit")
            return entries
        return await self._refresh(force=False)

    # original name of the operation
    get_price_list = get

    async def force_refresh(self) -> List[dict]:
        return await self._refresh(force=True)

    async def _refresh(self, force: bool) -> List[dict]:
        async with self._lock:
            task = self._inflight
            if task is None:
                if not force:
                    # another caller may have refilled while we waited
                    entries = await self.store.load()
                    if entries is not None:
                        return entries
                task = asyncio.create_task(self._fetch_and_store())
                self._inflight = task
                task.add_done_callback(self._clear_inflight)
        return await asyncio.shield(task)

    def _clear_inflight(self, task: asyncio.Task) -> None:
        if self._inflight is task:
            self._inflight = None

    async def _fetch_and_store(self) -> List[dict]:
        log.info("pricelist.fetch")
        try:
            entries = await self.fetch()
        except UpstreamFailure as e:
            log.error("pricelist.fetch_failed", error=str(e))
            return []
        await self.store.save(entries)
        log.info("pricelist.stored", entries=len(entries))
        return entries


def new_price_cache(
    fetch: Fetch, *, backend: str = "memory", ttl_seconds: float = 300.0,
    r: Optional[redis.Redis] = None,
    clock: Callable[[], float] = time.monotonic,
) -> PriceCache:
    if backend == "redis":
        if r is None:
            raise RuntimeError("PriceCache(redis) requires r=redis.Redis")
        return PriceCache(fetch, _redis.SnapshotStore(r, ttl_seconds))
    if backend != "memory":
        raise ValueError(f"unknown price cache backend {backend!r}")
    return PriceCache(fetch, _memory.SnapshotStore(ttl_seconds, clock))


__all__ = ["PriceCache", "new_price_cache"]
