from __future__ import annotations
from typing import List, Optional

import orjson
import redis.asyncio as redis


# ---- keys
K_PRICELIST = "pricelist:prepaid"


class SnapshotStore:
    """Price list shared by all workers; Redis expires it after the TTL."""

    def __init__(self, r: redis.Redis, ttl_seconds: float) -> None:
        self.r = r
        self.ttl = ttl_seconds

    async def load(self) -> Optional[List[dict]]:
        raw = await self.r.get(K_PRICELIST)
        if raw is None:
            return None
        return orjson.loads(raw)

    async def save(self, entries: List[dict]) -> None:
        await self.r.set(
            K_PRICELIST,
            orjson.dumps(entries),
            px=max(1, int(self.ttl * 1000)),
        )
