from __future__ import annotations
from typing import Callable, List, Optional


class SnapshotStore:
    """Price list held in this process, stamped with the clock."""

    def __init__(self, ttl_seconds: float, clock: Callable[[], float]) -> None:
        self.ttl = ttl_seconds
        self.clock = clock
        self._entries: Optional[List[dict]] = None
        self._fetched_at = 0.0

    async def load(self) -> Optional[List[dict]]:
        if self._entries is None:
            return None
        if self.clock() - self._fetched_at >= self.ttl:
            return None
        return self._entries

    async def save(self, entries: List[dict]) -> None:
        self._entries = entries
        self._fetched_at = self.clock()
