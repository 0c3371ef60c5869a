from __future__ import annotations
import asyncio
from typing import Any, Awaitable, Callable, Set

from .logs import get_logger

log = get_logger("tasks")


class TaskRunner:
    """Fire-and-forget side effects off the request path.

    Each job runs in its own asyncio task. The runner holds a reference
    until the task finishes and logs how it ended. `drain()` waits for
    everything in flight (shutdown, tests).
    """

    def __init__(self) -> None:
        self._tasks: Set[asyncio.Task] = set()

    def spawn(self, name: str, fn: Callable[[], Awaitable[Any]],
              **ctx: Any) -> asyncio.Task:
        task = asyncio.create_task(self._run(name, fn, ctx), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, name: str, fn, ctx: dict) -> None:
        try:
            result = await fn()
        except asyncio.CancelledError:
            log.warning("task.cancelled", task=name, **ctx)
            raise
        except Exception:
            log.error("task.failed", task=name, exc_info=True, **ctx)
            return
        log.info("task.done", task=name, result=result, **ctx)

    async def drain(self) -> None:
        # jobs may spawn follow-up jobs
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
