"""Per-key serialization of chat synchronization work."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Hashable
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SyncDispatcher:
    """Run chat work so that operations sharing a key never overlap.

    Operations on the same key run one at a time in the order they were
    issued; ``asyncio.Lock`` wakes waiters first come, first served, so the
    last issued transition is always the last one applied. Operations on
    different keys run concurrently.
    """

    def __init__(self) -> None:
        self._locks: dict[Hashable, asyncio.Lock] = {}
        self._waiters: dict[Hashable, int] = {}
        self._tasks: set[asyncio.Task[Any]] = set()

    async def run(self, key: Hashable, operation: Callable[[], Awaitable[T]]) -> T:
        """Await ``operation()`` while holding the lock for ``key``."""
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            async with lock:
                return await operation()
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                self._locks.pop(key, None)

    def spawn(self, key: Hashable, operation: Callable[[], Awaitable[T]]) -> asyncio.Task[T]:
        """Schedule ``operation`` under ``key`` without waiting for it.

        Must be called from a running event loop. The returned task may be
        awaited but does not have to be.
        """
        task = asyncio.get_running_loop().create_task(self.run(key, operation))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for every spawned task to finish."""
        while self._tasks:
            logger.debug("Waiting for %d chat sync tasks", len(self._tasks))
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
