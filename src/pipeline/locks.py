# src/pipeline/locks.py — v1
"""Per-key asyncio locks: single writer at a time per rule, conflict or URL.

Locks are created on first use and dropped once no coroutine holds or
waits on them, so the table stays proportional to in-flight work.
"""

from __future__ import annotations

import asyncio
from contextlib import AsyncExitStack, asynccontextmanager
from typing import AsyncIterator


class KeyedLock:
    """Mutual exclusion scoped to a string key."""

    def __init__(self, name: str = "lock") -> None:
        self.name = name
        self._locks: dict[str, asyncio.Lock] = {}
        self._waiters: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        """Hold the lock for key for the duration of the block."""
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                del self._locks[key]

    @asynccontextmanager
    async def hold_many(self, keys: list[str]) -> AsyncIterator[None]:
        """Hold several keys, acquired in sorted order to avoid deadlock."""
        async with AsyncExitStack() as stack:
            for key in sorted(set(keys)):
                await stack.enter_async_context(self.hold(key))
            yield

    def __len__(self) -> int:
        return len(self._locks)
