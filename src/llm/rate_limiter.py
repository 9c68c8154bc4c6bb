# src/llm/rate_limiter.py — v1
"""Async rate limiter for the extraction service.

Two limits apply together: at most ``max_concurrent`` calls in flight and
at most ``max_per_minute`` call starts in any sliding 60-second window.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from typing import Callable

logger = logging.getLogger(__name__)


class AsyncRateLimiter:
    """Concurrency semaphore plus sliding-window start rate."""

    def __init__(
        self,
        max_per_minute: int = 20,
        max_concurrent: int = 2,
        window_s: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_per_minute < 1 or max_concurrent < 1:
            raise ValueError("rate limits must be >= 1")
        self._max_per_window = max_per_minute
        self._window_s = window_s
        self._clock = clock
        self._starts: deque[float] = deque()
        self._window_lock = asyncio.Lock()
        self._slots = asyncio.Semaphore(max_concurrent)

    async def acquire(self) -> None:
        await self._slots.acquire()
        try:
            await self._wait_for_window()
        except BaseException:
            self._slots.release()
            raise

    def release(self) -> None:
        self._slots.release()

    async def __aenter__(self) -> AsyncRateLimiter:
        await self.acquire()
        return self

    async def __aexit__(self, *exc: object) -> None:
        self.release()

    async def _wait_for_window(self) -> None:
        async with self._window_lock:
            while True:
                now = self._clock()
                while self._starts and now - self._starts[0] >= self._window_s:
                    self._starts.popleft()
                if len(self._starts) < self._max_per_window:
                    self._starts.append(now)
                    return
                wait = self._window_s - (now - self._starts[0])
                logger.debug("Rate limit reached, waiting %.2fs", wait)
                await asyncio.sleep(wait)

    @property
    def in_window(self) -> int:
        """Call starts recorded in the current window."""
        return len(self._starts)
