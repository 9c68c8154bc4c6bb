# src/pipeline/worker_pool.py — v1
"""Asyncio worker pool over the durable work queue.

N workers per stage claim items, run the stage handler and acknowledge or
fail the item. A handler failure never escapes a worker: it is classified
retryable or fatal and routed back to the queue, so one bad item cannot
stall a stage.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable

from regtruth.core.errors import (
    ExtractionFailure,
    ImmutabilityViolation,
    InvalidTransition,
    NotFoundError,
    PredicateValidationError,
    ProvenanceMismatch,
)
from regtruth.core.models import WorkItem, WorkStage
from regtruth.logging.context import clear_context, set_worker_context
from regtruth.pipeline.work_queue import WorkQueue

logger = logging.getLogger(__name__)

StageHandler = Callable[[WorkItem], Awaitable[None]]

NON_RETRYABLE_ERRORS: tuple[type[Exception], ...] = (
    ExtractionFailure,
    ImmutabilityViolation,
    InvalidTransition,
    NotFoundError,
    PredicateValidationError,
    ProvenanceMismatch,
)


def is_retryable(error: BaseException) -> bool:
    return not isinstance(error, NON_RETRYABLE_ERRORS)


@dataclass
class PoolStats:
    """Counters per stage, for logs and the CLI summary."""

    processed: dict[str, int] = field(default_factory=dict)
    failed: dict[str, int] = field(default_factory=dict)

    def bump(self, counter: dict[str, int], stage: str) -> None:
        counter[stage] = counter.get(stage, 0) + 1


class WorkerPool:
    """Runs stage handlers on N workers per stage."""

    def __init__(
        self,
        queue: WorkQueue,
        handlers: dict[WorkStage, StageHandler],
        workers_per_stage: dict[WorkStage, int] | None = None,
        poll_interval_s: float = 0.05,
    ) -> None:
        self._queue = queue
        self._handlers = handlers
        self._workers_per_stage = workers_per_stage or {stage: 1 for stage in handlers}
        self._poll_interval_s = poll_interval_s
        self._tasks: list[asyncio.Task[None]] = []
        self._stopping = asyncio.Event()
        self.stats = PoolStats()

    @property
    def running(self) -> bool:
        return any(not t.done() for t in self._tasks)

    def start(self) -> None:
        if self.running:
            return
        self._stopping.clear()
        for stage, handler in self._handlers.items():
            for n in range(self._workers_per_stage.get(stage, 1)):
                name = f"{stage}-{n}"
                self._tasks.append(
                    asyncio.create_task(self._worker(stage, name, handler), name=name)
                )
        logger.info("Started %d workers", len(self._tasks))

    async def stop(self) -> None:
        self._stopping.set()
        tasks, self._tasks = self._tasks, []
        await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Workers stopped")

    async def drain(self, timeout_s: float | None = None) -> PoolStats:
        """Run until no item is QUEUED or CLAIMED, then stop.

        Raises:
            asyncio.TimeoutError: If the queue is not empty after timeout_s.
        """
        self.start()
        deadline = None if timeout_s is None else time.monotonic() + timeout_s
        try:
            while await self._queue.outstanding():
                if deadline is not None and time.monotonic() > deadline:
                    raise asyncio.TimeoutError(f"queue not drained within {timeout_s}s")
                await asyncio.sleep(self._poll_interval_s)
        finally:
            await self.stop()
        return self.stats

    async def _worker(self, stage: WorkStage, name: str, handler: StageHandler) -> None:
        set_worker_context(stage, name)
        try:
            while not self._stopping.is_set():
                item = await self._queue.claim(stage)
                if item is None:
                    await asyncio.sleep(self._poll_interval_s)
                    continue
                await self._run_one(stage, item, handler)
        finally:
            clear_context()

    async def _run_one(self, stage: WorkStage, item: WorkItem, handler: StageHandler) -> None:
        started = time.monotonic()
        try:
            await handler(item)
        except asyncio.CancelledError:
            await self._queue.fail(item, "cancelled")
            raise
        except Exception as e:
            self.stats.bump(self.stats.failed, stage)
            retryable = is_retryable(e)
            if not retryable:
                logger.error("%s %s failed permanently: %s", stage, item.payload_id, e)
            await self._queue.fail(item, e, retryable=retryable)
            return
        await self._queue.ack(item)
        self.stats.bump(self.stats.processed, stage)
        logger.debug(
            "%s %s done in %dms", stage, item.payload_id, int((time.monotonic() - started) * 1000)
        )
