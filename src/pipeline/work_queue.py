# src/pipeline/work_queue.py — v1
"""Durable, deduplicated work queue persisted in the store.

Work item ids are "<stage>:<payload_id>", so enqueueing the same payload
twice never produces two items. Failures back off exponentially and move
to DEAD_LETTER once the attempt budget is spent; dead letters are only
revived by an explicit requeue.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from regtruth.core.errors import NotFoundError
from regtruth.core.models import WorkItem, WorkStage, utcnow
from regtruth.storage.base_store import BaseStore

logger = logging.getLogger(__name__)


def work_id(stage: str, payload_id: str) -> str:
    return f"{stage}:{payload_id}"


class WorkQueue:
    """Queue operations over BaseStore work items."""

    def __init__(
        self,
        store: BaseStore,
        max_attempts: int = 5,
        base_delay_s: float = 1.0,
        max_delay_s: float = 30.0,
    ) -> None:
        self._store = store
        self._max_attempts = max_attempts
        self._base_delay_s = base_delay_s
        self._max_delay_s = max_delay_s

    @classmethod
    def from_settings(cls, store: BaseStore, settings) -> WorkQueue:
        return cls(
            store,
            max_attempts=settings.queue_max_attempts,
            base_delay_s=settings.retry_base_delay_s,
            max_delay_s=settings.retry_max_delay_s,
        )

    async def enqueue(self, stage: WorkStage, payload_id: str, delay_s: float = 0.0) -> bool:
        """Enqueue unless an equivalent item is already waiting.

        Returns:
            True if the payload will be processed because of this call.
        """
        now = utcnow()
        item = WorkItem(
            id=work_id(stage, payload_id),
            stage=stage,
            payload_id=payload_id,
            max_attempts=self._max_attempts,
            available_at=now + timedelta(seconds=delay_s),
            created_at=now,
            updated_at=now,
        )
        will_run = await self._store.enqueue_work(item)
        logger.debug("enqueue %s -> %s", item.id, "scheduled" if will_run else "deduplicated")
        return will_run

    async def claim(self, stage: WorkStage, now: datetime | None = None) -> WorkItem | None:
        return await self._store.claim_work(stage, now or utcnow())

    async def ack(self, item: WorkItem) -> WorkItem:
        """Mark done, or re-queue if new work arrived while it was claimed."""
        current = await self._require(item.id)
        now = utcnow()
        if current.rerun_requested:
            done = current.model_copy(
                update={
                    "status": "QUEUED",
                    "attempts": 0,
                    "rerun_requested": False,
                    "last_error": None,
                    "available_at": now,
                    "updated_at": now,
                }
            )
            logger.debug("ack %s: rerun requested, re-queued", item.id)
        else:
            done = current.model_copy(
                update={"status": "DONE", "last_error": None, "updated_at": now}
            )
        await self._store.update_work(done)
        return done

    async def fail(self, item: WorkItem, error: BaseException | str, retryable: bool = True) -> WorkItem:
        """Record a failure: back off and retry, or dead-letter."""
        current = await self._require(item.id)
        now = utcnow()
        message = f"{type(error).__name__}: {error}" if isinstance(error, BaseException) else error

        if not retryable or current.attempts >= current.max_attempts:
            failed = current.model_copy(
                update={
                    "status": "DEAD_LETTER",
                    "last_error": message,
                    "rerun_requested": False,
                    "updated_at": now,
                }
            )
            logger.error(
                "Dead-lettered %s after %d attempts: %s", item.id, current.attempts, message,
                extra={"data": {"work_id": item.id, "retryable": retryable}},
            )
        else:
            delay = self.backoff(current.attempts)
            failed = current.model_copy(
                update={
                    "status": "QUEUED",
                    "last_error": message,
                    "rerun_requested": False,
                    "available_at": now + timedelta(seconds=delay),
                    "updated_at": now,
                }
            )
            logger.warning(
                "Work %s failed (attempt %d/%d), retry in %.2fs: %s",
                item.id, current.attempts, current.max_attempts, delay, message,
            )
        await self._store.update_work(failed)
        return failed

    def backoff(self, attempts: int) -> float:
        """base * 2^(attempts-1), capped."""
        return min(self._base_delay_s * (2 ** max(attempts - 1, 0)), self._max_delay_s)

    async def requeue(self, item_id: str) -> WorkItem:
        """Revive a dead letter with a fresh attempt budget."""
        current = await self._require(item_id)
        now = utcnow()
        revived = current.model_copy(
            update={
                "status": "QUEUED",
                "attempts": 0,
                "last_error": None,
                "rerun_requested": False,
                "available_at": now,
                "updated_at": now,
            }
        )
        await self._store.update_work(revived)
        logger.info("Requeued %s (was %s)", item_id, current.status)
        return revived

    async def dead_letters(self, stage: WorkStage | None = None) -> list[WorkItem]:
        return await self._store.list_work(stage, "DEAD_LETTER")

    async def outstanding(self, stage: WorkStage | None = None) -> list[WorkItem]:
        """Items still QUEUED or CLAIMED."""
        queued = await self._store.list_work(stage, "QUEUED")
        claimed = await self._store.list_work(stage, "CLAIMED")
        return queued + claimed

    async def next_available_at(self, stage: WorkStage | None = None) -> datetime | None:
        queued = await self._store.list_work(stage, "QUEUED")
        return min((w.available_at for w in queued), default=None)

    async def _require(self, item_id: str) -> WorkItem:
        item = await self._store.get_work(item_id)
        if item is None:
            raise NotFoundError("work item", item_id)
        return item
