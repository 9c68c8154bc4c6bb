# src/tracking/audit_log.py — v1
"""Append-only audit trail for compliance review.

Every state change a reviewer may need to reconstruct (publication,
resolution, graph status, legacy evaluation, tombstones) is written here
through the store, in addition to the regular log stream.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any

from regtruth.core.models import AuditEvent
from regtruth.storage.base_store import BaseStore

logger = logging.getLogger(__name__)


class AuditLog:
    """Thin writer over BaseStore.append_audit."""

    def __init__(self, store: BaseStore) -> None:
        self._store = store

    async def record(
        self,
        event: str,
        entity_kind: str,
        entity_id: str,
        **data: Any,
    ) -> AuditEvent:
        """Append one event and mirror it to the log at DEBUG level."""
        entry = AuditEvent(
            id=f"aud_{uuid.uuid4().hex[:16]}",
            event=event,
            entity_kind=entity_kind,
            entity_id=entity_id,
            data=data,
        )
        await self._store.append_audit(entry)
        logger.debug(
            "audit %s %s=%s", event, entity_kind, entity_id, extra={"data": data}
        )
        return entry

    async def history(self, entity_id: str | None = None) -> list[AuditEvent]:
        """Events for one entity (or all), oldest first."""
        return await self._store.list_audit(entity_id)
