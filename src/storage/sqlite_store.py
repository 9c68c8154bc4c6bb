# src/storage/sqlite_store.py — v1
"""SQLite-based store (STORE_BACKEND=sqlite).

Uses stdlib sqlite3 — no external dependency. Each row keeps the full model
as JSON in ``data`` plus the columns needed for lookups and uniqueness.
Multi-statement writes run inside ``with self._conn:`` so they commit or
roll back as one transaction.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from regtruth.core.errors import NotFoundError
from regtruth.core.models import (
    AuditEvent,
    Conflict,
    Evidence,
    GraphEdge,
    GraphStatus,
    PointerConflictStatus,
    Resolution,
    ReviewRequest,
    Rule,
    RuleStatus,
    SourcePointer,
    WorkItem,
    WorkStage,
    WorkStatus,
    utcnow,
)
from regtruth.storage.base_store import BaseStore, check_evidence_changes, merge_enqueue

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS evidence (
    id TEXT PRIMARY KEY,
    source_url TEXT NOT NULL,
    content_hash TEXT NOT NULL,
    fetched_at TEXT NOT NULL,
    data TEXT NOT NULL,
    UNIQUE (source_url, content_hash)
);
CREATE INDEX IF NOT EXISTS idx_evidence_url ON evidence(source_url);

CREATE TABLE IF NOT EXISTS pointers (
    id TEXT PRIMARY KEY,
    evidence_id TEXT NOT NULL,
    topic_key TEXT NOT NULL,
    data TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_pointers_evidence ON pointers(evidence_id);
CREATE INDEX IF NOT EXISTS idx_pointers_topic ON pointers(topic_key);

CREATE TABLE IF NOT EXISTS rules (
    id TEXT PRIMARY KEY,
    topic_key TEXT NOT NULL,
    status TEXT NOT NULL,
    data TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_rules_topic ON rules(topic_key);

CREATE TABLE IF NOT EXISTS edges (
    from_rule_id TEXT NOT NULL,
    to_rule_id TEXT NOT NULL,
    relation TEXT NOT NULL,
    topic_key TEXT NOT NULL,
    PRIMARY KEY (from_rule_id, to_rule_id, relation)
);
CREATE INDEX IF NOT EXISTS idx_edges_to ON edges(to_rule_id);

CREATE TABLE IF NOT EXISTS conflicts (
    id TEXT PRIMARY KEY,
    topic_key TEXT NOT NULL,
    status TEXT NOT NULL,
    item_a_id TEXT NOT NULL,
    item_b_id TEXT NOT NULL,
    data TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS resolutions (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    id TEXT NOT NULL UNIQUE,
    conflict_id TEXT NOT NULL,
    data TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_resolutions_conflict ON resolutions(conflict_id);

CREATE TABLE IF NOT EXISTS work_items (
    id TEXT PRIMARY KEY,
    stage TEXT NOT NULL,
    status TEXT NOT NULL,
    available_at TEXT NOT NULL,
    created_at TEXT NOT NULL,
    data TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_work_claim ON work_items(stage, status, available_at);

CREATE TABLE IF NOT EXISTS review_requests (
    id TEXT PRIMARY KEY,
    status TEXT NOT NULL,
    data TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS audit_events (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    id TEXT NOT NULL,
    entity_id TEXT NOT NULL,
    data TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_audit_entity ON audit_events(entity_id);
"""


def _ts(dt: datetime) -> str:
    """Fixed-width UTC timestamp so string order equals time order."""
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.%f")


class SqliteStore(BaseStore):
    """SQLite-backed store for durable single-node deployments."""

    def __init__(self, db_path: Path | str) -> None:
        if str(db_path) == ":memory:":
            self._db_path = None
            self._conn = sqlite3.connect(":memory:")
        else:
            self._db_path = Path(db_path).expanduser()
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(str(self._db_path))
            self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.executescript(_SCHEMA)

    async def close(self) -> None:
        self._conn.close()

    # --- Internal helpers ---

    def _one(self, sql: str, params: tuple[Any, ...]) -> str | None:
        row = self._conn.execute(sql, params).fetchone()
        return row[0] if row else None

    def _all(self, sql: str, params: tuple[Any, ...] = ()) -> list[str]:
        return [row[0] for row in self._conn.execute(sql, params).fetchall()]

    @staticmethod
    def _where(clauses: list[tuple[str, Any]]) -> tuple[str, tuple[Any, ...]]:
        active = [(c, v) for c, v in clauses if v is not None]
        if not active:
            return "", ()
        return " WHERE " + " AND ".join(c for c, _ in active), tuple(v for _, v in active)

    # --- Evidence ---

    async def insert_evidence_if_absent(self, evidence: Evidence) -> tuple[Evidence, bool]:
        with self._conn:
            cursor = self._conn.execute(
                """INSERT OR IGNORE INTO evidence
                   (id, source_url, content_hash, fetched_at, data)
                   VALUES (?, ?, ?, ?, ?)""",
                (
                    evidence.id,
                    evidence.source_url,
                    evidence.content_hash,
                    _ts(evidence.fetched_at),
                    evidence.model_dump_json(),
                ),
            )
        if cursor.rowcount == 1:
            return evidence.model_copy(deep=True), True
        existing = await self.find_evidence(evidence.source_url, evidence.content_hash)
        if existing is None:
            raise NotFoundError("evidence", evidence.id)
        return existing, False

    async def get_evidence(self, evidence_id: str) -> Evidence | None:
        data = self._one("SELECT data FROM evidence WHERE id = ?", (evidence_id,))
        return Evidence.model_validate_json(data) if data else None

    async def find_evidence(self, source_url: str, content_hash: str) -> Evidence | None:
        data = self._one(
            "SELECT data FROM evidence WHERE source_url = ? AND content_hash = ?",
            (source_url, content_hash),
        )
        return Evidence.model_validate_json(data) if data else None

    async def list_evidence(self, source_url: str | None = None) -> list[Evidence]:
        where, params = self._where([("source_url = ?", source_url)])
        rows = self._all(f"SELECT data FROM evidence{where} ORDER BY fetched_at, id", params)
        return [Evidence.model_validate_json(r) for r in rows]

    async def update_evidence_metadata(
        self, evidence_id: str, changes: dict[str, Any]
    ) -> Evidence:
        check_evidence_changes(evidence_id, changes)
        current = await self.get_evidence(evidence_id)
        if current is None:
            raise NotFoundError("evidence", evidence_id)
        updated = current.model_copy(update=changes)
        with self._conn:
            self._conn.execute(
                "UPDATE evidence SET data = ? WHERE id = ?",
                (updated.model_dump_json(), evidence_id),
            )
        return updated

    # --- Pointers ---

    async def add_pointers(self, pointers: list[SourcePointer]) -> int:
        inserted = 0
        with self._conn:
            for p in pointers:
                cursor = self._conn.execute(
                    """INSERT OR IGNORE INTO pointers (id, evidence_id, topic_key, data)
                       VALUES (?, ?, ?, ?)""",
                    (p.id, p.evidence_id, p.topic_key, p.model_dump_json()),
                )
                inserted += cursor.rowcount
        return inserted

    async def get_pointer(self, pointer_id: str) -> SourcePointer | None:
        data = self._one("SELECT data FROM pointers WHERE id = ?", (pointer_id,))
        return SourcePointer.model_validate_json(data) if data else None

    async def list_pointers(
        self, evidence_id: str | None = None, topic_key: str | None = None
    ) -> list[SourcePointer]:
        where, params = self._where(
            [("evidence_id = ?", evidence_id), ("topic_key = ?", topic_key)]
        )
        rows = self._all(f"SELECT data FROM pointers{where} ORDER BY rowid", params)
        return [SourcePointer.model_validate_json(r) for r in rows]

    async def annotate_pointer(
        self,
        pointer_id: str,
        conflict_status: PointerConflictStatus | None,
        conflict_id: str | None,
    ) -> SourcePointer:
        current = await self.get_pointer(pointer_id)
        if current is None:
            raise NotFoundError("pointer", pointer_id)
        updated = current.model_copy(
            update={"conflict_status": conflict_status, "conflict_id": conflict_id}
        )
        with self._conn:
            self._conn.execute(
                "UPDATE pointers SET data = ? WHERE id = ?",
                (updated.model_dump_json(), pointer_id),
            )
        return updated

    # --- Rules ---

    def _write_rule(self, rule: Rule) -> None:
        self._conn.execute(
            """INSERT OR REPLACE INTO rules (id, topic_key, status, data)
               VALUES (?, ?, ?, ?)""",
            (rule.id, rule.topic_key, rule.status, rule.model_dump_json()),
        )

    async def put_rule(self, rule: Rule) -> None:
        with self._conn:
            self._write_rule(rule)

    async def get_rule(self, rule_id: str) -> Rule | None:
        data = self._one("SELECT data FROM rules WHERE id = ?", (rule_id,))
        return Rule.model_validate_json(data) if data else None

    async def list_rules(
        self, topic_key: str | None = None, status: RuleStatus | None = None
    ) -> list[Rule]:
        where, params = self._where([("topic_key = ?", topic_key), ("status = ?", status)])
        rows = self._all(f"SELECT data FROM rules{where} ORDER BY rowid", params)
        return [Rule.model_validate_json(r) for r in rows]

    async def set_graph_status(
        self, rule_id: str, status: GraphStatus, error: str | None = None
    ) -> Rule:
        current = await self.get_rule(rule_id)
        if current is None:
            raise NotFoundError("rule", rule_id)
        updated = current.model_copy(update={"graph_status": status, "graph_error": error})
        with self._conn:
            self._write_rule(updated)
        return updated

    async def commit_graph_result(
        self,
        rule_id: str,
        edges: list[GraphEdge],
        status: GraphStatus,
        error: str | None = None,
    ) -> Rule:
        current = await self.get_rule(rule_id)
        if current is None:
            raise NotFoundError("rule", rule_id)
        updated = current.model_copy(update={"graph_status": status, "graph_error": error})
        with self._conn:
            self._conn.execute("DELETE FROM edges WHERE from_rule_id = ?", (rule_id,))
            self._conn.executemany(
                """INSERT INTO edges (from_rule_id, to_rule_id, relation, topic_key)
                   VALUES (?, ?, ?, ?)""",
                [(e.from_rule_id, e.to_rule_id, e.relation, e.topic_key) for e in edges],
            )
            self._write_rule(updated)
        return updated

    async def list_edges(
        self, from_rule_id: str | None = None, to_rule_id: str | None = None
    ) -> list[GraphEdge]:
        where, params = self._where(
            [("from_rule_id = ?", from_rule_id), ("to_rule_id = ?", to_rule_id)]
        )
        rows = self._conn.execute(
            f"""SELECT from_rule_id, to_rule_id, relation, topic_key FROM edges{where}
                ORDER BY from_rule_id, to_rule_id, relation""",
            params,
        ).fetchall()
        return [
            GraphEdge(from_rule_id=r[0], to_rule_id=r[1], relation=r[2], topic_key=r[3])
            for r in rows
        ]

    # --- Conflicts & resolutions ---

    def _write_conflict(self, conflict: Conflict, replace: bool) -> int:
        verb = "INSERT OR REPLACE" if replace else "INSERT OR IGNORE"
        cursor = self._conn.execute(
            f"""{verb} INTO conflicts (id, topic_key, status, item_a_id, item_b_id, data)
                VALUES (?, ?, ?, ?, ?, ?)""",
            (
                conflict.id,
                conflict.topic_key,
                conflict.status,
                conflict.item_a_id,
                conflict.item_b_id,
                conflict.model_dump_json(),
            ),
        )
        return cursor.rowcount

    async def add_conflict_if_absent(self, conflict: Conflict) -> tuple[Conflict, bool]:
        with self._conn:
            inserted = self._write_conflict(conflict, replace=False)
        if inserted:
            return conflict.model_copy(deep=True), True
        existing = await self.get_conflict(conflict.id)
        if existing is None:
            raise NotFoundError("conflict", conflict.id)
        return existing, False

    async def get_conflict(self, conflict_id: str) -> Conflict | None:
        data = self._one("SELECT data FROM conflicts WHERE id = ?", (conflict_id,))
        return Conflict.model_validate_json(data) if data else None

    async def list_conflicts(
        self,
        topic_key: str | None = None,
        status: str | None = None,
        item_id: str | None = None,
    ) -> list[Conflict]:
        clauses: list[tuple[str, Any]] = [("topic_key = ?", topic_key), ("status = ?", status)]
        where, params = self._where(clauses)
        if item_id is not None:
            where += (" AND " if where else " WHERE ") + "(item_a_id = ? OR item_b_id = ?)"
            params = params + (item_id, item_id)
        rows = self._all(f"SELECT data FROM conflicts{where} ORDER BY rowid", params)
        return [Conflict.model_validate_json(r) for r in rows]

    async def update_conflict(self, conflict: Conflict) -> None:
        if await self.get_conflict(conflict.id) is None:
            raise NotFoundError("conflict", conflict.id)
        with self._conn:
            self._write_conflict(conflict, replace=True)

    async def append_resolution(self, resolution: Resolution) -> None:
        try:
            with self._conn:
                self._conn.execute(
                    "INSERT INTO resolutions (id, conflict_id, data) VALUES (?, ?, ?)",
                    (resolution.id, resolution.conflict_id, resolution.model_dump_json()),
                )
        except sqlite3.IntegrityError as e:
            raise ValueError(f"Resolution {resolution.id} already recorded") from e

    async def list_resolutions(self, conflict_id: str) -> list[Resolution]:
        rows = self._all(
            "SELECT data FROM resolutions WHERE conflict_id = ? ORDER BY seq", (conflict_id,)
        )
        return [Resolution.model_validate_json(r) for r in rows]

    # --- Work queue ---

    def _write_work(self, item: WorkItem) -> None:
        self._conn.execute(
            """INSERT OR REPLACE INTO work_items
               (id, stage, status, available_at, created_at, data)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (
                item.id,
                item.stage,
                item.status,
                _ts(item.available_at),
                _ts(item.created_at),
                item.model_dump_json(),
            ),
        )

    async def enqueue_work(self, item: WorkItem) -> bool:
        with self._conn:
            existing = self._one("SELECT data FROM work_items WHERE id = ?", (item.id,))
            current = WorkItem.model_validate_json(existing) if existing else None
            to_store, will_run = merge_enqueue(current, item)
            if to_store is not None:
                self._write_work(to_store)
        return will_run

    async def claim_work(self, stage: WorkStage, now: datetime) -> WorkItem | None:
        with self._conn:
            data = self._one(
                """SELECT data FROM work_items
                   WHERE stage = ? AND status = 'QUEUED' AND available_at <= ?
                   ORDER BY available_at, created_at LIMIT 1""",
                (stage, _ts(now)),
            )
            if data is None:
                return None
            item = WorkItem.model_validate_json(data)
            claimed = item.model_copy(
                update={
                    "status": "CLAIMED",
                    "attempts": item.attempts + 1,
                    "updated_at": utcnow(),
                }
            )
            self._write_work(claimed)
        return claimed

    async def update_work(self, item: WorkItem) -> None:
        with self._conn:
            self._write_work(item)

    async def get_work(self, item_id: str) -> WorkItem | None:
        data = self._one("SELECT data FROM work_items WHERE id = ?", (item_id,))
        return WorkItem.model_validate_json(data) if data else None

    async def list_work(
        self, stage: WorkStage | None = None, status: WorkStatus | None = None
    ) -> list[WorkItem]:
        where, params = self._where([("stage = ?", stage), ("status = ?", status)])
        rows = self._all(f"SELECT data FROM work_items{where} ORDER BY rowid", params)
        return [WorkItem.model_validate_json(r) for r in rows]

    # --- Human review ---

    async def add_review_request(self, request: ReviewRequest) -> bool:
        with self._conn:
            cursor = self._conn.execute(
                "INSERT OR IGNORE INTO review_requests (id, status, data) VALUES (?, ?, ?)",
                (request.id, request.status, request.model_dump_json()),
            )
        return cursor.rowcount == 1

    async def get_review_request(self, request_id: str) -> ReviewRequest | None:
        data = self._one("SELECT data FROM review_requests WHERE id = ?", (request_id,))
        return ReviewRequest.model_validate_json(data) if data else None

    async def update_review_request(self, request: ReviewRequest) -> None:
        with self._conn:
            cursor = self._conn.execute(
                "UPDATE review_requests SET status = ?, data = ? WHERE id = ?",
                (request.status, request.model_dump_json(), request.id),
            )
        if cursor.rowcount == 0:
            raise NotFoundError("review_request", request.id)

    async def list_review_requests(self, status: str | None = None) -> list[ReviewRequest]:
        where, params = self._where([("status = ?", status)])
        rows = self._all(f"SELECT data FROM review_requests{where} ORDER BY rowid", params)
        return [ReviewRequest.model_validate_json(r) for r in rows]

    # --- Audit ---

    async def append_audit(self, event: AuditEvent) -> None:
        with self._conn:
            self._conn.execute(
                "INSERT INTO audit_events (id, entity_id, data) VALUES (?, ?, ?)",
                (event.id, event.entity_id, event.model_dump_json()),
            )

    async def list_audit(self, entity_id: str | None = None) -> list[AuditEvent]:
        where, params = self._where([("entity_id = ?", entity_id)])
        rows = self._all(f"SELECT data FROM audit_events{where} ORDER BY seq", params)
        return [AuditEvent.model_validate_json(r) for r in rows]
