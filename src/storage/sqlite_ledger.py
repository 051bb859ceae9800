# src/storage/sqlite_ledger.py — v2
"""SQLite-based run ledger (LEDGER_BACKEND=sqlite).

Uses stdlib sqlite3, no external dependency. The partial unique index on
``runs(status) WHERE status = 'running'`` is the authoritative single-flight
invariant: a second running row is rejected by the store itself.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

from factgraph.core.errors import RunConflictError, RunStateError
from factgraph.core.models import (
    Document,
    DocumentChunk,
    EntityRecord,
    FactRecord,
    NodeRun,
    Run,
    RunStatus,
)
from factgraph.storage.base_ledger import BaseRunLedger
from factgraph.storage.memory_ledger import timeout_metrics

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS documents (
    id TEXT PRIMARY KEY,
    data TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS document_chunks (
    document_id TEXT NOT NULL,
    seq INTEGER NOT NULL,
    chunk_text TEXT NOT NULL,
    word_count INTEGER NOT NULL,
    char_start INTEGER NOT NULL,
    char_end INTEGER NOT NULL,
    PRIMARY KEY (document_id, seq)
);
CREATE TABLE IF NOT EXISTS runs (
    run_id TEXT PRIMARY KEY,
    environment TEXT NOT NULL,
    status TEXT NOT NULL,
    started_at TEXT NOT NULL,
    ended_at TEXT,
    metrics TEXT NOT NULL DEFAULT '{}'
);
CREATE UNIQUE INDEX IF NOT EXISTS idx_runs_single_running
    ON runs(status) WHERE status = 'running';
CREATE TABLE IF NOT EXISTS node_runs (
    node_run_id TEXT PRIMARY KEY,
    run_id TEXT NOT NULL,
    stage TEXT NOT NULL,
    created_at TEXT NOT NULL,
    data TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_node_runs_run ON node_runs(run_id);
CREATE TABLE IF NOT EXISTS entities (
    id TEXT PRIMARY KEY,
    run_id TEXT,
    legal_name TEXT NOT NULL,
    data TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS facts (
    id TEXT PRIMARY KEY,
    run_id TEXT,
    subject TEXT NOT NULL,
    predicate TEXT NOT NULL,
    object TEXT NOT NULL,
    evidence_text TEXT NOT NULL CHECK (length(evidence_text) > 0),
    evidence_doc_id TEXT NOT NULL CHECK (length(evidence_doc_id) > 0),
    confidence REAL NOT NULL CHECK (confidence >= 0 AND confidence <= 1),
    status TEXT NOT NULL,
    data TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS leases (
    key TEXT PRIMARY KEY,
    holder_id TEXT NOT NULL,
    acquired_at TEXT NOT NULL,
    expires_at TEXT NOT NULL
);
"""

_TS_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def _ts(value: datetime) -> str:
    # Fixed-width UTC text so lexical order equals time order.
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime(_TS_FORMAT)


def _parse_ts(value: str | None) -> datetime | None:
    if value is None:
        return None
    return datetime.strptime(value, _TS_FORMAT).replace(tzinfo=timezone.utc)


class SqliteRunLedger(BaseRunLedger):
    """SQLite-backed ledger shared by every process on one host."""

    def __init__(self, db_path: Path | str) -> None:
        db_path = str(db_path)
        if db_path != ":memory:":
            path = Path(db_path).expanduser()
            path.parent.mkdir(parents=True, exist_ok=True)
            db_path = str(path)
        self._conn = sqlite3.connect(db_path)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.executescript(_SCHEMA)

    def _row_to_run(self, row: tuple[Any, ...]) -> Run:
        run_id, environment, status, started_at, ended_at, metrics = row
        return Run(
            run_id=run_id,
            environment=environment,
            status=RunStatus(status),
            started_at=_parse_ts(started_at),
            ended_at=_parse_ts(ended_at),
            metrics=json.loads(metrics),
        )

    # --- Documents ---

    async def add_document(self, document: Document) -> Document:
        with self._conn:
            self._conn.execute(
                "INSERT OR REPLACE INTO documents (id, data) VALUES (?, ?)",
                (document.id, document.model_dump_json()),
            )
        return document

    async def get_document(self, document_id: str) -> Document | None:
        row = self._conn.execute(
            "SELECT data FROM documents WHERE id = ?", (document_id,)
        ).fetchone()
        return Document.model_validate_json(row[0]) if row else None

    async def insert_chunks(self, document_id: str, chunks: list[DocumentChunk]) -> int:
        with self._conn:
            self._conn.execute(
                "DELETE FROM document_chunks WHERE document_id = ?", (document_id,)
            )
            self._conn.executemany(
                """INSERT INTO document_chunks
                   (document_id, seq, chunk_text, word_count, char_start, char_end)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                [
                    (document_id, c.seq, c.chunk_text, c.word_count, c.char_start, c.char_end)
                    for c in chunks
                ],
            )
        return len(chunks)

    async def list_chunks(self, document_id: str) -> list[DocumentChunk]:
        cursor = self._conn.execute(
            """SELECT document_id, seq, chunk_text, word_count, char_start, char_end
               FROM document_chunks WHERE document_id = ? ORDER BY seq""",
            (document_id,),
        )
        return [
            DocumentChunk(
                document_id=r[0], seq=r[1], chunk_text=r[2],
                word_count=r[3], char_start=r[4], char_end=r[5],
            )
            for r in cursor.fetchall()
        ]

    # --- Runs ---

    async def create_run(self, environment: str) -> Run:
        run = Run(environment=environment)
        try:
            with self._conn:
                self._conn.execute(
                    """INSERT INTO runs (run_id, environment, status, started_at, metrics)
                       VALUES (?, ?, ?, ?, ?)""",
                    (
                        run.run_id,
                        run.environment,
                        run.status.value,
                        _ts(run.started_at),
                        json.dumps(run.metrics),
                    ),
                )
        except sqlite3.IntegrityError as e:
            raise RunConflictError("Another run is already running") from e
        return run

    async def get_run(self, run_id: str) -> Run | None:
        row = self._conn.execute(
            """SELECT run_id, environment, status, started_at, ended_at, metrics
               FROM runs WHERE run_id = ?""",
            (run_id,),
        ).fetchone()
        return self._row_to_run(row) if row else None

    async def finalize_run(
        self, run_id: str, status: RunStatus, metrics: dict[str, Any]
    ) -> Run:
        if not status.is_terminal:
            raise RunStateError("finalize_run requires a terminal status")
        with self._conn:
            cursor = self._conn.execute(
                """UPDATE runs SET status = ?, ended_at = ?, metrics = ?
                   WHERE run_id = ? AND status = 'running'""",
                (
                    status.value,
                    _ts(datetime.now(timezone.utc)),
                    json.dumps(metrics, default=str),
                    run_id,
                ),
            )
        if cursor.rowcount == 0:
            existing = await self.get_run(run_id)
            if existing is None:
                raise RunStateError(f"Unknown run: {run_id}")
            raise RunStateError(f"Run {run_id} is already {existing.status.value}")
        run = await self.get_run(run_id)
        if run is None:
            raise RunStateError(f"Run {run_id} vanished after finalization")
        return run

    async def latest_running_run(self) -> Run | None:
        row = self._conn.execute(
            """SELECT run_id, environment, status, started_at, ended_at, metrics
               FROM runs WHERE status = 'running'
               ORDER BY started_at DESC LIMIT 1"""
        ).fetchone()
        return self._row_to_run(row) if row else None

    async def find_stale_runs(self, older_than: datetime) -> list[Run]:
        cursor = self._conn.execute(
            """SELECT run_id, environment, status, started_at, ended_at, metrics
               FROM runs WHERE status = 'running' AND started_at < ?""",
            (_ts(older_than),),
        )
        return [self._row_to_run(r) for r in cursor.fetchall()]

    async def mark_timed_out(self, run_ids: list[str], error: dict[str, str]) -> int:
        changed = 0
        ended_at = _ts(datetime.now(timezone.utc))
        with self._conn:
            for run_id in run_ids:
                row = self._conn.execute(
                    "SELECT metrics FROM runs WHERE run_id = ? AND status = 'running'",
                    (run_id,),
                ).fetchone()
                if row is None:
                    continue
                cursor = self._conn.execute(
                    """UPDATE runs SET status = ?, ended_at = ?, metrics = ?
                       WHERE run_id = ? AND status = 'running'""",
                    (
                        RunStatus.TIMEOUT.value,
                        ended_at,
                        json.dumps(timeout_metrics(json.loads(row[0]), error)),
                        run_id,
                    ),
                )
                changed += cursor.rowcount
        return changed

    # --- Node runs ---

    async def record_node_run(self, node_run: NodeRun) -> NodeRun:
        with self._conn:
            self._conn.execute(
                """INSERT INTO node_runs (node_run_id, run_id, stage, created_at, data)
                   VALUES (?, ?, ?, ?, ?)""",
                (
                    node_run.node_run_id,
                    node_run.run_id,
                    node_run.stage.value,
                    _ts(node_run.created_at),
                    node_run.model_dump_json(),
                ),
            )
        return node_run

    async def list_node_runs(self, run_id: str) -> list[NodeRun]:
        cursor = self._conn.execute(
            "SELECT data FROM node_runs WHERE run_id = ? ORDER BY created_at, rowid",
            (run_id,),
        )
        return [NodeRun.model_validate_json(r[0]) for r in cursor.fetchall()]

    # --- Knowledge graph ---

    async def insert_entities(self, entities: list[EntityRecord]) -> int:
        with self._conn:
            self._conn.executemany(
                "INSERT INTO entities (id, run_id, legal_name, data) VALUES (?, ?, ?, ?)",
                [
                    (e.id, e.metadata.get("run_id"), e.legal_name, e.model_dump_json())
                    for e in entities
                ],
            )
        return len(entities)

    async def insert_facts(self, facts: list[FactRecord]) -> int:
        with self._conn:
            self._conn.executemany(
                """INSERT INTO facts
                   (id, run_id, subject, predicate, object, evidence_text,
                    evidence_doc_id, confidence, status, data)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                [
                    (
                        f.id, f.metadata.get("run_id"), f.subject, f.predicate,
                        f.object, f.evidence_text, f.evidence_doc_id,
                        f.confidence, f.status.value, f.model_dump_json(),
                    )
                    for f in facts
                ],
            )
        return len(facts)

    async def list_entities(self, run_id: str | None = None) -> list[EntityRecord]:
        if run_id is None:
            cursor = self._conn.execute("SELECT data FROM entities ORDER BY rowid")
        else:
            cursor = self._conn.execute(
                "SELECT data FROM entities WHERE run_id = ? ORDER BY rowid", (run_id,)
            )
        return [EntityRecord.model_validate_json(r[0]) for r in cursor.fetchall()]

    async def list_facts(self, run_id: str | None = None) -> list[FactRecord]:
        if run_id is None:
            cursor = self._conn.execute("SELECT data FROM facts ORDER BY rowid")
        else:
            cursor = self._conn.execute(
                "SELECT data FROM facts WHERE run_id = ? ORDER BY rowid", (run_id,)
            )
        return [FactRecord.model_validate_json(r[0]) for r in cursor.fetchall()]

    # --- Leases ---

    async def acquire_lease(self, key: str, holder: str, ttl_s: int) -> bool:
        now = datetime.now(timezone.utc)
        with self._conn:
            cursor = self._conn.execute(
                """INSERT INTO leases (key, holder_id, acquired_at, expires_at)
                   VALUES (?, ?, ?, ?)
                   ON CONFLICT(key) DO UPDATE
                   SET holder_id = excluded.holder_id,
                       acquired_at = excluded.acquired_at,
                       expires_at = excluded.expires_at
                   WHERE leases.holder_id = excluded.holder_id OR leases.expires_at <= ?""",
                (key, holder, _ts(now), _ts(now + timedelta(seconds=ttl_s)), _ts(now)),
            )
        acquired = cursor.rowcount == 1
        if not acquired:
            logger.debug("Lease %s held by another holder", key)
        return acquired

    async def release_lease(self, key: str, holder: str) -> bool:
        with self._conn:
            cursor = self._conn.execute(
                "DELETE FROM leases WHERE key = ? AND holder_id = ?", (key, holder)
            )
        return cursor.rowcount == 1

    async def expire_leases(self, now: datetime) -> int:
        with self._conn:
            cursor = self._conn.execute(
                "DELETE FROM leases WHERE expires_at <= ?", (_ts(now),)
            )
        return cursor.rowcount

    async def close(self) -> None:
        self._conn.close()
