# src/storage/memory_ledger.py — v1
"""In-process run ledger (LEDGER_BACKEND=memory).

Single-process only; used by tests and dry runs. An asyncio lock makes
the check-then-create of a running run atomic within the event loop.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
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


def timeout_metrics(metrics: dict[str, Any], error: dict[str, str]) -> dict[str, Any]:
    """Metrics blob of a run moved to ``timeout`` by the reaper."""
    merged = dict(metrics)
    merged["errors"] = [*merged.get("errors", []), error]
    merged["workflow_status"] = RunStatus.TIMEOUT.value
    return merged


class MemoryRunLedger(BaseRunLedger):
    """Dict-backed ledger."""

    def __init__(self) -> None:
        self._documents: dict[str, Document] = {}
        self._chunks: dict[str, list[DocumentChunk]] = {}
        self._runs: dict[str, Run] = {}
        self._node_runs: list[NodeRun] = []
        self._entities: list[EntityRecord] = []
        self._facts: list[FactRecord] = []
        self._leases: dict[str, tuple[str, datetime]] = {}
        self._lock = asyncio.Lock()

    # --- Documents ---

    async def add_document(self, document: Document) -> Document:
        self._documents[document.id] = document
        return document

    async def get_document(self, document_id: str) -> Document | None:
        return self._documents.get(document_id)

    async def insert_chunks(self, document_id: str, chunks: list[DocumentChunk]) -> int:
        self._chunks[document_id] = sorted(chunks, key=lambda c: c.seq)
        return len(chunks)

    async def list_chunks(self, document_id: str) -> list[DocumentChunk]:
        return list(self._chunks.get(document_id, []))

    # --- Runs ---

    async def create_run(self, environment: str) -> Run:
        async with self._lock:
            if any(r.status is RunStatus.RUNNING for r in self._runs.values()):
                raise RunConflictError("Another run is already running")
            run = Run(environment=environment)
            self._runs[run.run_id] = run
            return run.model_copy()

    async def get_run(self, run_id: str) -> Run | None:
        run = self._runs.get(run_id)
        return run.model_copy() if run is not None else None

    async def finalize_run(
        self, run_id: str, status: RunStatus, metrics: dict[str, Any]
    ) -> Run:
        async with self._lock:
            run = self._runs.get(run_id)
            if run is None:
                raise RunStateError(f"Unknown run: {run_id}")
            if run.status.is_terminal:
                raise RunStateError(f"Run {run_id} is already {run.status.value}")
            if not status.is_terminal:
                raise RunStateError("finalize_run requires a terminal status")
            finalized = run.model_copy(
                update={
                    "status": status,
                    "metrics": dict(metrics),
                    "ended_at": datetime.now(timezone.utc),
                }
            )
            self._runs[run_id] = finalized
            return finalized.model_copy()

    async def latest_running_run(self) -> Run | None:
        running = [r for r in self._runs.values() if r.status is RunStatus.RUNNING]
        if not running:
            return None
        return max(running, key=lambda r: r.started_at).model_copy()

    async def find_stale_runs(self, older_than: datetime) -> list[Run]:
        return [
            r.model_copy()
            for r in self._runs.values()
            if r.status is RunStatus.RUNNING and r.started_at < older_than
        ]

    async def mark_timed_out(self, run_ids: list[str], error: dict[str, str]) -> int:
        changed = 0
        async with self._lock:
            for run_id in run_ids:
                run = self._runs.get(run_id)
                if run is None or run.status is not RunStatus.RUNNING:
                    continue
                self._runs[run_id] = run.model_copy(
                    update={
                        "status": RunStatus.TIMEOUT,
                        "ended_at": datetime.now(timezone.utc),
                        "metrics": timeout_metrics(run.metrics, error),
                    }
                )
                changed += 1
        return changed

    # --- Node runs ---

    async def record_node_run(self, node_run: NodeRun) -> NodeRun:
        self._node_runs.append(node_run)
        return node_run

    async def list_node_runs(self, run_id: str) -> list[NodeRun]:
        return [n for n in self._node_runs if n.run_id == run_id]

    # --- Knowledge graph ---

    async def insert_entities(self, entities: list[EntityRecord]) -> int:
        self._entities.extend(entities)
        return len(entities)

    async def insert_facts(self, facts: list[FactRecord]) -> int:
        self._facts.extend(facts)
        return len(facts)

    async def list_entities(self, run_id: str | None = None) -> list[EntityRecord]:
        if run_id is None:
            return list(self._entities)
        return [e for e in self._entities if e.metadata.get("run_id") == run_id]

    async def list_facts(self, run_id: str | None = None) -> list[FactRecord]:
        if run_id is None:
            return list(self._facts)
        return [f for f in self._facts if f.metadata.get("run_id") == run_id]

    # --- Leases ---

    async def acquire_lease(self, key: str, holder: str, ttl_s: int) -> bool:
        now = datetime.now(timezone.utc)
        async with self._lock:
            current = self._leases.get(key)
            if current is not None and current[0] != holder and current[1] > now:
                return False
            self._leases[key] = (holder, now + timedelta(seconds=ttl_s))
            return True

    async def release_lease(self, key: str, holder: str) -> bool:
        async with self._lock:
            current = self._leases.get(key)
            if current is None or current[0] != holder:
                return False
            del self._leases[key]
            return True

    async def expire_leases(self, now: datetime) -> int:
        async with self._lock:
            expired = [k for k, (_, expires) in self._leases.items() if expires <= now]
            for key in expired:
                del self._leases[key]
            return len(expired)
