# src/storage/base_ledger.py — v1
"""Abstract run ledger: the shared store for runs, node runs, entities,
facts, documents, chunks and single-flight leases.

Implementations must enforce at the storage level that at most one run
holds ``running`` status, and that a run becomes immutable once terminal.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

from factgraph.core.models import (
    Document,
    DocumentChunk,
    EntityRecord,
    FactRecord,
    NodeRun,
    Run,
    RunStatus,
)


class BaseRunLedger(ABC):
    """Unified interface for run ledger backends."""

    # --- Documents ---

    @abstractmethod
    async def add_document(self, document: Document) -> Document:
        """Store a source document."""

    @abstractmethod
    async def get_document(self, document_id: str) -> Document | None:
        """Fetch a document, or None if unknown."""

    @abstractmethod
    async def insert_chunks(self, document_id: str, chunks: list[DocumentChunk]) -> int:
        """Replace the chunk rows of a document. Returns rows written."""

    @abstractmethod
    async def list_chunks(self, document_id: str) -> list[DocumentChunk]:
        """Chunks of a document ordered by seq."""

    # --- Runs ---

    @abstractmethod
    async def create_run(self, environment: str) -> Run:
        """Create a run in ``running`` status.

        Raises:
            RunConflictError: If another run is already running.
        """

    @abstractmethod
    async def get_run(self, run_id: str) -> Run | None:
        """Fetch a run, or None if unknown."""

    @abstractmethod
    async def finalize_run(
        self, run_id: str, status: RunStatus, metrics: dict[str, Any]
    ) -> Run:
        """Transition a running run to a terminal status, exactly once.

        Raises:
            RunStateError: If the run is unknown or already terminal.
        """

    @abstractmethod
    async def latest_running_run(self) -> Run | None:
        """Most recently started run still in ``running`` status."""

    @abstractmethod
    async def find_stale_runs(self, older_than: datetime) -> list[Run]:
        """Running runs started before ``older_than``."""

    @abstractmethod
    async def mark_timed_out(self, run_ids: list[str], error: dict[str, str]) -> int:
        """Move still-running runs to ``timeout``. Returns rows changed."""

    # --- Node runs ---

    @abstractmethod
    async def record_node_run(self, node_run: NodeRun) -> NodeRun:
        """Append one stage invocation record."""

    @abstractmethod
    async def list_node_runs(self, run_id: str) -> list[NodeRun]:
        """Node runs of a run in creation order."""

    # --- Knowledge graph ---

    @abstractmethod
    async def insert_entities(self, entities: list[EntityRecord]) -> int:
        """Append entity rows. Returns rows written."""

    @abstractmethod
    async def insert_facts(self, facts: list[FactRecord]) -> int:
        """Append fact rows. Returns rows written."""

    @abstractmethod
    async def list_entities(self, run_id: str | None = None) -> list[EntityRecord]:
        """Entities, optionally only those created by one run."""

    @abstractmethod
    async def list_facts(self, run_id: str | None = None) -> list[FactRecord]:
        """Facts, optionally only those created by one run."""

    # --- Leases ---

    @abstractmethod
    async def acquire_lease(self, key: str, holder: str, ttl_s: int) -> bool:
        """Take the lease on ``key`` unless a live lease is held by another holder."""

    @abstractmethod
    async def release_lease(self, key: str, holder: str) -> bool:
        """Drop the lease if ``holder`` owns it. Returns True if released."""

    @abstractmethod
    async def expire_leases(self, now: datetime) -> int:
        """Delete leases whose expiry is at or before ``now``."""

    async def close(self) -> None:
        """Release backend resources."""
