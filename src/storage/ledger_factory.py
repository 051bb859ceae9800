# src/storage/ledger_factory.py — v2
"""Factory for run ledger instantiation."""

from __future__ import annotations

from factgraph.config.settings import Settings
from factgraph.storage.base_ledger import BaseRunLedger


def create_ledger(settings: Settings | None = None) -> BaseRunLedger:
    """Instantiate the configured ledger backend.

    Args:
        settings: Application settings. Defaults to an in-memory ledger.

    Returns:
        Configured BaseRunLedger implementation.
    """
    if settings is None or settings.ledger_backend == "memory":
        from factgraph.storage.memory_ledger import MemoryRunLedger
        return MemoryRunLedger()

    backend = settings.ledger_backend
    if backend == "sqlite":
        from factgraph.storage.sqlite_ledger import SqliteRunLedger
        return SqliteRunLedger(db_path=settings.ledger_path)

    raise ValueError(f"Unsupported ledger backend: {backend!r}")
