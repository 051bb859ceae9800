# src/guard/single_flight.py — v1
"""Single-flight guard: at most one holder of a key at a time.

Two layers. The in-process held set fails fast without touching storage;
the ledger lease (holder id + expiry) is shared across processes. The
ledger's own unique running-run constraint remains the authoritative
invariant; the guard only keeps callers from racing into it.
"""

from __future__ import annotations

import logging
import os
import threading
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator

from factgraph.core.errors import PipelineBusyError
from factgraph.storage.base_ledger import BaseRunLedger

logger = logging.getLogger(__name__)


class SingleFlightGuard:
    """Lease-based mutex keyed by name.

    Args:
        ledger: Shared store holding the leases.
        lease_ttl_s: Lease lifetime. A crashed holder's lease lapses after it.
        holder_id: Identity written into leases. Defaults to pid + random.
    """

    def __init__(
        self,
        ledger: BaseRunLedger,
        lease_ttl_s: int = 900,
        holder_id: str | None = None,
    ) -> None:
        self._ledger = ledger
        self._ttl = lease_ttl_s
        self.holder_id = holder_id or f"{os.getpid()}-{uuid.uuid4().hex[:8]}"
        self._held: set[str] = set()
        self._lock = threading.Lock()

    def is_held(self, key: str) -> bool:
        with self._lock:
            return key in self._held

    async def try_acquire(self, key: str) -> bool:
        """Take ``key`` without waiting. Returns False if anyone holds it."""
        with self._lock:
            if key in self._held:
                logger.info("Single-flight key '%s' already held in-process", key)
                return False
            self._held.add(key)

        try:
            acquired = await self._ledger.acquire_lease(key, self.holder_id, self._ttl)
        except BaseException:
            with self._lock:
                self._held.discard(key)
            raise

        if not acquired:
            with self._lock:
                self._held.discard(key)
            logger.info("Single-flight key '%s' leased by another process", key)
            return False

        logger.debug("Acquired single-flight key '%s' as %s", key, self.holder_id)
        return True

    async def release(self, key: str) -> bool:
        """Release ``key``. Returns False if this guard did not hold it."""
        with self._lock:
            if key not in self._held:
                return False
            self._held.discard(key)
        released = await self._ledger.release_lease(key, self.holder_id)
        if not released:
            logger.warning("Lease on '%s' was already gone at release", key)
        return True

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        """Hold ``key`` for the block.

        Raises:
            PipelineBusyError: If the key is already held.
        """
        if not await self.try_acquire(key):
            raise PipelineBusyError(f"'{key}' is already in flight")
        try:
            yield
        finally:
            await self.release(key)
