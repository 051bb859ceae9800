# src/guard/reaper.py — v1
"""Zombie-run reaper.

A process crash leaves its run in ``running`` and its lease in place. The
reaper moves runs older than the timeout to ``timeout`` with a synthetic
error and drops expired leases, which frees the single-flight slot.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from factgraph.storage.base_ledger import BaseRunLedger

logger = logging.getLogger(__name__)

REAPER_STEP = "reaper"


@dataclass
class ReapReport:
    cleaned: int = 0
    run_ids: list[str] = field(default_factory=list)
    leases_expired: int = 0


async def reap_stale_runs(
    ledger: BaseRunLedger,
    timeout_minutes: int = 10,
    now: datetime | None = None,
) -> ReapReport:
    """Time out runs stuck in ``running`` longer than ``timeout_minutes``."""
    if timeout_minutes <= 0:
        raise ValueError("timeout_minutes must be > 0")
    now = now or datetime.now(timezone.utc)
    cutoff = now - timedelta(minutes=timeout_minutes)

    stale = await ledger.find_stale_runs(cutoff)
    report = ReapReport(run_ids=[r.run_id for r in stale])
    if stale:
        error = {
            "step": REAPER_STEP,
            "message": f"Run exceeded {timeout_minutes} minute timeout, marked as timed out",
        }
        report.cleaned = await ledger.mark_timed_out(report.run_ids, error)
        for run_id in report.run_ids:
            logger.warning("Timed out stale run %s", run_id)

    report.leases_expired = await ledger.expire_leases(now)
    logger.info(
        "Reaper cleaned %d run(s), expired %d lease(s)",
        report.cleaned, report.leases_expired,
    )
    return report
