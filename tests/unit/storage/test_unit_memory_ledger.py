# tests/unit/storage/test_unit_memory_ledger.py — v1
"""Tests for storage/memory_ledger.py and storage/ledger_factory.py."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from factgraph.config.settings import Settings
from factgraph.core.errors import RunConflictError, RunStateError
from factgraph.core.models import (
    DocumentChunk,
    EntityRecord,
    FactRecord,
    NodeRun,
    RunStatus,
    StageName,
)
from factgraph.storage.ledger_factory import create_ledger
from factgraph.storage.memory_ledger import MemoryRunLedger, timeout_metrics
from factgraph.storage.sqlite_ledger import SqliteRunLedger


def _fact(run_id: str) -> FactRecord:
    return FactRecord(
        subject="Acme Inc", predicate="employees", object="230",
        evidence_text="employs 230", evidence_doc_id="doc-1", confidence=0.9,
        metadata={"run_id": run_id},
    )


class TestRuns:
    @pytest.mark.asyncio
    async def test_create_and_get(self, ledger):
        run = await ledger.create_run("staging")
        stored = await ledger.get_run(run.run_id)
        assert stored.status is RunStatus.RUNNING
        assert stored.environment == "staging"
        assert await ledger.get_run("missing") is None

    @pytest.mark.asyncio
    async def test_second_running_run_conflicts(self, ledger):
        await ledger.create_run("dev")
        with pytest.raises(RunConflictError):
            await ledger.create_run("dev")

    @pytest.mark.asyncio
    async def test_new_run_after_finalize(self, ledger):
        first = await ledger.create_run("dev")
        await ledger.finalize_run(first.run_id, RunStatus.SUCCESS, {})
        second = await ledger.create_run("dev")
        assert second.run_id != first.run_id

    @pytest.mark.asyncio
    async def test_finalize_once(self, ledger):
        run = await ledger.create_run("dev")
        done = await ledger.finalize_run(run.run_id, RunStatus.PARTIAL, {"errors_count": 1})
        assert done.status is RunStatus.PARTIAL
        assert done.ended_at is not None
        assert done.metrics == {"errors_count": 1}
        with pytest.raises(RunStateError):
            await ledger.finalize_run(run.run_id, RunStatus.SUCCESS, {})

    @pytest.mark.asyncio
    async def test_finalize_requires_terminal_status(self, ledger):
        run = await ledger.create_run("dev")
        with pytest.raises(RunStateError):
            await ledger.finalize_run(run.run_id, RunStatus.RUNNING, {})

    @pytest.mark.asyncio
    async def test_finalize_unknown(self, ledger):
        with pytest.raises(RunStateError):
            await ledger.finalize_run("missing", RunStatus.FAILED, {})

    @pytest.mark.asyncio
    async def test_returned_runs_are_copies(self, ledger):
        run = await ledger.create_run("dev")
        run.status = RunStatus.SUCCESS
        assert (await ledger.get_run(run.run_id)).status is RunStatus.RUNNING

    @pytest.mark.asyncio
    async def test_stale_and_timeout(self, ledger):
        run = await ledger.create_run("dev")
        later = datetime.now(timezone.utc) + timedelta(minutes=1)
        assert [r.run_id for r in await ledger.find_stale_runs(later)] == [run.run_id]
        assert await ledger.latest_running_run() is not None

        error = {"step": "reaper", "message": "timed out"}
        assert await ledger.mark_timed_out([run.run_id, "missing"], error) == 1
        timed_out = await ledger.get_run(run.run_id)
        assert timed_out.status is RunStatus.TIMEOUT
        assert timed_out.metrics["errors"] == [error]
        assert await ledger.latest_running_run() is None
        assert await ledger.mark_timed_out([run.run_id], error) == 0


class TestRecords:
    @pytest.mark.asyncio
    async def test_chunks_replaced(self, ledger):
        chunk = DocumentChunk(
            document_id="doc-1", seq=0, chunk_text="a", word_count=1, char_start=0, char_end=1
        )
        await ledger.insert_chunks("doc-1", [chunk, chunk.model_copy(update={"seq": 1})])
        await ledger.insert_chunks("doc-1", [chunk])
        assert len(await ledger.list_chunks("doc-1")) == 1

    @pytest.mark.asyncio
    async def test_node_runs_in_order(self, ledger):
        for stage in (StageName.EXTRACTION, StageName.NORMALIZATION):
            await ledger.record_node_run(NodeRun(run_id="r1", stage=stage))
        await ledger.record_node_run(NodeRun(run_id="r2", stage=StageName.POLICY))
        assert [n.stage for n in await ledger.list_node_runs("r1")] == [
            StageName.EXTRACTION, StageName.NORMALIZATION,
        ]

    @pytest.mark.asyncio
    async def test_filter_by_run(self, ledger):
        await ledger.insert_facts([_fact("r1"), _fact("r2")])
        await ledger.insert_entities([EntityRecord(legal_name="Acme Inc", metadata={"run_id": "r1"})])
        assert len(await ledger.list_facts()) == 2
        assert len(await ledger.list_facts("r1")) == 1
        assert len(await ledger.list_entities("r2")) == 0


class TestLeases:
    @pytest.mark.asyncio
    async def test_exclusive_until_released(self, ledger):
        assert await ledger.acquire_lease("k", "a", 60)
        assert not await ledger.acquire_lease("k", "b", 60)
        assert await ledger.acquire_lease("k", "a", 60)
        assert not await ledger.release_lease("k", "b")
        assert await ledger.release_lease("k", "a")
        assert await ledger.acquire_lease("k", "b", 60)

    @pytest.mark.asyncio
    async def test_expired_lease_can_be_taken(self, ledger):
        assert await ledger.acquire_lease("k", "a", 0)
        assert await ledger.acquire_lease("k", "b", 60)

    @pytest.mark.asyncio
    async def test_expire_leases(self, ledger):
        await ledger.acquire_lease("k", "a", 60)
        assert await ledger.expire_leases(datetime.now(timezone.utc)) == 0
        later = datetime.now(timezone.utc) + timedelta(seconds=61)
        assert await ledger.expire_leases(later) == 1


class TestTimeoutMetrics:
    def test_appends_error(self):
        merged = timeout_metrics({"errors": [{"step": "x", "message": "y"}]}, {"step": "reaper", "message": "z"})
        assert len(merged["errors"]) == 2
        assert merged["workflow_status"] == "timeout"


class TestLedgerFactory:
    def test_default_memory(self):
        assert isinstance(create_ledger(), MemoryRunLedger)

    def test_memory_backend(self, settings):
        assert isinstance(create_ledger(settings), MemoryRunLedger)

    @pytest.mark.asyncio
    async def test_sqlite_backend(self, tmp_path):
        settings = Settings(_env_file=None, ledger_backend="sqlite", ledger_path=tmp_path / "l.db")
        ledger = create_ledger(settings)
        assert isinstance(ledger, SqliteRunLedger)
        await ledger.close()
