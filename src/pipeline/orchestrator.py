# src/pipeline/orchestrator.py — v3
"""Pipeline orchestrator: sequences the four stages of one run.

    extraction -> normalization -> validation -> policy

Each stage runs only if the previous one succeeded and the call cap and
wall-clock budget still allow it. Entities are stored as soon as
normalization succeeds, before the policy stage runs; facts are assembled
once the policy stage returns and stored only on ALLOW. Every path through
``run_pipeline`` finalizes the run exactly once.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any, Callable

from factgraph.api.models import AgentExecution, RunResult
from factgraph.assembly.assembler import assemble_facts
from factgraph.assembly.triple import as_text
from factgraph.core.errors import PipelineFatalError, StageError
from factgraph.core.models import (
    DocumentChunk,
    EntityRecord,
    NodeRun,
    PolicyDecision,
    RunStatus,
    StageName,
)
from factgraph.logging.context import set_run_context, set_stage_context
from factgraph.pipeline.state import Budget, PipelinePhase, PipelineState, next_stage
from factgraph.stages.models import StageResult, parse_stage_output

if TYPE_CHECKING:
    from factgraph.config.settings import Settings
    from factgraph.stages.client import StageClient
    from factgraph.storage.base_ledger import BaseRunLedger

logger = logging.getLogger(__name__)

COORDINATOR_STEP = "coordinator"
ENTITY_STORAGE_STEP = "entity-storage"
FACT_STORAGE_STEP = "fact-storage"
NODE_RUN_STORAGE_STEP = "node-run-storage"


def build_entity_records(
    raw_entities: list[Any], document_id: str, run_id: str
) -> list[EntityRecord]:
    """Map normalized entities onto entity records. Nameless entries are skipped."""
    records: list[EntityRecord] = []
    for raw in raw_entities:
        if not isinstance(raw, dict):
            continue
        original = as_text(raw.get("original_name")) or as_text(raw.get("name"))
        canonical = as_text(raw.get("canonical_name"))
        legal_name = canonical or original
        if legal_name is None:
            logger.warning("Skipping entity without a name")
            continue
        derived = raw.get("derived") if isinstance(raw.get("derived"), dict) else {}
        identifiers = derived.get("identifiers")
        addresses = derived.get("addresses")
        relationships = derived.get("relationships")
        records.append(
            EntityRecord(
                legal_name=legal_name,
                entity_type=as_text(raw.get("entity_type")) or as_text(raw.get("type")),
                identifiers=identifiers if isinstance(identifiers, dict) else {},
                trading_names=[original] if original and original != legal_name else [],
                addresses=addresses if isinstance(addresses, list) else [],
                relationships=relationships if isinstance(relationships, list) else [],
                website=as_text(derived.get("website")),
                metadata={
                    "source": "coordinator",
                    "document_id": document_id,
                    "run_id": run_id,
                    "original_name": original,
                },
            )
        )
    return records


class PipelineOrchestrator:
    """Runs one document through the stages under budget.

    Args:
        settings: Application settings (budget limits).
        ledger: Run ledger for runs, node runs, entities and facts.
        stage_client: Retrying stage invoker.
        clock: Monotonic clock in seconds, for the wall-clock budget.
    """

    def __init__(
        self,
        settings: Settings,
        ledger: BaseRunLedger,
        stage_client: StageClient,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._settings = settings
        self._ledger = ledger
        self._client = stage_client
        self._clock = clock

    async def run_pipeline(
        self,
        document_text: str,
        document_id: str,
        environment: str,
        source_url: str | None = None,
    ) -> RunResult:
        """Execute one run and return its structured result.

        Raises:
            RunConflictError: If the ledger already holds a running run.
            PipelineFatalError: Uncaught failure inside the run; the run is
                finalized as failed and its id is carried on the error.
        """
        budget = Budget(
            max_calls=self._settings.pipeline_max_stage_calls,
            max_latency_ms=self._settings.pipeline_max_latency_ms,
            clock=self._clock,
        )
        run = await self._ledger.create_run(environment)
        set_run_context(document_id, run.run_id)
        logger.info("Run %s started for document %s (%s)", run.run_id, document_id, environment)

        state = PipelineState(
            run_id=run.run_id, document_id=document_id, environment=environment
        )
        try:
            await self._execute(state, budget, document_text, source_url)
        except Exception as e:
            logger.exception("Unexpected error in run %s", run.run_id)
            state.aborted = True
            state.record_error(COORDINATOR_STEP, f"Unexpected error: {e}")
            raise PipelineFatalError(str(e) or type(e).__name__, run_id=run.run_id) from e
        finally:
            set_stage_context(None)
            status = await self._finalize(state, budget)

        return self._build_result(state, budget, status)

    # ------------------------------------------------------------------
    # Stage loop
    # ------------------------------------------------------------------

    async def _execute(
        self,
        state: PipelineState,
        budget: Budget,
        document_text: str,
        source_url: str | None,
    ) -> None:
        while (stage := next_stage(state.phase)) is not None:
            reason = budget.exhausted()
            if reason is not None:
                state.budget_exceeded = True
                logger.warning("Skipping %s and later stages: %s reached", stage.value, reason)
                break

            payload = self._stage_input(stage, state, document_text)
            budget.record_call()
            result = await self._invoke(stage, payload, state)
            output = self._parse(stage, result, state)

            if output is None:
                state.apply(stage, succeeded=False)
                break

            if stage is StageName.EXTRACTION:
                state.extraction = output
                state.apply(stage, succeeded=True)
            elif stage is StageName.NORMALIZATION:
                state.normalization = output
                state.apply(stage, succeeded=True)
                await self._store_entities(state)
            elif stage is StageName.VALIDATION:
                state.validation = output
                state.apply(stage, succeeded=True, passed=output.is_valid)
                if not output.is_valid:
                    logger.info("Validation did not pass; policy stage will not run")
            else:
                state.policy = output
                state.apply(stage, succeeded=True)
                logger.info("Policy decision: %s", output.decision.value)
                await self._assemble_and_store_facts(state, document_text, source_url)

    def _stage_input(
        self, stage: StageName, state: PipelineState, document_text: str
    ) -> dict[str, Any]:
        if stage is StageName.EXTRACTION:
            return {"document_text": document_text, "document_id": state.document_id}
        if stage is StageName.NORMALIZATION:
            extraction = state.require(StageName.EXTRACTION)
            return {"entities": extraction.entities, "facts": extraction.facts}
        normalization = state.require(StageName.NORMALIZATION)
        if stage is StageName.VALIDATION:
            return {
                "document_id": state.document_id,
                "facts": normalization.normalized_facts,
            }
        return {
            "entities": normalization.normalized_entities,
            "facts": normalization.normalized_facts,
        }

    async def _invoke(
        self, stage: StageName, payload: dict[str, Any], state: PipelineState
    ) -> StageResult:
        try:
            result = await self._client.invoke(stage, payload, state.environment)
        except StageError as e:
            result = StageResult(
                stage=stage,
                ok=False,
                error=str(e),
                error_type=e.error_type,
                status_code=e.status_code,
                attempts=e.attempts,
                request_body={"input": payload, "environment": state.environment},
            )

        node_run = NodeRun(
            run_id=state.run_id,
            stage=stage,
            input_json=result.request_body,
            output_json=result.data,
            tokens_input=result.tokens_input,
            tokens_output=result.tokens_output,
            latency_ms=result.latency_ms,
            attempts=result.attempts,
            status="success" if result.ok else "error",
            error_message=result.error,
        )
        try:
            await self._ledger.record_node_run(node_run)
        except Exception as e:
            logger.error("Failed to record node run for %s: %s", stage.value, e)
            state.record_error(NODE_RUN_STORAGE_STEP, str(e))
        return result

    def _parse(self, stage: StageName, result: StageResult, state: PipelineState) -> Any:
        if not result.ok:
            state.record_error(stage.value, result.error or "stage failed")
            return None
        try:
            return parse_stage_output(stage, result.data)
        except StageError as e:
            logger.error("Stage '%s' returned an unusable payload: %s", stage.value, e)
            state.record_error(stage.value, str(e))
            return None

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    async def _store_entities(self, state: PipelineState) -> None:
        entities = build_entity_records(
            state.require(StageName.NORMALIZATION).normalized_entities,
            state.document_id,
            state.run_id,
        )
        if not entities:
            return
        try:
            state.entities_stored = await self._ledger.insert_entities(entities)
        except Exception as e:
            logger.error("Error storing entities: %s", e)
            state.record_error(ENTITY_STORAGE_STEP, str(e))
            return
        for entity in entities:
            state.entity_index.setdefault(entity.legal_name.lower(), entity.id)
            for name in entity.trading_names:
                state.entity_index.setdefault(name.lower(), entity.id)
        logger.info("Stored %d entities after normalization", state.entities_stored)

    async def _document_chunks(self, document_id: str) -> list[DocumentChunk]:
        try:
            return await self._ledger.list_chunks(document_id)
        except Exception as e:
            logger.warning("Chunk lookup failed for %s, facts carry no chunk seqs: %s", document_id, e)
            return []

    async def _assemble_and_store_facts(
        self, state: PipelineState, document_text: str, source_url: str | None
    ) -> None:
        chunks = await self._document_chunks(state.document_id)
        facts = assemble_facts(
            state.require(StageName.NORMALIZATION).normalized_facts,
            state.document_id,
            document_text,
            source_url,
            state.validation,
            state.policy,
            run_id=state.run_id,
            entity_index=state.entity_index,
            chunks=chunks,
        )
        state.facts_assembled = len(facts)
        if state.decision is not PolicyDecision.ALLOW:
            logger.info(
                "Not storing %d assembled fact(s): decision %s",
                len(facts), state.decision.value if state.decision else "none",
            )
            return
        if not facts:
            return
        try:
            state.facts_stored = await self._ledger.insert_facts(facts)
        except Exception as e:
            logger.error("Error storing facts: %s", e)
            state.record_error(FACT_STORAGE_STEP, str(e))
            return
        logger.info("Stored %d facts after policy approval", state.facts_stored)

    # ------------------------------------------------------------------
    # Finalization
    # ------------------------------------------------------------------

    async def _finalize(self, state: PipelineState, budget: Budget) -> RunStatus:
        """Choose the terminal status and write it with the run metrics."""
        elapsed_ms = budget.elapsed_ms()
        if elapsed_ms >= budget.max_latency_ms:
            state.budget_exceeded = True

        completed = len(state.steps_completed)
        if state.aborted:
            status = RunStatus.FAILED
        elif state.budget_exceeded:
            state.record_error(COORDINATOR_STEP, budget.describe())
            status = RunStatus.PARTIAL if completed else RunStatus.FAILED
        elif state.errors or not state.all_stages_ran:
            status = RunStatus.PARTIAL if completed else RunStatus.FAILED
        else:
            status = RunStatus.SUCCESS

        state.phase = PipelinePhase.FINALIZED
        await self._ledger.finalize_run(
            state.run_id,
            status,
            state.metrics(elapsed_ms, budget.calls, status.value),
        )
        logger.info(
            "Run %s finished: %s (%d/%d stages, %d error(s), %dms)",
            state.run_id, status.value, completed, len(StageName),
            len(state.errors), elapsed_ms,
        )
        return status

    def _build_result(self, state: PipelineState, budget: Budget, status: RunStatus) -> RunResult:
        decision = state.decision
        return RunResult(
            success=status is RunStatus.SUCCESS,
            run_id=state.run_id,
            status=status,
            entities_extracted=state.entities_extracted,
            facts_extracted=state.facts_extracted,
            entities_stored=state.entities_stored,
            facts_stored=state.facts_stored,
            facts_approved=state.facts_stored if decision is PolicyDecision.ALLOW else 0,
            blocked_by_arbiter=state.facts_extracted if decision is PolicyDecision.BLOCK else 0,
            agents_executed=[
                AgentExecution(name=s.value, status="success") for s in state.steps_completed
            ],
            total_latency_ms=budget.elapsed_ms(),
            errors=list(state.errors),
        )
