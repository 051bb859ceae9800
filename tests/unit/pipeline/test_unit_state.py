# tests/unit/pipeline/test_unit_state.py — v2
"""Tests for pipeline/state.py — transitions, budget and metrics."""

from __future__ import annotations

import pytest

from factgraph.core.models import PolicyDecision, StageName
from factgraph.pipeline.state import (
    Budget,
    PipelinePhase,
    PipelineState,
    next_stage,
    transition,
)
from factgraph.stages.models import ExtractionOutput, PolicyOutput


class _Clock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class TestTransition:
    @pytest.mark.parametrize(
        "phase,stage,after",
        [
            (PipelinePhase.NOT_STARTED, StageName.EXTRACTION, PipelinePhase.EXTRACTED),
            (PipelinePhase.EXTRACTED, StageName.NORMALIZATION, PipelinePhase.NORMALIZED),
            (PipelinePhase.NORMALIZED, StageName.VALIDATION, PipelinePhase.VALIDATED),
            (PipelinePhase.VALIDATED, StageName.POLICY, PipelinePhase.POLICY_APPLIED),
        ],
    )
    def test_success_advances(self, phase, stage, after):
        assert next_stage(phase) is stage
        assert transition(phase, stage, succeeded=True) is after

    def test_failure_halts(self):
        assert transition(PipelinePhase.EXTRACTED, StageName.NORMALIZATION, False) is PipelinePhase.HALTED

    def test_failed_validation_halts(self):
        phase = transition(PipelinePhase.NORMALIZED, StageName.VALIDATION, True, passed=False)
        assert phase is PipelinePhase.HALTED
        assert next_stage(phase) is None

    def test_out_of_order_rejected(self):
        with pytest.raises(ValueError):
            transition(PipelinePhase.NOT_STARTED, StageName.POLICY, True)

    def test_terminal_phases_have_no_stage(self):
        for phase in (PipelinePhase.POLICY_APPLIED, PipelinePhase.HALTED, PipelinePhase.FINALIZED):
            assert next_stage(phase) is None


class TestBudget:
    def test_call_cap(self):
        budget = Budget(max_calls=2, clock=_Clock())
        budget.record_call()
        assert budget.exhausted() is None
        budget.record_call()
        assert budget.exhausted() == "call cap"

    def test_time_budget(self):
        clock = _Clock()
        budget = Budget(max_latency_ms=1000, clock=clock)
        clock.now = 0.999
        assert budget.exhausted() is None
        clock.now = 1.0
        assert budget.exhausted() == "time budget"
        assert budget.describe() == "Budget exceeded: 0/5 calls, 1000ms/1000ms"


class TestPipelineState:
    def _state(self) -> PipelineState:
        return PipelineState(run_id="r1", document_id="d1", environment="dev")

    def test_apply_records_completed_steps(self):
        state = self._state()
        state.apply(StageName.EXTRACTION, succeeded=True)
        state.apply(StageName.NORMALIZATION, succeeded=False)
        assert state.steps_completed == [StageName.EXTRACTION]
        assert state.phase is PipelinePhase.HALTED
        assert not state.all_stages_ran

    def test_require(self):
        state = self._state()
        with pytest.raises(RuntimeError, match="No extraction output"):
            state.require(StageName.EXTRACTION)
        state.extraction = ExtractionOutput(entities=[], facts=[{}])
        assert state.require(StageName.EXTRACTION) is state.extraction

    def test_metrics(self):
        state = self._state()
        state.extraction = ExtractionOutput(entities=[{}], facts=[{}, {}])
        state.apply(StageName.EXTRACTION, succeeded=True)
        state.record_error("normalization", "HTTP 500")

        metrics = state.metrics(total_latency_ms=1200, stage_calls=2, status="partial")

        assert metrics["workflow_status"] == "partial"
        assert metrics["steps_completed"] == ["extraction"]
        assert metrics["agent_calls"] == 2
        assert metrics["entities_extracted"] == 1
        assert metrics["facts_extracted"] == 2
        assert metrics["arbiter_decision"] == "UNKNOWN"
        assert metrics["errors_count"] == 1
        assert metrics["errors"] == [{"step": "normalization", "message": "HTTP 500"}]

    def test_decision(self):
        state = self._state()
        state.policy = PolicyOutput(decision=PolicyDecision.WARN)
        assert state.metrics(0, 4, "success")["arbiter_decision"] == "WARN"
