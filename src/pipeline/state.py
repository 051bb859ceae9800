# src/pipeline/state.py — v3
"""Pipeline state machine, budget and per-run accumulated state.

Phases advance strictly in stage order:

    NOT_STARTED -> EXTRACTED -> NORMALIZED -> VALIDATED -> POLICY_APPLIED

A failed stage, or a validation that did not pass, moves to HALTED. Every
path ends in FINALIZED. Which stages ran is read from the state, never
reconstructed from side-effect flags.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

from pydantic import BaseModel, Field

from factgraph.core.models import PolicyDecision, StageName, StepError
from factgraph.stages.models import (
    ExtractionOutput,
    NormalizationOutput,
    PolicyOutput,
    ValidationOutput,
)


class PipelinePhase(str, Enum):
    NOT_STARTED = "not_started"
    EXTRACTED = "extracted"
    NORMALIZED = "normalized"
    VALIDATED = "validated"
    POLICY_APPLIED = "policy_applied"
    HALTED = "halted"
    FINALIZED = "finalized"


_NEXT_STAGE: dict[PipelinePhase, StageName] = {
    PipelinePhase.NOT_STARTED: StageName.EXTRACTION,
    PipelinePhase.EXTRACTED: StageName.NORMALIZATION,
    PipelinePhase.NORMALIZED: StageName.VALIDATION,
    PipelinePhase.VALIDATED: StageName.POLICY,
}

_AFTER_STAGE: dict[StageName, PipelinePhase] = {
    StageName.EXTRACTION: PipelinePhase.EXTRACTED,
    StageName.NORMALIZATION: PipelinePhase.NORMALIZED,
    StageName.VALIDATION: PipelinePhase.VALIDATED,
    StageName.POLICY: PipelinePhase.POLICY_APPLIED,
}


def next_stage(phase: PipelinePhase) -> StageName | None:
    """Stage to invoke from ``phase``, or None when nothing is left to run."""
    return _NEXT_STAGE.get(phase)


def transition(
    phase: PipelinePhase, stage: StageName, succeeded: bool, passed: bool = True
) -> PipelinePhase:
    """Single transition function of the pipeline.

    Args:
        phase: Current phase.
        stage: Stage whose outcome is being applied.
        succeeded: Whether the stage call succeeded.
        passed: For validation, whether the data was judged valid.

    Raises:
        ValueError: If ``stage`` is not the stage expected from ``phase``.
    """
    expected = next_stage(phase)
    if stage is not expected:
        raise ValueError(f"Stage {stage.value!r} cannot run from phase {phase.value!r}")
    if not succeeded:
        return PipelinePhase.HALTED
    if stage is StageName.VALIDATION and not passed:
        return PipelinePhase.HALTED
    return _AFTER_STAGE[stage]


@dataclass
class Budget:
    """Call-count cap and soft wall-clock budget, checked between stages."""

    max_calls: int = 5
    max_latency_ms: int = 60_000
    clock: Callable[[], float] = time.monotonic
    calls: int = 0
    started: float = field(default=0.0)

    def __post_init__(self) -> None:
        self.started = self.clock()

    def elapsed_ms(self) -> int:
        return int((self.clock() - self.started) * 1000)

    def record_call(self) -> None:
        self.calls += 1

    def exhausted(self) -> str | None:
        """Reason the next call may not start, or None if it may."""
        if self.calls >= self.max_calls:
            return "call cap"
        if self.elapsed_ms() >= self.max_latency_ms:
            return "time budget"
        return None

    def describe(self) -> str:
        return (
            f"Budget exceeded: {self.calls}/{self.max_calls} calls, "
            f"{self.elapsed_ms()}ms/{self.max_latency_ms}ms"
        )


class PipelineState(BaseModel):
    """State accumulated by the orchestrator across one run."""

    run_id: str
    document_id: str
    environment: str

    phase: PipelinePhase = PipelinePhase.NOT_STARTED
    steps_completed: list[StageName] = Field(default_factory=list)
    errors: list[StepError] = Field(default_factory=list)
    budget_exceeded: bool = False
    aborted: bool = False

    # === STAGE OUTPUTS ===
    extraction: ExtractionOutput | None = None
    normalization: NormalizationOutput | None = None
    validation: ValidationOutput | None = None
    policy: PolicyOutput | None = None

    # === COUNTS ===
    entities_stored: int = 0
    facts_assembled: int = 0
    facts_stored: int = 0
    entity_index: dict[str, str] = Field(default_factory=dict)

    def record_error(self, step: str, message: str) -> None:
        self.errors.append(StepError(step=step, message=message))

    def apply(self, stage: StageName, succeeded: bool, passed: bool = True) -> None:
        """Apply a stage outcome through ``transition``."""
        self.phase = transition(self.phase, stage, succeeded, passed)
        if succeeded:
            self.steps_completed.append(stage)

    def require(self, stage: StageName) -> Any:
        """Output of an earlier stage; raises if that stage has not produced one."""
        output = {
            StageName.EXTRACTION: self.extraction,
            StageName.NORMALIZATION: self.normalization,
            StageName.VALIDATION: self.validation,
            StageName.POLICY: self.policy,
        }[stage]
        if output is None:
            raise RuntimeError(f"No {stage.value} output in run {self.run_id}")
        return output

    @property
    def decision(self) -> PolicyDecision | None:
        return self.policy.decision if self.policy is not None else None

    @property
    def entities_extracted(self) -> int:
        return len(self.extraction.entities) if self.extraction else 0

    @property
    def facts_extracted(self) -> int:
        return len(self.extraction.facts) if self.extraction else 0

    @property
    def all_stages_ran(self) -> bool:
        return len(self.steps_completed) == len(StageName)

    def metrics(self, total_latency_ms: int, stage_calls: int, status: str) -> dict[str, Any]:
        """Metrics blob written to the run at finalization."""
        decision = self.decision
        return {
            "workflow_status": status,
            "steps_completed": [s.value for s in self.steps_completed],
            "total_latency_ms": total_latency_ms,
            "agent_calls": stage_calls,
            "entities_extracted": self.entities_extracted,
            "facts_extracted": self.facts_extracted,
            "entities_stored": self.entities_stored,
            "facts_assembled": self.facts_assembled,
            "facts_stored": self.facts_stored,
            "arbiter_decision": decision.value if decision is not None else "UNKNOWN",
            "errors_count": len(self.errors),
            "errors": [e.model_dump() for e in self.errors],
        }
