# src/stages/models.py — v1
"""Request/response models for the four external stages.

Stage payloads are loosely shaped JSON. Items stay plain dicts; only the
envelope fields the orchestrator relies on are typed. Legacy stages wrap
their payload under ``normalized`` / ``validation`` / ``policy``; the
models unwrap those before validation.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from factgraph.core.errors import PolicyDecisionError, StageError
from factgraph.core.models import PolicyDecision, StageName


def _unwrap(data: Any, wrapper: str) -> Any:
    if isinstance(data, dict) and isinstance(data.get(wrapper), dict):
        return data[wrapper]
    return data


class StageResponse(BaseModel):
    """Raw transport-level response of one HTTP call."""

    status_code: int
    data: dict[str, Any] | None = None
    error: str | None = None
    latency_ms: int = 0

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300 and self.error is None


class StageResult(BaseModel):
    """Outcome of a stage invocation, after retries."""

    stage: StageName
    ok: bool
    data: dict[str, Any] | None = None
    error: str | None = None
    error_type: str | None = None
    status_code: int | None = None
    attempts: int = 1
    latency_ms: int = 0
    request_body: dict[str, Any] = Field(default_factory=dict)

    @property
    def tokens_input(self) -> int | None:
        return _usage(self.data, "input_tokens")

    @property
    def tokens_output(self) -> int | None:
        return _usage(self.data, "output_tokens")


def _usage(data: dict[str, Any] | None, key: str) -> int | None:
    usage = (data or {}).get("usage")
    if isinstance(usage, dict) and isinstance(usage.get(key), int):
        return usage[key]
    return None


# === STAGE OUTPUTS ===


class _StageOutput(BaseModel):
    model_config = ConfigDict(extra="allow")


class ExtractionOutput(_StageOutput):
    entities: list[dict[str, Any]] = Field(default_factory=list)
    facts: list[dict[str, Any]] = Field(default_factory=list)


class NormalizationOutput(_StageOutput):
    normalized_entities: list[dict[str, Any]] = Field(default_factory=list)
    normalized_facts: list[dict[str, Any]] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _unwrap_normalized(cls, data: Any) -> Any:
        return _unwrap(data, "normalized")


class ValidationOutput(_StageOutput):
    is_valid: bool = False
    confidence_score: float | None = None
    contradictions: list[Any] = Field(default_factory=list)
    missing_citations: list[Any] = Field(default_factory=list)
    schema_errors: list[Any] = Field(default_factory=list)
    issues: list[Any] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _unwrap_validation(cls, data: Any) -> Any:
        return _unwrap(data, "validation")


class PolicyOutput(_StageOutput):
    decision: PolicyDecision
    reason: str = ""
    violations: list[Any] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _normalize_decision(cls, data: Any) -> Any:
        data = _unwrap(data, "policy")
        if isinstance(data, dict):
            data = dict(data)
            decision = data.get("decision")
            if isinstance(decision, str):
                data["decision"] = decision.strip().upper()
            if "reason" not in data and isinstance(data.get("reasons"), str):
                data["reason"] = data["reasons"]
        return data


_OUTPUT_MODELS: dict[StageName, type[_StageOutput]] = {
    StageName.EXTRACTION: ExtractionOutput,
    StageName.NORMALIZATION: NormalizationOutput,
    StageName.VALIDATION: ValidationOutput,
    StageName.POLICY: PolicyOutput,
}


def parse_stage_output(stage: StageName, data: dict[str, Any] | None) -> Any:
    """Validate a successful stage payload into its typed output.

    Raises:
        PolicyDecisionError: Policy payload without a usable decision.
        StageError: Any other payload that does not fit its stage shape.
    """
    model = _OUTPUT_MODELS[stage]
    try:
        return model.model_validate(data or {})
    except ValidationError as e:
        if stage is StageName.POLICY:
            raw = (data or {}).get("decision", "<missing>")
            raise PolicyDecisionError(
                f"Policy stage returned an invalid decision: {raw!r}"
            ) from e
        raise StageError(
            stage.value,
            f"Malformed {stage.value} response: {e.error_count()} validation error(s)",
            error_type="malformed_response",
        ) from e
