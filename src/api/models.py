# src/api/models.py — v2
"""API-level models: PipelineRequest, AgentExecution, RunResult."""

from __future__ import annotations

import uuid
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from factgraph.core.errors import RequestValidationError
from factgraph.core.models import Environment, RunStatus, StepError


class PipelineRequest(BaseModel):
    """Pipeline entry-point input.

    Accepts both the wire names (``documentText``, ``documentId``) and the
    Python field names.
    """

    model_config = ConfigDict(populate_by_name=True)

    document_text: str = Field(alias="documentText")
    document_id: str = Field(alias="documentId")
    environment: Environment = "dev"

    @field_validator("document_id")
    @classmethod
    def validate_document_id(cls, v: str) -> str:  # noqa: N805
        try:
            return str(uuid.UUID(v))
        except ValueError as e:
            raise ValueError("documentId must be a UUID") from e

    @classmethod
    def parse(
        cls,
        payload: dict[str, Any],
        min_chars: int = 20,
        max_chars: int = 1_000_000,
    ) -> PipelineRequest:
        """Validate a raw request payload, including text length bounds.

        Raises:
            RequestValidationError: On any malformed field.
        """
        try:
            request = cls.model_validate(payload)
        except ValidationError as e:
            fields = ", ".join(
                ".".join(str(p) for p in err["loc"]) for err in e.errors()
            )
            raise RequestValidationError(f"Invalid request fields: {fields}") from e

        length = len(request.document_text.strip())
        if length < min_chars:
            raise RequestValidationError(
                f"documentText too short: {length} < {min_chars} characters"
            )
        if len(request.document_text) > max_chars:
            raise RequestValidationError(
                f"documentText too long: {len(request.document_text)} > {max_chars} characters"
            )
        return request


class AgentExecution(BaseModel):
    name: str
    status: str


class RunResult(BaseModel):
    """Return value of the pipeline entry point."""

    success: bool
    run_id: str
    status: RunStatus
    entities_extracted: int = 0
    facts_extracted: int = 0
    entities_stored: int = 0
    facts_stored: int = 0
    facts_approved: int = 0
    blocked_by_arbiter: int = 0
    agents_executed: list[AgentExecution] = Field(default_factory=list)
    total_latency_ms: int = 0
    errors: list[StepError] = Field(default_factory=list)
