# src/core/models.py — v1
"""Shared Pydantic domain models used across modules.

Run, NodeRun, EntityRecord, FactRecord, Document, DocumentChunk.
No module redefines these types; all imports come from core.models.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


# === ENUMS ===


class RunStatus(str, Enum):
    RUNNING = "running"
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"
    TIMEOUT = "timeout"

    @property
    def is_terminal(self) -> bool:
        return self is not RunStatus.RUNNING


class FactStatus(str, Enum):
    PENDING = "pending"
    VERIFIED = "verified"
    DISPUTED = "disputed"
    SUPERSEDED = "superseded"


class StageName(str, Enum):
    """External stages, in pipeline order."""

    EXTRACTION = "extraction"
    NORMALIZATION = "normalization"
    VALIDATION = "validation"
    POLICY = "policy"


class PolicyDecision(str, Enum):
    ALLOW = "ALLOW"
    WARN = "WARN"
    BLOCK = "BLOCK"


Environment = Literal["dev", "staging", "prod"]


# === DOCUMENTS ===


class Document(BaseModel):
    """Stored source document. Evidence spans index into ``text``."""

    id: str = Field(default_factory=_new_id)
    title: str = ""
    text: str
    source_url: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)


class DocumentChunk(BaseModel):
    """Overlapping word window over a document.

    Character offsets are half-open: ``text[char_start:char_end]``.
    """

    document_id: str
    seq: int
    chunk_text: str
    word_count: int
    char_start: int
    char_end: int


# === RUNS ===


class StepError(BaseModel):
    """One entry of a run's error list."""

    step: str
    message: str


class Run(BaseModel):
    """One pipeline execution."""

    run_id: str = Field(default_factory=_new_id)
    environment: str = "dev"
    status: RunStatus = RunStatus.RUNNING
    started_at: datetime = Field(default_factory=_utcnow)
    ended_at: datetime | None = None
    metrics: dict[str, Any] = Field(default_factory=dict)


class NodeRun(BaseModel):
    """Record of one stage invocation within a run. Never mutated."""

    node_run_id: str = Field(default_factory=_new_id)
    run_id: str
    stage: StageName
    input_json: dict[str, Any] = Field(default_factory=dict)
    output_json: dict[str, Any] | None = None
    tokens_input: int | None = None
    tokens_output: int | None = None
    latency_ms: int = 0
    attempts: int = 1
    status: Literal["success", "error"] = "success"
    error_message: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)


# === KNOWLEDGE GRAPH RECORDS ===


class EntityRecord(BaseModel):
    """Company / person / product mention, ready to persist."""

    id: str = Field(default_factory=_new_id)
    legal_name: str
    entity_type: str | None = None
    identifiers: dict[str, Any] = Field(default_factory=dict)
    trading_names: list[str] = Field(default_factory=list)
    addresses: list[Any] = Field(default_factory=list)
    relationships: list[Any] = Field(default_factory=list)
    website: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_utcnow)


class FactRecord(BaseModel):
    """Subject-predicate-object claim with evidence and confidence.

    At most one ``value_*`` interpretation is populated; ``object`` always
    keeps the untyped string.
    """

    id: str = Field(default_factory=_new_id)
    subject: str = Field(min_length=1)
    predicate: str = Field(min_length=1)
    object: str = Field(min_length=1)

    value_number: float | None = None
    value_date: date | None = None
    value_money_amount: float | None = None
    value_money_ccy: str | None = None
    value_pct: float | None = None
    value_country: str | None = None
    value_code: str | None = None
    value_entity_id: str | None = None

    evidence_text: str = Field(min_length=1)
    evidence_doc_id: str = Field(min_length=1)
    evidence_url: str | None = None
    evidence_span_start: int | None = None
    evidence_span_end: int | None = None

    confidence: float = Field(ge=0.0, le=1.0)
    status: FactStatus = FactStatus.VERIFIED
    as_of: date | None = None
    created_at: datetime = Field(default_factory=_utcnow)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("evidence_text", "evidence_doc_id")
    @classmethod
    def _not_blank(cls, v: str) -> str:  # noqa: N805
        if not v.strip():
            raise ValueError("evidence must not be blank")
        return v

    @property
    def typed_kind(self) -> str | None:
        """Name of the populated typed value, if any."""
        for kind, value in (
            ("number", self.value_number),
            ("date", self.value_date),
            ("money", self.value_money_amount),
            ("percentage", self.value_pct),
            ("country", self.value_country),
            ("code", self.value_code),
            ("entity", self.value_entity_id),
        ):
            if value is not None:
                return kind
        return None
