# tests/conftest.py — v2
"""Shared test fixtures for all unit and integration tests.

Provides a scripted stage transport, a memory ledger, settings without
.env, and canned stage payloads. No network: every stage call is served
by FakeStageTransport.
"""

from __future__ import annotations

from types import SimpleNamespace
from typing import Any

import pytest

from factgraph.config.settings import Settings
from factgraph.core.models import Document
from factgraph.stages.base_transport import BaseStageTransport
from factgraph.stages.client import StageClient
from factgraph.stages.models import StageResponse
from factgraph.storage.memory_ledger import MemoryRunLedger

DOCUMENT_ID = "6f1c2b1e-8d7a-4c55-9a0e-2f3b4c5d6e7f"
DOCUMENT_TEXT = (
    "Acme Inc employs 230 people in Stockholm. "
    "The company reported revenue of USD 1,200,000 and was founded in 1998."
)

REVENUE_QUOTE = "The company reported revenue of USD 1,200,000"
REVENUE_SPAN = (DOCUMENT_TEXT.index(REVENUE_QUOTE), DOCUMENT_TEXT.index(REVENUE_QUOTE) + len(REVENUE_QUOTE))

ENDPOINTS = {
    "extraction": "research-agent",
    "normalization": "resolver-agent",
    "validation": "critic-agent",
    "policy": "arbiter-agent",
}


async def no_sleep(_delay: float) -> None:
    return None


class FakeStageTransport(BaseStageTransport):
    """Serves scripted responses per endpoint, in order.

    Each script entry is a StageResponse, a dict (200 with that body) or an
    exception instance (raised). The last entry repeats once the script
    runs out.
    """

    def __init__(self, scripts: dict[str, list[Any]] | None = None) -> None:
        self.scripts = {k: list(v) for k, v in (scripts or {}).items()}
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.closed = False

    def script(self, endpoint: str, *entries: Any) -> FakeStageTransport:
        self.scripts[endpoint] = list(entries)
        return self

    async def post(self, endpoint: str, body: dict[str, Any]) -> StageResponse:
        self.calls.append((endpoint, body))
        script = self.scripts.get(endpoint)
        if not script:
            return StageResponse(status_code=404, error=f"HTTP 404: {endpoint} not found")
        entry = script.pop(0) if len(script) > 1 else script[0]
        if isinstance(entry, BaseException):
            raise entry
        if isinstance(entry, dict):
            return StageResponse(status_code=200, data=entry)
        return entry

    def endpoints_called(self) -> list[str]:
        return [endpoint for endpoint, _ in self.calls]

    async def aclose(self) -> None:
        self.closed = True


# === FIXTURES: Stage payloads ===


def extraction_payload() -> dict[str, Any]:
    return {
        "entities": [{"name": "Acme Inc", "type": "company"}],
        "facts": [
            {"subject": "Acme Inc", "predicate": "employees", "object": "230"},
            {"subject": "Acme Inc", "predicate": "revenue", "object": "USD 1,200,000"},
        ],
    }


def normalization_payload() -> dict[str, Any]:
    return {
        "normalized": {
            "normalized_entities": [
                {
                    "original_name": "Acme",
                    "canonical_name": "Acme Inc",
                    "entity_type": "company",
                    "derived": {
                        "identifiers": {"org_nr": "556000-0000"},
                        "website": "https://acme.example",
                    },
                }
            ],
            "normalized_facts": [
                {
                    "fact_id": "f1",
                    "triple": {"subject": "Acme Inc", "predicate": "employees", "object": "230"},
                    "evidence_text": "Acme Inc employs 230 people",
                    "confidence": 0.9,
                },
                {
                    "fact_id": "f2",
                    "derived": {
                        "entity": "Acme Inc",
                        "relationship": "revenue",
                        "value": "USD 1,200,000",
                    },
                    "evidence_span": {"start": REVENUE_SPAN[0], "end": REVENUE_SPAN[1]},
                    "confidence": 0.85,
                },
            ],
        }
    }


def validation_payload(is_valid: bool = True, **extra: Any) -> dict[str, Any]:
    body: dict[str, Any] = {
        "is_valid": is_valid,
        "contradictions": [],
        "missing_citations": [],
        "schema_errors": [],
    }
    body.update(extra)
    return {"validation": body}


def policy_payload(decision: str = "ALLOW") -> dict[str, Any]:
    return {"policy": {"decision": decision, "reason": "ok", "violations": []}}


def happy_transport(decision: str = "ALLOW") -> FakeStageTransport:
    return FakeStageTransport(
        {
            ENDPOINTS["extraction"]: [extraction_payload()],
            ENDPOINTS["normalization"]: [normalization_payload()],
            ENDPOINTS["validation"]: [validation_payload()],
            ENDPOINTS["policy"]: [policy_payload(decision)],
        }
    )


# === FIXTURES ===


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None, ledger_backend="memory")


@pytest.fixture
def ledger() -> MemoryRunLedger:
    return MemoryRunLedger()


@pytest.fixture
def document() -> Document:
    return Document(id=DOCUMENT_ID, title="Acme", text=DOCUMENT_TEXT)


@pytest.fixture
def make_client(settings):
    def _make(transport: BaseStageTransport) -> StageClient:
        client = StageClient.from_settings(settings, transport=transport)
        client._sleep = no_sleep
        return client

    return _make


@pytest.fixture
def payloads() -> SimpleNamespace:
    """Canned stage payload builders and document constants."""
    return SimpleNamespace(
        document_id=DOCUMENT_ID,
        document_text=DOCUMENT_TEXT,
        revenue_quote=REVENUE_QUOTE,
        revenue_span=REVENUE_SPAN,
        endpoints=ENDPOINTS,
        extraction=extraction_payload,
        normalization=normalization_payload,
        validation=validation_payload,
        policy=policy_payload,
    )


@pytest.fixture
def transport_factory():
    """``factory(decision="ALLOW")`` -> transport scripted for a full run;
    ``factory.empty()`` -> transport with no scripts."""

    def _factory(decision: str = "ALLOW") -> FakeStageTransport:
        return happy_transport(decision)

    _factory.empty = FakeStageTransport  # type: ignore[attr-defined]
    return _factory
