# tests/unit/core/test_unit_records.py — v1
"""Tests for core/models.py — record validation and enums."""

from __future__ import annotations

from datetime import date

import pytest
from pydantic import ValidationError

from factgraph.core.models import FactRecord, FactStatus, NodeRun, RunStatus, StageName


def _fact(**overrides) -> FactRecord:
    data = {
        "subject": "Acme Inc",
        "predicate": "employees",
        "object": "230",
        "evidence_text": "Acme Inc employs 230 people",
        "evidence_doc_id": "doc-1",
        "confidence": 0.9,
    }
    data.update(overrides)
    return FactRecord(**data)


class TestRunStatus:
    def test_only_running_is_not_terminal(self):
        assert not RunStatus.RUNNING.is_terminal
        for status in (RunStatus.SUCCESS, RunStatus.PARTIAL, RunStatus.FAILED, RunStatus.TIMEOUT):
            assert status.is_terminal

    def test_stage_order(self):
        assert [s.value for s in StageName] == [
            "extraction", "normalization", "validation", "policy",
        ]


class TestFactRecord:
    def test_defaults(self):
        fact = _fact()
        assert fact.status is FactStatus.VERIFIED
        assert fact.typed_kind is None
        assert fact.id

    @pytest.mark.parametrize("confidence", [-0.01, 1.01])
    def test_confidence_bounds(self, confidence):
        with pytest.raises(ValidationError):
            _fact(confidence=confidence)

    @pytest.mark.parametrize("field", ["evidence_text", "evidence_doc_id"])
    def test_empty_evidence_rejected(self, field):
        with pytest.raises(ValidationError):
            _fact(**{field: ""})

    @pytest.mark.parametrize("field", ["evidence_text", "evidence_doc_id"])
    def test_blank_evidence_rejected(self, field):
        with pytest.raises(ValidationError):
            _fact(**{field: "   "})

    def test_typed_kind(self):
        assert _fact(value_number=230.0).typed_kind == "number"
        assert _fact(value_date=date(1998, 1, 1)).typed_kind == "date"
        assert _fact(value_money_amount=1.0, value_money_ccy="USD").typed_kind == "money"


class TestNodeRun:
    def test_status_literal(self):
        with pytest.raises(ValidationError):
            NodeRun(run_id="r1", stage=StageName.EXTRACTION, status="running")
