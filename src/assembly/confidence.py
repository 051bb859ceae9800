# src/assembly/confidence.py — v1
"""Confidence scoring for assembled facts.

The extraction confidence (default 0.8) is averaged with the validation
score, reduced by the largest validation penalty that matches any key the
fact is known by, reduced again when the fact has no evidence reference,
then adjusted by the policy decision. Penalties from the same finding
under different keys never add up.
"""

from __future__ import annotations

import math
import re
from typing import TYPE_CHECKING, Any, Iterable

from factgraph.assembly.triple import Triple, as_text, resolve_triple
from factgraph.core.models import PolicyDecision

if TYPE_CHECKING:
    from factgraph.stages.models import ValidationOutput

DEFAULT_CONFIDENCE = 0.8

PENALTY_MISSING_CITATION = 0.2
PENALTY_SCHEMA_ERROR = 0.25
PENALTY_CONTRADICTION = 0.3
SEVERITY_PENALTIES = {"low": 0.1, "medium": 0.2, "high": 0.3}
NO_EVIDENCE_PENALTY = 0.15
WARN_PENALTY = 0.1

_ID_KEYS = ("fact_id", "id")
_ID_LIST_KEYS = ("fact_ids", "ids")
_STATEMENT_KEYS = ("normalized_statement", "original_statement", "statement", "claim")
_CONFIDENCE_KEYS = ("confidence", "confidence_numeric", "confidence_score")
_WHITESPACE = re.compile(r"\s+")


def normalize_statement(text: str) -> str:
    return _WHITESPACE.sub(" ", text).strip().rstrip(".;:!").lower()


def spo_key(triple: Triple) -> str:
    parts = (triple.subject, triple.predicate, triple.object)
    return "spo:" + "|".join(normalize_statement(p) for p in parts)


def _keys_for(item: dict[str, Any]) -> set[str]:
    keys: set[str] = set()
    for key in _ID_KEYS:
        value = as_text(item.get(key))
        if value is not None:
            keys.add(f"id:{value}")
    for key in _ID_LIST_KEYS:
        values = item.get(key)
        if isinstance(values, list):
            keys.update(f"id:{v}" for v in map(as_text, values) if v is not None)
    for key in _STATEMENT_KEYS:
        value = as_text(item.get(key))
        if value is not None:
            keys.add("stmt:" + normalize_statement(value))
    triple = resolve_triple(item)
    if triple is not None:
        keys.add(spo_key(triple))
    return keys


def finding_keys(finding: Any) -> set[str]:
    """Every identifying key a validation finding carries."""
    if isinstance(finding, str):
        text = finding.strip()
        return {"stmt:" + normalize_statement(text)} if text else set()
    if not isinstance(finding, dict):
        return set()
    keys = _keys_for(finding)
    nested = finding.get("fact")
    if isinstance(nested, dict):
        keys |= _keys_for(nested)
    elif isinstance(nested, str) and nested.strip():
        keys.add("stmt:" + normalize_statement(nested))
    return keys


def fact_keys(fact: dict[str, Any], triple: Triple | None = None) -> set[str]:
    """Every identifying key a raw fact could be referenced by."""
    keys = _keys_for(fact)
    if triple is not None:
        keys.add(spo_key(triple))
    return keys


class PenaltyIndex:
    """Max penalty per identifying key."""

    def __init__(self) -> None:
        self._penalties: dict[str, float] = {}

    def __len__(self) -> int:
        return len(self._penalties)

    def add(self, keys: Iterable[str], penalty: float) -> None:
        for key in keys:
            if penalty > self._penalties.get(key, 0.0):
                self._penalties[key] = penalty

    def lookup(self, keys: Iterable[str]) -> float:
        return max((self._penalties.get(k, 0.0) for k in keys), default=0.0)

    @classmethod
    def from_validation(cls, validation: ValidationOutput | None) -> PenaltyIndex:
        index = cls()
        if validation is None:
            return index
        for finding in validation.missing_citations:
            index.add(finding_keys(finding), PENALTY_MISSING_CITATION)
        for finding in validation.schema_errors:
            index.add(finding_keys(finding), PENALTY_SCHEMA_ERROR)
        for finding in validation.contradictions:
            index.add(finding_keys(finding), PENALTY_CONTRADICTION)
        for issue in validation.issues:
            index.add(finding_keys(issue), severity_penalty(issue))
        return index


def severity_penalty(issue: Any) -> float:
    severity = issue.get("severity") if isinstance(issue, dict) else None
    if isinstance(severity, str):
        return SEVERITY_PENALTIES.get(severity.strip().lower(), SEVERITY_PENALTIES["medium"])
    return SEVERITY_PENALTIES["medium"]


def base_confidence(fact: dict[str, Any]) -> float:
    """Extraction-provided confidence, or the default when absent."""
    layers = [fact]
    if isinstance(fact.get("derived"), dict):
        layers.append(fact["derived"])
    for layer in layers:
        for key in _CONFIDENCE_KEYS:
            value = layer.get(key)
            if isinstance(value, bool) or value is None:
                continue
            try:
                return float(value)
            except (TypeError, ValueError):
                continue
    return DEFAULT_CONFIDENCE


def compute_confidence(
    fact: dict[str, Any],
    *,
    triple: Triple | None = None,
    validation: ValidationOutput | None = None,
    decision: PolicyDecision | None = None,
    has_evidence_reference: bool = True,
    penalty_index: PenaltyIndex | None = None,
) -> float:
    """Final confidence in [0, 1], rounded to two decimals."""
    confidence = base_confidence(fact)

    if validation is not None and validation.confidence_score is not None:
        confidence = (confidence + validation.confidence_score) / 2

    index = penalty_index if penalty_index is not None else PenaltyIndex.from_validation(validation)
    penalty = index.lookup(fact_keys(fact, triple))
    if not has_evidence_reference:
        penalty += NO_EVIDENCE_PENALTY
    confidence -= penalty

    if decision is PolicyDecision.WARN:
        confidence -= WARN_PENALTY
    elif decision is PolicyDecision.BLOCK:
        confidence = 0.0

    if not math.isfinite(confidence):
        return DEFAULT_CONFIDENCE
    return round(min(1.0, max(0.0, confidence)), 2)
