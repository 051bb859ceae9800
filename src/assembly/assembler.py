# src/assembly/assembler.py — v2
"""Fact assembly: raw normalized facts -> persistable FactRecords.

Pure function of its inputs; storage is the orchestrator's concern. A fact
without a full triple or without resolvable evidence is dropped and logged,
never raised.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any

from pydantic import ValidationError

from factgraph.assembly.confidence import PenaltyIndex, base_confidence, compute_confidence
from factgraph.assembly.evidence import Evidence, resolve_evidence
from factgraph.assembly.triple import as_text, resolve_triple
from factgraph.assembly.typed_value import detect_typed_value
from factgraph.chunking.base_chunker import chunks_covering
from factgraph.core.models import DocumentChunk, FactRecord, FactStatus
from factgraph.stages.models import PolicyOutput, ValidationOutput

logger = logging.getLogger(__name__)

_STATUSES = {s.value for s in FactStatus}


def _status(fact: dict[str, Any]) -> FactStatus:
    for layer in (fact, fact.get("derived") or {}):
        raw = as_text(layer.get("status")) if isinstance(layer, dict) else None
        if raw is not None and raw.lower() in _STATUSES:
            return FactStatus(raw.lower())
    return FactStatus.VERIFIED


def _as_of(fact: dict[str, Any]) -> date | None:
    raw = as_text(fact.get("as_of"))
    if raw is None:
        return None
    try:
        return date.fromisoformat(raw[:10])
    except ValueError:
        return None


def _covering(chunks: list[DocumentChunk] | None, evidence: Evidence) -> list[int]:
    if not chunks or evidence.span_start is None or evidence.span_end is None:
        return []
    return chunks_covering(chunks, evidence.span_start, evidence.span_end)


def assemble_facts(
    raw_facts: list[Any],
    document_id: str | None,
    document_text: str,
    fallback_source_url: str | None,
    validation_result: ValidationOutput | None,
    policy_result: PolicyOutput | None,
    *,
    run_id: str | None = None,
    entity_index: dict[str, str] | None = None,
    chunks: list[DocumentChunk] | None = None,
) -> list[FactRecord]:
    """Assemble every well-formed raw fact into a FactRecord.

    Args:
        raw_facts: Normalized facts as returned by the normalization stage.
        document_id: Fallback evidence document reference.
        document_text: Source text that evidence spans index into.
        fallback_source_url: Evidence URL when a fact names none.
        validation_result: Validation findings used for penalties.
        policy_result: Policy decision applied as the final modifier.
        run_id: Recorded in each record's metadata.
        entity_index: Lower-cased entity name to stored entity id.
        chunks: Indexed chunks of the document; span evidence records the
            seq numbers of the chunks it overlaps.

    Returns:
        Assembled records, in input order, minus dropped facts.
    """
    penalties = PenaltyIndex.from_validation(validation_result)
    decision = policy_result.decision if policy_result is not None else None

    records: list[FactRecord] = []
    dropped = 0
    for position, fact in enumerate(raw_facts):
        if not isinstance(fact, dict):
            logger.warning("Dropping fact #%d: not an object", position)
            dropped += 1
            continue

        triple = resolve_triple(fact)
        if triple is None:
            logger.warning("Dropping fact #%d: incomplete subject/predicate/object", position)
            dropped += 1
            continue

        evidence = resolve_evidence(fact, document_id, document_text, fallback_source_url)
        if evidence is None:
            logger.warning("Dropping fact #%d (%s %s): no evidence", position, triple.subject, triple.predicate)
            dropped += 1
            continue

        typed = detect_typed_value(triple.object, triple.predicate, entity_index)
        confidence = compute_confidence(
            fact,
            triple=triple,
            validation=validation_result,
            decision=decision,
            has_evidence_reference=evidence.has_reference,
            penalty_index=penalties,
        )

        try:
            record = FactRecord(
                subject=triple.subject,
                predicate=triple.predicate,
                object=triple.object,
                **(typed.as_columns() if typed is not None else {}),
                evidence_text=evidence.text,
                evidence_doc_id=evidence.doc_id,
                evidence_url=evidence.url,
                evidence_span_start=evidence.span_start,
                evidence_span_end=evidence.span_end,
                confidence=confidence,
                status=_status(fact),
                as_of=_as_of(fact),
                metadata={
                    "source": "coordinator",
                    "run_id": run_id,
                    "document_id": document_id,
                    "policy_decision": decision.value if decision is not None else None,
                    "raw_confidence": base_confidence(fact),
                    "evidence_source": evidence.source,
                    "chunk_seqs": _covering(chunks, evidence),
                },
            )
        except ValidationError as e:
            logger.warning("Dropping fact #%d: %d validation error(s)", position, e.error_count())
            dropped += 1
            continue
        records.append(record)

    logger.info("Assembled %d fact(s), dropped %d", len(records), dropped)
    return records
