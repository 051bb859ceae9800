# src/assembly/evidence.py — v2
"""Evidence resolution for a raw fact.

A valid character span wins: the evidence is the exact document slice.
Otherwise fall back to an explicit evidence string, then the normalized
statement, then the original statement. Spans index into this run's
document only, so a fact naming another evidence document never uses one.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal

from factgraph.assembly.triple import as_text

EvidenceSource = Literal["span", "explicit", "normalized_statement", "original_statement"]

_EXPLICIT_TEXT_KEYS = ("evidence_text", "evidence", "quote")
_DOC_ID_KEYS = ("evidence_doc_id", "source_document_id", "document_id")
_URL_KEYS = ("evidence_url", "source_url", "citation_url")


@dataclass(frozen=True)
class Evidence:
    text: str
    doc_id: str
    source: EvidenceSource
    url: str | None = None
    span_start: int | None = None
    span_end: int | None = None
    has_reference: bool = True


def _layers(fact: dict[str, Any]) -> list[dict[str, Any]]:
    layers = [fact]
    derived = fact.get("derived")
    if isinstance(derived, dict):
        layers.append(derived)
    evidence = fact.get("evidence")
    if isinstance(evidence, dict):
        layers.append(evidence)
    return layers


def _first(fact: dict[str, Any], keys: tuple[str, ...]) -> str | None:
    for layer in _layers(fact):
        for key in keys:
            text = as_text(layer.get(key))
            if text is not None:
                return text
    return None


def _is_offset(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def extract_span(fact: dict[str, Any]) -> tuple[int, int] | None:
    """Find a (start, end) pair under any of the supported span shapes."""
    for layer in _layers(fact):
        for key in ("evidence_span", "span"):
            span = layer.get(key)
            if isinstance(span, dict):
                start, end = span.get("start"), span.get("end")
            elif isinstance(span, (list, tuple)) and len(span) == 2:
                start, end = span
            else:
                continue
            if _is_offset(start) and _is_offset(end):
                return start, end
        for start_key, end_key in (("span_start", "span_end"), ("char_start", "char_end")):
            start, end = layer.get(start_key), layer.get(end_key)
            if _is_offset(start) and _is_offset(end):
                return start, end
    return None


def valid_span(span: tuple[int, int] | None, text_length: int) -> bool:
    if span is None:
        return False
    start, end = span
    return 0 <= start < end <= text_length


def resolve_evidence(
    fact: dict[str, Any],
    document_id: str | None,
    document_text: str,
    fallback_source_url: str | None = None,
) -> Evidence | None:
    """Resolve evidence text and document reference, or None to drop the fact."""
    doc_ref = _first(fact, _DOC_ID_KEYS)
    doc_id = doc_ref or as_text(document_id)
    if doc_id is None:
        return None
    url_ref = _first(fact, _URL_KEYS)
    url = url_ref or fallback_source_url

    span = extract_span(fact) if doc_id == as_text(document_id) else None
    if valid_span(span, len(document_text)):
        start, end = span  # type: ignore[misc]
        sliced = document_text[start:end]
        if sliced.strip():
            return Evidence(
                text=sliced, doc_id=doc_id, source="span", url=url,
                span_start=start, span_end=end,
            )

    explicit = _first(fact, _EXPLICIT_TEXT_KEYS)
    nested = fact.get("evidence")
    if explicit is None and isinstance(nested, dict):
        explicit = as_text(nested.get("text"))
    if explicit is not None:
        return Evidence(text=explicit, doc_id=doc_id, source="explicit", url=url)

    # Statement fallbacks only carry a reference if the fact named one.
    has_reference = doc_ref is not None or url_ref is not None
    for key in ("normalized_statement", "original_statement"):
        statement = _first(fact, (key,))
        if statement is not None:
            return Evidence(
                text=statement, doc_id=doc_id, source=key,  # type: ignore[arg-type]
                url=url, has_reference=has_reference,
            )
    return None
