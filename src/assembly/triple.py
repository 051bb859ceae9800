# src/assembly/triple.py — v1
"""Subject/predicate/object resolution from variant fact shapes.

Resolution order per field, first non-empty value wins:
  1. ``fact["triple"]`` with canonical keys
  2. canonical keys at the top level of the fact
  3. ``fact["derived"]`` with the synonym chain below
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterator

_CANONICAL = {
    "subject": ("subject",),
    "predicate": ("predicate",),
    "object": ("object",),
}

_SYNONYMS = {
    "subject": ("subject", "entity", "entity_name", "subject_name"),
    "predicate": ("predicate", "relationship", "relation", "attribute", "property"),
    "object": ("object", "value", "target", "object_value"),
}


@dataclass(frozen=True)
class Triple:
    subject: str
    predicate: str
    object: str


def as_text(value: Any) -> str | None:
    """Coerce a scalar to a stripped non-empty string, else None."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return None


def _sources(fact: dict[str, Any]) -> Iterator[tuple[dict[str, Any], dict[str, tuple[str, ...]]]]:
    triple = fact.get("triple")
    if isinstance(triple, dict):
        yield triple, _CANONICAL
    yield fact, _CANONICAL
    derived = fact.get("derived")
    if isinstance(derived, dict):
        yield derived, _SYNONYMS


def _resolve_field(fact: dict[str, Any], field: str) -> str | None:
    for source, keys in _sources(fact):
        for key in keys[field]:
            text = as_text(source.get(key))
            if text is not None:
                return text
    return None


def resolve_triple(fact: dict[str, Any]) -> Triple | None:
    """Resolve a fact's triple; None if any of the three fields is missing."""
    if not isinstance(fact, dict):
        return None
    subject = _resolve_field(fact, "subject")
    predicate = _resolve_field(fact, "predicate")
    obj = _resolve_field(fact, "object")
    if subject is None or predicate is None or obj is None:
        return None
    return Triple(subject=subject, predicate=predicate, object=obj)
