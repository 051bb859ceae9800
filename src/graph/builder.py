# src/graph/builder.py — v2
"""Knowledge graph view over stored entities and facts.

Nodes are entities and fact endpoints (subject / object names); every fact
becomes a directed edge from subject to object carrying its predicate,
confidence, status and typed value. Names are matched case-insensitively
against entity legal and trading names.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import networkx as nx

from factgraph.core.models import EntityRecord, FactRecord

logger = logging.getLogger(__name__)


def _node_key(name: str) -> str:
    return name.strip().lower()


def build_knowledge_graph(
    entities: list[EntityRecord], facts: list[FactRecord]
) -> nx.MultiDiGraph:
    """Build a directed multigraph of entities connected by facts.

    Args:
        entities: Stored entity records.
        facts: Stored fact records.

    Returns:
        MultiDiGraph keyed by lower-cased names. Entity nodes carry
        ``kind="entity"``; endpoints without a matching entity carry
        ``kind="value"``.
    """
    graph = nx.MultiDiGraph()
    aliases: dict[str, str] = {}

    for entity in entities:
        key = _node_key(entity.legal_name)
        graph.add_node(
            key,
            label=entity.legal_name,
            kind="entity",
            entity_id=entity.id,
            entity_type=entity.entity_type,
            website=entity.website,
        )
        for name in entity.trading_names:
            aliases.setdefault(_node_key(name), key)

    def endpoint(name: str) -> str:
        key = _node_key(name)
        key = aliases.get(key, key)
        if key not in graph:
            graph.add_node(key, label=name, kind="value")
        return key

    for fact in facts:
        source = endpoint(fact.subject)
        target = endpoint(fact.object)
        graph.add_edge(
            source,
            target,
            key=fact.id,
            predicate=fact.predicate,
            confidence=fact.confidence,
            status=fact.status.value,
            typed_kind=fact.typed_kind,
            evidence_doc_id=fact.evidence_doc_id,
        )

    logger.info(
        "Knowledge graph built: %d nodes, %d edges",
        graph.number_of_nodes(), graph.number_of_edges(),
    )
    return graph


def _graphml_safe(data: dict[str, Any]) -> None:
    for k, v in list(data.items()):
        if v is None:
            del data[k]
        elif not isinstance(v, (str, int, float, bool)):
            data[k] = str(v)


def write_graphml(graph: nx.MultiDiGraph, output_path: str | Path) -> Path:
    """Write the graph as GraphML. GraphML requires primitive attribute values."""
    path = Path(output_path)
    path.parent.mkdir(parents=True, exist_ok=True)

    g = graph.copy()
    for _, data in g.nodes(data=True):
        _graphml_safe(data)
    for _, _, data in g.edges(data=True):
        _graphml_safe(data)

    nx.write_graphml(g, str(path))
    return path
