"""Hybrid search: full-text ranking, structured post-filters, 1-hop expansion."""

import logging
import time
from collections.abc import Iterable
from dataclasses import dataclass, field

from hivemind.graph.builder import Node, Relationship
from hivemind.storage.database import GraphSnapshot, GraphStore

logger = logging.getLogger(__name__)

STRATEGY_FULLTEXT = "fulltext"
STRATEGY_EXPANDED = "fulltext+relationships"


@dataclass
class SearchMetadata:
    """How a query was answered."""

    strategy: str
    elapsed_ms: float
    total_candidates: int

    def to_dict(self) -> dict:
        return {
            "strategy": self.strategy,
            "elapsed_ms": round(self.elapsed_ms, 3),
            "total_candidates": self.total_candidates,
        }


@dataclass
class SearchResult:
    """Ranked nodes plus optional 1-hop neighbourhood."""

    nodes: list[Node] = field(default_factory=list)
    relationships: list[Relationship] = field(default_factory=list)
    related_nodes: list[Node] = field(default_factory=list)
    metadata: SearchMetadata = field(
        default_factory=lambda: SearchMetadata(STRATEGY_FULLTEXT, 0.0, 0)
    )
    scores: dict[str, float] = field(default_factory=dict)


@dataclass
class NodeWithRelationships:
    node: Node
    relationships: list[Relationship] = field(default_factory=list)
    related_nodes: list[Node] = field(default_factory=list)


def _expand(
    snap: GraphSnapshot, node_ids: list[str]
) -> tuple[list[Relationship], list[Node]]:
    """Collect edges touching the given nodes and the nodes at their far ends."""
    seen_edges: set[Relationship] = set()
    relationships: list[Relationship] = []
    related_ids: list[str] = []
    known = set(node_ids)

    for node_id in node_ids:
        for edge in snap.get_relationships(node_id):
            if edge not in seen_edges:
                seen_edges.add(edge)
                relationships.append(edge)
            other = edge.target_id if edge.source_id == node_id else edge.source_id
            if other not in known:
                known.add(other)
                related_ids.append(other)

    related = snap.get_nodes(related_ids)
    return relationships, [related[i] for i in related_ids if i in related]


class SearchEngine:
    """Runs searches against one consistent snapshot of the store."""

    def __init__(self, store: GraphStore, overfetch: int = 2, max_candidates: int = 200) -> None:
        self.store = store
        self.overfetch = max(1, overfetch)
        self.max_candidates = max(1, max_candidates)

    def search(
        self,
        query: str,
        *,
        limit: int = 10,
        types: Iterable[str] | None = None,
        statuses: Iterable[str] | None = None,
        include_relationships: bool = False,
    ) -> SearchResult:
        """Search nodes by text, then filter by type/status without reordering."""
        start = time.perf_counter()
        type_set = set(types) if types is not None else None
        status_set = set(statuses) if statuses is not None else None
        strategy = STRATEGY_EXPANDED if include_relationships else STRATEGY_FULLTEXT

        if limit <= 0:
            return SearchResult(metadata=SearchMetadata(strategy, 0.0, 0))

        fetch = min(limit * self.overfetch, self.max_candidates)

        with self.store.snapshot() as snap:
            hits = snap.search(query, fetch)
            nodes: list[Node] = []
            scores: dict[str, float] = {}

            for node_id, score in hits:
                node = snap.get_node(node_id)
                if node is None:
                    continue
                if type_set is not None and node.type not in type_set:
                    continue
                if status_set is not None and node.status not in status_set:
                    continue
                nodes.append(node)
                scores[node.id] = score
                if len(nodes) >= limit:
                    break

            relationships: list[Relationship] = []
            related_nodes: list[Node] = []
            if include_relationships and nodes:
                relationships, related_nodes = _expand(snap, [n.id for n in nodes])

        elapsed_ms = (time.perf_counter() - start) * 1000
        logger.debug(
            f"Search '{query}': {len(hits)} candidates, {len(nodes)} results in {elapsed_ms:.1f}ms"
        )
        return SearchResult(
            nodes=nodes,
            relationships=relationships,
            related_nodes=related_nodes,
            metadata=SearchMetadata(strategy, elapsed_ms, len(hits)),
            scores=scores,
        )

    def get_node_with_relationships(self, node_id: str) -> NodeWithRelationships | None:
        with self.store.snapshot() as snap:
            node = snap.get_node(node_id)
            if node is None:
                return None
            relationships, related_nodes = _expand(snap, [node_id])
        return NodeWithRelationships(node, relationships, related_nodes)


def _node_summary(node: Node) -> dict:
    return {"id": node.id, "type": node.type, "status": node.status, "title": node.title}


def _node_record(node: Node, include_body: bool, body_limit: int | None) -> dict:
    record = {
        **_node_summary(node),
        "attributes": node.attributes,
        "file_path": node.file_path,
        "created_at": node.created_at,
        "updated_at": node.updated_at,
    }
    if include_body:
        body = node.body
        truncated = body_limit is not None and len(body) > body_limit
        record["body"] = body[:body_limit] if truncated else body
        record["truncated"] = truncated
    return record


class VaultQueries:
    """Query surface for external tools. Returns plain dicts, or None when absent."""

    def __init__(self, engine: SearchEngine) -> None:
        self.engine = engine
        self.store = engine.store

    def query_by_id(
        self, node_id: str, include_body: bool = True, body_limit: int = 500
    ) -> dict | None:
        found = self.engine.get_node_with_relationships(node_id)
        if found is None:
            return None

        record = _node_record(found.node, include_body, body_limit)
        record["relationships"] = [r.to_dict() for r in found.relationships]
        record["related_nodes"] = [_node_summary(n) for n in found.related_nodes]
        return record

    def list_by_type(
        self,
        node_type: str,
        status_filter: list[str] | None = None,
        limit: int = 50,
        include_body: bool = False,
    ) -> list[dict]:
        if limit <= 0:
            return []
        nodes = self.store.list_by_type(node_type, status_filter, limit)
        return [_node_record(n, include_body, None) for n in nodes]

    def search(
        self,
        text: str,
        limit: int = 10,
        type_filter: list[str] | None = None,
        status_filter: list[str] | None = None,
        include_relationships: bool = False,
    ) -> dict:
        result = self.engine.search(
            text,
            limit=limit,
            types=type_filter,
            statuses=status_filter,
            include_relationships=include_relationships,
        )
        payload = {
            "results": [
                {
                    **_node_summary(n),
                    "score": result.scores.get(n.id, 0.0),
                    "file_path": n.file_path,
                }
                for n in result.nodes
            ],
            "metadata": result.metadata.to_dict(),
        }
        if include_relationships:
            payload["relationships"] = [r.to_dict() for r in result.relationships]
            payload["related_nodes"] = [_node_summary(n) for n in result.related_nodes]
        return payload
