"""Graph builder - turns an index snapshot into nodes, edges and broken references."""

import logging
from dataclasses import dataclass, field

from hivemind.indexer.parser import AttributeValue, Document, file_stem
from hivemind.indexer.scanner import VaultIndex

from .relationships import Classifier

logger = logging.getLogger(__name__)

DEFAULT_KIND = "reference"


@dataclass
class Node:
    """Persisted representation of one document."""

    id: str
    type: str
    status: str
    title: str
    attributes: dict[str, AttributeValue] = field(default_factory=dict)
    body: str = ""
    file_path: str = ""
    created_at: float = 0.0
    updated_at: float = 0.0

    @classmethod
    def from_document(cls, doc: Document) -> "Node":
        return cls(
            id=doc.id,
            type=doc.type,
            status=doc.status,
            title=doc.title,
            attributes=dict(doc.attributes),
            body=doc.body,
            file_path=doc.path,
            created_at=doc.created,
            updated_at=doc.modified,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "status": self.status,
            "title": self.title,
            "attributes": self.attributes,
            "body": self.body,
            "file_path": self.file_path,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass(frozen=True, order=True)
class Relationship:
    """A resolved, directed reference between two nodes."""

    source_id: str
    target_id: str
    kind: str = DEFAULT_KIND
    context: str | None = None

    def to_dict(self) -> dict:
        return {
            "source_id": self.source_id,
            "target_id": self.target_id,
            "kind": self.kind,
            "context": self.context,
        }


@dataclass(frozen=True, order=True)
class BrokenReference:
    """A reference whose target matched no node."""

    source_id: str
    target: str

    def to_dict(self) -> dict:
        return {"source_id": self.source_id, "target": self.target}


@dataclass
class GraphBuild:
    """Everything to persist for one index snapshot."""

    nodes: list[Node] = field(default_factory=list)
    edges: dict[str, list[Relationship]] = field(default_factory=dict)
    broken: list[BrokenReference] = field(default_factory=list)

    @property
    def node_map(self) -> dict[str, Node]:
        return {node.id: node for node in self.nodes}

    @property
    def relationships(self) -> list[Relationship]:
        return [edge for source in sorted(self.edges) for edge in self.edges[source]]

    def broken_for(self, source_id: str) -> list[BrokenReference]:
        return [ref for ref in self.broken if ref.source_id == source_id]

    def stats(self) -> dict:
        return {
            "nodes": len(self.nodes),
            "relationships": sum(len(edges) for edges in self.edges.values()),
            "broken_references": len(self.broken),
        }


@dataclass
class GraphChanges:
    """Difference between two builds, as applied by an incremental commit."""

    upserts: list[Node] = field(default_factory=list)
    deletes: list[str] = field(default_factory=list)
    edge_sources: list[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.upserts or self.deletes or self.edge_sources)


class GraphBuilder:
    """Builds the graph for an index snapshot.

    Resolution tries the exact identifier first, then a case-insensitive title
    match, then a case-insensitive file name without extension; when several
    nodes share a title or file name the smallest identifier wins.
    Relationship kinds come from the header's declared relationships, then
    from the injected classifier, then fall back to "reference".
    """

    def __init__(self, classify: Classifier | None = None) -> None:
        self.classify = classify

    def build(self, index: VaultIndex) -> GraphBuild:
        documents = index.documents
        by_id = {doc.id: doc for doc in documents}
        by_title: dict[str, str] = {}
        by_stem: dict[str, str] = {}
        for doc in documents:
            # documents are sorted by id, so the first id seen for a key is the smallest
            by_title.setdefault(doc.title.casefold(), doc.id)
            by_stem.setdefault(file_stem(doc.path).casefold(), doc.id)

        nodes = [Node.from_document(doc) for doc in documents]
        edges: dict[str, list[Relationship]] = {}
        broken: list[BrokenReference] = []

        for doc in documents:
            outbound, unresolved = self._relationships_for(doc, by_id, by_title, by_stem)
            edges[doc.id] = outbound
            broken.extend(unresolved)

        build = GraphBuild(nodes=nodes, edges=edges, broken=sorted(broken))
        logger.debug(
            f"Built graph: {len(nodes)} nodes, {build.stats()['relationships']} relationships, "
            f"{len(build.broken)} broken references"
        )
        return build

    def _relationships_for(
        self,
        doc: Document,
        by_id: dict[str, Document],
        by_title: dict[str, str],
        by_stem: dict[str, str],
    ) -> tuple[list[Relationship], list[BrokenReference]]:
        seen: dict[str, Relationship] = {}
        unresolved: set[str] = set()

        for declared in doc.relationships:
            target_id = self.resolve(declared.target, by_id, by_title, by_stem)
            if target_id is None:
                unresolved.add(declared.target)
            elif target_id != doc.id and target_id not in seen:
                seen[target_id] = Relationship(doc.id, target_id, declared.kind, declared.context)

        for reference in doc.references:
            target_id = self.resolve(reference, by_id, by_title, by_stem)
            if target_id is None:
                unresolved.add(reference)
            elif target_id != doc.id and target_id not in seen:
                seen[target_id] = Relationship(
                    doc.id, target_id, self._kind_for(doc, by_id[target_id])
                )

        outbound = sorted(seen.values())
        return outbound, [BrokenReference(doc.id, target) for target in sorted(unresolved)]

    @staticmethod
    def resolve(
        target: str,
        by_id: dict[str, Document],
        by_title: dict[str, str],
        by_stem: dict[str, str] | None = None,
    ) -> str | None:
        """Resolve a reference target to a node id."""
        if target in by_id:
            return target
        key = target.casefold()
        if key in by_title:
            return by_title[key]
        return (by_stem or {}).get(key)

    def _kind_for(self, source: Document, target: Document) -> str:
        if self.classify is not None:
            kind = self.classify(source.type, target.type)
            if kind:
                return kind
        return DEFAULT_KIND


def diff_builds(old: GraphBuild, new: GraphBuild) -> GraphChanges:
    """Compute what an incremental commit must write to turn `old` into `new`.

    `edge_sources` lists every surviving source whose outbound edges or broken
    references differ; edges of deleted nodes go away with the node.
    """
    old_nodes = old.node_map
    new_nodes = new.node_map

    upserts = [node for node in new.nodes if old_nodes.get(node.id) != node]
    deletes = sorted(set(old_nodes) - set(new_nodes))

    old_broken: dict[str, list[BrokenReference]] = {}
    for ref in old.broken:
        old_broken.setdefault(ref.source_id, []).append(ref)
    new_broken: dict[str, list[BrokenReference]] = {}
    for ref in new.broken:
        new_broken.setdefault(ref.source_id, []).append(ref)

    edge_sources = [
        node_id
        for node_id in sorted(new_nodes)
        if node_id not in old_nodes
        or old.edges.get(node_id, []) != new.edges.get(node_id, [])
        or old_broken.get(node_id, []) != new_broken.get(node_id, [])
    ]

    return GraphChanges(upserts=upserts, deletes=deletes, edge_sources=edge_sources)
