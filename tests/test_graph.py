"""Tests for graph building and relationship classification."""

import pytest

from hivemind.graph.builder import (
    BrokenReference,
    GraphBuilder,
    Node,
    Relationship,
    diff_builds,
)
from hivemind.graph.relationships import TypePairClassifier, parse_rule
from hivemind.indexer.parser import DeclaredRelationship, Document, extract_references
from hivemind.indexer.scanner import VaultIndex


def make_doc(
    note_id: str,
    note_type: str = "character",
    status: str = "canon",
    title: str | None = None,
    body: str = "",
    relationships: list[DeclaredRelationship] | None = None,
    path: str | None = None,
) -> Document:
    return Document(
        path=path or f"{note_id}.md",
        id=note_id,
        type=note_type,
        status=status,
        title=title or note_id,
        body=body,
        references=extract_references(body),
        relationships=relationships or [],
    )


def make_index(*docs: Document) -> VaultIndex:
    return VaultIndex(vault_path="vault", parsed={d.path: d for d in docs})


class TestGraphBuilder:
    """Tests for GraphBuilder."""

    def test_sample_graph(self, sample_index: VaultIndex):
        build = GraphBuilder().build(sample_index)

        assert [n.id for n in build.nodes] == ["alice", "bob", "capital"]
        assert build.edges["alice"] == [
            Relationship("alice", "bob", "reference"),
            Relationship("alice", "capital", "reference"),
        ]
        assert build.edges["bob"] == []
        assert build.edges["capital"] == []
        assert build.broken == [BrokenReference("capital", "Nonexistent")]

    def test_node_copies_document(self, sample_index: VaultIndex):
        node = GraphBuilder().build(sample_index).node_map["capital"]

        assert node.type == "location"
        assert node.status == "draft"
        assert node.title == "Capital City"
        assert node.attributes == {"population": 12000}
        assert node.file_path == "places/capital.md"
        assert "The capital of the realm" in node.body

    def test_resolves_by_id_first(self):
        index = make_index(
            make_doc("a", body="[[b]]"),
            make_doc("b", title="Something"),
            make_doc("c", title="b"),
        )
        build = GraphBuilder().build(index)
        assert [e.target_id for e in build.edges["a"]] == ["b"]

    def test_resolves_title_case_insensitively(self):
        index = make_index(make_doc("a", body="[[capital city]]"), make_doc("cap", title="Capital City"))
        build = GraphBuilder().build(index)
        assert build.edges["a"] == [Relationship("a", "cap")]

    def test_title_tie_breaks_on_smallest_id(self):
        index = make_index(
            make_doc("src", body="[[Shared]]"),
            make_doc("zeta", title="Shared"),
            make_doc("alpha", title="shared"),
        )
        build = GraphBuilder().build(index)
        assert build.edges["src"] == [Relationship("src", "alpha")]

    def test_resolves_file_name(self):
        index = make_index(
            make_doc("a", body="[[capital-city]] [[Old-Map]]"),
            make_doc("loc-001", title="Capital City", path="places/capital-city.md"),
            make_doc("item-7", title="Map", path="items/old-map.markdown"),
        )
        build = GraphBuilder().build(index)

        assert build.edges["a"] == [Relationship("a", "item-7"), Relationship("a", "loc-001")]
        assert build.broken == []

    def test_title_beats_file_name(self):
        index = make_index(
            make_doc("a", body="[[harbor]]"),
            make_doc("z-title", title="Harbor", path="z.md"),
            make_doc("b-file", title="Docks", path="harbor.md"),
        )
        build = GraphBuilder().build(index)
        assert build.edges["a"] == [Relationship("a", "z-title")]

    def test_file_name_tie_breaks_on_smallest_id(self):
        index = make_index(
            make_doc("src", body="[[notes]]"),
            make_doc("zeta", title="Z", path="b/notes.md"),
            make_doc("alpha", title="A", path="a/notes.md"),
        )
        build = GraphBuilder().build(index)
        assert build.edges["src"] == [Relationship("src", "alpha")]

    def test_single_edge_per_resolved_target(self):
        index = make_index(make_doc("a", body="[[b]] [[B title]] [[b|again]]"), make_doc("b", title="B title"))
        build = GraphBuilder().build(index)
        assert build.edges["a"] == [Relationship("a", "b")]

    def test_self_reference_ignored(self):
        build = GraphBuilder().build(make_index(make_doc("a", body="[[a]]")))
        assert build.edges["a"] == []
        assert build.broken == []

    def test_broken_reference(self):
        build = GraphBuilder().build(make_index(make_doc("a", body="[[Nonexistent]]")))
        assert build.edges["a"] == []
        assert build.broken == [BrokenReference("a", "Nonexistent")]

    def test_classifier_sets_kind(self):
        classify = TypePairClassifier.from_rules(["character>location=located_in"])
        index = make_index(
            make_doc("alice", body="[[home]] [[bob]]"),
            make_doc("home", note_type="location"),
            make_doc("bob"),
        )
        build = GraphBuilder(classify).build(index)

        assert build.edges["alice"] == [
            Relationship("alice", "bob", "reference"),
            Relationship("alice", "home", "located_in"),
        ]

    def test_declared_relationship_wins(self):
        declared = [DeclaredRelationship(target="bob", kind="knows", context="old friends")]
        index = make_index(make_doc("alice", body="[[bob]]", relationships=declared), make_doc("bob"))
        build = GraphBuilder().build(index)

        assert build.edges["alice"] == [Relationship("alice", "bob", "knows", "old friends")]

    def test_declared_relationship_unresolved(self):
        declared = [DeclaredRelationship(target="ghost", kind="haunts")]
        build = GraphBuilder().build(make_index(make_doc("a", relationships=declared)))

        assert build.edges["a"] == []
        assert build.broken == [BrokenReference("a", "ghost")]

    def test_deterministic(self, sample_index: VaultIndex):
        first = GraphBuilder().build(sample_index)
        second = GraphBuilder().build(sample_index.copy())

        assert first.nodes == second.nodes
        assert first.edges == second.edges
        assert first.broken == second.broken

    def test_stats(self, sample_index: VaultIndex):
        stats = GraphBuilder().build(sample_index).stats()
        assert stats == {"nodes": 3, "relationships": 2, "broken_references": 1}


class TestDiffBuilds:
    """Tests for diff_builds."""

    def test_no_changes(self, sample_index: VaultIndex):
        build = GraphBuilder().build(sample_index)
        assert diff_builds(build, build).is_empty

    def test_deleted_node(self):
        builder = GraphBuilder()
        old = builder.build(make_index(make_doc("a", body="[[b]]"), make_doc("b")))
        new = builder.build(make_index(make_doc("a", body="[[b]]")))

        changes = diff_builds(old, new)

        assert changes.deletes == ["b"]
        assert changes.upserts == []
        assert changes.edge_sources == ["a"]

    def test_changed_and_added_nodes(self):
        builder = GraphBuilder()
        old = builder.build(make_index(make_doc("a"), make_doc("b")))
        new = builder.build(make_index(make_doc("a", status="draft"), make_doc("b"), make_doc("c")))

        changes = diff_builds(old, new)

        assert [n.id for n in changes.upserts] == ["a", "c"]
        assert changes.deletes == []
        assert changes.edge_sources == ["c"]

    def test_from_empty(self, sample_index: VaultIndex):
        new = GraphBuilder().build(sample_index)
        changes = diff_builds(GraphBuilder().build(make_index()), new)

        assert [n.id for n in changes.upserts] == ["alice", "bob", "capital"]
        assert changes.edge_sources == ["alice", "bob", "capital"]


class TestTypePairClassifier:
    """Tests for relationship classification."""

    def test_exact_pair(self):
        classify = TypePairClassifier({("character", "location"): "located_in"})
        assert classify("character", "location") == "located_in"
        assert classify("location", "character") is None

    def test_wildcards(self):
        classify = TypePairClassifier.from_rules(["*>location=mentions_place", "character>*=mentions"])
        assert classify("event", "location") == "mentions_place"
        assert classify("character", "event") == "mentions"
        assert classify("event", "event") is None

    def test_exact_beats_wildcard(self):
        classify = TypePairClassifier.from_rules(["character>*=mentions", "character>character=knows"])
        assert classify("character", "character") == "knows"

    def test_parse_rule(self):
        assert parse_rule(" character > location = located_in ") == ("character", "location", "located_in")

    @pytest.mark.parametrize("rule", ["character>location", "character=knows", ">x=y", "a>b="])
    def test_parse_rule_invalid(self, rule: str):
        with pytest.raises(ValueError):
            parse_rule(rule)


class TestNode:
    """Tests for Node."""

    def test_to_dict(self):
        node = Node(id="a", type="t", status="s", title="A", attributes={"k": [1, 2]})
        data = node.to_dict()
        assert data["id"] == "a"
        assert data["attributes"] == {"k": [1, 2]}
