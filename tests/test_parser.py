"""Tests for the document parser."""

import pytest

from hivemind.errors import ParseError
from hivemind.indexer.parser import (
    DeclaredRelationship,
    Heading,
    display_name,
    extract_headings,
    extract_references,
    parse_document,
    split_header,
)


class TestSplitHeader:
    """Tests for header detection."""

    def test_basic(self):
        header, body = split_header("---\nid: a\n---\nBody text")
        assert header == "id: a\n"
        assert body == "Body text"

    def test_missing_header(self):
        with pytest.raises(ParseError) as exc:
            split_header("# Just a heading\n")
        assert exc.value.reason == "missing header"

    def test_header_must_open_the_file(self):
        with pytest.raises(ParseError):
            split_header("\n---\nid: a\n---\n")

    def test_bom_and_crlf(self):
        header, body = split_header("\ufeff---\r\nid: a\r\n---\r\nBody")
        assert "id: a" in header
        assert body == "Body"

    def test_empty_header(self):
        header, body = split_header("---\n---\nBody")
        assert header == ""
        assert body == "Body"


class TestParseDocument:
    """Tests for parse_document."""

    def test_full_document(self):
        text = (
            "---\n"
            "id: alice\n"
            "type: character\n"
            "status: canon\n"
            "title: Alice Liddell\n"
            "age: 12\n"
            "born: 2020-01-02\n"
            "tags: [hero, explorer]\n"
            "family:\n"
            "  sister: Lorina\n"
            "---\n"
            "\n"
            "# Alice\n"
            "\n"
            "Knows [[bob]].\n"
        )
        doc = parse_document(text, "characters/alice.md", created=1.0, modified=2.0)

        assert doc.id == "alice"
        assert doc.type == "character"
        assert doc.status == "canon"
        assert doc.title == "Alice Liddell"
        assert doc.path == "characters/alice.md"
        assert doc.attributes == {
            "age": 12,
            "born": "2020-01-02",
            "tags": ["hero", "explorer"],
            "family": {"sister": "Lorina"},
        }
        assert doc.references == ["bob"]
        assert doc.headings == [Heading(level=1, text="Alice")]
        assert doc.created == 1.0
        assert doc.modified == 2.0
        assert doc.size == len(text.encode("utf-8"))

    def test_reserved_keys_not_in_attributes(self):
        doc = parse_document("---\nid: a\ntype: t\nstatus: s\ntitle: T\n---\n", "a.md")
        assert doc.attributes == {}

    def test_title_defaults_to_file_name(self):
        doc = parse_document("---\nid: n1\ntype: t\nstatus: s\n---\n", "folder/My Note.md")
        assert doc.title == "My Note"

    def test_title_defaults_with_backslash_path(self):
        doc = parse_document("---\nid: n1\ntype: t\nstatus: s\n---\n", "folder\\Other Note.md")
        assert doc.title == "Other Note"

    def test_non_string_title_falls_back(self):
        doc = parse_document("---\nid: n1\ntype: t\nstatus: s\ntitle: 42\n---\n", "n1.md")
        assert doc.title == "n1"

    def test_identifier_used_verbatim(self):
        doc = parse_document("---\nid: Mixed Case ID\ntype: t\nstatus: s\n---\n", "x.md")
        assert doc.id == "Mixed Case ID"

    @pytest.mark.parametrize("missing", ["id", "type", "status"])
    def test_missing_required_field(self, missing: str):
        fields = {"id": "a", "type": "t", "status": "s"}
        del fields[missing]
        header = "\n".join(f"{k}: {v}" for k, v in fields.items())

        with pytest.raises(ParseError) as exc:
            parse_document(f"---\n{header}\n---\nbody", "a.md")

        assert exc.value.reason == f"missing required field: {missing}"
        assert exc.value.field == missing
        assert exc.value.file_path == "a.md"

    def test_empty_required_field(self):
        with pytest.raises(ParseError, match="missing required field: id"):
            parse_document('---\nid: ""\ntype: t\nstatus: s\n---\n', "a.md")

    def test_non_string_required_field(self):
        with pytest.raises(ParseError) as exc:
            parse_document("---\nid: 42\ntype: t\nstatus: s\n---\n", "a.md")
        assert exc.value.reason == "invalid required field: id (expected string)"

    def test_invalid_yaml(self):
        with pytest.raises(ParseError) as exc:
            parse_document("---\nid: [unclosed\n---\n", "a.md")
        assert exc.value.reason.startswith("invalid header")

    def test_header_not_a_mapping(self):
        with pytest.raises(ParseError, match="header is not a mapping"):
            parse_document("---\n- a\n- b\n---\n", "a.md")

    def test_empty_header_reports_first_missing_field(self):
        with pytest.raises(ParseError, match="missing required field: id"):
            parse_document("---\n---\nbody", "a.md")

    def test_declared_relationships(self):
        text = (
            "---\n"
            "id: alice\n"
            "type: character\n"
            "status: canon\n"
            "relationships:\n"
            '  - target: "[[bob]]"\n'
            "    type: knows\n"
            "    note: old friends\n"
            "  - target: capital\n"
            "  - just a string\n"
            "---\n"
        )
        doc = parse_document(text, "alice.md")

        assert doc.relationships == [
            DeclaredRelationship(target="bob", kind="knows", context="old friends"),
            DeclaredRelationship(target="capital", kind="related", context=None),
        ]
        assert "relationships" in doc.attributes

    def test_file_name(self):
        doc = parse_document("---\nid: a\ntype: t\nstatus: s\n---\n", "deep/path/a.md")
        assert doc.file_name == "a.md"


class TestExtractReferences:
    """Tests for reference extraction."""

    def test_plain_and_display(self):
        assert extract_references("See [[bob]] and [[Capital City|the capital]].") == [
            "bob",
            "Capital City",
        ]

    def test_trims_and_dedupes_in_order(self):
        body = "[[ b ]] [[a]] [[b|again]] [[a]] [[c]]"
        assert extract_references(body) == ["b", "a", "c"]

    def test_empty_targets_dropped(self):
        assert extract_references("[[]] [[  ]] [[|display]]") == []

    def test_no_references(self):
        assert extract_references("Plain text with [single] brackets.") == []


class TestExtractHeadings:
    """Tests for heading extraction."""

    def test_levels(self):
        body = "# One\n## Two\n###### Six\n"
        assert extract_headings(body) == [
            Heading(1, "One"),
            Heading(2, "Two"),
            Heading(6, "Six"),
        ]

    def test_requires_space_and_max_six(self):
        assert extract_headings("#NoSpace\n####### Seven\n") == []

    def test_text_trimmed(self):
        assert extract_headings("###   Padded   \n") == [Heading(3, "Padded")]

    def test_fenced_code_skipped(self):
        body = "# Real\n```\n# comment in code\n```\n~~~\n## also code\n~~~\n## After\n"
        assert extract_headings(body) == [Heading(1, "Real"), Heading(2, "After")]


class TestDisplayName:
    """Tests for display_name."""

    def test_forward_slashes(self):
        assert display_name("a/b/c.md") == "c.md"

    def test_back_slashes(self):
        assert display_name("a\\b\\c.md") == "c.md"

    def test_bare_name(self):
        assert display_name("c.md") == "c.md"
