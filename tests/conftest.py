"""Shared test fixtures."""

from pathlib import Path

import pytest

from hivemind.graph.builder import GraphBuilder
from hivemind.indexer.parser import parse_document
from hivemind.indexer.scanner import VaultIndex
from hivemind.storage.database import GraphStore

ALICE = """---
id: alice
type: character
status: canon
title: Alice
tags: [hero, explorer]
---

# Alice

Alice knows [[bob]] and lives in [[Capital City|the capital]].
"""

BOB = """---
id: bob
type: character
status: canon
title: Bob
---

# Bob

Bob is a blacksmith.
"""

CAPITAL = """---
id: capital
type: location
status: draft
title: Capital City
population: 12000
---

## Overview

The capital of the realm. See [[Nonexistent]].
"""

UNFINISHED = """---
id: unfinished
type: character
---

Nobody knows yet.
"""


def note_text(
    note_id: str,
    note_type: str = "character",
    status: str | None = "canon",
    body: str = "",
    **fields,
) -> str:
    """Build note text with a header."""
    lines = ["---", f"id: {note_id}", f"type: {note_type}"]
    if status is not None:
        lines.append(f"status: {status}")
    for key, value in fields.items():
        lines.append(f"{key}: {value}")
    lines.append("---")
    return "\n".join(lines) + "\n\n" + body


@pytest.fixture
def tmp_vault(tmp_path: Path) -> Path:
    """Create a temporary vault with three valid notes and one broken one."""
    vault = tmp_path / "vault"
    vault.mkdir()

    characters = vault / "characters"
    characters.mkdir()
    (characters / "alice.md").write_text(ALICE, encoding="utf-8")
    (characters / "bob.md").write_text(BOB, encoding="utf-8")

    places = vault / "places"
    places.mkdir()
    (places / "capital.md").write_text(CAPITAL, encoding="utf-8")

    drafts = vault / "drafts"
    drafts.mkdir()
    (drafts / "unfinished.md").write_text(UNFINISHED, encoding="utf-8")

    # Excluded directory and a non-markdown file
    obsidian = vault / ".obsidian"
    obsidian.mkdir()
    (obsidian / "workspace.md").write_text(note_text("hidden"), encoding="utf-8")
    (vault / "notes.txt").write_text("not a note", encoding="utf-8")

    return vault


@pytest.fixture
def sample_index() -> VaultIndex:
    """Index snapshot of the sample vault, built without touching disk."""
    parsed = {
        path: parse_document(text, path)
        for path, text in [
            ("characters/alice.md", ALICE),
            ("characters/bob.md", BOB),
            ("places/capital.md", CAPITAL),
        ]
    }
    return VaultIndex(
        vault_path="vault",
        parsed=parsed,
        parse_errors={"drafts/unfinished.md": "missing required field: status"},
    )


@pytest.fixture
def store(tmp_path: Path):
    """Empty graph store in a temporary directory."""
    graph_store = GraphStore(tmp_path / "db" / "graph.db")
    yield graph_store
    graph_store.close()


@pytest.fixture
def populated_store(store: GraphStore, sample_index: VaultIndex) -> GraphStore:
    """Graph store holding the sample vault."""
    store.replace_all(GraphBuilder().build(sample_index), sample_index.failures)
    return store


@pytest.fixture
def write_note():
    """Return a helper that writes a note (creating parent folders)."""

    def _write(path: Path, note_id: str, note_type: str = "character", status: str | None = "canon",
               body: str = "", **fields) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(note_text(note_id, note_type, status, body, **fields), encoding="utf-8")
        return path

    return _write
