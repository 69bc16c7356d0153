"""SQLite graph store with a full-text index over nodes."""

import json
import logging
import re
import sqlite3
import threading
import time
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from pathlib import Path

from hivemind.errors import StorageError
from hivemind.graph.builder import BrokenReference, GraphBuild, GraphChanges, Node, Relationship
from hivemind.indexer.scanner import ParseFailure

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

# Column weights for bm25(): id (unindexed), title, body, attributes.
_BM25_WEIGHTS = (0.0, 5.0, 1.0, 2.0)

_STOPWORDS = frozenset({
    "a", "an", "and", "are", "as", "at", "be", "by", "for", "from", "in", "is",
    "it", "of", "on", "or", "that", "the", "this", "to", "was", "with",
})

_SCHEMA = """
CREATE TABLE IF NOT EXISTS meta (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS nodes (
    id TEXT PRIMARY KEY,
    type TEXT NOT NULL,
    status TEXT NOT NULL,
    title TEXT NOT NULL,
    attributes TEXT NOT NULL DEFAULT '{}',
    body TEXT NOT NULL DEFAULT '',
    file_path TEXT NOT NULL,
    created_at REAL NOT NULL,
    updated_at REAL NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_nodes_type ON nodes(type, status);

CREATE TABLE IF NOT EXISTS edges (
    source_id TEXT NOT NULL REFERENCES nodes(id) ON DELETE CASCADE,
    target_id TEXT NOT NULL REFERENCES nodes(id) ON DELETE CASCADE,
    kind TEXT NOT NULL DEFAULT 'reference',
    context TEXT,
    PRIMARY KEY (source_id, target_id, kind)
);
CREATE INDEX IF NOT EXISTS idx_edges_target ON edges(target_id);

CREATE TABLE IF NOT EXISTS broken_references (
    source_id TEXT NOT NULL REFERENCES nodes(id) ON DELETE CASCADE,
    target TEXT NOT NULL,
    PRIMARY KEY (source_id, target)
);

CREATE TABLE IF NOT EXISTS scan_failures (
    file_path TEXT PRIMARY KEY,
    reason TEXT NOT NULL
);

CREATE VIRTUAL TABLE IF NOT EXISTS nodes_fts USING fts5(
    id UNINDEXED,
    title,
    body,
    attributes
);
"""


def build_fts_query(query: str) -> str | None:
    """Split a query into OR-joined prefix terms. Returns None if nothing is left."""
    terms = [w for w in re.split(r"[\s\W]+", query.lower()) if w and w not in _STOPWORDS]
    if not terms:
        return None
    return " OR ".join(f'"{t}"*' for t in dict.fromkeys(terms))


def _attributes_json(node: Node) -> str:
    return json.dumps(node.attributes, ensure_ascii=False, sort_keys=True)


def _row_to_node(row: sqlite3.Row) -> Node:
    return Node(
        id=row["id"],
        type=row["type"],
        status=row["status"],
        title=row["title"],
        attributes=json.loads(row["attributes"]),
        body=row["body"],
        file_path=row["file_path"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_relationship(row: sqlite3.Row) -> Relationship:
    return Relationship(
        source_id=row["source_id"],
        target_id=row["target_id"],
        kind=row["kind"],
        context=row["context"],
    )


class GraphSnapshot:
    """Read-only view over one read transaction.

    Every query made through the same snapshot sees the same committed state,
    even while a writer commits in between.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def get_node(self, node_id: str) -> Node | None:
        row = self._conn.execute("SELECT * FROM nodes WHERE id = ?", (node_id,)).fetchone()
        return _row_to_node(row) if row else None

    def get_nodes(self, node_ids: Iterable[str]) -> dict[str, Node]:
        nodes: dict[str, Node] = {}
        for node_id in node_ids:
            node = self.get_node(node_id)
            if node is not None:
                nodes[node_id] = node
        return nodes

    def search(self, query: str, limit: int = 10) -> list[tuple[str, float]]:
        """Full-text search ranked by bm25. Higher score = more relevant."""
        fts_query = build_fts_query(query)
        if fts_query is None or limit <= 0:
            return []

        rows = self._conn.execute(
            f"""SELECT id, bm25(nodes_fts, {", ".join(str(w) for w in _BM25_WEIGHTS)}) AS rank
                FROM nodes_fts
                WHERE nodes_fts MATCH ?
                ORDER BY rank, id
                LIMIT ?""",
            (fts_query, limit),
        ).fetchall()
        return [(row["id"], -row["rank"]) for row in rows]

    def get_relationships(self, node_id: str) -> list[Relationship]:
        """Edges where the node is either source or target."""
        rows = self._conn.execute(
            """SELECT source_id, target_id, kind, context FROM edges
               WHERE source_id = ? OR target_id = ?
               ORDER BY source_id, target_id, kind""",
            (node_id, node_id),
        ).fetchall()
        return [_row_to_relationship(row) for row in rows]

    def all_edges(self) -> list[Relationship]:
        rows = self._conn.execute(
            "SELECT source_id, target_id, kind, context FROM edges "
            "ORDER BY source_id, target_id, kind"
        ).fetchall()
        return [_row_to_relationship(row) for row in rows]

    def list_by_type(
        self,
        node_type: str,
        statuses: Iterable[str] | None = None,
        limit: int | None = None,
    ) -> list[Node]:
        sql = "SELECT * FROM nodes WHERE type = ?"
        params: list = [node_type]
        if statuses is not None:
            statuses = list(statuses)
            if not statuses:
                return []
            sql += f" AND status IN ({', '.join('?' for _ in statuses)})"
            params.extend(statuses)
        sql += " ORDER BY id"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        return [_row_to_node(row) for row in self._conn.execute(sql, params).fetchall()]

    def get_broken_references(self, source_id: str | None = None) -> list[BrokenReference]:
        if source_id is None:
            rows = self._conn.execute(
                "SELECT source_id, target FROM broken_references ORDER BY source_id, target"
            ).fetchall()
        else:
            rows = self._conn.execute(
                "SELECT source_id, target FROM broken_references "
                "WHERE source_id = ? ORDER BY target",
                (source_id,),
            ).fetchall()
        return [BrokenReference(row["source_id"], row["target"]) for row in rows]

    def get_failures(self) -> list[ParseFailure]:
        rows = self._conn.execute(
            "SELECT file_path, reason FROM scan_failures ORDER BY file_path"
        ).fetchall()
        return [ParseFailure(row["file_path"], row["reason"]) for row in rows]

    def node_ids(self) -> list[str]:
        return [row["id"] for row in self._conn.execute("SELECT id FROM nodes ORDER BY id")]

    def get_meta(self, key: str) -> str | None:
        row = self._conn.execute("SELECT value FROM meta WHERE key = ?", (key,)).fetchone()
        return row["value"] if row else None

    def stats(self) -> dict:
        def count(table: str) -> int:
            return self._conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]

        by_type = {
            row["type"]: row["n"]
            for row in self._conn.execute(
                "SELECT type, COUNT(*) AS n FROM nodes GROUP BY type ORDER BY type"
            )
        }
        last_indexed = self.get_meta("last_indexed")
        return {
            "nodes": count("nodes"),
            "relationships": count("edges"),
            "broken_references": count("broken_references"),
            "failures": count("scan_failures"),
            "by_type": by_type,
            "last_indexed": float(last_indexed) if last_indexed else None,
        }


class GraphStore:
    """Persistent node/edge store backed by SQLite (WAL) and FTS5.

    One writer connection guarded by a lock; every multi-record write runs in
    a single transaction and any sqlite3 error is rolled back and raised as
    StorageError. Reads open their own connection per snapshot.
    """

    def __init__(self, db_path: Path | str) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        try:
            self._conn = self._connect()
            self._conn.executescript(_SCHEMA)
            self._conn.execute(
                "INSERT OR REPLACE INTO meta(key, value) VALUES(?, ?)",
                ("schema_version", str(SCHEMA_VERSION)),
            )
        except sqlite3.Error as e:
            raise StorageError(f"Failed to open graph store {self.db_path}: {e}") from e
        logger.debug(f"Opened graph store at {self.db_path}")

    def _connect(self, readonly: bool = False) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path), isolation_level=None, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA busy_timeout=5000")
        if readonly:
            conn.execute("PRAGMA query_only=ON")
        else:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA synchronous=NORMAL")
            conn.execute("PRAGMA foreign_keys=ON")
        return conn

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def __enter__(self) -> "GraphStore":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # -- transactions -------------------------------------------------------

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            conn = self._conn
            try:
                conn.execute("BEGIN IMMEDIATE")
                yield conn
                conn.execute("COMMIT")
            except sqlite3.Error as e:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise StorageError(f"Transaction rolled back: {e}") from e
            except BaseException:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise

    @contextmanager
    def snapshot(self) -> Iterator[GraphSnapshot]:
        """Open a consistent read view of the committed state."""
        try:
            conn = self._connect(readonly=True)
        except sqlite3.Error as e:
            raise StorageError(f"Failed to open read connection: {e}") from e
        try:
            conn.execute("BEGIN")
            yield GraphSnapshot(conn)
        except sqlite3.Error as e:
            raise StorageError(f"Read failed: {e}") from e
        finally:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            conn.close()

    # -- low-level writes (inside a transaction) ----------------------------

    @staticmethod
    def _write_node(conn: sqlite3.Connection, node: Node) -> None:
        attributes = _attributes_json(node)
        conn.execute(
            """INSERT INTO nodes
                   (id, type, status, title, attributes, body, file_path, created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT(id) DO UPDATE SET
                   type = excluded.type,
                   status = excluded.status,
                   title = excluded.title,
                   attributes = excluded.attributes,
                   body = excluded.body,
                   file_path = excluded.file_path,
                   created_at = excluded.created_at,
                   updated_at = excluded.updated_at""",
            (
                node.id,
                node.type,
                node.status,
                node.title,
                attributes,
                node.body,
                node.file_path,
                node.created_at,
                node.updated_at,
            ),
        )
        rowid = conn.execute("SELECT rowid FROM nodes WHERE id = ?", (node.id,)).fetchone()[0]
        conn.execute("DELETE FROM nodes_fts WHERE rowid = ?", (rowid,))
        conn.execute(
            "INSERT INTO nodes_fts(rowid, id, title, body, attributes) VALUES (?, ?, ?, ?, ?)",
            (rowid, node.id, node.title, node.body, attributes),
        )

    @staticmethod
    def _remove_node(conn: sqlite3.Connection, node_id: str) -> bool:
        row = conn.execute("SELECT rowid FROM nodes WHERE id = ?", (node_id,)).fetchone()
        if row is None:
            return False
        conn.execute("DELETE FROM nodes_fts WHERE rowid = ?", (row[0],))
        conn.execute("DELETE FROM nodes WHERE id = ?", (node_id,))
        return True

    @staticmethod
    def _write_edges(
        conn: sqlite3.Connection, source_id: str, edges: Iterable[Relationship]
    ) -> None:
        conn.execute("DELETE FROM edges WHERE source_id = ?", (source_id,))
        rows = []
        for edge in edges:
            if edge.source_id != source_id:
                raise ValueError(f"Edge {edge.source_id}->{edge.target_id} is not from {source_id}")
            rows.append((edge.source_id, edge.target_id, edge.kind, edge.context))
        conn.executemany(
            "INSERT INTO edges(source_id, target_id, kind, context) VALUES (?, ?, ?, ?)", rows
        )

    @staticmethod
    def _write_broken(
        conn: sqlite3.Connection, source_id: str, broken: Iterable[BrokenReference]
    ) -> None:
        conn.execute("DELETE FROM broken_references WHERE source_id = ?", (source_id,))
        conn.executemany(
            "INSERT OR IGNORE INTO broken_references(source_id, target) VALUES (?, ?)",
            [(ref.source_id, ref.target) for ref in broken],
        )

    @staticmethod
    def _write_failures(conn: sqlite3.Connection, failures: Iterable[ParseFailure]) -> None:
        conn.execute("DELETE FROM scan_failures")
        conn.executemany(
            "INSERT OR REPLACE INTO scan_failures(file_path, reason) VALUES (?, ?)",
            [(f.file_path, f.reason) for f in failures],
        )

    @staticmethod
    def _touch(conn: sqlite3.Connection) -> None:
        conn.execute(
            "INSERT OR REPLACE INTO meta(key, value) VALUES('last_indexed', ?)",
            (str(time.time()),),
        )

    # -- public writes ------------------------------------------------------

    def put_node(self, node: Node) -> None:
        """Create or replace a node as a unit. Its edges are left alone."""
        with self._transaction() as conn:
            self._write_node(conn, node)

    def delete_node(self, node_id: str) -> bool:
        """Delete a node; edges in either direction go with it."""
        with self._transaction() as conn:
            return self._remove_node(conn, node_id)

    def put_edges(self, source_id: str, edges: Iterable[Relationship]) -> None:
        """Replace the full outbound edge set of a source node."""
        edges = list(edges)
        with self._transaction() as conn:
            self._write_edges(conn, source_id, edges)

    def replace_all(self, build: GraphBuild, failures: Iterable[ParseFailure] = ()) -> None:
        """Replace the whole graph with a build in one transaction."""
        failures = list(failures)
        with self._transaction() as conn:
            for table in ("edges", "broken_references", "nodes", "nodes_fts", "scan_failures"):
                conn.execute(f"DELETE FROM {table}")
            for node in build.nodes:
                self._write_node(conn, node)
            for source_id in sorted(build.edges):
                self._write_edges(conn, source_id, build.edges[source_id])
            conn.executemany(
                "INSERT OR IGNORE INTO broken_references(source_id, target) VALUES (?, ?)",
                [(ref.source_id, ref.target) for ref in build.broken],
            )
            self._write_failures(conn, failures)
            self._touch(conn)

        logger.info(
            f"Committed graph: {len(build.nodes)} nodes, "
            f"{build.stats()['relationships']} relationships, {len(failures)} failures"
        )

    def apply_changes(
        self,
        changes: GraphChanges,
        build: GraphBuild,
        failures: Iterable[ParseFailure] = (),
    ) -> None:
        """Apply an incremental diff in one transaction.

        `build` is the new full build; it supplies the edges and broken
        references for every source listed in `changes.edge_sources`.
        """
        failures = list(failures)
        with self._transaction() as conn:
            for node_id in changes.deletes:
                self._remove_node(conn, node_id)
            for node in changes.upserts:
                self._write_node(conn, node)
            for source_id in changes.edge_sources:
                self._write_edges(conn, source_id, build.edges.get(source_id, []))
                self._write_broken(conn, source_id, build.broken_for(source_id))
            self._write_failures(conn, failures)
            self._touch(conn)

        logger.info(
            f"Applied changes: {len(changes.upserts)} upserted, {len(changes.deletes)} deleted, "
            f"{len(changes.edge_sources)} edge sets replaced"
        )

    # -- reads (each in its own snapshot) -----------------------------------

    def get_node(self, node_id: str) -> Node | None:
        with self.snapshot() as snap:
            return snap.get_node(node_id)

    def search(self, query: str, limit: int = 10) -> list[tuple[str, float]]:
        with self.snapshot() as snap:
            return snap.search(query, limit)

    def get_relationships(self, node_id: str) -> list[Relationship]:
        with self.snapshot() as snap:
            return snap.get_relationships(node_id)

    def list_by_type(
        self,
        node_type: str,
        statuses: Iterable[str] | None = None,
        limit: int | None = None,
    ) -> list[Node]:
        with self.snapshot() as snap:
            return snap.list_by_type(node_type, statuses, limit)

    def get_broken_references(self, source_id: str | None = None) -> list[BrokenReference]:
        with self.snapshot() as snap:
            return snap.get_broken_references(source_id)

    def get_failures(self) -> list[ParseFailure]:
        with self.snapshot() as snap:
            return snap.get_failures()

    def node_ids(self) -> list[str]:
        with self.snapshot() as snap:
            return snap.node_ids()

    def stats(self) -> dict:
        with self.snapshot() as snap:
            return snap.stats()
