"""Vault scanner - builds the in-memory index of all notes."""

import asyncio
import logging
import os
import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Literal

from hivemind.errors import FileSystemError, IntegrityError, ParseError

from .parser import Document, parse_document

logger = logging.getLogger(__name__)

DEFAULT_EXCLUDES = [".obsidian", ".trash", ".git", "node_modules", "_template.md", ".hivemind"]
MARKDOWN_EXTENSIONS = {".md", ".markdown"}

DuplicatePolicy = Literal["skip", "fail"]
ProgressCallback = Callable[[int, int, str], None]


@dataclass(frozen=True)
class ParseFailure:
    """A candidate file that did not make it into the index."""

    file_path: str
    reason: str

    def to_dict(self) -> dict:
        return {"file_path": self.file_path, "reason": self.reason}


@dataclass
class VaultIndex:
    """Index snapshot of a vault.

    `parsed` and `parse_errors` are keyed by relative path and are the only
    inputs; the by-id/by-type/by-status views and the duplicate failures are
    derived from them, so the same files always produce the same snapshot no
    matter in which order (or in how many passes) they were read.
    """

    vault_path: str
    last_indexed: float = 0.0
    excluded_count: int = 0
    parsed: dict[str, Document] = field(default_factory=dict)
    parse_errors: dict[str, str] = field(default_factory=dict)
    notes: dict[str, Document] = field(default_factory=dict, init=False)
    notes_by_type: dict[str, set[str]] = field(default_factory=dict, init=False)
    notes_by_status: dict[str, set[str]] = field(default_factory=dict, init=False)
    duplicates: dict[str, str] = field(default_factory=dict, init=False)

    def __post_init__(self) -> None:
        self.reindex()

    def reindex(self) -> None:
        """Recompute the derived views from the parsed documents."""
        notes: dict[str, Document] = {}
        duplicates: dict[str, str] = {}

        for path in sorted(self.parsed):
            doc = self.parsed[path]
            winner = notes.get(doc.id)
            if winner is not None:
                duplicates[path] = (
                    f"duplicate identifier '{doc.id}' (already defined in {winner.path})"
                )
                continue
            notes[doc.id] = doc

        by_type: dict[str, set[str]] = {}
        by_status: dict[str, set[str]] = {}
        for doc in notes.values():
            by_type.setdefault(doc.type, set()).add(doc.id)
            by_status.setdefault(doc.status, set()).add(doc.id)

        self.notes = notes
        self.notes_by_type = by_type
        self.notes_by_status = by_status
        self.duplicates = duplicates

    def copy(self) -> "VaultIndex":
        return VaultIndex(
            vault_path=self.vault_path,
            last_indexed=self.last_indexed,
            excluded_count=self.excluded_count,
            parsed=dict(self.parsed),
            parse_errors=dict(self.parse_errors),
        )

    @property
    def total_notes(self) -> int:
        return len(self.notes)

    @property
    def candidate_count(self) -> int:
        return len(self.parsed) + len(self.parse_errors)

    @property
    def failures(self) -> list[ParseFailure]:
        """Parse errors and duplicate rejections, ordered by path."""
        reasons = {**self.parse_errors, **self.duplicates}
        return [ParseFailure(file_path=p, reason=reasons[p]) for p in sorted(reasons)]

    @property
    def documents(self) -> list[Document]:
        """Indexed documents ordered by identifier."""
        return [self.notes[note_id] for note_id in sorted(self.notes)]

    def get(self, note_id: str) -> Document | None:
        return self.notes.get(note_id)

    def of_type(self, note_type: str) -> list[Document]:
        return [self.notes[i] for i in sorted(self.notes_by_type.get(note_type, ()))]

    def of_status(self, status: str) -> list[Document]:
        return [self.notes[i] for i in sorted(self.notes_by_status.get(status, ()))]

    def stats(self) -> dict:
        return {
            "total_notes": self.total_notes,
            "candidates": self.candidate_count,
            "failures": len(self.parse_errors) + len(self.duplicates),
            "excluded": self.excluded_count,
            "by_type": {t: len(ids) for t, ids in sorted(self.notes_by_type.items())},
            "by_status": {s: len(ids) for s, ids in sorted(self.notes_by_status.items())},
            "last_indexed": self.last_indexed,
        }


def compile_exclusions(patterns: Iterable[str]) -> Callable[[str], bool]:
    """Build a name matcher: wildcard pattern, exact name or prefix."""
    wildcards: list[re.Pattern] = []
    plain: list[str] = []
    for pattern in patterns:
        if not pattern:
            continue
        if "*" in pattern:
            regex = ".*".join(re.escape(part) for part in pattern.split("*"))
            wildcards.append(re.compile(f"^{regex}$"))
        else:
            plain.append(pattern)

    def is_excluded(name: str) -> bool:
        if any(name == p or name.startswith(p) for p in plain):
            return True
        return any(w.match(name) for w in wildcards)

    return is_excluded


def is_markdown(name: str) -> bool:
    return os.path.splitext(name)[1].lower() in MARKDOWN_EXTENSIONS


class VaultScanner:
    """Scans a vault and builds an index."""

    def __init__(
        self,
        vault_path: Path,
        exclude_patterns: list[str] | None = None,
        *,
        max_concurrent_reads: int = 16,
        duplicate_ids: DuplicatePolicy = "skip",
        on_progress: ProgressCallback | None = None,
    ) -> None:
        self.vault_path = Path(vault_path)
        self.exclude_patterns = [*DEFAULT_EXCLUDES, *(exclude_patterns or [])]
        self.is_excluded = compile_exclusions(self.exclude_patterns)
        self.max_concurrent_reads = max(1, max_concurrent_reads)
        self.duplicate_ids = duplicate_ids
        self.on_progress = on_progress

    def relative(self, path: Path | str) -> str:
        """Vault-relative path with forward slashes."""
        return Path(path).relative_to(self.vault_path).as_posix()

    def is_candidate(self, rel_path: str) -> bool:
        """Check whether a vault-relative path would be picked up by a scan."""
        parts = [p for p in re.split(r"[/\\]", rel_path) if p]
        if not parts or not is_markdown(parts[-1]):
            return False
        return not any(self.is_excluded(part) for part in parts)

    def collect_files(self) -> tuple[list[str], int]:
        """Walk the vault, pruning excluded entries before descending.

        Returns (sorted relative candidate paths, number of excluded entries).
        """
        try:
            with os.scandir(self.vault_path) as it:
                root_entries = list(it)
        except OSError as e:
            raise FileSystemError(str(self.vault_path), e.strerror or str(e)) from e

        return self._walk(root_entries)

    def _walk(self, entries: list[os.DirEntry]) -> tuple[list[str], int]:
        files: list[str] = []
        excluded = 0
        stack = [entries]

        while stack:
            for entry in stack.pop():
                if self.is_excluded(entry.name):
                    excluded += 1
                    continue

                try:
                    if entry.is_dir(follow_symlinks=False):
                        try:
                            with os.scandir(entry.path) as it:
                                stack.append(list(it))
                        except OSError as e:
                            logger.warning(f"Cannot read directory {entry.path}: {e}")
                    elif entry.is_file() and is_markdown(entry.name):
                        files.append(self.relative(entry.path))
                except OSError as e:
                    logger.warning(f"Cannot stat {entry.path}: {e}")

        return sorted(files), excluded

    async def scan(self) -> VaultIndex:
        """Perform a full scan of the vault."""
        logger.info(f"Scanning vault: {self.vault_path}")
        files, excluded = await asyncio.to_thread(self.collect_files)
        logger.info(f"Found {len(files)} markdown files ({excluded} excluded entries)")

        index = VaultIndex(vault_path=str(self.vault_path), excluded_count=excluded)
        await self._read_into(index, files)

        logger.info(
            f"Indexed {index.total_notes} notes, {len(index.failures)} failed, "
            f"{len(index.notes_by_type)} types"
        )
        return index

    async def scan_paths(self, index: VaultIndex, paths: Iterable[str]) -> VaultIndex:
        """Re-read only the given relative paths and return an updated copy.

        A path may name a file or a directory; entries that no longer exist
        (or no longer qualify) are dropped from the snapshot. The input index
        is left untouched. The excluded-entry count is taken from a fresh walk,
        since excluded entries never produce change events.
        """
        _, excluded = await asyncio.to_thread(self.collect_files)

        changed = sorted({p.strip("/") for p in paths if p.strip("/")})
        updated = index.copy()
        updated.excluded_count = excluded
        to_read = await asyncio.to_thread(self._resolve_changes, updated, changed)

        await self._read_into(updated, to_read)
        logger.debug(f"Rescanned {len(to_read)} files for {len(changed)} changed paths")
        return updated

    def _resolve_changes(self, index: VaultIndex, changed: list[str]) -> list[str]:
        """Drop stale entries for the changed paths and list what to re-read."""
        to_read: set[str] = set()

        for rel_path in changed:
            prefix = rel_path + "/"
            for known in [*index.parsed, *index.parse_errors]:
                if known == rel_path or known.startswith(prefix):
                    index.parsed.pop(known, None)
                    index.parse_errors.pop(known, None)

            parts = rel_path.split("/")
            if any(self.is_excluded(part) for part in parts):
                continue

            full_path = self.vault_path / rel_path
            if full_path.is_dir():
                try:
                    with os.scandir(full_path) as it:
                        files, _ = self._walk(list(it))
                except OSError as e:
                    logger.warning(f"Cannot read directory {full_path}: {e}")
                    continue
                to_read.update(files)
            elif full_path.is_file() and is_markdown(parts[-1]):
                to_read.add(rel_path)

        return sorted(to_read)

    async def _read_into(self, index: VaultIndex, files: list[str]) -> None:
        semaphore = asyncio.Semaphore(self.max_concurrent_reads)
        total = len(files)
        processed = 0

        async def read_one(rel_path: str) -> None:
            nonlocal processed
            async with semaphore:
                try:
                    doc = await asyncio.to_thread(self._scan_note, rel_path)
                    index.parsed[rel_path] = doc
                except ParseError as e:
                    logger.debug(f"Skipping {rel_path}: {e.reason}")
                    index.parse_errors[rel_path] = e.reason
                except (OSError, UnicodeDecodeError) as e:
                    logger.warning(f"Failed to read {rel_path}: {e}")
                    index.parse_errors[rel_path] = f"unreadable file: {e}"

            processed += 1
            if self.on_progress:
                self.on_progress(processed, total, rel_path)

        await asyncio.gather(*(read_one(f) for f in files))

        index.reindex()
        index.last_indexed = datetime.now().timestamp()

        if index.duplicates:
            if self.duplicate_ids == "fail":
                note_id = index.parsed[next(iter(sorted(index.duplicates)))].id
                paths = sorted(p for p, d in index.parsed.items() if d.id == note_id)
                raise IntegrityError(note_id, paths)
            for path, reason in sorted(index.duplicates.items()):
                logger.warning(f"Skipping {path}: {reason}")

    def _scan_note(self, rel_path: str) -> Document:
        """Read and parse a single note."""
        file_path = self.vault_path / rel_path
        raw = file_path.read_bytes()
        stat = file_path.stat()
        content = raw.decode("utf-8")

        return parse_document(
            content,
            rel_path,
            created=getattr(stat, "st_birthtime", stat.st_ctime),
            modified=stat.st_mtime,
            size=len(raw),
        )
