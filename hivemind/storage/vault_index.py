"""Indexing pipeline - keeps the graph store in step with the vault."""

import asyncio
import logging
from collections.abc import Iterable
from pathlib import Path

from hivemind.graph.builder import GraphBuild, GraphBuilder, GraphChanges, diff_builds
from hivemind.indexer.scanner import VaultIndex, VaultScanner
from hivemind.indexer.summary import generate_scan_summary

from .database import GraphStore

logger = logging.getLogger(__name__)


class VaultIndexStorage:
    """Manages the live vault index and its persisted graph.

    Only one pipeline (full or incremental) runs at a time. Each run scans,
    rebuilds the graph in memory, then commits: the store transaction and the
    swap of the in-memory index happen together or not at all, even when the
    run is cancelled mid-commit.
    """

    def __init__(
        self,
        vault_path: Path,
        store: GraphStore,
        *,
        scanner: VaultScanner | None = None,
        builder: GraphBuilder | None = None,
    ) -> None:
        self.vault_path = Path(vault_path)
        self.store = store
        self.scanner = scanner or VaultScanner(self.vault_path)
        self.builder = builder or GraphBuilder()
        self._index: VaultIndex | None = None
        self._build: GraphBuild | None = None
        self._lock = asyncio.Lock()

    @property
    def index(self) -> VaultIndex | None:
        return self._index

    @property
    def build(self) -> GraphBuild | None:
        return self._build

    async def ensure_indexed(self) -> VaultIndex:
        """Get the current index, building it on first use."""
        if self._index is None:
            return await self.rebuild()
        return self._index

    async def rebuild(self) -> VaultIndex:
        """Force a full scan and replace everything in the store."""
        async with self._lock:
            return await self._rebuild()

    async def apply_changes(self, paths: Iterable[str]) -> VaultIndex:
        """Re-index only the given vault-relative paths."""
        paths = list(paths)
        async with self._lock:
            if self._index is None or self._build is None:
                return await self._rebuild()

            index = await self.scanner.scan_paths(self._index, paths)
            build = self.builder.build(index)
            changes = diff_builds(self._build, build)

            if changes.is_empty and index.failures == self._index.failures:
                logger.debug(f"No graph changes for {len(paths)} changed paths")
                self._index = index
                return index

            await self._commit(index, build, changes)
            return index

    async def _rebuild(self) -> VaultIndex:
        index = await self.scanner.scan()
        build = self.builder.build(index)
        await self._commit(index, build, None)
        return index

    async def _commit(
        self, index: VaultIndex, build: GraphBuild, changes: GraphChanges | None
    ) -> None:
        """Run the commit to completion even if the caller is cancelled."""
        commit = asyncio.ensure_future(self._write(index, build, changes))
        cancelled = False
        while not commit.done():
            try:
                await asyncio.shield(commit)
            except asyncio.CancelledError:
                if commit.cancelled():
                    raise
                cancelled = True

        commit.result()
        if cancelled:
            raise asyncio.CancelledError()

    async def _write(
        self, index: VaultIndex, build: GraphBuild, changes: GraphChanges | None
    ) -> None:
        failures = index.failures
        if changes is None:
            await asyncio.to_thread(self.store.replace_all, build, failures)
        else:
            await asyncio.to_thread(self.store.apply_changes, changes, build, failures)

        self._index = index
        self._build = build

    def summary(self) -> str:
        if self._index is None:
            return "Vault not indexed yet"
        return generate_scan_summary(self._index)

    def stats(self) -> dict:
        stats = {"store": self.store.stats()}
        if self._index is not None:
            stats["index"] = self._index.stats()
        return stats
