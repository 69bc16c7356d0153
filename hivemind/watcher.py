"""Live updater - debounced incremental re-indexing driven by filesystem events."""

import asyncio
import logging
import os
from collections.abc import Awaitable, Callable
from enum import Enum
from pathlib import Path

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from hivemind.indexer.scanner import VaultScanner

logger = logging.getLogger(__name__)

ReindexCallback = Callable[[list[str]], Awaitable[object]]
StateCallback = Callable[["UpdaterState"], None]


class UpdaterState(Enum):
    IDLE = "idle"
    PENDING_CHANGE = "pending_change"
    DEBOUNCING = "debouncing"
    REINDEXING = "reindexing"


class LiveUpdater:
    """Debounce change notifications into incremental re-index runs.

    IDLE -> PENDING_CHANGE -> DEBOUNCING -> REINDEXING -> IDLE. Every event
    restarts the debounce timer. Events that arrive while a run is in flight
    start a new debounce; when it expires the in-flight run is cancelled, its
    paths are merged into the new batch and a fresh run starts from the
    current filesystem state.

    A failed run keeps its paths pending, so the next change re-reads them
    too; it does not schedule a retry on its own.

    Must be created and notified on the event loop thread; other threads use
    notify_threadsafe().
    """

    def __init__(
        self,
        reindex: ReindexCallback,
        debounce: float = 0.1,
        *,
        on_state_change: StateCallback | None = None,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self._reindex = reindex
        self.debounce = max(0.0, debounce)
        self.on_state_change = on_state_change
        self._loop = loop or asyncio.get_running_loop()
        self._state = UpdaterState.IDLE
        self._pending: set[str] = set()
        self._running_paths: set[str] = set()
        self._timer: asyncio.TimerHandle | None = None
        self._run: asyncio.Task | None = None
        self._idle = asyncio.Event()
        self._idle.set()
        self._closed = False

        self.completed_runs = 0
        self.failed_runs = 0
        self.superseded_runs = 0

    @property
    def state(self) -> UpdaterState:
        return self._state

    @property
    def pending_paths(self) -> set[str]:
        return set(self._pending)

    def _transition(self, state: UpdaterState) -> None:
        if state is self._state:
            return
        logger.debug(f"Live updater: {self._state.value} -> {state.value}")
        self._state = state
        if self.on_state_change:
            self.on_state_change(state)

    def notify(self, path: str) -> None:
        """Record a changed path and (re)start the debounce timer."""
        if self._closed:
            return

        self._pending.add(path)
        self._idle.clear()
        self._transition(UpdaterState.PENDING_CHANGE)

        if self._timer is not None:
            self._timer.cancel()
        self._timer = self._loop.call_later(self.debounce, self._on_debounce_expired)
        self._transition(UpdaterState.DEBOUNCING)

    def notify_threadsafe(self, path: str) -> None:
        """Forward a change from a non-loop thread (e.g. a watchdog observer)."""
        if self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(self.notify, path)

    def _on_debounce_expired(self) -> None:
        self._timer = None
        batch = set(self._pending)
        self._pending.clear()

        if self._run is not None and not self._run.done():
            logger.info(f"Superseding in-flight re-index of {len(self._running_paths)} paths")
            batch |= self._running_paths
            self._run.cancel()
            self.superseded_runs += 1

        self._running_paths = batch
        self._transition(UpdaterState.REINDEXING)
        self._run = self._loop.create_task(self._execute(sorted(batch)))

    async def _execute(self, paths: list[str]) -> None:
        task = asyncio.current_task()
        try:
            await self._reindex(paths)
            self.completed_runs += 1
            logger.info(f"Re-indexed {len(paths)} changed paths")
        except asyncio.CancelledError:
            logger.debug(f"Re-index of {len(paths)} paths cancelled")
            raise
        except Exception as e:
            self.failed_runs += 1
            # kept for the next run; no timer is started for them
            self._pending.update(paths)
            logger.error(
                f"Re-index of {len(paths)} paths failed, retrying with the next change: {e}"
            )
        finally:
            if self._run is task:
                self._run = None
                self._running_paths = set()
                if self._timer is None:
                    self._transition(UpdaterState.IDLE)
                    self._idle.set()
                else:
                    self._transition(UpdaterState.DEBOUNCING)

    async def wait_idle(self) -> None:
        """Wait until no debounce timer is armed and no run is in flight."""
        await self._idle.wait()

    async def close(self) -> None:
        """Drop pending changes and cancel any in-flight run."""
        self._closed = True
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._pending.clear()

        run = self._run
        if run is not None and not run.done():
            run.cancel()
            try:
                await run
            except asyncio.CancelledError:
                pass

        self._run = None
        self._running_paths = set()
        self._transition(UpdaterState.IDLE)
        self._idle.set()


class VaultEventHandler(FileSystemEventHandler):
    """Forward vault-relative paths of relevant filesystem events.

    Files must be markdown candidates; directories are forwarded when created,
    deleted or moved so their contents can be rescanned.
    """

    def __init__(
        self, vault_path: Path, scanner: VaultScanner, on_change: Callable[[str], None]
    ) -> None:
        super().__init__()
        self.vault_path = Path(vault_path)
        self.scanner = scanner
        self.on_change = on_change

    def relative(self, path: str | bytes) -> str | None:
        rel_path = os.path.relpath(os.fsdecode(path), self.vault_path)
        if rel_path == "." or rel_path.startswith(".."):
            return None
        return Path(rel_path).as_posix()

    def _should_process(self, rel_path: str, is_directory: bool) -> bool:
        if is_directory:
            return not any(self.scanner.is_excluded(part) for part in rel_path.split("/"))
        return self.scanner.is_candidate(rel_path)

    def _forward(self, path: str | bytes, is_directory: bool) -> None:
        rel_path = self.relative(path)
        if rel_path is not None and self._should_process(rel_path, is_directory):
            self.on_change(rel_path)

    def on_created(self, event: FileSystemEvent) -> None:
        self._forward(event.src_path, event.is_directory)

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._forward(event.src_path, False)

    def on_deleted(self, event: FileSystemEvent) -> None:
        self._forward(event.src_path, event.is_directory)

    def on_moved(self, event: FileSystemEvent) -> None:
        self._forward(event.src_path, event.is_directory)
        self._forward(event.dest_path, event.is_directory)


class VaultWatcher:
    """Runs a watchdog observer over the vault and feeds a LiveUpdater."""

    def __init__(self, vault_path: Path, scanner: VaultScanner, updater: LiveUpdater) -> None:
        self.vault_path = Path(vault_path)
        self.handler = VaultEventHandler(self.vault_path, scanner, updater.notify_threadsafe)
        self._observer: Observer | None = None

    @property
    def is_running(self) -> bool:
        return self._observer is not None

    def start(self) -> None:
        if self._observer is not None:
            return
        observer = Observer()
        observer.schedule(self.handler, str(self.vault_path), recursive=True)
        observer.daemon = True
        observer.start()
        self._observer = observer
        logger.info(f"Watching vault for changes: {self.vault_path}")

    def stop(self, timeout: float = 5.0) -> None:
        if self._observer is None:
            return
        self._observer.stop()
        self._observer.join(timeout)
        self._observer = None
        logger.info("Stopped watching vault")
