"""Main entry point for Hivemind."""

import asyncio
import logging
import sys

from hivemind.config import Settings, get_settings
from hivemind.errors import HivemindError
from hivemind.graph.builder import GraphBuilder
from hivemind.graph.relationships import TypePairClassifier
from hivemind.indexer.scanner import VaultScanner
from hivemind.indexer.summary import generate_scan_summary
from hivemind.storage.database import GraphStore
from hivemind.storage.vault_index import VaultIndexStorage
from hivemind.watcher import LiveUpdater, VaultWatcher


class Colors:
    RESET = "\033[0m"
    BOLD = "\033[1m"
    DIM = "\033[2m"
    GREEN = "\033[32m"
    YELLOW = "\033[33m"
    RED = "\033[31m"


def setup_logging() -> None:
    """Configure logging."""
    logging.basicConfig(
        format="%(message)s",
        level=logging.INFO,
    )
    # Reduce noise from libraries
    logging.getLogger("watchdog").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)


def create_storage(settings: Settings) -> VaultIndexStorage:
    """Wire scanner, builder and store from settings."""
    scanner = VaultScanner(
        settings.vault_path,
        settings.exclude_list,
        max_concurrent_reads=settings.max_concurrent_reads,
        duplicate_ids=settings.duplicate_ids,
    )
    classifier = TypePairClassifier.from_rules(settings.relationship_rule_list)
    builder = GraphBuilder(classifier if len(classifier) else None)
    store = GraphStore(settings.database_path)
    return VaultIndexStorage(settings.vault_path, store, scanner=scanner, builder=builder)


async def run(settings: Settings) -> None:
    """Index the vault, then keep it up to date until cancelled."""
    logger = logging.getLogger(__name__)
    storage = create_storage(settings)

    try:
        index = await storage.rebuild()
        logger.info(generate_scan_summary(index))

        if not settings.watch_for_changes:
            return

        updater = LiveUpdater(storage.apply_changes, settings.debounce_seconds)
        watcher = VaultWatcher(settings.vault_path, storage.scanner, updater)
        watcher.start()
        logger.info(f"{Colors.GREEN}{Colors.BOLD}Hivemind started ✓{Colors.RESET}")
        try:
            await asyncio.Event().wait()
        finally:
            watcher.stop()
            await updater.close()
    finally:
        storage.store.close()


def main() -> None:
    """Run the Hivemind indexer."""
    setup_logging()
    logger = logging.getLogger(__name__)

    try:
        settings = get_settings()
        logger.info(f"{Colors.DIM}Vault: {settings.vault_path}{Colors.RESET}")
        logger.info(f"{Colors.DIM}Store: {settings.database_path}{Colors.RESET}")
    except Exception as e:
        logger.error(f"{Colors.RED}Failed to load settings: {e}{Colors.RESET}")
        logger.error(
            f"{Colors.RED}Make sure you have a .env file with VAULT_PATH set.{Colors.RESET}"
        )
        sys.exit(1)

    try:
        asyncio.run(run(settings))
    except KeyboardInterrupt:
        logger.info(f"{Colors.DIM}Stopped{Colors.RESET}")
    except HivemindError as e:
        logger.error(f"{Colors.RED}{e}{Colors.RESET}")
        sys.exit(1)


if __name__ == "__main__":
    main()
