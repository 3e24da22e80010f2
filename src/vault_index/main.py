"""Main entry point for the vault-index command line tool."""

import argparse
import json
import logging
import sys
import time
from pathlib import Path

from vault_index.config import Config
from vault_index.indexer import (
    GitHistory,
    Indexer,
    IndexingResult,
    LocalFileSystem,
    SQLiteChunkStore,
    VersionTracker,
    create_chunker,
    create_embedder,
)
from vault_index.sync import SyncManager

logger = logging.getLogger(__name__)


def build_indexer(config: Config) -> Indexer:
    """Wire an indexer and its collaborators from the configuration.

    Args:
        config: Configuration instance with all settings.
    """
    indexing = config.indexing
    fs = LocalFileSystem(config.vault_root, indexing.exclude_dirs, indexing.max_file_size)

    history = GitHistory.discover(config.vault_root)
    if history is None:
        logger.info("Vault is not under version control, using content fingerprints")

    tracker = VersionTracker(config.state_dir, fs, history, indexing.file_extensions)

    logger.info("Initializing chunk store at %s", config.db_path)
    store = SQLiteChunkStore(config.db_path)
    store.initialize()

    return Indexer(
        fs=fs,
        store=store,
        embedder=create_embedder(config),
        tracker=tracker,
        chunker=create_chunker(config.chunking),
        config=indexing,
    )


def _report(result: IndexingResult) -> int:
    for warning in result.warnings:
        logger.warning("%s", warning)
    for error in result.errors:
        logger.error("%s failed during %s: %s", error.file, error.stage, error.error)
    logger.info(
        "%d files indexed, %d skipped, %d removed, %d chunks, %d errors (%.2fs)",
        result.processed_files,
        len(result.skipped_files),
        len(result.removed_files),
        result.total_chunks,
        len(result.errors),
        result.processing_time,
    )
    return 0 if result.success else 1


def _watch(indexer: Indexer, interval: int) -> int:
    manager = SyncManager(indexer, interval)
    # Catch up before the first interval elapses
    manager.sync_once()
    manager.start()
    try:
        while manager.is_running:
            time.sleep(1.0)
    except KeyboardInterrupt:
        logger.info("Watch stopped by user")
    finally:
        manager.stop()
    return 0


def main(argv: list[str] | None = None) -> None:
    """Main function - parses arguments and runs the requested command."""
    # Configure logging here to avoid side effects on import
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    parser = argparse.ArgumentParser(description="vault-index - chunk index for Markdown vaults")
    parser.add_argument(
        "--vault",
        type=Path,
        default=None,
        help="Vault root directory (overrides VAULT_ROOT)",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    index_parser = subparsers.add_parser("index", help="Index the whole vault")
    index_parser.add_argument(
        "--force",
        action="store_true",
        help="Reindex files even when their content is unchanged",
    )
    index_parser.add_argument("paths", nargs="*", help="Only index these vault paths")
    subparsers.add_parser("update", help="Index only what changed since the last run")
    subparsers.add_parser("status", help="Show index and repository status")
    watch_parser = subparsers.add_parser("watch", help="Keep the index updated periodically")
    watch_parser.add_argument(
        "--interval",
        type=int,
        default=None,
        help="Seconds between updates (overrides VAULT_SYNC_INTERVAL)",
    )
    args = parser.parse_args(argv)

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        config = Config.from_env(vault_root=args.vault)
    except ValueError as e:
        logger.error("Configuration error: %s", e)
        sys.exit(2)

    # Print startup banner
    logger.info("=" * 50)
    logger.info("vault-index %s...", args.command)
    logger.info("  VAULT_ROOT: %s", config.vault_root)
    logger.info("  STATE_DIR:  %s", config.state_dir)
    logger.info("  DB:         %s", config.db_path)
    logger.info("  EMBEDDINGS: %s", config.embedding_provider)
    logger.info(
        "  CHUNKING:   %s (max %d tokens)", config.chunking.strategy, config.chunking.max_tokens
    )
    logger.info("=" * 50)

    if not config.vault_root.is_dir():
        logger.error("Vault root %s is not a directory", config.vault_root)
        sys.exit(2)

    try:
        indexer = build_indexer(config)
        if args.command == "index":
            result = indexer.index_all(paths=args.paths or None, force=args.force)
            code = _report(result)
        elif args.command == "update":
            result = indexer.reindex_changed()
            if result.full_reindex_triggered:
                logger.info("Full reindex was triggered")
            code = _report(result)
        elif args.command == "status":
            print(json.dumps(indexer.status(), indent=2, default=str))
            code = 0
        else:
            code = _watch(indexer, args.interval or config.sync_interval)
    except KeyboardInterrupt:
        logger.info("Stopped by user")
        sys.exit(130)
    except Exception:
        logger.exception("Indexing failed")
        sys.exit(1)

    sys.exit(code)


if __name__ == "__main__":
    main()
