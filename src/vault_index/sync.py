"""Background sync manager for automatic index updates.

Runs a daemon thread that periodically calls indexer.reindex_changed() to
keep the chunk store in sync with edits made to the vault.
"""

import logging
import threading

from vault_index.indexer import Indexer

logger = logging.getLogger(__name__)


class SyncManager:
    """Manages periodic background sync of the index with the vault.

    The sync thread is a daemon, so it automatically terminates when the
    main process exits. Stopping also cancels a run in progress between
    batches.
    """

    def __init__(self, indexer: Indexer, interval: int):
        """Initialize the sync manager.

        Args:
            indexer: The indexer instance to sync.
            interval: Sync interval in seconds. Must be > 0.
        """
        if interval <= 0:
            raise ValueError(f"Sync interval must be positive, got {interval}")

        self._indexer = indexer
        self._interval = interval
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the background sync thread."""
        if self.is_running:
            logger.warning("Sync thread already running")
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._sync_loop,
            name="vault-sync",
            daemon=True,
        )
        self._thread.start()
        logger.info("Sync manager started (interval: %ds)", self._interval)

    def stop(self, timeout: float | None = None) -> None:
        """Stop the background sync thread.

        Blocks until the thread terminates (up to one interval by default).
        """
        if not self.is_running:
            return

        self._stop_event.set()
        self._thread.join(timeout=self._interval + 1 if timeout is None else timeout)
        if self._thread.is_alive():
            logger.warning("Sync thread did not stop cleanly")
        else:
            logger.info("Sync manager stopped")
        self._thread = None

    def sync_once(self) -> None:
        """Run one incremental update, logging instead of raising."""
        try:
            result = self._indexer.reindex_changed(cancel_event=self._stop_event)
        except Exception:
            logger.exception("Error during auto-sync")
            return

        if result.cancelled:
            logger.info("Auto-sync cancelled")
        elif result.changes.total or result.full_reindex_triggered:
            logger.info(
                "Auto-sync: %d added, %d modified, %d deleted, %d renamed, %d errors",
                result.changes.added,
                result.changes.modified,
                result.changes.deleted,
                result.changes.renamed,
                len(result.errors),
            )
        else:
            logger.debug("Auto-sync: no changes detected")

    def _sync_loop(self) -> None:
        """Main sync loop - runs in background thread."""
        logger.debug("Sync loop started")

        while not self._stop_event.is_set():
            # Sleep first, then sync (allows immediate shutdown on start)
            if self._stop_event.wait(timeout=self._interval):
                break

            self.sync_once()

        logger.debug("Sync loop stopped")
