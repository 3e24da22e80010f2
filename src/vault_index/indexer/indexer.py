"""Main indexer that coordinates syncing a vault to the chunk store.

The vault is always the source of truth. The chunk store is a derived
index that can be regenerated at any time.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Any, Literal

from vault_index.config import IndexingConfig
from vault_index.errors import ProviderUnavailableError
from vault_index.indexer.chunker import Chunker
from vault_index.indexer.models import (
    ChangeSummary,
    ChunkRecord,
    DocumentChunk,
    ErrorStage,
    FileChange,
    IncrementalResult,
    IndexingError,
    IndexingResult,
    ParsedDocument,
)
from vault_index.indexer.parser import parse_document
from vault_index.indexer.protocols import ChunkStore, EmbeddingProvider, FileSystem
from vault_index.indexer.references import ReferenceParser
from vault_index.indexer.version import VersionTracker
from vault_index.indexer.walker import compute_hash

logger = logging.getLogger(__name__)

OutcomeStatus = Literal["indexed", "unchanged", "hidden", "empty", "failed"]


@dataclass
class FileOutcome:
    """What happened to one file during a run."""

    path: str
    status: OutcomeStatus
    content_hash: str | None = None
    chunks: int = 0
    error: IndexingError | None = None
    warnings: list[str] = field(default_factory=list)


def summarize_changes(changes: list[FileChange]) -> ChangeSummary:
    summary = ChangeSummary()
    for change in changes:
        setattr(summary, change.status, getattr(summary, change.status) + 1)
    return summary


def category_for(path: str) -> str:
    """First directory of a vault path, or "root" for top-level notes."""
    parts = PurePosixPath(path).parts
    return parts[0] if len(parts) > 1 else "root"


class Indexer:
    """
    Indexer that keeps the chunk store in sync with a vault.

    Files are processed in batches of ``batch_size``; within a batch up to
    ``max_concurrency`` files run in parallel. Batches run one after the
    other and cancellation is checked between them.

    Thread Safety:
        Runs (index_all, reindex_changed) are serialized by a lock. The
        file system, store and embedder are shared by worker threads and
        must be thread-safe.
    """

    def __init__(
        self,
        fs: FileSystem,
        store: ChunkStore,
        embedder: EmbeddingProvider,
        tracker: VersionTracker,
        chunker: Chunker,
        config: IndexingConfig | None = None,
    ):
        """
        Initialize the indexer.

        Args:
            fs: The vault
            store: Where chunk records are written
            embedder: Turns chunk text into vectors
            tracker: Persists versions and detects changes
            chunker: Chunking strategy
            config: Indexing settings
        """
        self.fs = fs
        self.store = store
        self.embedder = embedder
        self.tracker = tracker
        self.chunker = chunker
        self.config = config or IndexingConfig()
        self.references = ReferenceParser(self.config.link_unsafe_chars)
        self._run_lock = threading.Lock()

    # Runs

    def index_all(
        self,
        paths: list[str] | None = None,
        force: bool = False,
        cancel_event: threading.Event | None = None,
    ) -> IndexingResult:
        """
        Index every note in the vault, or only ``paths``.

        Files whose content hash matches the stored version are skipped
        unless ``force`` is set. Tracked files that disappeared from the
        vault have their chunks removed.
        """
        with self._run_lock:
            return self._full_run(IndexingResult(), paths, force, cancel_event)

    def reindex_changed(self, cancel_event: threading.Event | None = None) -> IncrementalResult:
        """
        Bring the store up to date with what changed since the last run.

        Falls back to a full run when nothing was indexed yet or when more
        than ``max_changed_files`` files changed.
        """
        with self._run_lock:
            result = IncrementalResult()
            previous = self.tracker.load_version()
            if previous is None:
                logger.info("No previous index found, running full index")
                result.full_reindex_triggered = True
                return self._full_run(result, None, False, cancel_event)

            start = time.monotonic()
            snapshot = self.tracker.history_snapshot_id()
            uncommitted = self.tracker.uncommitted_paths()
            changes = self.tracker.detect_changes(self.config.file_extensions)
            result.changes = summarize_changes(changes)

            if len(changes) > self.config.max_changed_files:
                logger.info(
                    "%d changed files exceeds the limit of %d, running full index",
                    len(changes),
                    self.config.max_changed_files,
                )
                result.full_reindex_triggered = True
                return self._full_run(result, None, False, cancel_event)

            if not changes:
                info = self.tracker.build_version(
                    snapshot, previous.file_hashes, previous.total_chunks, uncommitted
                )
                if (
                    info.last_snapshot_id != previous.last_snapshot_id
                    or info.uncommitted_paths != previous.uncommitted_paths
                ):
                    self.tracker.save_version(info)
                    result.version_info = info
                else:
                    result.version_info = previous
                result.processing_time = time.monotonic() - start
                logger.debug("No changes since %s", previous.last_snapshot_id)
                return result

            logger.info(
                "Applying %d changes: %d added, %d modified, %d deleted, %d renamed",
                result.changes.total,
                result.changes.added,
                result.changes.modified,
                result.changes.deleted,
                result.changes.renamed,
            )

            new_hashes = dict(previous.file_hashes)
            # Renames are applied as delete(old_path) + add(path)
            removed = [c.path for c in changes if c.status == "deleted"]
            removed += [c.old_path for c in changes if c.status == "renamed" and c.old_path]
            pending = self._remove_files(removed, result)
            for path in removed:
                new_hashes.pop(path, None)

            to_index = [c.path for c in changes if c.status != "deleted"]
            outcomes = self._process(to_index, previous.file_hashes, False, result, cancel_event)
            self._apply_outcomes(outcomes, new_hashes, result)
            self._finish(result, start, snapshot, new_hashes, uncommitted, pending)
            return result

    def remove_deleted(self, paths: list[str]) -> IndexingResult:
        """Remove the chunks of ``paths`` from the store."""
        with self._run_lock:
            result = IndexingResult()
            self._remove_files(paths, result)
            result.success = not result.errors
            return result

    def status(self) -> dict[str, Any]:
        """Repository and index state plus a recommendation for the next run."""
        status = self.tracker.repository_status()
        info = self.tracker.load_version()
        pending = len(self.tracker.detect_changes(self.config.file_extensions))
        if info is None or pending > self.config.max_changed_files:
            recommendation = "full"
        elif pending:
            recommendation = "incremental"
        else:
            recommendation = "none"
        status.update(
            {
                "total_documents": info.total_documents if info else 0,
                "total_chunks": info.total_chunks if info else 0,
                "stored_chunks": self.store.count(),
                "pending_changes": pending if info else None,
                "recommendation": recommendation,
            }
        )
        return status

    # Run internals

    def _full_run(
        self,
        result: IndexingResult,
        paths: list[str] | None,
        force: bool,
        cancel_event: threading.Event | None,
    ) -> IndexingResult:
        start = time.monotonic()
        snapshot = self.tracker.history_snapshot_id()
        uncommitted = self.tracker.uncommitted_paths()
        previous = self.tracker.load_version()
        tracked = dict(previous.file_hashes) if previous else {}
        pending = list(previous.pending_deletions) if previous else []

        if paths is None:
            files = self.fs.list_files(self.config.file_extensions)
            logger.info("Starting full index of %d files", len(files))
            new_hashes: dict[str, str] = {}
            missing = sorted((set(tracked) | set(pending)) - set(files))
            pending = self._remove_files(missing, result)
        else:
            files = sorted(set(paths))
            new_hashes = dict(tracked)
            pending = [p for p in pending if p not in files]
            if previous is not None and self.tracker.is_versioned:
                # Files outside ``paths`` may have changed since the stored snapshot
                snapshot = previous.last_snapshot_id
                uncommitted = sorted(set(uncommitted) | set(previous.uncommitted_paths))

        outcomes = self._process(files, {} if force else tracked, force, result, cancel_event)
        self._apply_outcomes(outcomes, new_hashes, result)
        self._finish(result, start, snapshot, new_hashes, uncommitted, pending)
        return result

    def _process(
        self,
        files: list[str],
        tracked: dict[str, str],
        force: bool,
        result: IndexingResult,
        cancel_event: threading.Event | None,
    ) -> list[FileOutcome]:
        outcomes: list[FileOutcome] = []
        outcomes_lock = threading.Lock()
        batch_size = self.config.batch_size

        def _worker(path: str) -> None:
            outcome = self._index_file(path, tracked.get(path), force)
            with outcomes_lock:
                outcomes.append(outcome)

        for batch_start in range(0, len(files), batch_size):
            if cancel_event is not None and cancel_event.is_set():
                logger.info("Indexing cancelled after %d of %d files", batch_start, len(files))
                result.cancelled = True
                break

            batch = files[batch_start : batch_start + batch_size]
            with ThreadPoolExecutor(
                max_workers=min(self.config.max_concurrency, len(batch)),
                thread_name_prefix="vault-index",
            ) as pool:
                futures = [pool.submit(_worker, path) for path in batch]
                wait(futures)

            for future in futures:
                exc = future.exception()
                if exc is not None:
                    # Run-fatal; per-file errors never reach this point
                    raise exc

            logger.debug("Batch done: %d/%d files", batch_start + len(batch), len(files))
            if self.config.abort_on_error and any(o.status == "failed" for o in outcomes):
                logger.warning("Aborting run after a file failed")
                result.aborted = True
                break

        return outcomes

    def _apply_outcomes(
        self,
        outcomes: list[FileOutcome],
        new_hashes: dict[str, str],
        result: IndexingResult,
    ) -> None:
        for outcome in sorted(outcomes, key=lambda o: o.path):
            result.warnings.extend(outcome.warnings)
            if outcome.status == "failed":
                new_hashes.pop(outcome.path, None)
                if outcome.error is not None:
                    result.errors.append(outcome.error)
                continue
            if outcome.content_hash is not None:
                new_hashes[outcome.path] = outcome.content_hash
            if outcome.status == "indexed":
                result.processed_files += 1
                result.total_chunks += outcome.chunks
            else:
                result.skipped_files[outcome.path] = outcome.status

    def _finish(
        self,
        result: IndexingResult,
        start: float,
        snapshot: str | None,
        new_hashes: dict[str, str],
        uncommitted: list[str],
        pending_deletions: list[str],
    ) -> None:
        result.processing_time = time.monotonic() - start
        if result.cancelled or result.aborted:
            result.success = False
            logger.warning("Run did not complete, version not advanced")
            return

        info = self.tracker.build_version(
            snapshot, new_hashes, self.store.count(), uncommitted, pending_deletions
        )
        self.tracker.save_version(info)
        if isinstance(result, IncrementalResult):
            result.version_info = info
        result.success = not result.errors
        logger.info(
            "Indexing complete: %d files indexed, %d skipped, %d removed, %d errors, "
            "%d chunks in %.2fs",
            result.processed_files,
            len(result.skipped_files),
            len(result.removed_files),
            len(result.errors),
            result.total_chunks,
            result.processing_time,
        )

    # Per-file work

    def _failed(self, path: str, error: Exception, stage: ErrorStage) -> FileOutcome:
        logger.warning("Failed to index %s during %s: %s", path, stage, error)
        return FileOutcome(
            path=path,
            status="failed",
            error=IndexingError(file=path, error=str(error), stage=stage),
        )

    def _index_file(self, path: str, tracked_hash: str | None, force: bool) -> FileOutcome:
        """Index one file. Only ProviderUnavailableError escapes."""
        try:
            raw = self.fs.read_bytes(path)
        except (OSError, ValueError) as e:
            return self._failed(path, e, "parsing")

        content_hash = compute_hash(raw)
        if not force and tracked_hash == content_hash:
            return FileOutcome(path, "unchanged", content_hash)

        try:
            doc = parse_document(
                raw.decode("utf-8"), path, self.config.custom_fields, self.references
            )
        except UnicodeDecodeError as e:
            return self._failed(path, e, "parsing")

        if doc.metadata.is_hidden:
            logger.debug("Skipping hidden document %s", path)
            try:
                self._remove_chunks(path)
            except ProviderUnavailableError:
                raise
            except Exception as e:
                return self._failed(path, e, "storage")
            return FileOutcome(path, "hidden", content_hash, warnings=list(doc.warnings))

        try:
            chunking = self.chunker.chunk(doc, path)
        except Exception as e:
            return self._failed(path, e, "chunking")

        warnings = list(doc.warnings)
        warnings.extend(w if path in w else f"{path}: {w}" for w in chunking.warnings)

        if not chunking.chunks:
            try:
                self._remove_chunks(path)
            except ProviderUnavailableError:
                raise
            except Exception as e:
                return self._failed(path, e, "storage")
            return FileOutcome(path, "empty", content_hash, warnings=warnings)

        try:
            vectors = self.embedder.embed_batch([c.content for c in chunking.chunks])
        except ProviderUnavailableError:
            raise
        except Exception as e:
            return self._failed(path, e, "embedding")

        records = [
            ChunkRecord(
                id=chunk.id,
                content=chunk.content,
                vector=vector,
                metadata=self._record_metadata(chunk, doc, path, len(chunking.chunks)),
            )
            for chunk, vector in zip(chunking.chunks, vectors)
        ]
        try:
            self._remove_chunks(path)
            self.store.upsert(records)
        except ProviderUnavailableError:
            raise
        except Exception as e:
            return self._failed(path, e, "storage")

        logger.debug("Indexed %s: %d chunks", path, len(records))
        return FileOutcome(path, "indexed", content_hash, len(records), warnings=warnings)

    def _record_metadata(
        self, chunk: DocumentChunk, doc: ParsedDocument, path: str, total: int
    ) -> dict[str, Any]:
        meta = chunk.metadata
        return {
            "file_path": path,
            "title": meta.title or PurePosixPath(path).stem,
            "author": meta.author,
            "date": meta.date,
            "tags": meta.tags,
            "category": category_for(path),
            "chunk_index": chunk.chunk_index,
            "total_chunks": total,
            "section": chunk.section_title,
            "header_path": chunk.header_path,
            "chunk_type": meta.type,
            "heading_level": meta.heading_level,
            "tokens": chunk.token_count,
            "span": list(chunk.span),
            "prev_id": chunk.prev_id,
            "next_id": chunk.next_id,
            "has_code": meta.has_code,
            "has_table": meta.has_table,
            "has_callout": meta.has_callout,
            "has_links": meta.has_links,
            "link_targets": meta.link_targets,
            "block_summary": meta.block_summary,
            "word_count": doc.metadata.word_count,
            "custom": meta.custom,
        }

    def _remove_chunks(self, path: str) -> int:
        """Delete every stored chunk of ``path``, found by metadata, not by id."""
        ids = [r.id for r in self.store.query_by_metadata_field("file_path", path)]
        step = self.config.delete_batch_size
        for i in range(0, len(ids), step):
            self.store.delete_by_ids(ids[i : i + step])
        return len(ids)

    def _remove_files(self, paths: list[str], result: IndexingResult) -> list[str]:
        """Remove chunks of deleted files. Returns the paths that could not be removed."""
        failed: list[str] = []
        for path in paths:
            try:
                removed = self._remove_chunks(path)
            except ProviderUnavailableError:
                raise
            except Exception as e:
                logger.warning("Failed to remove chunks of %s: %s", path, e)
                result.errors.append(IndexingError(file=path, error=str(e), stage="storage"))
                failed.append(path)
                continue
            result.removed_files.append(path)
            logger.debug("Removed %d chunks of deleted file %s", removed, path)
        return failed
