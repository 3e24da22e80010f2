"""Version tracking and change detection.

After every successful run the tracker persists which snapshot of the
vault was indexed and the content hash of every indexed file. The next
run asks it what changed since then.

Change detection tiers:
1. Nothing stored: every file is new
2. Same snapshot id: only uncommitted working-tree changes
3. Different snapshot id: committed diff plus uncommitted changes

When history is unavailable or any history query fails, the tracker
falls back to comparing content hashes against the stored map.
"""

import hashlib
import json
import logging
import os
import tempfile
from collections.abc import Iterable
from datetime import datetime
from pathlib import Path
from typing import Any

from vault_index.errors import HistoryError
from vault_index.indexer.models import FileChange, VersionInfo
from vault_index.indexer.protocols import FileSystem, HistoryProvider
from vault_index.indexer.walker import compute_hash

logger = logging.getLogger(__name__)

VERSION_FILENAME = "index-version.json"
FINGERPRINT_PREFIX = "files:"


def fingerprint(file_hashes: dict[str, str]) -> str:
    """Snapshot id for vaults without history, derived from file contents."""
    digest = hashlib.sha1()
    for path in sorted(file_hashes):
        digest.update(f"{path}\0{file_hashes[path]}\n".encode())
    return FINGERPRINT_PREFIX + digest.hexdigest()


def _to_json(info: VersionInfo) -> dict[str, Any]:
    return {
        "lastSnapshotId": info.last_snapshot_id,
        "indexedAt": info.indexed_at.isoformat(),
        "fileHashes": [[path, digest] for path, digest in sorted(info.file_hashes.items())],
        "totalDocuments": info.total_documents,
        "totalChunks": info.total_chunks,
        "uncommittedPaths": sorted(info.uncommitted_paths),
        "pendingDeletions": sorted(info.pending_deletions),
    }


def _from_json(data: dict[str, Any]) -> VersionInfo:
    return VersionInfo(
        last_snapshot_id=str(data["lastSnapshotId"]),
        indexed_at=datetime.fromisoformat(data["indexedAt"]),
        file_hashes={str(path): str(digest) for path, digest in data["fileHashes"]},
        total_documents=int(data.get("totalDocuments", 0)),
        total_chunks=int(data.get("totalChunks", 0)),
        uncommitted_paths=[str(p) for p in data.get("uncommittedPaths", [])],
        pending_deletions=[str(p) for p in data.get("pendingDeletions", [])],
    )


class VersionTracker:
    """
    Persists VersionInfo and answers "what changed since the last run".

    Args:
        state_dir: Directory holding the version file
        fs: The vault
        history: Version-control provider, or None for unversioned vaults
        extensions: File extensions that count as notes
    """

    def __init__(
        self,
        state_dir: Path,
        fs: FileSystem,
        history: HistoryProvider | None = None,
        extensions: tuple[str, ...] = (".md", ".markdown"),
    ):
        self.state_dir = state_dir
        self.version_path = state_dir / VERSION_FILENAME
        self.fs = fs
        self.history = history
        self.extensions = extensions

    @property
    def is_versioned(self) -> bool:
        return self.history is not None

    # Persistence

    def load_version(self) -> VersionInfo | None:
        """Stored version, or None if absent or unreadable."""
        if not self.version_path.exists():
            return None
        try:
            data = json.loads(self.version_path.read_text(encoding="utf-8"))
            return _from_json(data)
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning(
                "Ignoring unreadable version file %s (%s), treating vault as never indexed",
                self.version_path,
                e,
            )
            return None

    def save_version(self, info: VersionInfo) -> None:
        """Write the version file atomically."""
        self.state_dir.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self.state_dir, prefix=".version-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(_to_json(info), f, indent=2)
            os.replace(tmp_path, self.version_path)
        except Exception:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise
        logger.debug(
            "Saved version %s (%d documents, %d chunks)",
            info.last_snapshot_id,
            info.total_documents,
            info.total_chunks,
        )

    def build_version(
        self,
        snapshot_id: str | None,
        file_hashes: dict[str, str],
        total_chunks: int,
        uncommitted_paths: Iterable[str] = (),
        pending_deletions: Iterable[str] = (),
    ) -> VersionInfo:
        """VersionInfo for a finished run; unversioned vaults get a fingerprint id."""
        return VersionInfo(
            last_snapshot_id=snapshot_id or fingerprint(file_hashes),
            indexed_at=datetime.now(),
            file_hashes=dict(file_hashes),
            total_documents=len(file_hashes),
            total_chunks=total_chunks,
            uncommitted_paths=sorted(set(uncommitted_paths)),
            pending_deletions=sorted(set(pending_deletions)),
        )

    # Snapshot queries

    def history_snapshot_id(self) -> str | None:
        """Current commit, or None without usable history."""
        if self.history is None:
            return None
        try:
            return self.history.current_snapshot_id()
        except HistoryError as e:
            logger.warning("Cannot read current snapshot: %s", e)
            return None

    def current_snapshot_id(self) -> str:
        snapshot = self.history_snapshot_id()
        if snapshot is not None:
            return snapshot
        return fingerprint(self._scan_hashes())

    def uncommitted_paths(self) -> list[str]:
        """Paths with uncommitted changes, old rename paths included."""
        if self.history is None:
            return []
        try:
            changes = self.history.uncommitted_changes()
        except HistoryError as e:
            logger.warning("Cannot read working tree status: %s", e)
            return []
        paths: set[str] = set()
        for change in changes:
            paths.add(change.path)
            if change.old_path:
                paths.add(change.old_path)
        return sorted(p for p in paths if self.fs.accepts(p, self.extensions))

    def needs_reindexing(self) -> bool:
        info = self.load_version()
        if info is None:
            return True
        try:
            return self.current_snapshot_id() != info.last_snapshot_id
        except (OSError, ValueError) as e:
            logger.warning("Cannot determine current snapshot: %s", e)
            return True

    def repository_status(self) -> dict[str, Any]:
        info = self.load_version()
        is_clean: bool | None = None
        if self.history is not None:
            try:
                is_clean = self.history.is_clean()
            except HistoryError as e:
                logger.warning("Cannot read working tree status: %s", e)
        return {
            "current_snapshot_id": self.current_snapshot_id(),
            "is_clean": is_clean,
            "last_snapshot_id": info.last_snapshot_id if info else None,
            "indexed_at": info.indexed_at.isoformat() if info else None,
            "needs_reindexing": self.needs_reindexing(),
            "is_versioned": self.is_versioned,
        }

    # Change detection

    def _hash(self, path: str) -> str | None:
        try:
            return compute_hash(self.fs.read_bytes(path))
        except (OSError, ValueError) as e:
            logger.warning("Cannot hash %s: %s", path, e)
            return None

    def _scan_hashes(self) -> dict[str, str]:
        hashes: dict[str, str] = {}
        for path in self.fs.list_files(self.extensions):
            digest = self._hash(path)
            if digest is not None:
                hashes[path] = digest
        return hashes

    def detect_changes(self, extensions: tuple[str, ...] | None = None) -> list[FileChange]:
        """Files that changed since the stored version, sorted by path."""
        if extensions is not None:
            self.extensions = extensions

        info = self.load_version()
        if info is None:
            return [
                FileChange(path, "added", content_hash=digest)
                for path, digest in sorted(self._scan_hashes().items())
            ]

        if self.history is not None:
            try:
                return self._history_changes(info, self.history)
            except HistoryError as e:
                logger.warning("History query failed (%s), comparing content hashes", e)
        return self._hash_changes(info)

    def _history_changes(
        self, info: VersionInfo, history: HistoryProvider
    ) -> list[FileChange]:
        current = history.current_snapshot_id()
        merged: dict[str, FileChange] = {}

        if current != info.last_snapshot_id:
            for change in history.diff_between(info.last_snapshot_id, current):
                merged[change.path] = change

        for change in history.uncommitted_changes():
            prior = merged.get(change.path)
            if prior is None or change.status == "deleted":
                merged[change.path] = change

        # Paths dirty at the last run may have been reverted since
        for path in info.uncommitted_paths:
            merged.setdefault(path, FileChange(path, "modified"))

        # Never indexed, or failed last time
        for path in self.fs.list_files(self.extensions):
            if path not in info.file_hashes:
                merged.setdefault(path, FileChange(path, "added"))

        for path in info.pending_deletions:
            merged.setdefault(path, FileChange(path, "deleted"))

        return self._settle(merged.values(), info)

    def _settle(self, changes: Iterable[FileChange], info: VersionInfo) -> list[FileChange]:
        """Check reported changes against the disk and the stored hashes."""
        tracked = info.file_hashes
        pending = set(info.pending_deletions)
        settled: dict[str, FileChange] = {}

        def _deleted(path: str | None) -> None:
            if path and (path in tracked or path in pending):
                settled[path] = FileChange(path, "deleted")

        for change in changes:
            if change.old_path and change.old_path != change.path:
                if self.fs.accepts(change.old_path, self.extensions):
                    _deleted(change.old_path)
            if not self.fs.accepts(change.path, self.extensions):
                continue
            if change.status == "deleted" or not self.fs.exists(change.path):
                _deleted(change.path)
                continue

            digest = self._hash(change.path)
            if change.status == "renamed" and change.old_path in tracked:
                settled.pop(change.old_path, None)
                settled[change.path] = FileChange(
                    change.path, "renamed", old_path=change.old_path, content_hash=digest
                )
                continue
            if digest is not None and tracked.get(change.path) == digest:
                continue
            status = "modified" if change.path in tracked else "added"
            settled[change.path] = FileChange(change.path, status, content_hash=digest)

        return sorted(settled.values(), key=lambda c: c.path)

    def _hash_changes(self, info: VersionInfo) -> list[FileChange]:
        tracked = info.file_hashes
        current = self._scan_hashes()
        changes: dict[str, FileChange] = {}

        deleted_by_hash: dict[str, list[str]] = {}
        for path, digest in tracked.items():
            if path not in current:
                deleted_by_hash.setdefault(digest, []).append(path)

        for path, digest in current.items():
            old = tracked.get(path)
            if old == digest:
                continue
            if old is not None:
                changes[path] = FileChange(path, "modified", content_hash=digest)
            elif deleted_by_hash.get(digest):
                old_path = deleted_by_hash[digest].pop(0)
                changes[path] = FileChange(
                    path, "renamed", old_path=old_path, content_hash=digest
                )
            else:
                changes[path] = FileChange(path, "added", content_hash=digest)

        for paths in deleted_by_hash.values():
            for path in paths:
                changes[path] = FileChange(path, "deleted")

        for path in info.pending_deletions:
            if path not in current:
                changes.setdefault(path, FileChange(path, "deleted"))

        return sorted(changes.values(), key=lambda c: c.path)
