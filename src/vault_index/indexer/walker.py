"""File walker for discovering notes in a vault."""

import hashlib
import logging
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

logger = logging.getLogger(__name__)

DEFAULT_EXCLUDE_DIRS = (".git", ".obsidian", ".trash", "node_modules")
DEFAULT_MAX_FILE_SIZE = 10 * 1024 * 1024


@dataclass
class FileInfo:
    """Information about a discovered file."""

    path: Path  # Absolute path
    relative_path: str  # POSIX path relative to the vault root
    size: int
    mtime: float


def compute_hash(content: bytes) -> str:
    """Compute SHA-1 hash of content."""
    return hashlib.sha1(content).hexdigest()


def has_extension(path: str, extensions: tuple[str, ...]) -> bool:
    return PurePosixPath(path).suffix.lower() in {ext.lower() for ext in extensions}


def is_excluded(relative_path: str, exclude_dirs: tuple[str, ...]) -> bool:
    """True for paths under a hidden or excluded directory, or hidden files."""
    parts = PurePosixPath(relative_path).parts
    return any(part.startswith(".") or part in exclude_dirs for part in parts)


def walk_vault(
    vault_root: Path,
    extensions: tuple[str, ...] = (".md",),
    exclude_dirs: tuple[str, ...] = DEFAULT_EXCLUDE_DIRS,
    max_file_size: int = DEFAULT_MAX_FILE_SIZE,
) -> Iterator[FileInfo]:
    """
    Walk the vault and yield FileInfo for each note, sorted by path.

    Hidden files and directories, excluded directories and files larger
    than ``max_file_size`` are skipped.
    """
    if not vault_root.exists():
        return

    for file_path in sorted(vault_root.rglob("*")):
        if not file_path.is_file():
            continue

        relative_path = file_path.relative_to(vault_root).as_posix()
        if is_excluded(relative_path, exclude_dirs):
            continue
        if not has_extension(relative_path, extensions):
            continue

        stat = file_path.stat()
        if stat.st_size > max_file_size:
            logger.info(
                "Skipping %s: %d bytes exceeds the %d byte limit",
                relative_path,
                stat.st_size,
                max_file_size,
            )
            continue

        yield FileInfo(
            path=file_path,
            relative_path=relative_path,
            size=stat.st_size,
            mtime=stat.st_mtime,
        )


class LocalFileSystem:
    """The vault on local disk."""

    def __init__(
        self,
        root: Path,
        exclude_dirs: tuple[str, ...] = DEFAULT_EXCLUDE_DIRS,
        max_file_size: int = DEFAULT_MAX_FILE_SIZE,
    ):
        self.root = root
        self.exclude_dirs = exclude_dirs
        self.max_file_size = max_file_size

    def list_files(self, extensions: tuple[str, ...]) -> list[str]:
        return [
            info.relative_path
            for info in walk_vault(self.root, extensions, self.exclude_dirs, self.max_file_size)
        ]

    def accepts(self, path: str, extensions: tuple[str, ...]) -> bool:
        """Whether ``path`` would be picked up by a walk, ignoring its size."""
        return has_extension(path, extensions) and not is_excluded(path, self.exclude_dirs)

    def _resolve(self, path: str) -> Path:
        # Reject paths that escape the vault, e.g. through symlinks
        resolved = (self.root / path).resolve()
        resolved_root = self.root.resolve()
        if resolved != resolved_root and resolved_root not in resolved.parents:
            raise ValueError(f"Path outside vault root: {path}")
        return resolved

    def read_bytes(self, path: str) -> bytes:
        return self._resolve(path).read_bytes()

    def exists(self, path: str) -> bool:
        try:
            return self._resolve(path).is_file()
        except ValueError:
            return False
