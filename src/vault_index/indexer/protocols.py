"""Interfaces for the collaborators the indexer talks to.

Implementations must be safe to call from several worker threads at once.
"""

from typing import Any, Protocol, runtime_checkable

from vault_index.indexer.models import ChunkRecord, FileChange


@runtime_checkable
class FileSystem(Protocol):
    """Read-only view of the vault."""

    def list_files(self, extensions: tuple[str, ...]) -> list[str]:
        """Return vault-relative POSIX paths with one of the given extensions."""
        ...

    def accepts(self, path: str, extensions: tuple[str, ...]) -> bool:
        """Whether a changed path is a candidate for indexing."""
        ...

    def read_bytes(self, path: str) -> bytes:
        ...

    def exists(self, path: str) -> bool:
        ...


@runtime_checkable
class HistoryProvider(Protocol):
    """Version-control queries used for change detection.

    Every method raises HistoryError when the query fails.
    """

    def current_snapshot_id(self) -> str:
        ...

    def is_clean(self) -> bool:
        ...

    def uncommitted_changes(self) -> list[FileChange]:
        ...

    def diff_between(self, from_id: str, to_id: str) -> list[FileChange]:
        ...


@runtime_checkable
class EmbeddingProvider(Protocol):
    """Turns chunk text into vectors."""

    @property
    def dimension(self) -> int:
        ...

    def embed(self, text: str) -> list[float]:
        ...

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        ...


@runtime_checkable
class ChunkStore(Protocol):
    """Vector store holding one record per chunk."""

    def upsert(self, records: list[ChunkRecord]) -> list[str]:
        ...

    def delete_by_ids(self, ids: list[str]) -> int:
        ...

    def query_by_metadata_field(
        self, field: str, value: Any, limit: int | None = None
    ) -> list[ChunkRecord]:
        ...

    def count(self) -> int:
        ...
