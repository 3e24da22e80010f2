"""Tests for the main Indexer class."""

import threading
from pathlib import Path

import pytest

from conftest import FakeHistory, write_note
from vault_index.config import ChunkingConfig, IndexingConfig
from vault_index.errors import EmbeddingError, ProviderUnavailableError, StorageError
from vault_index.indexer import (
    HashEmbedding,
    HeaderBasedChunker,
    Indexer,
    LocalFileSystem,
    SQLiteChunkStore,
    VersionTracker,
)
from vault_index.indexer.indexer import category_for
from vault_index.indexer.models import FileChange


class FlakyEmbedding(HashEmbedding):
    """Fails on chunks containing a marker word."""

    def __init__(self, marker: str = "FAIL", error: type[Exception] = EmbeddingError):
        super().__init__(8)
        self.marker = marker
        self.error = error

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        if any(self.marker in text for text in texts):
            raise self.error(f"refusing {self.marker}")
        return super().embed_batch(texts)


def make_indexer(
    vault: Path,
    tmp_path: Path,
    history: FakeHistory | None = None,
    embedder=None,
    chunking: ChunkingConfig | None = None,
    **indexing,
) -> Indexer:
    indexing.setdefault("batch_size", 2)
    indexing.setdefault("max_concurrency", 2)
    config = IndexingConfig(**indexing)
    fs = LocalFileSystem(vault, config.exclude_dirs)
    store = SQLiteChunkStore(tmp_path / "state" / "chunks.db")
    store.initialize()
    return Indexer(
        fs=fs,
        store=store,
        embedder=embedder or HashEmbedding(8),
        tracker=VersionTracker(tmp_path / "state", fs, history, config.file_extensions),
        chunker=HeaderBasedChunker(chunking or ChunkingConfig(overlap_tokens=0)),
        config=config,
    )


@pytest.fixture
def indexer(vault: Path, tmp_path: Path):
    idx = make_indexer(vault, tmp_path)
    yield idx
    idx.store.close()


def chunks_of(indexer: Indexer, path: str) -> list:
    return indexer.store.query_by_metadata_field("file_path", path)


class TestIndexAll:
    def test_indexes_every_note(self, indexer: Indexer):
        result = indexer.index_all()

        assert result.success
        assert result.processed_files == 3
        assert result.errors == []
        assert indexer.store.count() == result.total_chunks
        assert indexer.store.list_paths() == {
            "beta.md",
            "journal/2024-01-15.md",
            "projects/alpha.md",
        }

    def test_saves_version(self, indexer: Indexer):
        result = indexer.index_all()
        info = indexer.tracker.load_version()

        assert info is not None
        assert set(info.file_hashes) == {"beta.md", "journal/2024-01-15.md", "projects/alpha.md"}
        assert info.total_chunks == result.total_chunks
        assert info.last_snapshot_id.startswith("files:")

    def test_unchanged_files_are_skipped(self, indexer: Indexer):
        indexer.index_all()
        result = indexer.index_all()

        assert result.processed_files == 0
        assert set(result.skipped_files.values()) == {"unchanged"}
        assert len(result.skipped_files) == 3

    def test_force_reindexes(self, indexer: Indexer):
        indexer.index_all()
        result = indexer.index_all(force=True)
        assert result.processed_files == 3

    def test_selected_paths_only(self, indexer: Indexer):
        result = indexer.index_all(paths=["beta.md"])

        assert result.processed_files == 1
        assert indexer.store.list_paths() == {"beta.md"}
        assert set(indexer.tracker.load_version().file_hashes) == {"beta.md"}

    def test_record_metadata(self, indexer: Indexer):
        indexer.index_all()

        alpha = chunks_of(indexer, "projects/alpha.md")
        meta = alpha[0].metadata
        assert meta["title"] == "Project Alpha"
        assert meta["category"] == "projects"
        assert meta["total_chunks"] == len(alpha)
        assert "project/alpha" in meta["tags"]
        assert "work" in meta["tags"]
        assert meta["custom"] == {"status": "active"}
        assert len(alpha[0].vector) == 8

        journal = chunks_of(indexer, "journal/2024-01-15.md")[0].metadata
        assert journal["title"] == "2024-01-15"
        assert journal["category"] == "journal"

    def test_link_targets_are_stored(self, indexer: Indexer):
        indexer.index_all()
        alpha = chunks_of(indexer, "projects/alpha.md")
        targets = {t for record in alpha for t in record.metadata["link_targets"]}
        assert targets == {"Beta Notes"}

    def test_hidden_notes_are_skipped(self, vault: Path, indexer: Indexer):
        write_note(vault, "secret.md", "---\ndraft: true\n---\nDo not index.\n")
        result = indexer.index_all()

        assert result.skipped_files["secret.md"] == "hidden"
        assert chunks_of(indexer, "secret.md") == []
        assert "secret.md" in indexer.tracker.load_version().file_hashes

    def test_note_becoming_hidden_loses_its_chunks(self, vault: Path, indexer: Indexer):
        indexer.index_all()
        write_note(vault, "beta.md", "---\nprivate: true\n---\n# Beta Notes\n")
        indexer.index_all()
        assert chunks_of(indexer, "beta.md") == []

    def test_empty_notes_are_skipped(self, vault: Path, indexer: Indexer):
        write_note(vault, "empty.md", "---\ntitle: Nothing\n---\n")
        result = indexer.index_all()

        assert result.skipped_files["empty.md"] == "empty"
        assert any("empty.md" in w for w in result.warnings)

    def test_missing_files_are_removed(self, vault: Path, indexer: Indexer):
        indexer.index_all()
        (vault / "beta.md").unlink()
        result = indexer.index_all()

        assert result.removed_files == ["beta.md"]
        assert chunks_of(indexer, "beta.md") == []
        assert "beta.md" not in indexer.tracker.load_version().file_hashes

    def test_shrinking_note_drops_stale_chunks(self, vault: Path, tmp_path: Path):
        long_body = "\n\n".join(f"Paragraph {i} " + "filler " * 20 for i in range(10))
        write_note(vault, "long.md", long_body)
        idx = make_indexer(vault, tmp_path, chunking=ChunkingConfig(max_tokens=50, overlap_tokens=0))
        idx.index_all()
        assert len(chunks_of(idx, "long.md")) > 3

        write_note(vault, "long.md", "Now it is short.")
        idx.index_all()
        records = chunks_of(idx, "long.md")
        assert len(records) == 1
        assert "Now it is short." in records[0].content


class TestErrorHandling:
    def test_file_error_is_isolated(self, vault: Path, tmp_path: Path):
        write_note(vault, "bad.md", "This note will FAIL to embed.\n")
        idx = make_indexer(vault, tmp_path, embedder=FlakyEmbedding())
        result = idx.index_all()

        assert not result.success
        assert result.processed_files == 3
        assert [(e.file, e.stage) for e in result.errors] == [("bad.md", "embedding")]
        assert "bad.md" not in idx.tracker.load_version().file_hashes

    def test_failed_file_is_retried(self, vault: Path, tmp_path: Path):
        write_note(vault, "bad.md", "This note will FAIL to embed.\n")
        idx = make_indexer(vault, tmp_path, embedder=FlakyEmbedding())
        idx.index_all()

        write_note(vault, "bad.md", "This note is fine now.\n")
        result = idx.reindex_changed()

        assert result.changes.added == 1
        assert result.processed_files == 1
        assert result.success

    def test_failed_file_is_retried_with_history(self, vault: Path, tmp_path: Path):
        write_note(vault, "bad.md", "This note will FAIL to embed.\n")
        idx = make_indexer(vault, tmp_path, history=FakeHistory("c1"), embedder=FlakyEmbedding())
        idx.index_all()
        assert chunks_of(idx, "bad.md") == []

        # Same commit, same content; only the embedder recovered
        idx.embedder = HashEmbedding(8)
        result = idx.reindex_changed()

        assert result.changes.added == 1
        assert result.processed_files == 1
        assert chunks_of(idx, "bad.md")
        assert "bad.md" in result.version_info.file_hashes

    def test_invalid_utf8_is_a_parsing_error(self, vault: Path, indexer: Indexer):
        (vault / "binary.md").write_bytes(b"\xff\xfe\x00bad")
        result = indexer.index_all()

        assert [(e.file, e.stage) for e in result.errors] == [("binary.md", "parsing")]

    def test_provider_unavailable_is_fatal(self, vault: Path, tmp_path: Path):
        embedder = FlakyEmbedding(marker="Beta", error=ProviderUnavailableError)
        idx = make_indexer(vault, tmp_path, embedder=embedder)

        with pytest.raises(ProviderUnavailableError):
            idx.index_all()
        assert idx.tracker.load_version() is None

    def test_abort_on_error(self, vault: Path, tmp_path: Path):
        write_note(vault, "aaa.md", "FAIL early\n")
        idx = make_indexer(
            vault, tmp_path, embedder=FlakyEmbedding(), batch_size=1, abort_on_error=True
        )
        result = idx.index_all()

        assert result.aborted
        assert not result.success
        assert result.processed_files == 0
        assert idx.tracker.load_version() is None

    def test_cancellation(self, indexer: Indexer):
        cancel = threading.Event()
        cancel.set()
        result = indexer.index_all(cancel_event=cancel)

        assert result.cancelled
        assert not result.success
        assert result.processed_files == 0
        assert indexer.tracker.load_version() is None


class TestReindexChanged:
    def test_first_run_is_full(self, indexer: Indexer):
        result = indexer.reindex_changed()

        assert result.full_reindex_triggered
        assert result.processed_files == 3
        assert result.version_info is not None

    def test_no_changes(self, indexer: Indexer):
        indexer.index_all()
        result = indexer.reindex_changed()

        assert result.changes.total == 0
        assert result.processed_files == 0
        assert not result.full_reindex_triggered

    def test_modified_file(self, vault: Path, indexer: Indexer):
        indexer.index_all()
        write_note(vault, "beta.md", "# Beta Notes\n\nCompletely new text.\n")
        result = indexer.reindex_changed()

        assert result.changes.modified == 1
        assert result.processed_files == 1
        contents = [r.content for r in chunks_of(indexer, "beta.md")]
        assert any("Completely new text." in c for c in contents)

    def test_deleted_file(self, vault: Path, indexer: Indexer):
        indexer.index_all()
        (vault / "journal" / "2024-01-15.md").unlink()
        result = indexer.reindex_changed()

        assert result.changes.deleted == 1
        assert result.removed_files == ["journal/2024-01-15.md"]
        assert chunks_of(indexer, "journal/2024-01-15.md") == []
        assert "journal/2024-01-15.md" not in result.version_info.file_hashes

    def test_renamed_file(self, vault: Path, indexer: Indexer):
        indexer.index_all()
        (vault / "beta.md").rename(vault / "gamma.md")
        result = indexer.reindex_changed()

        assert result.changes.renamed == 1
        assert chunks_of(indexer, "beta.md") == []
        assert chunks_of(indexer, "gamma.md")
        assert set(result.version_info.file_hashes) == {
            "gamma.md",
            "journal/2024-01-15.md",
            "projects/alpha.md",
        }

    def test_too_many_changes_triggers_full_run(self, vault: Path, tmp_path: Path):
        idx = make_indexer(vault, tmp_path, max_changed_files=1)
        idx.index_all()
        write_note(vault, "one.md", "one\n")
        write_note(vault, "two.md", "two\n")

        result = idx.reindex_changed()
        assert result.full_reindex_triggered
        assert result.processed_files == 2

    def test_history_snapshot_advances(self, vault: Path, tmp_path: Path):
        history = FakeHistory("c1")
        idx = make_indexer(vault, tmp_path, history=history)
        idx.index_all()
        assert idx.tracker.load_version().last_snapshot_id == "c1"

        write_note(vault, "new.md", "# New\n")
        history.snapshot = "c2"
        history.diffs[("c1", "c2")] = [FileChange("new.md", "added")]
        result = idx.reindex_changed()

        assert result.processed_files == 1
        assert result.version_info.last_snapshot_id == "c2"

    def test_snapshot_advances_without_note_changes(self, vault: Path, tmp_path: Path):
        history = FakeHistory("c1")
        idx = make_indexer(vault, tmp_path, history=history)
        idx.index_all()

        history.snapshot = "c2"
        result = idx.reindex_changed()

        assert result.changes.total == 0
        assert idx.tracker.load_version().last_snapshot_id == "c2"

    def test_partial_run_keeps_snapshot(self, vault: Path, tmp_path: Path):
        history = FakeHistory("c1")
        idx = make_indexer(vault, tmp_path, history=history)
        idx.index_all()

        write_note(vault, "beta.md", "# Beta Notes\n\nRewritten in commit two.\n")
        write_note(vault, "journal/2024-01-15.md", "# Journal\n\nAlso rewritten.\n")
        history.snapshot = "c2"
        history.diffs[("c1", "c2")] = [
            FileChange("beta.md", "modified"),
            FileChange("journal/2024-01-15.md", "modified"),
        ]
        result = idx.index_all(paths=["journal/2024-01-15.md"])

        assert result.processed_files == 1
        assert idx.tracker.load_version().last_snapshot_id == "c1"

        result = idx.reindex_changed()
        assert result.changes.modified == 1
        assert result.processed_files == 1
        assert result.version_info.last_snapshot_id == "c2"
        contents = [r.content for r in chunks_of(idx, "beta.md")]
        assert any("Rewritten in commit two." in c for c in contents)

    def test_partial_run_keeps_uncommitted_paths(self, vault: Path, tmp_path: Path):
        history = FakeHistory("c1")
        history.uncommitted = [FileChange("beta.md", "modified")]
        idx = make_indexer(vault, tmp_path, history=history)
        idx.index_all()

        history.uncommitted = []
        idx.index_all(paths=["projects/alpha.md"])

        assert idx.tracker.load_version().uncommitted_paths == ["beta.md"]

    def test_failed_deletion_is_retried(
        self, vault: Path, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ):
        history = FakeHistory("c1")
        idx = make_indexer(vault, tmp_path, history=history)
        idx.index_all()

        def refuse(ids: list[str]) -> None:
            raise StorageError("store is read-only")

        monkeypatch.setattr(idx.store, "delete_by_ids", refuse)
        (vault / "beta.md").unlink()
        history.snapshot = "c2"
        history.diffs[("c1", "c2")] = [FileChange("beta.md", "deleted")]
        result = idx.reindex_changed()

        assert [(e.file, e.stage) for e in result.errors] == [("beta.md", "storage")]
        assert result.removed_files == []
        saved = idx.tracker.load_version()
        assert "beta.md" not in saved.file_hashes
        assert saved.pending_deletions == ["beta.md"]
        assert chunks_of(idx, "beta.md")

        monkeypatch.undo()
        result = idx.reindex_changed()

        assert result.changes.deleted == 1
        assert result.removed_files == ["beta.md"]
        assert result.success
        assert chunks_of(idx, "beta.md") == []
        assert idx.tracker.load_version().pending_deletions == []

    def test_failed_deletion_is_retried_without_history(
        self, vault: Path, indexer: Indexer, monkeypatch: pytest.MonkeyPatch
    ):
        indexer.index_all()

        def refuse(ids: list[str]) -> None:
            raise StorageError("store is read-only")

        monkeypatch.setattr(indexer.store, "delete_by_ids", refuse)
        (vault / "beta.md").unlink()
        indexer.reindex_changed()
        assert indexer.tracker.load_version().pending_deletions == ["beta.md"]

        monkeypatch.undo()
        result = indexer.reindex_changed()

        assert result.removed_files == ["beta.md"]
        assert chunks_of(indexer, "beta.md") == []


class TestRemoveAndStatus:
    def test_remove_deleted(self, indexer: Indexer):
        indexer.index_all()
        result = indexer.remove_deleted(["beta.md", "never-indexed.md"])

        assert result.success
        assert result.removed_files == ["beta.md", "never-indexed.md"]
        assert chunks_of(indexer, "beta.md") == []

    def test_status_recommendations(self, vault: Path, indexer: Indexer):
        assert indexer.status()["recommendation"] == "full"

        indexer.index_all()
        status = indexer.status()
        assert status["recommendation"] == "none"
        assert status["total_documents"] == 3
        assert status["stored_chunks"] == status["total_chunks"]

        write_note(vault, "beta.md", "# Changed\n")
        assert indexer.status()["recommendation"] == "incremental"


@pytest.mark.parametrize(
    ("path", "expected"),
    [("note.md", "root"), ("projects/a.md", "projects"), ("a/b/c.md", "a")],
)
def test_category_for(path: str, expected: str):
    assert category_for(path) == expected
