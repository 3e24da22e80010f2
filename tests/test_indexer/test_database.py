"""Tests for the SQLite chunk store."""

import tempfile
from pathlib import Path

import pytest

from vault_index.errors import StorageError
from vault_index.indexer.database import SQLiteChunkStore
from vault_index.indexer.models import ChunkRecord
from vault_index.indexer.protocols import ChunkStore


@pytest.fixture
def store():
    """Create a temporary store for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        db_path = Path(tmpdir) / "test.db"
        chunk_store = SQLiteChunkStore(db_path)
        chunk_store.initialize()
        yield chunk_store
        chunk_store.close()


def record(chunk_id: str, file_path: str = "a.md", index: int = 0, **metadata) -> ChunkRecord:
    return ChunkRecord(
        id=chunk_id,
        content=f"content of {chunk_id}",
        vector=[0.1, 0.2, 0.3],
        metadata={"file_path": file_path, "chunk_index": index, **metadata},
    )


class TestStoreInitialization:
    def test_creates_database_file(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            db_path = Path(tmpdir) / "test.db"
            store = SQLiteChunkStore(db_path)
            store.initialize()
            assert db_path.exists()
            store.close()

    def test_creates_parent_directories(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            db_path = Path(tmpdir) / "nested" / "dir" / "test.db"
            store = SQLiteChunkStore(db_path)
            assert store.count() == 0
            assert db_path.exists()
            store.close()

    def test_implements_protocol(self, store: SQLiteChunkStore):
        assert isinstance(store, ChunkStore)


class TestUpsert:
    def test_insert_and_get(self, store: SQLiteChunkStore):
        ids = store.upsert([record("c1", tags=["x"])])

        assert ids == ["c1"]
        stored = store.get("c1")
        assert stored is not None
        assert stored.content == "content of c1"
        assert stored.vector == [0.1, 0.2, 0.3]
        assert stored.metadata["tags"] == ["x"]

    def test_upsert_replaces_existing(self, store: SQLiteChunkStore):
        store.upsert([record("c1")])
        updated = record("c1")
        updated.content = "new content"
        store.upsert([updated])

        assert store.count() == 1
        assert store.get("c1").content == "new content"

    def test_requires_file_path(self, store: SQLiteChunkStore):
        bad = ChunkRecord(id="c1", content="x", vector=[], metadata={})
        with pytest.raises(StorageError, match="no file_path"):
            store.upsert([bad])

    def test_get_missing(self, store: SQLiteChunkStore):
        assert store.get("nope") is None


class TestDelete:
    def test_delete_by_ids(self, store: SQLiteChunkStore):
        store.upsert([record("c1"), record("c2", index=1), record("c3", index=2)])

        assert store.delete_by_ids(["c1", "c3", "missing"]) == 2
        assert store.count() == 1

    def test_delete_nothing(self, store: SQLiteChunkStore):
        assert store.delete_by_ids([]) == 0

    def test_clear(self, store: SQLiteChunkStore):
        store.upsert([record("c1"), record("c2", index=1)])
        store.clear()
        assert store.count() == 0


class TestQueryByMetadataField:
    def test_by_file_path(self, store: SQLiteChunkStore):
        store.upsert(
            [
                record("b1", "b.md", 1),
                record("a1", "a.md"),
                record("b0", "b.md", 0),
            ]
        )

        results = store.query_by_metadata_field("file_path", "b.md")
        assert [r.id for r in results] == ["b0", "b1"]

    def test_by_json_field(self, store: SQLiteChunkStore):
        store.upsert(
            [
                record("c1", chunk_type="code", has_code=True),
                record("c2", index=1, chunk_type="paragraph", has_code=False),
            ]
        )

        assert [r.id for r in store.query_by_metadata_field("chunk_type", "code")] == ["c1"]
        assert [r.id for r in store.query_by_metadata_field("has_code", False)] == ["c2"]

    def test_limit(self, store: SQLiteChunkStore):
        store.upsert([record(f"c{i}", index=i) for i in range(5)])
        assert len(store.query_by_metadata_field("file_path", "a.md", limit=2)) == 2

    def test_rejects_unsafe_field_names(self, store: SQLiteChunkStore):
        with pytest.raises(ValueError, match="Invalid metadata field name"):
            store.query_by_metadata_field("x') OR 1=1 --", "y")

    def test_list_paths(self, store: SQLiteChunkStore):
        store.upsert([record("a", "a.md"), record("b", "dir/b.md")])
        assert store.list_paths() == {"a.md", "dir/b.md"}
