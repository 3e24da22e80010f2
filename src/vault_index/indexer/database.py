"""SQLite chunk store.

Holds one row per chunk: its text, its embedding vector and its metadata.
The store is disposable: a full run regenerates it from the vault.
"""

import json
import re
import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from vault_index.errors import StorageError
from vault_index.indexer.models import ChunkRecord

SCHEMA_VERSION = "1.0"

SCHEMA_SQL = """
-- vault-index chunk store v1.0

PRAGMA journal_mode = WAL;

CREATE TABLE IF NOT EXISTS chunks (
    id          TEXT PRIMARY KEY,
    file_path   TEXT NOT NULL,
    chunk_index INTEGER NOT NULL DEFAULT 0,
    content     TEXT NOT NULL,
    vector      TEXT NOT NULL,
    metadata    TEXT NOT NULL,
    updated_at  TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE INDEX IF NOT EXISTS idx_chunks_file_path ON chunks(file_path);
CREATE INDEX IF NOT EXISTS idx_chunks_file_order ON chunks(file_path, chunk_index);

-- Metadata table for store versioning
CREATE TABLE IF NOT EXISTS meta (
    key   TEXT PRIMARY KEY,
    value TEXT
);

INSERT OR REPLACE INTO meta (key, value) VALUES ('schema_version', '1.0');
INSERT OR IGNORE INTO meta (key, value) VALUES ('created_at', datetime('now'));
"""

# Metadata fields stored as real columns
COLUMN_FIELDS = {"file_path": "file_path", "chunk_index": "chunk_index"}
FIELD_NAME_PATTERN = re.compile(r"^\w+$")


class SQLiteChunkStore:
    """Chunk store backed by a single SQLite file.

    Thread Safety:
        Each thread gets its own connection; writes are serialized by a lock.
    """

    def __init__(self, db_path: Path):
        """Initialize database connection."""
        self.db_path = db_path
        self._local = threading.local()
        self._write_lock = threading.Lock()
        self._initialized = False

    def _get_connection(self) -> sqlite3.Connection:
        """Get thread-local database connection."""
        if not hasattr(self._local, "conn") or self._local.conn is None:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._local.conn = sqlite3.connect(str(self.db_path))
            self._local.conn.row_factory = sqlite3.Row
        return self._local.conn

    @contextmanager
    def _read_cursor(self) -> Iterator[sqlite3.Cursor]:
        """Get a cursor for read operations."""
        self._ensure_initialized()
        conn = self._get_connection()
        cursor = conn.cursor()
        try:
            yield cursor
        except sqlite3.Error as e:
            raise StorageError(f"Chunk store read failed: {e}") from e
        finally:
            cursor.close()

    @contextmanager
    def _write_cursor(self) -> Iterator[sqlite3.Cursor]:
        """Get a cursor for write operations with locking."""
        self._ensure_initialized()
        with self._write_lock:
            conn = self._get_connection()
            cursor = conn.cursor()
            try:
                yield cursor
                conn.commit()
            except sqlite3.Error as e:
                conn.rollback()
                raise StorageError(f"Chunk store write failed: {e}") from e
            except Exception:
                conn.rollback()
                raise
            finally:
                cursor.close()

    def initialize(self) -> None:
        """Initialize the database schema."""
        with self._write_lock:
            conn = self._get_connection()
            conn.executescript(SCHEMA_SQL)
            conn.commit()
        self._initialized = True

    def _ensure_initialized(self) -> None:
        if not self._initialized:
            self.initialize()

    def close(self) -> None:
        """Close the database connection."""
        if hasattr(self._local, "conn") and self._local.conn:
            self._local.conn.close()
            self._local.conn = None

    def clear(self) -> None:
        """Remove every chunk."""
        with self._write_cursor() as cursor:
            cursor.execute("DELETE FROM chunks")

    # ChunkStore operations

    def upsert(self, records: list[ChunkRecord]) -> list[str]:
        """Insert or replace records; returns their ids."""
        rows = []
        for record in records:
            file_path = record.metadata.get("file_path")
            if not file_path:
                raise StorageError(f"Chunk {record.id} has no file_path metadata")
            rows.append(
                (
                    record.id,
                    file_path,
                    int(record.metadata.get("chunk_index", 0)),
                    record.content,
                    json.dumps(record.vector),
                    json.dumps(record.metadata, default=str),
                )
            )
        with self._write_cursor() as cursor:
            cursor.executemany(
                """INSERT INTO chunks (id, file_path, chunk_index, content, vector, metadata)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    file_path = excluded.file_path,
                    chunk_index = excluded.chunk_index,
                    content = excluded.content,
                    vector = excluded.vector,
                    metadata = excluded.metadata,
                    updated_at = datetime('now')""",
                rows,
            )
        return [record.id for record in records]

    def delete_by_ids(self, ids: list[str]) -> int:
        if not ids:
            return 0
        with self._write_cursor() as cursor:
            cursor.executemany("DELETE FROM chunks WHERE id = ?", [(i,) for i in ids])
            return cursor.rowcount if cursor.rowcount >= 0 else len(ids)

    def query_by_metadata_field(
        self, field: str, value: Any, limit: int | None = None
    ) -> list[ChunkRecord]:
        """
        Records whose metadata ``field`` equals ``value``.

        ``file_path`` and ``chunk_index`` are indexed columns; any other
        field is looked up inside the metadata JSON.
        """
        if field in COLUMN_FIELDS:
            where, params = f"{COLUMN_FIELDS[field]} = ?", [value]
        elif FIELD_NAME_PATTERN.match(field):
            if isinstance(value, bool):
                value = int(value)
            where, params = "json_extract(metadata, ?) = ?", [f"$.{field}", value]
        else:
            raise ValueError(f"Invalid metadata field name: {field!r}")

        query = f"SELECT * FROM chunks WHERE {where} ORDER BY file_path, chunk_index"
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)
        with self._read_cursor() as cursor:
            cursor.execute(query, params)
            return [self._row_to_record(row) for row in cursor.fetchall()]

    def count(self) -> int:
        with self._read_cursor() as cursor:
            cursor.execute("SELECT COUNT(*) FROM chunks")
            return cursor.fetchone()[0]

    # Helpers

    def get(self, chunk_id: str) -> ChunkRecord | None:
        with self._read_cursor() as cursor:
            cursor.execute("SELECT * FROM chunks WHERE id = ?", (chunk_id,))
            row = cursor.fetchone()
            return self._row_to_record(row) if row else None

    def list_paths(self) -> set[str]:
        """Distinct file paths that have at least one chunk."""
        with self._read_cursor() as cursor:
            cursor.execute("SELECT DISTINCT file_path FROM chunks")
            return {row["file_path"] for row in cursor.fetchall()}

    def _row_to_record(self, row: sqlite3.Row) -> ChunkRecord:
        return ChunkRecord(
            id=row["id"],
            content=row["content"],
            vector=json.loads(row["vector"]),
            metadata=json.loads(row["metadata"]),
        )
