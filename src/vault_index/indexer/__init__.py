"""
Indexer module for vault-index.

This module turns the notes of an Obsidian-style vault into chunk records
with embeddings, and keeps the chunk store in sync as the vault changes.
The vault is the source of truth; the store can always be rebuilt.
"""

from vault_index.indexer.chunker import FixedSizeChunker, HeaderBasedChunker, create_chunker
from vault_index.indexer.database import SQLiteChunkStore
from vault_index.indexer.embeddings import HashEmbedding, HttpEmbedding, create_embedder
from vault_index.indexer.history import GitHistory
from vault_index.indexer.indexer import Indexer
from vault_index.indexer.models import (
    DocumentChunk,
    FileChange,
    IncrementalResult,
    IndexingResult,
    ParsedDocument,
    VersionInfo,
)
from vault_index.indexer.parser import parse_document, parse_frontmatter
from vault_index.indexer.version import VersionTracker
from vault_index.indexer.walker import FileInfo, LocalFileSystem, walk_vault

__all__ = [
    "DocumentChunk",
    "FileChange",
    "FileInfo",
    "FixedSizeChunker",
    "GitHistory",
    "HashEmbedding",
    "HeaderBasedChunker",
    "HttpEmbedding",
    "IncrementalResult",
    "Indexer",
    "IndexingResult",
    "LocalFileSystem",
    "ParsedDocument",
    "SQLiteChunkStore",
    "VersionInfo",
    "VersionTracker",
    "create_chunker",
    "create_embedder",
    "parse_document",
    "parse_frontmatter",
    "walk_vault",
]
