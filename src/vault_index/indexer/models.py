"""Data models for the indexer."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

ChangeStatus = Literal["added", "modified", "deleted", "renamed"]
BlockKind = Literal["code", "table", "callout", "math", "image"]
ChunkType = Literal[
    "paragraph", "heading", "code", "table", "callout", "list", "quote", "mixed"
]
ErrorStage = Literal["parsing", "chunking", "embedding", "storage"]


@dataclass(frozen=True)
class LinkRef:
    """A wiki-link or embed found in a note body."""

    original: str  # Exact source text, e.g. "[[Note#Part|shown]]"
    target: str  # Normalized target note name
    display_text: str | None = None
    anchor: str | None = None
    span: tuple[int, int] = (0, 0)
    is_embed: bool = False


@dataclass(frozen=True)
class TagRef:
    """An inline #tag."""

    original: str  # Includes the leading "#"
    name: str
    span: tuple[int, int] = (0, 0)
    is_nested: bool = False
    parents: tuple[str, ...] = ()  # "a/b/c" -> ("a", "a/b")


@dataclass(frozen=True)
class Heading:
    """An ATX heading in the body."""

    level: int
    text: str
    anchor: str
    position: int  # Character offset of the heading line in the body
    line: int = 0


@dataclass
class DocumentMetadata:
    """Document-level metadata derived from front matter and body."""

    title: str | None = None
    description: str | None = None
    author: str | None = None
    date: str | None = None  # ISO-8601
    tags: list[str] = field(default_factory=list)
    word_count: int = 0
    reading_time: int = 0  # Minutes
    is_hidden: bool = False
    custom: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ParsedDocument:
    """Result of parsing one raw note. Never mutated after creation."""

    frontmatter: dict[str, Any]
    body: str
    links: tuple[LinkRef, ...] = ()
    tags: tuple[TagRef, ...] = ()
    headings: tuple[Heading, ...] = ()
    metadata: DocumentMetadata = field(default_factory=DocumentMetadata)
    warnings: tuple[str, ...] = ()


@dataclass(frozen=True)
class PreservedBlock:
    """A span of text that must not be split."""

    id: int
    kind: BlockKind
    text: str
    span: tuple[int, int]
    attrs: dict[str, Any] = field(default_factory=dict)


@dataclass
class ChunkMetadata:
    """Per-chunk metadata stored alongside the vector."""

    title: str | None = None
    author: str | None = None
    tags: list[str] = field(default_factory=list)
    date: str | None = None
    type: ChunkType = "paragraph"
    heading_level: int | None = None
    has_code: bool = False
    has_table: bool = False
    has_callout: bool = False
    has_links: bool = False
    link_targets: list[str] = field(default_factory=list)
    block_summary: dict[str, int] = field(default_factory=dict)
    custom: dict[str, Any] = field(default_factory=dict)


@dataclass
class DocumentChunk:
    """A token-bounded piece of a note."""

    id: str
    content: str
    token_count: int
    source_file: str
    chunk_index: int
    span: tuple[int, int]  # Offsets into the body, overlap excluded
    header_path: list[str] = field(default_factory=list)
    section_title: str | None = None
    prev_id: str | None = None
    next_id: str | None = None
    metadata: ChunkMetadata = field(default_factory=ChunkMetadata)
    overlap_chars: int = 0  # Length of the prefix copied from the previous chunk


@dataclass
class ChunkingResult:
    """Chunks produced for one document."""

    chunks: list[DocumentChunk] = field(default_factory=list)
    total_tokens: int = 0
    warnings: list[str] = field(default_factory=list)
    strategy: str = ""


@dataclass
class ChunkRecord:
    """A chunk as handed to the chunk store."""

    id: str
    content: str
    vector: list[float] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class FileChange:
    """A file-level change between two states of the vault."""

    path: str
    status: ChangeStatus
    old_path: str | None = None  # Only for renames
    content_hash: str | None = None  # Absent for deletions


@dataclass
class VersionInfo:
    """State persisted after a successful indexing run."""

    last_snapshot_id: str
    indexed_at: datetime
    file_hashes: dict[str, str] = field(default_factory=dict)
    total_documents: int = 0
    total_chunks: int = 0
    uncommitted_paths: list[str] = field(default_factory=list)
    pending_deletions: list[str] = field(default_factory=list)  # Removal failed, retry next run


@dataclass
class ChangeSummary:
    """Counts of file changes applied by an incremental run."""

    added: int = 0
    modified: int = 0
    deleted: int = 0
    renamed: int = 0

    @property
    def total(self) -> int:
        return self.added + self.modified + self.deleted + self.renamed


@dataclass
class IndexingError:
    """A failure confined to one file."""

    file: str
    error: str
    stage: ErrorStage
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class IndexingResult:
    """Outcome of a full indexing run."""

    success: bool = True
    processed_files: int = 0
    total_chunks: int = 0
    skipped_files: dict[str, str] = field(default_factory=dict)  # path -> reason
    removed_files: list[str] = field(default_factory=list)
    errors: list[IndexingError] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    processing_time: float = 0.0  # Seconds
    cancelled: bool = False
    aborted: bool = False


@dataclass
class IncrementalResult(IndexingResult):
    """Outcome of an incremental run."""

    changes: ChangeSummary = field(default_factory=ChangeSummary)
    version_info: VersionInfo | None = None
    full_reindex_triggered: bool = False
