"""Document chunker - splits parsed notes into token-bounded chunks.

Strategy:
1. Split by headings, keeping the preamble before the first heading
2. Keep a section whole when it fits the token budget
3. Otherwise pack paragraphs greedily, splitting oversized paragraphs
   between words
4. Code, tables, callouts, math, images and wiki-links are never cut

Chunk boundaries are chosen on a working copy of each section in which
preserved blocks and references are replaced by placeholders. Every size
check measures the restored text.
"""

import hashlib
import logging
import math
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

from vault_index.config import ChunkingConfig
from vault_index.indexer.models import (
    ChunkingResult,
    ChunkMetadata,
    ChunkType,
    DocumentChunk,
    ParsedDocument,
    PreservedBlock,
)
from vault_index.indexer.placeholders import strip_placeholders
from vault_index.indexer.preserver import ContentPreserver, blocks_in
from vault_index.indexer.references import ReferenceParser, restore_references
from vault_index.indexer.tokens import TokenEstimator, create_estimator, fits_within

logger = logging.getLogger(__name__)

PARAGRAPH_BREAK = re.compile(r"\n[ \t]*\n\s*")
HEADING_LINE = re.compile(r"^#{1,6}[ \t]+\S")
LIST_LINE = re.compile(r"^\s*(?:[-*+]|\d+[.)])\s+")
QUOTE_LINE = re.compile(r"^\s*>")

# Share of the overlap budget spent on words (roughly 0.75 words per token).
OVERLAP_WORDS_PER_TOKEN = 0.75

EMPTY_DOCUMENT_WARNING = "Document has no content to chunk"

Span = tuple[int, int]


@runtime_checkable
class Chunker(Protocol):
    """Protocol for chunking strategies."""

    def chunk(self, doc: ParsedDocument, source_file: str) -> ChunkingResult:
        ...


@dataclass
class Section:
    """A heading-delimited slice of the body."""

    start: int
    end: int
    header_path: list[str] = field(default_factory=list)
    title: str | None = None
    level: int | None = None  # None for the preamble or a heading-less body


@dataclass
class _Piece:
    """A chunk before ids and neighbours are assigned."""

    content: str
    span: Span
    section: Section
    blocks: list[PreservedBlock]
    residual: str
    overlap_chars: int = 0


@dataclass
class _WorkingSection:
    """Working copy of a section with placeholders in place."""

    original: str
    text: str
    restore: Callable[[str], str]
    blocks: list[PreservedBlock]
    unshield: Callable[[str], str]
    mostly_preserved: bool


def make_chunk_id(source_file: str, chunk_index: int) -> str:
    """Deterministic chunk id from the file path and the chunk position."""
    return hashlib.sha256(f"{source_file}#{chunk_index}".encode()).hexdigest()[:16]


def _trim(text: str, start: int, end: int) -> Span | None:
    while start < end and text[start].isspace():
        start += 1
    while end > start and text[end - 1].isspace():
        end -= 1
    return (start, end) if start < end else None


def split_sections(
    doc: ParsedDocument, split_by_headers: bool = True, include_headers: bool = True
) -> list[Section]:
    """
    Cut the body at heading boundaries.

    The header path of a section lists the headings it sits under. A
    heading closes every open heading of the same or deeper level.
    """
    body = doc.body
    if not split_by_headers or not doc.headings:
        return [Section(0, len(body))]

    sections: list[Section] = []
    first = doc.headings[0].position
    if body[:first].strip():
        sections.append(Section(0, first))

    stack: list[tuple[int, str]] = []
    for i, heading in enumerate(doc.headings):
        end = doc.headings[i + 1].position if i + 1 < len(doc.headings) else len(body)
        while stack and stack[-1][0] >= heading.level:
            stack.pop()
        path = [text for _, text in stack]
        if include_headers:
            path.append(heading.text)
        stack.append((heading.level, heading.text))
        sections.append(Section(heading.position, end, path, heading.text, heading.level))
    return sections


def detect_chunk_type(content: str, blocks: list[PreservedBlock], residual: str) -> ChunkType:
    """Classify a chunk by its dominant structure."""
    kinds = {b.kind for b in blocks if b.kind in ("code", "table", "callout")}
    lines = [line for line in residual.splitlines() if line.strip()]
    if lines and HEADING_LINE.match(lines[0]):
        lines = lines[1:]
    prose = "\n".join(lines).strip()

    if len(kinds) > 1 or (kinds and prose):
        return "mixed"
    if kinds:
        return next(iter(kinds))
    if HEADING_LINE.match(content.lstrip()):
        return "heading"
    if lines and all(LIST_LINE.match(line) for line in lines):
        return "list"
    if lines and all(QUOTE_LINE.match(line) for line in lines):
        return "quote"
    return "paragraph"


class HeaderBasedChunker:
    """
    Splits notes at headings, then paragraphs, then words.

    Args:
        config: Chunking settings
        estimator: Token estimator; built from the config when omitted
    """

    strategy = "header"

    def __init__(self, config: ChunkingConfig, estimator: TokenEstimator | None = None):
        self.config = config
        self.estimator = estimator or create_estimator(
            config.token_estimator, config.chars_per_token
        )
        self.preserver = ContentPreserver(
            kinds=config.preserved_kinds,
            min_length=config.min_preserved_length,
            preserved_ratio=config.preserved_ratio,
        )
        self.references = ReferenceParser()

    def chunk(self, doc: ParsedDocument, source_file: str) -> ChunkingResult:
        result = ChunkingResult(strategy=self.strategy)
        if not doc.body.strip():
            result.warnings.append(EMPTY_DOCUMENT_WARNING)
            logger.debug("%s: %s", source_file, EMPTY_DOCUMENT_WARNING)
            return result

        pieces: list[_Piece] = []
        for section in self._sections(doc):
            pieces.extend(self._chunk_section(doc, section, source_file, result.warnings))

        result.chunks = self._build_chunks(doc, pieces, source_file)
        result.total_tokens = sum(c.token_count for c in result.chunks)
        return result

    def _sections(self, doc: ParsedDocument) -> list[Section]:
        return split_sections(doc, self.config.split_by_headers, self.config.include_headers)

    # Working copy

    def _prepare(self, original: str) -> _WorkingSection:
        preserved = self.preserver.preserve(original)
        shielded = self.references.parse(preserved.text)

        def unshield(fragment: str) -> str:
            return restore_references(fragment, shielded)

        def restore(fragment: str) -> str:
            return self.preserver.restore(unshield(fragment), preserved.blocks)

        return _WorkingSection(
            original=original,
            text=shielded.text,
            restore=restore,
            blocks=preserved.blocks,
            unshield=unshield,
            mostly_preserved=self.preserver.is_mostly_preserved(original, preserved),
        )

    def _count(self, work: _WorkingSection, span: Span) -> int:
        return self.estimator.count(work.restore(work.text[span[0] : span[1]]))

    def _fits(self, work: _WorkingSection, span: Span, budget: int) -> bool:
        return fits_within(self.estimator, work.restore(work.text[span[0] : span[1]]), budget)

    # Splitting

    def _chunk_section(
        self,
        doc: ParsedDocument,
        section: Section,
        source_file: str,
        warnings: list[str],
    ) -> list[_Piece]:
        work = self._prepare(doc.body[section.start : section.end])
        whole = _trim(work.text, 0, len(work.text))
        if whole is None:
            return []

        max_tokens = self.config.max_tokens
        if self._fits(work, whole, max_tokens):
            spans = [whole]
        elif work.mostly_preserved:
            self._warn_oversized(work, whole, source_file, warnings)
            spans = [whole]
        else:
            budget = max(1, max_tokens - self.config.overlap_tokens)
            if self.config.split_by_paragraphs:
                spans = self._split_paragraphs(work, whole, budget, source_file, warnings)
            else:
                spans = self._split_words(work, whole, budget, source_file, warnings)

        pieces = [self._make_piece(work, span, section) for span in spans]
        if self.config.overlap_tokens > 0:
            self._apply_overlap(pieces)
        return pieces

    def _split_paragraphs(
        self,
        work: _WorkingSection,
        bounds: Span,
        budget: int,
        source_file: str,
        warnings: list[str],
    ) -> list[Span]:
        paragraphs: list[Span] = []
        cursor = bounds[0]
        for brk in PARAGRAPH_BREAK.finditer(work.text, bounds[0], bounds[1]):
            span = _trim(work.text, cursor, brk.start())
            if span:
                paragraphs.append(span)
            cursor = brk.end()
        span = _trim(work.text, cursor, bounds[1])
        if span:
            paragraphs.append(span)

        spans: list[Span] = []
        buffer: Span | None = None
        for paragraph in paragraphs:
            candidate = (buffer[0], paragraph[1]) if buffer else paragraph
            if self._fits(work, candidate, budget):
                buffer = candidate
                continue
            if buffer:
                spans.append(buffer)
                buffer = None
            if self._fits(work, paragraph, budget):
                buffer = paragraph
            else:
                spans.extend(self._split_words(work, paragraph, budget, source_file, warnings))
        if buffer:
            spans.append(buffer)
        return spans

    def _split_words(
        self,
        work: _WorkingSection,
        bounds: Span,
        budget: int,
        source_file: str,
        warnings: list[str],
    ) -> list[Span]:
        """
        Split at word boundaries.

        Each window starts at about ``budget * chars_per_token`` characters
        and shrinks one word at a time until the restored text fits. A
        single word that cannot fit becomes its own oversized piece.
        """
        text = work.text
        lo, hi = bounds
        window = max(1, int(budget * self.estimator.chars_per_token))

        def last_word_end(start: int, limit: int) -> int | None:
            for i in range(min(limit, hi), start, -1):
                if (i == hi or text[i].isspace()) and not text[i - 1].isspace():
                    return i
            return None

        def next_word_end(start: int) -> int:
            for i in range(start + 1, hi):
                if text[i].isspace():
                    return i
            return hi

        spans: list[Span] = []
        start = lo
        while start < hi:
            while start < hi and text[start].isspace():
                start += 1
            if start >= hi:
                break
            if self._fits(work, (start, hi), budget):
                spans.append((start, hi))
                break

            end = last_word_end(start, start + window) or next_word_end(start)
            while not self._fits(work, (start, end), budget):
                shorter = last_word_end(start, end - 1)
                if shorter is None:
                    self._warn_oversized(work, (start, end), source_file, warnings)
                    break
                end = shorter
            spans.append((start, end))
            start = end
        return spans

    def _warn_oversized(
        self, work: _WorkingSection, span: Span, source_file: str, warnings: list[str]
    ) -> None:
        tokens = self._count(work, span)
        message = (
            f"Oversized unit in {source_file}: {tokens} tokens exceeds "
            f"max_tokens={self.config.max_tokens}"
        )
        warnings.append(message)
        logger.warning(message)

    def _make_piece(self, work: _WorkingSection, span: Span, section: Section) -> _Piece:
        fragment = work.text[span[0] : span[1]]
        content = work.restore(fragment)
        start = section.start + len(work.restore(work.text[: span[0]]))
        unshielded = work.unshield(fragment)
        return _Piece(
            content=content,
            span=(start, start + len(content)),
            section=section,
            blocks=blocks_in(unshielded, work.blocks),
            residual=strip_placeholders(unshielded),
        )

    def _apply_overlap(self, pieces: list[_Piece]) -> None:
        """Prepend the tail of each piece to the next one, within budget."""
        max_tokens = self.config.max_tokens
        wanted = math.ceil(self.config.overlap_tokens * OVERLAP_WORDS_PER_TOKEN)
        originals = [piece.content for piece in pieces]
        for i in range(1, len(pieces)):
            words = originals[i - 1].split()
            n = min(len(words), wanted)
            while n > 0:
                prefix = " ".join(words[-n:])
                combined = f"{prefix} {originals[i]}"
                if self.estimator.count(combined) <= max_tokens:
                    pieces[i].content = combined
                    pieces[i].overlap_chars = len(prefix) + 1
                    break
                n -= 1

    # Assembly

    def _build_chunks(
        self, doc: ParsedDocument, pieces: list[_Piece], source_file: str
    ) -> list[DocumentChunk]:
        ids = [make_chunk_id(source_file, i) for i in range(len(pieces))]
        meta = doc.metadata
        chunks: list[DocumentChunk] = []
        for i, piece in enumerate(pieces):
            lo, hi = piece.span
            targets: dict[str, None] = {}
            for link in doc.links:
                if lo <= link.span[0] and link.span[1] <= hi and link.target:
                    targets.setdefault(link.target, None)
            kinds = {block.kind for block in piece.blocks}
            chunks.append(
                DocumentChunk(
                    id=ids[i],
                    content=piece.content,
                    token_count=self.estimator.count(piece.content),
                    source_file=source_file,
                    chunk_index=i,
                    span=piece.span,
                    header_path=list(piece.section.header_path),
                    section_title=piece.section.title,
                    prev_id=ids[i - 1] if i > 0 else None,
                    next_id=ids[i + 1] if i + 1 < len(ids) else None,
                    overlap_chars=piece.overlap_chars,
                    metadata=ChunkMetadata(
                        title=meta.title,
                        author=meta.author,
                        tags=list(meta.tags),
                        date=meta.date,
                        type=detect_chunk_type(piece.content, piece.blocks, piece.residual),
                        heading_level=piece.section.level,
                        has_code="code" in kinds,
                        has_table="table" in kinds,
                        has_callout="callout" in kinds,
                        has_links=bool(targets),
                        link_targets=list(targets),
                        block_summary=ContentPreserver.summarize(piece.blocks),
                        custom=dict(meta.custom),
                    ),
                )
            )
        return chunks


class FixedSizeChunker(HeaderBasedChunker):
    """Ignores document structure and packs words up to the token budget.

    Preserved blocks and wiki-links are still never cut.
    """

    strategy = "fixed"

    def _sections(self, doc: ParsedDocument) -> list[Section]:
        return [Section(0, len(doc.body))]

    def _chunk_section(
        self,
        doc: ParsedDocument,
        section: Section,
        source_file: str,
        warnings: list[str],
    ) -> list[_Piece]:
        work = self._prepare(doc.body)
        whole = _trim(work.text, 0, len(work.text))
        if whole is None:
            return []
        budget = max(1, self.config.max_tokens - self.config.overlap_tokens)
        spans = self._split_words(work, whole, budget, source_file, warnings)
        pieces = [self._make_piece(work, span, section) for span in spans]
        if self.config.overlap_tokens > 0 and len(pieces) > 1:
            self._apply_overlap(pieces)
        return pieces


def create_chunker(config: ChunkingConfig) -> Chunker:
    """Build the chunker selected by ``config.strategy``."""
    if config.strategy == "fixed":
        return FixedSizeChunker(config)
    return HeaderBasedChunker(config)
