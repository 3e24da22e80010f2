"""Protection of content that must never be split across chunks.

Code blocks, tables, callouts, math and image embeds are swapped for
placeholders before chunk boundaries are chosen and swapped back before a
chunk is emitted.
"""

import logging
import re
from collections import Counter
from dataclasses import dataclass, field
from typing import Any

from vault_index.indexer.models import BlockKind, PreservedBlock
from vault_index.indexer.placeholders import (
    escape,
    find_indices,
    make_placeholder,
    strip_placeholders,
    substitute,
)

logger = logging.getLogger(__name__)

BLOCK_KIND = "B"

IMAGE_EXTENSIONS = r"(?:png|jpe?g|gif|svg|webp)"

FENCED_CODE_PATTERN = re.compile(
    r"^[ \t]*(`{3,}|~{3,})[^\n]*\n[\s\S]*?^[ \t]*\1[ \t]*$", re.MULTILINE
)
INLINE_CODE_PATTERN = re.compile(r"`[^`\n]+`")
TABLE_PATTERN = re.compile(
    r"^[ \t]*\|.*\|[ \t]*\n"  # header row
    r"[ \t]*\|[ \t:|-]*-[ \t:|-]*$"  # separator row
    r"(?:\n[ \t]*\|.*)*",  # body rows
    re.MULTILINE,
)
CALLOUT_PATTERN = re.compile(r"^>[ \t]*\[![\w-]+\][^\n]*(?:\n>[^\n]*)*", re.MULTILINE)
MATH_PATTERN = re.compile(r"\$\$[\s\S]+?\$\$|\\\[[\s\S]+?\\\]")
IMAGE_PATTERN = re.compile(
    rf"!?\[\[[^\]\n]*?\.{IMAGE_EXTENSIONS}(?:[|#][^\]\n]*)?\]\]"
    rf"|!?\[[^\]\n]*\]\([^)\n]*?\.{IMAGE_EXTENSIONS}[^)\n]*\)",
    re.IGNORECASE,
)

FENCE_INFO_PATTERN = re.compile(r"^[ \t]*(?:`{3,}|~{3,})[ \t]*([\w+#.-]+)")
CALLOUT_TYPE_PATTERN = re.compile(r"\[!([\w-]+)\]")
WIKI_IMAGE_PATTERN = re.compile(r"\[\[([^|#\]]+)")
MARKDOWN_IMAGE_PATTERN = re.compile(r"\[([^\]]*)\]\(([^)]*)\)")

# Detection order matters: earlier kinds claim their spans first.
DETECTORS: list[tuple[BlockKind, re.Pattern]] = [
    ("code", FENCED_CODE_PATTERN),
    ("code", INLINE_CODE_PATTERN),
    ("table", TABLE_PATTERN),
    ("callout", CALLOUT_PATTERN),
    ("math", MATH_PATTERN),
    ("image", IMAGE_PATTERN),
]

ALL_KINDS: frozenset[str] = frozenset({"code", "table", "callout", "math", "image"})


@dataclass
class PreservationResult:
    """Working text with placeholders, and the blocks they stand for."""

    text: str
    blocks: list[PreservedBlock] = field(default_factory=list)


def _block_attrs(kind: BlockKind, text: str) -> dict[str, Any]:
    if kind == "code":
        if text.startswith("`") and not text.startswith("```"):
            return {"inline": True}
        match = FENCE_INFO_PATTERN.match(text)
        return {"inline": False, "language": match.group(1) if match else None}
    if kind == "table":
        lines = [line for line in text.splitlines() if line.strip()]
        header = lines[0].strip().strip("|")
        return {"rows": max(len(lines) - 2, 0), "columns": len(header.split("|"))}
    if kind == "callout":
        match = CALLOUT_TYPE_PATTERN.search(text)
        return {"callout_type": match.group(1).lower() if match else None}
    if kind == "math":
        return {"display": True}
    if kind == "image":
        wiki = WIKI_IMAGE_PATTERN.search(text)
        if wiki and "[[" in text:
            return {"file_name": wiki.group(1).strip()}
        md = MARKDOWN_IMAGE_PATTERN.search(text)
        if md:
            return {"alt_text": md.group(1), "url": md.group(2)}
    return {}


class ContentPreserver:
    """
    Swaps preservable content for placeholders and back.

    Args:
        kinds: Block kinds to detect. Defaults to all of them.
        min_length: Matches shorter than this stay in the working text.
        preserved_ratio: Threshold used by is_mostly_preserved.
    """

    def __init__(
        self,
        kinds: frozenset[str] | set[str] | None = None,
        min_length: int = 10,
        preserved_ratio: float = 0.2,
    ):
        self.kinds = frozenset(kinds) if kinds is not None else ALL_KINDS
        unknown = self.kinds - ALL_KINDS
        if unknown:
            raise ValueError(f"Unknown block kinds: {', '.join(sorted(unknown))}")
        self.min_length = min_length
        self.preserved_ratio = preserved_ratio

    def preserve(self, text: str) -> PreservationResult:
        blocks: dict[int, PreservedBlock] = {}
        next_id = 0

        def _restore(fragment: str) -> str:
            return substitute(fragment, {BLOCK_KIND: lambda i: blocks[i].text})

        working = escape(text)
        for kind, pattern in DETECTORS:
            if kind not in self.kinds:
                continue
            source = working

            def _claim(match: re.Match) -> str:
                nonlocal next_id
                raw = match.group(0)
                if len(raw) < self.min_length:
                    return raw
                original = _restore(raw)
                # A block that encloses earlier placeholders absorbs them.
                absorbed.update(find_indices(raw, BLOCK_KIND))
                start = len(_restore(source[: match.start()]))
                blocks[next_id] = PreservedBlock(
                    id=next_id,
                    kind=kind,
                    text=original,
                    span=(start, start + len(original)),
                    attrs=_block_attrs(kind, original),
                )
                next_id += 1
                return make_placeholder(BLOCK_KIND, next_id - 1)

            absorbed: set[int] = set()
            working = pattern.sub(_claim, source)
            for inner in absorbed:
                del blocks[inner]

        ordered = sorted(blocks.values(), key=lambda b: b.span[0])
        if ordered:
            logger.debug("Preserved %d blocks: %s", len(ordered), self.summarize(ordered))
        return PreservationResult(text=working, blocks=ordered)

    def restore(self, text: str, blocks: list[PreservedBlock]) -> str:
        by_id = {block.id: block.text for block in blocks}
        return substitute(text, {BLOCK_KIND: by_id.__getitem__})

    def is_mostly_preserved(self, original: str, result: PreservationResult) -> bool:
        """True when less than ``preserved_ratio`` of the text is ordinary prose."""
        if not result.blocks or not original.strip():
            return False
        residual = strip_placeholders(result.text).strip()
        return len(residual) < len(original.strip()) * self.preserved_ratio

    def has_preserved_content(self, text: str) -> bool:
        return any(
            kind in self.kinds and pattern.search(text) for kind, pattern in DETECTORS
        )

    @staticmethod
    def summarize(blocks: list[PreservedBlock]) -> dict[str, int]:
        return dict(Counter(block.kind for block in blocks))


def blocks_in(text: str, blocks: list[PreservedBlock]) -> list[PreservedBlock]:
    """Blocks whose placeholder occurs in ``text``."""
    present = set(find_indices(text, BLOCK_KIND))
    return [block for block in blocks if block.id in present]
