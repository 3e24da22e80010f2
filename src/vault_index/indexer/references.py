"""Wiki-link and tag extraction.

Obsidian links look like ``[[Target]]``, ``[[Target|shown text]]``,
``[[Target#Heading]]`` or ``![[embed.png]]``. Tags are ``#word`` and may be
nested with slashes (``#project/alpha``).
"""

import re
from dataclasses import dataclass, field

from vault_index.config import DEFAULT_LINK_UNSAFE_CHARS
from vault_index.indexer.models import LinkRef, TagRef
from vault_index.indexer.placeholders import escape, make_placeholder, substitute

LINK_PATTERN = re.compile(r"(!?)\[\[([^\[\]\n]+)\]\]")
TAG_PATTERN = re.compile(r"(?<![\w#\[/&])#([\w-]+(?:/[\w-]+)*)")
WHITESPACE_RUN = re.compile(r"\s+")
FENCE_PATTERN = re.compile(r"^\s*(```|~~~)")

LINK_KIND = "L"
TAG_KIND = "T"


@dataclass
class ReferenceResult:
    """Links and tags of a text, plus the text with both replaced by placeholders."""

    links: list[LinkRef] = field(default_factory=list)
    tags: list[TagRef] = field(default_factory=list)
    text: str = ""


def _fenced_ranges(text: str) -> list[tuple[int, int]]:
    """Return (start, end) offsets of fenced code regions, fences included."""
    ranges: list[tuple[int, int]] = []
    offset = 0
    open_at: int | None = None
    for line in text.splitlines(keepends=True):
        if FENCE_PATTERN.match(line):
            if open_at is None:
                open_at = offset
            else:
                ranges.append((open_at, offset + len(line)))
                open_at = None
        offset += len(line)
    if open_at is not None:
        ranges.append((open_at, len(text)))
    return ranges


def _in_inline_code(text: str, position: int) -> bool:
    line_start = text.rfind("\n", 0, position) + 1
    return text.count("`", line_start, position) % 2 == 1


class ReferenceParser:
    """Extracts links and tags, optionally swapping them for placeholders."""

    def __init__(self, unsafe_chars: str = DEFAULT_LINK_UNSAFE_CHARS):
        self.unsafe_chars = unsafe_chars
        self._unsafe_pattern = (
            re.compile(f"[{re.escape(unsafe_chars)}]") if unsafe_chars else None
        )

    def normalize_target(self, raw: str) -> str:
        target = WHITESPACE_RUN.sub(" ", raw.strip())
        if self._unsafe_pattern is not None:
            target = self._unsafe_pattern.sub("-", target)
        return target

    def extract_links(self, text: str) -> list[LinkRef]:
        links: list[LinkRef] = []
        for match in LINK_PATTERN.finditer(text):
            inner = match.group(2)
            target_part, has_display, display = inner.partition("|")
            target, _, anchor = target_part.partition("#")
            links.append(
                LinkRef(
                    original=match.group(0),
                    target=self.normalize_target(target),
                    display_text=(display.strip() or None) if has_display else None,
                    anchor=anchor.strip() or None,
                    span=match.span(),
                    is_embed=match.group(1) == "!",
                )
            )
        return links

    def extract_tags(self, text: str) -> list[TagRef]:
        """
        Find inline tags outside code.

        A candidate is skipped when an odd number of backticks precede it on
        its line, or when it sits inside a fenced code block. Purely numeric
        names (``#123``) are not tags.
        """
        fenced = _fenced_ranges(text)
        links = [link.span for link in self.extract_links(text)]
        tags: list[TagRef] = []
        for match in TAG_PATTERN.finditer(text):
            start = match.start()
            name = match.group(1)
            if name.replace("/", "").isdigit():
                continue
            if any(lo <= start < hi for lo, hi in fenced):
                continue
            if any(lo <= start < hi for lo, hi in links):
                continue
            if _in_inline_code(text, start):
                continue
            segments = name.split("/")
            parents = tuple("/".join(segments[:i]) for i in range(1, len(segments)))
            tags.append(
                TagRef(
                    original=match.group(0),
                    name=name,
                    span=match.span(),
                    is_nested=len(segments) > 1,
                    parents=parents,
                )
            )
        return tags

    def parse(self, text: str) -> ReferenceResult:
        """Extract links and tags and replace each with an indexed placeholder."""
        links = self.extract_links(text)
        tags = self.extract_tags(text)

        spans: list[tuple[int, int, str]] = [
            (link.span[0], link.span[1], make_placeholder(LINK_KIND, i))
            for i, link in enumerate(links)
        ]
        spans.extend(
            (tag.span[0], tag.span[1], make_placeholder(TAG_KIND, i))
            for i, tag in enumerate(tags)
        )
        spans.sort()

        parts: list[str] = []
        cursor = 0
        for start, end, token in spans:
            parts.append(escape(text[cursor:start]))
            parts.append(token)
            cursor = end
        parts.append(escape(text[cursor:]))
        return ReferenceResult(links=links, tags=tags, text="".join(parts))


def restore_references(text: str, result: ReferenceResult) -> str:
    """Inverse of ReferenceParser.parse."""
    return substitute(
        text,
        {
            LINK_KIND: lambda i: result.links[i].original,
            TAG_KIND: lambda i: result.tags[i].original,
        },
    )


_default_parser = ReferenceParser()


def extract_links(text: str) -> list[LinkRef]:
    return _default_parser.extract_links(text)


def extract_tags(text: str) -> list[TagRef]:
    return _default_parser.extract_tags(text)


def link_targets(links: list[LinkRef] | tuple[LinkRef, ...]) -> list[str]:
    """Unique non-empty targets in first-seen order."""
    seen: dict[str, None] = {}
    for link in links:
        if link.target:
            seen.setdefault(link.target, None)
    return list(seen)


def all_tags(tags: list[TagRef] | tuple[TagRef, ...]) -> list[str]:
    """Tag names including the parents of nested tags, lowercased and sorted."""
    names: set[str] = set()
    for tag in tags:
        names.add(tag.name.lower())
        names.update(parent.lower() for parent in tag.parents)
    return sorted(names)
