"""Parser for YAML frontmatter, headings and document metadata."""

import logging
import math
import re
from datetime import date, datetime
from typing import Any

import yaml

from vault_index.indexer.models import DocumentMetadata, Heading, ParsedDocument
from vault_index.indexer.references import ReferenceParser, all_tags

logger = logging.getLogger(__name__)

FRONTMATTER_PATTERN = re.compile(
    r"\A---[ \t]*\r?\n(.*?)^---[ \t]*\r?$\n?", re.DOTALL | re.MULTILINE
)
HEADING_PATTERN = re.compile(r"^(#{1,6})[ \t]+(.+?)(?:[ \t]+#+)?[ \t]*$")
FENCE_PATTERN = re.compile(r"^\s*(```|~~~)")
ANCHOR_STRIP_PATTERN = re.compile(r"[^\w\s-]")
TAG_SPLIT_PATTERN = re.compile(r"[,\s]+")
WORD_PATTERN = re.compile(r"\b\w+\b")
PLAIN_TEXT_PATTERNS = [
    (re.compile(r"^[ \t]*(```|~~~)[\s\S]*?^[ \t]*\1[ \t]*$", re.MULTILINE), " "),
    (re.compile(r"!?\[\[([^\]|]+)\|([^\]]+)\]\]"), r"\2"),
    (re.compile(r"!?\[\[([^\]]+)\]\]"), r"\1"),
    (re.compile(r"!?\[([^\]]*)\]\([^)]*\)"), r"\1"),
    (re.compile(r"[*_~`>#|]"), " "),
]

WORDS_PER_MINUTE = 200

TITLE_FIELDS = ("title", "name", "subject", "heading")
DESCRIPTION_FIELDS = ("description", "summary", "excerpt", "abstract")
DATE_FIELDS = ("date", "created", "updated", "modified", "published")
AUTHOR_FIELDS = ("author", "authors", "creator", "by")
TAG_FIELDS = ("tags", "tag", "categories", "category")
HIDDEN_FIELDS = ("hidden", "private", "draft", "unpublished")
HIDDEN_TAGS = frozenset({"hidden", "private", "draft"})
KNOWN_FIELDS = frozenset(
    TITLE_FIELDS + DESCRIPTION_FIELDS + DATE_FIELDS + AUTHOR_FIELDS + TAG_FIELDS
    + HIDDEN_FIELDS
)


def parse_frontmatter(
    content: str, file_path: str = "<string>"
) -> tuple[dict[str, Any], str, list[str]]:
    """
    Split YAML frontmatter from markdown content.

    Never raises. When the frontmatter is not valid YAML, or is not a
    mapping, the whole input is returned as the body and a warning is
    recorded.

    Args:
        content: The full markdown content
        file_path: Used in log messages only

    Returns:
        Tuple of (frontmatter, body, warnings)
    """
    match = FRONTMATTER_PATTERN.match(content)
    if not match:
        return {}, content, []

    try:
        raw = yaml.safe_load(match.group(1))
    except yaml.YAMLError as e:
        warning = f"Invalid YAML frontmatter in {file_path}: {e}"
        logger.warning("Invalid YAML frontmatter in %s: %s", file_path, e)
        return {}, content, [warning]

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        warning = f"Frontmatter in {file_path} is not a mapping"
        logger.warning("Frontmatter in %s is not a mapping, treating it as body", file_path)
        return {}, content, [warning]

    body = content[match.end() :].lstrip("\n")
    return {str(k): v for k, v in raw.items()}, body, []


def strip_frontmatter(content: str) -> str:
    """Remove YAML frontmatter from content."""
    return parse_frontmatter(content)[1]


def normalize_tag(tag: str) -> str:
    return tag.strip().lstrip("#").strip().lower().replace(" ", "-")


def _first_string(frontmatter: dict[str, Any], fields: tuple[str, ...]) -> str | None:
    for name in fields:
        value = frontmatter.get(name)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def extract_title(frontmatter: dict[str, Any]) -> str | None:
    return _first_string(frontmatter, TITLE_FIELDS)


def extract_description(frontmatter: dict[str, Any]) -> str | None:
    return _first_string(frontmatter, DESCRIPTION_FIELDS)


def extract_author(frontmatter: dict[str, Any]) -> str | None:
    """Author as a string; lists yield their first entry, mappings their ``name``."""
    for name in AUTHOR_FIELDS:
        value = frontmatter.get(name)
        if isinstance(value, list):
            value = value[0] if value else None
        if isinstance(value, dict):
            value = value.get("name")
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def _to_iso(value: Any) -> str | None:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, str) and value.strip():
        text = value.strip()
        try:
            return date.fromisoformat(text).isoformat()
        except ValueError:
            pass
        try:
            return datetime.fromisoformat(text.replace("Z", "+00:00")).isoformat()
        except ValueError:
            return None
    return None


def extract_date(frontmatter: dict[str, Any]) -> str | None:
    for name in DATE_FIELDS:
        iso = _to_iso(frontmatter.get(name))
        if iso:
            return iso
    return None


def extract_frontmatter_tags(frontmatter: dict[str, Any]) -> list[str]:
    tags: dict[str, None] = {}
    for name in TAG_FIELDS:
        value = frontmatter.get(name)
        if isinstance(value, str):
            candidates = TAG_SPLIT_PATTERN.split(value)
        elif isinstance(value, list):
            candidates = [str(v) for v in value if v is not None]
        else:
            continue
        for candidate in candidates:
            tag = normalize_tag(candidate)
            if tag:
                tags.setdefault(tag, None)
    return list(tags)


def is_hidden(frontmatter: dict[str, Any]) -> bool:
    for name in HIDDEN_FIELDS:
        value = frontmatter.get(name)
        if value is True or value == 1:
            return True
        if isinstance(value, str) and value.strip().lower() == "true":
            return True
    return any(tag in HIDDEN_TAGS for tag in extract_frontmatter_tags(frontmatter))


def _jsonable(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_jsonable(v) for v in value]
    return value


def extract_custom_fields(
    frontmatter: dict[str, Any], requested: tuple[str, ...] = ()
) -> dict[str, Any]:
    """Fields no helper consumes, plus any explicitly requested ones."""
    custom = {k: _jsonable(v) for k, v in frontmatter.items() if k not in KNOWN_FIELDS}
    for name in requested:
        if name in frontmatter:
            custom[name] = _jsonable(frontmatter[name])
    return custom


def make_anchor(text: str) -> str:
    anchor = ANCHOR_STRIP_PATTERN.sub("", text.lower())
    anchor = re.sub(r"\s+", "-", anchor.strip())
    return re.sub(r"-+", "-", anchor).strip("-")


def extract_headings(body: str) -> list[Heading]:
    """ATX headings outside fenced code, with character offsets into ``body``."""
    headings: list[Heading] = []
    in_fence = False
    offset = 0
    for line_no, line in enumerate(body.splitlines(keepends=True)):
        if FENCE_PATTERN.match(line):
            in_fence = not in_fence
        elif not in_fence:
            match = HEADING_PATTERN.match(line.rstrip("\r\n"))
            if match:
                text = match.group(2).strip()
                headings.append(
                    Heading(
                        level=len(match.group(1)),
                        text=text,
                        anchor=make_anchor(text),
                        position=offset,
                        line=line_no,
                    )
                )
        offset += len(line)
    return headings


def plain_text(body: str) -> str:
    """Body with code removed and link and emphasis markup flattened."""
    text = body
    for pattern, replacement in PLAIN_TEXT_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


def parse_document(
    content: str,
    file_path: str = "<string>",
    custom_fields: tuple[str, ...] = (),
    reference_parser: ReferenceParser | None = None,
) -> ParsedDocument:
    """
    Parse a raw note into a ParsedDocument.

    Never raises; recoverable problems end up in ``warnings``.
    """
    frontmatter, body, warnings = parse_frontmatter(content, file_path)
    references = (reference_parser or ReferenceParser()).parse(body)
    headings = extract_headings(body)

    tags = set(all_tags(references.tags))
    for tag in extract_frontmatter_tags(frontmatter):
        segments = tag.split("/")
        tags.update("/".join(segments[:i]) for i in range(1, len(segments) + 1))

    title = extract_title(frontmatter)
    if title is None:
        title = next((h.text for h in headings if h.level == 1), None)

    word_count = len(WORD_PATTERN.findall(plain_text(body)))
    metadata = DocumentMetadata(
        title=title,
        description=extract_description(frontmatter),
        author=extract_author(frontmatter),
        date=extract_date(frontmatter),
        tags=sorted(tags),
        word_count=word_count,
        reading_time=math.ceil(word_count / WORDS_PER_MINUTE),
        is_hidden=is_hidden(frontmatter),
        custom=extract_custom_fields(frontmatter, custom_fields),
    )

    return ParsedDocument(
        frontmatter=frontmatter,
        body=body,
        links=tuple(references.links),
        tags=tuple(references.tags),
        headings=tuple(headings),
        metadata=metadata,
        warnings=tuple(warnings),
    )
