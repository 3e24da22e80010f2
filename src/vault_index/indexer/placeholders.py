"""Placeholder tokens for text that is temporarily taken out of a string.

A placeholder is U+E000, a one-letter kind, an integer index and U+E001.
Both delimiters are Unicode private-use characters, so placeholders never
contain whitespace and never collide with Markdown syntax.

Private-use characters are still legal note text. Before placeholders are
inserted, every literal U+E000 is escaped as a placeholder of kind ``E``,
so each U+E000 in working text starts a token we created. ``substitute``
undoes one level of escaping in the same pass that restores placeholders.
"""

import re
from collections.abc import Callable, Mapping

OPEN = "\ue000"
CLOSE = "\ue001"
ESCAPE_KIND = "E"

PLACEHOLDER_PATTERN = re.compile(f"{OPEN}([A-Z])(\\d+){CLOSE}")


def make_placeholder(kind: str, index: int) -> str:
    return f"{OPEN}{kind}{index}{CLOSE}"


ESCAPED_OPEN = make_placeholder(ESCAPE_KIND, 0)


def escape(text: str) -> str:
    """Escape literal U+E000 characters so they cannot pass for placeholders."""
    return text.replace(OPEN, ESCAPED_OPEN)


def substitute(text: str, lookups: Mapping[str, Callable[[int], str]]) -> str:
    """
    Replace placeholders whose kind is in ``lookups`` and unescape ``E`` tokens.

    One left-to-right pass, so replacement text is never scanned again.
    Placeholders of other kinds are left alone.
    """

    def _replace(match: re.Match) -> str:
        kind = match.group(1)
        if kind == ESCAPE_KIND:
            return OPEN
        lookup = lookups.get(kind)
        if lookup is None:
            return match.group(0)
        return lookup(int(match.group(2)))

    return PLACEHOLDER_PATTERN.sub(_replace, text)


def find_indices(text: str, kind: str) -> list[int]:
    return [
        int(m.group(2)) for m in PLACEHOLDER_PATTERN.finditer(text) if m.group(1) == kind
    ]


def strip_placeholders(text: str) -> str:
    return PLACEHOLDER_PATTERN.sub("", text)
