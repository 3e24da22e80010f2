"""Token estimation strategies.

All estimators are approximations of a model tokenizer. Chunk budgets are
checked against whichever estimator the configuration selects.
"""

import math
import re
from typing import Protocol, runtime_checkable

DEFAULT_CHARS_PER_TOKEN = 4.0

WORD_PATTERN = re.compile(r"\S+")
PUNCTUATION_PATTERN = re.compile(r"[^\w\s]")
GPT_PIECE_PATTERN = re.compile(r"\w+|[^\w\s]")


@runtime_checkable
class TokenEstimator(Protocol):
    """Estimates how many model tokens a piece of text costs."""

    @property
    def chars_per_token(self) -> float:
        """Average characters per token, used to size split windows."""
        ...

    def count(self, text: str) -> int:
        ...


class CharRatioEstimator:
    """ceil(len(text) / chars_per_token)."""

    name = "simple"

    def __init__(self, chars_per_token: float = DEFAULT_CHARS_PER_TOKEN):
        if chars_per_token <= 0:
            raise ValueError(f"chars_per_token must be positive, got {chars_per_token}")
        self._chars_per_token = chars_per_token

    @property
    def chars_per_token(self) -> float:
        return self._chars_per_token

    def count(self, text: str) -> int:
        if not text:
            return 0
        return math.ceil(len(text) / self._chars_per_token)


class WhitespaceEstimator:
    """One token per whitespace-separated word plus 30% of punctuation marks."""

    name = "whitespace"

    def __init__(self, chars_per_token: float = DEFAULT_CHARS_PER_TOKEN):
        self._chars_per_token = chars_per_token

    @property
    def chars_per_token(self) -> float:
        return self._chars_per_token

    def count(self, text: str) -> int:
        if not text or not text.strip():
            return 0
        words = len(WORD_PATTERN.findall(text))
        punctuation = len(PUNCTUATION_PATTERN.findall(text))
        return words + math.ceil(punctuation * 0.3)


class GptEstimator:
    """Rough imitation of BPE behaviour on English prose.

    Short words cost one token, longer words a token per three or four
    characters, numbers a token per two digits, punctuation one each.
    """

    name = "gpt-estimate"

    def __init__(self, chars_per_token: float = DEFAULT_CHARS_PER_TOKEN):
        self._chars_per_token = chars_per_token

    @property
    def chars_per_token(self) -> float:
        return self._chars_per_token

    def count(self, text: str) -> int:
        total = 0
        for piece in GPT_PIECE_PATTERN.findall(text):
            if piece.isdigit():
                total += max(1, math.ceil(len(piece) / 2))
            elif piece[0].isalnum() or piece[0] == "_":
                if len(piece) <= 4:
                    total += 1
                elif len(piece) <= 8:
                    total += math.ceil(len(piece) / 4)
                else:
                    total += math.ceil(len(piece) / 3)
            else:
                total += 1
        return total


ESTIMATORS: dict[str, type] = {
    CharRatioEstimator.name: CharRatioEstimator,
    WhitespaceEstimator.name: WhitespaceEstimator,
    GptEstimator.name: GptEstimator,
}


def create_estimator(
    name: str = "simple", chars_per_token: float = DEFAULT_CHARS_PER_TOKEN
) -> TokenEstimator:
    """Build the estimator registered under ``name``."""
    try:
        estimator_cls = ESTIMATORS[name]
    except KeyError:
        known = ", ".join(sorted(ESTIMATORS))
        raise ValueError(
            f"Unknown token estimator '{name}' (expected one of: {known})"
        ) from None
    return estimator_cls(chars_per_token)


def fits_within(estimator: TokenEstimator, text: str, max_tokens: int) -> bool:
    return estimator.count(text) <= max_tokens

