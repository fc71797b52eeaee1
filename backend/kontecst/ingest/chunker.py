"""Chunking utilities."""

from __future__ import annotations

import re
from typing import Protocol

from kontecst.core.errors import ValidationError
from kontecst.ingest.types import TextChunk


class Tokenizer(Protocol):
    """Splits text into tokens, reported as ``(start_char, end_char)`` spans."""

    name: str

    def spans(self, text: str) -> list[tuple[int, int]]:  # pragma: no cover - interface
        ...


class RegexTokenizer:
    def __init__(self, name: str, pattern: str) -> None:
        self.name = name
        self._pattern = re.compile(pattern)

    def spans(self, text: str) -> list[tuple[int, int]]:
        return [match.span() for match in self._pattern.finditer(text)]


WHITESPACE = RegexTokenizer("whitespace", r"\S+")
# Word runs plus single punctuation marks, closer to sub-word provider counts.
WORDPUNCT = RegexTokenizer("wordpunct", r"\w+|[^\w\s]")

_TOKENIZERS: dict[str, Tokenizer] = {
    WHITESPACE.name: WHITESPACE,
    WORDPUNCT.name: WORDPUNCT,
}


def get_tokenizer(name: str) -> Tokenizer:
    try:
        return _TOKENIZERS[name]
    except KeyError:
        raise ValidationError(f"Unknown tokenizer {name!r}; expected one of {sorted(_TOKENIZERS)}") from None


def register_tokenizer(tokenizer: Tokenizer) -> None:
    _TOKENIZERS[tokenizer.name] = tokenizer


class Chunker:
    """Token-window chunker with a fixed overlap between neighbours.

    Windows are cut on token boundaries and the chunk text is the original
    text between the first and last token, so inner whitespace survives.
    Each chunk after the first starts with the last ``overlap_tokens`` tokens
    of the previous one. The output depends only on the input text.
    """

    def __init__(self, tokenizer: Tokenizer = WHITESPACE) -> None:
        self.tokenizer = tokenizer

    def chunk(self, text: str, max_tokens: int, overlap_tokens: int) -> list[TextChunk]:
        _check_window(max_tokens, overlap_tokens)
        spans = self.tokenizer.spans(text)
        if not spans:
            return []

        stride = max_tokens - overlap_tokens
        chunks: list[TextChunk] = []
        start = 0
        while True:
            end = min(start + max_tokens, len(spans))
            start_char = spans[start][0]
            end_char = spans[end - 1][1]
            chunks.append(
                TextChunk(
                    ordinal=len(chunks),
                    start_token=start,
                    end_token=end,
                    start_char=start_char,
                    end_char=end_char,
                    text=text[start_char:end_char],
                )
            )
            if end >= len(spans):
                break
            start += stride
        return chunks


def chunk_text(text: str, max_tokens: int = 512, overlap_tokens: int = 50, tokenizer: str = "whitespace") -> list[TextChunk]:
    """Convenience wrapper around :class:`Chunker`."""
    return Chunker(get_tokenizer(tokenizer)).chunk(text, max_tokens, overlap_tokens)


def _check_window(max_tokens: int, overlap_tokens: int) -> None:
    if max_tokens < 1:
        raise ValidationError("max_tokens must be at least 1")
    if overlap_tokens < 0 or overlap_tokens >= max_tokens:
        raise ValidationError("overlap_tokens must be >= 0 and smaller than max_tokens")


__all__ = ["Chunker", "Tokenizer", "RegexTokenizer", "chunk_text", "get_tokenizer", "register_tokenizer"]
