from __future__ import annotations

import re
import warnings
from typing import Protocol

import tiktoken
from pysbd import Segmenter

from .schema import Sentence

_PARAGRAPH_BREAK = re.compile(r"\n\s*\n")
# Markdown headings, list items and table rows stand on their own.
_BLOCK_LINE = re.compile(r"^\s*(?:#{1,6}\s|[-*+]\s|\d+[.)]\s|\|)")
_WHITESPACE = re.compile(r"\s+")

# pysbd's patterns raise SyntaxWarning on Python 3.12+.
with warnings.catch_warnings():
    warnings.filterwarnings("ignore", category=SyntaxWarning)
    _SEGMENTER = Segmenter(language="en", clean=False)


class TokenCounter(Protocol):
    def __call__(self, text: str) -> int: ...


class TiktokenCounter:
    """Count BPE tokens with a tiktoken encoding."""

    def __init__(self, encoding_name: str = "cl100k_base") -> None:
        self.encoding_name = encoding_name
        self._encoder = tiktoken.get_encoding(encoding_name)

    def __call__(self, text: str) -> int:
        return len(self._encoder.encode(text))


class WhitespaceTokenCounter:
    """Count whitespace-delimited words; an encoder-free token estimate."""

    def __call__(self, text: str) -> int:
        return len(text.split())


def _blocks(paragraph: str) -> list[str]:
    """Group paragraph lines, starting a new block at every markdown block line."""
    blocks: list[list[str]] = []
    for line in paragraph.splitlines():
        if not line.strip():
            continue
        if not blocks or _BLOCK_LINE.match(line):
            blocks.append([line])
        else:
            blocks[-1].append(line)
    return [" ".join(lines) for lines in blocks]


def _segment(block: str) -> list[str]:
    with warnings.catch_warnings():
        warnings.filterwarnings("ignore", category=SyntaxWarning)
        return list(_SEGMENTER.segment(block))


def split_sentences(text: str) -> list[Sentence]:
    """Split raw text into ordered sentences.

    Paragraph breaks and markdown block lines always end a sentence; inside a
    block, pysbd finds the boundaries, so abbreviations such as "Dr." or
    "e.g." do not end one. Whitespace-only spans are dropped and positions are
    assigned after filtering, so they are contiguous from 0.

    Args:
        text: Raw document text.

    Returns:
        Sentences in document order.
    """
    pieces: list[str] = []
    for paragraph in _PARAGRAPH_BREAK.split(text):
        for block in _blocks(paragraph):
            for raw in _segment(_WHITESPACE.sub(" ", block)):
                cleaned = _WHITESPACE.sub(" ", raw).strip()
                if cleaned:
                    pieces.append(cleaned)
    return [Sentence(text=piece, position=index) for index, piece in enumerate(pieces)]
