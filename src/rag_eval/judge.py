from __future__ import annotations

from enum import Enum
from typing import Sequence

from .errors import ConfigurationError
from .schema import RelevanceJudgment, SearchResult


class JudgmentMode(str, Enum):
    EXACT = "exact"
    DOCUMENT = "document"
    KEYWORD = "keyword"


def parse_mode(tag: str) -> JudgmentMode:
    try:
        return JudgmentMode(tag.strip().lower())
    except ValueError:
        raise ConfigurationError(f"Unknown judgment mode {tag!r}") from None


def primary_mode(judgment: RelevanceJudgment) -> JudgmentMode:
    """Mode implied by the judgment's fields: identity first, keywords second."""
    if judgment.doc_id is not None:
        return JudgmentMode.EXACT
    if judgment.keywords:
        return JudgmentMode.KEYWORD
    raise ConfigurationError(f"judgment for {judgment.query_id!r} names neither a document nor keywords")


def keyword_fraction(text: str, keywords: Sequence[str]) -> float:
    """Share of `keywords` occurring in `text` (case-insensitive substrings).

    An empty keyword set is vacuously satisfied and scores 1.0.
    """
    if not keywords:
        return 1.0
    haystack = text.lower()
    found = sum(1 for keyword in keywords if keyword.lower() in haystack)
    return found / len(keywords)


def keyword_coverage(results: Sequence[SearchResult], keywords: Sequence[str]) -> float:
    """Keyword fraction over the concatenated text of the whole result slate."""
    combined = " ".join(result.text for result in results)
    return keyword_fraction(combined, keywords)


def relevance(result: SearchResult, judgment: RelevanceJudgment, mode: JudgmentMode) -> float:
    """Graded relevance of one result in [0, 1].

    `EXACT` requires the document and, when the judgment names one, the
    section to match. `DOCUMENT` ignores the section. Both are binary.
    `KEYWORD` grades by the fraction of judgment keywords in the result text.
    """
    if mode is JudgmentMode.KEYWORD:
        if not judgment.keywords:
            raise ConfigurationError(f"keyword judging requested but {judgment.query_id!r} has no keywords")
        return keyword_fraction(result.text, judgment.keywords)

    if judgment.doc_id is None:
        raise ConfigurationError(f"{mode.value} judging requested but {judgment.query_id!r} names no document")
    if result.doc_id != judgment.doc_id:
        return 0.0
    if mode is JudgmentMode.EXACT and judgment.section_id is not None:
        return 1.0 if result.section_id == judgment.section_id else 0.0
    return 1.0


def is_relevant(result: SearchResult, judgment: RelevanceJudgment, mode: JudgmentMode) -> bool:
    return relevance(result, judgment, mode) > 0.0
