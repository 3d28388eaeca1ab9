"""Semantic chunking and retrieval-quality evaluation for RAG pipelines."""

from .schema import (
    Chunk,
    Document,
    EvaluationRun,
    QueryCase,
    QueryResult,
    RelevanceJudgment,
    SearchResult,
    Sentence,
)

__all__ = [
    "Document",
    "Sentence",
    "Chunk",
    "RelevanceJudgment",
    "SearchResult",
    "QueryCase",
    "QueryResult",
    "EvaluationRun",
]
