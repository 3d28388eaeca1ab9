from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

MetricSet = dict[str, float]


@dataclass(slots=True)
class Document:
    """Source document read from the knowledge base."""

    doc_id: str
    title: str
    text: str
    category: str = ""
    section: str | None = None


@dataclass(frozen=True, slots=True)
class Sentence:
    """Contiguous text span with its 0-based position in the source document."""

    text: str
    position: int


@dataclass(slots=True)
class Chunk:
    """Run of consecutive sentences indexed as one retrievable unit."""

    chunk_id: str
    doc_id: str
    text: str
    token_count: int
    sentences: tuple[Sentence, ...] = ()
    section: str | None = None


@dataclass(frozen=True, slots=True)
class RelevanceJudgment:
    """Ground-truth target for one query: a document/section and/or keywords."""

    query_id: str
    doc_id: str | None = None
    section_id: str | None = None
    keywords: tuple[str, ...] = ()


@dataclass(slots=True)
class SearchResult:
    """One ranked hit returned by the vector index."""

    score: float
    payload: dict[str, Any]

    @property
    def text(self) -> str:
        return str(self.payload.get("text", ""))

    @property
    def source(self) -> str | None:
        value = self.payload.get("source")
        return None if value is None else str(value)

    @property
    def doc_id(self) -> str | None:
        value = self.payload.get("doc_id", self.payload.get("source"))
        return None if value is None else str(value)

    @property
    def section_id(self) -> str | None:
        value = self.payload.get("section_id")
        return None if value is None else str(value)


@dataclass(slots=True)
class QueryCase:
    """Evaluation question with its labels and relevance judgment."""

    query_id: str
    question: str
    judgment: RelevanceJudgment
    category: str = "uncategorized"
    query_type: str = "extractive"
    modality: str = "text"
    reference_answer: str | None = None


@dataclass(slots=True)
class RetrievedSnippet:
    """Retrieved chunk kept on a query result for later inspection."""

    rank: int
    score: float
    text: str
    source: str | None = None
    doc_id: str | None = None
    section_id: str | None = None


@dataclass(slots=True)
class QueryResult:
    """Per-query evaluation outcome; `error` is set when evaluation failed."""

    query_id: str
    question: str
    category: str
    query_type: str
    modality: str
    keywords: list[str] = field(default_factory=list)
    metrics: MetricSet = field(default_factory=dict)
    retrieved: list[RetrievedSnippet] = field(default_factory=list)
    error: str | None = None

    @property
    def failed(self) -> bool:
        return self.error is not None


@dataclass(slots=True)
class EvaluationRun:
    """Named, timestamped bundle of aggregate and per-query evaluation output."""

    name: str
    created_at: str
    total_queries: int
    failed_queries: int
    aggregate_metrics: MetricSet
    metrics_by_category: dict[str, MetricSet]
    metrics_by_type: dict[str, MetricSet]
    metrics_by_modality: dict[str, MetricSet]
    query_counts: dict[str, int]
    query_counts_by_type: dict[str, int]
    query_counts_by_modality: dict[str, int]
    detailed_results: list[QueryResult]
