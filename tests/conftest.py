"""Shared pytest fixtures and fakes for rag_eval unit tests."""
from __future__ import annotations

from typing import Sequence

import pytest

from rag_eval.errors import ProviderError, VectorIndexError
from rag_eval.schema import Document, QueryCase, RelevanceJudgment, SearchResult

PARIS_TEXT = (
    "Paris is the capital of France. The Eiffel Tower is in Paris. "
    "Cats are popular pets. Many people keep cats as companions."
)

PARIS_VECTORS = {
    "Paris is the capital of France.": [1.0, 0.0],
    "The Eiffel Tower is in Paris.": [0.95, 0.1],
    "Cats are popular pets.": [0.0, 1.0],
    "Many people keep cats as companions.": [0.1, 0.95],
}


class FakeEmbedder:
    """Async embedder returning canned vectors; unknown texts map to `default`."""

    def __init__(self, vectors: dict[str, list[float]] | None = None, default=None, fail_on: str | None = None):
        self.vectors = vectors or {}
        self.default = default if default is not None else [1.0, 0.0]
        self.fail_on = fail_on
        self.dimensions = len(self.default)
        self.model = "fake-embedding"
        self.calls: list[str] = []

    async def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        if self.fail_on is not None and self.fail_on in text:
            raise ProviderError(f"refused to embed {text!r}")
        return list(self.vectors.get(text, self.default))


class FakeIndex:
    """Async vector index answering searches from a query-text lookup."""

    def __init__(self, slates: Sequence[list[SearchResult]] | None = None, fail: bool = False):
        self.slates = list(slates or [])
        self.fail = fail
        self.points: dict[str, list] = {}
        self.searches: list[dict] = []

    async def upsert(self, collection, points):
        if self.fail:
            raise VectorIndexError("index unavailable")
        self.points.setdefault(collection, []).extend(points)

    async def search(self, collection, vector, limit, search_filter=None):
        self.searches.append({"collection": collection, "limit": limit, "filter": search_filter})
        if self.fail:
            raise VectorIndexError("index unavailable")
        slate = self.slates.pop(0) if self.slates else []
        return slate[:limit]


def make_result(doc_id: str, section_id: str | None = None, text: str = "text", score: float = 0.5) -> SearchResult:
    payload = {"text": text, "source": doc_id, "doc_id": doc_id}
    if section_id is not None:
        payload["section_id"] = section_id
    return SearchResult(score=score, payload=payload)


@pytest.fixture()
def paris_embedder() -> FakeEmbedder:
    return FakeEmbedder(PARIS_VECTORS)


@pytest.fixture()
def sample_document() -> Document:
    return Document(
        doc_id="company/overview.md",
        title="overview",
        text=PARIS_TEXT,
        category="company",
    )


@pytest.fixture()
def exact_judgment() -> RelevanceJudgment:
    return RelevanceJudgment(query_id="Q-0001", doc_id="A", section_id="3")


@pytest.fixture()
def keyword_case() -> QueryCase:
    return QueryCase(
        query_id="Q-0002",
        question="Who is the CEO of Insurellm?",
        judgment=RelevanceJudgment(query_id="Q-0002", keywords=("Avery", "CEO")),
        category="direct_fact",
    )


@pytest.fixture()
def ranked_results() -> list[SearchResult]:
    return [
        make_result("B", "1", text="Unrelated benefits text."),
        make_result("A", "3", text="Avery Lancaster is the CEO."),
        make_result("A", "1", text="Lancaster is an employee."),
    ]
