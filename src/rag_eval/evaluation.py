from __future__ import annotations

import asyncio
import math
from typing import Sequence

from .embeddings import EmbeddingClient
from .errors import ConfigurationError, ProviderError, VectorIndexError
from .judge import JudgmentMode, keyword_coverage, primary_mode, relevance
from .log import get_logger
from .schema import MetricSet, QueryCase, QueryResult, RelevanceJudgment, RetrievedSnippet, SearchResult
from .tracing import ATTR_INPUT_VALUE, get_tracer, traced_embedding, traced_search
from .vector_store import PayloadFilter, VectorIndex

logger = get_logger(__name__)

DEFAULT_K_VALUES = (1, 3, 5)


def reciprocal_rank(relevances: Sequence[float]) -> float:
    """`1 / rank` of the first relevant (non-zero) entry, 0.0 when none is."""
    for index, score in enumerate(relevances):
        if score > 0.0:
            return 1.0 / (index + 1)
    return 0.0


def dcg(relevances: Sequence[float]) -> float:
    return sum(score / math.log2(index + 2) for index, score in enumerate(relevances))


def ndcg(relevances: Sequence[float]) -> float:
    """DCG normalised by the DCG of the same gains sorted descending; 0.0 if that is 0."""
    ideal = dcg(sorted(relevances, reverse=True))
    if ideal == 0.0:
        return 0.0
    return dcg(relevances) / ideal


def recall_at_k(relevances: Sequence[float], k: int) -> float:
    """Binary hit rate: 1.0 when any of the first `k` entries is relevant."""
    return 1.0 if any(score > 0.0 for score in relevances[:k]) else 0.0


def precision_at_k(relevances: Sequence[float], k: int) -> float:
    """Relevant entries among the first `k`, divided by `k`."""
    hits = sum(1 for score in relevances[:k] if score > 0.0)
    return hits / k


def compute_metrics(
    results: Sequence[SearchResult],
    judgment: RelevanceJudgment,
    k_values: Sequence[int] = DEFAULT_K_VALUES,
) -> MetricSet:
    """Compute every retrieval metric for one ranked slate.

    Rank metrics use the judgment's primary mode (exact document/section
    match, or keyword presence when only keywords are judged). When a
    document is judged, document-level variants are reported under a
    ``doc_`` prefix. nDCG is graded by keyword fraction for keyword
    judgments and binary otherwise.

    Args:
        results: Ranked search results, best first.
        judgment: Ground truth for the query.
        k_values: Cut-offs for recall/precision.

    Returns:
        Metric name to value, every value in [0, 1].
    """
    mode = primary_mode(judgment)
    graded = [relevance(result, judgment, mode) for result in results]

    metrics: MetricSet = {
        "mrr": reciprocal_rank(graded),
        "ndcg": ndcg(graded),
    }
    for k in k_values:
        metrics[f"recall@{k}"] = recall_at_k(graded, k)
        metrics[f"precision@{k}"] = precision_at_k(graded, k)

    if judgment.doc_id is not None:
        doc_level = [relevance(result, judgment, JudgmentMode.DOCUMENT) for result in results]
        metrics["doc_mrr"] = reciprocal_rank(doc_level)
        for k in k_values:
            metrics[f"doc_recall@{k}"] = recall_at_k(doc_level, k)
            metrics[f"doc_precision@{k}"] = precision_at_k(doc_level, k)

    if judgment.keywords:
        metrics["keyword_coverage"] = keyword_coverage(results, judgment.keywords)

    return metrics


def _snippets(results: Sequence[SearchResult]) -> list[RetrievedSnippet]:
    return [
        RetrievedSnippet(
            rank=index + 1,
            score=result.score,
            text=result.text,
            source=result.source,
            doc_id=result.doc_id,
            section_id=result.section_id,
        )
        for index, result in enumerate(results)
    ]


class RetrievalEvaluator:
    """Run ground-truth queries against a vector index and score the slates."""

    def __init__(
        self,
        embedder: EmbeddingClient,
        index: VectorIndex,
        collection: str,
        top_k: int = 5,
        k_values: Sequence[int] = DEFAULT_K_VALUES,
        search_filter: PayloadFilter | None = None,
    ) -> None:
        if top_k <= 0:
            raise ConfigurationError("top_k must be positive")
        if not k_values or min(k_values) <= 0:
            raise ConfigurationError("k_values must be non-empty and positive")
        if max(k_values) > top_k:
            raise ConfigurationError(f"k value {max(k_values)} exceeds top_k={top_k}")

        self.collection = collection
        self.top_k = top_k
        self.k_values = tuple(sorted(set(k_values)))
        self.search_filter = search_filter
        self._tracer = get_tracer("rag_eval.evaluation")
        self._embed = traced_embedding(embedder.embed, self._tracer, model_name=getattr(embedder, "model", ""))
        self._search = traced_search(index.search, self._tracer)

    async def retrieve(self, question: str, search_filter: PayloadFilter | None = None) -> list[SearchResult]:
        """Embed `question` and fetch the top-k results, validating payloads."""
        vector = await self._embed(question)
        results = await self._search(
            self.collection,
            vector,
            self.top_k,
            search_filter=search_filter if search_filter is not None else self.search_filter,
        )
        for position, result in enumerate(results):
            if "text" not in result.payload:
                raise VectorIndexError(f"result {position + 1} for {question!r} has no 'text' payload")
        return results

    async def evaluate(self, case: QueryCase) -> QueryResult:
        """Evaluate one query; provider and index failures propagate."""
        primary_mode(case.judgment)
        with self._tracer.start_as_current_span("evaluate-query") as span:
            span.set_attribute(ATTR_INPUT_VALUE, case.question)
            span.set_attribute("query.id", case.query_id)
            results = await self.retrieve(case.question)
            if case.judgment.doc_id is not None:
                missing = [index + 1 for index, result in enumerate(results) if result.doc_id is None]
                if missing:
                    raise VectorIndexError(f"results at ranks {missing} carry no document identifier")
            metrics = compute_metrics(results, case.judgment, self.k_values)

        return QueryResult(
            query_id=case.query_id,
            question=case.question,
            category=case.category,
            query_type=case.query_type,
            modality=case.modality,
            keywords=list(case.judgment.keywords),
            metrics=metrics,
            retrieved=_snippets(results),
        )

    async def evaluate_safely(self, case: QueryCase) -> QueryResult:
        """Evaluate one query, recording provider/index failures on the result."""
        try:
            return await self.evaluate(case)
        except (ProviderError, VectorIndexError) as exc:
            logger.warning("query_evaluation_failed", query_id=case.query_id, error=str(exc))
            return QueryResult(
                query_id=case.query_id,
                question=case.question,
                category=case.category,
                query_type=case.query_type,
                modality=case.modality,
                keywords=list(case.judgment.keywords),
                error=f"{type(exc).__name__}: {exc}",
            )

    async def evaluate_all(
        self,
        cases: Sequence[QueryCase],
        concurrency: int = 4,
        fail_fast: bool = False,
    ) -> list[QueryResult]:
        """Evaluate `cases` concurrently; results keep the input order.

        Args:
            cases: Queries to evaluate.
            concurrency: Maximum number of queries in flight.
            fail_fast: Propagate the first failure instead of recording it;
                queries still in flight are cancelled first.

        Returns:
            One `QueryResult` per case.
        """
        if concurrency < 1:
            raise ConfigurationError("concurrency must be at least 1")
        for case in cases:
            primary_mode(case.judgment)

        semaphore = asyncio.Semaphore(concurrency)
        evaluate = self.evaluate if fail_fast else self.evaluate_safely
        done = 0

        async def _run(case: QueryCase) -> QueryResult:
            nonlocal done
            async with semaphore:
                result = await evaluate(case)
            done += 1
            if done % 10 == 0:
                logger.info("evaluation_progress", processed=done, total=len(cases))
            return result

        tasks = [asyncio.ensure_future(_run(case)) for case in cases]
        try:
            return list(await asyncio.gather(*tasks))
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise
