from __future__ import annotations

from collections import Counter, defaultdict
from datetime import datetime, timezone
from typing import Callable, Sequence

from .errors import EvaluationError
from .log import get_logger
from .schema import EvaluationRun, MetricSet, QueryResult

logger = get_logger(__name__)


def mean_metrics(metric_sets: Sequence[MetricSet]) -> MetricSet:
    """Arithmetic mean per metric key over the sets that report that key."""
    if not metric_sets:
        raise EvaluationError("cannot average an empty list of metric sets")

    totals: dict[str, float] = defaultdict(float)
    counts: Counter[str] = Counter()
    for metrics in metric_sets:
        for key, value in metrics.items():
            totals[key] += value
            counts[key] += 1
    return {key: totals[key] / counts[key] for key in sorted(totals)}


def metrics_by(results: Sequence[QueryResult], key_fn: Callable[[QueryResult], str]) -> dict[str, MetricSet]:
    """Mean metrics within each partition of `results` defined by `key_fn`."""
    partitions: dict[str, list[MetricSet]] = defaultdict(list)
    for result in results:
        partitions[key_fn(result)].append(result.metrics)
    return {label: mean_metrics(partitions[label]) for label in sorted(partitions)}


def _counts(results: Sequence[QueryResult], key_fn: Callable[[QueryResult], str]) -> dict[str, int]:
    return dict(sorted(Counter(key_fn(result) for result in results).items()))


def aggregate(results: Sequence[QueryResult], name: str, created_at: str | None = None) -> EvaluationRun:
    """Reduce per-query results into an `EvaluationRun`.

    Failed queries stay in `detailed_results` and are counted in
    `failed_queries`, but no mean includes them.

    Args:
        results: Per-query outcomes, successful or failed.
        name: Run name; saving under an existing name overwrites that run.
        created_at: ISO timestamp; defaults to now (UTC).

    Returns:
        The assembled run.

    Raises:
        EvaluationError: If `results` is empty.
    """
    if not results:
        raise EvaluationError("an evaluation run needs at least one query")

    scored = [result for result in results if not result.failed]
    failed = len(results) - len(scored)
    if failed:
        logger.warning("queries_excluded_from_means", failed=failed, total=len(results))

    return EvaluationRun(
        name=name,
        created_at=created_at or datetime.now(timezone.utc).isoformat(timespec="seconds"),
        total_queries=len(results),
        failed_queries=failed,
        aggregate_metrics=mean_metrics([result.metrics for result in scored]) if scored else {},
        metrics_by_category=metrics_by(scored, lambda result: result.category),
        metrics_by_type=metrics_by(scored, lambda result: result.query_type),
        metrics_by_modality=metrics_by(scored, lambda result: result.modality),
        query_counts=_counts(scored, lambda result: result.category),
        query_counts_by_type=_counts(scored, lambda result: result.query_type),
        query_counts_by_modality=_counts(scored, lambda result: result.modality),
        detailed_results=list(results),
    )
