from __future__ import annotations

from dataclasses import asdict
import hashlib
import json
import re
from pathlib import Path
from typing import Any

from .errors import ConfigurationError
from .log import get_logger
from .schema import EvaluationRun, QueryResult, RetrievedSnippet

logger = get_logger(__name__)

INDEX_FILE = "index.json"
RUNS_SUBDIR = "runs"
_UNSAFE = re.compile(r"[^A-Za-z0-9._-]+")


def run_to_record(run: EvaluationRun) -> dict[str, Any]:
    """Serialisable record of a run, keyed the way the run browser reads it."""
    return {
        "name": run.name,
        "createdAt": run.created_at,
        "totalQueries": run.total_queries,
        "failedQueries": run.failed_queries,
        "aggregateMetrics": run.aggregate_metrics,
        "metricsByCategory": run.metrics_by_category,
        "metricsByType": run.metrics_by_type,
        "metricsByModality": run.metrics_by_modality,
        "queryCounts": run.query_counts,
        "queryCountsByType": run.query_counts_by_type,
        "queryCountsByModality": run.query_counts_by_modality,
        "detailedResults": [
            {
                "queryId": result.query_id,
                "query": result.question,
                "category": result.category,
                "type": result.query_type,
                "modality": result.modality,
                "keywords": result.keywords,
                "metrics": result.metrics,
                "error": result.error,
                "chunks": [asdict(snippet) for snippet in result.retrieved],
            }
            for result in run.detailed_results
        ],
    }


def run_from_record(record: dict[str, Any]) -> EvaluationRun:
    return EvaluationRun(
        name=record["name"],
        created_at=record["createdAt"],
        total_queries=record["totalQueries"],
        failed_queries=record["failedQueries"],
        aggregate_metrics=record["aggregateMetrics"],
        metrics_by_category=record["metricsByCategory"],
        metrics_by_type=record["metricsByType"],
        metrics_by_modality=record["metricsByModality"],
        query_counts=record["queryCounts"],
        query_counts_by_type=record.get("queryCountsByType", {}),
        query_counts_by_modality=record.get("queryCountsByModality", {}),
        detailed_results=[
            QueryResult(
                query_id=item["queryId"],
                question=item["query"],
                category=item["category"],
                query_type=item["type"],
                modality=item["modality"],
                keywords=item["keywords"],
                metrics=item["metrics"],
                retrieved=[RetrievedSnippet(**snippet) for snippet in item["chunks"]],
                error=item["error"],
            )
            for item in record["detailedResults"]
        ],
    )


class RunStore:
    """Directory of JSON run records plus an index of run names.

    Records live under `runs/` so no run name can clash with the index. Each
    file name ends in a digest of the exact run name, so two names that
    slugify alike never share a file.
    """

    def __init__(self, root: str | Path = "artifacts/runs") -> None:
        self.root = Path(root)

    def _path(self, name: str) -> Path:
        slug = _UNSAFE.sub("-", name.strip()).strip("-.")
        if not slug:
            raise ConfigurationError(f"run name {name!r} has no usable characters")
        digest = hashlib.sha1(name.encode("utf-8")).hexdigest()[:10]
        return self.root / RUNS_SUBDIR / f"{slug}-{digest}.json"

    def _write_index(self, names: list[str]) -> None:
        (self.root / INDEX_FILE).write_text(json.dumps(sorted(names), indent=2) + "\n", encoding="utf-8")

    def list_runs(self) -> list[str]:
        index_path = self.root / INDEX_FILE
        if not index_path.exists():
            return []
        return json.loads(index_path.read_text(encoding="utf-8"))

    def save(self, run: EvaluationRun) -> Path:
        """Write `run`, replacing any earlier run with the same name."""
        path = self._path(run.name)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(run_to_record(run), indent=2, sort_keys=True) + "\n", encoding="utf-8")

        names = set(self.list_runs())
        names.add(run.name)
        self._write_index(list(names))
        logger.info("evaluation_run_saved", name=run.name, path=str(path))
        return path

    def load(self, name: str) -> EvaluationRun:
        path = self._path(name)
        if not path.exists():
            raise KeyError(f"no evaluation run named {name!r}")
        return run_from_record(json.loads(path.read_text(encoding="utf-8")))
