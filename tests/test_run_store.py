"""Tests for run_store.py: JSON persistence and the run index."""
from __future__ import annotations

import dataclasses
import json

import pytest

from rag_eval.aggregation import aggregate
from rag_eval.errors import ConfigurationError
from rag_eval.run_store import RunStore, run_to_record
from rag_eval.schema import QueryResult, RetrievedSnippet


@pytest.fixture()
def run():
    results = [
        QueryResult(
            query_id="Q-1",
            question="Who is the CEO?",
            category="direct_fact",
            query_type="extractive",
            modality="text",
            keywords=["Avery", "CEO"],
            metrics={"mrr": 1.0, "keyword_coverage": 1.0},
            retrieved=[RetrievedSnippet(rank=1, score=0.91, text="Avery Lancaster is the CEO",
                                        source="employees/Avery Lancaster.md", doc_id="employees/Avery Lancaster.md")],
        ),
        QueryResult(
            query_id="Q-2",
            question="Who founded it?",
            category="direct_fact",
            query_type="extractive",
            modality="text",
            error="VectorIndexError: timeout",
        ),
    ]
    return aggregate(results, name="baseline v1", created_at="2026-10-17T09:00:00+00:00")


class TestRunToRecord:
    def test_top_level_keys(self, run):
        record = run_to_record(run)
        assert record["totalQueries"] == 2
        assert record["failedQueries"] == 1
        assert record["aggregateMetrics"] == {"keyword_coverage": 1.0, "mrr": 1.0}
        assert "direct_fact" in record["metricsByCategory"]

    def test_detailed_results_keep_snippets(self, run):
        detail = run_to_record(run)["detailedResults"][0]
        assert detail["query"] == "Who is the CEO?"
        assert detail["keywords"] == ["Avery", "CEO"]
        assert detail["chunks"][0]["text"] == "Avery Lancaster is the CEO"

    def test_query_counts_per_partition(self, run):
        record = run_to_record(run)
        assert record["queryCounts"] == {"direct_fact": 1}
        assert record["queryCountsByType"] == {"extractive": 1}
        assert record["queryCountsByModality"] == {"text": 1}


class TestRunStore:
    def test_save_and_load(self, tmp_path, run):
        store = RunStore(tmp_path)
        store.save(run)
        loaded = store.load("baseline v1")
        assert loaded == run

    def test_index_lists_runs(self, tmp_path, run):
        store = RunStore(tmp_path)
        assert store.list_runs() == []
        store.save(run)
        assert store.list_runs() == ["baseline v1"]

    def test_same_name_overwrites(self, tmp_path, run):
        store = RunStore(tmp_path)
        path = store.save(run)
        run.failed_queries = 0
        assert store.save(run) == path
        assert store.load("baseline v1").failed_queries == 0
        assert store.list_runs() == ["baseline v1"]
        assert len(list((tmp_path / "runs").glob("*.json"))) == 1

    def test_serialisation_is_deterministic(self, tmp_path, run):
        store = RunStore(tmp_path)
        first = store.save(run).read_bytes()
        second = store.save(run).read_bytes()
        assert first == second
        assert json.loads(first)["name"] == "baseline v1"

    def test_unknown_run(self, tmp_path):
        with pytest.raises(KeyError):
            RunStore(tmp_path).load("missing")

    def test_unusable_name(self, tmp_path, run):
        run.name = "///"
        with pytest.raises(ConfigurationError):
            RunStore(tmp_path).save(run)

    def test_run_named_index_keeps_the_index(self, tmp_path, run):
        store = RunStore(tmp_path)
        store.save(run)
        store.save(dataclasses.replace(run, name="index"))
        assert store.list_runs() == ["baseline v1", "index"]
        assert store.load("index").name == "index"
        assert store.load("baseline v1").name == "baseline v1"

    def test_names_with_the_same_slug_do_not_overwrite(self, tmp_path, run):
        store = RunStore(tmp_path)
        first = store.save(dataclasses.replace(run, name="a b"))
        second = store.save(dataclasses.replace(run, name="a-b"))
        assert first != second
        assert store.load("a b").name == "a b"
        assert store.load("a-b").name == "a-b"
