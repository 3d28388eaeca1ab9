from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Optional, Sequence

import typer

from .aggregation import aggregate
from .chunking import SemanticChunker
from .embeddings import build_embedding_client
from .evaluation import DEFAULT_K_VALUES, RetrievalEvaluator
from .errors import RagEvalError
from .ingestion import Ingestor
from .io_utils import load_knowledge_base, load_query_cases, load_test_cases
from .log import configure_logging
from .run_store import RunStore
from .schema import EvaluationRun, MetricSet, QueryCase, QueryResult
from .settings import Settings, load_settings
from .tracing import configure_tracing
from .vector_store import ChromaVectorIndex

app = typer.Typer(add_completion=False, help="Semantic chunking ingestion and retrieval-quality evaluation.")


def _bootstrap(trace_endpoint: Optional[str]) -> Settings:
    try:
        settings = load_settings()
    except RagEvalError as exc:
        typer.echo(f"Configuration error: {exc}", err=True)
        raise typer.Exit(code=2) from exc
    configure_logging(settings.evaluation.log_level)
    if trace_endpoint:
        configure_tracing(endpoint=trace_endpoint)
    return settings


def _parse_filter(value: Optional[str]) -> dict[str, str] | None:
    if not value:
        return None
    key, sep, match = value.partition("=")
    if not sep or not key:
        raise typer.BadParameter("filter must look like field=value", param_hint="--filter")
    return {key.strip(): match.strip()}


def _format_metrics(metrics: MetricSet, indent: str = "  ") -> list[str]:
    return [f"{indent}{name:<18}{value * 100:6.2f}%" for name, value in metrics.items()]


def _format_partition(title: str, metrics_by: dict[str, MetricSet], counts: dict[str, int]) -> list[str]:
    lines = ["", "-" * 80, title, "-" * 80]
    for label, metrics in metrics_by.items():
        lines.append(f"{label} ({counts.get(label, 0)} questions):")
        lines.extend(_format_metrics(metrics))
    return lines


def format_report(run: EvaluationRun) -> str:
    """Console report: aggregate metrics, then one block per category, type and modality."""
    lines = ["=" * 80, f"RUN {run.name} ({run.created_at})", "=" * 80]
    lines.append(f"Queries: {run.total_queries}  scored: {run.total_queries - run.failed_queries}  "
                 f"failed: {run.failed_queries}")
    lines.append("")
    lines.append("AGGREGATE RETRIEVAL METRICS")
    lines.extend(_format_metrics(run.aggregate_metrics))
    lines.extend(_format_partition("METRICS BY CATEGORY", run.metrics_by_category, run.query_counts))
    lines.extend(_format_partition("METRICS BY TYPE", run.metrics_by_type, run.query_counts_by_type))
    lines.extend(_format_partition("METRICS BY MODALITY", run.metrics_by_modality, run.query_counts_by_modality))
    return "\n".join(lines)


def sections_missing(cases: Sequence[QueryCase], results: Sequence[QueryResult]) -> bool:
    """True when judgments name sections but no retrieved chunk carries one."""
    if not any(case.judgment.section_id is not None for case in cases):
        return False
    return not any(snippet.section_id is not None for result in results for snippet in result.retrieved)


@app.command()
def ingest(
    folder: Optional[Path] = typer.Option(None, help="Knowledge-base folder (defaults to KNOWLEDGE_BASE_DIR)."),
    reset: bool = typer.Option(True, help="Drop and recreate the collection first."),
    concurrency: int = typer.Option(8, min=1, help="Embedding requests in flight."),
    fail_fast: bool = typer.Option(False, help="Abort on the first failed document."),
    sections: bool = typer.Option(False, help="Split files at markdown headings and record section ids."),
    trace_endpoint: Optional[str] = typer.Option(None, help="OTLP endpoint for spans."),
) -> None:
    """Chunk every knowledge-base file and upsert the chunks into the index."""
    settings = _bootstrap(trace_endpoint)
    documents = load_knowledge_base(folder or settings.paths.knowledge_base_dir, sections=sections)
    typer.echo(f"Found {len(documents)} {'sections' if sections else 'documents'}")

    index = ChromaVectorIndex(settings.paths.chroma_dir)
    if reset:
        index.reset_collection(settings.evaluation.collection_name)

    ingestor = Ingestor(
        embedder=build_embedding_client(settings.embedding.provider, settings.embedding.ollama_base_url),
        index=index,
        collection=settings.evaluation.collection_name,
        chunker=SemanticChunker(settings.chunking, concurrency=concurrency),
        concurrency=concurrency,
    )
    try:
        report = asyncio.run(ingestor.ingest(documents, fail_fast=fail_fast))
    except RagEvalError as exc:
        typer.echo(f"Ingestion aborted: {exc}", err=True)
        raise typer.Exit(code=1) from exc

    typer.echo(f"Ingested {report.documents} documents into {report.chunks} chunks")
    for doc_id, error in report.failed.items():
        typer.echo(f"  FAILED {doc_id}: {error}", err=True)
    if report.failed:
        raise typer.Exit(code=1)


@app.command()
def evaluate(
    name: str = typer.Option(..., help="Run name; an existing run with this name is overwritten."),
    tests: Optional[Path] = typer.Option(None, help="JSONL test questions with keywords."),
    queries: Optional[Path] = typer.Option(None, help="JSON mapping of query id to query."),
    qrels: Optional[Path] = typer.Option(None, help="JSON mapping of query id to target document."),
    answers: Optional[Path] = typer.Option(None, help="JSON mapping of query id to reference answer."),
    top_k: Optional[int] = typer.Option(None, min=1, help="Results retrieved per query."),
    k: list[int] = typer.Option(list(DEFAULT_K_VALUES), "--k", help="Recall/precision cut-offs."),
    search_filter: Optional[str] = typer.Option(None, "--filter", help="Payload equality filter, field=value."),
    concurrency: int = typer.Option(4, min=1, help="Queries evaluated in parallel."),
    fail_fast: bool = typer.Option(False, help="Abort on the first failed query."),
    trace_endpoint: Optional[str] = typer.Option(None, help="OTLP endpoint for spans."),
) -> None:
    """Evaluate retrieval against ground truth and persist the run."""
    settings = _bootstrap(trace_endpoint)
    if tests is not None:
        cases = load_test_cases(tests)
    elif queries is not None and qrels is not None:
        cases = load_query_cases(queries, qrels, answers)
    else:
        raise typer.BadParameter("pass --tests, or both --queries and --qrels")
    typer.echo(f"Loaded {len(cases)} test questions")

    try:
        evaluator = RetrievalEvaluator(
            embedder=build_embedding_client(settings.embedding.provider, settings.embedding.ollama_base_url),
            index=ChromaVectorIndex(settings.paths.chroma_dir),
            collection=settings.evaluation.collection_name,
            top_k=top_k or settings.evaluation.top_k,
            k_values=k,
            search_filter=_parse_filter(search_filter),
        )
        results = asyncio.run(evaluator.evaluate_all(cases, concurrency=concurrency, fail_fast=fail_fast))
        run = aggregate(results, name=name)
    except RagEvalError as exc:
        typer.echo(f"Evaluation aborted: {exc}", err=True)
        raise typer.Exit(code=1) from exc

    typer.echo(format_report(run))
    if sections_missing(cases, results):
        typer.echo(
            "Warning: judgments name sections but no retrieved chunk has a section_id; "
            "exact-match metrics will be 0. Re-ingest with --sections.",
            err=True,
        )
    path = RunStore(settings.paths.runs_dir).save(run)
    typer.echo(f"\nResults saved to {path}")


@app.command()
def runs() -> None:
    """List stored evaluation runs."""
    settings = load_settings()
    for run_name in RunStore(settings.paths.runs_dir).list_runs():
        typer.echo(run_name)


@app.command()
def show(name: str = typer.Argument(..., help="Run name.")) -> None:
    """Print the report of a stored run."""
    settings = load_settings()
    try:
        run = RunStore(settings.paths.runs_dir).load(name)
    except KeyError as exc:
        typer.echo(exc.args[0], err=True)
        raise typer.Exit(code=1) from exc
    typer.echo(format_report(run))


@app.command()
def chunks(
    source: str = typer.Option(..., help="Source path as stored, e.g. employees/Avery Lancaster.md."),
    limit: int = typer.Option(20, min=1, help="Maximum chunks listed."),
    width: int = typer.Option(300, min=1, help="Characters of text shown per chunk."),
) -> None:
    """List the stored chunks of one source document."""
    settings = load_settings()
    index = ChromaVectorIndex(settings.paths.chroma_dir)
    try:
        stored = index.list_points(settings.evaluation.collection_name, {"source": source}, limit=limit)
    except RagEvalError as exc:
        typer.echo(f"Listing failed: {exc}", err=True)
        raise typer.Exit(code=1) from exc

    typer.echo(f"Found {len(stored)} chunks for {source}:\n")
    for position, result in enumerate(stored, start=1):
        section = f" (section {result.section_id})" if result.section_id is not None else ""
        typer.echo(f"--- Chunk {position}{section} ---")
        typer.echo(result.text[:width] + "...\n")


if __name__ == "__main__":
    app()
