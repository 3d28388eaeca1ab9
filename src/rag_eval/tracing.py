"""OpenTelemetry tracing for embedding, search and evaluation calls.

Every embedding request and index search is a network round trip, so each
one is worth a span. The evaluator and the ingestor open a parent span per
query or document; the wrappers below add child spans for the calls made
inside it.

Usage with an OTLP backend (for example a local Arize Phoenix):

    from rag_eval.tracing import configure_tracing, get_tracer, traced_embedding

    configure_tracing(endpoint="http://localhost:6006/v1/traces")
    tracer = get_tracer("rag_eval.embeddings")
    embed = traced_embedding(client.embed, tracer, model_name=client.model)

Without `configure_tracing` the OTel no-op provider is used and spans are
discarded.
"""
from __future__ import annotations

from typing import Awaitable, Callable, Sequence

from opentelemetry import trace
from opentelemetry.sdk.resources import SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import ConsoleSpanExporter, SimpleSpanProcessor, SpanExporter

from .schema import SearchResult

# OpenInference semantic-convention attribute names.
ATTR_INPUT_VALUE = "input.value"
ATTR_EMBEDDING_MODEL_NAME = "embedding.model_name"
ATTR_EMBEDDING_DIMENSIONS = "embedding.dimensions"
ATTR_RETRIEVAL_DOCUMENTS = "retrieval.documents"
ATTR_RETRIEVAL_COLLECTION = "retrieval.collection"
ATTR_RETRIEVAL_LIMIT = "retrieval.limit"

_provider: TracerProvider | None = None


def configure_tracing(
    endpoint: str | None = None,
    service_name: str = "rag-eval",
    exporter: SpanExporter | None = None,
) -> TracerProvider:
    """Create and register the process-wide TracerProvider.

    Args:
        endpoint: OTLP HTTP endpoint receiving spans. Ignored when `exporter`
            is given; when both are None spans go to stdout.
        service_name: Service label shown by the tracing backend.
        exporter: Pre-built exporter, e.g. an `InMemorySpanExporter` in tests.

    Returns:
        The configured provider, also installed as the global OTel provider.
    """
    global _provider

    provider = TracerProvider(resource=Resource(attributes={SERVICE_NAME: service_name}))

    if exporter is not None:
        chosen: SpanExporter = exporter
    elif endpoint is not None:
        try:
            from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
        except ImportError as exc:  # pragma: no cover
            raise ImportError(
                "opentelemetry-exporter-otlp-proto-http is required to export spans to an OTLP "
                "endpoint; install the 'otlp' extra"
            ) from exc
        chosen = OTLPSpanExporter(endpoint=endpoint)
    else:
        chosen = ConsoleSpanExporter()

    provider.add_span_processor(SimpleSpanProcessor(chosen))
    trace.set_tracer_provider(provider)
    _provider = provider
    return provider


def get_tracer(name: str) -> trace.Tracer:
    """Tracer from the provider set by `configure_tracing`, else the global one."""
    if _provider is not None:
        return _provider.get_tracer(name)
    return trace.get_tracer(name)


def traced_embedding(
    embed_fn: Callable[[str], Awaitable[Sequence[float]]],
    tracer: trace.Tracer,
    model_name: str = "",
) -> Callable[[str], Awaitable[Sequence[float]]]:
    """Wrap an async embed callable so every call records an ``embedding`` span."""

    async def _wrapped(text: str) -> Sequence[float]:
        with tracer.start_as_current_span("embedding") as span:
            span.set_attribute(ATTR_INPUT_VALUE, text[:500])
            if model_name:
                span.set_attribute(ATTR_EMBEDDING_MODEL_NAME, model_name)
            try:
                vector = await embed_fn(text)
            except Exception as exc:
                span.set_status(trace.StatusCode.ERROR, str(exc))
                span.record_exception(exc)
                raise
            span.set_attribute(ATTR_EMBEDDING_DIMENSIONS, len(vector))
            span.set_status(trace.StatusCode.OK)
            return vector

    return _wrapped


def traced_search(
    search_fn: Callable[..., Awaitable[list[SearchResult]]],
    tracer: trace.Tracer,
) -> Callable[..., Awaitable[list[SearchResult]]]:
    """Wrap a `VectorIndex.search`-shaped callable with a ``retrieval`` span.

    The span records the collection, the requested limit and the number of
    results returned; failures mark the span as ERROR and re-raise.
    """

    async def _wrapped(collection: str, vector: Sequence[float], limit: int, **kwargs) -> list[SearchResult]:
        with tracer.start_as_current_span("retrieval") as span:
            span.set_attribute(ATTR_RETRIEVAL_COLLECTION, collection)
            span.set_attribute(ATTR_RETRIEVAL_LIMIT, limit)
            try:
                results = await search_fn(collection, vector, limit, **kwargs)
            except Exception as exc:
                span.set_status(trace.StatusCode.ERROR, str(exc))
                span.record_exception(exc)
                raise
            span.set_attribute(ATTR_RETRIEVAL_DOCUMENTS, len(results))
            span.set_status(trace.StatusCode.OK)
            return results

    return _wrapped
