from __future__ import annotations

from dataclasses import dataclass, field
import uuid
from typing import Sequence

from .chunking import SemanticChunker
from .embeddings import EmbeddingClient, embed_many
from .errors import ProviderError, VectorIndexError
from .log import get_logger
from .schema import Chunk, Document
from .tracing import ATTR_INPUT_VALUE, get_tracer, traced_embedding
from .vector_store import IndexPoint, VectorIndex

logger = get_logger(__name__)


@dataclass(slots=True)
class IngestReport:
    """Outcome of one ingestion pass.

    `failed` maps doc id (`doc_id#section` for a section) to error text.
    """

    documents: int = 0
    chunks: int = 0
    failed: dict[str, str] = field(default_factory=dict)


def point_id(doc_id: str, chunk_index: int, section: str | None = None) -> str:
    """Stable point id so re-ingesting a document overwrites its chunks."""
    key = f"{doc_id}#{chunk_index}" if section is None else f"{doc_id}#{section}#{chunk_index}"
    return str(uuid.uuid5(uuid.NAMESPACE_URL, key))


def document_label(document: Document) -> str:
    return document.doc_id if document.section is None else f"{document.doc_id}#{document.section}"


def embedding_text(document: Document, chunk: Chunk) -> str:
    # The title prefix lets name queries reach every chunk of a document.
    return f"[{document.title}]\n\n{chunk.text}"


def chunk_payload(document: Document, chunk: Chunk, chunk_index: int) -> dict:
    payload = {
        "text": chunk.text,
        "source": document.doc_id,
        "doc_id": document.doc_id,
        "category": document.category,
        "chunk_index": chunk_index,
    }
    if chunk.section is not None:
        payload["section_id"] = chunk.section
    return payload


class Ingestor:
    """Chunk, embed and upsert knowledge-base documents into one collection."""

    def __init__(
        self,
        embedder: EmbeddingClient,
        index: VectorIndex,
        collection: str,
        chunker: SemanticChunker | None = None,
        concurrency: int = 8,
    ) -> None:
        self.index = index
        self.collection = collection
        self.chunker = chunker or SemanticChunker(concurrency=concurrency)
        self.concurrency = concurrency
        self._tracer = get_tracer("rag_eval.ingestion")
        self._embed = traced_embedding(embedder.embed, self._tracer, model_name=getattr(embedder, "model", ""))

    async def ingest_document(self, document: Document) -> list[Chunk]:
        """Chunk one document and upsert one point per chunk."""
        with self._tracer.start_as_current_span("ingest-document") as span:
            span.set_attribute(ATTR_INPUT_VALUE, document_label(document))
            chunks = await self.chunker.chunk_document(document, self._embed)
            if not chunks:
                return []

            vectors = await embed_many(
                self._embed,
                [embedding_text(document, chunk) for chunk in chunks],
                self.concurrency,
            )
            points = [
                IndexPoint(
                    id=point_id(document.doc_id, idx, chunk.section),
                    vector=vectors[idx].tolist(),
                    payload=chunk_payload(document, chunk, idx),
                )
                for idx, chunk in enumerate(chunks)
            ]
            await self.index.upsert(self.collection, points)
            span.set_attribute("ingest.chunks", len(chunks))
        return chunks

    async def ingest(self, documents: Sequence[Document], fail_fast: bool = False) -> IngestReport:
        """Ingest documents one at a time.

        A provider or index failure abandons only the affected document; the
        rest are still ingested unless `fail_fast` is set.
        """
        report = IngestReport()
        for document in documents:
            label = document_label(document)
            logger.info("ingesting_document", doc_id=label)
            try:
                chunks = await self.ingest_document(document)
            except (ProviderError, VectorIndexError) as exc:
                if fail_fast:
                    raise
                logger.error("document_ingest_failed", doc_id=label, error=str(exc))
                report.failed[label] = f"{type(exc).__name__}: {exc}"
                continue
            report.documents += 1
            report.chunks += len(chunks)
            logger.info("document_ingested", doc_id=label, chunks=len(chunks))
        return report
