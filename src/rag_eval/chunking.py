from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

import numpy as np

from .embeddings import EmbedFn, consecutive_similarities, embed_many
from .errors import ConfigurationError
from .log import get_logger
from .schema import Chunk, Document, Sentence
from .segmentation import TiktokenCounter, TokenCounter, split_sentences

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class ChunkingConfig:
    """Split thresholds for semantic chunking.

    Attributes:
        threshold: Consecutive-sentence similarity below which a topic shift
            is assumed.
        max_tokens: Size at which a chunk should be closed before adding the
            next sentence.
        min_tokens: Size a chunk must reach before any split is committed.
    """

    threshold: float = 0.65
    max_tokens: int = 500
    min_tokens: int = 100

    def __post_init__(self) -> None:
        if not 0.0 <= self.threshold <= 1.0:
            raise ConfigurationError(f"threshold must be within [0, 1], got {self.threshold}")
        if self.max_tokens <= 0 or self.min_tokens <= 0:
            raise ConfigurationError("max_tokens and min_tokens must be positive")
        if self.min_tokens > self.max_tokens:
            raise ConfigurationError(
                f"min_tokens ({self.min_tokens}) must not exceed max_tokens ({self.max_tokens})"
            )


def group_sentences(
    sentences: Sequence[Sentence],
    vectors: np.ndarray,
    token_counts: Sequence[int],
    config: ChunkingConfig,
) -> list[list[Sentence]]:
    """Walk sentences in order and decide chunk boundaries.

    A boundary is a candidate when the similarity to the previous sentence
    drops below `config.threshold` or when the sentence would push the chunk
    past `config.max_tokens`. It is committed only once the current chunk
    holds at least `config.min_tokens`.

    Args:
        sentences: Sentences in document order.
        vectors: One embedding row per sentence, aligned with `sentences`.
        token_counts: Token length of each sentence.
        config: Chunking thresholds.

    Returns:
        Sentence groups that partition `sentences` without gaps or overlaps.
    """
    if not sentences:
        return []
    if len(vectors) != len(sentences) or len(token_counts) != len(sentences):
        raise ValueError("sentences, vectors and token_counts must be aligned")

    similarities = consecutive_similarities(vectors)
    groups: list[list[Sentence]] = []
    current: list[Sentence] = [sentences[0]]
    current_tokens = token_counts[0]

    for index in range(1, len(sentences)):
        sentence_tokens = token_counts[index]
        topic_shift = similarities[index - 1] < config.threshold
        too_large = current_tokens + sentence_tokens > config.max_tokens

        if (topic_shift or too_large) and current_tokens >= config.min_tokens:
            groups.append(current)
            current = [sentences[index]]
            current_tokens = sentence_tokens
        else:
            current.append(sentences[index])
            current_tokens += sentence_tokens

    groups.append(current)
    return groups


class SemanticChunker:
    """Embedding-driven chunker that merges consecutive on-topic sentences."""

    def __init__(
        self,
        config: ChunkingConfig | None = None,
        count_tokens: TokenCounter | None = None,
        concurrency: int = 8,
    ) -> None:
        self.config = config or ChunkingConfig()
        self.count_tokens = count_tokens or TiktokenCounter()
        self.concurrency = concurrency

    async def _groups(self, text: str, embed_fn: EmbedFn) -> tuple[list[list[Sentence]], list[int]]:
        sentences = split_sentences(text)
        if not sentences:
            return [], []
        token_counts = [self.count_tokens(sentence.text) for sentence in sentences]
        vectors = await embed_many(embed_fn, [sentence.text for sentence in sentences], self.concurrency)
        return group_sentences(sentences, vectors, token_counts, self.config), token_counts

    async def chunk(self, text: str, embed_fn: EmbedFn) -> list[str]:
        """Split `text` into chunk texts, sentences joined by a single space."""
        groups, _ = await self._groups(text, embed_fn)
        return [" ".join(sentence.text for sentence in group) for group in groups]

    async def chunk_document(self, document: Document, embed_fn: EmbedFn) -> list[Chunk]:
        """Chunk one document into `Chunk` records.

        Args:
            document: Source document.
            embed_fn: Async callable used to embed each sentence.

        Returns:
            Chunks in document order with ids `<doc_id>-SEM-<nn>`, or
            `<doc_id>-S<section>-SEM-<nn>` for a document section.
        """
        groups, token_counts = await self._groups(document.text, embed_fn)
        prefix = document.doc_id if document.section is None else f"{document.doc_id}-S{document.section}"
        chunks: list[Chunk] = []
        for idx, group in enumerate(groups):
            chunks.append(
                Chunk(
                    chunk_id=f"{prefix}-SEM-{idx:02d}",
                    doc_id=document.doc_id,
                    text=" ".join(sentence.text for sentence in group),
                    token_count=sum(token_counts[sentence.position] for sentence in group),
                    sentences=tuple(group),
                    section=document.section,
                )
            )
        logger.debug("document_chunked", doc_id=document.doc_id, chunks=len(chunks))
        return chunks
