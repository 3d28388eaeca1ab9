from __future__ import annotations

import asyncio
import os
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Protocol, Sequence

import numpy as np
from openai import AsyncOpenAI, OpenAIError

from .errors import ConfigurationError, ProviderError
from .log import get_logger

logger = get_logger(__name__)

EmbedFn = Callable[[str], Awaitable[Sequence[float]]]

OLLAMA_BASE_URL = "http://localhost:11434/v1"


class EmbeddingProvider(str, Enum):
    OPENAI = "openai"
    OLLAMA = "ollama"
    QWEN3 = "qwen3"
    EMBEDDING_GEMMA = "embeddinggemma"


@dataclass(frozen=True, slots=True)
class ProviderSpec:
    """Static model settings for one embedding provider tag."""

    model: str
    dimensions: int
    local: bool = False
    api_key_env: str | None = None


PROVIDERS: dict[EmbeddingProvider, ProviderSpec] = {
    EmbeddingProvider.OPENAI: ProviderSpec(
        model="text-embedding-3-large", dimensions=3072, api_key_env="OPENAI_API_KEY"
    ),
    EmbeddingProvider.OLLAMA: ProviderSpec(model="nomic-embed-text", dimensions=768, local=True),
    EmbeddingProvider.QWEN3: ProviderSpec(model="qwen3-embedding:latest", dimensions=4096, local=True),
    EmbeddingProvider.EMBEDDING_GEMMA: ProviderSpec(model="embeddinggemma:latest", dimensions=768, local=True),
}


class EmbeddingClient(Protocol):
    dimensions: int

    async def embed(self, text: str) -> list[float]: ...


class OpenAIEmbeddingClient:
    """Embedding client for OpenAI and OpenAI-compatible (Ollama) endpoints."""

    def __init__(
        self,
        model: str,
        dimensions: int,
        client: AsyncOpenAI | None = None,
        base_url: str | None = None,
        api_key: str | None = None,
    ) -> None:
        self.model = model
        self.dimensions = dimensions
        self._client = client or AsyncOpenAI(base_url=base_url, api_key=api_key)

    async def embed(self, text: str) -> list[float]:
        try:
            response = await self._client.embeddings.create(model=self.model, input=text)
        except OpenAIError as exc:
            raise ProviderError(f"embedding request to {self.model} failed: {exc}") from exc

        vector = list(response.data[0].embedding)
        if len(vector) != self.dimensions:
            raise ProviderError(
                f"{self.model} returned {len(vector)} dimensions, expected {self.dimensions}"
            )
        return vector


def parse_provider(tag: str) -> EmbeddingProvider:
    """Resolve a provider tag, failing on anything outside the registry."""
    try:
        return EmbeddingProvider(tag.strip().lower())
    except ValueError:
        known = ", ".join(provider.value for provider in EmbeddingProvider)
        raise ConfigurationError(f"Unknown embedding provider {tag!r}; use one of: {known}") from None


def build_embedding_client(
    provider: EmbeddingProvider,
    ollama_base_url: str = OLLAMA_BASE_URL,
    client: AsyncOpenAI | None = None,
) -> OpenAIEmbeddingClient:
    """Construct the embedding client registered for `provider`.

    Args:
        provider: Provider tag resolved by `parse_provider`.
        ollama_base_url: OpenAI-compatible endpoint used by local providers.
        client: Optional pre-built `AsyncOpenAI` client (tests, custom transports).

    Returns:
        Client configured with the provider's model and dimensionality.
    """
    spec = PROVIDERS[provider]
    if spec.local:
        # Ollama ignores the key but the OpenAI SDK requires one.
        base_url, api_key = ollama_base_url, "ollama"
    else:
        base_url, api_key = None, os.getenv(spec.api_key_env) if spec.api_key_env else None
    logger.info("embedding_provider_selected", provider=provider.value, model=spec.model, dimensions=spec.dimensions)
    return OpenAIEmbeddingClient(
        model=spec.model,
        dimensions=spec.dimensions,
        client=client,
        base_url=base_url,
        api_key=api_key,
    )


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two vectors; NaN when either one is all zeros."""
    left = np.asarray(a, dtype=np.float64)
    right = np.asarray(b, dtype=np.float64)
    denominator = np.linalg.norm(left) * np.linalg.norm(right)
    if denominator == 0.0:
        return float("nan")
    return float(np.dot(left, right) / denominator)


def consecutive_similarities(matrix: np.ndarray) -> np.ndarray:
    """Similarity of each row to the row before it.

    Args:
        matrix: Embedding matrix with one row per sentence, in document order.

    Returns:
        A 1D array of length `len(matrix) - 1`; entry `i` compares rows `i`
        and `i + 1`. Pairs involving a zero vector score -1.0.
    """
    if len(matrix) < 2:
        return np.zeros(0, dtype=np.float64)
    vectors = np.asarray(matrix, dtype=np.float64)
    norms = np.linalg.norm(vectors, axis=1)
    dots = np.sum(vectors[1:] * vectors[:-1], axis=1)
    denominators = norms[1:] * norms[:-1]
    with np.errstate(divide="ignore", invalid="ignore"):
        similarities = dots / denominators
    similarities[denominators == 0.0] = -1.0
    return similarities


async def embed_many(embed_fn: EmbedFn, texts: Sequence[str], concurrency: int = 8) -> np.ndarray:
    """Embed texts with at most `concurrency` requests in flight.

    Results are stored by input position, so the returned rows line up with
    `texts` whatever order the requests complete in. The first failure
    cancels the outstanding requests and is re-raised.

    Args:
        embed_fn: Async callable mapping one text to one vector.
        texts: Texts to embed.
        concurrency: Maximum number of simultaneous requests.

    Returns:
        A `float64` matrix shaped `(len(texts), dimensions)`.
    """
    if concurrency < 1:
        raise ConfigurationError("concurrency must be at least 1")
    if not texts:
        return np.zeros((0, 0), dtype=np.float64)

    semaphore = asyncio.Semaphore(concurrency)
    vectors: list[Sequence[float] | None] = [None] * len(texts)

    async def _embed_at(position: int) -> None:
        async with semaphore:
            vectors[position] = await embed_fn(texts[position])

    tasks = [asyncio.ensure_future(_embed_at(position)) for position in range(len(texts))]
    try:
        await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise

    lengths = {len(vector) for vector in vectors if vector is not None}
    if len(lengths) != 1:
        raise ProviderError(f"embedding provider returned inconsistent dimensions: {sorted(lengths)}")
    return np.asarray(vectors, dtype=np.float64)
