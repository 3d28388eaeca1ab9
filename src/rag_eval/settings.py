from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv

from .chunking import ChunkingConfig
from .embeddings import OLLAMA_BASE_URL, EmbeddingProvider, parse_provider
from .errors import ConfigurationError


@dataclass(slots=True)
class EmbeddingSettings:
    """Embedding provider selection, resolved once at start-up."""

    provider: EmbeddingProvider = EmbeddingProvider.OPENAI
    ollama_base_url: str = OLLAMA_BASE_URL


@dataclass(slots=True)
class EvaluationSettings:
    """Vector collection and retrieval depth used for ingestion and evaluation."""

    collection_name: str = "my_rag_collection"
    top_k: int = 5
    log_level: str = "INFO"


@dataclass(slots=True)
class Paths:
    """Common project paths."""

    knowledge_base_dir: str = "knowledge-base"
    chroma_dir: str = "artifacts/chroma"
    runs_dir: str = "artifacts/runs"


@dataclass(slots=True)
class Settings:
    embedding: EmbeddingSettings
    chunking: ChunkingConfig
    evaluation: EvaluationSettings
    paths: Paths


def _env_number(name: str, default: str, cast):
    raw = os.getenv(name, default)
    try:
        return cast(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from None


def load_settings() -> Settings:
    """Load environment-backed settings and return typed config objects.

    Returns:
        Settings with the embedding provider, chunking thresholds, evaluation
        defaults and project paths. Unknown provider tags and invalid
        chunking values raise `ConfigurationError` here.
    """
    load_dotenv()
    return Settings(
        embedding=EmbeddingSettings(
            provider=parse_provider(os.getenv("EMBEDDING_PROVIDER", "openai")),
            ollama_base_url=os.getenv("OLLAMA_BASE_URL", OLLAMA_BASE_URL),
        ),
        chunking=ChunkingConfig(
            threshold=_env_number("CHUNK_THRESHOLD", "0.65", float),
            max_tokens=_env_number("CHUNK_MAX_TOKENS", "600", int),
            min_tokens=_env_number("CHUNK_MIN_TOKENS", "100", int),
        ),
        evaluation=EvaluationSettings(
            collection_name=os.getenv("RAG_COLLECTION", "my_rag_collection"),
            top_k=_env_number("EVAL_TOP_K", "5", int),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        ),
        paths=Paths(
            knowledge_base_dir=os.getenv("KNOWLEDGE_BASE_DIR", "knowledge-base"),
            chroma_dir=os.getenv("CHROMA_PERSIST_DIR", "artifacts/chroma"),
            runs_dir=os.getenv("RUNS_DIR", "artifacts/runs"),
        ),
    )
