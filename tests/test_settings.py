"""Tests for settings.py: load_settings defaults and env overrides."""
from __future__ import annotations

import pytest

from rag_eval.chunking import ChunkingConfig
from rag_eval.embeddings import EmbeddingProvider
from rag_eval.errors import ConfigurationError
from rag_eval.settings import EvaluationSettings, Paths, Settings, load_settings

ENV_VARS = (
    "EMBEDDING_PROVIDER",
    "OLLAMA_BASE_URL",
    "CHUNK_THRESHOLD",
    "CHUNK_MAX_TOKENS",
    "CHUNK_MIN_TOKENS",
    "RAG_COLLECTION",
    "EVAL_TOP_K",
    "LOG_LEVEL",
    "KNOWLEDGE_BASE_DIR",
    "CHROMA_PERSIST_DIR",
    "RUNS_DIR",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class TestDefaults:
    def test_paths(self):
        p = Paths()
        assert p.knowledge_base_dir == "knowledge-base"
        assert p.runs_dir == "artifacts/runs"

    def test_evaluation(self):
        e = EvaluationSettings()
        assert e.collection_name == "my_rag_collection"
        assert e.top_k == 5


class TestLoadSettings:
    def test_returns_settings(self):
        settings = load_settings()
        assert isinstance(settings, Settings)
        assert isinstance(settings.chunking, ChunkingConfig)

    def test_defaults_when_env_vars_absent(self):
        settings = load_settings()
        assert settings.embedding.provider is EmbeddingProvider.OPENAI
        assert settings.embedding.ollama_base_url == "http://localhost:11434/v1"
        assert settings.chunking == ChunkingConfig(threshold=0.65, max_tokens=600, min_tokens=100)
        assert settings.evaluation.collection_name == "my_rag_collection"
        assert settings.paths.chroma_dir == "artifacts/chroma"

    def test_env_vars_override_defaults(self, monkeypatch):
        monkeypatch.setenv("EMBEDDING_PROVIDER", "qwen3")
        monkeypatch.setenv("CHUNK_THRESHOLD", "0.5")
        monkeypatch.setenv("CHUNK_MAX_TOKENS", "300")
        monkeypatch.setenv("CHUNK_MIN_TOKENS", "50")
        monkeypatch.setenv("RAG_COLLECTION", "other")
        monkeypatch.setenv("EVAL_TOP_K", "10")
        monkeypatch.setenv("RUNS_DIR", "/tmp/runs")
        settings = load_settings()
        assert settings.embedding.provider is EmbeddingProvider.QWEN3
        assert settings.chunking.threshold == 0.5
        assert settings.chunking.max_tokens == 300
        assert settings.chunking.min_tokens == 50
        assert settings.evaluation.collection_name == "other"
        assert settings.evaluation.top_k == 10
        assert settings.paths.runs_dir == "/tmp/runs"

    def test_unknown_provider(self, monkeypatch):
        monkeypatch.setenv("EMBEDDING_PROVIDER", "word2vec")
        with pytest.raises(ConfigurationError):
            load_settings()

    def test_non_numeric_value(self, monkeypatch):
        monkeypatch.setenv("EVAL_TOP_K", "five")
        with pytest.raises(ConfigurationError, match="EVAL_TOP_K"):
            load_settings()

    def test_inconsistent_chunk_limits(self, monkeypatch):
        monkeypatch.setenv("CHUNK_MIN_TOKENS", "700")
        with pytest.raises(ConfigurationError):
            load_settings()
