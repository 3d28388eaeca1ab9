from __future__ import annotations


class RagEvalError(Exception):
    """Base class for failures raised by the rag_eval package."""


class ConfigurationError(RagEvalError, ValueError):
    """Invalid chunking/evaluation settings or an unknown provider/mode tag."""


class ProviderError(RagEvalError):
    """An embedding call failed or returned an unusable vector."""


class VectorIndexError(RagEvalError):
    """A vector index call failed or returned a malformed payload."""


class EvaluationError(RagEvalError):
    """An evaluation run cannot be produced from the given results."""
