"""
Embedding provider interfaces and implementations.
"""

from .base import EmbeddingProvider
from .contracts import validate_embedding
from .openai import OpenAIEmbeddingProvider

__all__ = ["EmbeddingProvider", "OpenAIEmbeddingProvider", "validate_embedding"]
