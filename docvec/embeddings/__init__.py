"""Embedding service module."""

from docvec.embeddings.models import EmbeddingResult
from docvec.embeddings.service import (
    Embedder,
    HTTPEmbedder,
    HuggingFaceEmbedder,
    OpenAICompatibleEmbedder,
)

__all__ = [
    "Embedder",
    "EmbeddingResult",
    "HTTPEmbedder",
    "HuggingFaceEmbedder",
    "OpenAICompatibleEmbedder",
]
