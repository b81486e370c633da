"""Pytest configuration and shared fixtures.

Provides in-memory stand-ins for the embedder and the datastore so that
pipeline behavior can be checked without network access.
"""

import asyncio
import math
import re
from collections.abc import Iterator
from uuid import uuid4

import pytest

from docvec.config import EmbeddingSettings, Settings, StoreSettings, get_settings
from docvec.embeddings.models import EmbeddingResult
from docvec.embeddings.service import Embedder
from docvec.store.models import (
    Document,
    DocumentMatch,
    InsertConfirmation,
    rank_matches,
)
from docvec.store.service import DocumentStore, check_dimensions

# Each concept is one axis; unknown words share a final axis.
CONCEPTS: dict[str, set[str]] = {
    "biology": {"mitochondria", "mitochondrion", "cell", "cells", "organelle", "function", "membrane"},
    "energy": {"powerhouse", "energy", "atp", "power", "fuel"},
    "computing": {"python", "code", "compiler", "software", "program"},
    "astronomy": {"star", "planet", "galaxy", "orbit", "telescope"},
}
STOPWORDS = {"the", "is", "a", "an", "of", "and", "to", "in", "what"}
CONCEPT_DIMENSIONS = len(CONCEPTS) + 1


def concept_vector(text: str) -> list[float]:
    """Deterministic bag-of-concepts vector."""
    counts = [0.0] * CONCEPT_DIMENSIONS
    for token in re.findall(r"[a-z]+", text.lower()):
        if token in STOPWORDS:
            continue
        for i, words in enumerate(CONCEPTS.values()):
            if token in words:
                counts[i] += 1
                break
        else:
            counts[-1] += 1
    return counts


def cosine(a: list[float], b: list[float]) -> float:
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    if norm == 0:
        return 0.0
    return min(1.0, round(sum(x * y for x, y in zip(a, b)) / norm, 12))


class ConceptEmbedder(Embedder):
    """Embedder stand-in mapping words onto a handful of concept axes."""

    def __init__(self, delay: float = 0.0) -> None:
        self.embed_calls = 0
        self.fail_with: Exception | None = None
        self.delay = delay
        self.in_flight = 0
        self.max_in_flight = 0

    async def embed(self, text: str) -> EmbeddingResult:
        return (await self.embed_batch([text]))[0]

    async def embed_batch(self, texts: list[str]) -> list[EmbeddingResult]:
        self.embed_calls += 1
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.fail_with is not None:
                raise self.fail_with
            return [
                EmbeddingResult(
                    text=text,
                    embedding=concept_vector(text),
                    model=self.model_name,
                    dimensions=CONCEPT_DIMENSIONS,
                )
                for text in texts
            ]
        finally:
            self.in_flight -= 1

    @property
    def model_name(self) -> str:
        return "concept-test"

    @property
    def dimensions(self) -> int:
        return CONCEPT_DIMENSIONS


class InMemoryDocumentStore(DocumentStore):
    """Store stand-in keeping rows in a list and ranking by cosine similarity."""

    backend_name = "memory"

    def __init__(self, dimensions: int | None = CONCEPT_DIMENSIONS) -> None:
        self.rows: list[tuple[str, Document]] = []
        self.insert_calls = 0
        self.query_calls = 0
        self.fail_with: Exception | None = None
        self.closed = False
        self._dimensions = dimensions

    async def insert(self, document: Document) -> InsertConfirmation:
        return (await self.insert_many([document]))[0]

    async def insert_many(
        self,
        documents: list[Document],
    ) -> list[InsertConfirmation]:
        self.insert_calls += 1
        if self.fail_with is not None:
            raise self.fail_with
        check_dimensions([d.embedding for d in documents], self._dimensions, "documents")
        confirmations = []
        for document in documents:
            row_id = str(uuid4())
            self.rows.append((row_id, document))
            confirmations.append(InsertConfirmation(id=row_id, collection="documents"))
        return confirmations

    async def query_nearest(
        self,
        vector: list[float],
        threshold: float,
        limit: int,
    ) -> list[DocumentMatch]:
        self.query_calls += 1
        if self.fail_with is not None:
            raise self.fail_with
        matches = [
            DocumentMatch(
                id=row_id,
                content=document.content,
                similarity=cosine(vector, document.embedding),
            )
            for row_id, document in self.rows
        ]
        return rank_matches(matches, threshold, limit)

    async def verify_schema(self, dimensions: int) -> None:
        return None

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def embedder() -> ConceptEmbedder:
    """Concept embedder stand-in."""
    return ConceptEmbedder()


@pytest.fixture
def store() -> InMemoryDocumentStore:
    """In-memory store stand-in."""
    return InMemoryDocumentStore()


@pytest.fixture
def settings() -> Settings:
    """Complete settings without touching the environment."""
    return Settings(
        embedding=EmbeddingSettings(api_token="hf_test_token"),
        store=StoreSettings(url="https://project.supabase.co", api_key="service-key"),
    )


@pytest.fixture(autouse=True)
def clear_settings_cache() -> Iterator[None]:
    """Keep cached settings from leaking between tests."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
