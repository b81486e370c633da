"""Construct pipelines from configuration.

Every remote client is built here and handed to the components that use
it, so tests and callers can substitute their own.
"""

import asyncio
from types import TracebackType

from docvec.config import (
    EmbeddingProvider,
    Settings,
    StoreBackend,
    get_settings,
)
from docvec.embeddings.models import EmbeddingResult
from docvec.embeddings.service import (
    Embedder,
    HTTPEmbedder,
    HuggingFaceEmbedder,
    OpenAICompatibleEmbedder,
)
from docvec.exceptions import ConfigurationError, ErrorCode
from docvec.logging_config import get_logger
from docvec.pipeline.ingestion import IngestionPipeline
from docvec.pipeline.query import (
    DEFAULT_MATCH_COUNT,
    DEFAULT_MATCH_THRESHOLD,
    QueryPipeline,
)
from docvec.resilience import RetryPolicy
from docvec.store.models import DocumentMatch, InsertConfirmation
from docvec.store.qdrant import QdrantDocumentStore
from docvec.store.service import DocumentStore
from docvec.store.supabase import SupabaseDocumentStore

logger = get_logger(__name__)


def build_embedder(settings: Settings) -> Embedder:
    """Create the configured embedder."""
    retry_policy = RetryPolicy.from_settings(settings.retry)
    embedder_cls: type[HTTPEmbedder] = HuggingFaceEmbedder
    if settings.embedding.provider == EmbeddingProvider.OPENAI:
        embedder_cls = OpenAICompatibleEmbedder
    return embedder_cls(
        settings=settings.embedding,
        dimensions=settings.vector_dimensions,
        retry_policy=retry_policy,
    )


def build_store(settings: Settings) -> DocumentStore:
    """Create the configured document store."""
    retry_policy = RetryPolicy.from_settings(settings.retry)
    if settings.store.backend == StoreBackend.QDRANT:
        return QdrantDocumentStore(
            settings=settings.store,
            dimensions=settings.vector_dimensions,
            retry_policy=retry_policy,
        )
    return SupabaseDocumentStore(
        settings=settings.store,
        dimensions=settings.vector_dimensions,
        retry_policy=retry_policy,
    )


def validate_vector_dimensions(embedder: Embedder, settings: Settings) -> None:
    """Check the embedding model's known width against the configured width.

    Models of unknown width pass; their vectors are checked per response.

    Raises:
        ConfigurationError: If the model is known to produce another width.
    """
    known = getattr(embedder, "MODEL_DIMENSIONS", {}).get(embedder.model_name)
    if known is not None and known != settings.vector_dimensions:
        raise ConfigurationError(
            f"Model {embedder.model_name} produces {known}-dimensional vectors, "
            f"but VECTOR_DIMENSIONS is {settings.vector_dimensions}",
            code=ErrorCode.DIMENSION_MISMATCH,
            details={
                "model": embedder.model_name,
                "model_dimensions": known,
                "configured_dimensions": settings.vector_dimensions,
            },
        )


class DocumentPipelines:
    """Embedder, store and both pipelines sharing one lifetime.

    Use as an async context manager so network clients are closed::

        async with await create_pipelines() as pipelines:
            await pipelines.ingest("The mitochondria is the powerhouse of the cell.")
            matches = await pipelines.search("mitochondria function")
    """

    def __init__(
        self,
        embedder: Embedder,
        store: DocumentStore,
        match_threshold: float = DEFAULT_MATCH_THRESHOLD,
        match_count: int = DEFAULT_MATCH_COUNT,
        max_concurrency: int | None = None,
    ) -> None:
        self.embedder = embedder
        self.store = store
        limiter = asyncio.Semaphore(max_concurrency) if max_concurrency else None
        self.ingestion = IngestionPipeline(embedder, store, limiter=limiter)
        self.query = QueryPipeline(
            embedder,
            store,
            limiter=limiter,
            match_threshold=match_threshold,
            match_count=match_count,
        )

    async def ingest(self, text: str) -> InsertConfirmation:
        """Embed and store one text."""
        return await self.ingestion.ingest(text)

    async def ingest_many(self, texts: list[str]) -> list[InsertConfirmation]:
        """Embed and store a batch of texts."""
        return await self.ingestion.ingest_many(texts)

    async def search(
        self,
        query_text: str,
        match_threshold: float | None = None,
        match_count: int | None = None,
    ) -> list[DocumentMatch]:
        """Find stored documents similar to the query text."""
        return await self.query.search(query_text, match_threshold, match_count)

    async def close(self) -> None:
        """Close the embedder's and the store's clients."""
        try:
            await self.embedder.close()
        finally:
            await self.store.close()

    async def __aenter__(self) -> "DocumentPipelines":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()


async def create_pipelines(
    settings: Settings | None = None,
    verify: bool = False,
) -> DocumentPipelines:
    """Build pipelines from configuration and validate them.

    Args:
        settings: Configuration. Loaded from the environment if not provided,
            which fails immediately when a required value is missing.
        verify: Also probe the remote services: embed a sample text and
            check the datastore schema against the configured width.

    Returns:
        Ready-to-use pipelines.

    Raises:
        ConfigurationError: If configuration is missing or inconsistent.
        EmbeddingServiceError: If the verification embed fails.
        StorageError: If the datastore schema check fails.
    """
    settings = settings or get_settings()

    embedder = build_embedder(settings)
    validate_vector_dimensions(embedder, settings)
    store = build_store(settings)

    pipelines = DocumentPipelines(
        embedder,
        store,
        match_threshold=settings.pipeline.match_threshold,
        match_count=settings.pipeline.match_count,
        max_concurrency=settings.pipeline.max_concurrency,
    )

    if verify:
        try:
            probe: EmbeddingResult = await embedder.embed("dimension probe")
            logger.debug(
                "Embedding service reachable",
                extra={"model": probe.model, "dimensions": probe.dimensions},
            )
            await store.verify_schema(settings.vector_dimensions)
        except Exception:
            await pipelines.close()
            raise

    logger.info(
        "Pipelines ready",
        extra={
            "embedding_provider": settings.embedding.provider.value,
            "embedding_model": settings.embedding.model,
            "store_backend": settings.store.backend.value,
            "vector_dimensions": settings.vector_dimensions,
        },
    )
    return pipelines
