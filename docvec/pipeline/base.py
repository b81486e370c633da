"""Shared wiring for the ingestion and query pipelines."""

import asyncio
from contextlib import AbstractAsyncContextManager, nullcontext

from docvec.embeddings.service import Embedder
from docvec.store.service import DocumentStore


class Pipeline:
    """Composes an embedder with a document store.

    Both collaborators are injected; the pipeline keeps no per-call state.
    """

    def __init__(
        self,
        embedder: Embedder,
        store: DocumentStore,
        limiter: asyncio.Semaphore | None = None,
    ) -> None:
        """Initialize the pipeline.

        Args:
            embedder: Service turning text into vectors.
            store: Datastore holding documents.
            limiter: Optional semaphore bounding concurrent invocations.
        """
        self._embedder = embedder
        self._store = store
        self._limiter = limiter

    def _slot(self) -> AbstractAsyncContextManager[object]:
        """Concurrency slot for one invocation."""
        if self._limiter is None:
            return nullcontext()
        return self._limiter
