"""Query pipeline: embed query text, then search the store."""

import asyncio

from docvec.embeddings.service import Embedder
from docvec.exceptions import ValidationError
from docvec.logging_config import get_logger
from docvec.observability.metrics import track_search_results
from docvec.pipeline.base import Pipeline
from docvec.pipeline.models import PipelineRun, PipelineState
from docvec.store.models import DocumentMatch
from docvec.store.service import DocumentStore

logger = get_logger(__name__)

DEFAULT_MATCH_THRESHOLD = 0.4
DEFAULT_MATCH_COUNT = 5


class QueryPipeline(Pipeline):
    """Semantic search over stored documents.

    Embeds the query and asks the store for the nearest documents. There is
    no fallback: if either step fails, the error propagates.
    """

    def __init__(
        self,
        embedder: Embedder,
        store: DocumentStore,
        limiter: asyncio.Semaphore | None = None,
        match_threshold: float = DEFAULT_MATCH_THRESHOLD,
        match_count: int = DEFAULT_MATCH_COUNT,
    ) -> None:
        """Initialize the query pipeline.

        Args:
            embedder: Service turning text into vectors.
            store: Datastore holding documents.
            limiter: Optional semaphore bounding concurrent invocations.
            match_threshold: Default minimum similarity.
            match_count: Default maximum number of matches.
        """
        super().__init__(embedder, store, limiter)
        _check_params(match_threshold, match_count)
        self._match_threshold = match_threshold
        self._match_count = match_count

    @property
    def match_threshold(self) -> float:
        """Default minimum similarity."""
        return self._match_threshold

    @property
    def match_count(self) -> int:
        """Default maximum number of matches."""
        return self._match_count

    async def search(
        self,
        query_text: str,
        match_threshold: float | None = None,
        match_count: int | None = None,
    ) -> list[DocumentMatch]:
        """Find stored documents similar to the query text.

        Args:
            query_text: Text to search for.
            match_threshold: Minimum similarity in [0, 1]; pipeline default if None.
            match_count: Maximum matches, at least 0; pipeline default if None.

        Returns:
            Matches ordered by descending similarity. Empty for a blank query,
            a zero ``match_count`` or when nothing clears the threshold.

        Raises:
            ValidationError: If the parameters are out of range.
            EmbeddingServiceError: If embedding fails.
            StorageError: If the search fails.
        """
        threshold = self._match_threshold if match_threshold is None else match_threshold
        count = self._match_count if match_count is None else match_count
        _check_params(threshold, count)

        if not query_text.strip() or count == 0:
            return []

        async with self._slot():
            run = PipelineRun("search")
            try:
                result = await self._embedder.embed(query_text)
                run.advance(PipelineState.PENDING_STORE_OP)
                matches = await self._store.query_nearest(
                    result.embedding,
                    threshold=threshold,
                    limit=count,
                )
            except Exception as e:
                run.fail(e)
                raise
            run.complete()

        track_search_results(
            matches_returned=len(matches),
            top_score=matches[0].similarity if matches else 0.0,
        )
        logger.debug(
            f"Search returned {len(matches)} matches",
            extra={
                "query_length": len(query_text),
                "match_threshold": threshold,
                "match_count": count,
            },
        )
        return matches


def _check_params(match_threshold: float, match_count: int) -> None:
    if not 0.0 <= match_threshold <= 1.0:
        raise ValidationError(
            f"match_threshold must be within [0, 1], got {match_threshold}",
            details={"match_threshold": match_threshold},
        )
    if match_count < 0:
        raise ValidationError(
            f"match_count must not be negative, got {match_count}",
            details={"match_count": match_count},
        )
