"""Qdrant document store."""

import json
import math
import time
from collections.abc import Awaitable, Callable
from typing import TypeVar
from uuid import uuid4

from pydantic import ValidationError as PydanticValidationError
from qdrant_client import AsyncQdrantClient
from qdrant_client.http.exceptions import ResponseHandlingException, UnexpectedResponse
from qdrant_client.models import Distance, PointStruct, VectorParams

from docvec.config import StoreSettings, get_settings
from docvec.exceptions import DocvecError, ErrorCode, StorageError, ValidationError
from docvec.logging_config import get_logger
from docvec.observability.metrics import track_store_operation
from docvec.resilience import RetryPolicy, call_with_retry
from docvec.store.models import (
    Document,
    DocumentMatch,
    InsertConfirmation,
    MatchQuery,
    rank_matches,
)
from docvec.store.service import DocumentStore, check_dimensions

logger = get_logger(__name__)

T = TypeVar("T")


class QdrantDocumentStore(DocumentStore):
    """Document store backed by a Qdrant collection with cosine distance.

    Each document is a point with a fresh UUID and a ``content`` payload.
    """

    backend_name = "qdrant"

    def __init__(
        self,
        settings: StoreSettings | None = None,
        client: AsyncQdrantClient | None = None,
        dimensions: int | None = None,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        """Initialize Qdrant document store.

        Args:
            settings: Datastore configuration; ``table`` names the collection.
            client: Existing client (for testing).
            dimensions: Vector width the collection expects.
            retry_policy: Retry policy for each request. Defaults to a single attempt.
        """
        self._settings = settings or get_settings().store
        self._client = client
        self._owns_client = client is None
        self._dimensions = dimensions
        self._retry_policy = retry_policy or RetryPolicy.no_retry()

    @property
    def collection(self) -> str:
        return self._settings.table

    async def _get_client(self) -> AsyncQdrantClient:
        """Get or create Qdrant client."""
        if self._client is None:
            timeout = self._settings.timeout
            self._client = AsyncQdrantClient(
                url=self._settings.url,
                api_key=self._settings.api_key.get_secret_value(),
                timeout=math.ceil(timeout) if timeout is not None else None,
            )
        return self._client

    async def close(self) -> None:
        """Close the Qdrant client."""
        if self._owns_client and self._client is not None:
            await self._client.close()
            self._client = None

    async def ensure_collection(self, dimensions: int) -> bool:
        """Create the collection if it does not exist.

        Returns:
            True if the collection was created.
        """
        client = await self._get_client()

        async def create() -> bool:
            if await client.collection_exists(self.collection):
                return False
            await client.create_collection(
                collection_name=self.collection,
                vectors_config=VectorParams(size=dimensions, distance=Distance.COSINE),
            )
            return True

        created = await self._call("ensure_collection", create)
        if created:
            logger.info(
                f"Created collection: {self.collection}",
                extra={"dimensions": dimensions},
            )
        return created

    async def insert(self, document: Document) -> InsertConfirmation:
        """Upsert one point."""
        confirmations = await self.insert_many([document])
        return confirmations[0]

    async def insert_many(
        self,
        documents: list[Document],
    ) -> list[InsertConfirmation]:
        """Upsert one point per document."""
        if not documents:
            return []

        check_dimensions(
            [d.embedding for d in documents], self._dimensions, self.collection
        )
        client = await self._get_client()

        points = [
            PointStruct(
                id=str(uuid4()),
                vector=d.embedding,
                payload={"content": d.content},
            )
            for d in documents
        ]

        await call_with_retry(
            lambda: self._call(
                "insert",
                lambda: client.upsert(
                    collection_name=self.collection,
                    points=points,
                    wait=True,
                ),
            ),
            self._retry_policy,
            operation_name="store.insert",
        )

        logger.debug(
            f"Upserted {len(points)} documents",
            extra={"collection": self.collection},
        )
        return [
            InsertConfirmation(id=str(point.id), collection=self.collection)
            for point in points
        ]

    async def query_nearest(
        self,
        vector: list[float],
        threshold: float,
        limit: int,
    ) -> list[DocumentMatch]:
        """Query points above the score threshold."""
        try:
            query = MatchQuery(
                query_embedding=vector,
                match_threshold=threshold,
                match_count=limit,
            )
        except PydanticValidationError as e:
            raise ValidationError(
                f"Invalid search parameters: {e}",
                details={"threshold": threshold, "limit": limit},
            ) from e

        if query.match_count == 0:
            return []

        check_dimensions([vector], self._dimensions, self.collection)
        client = await self._get_client()

        response = await call_with_retry(
            lambda: self._call(
                "query_nearest",
                lambda: client.query_points(
                    collection_name=self.collection,
                    query=query.query_embedding,
                    limit=query.match_count,
                    score_threshold=query.match_threshold,
                    with_payload=True,
                ),
            ),
            self._retry_policy,
            operation_name="store.query_nearest",
        )

        matches = []
        for point in response.points:
            payload = dict(point.payload) if point.payload else {}
            content = payload.pop("content", None)
            if not isinstance(content, str) or point.score is None:
                raise StorageError(
                    f"Point {point.id} in {self.collection} lacks content or score",
                    code=ErrorCode.STORAGE_MALFORMED_RESPONSE,
                    details={"collection": self.collection, "point_id": str(point.id)},
                )
            matches.append(
                DocumentMatch(
                    id=str(point.id),
                    content=content,
                    similarity=point.score,
                    metadata=payload,
                )
            )

        return rank_matches(matches, query.match_threshold, query.match_count)

    async def verify_schema(self, dimensions: int) -> None:
        """Check the collection exists with the expected vector size."""
        client = await self._get_client()

        if not await self._call(
            "verify", lambda: client.collection_exists(self.collection)
        ):
            raise StorageError(
                f"Collection not found: {self.collection}",
                code=ErrorCode.COLLECTION_NOT_FOUND,
                details={"collection": self.collection},
            )

        info = await self._call(
            "verify", lambda: client.get_collection(self.collection)
        )
        vectors = info.config.params.vectors
        size = getattr(vectors, "size", None)
        if size != dimensions:
            raise StorageError(
                f"Collection {self.collection} stores vectors of size {size}, "
                f"expected {dimensions}",
                code=ErrorCode.DIMENSION_MISMATCH,
                details={
                    "collection": self.collection,
                    "expected": dimensions,
                    "received": size,
                },
            )
        logger.info(
            "Collection schema verified",
            extra={"collection": self.collection, "dimensions": dimensions},
        )

    async def _call(
        self,
        operation: str,
        request: Callable[[], Awaitable[T]],
    ) -> T:
        """Run one client call, translating failures into StorageError."""
        start = time.perf_counter()
        success = False

        try:
            result = await request()
            success = True
            return result

        except DocvecError:
            raise

        except UnexpectedResponse as e:
            status = e.status_code
            message = _qdrant_message(e)
            logger.error(
                f"Qdrant {operation} failed: {status}",
                extra={"collection": self.collection, "status": status},
            )
            raise StorageError(
                f"Qdrant returned {status}: {message}",
                code=_status_code_to_error(status),
                details={
                    "collection": self.collection,
                    "status_code": status,
                    "service_message": message,
                },
            ) from e

        except ResponseHandlingException as e:
            timed_out = "timeout" in type(getattr(e, "source", e)).__name__.lower()
            logger.error(f"Qdrant {operation} error: {e}")
            raise StorageError(
                f"Failed to reach Qdrant: {e}",
                code=(
                    ErrorCode.STORAGE_TIMEOUT
                    if timed_out
                    else ErrorCode.STORAGE_UNAVAILABLE
                ),
                details={"collection": self.collection, "error": str(e)},
            ) from e

        except Exception as e:
            raise StorageError(
                f"Qdrant {operation} failed: {e}",
                code=ErrorCode.STORAGE_ERROR,
                details={"collection": self.collection, "error": str(e)},
            ) from e

        finally:
            track_store_operation(
                backend=self.backend_name,
                operation=operation,
                duration=time.perf_counter() - start,
                success=success,
            )


def _qdrant_message(error: UnexpectedResponse) -> str:
    """Pull ``status.error`` out of a Qdrant error body."""
    raw = error.content.decode("utf-8", errors="replace") if error.content else ""
    try:
        data = json.loads(raw)
    except ValueError:
        return raw.strip()[:500] or str(error.reason_phrase)
    status = data.get("status") if isinstance(data, dict) else None
    if isinstance(status, dict) and status.get("error"):
        return str(status["error"])
    return raw.strip()[:500]


def _status_code_to_error(status: int | None) -> ErrorCode:
    if status is None or status == 429 or status >= 500:
        return ErrorCode.STORAGE_UNAVAILABLE
    if status == 404:
        return ErrorCode.COLLECTION_NOT_FOUND
    return ErrorCode.STORAGE_REJECTED
