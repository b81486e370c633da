"""Document store interface."""

from abc import ABC, abstractmethod

from docvec.exceptions import ErrorCode, StorageError
from docvec.store.models import Document, DocumentMatch, InsertConfirmation


class DocumentStore(ABC):
    """Abstract base class for document stores.

    Persists documents with their embeddings and delegates similarity
    search to the remote engine.
    """

    backend_name: str = "abstract"

    @abstractmethod
    async def insert(self, document: Document) -> InsertConfirmation:
        """Write one document.

        No deduplication: inserting the same content twice creates two rows.

        Args:
            document: Document to store.

        Returns:
            Confirmation of the written row.

        Raises:
            StorageError: On connectivity failure or a rejected row.
        """
        ...

    @abstractmethod
    async def insert_many(
        self,
        documents: list[Document],
    ) -> list[InsertConfirmation]:
        """Write several documents in one request.

        Args:
            documents: Documents to store.

        Returns:
            One confirmation per document, in input order.

        Raises:
            StorageError: On connectivity failure or a rejected row.
        """
        ...

    @abstractmethod
    async def query_nearest(
        self,
        vector: list[float],
        threshold: float,
        limit: int,
    ) -> list[DocumentMatch]:
        """Find the stored documents most similar to a vector.

        Args:
            vector: Query embedding.
            threshold: Minimum similarity, in [0, 1].
            limit: Maximum number of matches.

        Returns:
            Matches by descending similarity, all scoring at least
            ``threshold``. Empty when nothing clears the threshold.

        Raises:
            StorageError: On connectivity failure or a missing procedure.
        """
        ...

    @abstractmethod
    async def verify_schema(self, dimensions: int) -> None:
        """Check that the datastore is reachable and accepts vectors of this width.

        Raises:
            StorageError: If the table, collection or procedure is unusable.
        """
        ...

    async def close(self) -> None:
        """Release any held resources."""


def check_dimensions(
    vectors: list[list[float]],
    expected: int | None,
    collection: str,
) -> None:
    """Reject vectors whose width differs from the configured width.

    Raises:
        StorageError: On the first mismatching vector.
    """
    if expected is None:
        return
    for vector in vectors:
        if len(vector) != expected:
            raise StorageError(
                f"Vector has {len(vector)} dimensions, "
                f"{collection} expects {expected}",
                code=ErrorCode.DIMENSION_MISMATCH,
                details={
                    "collection": collection,
                    "expected": expected,
                    "received": len(vector),
                },
            )
