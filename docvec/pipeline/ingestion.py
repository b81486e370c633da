"""Ingestion pipeline: embed text, then store it."""

from docvec.exceptions import ValidationError
from docvec.logging_config import get_logger
from docvec.pipeline.base import Pipeline
from docvec.pipeline.models import PipelineRun, PipelineState
from docvec.store.models import Document, InsertConfirmation

logger = get_logger(__name__)


class IngestionPipeline(Pipeline):
    """Embeds text and writes it, with its vector, to the store.

    Not idempotent: ingesting the same text twice stores two documents.
    A failed embed never reaches the store; a failed insert discards the
    computed vector. Errors propagate unchanged.
    """

    async def ingest(self, text: str) -> InsertConfirmation:
        """Embed and store one text.

        Args:
            text: Non-empty text to ingest.

        Returns:
            Confirmation of the stored document.

        Raises:
            ValidationError: If the text is empty.
            EmbeddingServiceError: If embedding fails.
            StorageError: If the insert fails.
        """
        _require_text(text)

        async with self._slot():
            run = PipelineRun("ingest")
            try:
                result = await self._embedder.embed(text)
                run.advance(PipelineState.PENDING_STORE_OP)
                confirmation = await self._store.insert(
                    Document(content=text, embedding=result.embedding)
                )
            except Exception as e:
                run.fail(e)
                raise
            run.complete()

        logger.info(
            "Document ingested",
            extra={"id": confirmation.id, "collection": confirmation.collection},
        )
        return confirmation

    async def ingest_many(self, texts: list[str]) -> list[InsertConfirmation]:
        """Embed a batch of texts, then store them in one write.

        Args:
            texts: Non-empty texts to ingest.

        Returns:
            One confirmation per text, in input order.

        Raises:
            ValidationError: If any text is empty.
            EmbeddingServiceError: If embedding fails.
            StorageError: If the insert fails.
        """
        if not texts:
            return []
        for text in texts:
            _require_text(text)

        async with self._slot():
            run = PipelineRun("ingest_many")
            try:
                results = await self._embedder.embed_batch(texts)
                run.advance(PipelineState.PENDING_STORE_OP)
                confirmations = await self._store.insert_many(
                    [
                        Document(content=text, embedding=result.embedding)
                        for text, result in zip(texts, results, strict=True)
                    ]
                )
            except Exception as e:
                run.fail(e)
                raise
            run.complete()

        logger.info(
            f"Ingested {len(confirmations)} documents",
            extra={"count": len(confirmations)},
        )
        return confirmations


def _require_text(text: str) -> None:
    if not text or not text.strip():
        raise ValidationError(
            "Cannot ingest empty text",
            details={"length": len(text) if text else 0},
        )
