"""Embedder interface and HTTP implementations."""

import time
from abc import ABC, abstractmethod
from typing import Any

import httpx

from docvec.config import EmbeddingSettings, get_settings
from docvec.embeddings.models import EmbeddingResult
from docvec.exceptions import EmbeddingServiceError, ErrorCode
from docvec.http_errors import service_message
from docvec.logging_config import get_logger
from docvec.observability.metrics import track_embedding_request
from docvec.resilience import RetryPolicy, call_with_retry

logger = get_logger(__name__)


class Embedder(ABC):
    """Abstract base class for embedders.

    Defines the interface for turning text into vectors.
    """

    @abstractmethod
    async def embed(self, text: str) -> EmbeddingResult:
        """Generate embedding for a single text.

        Args:
            text: Text to embed.

        Returns:
            EmbeddingResult with vector.

        Raises:
            EmbeddingServiceError: If embedding fails.
        """
        ...

    @abstractmethod
    async def embed_batch(self, texts: list[str]) -> list[EmbeddingResult]:
        """Generate embeddings for multiple texts.

        Args:
            texts: List of texts to embed.

        Returns:
            List of EmbeddingResult objects, in input order.

        Raises:
            EmbeddingServiceError: If embedding fails.
        """
        ...

    @property
    @abstractmethod
    def model_name(self) -> str:
        """Get the model name used for embeddings."""
        ...

    @property
    @abstractmethod
    def dimensions(self) -> int | None:
        """Get the embedding dimensions, if known."""
        ...

    async def close(self) -> None:
        """Release any held resources."""


class HTTPEmbedder(Embedder):
    """Shared machinery for HTTP embedding providers.

    Owns the HTTP client, splits inputs into batches, applies the retry
    policy and maps transport failures onto ``EmbeddingServiceError``.
    Subclasses describe the endpoint, payload and response shape.
    """

    # Known model dimensions
    MODEL_DIMENSIONS: dict[str, int] = {}

    def __init__(
        self,
        settings: EmbeddingSettings | None = None,
        client: httpx.AsyncClient | None = None,
        dimensions: int | None = None,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        """Initialize the HTTP embedder.

        Args:
            settings: Embedding configuration. Loaded from environment if not provided.
            client: HTTP client. Creates new one if not provided.
            dimensions: Expected vector width. Responses of any other width are rejected.
            retry_policy: Retry policy for each request. Defaults to a single attempt.
        """
        self._settings = settings or get_settings().embedding
        self._client = client
        self._owns_client = client is None
        self._expected_dimensions = dimensions
        self._learned_dimensions: int | None = None
        self._retry_policy = retry_policy or RetryPolicy.no_retry()

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._settings.timeout)
        return self._client

    async def close(self) -> None:
        """Close the HTTP client if we own it."""
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    @property
    def model_name(self) -> str:
        """Get the model name."""
        return self._settings.model

    @property
    def dimensions(self) -> int | None:
        """Get embedding dimensions.

        Configured width first, then the width seen in responses, then the
        known width of the model.
        """
        if self._expected_dimensions is not None:
            return self._expected_dimensions
        if self._learned_dimensions is not None:
            return self._learned_dimensions
        return self.MODEL_DIMENSIONS.get(self._settings.model)

    async def embed(self, text: str) -> EmbeddingResult:
        """Generate embedding for a single text."""
        results = await self.embed_batch([text])
        return results[0]

    async def embed_batch(self, texts: list[str]) -> list[EmbeddingResult]:
        """Generate embeddings for multiple texts, one request per batch."""
        if not texts:
            return []

        client = await self._get_client()
        all_results: list[EmbeddingResult] = []
        batch_size = self._settings.batch_size

        for i in range(0, len(texts), batch_size):
            batch = texts[i : i + batch_size]
            vectors = await call_with_retry(
                lambda batch=batch: self._request_batch(client, batch),
                self._retry_policy,
                operation_name="embed",
            )
            all_results.extend(
                EmbeddingResult(
                    text=text,
                    embedding=vector,
                    model=self._settings.model,
                    dimensions=len(vector),
                )
                for text, vector in zip(batch, vectors, strict=True)
            )

        return all_results

    async def _request_batch(
        self,
        client: httpx.AsyncClient,
        texts: list[str],
    ) -> list[list[float]]:
        """Make one embedding request and validate the vectors it returns.

        Raises:
            EmbeddingServiceError: If the request fails or the output is malformed.
        """
        url = self._endpoint()
        start = time.perf_counter()
        success = False

        try:
            response = await self._post(client, url, texts)
            vectors = self._parse_vectors(response, texts)
            self._check_dimensions(vectors)
            success = True
            return vectors
        finally:
            track_embedding_request(
                model=self._settings.model,
                duration=time.perf_counter() - start,
                batch_size=len(texts),
                success=success,
            )

    async def _post(
        self,
        client: httpx.AsyncClient,
        url: str,
        texts: list[str],
    ) -> httpx.Response:
        """POST the payload, translating transport failures."""
        try:
            response = await client.post(
                url,
                json=self._payload(texts),
                headers=self._headers(),
            )
            response.raise_for_status()
        except httpx.TimeoutException as e:
            logger.error(f"Embedding request timed out: {e}", extra={"url": url})
            raise EmbeddingServiceError(
                f"Embedding service timed out: {e}",
                code=ErrorCode.EMBEDDING_TIMEOUT,
                details={"url": url, "timeout": self._settings.timeout},
            ) from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            message = service_message(e.response)
            logger.error(
                f"Embedding request failed: {status}",
                extra={"url": url, "status": status},
            )
            raise EmbeddingServiceError(
                f"Embedding service returned {status}: {message}",
                code=_status_code_to_error(status),
                details={"status_code": status, "service_message": message},
            ) from e
        except httpx.RequestError as e:
            logger.error(f"Embedding request error: {e}", extra={"url": url})
            raise EmbeddingServiceError(
                f"Failed to connect to embedding service: {e}",
                code=ErrorCode.EMBEDDING_UNAVAILABLE,
                details={"url": url},
            ) from e

        return response

    def _parse_vectors(
        self,
        response: httpx.Response,
        texts: list[str],
    ) -> list[list[float]]:
        """Decode the response body into one vector per input."""
        try:
            data = response.json()
        except ValueError as e:
            raise EmbeddingServiceError(
                f"Invalid response from embedding service: {e}",
                code=ErrorCode.EMBEDDING_MALFORMED_RESPONSE,
                details={"error": str(e)},
            ) from e

        if isinstance(data, dict) and data.get("error"):
            message = service_message(response)
            raise EmbeddingServiceError(
                f"Embedding service returned an error: {message}",
                code=ErrorCode.EMBEDDING_SERVICE_ERROR,
                details={"service_message": message},
            )

        try:
            raw_vectors = self._extract_vectors(data)
        except (AttributeError, KeyError, IndexError, TypeError, ValueError) as e:
            raise EmbeddingServiceError(
                f"Invalid response from embedding service: {e}",
                code=ErrorCode.EMBEDDING_MALFORMED_RESPONSE,
                details={"error": str(e)},
            ) from e

        if len(raw_vectors) != len(texts):
            raise EmbeddingServiceError(
                f"Embedding service returned {len(raw_vectors)} vectors "
                f"for {len(texts)} inputs",
                code=ErrorCode.EMBEDDING_MALFORMED_RESPONSE,
                details={"expected": len(texts), "received": len(raw_vectors)},
            )

        return [_as_vector(vector) for vector in raw_vectors]

    def _check_dimensions(self, vectors: list[list[float]]) -> None:
        """Reject vectors whose width differs from the configured width."""
        for vector in vectors:
            if self._expected_dimensions is not None and (
                len(vector) != self._expected_dimensions
            ):
                raise EmbeddingServiceError(
                    f"Embedding has {len(vector)} dimensions, "
                    f"expected {self._expected_dimensions}",
                    code=ErrorCode.DIMENSION_MISMATCH,
                    details={
                        "model": self._settings.model,
                        "expected": self._expected_dimensions,
                        "received": len(vector),
                    },
                )
            if self._learned_dimensions is None:
                self._learned_dimensions = len(vector)

    @abstractmethod
    def _endpoint(self) -> str:
        """URL receiving embedding requests."""
        ...

    @abstractmethod
    def _payload(self, texts: list[str]) -> dict[str, Any]:
        """Request body for a batch of texts."""
        ...

    @abstractmethod
    def _extract_vectors(self, data: Any) -> list[Any]:
        """Pull the list of raw vectors out of a decoded response."""
        ...

    def _headers(self) -> dict[str, str]:
        """Request headers; bearer auth with the configured token."""
        return {
            "Authorization": f"Bearer {self._settings.api_token.get_secret_value()}"
        }


class HuggingFaceEmbedder(HTTPEmbedder):
    """Embedder backed by the HuggingFace Inference feature-extraction task.

    Posts ``{"inputs": [...]}`` to ``{base_url}/{model}/pipeline/feature-extraction``
    and expects one pooled vector per input.
    """

    MODEL_DIMENSIONS = {
        "NeuML/pubmedbert-base-embeddings": 768,
        "sentence-transformers/all-MiniLM-L6-v2": 384,
        "sentence-transformers/all-mpnet-base-v2": 768,
        "BAAI/bge-large-en-v1.5": 1024,
        "BAAI/bge-base-en-v1.5": 768,
        "BAAI/bge-small-en-v1.5": 384,
    }

    def _endpoint(self) -> str:
        base_url = self._settings.base_url.rstrip("/")
        return f"{base_url}/{self._settings.model}/pipeline/feature-extraction"

    def _payload(self, texts: list[str]) -> dict[str, Any]:
        return {"inputs": texts}

    def _extract_vectors(self, data: Any) -> list[Any]:
        if not isinstance(data, list):
            raise TypeError(f"expected a list of vectors, got {type(data).__name__}")
        # A single input can come back unwrapped as a flat vector.
        if data and _is_number(data[0]):
            return [data]
        return data


class OpenAICompatibleEmbedder(HTTPEmbedder):
    """Embedder using an OpenAI-style embeddings API.

    Compatible with OpenAI-style embedding APIs and
    text-embeddings-inference (TEI) servers.
    """

    MODEL_DIMENSIONS = {
        "BAAI/bge-large-en-v1.5": 1024,
        "BAAI/bge-base-en-v1.5": 768,
        "BAAI/bge-small-en-v1.5": 384,
        "text-embedding-ada-002": 1536,
        "text-embedding-3-small": 1536,
        "text-embedding-3-large": 3072,
    }

    def _endpoint(self) -> str:
        return f"{self._settings.base_url.rstrip('/')}/embeddings"

    def _payload(self, texts: list[str]) -> dict[str, Any]:
        return {"input": texts, "model": self._settings.model}

    def _extract_vectors(self, data: Any) -> list[Any]:
        items = sorted(data["data"], key=lambda item: item.get("index", 0))
        return [item["embedding"] for item in items]


def _is_number(value: Any) -> bool:
    return isinstance(value, int | float) and not isinstance(value, bool)


def _as_vector(raw: Any) -> list[float]:
    """Validate one raw vector as a non-empty flat list of numbers."""
    if not isinstance(raw, list) or not raw or not all(_is_number(v) for v in raw):
        raise EmbeddingServiceError(
            "Invalid response from embedding service: "
            "expected a non-empty list of numbers per input",
            code=ErrorCode.EMBEDDING_MALFORMED_RESPONSE,
            details={"received_type": type(raw).__name__},
        )
    return [float(v) for v in raw]


def _status_code_to_error(status: int) -> ErrorCode:
    """Map an HTTP status onto an embedding error code."""
    if status == 429:
        return ErrorCode.EMBEDDING_RATE_LIMIT
    if status >= 500:
        return ErrorCode.EMBEDDING_UNAVAILABLE
    return ErrorCode.EMBEDDING_SERVICE_ERROR
