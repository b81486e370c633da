"""Supabase (PostgREST) document store."""

import time
from typing import Any

import httpx
from pydantic import ValidationError as PydanticValidationError

from docvec.config import StoreSettings, get_settings
from docvec.exceptions import ErrorCode, StorageError, ValidationError
from docvec.http_errors import service_message
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

# PostgREST error code for an unknown RPC function.
_FUNCTION_NOT_FOUND = "PGRST202"


class SupabaseDocumentStore(DocumentStore):
    """Document store backed by a Supabase Postgres table with pgvector.

    Rows are inserted through the PostgREST table endpoint; similarity
    search calls a server-side SQL function through ``/rpc``.
    """

    backend_name = "supabase"

    def __init__(
        self,
        settings: StoreSettings | None = None,
        client: httpx.AsyncClient | None = None,
        dimensions: int | None = None,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        """Initialize the Supabase store.

        Args:
            settings: Datastore configuration.
            client: HTTP client (for testing).
            dimensions: Vector width the table expects.
            retry_policy: Retry policy for each request. Defaults to a single attempt.
        """
        self._settings = settings or get_settings().store
        self._client = client
        self._owns_client = client is None
        self._dimensions = dimensions
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
    def _rest_url(self) -> str:
        return f"{self._settings.url.rstrip('/')}/rest/v1"

    def _headers(self, prefer: str | None = None) -> dict[str, str]:
        key = self._settings.api_key.get_secret_value()
        headers = {
            "apikey": key,
            "Authorization": f"Bearer {key}",
        }
        if prefer:
            headers["Prefer"] = prefer
        return headers

    async def insert(self, document: Document) -> InsertConfirmation:
        """Insert one row into the documents table."""
        confirmations = await self.insert_many([document])
        return confirmations[0]

    async def insert_many(
        self,
        documents: list[Document],
    ) -> list[InsertConfirmation]:
        """Insert rows in a single PostgREST request."""
        if not documents:
            return []

        table = self._settings.table
        check_dimensions([d.embedding for d in documents], self._dimensions, table)

        rows = [{"content": d.content, "embedding": d.embedding} for d in documents]
        id_column = self._settings.id_column

        response = await call_with_retry(
            lambda: self._send(
                "insert",
                "POST",
                f"{self._rest_url}/{table}",
                json=rows,
                params={"select": id_column},
                prefer="return=representation",
            ),
            self._retry_policy,
            operation_name="store.insert",
        )

        data = _decode(response)
        if not isinstance(data, list) or len(data) != len(rows):
            raise StorageError(
                "Datastore did not return the inserted rows",
                code=ErrorCode.STORAGE_MALFORMED_RESPONSE,
                details={"table": table, "expected": len(rows)},
            )

        logger.debug(f"Inserted {len(rows)} documents", extra={"table": table})

        return [
            InsertConfirmation(
                id=_optional_str(row.get(id_column)) if isinstance(row, dict) else None,
                collection=table,
            )
            for row in data
        ]

    async def query_nearest(
        self,
        vector: list[float],
        threshold: float,
        limit: int,
    ) -> list[DocumentMatch]:
        """Call the match function and rank the rows it returns."""
        query = _match_query(vector, threshold, limit)
        if query.match_count == 0:
            return []

        check_dimensions([vector], self._dimensions, self._settings.table)

        function = self._settings.match_function
        response = await call_with_retry(
            lambda: self._send(
                "query_nearest",
                "POST",
                f"{self._rest_url}/rpc/{function}",
                json=query.model_dump(),
            ),
            self._retry_policy,
            operation_name="store.query_nearest",
        )

        data = _decode(response)
        if not isinstance(data, list):
            raise StorageError(
                f"{function} returned {type(data).__name__}, expected rows",
                code=ErrorCode.STORAGE_MALFORMED_RESPONSE,
                details={"function": function},
            )

        matches = [self._row_to_match(row) for row in data]
        return rank_matches(matches, query.match_threshold, query.match_count)

    async def verify_schema(self, dimensions: int) -> None:
        """Probe the table and the match function.

        The function is called with a unit vector of the configured width,
        which pgvector rejects when the column width differs.
        """
        table = self._settings.table
        await self._send(
            "verify",
            "GET",
            f"{self._rest_url}/{table}",
            params={"select": self._settings.id_column, "limit": "1"},
        )

        probe = MatchQuery(
            query_embedding=[1.0] + [0.0] * (dimensions - 1),
            match_threshold=1.0,
            match_count=0,
        )
        await self._send(
            "verify",
            "POST",
            f"{self._rest_url}/rpc/{self._settings.match_function}",
            json=probe.model_dump(),
        )
        logger.info(
            "Datastore schema verified",
            extra={"table": table, "dimensions": dimensions},
        )

    async def _send(
        self,
        operation: str,
        method: str,
        url: str,
        json: Any = None,
        params: dict[str, str] | None = None,
        prefer: str | None = None,
    ) -> httpx.Response:
        """Send one request, translating failures into StorageError."""
        client = await self._get_client()
        start = time.perf_counter()
        success = False

        try:
            response = await client.request(
                method,
                url,
                json=json,
                params=params,
                headers=self._headers(prefer),
            )
            response.raise_for_status()
            success = True
            return response

        except httpx.TimeoutException as e:
            logger.error(f"Datastore request timed out: {e}", extra={"url": url})
            raise StorageError(
                f"Datastore timed out: {e}",
                code=ErrorCode.STORAGE_TIMEOUT,
                details={"url": url, "timeout": self._settings.timeout},
            ) from e

        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            message = service_message(e.response)
            code = _status_code_to_error(operation, status, _postgrest_code(e.response))
            logger.error(
                f"Datastore {operation} failed: {status}",
                extra={"url": url, "status": status},
            )
            raise StorageError(
                f"Datastore returned {status}: {message}",
                code=code,
                details={"status_code": status, "service_message": message},
            ) from e

        except httpx.RequestError as e:
            logger.error(f"Datastore request error: {e}", extra={"url": url})
            raise StorageError(
                f"Failed to connect to datastore: {e}",
                code=ErrorCode.STORAGE_UNAVAILABLE,
                details={"url": url},
            ) from e

        finally:
            track_store_operation(
                backend=self.backend_name,
                operation=operation,
                duration=time.perf_counter() - start,
                success=success,
            )

    def _row_to_match(self, row: Any) -> DocumentMatch:
        """Convert a result row into a DocumentMatch."""
        score_field = self._settings.score_field
        id_column = self._settings.id_column

        if not isinstance(row, dict) or "content" not in row or score_field not in row:
            raise StorageError(
                f"Search row lacks content or {score_field}",
                code=ErrorCode.STORAGE_MALFORMED_RESPONSE,
                details={"function": self._settings.match_function},
            )

        metadata = {
            k: v
            for k, v in row.items()
            if k not in ("content", "embedding", score_field, id_column)
        }
        try:
            return DocumentMatch(
                id=_optional_str(row.get(id_column)),
                content=row["content"],
                similarity=float(row[score_field]),
                metadata=metadata,
            )
        except (TypeError, ValueError, PydanticValidationError) as e:
            raise StorageError(
                f"Search row has an unusable content or {score_field}: {e}",
                code=ErrorCode.STORAGE_MALFORMED_RESPONSE,
                details={"function": self._settings.match_function, "row": row},
            ) from e


def _match_query(vector: list[float], threshold: float, limit: int) -> MatchQuery:
    """Validate search parameters."""
    try:
        return MatchQuery(
            query_embedding=vector,
            match_threshold=threshold,
            match_count=limit,
        )
    except PydanticValidationError as e:
        raise ValidationError(
            f"Invalid search parameters: {e}",
            details={"threshold": threshold, "limit": limit},
        ) from e


def _decode(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError as e:
        raise StorageError(
            f"Invalid response from datastore: {e}",
            code=ErrorCode.STORAGE_MALFORMED_RESPONSE,
            details={"error": str(e)},
        ) from e


def _optional_str(value: Any) -> str | None:
    return None if value is None else str(value)


def _postgrest_code(response: httpx.Response) -> str | None:
    try:
        data = response.json()
    except ValueError:
        return None
    return data.get("code") if isinstance(data, dict) else None


def _status_code_to_error(operation: str, status: int, pg_code: str | None) -> ErrorCode:
    """Map an HTTP status (and PostgREST code) onto a storage error code."""
    if status == 429 or status >= 500:
        return ErrorCode.STORAGE_UNAVAILABLE
    if pg_code == _FUNCTION_NOT_FOUND or (operation == "query_nearest" and status == 404):
        return ErrorCode.PROCEDURE_NOT_FOUND
    if status in (401, 403):
        return ErrorCode.STORAGE_ERROR
    return ErrorCode.STORAGE_REJECTED
