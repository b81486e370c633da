"""Exception hierarchy for docvec.

All custom exceptions inherit from DocvecError.
Each exception has an error code for structured error handling.
"""

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Error codes for structured error handling."""

    # General errors (1xxx)
    INTERNAL_ERROR = "VEC-1000"
    CONFIGURATION_ERROR = "VEC-1001"
    VALIDATION_ERROR = "VEC-1002"
    DIMENSION_MISMATCH = "VEC-1003"

    # Embedding service errors (2xxx)
    EMBEDDING_SERVICE_ERROR = "VEC-2000"
    EMBEDDING_UNAVAILABLE = "VEC-2001"
    EMBEDDING_TIMEOUT = "VEC-2002"
    EMBEDDING_RATE_LIMIT = "VEC-2003"
    EMBEDDING_MALFORMED_RESPONSE = "VEC-2004"

    # Storage errors (3xxx)
    STORAGE_ERROR = "VEC-3000"
    STORAGE_UNAVAILABLE = "VEC-3001"
    STORAGE_TIMEOUT = "VEC-3002"
    STORAGE_REJECTED = "VEC-3003"
    PROCEDURE_NOT_FOUND = "VEC-3004"
    COLLECTION_NOT_FOUND = "VEC-3005"
    COLLECTION_EXISTS = "VEC-3006"
    STORAGE_MALFORMED_RESPONSE = "VEC-3007"


# Failures worth another attempt: the remote side may recover.
TRANSIENT_CODES = frozenset(
    {
        ErrorCode.EMBEDDING_UNAVAILABLE,
        ErrorCode.EMBEDDING_TIMEOUT,
        ErrorCode.EMBEDDING_RATE_LIMIT,
        ErrorCode.STORAGE_UNAVAILABLE,
        ErrorCode.STORAGE_TIMEOUT,
    }
)


class DocvecError(Exception):
    """Base exception for all docvec errors.

    Attributes:
        message: Human-readable error message.
        code: Structured error code.
        details: Additional error context.
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)

    @property
    def transient(self) -> bool:
        """Whether the failure may succeed if the call is repeated."""
        return self.code in TRANSIENT_CODES

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to a serializable dictionary."""
        return {
            "error": {
                "code": self.code.value,
                "message": self.message,
                "details": self.details,
            }
        }


class ConfigurationError(DocvecError):
    """Configuration or environment error."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.CONFIGURATION_ERROR,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, code, details)


class ValidationError(DocvecError):
    """Input validation error."""

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, ErrorCode.VALIDATION_ERROR, details)


class EmbeddingServiceError(DocvecError):
    """Remote embedding-inference failure."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.EMBEDDING_SERVICE_ERROR,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, code, details)


class StorageError(DocvecError):
    """Remote datastore failure."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.STORAGE_ERROR,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, code, details)
