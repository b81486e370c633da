"""docvec: text-to-vector ingestion and similarity search."""

__version__ = "0.1.0"

from docvec.bootstrap import DocumentPipelines, create_pipelines  # noqa: E402
from docvec.exceptions import (  # noqa: E402
    ConfigurationError,
    DocvecError,
    EmbeddingServiceError,
    ErrorCode,
    StorageError,
    ValidationError,
)

__all__ = [
    "ConfigurationError",
    "DocumentPipelines",
    "DocvecError",
    "EmbeddingServiceError",
    "ErrorCode",
    "StorageError",
    "ValidationError",
    "__version__",
    "create_pipelines",
]
