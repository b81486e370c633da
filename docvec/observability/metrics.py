"""Prometheus metrics for docvec.

Provides metrics instrumentation for:
- Embedding request latency and batch sizes
- Datastore operation latency
- Retries of remote calls
- Pipeline runs by terminal state
- Search result counts and top scores
"""

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    Counter,
    Histogram,
    generate_latest,
)

# Embedding Metrics
EMBEDDING_REQUEST_DURATION = Histogram(
    "docvec_embedding_request_duration_seconds",
    "Embedding request duration in seconds",
    ["model", "status"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0],
)

EMBEDDING_REQUEST_TOTAL = Counter(
    "docvec_embedding_requests_total",
    "Total embedding requests",
    ["model", "status"],
)

EMBEDDING_BATCH_SIZE = Histogram(
    "docvec_embedding_batch_size",
    "Texts per embedding request",
    ["model"],
    buckets=[1, 5, 10, 25, 50, 100, 250, 500],
)

# Datastore Metrics
STORE_OPERATION_DURATION = Histogram(
    "docvec_store_operation_duration_seconds",
    "Datastore operation duration in seconds",
    ["backend", "operation", "status"],
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0],
)

STORE_OPERATION_TOTAL = Counter(
    "docvec_store_operations_total",
    "Total datastore operations",
    ["backend", "operation", "status"],
)

# Retry Metrics
RETRY_ATTEMPTS_TOTAL = Counter(
    "docvec_retry_attempts_total",
    "Remote call attempts that were retried",
    ["operation"],
)

# Pipeline Metrics
PIPELINE_RUN_DURATION = Histogram(
    "docvec_pipeline_run_duration_seconds",
    "Pipeline invocation duration in seconds",
    ["pipeline", "state"],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0],
)

PIPELINE_RUN_TOTAL = Counter(
    "docvec_pipeline_runs_total",
    "Pipeline invocations by terminal state",
    ["pipeline", "state"],
)

# Search Metrics
SEARCH_MATCHES_RETURNED = Histogram(
    "docvec_search_matches_returned",
    "Number of matches returned per search",
    buckets=[0, 1, 2, 3, 5, 10, 20, 50],
)

SEARCH_TOP_SCORE = Histogram(
    "docvec_search_top_score",
    "Top similarity score per search",
    buckets=[0.1, 0.2, 0.3, 0.4, 0.5, 0.6, 0.7, 0.8, 0.9, 1.0],
)


def get_metrics() -> bytes:
    """Generate Prometheus metrics output."""
    return generate_latest()


def get_metrics_content_type() -> str:
    """Get the content type for metrics response."""
    return CONTENT_TYPE_LATEST


def track_embedding_request(
    model: str,
    duration: float,
    batch_size: int,
    success: bool = True,
) -> None:
    """Track embedding request metrics.

    Args:
        model: Embedding model name.
        duration: Request duration in seconds.
        batch_size: Number of texts in the batch.
        success: Whether the request succeeded.
    """
    status = "success" if success else "error"

    EMBEDDING_REQUEST_DURATION.labels(model=model, status=status).observe(duration)
    EMBEDDING_REQUEST_TOTAL.labels(model=model, status=status).inc()
    EMBEDDING_BATCH_SIZE.labels(model=model).observe(batch_size)


def track_store_operation(
    backend: str,
    operation: str,
    duration: float,
    success: bool = True,
) -> None:
    """Track datastore operation metrics.

    Args:
        backend: Datastore backend name.
        operation: Operation name (insert, query_nearest, ...).
        duration: Operation duration in seconds.
        success: Whether the operation succeeded.
    """
    status = "success" if success else "error"

    STORE_OPERATION_DURATION.labels(
        backend=backend, operation=operation, status=status
    ).observe(duration)
    STORE_OPERATION_TOTAL.labels(
        backend=backend, operation=operation, status=status
    ).inc()


def track_retry(operation: str) -> None:
    """Count a retried remote call."""
    RETRY_ATTEMPTS_TOTAL.labels(operation=operation).inc()


def track_pipeline_run(pipeline: str, state: str, duration: float) -> None:
    """Track a finished pipeline invocation.

    Args:
        pipeline: Pipeline name (ingest, ingest_many, search).
        state: Terminal state value (done or failed).
        duration: Invocation duration in seconds.
    """
    PIPELINE_RUN_DURATION.labels(pipeline=pipeline, state=state).observe(duration)
    PIPELINE_RUN_TOTAL.labels(pipeline=pipeline, state=state).inc()


def track_search_results(
    matches_returned: int,
    top_score: float,
) -> None:
    """Track search result metrics.

    Args:
        matches_returned: Number of matches returned.
        top_score: Highest similarity score.
    """
    SEARCH_MATCHES_RETURNED.observe(matches_returned)
    if top_score > 0:
        SEARCH_TOP_SCORE.observe(top_score)
