"""Observability module for metrics and monitoring."""

from docvec.observability.metrics import (
    get_metrics,
    get_metrics_content_type,
    track_embedding_request,
    track_pipeline_run,
    track_retry,
    track_search_results,
    track_store_operation,
)

__all__ = [
    "get_metrics",
    "get_metrics_content_type",
    "track_embedding_request",
    "track_pipeline_run",
    "track_retry",
    "track_search_results",
    "track_store_operation",
]
