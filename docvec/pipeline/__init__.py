"""Ingestion and query pipelines."""

from docvec.pipeline.ingestion import IngestionPipeline
from docvec.pipeline.models import PipelineRun, PipelineState
from docvec.pipeline.query import (
    DEFAULT_MATCH_COUNT,
    DEFAULT_MATCH_THRESHOLD,
    QueryPipeline,
)

__all__ = [
    "DEFAULT_MATCH_COUNT",
    "DEFAULT_MATCH_THRESHOLD",
    "IngestionPipeline",
    "PipelineRun",
    "PipelineState",
    "QueryPipeline",
]
