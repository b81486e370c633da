"""Document store module."""

from docvec.store.models import (
    Document,
    DocumentMatch,
    InsertConfirmation,
    MatchQuery,
    rank_matches,
)
from docvec.store.qdrant import QdrantDocumentStore
from docvec.store.service import DocumentStore
from docvec.store.supabase import SupabaseDocumentStore

__all__ = [
    "Document",
    "DocumentMatch",
    "DocumentStore",
    "InsertConfirmation",
    "MatchQuery",
    "QdrantDocumentStore",
    "SupabaseDocumentStore",
    "rank_matches",
]
