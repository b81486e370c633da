"""Document store data models."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class Document(BaseModel):
    """A text and its embedding, as written to the datastore.

    Attributes:
        content: The source text.
        embedding: The embedding vector produced for the text.
    """

    model_config = ConfigDict(frozen=True)

    content: str = Field(min_length=1, description="Source text")
    embedding: list[float] = Field(min_length=1, description="Embedding vector")


class MatchQuery(BaseModel):
    """Parameters of a similarity search.

    Field names follow the server-side procedure's argument names, so
    ``model_dump()`` is the request body.
    """

    query_embedding: list[float] = Field(description="Query vector")
    match_threshold: float = Field(
        ge=0.0,
        le=1.0,
        description="Minimum similarity to include",
    )
    match_count: int = Field(ge=0, description="Maximum matches to return")


class DocumentMatch(BaseModel):
    """A stored document returned by a similarity search.

    Attributes:
        id: Datastore identifier, when the datastore exposes one.
        content: Stored text.
        similarity: Similarity score (higher is more similar).
        metadata: Any other columns returned for the row.
    """

    id: str | None = Field(default=None, description="Record identifier")
    content: str = Field(description="Stored text")
    similarity: float = Field(description="Similarity score")
    metadata: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional row fields",
    )


class InsertConfirmation(BaseModel):
    """Acknowledgement that a document was written."""

    id: str | None = Field(default=None, description="Identifier of the new row")
    collection: str = Field(description="Table or collection written to")


def rank_matches(
    matches: list[DocumentMatch],
    match_threshold: float,
    match_count: int,
) -> list[DocumentMatch]:
    """Apply the search contract to raw matches.

    Drops matches below the threshold, orders by descending similarity
    and truncates to ``match_count``.
    """
    if match_count <= 0:
        return []
    kept = [m for m in matches if m.similarity >= match_threshold]
    kept.sort(key=lambda m: m.similarity, reverse=True)
    return kept[:match_count]
