"""Tests for the ingestion and query pipelines."""

import asyncio

import pytest

from docvec.exceptions import (
    EmbeddingServiceError,
    ErrorCode,
    StorageError,
    ValidationError,
)
from docvec.pipeline import (
    DEFAULT_MATCH_COUNT,
    DEFAULT_MATCH_THRESHOLD,
    IngestionPipeline,
    PipelineRun,
    PipelineState,
    QueryPipeline,
)
from tests.conftest import ConceptEmbedder, InMemoryDocumentStore

SAMPLE_TEXTS = [
    "The mitochondria is the powerhouse of the cell.",
    "Python code runs through a compiler or an interpreter.",
    "A planet orbits a star in a distant galaxy.",
    "ATP is the energy currency used for fuel.",
    "Quarterly revenue grew by twelve percent.",
]


class TestPipelineRun:
    """Tests for the pipeline state machine."""

    def test_happy_path(self) -> None:
        """Run goes embed -> store -> done."""
        run = PipelineRun("ingest")
        assert run.state == PipelineState.PENDING_EMBED

        run.advance(PipelineState.PENDING_STORE_OP)
        run.complete()

        assert run.state == PipelineState.DONE
        assert run.terminal

    def test_failure_from_embed(self) -> None:
        """Failure before storing is terminal."""
        run = PipelineRun("ingest")
        run.fail(EmbeddingServiceError("down"))

        assert run.state == PipelineState.FAILED
        assert run.terminal

    def test_no_transition_out_of_failed(self) -> None:
        """A failed run cannot be resumed."""
        run = PipelineRun("search")
        run.fail(RuntimeError("boom"))

        with pytest.raises(RuntimeError, match="illegal transition"):
            run.advance(PipelineState.PENDING_STORE_OP)

    def test_cannot_skip_store_step(self) -> None:
        """Done is only reachable after the store step."""
        run = PipelineRun("ingest")
        with pytest.raises(RuntimeError):
            run.complete()


class TestIngestionPipeline:
    """Tests for IngestionPipeline."""

    @pytest.mark.asyncio
    async def test_ingest_stores_text_and_vector(
        self,
        embedder: ConceptEmbedder,
        store: InMemoryDocumentStore,
    ) -> None:
        """Ingested text is stored with its embedding."""
        pipeline = IngestionPipeline(embedder, store)

        confirmation = await pipeline.ingest(SAMPLE_TEXTS[0])

        assert confirmation.id == store.rows[0][0]
        assert confirmation.collection == "documents"
        stored = store.rows[0][1]
        assert stored.content == SAMPLE_TEXTS[0]
        assert stored.embedding == [2.0, 1.0, 0.0, 0.0, 0.0]

    @pytest.mark.asyncio
    async def test_duplicate_ingest_creates_two_documents(
        self,
        embedder: ConceptEmbedder,
        store: InMemoryDocumentStore,
    ) -> None:
        """Identical text ingested twice is stored twice."""
        pipeline = IngestionPipeline(embedder, store)
        before = len(store.rows)

        first = await pipeline.ingest("Same text")
        second = await pipeline.ingest("Same text")

        assert len(store.rows) == before + 2
        assert first.id != second.id
        assert embedder.embed_calls == 2

    @pytest.mark.asyncio
    async def test_embed_failure_skips_insert(
        self,
        embedder: ConceptEmbedder,
        store: InMemoryDocumentStore,
    ) -> None:
        """Store is never called when embedding fails."""
        embedder.fail_with = EmbeddingServiceError(
            "Model is currently loading",
            code=ErrorCode.EMBEDDING_UNAVAILABLE,
        )
        pipeline = IngestionPipeline(embedder, store)

        with pytest.raises(EmbeddingServiceError, match="currently loading"):
            await pipeline.ingest("Some text")

        assert store.insert_calls == 0
        assert store.rows == []

    @pytest.mark.asyncio
    async def test_insert_failure_propagates_without_retry(
        self,
        embedder: ConceptEmbedder,
        store: InMemoryDocumentStore,
    ) -> None:
        """Store error surfaces unchanged after one embed and one insert."""
        error = StorageError("relation documents does not exist")
        store.fail_with = error
        pipeline = IngestionPipeline(embedder, store)

        with pytest.raises(StorageError) as exc_info:
            await pipeline.ingest("Some text")

        assert exc_info.value is error
        assert embedder.embed_calls == 1
        assert store.insert_calls == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("text", ["", "   ", "\n\t"])
    async def test_empty_text_rejected(
        self,
        text: str,
        embedder: ConceptEmbedder,
        store: InMemoryDocumentStore,
    ) -> None:
        """Empty text fails before any remote call."""
        pipeline = IngestionPipeline(embedder, store)

        with pytest.raises(ValidationError):
            await pipeline.ingest(text)

        assert embedder.embed_calls == 0
        assert store.insert_calls == 0

    @pytest.mark.asyncio
    async def test_ingest_many(
        self,
        embedder: ConceptEmbedder,
        store: InMemoryDocumentStore,
    ) -> None:
        """Batch ingestion embeds once and writes once."""
        pipeline = IngestionPipeline(embedder, store)

        confirmations = await pipeline.ingest_many(SAMPLE_TEXTS)

        assert len(confirmations) == len(SAMPLE_TEXTS)
        assert [d.content for _, d in store.rows] == SAMPLE_TEXTS
        assert embedder.embed_calls == 1
        assert store.insert_calls == 1

    @pytest.mark.asyncio
    async def test_ingest_many_empty(
        self,
        embedder: ConceptEmbedder,
        store: InMemoryDocumentStore,
    ) -> None:
        """Empty batch is a no-op."""
        pipeline = IngestionPipeline(embedder, store)

        assert await pipeline.ingest_many([]) == []
        assert embedder.embed_calls == 0

    @pytest.mark.asyncio
    async def test_ingest_many_rejects_blank_entry(
        self,
        embedder: ConceptEmbedder,
        store: InMemoryDocumentStore,
    ) -> None:
        """One blank text fails the whole batch up front."""
        pipeline = IngestionPipeline(embedder, store)

        with pytest.raises(ValidationError):
            await pipeline.ingest_many(["fine", " "])

        assert embedder.embed_calls == 0


class TestQueryPipeline:
    """Tests for QueryPipeline."""

    def test_defaults(
        self,
        embedder: ConceptEmbedder,
        store: InMemoryDocumentStore,
    ) -> None:
        """Default threshold and count match the documented policy."""
        assert DEFAULT_MATCH_THRESHOLD == 0.4
        assert DEFAULT_MATCH_COUNT == 5
        QueryPipeline(embedder, store)

    def test_invalid_defaults_rejected(
        self,
        embedder: ConceptEmbedder,
        store: InMemoryDocumentStore,
    ) -> None:
        """Out-of-range defaults fail at construction."""
        with pytest.raises(ValidationError):
            QueryPipeline(embedder, store, match_threshold=1.5)

    @pytest.mark.asyncio
    async def test_mitochondria_scenario(
        self,
        embedder: ConceptEmbedder,
        store: InMemoryDocumentStore,
    ) -> None:
        """Ingested biology fact is found by a related query."""
        text = "The mitochondria is the powerhouse of the cell."
        await IngestionPipeline(embedder, store).ingest(text)
        await IngestionPipeline(embedder, store).ingest_many(SAMPLE_TEXTS[1:])

        matches = await QueryPipeline(embedder, store).search(
            "mitochondria function",
            match_threshold=0.4,
            match_count=5,
        )

        assert matches
        assert matches[0].content == text
        assert matches[0].similarity >= 0.4

    @pytest.mark.asyncio
    @pytest.mark.parametrize("text", SAMPLE_TEXTS)
    @pytest.mark.parametrize("threshold", [0.0, 0.4, 0.9, 1.0])
    async def test_ingested_text_finds_itself(
        self,
        text: str,
        threshold: float,
        embedder: ConceptEmbedder,
        store: InMemoryDocumentStore,
    ) -> None:
        """Searching for an ingested text returns that document."""
        await IngestionPipeline(embedder, store).ingest(text)

        matches = await QueryPipeline(embedder, store).search(
            text,
            match_threshold=threshold,
        )

        assert any(m.content == text for m in matches)
        assert all(m.similarity >= threshold for m in matches)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("count", [1, 2, 3, 5, 10])
    @pytest.mark.parametrize("threshold", [0.0, 0.3, 0.7])
    async def test_result_bounds(
        self,
        count: int,
        threshold: float,
        embedder: ConceptEmbedder,
        store: InMemoryDocumentStore,
    ) -> None:
        """Results never exceed the count and all clear the threshold."""
        await IngestionPipeline(embedder, store).ingest_many(SAMPLE_TEXTS * 2)

        matches = await QueryPipeline(embedder, store).search(
            "cell energy from the powerhouse",
            match_threshold=threshold,
            match_count=count,
        )

        assert len(matches) <= count
        assert all(m.similarity >= threshold for m in matches)
        scores = [m.similarity for m in matches]
        assert scores == sorted(scores, reverse=True)

    @pytest.mark.asyncio
    async def test_zero_count_returns_empty(
        self,
        embedder: ConceptEmbedder,
        store: InMemoryDocumentStore,
    ) -> None:
        """match_count of 0 returns an empty list without error."""
        await IngestionPipeline(embedder, store).ingest(SAMPLE_TEXTS[0])
        embed_calls = embedder.embed_calls

        matches = await QueryPipeline(embedder, store).search(
            SAMPLE_TEXTS[0],
            match_count=0,
        )

        assert matches == []
        assert embedder.embed_calls == embed_calls
        assert store.query_calls == 0

    @pytest.mark.asyncio
    async def test_no_match_is_empty_not_error(
        self,
        embedder: ConceptEmbedder,
        store: InMemoryDocumentStore,
    ) -> None:
        """Nothing above the threshold yields an empty list."""
        await IngestionPipeline(embedder, store).ingest("A planet orbits a star.")

        matches = await QueryPipeline(embedder, store).search(
            "python compiler",
            match_threshold=0.5,
        )

        assert matches == []

    @pytest.mark.asyncio
    async def test_blank_query_returns_empty(
        self,
        embedder: ConceptEmbedder,
        store: InMemoryDocumentStore,
    ) -> None:
        """Blank query text does not reach the services."""
        matches = await QueryPipeline(embedder, store).search("   ")

        assert matches == []
        assert embedder.embed_calls == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("threshold", "count"),
        [(-0.1, 5), (1.01, 5), (0.4, -1)],
    )
    async def test_invalid_parameters(
        self,
        threshold: float,
        count: int,
        embedder: ConceptEmbedder,
        store: InMemoryDocumentStore,
    ) -> None:
        """Out-of-range parameters raise before embedding."""
        with pytest.raises(ValidationError):
            await QueryPipeline(embedder, store).search(
                "anything",
                match_threshold=threshold,
                match_count=count,
            )

        assert embedder.embed_calls == 0

    @pytest.mark.asyncio
    async def test_embed_failure_propagates(
        self,
        embedder: ConceptEmbedder,
        store: InMemoryDocumentStore,
    ) -> None:
        """Embedding failure surfaces and the store is not queried."""
        embedder.fail_with = EmbeddingServiceError("rate limited")

        with pytest.raises(EmbeddingServiceError, match="rate limited"):
            await QueryPipeline(embedder, store).search("cells")

        assert store.query_calls == 0

    @pytest.mark.asyncio
    async def test_store_failure_propagates(
        self,
        embedder: ConceptEmbedder,
        store: InMemoryDocumentStore,
    ) -> None:
        """Query failure is raised, not converted to an empty list."""
        store.fail_with = StorageError(
            "Could not find the function public.match_documents",
            code=ErrorCode.PROCEDURE_NOT_FOUND,
        )

        with pytest.raises(StorageError) as exc_info:
            await QueryPipeline(embedder, store).search("cells")

        assert exc_info.value.code == ErrorCode.PROCEDURE_NOT_FOUND
        assert embedder.embed_calls == 1

    @pytest.mark.asyncio
    async def test_pipeline_defaults_used(
        self,
        embedder: ConceptEmbedder,
        store: InMemoryDocumentStore,
    ) -> None:
        """Constructor defaults apply when the caller passes none."""
        await IngestionPipeline(embedder, store).ingest_many(SAMPLE_TEXTS * 3)

        matches = await QueryPipeline(
            embedder,
            store,
            match_threshold=0.0,
            match_count=2,
        ).search("anything at all")

        assert len(matches) == 2


class TestConcurrency:
    """Tests for concurrent pipeline invocations."""

    @pytest.mark.asyncio
    async def test_parallel_ingests_are_independent(
        self,
        store: InMemoryDocumentStore,
    ) -> None:
        """Concurrent ingests each store their own document."""
        embedder = ConceptEmbedder(delay=0.001)
        pipeline = IngestionPipeline(embedder, store)
        texts = [f"document number {i}" for i in range(20)]

        await asyncio.gather(*(pipeline.ingest(t) for t in texts))

        assert sorted(d.content for _, d in store.rows) == sorted(texts)

    @pytest.mark.asyncio
    async def test_limiter_bounds_in_flight_calls(
        self,
        store: InMemoryDocumentStore,
    ) -> None:
        """Shared semaphore caps concurrent invocations."""
        embedder = ConceptEmbedder(delay=0.005)
        limiter = asyncio.Semaphore(2)
        ingestion = IngestionPipeline(embedder, store, limiter=limiter)
        query = QueryPipeline(embedder, store, limiter=limiter)

        await asyncio.gather(
            *(ingestion.ingest(f"cell {i}") for i in range(6)),
            *(query.search(f"cell {i}") for i in range(6)),
        )

        assert embedder.max_in_flight <= 2
