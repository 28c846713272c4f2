"""Unit tests for the Neo4j vector store adapter."""
from __future__ import annotations

from unittest.mock import AsyncMock

import pytest
from fakes import FakeDriver, matches
from neo4j.exceptions import ServiceUnavailable, SessionExpired
from pydantic import BaseModel

from graph_vector_store.adapters.outbound.neo4j_connection import Neo4jConnection
from graph_vector_store.adapters.outbound.result_mapper import MappingPolicy
from graph_vector_store.adapters.outbound.vector_neo4j import Neo4jVectorStore
from graph_vector_store.domain.entities import IndexDescriptor, SimilarityMetric
from graph_vector_store.domain.errors import (
    InvalidRequestError,
    InvalidRequestReason,
    MalformedDocumentError,
    MissingScoreError,
    PartialResultError,
    StreamBrokenError,
)
from graph_vector_store.domain.filters import Field
from graph_vector_store.infrastructure.config import VectorIndexSettings
from graph_vector_store.ports.vector_store import DocumentRecord, SearchRequest


class Article(BaseModel):
    title: str
    category: str
    year: int


async def _insert(store: Neo4jVectorStore, documents) -> list[str]:
    return await store.insert_documents([DocumentRecord(doc, vec) for doc, vec in documents])


def _drop_score(index: int):
    """Mutator removing the score from one search record."""

    def mutate(records):
        records = [dict(r) for r in records]
        if index < len(records):
            del records[index]["score"]
        return records

    return mutate


class TestInsert:
    """Tests for inserting documents."""

    @pytest.mark.asyncio
    async def test_insert_returns_ids_in_order(
        self, store: Neo4jVectorStore, fake_driver: FakeDriver, sample_documents
    ) -> None:
        ids = await _insert(store, sample_documents)

        assert ids == [node["id"] for node in fake_driver.nodes]
        assert fake_driver.nodes[0]["properties"]["title"] == "Rust 2024 edition"
        assert fake_driver.nodes[0]["properties"]["embedding"] == [1.0, 0.0, 0.0, 0.0]
        assert fake_driver.open_sessions == 0

    @pytest.mark.asyncio
    async def test_insert_batches(
        self,
        connection: Neo4jConnection,
        descriptor: IndexDescriptor,
        fake_driver: FakeDriver,
        sample_documents,
    ) -> None:
        store = Neo4jVectorStore(connection, descriptor, insert_batch_size=2)

        ids = await _insert(store, sample_documents)

        inserts = [params for query, params in fake_driver.calls if query.startswith("UNWIND")]
        assert [len(params["rows"]) for params in inserts] == [2, 1]
        assert len(ids) == 3

    @pytest.mark.asyncio
    async def test_failed_batch_reports_written_ids(
        self,
        connection: Neo4jConnection,
        descriptor: IndexDescriptor,
        fake_driver: FakeDriver,
        sample_documents,
    ) -> None:
        store = Neo4jVectorStore(connection, descriptor, insert_batch_size=2)
        original_dispatch = fake_driver.dispatch
        batches = 0

        def dispatch(query, parameters):
            nonlocal batches
            if query.startswith("UNWIND $rows"):
                batches += 1
                if batches == 2:
                    raise ServiceUnavailable("leader lost")
            return original_dispatch(query, parameters)

        fake_driver.dispatch = dispatch  # type: ignore[method-assign]

        with pytest.raises(StreamBrokenError) as exc_info:
            await _insert(store, sample_documents)

        assert len(fake_driver.nodes) == 2
        assert exc_info.value.written_ids == [node["id"] for node in fake_driver.nodes]
        assert fake_driver.open_sessions == 0

    @pytest.mark.asyncio
    async def test_invalid_record_writes_nothing(
        self, store: Neo4jVectorStore, fake_driver: FakeDriver, sample_documents
    ) -> None:
        documents = [*sample_documents, ({"title": "short"}, [1.0, 0.0])]

        with pytest.raises(InvalidRequestError) as exc_info:
            await _insert(store, documents)

        assert exc_info.value.reason is InvalidRequestReason.DIMENSION_MISMATCH
        assert fake_driver.calls == []

    @pytest.mark.asyncio
    async def test_empty_insert(self, store: Neo4jVectorStore, fake_driver: FakeDriver) -> None:
        assert await store.insert_documents([]) == []
        assert fake_driver.sessions_opened == 0

    def test_batch_size_must_be_positive(
        self, connection: Neo4jConnection, descriptor: IndexDescriptor
    ) -> None:
        with pytest.raises(ValueError):
            Neo4jVectorStore(connection, descriptor, insert_batch_size=0)


class TestSearch:
    """Tests for top-k search."""

    @pytest.mark.asyncio
    async def test_identical_vector_scores_one(
        self, store: Neo4jVectorStore, sample_documents
    ) -> None:
        await _insert(store, sample_documents)

        result = await store.search(SearchRequest(query_embedding=[1.0, 0.0, 0.0, 0.0], top_k=1))

        assert len(result) == 1
        assert result[0].document["title"] == "Rust 2024 edition"
        assert result[0].score == pytest.approx(1.0)
        assert "embedding" not in result[0].document

    @pytest.mark.asyncio
    async def test_cosine_results_descending(self, store: Neo4jVectorStore, sample_documents) -> None:
        await _insert(store, sample_documents)

        result = await store.search(SearchRequest(query_embedding=[1.0, 0.0, 0.0, 0.0], top_k=10))

        assert len(result) == 3
        assert result.scores == sorted(result.scores, reverse=True)
        assert result.metric is SimilarityMetric.COSINE
        assert result[-1].score == pytest.approx(0.0)

    @pytest.mark.asyncio
    async def test_euclidean_results_ascending(
        self,
        connection: Neo4jConnection,
        euclidean_descriptor: IndexDescriptor,
        fake_driver: FakeDriver,
        sample_documents,
    ) -> None:
        fake_driver.add_index("doc_embeddings_l2", "Document", "embedding", 4, "EUCLIDEAN")
        store = Neo4jVectorStore(connection, euclidean_descriptor)
        await _insert(store, sample_documents)

        result = await store.search(SearchRequest(query_embedding=[1.0, 0.0, 0.0, 0.0], top_k=2))

        assert [hit.document["title"] for hit in result] == ["Rust 2024 edition", "Graph databases"]
        assert result[0].score == pytest.approx(0.0)
        assert result[1].score == pytest.approx(0.1414213, rel=1e-5)

    @pytest.mark.asyncio
    async def test_filter_narrows_results(
        self, store: Neo4jVectorStore, fake_driver: FakeDriver, sample_documents
    ) -> None:
        await _insert(store, sample_documents)
        news = Field("category").eq("news")
        fake_driver.where = lambda props: matches(news, props)

        result = await store.search(
            SearchRequest(query_embedding=[1.0, 0.0, 0.0, 0.0], top_k=10, filter=news)
        )

        assert len(result) == 2
        assert {doc["category"] for doc in result.documents} == {"news"}

    @pytest.mark.asyncio
    async def test_selective_filter_returns_fewer_than_top_k(
        self, store: Neo4jVectorStore, fake_driver: FakeDriver, sample_documents
    ) -> None:
        await _insert(store, sample_documents)
        recent = Field("year").gte(2022)
        fake_driver.where = lambda props: matches(recent, props)

        narrow = await store.search(
            SearchRequest(query_embedding=[1.0, 0.0, 0.0, 0.0], top_k=2, filter=recent)
        )
        wide = await store.search(
            SearchRequest(
                query_embedding=[1.0, 0.0, 0.0, 0.0], top_k=2, filter=recent, num_candidates=3
            )
        )

        assert len(narrow) == 1
        assert len(wide) == 2

    @pytest.mark.asyncio
    async def test_dimension_mismatch_sends_nothing(
        self, store: Neo4jVectorStore, fake_driver: FakeDriver
    ) -> None:
        with pytest.raises(InvalidRequestError) as exc_info:
            await store.search(SearchRequest(query_embedding=[1.0, 0.0, 0.0]))

        assert exc_info.value.reason is InvalidRequestReason.DIMENSION_MISMATCH
        assert fake_driver.sessions_opened == 0
        assert fake_driver.calls == []

    @pytest.mark.asyncio
    async def test_typed_documents(
        self, connection: Neo4jConnection, descriptor: IndexDescriptor, sample_documents
    ) -> None:
        store = Neo4jVectorStore(connection, descriptor, document_type=Article)
        await _insert(store, sample_documents)

        result = await store.search(SearchRequest(query_embedding=[0.0, 1.0, 0.0, 0.0], top_k=1))

        assert result[0].document == Article(title="Neo4j 5 released", category="news", year=2022)

    @pytest.mark.asyncio
    async def test_include_embeddings(
        self, connection: Neo4jConnection, descriptor: IndexDescriptor, sample_documents
    ) -> None:
        store = Neo4jVectorStore(connection, descriptor, include_embeddings=True)
        await _insert(store, sample_documents)

        result = await store.search(SearchRequest(query_embedding=[0.0, 1.0, 0.0, 0.0], top_k=1))

        assert result[0].embedding == [0.0, 1.0, 0.0, 0.0]
        assert result[0].node_id is not None

    @pytest.mark.asyncio
    async def test_null_values_round_trip(self, store: Neo4jVectorStore, fake_driver: FakeDriver) -> None:
        document = {"title": "Draft", "summary": None}
        await _insert(store, [(document, [1.0, 0.0, 0.0, 0.0])])

        result = await store.search(SearchRequest(query_embedding=[1.0, 0.0, 0.0, 0.0], top_k=1))

        assert fake_driver.nodes[0]["properties"]["summary"] == "null"
        assert result[0].document == document


class TestMappingPolicy:
    """Tests for rows that fail to map."""

    @pytest.mark.asyncio
    async def test_collect_keeps_valid_results(
        self, store: Neo4jVectorStore, fake_driver: FakeDriver, sample_documents
    ) -> None:
        await _insert(store, sample_documents)
        fake_driver.mutate = _drop_score(1)

        with pytest.raises(PartialResultError) as exc_info:
            await store.search(SearchRequest(query_embedding=[1.0, 0.0, 0.0, 0.0], top_k=3))

        error = exc_info.value
        assert len(error.result) == 2
        assert len(error.errors) == 1
        assert isinstance(error.errors[0], MissingScoreError)
        assert error.result.scores == sorted(error.result.scores, reverse=True)

    @pytest.mark.asyncio
    async def test_skip_drops_bad_rows(
        self,
        connection: Neo4jConnection,
        descriptor: IndexDescriptor,
        fake_driver: FakeDriver,
        sample_documents,
    ) -> None:
        store = Neo4jVectorStore(connection, descriptor, mapping_policy=MappingPolicy.SKIP)
        await _insert(store, sample_documents)
        fake_driver.mutate = _drop_score(0)

        result = await store.search(SearchRequest(query_embedding=[1.0, 0.0, 0.0, 0.0], top_k=3))

        assert len(result) == 2

    @pytest.mark.asyncio
    async def test_abort_raises_first_error(
        self,
        connection: Neo4jConnection,
        descriptor: IndexDescriptor,
        fake_driver: FakeDriver,
        sample_documents,
    ) -> None:
        store = Neo4jVectorStore(connection, descriptor, mapping_policy=MappingPolicy.ABORT)
        await _insert(store, sample_documents)
        fake_driver.mutate = lambda records: [{**r, "node": None} for r in records]

        with pytest.raises(MalformedDocumentError):
            await store.search(SearchRequest(query_embedding=[1.0, 0.0, 0.0, 0.0], top_k=3))
        assert fake_driver.open_sessions == 0


class TestSearchStream:
    """Tests for lazy search."""

    @pytest.mark.asyncio
    async def test_stream_yields_in_order(self, store: Neo4jVectorStore, sample_documents) -> None:
        await _insert(store, sample_documents)

        hits = [hit async for hit in store.search_stream(SearchRequest([1.0, 0.0, 0.0, 0.0], top_k=3))]

        assert [hit.document["title"] for hit in hits] == [
            "Rust 2024 edition",
            "Graph databases",
            "Neo4j 5 released",
        ]

    @pytest.mark.asyncio
    async def test_invalid_request_fails_before_iteration(
        self, store: Neo4jVectorStore, fake_driver: FakeDriver
    ) -> None:
        with pytest.raises(InvalidRequestError):
            store.search_stream(SearchRequest([1.0, 0.0, 0.0, 0.0], top_k=0))

        assert fake_driver.calls == []

    @pytest.mark.asyncio
    async def test_abandoned_stream_releases_session(
        self, store: Neo4jVectorStore, fake_driver: FakeDriver, sample_documents
    ) -> None:
        await _insert(store, sample_documents)
        stream = store.search_stream(SearchRequest([1.0, 0.0, 0.0, 0.0], top_k=3))

        first = await anext(stream)
        assert fake_driver.open_sessions == 1
        await stream.aclose()

        assert first.document["title"] == "Rust 2024 edition"
        assert fake_driver.open_sessions == 0

    @pytest.mark.asyncio
    async def test_stream_collects_mapping_errors_at_end(
        self, store: Neo4jVectorStore, fake_driver: FakeDriver, sample_documents
    ) -> None:
        await _insert(store, sample_documents)
        fake_driver.mutate = _drop_score(0)
        hits = []

        with pytest.raises(PartialResultError) as exc_info:
            async for hit in store.search_stream(SearchRequest([1.0, 0.0, 0.0, 0.0], top_k=3)):
                hits.append(hit)

        assert len(hits) == 2
        assert len(exc_info.value.result) == 2


class TestStreamFailures:
    """Tests for connection loss mid-result."""

    @pytest.mark.asyncio
    async def test_search_attaches_partial_result(
        self, store: Neo4jVectorStore, fake_driver: FakeDriver, sample_documents
    ) -> None:
        await _insert(store, sample_documents)
        fake_driver.fail_after = 2
        fake_driver.fail_with = SessionExpired("leader switched")

        with pytest.raises(StreamBrokenError) as exc_info:
            await store.search(SearchRequest(query_embedding=[1.0, 0.0, 0.0, 0.0], top_k=3))

        error = exc_info.value
        assert error.rows_yielded == 2
        assert error.partial_result is not None
        assert len(error.partial_result) == 2
        assert fake_driver.open_sessions == 0

    @pytest.mark.asyncio
    async def test_stream_keeps_yielded_hits(
        self, store: Neo4jVectorStore, fake_driver: FakeDriver, sample_documents
    ) -> None:
        await _insert(store, sample_documents)
        fake_driver.fail_after = 1
        fake_driver.fail_with = SessionExpired("leader switched")
        hits = []

        with pytest.raises(StreamBrokenError):
            async for hit in store.search_stream(SearchRequest([1.0, 0.0, 0.0, 0.0], top_k=3)):
                hits.append(hit)

        assert len(hits) == 1
        assert fake_driver.open_sessions == 0

    @pytest.mark.asyncio
    async def test_search_attaches_mapping_errors(
        self, store: Neo4jVectorStore, fake_driver: FakeDriver, sample_documents
    ) -> None:
        await _insert(store, sample_documents)
        fake_driver.mutate = _drop_score(0)
        fake_driver.fail_after = 2
        fake_driver.fail_with = SessionExpired("leader switched")

        with pytest.raises(StreamBrokenError) as exc_info:
            await store.search(SearchRequest(query_embedding=[1.0, 0.0, 0.0, 0.0], top_k=3))

        error = exc_info.value
        assert error.partial_result is not None
        assert len(error.partial_result) == 1
        assert len(error.mapping_errors) == 1
        assert isinstance(error.mapping_errors[0], MissingScoreError)


class TestSearchIdsAndText:
    """Tests for id-only and text search."""

    @pytest.mark.asyncio
    async def test_search_ids(
        self, store: Neo4jVectorStore, fake_driver: FakeDriver, sample_documents
    ) -> None:
        ids = await _insert(store, sample_documents)

        pairs = await store.search_ids(SearchRequest([1.0, 0.0, 0.0, 0.0], top_k=2))

        assert [node_id for _, node_id in pairs] == ids[:2]
        assert pairs[0][0] >= pairs[1][0]
        search_query = next(query for query, _ in fake_driver.calls if "queryNodes" in query)
        assert "AS node" not in search_query

    @pytest.mark.asyncio
    async def test_search_ids_collects_mapping_errors(
        self, store: Neo4jVectorStore, fake_driver: FakeDriver, sample_documents
    ) -> None:
        ids = await _insert(store, sample_documents)
        fake_driver.mutate = _drop_score(2)

        with pytest.raises(PartialResultError) as exc_info:
            await store.search_ids(SearchRequest([1.0, 0.0, 0.0, 0.0], top_k=3))

        error = exc_info.value
        assert [node_id for _, node_id in error.result] == ids[:2]
        assert len(error.errors) == 1
        assert isinstance(error.errors[0], MissingScoreError)

    @pytest.mark.asyncio
    async def test_search_ids_skip_policy(
        self,
        connection: Neo4jConnection,
        descriptor: IndexDescriptor,
        fake_driver: FakeDriver,
        sample_documents,
    ) -> None:
        store = Neo4jVectorStore(connection, descriptor, mapping_policy=MappingPolicy.SKIP)
        await _insert(store, sample_documents)
        fake_driver.mutate = _drop_score(0)

        pairs = await store.search_ids(SearchRequest([1.0, 0.0, 0.0, 0.0], top_k=3))

        assert len(pairs) == 2
        assert all(isinstance(score, float) for score, _ in pairs)

    @pytest.mark.asyncio
    async def test_search_text_embeds_query(self, store: Neo4jVectorStore, sample_documents) -> None:
        await _insert(store, sample_documents)
        embed = AsyncMock(return_value=[0.0, 1.0, 0.0, 0.0])
        store.set_embedding_func(embed)

        result = await store.search_text("what's new in neo4j", top_k=1)

        embed.assert_awaited_once_with("what's new in neo4j")
        assert result[0].document["title"] == "Neo4j 5 released"

    @pytest.mark.asyncio
    async def test_search_text_without_embedder(self, store: Neo4jVectorStore) -> None:
        with pytest.raises(InvalidRequestError) as exc_info:
            await store.search_text("anything")

        assert exc_info.value.reason is InvalidRequestReason.MISSING_EMBEDDER


class TestEnsureIndex:
    """Tests for the store-level index helper."""

    def test_from_settings(self, connection: Neo4jConnection) -> None:
        settings = VectorIndexSettings(name="chunks", label="Chunk", dimension=8)

        store = Neo4jVectorStore.from_settings(connection, settings, include_embeddings=True)

        assert store.descriptor == IndexDescriptor(name="chunks", label="Chunk", dimension=8)

    @pytest.mark.asyncio
    async def test_creates_missing_index(
        self, store: Neo4jVectorStore, fake_driver: FakeDriver
    ) -> None:
        fake_driver.indexes.clear()

        info = await store.ensure_index()

        assert info.name == "doc_embeddings"
        assert len(fake_driver.indexes) == 1

    @pytest.mark.asyncio
    async def test_waits_for_populating_index(
        self, store: Neo4jVectorStore, fake_driver: FakeDriver
    ) -> None:
        fake_driver.indexes[0]["state"] = "POPULATING"

        info = await store.ensure_index(wait=True, timeout_seconds=10)

        assert info.is_online
        waits = [params for query, params in fake_driver.calls if "db.awaitIndex" in query]
        assert waits == [{"index_name": "doc_embeddings", "timeout": 10}]
