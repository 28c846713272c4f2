"""
Neo4j Vector Store Adapter
==========================

Adapter for Neo4j's native vector index as a `VectorStore`.

Search semantics
----------------
The vector index performs the approximate nearest-neighbour scan; an
optional filter narrows the returned candidates afterwards. When the
filter is selective, fewer than `top_k` documents may come back. There
is no backfill: pass `num_candidates` on the request to over-fetch.

Rows that fail to map are handled according to `MappingPolicy`. The
default, `COLLECT`, finishes the scan and then raises
`PartialResultError` carrying the valid results alongside every mapping
error.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Callable, Coroutine, Sequence
from typing import TYPE_CHECKING, Any

from graph_vector_store.adapters.outbound.cypher_builder import CypherBuilder, CypherQuery
from graph_vector_store.adapters.outbound.index_manager import VectorIndexManager
from graph_vector_store.adapters.outbound.query_executor import QueryExecutor
from graph_vector_store.adapters.outbound.result_mapper import (
    MappingPolicy,
    ResultMapper,
    order_results,
)
from graph_vector_store.domain.errors import (
    ExecutionError,
    InvalidRequestError,
    InvalidRequestReason,
    MappingError,
    PartialResultError,
    StreamBrokenError,
)
from graph_vector_store.ports.vector_store import (
    DocumentRecord,
    ScoredDocument,
    SearchRequest,
    SearchResult,
    VectorStore,
)

if TYPE_CHECKING:
    from graph_vector_store.adapters.outbound.neo4j_connection import Neo4jConnection
    from graph_vector_store.domain.entities import IndexDescriptor, VectorIndexInfo
    from graph_vector_store.domain.filters import Predicate
    from graph_vector_store.infrastructure.config import VectorIndexSettings

logger = logging.getLogger(__name__)

# Type alias for embedding function
EmbeddingFunc = Callable[[str], Coroutine[Any, Any, list[float]]]

# Rows sent per UNWIND batch when inserting.
DEFAULT_INSERT_BATCH_SIZE = 500


class Neo4jVectorStore(VectorStore):
    """
    Vector store backed by a Neo4j vector index.

    The connection is borrowed, not owned: closing the store is the
    caller's job via `Neo4jConnection.close()`.
    """

    def __init__(
        self,
        connection: Neo4jConnection,
        descriptor: IndexDescriptor,
        document_type: Any = None,
        embedding_func: EmbeddingFunc | None = None,
        mapping_policy: MappingPolicy = MappingPolicy.COLLECT,
        include_embeddings: bool = False,
        insert_batch_size: int = DEFAULT_INSERT_BATCH_SIZE,
    ) -> None:
        """
        Initialize the adapter.

        Args:
            connection: Open Neo4j connection shared with other callers.
            descriptor: Index the store reads and writes.
            document_type: Optional type (pydantic model, dataclass,
                TypedDict, ...) that payloads are validated into.
            embedding_func: Optional async function embedding query text.
            mapping_policy: How to treat rows that fail to map.
            include_embeddings: Return stored embeddings with each hit.
            insert_batch_size: Rows per insert statement.
        """
        if insert_batch_size < 1:
            raise ValueError("insert_batch_size must be positive")
        self._connection = connection
        self._descriptor = descriptor
        self._embedding_func = embedding_func
        self._mapping_policy = mapping_policy
        self._include_embeddings = include_embeddings
        self._insert_batch_size = insert_batch_size
        self._builder = CypherBuilder()
        self._executor = QueryExecutor(connection)
        self._mapper = ResultMapper(descriptor, document_type)
        self._indexes = VectorIndexManager(self._executor, self._builder)

    @classmethod
    def from_settings(
        cls,
        connection: Neo4jConnection,
        settings: VectorIndexSettings,
        **kwargs: Any,
    ) -> Neo4jVectorStore:
        """Build a store whose index is described by `VECTOR_INDEX_*` settings."""
        return cls(connection, settings.to_descriptor(), **kwargs)

    @property
    def descriptor(self) -> IndexDescriptor:
        return self._descriptor

    def set_embedding_func(self, func: EmbeddingFunc) -> None:
        """Set the embedding function after initialization."""
        self._embedding_func = func

    # -------------------------------------------------------------------------
    # Index lifecycle
    # -------------------------------------------------------------------------

    async def ensure_index(self, wait: bool = False, timeout_seconds: int = 300) -> VectorIndexInfo:
        """Create the store's vector index if absent, optionally waiting until it is online."""
        index = await self._indexes.ensure_index(self._descriptor)
        if wait and not index.is_online:
            index = await self._indexes.wait_until_online(self._descriptor.name, timeout_seconds)
        return index

    # -------------------------------------------------------------------------
    # Insertion
    # -------------------------------------------------------------------------

    async def insert_documents(self, records: Sequence[DocumentRecord]) -> list[str]:
        if not records:
            return []

        # Encode and validate everything before the first write
        rows = [
            (self._mapper.codec.encode(record.document), record.embedding) for record in records
        ]
        queries = [
            self._builder.build_insert(self._descriptor, rows[start : start + self._insert_batch_size])
            for start in range(0, len(rows), self._insert_batch_size)
        ]

        node_ids: list[str] = []
        for batch, query in enumerate(queries, start=1):
            try:
                created = await self._executor.run(query)
            except ExecutionError as e:
                # Earlier batches are committed; hand their ids back for cleanup
                e.written_ids = list(node_ids)
                logger.error(
                    f"Insert batch {batch}/{len(queries)} failed after {len(node_ids)} "
                    f"document(s) were written: {e}"
                )
                raise
            node_ids.extend(str(record["id"]) for record in created)
        logger.info(
            f"Inserted {len(node_ids)} document(s) into :{self._descriptor.label} "
            f"in {len(queries)} batch(es)"
        )
        return node_ids

    # -------------------------------------------------------------------------
    # Search
    # -------------------------------------------------------------------------

    async def search(self, request: SearchRequest) -> SearchResult:
        query = self._builder.build_search(
            self._descriptor, request, include_embedding=self._include_embeddings
        )

        hits: list[ScoredDocument] = []
        errors: list[MappingError] = []
        async with self._executor.execute(query) as stream:
            try:
                async for record in stream:
                    try:
                        hits.append(self._mapper.map(record))
                    except MappingError as e:
                        self._reject(e, errors)
            except StreamBrokenError as e:
                e.partial_result = order_results(hits, self._descriptor.metric)
                e.mapping_errors = errors
                raise

        result = order_results(hits, self._descriptor.metric)
        logger.debug(
            "Vector search on %r | top_k=%d results=%d rejected=%d",
            self._descriptor.name,
            request.top_k,
            len(result),
            len(errors),
        )
        if errors:
            raise PartialResultError(result, errors)
        return result

    def search_stream(self, request: SearchRequest) -> AsyncIterator[ScoredDocument]:
        # Build (and validate) eagerly so bad requests fail before iteration
        query = self._builder.build_search(
            self._descriptor, request, include_embedding=self._include_embeddings
        )
        return self._stream_hits(query)

    async def _stream_hits(self, query: CypherQuery) -> AsyncIterator[ScoredDocument]:
        errors: list[MappingError] = []
        yielded: list[ScoredDocument] = []
        async with self._executor.execute(query) as stream:
            async for record in stream:
                try:
                    hit = self._mapper.map(record)
                except MappingError as e:
                    self._reject(e, errors)
                    continue
                yielded.append(hit)
                yield hit
        if errors:
            raise PartialResultError(order_results(yielded, self._descriptor.metric), errors)

    async def search_ids(self, request: SearchRequest) -> list[tuple[float, str]]:
        query = self._builder.build_search_ids(self._descriptor, request)

        pairs: list[tuple[float, str]] = []
        errors: list[MappingError] = []
        for record in await self._executor.run(query):
            try:
                pairs.append(self._mapper.map_id(record))
            except MappingError as e:
                self._reject(e, errors)

        pairs.sort(key=lambda pair: pair[0], reverse=self._descriptor.metric.higher_is_better)
        if errors:
            raise PartialResultError(pairs, errors)
        return pairs

    def _reject(self, error: MappingError, errors: list[MappingError]) -> None:
        """Apply the mapping policy to one unmappable row."""
        if self._mapping_policy is MappingPolicy.ABORT:
            raise error
        if self._mapping_policy is MappingPolicy.SKIP:
            logger.warning(f"Skipping unmappable row: {error}")
            return
        errors.append(error)

    async def embed_text(self, text: str) -> list[float]:
        if self._embedding_func is None:
            raise InvalidRequestError(
                InvalidRequestReason.MISSING_EMBEDDER,
                "No embedding function configured; set one with set_embedding_func()",
            )
        return await self._embedding_func(text)

    async def search_text(
        self,
        text: str,
        top_k: int = 10,
        filter: Predicate | None = None,
    ) -> SearchResult:
        embedding = await self.embed_text(text)
        return await self.search(SearchRequest(query_embedding=embedding, top_k=top_k, filter=filter))
