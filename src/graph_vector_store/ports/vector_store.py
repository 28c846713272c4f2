"""
VectorStore Port
================

Abstract capability consumed by retrieval pipelines: store documents
with their embeddings and retrieve the nearest ones for a query vector.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Iterator, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from graph_vector_store.domain.entities import SimilarityMetric

if TYPE_CHECKING:
    from graph_vector_store.domain.entities import EmbeddingVector
    from graph_vector_store.domain.filters import Predicate


@dataclass(frozen=True, slots=True)
class SearchRequest:
    """
    Query specification for a nearest-neighbour search.

    The filter is applied after the index scan: the index returns
    `num_candidates` neighbours (default `top_k`), the filter narrows
    them, and at most `top_k` survive. Selective filters can therefore
    return fewer than `top_k` results; raise `num_candidates` to
    over-fetch.
    """

    query_embedding: EmbeddingVector
    top_k: int = 10
    filter: Predicate | None = None
    num_candidates: int | None = None


@dataclass(frozen=True, slots=True)
class DocumentRecord:
    """A document paired with its embedding, ready for insertion."""

    document: Any
    embedding: EmbeddingVector


@dataclass(frozen=True, slots=True)
class ScoredDocument:
    """One search hit."""

    document: Any
    score: float
    node_id: str | None = None
    embedding: EmbeddingVector | None = None


@dataclass(frozen=True, slots=True)
class SearchResult(Sequence):
    """
    Hits ordered most relevant first.

    For cosine indexes `score` is similarity (descending); for euclidean
    indexes it is distance (ascending).
    """

    metric: SimilarityMetric
    hits: tuple[ScoredDocument, ...] = field(default_factory=tuple)

    def __len__(self) -> int:
        return len(self.hits)

    def __getitem__(self, index):  # type: ignore[override]
        return self.hits[index]

    def __iter__(self) -> Iterator[ScoredDocument]:
        return iter(self.hits)

    @property
    def documents(self) -> list[Any]:
        return [hit.document for hit in self.hits]

    @property
    def scores(self) -> list[float]:
        return [hit.score for hit in self.hits]


class VectorStore(ABC):
    """
    Port for embedding storage and similarity search.

    Responsibilities:
    - Insert documents with their embeddings
    - Top-k nearest-neighbour search with optional filtering
    - Streaming and id-only variants of search
    """

    @abstractmethod
    async def insert_documents(self, records: Sequence[DocumentRecord]) -> list[str]:
        """
        Store documents and their embeddings.

        Returns:
            Database identifiers of the created nodes, in input order.

        Raises:
            ExecutionError: If a batch fails. `written_ids` on the error
                lists the nodes earlier batches already committed.
        """
        ...

    @abstractmethod
    async def search(self, request: SearchRequest) -> SearchResult:
        """
        Return the `top_k` documents closest to the query embedding.

        Raises:
            InvalidRequestError: Before any query is sent, if the request
                is malformed.
            PartialResultError: If some rows could not be mapped.
        """
        ...

    @abstractmethod
    def search_stream(self, request: SearchRequest) -> AsyncIterator[ScoredDocument]:
        """
        Lazily yield hits most relevant first.

        Closing the iterator early releases the server-side cursor.
        """
        ...

    @abstractmethod
    async def search_ids(self, request: SearchRequest) -> list[tuple[float, str]]:
        """
        Return `(score, node_id)` pairs without fetching documents.

        Raises:
            PartialResultError: If some rows could not be mapped.
        """
        ...

    @abstractmethod
    async def search_text(
        self,
        text: str,
        top_k: int = 10,
        filter: Predicate | None = None,
    ) -> SearchResult:
        """Embed `text` with the configured embedding function, then search."""
        ...
