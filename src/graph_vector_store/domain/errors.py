"""
Error Taxonomy
==============

Every failure surfaced by the vector store is a subclass of
`VectorStoreError`. Driver exceptions are chained as `__cause__`.
"""

from __future__ import annotations

from enum import StrEnum, auto
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from graph_vector_store.adapters.outbound.cypher_builder import CypherQuery
    from graph_vector_store.ports.vector_store import SearchResult


class VectorStoreError(Exception):
    """Base class for all vector store failures."""

    pass


# -----------------------------------------------------------------------------
# Connection
# -----------------------------------------------------------------------------


class ConnectionFailure(StrEnum):
    UNREACHABLE = auto()
    UNAUTHORIZED = auto()
    INCOMPATIBLE = auto()


class StoreConnectionError(VectorStoreError):
    """The database could not be reached, refused credentials, or is unsupported."""

    def __init__(self, reason: ConnectionFailure, message: str) -> None:
        super().__init__(f"{reason.value}: {message}")
        self.reason = reason


# -----------------------------------------------------------------------------
# Request validation
# -----------------------------------------------------------------------------


class InvalidRequestReason(StrEnum):
    INVALID_TOP_K = auto()
    DIMENSION_MISMATCH = auto()
    INVALID_EMBEDDING = auto()
    INVALID_FILTER = auto()
    INVALID_DOCUMENT = auto()
    MISSING_EMBEDDER = auto()


class InvalidRequestError(VectorStoreError, ValueError):
    """A request was rejected before any query was sent."""

    def __init__(self, reason: InvalidRequestReason, message: str) -> None:
        super().__init__(message)
        self.reason = reason


# -----------------------------------------------------------------------------
# Execution
# -----------------------------------------------------------------------------


class ExecutionError(VectorStoreError):
    """
    A query failed while running on the database.

    When raised from a batched insert, `written_ids` lists the nodes that
    earlier batches already committed.
    """

    def __init__(self, message: str, query: CypherQuery | None = None) -> None:
        super().__init__(message)
        self.query = query
        self.written_ids: list[str] | None = None


class StreamBrokenError(ExecutionError):
    """
    The connection dropped before the result stream was exhausted.

    Rows yielded before the break remain valid. When raised from a
    materialized search, `partial_result` holds what was collected and
    `mapping_errors` the rows rejected so far.
    """

    def __init__(
        self,
        message: str,
        query: CypherQuery | None = None,
        rows_yielded: int = 0,
    ) -> None:
        super().__init__(message, query)
        self.rows_yielded = rows_yielded
        self.partial_result: SearchResult | None = None
        self.mapping_errors: list[MappingError] = []


class BackendRejectedError(ExecutionError):
    """The database refused the query (syntax, constraint, missing index, ...)."""

    def __init__(
        self,
        message: str,
        query: CypherQuery | None = None,
        code: str | None = None,
    ) -> None:
        super().__init__(message, query)
        self.code = code


# -----------------------------------------------------------------------------
# Result mapping
# -----------------------------------------------------------------------------


class MappingError(VectorStoreError):
    """A result row could not be turned into a scored document."""

    def __init__(self, message: str, raw: Any = None) -> None:
        super().__init__(message)
        self.raw = raw


class MissingScoreError(MappingError):
    pass


class MalformedDocumentError(MappingError):
    pass


class PartialResultError(VectorStoreError):
    """
    Some rows failed to map.

    `result` holds every row that mapped cleanly, in relevance order (a
    `SearchResult`, or `(score, node_id)` pairs for id-only searches);
    `errors` holds one `MappingError` per rejected row. Callers decide
    whether the partial result is usable.
    """

    def __init__(
        self,
        result: SearchResult | list[tuple[float, str]],
        errors: list[MappingError],
    ) -> None:
        super().__init__(
            f"{len(errors)} row(s) failed to map; {len(result)} valid result(s) kept"
        )
        self.result = result
        self.errors = errors


# -----------------------------------------------------------------------------
# Index lifecycle
# -----------------------------------------------------------------------------


class VectorIndexError(VectorStoreError):
    pass


class IndexConflictError(VectorIndexError):
    """An index exists with the same name or target but different settings."""

    def __init__(self, message: str, existing: Any = None) -> None:
        super().__init__(message)
        self.existing = existing


class IndexCreationError(VectorIndexError):
    pass
