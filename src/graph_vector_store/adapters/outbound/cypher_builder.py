"""
Cypher Query Builder
====================

Builds parameterized Cypher for vector search, insertion and vector
index management.

Values always travel as bound parameters: the query embedding, `top_k`,
the candidate count and every filter value. Only identifiers (label,
property and index names) are spliced into the text, and those are
backtick-escaped. Index DDL additionally inlines the validated
dimension and similarity function because Neo4j does not accept
parameters inside index options on every supported version.

Score conventions
-----------------
`db.index.vector.queryNodes` reports normalized similarities in [0, 1]:

- cosine:    (1 + cos) / 2
- euclidean: 1 / (1 + d^2)

Queries convert them back to raw cosine similarity in [-1, 1] and raw
euclidean distance, and order most similar first (DESC for cosine, ASC
for distance).
"""

from __future__ import annotations

import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from graph_vector_store.domain.entities import IndexDescriptor, SimilarityMetric
from graph_vector_store.domain.errors import InvalidRequestError, InvalidRequestReason
from graph_vector_store.domain.filters import (
    AllOf,
    AnyOf,
    Comparison,
    Not,
    Operator,
    Predicate,
    RawPredicate,
)
from graph_vector_store.ports.vector_store import SearchRequest

# Parameter names used by generated queries; raw filters may not reuse them.
RESERVED_PARAMETERS = frozenset(
    {"index_name", "num_candidates", "query_vector", "top_k", "rows", "property", "timeout"}
)

_SCORE_EXPRESSIONS = {
    SimilarityMetric.COSINE: "2.0 * similarity - 1.0",
    SimilarityMetric.EUCLIDEAN: (
        "CASE WHEN similarity >= 1.0 THEN 0.0 ELSE sqrt(1.0 / similarity - 1.0) END"
    ),
}

_PARAMETER_PREVIEW_ITEMS = 3


def escape_identifier(name: str) -> str:
    """Quote a label, property or index name for safe use in Cypher."""
    return "`" + name.replace("`", "``") + "`"


@dataclass(frozen=True, slots=True)
class CypherQuery:
    """A Cypher statement with its parameter bindings."""

    text: str
    parameters: dict[str, Any] = field(default_factory=dict)

    def describe_parameters(self) -> dict[str, Any]:
        """Parameters with long lists shortened, for logs and error messages."""
        described: dict[str, Any] = {}
        for name, value in self.parameters.items():
            if isinstance(value, list) and len(value) > _PARAMETER_PREVIEW_ITEMS:
                described[name] = f"<list of {len(value)}>"
            else:
                described[name] = value
        return described

    def __repr__(self) -> str:
        text = " ".join(self.text.split())
        return f"CypherQuery(text={text!r}, parameters={self.describe_parameters()!r})"


class _Bindings:
    """Allocates `$f0`, `$f1`, ... for filter values."""

    def __init__(self) -> None:
        self.values: dict[str, Any] = {}
        self._counter = 0

    def bind(self, value: Any) -> str:
        name = f"f{self._counter}"
        while name in self.values:
            self._counter += 1
            name = f"f{self._counter}"
        self._counter += 1
        self.values[name] = value
        return f"${name}"

    def merge(self, parameters: Mapping[str, Any]) -> None:
        for name, value in parameters.items():
            if name in RESERVED_PARAMETERS or name in self.values:
                raise InvalidRequestError(
                    InvalidRequestReason.INVALID_FILTER,
                    f"Filter parameter ${name} collides with a generated parameter",
                )
            self.values[name] = value


def render_predicate(predicate: Predicate, variable: str = "node") -> tuple[str, dict[str, Any]]:
    """Render a filter predicate to a Cypher boolean expression and its parameters."""
    bindings = _Bindings()
    return _render(predicate, variable, bindings), bindings.values


def _render(predicate: Predicate, variable: str, bindings: _Bindings) -> str:
    if isinstance(predicate, Comparison):
        return _render_comparison(predicate, variable, bindings)
    if isinstance(predicate, AllOf):
        if not predicate.predicates:
            return "true"
        return "(" + " AND ".join(_render(p, variable, bindings) for p in predicate.predicates) + ")"
    if isinstance(predicate, AnyOf):
        if not predicate.predicates:
            return "false"
        return "(" + " OR ".join(_render(p, variable, bindings) for p in predicate.predicates) + ")"
    if isinstance(predicate, Not):
        return f"(NOT {_render(predicate.predicate, variable, bindings)})"
    if isinstance(predicate, RawPredicate):
        if not predicate.expression.strip():
            raise InvalidRequestError(InvalidRequestReason.INVALID_FILTER, "Empty raw filter")
        bindings.merge(predicate.parameters)
        return f"({predicate.expression})"
    raise InvalidRequestError(
        InvalidRequestReason.INVALID_FILTER,
        f"Unsupported filter predicate: {type(predicate).__name__}",
    )


def _render_comparison(comparison: Comparison, variable: str, bindings: _Bindings) -> str:
    if not comparison.field:
        raise InvalidRequestError(InvalidRequestReason.INVALID_FILTER, "Filter field name is empty")
    target = f"{variable}.{escape_identifier(comparison.field)}"
    operator = comparison.operator

    if operator in (Operator.IS_NULL, Operator.IS_NOT_NULL):
        return f"{target} {operator.value}"
    if comparison.value is None:
        raise InvalidRequestError(
            InvalidRequestReason.INVALID_FILTER,
            f"Filter on {comparison.field!r} compares with null; use is_null()",
        )
    if operator is Operator.INCLUDES:
        return f"{bindings.bind(comparison.value)} IN {target}"
    if operator is Operator.IN and not isinstance(comparison.value, list):
        raise InvalidRequestError(
            InvalidRequestReason.INVALID_FILTER,
            f"in_() on {comparison.field!r} needs a list of values",
        )
    return f"{target} {operator.value} {bindings.bind(comparison.value)}"


class CypherBuilder:
    """Stateless builder of vector index queries."""

    # -------------------------------------------------------------------------
    # Validation
    # -------------------------------------------------------------------------

    @staticmethod
    def validate_embedding(descriptor: IndexDescriptor, embedding: Sequence[float]) -> list[float]:
        """
        Check an embedding against the index dimension.

        Returns:
            The embedding as a list of floats.
        """
        if isinstance(embedding, (str, bytes)):
            raise InvalidRequestError(
                InvalidRequestReason.INVALID_EMBEDDING,
                "Embedding must be a sequence of floats, got a string",
            )
        try:
            vector = [float(v) for v in embedding]
        except (TypeError, ValueError) as e:
            raise InvalidRequestError(
                InvalidRequestReason.INVALID_EMBEDDING, f"Embedding is not numeric: {e}"
            ) from e
        if len(vector) != descriptor.dimension:
            raise InvalidRequestError(
                InvalidRequestReason.DIMENSION_MISMATCH,
                f"Embedding has {len(vector)} dimensions, index "
                f"{descriptor.name!r} expects {descriptor.dimension}",
            )
        if not all(math.isfinite(v) for v in vector):
            raise InvalidRequestError(
                InvalidRequestReason.INVALID_EMBEDDING, "Embedding contains NaN or infinity"
            )
        return vector

    @staticmethod
    def _validate_counts(request: SearchRequest) -> tuple[int, int]:
        top_k = request.top_k
        if isinstance(top_k, bool) or not isinstance(top_k, int) or top_k < 1:
            raise InvalidRequestError(
                InvalidRequestReason.INVALID_TOP_K, f"top_k must be a positive integer, got {top_k!r}"
            )
        candidates = request.num_candidates if request.num_candidates is not None else top_k
        if isinstance(candidates, bool) or not isinstance(candidates, int) or candidates < top_k:
            raise InvalidRequestError(
                InvalidRequestReason.INVALID_TOP_K,
                f"num_candidates must be an integer >= top_k ({top_k}), got {candidates!r}",
            )
        return top_k, candidates

    # -------------------------------------------------------------------------
    # Search
    # -------------------------------------------------------------------------

    def _search_prefix(
        self, descriptor: IndexDescriptor, request: SearchRequest
    ) -> tuple[list[str], dict[str, Any]]:
        top_k, candidates = self._validate_counts(request)
        vector = self.validate_embedding(descriptor, request.query_embedding)

        parameters: dict[str, Any] = {
            "index_name": descriptor.name,
            "num_candidates": candidates,
            "query_vector": vector,
            "top_k": top_k,
        }
        lines = [
            "CALL db.index.vector.queryNodes($index_name, $num_candidates, $query_vector)",
            "YIELD node, score AS similarity",
        ]
        if request.filter is not None:
            condition, filter_parameters = render_predicate(request.filter)
            lines.append(f"WHERE {condition}")
            parameters.update(filter_parameters)

        direction = "DESC" if descriptor.metric.higher_is_better else "ASC"
        lines += [
            f"WITH node, {_SCORE_EXPRESSIONS[descriptor.metric]} AS score",
            f"ORDER BY score {direction}",
            "LIMIT $top_k",
        ]
        return lines, parameters

    def build_search(
        self,
        descriptor: IndexDescriptor,
        request: SearchRequest,
        include_embedding: bool = False,
    ) -> CypherQuery:
        """
        Build the top-k search query.

        Raises:
            InvalidRequestError: If `top_k`, `num_candidates`, the
                embedding or the filter is invalid.
        """
        lines, parameters = self._search_prefix(descriptor, request)
        if include_embedding:
            projection = "node {.*}"
        else:
            projection = f"node {{.*, {escape_identifier(descriptor.property)}: null}}"
        lines.append(f"RETURN elementId(node) AS id, score, {projection} AS node")
        return CypherQuery("\n".join(lines), parameters)

    def build_search_ids(self, descriptor: IndexDescriptor, request: SearchRequest) -> CypherQuery:
        """Like `build_search`, returning only node ids and scores."""
        lines, parameters = self._search_prefix(descriptor, request)
        lines.append("RETURN elementId(node) AS id, score")
        return CypherQuery("\n".join(lines), parameters)

    # -------------------------------------------------------------------------
    # Insertion
    # -------------------------------------------------------------------------

    def build_insert(
        self,
        descriptor: IndexDescriptor,
        rows: Sequence[tuple[Mapping[str, Any], Sequence[float]]],
    ) -> CypherQuery:
        """
        Build a batched insert of `(properties, embedding)` rows.

        Properties must already be encoded to Neo4j property types.
        """
        payload = [
            {"properties": dict(properties), "embedding": self.validate_embedding(descriptor, embedding)}
            for properties, embedding in rows
        ]
        text = "\n".join(
            [
                "UNWIND $rows AS row",
                f"CREATE (node:{escape_identifier(descriptor.label)})",
                "SET node = row.properties",
                "WITH node, row",
                "CALL db.create.setNodeVectorProperty(node, $property, row.embedding)",
                "RETURN elementId(node) AS id",
            ]
        )
        return CypherQuery(text, {"rows": payload, "property": descriptor.property})

    # -------------------------------------------------------------------------
    # Index management
    # -------------------------------------------------------------------------

    def build_show_indexes(self) -> CypherQuery:
        return CypherQuery(
            "SHOW VECTOR INDEXES YIELD name, labelsOrTypes, properties, options, state"
        )

    def build_create_index(self, descriptor: IndexDescriptor) -> CypherQuery:
        text = "\n".join(
            [
                f"CREATE VECTOR INDEX {escape_identifier(descriptor.name)} IF NOT EXISTS",
                f"FOR (n:{escape_identifier(descriptor.label)}) "
                f"ON (n.{escape_identifier(descriptor.property)})",
                "OPTIONS {indexConfig: {",
                f"  `vector.dimensions`: {int(descriptor.dimension)},",
                f"  `vector.similarity_function`: '{descriptor.metric.neo4j_name}'",
                "}}",
            ]
        )
        return CypherQuery(text)

    def build_await_index(self, name: str, timeout_seconds: int) -> CypherQuery:
        return CypherQuery(
            "CALL db.awaitIndex($index_name, $timeout)",
            {"index_name": name, "timeout": timeout_seconds},
        )
