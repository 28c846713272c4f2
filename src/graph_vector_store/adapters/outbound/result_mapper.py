"""
Result Mapping
==============

Turns result records into scored documents.

Documents are stored as flat node properties. Values Neo4j cannot store
as a property (nulls, maps, lists of maps, mixed lists) are written as
JSON strings and their keys listed in the `_gvs_json` property, so they
can be restored on the way back. A stored null is the string `"null"`,
so `is_null()` filters only match keys the document never had. Typed
deserialization is left to the caller's own schema through
`pydantic.TypeAdapter`.
"""

from __future__ import annotations

import json
import logging
import math
from collections.abc import Iterable, Mapping
from enum import StrEnum, auto
from numbers import Real
from typing import Any

from pydantic import TypeAdapter, ValidationError
from pydantic_core import PydanticSerializationError, to_jsonable_python

from graph_vector_store.domain.entities import IndexDescriptor, SimilarityMetric
from graph_vector_store.domain.errors import (
    InvalidRequestError,
    InvalidRequestReason,
    MalformedDocumentError,
    MissingScoreError,
)
from graph_vector_store.ports.vector_store import ScoredDocument, SearchResult

logger = logging.getLogger(__name__)

# Property listing keys whose values were stored as JSON strings.
JSON_FIELDS_PROPERTY = "_gvs_json"


class MappingPolicy(StrEnum):
    """What a search does with rows that fail to map."""

    COLLECT = auto()  # Keep going, then raise PartialResultError with valid rows and errors
    SKIP = auto()  # Log and drop bad rows
    ABORT = auto()  # Raise the first MappingError


def _is_primitive(value: Any) -> bool:
    return isinstance(value, (str, bool, int, float))


def _is_storable_list(value: list[Any]) -> bool:
    """Neo4j lists must be homogeneous and hold no nulls or maps."""
    if not all(_is_primitive(v) for v in value):
        return False
    kinds = {bool if isinstance(v, bool) else str if isinstance(v, str) else Real for v in value}
    return len(kinds) <= 1


class DocumentCodec:
    """Encodes arbitrary documents to node properties and back."""

    def __init__(self, embedding_property: str) -> None:
        self._embedding_property = embedding_property

    def encode(self, document: Any) -> dict[str, Any]:
        """
        Convert a document to storable node properties.

        Raises:
            InvalidRequestError: If the document is not a key-value
                structure or uses a reserved key.
        """
        try:
            payload = to_jsonable_python(document)
        except PydanticSerializationError as e:
            raise InvalidRequestError(
                InvalidRequestReason.INVALID_DOCUMENT, f"Document is not serializable: {e}"
            ) from e
        if not isinstance(payload, dict):
            raise InvalidRequestError(
                InvalidRequestReason.INVALID_DOCUMENT,
                f"Document must serialize to a mapping, got {type(payload).__name__}",
            )

        properties: dict[str, Any] = {}
        json_fields: list[str] = []
        for key, value in payload.items():
            key = str(key)
            if key in (self._embedding_property, JSON_FIELDS_PROPERTY):
                raise InvalidRequestError(
                    InvalidRequestReason.INVALID_DOCUMENT,
                    f"Document key {key!r} is reserved",
                )
            if _is_primitive(value) or (isinstance(value, list) and _is_storable_list(value)):
                properties[key] = value
            else:
                properties[key] = json.dumps(value, separators=(",", ":"))
                json_fields.append(key)
        if json_fields:
            properties[JSON_FIELDS_PROPERTY] = json_fields
        return properties

    def decode(self, properties: Mapping[str, Any]) -> tuple[dict[str, Any], list[float] | None]:
        """
        Restore a document payload from node properties.

        Returns:
            The payload and the embedding, if the properties carried one.

        Raises:
            MalformedDocumentError: If a JSON-tagged value does not parse.
        """
        payload = dict(properties)
        embedding = payload.pop(self._embedding_property, None)
        json_fields = payload.pop(JSON_FIELDS_PROPERTY, None) or []
        for key in json_fields:
            if key not in payload:
                continue
            try:
                payload[key] = json.loads(payload[key])
            except (TypeError, json.JSONDecodeError) as e:
                raise MalformedDocumentError(
                    f"Property {key!r} is tagged as JSON but does not parse: {e}",
                    raw=dict(properties),
                ) from e
        return payload, embedding


class ResultMapper:
    """
    Maps search records (`id`, `score`, `node`) to `ScoredDocument`.

    Scores are passed through unchanged; ordering is applied to the
    whole sequence by `order_results`.
    """

    def __init__(
        self,
        descriptor: IndexDescriptor,
        document_type: Any = None,
    ) -> None:
        self._descriptor = descriptor
        self._codec = DocumentCodec(descriptor.property)
        self._adapter: TypeAdapter[Any] | None = (
            TypeAdapter(document_type) if document_type is not None else None
        )

    @property
    def codec(self) -> DocumentCodec:
        return self._codec

    def map(self, record: Any) -> ScoredDocument:
        """
        Convert one record.

        Raises:
            MissingScoreError: If the record has no numeric score.
            MalformedDocumentError: If the node payload is missing, fails
                to decode, does not match the document type, or carries an
                embedding of the wrong dimension.
        """
        row = _record_to_dict(record)
        score = _extract_score(row)

        properties = row.get("node")
        if not isinstance(properties, Mapping):
            raise MalformedDocumentError("Record has no node properties", raw=row)

        payload, embedding = self._codec.decode(properties)
        if embedding is not None:
            embedding = self._check_embedding(embedding, row)

        document: Any = payload
        if self._adapter is not None:
            try:
                document = self._adapter.validate_python(payload)
            except ValidationError as e:
                raise MalformedDocumentError(
                    f"Node properties do not match the document type: {e}",
                    raw=payload,
                ) from e

        node_id = row.get("id")
        return ScoredDocument(
            document=document,
            score=score,
            node_id=str(node_id) if node_id is not None else None,
            embedding=embedding,
        )

    def map_id(self, record: Any) -> tuple[float, str]:
        """Convert a `(id, score)` record."""
        row = _record_to_dict(record)
        score = _extract_score(row)
        node_id = row.get("id")
        if node_id is None:
            raise MalformedDocumentError("Record has no node id", raw=row)
        return score, str(node_id)

    def _check_embedding(self, embedding: Any, row: dict[str, Any]) -> list[float]:
        if not isinstance(embedding, list) or len(embedding) != self._descriptor.dimension:
            size = len(embedding) if isinstance(embedding, list) else None
            raise MalformedDocumentError(
                f"Stored embedding has {size} dimensions, index "
                f"{self._descriptor.name!r} expects {self._descriptor.dimension}",
                raw=row,
            )
        return [float(v) for v in embedding]


def _record_to_dict(record: Any) -> dict[str, Any]:
    if isinstance(record, Mapping):
        return dict(record)
    # neo4j.Record exposes items() but is not a Mapping
    return dict(record.items())


def _extract_score(row: dict[str, Any]) -> float:
    score = row.get("score")
    if isinstance(score, bool) or not isinstance(score, Real):
        raise MissingScoreError(f"Record has no numeric score (got {score!r})", raw=row)
    score = float(score)
    if math.isnan(score):
        raise MissingScoreError("Record score is NaN", raw=row)
    return score


def order_results(hits: Iterable[ScoredDocument], metric: SimilarityMetric) -> SearchResult:
    """Order hits most relevant first for the given metric."""
    ordered = sorted(hits, key=lambda hit: hit.score, reverse=metric.higher_is_better)
    return SearchResult(metric=metric, hits=tuple(ordered))
