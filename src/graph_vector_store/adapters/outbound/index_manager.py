"""
Vector Index Lifecycle
======================

Creates vector indexes on demand and checks existing ones against the
expected descriptor. Existing indexes are never dropped or altered.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from graph_vector_store.adapters.outbound.cypher_builder import CypherBuilder
from graph_vector_store.adapters.outbound.query_executor import QueryExecutor
from graph_vector_store.domain.entities import IndexDescriptor, SimilarityMetric, VectorIndexInfo
from graph_vector_store.domain.errors import (
    ExecutionError,
    IndexConflictError,
    IndexCreationError,
)

logger = logging.getLogger(__name__)


def parse_index_row(row: Mapping[str, Any]) -> VectorIndexInfo:
    """Build a `VectorIndexInfo` from a `SHOW VECTOR INDEXES` row."""
    labels = row.get("labelsOrTypes") or []
    properties = row.get("properties") or []
    options = row.get("options") or {}
    config = options.get("indexConfig") or {}

    dimension = config.get("vector.dimensions")
    similarity = config.get("vector.similarity_function")
    metric: SimilarityMetric | None = None
    if similarity:
        try:
            metric = SimilarityMetric.from_neo4j(similarity)
        except ValueError:
            logger.warning(f"Unknown similarity function {similarity!r} on index {row.get('name')!r}")

    return VectorIndexInfo(
        name=row["name"],
        label=labels[0] if labels else None,
        embedding_property=properties[0] if properties else None,
        dimension=int(dimension) if dimension is not None else None,
        metric=metric,
        state=row.get("state") or "UNKNOWN",
        options=dict(options),
    )


class VectorIndexManager:
    """Idempotent management of Neo4j vector indexes."""

    def __init__(self, executor: QueryExecutor, builder: CypherBuilder | None = None) -> None:
        self._executor = executor
        self._builder = builder or CypherBuilder()

    async def list_indexes(self) -> list[VectorIndexInfo]:
        records = await self._executor.run(self._builder.build_show_indexes())
        return [parse_index_row(dict(record.items())) for record in records]

    async def get_index(self, name: str) -> VectorIndexInfo | None:
        for index in await self.list_indexes():
            if index.name == name:
                return index
        return None

    async def _find_existing(self, descriptor: IndexDescriptor) -> VectorIndexInfo | None:
        """Find an index sharing the descriptor's name, or else its label and property."""
        indexes = await self.list_indexes()
        for index in indexes:
            if index.name == descriptor.name:
                return index
        for index in indexes:
            if index.targets(descriptor.label, descriptor.property):
                return index
        return None

    @staticmethod
    def _check_compatible(existing: VectorIndexInfo, descriptor: IndexDescriptor) -> None:
        differences = existing.conflicts_with(descriptor)
        if existing.name != descriptor.name:
            differences.insert(0, f"name ({existing.name} != {descriptor.name})")
        if differences:
            raise IndexConflictError(
                f"Vector index {existing.name!r} already exists with different settings: "
                + ", ".join(differences),
                existing=existing,
            )

    async def ensure_index(self, descriptor: IndexDescriptor) -> VectorIndexInfo:
        """
        Create the vector index if absent.

        Returns:
            The existing or newly created index.

        Raises:
            IndexConflictError: If an index with the same name, or on the
                same label and property, has different settings.
            IndexCreationError: If the database refuses to create the index.
        """
        existing = await self._find_existing(descriptor)
        if existing is not None:
            self._check_compatible(existing, descriptor)
            logger.debug(f"Vector index {descriptor.name!r} already exists")
            return existing

        try:
            await self._executor.run(self._builder.build_create_index(descriptor))
        except ExecutionError as e:
            logger.error(f"Vector index creation failed for {descriptor.name!r}: {e}")
            raise IndexCreationError(f"Could not create vector index {descriptor.name!r}: {e}") from e

        # Another writer may have created a different index in the meantime
        created = await self.get_index(descriptor.name)
        if created is None:
            raise IndexCreationError(
                f"Vector index {descriptor.name!r} is missing after creation"
            )
        self._check_compatible(created, descriptor)
        logger.info(
            f"Created vector index {descriptor.name!r} on :{descriptor.label}({descriptor.property}) "
            f"dim={descriptor.dimension} metric={descriptor.metric.value}"
        )
        return created

    async def wait_until_online(self, name: str, timeout_seconds: int = 300) -> VectorIndexInfo:
        """
        Block until the index has finished populating.

        Raises:
            IndexCreationError: If the index does not exist, fails to come
                online within the timeout, or ends in a non-online state.
        """
        try:
            await self._executor.run(self._builder.build_await_index(name, timeout_seconds))
        except ExecutionError as e:
            raise IndexCreationError(f"Vector index {name!r} did not come online: {e}") from e
        index = await self.get_index(name)
        if index is None or not index.is_online:
            state = index.state if index else "MISSING"
            raise IndexCreationError(f"Vector index {name!r} is {state}")
        return index
