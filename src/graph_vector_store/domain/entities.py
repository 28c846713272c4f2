"""
Domain Entities
===============

Value objects describing vector indexes and embeddings.
These are immutable and carry no infrastructure dependencies.
"""

from __future__ import annotations

from enum import StrEnum, auto
from typing import Any

from pydantic import BaseModel, Field

# An embedding is an ordered list of floats; its length is fixed per index.
EmbeddingVector = list[float]

# Largest dimension Neo4j accepts for a vector index.
MAX_VECTOR_DIMENSION = 4096


class SimilarityMetric(StrEnum):
    """Similarity function backing a vector index."""

    COSINE = auto()  # Similarity in [-1, 1], higher is closer
    EUCLIDEAN = auto()  # Distance >= 0, lower is closer

    @property
    def higher_is_better(self) -> bool:
        """Whether larger scores mean more similar results."""
        return self is SimilarityMetric.COSINE

    @property
    def neo4j_name(self) -> str:
        """Value used for `vector.similarity_function` in index options."""
        return self.value.upper()

    @classmethod
    def from_neo4j(cls, value: str) -> SimilarityMetric:
        """Parse the similarity function reported by `SHOW VECTOR INDEXES`."""
        return cls(value.lower())


class IndexDescriptor(BaseModel):
    """
    Describes a vector index over one node label and property.

    Every embedding stored under the index must have exactly
    `dimension` entries.
    """

    name: str = Field(..., min_length=1, description="Vector index name")
    label: str = Field(..., min_length=1, description="Label of indexed nodes")
    property: str = Field(
        default="embedding",
        min_length=1,
        description="Node property holding the embedding",
    )
    dimension: int = Field(..., ge=1, le=MAX_VECTOR_DIMENSION)
    metric: SimilarityMetric = Field(default=SimilarityMetric.COSINE)

    model_config = {"frozen": True}


class VectorIndexInfo(BaseModel):
    """A vector index as reported by the database."""

    name: str
    label: str | None = None
    embedding_property: str | None = None
    dimension: int | None = None
    metric: SimilarityMetric | None = None
    state: str = Field(default="UNKNOWN", description="e.g. ONLINE, POPULATING, FAILED")
    options: dict[str, Any] = Field(default_factory=dict)

    model_config = {"frozen": True}

    @property
    def is_online(self) -> bool:
        return self.state.upper() == "ONLINE"

    def targets(self, label: str, property: str) -> bool:
        """Whether this index covers the given label and property."""
        return self.label == label and self.embedding_property == property

    def conflicts_with(self, descriptor: IndexDescriptor) -> list[str]:
        """
        List the attributes that differ from `descriptor`.

        An empty list means the existing index can serve the descriptor
        as-is.
        """
        differences = []
        if not self.targets(descriptor.label, descriptor.property):
            differences.append(
                f"target ({self.label}.{self.embedding_property} != "
                f"{descriptor.label}.{descriptor.property})"
            )
        if self.dimension != descriptor.dimension:
            differences.append(f"dimension ({self.dimension} != {descriptor.dimension})")
        if self.metric != descriptor.metric:
            metric = self.metric.value if self.metric else None
            differences.append(f"metric ({metric} != {descriptor.metric.value})")
        return differences
