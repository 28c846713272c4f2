"""
Graph Vector Store
==================

Neo4j vector index adapter for retrieval-augmented generation pipelines.

Layers:
- domain: Entities, filter predicates and the error taxonomy
- ports: The abstract VectorStore capability
- adapters: Neo4j implementation (connection, query building, execution,
  result mapping, index lifecycle)
- infrastructure: Settings and logging setup
"""

from graph_vector_store.adapters.outbound.neo4j_connection import Neo4jConnection
from graph_vector_store.adapters.outbound.result_mapper import MappingPolicy
from graph_vector_store.adapters.outbound.vector_neo4j import Neo4jVectorStore
from graph_vector_store.domain.entities import IndexDescriptor, SimilarityMetric
from graph_vector_store.domain.filters import Field
from graph_vector_store.ports.vector_store import (
    DocumentRecord,
    ScoredDocument,
    SearchRequest,
    SearchResult,
    VectorStore,
)

__version__ = "0.1.0"

__all__ = [
    "DocumentRecord",
    "Field",
    "IndexDescriptor",
    "MappingPolicy",
    "Neo4jConnection",
    "Neo4jVectorStore",
    "ScoredDocument",
    "SearchRequest",
    "SearchResult",
    "SimilarityMetric",
    "VectorStore",
]
