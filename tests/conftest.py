"""
Pytest Fixtures
===============

Shared fixtures for all test modules.
"""

from __future__ import annotations

import pytest
from fakes import FakeDriver

from graph_vector_store.adapters.outbound.neo4j_connection import Neo4jConnection
from graph_vector_store.adapters.outbound.vector_neo4j import Neo4jVectorStore
from graph_vector_store.domain.entities import IndexDescriptor, SimilarityMetric

# -----------------------------------------------------------------------------
# Index Fixtures
# -----------------------------------------------------------------------------


@pytest.fixture
def descriptor() -> IndexDescriptor:
    """A small cosine index so vectors stay readable in tests."""
    return IndexDescriptor(
        name="doc_embeddings",
        label="Document",
        property="embedding",
        dimension=4,
        metric=SimilarityMetric.COSINE,
    )


@pytest.fixture
def euclidean_descriptor() -> IndexDescriptor:
    return IndexDescriptor(
        name="doc_embeddings_l2",
        label="Document",
        property="embedding",
        dimension=4,
        metric=SimilarityMetric.EUCLIDEAN,
    )


# -----------------------------------------------------------------------------
# Driver / Connection Fixtures
# -----------------------------------------------------------------------------


@pytest.fixture
def fake_driver(descriptor: IndexDescriptor) -> FakeDriver:
    """Fake driver with the default index already created."""
    driver = FakeDriver()
    driver.add_index(
        descriptor.name,
        descriptor.label,
        descriptor.property,
        descriptor.dimension,
        descriptor.metric.neo4j_name,
    )
    return driver


@pytest.fixture
def connection(fake_driver: FakeDriver) -> Neo4jConnection:
    return Neo4jConnection(fake_driver, database="neo4j", fetch_size=10)  # type: ignore[arg-type]


@pytest.fixture
def store(connection: Neo4jConnection, descriptor: IndexDescriptor) -> Neo4jVectorStore:
    return Neo4jVectorStore(connection, descriptor)


# -----------------------------------------------------------------------------
# Sample Data Fixtures
# -----------------------------------------------------------------------------


@pytest.fixture
def sample_documents() -> list[tuple[dict, list[float]]]:
    """Three documents, two of them in the 'news' category."""
    return [
        ({"title": "Rust 2024 edition", "category": "news", "year": 2024}, [1.0, 0.0, 0.0, 0.0]),
        ({"title": "Graph databases", "category": "guide", "year": 2021}, [0.9, 0.1, 0.0, 0.0]),
        ({"title": "Neo4j 5 released", "category": "news", "year": 2022}, [0.0, 1.0, 0.0, 0.0]),
    ]
