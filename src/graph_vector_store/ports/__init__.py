"""
Ports Layer
===========

Abstract interfaces between retrieval pipelines and storage backends.
"""

from graph_vector_store.ports.vector_store import (
    DocumentRecord,
    ScoredDocument,
    SearchRequest,
    SearchResult,
    VectorStore,
)

__all__ = [
    "DocumentRecord",
    "ScoredDocument",
    "SearchRequest",
    "SearchResult",
    "VectorStore",
]
