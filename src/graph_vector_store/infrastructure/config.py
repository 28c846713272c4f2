"""
Configuration Management
========================

Pydantic-settings based configuration for the Neo4j connection and,
optionally, the vector index. Reads from environment variables with
sensible defaults.

The adapter core never reads these itself: callers build a connection
from `Neo4jSettings` and pass an `IndexDescriptor` explicitly.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from graph_vector_store.domain.entities import (
    MAX_VECTOR_DIMENSION,
    IndexDescriptor,
    SimilarityMetric,
)


class Neo4jSettings(BaseSettings):
    """Configuration for the Neo4j connection."""

    model_config = SettingsConfigDict(env_prefix="NEO4J_")

    uri: str = Field(
        default="bolt://localhost:7687",
        description="Bolt or neo4j:// URI for the Neo4j connection",
    )
    username: str = Field(default="neo4j")
    password: SecretStr = Field(default=SecretStr("password"))
    database: str = Field(default="neo4j")
    max_connection_pool_size: int = Field(default=50, ge=1)
    connection_acquisition_timeout: float = Field(
        default=60.0,
        gt=0.0,
        description="Seconds to wait for a pooled connection",
    )
    fetch_size: int = Field(
        default=100,
        ge=1,
        description="Records pulled per round trip while streaming results",
    )
    # Neo4j can take a while to accept Bolt connections after container start.
    connect_attempts: int = Field(default=5, ge=1)
    connect_retry_interval: float = Field(default=2.0, ge=0.0)


class VectorIndexSettings(BaseSettings):
    """Optional environment-driven description of the vector index."""

    model_config = SettingsConfigDict(env_prefix="VECTOR_INDEX_")

    name: str = Field(default="vector_index")
    label: str = Field(default="Document")
    property: str = Field(default="embedding")
    dimension: int = Field(
        default=384,
        ge=1,
        le=MAX_VECTOR_DIMENSION,
        description="Embedding dimension (384 for all-MiniLM-L6-v2)",
    )
    metric: SimilarityMetric = Field(default=SimilarityMetric.COSINE)

    def to_descriptor(self) -> IndexDescriptor:
        return IndexDescriptor(
            name=self.name,
            label=self.label,
            property=self.property,
            dimension=self.dimension,
            metric=self.metric,
        )


class Settings(BaseSettings):
    """
    Root configuration aggregating all settings.

    Usage:
        settings = get_settings()
        neo4j_uri = settings.neo4j.uri
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    neo4j: Neo4jSettings = Field(default_factory=Neo4jSettings)
    vector_index: VectorIndexSettings = Field(default_factory=VectorIndexSettings)

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings.

    Returns singleton instance, reading from environment on first call.
    """
    return Settings()
