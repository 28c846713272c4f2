"""
Neo4j Connection
================

Owns the async driver (and therefore the connection pool) shared by all
vector store operations. Access is not serialized here; the driver's
pool handles concurrent sessions.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from neo4j import AsyncGraphDatabase
from neo4j.exceptions import (
    AuthError,
    ConfigurationError,
    DriverError,
    Neo4jError,
    ServiceUnavailable,
    UnsupportedServerProduct,
)

from graph_vector_store.domain.errors import ConnectionFailure, StoreConnectionError

if TYPE_CHECKING:
    from neo4j import AsyncDriver, AsyncSession

    from graph_vector_store.infrastructure.config import Neo4jSettings

logger = logging.getLogger(__name__)


class Neo4jConnection:
    """
    Handle to an open Neo4j driver.

    Create with `await Neo4jConnection.open(settings)`, or wrap an
    existing driver. Usable as an async context manager.
    """

    def __init__(
        self,
        driver: AsyncDriver,
        database: str | None = None,
        fetch_size: int | None = None,
    ) -> None:
        self._driver: AsyncDriver | None = driver
        self.database = database
        self.fetch_size = fetch_size

    @classmethod
    async def open(cls, settings: Neo4jSettings) -> Neo4jConnection:
        """
        Create a driver from settings and verify the server is reachable.

        Raises:
            StoreConnectionError: If the server is unreachable, rejects the
                credentials, or is not a supported Neo4j product.
        """
        try:
            driver = AsyncGraphDatabase.driver(
                settings.uri,
                auth=(settings.username, settings.password.get_secret_value()),
                max_connection_pool_size=settings.max_connection_pool_size,
                connection_acquisition_timeout=settings.connection_acquisition_timeout,
            )
        except ConfigurationError as e:
            logger.error(f"Invalid Neo4j driver configuration: {e}")
            raise StoreConnectionError(ConnectionFailure.INCOMPATIBLE, str(e)) from e
        except ValueError as e:
            # Raised by the driver for malformed URIs
            logger.error(f"Invalid Neo4j URI {settings.uri!r}: {e}")
            raise StoreConnectionError(ConnectionFailure.UNREACHABLE, str(e)) from e

        connection = cls(driver, database=settings.database, fetch_size=settings.fetch_size)
        try:
            await connection._wait_until_reachable(
                settings.connect_attempts, settings.connect_retry_interval
            )
        except BaseException:
            await driver.close()
            raise
        logger.info(f"Connected to Neo4j at {settings.uri}")
        return connection

    async def _wait_until_reachable(self, attempts: int, retry_interval: float) -> None:
        driver = self.driver
        for attempt in range(1, attempts + 1):
            try:
                await driver.verify_connectivity()
                return
            except ServiceUnavailable as e:
                if attempt >= attempts:
                    logger.error(f"Neo4j service unavailable: {e}")
                    raise StoreConnectionError(ConnectionFailure.UNREACHABLE, str(e)) from e
                logger.info(
                    "Neo4j not ready yet (attempt %s/%s). Retrying in %.1fs...",
                    attempt,
                    attempts,
                    retry_interval,
                )
                await asyncio.sleep(retry_interval)
            except AuthError as e:
                logger.error(f"Neo4j authentication failed: {e}")
                raise StoreConnectionError(ConnectionFailure.UNAUTHORIZED, str(e)) from e
            except (UnsupportedServerProduct, ConfigurationError) as e:
                logger.error(f"Neo4j server is not supported: {e}")
                raise StoreConnectionError(ConnectionFailure.INCOMPATIBLE, str(e)) from e
            except OSError as e:
                logger.error(f"Neo4j unreachable: {e}")
                raise StoreConnectionError(ConnectionFailure.UNREACHABLE, str(e)) from e

    @property
    def driver(self) -> AsyncDriver:
        if self._driver is None:
            raise StoreConnectionError(ConnectionFailure.UNREACHABLE, "Connection is closed")
        return self._driver

    @property
    def closed(self) -> bool:
        return self._driver is None

    def session(self, **config: Any) -> AsyncSession:
        """Open a session on the configured database."""
        config.setdefault("database", self.database)
        if self.fetch_size is not None:
            config.setdefault("fetch_size", self.fetch_size)
        return self.driver.session(**config)

    async def close(self) -> None:
        """Close the driver and its pooled connections. Safe to call twice."""
        if self._driver is not None:
            driver, self._driver = self._driver, None
            await driver.close()
            logger.info("Disconnected from Neo4j")

    async def health_check(self) -> bool:
        """Check if Neo4j is reachable."""
        if self._driver is None:
            return False
        try:
            await self._driver.verify_connectivity()
            return True
        except (DriverError, Neo4jError, OSError) as e:
            logger.warning(f"Neo4j health check failed: {e}")
            return False

    async def server_info(self) -> dict[str, Any]:
        """Return the server agent string and negotiated protocol version."""
        info = await self.driver.get_server_info()
        return {
            "address": str(info.address),
            "agent": info.agent,
            "protocol_version": ".".join(str(part) for part in info.protocol_version),
        }

    async def __aenter__(self) -> Neo4jConnection:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()
