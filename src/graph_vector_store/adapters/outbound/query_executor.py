"""
Query Executor
==============

Runs Cypher through a `Neo4jConnection` and streams records back.

A `RecordStream` opens its session on the first fetch, pulls records
incrementally (the driver buffers at most `fetch_size` at a time) and
closes the session as soon as it is exhausted, broken, closed or
cancelled. Streams are single-pass.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from typing import TYPE_CHECKING, Any

from neo4j.exceptions import (
    AuthError,
    DriverError,
    Neo4jError,
    ServiceUnavailable,
    SessionExpired,
)

from graph_vector_store.domain.errors import (
    BackendRejectedError,
    ConnectionFailure,
    StoreConnectionError,
    StreamBrokenError,
)

if TYPE_CHECKING:
    from neo4j import AsyncSession

    from graph_vector_store.adapters.outbound.cypher_builder import CypherQuery
    from graph_vector_store.adapters.outbound.neo4j_connection import Neo4jConnection

logger = logging.getLogger(__name__)

# Failures of the transport rather than of the query itself.
_TRANSPORT_ERRORS = (ServiceUnavailable, SessionExpired, OSError)


class RecordStream:
    """
    Lazy, finite, single-pass stream of result records.

    Use as an async iterator, ideally inside `async with` so the session
    is released even when iteration stops early:

        async with executor.execute(query) as stream:
            async for record in stream:
                ...

    `completed` is True only after the server reported the end of the
    result; a stream closed early or broken mid-way leaves it False.
    """

    def __init__(self, connection: Neo4jConnection, query: CypherQuery) -> None:
        self._connection = connection
        self.query = query
        self._session: AsyncSession | None = None
        self._records: AsyncIterator[Any] | None = None
        self._iterated = False
        self._closed = False
        self.rows_yielded = 0
        self.completed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def __aiter__(self) -> RecordStream:
        if self._iterated:
            raise RuntimeError("RecordStream is single-pass; re-issue the query to read it again")
        self._iterated = True
        return self

    async def __anext__(self) -> Any:
        if self._closed:
            raise StopAsyncIteration
        try:
            if self._records is None:
                await self._submit()
            record = await anext(self._records)  # type: ignore[arg-type]
        except StopAsyncIteration:
            self.completed = True
            await self.aclose()
            raise
        except asyncio.CancelledError:
            self._cancel()
            raise
        except AuthError as e:
            await self._abort()
            logger.error(f"Neo4j rejected credentials: {e}")
            raise StoreConnectionError(ConnectionFailure.UNAUTHORIZED, str(e)) from e
        except _TRANSPORT_ERRORS as e:
            await self._abort()
            logger.error(
                "Neo4j stream broke after %d row(s): %s | query=%r",
                self.rows_yielded,
                e,
                self.query,
            )
            raise StreamBrokenError(
                f"Result stream broke after {self.rows_yielded} row(s): {e}",
                query=self.query,
                rows_yielded=self.rows_yielded,
            ) from e
        except Neo4jError as e:
            await self._abort()
            logger.error(f"Neo4j rejected query: {e} | query={self.query!r}")
            raise BackendRejectedError(
                f"Query rejected: {e}", query=self.query, code=getattr(e, "code", None)
            ) from e
        self.rows_yielded += 1
        return record

    async def _submit(self) -> None:
        self._session = self._connection.session()
        logger.debug("Running query %r", self.query)
        result = await self._session.run(self.query.text, self.query.parameters)
        self._records = aiter(result)

    def _cancel(self) -> None:
        """Release the session synchronously when the consuming task is cancelled."""
        self._closed = True
        self._records = None
        if self._session is not None:
            session, self._session = self._session, None
            session.cancel()
            logger.debug("Cancelled Neo4j session for %r", self.query)

    async def _abort(self) -> None:
        try:
            await self.aclose()
        except (DriverError, Neo4jError, OSError) as e:
            logger.debug(f"Ignoring error while closing broken session: {e}")

    async def aclose(self) -> None:
        """Stop consuming and release the server-side cursor. Safe to call twice."""
        self._closed = True
        self._records = None
        if self._session is not None:
            session, self._session = self._session, None
            try:
                await session.close()
            except asyncio.CancelledError:
                session.cancel()
                raise
            if not self.completed:
                logger.debug(
                    "Closed stream early after %d row(s) for %r", self.rows_yielded, self.query
                )

    async def __aenter__(self) -> RecordStream:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()


class QueryExecutor:
    """Submits queries on a shared connection."""

    def __init__(self, connection: Neo4jConnection) -> None:
        self._connection = connection

    def execute(self, query: CypherQuery) -> RecordStream:
        """Return a lazy stream of records; nothing is sent until the first fetch."""
        return RecordStream(self._connection, query)

    async def run(self, query: CypherQuery) -> list[Any]:
        """Run a query to completion and return all records."""
        async with self.execute(query) as stream:
            return [record async for record in stream]
