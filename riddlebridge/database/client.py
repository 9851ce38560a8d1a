"""
Neo4j Async Client

Thin wrapper over the async Neo4j driver used by the bridge transaction
store. Queries run in managed transactions (``execute_read`` and
``execute_write``), which the driver retries on transient cluster errors;
tenacity only covers startup while the database is still coming up.
"""

from typing import Any

import structlog
from neo4j import AsyncDriver, AsyncGraphDatabase, AsyncManagedTransaction
from neo4j.exceptions import Neo4jError, ServiceUnavailable
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from riddlebridge.config import Settings

logger = structlog.get_logger(__name__)

Records = list[dict[str, Any]]


async def _collect(tx: AsyncManagedTransaction, query: str, parameters: dict[str, Any]) -> Records:
    result = await tx.run(query, parameters)
    return [dict(record) async for record in result]


class Neo4jClient:
    """Connection holder for one Neo4j database."""

    def __init__(self, settings: Settings):
        self._settings = settings
        self.database = settings.neo4j_database
        self._driver: AsyncDriver | None = None

    @retry(
        stop=stop_after_attempt(5),
        wait=wait_exponential(multiplier=1, min=1, max=15),
        retry=retry_if_exception_type(ServiceUnavailable),
        reraise=True,
    )
    async def connect(self) -> None:
        if self._driver is not None:
            return

        settings = self._settings
        driver = AsyncGraphDatabase.driver(
            settings.neo4j_uri,
            auth=(settings.neo4j_user, settings.neo4j_password),
            max_connection_lifetime=settings.neo4j_max_connection_lifetime,
            max_connection_pool_size=settings.neo4j_max_connection_pool_size,
            connection_timeout=settings.neo4j_connection_timeout,
        )
        try:
            await driver.verify_connectivity()
        except (Neo4jError, ServiceUnavailable, OSError) as e:
            await driver.close()
            logger.warning("neo4j_unreachable", uri=settings.neo4j_uri, error=str(e))
            raise

        self._driver = driver
        logger.info("neo4j_connected", uri=settings.neo4j_uri, database=self.database)

    async def close(self) -> None:
        if self._driver is None:
            return
        await self._driver.close()
        self._driver = None
        logger.info("neo4j_connection_closed")

    def _require_driver(self) -> AsyncDriver:
        if self._driver is None:
            raise RuntimeError("Neo4j client not connected. Call connect() first.")
        return self._driver

    async def execute(
        self, query: str, parameters: dict[str, Any] | None = None, write: bool = False
    ) -> Records:
        """Run ``query`` in a managed read (or write) transaction and return all rows."""
        async with self._require_driver().session(database=self.database) as session:
            run = session.execute_write if write else session.execute_read
            return await run(_collect, query, parameters or {})

    async def execute_single(
        self, query: str, parameters: dict[str, Any] | None = None, write: bool = False
    ) -> dict[str, Any] | None:
        """Like ``execute`` but returns the first row, or None."""
        rows = await self.execute(query, parameters, write=write)
        return rows[0] if rows else None

    async def health_check(self) -> dict[str, Any]:
        try:
            await self.execute_single("RETURN 1 AS ok")
        except (Neo4jError, ServiceUnavailable, RuntimeError, OSError) as e:
            logger.error("neo4j_health_check_failed", error=str(e))
            return {"status": "unhealthy", "database": self.database, "error": str(e)}
        return {"status": "healthy", "database": self.database}
