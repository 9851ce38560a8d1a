"""
Neo4j Schema Manager

Constraints and indexes of the BridgeTransaction label. All statements use
IF NOT EXISTS, so setup is idempotent and safe on every startup.
"""

import structlog
from neo4j.exceptions import ClientError, DatabaseError, ServiceUnavailable

from riddlebridge.database.client import Neo4jClient

logger = structlog.get_logger(__name__)


CONSTRAINTS = [
    (
        "bridge_tx_id_unique",
        "CREATE CONSTRAINT bridge_tx_id_unique IF NOT EXISTS "
        "FOR (t:BridgeTransaction) REQUIRE t.id IS UNIQUE",
    ),
    # One inbound proof can back only one transaction
    (
        "bridge_tx_inbound_unique",
        "CREATE CONSTRAINT bridge_tx_inbound_unique IF NOT EXISTS "
        "FOR (t:BridgeTransaction) REQUIRE t.inbound_tx_hash IS UNIQUE",
    ),
]

INDEXES = [
    (
        "bridge_tx_status_idx",
        "CREATE INDEX bridge_tx_status_idx IF NOT EXISTS "
        "FOR (t:BridgeTransaction) ON (t.status)",
    ),
    (
        "bridge_tx_owner_idx",
        "CREATE INDEX bridge_tx_owner_idx IF NOT EXISTS "
        "FOR (t:BridgeTransaction) ON (t.owner_id)",
    ),
    (
        "bridge_tx_created_idx",
        "CREATE INDEX bridge_tx_created_idx IF NOT EXISTS "
        "FOR (t:BridgeTransaction) ON (t.created_at)",
    ),
]


class SchemaManager:
    """Creates the bridge store's constraints and indexes."""

    def __init__(self, client: Neo4jClient):
        self.client = client

    async def setup_all(self) -> dict[str, bool]:
        """
        Set up all schema elements.

        Returns:
            Dict of schema element names to success status
        """
        results: dict[str, bool] = {}
        for name, query in CONSTRAINTS + INDEXES:
            try:
                await self.client.execute(query, write=True)
                results[name] = True
            except ClientError as e:
                results[name] = False
                logger.error("schema_element_rejected", name=name, error=str(e))
            except DatabaseError as e:
                results[name] = False
                logger.error("schema_element_failed", name=name, error=str(e))
            except ServiceUnavailable as e:
                logger.critical("schema_setup_database_unavailable", name=name, error=str(e))
                raise

        logger.info(
            "schema_setup_complete",
            total=len(results),
            successful=sum(1 for ok in results.values() if ok),
        )
        return results
