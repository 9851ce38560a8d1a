"""Neo4j persistence for bridge transactions."""

from riddlebridge.database.client import Neo4jClient
from riddlebridge.database.schema import SchemaManager

__all__ = ["Neo4jClient", "SchemaManager"]
