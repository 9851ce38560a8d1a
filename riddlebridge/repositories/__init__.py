"""Bridge transaction repositories."""

from riddlebridge.repositories.bridge_repository import Neo4jBridgeTransactionStore
from riddlebridge.repositories.transaction_store import (
    BridgeTransactionStore,
    InMemoryBridgeTransactionStore,
)

__all__ = [
    "BridgeTransactionStore",
    "InMemoryBridgeTransactionStore",
    "Neo4jBridgeTransactionStore",
]
