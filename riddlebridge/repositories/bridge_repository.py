"""
Neo4j Bridge Transaction Repository

Stores each bridge transaction as a (:BridgeTransaction) node. Properties
are the JSON-mode dump of the model: amounts as decimal strings, timestamps
as ISO-8601 UTC strings, enums as their values.
"""

import re
from collections.abc import Iterable, Mapping
from datetime import UTC, datetime
from typing import Any

import structlog
from neo4j.exceptions import ConstraintError
from pydantic import ValidationError as PydanticValidationError
from pydantic_core import to_jsonable_python

from riddlebridge.database.client import Neo4jClient
from riddlebridge.errors import ProofAlreadyUsedError
from riddlebridge.models import BridgeStatus, BridgeTransaction, TransactionFilter
from riddlebridge.repositories.transaction_store import BridgeTransactionStore

logger = structlog.get_logger(__name__)

VALID_IDENTIFIER_PATTERN = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")


def validate_identifier(name: str) -> str:
    """Reject property names that are not plain Cypher identifiers."""
    if name not in BridgeTransaction.model_fields or not VALID_IDENTIFIER_PATTERN.match(name):
        raise ValueError(f"Invalid transaction field: {name!r}")
    return name


def _utc_iso(value: datetime) -> str:
    # Same text form as stored timestamps, so string comparison orders them
    return to_jsonable_python(value.astimezone(UTC))


class Neo4jBridgeTransactionStore(BridgeTransactionStore):
    """Bridge transaction store on Neo4j."""

    node_label = "BridgeTransaction"

    def __init__(self, client: Neo4jClient):
        self.client = client

    def _to_model(self, record: dict[str, Any] | None) -> BridgeTransaction | None:
        if not record:
            return None
        try:
            return BridgeTransaction.model_validate(record)
        except PydanticValidationError as e:
            logger.error(
                "bridge_transaction_decode_failed",
                error=str(e),
                transaction_id=record.get("id"),
            )
            raise

    async def insert(self, txn: BridgeTransaction) -> BridgeTransaction:
        query = """
        CREATE (t:BridgeTransaction)
        SET t = $props
        RETURN t {.*} AS entity
        """
        props = txn.model_dump(mode="json", exclude_none=True)
        try:
            result = await self.client.execute_single(query, {"props": props}, write=True)
        except ConstraintError as e:
            raise ValueError(f"Transaction {txn.id} violates a uniqueness constraint: {e}") from e

        created = self._to_model(result["entity"] if result else None)
        if created is None:
            raise RuntimeError(f"Failed to create bridge transaction {txn.id}")
        logger.info("bridge_transaction_created", transaction_id=created.id)
        return created

    async def get(self, transaction_id: str) -> BridgeTransaction | None:
        query = """
        MATCH (t:BridgeTransaction {id: $id})
        RETURN t {.*} AS entity
        """
        result = await self.client.execute_single(query, {"id": transaction_id})
        return self._to_model(result["entity"] if result else None)

    async def list(self, criteria: TransactionFilter) -> list[BridgeTransaction]:
        conditions: list[str] = []
        params: dict[str, Any] = {"skip": criteria.offset, "limit": criteria.limit}

        if criteria.owner_id is not None:
            conditions.append("t.owner_id = $owner_id")
            params["owner_id"] = criteria.owner_id
        if criteria.statuses:
            conditions.append("t.status IN $statuses")
            params["statuses"] = [s.value for s in criteria.statuses]
        if criteria.source_token is not None:
            conditions.append("t.source_token = $source_token")
            params["source_token"] = criteria.source_token.value
        if criteria.destination_token is not None:
            conditions.append("t.destination_token = $destination_token")
            params["destination_token"] = criteria.destination_token.value
        if criteria.created_before is not None:
            conditions.append("t.created_at < $created_before")
            params["created_before"] = _utc_iso(criteria.created_before)
        if criteria.updated_before is not None:
            conditions.append("t.updated_at < $updated_before")
            params["updated_before"] = _utc_iso(criteria.updated_before)

        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        query = f"""
        MATCH (t:BridgeTransaction)
        {where}
        RETURN t {{.*}} AS entity
        ORDER BY t.created_at DESC
        SKIP $skip
        LIMIT $limit
        """
        results = await self.client.execute(query, params)
        return [txn for r in results if (txn := self._to_model(r.get("entity"))) is not None]

    async def find_by_inbound_tx_hash(self, tx_hash: str) -> BridgeTransaction | None:
        query = """
        MATCH (t:BridgeTransaction {inbound_tx_hash: $tx_hash})
        RETURN t {.*} AS entity
        LIMIT 1
        """
        result = await self.client.execute_single(query, {"tx_hash": tx_hash})
        return self._to_model(result["entity"] if result else None)

    async def transition(
        self,
        transaction_id: str,
        from_statuses: Iterable[BridgeStatus],
        to_status: BridgeStatus,
        *,
        unset_fields: Iterable[str] = (),
        match_fields: Mapping[str, Any] | None = None,
        updates: Mapping[str, Any] | None = None,
    ) -> BridgeTransaction | None:
        # Writing _lock first takes the node's write lock, so the status
        # check below sees the committed value of any concurrent transition.
        guards = "".join(f" AND t.{validate_identifier(name)} IS NULL" for name in unset_fields)
        expected: dict[str, Any] = {}
        for name, value in (match_fields or {}).items():
            key = validate_identifier(name)
            expected[key] = _utc_iso(value) if isinstance(value, datetime) else value
            guards += f" AND t.{key} = $expected.{key}"
        changes = {validate_identifier(k): v for k, v in (updates or {}).items()}
        changes["updated_at"] = datetime.now(UTC)

        query = f"""
        MATCH (t:BridgeTransaction {{id: $id}})
        SET t._lock = true
        WITH t
        REMOVE t._lock
        WITH t
        WHERE t.status IN $from_statuses{guards}
        SET t += $updates, t.status = $to_status
        RETURN t {{.*}} AS entity
        """
        params = {
            "id": transaction_id,
            "from_statuses": [s.value for s in from_statuses],
            "to_status": to_status.value,
            "updates": to_jsonable_python(changes),
            "expected": to_jsonable_python(expected),
        }
        try:
            result = await self.client.execute_single(query, params, write=True)
        except ConstraintError as e:
            raise ProofAlreadyUsedError(
                f"Inbound transaction {changes.get('inbound_tx_hash')} already backs another bridge transaction",
                transaction_id=transaction_id,
            ) from e

        updated = self._to_model(result["entity"] if result else None)
        if updated is not None:
            logger.debug(
                "transaction_transitioned",
                transaction_id=transaction_id,
                to_status=to_status.value,
            )
        return updated
