"""
Bridge Transaction Store

Persistence contract for bridge transactions. Status changes go through
``transition``, an atomic compare-and-set: it applies only when the stored
status is one of ``from_statuses``, every field in ``unset_fields`` is
still null and every field in ``match_fields`` still holds its value.
The loser of a race gets None instead of overwriting the winner, which
is what keeps concurrent Step2/Step3 calls from paying twice.
"""

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from datetime import UTC, datetime
from typing import Any

import structlog

from riddlebridge.errors import ProofAlreadyUsedError, TransactionNotFound
from riddlebridge.models import BridgeStatus, BridgeTransaction, TransactionFilter

logger = structlog.get_logger(__name__)


class BridgeTransactionStore(ABC):
    """Abstract bridge transaction repository."""

    @abstractmethod
    async def insert(self, txn: BridgeTransaction) -> BridgeTransaction:
        """Persist a new transaction."""
        pass

    @abstractmethod
    async def get(self, transaction_id: str) -> BridgeTransaction | None:
        pass

    @abstractmethod
    async def list(self, criteria: TransactionFilter) -> list[BridgeTransaction]:
        """Transactions matching the filter, newest first."""
        pass

    @abstractmethod
    async def find_by_inbound_tx_hash(self, tx_hash: str) -> BridgeTransaction | None:
        pass

    @abstractmethod
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
        """
        Atomically move a transaction to ``to_status`` and apply ``updates``.

        Returns the updated transaction, or None when the stored status is
        not in ``from_statuses``, a field in ``unset_fields`` is set, a field
        in ``match_fields`` holds another value, or the transaction does not
        exist. ``match_fields`` fences a writer to the claim it made.

        Raises:
            ProofAlreadyUsedError: ``updates`` sets an inbound_tx_hash that
                another transaction already holds
        """
        pass

    async def get_for_owner(
        self, transaction_id: str, owner_id: str | None = None
    ) -> BridgeTransaction:
        """
        Load a transaction visible to ``owner_id`` (None skips the check).

        Raises:
            TransactionNotFound: Missing, or owned by someone else
        """
        txn = await self.get(transaction_id)
        if txn is None or (owner_id is not None and txn.owner_id != owner_id):
            raise TransactionNotFound(
                f"Bridge transaction {transaction_id} not found", transaction_id=transaction_id
            )
        return txn

    async def close(self) -> None:
        pass


class InMemoryBridgeTransactionStore(BridgeTransactionStore):
    """
    Dictionary-backed store for tests and single-process development.

    A single asyncio.Lock serializes writes; records are copied in and out
    so callers never share mutable state with the store.
    """

    def __init__(self) -> None:
        self._records: dict[str, BridgeTransaction] = {}
        self._lock = asyncio.Lock()

    async def insert(self, txn: BridgeTransaction) -> BridgeTransaction:
        async with self._lock:
            if txn.id in self._records:
                raise ValueError(f"Transaction {txn.id} already exists")
            self._records[txn.id] = txn.model_copy(deep=True)
        return txn.model_copy(deep=True)

    async def get(self, transaction_id: str) -> BridgeTransaction | None:
        txn = self._records.get(transaction_id)
        return txn.model_copy(deep=True) if txn else None

    async def list(self, criteria: TransactionFilter) -> list[BridgeTransaction]:
        matches = [txn for txn in self._records.values() if _matches(txn, criteria)]
        matches.sort(key=lambda txn: txn.created_at, reverse=True)
        page = matches[criteria.offset : criteria.offset + criteria.limit]
        return [txn.model_copy(deep=True) for txn in page]

    async def find_by_inbound_tx_hash(self, tx_hash: str) -> BridgeTransaction | None:
        for txn in self._records.values():
            if txn.inbound_tx_hash == tx_hash:
                return txn.model_copy(deep=True)
        return None

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
        changes = dict(updates or {})
        async with self._lock:
            current = self._records.get(transaction_id)
            if current is None or current.status not in set(from_statuses):
                return None
            if any(getattr(current, name) is not None for name in unset_fields):
                return None
            if any(getattr(current, k) != v for k, v in (match_fields or {}).items()):
                return None

            inbound = changes.get("inbound_tx_hash")
            if inbound is not None:
                for other in self._records.values():
                    if other.id != transaction_id and other.inbound_tx_hash == inbound:
                        raise ProofAlreadyUsedError(
                            f"Inbound transaction {inbound} already backs another bridge transaction",
                            transaction_id=transaction_id,
                        )

            changes["status"] = to_status
            changes["updated_at"] = datetime.now(UTC)
            updated = current.model_copy(update=changes, deep=True)
            self._records[transaction_id] = updated

        logger.debug(
            "transaction_transitioned",
            transaction_id=transaction_id,
            from_status=current.status.value,
            to_status=to_status.value,
        )
        return updated.model_copy(deep=True)


def _matches(txn: BridgeTransaction, criteria: TransactionFilter) -> bool:
    if criteria.owner_id is not None and txn.owner_id != criteria.owner_id:
        return False
    if criteria.statuses and txn.status not in criteria.statuses:
        return False
    if criteria.source_token is not None and txn.source_token != criteria.source_token:
        return False
    if criteria.destination_token is not None and txn.destination_token != criteria.destination_token:
        return False
    if criteria.created_before is not None and txn.created_at >= criteria.created_before:
        return False
    if criteria.updated_before is not None and txn.updated_at >= criteria.updated_before:
        return False
    return True
