"""
Transaction Query Service

Read-only views of bridge transactions: history listing, explorer links
and receipts. Explorer URLs always come from the chain adapter.
"""

import hashlib
import json
from datetime import UTC, datetime
from typing import Any

from riddlebridge.chains import ChainManager
from riddlebridge.errors import InvalidStateError
from riddlebridge.models import (
    BridgeReceipt,
    BridgeTransaction,
    ExplorerLinkKind,
    TransactionFilter,
    format_amount,
)
from riddlebridge.repositories import BridgeTransactionStore


def canonical_json(document: dict[str, Any]) -> str:
    return json.dumps(document, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def receipt_digest(receipt: BridgeReceipt) -> str:
    """sha256 of the receipt's canonical JSON, without the digest and issue time."""
    document = receipt.model_dump(mode="json", exclude={"digest", "issued_at"})
    return "sha256:" + hashlib.sha256(canonical_json(document).encode("utf-8")).hexdigest()


class TransactionQueryService:
    def __init__(self, store: BridgeTransactionStore, chains: ChainManager):
        self.store = store
        self.chains = chains

    async def list_transactions(self, criteria: TransactionFilter) -> list[BridgeTransaction]:
        return await self.store.list(criteria)

    async def get_transaction(
        self, transaction_id: str, owner_id: str | None = None
    ) -> BridgeTransaction:
        return await self.store.get_for_owner(transaction_id, owner_id)

    def explorer_url(self, txn: BridgeTransaction, kind: ExplorerLinkKind) -> str | None:
        """Explorer URL of the inbound or outbound payment, if it exists."""
        if kind == ExplorerLinkKind.INBOUND:
            chain, tx_hash = txn.source_chain, txn.inbound_tx_hash
        else:
            chain, tx_hash = txn.destination_chain, txn.outbound_tx_hash
        if not tx_hash:
            return None
        return self.chains.get_adapter(chain).explorer_url_for(tx_hash)

    async def explorer_link(
        self,
        transaction_id: str,
        kind: ExplorerLinkKind,
        owner_id: str | None = None,
    ) -> str | None:
        txn = await self.store.get_for_owner(transaction_id, owner_id)
        return self.explorer_url(txn, kind)

    async def get_receipt(self, transaction_id: str, owner_id: str | None = None) -> BridgeReceipt:
        """
        Receipt of a completed or failed transaction.

        Raises:
            TransactionNotFound: Unknown id, or not the caller's
            InvalidStateError: The transaction is still in progress
        """
        txn = await self.store.get_for_owner(transaction_id, owner_id)
        if not txn.is_terminal:
            raise InvalidStateError(
                f"Transaction {txn.id} is {txn.status.value}; receipts are issued once it completes or fails",
                transaction_id=txn.id,
            )

        receipt = BridgeReceipt(
            transaction_id=txn.id,
            status=txn.status,
            route=txn.route.label,
            source_chain=txn.source_chain,
            source_token=txn.source_token,
            destination_chain=txn.destination_chain,
            destination_token=txn.destination_token,
            source_address=txn.source_address,
            destination_address=txn.destination_address,
            amount_in=format_amount(txn.amount_in),
            fee_amount=format_amount(txn.fee_amount),
            exchange_rate=format_amount(txn.exchange_rate),
            amount_out=format_amount(txn.amount_out),
            usd_value_at_creation=format_amount(txn.usd_value_at_creation),
            inbound_tx_hash=txn.inbound_tx_hash,
            outbound_tx_hash=txn.outbound_tx_hash,
            inbound_explorer_url=self.explorer_url(txn, ExplorerLinkKind.INBOUND),
            outbound_explorer_url=self.explorer_url(txn, ExplorerLinkKind.OUTBOUND),
            error_message=txn.error_message,
            created_at=txn.created_at,
            completed_at=txn.completed_at,
            issued_at=datetime.now(UTC),
        )
        return receipt.model_copy(update={"digest": receipt_digest(receipt)})
