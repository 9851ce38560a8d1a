"""
Step3: Bridge Distributor

Pays the quoted output from the destination bank wallet. The claim into
``executing`` is a compare-and-set in the store, so of two concurrent
calls only one ever reaches the chain. The signed hash is recorded before
broadcast; a payout that may have reached the network keeps that hash so
restart can reconcile it instead of paying twice.
"""

import asyncio
from collections.abc import Iterable, Mapping
from datetime import UTC, datetime
from typing import Any

import structlog

from riddlebridge.chains import ChainAdapterError, ChainManager
from riddlebridge.errors import (
    AlreadyDistributedError,
    DistributionError,
    DistributionInProgressError,
    InvalidStateError,
)
from riddlebridge.models import BridgeStatus, BridgeTransaction, FailureStage, format_amount
from riddlebridge.monitoring import log_duration
from riddlebridge.repositories import BridgeTransactionStore

logger = structlog.get_logger(__name__)

INTERRUPTED_MESSAGE = "distribution interrupted"


def raise_for_distribution_state(txn: BridgeTransaction) -> None:
    """Raise the error matching why ``txn`` cannot be claimed for distribution."""
    if txn.outbound_tx_hash or txn.status == BridgeStatus.COMPLETED:
        raise AlreadyDistributedError(
            f"Transaction {txn.id} was already distributed in {txn.outbound_tx_hash}",
            transaction_id=txn.id,
        )
    if txn.status == BridgeStatus.EXECUTING:
        raise DistributionInProgressError(
            f"Transaction {txn.id} is already being distributed",
            transaction_id=txn.id,
        )
    raise InvalidStateError(
        f"Transaction {txn.id} is {txn.status.value} and cannot be distributed",
        transaction_id=txn.id,
    )


class BridgeDistributor:
    def __init__(self, store: BridgeTransactionStore, chains: ChainManager):
        self.store = store
        self.chains = chains

    async def execute_distribution(
        self, transaction_id: str, owner_id: str | None = None
    ) -> BridgeTransaction:
        """
        Distribute a verified transaction.

        Raises:
            TransactionNotFound: Unknown id, or not the caller's
            AlreadyDistributedError: Outbound payment already made
            DistributionInProgressError: Another caller is distributing it
            InvalidStateError: Not verified
            DistributionError: The payout failed; the transaction is failed
                and eligible for restart
        """
        txn = await self.store.get_for_owner(transaction_id, owner_id)
        if txn.status != BridgeStatus.VERIFIED or txn.outbound_tx_hash:
            raise_for_distribution_state(txn)
        return await self.run_distribution(txn, (BridgeStatus.VERIFIED,))

    async def run_distribution(
        self,
        txn: BridgeTransaction,
        from_statuses: Iterable[BridgeStatus],
        updates: Mapping[str, Any] | None = None,
    ) -> BridgeTransaction:
        """Claim ``txn`` from ``from_statuses`` and send the payout."""
        claimed = await self.store.transition(
            txn.id,
            from_statuses,
            BridgeStatus.EXECUTING,
            unset_fields=("outbound_tx_hash",),
            updates={
                "error_message": None,
                "failure_stage": None,
                "distribution_attempts": txn.distribution_attempts + 1,
                **(updates or {}),
            },
        )
        if claimed is None:
            current = await self.store.get(txn.id)
            raise_for_distribution_state(current or txn)

        # Every later write is fenced to this claim; a sweep plus restart that
        # re-claimed the record leaves this attempt unable to broadcast or record.
        fence = {"distribution_attempts": claimed.distribution_attempts}
        adapter = self.chains.get_adapter(claimed.destination_chain)
        bank_wallet = self.chains.bank_wallet_for(claimed.destination_chain)
        log = logger.bind(transaction_id=claimed.id, chain=claimed.destination_chain.value)
        log.info(
            "distribution_started",
            amount=format_amount(claimed.amount_out),
            token=claimed.destination_token.value,
            attempt=claimed.distribution_attempts,
        )

        async def record_submitted(tx_hash: str) -> None:
            recorded = await self.store.transition(
                claimed.id,
                (BridgeStatus.EXECUTING,),
                BridgeStatus.EXECUTING,
                unset_fields=("outbound_tx_hash",),
                match_fields=fence,
                updates={"submitted_outbound_tx_hash": tx_hash},
            )
            if recorded is None:
                raise InvalidStateError(
                    f"Transaction {claimed.id} lost its distribution claim before broadcast",
                    transaction_id=claimed.id,
                )

        try:
            with log_duration(log, "payout_send"):
                sent = await adapter.send_payment(
                    bank_wallet,
                    claimed.destination_address,
                    claimed.amount_out,
                    claimed.destination_token,
                    memo=claimed.id,
                    on_signed=record_submitted,
                )
        except asyncio.CancelledError:
            await asyncio.shield(
                self._fail(claimed, INTERRUPTED_MESSAGE, keep_submitted=True, fence=fence)
            )
            raise
        except ChainAdapterError as e:
            await self._fail(claimed, str(e), keep_submitted=e.ambiguous, fence=fence)
            raise DistributionError(
                f"Distribution failed: {e}", transaction_id=claimed.id
            ) from e

        return await self.record_completion(claimed, sent.tx_hash, match_fields=fence)

    async def record_completion(
        self,
        txn: BridgeTransaction,
        tx_hash: str,
        from_statuses: Iterable[BridgeStatus] = (BridgeStatus.EXECUTING, BridgeStatus.FAILED),
        match_fields: Mapping[str, Any] | None = None,
    ) -> BridgeTransaction:
        """Mark ``txn`` completed with outbound payment ``tx_hash``."""
        completed = await self.store.transition(
            txn.id,
            from_statuses,
            BridgeStatus.COMPLETED,
            unset_fields=("outbound_tx_hash",),
            match_fields=match_fields,
            updates={
                "outbound_tx_hash": tx_hash,
                "submitted_outbound_tx_hash": tx_hash,
                "error_message": None,
                "failure_stage": None,
                "completed_at": datetime.now(UTC),
            },
        )
        if completed is None:
            # Final on chain, but the record moved on in the meantime
            logger.critical(
                "distribution_completion_not_recorded",
                transaction_id=txn.id,
                tx_hash=tx_hash,
            )
            current = await self.store.get(txn.id)
            raise_for_distribution_state(current or txn)

        logger.info(
            "distribution_completed",
            transaction_id=txn.id,
            tx_hash=tx_hash,
            amount=format_amount(completed.amount_out),
            token=completed.destination_token.value,
        )
        return completed

    async def _fail(
        self,
        txn: BridgeTransaction,
        message: str,
        keep_submitted: bool,
        fence: Mapping[str, Any],
    ) -> None:
        updates: dict[str, Any] = {
            "error_message": message,
            "failure_stage": FailureStage.DISTRIBUTION,
        }
        if not keep_submitted:
            updates["submitted_outbound_tx_hash"] = None
        failed = await self.store.transition(
            txn.id,
            (BridgeStatus.EXECUTING,),
            BridgeStatus.FAILED,
            unset_fields=("outbound_tx_hash",),
            match_fields=fence,
            updates=updates,
        )
        if failed is None:
            logger.warning(
                "distribution_failure_not_recorded", transaction_id=txn.id, error=message
            )
            return
        logger.warning(
            "distribution_failed",
            transaction_id=txn.id,
            error=message,
            ambiguous=keep_submitted,
        )
