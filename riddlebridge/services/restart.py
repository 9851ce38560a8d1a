"""
Retry/Restart Controller

Re-drives Step3 for transactions that failed during distribution. A payout
hash recorded by an earlier attempt is reconciled against the chain first:
a confirmed payout completes the transaction without sending again.
"""

from datetime import UTC, datetime, timedelta

import structlog

from riddlebridge.chains import ChainAdapterError, ChainManager, PaymentStatus
from riddlebridge.errors import (
    AlreadyDistributedError,
    InvalidStateError,
    RestartError,
    RetryLimitExceeded,
)
from riddlebridge.models import BridgeStatus, BridgeTransaction, FailureStage
from riddlebridge.repositories import BridgeTransactionStore
from riddlebridge.services.distributor import BridgeDistributor

logger = structlog.get_logger(__name__)


class RestartController:
    """
    Restarts failed distributions, at most ``max_restarts`` times each.

    ``reconcile_grace_seconds`` is how long a recorded payout hash the chain
    has never seen is still treated as possibly in flight.
    """

    def __init__(
        self,
        store: BridgeTransactionStore,
        chains: ChainManager,
        distributor: BridgeDistributor,
        max_restarts: int = 3,
        reconcile_grace_seconds: int = 300,
    ):
        self.store = store
        self.chains = chains
        self.distributor = distributor
        self.max_restarts = max_restarts
        self.reconcile_grace = timedelta(seconds=reconcile_grace_seconds)

    async def restart(self, transaction_id: str, owner_id: str | None = None) -> BridgeTransaction:
        """
        Restart distribution of a failed transaction.

        Returns the completed transaction.

        Raises:
            TransactionNotFound: Unknown id, or not the caller's
            AlreadyDistributedError: Outbound payment already made
            RestartError: Not a failed distribution
            RetryLimitExceeded: Restarts used up
            InvalidStateError: A previous payout may still settle
            DistributionError: The payout failed again
        """
        txn = await self.store.get_for_owner(transaction_id, owner_id)
        self._check_restartable(txn)

        if txn.submitted_outbound_tx_hash:
            reconciled = await self._reconcile(txn)
            if reconciled is not None:
                return reconciled

        logger.info(
            "distribution_restarted",
            transaction_id=txn.id,
            restart=txn.restart_count + 1,
            max_restarts=self.max_restarts,
        )
        return await self.distributor.run_distribution(
            txn,
            (BridgeStatus.FAILED,),
            updates={
                "restart_count": txn.restart_count + 1,
                "submitted_outbound_tx_hash": None,
            },
        )

    def _check_restartable(self, txn: BridgeTransaction) -> None:
        if txn.outbound_tx_hash:
            raise AlreadyDistributedError(
                f"Transaction {txn.id} was already distributed in {txn.outbound_tx_hash}",
                transaction_id=txn.id,
            )
        if txn.status != BridgeStatus.FAILED:
            raise RestartError(
                f"Transaction {txn.id} is {txn.status.value}; only failed distributions restart",
                transaction_id=txn.id,
            )
        if txn.failure_stage != FailureStage.DISTRIBUTION or not txn.inbound_tx_hash:
            raise RestartError(
                f"Transaction {txn.id} failed verification; submit a new proof instead",
                transaction_id=txn.id,
            )
        if txn.restart_count >= self.max_restarts:
            raise RetryLimitExceeded(
                f"Transaction {txn.id} reached the limit of {self.max_restarts} restarts",
                transaction_id=txn.id,
            )

    async def _reconcile(self, txn: BridgeTransaction) -> BridgeTransaction | None:
        """Complete ``txn`` if its recorded payout landed; None means resend."""
        tx_hash = txn.submitted_outbound_tx_hash
        adapter = self.chains.get_adapter(txn.destination_chain)
        try:
            status = await adapter.get_payment_status(tx_hash)
        except ChainAdapterError as e:
            raise InvalidStateError(
                f"Cannot reconcile previous payout {tx_hash}: {e}", transaction_id=txn.id
            ) from e

        logger.info(
            "payout_reconciled",
            transaction_id=txn.id,
            tx_hash=tx_hash,
            payment_status=status.value,
        )

        if status == PaymentStatus.CONFIRMED:
            return await self.distributor.record_completion(
                txn, tx_hash, from_statuses=(BridgeStatus.FAILED,)
            )
        if status == PaymentStatus.PENDING:
            raise InvalidStateError(
                f"Previous payout {tx_hash} is still pending; retry once it settles",
                transaction_id=txn.id,
            )
        if status == PaymentStatus.NOT_FOUND and (
            datetime.now(UTC) - txn.updated_at < self.reconcile_grace
        ):
            raise InvalidStateError(
                f"Previous payout {tx_hash} may still reach the network; retry later",
                transaction_id=txn.id,
            )
        return None
