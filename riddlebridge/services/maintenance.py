"""
Pipeline Maintenance

Periodic sweeps over the store. Both only move transactions to failed, with
the same compare-and-set the pipeline uses, so a sweep racing a live
request simply loses.
"""

from datetime import UTC, datetime, timedelta

import structlog

from riddlebridge.models import BridgeStatus, FailureStage, TransactionFilter
from riddlebridge.repositories import BridgeTransactionStore
from riddlebridge.services.distributor import INTERRUPTED_MESSAGE

logger = structlog.get_logger(__name__)

EXPIRED_MESSAGE = "deposit window expired"
SWEEP_BATCH_SIZE = 200


class BridgeMaintenance:
    def __init__(
        self,
        store: BridgeTransactionStore,
        pending_expiry_minutes: int = 60,
        stale_execution_minutes: int = 15,
    ):
        self.store = store
        self.pending_expiry = timedelta(minutes=pending_expiry_minutes)
        self.stale_execution = timedelta(minutes=stale_execution_minutes)

    async def expire_pending(self) -> int:
        """Fail pending transactions that never received a proof."""
        cutoff = datetime.now(UTC) - self.pending_expiry
        candidates = await self.store.list(
            TransactionFilter(
                statuses=[BridgeStatus.PENDING],
                created_before=cutoff,
                limit=SWEEP_BATCH_SIZE,
            )
        )
        expired = 0
        for txn in candidates:
            updated = await self.store.transition(
                txn.id,
                (BridgeStatus.PENDING,),
                BridgeStatus.FAILED,
                unset_fields=("inbound_tx_hash",),
                updates={
                    "error_message": EXPIRED_MESSAGE,
                    "failure_stage": FailureStage.VERIFICATION,
                },
            )
            if updated is not None:
                expired += 1
                logger.info("pending_transaction_expired", transaction_id=txn.id)

        if expired:
            logger.info("pending_sweep_complete", expired=expired)
        return expired

    async def interrupt_stale_executions(self) -> int:
        """
        Fail executing transactions nobody has touched for too long.

        Each one is failed only if it is unchanged since it was listed. The
        recorded payout hash is kept so restart reconciles it.
        """
        cutoff = datetime.now(UTC) - self.stale_execution
        candidates = await self.store.list(
            TransactionFilter(
                statuses=[BridgeStatus.EXECUTING],
                updated_before=cutoff,
                limit=SWEEP_BATCH_SIZE,
            )
        )
        interrupted = 0
        for txn in candidates:
            updated = await self.store.transition(
                txn.id,
                (BridgeStatus.EXECUTING,),
                BridgeStatus.FAILED,
                unset_fields=("outbound_tx_hash",),
                match_fields={"updated_at": txn.updated_at},
                updates={
                    "error_message": INTERRUPTED_MESSAGE,
                    "failure_stage": FailureStage.DISTRIBUTION,
                },
            )
            if updated is not None:
                interrupted += 1
                logger.warning(
                    "stale_distribution_interrupted",
                    transaction_id=txn.id,
                    submitted_tx_hash=txn.submitted_outbound_tx_hash,
                )
        return interrupted
