"""
Step2: Bridge Verifier

Confirms the user's claimed deposit on the source chain. A transaction
that failed verification can be re-verified with a corrected hash; one
that already has an inbound proof never can.
"""

import structlog

from riddlebridge.chains import (
    ChainAdapterError,
    ChainManager,
    PaymentMismatchError,
    PaymentTimeoutError,
)
from riddlebridge.errors import (
    InvalidStateError,
    ProofAlreadyUsedError,
    ValidationError,
    VerificationError,
    VerificationMismatch,
    VerificationTimeout,
)
from riddlebridge.models import BridgeStatus, BridgeTransaction, FailureStage
from riddlebridge.monitoring import log_duration
from riddlebridge.repositories import BridgeTransactionStore

logger = structlog.get_logger(__name__)

VERIFIABLE_STATUSES = (BridgeStatus.PENDING, BridgeStatus.VERIFYING, BridgeStatus.FAILED)


class BridgeVerifier:
    def __init__(self, store: BridgeTransactionStore, chains: ChainManager):
        self.store = store
        self.chains = chains

    async def verify_transaction(
        self,
        transaction_id: str,
        tx_hash: str,
        owner_id: str | None = None,
    ) -> BridgeTransaction:
        """
        Verify the inbound payment ``tx_hash`` for a transaction.

        Returns the transaction in status verified.

        Raises:
            TransactionNotFound: Unknown id, or not the caller's
            InvalidStateError: Not awaiting verification
            VerificationTimeout: Payment not found or not final in time
            VerificationMismatch: Payment does not match the instructions
            ProofAlreadyUsedError: Hash already backs another transaction
        """
        txn = await self.store.get_for_owner(transaction_id, owner_id)
        adapter = self.chains.get_adapter(txn.source_chain)

        tx_hash = adapter.normalize_tx_hash(tx_hash or "")
        if not tx_hash:
            raise ValidationError("Transaction hash is required", transaction_id=txn.id)
        self._check_verifiable(txn)

        other = await self.store.find_by_inbound_tx_hash(tx_hash)
        if other is not None and other.id != txn.id:
            # Checked before claiming, so the record keeps its status
            raise ProofAlreadyUsedError(
                f"Inbound transaction {tx_hash} already backs another bridge transaction",
                transaction_id=txn.id,
            )

        claimed = await self.store.transition(
            txn.id,
            VERIFIABLE_STATUSES,
            BridgeStatus.VERIFYING,
            unset_fields=("inbound_tx_hash",),
            updates={"error_message": None, "failure_stage": None},
        )
        if claimed is None:
            current = await self.store.get_for_owner(txn.id, owner_id)
            self._check_verifiable(current)
            raise InvalidStateError(
                f"Transaction {txn.id} changed state during verification",
                transaction_id=txn.id,
            )

        logger.info(
            "verification_started",
            transaction_id=txn.id,
            chain=txn.source_chain.value,
            tx_hash=tx_hash,
        )

        try:
            with log_duration(logger, "inbound_lookup", level="debug", transaction_id=txn.id):
                payment = await adapter.find_incoming_payment(
                    deposit_address=claimed.bank_deposit_address,
                    expected_memo=claimed.expected_memo,
                    amount_in=claimed.amount_in,
                    tx_hash=tx_hash,
                    expected_token=claimed.source_token,
                    expected_sender=None if adapter.supports_memo else claimed.source_address,
                )
        except PaymentTimeoutError as e:
            raise await self._fail(claimed, VerificationTimeout(str(e), transaction_id=txn.id))
        except PaymentMismatchError as e:
            raise await self._fail(claimed, VerificationMismatch(str(e), transaction_id=txn.id))
        except ChainAdapterError as e:
            raise await self._fail(claimed, VerificationError(str(e), transaction_id=txn.id))

        try:
            verified = await self.store.transition(
                txn.id,
                (BridgeStatus.VERIFYING,),
                BridgeStatus.VERIFIED,
                unset_fields=("inbound_tx_hash",),
                updates={"inbound_tx_hash": payment.tx_hash},
            )
        except ProofAlreadyUsedError as e:
            raise await self._fail(claimed, e)

        if verified is None:
            # A concurrent verify of the same transaction finished first
            current = await self.store.get_for_owner(txn.id, owner_id)
            if current.inbound_tx_hash == payment.tx_hash:
                return current
            raise InvalidStateError(
                f"Transaction {txn.id} was verified with a different proof",
                transaction_id=txn.id,
            )

        logger.info(
            "verification_succeeded",
            transaction_id=txn.id,
            tx_hash=payment.tx_hash,
            amount=str(payment.amount),
        )
        return verified

    def _check_verifiable(self, txn: BridgeTransaction) -> None:
        if txn.status == BridgeStatus.FAILED and (
            txn.failure_stage != FailureStage.VERIFICATION or txn.inbound_tx_hash
        ):
            raise InvalidStateError(
                f"Transaction {txn.id} failed during distribution; use restart",
                transaction_id=txn.id,
            )
        if txn.status not in VERIFIABLE_STATUSES or txn.inbound_tx_hash:
            raise InvalidStateError(
                f"Transaction {txn.id} is {txn.status.value} and cannot be verified",
                transaction_id=txn.id,
            )

    async def _fail(self, txn: BridgeTransaction, error: VerificationError) -> VerificationError:
        await self.store.transition(
            txn.id,
            (BridgeStatus.VERIFYING,),
            BridgeStatus.FAILED,
            unset_fields=("inbound_tx_hash",),
            updates={
                "error_message": error.message,
                "failure_stage": FailureStage.VERIFICATION,
            },
        )
        logger.warning(
            "verification_failed",
            transaction_id=txn.id,
            code=error.code,
            error=error.message,
        )
        return error
