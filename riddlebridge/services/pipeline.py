"""
Bridge Pipeline

Facade composing the quote calculator, the three pipeline steps, restart,
queries and maintenance over one store and one chain manager. Everything
the pipeline knows lives in the store; the facade itself only tracks
background distributions it started.
"""

import asyncio
from decimal import Decimal

import structlog

from riddlebridge.chains import ChainManager
from riddlebridge.config import Settings
from riddlebridge.errors import BridgeError, ValidationError
from riddlebridge.models import (
    BridgeReceipt,
    BridgeTransaction,
    Chain,
    DepositInstructions,
    ExplorerLinkKind,
    Quote,
    Token,
    TransactionFilter,
)
from riddlebridge.repositories import BridgeTransactionStore
from riddlebridge.services.distributor import BridgeDistributor
from riddlebridge.services.initiator import BridgeInitiator
from riddlebridge.services.maintenance import BridgeMaintenance
from riddlebridge.services.pricing import PriceOracle
from riddlebridge.services.query import TransactionQueryService
from riddlebridge.services.quote import QuoteCalculator
from riddlebridge.services.restart import RestartController
from riddlebridge.services.verifier import BridgeVerifier

logger = structlog.get_logger(__name__)


class BridgePipeline:
    def __init__(
        self,
        store: BridgeTransactionStore,
        chains: ChainManager,
        oracle: PriceOracle,
        max_restarts: int = 3,
        reconcile_grace_seconds: int = 300,
        auto_distribute: bool = False,
        pending_expiry_minutes: int = 60,
        stale_execution_minutes: int = 15,
    ):
        self.store = store
        self.chains = chains
        self.calculator = QuoteCalculator(oracle)
        self.initiator = BridgeInitiator(store, chains, self.calculator, oracle)
        self.verifier = BridgeVerifier(store, chains)
        self.distributor = BridgeDistributor(store, chains)
        self.restarter = RestartController(
            store,
            chains,
            self.distributor,
            max_restarts=max_restarts,
            reconcile_grace_seconds=reconcile_grace_seconds,
        )
        self.queries = TransactionQueryService(store, chains)
        self.maintenance = BridgeMaintenance(
            store,
            pending_expiry_minutes=pending_expiry_minutes,
            stale_execution_minutes=stale_execution_minutes,
        )
        self.auto_distribute = auto_distribute
        self._background: set[asyncio.Task[None]] = set()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        store: BridgeTransactionStore,
        chains: ChainManager,
        oracle: PriceOracle,
    ) -> "BridgePipeline":
        return cls(
            store,
            chains,
            oracle,
            max_restarts=settings.max_restarts,
            reconcile_grace_seconds=settings.reconcile_grace_seconds,
            auto_distribute=settings.bridge_auto_distribute,
            pending_expiry_minutes=settings.pending_expiry_minutes,
            stale_execution_minutes=settings.stale_execution_minutes,
        )

    # ==================== Step1 ====================

    async def quote(
        self,
        source_token: Token,
        destination_token: Token,
        amount_in: Decimal,
        source_chain: Chain | None = None,
        destination_chain: Chain | None = None,
    ) -> Quote:
        return await self.calculator.quote(
            source_token, destination_token, amount_in, source_chain, destination_chain
        )

    async def create_bridge(
        self,
        source_token: Token,
        destination_token: Token,
        amount_in: Decimal,
        destination_address: str,
        source_address: str | None = None,
        owner_id: str | None = None,
        source_chain: Chain | None = None,
        destination_chain: Chain | None = None,
    ) -> tuple[BridgeTransaction, DepositInstructions]:
        return await self.initiator.create_bridge(
            source_token,
            destination_token,
            amount_in,
            destination_address,
            source_address=source_address,
            owner_id=owner_id,
            source_chain=source_chain,
            destination_chain=destination_chain,
        )

    # ==================== Step2 ====================

    async def verify_transaction(
        self,
        transaction_id: str,
        tx_hash: str,
        owner_id: str | None = None,
        source_token: Token | None = None,
        destination_token: Token | None = None,
    ) -> BridgeTransaction:
        if source_token is not None or destination_token is not None:
            txn = await self.store.get_for_owner(transaction_id, owner_id)
            check_route(txn, source_token, destination_token)

        verified = await self.verifier.verify_transaction(transaction_id, tx_hash, owner_id)
        if self.auto_distribute:
            self._spawn_distribution(verified.id)
        return verified

    # ==================== Step3 ====================

    async def execute_distribution(
        self,
        transaction_id: str,
        owner_id: str | None = None,
        source_token: Token | None = None,
        destination_token: Token | None = None,
        destination_address: str | None = None,
        inbound_tx_hash: str | None = None,
    ) -> BridgeTransaction:
        txn = await self.store.get_for_owner(transaction_id, owner_id)
        check_route(txn, source_token, destination_token)
        if destination_address is not None and destination_address != txn.destination_address:
            raise ValidationError(
                "Destination address does not match the bridge request", transaction_id=txn.id
            )
        if inbound_tx_hash:
            adapter = self.chains.get_adapter(txn.source_chain)
            if adapter.normalize_tx_hash(inbound_tx_hash) != txn.inbound_tx_hash:
                raise ValidationError(
                    "Step1 hash does not match the verified deposit", transaction_id=txn.id
                )
        return await self.distributor.execute_distribution(transaction_id, owner_id)

    def _spawn_distribution(self, transaction_id: str) -> None:
        task = asyncio.create_task(
            self._auto_distribute(transaction_id), name=f"distribute_{transaction_id}"
        )
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _auto_distribute(self, transaction_id: str) -> None:
        try:
            await self.distributor.execute_distribution(transaction_id)
        except BridgeError as e:
            # The failure is already recorded on the transaction
            logger.warning(
                "auto_distribution_failed",
                transaction_id=transaction_id,
                code=e.code,
                error=e.message,
            )

    # ==================== Restart ====================

    async def restart(self, transaction_id: str, owner_id: str | None = None) -> BridgeTransaction:
        return await self.restarter.restart(transaction_id, owner_id)

    # ==================== Queries ====================

    async def list_transactions(self, criteria: TransactionFilter) -> list[BridgeTransaction]:
        return await self.queries.list_transactions(criteria)

    async def get_transaction(
        self, transaction_id: str, owner_id: str | None = None
    ) -> BridgeTransaction:
        return await self.queries.get_transaction(transaction_id, owner_id)

    async def get_receipt(self, transaction_id: str, owner_id: str | None = None) -> BridgeReceipt:
        return await self.queries.get_receipt(transaction_id, owner_id)

    async def explorer_link(
        self,
        transaction_id: str,
        kind: ExplorerLinkKind,
        owner_id: str | None = None,
    ) -> str | None:
        return await self.queries.explorer_link(transaction_id, kind, owner_id)

    def explorer_url(self, txn: BridgeTransaction, kind: ExplorerLinkKind) -> str | None:
        return self.queries.explorer_url(txn, kind)

    async def drain(self) -> None:
        """Wait for background distributions started by this pipeline."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def close(self) -> None:
        for task in list(self._background):
            task.cancel()
        await self.drain()


def check_route(
    txn: BridgeTransaction,
    source_token: Token | None,
    destination_token: Token | None,
) -> None:
    """Reject request tokens that disagree with the stored route."""
    if source_token is not None and source_token != txn.source_token:
        raise ValidationError(
            f"fromToken {source_token.value} does not match the bridge request",
            transaction_id=txn.id,
        )
    if destination_token is not None and destination_token != txn.destination_token:
        raise ValidationError(
            f"toToken {destination_token.value} does not match the bridge request",
            transaction_id=txn.id,
        )
