"""
Step1: Bridge Initiator

Creates a pending bridge transaction and returns the deposit instructions.
No funds move here; the only side effect is one insert.
"""

import secrets
from decimal import ROUND_HALF_UP, Decimal

import structlog

from riddlebridge.chains import ChainManager
from riddlebridge.errors import PriceUnavailableError, ValidationError
from riddlebridge.models import (
    BridgeTransaction,
    Chain,
    DepositInstructions,
    Token,
    dust_threshold,
    format_amount,
)
from riddlebridge.repositories import BridgeTransactionStore
from riddlebridge.services.pricing import PriceOracle
from riddlebridge.services.quote import QuoteCalculator

logger = structlog.get_logger(__name__)

CENT = Decimal("0.01")


def allocate_memo() -> str:
    """128-bit random correlation tag for memo-capable chains."""
    return secrets.token_hex(16)


class BridgeInitiator:
    def __init__(
        self,
        store: BridgeTransactionStore,
        chains: ChainManager,
        calculator: QuoteCalculator,
        oracle: PriceOracle,
    ):
        self.store = store
        self.chains = chains
        self.calculator = calculator
        self.oracle = oracle

    async def _usd_snapshot(self, token: Token, amount: Decimal) -> Decimal | None:
        try:
            price = await self.oracle.get_usd_price(token)
        except PriceUnavailableError:
            logger.warning("usd_snapshot_unavailable", token=token.value)
            return None
        return (amount * price).quantize(CENT, rounding=ROUND_HALF_UP)

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
        """
        Quote the route and persist a pending transaction.

        Raises:
            InvalidRouteError: Unsupported route
            ValidationError: Bad amount or address
            PriceUnavailableError: No exchange rate (nothing is persisted)
        """
        quote = await self.calculator.quote(
            source_token, destination_token, amount_in, source_chain, destination_chain
        )
        route = quote.route

        destination_adapter = self.chains.get_adapter(route.destination_chain)
        if not destination_adapter.validate_address(destination_address):
            raise ValidationError(
                f"{destination_address} is not a valid {route.destination_chain.value} address"
            )
        source_adapter = self.chains.get_adapter(route.source_chain)
        if source_address and not source_adapter.validate_address(source_address):
            raise ValidationError(
                f"{source_address} is not a valid {route.source_chain.value} address"
            )
        payout_floor = dust_threshold(route.destination_token)
        if quote.amount_out < payout_floor:
            raise ValidationError(
                f"Amount is too small: the payout of {format_amount(quote.amount_out)} "
                f"{destination_token.value} after fees is below the minimum of "
                f"{format_amount(payout_floor)}"
            )

        txn = BridgeTransaction(
            owner_id=owner_id,
            source_chain=route.source_chain,
            source_token=route.source_token,
            destination_chain=route.destination_chain,
            destination_token=route.destination_token,
            source_address=source_address or None,
            destination_address=destination_address,
            amount_in=quote.amount_in,
            fee_amount=quote.fee_amount,
            exchange_rate=quote.exchange_rate,
            amount_out=quote.amount_out,
            bank_deposit_address=self.chains.bank_wallet_for(route.source_chain),
            expected_memo=allocate_memo() if source_adapter.supports_memo else None,
            usd_value_at_creation=await self._usd_snapshot(source_token, amount_in),
        )
        txn = await self.store.insert(txn)

        logger.info(
            "bridge_created",
            transaction_id=txn.id,
            route=route.label,
            amount_in=format_amount(txn.amount_in),
            amount_out=format_amount(txn.amount_out),
            owner_id=owner_id,
        )
        return txn, DepositInstructions.for_transaction(txn)
