"""
Bridge API Schemas

Closed request and response bodies of the bridge endpoints. Wire names are
camelCase; amounts travel as plain decimal strings so no precision is lost
to JSON floats.
"""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from riddlebridge.models import BridgeStatus, BridgeTransaction, FailureStage, format_amount


class WireModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
    )


# =============================================================================
# Requests
# =============================================================================


class QuoteRequest(WireModel):
    from_token: str = Field(min_length=1, max_length=16)
    to_token: str = Field(min_length=1, max_length=16)
    amount: Decimal
    from_chain: str | None = Field(default=None, max_length=32)
    to_chain: str | None = Field(default=None, max_length=32)


class Step1Request(QuoteRequest):
    from_address: str | None = Field(default=None, max_length=128)
    to_address: str = Field(min_length=1, max_length=128)


class VerifyTransactionRequest(WireModel):
    transaction_id: str = Field(min_length=1, max_length=64)
    tx_hash: str = Field(min_length=1, max_length=128)
    from_token: str | None = Field(default=None, max_length=16)
    to_token: str | None = Field(default=None, max_length=16)


class Step3Request(WireModel):
    transaction_id: str = Field(min_length=1, max_length=64)
    from_token: str | None = Field(default=None, max_length=16)
    to_token: str | None = Field(default=None, max_length=16)
    destination_address: str | None = Field(default=None, max_length=128)
    step1_hash: str | None = Field(default=None, max_length=128)


# =============================================================================
# Responses
# =============================================================================


class WireResponse(WireModel):
    success: bool = True


class QuoteResponse(WireResponse):
    from_token: str
    to_token: str
    from_chain: str
    to_chain: str
    amount: str
    bridge_fee: str
    exchange_rate: str
    estimated_output: str


class Step1Response(WireResponse):
    transaction_id: str
    status: BridgeStatus
    from_chain: str
    to_chain: str
    bank_wallet_address: str
    amount: str
    estimated_output: str
    bridge_fee: str
    expected_memo: str | None
    instructions: str


class VerifyTransactionResponse(WireResponse):
    verified: bool
    transaction_id: str
    status: BridgeStatus
    inbound_tx_hash: str | None = None
    explorer_url: str | None = None


class DistributionResponse(WireResponse):
    transaction_id: str
    status: BridgeStatus
    tx_hash: str | None
    amount: str
    token: str
    explorer_url: str | None


class TransactionView(WireModel):
    """A bridge transaction as shown to its owner."""

    id: str
    status: BridgeStatus
    source_chain: str
    source_token: str
    destination_chain: str
    destination_token: str
    source_address: str | None
    destination_address: str
    amount_in: str
    fee_amount: str
    exchange_rate: str
    amount_out: str
    bank_deposit_address: str
    expected_memo: str | None
    inbound_tx_hash: str | None
    outbound_tx_hash: str | None
    failure_stage: FailureStage | None
    error_message: str | None
    restart_count: int
    usd_value_at_creation: str | None
    inbound_explorer_url: str | None = None
    outbound_explorer_url: str | None = None
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None

    @classmethod
    def from_transaction(
        cls,
        txn: BridgeTransaction,
        inbound_explorer_url: str | None = None,
        outbound_explorer_url: str | None = None,
    ) -> "TransactionView":
        return cls(
            id=txn.id,
            status=txn.status,
            source_chain=txn.source_chain.value,
            source_token=txn.source_token.value,
            destination_chain=txn.destination_chain.value,
            destination_token=txn.destination_token.value,
            source_address=txn.source_address,
            destination_address=txn.destination_address,
            amount_in=format_amount(txn.amount_in),
            fee_amount=format_amount(txn.fee_amount),
            exchange_rate=format_amount(txn.exchange_rate),
            amount_out=format_amount(txn.amount_out),
            bank_deposit_address=txn.bank_deposit_address,
            expected_memo=txn.expected_memo,
            inbound_tx_hash=txn.inbound_tx_hash,
            outbound_tx_hash=txn.outbound_tx_hash,
            failure_stage=txn.failure_stage,
            error_message=txn.error_message,
            restart_count=txn.restart_count,
            usd_value_at_creation=format_amount(txn.usd_value_at_creation),
            inbound_explorer_url=inbound_explorer_url,
            outbound_explorer_url=outbound_explorer_url,
            created_at=txn.created_at,
            updated_at=txn.updated_at,
            completed_at=txn.completed_at,
        )


class TokenView(WireModel):
    token: str
    decimals: int
    native: bool


class ChainView(WireModel):
    chain: str
    tokens: list[TokenView]
    bank_wallet_address: str


class RouteView(WireModel):
    from_token: str
    to_token: str
    from_chain: str
    to_chain: str


class ChainsResponse(WireResponse):
    chains: list[ChainView]
    routes: list[RouteView]
    total_chains: int


class TransactionResponse(WireResponse):
    transaction: TransactionView


class TransactionListResponse(WireResponse):
    transactions: list[TransactionView]
    count: int
    limit: int
    offset: int
