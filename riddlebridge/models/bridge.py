r"""
Bridge Domain Models

Chains, tokens, the static supported-pairs table and the BridgeTransaction
record with its status lifecycle:

    pending -> verifying -> verified -> executing -> completed
         \          \                        \
          +----------+----> failed <----------+

failed -> verifying is allowed only for verification failures (proof
resubmission) and failed -> executing only for distribution failures
(restart), and never once an outbound hash is recorded.
"""

from datetime import UTC, datetime
from decimal import ROUND_DOWN, Decimal
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


class Chain(str, Enum):
    """Supported blockchain networks."""

    XRPL = "xrpl"
    ETHEREUM = "ethereum"
    POLYGON = "polygon"
    SOLANA = "solana"
    BITCOIN = "bitcoin"


class Token(str, Enum):
    """Supported bridge tokens."""

    XRP = "XRP"
    RDL = "RDL"
    ETH = "ETH"
    MATIC = "MATIC"
    SOL = "SOL"
    SRDL = "SRDL"
    BTC = "BTC"


class TokenSpec(BaseModel):
    """Static metadata of a bridge token."""

    model_config = ConfigDict(frozen=True)

    token: Token
    chain: Chain
    decimals: int
    native: bool = True
    coingecko_id: str | None = None


TOKEN_SPECS: dict[Token, TokenSpec] = {
    Token.XRP: TokenSpec(token=Token.XRP, chain=Chain.XRPL, decimals=6, coingecko_id="ripple"),
    Token.RDL: TokenSpec(token=Token.RDL, chain=Chain.XRPL, decimals=15, native=False),
    Token.ETH: TokenSpec(token=Token.ETH, chain=Chain.ETHEREUM, decimals=18, coingecko_id="ethereum"),
    Token.MATIC: TokenSpec(
        token=Token.MATIC, chain=Chain.POLYGON, decimals=18, coingecko_id="matic-network"
    ),
    Token.SOL: TokenSpec(token=Token.SOL, chain=Chain.SOLANA, decimals=9, coingecko_id="solana"),
    Token.SRDL: TokenSpec(token=Token.SRDL, chain=Chain.SOLANA, decimals=6, native=False),
    Token.BTC: TokenSpec(token=Token.BTC, chain=Chain.BITCOIN, decimals=8, coingecko_id="bitcoin"),
}

SUPPORTED_PAIRS: dict[Token, frozenset[Token]] = {
    Token.XRP: frozenset({Token.RDL, Token.SRDL, Token.ETH, Token.SOL, Token.BTC}),
    Token.ETH: frozenset({Token.RDL, Token.SRDL, Token.XRP}),
    Token.MATIC: frozenset({Token.RDL, Token.XRP}),
    Token.SOL: frozenset({Token.RDL, Token.SRDL, Token.XRP}),
    Token.BTC: frozenset({Token.RDL, Token.XRP}),
    Token.RDL: frozenset({Token.XRP, Token.SRDL}),
    Token.SRDL: frozenset({Token.RDL, Token.SOL}),
}

# Flat bridge fee, charged on the input amount
BRIDGE_FEE_RATE = Decimal("0.01")

# Outputs below 546 sats are non-standard and will not relay
BTC_DUST_LIMIT = Decimal("0.00000546")


def token_spec(token: Token) -> TokenSpec:
    return TOKEN_SPECS[token]


def min_unit(token: Token) -> Decimal:
    """Smallest representable amount of a token on its chain."""
    return Decimal(1).scaleb(-TOKEN_SPECS[token].decimals)


def dust_threshold(token: Token) -> Decimal:
    """Smallest amount of a token that may be sent or paid out."""
    if token == Token.BTC:
        return BTC_DUST_LIMIT
    return min_unit(token)


def round_down(amount: Decimal, token: Token) -> Decimal:
    """Truncate an amount to the token's native precision."""
    return amount.quantize(min_unit(token), rounding=ROUND_DOWN)


def fits_precision(amount: Decimal, token: Token) -> bool:
    """True if the amount has no digits below the token's minimum unit."""
    exponent = amount.normalize().as_tuple().exponent
    return isinstance(exponent, int) and -exponent <= TOKEN_SPECS[token].decimals


def to_base_units(amount: Decimal, token: Token) -> int:
    """Convert to integer base units (drops, wei, lamports, satoshis)."""
    return int(amount.scaleb(TOKEN_SPECS[token].decimals))


def from_base_units(value: int | str, token: Token) -> Decimal:
    return Decimal(value).scaleb(-TOKEN_SPECS[token].decimals)


def format_amount(amount: Decimal | None) -> str | None:
    """Plain decimal notation without exponent or trailing zeros."""
    if amount is None:
        return None
    text = format(amount.normalize(), "f")
    return text if text != "-0" else "0"


class BridgeStatus(str, Enum):
    """Lifecycle status of a bridge transaction."""

    PENDING = "pending"
    VERIFYING = "verifying"
    VERIFIED = "verified"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"


class FailureStage(str, Enum):
    """Pipeline step a failed transaction failed in."""

    VERIFICATION = "verification"
    DISTRIBUTION = "distribution"


class ExplorerLinkKind(str, Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class BridgeRoute(BaseModel):
    """A (source token/chain, destination token/chain) leg pair."""

    model_config = ConfigDict(frozen=True)

    source_token: Token
    source_chain: Chain
    destination_token: Token
    destination_chain: Chain

    @classmethod
    def for_tokens(cls, source_token: Token, destination_token: Token) -> "BridgeRoute":
        return cls(
            source_token=source_token,
            source_chain=TOKEN_SPECS[source_token].chain,
            destination_token=destination_token,
            destination_chain=TOKEN_SPECS[destination_token].chain,
        )

    @property
    def label(self) -> str:
        return f"{self.source_token.value}->{self.destination_token.value}"


class Quote(BaseModel):
    """Fee, rate and output for a route and input amount."""

    model_config = ConfigDict(frozen=True)

    route: BridgeRoute
    amount_in: Decimal
    fee_amount: Decimal
    exchange_rate: Decimal
    amount_out: Decimal


class BridgeTransaction(BaseModel):
    """The persisted record of one bridge request."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    owner_id: str | None = None

    # Route
    source_chain: Chain
    source_token: Token
    destination_chain: Chain
    destination_token: Token

    # Parties
    source_address: str | None = None
    destination_address: str

    # Amounts (fixed at creation)
    amount_in: Decimal
    fee_amount: Decimal
    exchange_rate: Decimal
    amount_out: Decimal

    # Routing
    bank_deposit_address: str
    expected_memo: str | None = None

    # Proof
    inbound_tx_hash: str | None = None
    outbound_tx_hash: str | None = None
    submitted_outbound_tx_hash: str | None = None

    # State
    status: BridgeStatus = BridgeStatus.PENDING
    failure_stage: FailureStage | None = None
    error_message: str | None = None
    distribution_attempts: int = 0
    restart_count: int = 0

    # Diagnostics
    usd_value_at_creation: Decimal | None = None

    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    completed_at: datetime | None = None

    @property
    def route(self) -> BridgeRoute:
        return BridgeRoute(
            source_token=self.source_token,
            source_chain=self.source_chain,
            destination_token=self.destination_token,
            destination_chain=self.destination_chain,
        )

    @property
    def is_terminal(self) -> bool:
        return self.status in (BridgeStatus.COMPLETED, BridgeStatus.FAILED)


class TransactionFilter(BaseModel):
    """Criteria for listing bridge transactions, newest first."""

    owner_id: str | None = None
    statuses: list[BridgeStatus] | None = None
    source_token: Token | None = None
    destination_token: Token | None = None
    created_before: datetime | None = None
    updated_before: datetime | None = None
    limit: int = Field(default=50, ge=1, le=500)
    offset: int = Field(default=0, ge=0)


class DepositInstructions(BaseModel):
    """What the user must pay, and where, for a pending transaction."""

    transaction_id: str
    chain: Chain
    token: Token
    bank_wallet_address: str
    amount: Decimal
    expected_memo: str | None
    estimated_output: Decimal
    bridge_fee: Decimal
    instructions: str

    @classmethod
    def for_transaction(cls, txn: BridgeTransaction) -> "DepositInstructions":
        text = (
            f"Send exactly {format_amount(txn.amount_in)} {txn.source_token.value} "
            f"to {txn.bank_deposit_address} on {txn.source_chain.value}"
        )
        if txn.expected_memo:
            text += f" with memo {txn.expected_memo}"
        text += (
            f", then submit the transaction hash. You will receive "
            f"{format_amount(txn.amount_out)} {txn.destination_token.value} "
            f"at {txn.destination_address}."
        )
        return cls(
            transaction_id=txn.id,
            chain=txn.source_chain,
            token=txn.source_token,
            bank_wallet_address=txn.bank_deposit_address,
            amount=txn.amount_in,
            expected_memo=txn.expected_memo,
            estimated_output=txn.amount_out,
            bridge_fee=txn.fee_amount,
            instructions=text,
        )


class BridgeReceipt(BaseModel):
    """Downloadable receipt for a terminal transaction."""

    receipt_version: str = "1"
    transaction_id: str
    status: BridgeStatus
    route: str
    source_chain: Chain
    source_token: Token
    destination_chain: Chain
    destination_token: Token
    source_address: str | None
    destination_address: str
    amount_in: str
    fee_amount: str
    exchange_rate: str
    amount_out: str
    usd_value_at_creation: str | None
    inbound_tx_hash: str | None
    outbound_tx_hash: str | None
    inbound_explorer_url: str | None
    outbound_explorer_url: str | None
    error_message: str | None
    created_at: datetime
    completed_at: datetime | None
    issued_at: datetime
    digest: str = ""
