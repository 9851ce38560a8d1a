"""
RiddleBridge - Test Fixtures

Shared pytest fixtures: in-memory store, in-memory ledgers for every chain,
static prices and a wired pipeline.
"""

import os
from decimal import Decimal

import pytest

# TEST-ONLY settings; never loaded outside pytest
os.environ["APP_ENV"] = "testing"
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-at-least-32-characters-long-for-testing")

from riddlebridge.chains import ChainManager, InMemoryChainAdapter  # noqa: E402
from riddlebridge.config import Settings  # noqa: E402
from riddlebridge.models import BridgeTransaction, Chain, Token  # noqa: E402
from riddlebridge.repositories import InMemoryBridgeTransactionStore  # noqa: E402
from riddlebridge.services import (  # noqa: E402
    DEFAULT_STATIC_PRICES,
    BridgePipeline,
    StaticPriceOracle,
)

XRPL_USER = "rHb9CJAWyB4rj91VRWn96DkukG4bwdtyTh"
XRPL_OTHER = "rPT1Sjq2YGrBMTttX4GZHjKu9dyfzbpAYe"
EVM_USER = "0x" + "ab" * 20
SOLANA_USER = "So11111111111111111111111111111111111111112"
BTC_USER = "1A1zP1eP5QGefi2DMPTfTL5SLmv7DivfNa"

BANK_WALLETS = {
    Chain.XRPL: XRPL_OTHER,
    Chain.ETHEREUM: "0x" + "cd" * 20,
    Chain.POLYGON: "0x" + "cd" * 20,
    Chain.SOLANA: "11111111111111111111111111111111",
    Chain.BITCOIN: BTC_USER,
}


@pytest.fixture
def settings() -> Settings:
    return Settings(
        app_env="testing",
        store_backend="memory",
        chain_backend="memory",
        price_backend="static",
        scheduler_enabled=False,
        jwt_secret_key="test-secret-key-at-least-32-characters-long-for-testing",
    )


@pytest.fixture
def store() -> InMemoryBridgeTransactionStore:
    return InMemoryBridgeTransactionStore()


@pytest.fixture
def adapters() -> dict[Chain, InMemoryChainAdapter]:
    return {chain: InMemoryChainAdapter(chain) for chain in Chain}


@pytest.fixture
def chains(adapters) -> ChainManager:
    return ChainManager(adapters=adapters, bank_wallets=BANK_WALLETS)


@pytest.fixture
def oracle() -> StaticPriceOracle:
    return StaticPriceOracle(DEFAULT_STATIC_PRICES)


@pytest.fixture
def pipeline(store, chains, oracle) -> BridgePipeline:
    return BridgePipeline(store, chains, oracle, reconcile_grace_seconds=0)


def make_transaction(**overrides) -> BridgeTransaction:
    """A pending XRP -> RDL transaction paying 10 XRP."""
    fields = {
        "owner_id": "user-1",
        "source_chain": Chain.XRPL,
        "source_token": Token.XRP,
        "destination_chain": Chain.XRPL,
        "destination_token": Token.RDL,
        "destination_address": XRPL_USER,
        "amount_in": Decimal("10"),
        "fee_amount": Decimal("0.1"),
        "exchange_rate": Decimal("100"),
        "amount_out": Decimal("990"),
        "bank_deposit_address": XRPL_OTHER,
        "expected_memo": "a" * 32,
    }
    fields.update(overrides)
    return BridgeTransaction(**fields)


def deposit_for(adapters, txn: BridgeTransaction, **overrides) -> str:
    """Record the inbound payment a transaction's instructions ask for."""
    payment = {
        "destination": txn.bank_deposit_address,
        "amount": txn.amount_in,
        "token": txn.source_token,
        "memo": txn.expected_memo,
        "sender": txn.source_address,
    }
    payment.update(overrides)
    return adapters[txn.source_chain].record_payment(**payment)
