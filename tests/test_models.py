"""
Tests for bridge domain models and amount arithmetic.
"""

import warnings
from decimal import Decimal
from pathlib import Path

import pytest

from conftest import make_transaction
import riddlebridge.models.bridge as bridge_models
from riddlebridge.models import (
    BridgeRoute,
    BridgeStatus,
    Chain,
    DepositInstructions,
    Token,
    dust_threshold,
    fits_precision,
    format_amount,
    from_base_units,
    min_unit,
    round_down,
    to_base_units,
)


class TestAmounts:
    def test_min_unit_follows_token_decimals(self):
        assert min_unit(Token.XRP) == Decimal("0.000001")
        assert min_unit(Token.BTC) == Decimal("0.00000001")
        assert min_unit(Token.ETH) == Decimal("1e-18")

    def test_round_down_truncates(self):
        assert round_down(Decimal("1.2345679"), Token.XRP) == Decimal("1.234567")
        assert round_down(Decimal("0.0000009"), Token.XRP) == Decimal("0")

    def test_fits_precision(self):
        assert fits_precision(Decimal("0.000001"), Token.XRP)
        assert fits_precision(Decimal("1.500000000"), Token.XRP)
        assert not fits_precision(Decimal("0.0000001"), Token.XRP)

    def test_btc_dust_threshold(self):
        assert dust_threshold(Token.BTC) == Decimal("0.00000546")
        assert dust_threshold(Token.XRP) == min_unit(Token.XRP)

    def test_base_units(self):
        assert to_base_units(Decimal("1.5"), Token.XRP) == 1_500_000
        assert to_base_units(Decimal("0.00000546"), Token.BTC) == 546
        assert from_base_units("1000000000", Token.SOL) == Decimal("1")

    def test_format_amount_has_no_exponent(self):
        assert format_amount(Decimal("1E-8")) == "0.00000001"
        assert format_amount(Decimal("990.000")) == "990"
        assert format_amount(Decimal("-0")) == "0"
        assert format_amount(None) is None


class TestBridgeRoute:
    def test_chains_derive_from_tokens(self):
        route = BridgeRoute.for_tokens(Token.SOL, Token.SRDL)
        assert route.source_chain == Chain.SOLANA
        assert route.destination_chain == Chain.SOLANA
        assert route.label == "SOL->SRDL"


class TestBridgeTransaction:
    def test_defaults(self):
        txn = make_transaction()
        assert txn.status == BridgeStatus.PENDING
        assert txn.restart_count == 0
        assert txn.inbound_tx_hash is None
        assert not txn.is_terminal

    @pytest.mark.parametrize(
        "status,terminal",
        [
            (BridgeStatus.COMPLETED, True),
            (BridgeStatus.FAILED, True),
            (BridgeStatus.EXECUTING, False),
            (BridgeStatus.VERIFIED, False),
        ],
    )
    def test_is_terminal(self, status, terminal):
        assert make_transaction(status=status).is_terminal is terminal

    def test_deposit_instructions_mention_memo(self):
        txn = make_transaction()
        instructions = DepositInstructions.for_transaction(txn)
        assert instructions.bank_wallet_address == txn.bank_deposit_address
        assert instructions.expected_memo == txn.expected_memo
        assert txn.expected_memo in instructions.instructions
        assert instructions.estimated_output == Decimal("990")


def test_module_source_compiles_without_warnings():
    source = Path(bridge_models.__file__).read_text(encoding="utf-8")
    with warnings.catch_warnings():
        warnings.simplefilter("error")
        compile(source, bridge_models.__file__, "exec")
    assert "failed <" in bridge_models.__doc__
