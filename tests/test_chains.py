"""
Tests for chain adapters.

Tests cover:
- Address grammar per chain
- Shared inbound matching and polling (in-memory ledger)
- Outbound payment flow and failure classification
- XRPL JSON-RPC and Esplora parsing over httpx.MockTransport
- EVM receipts, confirmation depth and sender binding
- Solana balance deltas, memos and commitment levels
- Chain manager lookups
"""

import json
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import httpx
import pytest
from web3.exceptions import TransactionNotFound

from conftest import BANK_WALLETS, BTC_USER, EVM_USER, SOLANA_USER, XRPL_OTHER, XRPL_USER
from riddlebridge.chains import (
    ChainAdapterError,
    ChainManager,
    ChainRpcError,
    InMemoryChainAdapter,
    InsufficientFundsError,
    PaymentMismatchError,
    PaymentRejectedError,
    PaymentStatus,
    PaymentTimeoutError,
)
from riddlebridge.chains.addresses import (
    is_bitcoin_address,
    is_evm_address,
    is_solana_address,
    is_xrpl_address,
)
from riddlebridge.chains.base import InvalidAddressError, SignedPayment
from riddlebridge.chains.bitcoin import BitcoinAdapter
from riddlebridge.chains.evm import EvmAdapter
from riddlebridge.chains.solana import SolanaAdapter
from riddlebridge.chains.xrpl import XrplAdapter, decode_currency, decode_memo, encode_memo
from riddlebridge.models import Chain, Token


RDL_ISSUER = "r9xvnzUWZJpDu3NA6MKHmKhKJQTRqCRgu9"


class TestAddresses:
    def test_xrpl(self):
        assert is_xrpl_address(XRPL_USER)
        assert not is_xrpl_address("rHb9CJAWyB4rj91VRWn96DkukG4bwdtyTX")
        assert not is_xrpl_address(EVM_USER)

    def test_evm(self):
        assert is_evm_address(EVM_USER)
        assert not is_evm_address("0x1234")
        assert not is_evm_address(XRPL_USER)

    def test_solana(self):
        assert is_solana_address(SOLANA_USER)
        assert not is_solana_address("not-a-key")

    def test_bitcoin(self):
        assert is_bitcoin_address(BTC_USER)
        assert is_bitcoin_address("bc1qar0srrr7xfkvy5l643lydnw9re59gtzzwf5mdq")
        assert not is_bitcoin_address("bc1qar0srrr7xfkvy5l643lydnw9re59gtzzwf5mdz")
        assert not is_bitcoin_address("tb1qar0srrr7xfkvy5l643lydnw9re59gtzzwf5mdq")
        assert not is_bitcoin_address("1A1zP1eP5QGefi2DMPTfTL5SLmv7DivfNb")


class TestInMemoryIncomingPayment:
    @pytest.fixture
    def ledger(self) -> InMemoryChainAdapter:
        return InMemoryChainAdapter(Chain.XRPL)

    async def test_matching_payment(self, ledger):
        tx_hash = ledger.record_payment(XRPL_OTHER, Decimal("10"), Token.XRP, memo="m1")

        payment = await ledger.find_incoming_payment(
            XRPL_OTHER, "m1", Decimal("10"), tx_hash, Token.XRP
        )

        assert payment.tx_hash == tx_hash
        assert payment.amount == Decimal("10")

    async def test_overpayment_accepted(self, ledger):
        tx_hash = ledger.record_payment(XRPL_OTHER, Decimal("12"), Token.XRP, memo="m1")
        payment = await ledger.find_incoming_payment(
            XRPL_OTHER, "m1", Decimal("10"), tx_hash, Token.XRP
        )
        assert payment.amount == Decimal("12")

    @pytest.mark.parametrize(
        "payment,match",
        [
            ({"amount": Decimal("9.99")}, "expected at least"),
            ({"memo": "other"}, "memo"),
            ({"destination": XRPL_USER}, "deposit address"),
            ({"token": Token.RDL}, "does not transfer"),
            ({"succeeded": False}, "failed on chain"),
        ],
    )
    async def test_mismatch(self, ledger, payment, match):
        fields = {
            "destination": XRPL_OTHER,
            "amount": Decimal("10"),
            "token": Token.XRP,
            "memo": "m1",
        }
        fields.update(payment)
        tx_hash = ledger.record_payment(**fields)

        with pytest.raises(PaymentMismatchError, match=match):
            await ledger.find_incoming_payment(XRPL_OTHER, "m1", Decimal("10"), tx_hash, Token.XRP)

    async def test_expected_sender(self):
        ledger = InMemoryChainAdapter(Chain.BITCOIN)
        tx_hash = ledger.record_payment(
            BANK_WALLETS[Chain.BITCOIN], Decimal("0.01"), Token.BTC, sender="1someoneelse"
        )
        with pytest.raises(PaymentMismatchError, match="not sent from"):
            await ledger.find_incoming_payment(
                BANK_WALLETS[Chain.BITCOIN],
                None,
                Decimal("0.01"),
                tx_hash,
                Token.BTC,
                expected_sender=BTC_USER,
            )

    async def test_unknown_hash_times_out(self, ledger):
        with pytest.raises(PaymentTimeoutError):
            await ledger.find_incoming_payment(XRPL_OTHER, "m1", Decimal("1"), "DEADBEEF", Token.XRP)

    async def test_unfinalized_payment_times_out(self, ledger):
        tx_hash = ledger.record_payment(
            XRPL_OTHER, Decimal("10"), Token.XRP, memo="m1", finalized=False
        )
        with pytest.raises(PaymentTimeoutError):
            await ledger.find_incoming_payment(XRPL_OTHER, "m1", Decimal("10"), tx_hash, Token.XRP)
        assert await ledger.get_payment_status(tx_hash) == PaymentStatus.PENDING

        ledger.finalize(tx_hash)
        assert await ledger.get_payment_status(tx_hash) == PaymentStatus.CONFIRMED


class TestInMemorySendPayment:
    async def test_send_records_hash_before_broadcast(self):
        ledger = InMemoryChainAdapter(Chain.SOLANA)
        seen = []

        async def on_signed(tx_hash: str) -> None:
            seen.append((tx_hash, list(ledger.broadcasts)))

        sent = await ledger.send_payment(
            BANK_WALLETS[Chain.SOLANA], SOLANA_USER, Decimal("1.5"), Token.SOL, on_signed=on_signed
        )

        assert seen == [(sent.tx_hash, [])]
        assert ledger.broadcasts == [sent.tx_hash]
        assert await ledger.get_payment_status(sent.tx_hash) == PaymentStatus.CONFIRMED

    async def test_invalid_destination(self):
        ledger = InMemoryChainAdapter(Chain.ETHEREUM)
        with pytest.raises(InvalidAddressError):
            await ledger.send_payment(EVM_USER, "0xnope", Decimal("1"), Token.ETH)

    async def test_queued_outage(self):
        ledger = InMemoryChainAdapter(Chain.ETHEREUM)
        ledger.fail_next_broadcast()

        with pytest.raises(ChainRpcError) as exc_info:
            await ledger.send_payment(EVM_USER, EVM_USER, Decimal("1"), Token.ETH)

        assert exc_info.value.ambiguous is False
        assert ledger.broadcasts == []

    async def test_unfinalized_payout_is_ambiguous(self):
        ledger = InMemoryChainAdapter(Chain.ETHEREUM)
        ledger.finalize_payouts = False

        with pytest.raises(PaymentTimeoutError) as exc_info:
            await ledger.send_payment(EVM_USER, EVM_USER, Decimal("1"), Token.ETH)

        assert exc_info.value.ambiguous is True

    async def test_unknown_hash_status(self):
        ledger = InMemoryChainAdapter(Chain.XRPL)
        assert await ledger.get_payment_status("ABC") == PaymentStatus.NOT_FOUND

    def test_explorer_url(self):
        ledger = InMemoryChainAdapter(Chain.POLYGON)
        assert ledger.explorer_url_for("0xabc") == "https://polygonscan.com/tx/0xabc"


class TestXrplAdapter:
    def test_memo_round_trip(self):
        assert decode_memo(encode_memo("bridge-memo")) == "bridge-memo"
        assert decode_memo(None) is None

    def test_hex_currency_code(self):
        assert decode_currency("52444C0000000000000000000000000000000000") == "RDL"
        assert decode_currency("XRP") == "XRP"

    async def test_validated_rdl_deposit(self):
        tx_hash = "A" * 64

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                json={
                    "result": {
                        "status": "success",
                        "validated": True,
                        "hash": tx_hash,
                        "TransactionType": "Payment",
                        "Account": XRPL_USER,
                        "Destination": XRPL_OTHER,
                        "Amount": {"currency": "RDL", "issuer": RDL_ISSUER, "value": "100"},
                        "Memos": encode_memo("memo-1"),
                        "meta": {
                            "TransactionResult": "tesSUCCESS",
                            "delivered_amount": {
                                "currency": "RDL",
                                "issuer": RDL_ISSUER,
                                "value": "100",
                            },
                        },
                    }
                },
            )

        adapter = XrplAdapter(
            "https://rippled.test",
            RDL_ISSUER,
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
            poll_interval_seconds=0.01,
            verify_timeout_seconds=0.05,
        )

        payment = await adapter.find_incoming_payment(
            XRPL_OTHER, "memo-1", Decimal("100"), tx_hash.lower(), Token.RDL
        )

        assert payment.tx_hash == tx_hash
        assert payment.token == Token.RDL
        assert payment.sender == XRPL_USER

    async def test_partial_payment_uses_delivered_amount(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                json={
                    "result": {
                        "status": "success",
                        "validated": True,
                        "TransactionType": "Payment",
                        "Destination": XRPL_OTHER,
                        "Amount": "10000000",
                        "Memos": encode_memo("memo-1"),
                        "meta": {"TransactionResult": "tesSUCCESS", "delivered_amount": "1"},
                    }
                },
            )

        adapter = XrplAdapter(
            "https://rippled.test",
            RDL_ISSUER,
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
            poll_interval_seconds=0.01,
            verify_timeout_seconds=0.05,
        )

        with pytest.raises(PaymentMismatchError, match="expected at least"):
            await adapter.find_incoming_payment(
                XRPL_OTHER, "memo-1", Decimal("10"), "B" * 64, Token.XRP
            )

    async def test_txn_not_found_is_pending_lookup(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"result": {"status": "error", "error": "txnNotFound"}})

        adapter = XrplAdapter(
            "https://rippled.test",
            RDL_ISSUER,
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )
        assert await adapter.get_payment_status("C" * 64) == PaymentStatus.NOT_FOUND

    async def test_submit_rejection(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                json={
                    "result": {
                        "status": "success",
                        "engine_result": "temBAD_AMOUNT",
                        "engine_result_message": "Malformed: Bad amount.",
                    }
                },
            )

        adapter = XrplAdapter(
            "https://rippled.test",
            RDL_ISSUER,
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )

        with pytest.raises(PaymentRejectedError, match="temBAD_AMOUNT") as exc_info:
            await adapter._broadcast(SignedPayment(tx_hash="D" * 64, signed_blob="1200"))
        assert exc_info.value.ambiguous is False

    async def test_preliminary_unfunded_is_ambiguous(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                json={
                    "result": {
                        "status": "success",
                        "engine_result": "tecUNFUNDED_PAYMENT",
                        "engine_result_message": "Insufficient XRP balance to send.",
                    }
                },
            )

        adapter = XrplAdapter(
            "https://rippled.test",
            RDL_ISSUER,
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )

        with pytest.raises(InsufficientFundsError) as exc_info:
            await adapter._broadcast(SignedPayment(tx_hash="D" * 64, signed_blob="1200"))
        assert exc_info.value.ambiguous is True


class TestBitcoinAdapter:
    async def test_confirmed_deposit_credits_watched_address(self):
        deposit = BANK_WALLETS[Chain.BITCOIN]

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/blocks/tip/height"):
                return httpx.Response(200, text="800010")
            return httpx.Response(
                200,
                json={
                    "txid": "ab" * 32,
                    "status": {"confirmed": True, "block_height": 800000},
                    "vin": [{"prevout": {"scriptpubkey_address": "3Sender"}}],
                    "vout": [
                        {"scriptpubkey_address": "3Change", "value": 5000},
                        {"scriptpubkey_address": deposit, "value": 150000},
                    ],
                },
            )

        client = httpx.AsyncClient(
            base_url="https://esplora.test/api", transport=httpx.MockTransport(handler)
        )
        adapter = BitcoinAdapter("https://esplora.test/api", http_client=client)

        payment = await adapter.find_incoming_payment(
            deposit, None, Decimal("0.0015"), "AB" * 32, Token.BTC
        )

        assert payment.amount == Decimal("0.0015")
        assert payment.sender == "3Sender"

    async def test_unknown_txid(self):
        client = httpx.AsyncClient(
            base_url="https://esplora.test/api",
            transport=httpx.MockTransport(lambda request: httpx.Response(404)),
        )
        adapter = BitcoinAdapter("https://esplora.test/api", http_client=client)
        assert await adapter.get_payment_status("ab" * 32) == PaymentStatus.NOT_FOUND


def bad_gateway() -> aiohttp.ClientResponseError:
    return aiohttp.ClientResponseError(MagicMock(), (), status=502, message="Bad Gateway")


class FakeEth:
    """Just enough of AsyncWeb3.eth for lookups and broadcast."""

    def __init__(self, head: int):
        self.head = head
        self.transactions: dict[str, dict] = {}
        self.receipts: dict[str, dict] = {}
        self.broadcast_error: Exception | None = None
        self.lookup_error: Exception | None = None

    async def get_transaction(self, tx_hash):
        if self.lookup_error is not None:
            raise self.lookup_error
        if tx_hash not in self.transactions:
            raise TransactionNotFound(f"Transaction {tx_hash} not found")
        return self.transactions[tx_hash]

    async def get_transaction_receipt(self, tx_hash):
        if tx_hash not in self.receipts:
            raise TransactionNotFound(f"Receipt {tx_hash} not found")
        return self.receipts[tx_hash]

    @property
    def block_number(self):
        return self._value(self.head)

    async def _value(self, value):
        return value

    async def send_raw_transaction(self, blob):
        if self.broadcast_error is not None:
            raise self.broadcast_error
        return b""


class TestEvmAdapter:
    TX_HASH = "0x" + "ab" * 32

    def adapter_with(self, eth: FakeEth) -> EvmAdapter:
        return EvmAdapter(
            Chain.ETHEREUM,
            "http://unused",
            web3=SimpleNamespace(eth=eth),
            poll_interval_seconds=0.01,
            verify_timeout_seconds=0.05,
        )

    def deposit(self, eth: FakeEth, sender: str = EVM_USER, block: int = 100, status: int = 1):
        eth.transactions[self.TX_HASH] = {
            "from": sender,
            "to": BANK_WALLETS[Chain.ETHEREUM].upper().replace("0X", "0x"),
            "value": 2 * 10**18,
        }
        eth.receipts[self.TX_HASH] = {"blockNumber": block, "status": status}

    async def test_buried_deposit_with_matching_sender(self):
        eth = FakeEth(head=111)
        self.deposit(eth)
        adapter = self.adapter_with(eth)

        payment = await adapter.find_incoming_payment(
            BANK_WALLETS[Chain.ETHEREUM],
            None,
            Decimal("2"),
            "AB" * 32,
            Token.ETH,
            expected_sender=EVM_USER,
        )

        assert payment.tx_hash == self.TX_HASH
        assert payment.amount == Decimal("2")

    async def test_sender_mismatch(self):
        eth = FakeEth(head=111)
        self.deposit(eth, sender="0x" + "ef" * 20)

        with pytest.raises(PaymentMismatchError, match="not sent from"):
            await self.adapter_with(eth).find_incoming_payment(
                BANK_WALLETS[Chain.ETHEREUM],
                None,
                Decimal("2"),
                self.TX_HASH,
                Token.ETH,
                expected_sender=EVM_USER,
            )

    async def test_payment_status(self):
        eth = FakeEth(head=105)
        adapter = self.adapter_with(eth)
        assert await adapter.get_payment_status(self.TX_HASH) == PaymentStatus.NOT_FOUND

        self.deposit(eth)
        assert await adapter.get_payment_status(self.TX_HASH) == PaymentStatus.PENDING

        eth.head = 200
        assert await adapter.get_payment_status(self.TX_HASH) == PaymentStatus.CONFIRMED

        self.deposit(eth, status=0)
        assert await adapter.get_payment_status(self.TX_HASH) == PaymentStatus.FAILED

    async def test_node_rejection_is_definitive(self):
        eth = FakeEth(head=1)
        eth.broadcast_error = ValueError({"code": -32000, "message": "nonce too low"})

        with pytest.raises(PaymentRejectedError) as exc_info:
            await self.adapter_with(eth)._broadcast(
                SignedPayment(tx_hash=self.TX_HASH, signed_blob="0x02")
            )
        assert exc_info.value.ambiguous is False

    async def test_timeout_is_ambiguous(self):
        eth = FakeEth(head=1)
        eth.broadcast_error = TimeoutError("read timed out")

        with pytest.raises(ChainRpcError) as exc_info:
            await self.adapter_with(eth)._broadcast(
                SignedPayment(tx_hash=self.TX_HASH, signed_blob="0x02")
            )
        assert exc_info.value.ambiguous is True

    async def test_bad_gateway_lookup_is_rpc_error(self):
        eth = FakeEth(head=1)
        eth.lookup_error = bad_gateway()
        adapter = self.adapter_with(eth)

        with pytest.raises(ChainRpcError, match="Bad Gateway"):
            await adapter.get_payment_status(self.TX_HASH)
        with pytest.raises(PaymentTimeoutError, match="Bad Gateway"):
            await adapter.find_incoming_payment(
                BANK_WALLETS[Chain.ETHEREUM], None, Decimal("2"), self.TX_HASH, Token.ETH
            )

    async def test_bad_gateway_broadcast_is_ambiguous(self):
        eth = FakeEth(head=1)
        eth.broadcast_error = bad_gateway()

        with pytest.raises(ChainRpcError) as exc_info:
            await self.adapter_with(eth)._broadcast(
                SignedPayment(tx_hash=self.TX_HASH, signed_blob="0x02")
            )
        assert exc_info.value.ambiguous is True


class TestSolanaAdapter:
    SRDL_MINT = "4tPL1ZPT4uy36VYjoDvoCpvNYurscS324D8P9Ap32AzE"
    SIGNATURE = "1" * 64

    def parsed_tx(self, memo: str = "m" * 32, err=None) -> dict:
        deposit = BANK_WALLETS[Chain.SOLANA]
        return {
            "meta": {
                "err": err,
                "preBalances": [5_000_000_000, 1_000_000_000],
                "postBalances": [3_499_995_000, 2_500_000_000],
                "preTokenBalances": [],
                "postTokenBalances": [],
            },
            "transaction": {
                "message": {
                    "accountKeys": [{"pubkey": SOLANA_USER}, {"pubkey": deposit}],
                    "instructions": [
                        {"program": "system", "parsed": {"type": "transfer"}},
                        {"program": "spl-memo", "parsed": memo},
                    ],
                }
            },
        }

    def adapter_with(self, finalized: dict | None, confirmed: dict | None = None) -> SolanaAdapter:
        client = MagicMock()
        client.get_transaction = AsyncMock(
            side_effect=[
                SimpleNamespace(to_json=lambda: json.dumps({"result": finalized})),
                SimpleNamespace(to_json=lambda: json.dumps({"result": confirmed})),
            ]
        )
        return SolanaAdapter(
            "http://unused",
            self.SRDL_MINT,
            client=client,
            poll_interval_seconds=0.01,
            verify_timeout_seconds=0.05,
        )

    async def test_sol_deposit_measured_by_balance_change(self):
        adapter = self.adapter_with(self.parsed_tx())

        payment = await adapter._lookup_payment(self.SIGNATURE, BANK_WALLETS[Chain.SOLANA])

        assert payment.finalized is True
        assert payment.token == Token.SOL
        assert payment.amount == Decimal("1.5")
        assert payment.memo == "m" * 32
        assert payment.sender == SOLANA_USER

    def test_srdl_deposit_uses_token_balances(self):
        adapter = SolanaAdapter("http://unused", self.SRDL_MINT, client=MagicMock())
        data = self.parsed_tx()
        data["meta"]["postTokenBalances"] = [
            {
                "owner": BANK_WALLETS[Chain.SOLANA],
                "mint": self.SRDL_MINT,
                "uiTokenAmount": {"amount": "2500000"},
            }
        ]

        payment = adapter._parse_payment(self.SIGNATURE, data, True, BANK_WALLETS[Chain.SOLANA])

        assert payment.token == Token.SRDL
        assert payment.amount == Decimal("2.5")

    async def test_confirmed_but_not_finalized(self):
        adapter = self.adapter_with(None, self.parsed_tx())
        assert await adapter.get_payment_status(self.SIGNATURE) == PaymentStatus.PENDING

    async def test_failed_transaction(self):
        adapter = self.adapter_with(self.parsed_tx(err={"InstructionError": [0, "Custom"]}))
        assert await adapter.get_payment_status(self.SIGNATURE) == PaymentStatus.FAILED

    async def test_malformed_signature_is_unknown(self):
        adapter = SolanaAdapter("http://unused", self.SRDL_MINT, client=MagicMock())
        assert await adapter.get_payment_status("not-a-signature") == PaymentStatus.NOT_FOUND


class TestChainManager:
    def test_lookups(self, chains):
        assert chains.get_adapter(Chain.XRPL).chain == Chain.XRPL
        assert chains.bank_wallet_for(Chain.SOLANA) == BANK_WALLETS[Chain.SOLANA]
        assert set(chains.chains) == set(Chain)

    def test_unconfigured_chain(self):
        manager = ChainManager(adapters={}, bank_wallets={})
        with pytest.raises(ChainAdapterError):
            manager.get_adapter(Chain.BITCOIN)
        with pytest.raises(ChainAdapterError):
            manager.bank_wallet_for(Chain.BITCOIN)

    async def test_close(self, chains):
        await chains.close()
        assert chains.chains == []
