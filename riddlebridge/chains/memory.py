"""
In-Memory Ledger Adapter

A chain adapter backed by a dictionary, for local development and tests.
Deposits are recorded with ``record_payment``; payouts land in the same
ledger as final payments. Outages and rejections can be queued to
exercise the pipeline's failure paths.
"""

import hashlib
import secrets
from dataclasses import replace
from decimal import Decimal
from typing import Any

from riddlebridge.chains.addresses import ADDRESS_VALIDATORS
from riddlebridge.chains.base import (
    ChainAdapter,
    ChainAdapterError,
    ChainRpcError,
    OnChainPayment,
    SentPayment,
    SignedPayment,
    UnsignedPayment,
)
from riddlebridge.models import Chain, Token

EXPLORERS = {
    Chain.XRPL: "https://livenet.xrpl.org/transactions/{tx_hash}",
    Chain.ETHEREUM: "https://etherscan.io/tx/{tx_hash}",
    Chain.POLYGON: "https://polygonscan.com/tx/{tx_hash}",
    Chain.SOLANA: "https://solscan.io/tx/{tx_hash}",
    Chain.BITCOIN: "https://blockstream.info/tx/{tx_hash}",
}

MEMO_CHAINS = frozenset({Chain.XRPL, Chain.SOLANA})


class InMemoryChainAdapter(ChainAdapter):
    """Dictionary-backed ledger implementing the adapter surface for one chain."""

    def __init__(self, chain: Chain, **kwargs: Any):
        self.chain = chain
        self.supports_memo = chain in MEMO_CHAINS
        self.explorer_tx_url = EXPLORERS[chain]
        kwargs.setdefault("poll_interval_seconds", 0.01)
        kwargs.setdefault("verify_timeout_seconds", 0.05)
        kwargs.setdefault("send_timeout_seconds", 0.05)
        super().__init__(**kwargs)
        self.payments: dict[str, OnChainPayment] = {}
        self.sent: list[SentPayment] = []
        self.broadcasts: list[str] = []
        self._queued_failures: list[ChainAdapterError] = []
        self._signed: dict[str, UnsignedPayment] = {}
        self.finalize_payouts = True

    def validate_address(self, address: str) -> bool:
        return ADDRESS_VALIDATORS[self.chain](address)

    # ==================== Test and dev helpers ====================

    def record_payment(
        self,
        destination: str,
        amount: Decimal,
        token: Token,
        memo: str | None = None,
        sender: str | None = None,
        tx_hash: str | None = None,
        finalized: bool = True,
        succeeded: bool = True,
    ) -> str:
        """Put a payment on the ledger and return its hash."""
        tx_hash = tx_hash or secrets.token_hex(32).upper()
        self.payments[tx_hash] = OnChainPayment(
            tx_hash=tx_hash,
            succeeded=succeeded,
            finalized=finalized,
            destination=destination,
            amount=amount,
            token=token,
            memo=memo,
            sender=sender,
            failure_reason=None if succeeded else "simulated failure",
        )
        return tx_hash

    def finalize(self, tx_hash: str) -> None:
        payment = self.payments[tx_hash]
        self.payments[tx_hash] = replace(payment, finalized=True)

    def fail_next_broadcast(self, error: ChainAdapterError | None = None) -> None:
        """Queue a broadcast failure; defaults to an outage before submission."""
        self._queued_failures.append(
            error or ChainRpcError(f"{self.chain.value} RPC unavailable (simulated outage)")
        )

    # ==================== Adapter primitives ====================

    async def _lookup_payment(
        self, tx_hash: str, watch_address: str | None = None
    ) -> OnChainPayment | None:
        return self.payments.get(tx_hash)

    async def _prepare_payment(
        self,
        from_address: str,
        to_address: str,
        amount: Decimal,
        token: Token,
        memo: str | None,
    ) -> UnsignedPayment:
        return UnsignedPayment(
            chain=self.chain,
            token=token,
            from_address=from_address,
            to_address=to_address,
            amount=amount,
            memo=memo,
            fields={"nonce": secrets.token_hex(8)},
        )

    async def _sign(self, payment: UnsignedPayment) -> SignedPayment:
        if self.signer is not None:
            signed = await self.signer.sign_payment(payment)
        else:
            blob = f"{payment.from_address}:{payment.to_address}:{payment.amount}:{payment.fields['nonce']}"
            signed = SignedPayment(
                tx_hash=hashlib.sha256(blob.encode()).hexdigest().upper(),
                signed_blob=blob,
            )
        self._signed[self.normalize_tx_hash(signed.tx_hash)] = payment
        return signed

    async def _broadcast(self, signed: SignedPayment) -> None:
        if self._queued_failures:
            raise self._queued_failures.pop(0)

        payout = self._signed.pop(self.normalize_tx_hash(signed.tx_hash))
        to_address, amount, token = payout.to_address, payout.amount, payout.token
        self.broadcasts.append(signed.tx_hash)
        self.payments[signed.tx_hash] = OnChainPayment(
            tx_hash=signed.tx_hash,
            succeeded=True,
            finalized=self.finalize_payouts,
            destination=to_address,
            amount=amount,
            token=token,
        )
        self.sent.append(
            SentPayment(tx_hash=signed.tx_hash, to_address=to_address, amount=amount, token=token)
        )

