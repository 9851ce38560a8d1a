"""
Chain Adapter Base

Abstract per-chain adapter used by the bridge pipeline. Every supported
network implements the same narrow surface so orchestration never branches
on chain name:

- find_incoming_payment: confirm a user deposit is final and matches
- send_payment: pay out from a bank wallet and wait for finality
- get_payment_status: reconcile a previously submitted payout
- explorer_url_for: chain-specific explorer link

Polling, matching and finality waiting live here; subclasses provide the
chain-specific lookup, preparation and broadcast primitives.
"""

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Protocol

import structlog

from riddlebridge.models import Chain, Token, format_amount

logger = structlog.get_logger(__name__)


class ChainAdapterError(Exception):
    """
    Base exception for chain adapter errors.

    ``ambiguous`` is True when a payout may have reached the network even
    though the call failed, so the submitted hash must be reconciled before
    any resend.
    """

    def __init__(self, message: str, *, ambiguous: bool = False):
        super().__init__(message)
        self.ambiguous = ambiguous


class ChainRpcError(ChainAdapterError):
    """Raised when the RPC endpoint cannot be reached or answers with an error."""
    pass


class PaymentTimeoutError(ChainAdapterError):
    """Raised when a payment is not final within the poll budget."""
    pass


class PaymentMismatchError(ChainAdapterError):
    """Raised when a final payment does not match what was expected."""
    pass


class PaymentRejectedError(ChainAdapterError):
    """Raised when the network definitively rejects or fails a payout."""
    pass


class InsufficientFundsError(PaymentRejectedError):
    """Raised when the bank wallet cannot cover a payout."""
    pass


class InvalidAddressError(PaymentRejectedError):
    """Raised when a destination address is malformed for the chain."""
    pass


class SigningError(ChainAdapterError):
    """Raised when the bank wallet signer refuses or fails to sign."""
    pass


class PaymentStatus(str, Enum):
    """Reconciliation status of a submitted payment."""

    CONFIRMED = "confirmed"
    PENDING = "pending"
    FAILED = "failed"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class OnChainPayment:
    """A payment as read from the ledger."""

    tx_hash: str
    succeeded: bool
    finalized: bool
    destination: str | None = None
    amount: Decimal | None = None
    token: Token | None = None
    memo: str | None = None
    sender: str | None = None
    failure_reason: str | None = None


@dataclass(frozen=True)
class IncomingPayment:
    """A verified, final deposit into a bank wallet."""

    tx_hash: str
    destination: str
    amount: Decimal
    token: Token
    memo: str | None = None
    sender: str | None = None


@dataclass(frozen=True)
class UnsignedPayment:
    """
    A payout ready for signing.

    ``fields`` carries the chain-native data the signer needs (XRPL
    tx_json, EVM transaction dict, Solana blockhash, Bitcoin UTXOs).
    """

    chain: Chain
    token: Token
    from_address: str
    to_address: str
    amount: Decimal
    memo: str | None = None
    fields: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SignedPayment:
    tx_hash: str
    signed_blob: str


@dataclass(frozen=True)
class SentPayment:
    """A payout that reached finality."""

    tx_hash: str
    to_address: str
    amount: Decimal
    token: Token


class BankWalletSigner(Protocol):
    """Custodial signer producing broadcastable payouts for a bank wallet."""

    async def sign_payment(self, payment: UnsignedPayment) -> SignedPayment: ...


OnSigned = Callable[[str], Awaitable[None]]


class ChainAdapter(ABC):
    """
    Abstract base class for per-chain bridge adapters.

    Subclasses implement the ledger lookup, payout preparation and
    broadcast for one network; polling, matching and finality waiting are
    shared.
    """

    chain: Chain
    supports_memo: bool = False
    explorer_tx_url: str = ""

    def __init__(
        self,
        signer: BankWalletSigner | None = None,
        poll_interval_seconds: float = 3.0,
        verify_timeout_seconds: float = 90.0,
        send_timeout_seconds: float = 120.0,
    ):
        self.signer = signer
        self.poll_interval_seconds = poll_interval_seconds
        self.verify_timeout_seconds = verify_timeout_seconds
        self.send_timeout_seconds = send_timeout_seconds
        self._logger = logger.bind(chain=self.chain.value)

    async def close(self) -> None:
        """Release network resources held by the adapter."""
        pass

    # ==================== Chain grammar ====================

    @abstractmethod
    def validate_address(self, address: str) -> bool:
        """Check an address against the chain's address grammar."""
        pass

    def normalize_tx_hash(self, tx_hash: str) -> str:
        return tx_hash.strip()

    def same_address(self, left: str | None, right: str | None) -> bool:
        return left is not None and right is not None and left == right

    def explorer_url_for(self, tx_hash: str) -> str:
        return self.explorer_tx_url.format(tx_hash=tx_hash)

    # ==================== Chain primitives ====================

    @abstractmethod
    async def _lookup_payment(
        self, tx_hash: str, watch_address: str | None = None
    ) -> OnChainPayment | None:
        """
        Read a payment from the ledger.

        Returns None when the hash is unknown. ``watch_address`` lets
        adapters measure the amount credited to a specific address.
        """
        pass

    @abstractmethod
    async def _prepare_payment(
        self,
        from_address: str,
        to_address: str,
        amount: Decimal,
        token: Token,
        memo: str | None,
    ) -> UnsignedPayment:
        """Fetch chain state (sequence, nonce, blockhash, UTXOs) for a payout."""
        pass

    @abstractmethod
    async def _broadcast(self, signed: SignedPayment) -> None:
        """Submit a signed payout to the network."""
        pass

    async def _sign(self, payment: UnsignedPayment) -> SignedPayment:
        if self.signer is None:
            raise SigningError(f"No bank wallet signer configured for {self.chain.value}")
        return await self.signer.sign_payment(payment)

    # ==================== Inbound verification ====================

    async def find_incoming_payment(
        self,
        deposit_address: str,
        expected_memo: str | None,
        amount_in: Decimal,
        tx_hash: str,
        expected_token: Token,
        expected_sender: str | None = None,
    ) -> IncomingPayment:
        """
        Confirm that ``tx_hash`` is a final payment into ``deposit_address``.

        Polls until the payment is final or the verify budget runs out.
        Overpayment is accepted, underpayment is not.

        Raises:
            PaymentTimeoutError: Not found or not final within the budget
            PaymentMismatchError: Final, but not the expected payment
        """
        tx_hash = self.normalize_tx_hash(tx_hash)
        payment = await self._wait_for_finality(
            tx_hash, self.verify_timeout_seconds, watch_address=deposit_address
        )

        if not payment.succeeded:
            raise PaymentMismatchError(
                f"Transaction {tx_hash} failed on chain ({payment.failure_reason or 'unknown'})"
            )
        if not self.same_address(payment.destination, deposit_address):
            raise PaymentMismatchError(
                f"Transaction {tx_hash} does not pay the deposit address {deposit_address}"
            )
        if payment.token != expected_token:
            raise PaymentMismatchError(
                f"Transaction {tx_hash} does not transfer {expected_token.value}"
            )
        if expected_memo is not None and payment.memo != expected_memo:
            raise PaymentMismatchError(
                f"Transaction {tx_hash} does not carry the expected memo"
            )
        if expected_sender is not None and not self.same_address(payment.sender, expected_sender):
            raise PaymentMismatchError(
                f"Transaction {tx_hash} was not sent from {expected_sender}"
            )
        if payment.amount is None or payment.amount < amount_in:
            raise PaymentMismatchError(
                f"Transaction {tx_hash} paid {format_amount(payment.amount) or 'nothing'} "
                f"{expected_token.value}, expected at least {format_amount(amount_in)}"
            )

        self._logger.info(
            "incoming_payment_confirmed",
            tx_hash=tx_hash,
            amount=format_amount(payment.amount),
            token=expected_token.value,
        )
        return IncomingPayment(
            tx_hash=tx_hash,
            destination=deposit_address,
            amount=payment.amount,
            token=expected_token,
            memo=payment.memo,
            sender=payment.sender,
        )

    # ==================== Outbound payment ====================

    async def send_payment(
        self,
        from_address: str,
        to_address: str,
        amount: Decimal,
        token: Token,
        memo: str | None = None,
        on_signed: OnSigned | None = None,
    ) -> SentPayment:
        """
        Pay ``amount`` of ``token`` from a bank wallet and wait for finality.

        ``on_signed`` is awaited with the transaction hash after signing and
        before broadcast, so callers can record the attempt first.

        Raises:
            InvalidAddressError: Destination is not a valid address
            PaymentRejectedError: The network rejected or failed the payout
            PaymentTimeoutError: Broadcast, but not final within the budget
            ChainRpcError: The RPC endpoint failed
        """
        if not self.validate_address(to_address):
            raise InvalidAddressError(
                f"{to_address} is not a valid {self.chain.value} address"
            )

        unsigned = await self._prepare_payment(
            from_address, to_address, amount, token, memo if self.supports_memo else None
        )
        signed = await self._sign(unsigned)
        tx_hash = self.normalize_tx_hash(signed.tx_hash)

        if on_signed is not None:
            await on_signed(tx_hash)

        await self._broadcast(signed)
        self._logger.info("payment_broadcast", tx_hash=tx_hash, to_address=to_address)

        try:
            payment = await self._wait_for_finality(tx_hash, self.send_timeout_seconds)
        except PaymentTimeoutError as e:
            raise PaymentTimeoutError(str(e), ambiguous=True) from e

        if not payment.succeeded:
            raise PaymentRejectedError(
                f"Payout {tx_hash} failed on chain ({payment.failure_reason or 'unknown'})"
            )

        return SentPayment(tx_hash=tx_hash, to_address=to_address, amount=amount, token=token)

    async def get_payment_status(self, tx_hash: str) -> PaymentStatus:
        """Single lookup of a submitted payment, for reconciliation."""
        payment = await self._lookup_payment(self.normalize_tx_hash(tx_hash))
        if payment is None:
            return PaymentStatus.NOT_FOUND
        if not payment.finalized:
            return PaymentStatus.PENDING
        return PaymentStatus.CONFIRMED if payment.succeeded else PaymentStatus.FAILED

    # ==================== Polling ====================

    async def _wait_for_finality(
        self,
        tx_hash: str,
        timeout_seconds: float,
        watch_address: str | None = None,
    ) -> OnChainPayment:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout_seconds
        last_error: ChainRpcError | None = None

        while True:
            try:
                payment = await self._lookup_payment(tx_hash, watch_address)
                if payment is not None and payment.finalized:
                    return payment
            except ChainRpcError as e:
                last_error = e
                self._logger.warning("payment_lookup_failed", tx_hash=tx_hash, error=str(e))

            if loop.time() + self.poll_interval_seconds > deadline:
                detail = f" (last error: {last_error})" if last_error else ""
                raise PaymentTimeoutError(
                    f"Transaction {tx_hash} not final within {timeout_seconds:g}s{detail}"
                )
            await asyncio.sleep(self.poll_interval_seconds)
