"""
EVM Adapter

Ethereum and Polygon native-currency payments through web3's AsyncWeb3.
EVM transfers carry no memo, so deposits are matched by hash, destination,
value and (when known) sender. Finality is a successful receipt buried
under the configured number of blocks.
"""

from decimal import Decimal
from typing import Any

import aiohttp
from web3 import AsyncHTTPProvider, AsyncWeb3
from web3.exceptions import TransactionNotFound, Web3Exception

from riddlebridge.chains.addresses import is_evm_address
from riddlebridge.chains.base import (
    ChainAdapter,
    ChainRpcError,
    InsufficientFundsError,
    OnChainPayment,
    PaymentRejectedError,
    SignedPayment,
    UnsignedPayment,
)
from riddlebridge.models import Chain, Token, from_base_units, to_base_units

# Gas for a plain value transfer
TRANSFER_GAS = 21_000

EXPLORERS = {
    Chain.ETHEREUM: "https://etherscan.io/tx/{tx_hash}",
    Chain.POLYGON: "https://polygonscan.com/tx/{tx_hash}",
}

NATIVE_TOKENS = {
    Chain.ETHEREUM: Token.ETH,
    Chain.POLYGON: Token.MATIC,
}

# Failures of an AsyncHTTPProvider call, including HTTP 5xx and disconnects
RPC_ERRORS = (Web3Exception, ValueError, OSError, TimeoutError, aiohttp.ClientError)


class EvmAdapter(ChainAdapter):
    """Adapter for EVM chains paying out in the native currency."""

    supports_memo = False

    def __init__(
        self,
        chain: Chain,
        rpc_url: str,
        confirmations: int = 12,
        web3: AsyncWeb3 | None = None,
        **kwargs: Any,
    ):
        if chain not in NATIVE_TOKENS:
            raise ValueError(f"{chain.value} is not an EVM chain")
        self.chain = chain
        self.explorer_tx_url = EXPLORERS[chain]
        self.native_token = NATIVE_TOKENS[chain]
        super().__init__(**kwargs)
        self.confirmations = confirmations
        self._w3 = web3 or AsyncWeb3(AsyncHTTPProvider(rpc_url))

    def validate_address(self, address: str) -> bool:
        return is_evm_address(address)

    def normalize_tx_hash(self, tx_hash: str) -> str:
        tx_hash = tx_hash.strip().lower()
        return tx_hash if tx_hash.startswith("0x") else f"0x{tx_hash}"

    def same_address(self, left: str | None, right: str | None) -> bool:
        return left is not None and right is not None and left.lower() == right.lower()

    async def _lookup_payment(
        self, tx_hash: str, watch_address: str | None = None
    ) -> OnChainPayment | None:
        w3 = self._w3
        try:
            try:
                tx: Any = await w3.eth.get_transaction(tx_hash)
            except TransactionNotFound:
                return None

            try:
                receipt: Any = await w3.eth.get_transaction_receipt(tx_hash)
            except TransactionNotFound:
                receipt = None

            head: int = await w3.eth.block_number
        except RPC_ERRORS as e:
            raise ChainRpcError(f"{self.chain.value} RPC lookup failed: {e}") from e

        amount = from_base_units(int(tx["value"]), self.native_token)

        if receipt is None:
            return OnChainPayment(
                tx_hash=tx_hash,
                succeeded=True,
                finalized=False,
                destination=tx.get("to"),
                amount=amount,
                token=self.native_token,
                sender=tx.get("from"),
            )

        depth = head - int(receipt["blockNumber"]) + 1
        succeeded = receipt["status"] == 1
        return OnChainPayment(
            tx_hash=tx_hash,
            succeeded=succeeded,
            finalized=depth >= self.confirmations,
            destination=tx.get("to"),
            amount=amount,
            token=self.native_token,
            sender=tx.get("from"),
            failure_reason=None if succeeded else "reverted",
        )

    async def _prepare_payment(
        self,
        from_address: str,
        to_address: str,
        amount: Decimal,
        token: Token,
        memo: str | None,
    ) -> UnsignedPayment:
        w3 = self._w3
        try:
            sender = w3.to_checksum_address(from_address)
            nonce = await w3.eth.get_transaction_count(sender, "pending")
            chain_id = await w3.eth.chain_id
            latest_block: Any = await w3.eth.get_block("latest")
            max_priority_fee: int = await w3.eth.max_priority_fee
        except RPC_ERRORS as e:
            raise ChainRpcError(f"{self.chain.value} RPC unavailable: {e}") from e

        base_fee: int = latest_block["baseFeePerGas"]
        tx: dict[str, Any] = {
            "from": sender,
            "to": w3.to_checksum_address(to_address),
            "value": to_base_units(amount, token),
            "nonce": nonce,
            "chainId": chain_id,
            "gas": TRANSFER_GAS,
            "maxFeePerGas": base_fee * 2 + max_priority_fee,
            "maxPriorityFeePerGas": max_priority_fee,
            "type": 2,
        }
        return UnsignedPayment(
            chain=self.chain,
            token=token,
            from_address=from_address,
            to_address=to_address,
            amount=amount,
            fields={"tx": tx},
        )

    async def _broadcast(self, signed: SignedPayment) -> None:
        try:
            await self._w3.eth.send_raw_transaction(signed.signed_blob)
        except ConnectionError as e:
            raise ChainRpcError(f"{self.chain.value} RPC unreachable: {e}") from e
        except (ValueError, Web3Exception) as e:
            if "insufficient funds" in str(e).lower():
                raise InsufficientFundsError(f"bank wallet underfunded: {e}") from e
            # A JSON-RPC error object means the node refused the transaction
            if isinstance(e, ValueError) or getattr(e, "rpc_response", None) is not None:
                raise PaymentRejectedError(f"{self.chain.value} rejected payout: {e}") from e
            raise ChainRpcError(
                f"{self.chain.value} broadcast outcome unknown: {e}", ambiguous=True
            ) from e
        except (OSError, TimeoutError, aiohttp.ClientError) as e:
            raise ChainRpcError(
                f"{self.chain.value} broadcast outcome unknown: {e}", ambiguous=True
            ) from e
