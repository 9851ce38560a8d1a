"""
Bitcoin Adapter

Esplora REST API (blockstream.info compatible) over httpx. Bitcoin has no
memo, so deposits are matched by txid, credited outputs and sender.
Payouts hand the bank wallet's confirmed UTXOs and a fee rate to the
signer, which selects coins and builds the raw transaction.
"""

from decimal import Decimal
from typing import Any

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from riddlebridge.chains.addresses import is_bitcoin_address
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

# Confirmation target (blocks) used for the payout fee rate
FEE_TARGET_BLOCKS = "6"


class BitcoinAdapter(ChainAdapter):
    """Bitcoin mainnet adapter."""

    chain = Chain.BITCOIN
    supports_memo = False
    explorer_tx_url = "https://blockstream.info/tx/{tx_hash}"

    def __init__(
        self,
        api_url: str,
        confirmations: int = 2,
        http_client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 15.0,
        **kwargs: Any,
    ):
        super().__init__(**kwargs)
        self.confirmations = confirmations
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(
            base_url=api_url.rstrip("/"), timeout=timeout_seconds
        )

    async def close(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    def validate_address(self, address: str) -> bool:
        return is_bitcoin_address(address)

    def normalize_tx_hash(self, tx_hash: str) -> str:
        return tx_hash.strip().lower()

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )
    async def _get(self, path: str) -> httpx.Response:
        return await self._http.get(path)

    async def _get_json(self, path: str) -> Any:
        try:
            response = await self._get(path)
            response.raise_for_status()
            return response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise ChainRpcError(f"esplora GET {path} failed: {e}") from e

    async def _tip_height(self) -> int:
        try:
            response = await self._get("/blocks/tip/height")
            response.raise_for_status()
            return int(response.text.strip())
        except (httpx.HTTPError, ValueError) as e:
            raise ChainRpcError(f"esplora tip height failed: {e}") from e

    async def _lookup_payment(
        self, tx_hash: str, watch_address: str | None = None
    ) -> OnChainPayment | None:
        try:
            response = await self._get(f"/tx/{tx_hash}")
        except httpx.HTTPError as e:
            raise ChainRpcError(f"esplora tx lookup failed: {e}") from e
        # Esplora answers 404 for unknown and 400 for malformed txids
        if response.status_code in (400, 404):
            return None
        try:
            response.raise_for_status()
            tx: dict[str, Any] = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise ChainRpcError(f"esplora tx lookup failed: {e}") from e

        status = tx.get("status") or {}
        finalized = False
        if status.get("confirmed"):
            depth = await self._tip_height() - int(status["block_height"]) + 1
            finalized = depth >= self.confirmations

        outputs = tx.get("vout") or []
        destination = watch_address
        if watch_address is None and outputs:
            destination = outputs[0].get("scriptpubkey_address")
        credited = sum(
            int(out.get("value", 0))
            for out in outputs
            if destination is not None and out.get("scriptpubkey_address") == destination
        )

        inputs = tx.get("vin") or []
        sender = None
        if inputs and isinstance(inputs[0].get("prevout"), dict):
            sender = inputs[0]["prevout"].get("scriptpubkey_address")

        return OnChainPayment(
            tx_hash=tx_hash,
            succeeded=True,
            finalized=finalized,
            destination=destination if credited > 0 else None,
            amount=from_base_units(credited, Token.BTC) if credited > 0 else None,
            token=Token.BTC,
            sender=sender,
        )

    async def _prepare_payment(
        self,
        from_address: str,
        to_address: str,
        amount: Decimal,
        token: Token,
        memo: str | None,
    ) -> UnsignedPayment:
        utxos = await self._get_json(f"/address/{from_address}/utxo")
        fee_estimates = await self._get_json("/fee-estimates")

        confirmed = [
            {"txid": u["txid"], "vout": u["vout"], "value": u["value"]}
            for u in utxos
            if (u.get("status") or {}).get("confirmed")
        ]
        amount_sats = to_base_units(amount, Token.BTC)
        if sum(u["value"] for u in confirmed) <= amount_sats:
            raise InsufficientFundsError(
                f"bank wallet {from_address} holds too few confirmed sats for {amount_sats}"
            )

        return UnsignedPayment(
            chain=self.chain,
            token=token,
            from_address=from_address,
            to_address=to_address,
            amount=amount,
            fields={
                "utxos": confirmed,
                "amount_sats": amount_sats,
                "fee_rate_sat_vb": float(fee_estimates.get(FEE_TARGET_BLOCKS, 10.0)),
            },
        )

    async def _broadcast(self, signed: SignedPayment) -> None:
        try:
            response = await self._http.post("/tx", content=signed.signed_blob)
        except httpx.ConnectError as e:
            raise ChainRpcError(f"esplora unreachable: {e}") from e
        except httpx.HTTPError as e:
            raise ChainRpcError(f"esplora broadcast outcome unknown: {e}", ambiguous=True) from e

        if response.status_code == 400:
            raise PaymentRejectedError(f"bitcoin node rejected payout: {response.text}")
        if response.is_error:
            raise ChainRpcError(
                f"esplora broadcast returned {response.status_code}", ambiguous=True
            )
