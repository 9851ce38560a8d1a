"""
Solana Adapter

SOL and the SRDL SPL token through solana-py's AsyncClient. Responses are
read from their JSON form (``jsonParsed`` encoding) so system transfers,
token transfers and spl-memo instructions are handled uniformly. Deposit
amounts are the balance change of the deposit wallet, which also covers
transfers made by inner instructions.
"""

import base64
import json
from decimal import Decimal
from typing import Any

import httpx
from solana.exceptions import SolanaRpcException
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Confirmed, Finalized
from solana.rpc.core import RPCException
from solana.rpc.types import TxOpts
from solders.pubkey import Pubkey
from solders.signature import Signature
from spl.token.instructions import get_associated_token_address

from riddlebridge.chains.addresses import is_solana_address
from riddlebridge.chains.base import (
    ChainAdapter,
    ChainRpcError,
    InsufficientFundsError,
    OnChainPayment,
    PaymentRejectedError,
    SignedPayment,
    UnsignedPayment,
)
from riddlebridge.models import Chain, Token, from_base_units, to_base_units, token_spec

MEMO_PROGRAM_NAMES = ("spl-memo",)


def _account_keys(message: dict[str, Any]) -> list[str]:
    keys = message.get("accountKeys", [])
    return [k["pubkey"] if isinstance(k, dict) else str(k) for k in keys]


def _parse_memo(message: dict[str, Any]) -> str | None:
    for ix in message.get("instructions", []):
        if ix.get("program") in MEMO_PROGRAM_NAMES and isinstance(ix.get("parsed"), str):
            return ix["parsed"]
    return None


def _token_delta(meta: dict[str, Any], owner: str, mint: str) -> int:
    """Change of ``owner``'s balance of ``mint`` in base units."""

    def _total(balances: list[dict[str, Any]]) -> int:
        return sum(
            int(b["uiTokenAmount"]["amount"])
            for b in balances
            if b.get("owner") == owner and b.get("mint") == mint
        )

    return _total(meta.get("postTokenBalances") or []) - _total(meta.get("preTokenBalances") or [])


def _lamport_delta(meta: dict[str, Any], keys: list[str], address: str) -> int:
    if address not in keys:
        return 0
    index = keys.index(address)
    return int(meta["postBalances"][index]) - int(meta["preBalances"][index])


class SolanaAdapter(ChainAdapter):
    """Solana adapter for SOL and SRDL."""

    chain = Chain.SOLANA
    supports_memo = True
    explorer_tx_url = "https://solscan.io/tx/{tx_hash}"

    def __init__(
        self,
        rpc_url: str,
        srdl_mint: str,
        client: AsyncClient | None = None,
        **kwargs: Any,
    ):
        super().__init__(**kwargs)
        self._srdl_mint = srdl_mint
        self._client = client or AsyncClient(rpc_url)

    async def close(self) -> None:
        await self._client.close()

    def validate_address(self, address: str) -> bool:
        return is_solana_address(address)

    async def _get_transaction(self, signature: Signature, commitment: Any) -> dict[str, Any] | None:
        try:
            response = await self._client.get_transaction(
                signature,
                encoding="jsonParsed",
                commitment=commitment,
                max_supported_transaction_version=0,
            )
        except (SolanaRpcException, httpx.HTTPError, OSError) as e:
            raise ChainRpcError(f"solana getTransaction failed: {e}") from e
        result: dict[str, Any] | None = json.loads(response.to_json()).get("result")
        return result

    def _parse_payment(
        self, tx_hash: str, data: dict[str, Any], finalized: bool, watch_address: str | None
    ) -> OnChainPayment:
        meta = data.get("meta") or {}
        message = data.get("transaction", {}).get("message", {})
        keys = _account_keys(message)
        err = meta.get("err")

        destination = None
        amount = None
        token = None
        if watch_address is not None:
            srdl_delta = _token_delta(meta, watch_address, self._srdl_mint)
            lamports = _lamport_delta(meta, keys, watch_address)
            if srdl_delta > 0:
                destination, token = watch_address, Token.SRDL
                amount = from_base_units(srdl_delta, Token.SRDL)
            elif lamports > 0:
                destination, token = watch_address, Token.SOL
                amount = from_base_units(lamports, Token.SOL)

        return OnChainPayment(
            tx_hash=tx_hash,
            succeeded=err is None,
            finalized=finalized,
            destination=destination,
            amount=amount,
            token=token,
            memo=_parse_memo(message),
            sender=keys[0] if keys else None,
            failure_reason=None if err is None else json.dumps(err),
        )

    async def _lookup_payment(
        self, tx_hash: str, watch_address: str | None = None
    ) -> OnChainPayment | None:
        try:
            signature = Signature.from_string(tx_hash)
        except ValueError:
            return None

        data = await self._get_transaction(signature, Finalized)
        if data is not None:
            return self._parse_payment(tx_hash, data, True, watch_address)

        data = await self._get_transaction(signature, Confirmed)
        if data is not None:
            return self._parse_payment(tx_hash, data, False, watch_address)
        return None

    async def _prepare_payment(
        self,
        from_address: str,
        to_address: str,
        amount: Decimal,
        token: Token,
        memo: str | None,
    ) -> UnsignedPayment:
        try:
            blockhash_resp = await self._client.get_latest_blockhash(commitment=Finalized)
            fields: dict[str, Any] = {
                "recent_blockhash": str(blockhash_resp.value.blockhash),
                "amount_base_units": to_base_units(amount, token),
            }
            if token == Token.SRDL:
                mint = Pubkey.from_string(self._srdl_mint)
                destination_ata = get_associated_token_address(Pubkey.from_string(to_address), mint)
                account = await self._client.get_account_info(destination_ata)
                fields["mint"] = self._srdl_mint
                fields["decimals"] = token_spec(Token.SRDL).decimals
                fields["create_destination_account"] = account.value is None
        except (SolanaRpcException, httpx.HTTPError, OSError) as e:
            raise ChainRpcError(f"solana RPC unavailable: {e}") from e

        return UnsignedPayment(
            chain=self.chain,
            token=token,
            from_address=from_address,
            to_address=to_address,
            amount=amount,
            memo=memo,
            fields=fields,
        )

    async def _broadcast(self, signed: SignedPayment) -> None:
        try:
            await self._client.send_raw_transaction(
                base64.b64decode(signed.signed_blob),
                opts=TxOpts(skip_preflight=False, preflight_commitment=Confirmed),
            )
        except RPCException as e:
            # Preflight simulation failed, nothing was forwarded to the leader
            if "insufficient" in str(e).lower():
                raise InsufficientFundsError(f"bank wallet underfunded: {e}") from e
            raise PaymentRejectedError(f"solana rejected payout: {e}") from e
        except httpx.ConnectError as e:
            raise ChainRpcError(f"solana RPC unreachable: {e}") from e
        except (SolanaRpcException, httpx.HTTPError, OSError) as e:
            raise ChainRpcError(f"solana broadcast outcome unknown: {e}", ambiguous=True) from e
