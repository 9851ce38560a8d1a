"""
XRPL Adapter

rippled JSON-RPC over httpx. Verifies deposits with ``tx`` (validated
ledger, tesSUCCESS, delivered_amount for partial-payment safety, hex memo)
and pays out via ``account_info`` / ``ledger_current`` / ``submit``.

Response parsing follows rippled JSON-RPC conventions:
    - Success: {"result": {"status": "success", ...}}
    - Error:   {"result": {"status": "error", "error": "txnNotFound", ...}}
    - API v2 nests transaction fields under result.tx_json
"""

from decimal import Decimal, InvalidOperation
from typing import Any

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from riddlebridge.chains.addresses import is_xrpl_address
from riddlebridge.chains.base import (
    ChainAdapter,
    ChainRpcError,
    InsufficientFundsError,
    OnChainPayment,
    PaymentRejectedError,
    SignedPayment,
    UnsignedPayment,
)
from riddlebridge.models import Chain, Token, format_amount, from_base_units, to_base_units

# Ledgers a payout stays submittable for; afterwards it can never validate
LAST_LEDGER_OFFSET = 20

# Flat transaction cost in drops
DEFAULT_FEE_DROPS = "12"

# Preliminary engine results after which the transaction can still validate
_PROVISIONAL_PREFIXES = ("tes", "ter", "tec")

# Preliminary results that point at an underfunded bank wallet
_UNFUNDED_RESULTS = ("tecUNFUNDED_PAYMENT", "terINSUF_FEE_B")


def decode_currency(code: str) -> str:
    """Standard 3-char codes pass through; 160-bit hex codes decode to ASCII."""
    if len(code) == 40:
        try:
            return bytes.fromhex(code).rstrip(b"\x00").decode("ascii")
        except (ValueError, UnicodeDecodeError):
            return code
    return code


def decode_memo(memos: Any) -> str | None:
    """First MemoData of a Memos array, hex-decoded to UTF-8."""
    if not isinstance(memos, list):
        return None
    for entry in memos:
        memo = entry.get("Memo", {}) if isinstance(entry, dict) else {}
        data = memo.get("MemoData")
        if data:
            try:
                return bytes.fromhex(data).decode("utf-8")
            except (ValueError, UnicodeDecodeError):
                return None
    return None


def encode_memo(memo: str) -> list[dict[str, Any]]:
    return [{"Memo": {"MemoData": memo.encode("utf-8").hex().upper()}}]


class XrplAdapter(ChainAdapter):
    """XRPL adapter for XRP and the RDL issued currency."""

    chain = Chain.XRPL
    supports_memo = True
    explorer_tx_url = "https://livenet.xrpl.org/transactions/{tx_hash}"

    def __init__(
        self,
        rpc_url: str,
        rdl_issuer: str,
        http_client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 15.0,
        **kwargs: Any,
    ):
        super().__init__(**kwargs)
        self._rpc_url = rpc_url
        self._rdl_issuer = rdl_issuer
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout_seconds)

    async def close(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    def validate_address(self, address: str) -> bool:
        return is_xrpl_address(address)

    def normalize_tx_hash(self, tx_hash: str) -> str:
        return tx_hash.strip().upper()

    # ==================== JSON-RPC ====================

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )
    async def _post(self, payload: dict[str, Any]) -> dict[str, Any]:
        response = await self._http.post(self._rpc_url, json=payload)
        response.raise_for_status()
        data: dict[str, Any] = response.json()
        return data

    async def _call(self, method: str, params: dict[str, Any]) -> dict[str, Any]:
        """Send one JSON-RPC request and return its ``result`` object."""
        payload = {"method": method, "params": [params]}
        try:
            data = await self._post(payload)
        except httpx.ConnectError as e:
            raise ChainRpcError(f"rippled unreachable: {e}") from e
        except (httpx.HTTPError, ValueError) as e:
            raise ChainRpcError(f"rippled {method} failed: {e}", ambiguous=True) from e

        result = data.get("result")
        if not isinstance(result, dict):
            raise ChainRpcError(f"rippled {method} returned no result object")
        return result

    # ==================== Parsing ====================

    def _parse_amount(self, amount: Any) -> tuple[Decimal | None, Token | None]:
        if isinstance(amount, str):
            try:
                return from_base_units(amount, Token.XRP), Token.XRP
            except InvalidOperation:
                return None, None
        if isinstance(amount, dict):
            try:
                value = Decimal(str(amount.get("value")))
            except InvalidOperation:
                return None, None
            currency = decode_currency(str(amount.get("currency", "")))
            if currency == Token.RDL.value and amount.get("issuer") == self._rdl_issuer:
                return value, Token.RDL
            return value, None
        return None, None

    def _parse_payment(self, tx_hash: str, result: dict[str, Any]) -> OnChainPayment:
        tx = result.get("tx_json") if isinstance(result.get("tx_json"), dict) else result
        meta = result.get("meta") if isinstance(result.get("meta"), dict) else {}
        validated = bool(result.get("validated", False))
        engine_result = meta.get("TransactionResult")

        if tx.get("TransactionType") != "Payment":
            return OnChainPayment(
                tx_hash=tx_hash,
                succeeded=False,
                finalized=validated,
                failure_reason=f"not a Payment ({tx.get('TransactionType')})",
            )

        delivered = meta.get("delivered_amount", meta.get("DeliveredAmount"))
        if delivered is None or delivered == "unavailable":
            delivered = tx.get("DeliverMax", tx.get("Amount"))
        amount, token = self._parse_amount(delivered)

        succeeded = engine_result == "tesSUCCESS"
        return OnChainPayment(
            tx_hash=tx_hash,
            succeeded=succeeded,
            finalized=validated,
            destination=tx.get("Destination"),
            amount=amount,
            token=token,
            memo=decode_memo(tx.get("Memos")),
            sender=tx.get("Account"),
            failure_reason=None if succeeded else engine_result,
        )

    # ==================== Adapter primitives ====================

    async def _lookup_payment(
        self, tx_hash: str, watch_address: str | None = None
    ) -> OnChainPayment | None:
        result = await self._call("tx", {"transaction": tx_hash, "binary": False})

        if result.get("status") == "error":
            if result.get("error") == "txnNotFound":
                return None
            if result.get("error") == "invalidParams":
                return None
            raise ChainRpcError(
                f"rippled tx error: {result.get('error_message') or result.get('error')}"
            )
        return self._parse_payment(tx_hash, result)

    async def _prepare_payment(
        self,
        from_address: str,
        to_address: str,
        amount: Decimal,
        token: Token,
        memo: str | None,
    ) -> UnsignedPayment:
        account = await self._call(
            "account_info", {"account": from_address, "ledger_index": "current"}
        )
        if account.get("status") == "error":
            raise ChainRpcError(f"account_info failed: {account.get('error')}")
        sequence = account["account_data"]["Sequence"]

        ledger = await self._call("ledger_current", {})
        current_index = int(ledger["ledger_current_index"])

        if token == Token.XRP:
            tx_amount: Any = str(to_base_units(amount, Token.XRP))
        else:
            tx_amount = {
                "currency": Token.RDL.value,
                "issuer": self._rdl_issuer,
                "value": format_amount(amount),
            }

        tx_json: dict[str, Any] = {
            "TransactionType": "Payment",
            "Account": from_address,
            "Destination": to_address,
            "Amount": tx_amount,
            "Fee": DEFAULT_FEE_DROPS,
            "Sequence": sequence,
            "LastLedgerSequence": current_index + LAST_LEDGER_OFFSET,
            "Flags": 0,
        }
        if memo:
            tx_json["Memos"] = encode_memo(memo)

        return UnsignedPayment(
            chain=self.chain,
            token=token,
            from_address=from_address,
            to_address=to_address,
            amount=amount,
            memo=memo,
            fields={"tx_json": tx_json},
        )

    async def _broadcast(self, signed: SignedPayment) -> None:
        result = await self._call("submit", {"tx_blob": signed.signed_blob})

        if result.get("status") == "error":
            raise PaymentRejectedError(
                f"submit rejected: {result.get('error_message') or result.get('error')}"
            )

        engine_result = str(result.get("engine_result", ""))
        message = result.get("engine_result_message") or engine_result
        if engine_result in _UNFUNDED_RESULTS:
            # Not final: the blob may still validate, so the hash must be reconciled
            raise InsufficientFundsError(
                f"bank wallet underfunded (preliminary {engine_result}): {message}",
                ambiguous=True,
            )
        if engine_result.startswith(_PROVISIONAL_PREFIXES):
            return
        raise PaymentRejectedError(f"submit rejected: {engine_result} {message}")
