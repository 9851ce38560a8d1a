"""
Bank Wallet Signers

Implementations of the BankWalletSigner protocol. Production deployments
use the custodial signing service; the local signers exist for development
networks and hold a key in process memory.
"""

import base64
from typing import Any

import httpx
import structlog
from eth_account import Account
from solders.hash import Hash
from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.system_program import TransferParams, transfer
from solders.transaction import Transaction
from spl.token.constants import TOKEN_PROGRAM_ID
from spl.token.instructions import (
    TransferCheckedParams,
    create_associated_token_account,
    get_associated_token_address,
    transfer_checked,
)

from riddlebridge.chains.base import SignedPayment, SigningError, UnsignedPayment
from riddlebridge.models import Chain, Token, format_amount

logger = structlog.get_logger(__name__)

MEMO_PROGRAM_ID = Pubkey.from_string("MemoSq4gqABAXKb96qnH8TysNcWxMyWCqXgDLGmfcHr")


def _hex(value: Any) -> str:
    text = value.hex() if not isinstance(value, str) else value
    return text if text.startswith("0x") else f"0x{text}"


class SigningServiceSigner:
    """
    Client of the custodial signing service.

    POST {base_url}/v1/sign with the unsigned payment; the service applies
    its own policy checks and answers {"tx_hash": ..., "signed_blob": ...}.
    """

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        http_client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 15.0,
    ):
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._http = http_client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"), headers=headers, timeout=timeout_seconds
        )

    async def close(self) -> None:
        await self._http.aclose()

    async def sign_payment(self, payment: UnsignedPayment) -> SignedPayment:
        body = {
            "chain": payment.chain.value,
            "token": payment.token.value,
            "from_address": payment.from_address,
            "to_address": payment.to_address,
            "amount": format_amount(payment.amount),
            "memo": payment.memo,
            "fields": payment.fields,
        }
        try:
            response = await self._http.post("/v1/sign", json=body)
            response.raise_for_status()
            data = response.json()
            signed = SignedPayment(tx_hash=data["tx_hash"], signed_blob=data["signed_blob"])
        except (httpx.HTTPError, ValueError, KeyError) as e:
            raise SigningError(f"signing service refused {payment.chain.value} payout: {e}") from e

        logger.info(
            "payout_signed",
            chain=payment.chain.value,
            tx_hash=signed.tx_hash,
            to_address=payment.to_address,
        )
        return signed


class EvmAccountSigner:
    """Signs EVM payouts with a local eth_account key (development only)."""

    def __init__(self, private_key: str):
        self._account = Account.from_key(private_key)

    @property
    def address(self) -> str:
        return str(self._account.address)

    async def sign_payment(self, payment: UnsignedPayment) -> SignedPayment:
        if payment.chain not in (Chain.ETHEREUM, Chain.POLYGON):
            raise SigningError(f"EvmAccountSigner cannot sign {payment.chain.value} payouts")
        if payment.from_address.lower() != self.address.lower():
            raise SigningError(f"key does not control {payment.from_address}")

        tx = dict(payment.fields["tx"])
        tx.pop("from", None)
        signed = self._account.sign_transaction(tx)
        return SignedPayment(tx_hash=_hex(signed.hash), signed_blob=_hex(signed.raw_transaction))


class SolanaKeypairSigner:
    """Signs SOL and SRDL payouts with a local keypair (development only)."""

    def __init__(self, secret_base58: str):
        self._keypair = Keypair.from_base58_string(secret_base58)

    @property
    def address(self) -> str:
        return str(self._keypair.pubkey())

    async def sign_payment(self, payment: UnsignedPayment) -> SignedPayment:
        if payment.chain != Chain.SOLANA:
            raise SigningError(f"SolanaKeypairSigner cannot sign {payment.chain.value} payouts")
        if payment.from_address != self.address:
            raise SigningError(f"keypair does not control {payment.from_address}")

        payer = self._keypair.pubkey()
        recipient = Pubkey.from_string(payment.to_address)
        amount = int(payment.fields["amount_base_units"])
        instructions: list[Instruction] = []

        if payment.token == Token.SOL:
            instructions.append(
                transfer(TransferParams(from_pubkey=payer, to_pubkey=recipient, lamports=amount))
            )
        else:
            mint = Pubkey.from_string(payment.fields["mint"])
            if payment.fields.get("create_destination_account"):
                instructions.append(create_associated_token_account(payer, recipient, mint))
            instructions.append(
                transfer_checked(
                    TransferCheckedParams(
                        program_id=TOKEN_PROGRAM_ID,
                        source=get_associated_token_address(payer, mint),
                        mint=mint,
                        dest=get_associated_token_address(recipient, mint),
                        owner=payer,
                        amount=amount,
                        decimals=int(payment.fields["decimals"]),
                    )
                )
            )

        if payment.memo:
            instructions.append(Instruction(MEMO_PROGRAM_ID, payment.memo.encode("utf-8"), []))

        blockhash = Hash.from_string(payment.fields["recent_blockhash"])
        message = Message.new_with_blockhash(instructions, payer, blockhash)
        tx = Transaction([self._keypair], message, blockhash)
        return SignedPayment(
            tx_hash=str(tx.signatures[0]),
            signed_blob=base64.b64encode(bytes(tx)).decode("ascii"),
        )
