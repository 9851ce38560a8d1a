"""
Address grammar per chain.

Pure validators shared by the live adapters and the in-memory ledger.
"""

import base58
import bech32
from web3 import Web3

from riddlebridge.models import Chain

# Version bytes of base58check Bitcoin mainnet addresses (P2PKH, P2SH)
_BTC_VERSIONS = (0x00, 0x05)


def is_xrpl_address(address: str) -> bool:
    """Classic XRPL address: base58check (ripple alphabet), account id version 0."""
    if not address or not address.startswith("r") or not 25 <= len(address) <= 35:
        return False
    try:
        payload = base58.b58decode_check(address, alphabet=base58.XRP_ALPHABET)
    except ValueError:
        return False
    return len(payload) == 21 and payload[0] == 0x00


def is_evm_address(address: str) -> bool:
    """20-byte hex address; mixed case must carry a valid EIP-55 checksum."""
    return bool(address) and Web3.is_address(address)


def is_solana_address(address: str) -> bool:
    """Base58 ed25519 public key."""
    if not address or not 32 <= len(address) <= 44:
        return False
    try:
        return len(base58.b58decode(address)) == 32
    except ValueError:
        return False


def is_bitcoin_address(address: str) -> bool:
    """Mainnet P2PKH / P2SH (base58check) or segwit (bech32 or bech32m, lowercase)."""
    if not address:
        return False
    if address.startswith("bc1"):
        witness_version, _ = bech32.decode("bc", address)
        return witness_version is not None
    try:
        payload = base58.b58decode_check(address)
    except ValueError:
        return False
    return len(payload) == 21 and payload[0] in _BTC_VERSIONS


ADDRESS_VALIDATORS = {
    Chain.XRPL: is_xrpl_address,
    Chain.ETHEREUM: is_evm_address,
    Chain.POLYGON: is_evm_address,
    Chain.SOLANA: is_solana_address,
    Chain.BITCOIN: is_bitcoin_address,
}
