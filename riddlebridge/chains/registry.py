"""
Chain Manager

Routes pipeline calls to the adapter of a chain and knows the bank wallet
that receives deposits and sends payouts on each chain.
"""

from typing import Any

import structlog

from riddlebridge.chains.base import BankWalletSigner, ChainAdapter, ChainAdapterError
from riddlebridge.chains.bitcoin import BitcoinAdapter
from riddlebridge.chains.evm import EvmAdapter
from riddlebridge.chains.memory import InMemoryChainAdapter
from riddlebridge.chains.signers import (
    EvmAccountSigner,
    SigningServiceSigner,
    SolanaKeypairSigner,
)
from riddlebridge.chains.solana import SolanaAdapter
from riddlebridge.chains.xrpl import XrplAdapter
from riddlebridge.config import Settings
from riddlebridge.models import Chain

logger = structlog.get_logger(__name__)


class ChainManager:
    """
    Registry of chain adapters and bank wallets.

    Every chain of the supported-pairs table must have both an adapter and
    a bank wallet; lookups for anything else raise ChainAdapterError.
    """

    def __init__(
        self,
        adapters: dict[Chain, ChainAdapter],
        bank_wallets: dict[Chain, str],
        closeables: list[Any] | None = None,
    ):
        self._adapters = dict(adapters)
        self._bank_wallets = dict(bank_wallets)
        self._closeables = closeables or []

    def get_adapter(self, chain: Chain) -> ChainAdapter:
        try:
            return self._adapters[chain]
        except KeyError:
            raise ChainAdapterError(f"Chain {chain.value} is not configured") from None

    def bank_wallet_for(self, chain: Chain) -> str:
        try:
            return self._bank_wallets[chain]
        except KeyError:
            raise ChainAdapterError(f"No bank wallet configured for {chain.value}") from None

    @property
    def chains(self) -> list[Chain]:
        return list(self._adapters)

    async def close(self) -> None:
        """Close all adapters and shared signer clients."""
        for adapter in self._adapters.values():
            await adapter.close()
        for resource in self._closeables:
            await resource.close()
        self._adapters.clear()


def bank_wallets_from_settings(settings: Settings) -> dict[Chain, str]:
    return {
        Chain.XRPL: settings.bank_wallet_xrpl,
        Chain.ETHEREUM: settings.bank_wallet_evm,
        Chain.POLYGON: settings.bank_wallet_evm,
        Chain.SOLANA: settings.bank_wallet_solana,
        Chain.BITCOIN: settings.bank_wallet_bitcoin,
    }


def _build_signers(settings: Settings) -> tuple[dict[Chain, BankWalletSigner], list[Any]]:
    if settings.signer_backend == "service":
        service = SigningServiceSigner(
            settings.signer_service_url,
            token=settings.signer_service_token,
            timeout_seconds=settings.rpc_timeout_seconds,
        )
        return {chain: service for chain in Chain}, [service]

    signers: dict[Chain, BankWalletSigner] = {}
    if settings.evm_signer_private_key:
        evm_signer = EvmAccountSigner(settings.evm_signer_private_key)
        signers[Chain.ETHEREUM] = evm_signer
        signers[Chain.POLYGON] = evm_signer
    if settings.solana_signer_private_key:
        signers[Chain.SOLANA] = SolanaKeypairSigner(settings.solana_signer_private_key)

    missing = [chain.value for chain in Chain if chain not in signers]
    if missing:
        logger.warning("local_signers_missing", chains=missing)
    return signers, []


def build_chain_manager(settings: Settings) -> ChainManager:
    """Create the chain manager for the configured backend."""
    bank_wallets = bank_wallets_from_settings(settings)

    if settings.chain_backend == "memory":
        logger.info("chain_manager_memory_backend")
        return ChainManager(
            adapters={chain: InMemoryChainAdapter(chain) for chain in Chain},
            bank_wallets=bank_wallets,
        )

    signers, closeables = _build_signers(settings)
    budgets: dict[str, Any] = {
        "poll_interval_seconds": settings.poll_interval_seconds,
        "verify_timeout_seconds": settings.verify_timeout_seconds,
        "send_timeout_seconds": settings.send_timeout_seconds,
    }

    adapters: dict[Chain, ChainAdapter] = {
        Chain.XRPL: XrplAdapter(
            settings.xrpl_rpc_url,
            settings.rdl_issuer,
            timeout_seconds=settings.rpc_timeout_seconds,
            signer=signers.get(Chain.XRPL),
            **budgets,
        ),
        Chain.ETHEREUM: EvmAdapter(
            Chain.ETHEREUM,
            settings.ethereum_rpc_url,
            confirmations=settings.evm_confirmations,
            signer=signers.get(Chain.ETHEREUM),
            **budgets,
        ),
        Chain.POLYGON: EvmAdapter(
            Chain.POLYGON,
            settings.polygon_rpc_url,
            confirmations=settings.evm_confirmations,
            signer=signers.get(Chain.POLYGON),
            **budgets,
        ),
        Chain.SOLANA: SolanaAdapter(
            settings.solana_rpc_url,
            settings.srdl_mint,
            signer=signers.get(Chain.SOLANA),
            **budgets,
        ),
        Chain.BITCOIN: BitcoinAdapter(
            settings.bitcoin_api_url,
            confirmations=settings.btc_confirmations,
            timeout_seconds=settings.rpc_timeout_seconds,
            signer=signers.get(Chain.BITCOIN),
            **budgets,
        ),
    }
    logger.info(
        "chain_manager_initialized",
        chains=[chain.value for chain in adapters],
        signer_backend=settings.signer_backend,
    )
    return ChainManager(adapters=adapters, bank_wallets=bank_wallets, closeables=closeables)
