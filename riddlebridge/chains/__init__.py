"""
Chain adapters for the bridge pipeline.
"""

from riddlebridge.chains.base import (
    BankWalletSigner,
    ChainAdapter,
    ChainAdapterError,
    ChainRpcError,
    IncomingPayment,
    InsufficientFundsError,
    InvalidAddressError,
    OnChainPayment,
    PaymentMismatchError,
    PaymentRejectedError,
    PaymentStatus,
    PaymentTimeoutError,
    SentPayment,
    SignedPayment,
    SigningError,
    UnsignedPayment,
)
from riddlebridge.chains.memory import InMemoryChainAdapter
from riddlebridge.chains.registry import ChainManager, build_chain_manager

__all__ = [
    "BankWalletSigner",
    "ChainAdapter",
    "ChainAdapterError",
    "ChainManager",
    "ChainRpcError",
    "IncomingPayment",
    "InMemoryChainAdapter",
    "InsufficientFundsError",
    "InvalidAddressError",
    "OnChainPayment",
    "PaymentMismatchError",
    "PaymentRejectedError",
    "PaymentStatus",
    "PaymentTimeoutError",
    "SentPayment",
    "SignedPayment",
    "SigningError",
    "UnsignedPayment",
    "build_chain_manager",
]
