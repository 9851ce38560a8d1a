"""Bridge domain models."""

from riddlebridge.models.bridge import (
    BRIDGE_FEE_RATE,
    SUPPORTED_PAIRS,
    TOKEN_SPECS,
    BridgeReceipt,
    BridgeRoute,
    BridgeStatus,
    BridgeTransaction,
    Chain,
    DepositInstructions,
    ExplorerLinkKind,
    FailureStage,
    Quote,
    Token,
    TokenSpec,
    TransactionFilter,
    dust_threshold,
    fits_precision,
    format_amount,
    from_base_units,
    min_unit,
    round_down,
    to_base_units,
    token_spec,
)

__all__ = [
    "BRIDGE_FEE_RATE",
    "SUPPORTED_PAIRS",
    "TOKEN_SPECS",
    "BridgeReceipt",
    "BridgeRoute",
    "BridgeStatus",
    "BridgeTransaction",
    "Chain",
    "DepositInstructions",
    "ExplorerLinkKind",
    "FailureStage",
    "Quote",
    "Token",
    "TokenSpec",
    "TransactionFilter",
    "dust_threshold",
    "fits_precision",
    "format_amount",
    "from_base_units",
    "min_unit",
    "round_down",
    "to_base_units",
    "token_spec",
]
