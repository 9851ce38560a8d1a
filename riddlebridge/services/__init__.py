"""Bridge pipeline services."""

from riddlebridge.services.distributor import BridgeDistributor
from riddlebridge.services.initiator import BridgeInitiator
from riddlebridge.services.maintenance import BridgeMaintenance
from riddlebridge.services.pipeline import BridgePipeline
from riddlebridge.services.pricing import (
    DEFAULT_STATIC_PRICES,
    MarketPriceOracle,
    PriceOracle,
    StaticPriceOracle,
)
from riddlebridge.services.query import TransactionQueryService
from riddlebridge.services.quote import (
    QuoteCalculator,
    compute_quote,
    resolve_route,
    supported_routes,
)
from riddlebridge.services.restart import RestartController
from riddlebridge.services.scheduler import BackgroundScheduler, setup_scheduler
from riddlebridge.services.verifier import BridgeVerifier

__all__ = [
    "DEFAULT_STATIC_PRICES",
    "BackgroundScheduler",
    "BridgeDistributor",
    "BridgeInitiator",
    "BridgeMaintenance",
    "BridgePipeline",
    "BridgeVerifier",
    "MarketPriceOracle",
    "PriceOracle",
    "QuoteCalculator",
    "RestartController",
    "StaticPriceOracle",
    "TransactionQueryService",
    "compute_quote",
    "resolve_route",
    "setup_scheduler",
    "supported_routes",
]
