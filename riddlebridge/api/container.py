"""
Bridge application container.

Holds every long-lived component for dependency injection. Components
passed to the constructor are used as-is; the rest are built from settings
in ``initialize``.
"""

from datetime import UTC, datetime
from typing import Any

import structlog
from neo4j.exceptions import Neo4jError, ServiceUnavailable

from riddlebridge.chains import ChainManager, build_chain_manager
from riddlebridge.config import Settings
from riddlebridge.database import Neo4jClient, SchemaManager
from riddlebridge.repositories import (
    BridgeTransactionStore,
    InMemoryBridgeTransactionStore,
    Neo4jBridgeTransactionStore,
)
from riddlebridge.services import (
    DEFAULT_STATIC_PRICES,
    BackgroundScheduler,
    BridgePipeline,
    MarketPriceOracle,
    PriceOracle,
    StaticPriceOracle,
    setup_scheduler,
)

logger = structlog.get_logger(__name__)


class BridgeApp:
    def __init__(
        self,
        settings: Settings,
        store: BridgeTransactionStore | None = None,
        chains: ChainManager | None = None,
        oracle: PriceOracle | None = None,
    ) -> None:
        self.settings = settings
        self.db_client: Neo4jClient | None = None
        self.store = store
        self.chains = chains
        self.oracle = oracle
        self.pipeline: BridgePipeline | None = None
        self.scheduler: BackgroundScheduler | None = None

        self.started_at: datetime | None = None
        self.is_ready = False

    async def initialize(self) -> None:
        """Initialize all components."""
        logger.info(
            "riddlebridge_initializing",
            store_backend=self.settings.store_backend,
            chain_backend=self.settings.chain_backend,
            price_backend=self.settings.price_backend,
        )

        if self.store is None:
            self.store = await self._build_store()
        if self.chains is None:
            self.chains = build_chain_manager(self.settings)
        if self.oracle is None:
            self.oracle = self._build_oracle()

        self.pipeline = BridgePipeline.from_settings(
            self.settings, self.store, self.chains, self.oracle
        )
        self.scheduler = setup_scheduler(self.settings, self.pipeline.maintenance)
        await self.scheduler.start()

        self.started_at = datetime.now(UTC)
        self.is_ready = True
        logger.info("riddlebridge_ready")

    async def _build_store(self) -> BridgeTransactionStore:
        if self.settings.store_backend == "memory":
            return InMemoryBridgeTransactionStore()

        self.db_client = Neo4jClient(self.settings)
        try:
            await self.db_client.connect()
        except (ServiceUnavailable, Neo4jError, OSError) as e:
            logger.critical("database_connection_failed", error=str(e))
            raise RuntimeError(f"Cannot start: Database connection failed - {e}") from e
        await SchemaManager(self.db_client).setup_all()
        return Neo4jBridgeTransactionStore(self.db_client)

    def _build_oracle(self) -> PriceOracle:
        if self.settings.price_backend == "static":
            return StaticPriceOracle(DEFAULT_STATIC_PRICES)
        return MarketPriceOracle(
            coingecko_url=self.settings.coingecko_api_url,
            dexscreener_url=self.settings.dexscreener_api_url,
            binance_url=self.settings.binance_api_url,
            srdl_mint=self.settings.srdl_mint,
            cache_ttl_seconds=self.settings.price_cache_ttl_seconds,
            stale_ttl_seconds=self.settings.price_stale_ttl_seconds,
            timeout_seconds=self.settings.rpc_timeout_seconds,
        )

    async def shutdown(self) -> None:
        """Stop background work, then release network resources."""
        logger.info("riddlebridge_shutting_down")
        self.is_ready = False

        if self.scheduler:
            await self.scheduler.stop()
        if self.pipeline:
            await self.pipeline.close()
        if self.chains:
            await self.chains.close()

        close_oracle = getattr(self.oracle, "close", None)
        if close_oracle is not None:
            await close_oracle()
        if self.store:
            await self.store.close()
        if self.db_client:
            await self.db_client.close()

        logger.info("riddlebridge_shutdown_complete")

    async def health(self) -> dict[str, Any]:
        """Readiness details, including database connectivity."""
        status: dict[str, Any] = {
            "status": "ready" if self.is_ready else "starting",
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "store": self.settings.store_backend,
            "chains": [chain.value for chain in self.chains.chains] if self.chains else [],
        }
        if self.db_client is not None:
            status["database"] = await self.db_client.health_check()
        if self.scheduler is not None:
            status["scheduler"] = self.scheduler.status()
        return status
