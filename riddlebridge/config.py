"""
RiddleBridge Configuration Management

Centralized configuration using Pydantic Settings for type-safe environment
variable loading with validation.

SECURITY NOTE: Signing keys are never read by the pipeline itself. Bank
wallet signing is delegated to a custodial signing service or to local
signers configured only in development.
"""

import warnings
from functools import lru_cache
from typing import Literal

from pydantic import Field, ValidationInfo, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class SecurityWarning(UserWarning):
    """Warning for security-related issues (insecure configurations, etc.)."""

    pass


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ═══════════════════════════════════════════════════════════════
    # APPLICATION
    # ═══════════════════════════════════════════════════════════════
    app_name: str = Field(default="riddlebridge", description="Application name")
    app_env: Literal["development", "staging", "production", "testing"] = Field(
        default="development", description="Environment"
    )
    debug: bool = Field(default=False, description="Debug mode")
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )

    # API
    api_host: str = Field(default="0.0.0.0", description="API host")
    api_port: int = Field(default=8000, ge=1, le=65535, description="API port")

    cors_origins: str = Field(
        default="http://localhost:3000,http://localhost:5173",
        description="Comma-separated allowed CORS origins",
    )

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins into a list."""
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    # ═══════════════════════════════════════════════════════════════
    # DATABASE (NEO4J)
    # ═══════════════════════════════════════════════════════════════
    store_backend: Literal["neo4j", "memory"] = Field(
        default="neo4j", description="Bridge transaction store backend"
    )
    neo4j_uri: str = Field(default="bolt://localhost:7687", description="Neo4j connection URI")
    neo4j_user: str = Field(default="neo4j", description="Neo4j username")
    neo4j_password: str = Field(default="", description="Neo4j password")
    neo4j_database: str = Field(default="neo4j", description="Neo4j database name")

    neo4j_max_connection_lifetime: int = Field(
        default=3600, ge=60, description="Max connection lifetime in seconds"
    )
    neo4j_max_connection_pool_size: int = Field(
        default=50, ge=1, description="Max connection pool size"
    )
    neo4j_connection_timeout: int = Field(
        default=30, ge=1, description="Connection timeout in seconds"
    )

    # ═══════════════════════════════════════════════════════════════
    # SECURITY
    # ═══════════════════════════════════════════════════════════════
    jwt_secret_key: str = Field(
        default="riddlebridge-development-secret-change-me",
        description="JWT secret key",
    )
    jwt_algorithm: Literal["HS256", "HS384", "HS512"] = Field(
        default="HS256", description="JWT algorithm"
    )

    @field_validator("jwt_secret_key")
    @classmethod
    def validate_jwt_secret(cls, v: str, info: ValidationInfo) -> str:
        """Reject trivially weak secrets, and the development default in production."""
        if len(v) < 32:
            raise ValueError("JWT_SECRET_KEY must be at least 32 characters")
        if "change-me" in v:
            if info.data.get("app_env") == "production":
                raise ValueError("JWT_SECRET_KEY must be set explicitly in production")
            warnings.warn(
                "JWT_SECRET_KEY is the development default. Set a real secret outside development.",
                SecurityWarning,
                stacklevel=2,
            )
        return v

    # ═══════════════════════════════════════════════════════════════
    # MONITORING
    # ═══════════════════════════════════════════════════════════════
    sentry_dsn: str | None = Field(default=None, description="Sentry DSN")

    # ═══════════════════════════════════════════════════════════════
    # CHAINS
    # ═══════════════════════════════════════════════════════════════
    chain_backend: Literal["live", "memory"] = Field(
        default="live", description="Use real chain RPCs or the in-memory ledger"
    )

    xrpl_rpc_url: str = Field(
        default="https://s1.ripple.com:51234/", description="rippled JSON-RPC endpoint"
    )
    ethereum_rpc_url: str = Field(
        default="https://eth.llamarpc.com", description="Ethereum RPC endpoint"
    )
    polygon_rpc_url: str = Field(
        default="https://polygon-rpc.com", description="Polygon RPC endpoint"
    )
    solana_rpc_url: str = Field(
        default="https://api.mainnet-beta.solana.com", description="Solana RPC endpoint"
    )
    bitcoin_api_url: str = Field(
        default="https://blockstream.info/api", description="Esplora REST API base URL"
    )

    # Custodial bank wallets (deposit and payout addresses)
    bank_wallet_xrpl: str = Field(default="rsFbZ33Zr3BCVyiVPw8pFvbtnrG1i8FwA3")
    bank_wallet_evm: str = Field(default="0xf7802d7522a45CB6a6f2eFa246f4B5489768b673")
    bank_wallet_solana: str = Field(default="AtzvJY1BvHQihWRxS3VCzqfzmx6p7Xjwu3z2JjLwNLsC")
    bank_wallet_bitcoin: str = Field(default="1PprcSuMKYC7vE8sirp93p1CgQPrmp4qeL")

    # Issued tokens
    rdl_issuer: str = Field(
        default="r9xvnzUWZJpDu3NA6MKHmKhKJQTRqCRgu9", description="RDL issuer on XRPL"
    )
    srdl_mint: str = Field(
        default="4tPL1ZPT4uy36VYjoDvoCpvNYurscS324D8P9Ap32AzE",
        description="SRDL SPL mint on Solana",
    )

    # Finality and poll budgets
    evm_confirmations: int = Field(default=12, ge=1, description="EVM confirmation depth")
    btc_confirmations: int = Field(default=2, ge=1, description="Bitcoin confirmation depth")
    poll_interval_seconds: float = Field(
        default=3.0, gt=0, description="Interval between chain lookups while waiting"
    )
    verify_timeout_seconds: float = Field(
        default=90.0, gt=0, description="Poll budget for inbound payment verification"
    )
    send_timeout_seconds: float = Field(
        default=120.0, gt=0, description="Poll budget for outbound payment finality"
    )
    rpc_timeout_seconds: float = Field(
        default=15.0, gt=0, description="Timeout of a single RPC request"
    )

    # Signing
    signer_backend: Literal["service", "local"] = Field(
        default="service", description="Custodial signing service or local development keys"
    )
    signer_service_url: str = Field(
        default="http://localhost:8700", description="Custodial signing service base URL"
    )
    signer_service_token: str | None = Field(
        default=None, description="Bearer token for the signing service"
    )
    evm_signer_private_key: str | None = Field(
        default=None, description="Local EVM bank key (development only, hex)"
    )
    solana_signer_private_key: str | None = Field(
        default=None, description="Local Solana bank key (development only, base58)"
    )

    # ═══════════════════════════════════════════════════════════════
    # PRICING
    # ═══════════════════════════════════════════════════════════════
    price_backend: Literal["market", "static"] = Field(
        default="market", description="Live market prices or fixed prices"
    )
    coingecko_api_url: str = Field(default="https://api.coingecko.com/api/v3")
    dexscreener_api_url: str = Field(default="https://api.dexscreener.com/latest/dex")
    binance_api_url: str = Field(default="https://api.binance.com/api/v3")
    price_cache_ttl_seconds: int = Field(default=90, ge=1, description="Fresh price cache TTL")
    price_stale_ttl_seconds: int = Field(
        default=300, ge=1, description="Maximum age of a cached price served on upstream failure"
    )

    # ═══════════════════════════════════════════════════════════════
    # PIPELINE POLICY
    # ═══════════════════════════════════════════════════════════════
    max_restarts: int = Field(default=3, ge=0, description="Restarts allowed per transaction")
    reconcile_grace_seconds: int = Field(
        default=300, ge=0,
        description="Window in which an unseen submitted payout is still treated as settling",
    )
    bridge_auto_distribute: bool = Field(
        default=False, description="Run Step3 automatically after successful verification"
    )

    scheduler_enabled: bool = Field(default=True, description="Run the maintenance scheduler")
    maintenance_interval_seconds: int = Field(
        default=60, ge=5, description="Interval of the maintenance sweep"
    )
    pending_expiry_minutes: int = Field(
        default=60, ge=1, description="Pending transactions without proof fail after this"
    )
    stale_execution_minutes: int = Field(
        default=15, ge=1, description="Executing transactions not updated for this are interrupted"
    )

    @model_validator(mode="after")
    def validate_stale_execution_window(self) -> "Settings":
        """
        An executing payout must outlive one full send attempt before the
        sweep may interrupt it: prepare, sign and broadcast (one RPC budget
        each) plus the finality poll.
        """
        attempt_budget = self.send_timeout_seconds + 3 * self.rpc_timeout_seconds
        if self.stale_execution_minutes * 60 <= attempt_budget:
            raise ValueError(
                f"STALE_EXECUTION_MINUTES must exceed one send attempt ({attempt_budget:g}s)"
            )
        return self

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
