"""
Price Reference

USD prices for bridge tokens and exchange rates triangulated through USD.
Major assets fall back from Binance to CoinGecko to DexScreener; RDL and
SRDL trade only on DEXes and come from DexScreener search. Prices are
cached briefly, and a stale cached price is served for a while when every
provider fails.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, localcontext
from typing import Any, Protocol

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from riddlebridge.errors import PriceUnavailableError
from riddlebridge.models import Token, token_spec

logger = structlog.get_logger(__name__)

RATE_PRECISION = 28


class PriceOracle(Protocol):
    """Price reference consumed by the quote calculator and Step1."""

    async def get_usd_price(self, token: Token) -> Decimal: ...

    async def get_exchange_rate(self, source: Token, destination: Token) -> Decimal: ...


def triangulate(source_usd: Decimal, destination_usd: Decimal) -> Decimal:
    """Units of destination per unit of source."""
    if source_usd <= 0 or destination_usd <= 0:
        raise PriceUnavailableError("Non-positive USD price")
    with localcontext() as ctx:
        ctx.prec = RATE_PRECISION
        return source_usd / destination_usd


class StaticPriceOracle:
    """Fixed USD prices, for development and tests."""

    def __init__(self, prices: dict[Token, Decimal]):
        self._prices = dict(prices)

    def set_price(self, token: Token, price: Decimal | None) -> None:
        if price is None:
            self._prices.pop(token, None)
        else:
            self._prices[token] = price

    async def get_usd_price(self, token: Token) -> Decimal:
        try:
            return self._prices[token]
        except KeyError:
            raise PriceUnavailableError(f"No price for {token.value}") from None

    async def get_exchange_rate(self, source: Token, destination: Token) -> Decimal:
        return triangulate(await self.get_usd_price(source), await self.get_usd_price(destination))


DEFAULT_STATIC_PRICES: dict[Token, Decimal] = {
    Token.XRP: Decimal("0.50"),
    Token.RDL: Decimal("0.005"),
    Token.ETH: Decimal("2500"),
    Token.MATIC: Decimal("0.40"),
    Token.SOL: Decimal("150"),
    Token.SRDL: Decimal("0.005"),
    Token.BTC: Decimal("60000"),
}


# Binance spot tickers of major tokens
BINANCE_SYMBOLS: dict[Token, str] = {
    Token.ETH: "ETHUSDT",
    Token.MATIC: "POLUSDT",
    Token.SOL: "SOLUSDT",
    Token.BTC: "BTCUSDT",
}

# DexScreener base-token symbols of major tokens; RDL and SRDL match by chain and mint
DEX_FALLBACK_SYMBOLS: dict[Token, str] = {
    Token.XRP: "XRP",
    Token.ETH: "WETH",
    Token.MATIC: "WMATIC",
    Token.SOL: "SOL",
    Token.BTC: "WBTC",
}

PRICE_FETCH_ERRORS = (
    httpx.HTTPError,
    RetryError,
    KeyError,
    TypeError,
    ValueError,
    InvalidOperation,
)


@dataclass
class _CachedPrice:
    price: Decimal
    fetched_at: float
    source: str


PriceFetcher = Callable[[Token], Awaitable[Decimal]]


class MarketPriceOracle:
    """
    Live market prices.

    Each token has an ordered provider chain: Binance, CoinGecko, then
    DexScreener for major tokens, DexScreener alone for RDL and SRDL. The
    first provider with a usable price wins. Fetches are serialized per
    token, so concurrent quotes share one upstream call.

    Args:
        coingecko_url: CoinGecko API v3 base URL
        dexscreener_url: DexScreener "latest/dex" base URL
        srdl_mint: SPL mint used to pick the SRDL pair
        binance_url: Binance API v3 base URL
        cache_ttl_seconds: Age below which a cached price is served without refetching
        stale_ttl_seconds: Age below which a cached price is served when every provider fails
    """

    def __init__(
        self,
        coingecko_url: str,
        dexscreener_url: str,
        srdl_mint: str,
        binance_url: str = "https://api.binance.com/api/v3",
        cache_ttl_seconds: float = 90,
        stale_ttl_seconds: float = 300,
        http_client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 10.0,
    ):
        self._coingecko_url = coingecko_url.rstrip("/")
        self._dexscreener_url = dexscreener_url.rstrip("/")
        self._binance_url = binance_url.rstrip("/")
        self._srdl_mint = srdl_mint
        self._cache_ttl = cache_ttl_seconds
        self._stale_ttl = stale_ttl_seconds
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout_seconds)
        self._cache: dict[Token, _CachedPrice] = {}
        self._locks: dict[Token, asyncio.Lock] = {token: asyncio.Lock() for token in Token}

    async def close(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    async def _get_json(self, url: str, params: dict[str, Any]) -> Any:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(3),
            wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
            retry=retry_if_exception_type(httpx.TransportError),
            reraise=True,
        ):
            with attempt:
                response = await self._http.get(url, params=params)
                response.raise_for_status()
                return response.json()

    # ==================== Providers ====================

    def providers_for(self, token: Token) -> list[tuple[str, PriceFetcher]]:
        providers: list[tuple[str, PriceFetcher]] = []
        if token in BINANCE_SYMBOLS:
            providers.append(("binance", self._fetch_binance))
        if token_spec(token).coingecko_id:
            providers.append(("coingecko", self._fetch_coingecko))
        providers.append(("dexscreener", self._fetch_dexscreener))
        return providers

    async def _fetch_binance(self, token: Token) -> Decimal:
        data = await self._get_json(
            f"{self._binance_url}/ticker/price", {"symbol": BINANCE_SYMBOLS[token]}
        )
        return Decimal(str(data["price"]))

    async def _fetch_coingecko(self, token: Token) -> Decimal:
        coingecko_id = token_spec(token).coingecko_id
        data = await self._get_json(
            f"{self._coingecko_url}/simple/price",
            {"ids": coingecko_id, "vs_currencies": "usd"},
        )
        return Decimal(str(data[coingecko_id]["usd"]))

    async def _fetch_dexscreener(self, token: Token) -> Decimal:
        symbol = DEX_FALLBACK_SYMBOLS.get(token, token.value)
        data = await self._get_json(f"{self._dexscreener_url}/search", {"q": symbol})
        pairs = data.get("pairs") or []

        if token == Token.SRDL:
            candidates = [
                p for p in pairs
                if p.get("chainId") == "solana"
                and (p.get("baseToken") or {}).get("address") == self._srdl_mint
            ]
        elif token == Token.RDL:
            candidates = [
                p for p in pairs
                if p.get("chainId") == "xrpl"
                and (p.get("baseToken") or {}).get("symbol", "").upper() == token.value
            ]
        else:
            candidates = [
                p for p in pairs
                if (p.get("baseToken") or {}).get("symbol", "").upper() == symbol
            ]

        candidates = [p for p in candidates if p.get("priceUsd")]
        if not candidates:
            raise KeyError(f"no {token.value} pair on DexScreener")
        best = max(candidates, key=lambda p: float((p.get("liquidity") or {}).get("usd") or 0))
        return Decimal(str(best["priceUsd"]))

    # ==================== Lookup ====================

    async def _fetch_first(self, token: Token) -> tuple[str, Decimal]:
        errors: list[str] = []
        for source, fetch in self.providers_for(token):
            try:
                price = await fetch(token)
                if not price.is_finite() or price <= 0:
                    raise ValueError(f"invalid price {price}")
            except PRICE_FETCH_ERRORS as e:
                logger.info("price_provider_failed", token=token.value, source=source, error=str(e))
                errors.append(f"{source}: {e}")
                continue
            return source, price
        raise PriceUnavailableError(
            f"No price available for {token.value} ({'; '.join(errors)})"
        )

    async def get_usd_price(self, token: Token) -> Decimal:
        """
        USD price of a token.

        Raises:
            PriceUnavailableError: Every provider failed and no usable cached price exists
        """
        loop = asyncio.get_running_loop()
        cached = self._cache.get(token)
        if cached and loop.time() - cached.fetched_at < self._cache_ttl:
            return cached.price

        async with self._locks[token]:
            now = loop.time()
            cached = self._cache.get(token)
            if cached and now - cached.fetched_at < self._cache_ttl:
                return cached.price
            try:
                source, price = await self._fetch_first(token)
            except PriceUnavailableError as e:
                if cached and now - cached.fetched_at < self._stale_ttl:
                    logger.warning(
                        "price_fetch_failed_serving_stale",
                        token=token.value,
                        source=cached.source,
                        age_seconds=round(now - cached.fetched_at, 1),
                        error=str(e),
                    )
                    return cached.price
                logger.error("price_unavailable", token=token.value, error=str(e))
                raise

            self._cache[token] = _CachedPrice(price=price, fetched_at=loop.time(), source=source)
            logger.debug("price_fetched", token=token.value, source=source, price_usd=str(price))
            return price

    async def get_exchange_rate(self, source: Token, destination: Token) -> Decimal:
        source_usd, destination_usd = await asyncio.gather(
            self.get_usd_price(source), self.get_usd_price(destination)
        )
        return triangulate(source_usd, destination_usd)
