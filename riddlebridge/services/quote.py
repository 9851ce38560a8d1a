"""
Fee & Quote Calculator

The fee is 1% of the input, charged in source-token units; the output is
the remainder converted at the exchange rate and truncated to the
destination token's native precision, so the bank wallet never over-pays.
"""

from decimal import Decimal, localcontext

import structlog

from riddlebridge.errors import InvalidRouteError, ValidationError
from riddlebridge.models import (
    BRIDGE_FEE_RATE,
    SUPPORTED_PAIRS,
    BridgeRoute,
    Chain,
    Quote,
    Token,
    dust_threshold,
    fits_precision,
    format_amount,
    round_down,
    token_spec,
)
from riddlebridge.services.pricing import PriceOracle

logger = structlog.get_logger(__name__)


def resolve_route(
    source_token: Token,
    destination_token: Token,
    source_chain: Chain | None = None,
    destination_chain: Chain | None = None,
) -> BridgeRoute:
    """
    Build the route for a token pair, checking it against the pairs table.

    Chains are derived from the tokens; a supplied chain must agree.

    Raises:
        InvalidRouteError: Same token, unsupported pair or wrong chain
    """
    if source_token == destination_token:
        raise InvalidRouteError(f"Cannot bridge {source_token.value} to itself")
    if destination_token not in SUPPORTED_PAIRS.get(source_token, frozenset()):
        raise InvalidRouteError(
            f"Unsupported bridge route {source_token.value} -> {destination_token.value}"
        )

    route = BridgeRoute.for_tokens(source_token, destination_token)
    if source_chain is not None and source_chain != route.source_chain:
        raise InvalidRouteError(
            f"{source_token.value} is not a {source_chain.value} token"
        )
    if destination_chain is not None and destination_chain != route.destination_chain:
        raise InvalidRouteError(
            f"{destination_token.value} is not a {destination_chain.value} token"
        )
    return route


def supported_routes() -> list[BridgeRoute]:
    """Every route in the pairs table, ordered by source then destination token."""
    return [
        BridgeRoute.for_tokens(source, destination)
        for source in Token
        for destination in Token
        if destination in SUPPORTED_PAIRS.get(source, frozenset())
    ]


def validate_amount_in(route: BridgeRoute, amount_in: Decimal) -> None:
    """Reject non-positive, dust and over-precise input amounts."""
    if not amount_in.is_finite() or amount_in <= 0:
        raise ValidationError("Amount must be a positive number")
    threshold = dust_threshold(route.source_token)
    if amount_in < threshold:
        raise ValidationError(
            f"Amount is below the minimum of {format_amount(threshold)} {route.source_token.value}"
        )
    if not fits_precision(amount_in, route.source_token):
        raise ValidationError(
            f"{route.source_token.value} supports at most "
            f"{token_spec(route.source_token).decimals} decimal places"
        )


def compute_quote(route: BridgeRoute, amount_in: Decimal, exchange_rate: Decimal) -> Quote:
    """
    Pure fee and output computation.

    fee_amount = amount_in * 0.01 (exact)
    amount_out = round_down((amount_in - fee_amount) * exchange_rate)
    """
    with localcontext() as ctx:
        ctx.prec = 50
        fee_amount = amount_in * BRIDGE_FEE_RATE
        gross = (amount_in - fee_amount) * exchange_rate
        amount_out = round_down(gross, route.destination_token)

    return Quote(
        route=route,
        amount_in=amount_in,
        fee_amount=fee_amount,
        exchange_rate=exchange_rate,
        amount_out=amount_out,
    )


class QuoteCalculator:
    """Quotes routes at the current exchange rate of a price oracle."""

    def __init__(self, oracle: PriceOracle):
        self.oracle = oracle

    async def quote(
        self,
        source_token: Token,
        destination_token: Token,
        amount_in: Decimal,
        source_chain: Chain | None = None,
        destination_chain: Chain | None = None,
    ) -> Quote:
        """
        Quote a route for ``amount_in``.

        Raises:
            InvalidRouteError: The route is not supported
            ValidationError: The input amount is not bridgeable
            PriceUnavailableError: No exchange rate is available
        """
        route = resolve_route(source_token, destination_token, source_chain, destination_chain)
        validate_amount_in(route, amount_in)
        rate = await self.oracle.get_exchange_rate(source_token, destination_token)
        quote = compute_quote(route, amount_in, rate)

        logger.debug(
            "bridge_quoted",
            route=route.label,
            amount_in=format_amount(amount_in),
            exchange_rate=format_amount(rate),
            amount_out=format_amount(quote.amount_out),
        )
        return quote
