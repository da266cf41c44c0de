"""
Quote sources feeding the pricing engine and the arbitrage scanner.

Two collaborator interfaces:
    QuoteSource        get_price(token) -> PriceQuote       (consensus input)
    RouteQuoteSource   get_quote(sell, buy, amount) -> RouteQuote  (route-specific)

Implementations:
    CoinGeckoPriceSource   market data feed          confidence 0.95
    ZeroExPriceSource      aggregator indicative     confidence 0.98
    StreamingPriceSource   latest streamed tick      confidence 0.90
    ZeroExRouteQuoter      aggregator route quotes

Sources raise on any failure; they never return a placeholder price. The
consensus engine excludes a failing source from that cycle's quorum.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Optional, Protocol, runtime_checkable

from .client import CoinGeckoClient, QuoteAPIError, ZeroExClient
from .models import DEFAULT_TOKENS, PriceQuote, RouteQuote, TokenInfo
from .ticker_stream import TickerWebSocket

logger = logging.getLogger(__name__)

# Used when the aggregator omits gas figures from a quote
DEFAULT_GAS_UNITS = 210_000
DEFAULT_GAS_PRICE_WEI = 20 * 10**9


@runtime_checkable
class QuoteSource(Protocol):
    """A single upstream view of token USD prices."""

    name: str
    confidence: float

    async def get_price(self, token: str) -> PriceQuote:
        ...


@runtime_checkable
class RouteQuoteSource(Protocol):
    """Route-specific swap quotes for one leg."""

    async def get_quote(self, sell_token: str, buy_token: str, amount: Decimal) -> RouteQuote:
        ...


def _to_decimal(value, what: str) -> Decimal:
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError) as e:
        raise QuoteAPIError(f"Invalid {what}: {value!r}") from e
    if not result.is_finite():
        raise QuoteAPIError(f"Invalid {what}: {value!r}")
    return result


class _TokenLookup:
    def __init__(self, tokens: Optional[dict[str, TokenInfo]] = None):
        self._tokens = tokens or DEFAULT_TOKENS

    def token_info(self, token: str) -> TokenInfo:
        info = self._tokens.get(token.upper())
        if info is None:
            raise QuoteAPIError(f"Unknown token: {token}")
        return info


class CoinGeckoPriceSource(_TokenLookup):
    """USD prices from the CoinGecko simple price endpoint."""

    def __init__(
        self,
        client: CoinGeckoClient,
        tokens: Optional[dict[str, TokenInfo]] = None,
        confidence: float = 0.95,
        name: str = "coingecko",
    ):
        super().__init__(tokens)
        self._client = client
        self.confidence = confidence
        self.name = name

    async def get_price(self, token: str) -> PriceQuote:
        info = self.token_info(token)
        if not info.coingecko_id:
            raise QuoteAPIError(f"No CoinGecko id for {token}")

        data = await self._client.get_simple_prices([info.coingecko_id])
        usd = data.get(info.coingecko_id, {}).get("usd")
        if usd is None:
            raise QuoteAPIError(f"CoinGecko returned no price for {token}")

        return PriceQuote(
            source=self.name,
            token=info.symbol,
            price=_to_decimal(usd, "CoinGecko price"),
            confidence=self.confidence,
            observed_at=datetime.now(timezone.utc),
        )


class ZeroExPriceSource(_TokenLookup):
    """
    USD prices from the 0x indicative price endpoint.

    Prices one whole token against a USD stablecoin (USDC by default).
    """

    def __init__(
        self,
        client: ZeroExClient,
        tokens: Optional[dict[str, TokenInfo]] = None,
        usd_token: str = "USDC",
        confidence: float = 0.98,
        name: str = "0x",
    ):
        super().__init__(tokens)
        self._client = client
        self._usd_token = usd_token.upper()
        self.confidence = confidence
        self.name = name

    async def get_price(self, token: str) -> PriceQuote:
        info = self.token_info(token)
        usd_info = self.token_info(self._usd_token)
        if info.symbol == usd_info.symbol:
            raise QuoteAPIError(f"Cannot price {token} against itself")

        data = await self._client.get_price(
            info.address, usd_info.address, info.to_base_units(Decimal(1))
        )
        if data.get("price") is None:
            raise QuoteAPIError(f"0x returned no price for {token}")

        return PriceQuote(
            source=self.name,
            token=info.symbol,
            price=_to_decimal(data["price"], "0x price"),
            confidence=self.confidence,
            observed_at=datetime.now(timezone.utc),
        )


class StreamingPriceSource:
    """
    Latest streamed trade price.

    Reads the tick cache of a running TickerWebSocket. A missing or stale
    tick is a failure for this cycle, never a fallback to another source.
    """

    def __init__(
        self,
        ticker: TickerWebSocket,
        max_age_seconds: float = 30.0,
        confidence: float = 0.90,
        name: str = "stream",
    ):
        self._ticker = ticker
        self._max_age_seconds = max_age_seconds
        self.confidence = confidence
        self.name = name

    async def get_price(self, token: str) -> PriceQuote:
        tick = self._ticker.latest(token)
        if tick is None:
            raise QuoteAPIError(f"No streamed tick for {token}")
        if not tick.is_fresh(self._max_age_seconds):
            raise QuoteAPIError(
                f"Streamed tick for {token} is stale ({tick.age_seconds:.1f}s old)"
            )

        return PriceQuote(
            source=self.name,
            token=tick.token,
            price=tick.price,
            confidence=self.confidence,
            observed_at=tick.received_at,
        )


class ZeroExRouteQuoter(_TokenLookup):
    """
    Route quotes for one swap leg from the 0x quote endpoint.

    Usage:
        quoter = ZeroExRouteQuoter(ZeroExClient(api_key="..."))
        leg = await quoter.get_quote("ETH", "USDC", Decimal("1"))
        leg.rate  # USDC received per ETH on this route
    """

    def __init__(self, client: ZeroExClient, tokens: Optional[dict[str, TokenInfo]] = None):
        super().__init__(tokens)
        self._client = client

    async def get_quote(self, sell_token: str, buy_token: str, amount: Decimal) -> RouteQuote:
        if amount <= 0:
            raise ValueError(f"Quote amount must be positive, got {amount}")

        sell_info = self.token_info(sell_token)
        buy_info = self.token_info(buy_token)

        data = await self._client.get_quote(
            sell_info.address, buy_info.address, sell_info.to_base_units(amount)
        )

        if data.get("buyAmount") is None:
            raise QuoteAPIError(f"0x quote for {sell_token}->{buy_token} has no buyAmount")
        buy_amount = buy_info.from_base_units(data["buyAmount"])

        if data.get("price") is not None:
            rate = _to_decimal(data["price"], "0x quote price")
        else:
            rate = buy_amount / amount

        gas_units = int(data.get("estimatedGas") or data.get("gas") or DEFAULT_GAS_UNITS)
        gas_price_wei = int(data.get("gasPrice") or DEFAULT_GAS_PRICE_WEI)

        sources = tuple(
            s["name"]
            for s in data.get("sources", [])
            if isinstance(s, dict) and _to_decimal(s.get("proportion", "0"), "proportion") > 0
        )

        return RouteQuote(
            sell_token=sell_info.symbol,
            buy_token=buy_info.symbol,
            sell_amount=amount,
            buy_amount=buy_amount,
            rate=rate,
            gas_units=gas_units,
            gas_price_wei=gas_price_wei,
            observed_at=datetime.now(timezone.utc),
            sources=sources,
        )
