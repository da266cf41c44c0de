"""
Data models for the ingestion layer.

These models represent data structures for:
- Single-source price observations (PriceQuote)
- Route-specific swap quotes from the aggregator (RouteQuote)
- Latest ticks from the streaming feed (Tick)
- Token metadata needed to talk to the upstream APIs (TokenInfo)

Note on units:
    PriceQuote.price is quoted in USD per token.
    RouteQuote.rate is buy-token units per sell-token unit for that route,
    which is not the same thing as a consensus price.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional


@dataclass(frozen=True)
class PriceQuote:
    """
    A single source's view of a token price.

    Attributes:
        source: Name of the source that produced the quote
        token: Token symbol (e.g. "ETH")
        price: USD price as Decimal (must be positive)
        confidence: Source confidence weight in [0, 1]
        observed_at: When the quote was observed
    """
    source: str
    token: str
    price: Decimal
    confidence: float
    observed_at: datetime

    def __post_init__(self):
        if not (0.0 <= self.confidence <= 1.0):
            raise ValueError(f"Confidence must be between 0 and 1, got {self.confidence}")

    @property
    def age_seconds(self) -> float:
        """Seconds since this quote was observed."""
        now = datetime.now(timezone.utc)
        return (now - self.observed_at).total_seconds()


@dataclass(frozen=True)
class RouteQuote:
    """
    Aggregator quote for one swap leg.

    Attributes:
        sell_token: Token being sold
        buy_token: Token being bought
        sell_amount: Amount sold, in whole token units
        buy_amount: Amount received, in whole token units
        rate: buy_token received per sell_token sold on this route
        gas_units: Estimated gas for the swap
        gas_price_wei: Gas price the quote was built with
        sources: Liquidity sources the route is split across
        observed_at: When the quote was fetched
    """
    sell_token: str
    buy_token: str
    sell_amount: Decimal
    buy_amount: Decimal
    rate: Decimal
    gas_units: int
    gas_price_wei: int
    observed_at: datetime
    sources: tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class Tick:
    """Latest trade price seen on the streaming feed for a token."""
    token: str
    price: Decimal
    received_at: datetime

    @property
    def age_seconds(self) -> float:
        """Seconds since this tick was received."""
        now = datetime.now(timezone.utc)
        return (now - self.received_at).total_seconds()

    def is_fresh(self, max_age_seconds: float = 30.0) -> bool:
        """Check if the tick is recent enough to quote from."""
        return self.age_seconds <= max_age_seconds


@dataclass(frozen=True)
class TokenInfo:
    """
    Token metadata used by the upstream clients.

    Attributes:
        symbol: Symbol used throughout the engine (e.g. "ETH")
        address: Contract address the aggregator expects
        decimals: ERC-20 decimals for base-unit conversion
        coingecko_id: CoinGecko asset id (e.g. "ethereum")
        stream_symbol: Ticker symbol on the streaming feed (e.g. "ethusdt")
    """
    symbol: str
    address: str
    decimals: int
    coingecko_id: Optional[str] = None
    stream_symbol: Optional[str] = None

    def to_base_units(self, amount: Decimal) -> int:
        """Convert a whole-token amount to integer base units."""
        return int(amount * (Decimal(10) ** self.decimals))

    def from_base_units(self, raw: int | str) -> Decimal:
        """Convert integer base units to a whole-token amount."""
        return Decimal(str(raw)) / (Decimal(10) ** self.decimals)


# Ethereum mainnet defaults. ETH is quoted through the native-asset placeholder.
DEFAULT_TOKENS: dict[str, TokenInfo] = {
    "ETH": TokenInfo(
        "ETH", "0xEeeeeEeeeEeEeeEeEeEeeEEEeeeeEeeeeeeeEEeE", 18, "ethereum", "ethusdt"
    ),
    "WETH": TokenInfo(
        "WETH", "0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2", 18, "weth", "ethusdt"
    ),
    "WBTC": TokenInfo(
        "WBTC", "0x2260FAC5E5542a773Aa44fBCfeDf7C193bc2C599", 8, "wrapped-bitcoin", "btcusdt"
    ),
    "USDC": TokenInfo(
        "USDC", "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48", 6, "usd-coin", "usdcusdt"
    ),
    "USDT": TokenInfo(
        "USDT", "0xdAC17F958D2ee523a2206206994597C13D831ec7", 6, "tether", None
    ),
    "DAI": TokenInfo(
        "DAI", "0x6B175474E89094C44Da98b954EedeAC495271d0F", 18, "dai", None
    ),
    "LINK": TokenInfo(
        "LINK", "0x514910771AF9Ca656af840dff83E8264EcF986CA", 18, "chainlink", "linkusdt"
    ),
}
