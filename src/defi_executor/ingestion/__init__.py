"""
Ingestion Layer - upstream price feeds and route quotes.

Public API:
    Clients: ZeroExClient, CoinGeckoClient, TickerWebSocket
    Sources: QuoteSource, CoinGeckoPriceSource, ZeroExPriceSource, StreamingPriceSource
    Routes:  RouteQuoteSource, ZeroExRouteQuoter
    Gas:     CostEstimator, RouteGasEstimator
    Models:  PriceQuote, RouteQuote, Tick, TokenInfo, DEFAULT_TOKENS
    Errors:  QuoteAPIError, RateLimitError
"""
from .client import CoinGeckoClient, QuoteAPIError, RateLimitError, ZeroExClient
from .gas import CostEstimator, RouteGasEstimator
from .models import DEFAULT_TOKENS, PriceQuote, RouteQuote, Tick, TokenInfo
from .sources import (
    CoinGeckoPriceSource,
    QuoteSource,
    RouteQuoteSource,
    StreamingPriceSource,
    ZeroExPriceSource,
    ZeroExRouteQuoter,
)
from .ticker_stream import StreamState, TickerWebSocket

__all__ = [
    "ZeroExClient",
    "CoinGeckoClient",
    "QuoteAPIError",
    "RateLimitError",
    "TickerWebSocket",
    "StreamState",
    "QuoteSource",
    "RouteQuoteSource",
    "CoinGeckoPriceSource",
    "ZeroExPriceSource",
    "StreamingPriceSource",
    "ZeroExRouteQuoter",
    "CostEstimator",
    "RouteGasEstimator",
    "PriceQuote",
    "RouteQuote",
    "Tick",
    "TokenInfo",
    "DEFAULT_TOKENS",
]
