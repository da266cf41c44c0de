"""
Round-trip arbitrage scanner.

For each pair (A, B) with a configured trade size:
    1. Quote A -> B for the trade size, then B -> A for the proceeds.
       These are route-specific quotes, not consensus prices.
    2. gross_profit_pct = (rate_ab * rate_ba - 1) * 100
    3. Gas for both legs (native units) is converted to the quote asset
       with the consensus price of the native asset.
    4. net_profit_pct = gross_profit_pct - estimated_cost / notional_value * 100,
       where notional_value = trade size * consensus price of A in B.
    5. Only opportunities with net_profit_pct >= min_net_profit are emitted.
    6. Emitted opportunities are ranked by net profit (highest first),
       ties broken by lower estimated cost.
    7. Each opportunity carries a coarse risk_score that rises with net profit.

The scanner never claims or executes anything. Opportunities are handed to
the execution coordinator, which runs them through the claim protocol.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import Callable, Optional, Sequence

from defi_executor.ingestion.gas import CostEstimator
from defi_executor.ingestion.models import RouteQuote
from defi_executor.ingestion.sources import RouteQuoteSource
from defi_executor.pricing.consensus import InsufficientQuorumError, PriceConsensusEngine
from defi_executor.storage.models import ArbitrageExecution

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenPair:
    """A pair to scan, with the trade size used for the first leg."""
    base: str
    quote: str
    amount: Decimal = Decimal("1")

    def __post_init__(self):
        object.__setattr__(self, "base", self.base.upper())
        object.__setattr__(self, "quote", self.quote.upper())
        if self.base == self.quote:
            raise ValueError(f"Pair needs two different tokens, got {self.base}/{self.quote}")
        if not self.amount.is_finite() or self.amount <= 0:
            raise ValueError(f"Pair amount must be a positive number, got {self.amount}")

    @property
    def name(self) -> str:
        return f"{self.base}/{self.quote}"

    @classmethod
    def parse(cls, text: str) -> "TokenPair":
        """Parse "ETH/USDC" or "ETH/USDC:2.5" (trade size after the colon)."""
        pair_text, _, amount = text.strip().partition(":")
        base, sep, quote = pair_text.partition("/")
        if not sep or not base or not quote:
            raise ValueError(f"Invalid pair: {text!r} (expected BASE/QUOTE[:AMOUNT])")
        try:
            size = Decimal(amount) if amount else Decimal("1")
        except InvalidOperation as e:
            raise ValueError(f"Invalid pair amount in {text!r}") from e
        return cls(base.strip(), quote.strip(), size)


@dataclass
class ArbitrageConfig:
    """Configuration for the arbitrage scanner."""

    min_net_profit_pct: float = 0.1
    ttl_seconds: int = 60
    native_asset: str = "ETH"
    quote_timeout_seconds: float = 5.0

    def __post_init__(self):
        if self.ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be positive, got {self.ttl_seconds}")
        if self.quote_timeout_seconds <= 0:
            raise ValueError(f"quote_timeout_seconds must be positive, got {self.quote_timeout_seconds}")


@dataclass(frozen=True)
class ArbitrageOpportunity:
    """
    A round trip that clears the profit threshold.

    Ephemeral: re-derived every scan and never updated in place.
    Monetary values are in units of the pair's quote asset.
    """
    pair: TokenPair
    buy_leg: RouteQuote
    sell_leg: RouteQuote
    gross_profit_pct: float
    estimated_cost: Decimal
    net_profit_pct: float
    notional_value: Decimal
    discovered_at: datetime
    ttl_seconds: int = 60

    @property
    def expires_at(self) -> datetime:
        return self.discovered_at + timedelta(seconds=self.ttl_seconds)

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    @property
    def risk_score(self) -> int:
        return risk_score(self.net_profit_pct)

    @property
    def opportunity_id(self) -> str:
        """
        Identifier shared by every scanner that sees this pair in the same TTL window.

        Concurrent instances register the same row and contend for one claim.
        """
        window = int(self.discovered_at.timestamp() // self.ttl_seconds)
        return f"arb:{self.pair.name}:{window}"

    def to_execution(self) -> ArbitrageExecution:
        """Claimable store record for this opportunity."""
        return ArbitrageExecution(
            id=self.opportunity_id,
            pair=self.pair.name,
            net_profit_pct=self.net_profit_pct,
            gross_profit_pct=self.gross_profit_pct,
            estimated_cost=self.estimated_cost,
            notional_value=self.notional_value,
            discovered_at=self.discovered_at,
            expires_at=self.expires_at,
        )


def gross_profit_pct(rate_ab: Decimal, rate_ba: Decimal) -> Decimal:
    """Round-trip return in percent; positive only if rate_ab * rate_ba > 1."""
    return (rate_ab * rate_ba - 1) * 100


def net_profit_pct(gross_pct: Decimal, estimated_cost: Decimal, notional_value: Decimal) -> Decimal:
    """Gross return minus execution cost as a percentage of the notional."""
    if notional_value <= 0:
        raise ValueError(f"Notional value must be positive, got {notional_value}")
    return gross_pct - (estimated_cost / notional_value) * 100


def risk_score(net_profit_pct: float) -> int:
    """
    Coarse 0-100 risk bucket for an opportunity.

    Unusually large returns usually mean thin liquidity on one of the legs,
    so risk rises with the net profit.
    """
    if net_profit_pct < 0.3:
        return 20
    if net_profit_pct < 0.6:
        return 45
    if net_profit_pct < 1.0:
        return 60
    return 80


def rank_opportunities(opportunities: Sequence[ArbitrageOpportunity]) -> list[ArbitrageOpportunity]:
    """Best first: highest net profit, then lowest estimated cost."""
    return sorted(opportunities, key=lambda o: (-o.net_profit_pct, o.estimated_cost))


class ArbitrageScanner:
    """
    Finds round-trip opportunities across configured pairs.

    Usage:
        scanner = ArbitrageScanner(quoter, RouteGasEstimator(), engine)
        opportunities = await scanner.scan([TokenPair("ETH", "USDC", Decimal("1"))])
    """

    def __init__(
        self,
        quoter: RouteQuoteSource,
        cost_estimator: CostEstimator,
        pricing: PriceConsensusEngine,
        config: Optional[ArbitrageConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._quoter = quoter
        self._cost_estimator = cost_estimator
        self._pricing = pricing
        self.config = config or ArbitrageConfig()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def scan(
        self,
        pairs: Sequence[TokenPair],
        min_net_profit: Optional[float] = None,
    ) -> list[ArbitrageOpportunity]:
        """
        Evaluate every pair and return ranked opportunities above threshold.

        A failure on one pair (quote error, missing quorum) skips that pair only.
        """
        threshold = self.config.min_net_profit_pct if min_net_profit is None else min_net_profit
        now = self._clock()

        results = await asyncio.gather(
            *(self._evaluate_pair(pair, threshold, now) for pair in pairs),
            return_exceptions=True,
        )

        found: list[ArbitrageOpportunity] = []
        for pair, result in zip(pairs, results):
            if isinstance(result, ArbitrageOpportunity):
                found.append(result)
            elif isinstance(result, asyncio.CancelledError):
                raise result
            elif isinstance(result, InsufficientQuorumError):
                logger.warning(f"Skipping {pair.name}: {result}")
            elif isinstance(result, BaseException):
                logger.warning(f"Skipping {pair.name}: {type(result).__name__}: {result}")

        ranked = rank_opportunities(found)
        if ranked:
            best = ranked[0]
            logger.info(
                f"Found {len(ranked)} arbitrage opportunities "
                f"(best {best.pair.name} net {best.net_profit_pct:.4f}%)"
            )
        return ranked

    async def _evaluate_pair(
        self, pair: TokenPair, threshold: float, now: datetime
    ) -> Optional[ArbitrageOpportunity]:
        timeout = self.config.quote_timeout_seconds

        buy_leg = await asyncio.wait_for(
            self._quoter.get_quote(pair.base, pair.quote, pair.amount), timeout=timeout
        )
        sell_leg = await asyncio.wait_for(
            self._quoter.get_quote(pair.quote, pair.base, buy_leg.buy_amount), timeout=timeout
        )

        gross = gross_profit_pct(buy_leg.rate, sell_leg.rate)

        gas_native = (
            await self._cost_estimator.estimate_gas_cost(buy_leg)
            + await self._cost_estimator.estimate_gas_cost(sell_leg)
        )
        native_in_quote = await self._price_in(self.config.native_asset, pair.quote)
        estimated_cost = gas_native * native_in_quote

        base_in_quote = await self._price_in(pair.base, pair.quote)
        notional = pair.amount * base_in_quote

        net = net_profit_pct(gross, estimated_cost, notional)

        if net < Decimal(str(threshold)):
            logger.debug(
                f"{pair.name}: gross {float(gross):.4f}% net {float(net):.4f}% "
                f"below threshold {threshold}%, discarded"
            )
            return None

        return ArbitrageOpportunity(
            pair=pair,
            buy_leg=buy_leg,
            sell_leg=sell_leg,
            gross_profit_pct=float(gross),
            estimated_cost=estimated_cost,
            net_profit_pct=float(net),
            notional_value=notional,
            discovered_at=now,
            ttl_seconds=self.config.ttl_seconds,
        )

    async def _price_in(self, token: str, quote: str) -> Decimal:
        if token.upper() == quote.upper():
            return Decimal(1)
        consensus = await self._pricing.get_pair_price(token, quote)
        return consensus.price
