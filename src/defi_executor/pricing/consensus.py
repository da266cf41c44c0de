"""
Price consensus across disagreeing quote sources.

Algorithm (per token):
    1. Query every source concurrently, each bounded by source_timeout_seconds.
       Failing or timed-out sources are excluded from this cycle's quorum.
    2. Fewer than min_sources respondents -> InsufficientQuorumError.
       A price is never derived from a single source.
    3. Sort by confidence (highest first). If the top two agree within
       max_deviation (relative to the top price), the top quote wins outright.
    4. Otherwise take the confidence-weighted average of all respondents,
       with confidence = the minimum respondent confidence.
    5. Results are cached per token for cache_ttl_seconds.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Optional, Sequence

from defi_executor.ingestion.models import PriceQuote
from defi_executor.ingestion.sources import QuoteSource

from .cache import PriceCache

logger = logging.getLogger(__name__)


class InsufficientQuorumError(Exception):
    """Fewer than min_sources produced a usable quote for a token."""

    def __init__(self, token: str, respondents: int, required: int):
        super().__init__(
            f"Insufficient quorum for {token}: {respondents} of {required} required sources responded"
        )
        self.token = token
        self.respondents = respondents
        self.required = required


class SourceTimeoutError(Exception):
    """A source did not answer within its per-source timeout."""

    def __init__(self, source: str, token: str, timeout: float):
        super().__init__(f"Source {source} timed out after {timeout}s quoting {token}")
        self.source = source
        self.token = token
        self.timeout = timeout


@dataclass
class ConsensusConfig:
    """Configuration for the consensus engine."""

    max_deviation: float = 0.02
    min_sources: int = 2
    source_timeout_seconds: float = 3.0
    cache_ttl_seconds: float = 10.0
    # Quote assets treated as USD when deriving pair prices
    reference_assets: frozenset[str] = field(
        default_factory=lambda: frozenset({"USD", "USDC", "USDT", "DAI"})
    )

    def __post_init__(self):
        if self.min_sources < 2:
            raise ValueError(f"min_sources must be at least 2, got {self.min_sources}")
        if self.max_deviation < 0:
            raise ValueError(f"max_deviation must be non-negative, got {self.max_deviation}")


@dataclass(frozen=True)
class ConsensusPrice:
    """Reconciled price for a token (or a base/quote pair)."""

    token: str
    price: Decimal
    confidence: float
    source_count: int
    computed_at: datetime
    sources: tuple[str, ...] = ()


def compute_consensus(
    token: str,
    quotes: Sequence[PriceQuote],
    max_deviation: float = 0.02,
    min_sources: int = 2,
    now: Optional[datetime] = None,
) -> ConsensusPrice:
    """
    Reconcile already-collected quotes into one price.

    Non-positive and non-finite prices are discarded before the quorum check.

    Raises:
        InsufficientQuorumError: If fewer than min_sources usable quotes remain
    """
    usable = [q for q in quotes if q.price.is_finite() and q.price > 0]
    if len(usable) < min_sources:
        raise InsufficientQuorumError(token, len(usable), min_sources)

    ranked = sorted(usable, key=lambda q: q.confidence, reverse=True)
    computed_at = now or datetime.now(timezone.utc)
    source_names = tuple(q.source for q in ranked)

    top, runner_up = ranked[0], ranked[1]
    deviation = abs(top.price - runner_up.price) / top.price
    if deviation <= Decimal(str(max_deviation)):
        return ConsensusPrice(
            token=token,
            price=top.price,
            confidence=top.confidence,
            source_count=len(ranked),
            computed_at=computed_at,
            sources=source_names,
        )

    logger.info(
        f"Sources disagree on {token} (deviation {float(deviation):.2%}), "
        f"using confidence-weighted average of {len(ranked)} quotes"
    )
    weights = [Decimal(str(q.confidence)) for q in ranked]
    total_weight = sum(weights, Decimal(0))
    if total_weight > 0:
        price = sum((q.price * w for q, w in zip(ranked, weights)), Decimal(0)) / total_weight
    else:
        price = sum((q.price for q in ranked), Decimal(0)) / len(ranked)

    return ConsensusPrice(
        token=token,
        price=price,
        confidence=min(q.confidence for q in ranked),
        source_count=len(ranked),
        computed_at=computed_at,
        sources=source_names,
    )


class PriceConsensusEngine:
    """
    Reconciles multiple QuoteSources into a single trustworthy price.

    Usage:
        engine = PriceConsensusEngine(
            sources=[coingecko, zeroex, stream],
            config=ConsensusConfig(max_deviation=0.02),
        )
        eth = await engine.get_consensus_price("ETH")
        eth_usdc = await engine.get_pair_price("ETH", "USDC")
    """

    def __init__(
        self,
        sources: Sequence[QuoteSource],
        config: Optional[ConsensusConfig] = None,
        cache: Optional[PriceCache[ConsensusPrice]] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._sources = list(sources)
        self.config = config or ConsensusConfig()
        self._cache = cache or PriceCache(ttl_seconds=self.config.cache_ttl_seconds)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

        if len(self._sources) < self.config.min_sources:
            logger.warning(
                f"Only {len(self._sources)} quote sources configured; "
                f"quorum of {self.config.min_sources} can never be reached"
            )

    @property
    def sources(self) -> list[QuoteSource]:
        return list(self._sources)

    async def get_consensus_price(self, token: str) -> ConsensusPrice:
        """
        Consensus USD price for a token, served from cache while fresh.

        Raises:
            InsufficientQuorumError: If fewer than min_sources respond
        """
        token = token.upper()
        cached = self._cache.get(token)
        if cached is not None:
            return cached
        return await self._compute(token)

    async def get_pair_price(self, base: str, quote: str) -> ConsensusPrice:
        """
        Consensus price of `base` denominated in `quote`.

        When quote is a reference asset the base's USD price is returned as-is.
        Otherwise both legs are resolved and divided.

        Raises:
            InsufficientQuorumError: If either leg lacks quorum
        """
        base, quote = base.upper(), quote.upper()
        if base == quote:
            raise ValueError(f"Cannot price {base} against itself")

        base_price = await self.get_consensus_price(base)
        if quote in self.config.reference_assets:
            return base_price

        quote_price = await self.get_consensus_price(quote)
        return ConsensusPrice(
            token=f"{base}/{quote}",
            price=base_price.price / quote_price.price,
            confidence=min(base_price.confidence, quote_price.confidence),
            source_count=min(base_price.source_count, quote_price.source_count),
            computed_at=min(base_price.computed_at, quote_price.computed_at),
            sources=tuple(sorted(set(base_price.sources) & set(quote_price.sources))),
        )

    async def refresh(self, tokens: Sequence[str]) -> dict[str, ConsensusPrice]:
        """
        Recompute consensus for tokens, bypassing the cache.

        Tokens that fail quorum are logged and left out of the result.
        """
        unique = list(dict.fromkeys(t.upper() for t in tokens))
        results = await asyncio.gather(
            *(self._compute(token) for token in unique), return_exceptions=True
        )

        prices: dict[str, ConsensusPrice] = {}
        for token, result in zip(unique, results):
            if isinstance(result, ConsensusPrice):
                prices[token] = result
            elif isinstance(result, InsufficientQuorumError):
                logger.warning(str(result))
            elif isinstance(result, asyncio.CancelledError):
                raise result
            else:
                logger.error(f"Consensus refresh failed for {token}: {result}")
        return prices

    async def _compute(self, token: str) -> ConsensusPrice:
        quotes = await self._collect_quotes(token)
        consensus = compute_consensus(
            token,
            quotes,
            max_deviation=self.config.max_deviation,
            min_sources=self.config.min_sources,
            now=self._clock(),
        )
        self._cache.set(token, consensus)
        logger.debug(
            f"Consensus {token} = {consensus.price} "
            f"(confidence={consensus.confidence:.2f}, sources={consensus.source_count})"
        )
        return consensus

    async def _collect_quotes(self, token: str) -> list[PriceQuote]:
        results = await asyncio.gather(
            *(self._query_source(source, token) for source in self._sources),
            return_exceptions=True,
        )

        quotes: list[PriceQuote] = []
        for source, result in zip(self._sources, results):
            if isinstance(result, PriceQuote):
                quotes.append(result)
            elif isinstance(result, asyncio.CancelledError):
                raise result
            else:
                logger.warning(
                    f"Excluding source {getattr(source, 'name', source)} for {token}: {result}"
                )
        return quotes

    async def _query_source(self, source: QuoteSource, token: str) -> PriceQuote:
        timeout = self.config.source_timeout_seconds
        try:
            return await asyncio.wait_for(source.get_price(token), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise SourceTimeoutError(getattr(source, "name", str(source)), token, timeout) from e
