"""
Tests for price consensus.

These tests verify:
- A single respondent never produces a price
- Agreeing sources yield the top-confidence quote
- Disagreeing sources yield a confidence-weighted average
- Failing and timed-out sources are excluded from quorum
- Cached consensus is reused while fresh
- Pair prices through reference and non-reference quote assets
"""
from decimal import Decimal

import pytest

from defi_executor.ingestion.client import QuoteAPIError
from defi_executor.pricing.consensus import (
    ConsensusConfig,
    InsufficientQuorumError,
    PriceConsensusEngine,
    compute_consensus,
)


# =============================================================================
# compute_consensus
# =============================================================================

class TestComputeConsensus:

    def test_single_quote_is_not_a_consensus(self, make_quote):
        with pytest.raises(InsufficientQuorumError) as exc_info:
            compute_consensus("ETH", [make_quote("0x", 2000, 0.98)])

        assert exc_info.value.respondents == 1
        assert exc_info.value.required == 2

    def test_agreement_uses_highest_confidence_quote(self, make_quote):
        quotes = [
            make_quote("coingecko", "1999.8", 0.95),
            make_quote("0x", "2001.5", 0.98),
            make_quote("stream", "2000.0", 0.90),
        ]

        result = compute_consensus("ETH", quotes, max_deviation=0.02)

        assert result.price == Decimal("2001.5")
        assert result.confidence == 0.98
        assert result.source_count == 3
        assert result.sources[0] == "0x"

    def test_disagreement_uses_weighted_average(self, make_quote):
        quotes = [
            make_quote("a", 2000, 0.95),
            make_quote("b", 2100, 0.90),
        ]

        result = compute_consensus("ETH", quotes, max_deviation=0.02)

        # (2000*0.95 + 2100*0.90) / 1.85
        assert float(result.price) == pytest.approx(2048.6486, rel=1e-6)
        assert result.confidence == 0.90

    def test_result_within_respondent_range(self, make_quote):
        quotes = [
            make_quote("a", 1800, 0.5),
            make_quote("b", 2200, 0.9),
            make_quote("c", 2050, 0.7),
        ]

        result = compute_consensus("ETH", quotes, max_deviation=0.01)

        assert Decimal(1800) <= result.price <= Decimal(2200)

    def test_invalid_prices_discarded_before_quorum(self, make_quote):
        quotes = [
            make_quote("a", 2000, 0.95),
            make_quote("b", 0, 0.98),
            make_quote("c", "NaN", 0.99),
        ]

        with pytest.raises(InsufficientQuorumError) as exc_info:
            compute_consensus("ETH", quotes)

        assert exc_info.value.respondents == 1

    def test_deviation_boundary_is_inclusive(self, make_quote):
        quotes = [
            make_quote("a", 100, 0.9),
            make_quote("b", 102, 0.8),
        ]

        result = compute_consensus("ETH", quotes, max_deviation=0.02)

        assert result.price == Decimal(100)


class TestConsensusConfig:

    def test_quorum_below_two_rejected(self):
        with pytest.raises(ValueError):
            ConsensusConfig(min_sources=1)


# =============================================================================
# PriceConsensusEngine
# =============================================================================

class TestPriceConsensusEngine:

    @pytest.mark.asyncio
    async def test_failing_source_excluded(self, make_source):
        sources = [
            make_source("coingecko", 0.95, {"ETH": "1999.8"}),
            make_source("0x", 0.98, error=QuoteAPIError("down")),
            make_source("stream", 0.90, {"ETH": "2000.2"}),
        ]
        engine = PriceConsensusEngine(sources)

        result = await engine.get_consensus_price("eth")

        assert result.token == "ETH"
        assert result.source_count == 2
        assert result.price == Decimal("1999.8")

    @pytest.mark.asyncio
    async def test_timed_out_source_excluded(self, make_source):
        sources = [
            make_source("coingecko", 0.95, {"ETH": 2000}),
            make_source("0x", 0.98, {"ETH": 2001}, delay=1.0),
            make_source("stream", 0.90, {"ETH": 2000}),
        ]
        engine = PriceConsensusEngine(
            sources, ConsensusConfig(source_timeout_seconds=0.05)
        )

        result = await engine.get_consensus_price("ETH")

        assert result.source_count == 2
        assert "0x" not in result.sources

    @pytest.mark.asyncio
    async def test_quorum_failure_raises(self, make_source):
        sources = [
            make_source("coingecko", 0.95, {"ETH": 2000}),
            make_source("0x", 0.98, error=QuoteAPIError("down")),
        ]
        engine = PriceConsensusEngine(sources)

        with pytest.raises(InsufficientQuorumError):
            await engine.get_consensus_price("ETH")

    @pytest.mark.asyncio
    async def test_cached_result_reused(self, make_source):
        sources = [
            make_source("a", 0.95, {"ETH": 2000}),
            make_source("b", 0.90, {"ETH": 2001}),
        ]
        engine = PriceConsensusEngine(sources)

        first = await engine.get_consensus_price("ETH")
        second = await engine.get_consensus_price("ETH")

        assert first == second
        assert all(source.calls == 1 for source in sources)

    @pytest.mark.asyncio
    async def test_refresh_bypasses_cache_and_omits_failures(self, make_source):
        sources = [
            make_source("a", 0.95, {"ETH": 2000, "LINK": 15}),
            make_source("b", 0.90, {"ETH": 2001}),
        ]
        engine = PriceConsensusEngine(sources)
        await engine.get_consensus_price("ETH")

        prices = await engine.refresh(["ETH", "eth", "LINK"])

        assert set(prices) == {"ETH"}
        assert sources[0].calls == 3  # ETH twice, LINK once

    @pytest.mark.asyncio
    async def test_pair_price_against_reference_asset(self, make_source):
        sources = [
            make_source("a", 0.95, {"ETH": 2000}),
            make_source("b", 0.90, {"ETH": 2001}),
        ]
        engine = PriceConsensusEngine(sources)

        result = await engine.get_pair_price("ETH", "USDC")

        assert result.price == Decimal(2000)
        assert all(source.calls == 1 for source in sources)

    @pytest.mark.asyncio
    async def test_pair_price_divides_legs(self, make_source):
        sources = [
            make_source("a", 0.95, {"WBTC": 60000, "ETH": 2000}),
            make_source("b", 0.90, {"WBTC": 60010, "ETH": 2001}),
        ]
        engine = PriceConsensusEngine(sources)

        result = await engine.get_pair_price("WBTC", "ETH")

        assert result.token == "WBTC/ETH"
        assert result.price == Decimal(30)
        assert result.confidence == 0.95

    @pytest.mark.asyncio
    async def test_pair_price_same_token_rejected(self, make_source):
        engine = PriceConsensusEngine([make_source("a", 0.9), make_source("b", 0.9)])

        with pytest.raises(ValueError):
            await engine.get_pair_price("ETH", "eth")
