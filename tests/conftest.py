"""
Shared test fixtures for cross-component tests.

This file provides fixtures that span multiple components,
unlike component-specific fixtures in src/defi_executor/{component}/tests/conftest.py
"""
import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from defi_executor.ingestion.client import QuoteAPIError
from defi_executor.ingestion.models import PriceQuote
from defi_executor.pricing.consensus import ConsensusConfig, PriceConsensusEngine
from defi_executor.storage.models import ItemStatus, LimitOrder, OrderSide


class StaticSource:
    """Quote source with a settable price per token."""

    def __init__(self, name, confidence, prices=None):
        self.name = name
        self.confidence = confidence
        self.prices = dict(prices or {})

    async def get_price(self, token):
        # Yield so concurrent evaluators genuinely interleave
        await asyncio.sleep(0)
        if token not in self.prices:
            raise QuoteAPIError(f"{self.name} has no price for {token}")
        return PriceQuote(
            source=self.name,
            token=token,
            price=Decimal(str(self.prices[token])),
            confidence=self.confidence,
            observed_at=datetime.now(timezone.utc),
        )


class SlowPaperExecutor:
    """Executor that takes a moment and records every call."""

    def __init__(self, name="paper", delay=0.01):
        self.name = name
        self.delay = delay
        self.executed = []

    async def execute(self, item):
        from defi_executor.execution.executor import ExecutionReceipt

        await asyncio.sleep(self.delay)
        item_id = getattr(item, "id", None) or item.opportunity_id
        self.executed.append(item_id)
        return ExecutionReceipt(execution_ref=f"{self.name}_{item_id}")


# =============================================================================
# Pricing Fixtures
# =============================================================================

@pytest.fixture
def eth_sources():
    """Two agreeing sources pricing ETH around 2000 USD."""
    return [
        StaticSource("coingecko", 0.95, {"ETH": "2001"}),
        StaticSource("0x", 0.98, {"ETH": "2002"}),
    ]


@pytest.fixture
def make_pricing():
    """Build a consensus engine over the given sources with caching disabled in effect."""
    def _make(sources):
        return PriceConsensusEngine(sources, ConsensusConfig(cache_ttl_seconds=0.001))
    return _make


@pytest.fixture
def make_executor():
    return SlowPaperExecutor


# =============================================================================
# Order Fixtures
# =============================================================================

@pytest.fixture
def make_order():
    """Build a pending buy order: ETH at 2010 USDC, no tolerance."""
    def _make(order_id, limit_price="2010", side=OrderSide.BUY, **overrides):
        now = datetime.now(timezone.utc)
        fields = dict(
            id=order_id,
            user_id="user_1",
            side=side,
            base_token="ETH",
            quote_token="USDC",
            amount=Decimal("1"),
            limit_price=Decimal(limit_price),
            max_slippage_bps=0,
            expires_at=now + timedelta(hours=1),
            status=ItemStatus.PENDING,
            created_at=now,
        )
        fields.update(overrides)
        return LimitOrder(**fields)
    return _make
