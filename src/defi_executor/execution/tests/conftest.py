"""
Test fixtures for claims and the execution coordinator.

Stores are the in-memory implementations, which share the claim semantics
of the PostgreSQL repositories. Pricing and scanning are mocked.
"""
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from defi_executor.arbitrage.scanner import ArbitrageConfig, ArbitrageOpportunity, TokenPair
from defi_executor.pricing.consensus import ConsensusConfig, ConsensusPrice
from defi_executor.storage.memory import InMemoryOpportunityStore, InMemoryOrderStore
from defi_executor.storage.models import ItemStatus, LimitOrder, OrderSide


class FakeClock:
    """Settable clock returning timezone-aware datetimes."""

    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def now():
    return datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def clock(now):
    return FakeClock(now)


@pytest.fixture
def order_store():
    return InMemoryOrderStore()


@pytest.fixture
def opportunity_store():
    return InMemoryOpportunityStore()


@pytest.fixture
def make_order(now):
    """Build a pending buy order: 1 ETH at 2000 USDC, 50 bps tolerance."""
    def _make(order_id="ord_1", **overrides):
        fields = dict(
            id=order_id,
            user_id="user_1",
            side=OrderSide.BUY,
            base_token="ETH",
            quote_token="USDC",
            amount=Decimal("1"),
            limit_price=Decimal("2000"),
            max_slippage_bps=50,
            expires_at=now + timedelta(hours=1),
            status=ItemStatus.PENDING,
            created_at=now,
        )
        fields.update(overrides)
        return LimitOrder(**fields)
    return _make


@pytest.fixture
def mock_pricing(now):
    """Consensus engine mock quoting ETH/USDC at 2008."""
    pricing = MagicMock()
    pricing.config = ConsensusConfig()
    pricing.get_pair_price = AsyncMock(return_value=ConsensusPrice(
        token="ETH",
        price=Decimal("2008"),
        confidence=0.98,
        source_count=3,
        computed_at=now,
    ))
    pricing.refresh = AsyncMock(return_value={})
    return pricing


@pytest.fixture
def opportunity(now):
    return ArbitrageOpportunity(
        pair=TokenPair("ETH", "USDC"),
        buy_leg=None,
        sell_leg=None,
        gross_profit_pct=0.5,
        estimated_cost=Decimal("0.4"),
        net_profit_pct=0.48,
        notional_value=Decimal("2000"),
        discovered_at=now,
    )


@pytest.fixture
def mock_scanner(opportunity):
    scanner = MagicMock()
    scanner.config = ArbitrageConfig()
    scanner.scan = AsyncMock(return_value=[opportunity])
    return scanner
