"""
Test fixtures for order state and background loops.
"""
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from defi_executor.pricing.consensus import ConsensusPrice
from defi_executor.storage.models import ItemStatus, LimitOrder, OrderSide


@pytest.fixture
def now():
    return datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def make_consensus(now):
    """Build a ConsensusPrice for ETH/USDC at the given price."""
    def _make(price, token="ETH"):
        return ConsensusPrice(
            token=token,
            price=Decimal(str(price)),
            confidence=0.95,
            source_count=3,
            computed_at=now,
        )
    return _make


@pytest.fixture
def make_order(now):
    """Build a pending 1 ETH limit order at 2000 USDC with 50 bps tolerance."""
    def _make(side=OrderSide.BUY, limit_price="2000", max_slippage_bps=50, **overrides):
        fields = dict(
            id="ord_1",
            user_id="user_1",
            side=side,
            base_token="ETH",
            quote_token="USDC",
            amount=Decimal("1"),
            limit_price=Decimal(limit_price),
            max_slippage_bps=max_slippage_bps,
            expires_at=now + timedelta(hours=1),
            status=ItemStatus.PENDING,
            created_at=now,
        )
        fields.update(overrides)
        return LimitOrder(**fields)
    return _make


@pytest.fixture
def mock_coordinator():
    """Mock ExecutionCoordinator with one arbitrage pair configured."""
    coordinator = MagicMock()
    coordinator.pairs = ["ETH/USDC"]
    coordinator.refresh_prices = AsyncMock(return_value={})
    coordinator.process_orders = AsyncMock(return_value=0)
    coordinator.process_opportunities = AsyncMock(return_value=0)
    coordinator.sweep_stale_claims = AsyncMock(return_value=0)
    return coordinator
