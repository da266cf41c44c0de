"""
Storage layer test fixtures.

Repository tests run against a mocked Database and assert on the SQL and
arguments issued. The in-memory stores are exercised directly.
"""
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from defi_executor.storage import (
    ArbitrageExecution,
    InMemoryOpportunityStore,
    InMemoryOrderStore,
    ItemStatus,
    LimitOrder,
    OrderSide,
)


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest.fixture
def mock_db():
    """Mock database for unit tests."""
    db = AsyncMock()
    db.execute = AsyncMock(return_value="DELETE 0")
    db.fetch = AsyncMock(return_value=[])
    db.fetchrow = AsyncMock(return_value=None)
    db.fetchval = AsyncMock(return_value=None)
    return db


# =============================================================================
# Model Fixtures
# =============================================================================


@pytest.fixture
def now():
    return datetime.now(timezone.utc)


@pytest.fixture
def sample_order(now):
    """A pending buy order for 1 ETH at 2000 USDC."""
    return LimitOrder(
        id="ord_1",
        user_id="user_1",
        side=OrderSide.BUY,
        base_token="ETH",
        quote_token="USDC",
        amount=Decimal("1"),
        limit_price=Decimal("2000"),
        max_slippage_bps=50,
        created_at=now,
        updated_at=now,
    )


@pytest.fixture
def sample_execution(now):
    """A registered arbitrage execution, valid for 60s."""
    return ArbitrageExecution(
        id="arb:ETH/USDC:1",
        pair="ETH/USDC",
        net_profit_pct=0.25,
        gross_profit_pct=0.4,
        estimated_cost=Decimal("3"),
        notional_value=Decimal("2000"),
        discovered_at=now,
        expires_at=now + timedelta(seconds=60),
    )


@pytest.fixture
def order_record(sample_order):
    """An asyncpg-like row for sample_order."""
    row = sample_order.model_dump()
    row["side"] = "buy"
    row["status"] = ItemStatus.PENDING.value
    return row


@pytest.fixture
def order_store():
    return InMemoryOrderStore()


@pytest.fixture
def opportunity_store():
    return InMemoryOpportunityStore()
