"""
Test fixtures for the arbitrage scanner.

Route quotes, gas costs and consensus prices are all faked in-process.
"""
from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from defi_executor.ingestion.client import QuoteAPIError
from defi_executor.ingestion.models import RouteQuote
from defi_executor.pricing.consensus import ConsensusPrice


class FakeQuoter:
    """Route quoter returning fixed rates per (sell, buy) leg."""

    def __init__(self, rates):
        self.rates = {k: Decimal(str(v)) for k, v in rates.items()}
        self.calls = []

    async def get_quote(self, sell_token, buy_token, amount):
        self.calls.append((sell_token, buy_token, amount))
        rate = self.rates.get((sell_token, buy_token))
        if rate is None:
            raise QuoteAPIError(f"No route {sell_token}->{buy_token}")
        return RouteQuote(
            sell_token=sell_token,
            buy_token=buy_token,
            sell_amount=amount,
            buy_amount=amount * rate,
            rate=rate,
            gas_units=100_000,
            gas_price_wei=10**9,
            observed_at=datetime.now(timezone.utc),
        )


class FixedCostEstimator:
    def __init__(self, cost_per_leg):
        self.cost_per_leg = Decimal(str(cost_per_leg))

    async def estimate_gas_cost(self, route):
        return self.cost_per_leg


@pytest.fixture
def now():
    return datetime.fromtimestamp(1_700_000_000, tz=timezone.utc)


@pytest.fixture
def make_quoter():
    return FakeQuoter


@pytest.fixture
def make_cost_estimator():
    return FixedCostEstimator


@pytest.fixture
def mock_pricing(now):
    """Consensus engine mock pricing ETH at 2000 and LINK at 15 in any USD quote."""
    prices = {"ETH": Decimal("2000"), "LINK": Decimal("15")}

    async def get_pair_price(base, quote):
        return ConsensusPrice(
            token=base,
            price=prices[base],
            confidence=0.95,
            source_count=2,
            computed_at=now,
        )

    pricing = MagicMock()
    pricing.get_pair_price = AsyncMock(side_effect=get_pair_price)
    return pricing
