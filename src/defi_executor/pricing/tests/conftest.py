"""
Test fixtures for the pricing engine.

Quote sources are in-process fakes; no upstream API is ever called.
"""
import asyncio
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from defi_executor.ingestion.client import QuoteAPIError
from defi_executor.ingestion.models import PriceQuote


class FakeSource:
    """Quote source returning fixed prices per token."""

    def __init__(self, name, confidence, prices=None, delay=0.0, error=None):
        self.name = name
        self.confidence = confidence
        self.prices = prices or {}
        self.delay = delay
        self.error = error
        self.calls = 0

    async def get_price(self, token):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        if token not in self.prices:
            raise QuoteAPIError(f"{self.name} has no price for {token}")
        return PriceQuote(
            source=self.name,
            token=token,
            price=Decimal(str(self.prices[token])),
            confidence=self.confidence,
            observed_at=datetime.now(timezone.utc),
        )


@pytest.fixture
def make_source():
    """Build a FakeSource."""
    return FakeSource


@pytest.fixture
def make_quote():
    """Build a PriceQuote for ETH."""
    def _make(source, price, confidence, token="ETH"):
        return PriceQuote(
            source=source,
            token=token,
            price=Decimal(str(price)),
            confidence=confidence,
            observed_at=datetime.now(timezone.utc),
        )
    return _make
