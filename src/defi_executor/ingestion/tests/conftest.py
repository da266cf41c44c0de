"""
Test fixtures for the ingestion layer.

IMPORTANT: All external API calls must be mocked.
Never hit real 0x, CoinGecko or ticker endpoints in tests.
"""
from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from defi_executor.ingestion.models import RouteQuote


class FakeResponse:
    """Minimal aiohttp response stand-in."""

    def __init__(self, status=200, payload=None, text=""):
        self.status = status
        self._payload = payload
        self._text = text

    async def json(self):
        return self._payload

    async def text(self):
        return self._text


class FakeRequestContext:
    def __init__(self, response=None, error=None):
        self._response = response
        self._error = error

    async def __aenter__(self):
        if self._error is not None:
            raise self._error
        return self._response

    async def __aexit__(self, exc_type, exc, tb):
        return False


@pytest.fixture
def make_response():
    """Build a fake aiohttp response."""
    return FakeResponse


@pytest.fixture
def make_session():
    """Build a fake aiohttp session whose get() yields the given response or error."""
    def _make(response=None, error=None):
        session = MagicMock()
        session.get = MagicMock(return_value=FakeRequestContext(response, error))
        session.close = AsyncMock()
        return session
    return _make


@pytest.fixture
def now():
    return datetime.now(timezone.utc)


@pytest.fixture
def mock_zeroex_client():
    client = MagicMock()
    client.get_price = AsyncMock(return_value={"price": "2001.5"})
    client.get_quote = AsyncMock(return_value={
        "price": "2000.1",
        "buyAmount": "2000100000",
        "sellAmount": "1000000000000000000",
        "estimatedGas": "150000",
        "gasPrice": "30000000000",
        "sources": [
            {"name": "Uniswap_V3", "proportion": "0.7"},
            {"name": "Curve", "proportion": "0.3"},
            {"name": "Balancer", "proportion": "0"},
        ],
    })
    return client


@pytest.fixture
def mock_coingecko_client():
    client = MagicMock()
    client.get_simple_prices = AsyncMock(return_value={"ethereum": {"usd": 1999.8}})
    return client


@pytest.fixture
def sample_route(now):
    return RouteQuote(
        sell_token="ETH",
        buy_token="USDC",
        sell_amount=Decimal("1"),
        buy_amount=Decimal("2000"),
        rate=Decimal("2000"),
        gas_units=210_000,
        gas_price_wei=20 * 10**9,
        observed_at=now,
    )
