"""
Tests for the streaming ticker client.

Only message handling and subscription bookkeeping are tested here;
no socket is opened.
"""
import json
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from defi_executor.ingestion.models import DEFAULT_TOKENS
from defi_executor.ingestion.ticker_stream import StreamState, TickerWebSocket


@pytest.fixture
async def ticker():
    ticker = TickerWebSocket(url="ws://localhost:9999/ws")
    await ticker.subscribe({"ETH": "ethusdt", "WBTC": "BTCUSDT"})
    return ticker


def trade_message(symbol="ETHUSDT", price="2001.25"):
    return json.dumps({"e": "trade", "s": symbol, "p": price, "q": "0.5"})


class TestHandleMessage:
    """Tests for TickerWebSocket.handle_message."""

    @pytest.mark.asyncio
    async def test_trade_updates_latest(self, ticker):
        ticks = ticker.handle_message(trade_message())

        assert len(ticks) == 1
        assert ticks[0].token == "ETH"
        assert ticks[0].price == Decimal("2001.25")
        assert ticker.latest("eth") == ticks[0]

    @pytest.mark.asyncio
    async def test_symbol_mapping_is_case_insensitive(self, ticker):
        ticks = ticker.handle_message(trade_message(symbol="BTCUSDT", price="65000"))

        assert [t.token for t in ticks] == ["WBTC"]

    @pytest.mark.asyncio
    async def test_unsubscribed_symbol_ignored(self, ticker):
        assert ticker.handle_message(trade_message(symbol="DOGEUSDT")) == []
        assert ticker.latest("DOGE") is None

    @pytest.mark.asyncio
    async def test_non_trade_events_ignored(self, ticker):
        message = json.dumps({"result": None, "id": 1})

        assert ticker.handle_message(message) == []

    @pytest.mark.asyncio
    async def test_invalid_json_ignored(self, ticker):
        assert ticker.handle_message("{not json") == []

    @pytest.mark.asyncio
    async def test_non_positive_price_ignored(self, ticker):
        assert ticker.handle_message(trade_message(price="0")) == []
        assert ticker.handle_message(trade_message(price="abc")) == []
        assert ticker.latest("ETH") is None


class TestSharedStreamSymbol:
    """Tokens quoted off the same stream symbol all receive its ticks."""

    @pytest.mark.asyncio
    async def test_eth_and_weth_both_updated(self):
        ticker = TickerWebSocket()
        await ticker.subscribe({
            "ETH": DEFAULT_TOKENS["ETH"].stream_symbol,
            "WETH": DEFAULT_TOKENS["WETH"].stream_symbol,
        })

        ticks = ticker.handle_message(trade_message(price="1999.5"))

        assert [t.token for t in ticks] == ["ETH", "WETH"]
        assert ticker.latest("ETH").price == Decimal("1999.5")
        assert ticker.latest("WETH").price == Decimal("1999.5")

    @pytest.mark.asyncio
    async def test_shared_symbol_subscribed_once(self):
        ticker = TickerWebSocket()
        ws = AsyncMock()
        ticker._ws = ws
        ticker._state = StreamState.CONNECTED

        await ticker.subscribe({"ETH": "ethusdt"})
        await ticker.subscribe({"WETH": "ethusdt"})

        assert ws.send.await_count == 1
        assert ticker._symbols == {"ethusdt": {"ETH", "WETH"}}


class TestSubscriptions:

    @pytest.mark.asyncio
    async def test_subscribe_queued_when_disconnected(self, ticker):
        assert ticker.state == StreamState.DISCONNECTED
        assert not ticker.is_connected

        # Already-known symbols are not re-added
        await ticker.subscribe({"ETH": "ethusdt"})
        assert len(ticker._symbols) == 2

    @pytest.mark.asyncio
    async def test_send_subscribe_message(self, ticker):
        ws = AsyncMock()
        ticker._ws = ws

        await ticker._send_subscribe(["ethusdt"])

        payload = json.loads(ws.send.call_args.args[0])
        assert payload["method"] == "SUBSCRIBE"
        assert payload["params"] == ["ethusdt@trade"]
