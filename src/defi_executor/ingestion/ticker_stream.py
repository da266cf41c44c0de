"""
WebSocket client for the streaming trade ticker.

Features:
    - Auto-reconnect with exponential backoff
    - Heartbeat monitoring (detect stale connections)
    - Subscription persistence across reconnects
    - Latest-tick cache read by StreamingPriceSource

The stream only ever updates the latest tick per token. Nothing is pushed
into the pricing engine; the polling loops read ticks when they need them.

Message format (trade stream):
    {"e": "trade", "s": "ETHUSDT", "p": "2000.15", ...}
"""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Optional

import websockets
from websockets.exceptions import (
    ConnectionClosed,
    ConnectionClosedError,
    ConnectionClosedOK,
)

from .models import Tick

logger = logging.getLogger(__name__)


class StreamState(str, Enum):
    """WebSocket connection state."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    STOPPING = "stopping"


class TickerWebSocket:
    """
    Resilient WebSocket client for trade ticks.

    Features:
        - Exponential backoff reconnection (1s -> 2s -> 4s -> ... -> max)
        - Heartbeat monitoring (reconnect if no message > timeout)
        - Subscription persistence across reconnects

    Usage:
        ticker = TickerWebSocket()
        await ticker.subscribe({"ETH": "ethusdt", "WBTC": "btcusdt"})
        await ticker.start()

        tick = ticker.latest("ETH")

        # ... later
        await ticker.stop()
    """

    WS_URL = "wss://stream.binance.com:9443/ws"

    def __init__(
        self,
        url: Optional[str] = None,
        heartbeat_timeout: float = 30.0,
        initial_reconnect_delay: float = 1.0,
        max_reconnect_delay: float = 60.0,
        reconnect_multiplier: float = 2.0,
    ):
        """
        Initialize the ticker client.

        Args:
            url: Optional WebSocket URL override
            heartbeat_timeout: Seconds without message before reconnect
            initial_reconnect_delay: Initial delay before reconnect attempt
            max_reconnect_delay: Maximum delay between reconnect attempts
            reconnect_multiplier: Multiplier for exponential backoff
        """
        self._url = url or self.WS_URL

        self._heartbeat_timeout = heartbeat_timeout
        self._initial_reconnect_delay = initial_reconnect_delay
        self._max_reconnect_delay = max_reconnect_delay
        self._reconnect_multiplier = reconnect_multiplier

        self._state = StreamState.DISCONNECTED
        self._ws = None

        # stream symbol (lowercase) -> engine token symbols sharing that feed
        self._symbols: dict[str, set[str]] = {}
        self._latest: dict[str, Tick] = {}
        self._next_request_id = 1

        self._current_reconnect_delay = initial_reconnect_delay
        self._reconnect_count = 0

        self._receive_task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()

    @property
    def state(self) -> StreamState:
        """Current connection state."""
        return self._state

    @property
    def is_connected(self) -> bool:
        """Whether currently connected."""
        return self._state == StreamState.CONNECTED

    @property
    def reconnect_count(self) -> int:
        """Number of reconnection attempts since start."""
        return self._reconnect_count

    def latest(self, token: str) -> Optional[Tick]:
        """Most recent tick for a token, if any has been received."""
        return self._latest.get(token.upper())

    def _set_state(self, state: StreamState) -> None:
        if self._state != state:
            logger.info(f"Ticker state: {self._state.value} -> {state.value}")
            self._state = state

    async def start(self) -> None:
        """Connect and start receiving in the background."""
        if self._state != StreamState.DISCONNECTED:
            logger.warning(f"Cannot start: already in state {self._state.value}")
            return

        self._stop_event.clear()
        self._receive_task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Stop the client and close the connection."""
        if self._state == StreamState.DISCONNECTED and self._receive_task is None:
            return

        logger.info("Stopping ticker stream...")
        self._set_state(StreamState.STOPPING)
        self._stop_event.set()

        if self._ws is not None:
            try:
                await self._ws.close()
            except Exception as e:
                logger.warning(f"Error closing ticker socket: {e}")

        if self._receive_task:
            self._receive_task.cancel()
            try:
                await self._receive_task
            except asyncio.CancelledError:
                pass
            self._receive_task = None

        self._ws = None
        self._set_state(StreamState.DISCONNECTED)
        logger.info("Ticker stream stopped")

    async def _run(self) -> None:
        """Connect, receive until the socket drops, back off, repeat."""
        while not self._stop_event.is_set():
            self._set_state(
                StreamState.CONNECTING if self._reconnect_count == 0 else StreamState.RECONNECTING
            )
            try:
                self._ws = await websockets.connect(
                    self._url,
                    ping_interval=20,
                    ping_timeout=10,
                    close_timeout=5,
                )
                self._current_reconnect_delay = self._initial_reconnect_delay
                self._set_state(StreamState.CONNECTED)
                logger.info(f"Connected to {self._url}")

                if self._symbols:
                    await self._send_subscribe(list(self._symbols))

                await self._receive_loop()

            except asyncio.CancelledError:
                raise

            except Exception as e:
                logger.error(f"Ticker connection failed: {e}")

            finally:
                if self._ws is not None:
                    try:
                        await self._ws.close()
                    except Exception as close_err:
                        logger.debug(f"Error closing ticker socket: {close_err}")
                    self._ws = None

            if self._stop_event.is_set():
                break

            self._reconnect_count += 1
            delay = self._current_reconnect_delay
            logger.info(f"Reconnecting ticker in {delay:.1f}s (attempt #{self._reconnect_count})...")
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass
            self._current_reconnect_delay = min(
                self._current_reconnect_delay * self._reconnect_multiplier,
                self._max_reconnect_delay,
            )

    async def _receive_loop(self) -> None:
        while not self._stop_event.is_set() and self._ws is not None:
            try:
                message = await asyncio.wait_for(self._ws.recv(), timeout=self._heartbeat_timeout)
            except asyncio.TimeoutError:
                logger.warning(
                    f"No ticker message received in {self._heartbeat_timeout}s, reconnecting..."
                )
                return
            except ConnectionClosedOK:
                logger.info("Ticker socket closed normally")
                return
            except ConnectionClosedError as e:
                logger.warning(f"Ticker socket closed with error: {e}")
                return
            except ConnectionClosed as e:
                logger.warning(f"Ticker socket closed: {e}")
                return

            self.handle_message(message)

    def handle_message(self, raw_message) -> list[Tick]:
        """
        Parse a raw stream message and update the latest-tick cache.

        Every token subscribed to the message's stream symbol gets the tick
        (ETH and WETH both follow "ethusdt").

        Returns:
            The accepted ticks, empty if the message carried no usable price
        """
        if not raw_message:
            return []

        try:
            data = json.loads(raw_message)
        except json.JSONDecodeError as e:
            logger.warning(f"Failed to parse ticker message: {e}")
            return []

        if not isinstance(data, dict) or data.get("e") != "trade":
            logger.debug(f"Ignoring ticker message: {str(data)[:200]}")
            return []

        symbol = str(data.get("s", "")).lower()
        tokens = self._symbols.get(symbol)
        if not tokens:
            return []

        try:
            price = Decimal(str(data.get("p")))
        except (InvalidOperation, ValueError):
            logger.debug(f"Invalid price in ticker message for {symbol}: {data.get('p')}")
            return []

        if not price.is_finite() or price <= 0:
            return []

        received_at = datetime.now(timezone.utc)
        ticks = [Tick(token=token, price=price, received_at=received_at) for token in sorted(tokens)]
        for tick in ticks:
            self._latest[tick.token] = tick
        return ticks

    async def subscribe(self, token_symbols: dict[str, str]) -> None:
        """
        Subscribe to trade ticks.

        Args:
            token_symbols: Mapping of engine token symbol -> stream symbol

        Several tokens may share one stream symbol. Subscriptions persist
        across reconnections.
        """
        new_streams: list[str] = []
        for token, stream in token_symbols.items():
            stream = stream.lower()
            if stream not in self._symbols:
                self._symbols[stream] = set()
                new_streams.append(stream)
            self._symbols[stream].add(token.upper())

        if not new_streams:
            return

        if self.is_connected:
            await self._send_subscribe(new_streams)
        else:
            logger.debug(f"Queued {len(new_streams)} ticker symbols for subscription on connect")

    async def _send_subscribe(self, stream_symbols: list[str]) -> None:
        if self._ws is None:
            return

        message = {
            "method": "SUBSCRIBE",
            "params": [f"{symbol}@trade" for symbol in stream_symbols],
            "id": self._next_request_id,
        }
        self._next_request_id += 1

        try:
            await self._ws.send(json.dumps(message))
            logger.info(f"Subscribed to {len(stream_symbols)} ticker streams")
        except Exception as e:
            logger.error(f"Failed to send ticker subscription: {e}")
