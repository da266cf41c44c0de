"""
REST API clients for the upstream price providers.

Provides async access to:
    - 0x swap API (aggregator price and route quotes)
    - CoinGecko simple price API (market data)

These clients make exactly one attempt per call. Retrying is the
coordinator's job: a failed source is simply excluded from this cycle's
quorum and asked again on the next tick.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Optional

import aiohttp

logger = logging.getLogger(__name__)


class QuoteAPIError(Exception):
    """Base exception for upstream quote API errors."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RateLimitError(QuoteAPIError):
    """Rate limit exceeded."""
    pass


class _JsonApiClient:
    """
    Shared session handling and client-side rate limiting.

    Subclasses set BASE_URL and add endpoint methods on top of _get().
    """

    BASE_URL = ""

    def __init__(
        self,
        session: Optional[aiohttp.ClientSession] = None,
        base_url: Optional[str] = None,
        rate_limit: float = 5.0,  # requests per second
        timeout: float = 10.0,
    ):
        """
        Initialize the client.

        Args:
            session: Optional aiohttp session (created if not provided)
            base_url: Optional API base URL override
            rate_limit: Maximum requests per second
            timeout: Request timeout in seconds
        """
        self._session = session
        self._owns_session = session is None
        self._base_url = (base_url or self.BASE_URL).rstrip("/")
        self._rate_limit = rate_limit
        self._timeout = aiohttp.ClientTimeout(total=timeout)

        # Rate limiting
        self._request_times: list[float] = []
        self._rate_lock = asyncio.Lock()

    async def __aenter__(self):
        """Async context manager entry."""
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.close()

    async def close(self) -> None:
        """Close the client session."""
        if self._owns_session and self._session:
            await self._session.close()
            self._session = None

    def _headers(self) -> dict[str, str]:
        return {"Accept": "application/json"}

    async def _rate_limit_wait(self) -> None:
        """Wait if necessary to respect rate limits."""
        async with self._rate_lock:
            now = time.time()

            # Remove old timestamps outside the 1-second window
            self._request_times = [t for t in self._request_times if now - t < 1.0]

            # Wait if we've hit the rate limit
            if len(self._request_times) >= self._rate_limit:
                wait_time = 1.0 - (now - self._request_times[0])
                if wait_time > 0:
                    await asyncio.sleep(wait_time)

            self._request_times.append(time.time())

    async def _get(self, path: str, params: Optional[dict[str, Any]] = None) -> Any:
        """
        Make a single GET request with rate limiting.

        Returns:
            Parsed JSON response

        Raises:
            RateLimitError: On HTTP 429
            QuoteAPIError: On any other HTTP or transport error
            asyncio.CancelledError: When task is cancelled (re-raised)
        """
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True

        url = f"{self._base_url}{path}"
        await self._rate_limit_wait()

        try:
            async with self._session.get(url, params=params, headers=self._headers()) as response:
                if response.status == 429:
                    raise RateLimitError("Rate limit exceeded", status_code=429)

                if response.status >= 400:
                    text = await response.text()
                    raise QuoteAPIError(
                        f"API error: {response.status} - {text[:200]}",
                        status_code=response.status,
                    )

                return await response.json()

        except asyncio.CancelledError:
            logger.debug("Request cancelled")
            raise

        except asyncio.TimeoutError as e:
            raise QuoteAPIError(f"Request to {url} timed out") from e

        except aiohttp.ClientError as e:
            raise QuoteAPIError(f"Request to {url} failed: {e}") from e


class ZeroExClient(_JsonApiClient):
    """
    Async client for the 0x swap API.

    Usage:
        async with ZeroExClient(api_key="...") as client:
            price = await client.get_price("ETH", "USDC", sell_amount=10**18)
            quote = await client.get_quote("ETH", "USDC", sell_amount=10**18)
    """

    BASE_URL = "https://api.0x.org"

    def __init__(self, api_key: Optional[str] = None, **kwargs):
        super().__init__(**kwargs)
        self._api_key = api_key
        if not api_key:
            logger.warning("0x API key not configured - requests may be throttled or rejected")

    def _headers(self) -> dict[str, str]:
        headers = super()._headers()
        if self._api_key:
            headers["0x-api-key"] = self._api_key
        return headers

    async def get_price(self, sell_token: str, buy_token: str, sell_amount: int) -> dict:
        """
        Indicative price for selling `sell_amount` base units of sell_token.

        Returns the raw response (price, buyAmount, sellAmount, estimatedGas, gasPrice, sources).
        """
        params = {"sellToken": sell_token, "buyToken": buy_token, "sellAmount": str(sell_amount)}
        return await self._get("/swap/v1/price", params)

    async def get_quote(self, sell_token: str, buy_token: str, sell_amount: int) -> dict:
        """Firm route quote for selling `sell_amount` base units of sell_token."""
        params = {"sellToken": sell_token, "buyToken": buy_token, "sellAmount": str(sell_amount)}
        return await self._get("/swap/v1/quote", params)


class CoinGeckoClient(_JsonApiClient):
    """
    Async client for the CoinGecko simple price API.

    Usage:
        async with CoinGeckoClient() as client:
            prices = await client.get_simple_prices(["ethereum", "usd-coin"])
            # {"ethereum": {"usd": 2000.5}, "usd-coin": {"usd": 1.0}}
    """

    BASE_URL = "https://api.coingecko.com/api/v3"

    async def get_simple_prices(
        self, coin_ids: list[str], vs_currency: str = "usd"
    ) -> dict[str, dict[str, float]]:
        """Fetch current prices for CoinGecko coin ids."""
        params = {"ids": ",".join(coin_ids), "vs_currencies": vs_currency}
        data = await self._get("/simple/price", params)
        if not isinstance(data, dict):
            raise QuoteAPIError(f"Unexpected CoinGecko response: {str(data)[:200]}")
        return data
