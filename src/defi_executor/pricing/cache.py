"""
TTL cache for consensus prices.

Entries are never served past their TTL. Expired entries are dropped on
read and rebuilt by the next computation, without coordination between
concurrent readers.
"""

from __future__ import annotations

import time
from typing import Callable, Generic, Optional, TypeVar

V = TypeVar("V")


class PriceCache(Generic[V]):
    """
    Per-token TTL cache.

    Usage:
        cache = PriceCache(ttl_seconds=10.0)
        cache.set("ETH", consensus)
        cache.get("ETH")  # consensus, or None once 10s have passed
    """

    def __init__(self, ttl_seconds: float = 10.0, clock: Callable[[], float] = time.monotonic):
        if ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be positive, got {ttl_seconds}")
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: dict[str, tuple[V, float]] = {}

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    def get(self, key: str) -> Optional[V]:
        entry = self._entries.get(key)
        if entry is None:
            return None

        value, stored_at = entry
        if self._clock() - stored_at >= self._ttl:
            self._entries.pop(key, None)
            return None
        return value

    def set(self, key: str, value: V) -> None:
        self._entries[key] = (value, self._clock())

    def invalidate(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
