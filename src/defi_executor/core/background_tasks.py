"""
BackgroundTasksManager - Manages the engine's polling loops.

One cooperative loop per concern, each on its own interval:
- Price refresh (consensus for tracked tokens)
- Order scan (evaluate, claim and execute limit orders)
- Arbitrage scan (find, claim and execute opportunities)
- Claim sweep (revert stale claims to pending)

There is no lock shared between loops. A store outage is cycle-fatal for
the loop that hit it: it backs off store_backoff_seconds and retries the
whole tick. Any other error is logged and the loop carries on.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Awaitable, Callable, List, Optional

from defi_executor.storage.database import StoreUnavailableError

if TYPE_CHECKING:
    from defi_executor.execution.coordinator import ExecutionCoordinator

logger = logging.getLogger(__name__)


@dataclass
class BackgroundTaskConfig:
    """Configuration for background tasks."""

    # Consensus refresh for tracked tokens
    price_refresh_interval_seconds: float = 10
    price_refresh_enabled: bool = True

    # Limit order evaluation
    order_scan_interval_seconds: float = 5
    order_scan_enabled: bool = True

    # Arbitrage scanning
    arbitrage_scan_interval_seconds: float = 15
    arbitrage_scan_enabled: bool = True

    # Stale claim sweep
    claim_sweep_interval_seconds: float = 30
    claim_sweep_enabled: bool = True

    # Delay before retrying a tick after the store was unreachable
    store_backoff_seconds: float = 5
    # Delay before the next tick after an unexpected error
    error_pause_seconds: float = 5


class BackgroundTasksManager:
    """
    Manages the polling loops of the execution engine.

    Tasks run in the background and survive per-tick failures. The manager
    handles graceful shutdown.

    Usage:
        manager = BackgroundTasksManager(
            coordinator=coordinator,
            config=BackgroundTaskConfig(),
        )
        await manager.start()
        # ... engine runs ...
        await manager.stop()
    """

    def __init__(
        self,
        coordinator: "ExecutionCoordinator",
        config: Optional[BackgroundTaskConfig] = None,
    ) -> None:
        self._coordinator = coordinator
        self._config = config or BackgroundTaskConfig()

        self._running = False
        self._tasks: List[asyncio.Task] = []
        self._stop_event = asyncio.Event()

        # Completed ticks per loop name
        self.tick_counts: dict[str, int] = {}

    @property
    def is_running(self) -> bool:
        """Whether the manager is running."""
        return self._running

    @property
    def task_names(self) -> list[str]:
        return [task.get_name() for task in self._tasks]

    async def start(self) -> None:
        """Start all enabled loops."""
        if self._running:
            logger.warning("BackgroundTasksManager already running")
            return

        logger.info("Starting background tasks...")
        self._running = True
        self._stop_event.clear()

        loops = [
            (
                "price_refresh",
                self._config.price_refresh_enabled,
                self._config.price_refresh_interval_seconds,
                self._refresh_prices,
            ),
            (
                "order_scan",
                self._config.order_scan_enabled,
                self._config.order_scan_interval_seconds,
                self._scan_orders,
            ),
            (
                "arbitrage_scan",
                self._config.arbitrage_scan_enabled and bool(self._coordinator.pairs),
                self._config.arbitrage_scan_interval_seconds,
                self._scan_arbitrage,
            ),
            (
                "claim_sweep",
                self._config.claim_sweep_enabled,
                self._config.claim_sweep_interval_seconds,
                self._sweep_claims,
            ),
        ]

        for name, enabled, interval, tick in loops:
            if not enabled:
                continue
            task = asyncio.create_task(self._periodic_loop(name, interval, tick), name=name)
            self._tasks.append(task)
            logger.info(f"Started {name} task (interval={interval}s)")

        logger.info(f"Background tasks started: {len(self._tasks)} tasks")

    async def stop(self) -> None:
        """Stop all background tasks gracefully."""
        if not self._running:
            return

        logger.info("Stopping background tasks...")
        self._running = False
        self._stop_event.set()

        for task in self._tasks:
            if not task.done():
                task.cancel()

        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

        self._tasks.clear()
        logger.info("Background tasks stopped")

    async def _wait(self, seconds: float) -> bool:
        """Sleep up to `seconds`. Returns True if stop was requested."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
            return True
        except asyncio.TimeoutError:
            return False

    async def _periodic_loop(
        self,
        name: str,
        interval: float,
        tick: Callable[[], Awaitable[None]],
    ) -> None:
        """Run `tick` every `interval` seconds until stopped."""
        while self._running:
            pause = interval
            try:
                await tick()
                self.tick_counts[name] = self.tick_counts.get(name, 0) + 1

            except asyncio.CancelledError:
                break
            except StoreUnavailableError as e:
                logger.error(
                    f"Store unavailable in {name}: {e}. "
                    f"Retrying tick in {self._config.store_backoff_seconds}s"
                )
                pause = self._config.store_backoff_seconds
            except Exception as e:
                logger.error(f"Error in {name}: {e}")
                pause = self._config.error_pause_seconds

            try:
                if await self._wait(pause):
                    break
            except asyncio.CancelledError:
                break

    async def _refresh_prices(self) -> None:
        await self._coordinator.refresh_prices()

    async def _scan_orders(self) -> None:
        filled = await self._coordinator.process_orders()
        if filled:
            logger.info(f"Order scan: {filled} orders filled")

    async def _scan_arbitrage(self) -> None:
        filled = await self._coordinator.process_opportunities()
        if filled:
            logger.info(f"Arbitrage scan: {filled} opportunities executed")

    async def _sweep_claims(self) -> None:
        released = await self._coordinator.sweep_stale_claims()
        if released:
            logger.info(f"Claim sweep: {released} stale claims released")
