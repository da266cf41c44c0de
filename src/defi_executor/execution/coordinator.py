"""
ExecutionCoordinator - evaluate, claim, and execute actionable items.

Each tick of a polling loop calls one of:
    refresh_prices()        recompute consensus for tracked tokens
    process_orders()        evaluate pending limit orders, claim and execute triggers
    process_opportunities() scan arbitrage pairs, register, claim and execute
    sweep_stale_claims()    revert abandoned claims to pending

Per-item failures (quorum, execution errors, lost claims) are isolated and
logged; they never abort the batch. StoreUnavailableError is the exception:
without the store no claim is possible, so it propagates to the loop, which
backs off and retries the whole tick.

Evaluation is repeated once an item holds a concurrency slot: the wait can
outlast an order, an opportunity TTL or the consensus price that triggered it.

No component below the coordinator retries. A failed execution is terminal.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Optional, Sequence

from defi_executor.arbitrage.scanner import ArbitrageOpportunity, ArbitrageScanner, TokenPair
from defi_executor.core.order_state import TriggerCheck, check_trigger
from defi_executor.pricing.consensus import (
    ConsensusPrice,
    InsufficientQuorumError,
    PriceConsensusEngine,
)
from defi_executor.storage.database import StoreUnavailableError
from defi_executor.storage.models import ItemStatus, LimitOrder

from .claims import ClaimLostError, ClaimManager, ClaimTicket, StaleClaimError
from .executor import ExecutableItem, ExecutionFailedError, Executor

logger = logging.getLogger(__name__)


@dataclass
class CoordinatorConfig:
    """Configuration for the execution coordinator."""

    concurrency_limit: int = 5
    batch_size: int = 100
    execution_timeout_seconds: float = 30.0
    claim_timeout_seconds: float = 120.0

    def __post_init__(self):
        if self.concurrency_limit < 1:
            raise ValueError(f"concurrency_limit must be at least 1, got {self.concurrency_limit}")
        if self.claim_timeout_seconds <= self.execution_timeout_seconds:
            raise ValueError(
                f"claim_timeout_seconds ({self.claim_timeout_seconds}) must exceed "
                f"execution_timeout_seconds ({self.execution_timeout_seconds})"
            )


@dataclass
class CoordinatorStats:
    """Running counters, logged periodically by the bot."""

    evaluated: int = 0
    triggered: int = 0
    claimed: int = 0
    claim_lost: int = 0
    filled: int = 0
    failed: int = 0
    expired: int = 0
    skipped_no_quorum: int = 0
    skipped_stale_price: int = 0
    skipped_stale_claim: int = 0
    opportunities_found: int = 0
    stale_claims_released: int = 0

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


class ExecutionCoordinator:
    """
    Drives limit orders and arbitrage opportunities through the claim protocol.

    Usage:
        coordinator = ExecutionCoordinator(
            pricing=engine,
            order_store=LimitOrderRepository(db),
            executor=PaperExecutor(),
            opportunity_store=ArbitrageExecutionRepository(db),
            scanner=scanner,
            tracked_tokens=["ETH", "WBTC"],
            pairs=[TokenPair("ETH", "USDC")],
        )
        await coordinator.refresh_prices()
        await coordinator.process_orders()
        await coordinator.process_opportunities()
    """

    def __init__(
        self,
        pricing: PriceConsensusEngine,
        order_store,
        executor: Executor,
        config: Optional[CoordinatorConfig] = None,
        opportunity_store=None,
        scanner: Optional[ArbitrageScanner] = None,
        tracked_tokens: Sequence[str] = (),
        pairs: Sequence[TokenPair] = (),
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.config = config or CoordinatorConfig()
        self._pricing = pricing
        self._order_store = order_store
        self._opportunity_store = opportunity_store
        self._executor = executor
        self._scanner = scanner
        self._tracked_tokens = [t.upper() for t in tracked_tokens]
        self._pairs = list(pairs)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

        self._order_claims = ClaimManager(
            order_store,
            claim_timeout_seconds=self.config.claim_timeout_seconds,
            clock=self._clock,
            name="order",
        )
        self._opportunity_claims: Optional[ClaimManager] = None
        if opportunity_store is not None:
            self._opportunity_claims = ClaimManager(
                opportunity_store,
                claim_timeout_seconds=self.config.claim_timeout_seconds,
                clock=self._clock,
                name="arbitrage",
            )

        self._semaphore = asyncio.Semaphore(self.config.concurrency_limit)
        self.stats = CoordinatorStats()

    @property
    def tracked_tokens(self) -> list[str]:
        return list(self._tracked_tokens)

    @property
    def pairs(self) -> list[TokenPair]:
        return list(self._pairs)

    # =========================================================================
    # Prices
    # =========================================================================

    async def refresh_prices(self) -> dict[str, ConsensusPrice]:
        """Recompute consensus for every tracked token and arbitrage leg."""
        tokens = list(self._tracked_tokens)
        for pair in self._pairs:
            tokens.extend([pair.base, pair.quote])
        if self._scanner is not None and self._pairs:
            tokens.append(self._scanner.config.native_asset)

        tokens = [t for t in dict.fromkeys(tokens) if t not in self._pricing.config.reference_assets]
        if not tokens:
            return {}

        prices = await self._pricing.refresh(tokens)
        missing = len(tokens) - len(prices)
        if missing:
            logger.info(f"Price refresh: {len(prices)} tokens priced, {missing} without quorum")
        else:
            logger.debug(f"Price refresh: {len(prices)} tokens priced")
        return prices

    # =========================================================================
    # Limit orders
    # =========================================================================

    async def process_orders(self) -> int:
        """
        Evaluate the current batch of pending orders.

        Returns:
            Number of orders filled this tick

        Raises:
            StoreUnavailableError: If the store cannot be reached
        """
        orders = await self._order_store.get_pending(self.config.batch_size)
        if not orders:
            return 0

        now = self._clock()
        filled_before = self.stats.filled
        results = await asyncio.gather(
            *(self._handle_order(order, now) for order in orders),
            return_exceptions=True,
        )
        self._raise_store_errors(results, [o.id for o in orders])

        filled = self.stats.filled - filled_before
        logger.debug(f"Order scan: {len(orders)} pending, {filled} filled")
        return filled

    async def _handle_order(self, order: LimitOrder, now: datetime) -> None:
        self.stats.evaluated += 1

        triggered = await self._evaluate_order(order, now, None)
        if triggered is None:
            return
        check, consensus = triggered

        self.stats.triggered += 1
        logger.info(f"Order {order.id} triggered: {check.reason}")

        async with self._semaphore:
            # Waiting for a slot can outlast the order and the price that triggered it
            triggered = await self._evaluate_order(order, self._clock(), consensus)
            if triggered is None:
                return
            _, consensus = triggered

            ticket = await self._order_claims.try_claim(order.id)
            if ticket is None:
                self.stats.claim_lost += 1
                return
            self.stats.claimed += 1
            await self._execute_claimed(self._order_claims, ticket, order, consensus)

    async def _evaluate_order(
        self,
        order: LimitOrder,
        now: datetime,
        consensus: Optional[ConsensusPrice],
    ) -> Optional[tuple[TriggerCheck, ConsensusPrice]]:
        """
        Expire, price and trigger-check an order at `now`.

        A consensus price is reused only while it is younger than the cache TTL;
        otherwise it is fetched again. Returns None when the order must not run.
        """
        if order.is_expired(now):
            if await self._order_store.compare_and_set(order.id, ItemStatus.PENDING, ItemStatus.EXPIRED):
                self.stats.expired += 1
                logger.info(f"Order {order.id} expired at {order.expires_at.isoformat()}")
            return None

        if consensus is None or self._is_stale(consensus, now):
            try:
                consensus = await self._pricing.get_pair_price(order.base_token, order.quote_token)
            except InsufficientQuorumError as e:
                self.stats.skipped_no_quorum += 1
                logger.debug(f"Skipping order {order.id}: {e}")
                return None

        if self._is_stale(consensus, now):
            self.stats.skipped_stale_price += 1
            logger.warning(
                f"Skipping order {order.id}: consensus for {consensus.token} "
                f"computed at {consensus.computed_at.isoformat()} is past its TTL"
            )
            return None

        check = check_trigger(order, consensus, now)
        if not check.executable:
            return None
        return check, consensus

    def _is_stale(self, consensus: ConsensusPrice, now: datetime) -> bool:
        age = (now - consensus.computed_at).total_seconds()
        return age >= self._pricing.config.cache_ttl_seconds

    # =========================================================================
    # Arbitrage
    # =========================================================================

    async def process_opportunities(self, min_net_profit: Optional[float] = None) -> int:
        """
        Scan configured pairs and execute actionable opportunities.

        Returns:
            Number of opportunities filled this tick

        Raises:
            StoreUnavailableError: If the store cannot be reached
        """
        if self._scanner is None or self._opportunity_claims is None or not self._pairs:
            return 0

        opportunities = await self._scanner.scan(self._pairs, min_net_profit)
        self.stats.opportunities_found += len(opportunities)

        filled_before = self.stats.filled
        if opportunities:
            results = await asyncio.gather(
                *(self._handle_opportunity(opp) for opp in opportunities),
                return_exceptions=True,
            )
            self._raise_store_errors(results, [o.opportunity_id for o in opportunities])

        purged = await self._opportunity_store.purge_expired(self._clock())
        if purged:
            logger.debug(f"Purged {purged} expired arbitrage executions")

        return self.stats.filled - filled_before

    async def _handle_opportunity(self, opportunity: ArbitrageOpportunity) -> None:
        if opportunity.is_expired(self._clock()):
            return

        created = await self._opportunity_store.register(opportunity.to_execution())
        if created:
            logger.info(
                f"Arbitrage {opportunity.opportunity_id}: gross "
                f"{opportunity.gross_profit_pct:.4f}% net {opportunity.net_profit_pct:.4f}% "
                f"risk {opportunity.risk_score}"
            )

        async with self._semaphore:
            if opportunity.is_expired(self._clock()):
                logger.info(f"Arbitrage {opportunity.opportunity_id} passed its TTL before execution")
                return

            ticket = await self._opportunity_claims.try_claim(opportunity.opportunity_id)
            if ticket is None:
                self.stats.claim_lost += 1
                return
            self.stats.claimed += 1
            await self._execute_claimed(self._opportunity_claims, ticket, opportunity, None)

    # =========================================================================
    # Claims
    # =========================================================================

    async def sweep_stale_claims(self) -> int:
        """Revert claims that outlived the claim timeout. Returns the count released."""
        released = await self._order_claims.sweep_stale()
        if self._opportunity_claims is not None:
            released += await self._opportunity_claims.sweep_stale()
        self.stats.stale_claims_released += len(released)
        return len(released)

    async def _execute_claimed(
        self,
        claims: ClaimManager,
        ticket: ClaimTicket,
        item: ExecutableItem,
        consensus: Optional[ConsensusPrice],
    ) -> None:
        """Execute a claimed item and resolve the claim. Never re-raises item errors."""
        timeout = self.config.execution_timeout_seconds

        try:
            claims.check_lease(ticket, timeout)
        except StaleClaimError as e:
            # Leave it claimed; the sweep will hand it back
            self.stats.skipped_stale_claim += 1
            logger.warning(str(e))
            return

        try:
            receipt = await asyncio.wait_for(self._executor.execute(item), timeout=timeout)
        except asyncio.TimeoutError:
            await self._resolve_failed(claims, ticket, f"Execution timed out after {timeout}s")
            return
        except ExecutionFailedError as e:
            await self._resolve_failed(claims, ticket, e.reason)
            return
        except StoreUnavailableError:
            raise
        except Exception as e:
            await self._resolve_failed(claims, ticket, f"{type(e).__name__}: {e}")
            return

        filled_price = receipt.filled_price
        if filled_price is None and consensus is not None:
            filled_price = consensus.price

        try:
            await claims.mark_filled(ticket, receipt.execution_ref, filled_price)
            self.stats.filled += 1
        except ClaimLostError as e:
            self.stats.claim_lost += 1
            logger.error(f"{e} after execution (ref {receipt.execution_ref})")

    async def _resolve_failed(self, claims: ClaimManager, ticket: ClaimTicket, reason: str) -> None:
        try:
            await claims.mark_failed(ticket, reason)
            self.stats.failed += 1
        except ClaimLostError as e:
            self.stats.claim_lost += 1
            logger.warning(str(e))

    def _raise_store_errors(self, results: list[Any], item_ids: list[str]) -> None:
        store_error: Optional[StoreUnavailableError] = None
        for item_id, result in zip(item_ids, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, StoreUnavailableError):
                store_error = store_error or result
            elif isinstance(result, BaseException):
                logger.error(f"Error processing {item_id}: {type(result).__name__}: {result}")
        if store_error is not None:
            raise store_error
