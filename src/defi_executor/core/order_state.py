"""
Limit order state machine.

Status lifecycle:
    pending  -> claimed    (claim CAS by an evaluator)
    pending  -> cancelled  (owner cancels)
    pending  -> expired    (evaluation finds the order past expires_at)
    claimed  -> filled     (claim holder, execution succeeded)
    claimed  -> failed     (claim holder, execution failed or timed out)
    claimed  -> pending    (stale-claim sweep only)

filled, failed, cancelled and expired are terminal.

Trigger rule, with tolerance = max_slippage_bps / 10000:
    buy   executable when price <= limit_price * (1 + tolerance)
    sell  executable when price >= limit_price * (1 - tolerance)
An order past expires_at is never executable, whatever the price.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

from defi_executor.storage.models import ItemStatus, LimitOrder, OrderSide

if TYPE_CHECKING:
    from defi_executor.pricing.consensus import ConsensusPrice

logger = logging.getLogger(__name__)

BPS_DENOMINATOR = Decimal(10_000)
MAX_SLIPPAGE_BPS = 10_000

ALLOWED_TRANSITIONS: dict[ItemStatus, frozenset[ItemStatus]] = {
    ItemStatus.PENDING: frozenset(
        {ItemStatus.CLAIMED, ItemStatus.CANCELLED, ItemStatus.EXPIRED}
    ),
    ItemStatus.CLAIMED: frozenset(
        {ItemStatus.FILLED, ItemStatus.FAILED, ItemStatus.PENDING}
    ),
    ItemStatus.FILLED: frozenset(),
    ItemStatus.FAILED: frozenset(),
    ItemStatus.CANCELLED: frozenset(),
    ItemStatus.EXPIRED: frozenset(),
}


class InvalidOrderError(ValueError):
    """Order parameters rejected at placement."""
    pass


@dataclass(frozen=True)
class TriggerCheck:
    """Outcome of a trigger evaluation, with the reason for logs and users."""
    executable: bool
    reason: str
    threshold: Optional[Decimal] = None
    current_price: Optional[Decimal] = None


def can_transition(current: ItemStatus, new: ItemStatus) -> bool:
    """Whether `current -> new` is a legal status transition."""
    return new in ALLOWED_TRANSITIONS.get(current, frozenset())


def trigger_threshold(order: LimitOrder) -> Decimal:
    """Price bound after applying the order's slippage tolerance."""
    tolerance = Decimal(order.max_slippage_bps) / BPS_DENOMINATOR
    if order.side == OrderSide.BUY:
        return order.limit_price * (1 + tolerance)
    return order.limit_price * (1 - tolerance)


def check_trigger(order: LimitOrder, consensus: ConsensusPrice, now: datetime) -> TriggerCheck:
    """
    Decide whether an order is executable at the given consensus price.

    Pure: no I/O, and `now` is passed in rather than read from the clock.
    """
    if order.status != ItemStatus.PENDING:
        return TriggerCheck(False, f"Order is {order.status.value}")

    if order.is_expired(now):
        return TriggerCheck(False, "Order has expired", current_price=consensus.price)

    threshold = trigger_threshold(order)
    price = consensus.price

    if order.side == OrderSide.BUY:
        if price <= threshold:
            return TriggerCheck(True, f"Price {price} at or below buy threshold {threshold}", threshold, price)
        return TriggerCheck(False, f"Price {price} above buy threshold {threshold}", threshold, price)

    if price >= threshold:
        return TriggerCheck(True, f"Price {price} at or above sell threshold {threshold}", threshold, price)
    return TriggerCheck(False, f"Price {price} below sell threshold {threshold}", threshold, price)


def evaluate(order: LimitOrder, consensus: ConsensusPrice, now: datetime) -> bool:
    """Whether the order's trigger fires at this consensus price."""
    return check_trigger(order, consensus, now).executable


def build_order(
    user_id: str,
    side: OrderSide | str,
    base_token: str,
    quote_token: str,
    amount: Decimal,
    limit_price: Decimal,
    max_slippage_bps: int = 0,
    expires_at: Optional[datetime] = None,
    order_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> LimitOrder:
    """
    Validate order parameters and build a pending LimitOrder.

    Raises:
        InvalidOrderError: On non-positive amount or limit price, bad slippage,
            identical tokens, or an expiry already in the past
    """
    now = now or datetime.now(timezone.utc)

    try:
        side = OrderSide(side)
    except ValueError as e:
        raise InvalidOrderError(f"Invalid side: {side}") from e

    amount = Decimal(str(amount))
    limit_price = Decimal(str(limit_price))

    if not user_id:
        raise InvalidOrderError("user_id is required")
    if not amount.is_finite() or amount <= 0:
        raise InvalidOrderError(f"Amount must be positive, got {amount}")
    if not limit_price.is_finite() or limit_price <= 0:
        raise InvalidOrderError(f"Limit price must be positive, got {limit_price}")
    if not (0 <= max_slippage_bps <= MAX_SLIPPAGE_BPS):
        raise InvalidOrderError(
            f"max_slippage_bps must be between 0 and {MAX_SLIPPAGE_BPS}, got {max_slippage_bps}"
        )
    if base_token.upper() == quote_token.upper():
        raise InvalidOrderError(f"Base and quote token are both {base_token}")
    if expires_at is not None and expires_at <= now:
        raise InvalidOrderError(f"Expiry {expires_at.isoformat()} is in the past")

    return LimitOrder(
        id=order_id or f"ord_{uuid.uuid4().hex}",
        user_id=user_id,
        side=side,
        base_token=base_token.upper(),
        quote_token=quote_token.upper(),
        amount=amount,
        limit_price=limit_price,
        max_slippage_bps=max_slippage_bps,
        expires_at=expires_at,
        status=ItemStatus.PENDING,
        created_at=now,
        updated_at=now,
    )


async def place_order(store, **order_params) -> LimitOrder:
    """Validate and persist a new pending order."""
    order = build_order(**order_params)
    created = await store.create(order)
    logger.info(
        f"Placed {created.side.value} order {created.id} for {created.amount} "
        f"{created.base_token} @ {created.limit_price} {created.quote_token}"
    )
    return created


async def cancel_order(store, order_id: str, user_id: str) -> bool:
    """
    Cancel a pending order on behalf of its owner.

    Returns:
        False if the order is unknown, owned by someone else, or no longer pending
    """
    cancelled = await store.cancel(order_id, user_id)
    if cancelled:
        logger.info(f"Order {order_id} cancelled by {user_id}")
    else:
        logger.info(f"Order {order_id} not cancellable by {user_id}")
    return cancelled
