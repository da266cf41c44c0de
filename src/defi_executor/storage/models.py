"""
Pydantic models for the persisted, claimable work items.

These models mirror the tables created by storage/schema.py.
Row columns and field names match one-to-one so asyncpg records can be
passed straight to the model constructor.

IMPORTANT: All monetary fields (prices, amounts) use Decimal for precision.
Percentages and confidences use float.
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict


class ItemStatus(str, Enum):
    """Lifecycle status shared by limit orders and arbitrage executions."""

    PENDING = "pending"
    CLAIMED = "claimed"
    FILLED = "filled"
    FAILED = "failed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {ItemStatus.FILLED, ItemStatus.FAILED, ItemStatus.CANCELLED, ItemStatus.EXPIRED}
)


class OrderSide(str, Enum):
    """Side of a limit order."""

    BUY = "buy"
    SELL = "sell"


# =============================================================================
# LIMIT ORDERS
# =============================================================================


class LimitOrder(BaseModel):
    """A conditional order placed by a user, executed once its trigger fires."""

    model_config = ConfigDict(arbitrary_types_allowed=True, use_enum_values=False)

    id: str
    user_id: str
    side: OrderSide
    base_token: str
    quote_token: str
    amount: Decimal
    limit_price: Decimal  # quote_token per base_token
    max_slippage_bps: int = 0
    expires_at: Optional[datetime] = None
    status: ItemStatus = ItemStatus.PENDING
    claim_token: Optional[str] = None
    claimed_at: Optional[datetime] = None
    filled_price: Optional[Decimal] = None
    execution_ref: Optional[str] = None
    error: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def is_expired(self, now: datetime) -> bool:
        """Whether the order is past its expiry (expiry is checked lazily)."""
        return self.expires_at is not None and now > self.expires_at


# =============================================================================
# ARBITRAGE EXECUTIONS
# =============================================================================


class ArbitrageExecution(BaseModel):
    """
    Claimable record of an actionable arbitrage opportunity.

    Only opportunities above the profit threshold are ever written.
    Rows are purged once past expires_at unless a claim is in flight.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    id: str  # deterministic opportunity id, shared by every scanner instance
    pair: str
    net_profit_pct: float
    gross_profit_pct: float
    estimated_cost: Decimal
    notional_value: Decimal
    status: ItemStatus = ItemStatus.PENDING
    claim_token: Optional[str] = None
    claimed_at: Optional[datetime] = None
    execution_ref: Optional[str] = None
    error: Optional[str] = None
    discovered_at: datetime
    expires_at: datetime
    updated_at: Optional[datetime] = None
