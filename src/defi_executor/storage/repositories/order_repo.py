"""
Limit order repository.

Handles:
- limit_orders: conditional orders placed by users and resolved by the engine

All status changes go through compare_and_set() so that concurrent
coordinator instances can never both act on the same order.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from defi_executor.storage.models import ItemStatus, LimitOrder
from defi_executor.storage.repositories.base import BaseRepository


class LimitOrderRepository(BaseRepository[LimitOrder]):
    """Repository for user limit orders."""

    table_name = "limit_orders"
    model_class = LimitOrder
    updatable_columns = frozenset(
        {"claim_token", "claimed_at", "filled_price", "execution_ref", "error"}
    )

    async def create(self, order: LimitOrder) -> LimitOrder:
        """Insert a new pending order."""
        now = datetime.now(timezone.utc)
        query = """
            INSERT INTO limit_orders
            (id, user_id, side, base_token, quote_token, amount, limit_price,
             max_slippage_bps, expires_at, status, created_at, updated_at)
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $11)
            RETURNING *
        """
        record = await self.db.fetchrow(
            query,
            order.id,
            order.user_id,
            order.side.value,
            order.base_token,
            order.quote_token,
            order.amount,
            order.limit_price,
            order.max_slippage_bps,
            order.expires_at,
            ItemStatus.PENDING.value,
            order.created_at or now,
        )
        return self._record_to_model(record)

    async def get_pending(self, limit: int = 100) -> list[LimitOrder]:
        """Get the oldest pending orders, up to `limit`."""
        query = """
            SELECT * FROM limit_orders
            WHERE status = 'pending'
            ORDER BY created_at ASC
            LIMIT $1
        """
        records = await self.db.fetch(query, limit)
        return self._records_to_models(records)

    async def get_by_user(
        self, user_id: str, status: Optional[ItemStatus] = None
    ) -> list[LimitOrder]:
        """Get a user's orders, newest first, optionally filtered by status."""
        if status is None:
            query = """
                SELECT * FROM limit_orders
                WHERE user_id = $1
                ORDER BY created_at DESC
            """
            records = await self.db.fetch(query, user_id)
        else:
            query = """
                SELECT * FROM limit_orders
                WHERE user_id = $1 AND status = $2
                ORDER BY created_at DESC
            """
            records = await self.db.fetch(query, user_id, status.value)
        return self._records_to_models(records)

    async def cancel(self, order_id: str, user_id: str) -> bool:
        """
        Cancel a pending order on behalf of its owner.

        Returns:
            True if the order was pending, owned by user_id, and is now cancelled
        """
        query = """
            UPDATE limit_orders
            SET status = 'cancelled', updated_at = $3
            WHERE id = $1 AND user_id = $2 AND status = 'pending'
            RETURNING id
        """
        result = await self.db.fetchval(
            query, order_id, user_id, datetime.now(timezone.utc)
        )
        return result is not None

    async def get_status_counts(self, user_id: str) -> dict[str, int]:
        """Count a user's orders per status."""
        query = """
            SELECT status, COUNT(*) AS total
            FROM limit_orders
            WHERE user_id = $1
            GROUP BY status
        """
        records = await self.db.fetch(query, user_id)
        return {r["status"]: int(r["total"]) for r in records}
