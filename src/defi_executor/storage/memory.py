"""
In-memory store with the same claim semantics as the PostgreSQL repositories.

Used for dry-run/paper mode and tests. Compare-and-set is atomic within one
process (guarded by an asyncio.Lock); it gives no guarantee across processes,
so multi-instance deployments must use the PostgreSQL store.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, ClassVar, Dict, FrozenSet, Generic, Optional, TypeVar

from pydantic import BaseModel

from defi_executor.storage.models import ArbitrageExecution, ItemStatus, LimitOrder

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)


class InMemoryStore(Generic[T]):
    """
    Dict-backed claimable item store.

    Usage:
        orders = InMemoryOrderStore()
        await orders.create(order)
        won = await orders.compare_and_set(order.id, ItemStatus.PENDING, ItemStatus.CLAIMED,
                                           claim_token="abc", claimed_at=now)
    """

    updatable_columns: ClassVar[FrozenSet[str]] = frozenset()

    def __init__(self) -> None:
        self._items: Dict[str, T] = {}
        self._lock = asyncio.Lock()

    async def get_by_id(self, item_id: str) -> Optional[T]:
        return self._items.get(item_id)

    async def count(self) -> int:
        return len(self._items)

    async def compare_and_set(
        self,
        item_id: str,
        expected: ItemStatus,
        new: ItemStatus,
        *,
        expected_claim_token: Optional[str] = None,
        **changes: Any,
    ) -> bool:
        """Move an item from `expected` to `new` if it is still in `expected`."""
        unknown = set(changes) - self.updatable_columns
        if unknown:
            raise ValueError(f"Fields not updatable: {sorted(unknown)}")

        async with self._lock:
            item = self._items.get(item_id)
            if item is None or item.status != expected:
                return False
            if expected_claim_token is not None and item.claim_token != expected_claim_token:
                return False

            update = dict(changes)
            update["status"] = new
            update["updated_at"] = datetime.now(timezone.utc)
            self._items[item_id] = item.model_copy(update=update)
            return True

    async def release_stale_claims(self, claimed_before: datetime) -> list[str]:
        """Revert claims older than `claimed_before` back to pending."""
        released = []
        async with self._lock:
            for item_id, item in list(self._items.items()):
                if item.status != ItemStatus.CLAIMED:
                    continue
                if item.claimed_at is None or item.claimed_at >= claimed_before:
                    continue
                self._items[item_id] = item.model_copy(
                    update={
                        "status": ItemStatus.PENDING,
                        "claim_token": None,
                        "claimed_at": None,
                        "updated_at": datetime.now(timezone.utc),
                    }
                )
                released.append(item_id)
        return released


class InMemoryOrderStore(InMemoryStore[LimitOrder]):
    """In-memory counterpart of LimitOrderRepository."""

    updatable_columns = frozenset(
        {"claim_token", "claimed_at", "filled_price", "execution_ref", "error"}
    )

    async def create(self, order: LimitOrder) -> LimitOrder:
        now = datetime.now(timezone.utc)
        async with self._lock:
            if order.id in self._items:
                raise ValueError(f"Order {order.id} already exists")
            stored = order.model_copy(
                update={
                    "status": ItemStatus.PENDING,
                    "created_at": order.created_at or now,
                    "updated_at": now,
                }
            )
            self._items[order.id] = stored
        return stored

    async def get_pending(self, limit: int = 100) -> list[LimitOrder]:
        pending = [o for o in self._items.values() if o.status == ItemStatus.PENDING]
        pending.sort(key=lambda o: o.created_at or datetime.min.replace(tzinfo=timezone.utc))
        return pending[:limit]

    async def get_by_user(
        self, user_id: str, status: Optional[ItemStatus] = None
    ) -> list[LimitOrder]:
        orders = [
            o for o in self._items.values()
            if o.user_id == user_id and (status is None or o.status == status)
        ]
        orders.sort(
            key=lambda o: o.created_at or datetime.min.replace(tzinfo=timezone.utc),
            reverse=True,
        )
        return orders

    async def cancel(self, order_id: str, user_id: str) -> bool:
        async with self._lock:
            order = self._items.get(order_id)
            if order is None or order.user_id != user_id or order.status != ItemStatus.PENDING:
                return False
            self._items[order_id] = order.model_copy(
                update={"status": ItemStatus.CANCELLED, "updated_at": datetime.now(timezone.utc)}
            )
            return True

    async def get_status_counts(self, user_id: str) -> dict[str, int]:
        counts: dict[str, int] = {}
        for order in self._items.values():
            if order.user_id == user_id:
                counts[order.status.value] = counts.get(order.status.value, 0) + 1
        return counts


class InMemoryOpportunityStore(InMemoryStore[ArbitrageExecution]):
    """In-memory counterpart of ArbitrageExecutionRepository."""

    updatable_columns = frozenset({"claim_token", "claimed_at", "execution_ref", "error"})

    async def register(self, execution: ArbitrageExecution) -> bool:
        async with self._lock:
            if execution.id in self._items:
                return False
            self._items[execution.id] = execution.model_copy(
                update={"status": ItemStatus.PENDING, "updated_at": execution.discovered_at}
            )
            return True

    async def purge_expired(self, now: datetime) -> int:
        async with self._lock:
            expired = [
                item_id for item_id, item in self._items.items()
                if item.expires_at < now and item.status != ItemStatus.CLAIMED
            ]
            for item_id in expired:
                del self._items[item_id]
        if expired:
            logger.debug(f"Purged {len(expired)} expired arbitrage executions")
        return len(expired)
