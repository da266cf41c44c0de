"""
Executor collaborator interface and the paper (dry-run) implementation.

Executors are not idempotent. At-most-once is enforced by the caller via the
claim protocol, never by the executor.
"""
from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING, Optional, Protocol, Union

from defi_executor.storage.models import LimitOrder

if TYPE_CHECKING:
    from defi_executor.arbitrage.scanner import ArbitrageOpportunity

logger = logging.getLogger(__name__)

ExecutableItem = Union[LimitOrder, "ArbitrageOpportunity"]


class ExecutionFailedError(Exception):
    """Execution of an item failed. Terminal for that item."""

    def __init__(self, item_id: str, reason: str):
        super().__init__(f"Execution of {item_id} failed: {reason}")
        self.item_id = item_id
        self.reason = reason


@dataclass(frozen=True)
class ExecutionReceipt:
    """Result of a successful execution."""
    execution_ref: str
    filled_price: Optional[Decimal] = None


class Executor(Protocol):
    async def execute(self, item: ExecutableItem) -> ExecutionReceipt:
        ...


class PaperExecutor:
    """
    Dry-run executor: records what would have been executed, never signs.

    Returns a deterministic reference so repeated runs are easy to trace.
    Only the last `history_size` item ids are kept in `recent`.
    """

    def __init__(self, history_size: int = 100) -> None:
        self.executed_count = 0
        self.recent: deque[str] = deque(maxlen=history_size)

    async def execute(self, item: ExecutableItem) -> ExecutionReceipt:
        if isinstance(item, LimitOrder):
            item_id = item.id
            logger.info(
                f"[PAPER] {item.side.value.upper()} {item.amount} {item.base_token} "
                f"@ limit {item.limit_price} {item.quote_token} (order {item_id})"
            )
        else:
            item_id = item.opportunity_id
            logger.info(
                f"[PAPER] Arbitrage {item.pair.name} size {item.pair.amount} "
                f"net {item.net_profit_pct:.4f}% (opportunity {item_id})"
            )
        self.executed_count += 1
        self.recent.append(item_id)
        return ExecutionReceipt(execution_ref=f"paper_{item_id}")
