"""
Arbitrage execution repository.

Handles:
- arbitrage_executions: claimable records of actionable opportunities

Opportunity IDs are deterministic per pair and TTL window, so every scanner
instance that sees the same opportunity registers the same row. Registration
uses ON CONFLICT DO NOTHING and execution goes through compare_and_set().
"""
from __future__ import annotations

from datetime import datetime

from defi_executor.storage.models import ArbitrageExecution, ItemStatus
from defi_executor.storage.repositories.base import BaseRepository


class ArbitrageExecutionRepository(BaseRepository[ArbitrageExecution]):
    """Repository for arbitrage execution claims."""

    table_name = "arbitrage_executions"
    model_class = ArbitrageExecution
    updatable_columns = frozenset({"claim_token", "claimed_at", "execution_ref", "error"})

    async def register(self, execution: ArbitrageExecution) -> bool:
        """
        Record an actionable opportunity if no row exists for its ID yet.

        Returns:
            True if this call created the row
        """
        query = """
            INSERT INTO arbitrage_executions
            (id, pair, net_profit_pct, gross_profit_pct, estimated_cost,
             notional_value, status, discovered_at, expires_at, updated_at)
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $8)
            ON CONFLICT (id) DO NOTHING
            RETURNING id
        """
        result = await self.db.fetchval(
            query,
            execution.id,
            execution.pair,
            execution.net_profit_pct,
            execution.gross_profit_pct,
            execution.estimated_cost,
            execution.notional_value,
            ItemStatus.PENDING.value,
            execution.discovered_at,
            execution.expires_at,
        )
        return result is not None

    async def purge_expired(self, now: datetime) -> int:
        """
        Delete rows past their TTL unless a claim is in flight.

        Returns:
            Number of rows deleted
        """
        query = """
            DELETE FROM arbitrage_executions
            WHERE expires_at < $1 AND status <> 'claimed'
        """
        result = await self.db.execute(query, now)
        # asyncpg returns "DELETE <n>"
        try:
            return int(result.split()[-1])
        except (AttributeError, ValueError, IndexError):
            return 0
