"""
Storage Layer - Async PostgreSQL database, repositories and in-memory store.

The store holds the only shared mutable state of the engine: limit orders
and arbitrage execution claims. Every status change is a compare-and-set so
that any number of engine instances can run against the same database.

Public API:
    Database, DatabaseConfig - Connection pool management
    StoreUnavailableError - Raised when the store cannot be reached

    Models:
        LimitOrder, ArbitrageExecution
        ItemStatus, OrderSide, TERMINAL_STATUSES

    Repositories (PostgreSQL):
        LimitOrderRepository, ArbitrageExecutionRepository

    In-memory (single process, dry-run):
        InMemoryOrderStore, InMemoryOpportunityStore
"""
from defi_executor.storage.database import Database, DatabaseConfig, StoreUnavailableError
from defi_executor.storage.memory import InMemoryOpportunityStore, InMemoryOrderStore
from defi_executor.storage.models import (
    TERMINAL_STATUSES,
    ArbitrageExecution,
    ItemStatus,
    LimitOrder,
    OrderSide,
)
from defi_executor.storage.repositories import (
    ArbitrageExecutionRepository,
    BaseRepository,
    LimitOrderRepository,
)

__all__ = [
    "Database",
    "DatabaseConfig",
    "StoreUnavailableError",
    "LimitOrder",
    "ArbitrageExecution",
    "ItemStatus",
    "OrderSide",
    "TERMINAL_STATUSES",
    "BaseRepository",
    "LimitOrderRepository",
    "ArbitrageExecutionRepository",
    "InMemoryOrderStore",
    "InMemoryOpportunityStore",
]
