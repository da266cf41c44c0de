"""
Repository classes for database access.
"""
from defi_executor.storage.repositories.base import BaseRepository
from defi_executor.storage.repositories.opportunity_repo import ArbitrageExecutionRepository
from defi_executor.storage.repositories.order_repo import LimitOrderRepository

__all__ = [
    "BaseRepository",
    "LimitOrderRepository",
    "ArbitrageExecutionRepository",
]
