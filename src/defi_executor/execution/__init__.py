"""
Execution layer - claim protocol, executors and the coordinator.

Public API:
    ExecutionCoordinator, CoordinatorConfig, CoordinatorStats
    ClaimManager, ClaimTicket, ClaimLostError, StaleClaimError
    Executor, PaperExecutor, ExecutionReceipt, ExecutionFailedError
"""
from .claims import ClaimLostError, ClaimManager, ClaimTicket, StaleClaimError
from .coordinator import CoordinatorConfig, CoordinatorStats, ExecutionCoordinator
from .executor import ExecutionFailedError, ExecutionReceipt, Executor, PaperExecutor

__all__ = [
    "ExecutionCoordinator",
    "CoordinatorConfig",
    "CoordinatorStats",
    "ClaimManager",
    "ClaimTicket",
    "ClaimLostError",
    "StaleClaimError",
    "Executor",
    "PaperExecutor",
    "ExecutionReceipt",
    "ExecutionFailedError",
]
