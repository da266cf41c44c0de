"""
Core - order state machine and the polling loops.
"""
from .background_tasks import BackgroundTaskConfig, BackgroundTasksManager
from .order_state import (
    ALLOWED_TRANSITIONS,
    InvalidOrderError,
    TriggerCheck,
    build_order,
    can_transition,
    cancel_order,
    check_trigger,
    evaluate,
    place_order,
    trigger_threshold,
)

__all__ = [
    "BackgroundTaskConfig",
    "BackgroundTasksManager",
    "ALLOWED_TRANSITIONS",
    "InvalidOrderError",
    "TriggerCheck",
    "build_order",
    "can_transition",
    "cancel_order",
    "check_trigger",
    "evaluate",
    "place_order",
    "trigger_threshold",
]
