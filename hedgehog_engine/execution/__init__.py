"""
Order execution: lifecycle management and cancellation rate limiting.
"""

from hedgehog_engine.execution.client_order_id import make_client_order_id, next_client_order_id
from hedgehog_engine.execution.order_manager import (
    ManageResult,
    OrderLifecycleManager,
    Replacement,
)
from hedgehog_engine.execution.rate_limit import CancelRateLimiter

__all__ = [
    "make_client_order_id",
    "next_client_order_id",
    "ManageResult",
    "OrderLifecycleManager",
    "Replacement",
    "CancelRateLimiter",
]
