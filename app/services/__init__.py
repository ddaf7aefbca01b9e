"""
POS Returns Engine - Services Package

Business logic services.
"""

from app.services.product_return_service import ProductReturnService
from app.services.resolution_dispatcher import DispatchResult, ResolutionDispatcher
from app.services.return_locks import TransitionLockRegistry, get_lock_registry
from app.services.return_stats_service import ReturnStatsService

__all__ = [
    "ProductReturnService",
    "ResolutionDispatcher",
    "DispatchResult",
    "TransitionLockRegistry",
    "get_lock_registry",
    "ReturnStatsService",
]
