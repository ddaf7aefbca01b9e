"""
POS Returns Engine - SQLAlchemy Models Package

This package contains all database models for the application.
"""

from app.models.base import BaseModel, TimestampMixin
from app.models.product_return import (
    ProductReturn,
    ReturnStatusEvent,
    ReturnInspection,
    ReturnDispatchAttempt,
    ReturnNumberSequence,
    ReturnSourceType,
    ReturnCategory,
    ProductCondition,
    RecommendedAction,
    ReturnStatus,
    ResolutionType,
    RefundMethod,
    DispatchOutcome,
)

__all__ = [
    "BaseModel",
    "TimestampMixin",
    "ProductReturn",
    "ReturnStatusEvent",
    "ReturnInspection",
    "ReturnDispatchAttempt",
    "ReturnNumberSequence",
    "ReturnSourceType",
    "ReturnCategory",
    "ProductCondition",
    "RecommendedAction",
    "ReturnStatus",
    "ResolutionType",
    "RefundMethod",
    "DispatchOutcome",
]
