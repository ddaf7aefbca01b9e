"""
POS Returns Engine - Return Stats Service

Read-only aggregation over product returns for dashboards. Takes no
transition locks and never writes.
"""

import logging
from collections import OrderedDict
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.base import utcnow
from app.models.product_return import (
    ProductReturn,
    ResolutionType,
    ReturnStatus,
)
from app.services.product_return_service import apply_created_range
from app.services.return_rules import PENDING_STATUSES
from app.utils.error_handling import InvalidDateRangeException, ReturnValidationError

logger = logging.getLogger(__name__)


# Day span of each named analytics period, ending today
PERIODS = {
    "today": 0,
    "week": 6,
    "month": 29,
    "year": 364,
}
ALL_TIME = "all"

REFUNDED_STATUSES = (ReturnStatus.PROCESSING, ReturnStatus.COMPLETED)


class ReturnStatsService:
    """Service for return statistics and analytics."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_stats(
        self,
        location_id: Optional[str] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> Dict[str, Any]:
        """
        Counters and totals for returns in scope.

        total_value sums product_value * quantity over non-cancelled returns.
        total_refunded sums refund_amount of REFUND_PROCESSED returns that
        reached PROCESSING or COMPLETED. average_processing_time_hours is
        None when nothing has completed.
        """
        if start_date and end_date and start_date > end_date:
            raise InvalidDateRangeException(start_date, end_date)

        by_status = await self._count_by(ProductReturn.status, location_id, start_date, end_date)
        by_category = await self._count_by(ProductReturn.return_category, location_id, start_date, end_date)
        by_reason = await self._count_by(ProductReturn.return_reason, location_id, start_date, end_date)

        value_query = self._scoped(
            select(func.coalesce(func.sum(ProductReturn.product_value * ProductReturn.quantity), 0)),
            location_id, start_date, end_date,
        ).where(ProductReturn.status != ReturnStatus.CANCELLED)
        total_value = await self.db.scalar(value_query)

        refund_query = self._scoped(
            select(func.coalesce(func.sum(ProductReturn.refund_amount), 0)),
            location_id, start_date, end_date,
        ).where(
            ProductReturn.resolution_type == ResolutionType.REFUND_PROCESSED,
            ProductReturn.status.in_(REFUNDED_STATUSES),
        )
        total_refunded = await self.db.scalar(refund_query)

        return {
            "total_returns": sum(by_status.values()),
            "pending_returns": sum(by_status.get(s.value, 0) for s in PENDING_STATUSES),
            "approved_returns": by_status.get(ReturnStatus.APPROVED.value, 0),
            "rejected_returns": by_status.get(ReturnStatus.REJECTED.value, 0),
            "completed_returns": by_status.get(ReturnStatus.COMPLETED.value, 0),
            "total_value": float(Decimal(str(total_value or 0))),
            "total_refunded": float(Decimal(str(total_refunded or 0))),
            "average_processing_time_hours": await self._average_processing_hours(
                location_id, start_date, end_date
            ),
            "returns_by_status": by_status,
            "returns_by_category": by_category,
            "returns_by_reason": by_reason,
        }

    async def get_analytics(
        self,
        location_id: Optional[str] = None,
        period: Optional[str] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> Dict[str, Any]:
        """Stats plus a per-day trend. An explicit date range overrides period."""
        start_date, end_date, label = resolve_period(period, start_date, end_date)
        stats = await self.get_stats(location_id, start_date, end_date)
        stats["period"] = label
        stats["trend_data"] = await self._trend(location_id, start_date, end_date)
        return stats

    # ===========================================
    # HELPERS
    # ===========================================

    @staticmethod
    def _scoped(query, location_id, start_date, end_date):
        if location_id:
            query = query.where(ProductReturn.location_id == location_id)
        return apply_created_range(query, start_date, end_date)

    async def _count_by(self, column, location_id, start_date, end_date) -> Dict[str, int]:
        query = self._scoped(
            select(column, func.count(ProductReturn.id)).group_by(column),
            location_id, start_date, end_date,
        )
        result = await self.db.execute(query)
        return {getattr(key, "value", key): count for key, count in result.all()}

    async def _average_processing_hours(self, location_id, start_date, end_date) -> Optional[float]:
        query = self._scoped(
            select(ProductReturn.created_at, ProductReturn.completed_at),
            location_id, start_date, end_date,
        ).where(
            ProductReturn.status == ReturnStatus.COMPLETED,
            ProductReturn.completed_at.is_not(None),
        )
        rows = (await self.db.execute(query)).all()
        if not rows:
            return None
        total_seconds = sum(
            (_as_utc(completed) - _as_utc(created)).total_seconds() for created, completed in rows
        )
        return round(total_seconds / len(rows) / 3600, 2)

    async def _trend(self, location_id, start_date, end_date) -> List[Dict[str, Any]]:
        query = self._scoped(
            select(
                ProductReturn.created_at,
                ProductReturn.product_value,
                ProductReturn.quantity,
                ProductReturn.status,
            ),
            location_id, start_date, end_date,
        ).order_by(ProductReturn.created_at)
        rows = (await self.db.execute(query)).all()

        buckets: "OrderedDict[date, Dict[str, Any]]" = OrderedDict()
        if start_date and end_date:
            day = start_date
            while day <= end_date:
                buckets[day] = {"date": day, "returns": 0, "value": Decimal("0")}
                day += timedelta(days=1)

        for created_at, product_value, quantity, status in rows:
            day = _as_utc(created_at).date()
            bucket = buckets.setdefault(day, {"date": day, "returns": 0, "value": Decimal("0")})
            bucket["returns"] += 1
            if status != ReturnStatus.CANCELLED:
                bucket["value"] += Decimal(str(product_value)) * quantity

        return [
            {"date": b["date"], "returns": b["returns"], "value": float(b["value"])}
            for b in sorted(buckets.values(), key=lambda b: b["date"])
        ]


def resolve_period(
    period: Optional[str],
    start_date: Optional[date],
    end_date: Optional[date],
) -> Tuple[Optional[date], Optional[date], str]:
    """Date range and label for an analytics request."""
    if start_date or end_date:
        label = f"{start_date.isoformat() if start_date else 'start'} to {end_date.isoformat() if end_date else 'now'}"
        return start_date, end_date, label
    if not period or period == ALL_TIME:
        return None, None, ALL_TIME
    if period not in PERIODS:
        raise ReturnValidationError(
            message=f"Unknown period '{period}'",
            field="period",
            details={"allowed": [*PERIODS, ALL_TIME]},
        )
    today = utcnow().date()
    return today - timedelta(days=PERIODS[period]), today, period


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
