"""
Tests for return statistics and analytics.
"""

from datetime import date, timedelta
from decimal import Decimal

import pytest

from app.models.base import utcnow
from app.models.product_return import RefundMethod, ResolutionType
from app.schemas.product_return import (
    CancelReturnRequest,
    RefundProcessRequest,
    RejectReturnRequest,
    RestockProcessRequest,
)
from app.services.return_stats_service import ReturnStatsService, resolve_period
from app.utils.error_handling import InvalidDateRangeException, ReturnValidationError
from tests.fixtures.return_builders import approved_return, make_create, make_sale_create


@pytest.fixture
def stats_service(db_session) -> ReturnStatsService:
    return ReturnStatsService(db_session)


async def _seed(service, actor_id):
    """
    One of each outcome at BR-001 plus one pending return at BR-002.

    Values: restocked 100, refunded 100 (refund 60), rejected 100,
    cancelled 100 (excluded from value), pending 30.
    """
    restocked = await approved_return(service, actor_id)
    await service.process(restocked.id, RestockProcessRequest(resolution_details="Shelf"), actor_id)

    refunded = await approved_return(
        service, actor_id, data=make_sale_create(), resolution=ResolutionType.REFUND_PROCESSED
    )
    await service.process(
        refunded.id,
        RefundProcessRequest(
            resolution_details="Cash back",
            refund_amount=Decimal("60.00"),
            refund_method=RefundMethod.CASH,
        ),
        actor_id,
    )

    rejected = await service.create_return(make_create(return_reason="Expired"), actor_id)
    await service.reject(rejected.id, RejectReturnRequest(rejection_reason="Return period expired"), actor_id)

    cancelled = await service.create_return(make_create(), actor_id)
    await service.cancel(cancelled.id, CancelReturnRequest(cancellation_reason="Logged twice"), actor_id)

    await service.create_return(
        make_create(location_id="BR-002", quantity=3, product_value=Decimal("10.00")), actor_id
    )


class TestReturnStats:
    """Counter and total tests"""

    @pytest.mark.asyncio
    async def test_empty(self, stats_service):
        stats = await stats_service.get_stats()

        assert stats["total_returns"] == 0
        assert stats["total_value"] == 0
        assert stats["average_processing_time_hours"] is None
        assert stats["returns_by_status"] == {}

    @pytest.mark.asyncio
    async def test_counts_and_totals(self, service, stats_service, actor_id):
        await _seed(service, actor_id)
        stats = await stats_service.get_stats()

        assert stats["total_returns"] == 5
        assert stats["pending_returns"] == 1
        assert stats["approved_returns"] == 0
        assert stats["rejected_returns"] == 1
        assert stats["completed_returns"] == 2
        assert stats["total_value"] == pytest.approx(330.0)
        assert stats["total_refunded"] == pytest.approx(60.0)
        assert stats["average_processing_time_hours"] is not None
        assert stats["average_processing_time_hours"] >= 0
        assert stats["returns_by_status"] == {
            "COMPLETED": 2,
            "REJECTED": 1,
            "CANCELLED": 1,
            "RECEIVED": 1,
        }
        assert stats["returns_by_category"]["EXCESS_STOCK"] == 4
        assert stats["returns_by_category"]["CUSTOMER_RETURN"] == 1
        assert stats["returns_by_reason"]["Expired"] == 1

    @pytest.mark.asyncio
    async def test_location_scope(self, service, stats_service, actor_id):
        await _seed(service, actor_id)
        stats = await stats_service.get_stats(location_id="BR-002")

        assert stats["total_returns"] == 1
        assert stats["pending_returns"] == 1
        assert stats["total_value"] == pytest.approx(30.0)
        assert stats["total_refunded"] == 0

    @pytest.mark.asyncio
    async def test_date_scope(self, service, stats_service, actor_id):
        await _seed(service, actor_id)
        today = utcnow().date()

        assert (await stats_service.get_stats(start_date=today, end_date=today))["total_returns"] == 5
        yesterday = today - timedelta(days=1)
        assert (await stats_service.get_stats(end_date=yesterday))["total_returns"] == 0

    @pytest.mark.asyncio
    async def test_inverted_range(self, stats_service):
        today = utcnow().date()
        with pytest.raises(InvalidDateRangeException):
            await stats_service.get_stats(start_date=today, end_date=today - timedelta(days=1))


class TestReturnAnalytics:
    """Period and trend tests"""

    @pytest.mark.asyncio
    async def test_week_trend_is_zero_filled(self, service, stats_service, actor_id):
        await _seed(service, actor_id)
        analytics = await stats_service.get_analytics(period="week")

        assert analytics["period"] == "week"
        assert analytics["total_returns"] == 5
        trend = analytics["trend_data"]
        assert len(trend) == 7
        assert [p["returns"] for p in trend[:-1]] == [0] * 6
        assert trend[-1]["date"] == utcnow().date()
        assert trend[-1]["returns"] == 5
        assert trend[-1]["value"] == pytest.approx(330.0)

    @pytest.mark.asyncio
    async def test_all_time(self, service, stats_service, actor_id):
        await service.create_return(make_create(), actor_id)
        analytics = await stats_service.get_analytics()

        assert analytics["period"] == "all"
        assert len(analytics["trend_data"]) == 1

    @pytest.mark.asyncio
    async def test_explicit_range_overrides_period(self, stats_service):
        analytics = await stats_service.get_analytics(
            period="year", start_date=date(2026, 1, 1), end_date=date(2026, 1, 3)
        )
        assert analytics["period"] == "2026-01-01 to 2026-01-03"
        assert [p["returns"] for p in analytics["trend_data"]] == [0, 0, 0]

    def test_resolve_period(self):
        today = utcnow().date()
        assert resolve_period("today", None, None) == (today, today, "today")
        assert resolve_period("all", None, None) == (None, None, "all")
        start, end, _ = resolve_period("month", None, None)
        assert (end - start).days == 29
        with pytest.raises(ReturnValidationError):
            resolve_period("decade", None, None)
