"""
POS Returns Engine - Product Returns Router

API endpoints for the product return lifecycle, reporting and the
customer lookup used by the intake form.

HTTP status is authoritative: success bodies are the resource itself,
errors use the {"detail": {...}} envelope from app.utils.error_handling.
"""

from datetime import date
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from app.config import settings
from app.dependencies import (
    get_actor_id,
    get_product_return_service,
    get_return_stats_service,
)
from app.models.product_return import (
    ReturnCategory,
    ReturnSourceType,
    ReturnStatus,
)
from app.schemas.product_return import (
    ApproveReturnRequest,
    CancelReturnRequest,
    CustomerMatchResponse,
    InspectReturnRequest,
    ProcessReturnRequest,
    ProductReturnCreate,
    ProductReturnListResponse,
    ProductReturnResponse,
    RejectReturnRequest,
    ReturnAnalyticsResponse,
    ReturnHistoryResponse,
    ReturnStatsResponse,
    SuggestedResolutionResponse,
)
from app.services.product_return_service import ProductReturnService, total_pages
from app.services.return_stats_service import ReturnStatsService


router = APIRouter()


# ===========================================
# REPORTING
# ===========================================

@router.get(
    "/returns/stats",
    response_model=ReturnStatsResponse,
    summary="Return statistics",
)
async def get_return_stats(
    location_id: Optional[str] = Query(None),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    service: ReturnStatsService = Depends(get_return_stats_service),
):
    """Counters and totals, optionally scoped to a location and created_at range."""
    stats = await service.get_stats(location_id, start_date, end_date)
    return ReturnStatsResponse(**stats)


@router.get(
    "/returns/analytics",
    response_model=ReturnAnalyticsResponse,
    summary="Return analytics",
)
async def get_return_analytics(
    location_id: Optional[str] = Query(None),
    period: Optional[str] = Query(None, description="today, week, month, year or all"),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    service: ReturnStatsService = Depends(get_return_stats_service),
):
    """Statistics plus a per-day trend. An explicit date range overrides period."""
    analytics = await service.get_analytics(location_id, period, start_date, end_date)
    return ReturnAnalyticsResponse(**analytics)


# ===========================================
# LOOKUPS
# ===========================================

@router.get(
    "/returns/customers/search",
    response_model=List[CustomerMatchResponse],
    summary="Find customers by phone",
)
async def search_customers(
    phone: str = Query(..., min_length=1),
    service: ProductReturnService = Depends(get_product_return_service),
):
    customers = await service.search_customers(phone)
    return [
        CustomerMatchResponse(id=c.id, name=c.name, phone=c.phone, email=c.email)
        for c in customers
    ]


@router.get(
    "/returns/number/{return_number}",
    response_model=ProductReturnResponse,
    summary="Get return by number",
)
async def get_return_by_number(
    return_number: str,
    service: ProductReturnService = Depends(get_product_return_service),
):
    record = await service.get_by_number(return_number)
    return ProductReturnResponse.model_validate(record)


# ===========================================
# RETURNS
# ===========================================

@router.post(
    "/returns",
    response_model=ProductReturnResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register a product return",
)
async def create_return(
    data: ProductReturnCreate,
    actor_id: UUID = Depends(get_actor_id),
    service: ProductReturnService = Depends(get_product_return_service),
):
    """
    Register a returned item. The return starts in RECEIVED.

    Sale returns need source_id; refund_amount is only accepted for sale
    returns and cannot exceed product_value * quantity. Customer name and
    phone are required for customer-facing returns.
    """
    record = await service.create_return(data, actor_id)
    return ProductReturnResponse.model_validate(record)


@router.get(
    "/returns",
    response_model=ProductReturnListResponse,
    summary="List product returns",
)
async def list_returns(
    location_id: Optional[str] = Query(None),
    status_filter: Optional[ReturnStatus] = Query(None, alias="status"),
    return_category: Optional[ReturnCategory] = Query(None),
    return_reason: Optional[str] = Query(None),
    customer_id: Optional[str] = Query(None),
    product_id: Optional[str] = Query(None),
    source_type: Optional[ReturnSourceType] = Query(None),
    source_id: Optional[str] = Query(None),
    search: Optional[str] = Query(None, description="Return number, customer or product"),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    sort_by: str = Query("created_at"),
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
    page: int = Query(1, ge=1),
    limit: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
    service: ProductReturnService = Depends(get_product_return_service),
):
    items, total = await service.list_returns(
        location_id=location_id,
        status=status_filter,
        return_category=return_category,
        return_reason=return_reason,
        customer_id=customer_id,
        product_id=product_id,
        source_type=source_type,
        source_id=source_id,
        search=search,
        start_date=start_date,
        end_date=end_date,
        sort_by=sort_by,
        sort_order=sort_order,
        page=page,
        limit=limit,
    )
    return ProductReturnListResponse(
        items=[ProductReturnResponse.model_validate(item) for item in items],
        total=total,
        page=page,
        limit=limit,
        total_pages=total_pages(total, limit),
    )


@router.get(
    "/returns/{return_id}",
    response_model=ProductReturnResponse,
    summary="Get product return",
)
async def get_return(
    return_id: UUID,
    service: ProductReturnService = Depends(get_product_return_service),
):
    record = await service.get_return(return_id)
    return ProductReturnResponse.model_validate(record)


@router.get(
    "/returns/{return_id}/history",
    response_model=ReturnHistoryResponse,
    summary="Audit trail of a return",
)
async def get_return_history(
    return_id: UUID,
    service: ProductReturnService = Depends(get_product_return_service),
):
    history = await service.get_history(return_id)
    return ReturnHistoryResponse.model_validate(history, from_attributes=True)


@router.get(
    "/returns/{return_id}/suggested-resolution",
    response_model=SuggestedResolutionResponse,
    summary="Suggested resolution for processing",
)
async def get_suggested_resolution(
    return_id: UUID,
    service: ProductReturnService = Depends(get_product_return_service),
):
    record, suggestion, allowed = await service.suggested_resolution(return_id)
    return SuggestedResolutionResponse(
        return_id=record.id,
        suggested_resolution=suggestion,
        allowed_resolutions=allowed,
    )


# ===========================================
# TRANSITIONS
# ===========================================

@router.patch(
    "/returns/{return_id}/inspect",
    response_model=ProductReturnResponse,
    summary="Record an inspection",
)
async def inspect_return(
    return_id: UUID,
    data: InspectReturnRequest,
    actor_id: UUID = Depends(get_actor_id),
    service: ProductReturnService = Depends(get_product_return_service),
):
    """
    Record inspection findings.

    Allowed from RECEIVED, INSPECTING and PENDING_APPROVAL. Set
    inspection_complete to move the return to PENDING_APPROVAL.

    The back-office table only offers Inspect on RECEIVED and INSPECTING
    returns, but re-inspecting a PENDING_APPROVAL return is accepted so
    that repeating an inspection is idempotent. It appends a new
    inspection row and never moves the status backwards.
    """
    record = await service.inspect(return_id, data, actor_id)
    return ProductReturnResponse.model_validate(record)


@router.patch(
    "/returns/{return_id}/approve",
    response_model=ProductReturnResponse,
    summary="Approve a return",
)
async def approve_return(
    return_id: UUID,
    data: ApproveReturnRequest,
    actor_id: UUID = Depends(get_actor_id),
    service: ProductReturnService = Depends(get_product_return_service),
):
    record = await service.approve(return_id, data, actor_id)
    return ProductReturnResponse.model_validate(record)


@router.patch(
    "/returns/{return_id}/reject",
    response_model=ProductReturnResponse,
    summary="Reject a return",
)
async def reject_return(
    return_id: UUID,
    data: RejectReturnRequest,
    actor_id: UUID = Depends(get_actor_id),
    service: ProductReturnService = Depends(get_product_return_service),
):
    record = await service.reject(return_id, data, actor_id)
    return ProductReturnResponse.model_validate(record)


@router.patch(
    "/returns/{return_id}/process",
    response_model=ProductReturnResponse,
    summary="Process an approved return",
)
async def process_return(
    return_id: UUID,
    payload: ProcessReturnRequest,
    actor_id: UUID = Depends(get_actor_id),
    service: ProductReturnService = Depends(get_product_return_service),
):
    """
    Carry out the resolution and finish the return.

    Returns 502 when the collaborator call fails; the return then stays
    APPROVED and the call can be retried.
    """
    record = await service.process(return_id, payload, actor_id)
    return ProductReturnResponse.model_validate(record)


@router.delete(
    "/returns/{return_id}",
    response_model=ProductReturnResponse,
    summary="Cancel a return",
)
async def cancel_return(
    return_id: UUID,
    data: CancelReturnRequest,
    actor_id: UUID = Depends(get_actor_id),
    service: ProductReturnService = Depends(get_product_return_service),
):
    """Cancel a return that has not been approved. The record is kept."""
    record = await service.cancel(return_id, data, actor_id)
    return ProductReturnResponse.model_validate(record)
