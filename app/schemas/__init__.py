"""
POS Returns Engine - Schemas Package

Pydantic schemas for request/response validation.
"""

from app.schemas.product_return import (
    ProductReturnCreate,
    InspectReturnRequest,
    ApproveReturnRequest,
    RejectReturnRequest,
    CancelReturnRequest,
    RestockProcessRequest,
    ScrapProcessRequest,
    RefundProcessRequest,
    SupplierReturnPayload,
    SupplierReturnProcessRequest,
    TransferProcessRequest,
    WarrantyReplacementProcessRequest,
    ProcessReturnRequest,
    ProductReturnResponse,
    ProductReturnListResponse,
    ReturnHistoryResponse,
    SuggestedResolutionResponse,
    ReturnStatsResponse,
    ReturnAnalyticsResponse,
    ReturnTrendPoint,
    CustomerMatchResponse,
)
