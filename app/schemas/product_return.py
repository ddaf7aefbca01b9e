"""
POS Returns Engine - Product Return Schemas

Pydantic schemas for the return lifecycle endpoints.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Annotated, Dict, List, Literal, Optional, Union
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from app.models.product_return import (
    DispatchOutcome,
    ProductCondition,
    RecommendedAction,
    RefundMethod,
    ResolutionType,
    ReturnCategory,
    ReturnSourceType,
    ReturnStatus,
)


# ===========================================
# CREATE
# ===========================================

class ProductReturnCreate(BaseModel):
    """Schema for registering a returned item (intake)."""
    location_id: str = Field(..., max_length=64)
    product_id: Optional[str] = Field(None, max_length=64)
    product_name: Optional[str] = Field(None, max_length=255)
    product_code: Optional[str] = Field(None, max_length=100)
    product_serial_number: Optional[str] = Field(None, max_length=100)
    product_batch_number: Optional[str] = Field(None, max_length=100)

    source_type: ReturnSourceType
    source_id: Optional[str] = Field(None, max_length=64)
    return_category: ReturnCategory
    return_reason: str = Field(..., max_length=255)

    quantity: int
    product_value: Decimal = Field(..., max_digits=15, decimal_places=2)
    refund_amount: Optional[Decimal] = Field(None, max_digits=15, decimal_places=2)
    notes: Optional[str] = None

    customer_id: Optional[str] = Field(None, max_length=64)
    customer_name: Optional[str] = Field(None, max_length=255)
    customer_phone: Optional[str] = Field(None, max_length=30)
    customer_email: Optional[str] = Field(None, max_length=255)


# ===========================================
# TRANSITIONS
# ===========================================

class InspectReturnRequest(BaseModel):
    """Inspection findings. Set inspection_complete to hand over for approval."""
    product_condition: ProductCondition = Field(
        ...,
        validation_alias=AliasChoices("product_condition", "condition"),
    )
    inspection_notes: Optional[str] = None
    recommended_action: Optional[RecommendedAction] = None
    inspection_complete: bool = False


class ApproveReturnRequest(BaseModel):
    """Approval with the intended resolution."""
    resolution_type: ResolutionType
    notes: Optional[str] = None


class RejectReturnRequest(BaseModel):
    """Rejection with a reason from the closed list."""
    rejection_reason: str = Field(..., max_length=255)
    notes: Optional[str] = None


class CancelReturnRequest(BaseModel):
    """Cancellation of a return that has not been approved yet."""
    cancellation_reason: str = Field(..., max_length=255)
    notes: Optional[str] = None


class _ProcessBase(BaseModel):
    resolution_details: Optional[str] = None
    notes: Optional[str] = None


class RestockProcessRequest(_ProcessBase):
    resolution_type: Literal["RESTOCKED_BRANCH"] = "RESTOCKED_BRANCH"


class ScrapProcessRequest(_ProcessBase):
    resolution_type: Literal["SCRAPPED"] = "SCRAPPED"


class RefundProcessRequest(_ProcessBase):
    resolution_type: Literal["REFUND_PROCESSED"] = "REFUND_PROCESSED"
    refund_amount: Decimal = Field(..., max_digits=15, decimal_places=2)
    refund_method: RefundMethod


class SupplierReturnPayload(BaseModel):
    supplier_id: str = Field(..., max_length=64)
    reason: str = Field(..., max_length=255)
    reason_description: Optional[str] = None


class SupplierReturnProcessRequest(_ProcessBase):
    resolution_type: Literal["RETURNED_SUPPLIER"] = "RETURNED_SUPPLIER"
    supplier_return: SupplierReturnPayload = Field(
        ...,
        validation_alias=AliasChoices("supplier_return", "supplier_return_data"),
    )


class TransferProcessRequest(_ProcessBase):
    resolution_type: Literal["TRANSFERRED_WAREHOUSE"] = "TRANSFERRED_WAREHOUSE"
    transfer_to_location_id: str = Field(..., max_length=64)
    transfer_notes: Optional[str] = None


class WarrantyReplacementProcessRequest(_ProcessBase):
    resolution_type: Literal["WARRANTY_REPLACEMENT"] = "WARRANTY_REPLACEMENT"


ProcessReturnRequest = Annotated[
    Union[
        RestockProcessRequest,
        ScrapProcessRequest,
        RefundProcessRequest,
        SupplierReturnProcessRequest,
        TransferProcessRequest,
        WarrantyReplacementProcessRequest,
    ],
    Field(discriminator="resolution_type"),
]


# ===========================================
# RESPONSES
# ===========================================

class ProductReturnResponse(BaseModel):
    """Response schema for a product return."""
    id: UUID
    return_number: str
    location_id: str
    product_id: str
    product_name: Optional[str]
    product_code: Optional[str]
    product_serial_number: Optional[str]
    product_batch_number: Optional[str]
    source_type: ReturnSourceType
    source_id: Optional[str]
    return_category: ReturnCategory
    return_reason: str
    quantity: int
    product_value: float
    refund_amount: Optional[float]
    notes: Optional[str]

    customer_id: Optional[str]
    customer_name: Optional[str]
    customer_phone: Optional[str]
    customer_email: Optional[str]

    status: ReturnStatus
    product_condition: Optional[ProductCondition]
    inspection_notes: Optional[str]
    recommended_action: Optional[RecommendedAction]
    approved_resolution_type: Optional[ResolutionType]
    approval_notes: Optional[str]
    resolution_type: Optional[ResolutionType]
    resolution_details: Optional[str]
    refund_method: Optional[RefundMethod]
    supplier_id: Optional[str]
    supplier_return_reason: Optional[str]
    supplier_return_description: Optional[str]
    supplier_return_id: Optional[str]
    transfer_to_location_id: Optional[str]
    transfer_notes: Optional[str]
    rejection_reason: Optional[str]
    rejection_notes: Optional[str]
    cancellation_reason: Optional[str]
    cancellation_notes: Optional[str]

    created_by_id: UUID
    inspected_at: Optional[datetime]
    inspected_by_id: Optional[UUID]
    approved_at: Optional[datetime]
    approved_by_id: Optional[UUID]
    rejected_at: Optional[datetime]
    rejected_by_id: Optional[UUID]
    processed_at: Optional[datetime]
    processed_by_id: Optional[UUID]
    cancelled_at: Optional[datetime]
    cancelled_by_id: Optional[UUID]
    completed_at: Optional[datetime]
    created_at: datetime
    updated_at: Optional[datetime]
    version: int

    model_config = ConfigDict(from_attributes=True)


class ProductReturnListResponse(BaseModel):
    """Paginated list of returns."""
    items: List[ProductReturnResponse]
    total: int
    page: int
    limit: int
    total_pages: int


class ReturnStatusEventResponse(BaseModel):
    sequence: int
    from_status: Optional[ReturnStatus]
    to_status: ReturnStatus
    actor_id: UUID
    occurred_at: datetime
    note: Optional[str]

    model_config = ConfigDict(from_attributes=True)


class ReturnInspectionResponse(BaseModel):
    sequence: int
    product_condition: ProductCondition
    inspection_notes: str
    recommended_action: Optional[RecommendedAction]
    inspection_complete: bool
    inspected_at: datetime
    inspected_by_id: UUID

    model_config = ConfigDict(from_attributes=True)


class ReturnDispatchAttemptResponse(BaseModel):
    resolution_type: ResolutionType
    idempotency_key: str
    collaborator: str
    outcome: DispatchOutcome
    reference: Optional[str]
    error_message: Optional[str]
    attempted_at: datetime
    attempted_by_id: UUID

    model_config = ConfigDict(from_attributes=True)


class ReturnHistoryResponse(BaseModel):
    """Full audit trail of a return."""
    return_id: UUID
    return_number: str
    status: ReturnStatus
    status_events: List[ReturnStatusEventResponse]
    inspections: List[ReturnInspectionResponse]
    dispatch_attempts: List[ReturnDispatchAttemptResponse]


class SuggestedResolutionResponse(BaseModel):
    """Advisory default for the process form."""
    return_id: UUID
    suggested_resolution: ResolutionType
    allowed_resolutions: List[ResolutionType]


class ReturnStatsResponse(BaseModel):
    """Aggregated counters for a location and/or period."""
    total_returns: int
    pending_returns: int
    approved_returns: int
    rejected_returns: int
    completed_returns: int
    total_value: float
    total_refunded: float
    average_processing_time_hours: Optional[float]
    returns_by_status: Dict[str, int]
    returns_by_category: Dict[str, int]
    returns_by_reason: Dict[str, int]


class ReturnTrendPoint(BaseModel):
    date: date
    returns: int
    value: float


class ReturnAnalyticsResponse(ReturnStatsResponse):
    """Stats plus a per-day trend for the period."""
    period: str
    trend_data: List[ReturnTrendPoint]


class CustomerMatchResponse(BaseModel):
    """Customer record returned by the customer directory."""
    id: str
    name: str
    phone: str
    email: Optional[str] = None
