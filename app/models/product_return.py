"""
POS Returns Engine - Product Return Models

Durable record of a product return, its append-only audit trail
(status events, inspections, dispatch attempts) and the per-day
return number counter.
"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from sqlalchemy import (
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    Enum as SQLEnum,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base
from app.models.base import BaseModel, utcnow


class ReturnSourceType(str, Enum):
    """Where the returned item came from."""
    SALE = "SALE"
    WARRANTY_CLAIM = "WARRANTY_CLAIM"
    JOB_SHEET = "JOB_SHEET"
    STOCK_CHECK = "STOCK_CHECK"
    DIRECT = "DIRECT"
    GOODS_RECEIPT = "GOODS_RECEIPT"


class ReturnCategory(str, Enum):
    """Business classification of the return."""
    CUSTOMER_RETURN = "CUSTOMER_RETURN"
    WARRANTY_RETURN = "WARRANTY_RETURN"
    DEFECTIVE = "DEFECTIVE"
    EXCESS_STOCK = "EXCESS_STOCK"
    QUALITY_FAILURE = "QUALITY_FAILURE"
    DAMAGED = "DAMAGED"
    INTERNAL_TRANSFER = "INTERNAL_TRANSFER"


class ProductCondition(str, Enum):
    """Condition recorded at inspection."""
    NEW_SEALED = "NEW_SEALED"
    NEW_OPEN_BOX = "NEW_OPEN_BOX"
    USED_EXCELLENT = "USED_EXCELLENT"
    USED_GOOD = "USED_GOOD"
    USED_FAIR = "USED_FAIR"
    DEFECTIVE = "DEFECTIVE"
    DAMAGED = "DAMAGED"
    PARTS_MISSING = "PARTS_MISSING"
    DESTROYED = "DESTROYED"


class RecommendedAction(str, Enum):
    """Inspector's advisory recommendation."""
    APPROVE = "APPROVE"
    REJECT = "REJECT"


class ReturnStatus(str, Enum):
    """Lifecycle status of a return."""
    RECEIVED = "RECEIVED"
    INSPECTING = "INSPECTING"
    PENDING_APPROVAL = "PENDING_APPROVAL"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    REPLACEMENT_SENT = "REPLACEMENT_SENT"


class ResolutionType(str, Enum):
    """Resolution chosen at approval (all values) or at processing (subset)."""
    REFUND_PROCESSED = "REFUND_PROCESSED"
    RESTOCKED_BRANCH = "RESTOCKED_BRANCH"
    RETURNED_SUPPLIER = "RETURNED_SUPPLIER"
    TRANSFERRED_WAREHOUSE = "TRANSFERRED_WAREHOUSE"
    SCRAPPED = "SCRAPPED"
    STORE_CREDIT = "STORE_CREDIT"
    EXCHANGE_PROCESSED = "EXCHANGE_PROCESSED"
    WARRANTY_REPLACEMENT = "WARRANTY_REPLACEMENT"
    DONATION = "DONATION"
    RECYCLING = "RECYCLING"
    OTHER = "OTHER"


class RefundMethod(str, Enum):
    """How a refund is paid out."""
    CASH = "CASH"
    CARD = "CARD"
    BANK_TRANSFER = "BANK_TRANSFER"
    MOBILE_PAYMENT = "MOBILE_PAYMENT"
    CHECK = "CHECK"
    OTHER = "OTHER"


class DispatchOutcome(str, Enum):
    """Result of one resolution dispatch attempt."""
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


class ProductReturn(BaseModel):
    """
    A returned product moving through the return lifecycle.

    Classification and subject fields are fixed at creation. Status only
    changes through ProductReturnService, and every change is mirrored
    by a ReturnStatusEvent row.
    """

    __tablename__ = "product_returns"

    # Identity
    return_number: Mapped[str] = mapped_column(
        String(40),
        nullable=False,
        unique=True,
        index=True,
        comment="Human readable, e.g. RET-20260118-0001",
    )

    # Classification (immutable)
    source_type: Mapped[ReturnSourceType] = mapped_column(
        SQLEnum(ReturnSourceType, name="return_source_type"),
        nullable=False,
        index=True,
    )
    source_id: Mapped[Optional[str]] = mapped_column(
        String(64),
        nullable=True,
        index=True,
        comment="Originating sale, warranty claim or job sheet",
    )
    return_category: Mapped[ReturnCategory] = mapped_column(
        SQLEnum(ReturnCategory, name="return_category"),
        nullable=False,
        index=True,
    )
    return_reason: Mapped[str] = mapped_column(String(255), nullable=False)

    # Subject
    location_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    product_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    product_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    product_code: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    product_serial_number: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    product_batch_number: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    product_value: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=2),
        nullable=False,
        comment="Unit value at return time",
    )
    refund_amount: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(precision=15, scale=2),
        nullable=True,
        comment="Only for SALE returns",
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Customer
    customer_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    customer_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    customer_phone: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    customer_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Status
    status: Mapped[ReturnStatus] = mapped_column(
        SQLEnum(ReturnStatus, name="return_status"),
        nullable=False,
        default=ReturnStatus.RECEIVED,
        index=True,
    )

    # Inspection (latest view; history in return_inspections)
    product_condition: Mapped[Optional[ProductCondition]] = mapped_column(
        SQLEnum(ProductCondition, name="product_condition"),
        nullable=True,
    )
    inspection_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    recommended_action: Mapped[Optional[RecommendedAction]] = mapped_column(
        SQLEnum(RecommendedAction, name="recommended_action"),
        nullable=True,
    )

    # Approval
    approved_resolution_type: Mapped[Optional[ResolutionType]] = mapped_column(
        SQLEnum(ResolutionType, name="approved_resolution_type"),
        nullable=True,
    )
    approval_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Resolution
    resolution_type: Mapped[Optional[ResolutionType]] = mapped_column(
        SQLEnum(ResolutionType, name="resolution_type"),
        nullable=True,
        index=True,
    )
    resolution_details: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    refund_method: Mapped[Optional[RefundMethod]] = mapped_column(
        SQLEnum(RefundMethod, name="refund_method"),
        nullable=True,
    )
    supplier_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    supplier_return_reason: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    supplier_return_description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    supplier_return_id: Mapped[Optional[str]] = mapped_column(
        String(64),
        nullable=True,
        comment="Reference returned by the supplier-return service",
    )
    transfer_to_location_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    transfer_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Rejection / cancellation
    rejection_reason: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    rejection_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    cancellation_reason: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    cancellation_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Audit pairs
    created_by_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    inspected_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    inspected_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True)
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    approved_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True)
    rejected_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    rejected_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True)
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    processed_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Optimistic lock counter
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    # Relationships (load explicitly with selectinload)
    status_events: Mapped[List["ReturnStatusEvent"]] = relationship(
        "ReturnStatusEvent",
        back_populates="product_return",
        order_by="ReturnStatusEvent.sequence",
        cascade="all, delete-orphan",
    )
    inspections: Mapped[List["ReturnInspection"]] = relationship(
        "ReturnInspection",
        back_populates="product_return",
        order_by="ReturnInspection.sequence",
        cascade="all, delete-orphan",
    )
    dispatch_attempts: Mapped[List["ReturnDispatchAttempt"]] = relationship(
        "ReturnDispatchAttempt",
        back_populates="product_return",
        order_by="ReturnDispatchAttempt.attempted_at",
        cascade="all, delete-orphan",
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def line_value(self) -> Decimal:
        """Product value times quantity."""
        return self.product_value * self.quantity

    def __repr__(self) -> str:
        return f"<ProductReturn(number={self.return_number}, status={self.status})>"


class ReturnStatusEvent(BaseModel):
    """
    One status change of a return. Rows are only ever inserted.
    """

    __tablename__ = "return_status_events"
    __table_args__ = (
        UniqueConstraint("return_id", "sequence", name="uq_return_status_events_return_sequence"),
    )

    return_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("product_returns.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    from_status: Mapped[Optional[ReturnStatus]] = mapped_column(
        SQLEnum(ReturnStatus, name="return_status"),
        nullable=True,
    )
    to_status: Mapped[ReturnStatus] = mapped_column(
        SQLEnum(ReturnStatus, name="return_status"),
        nullable=False,
    )
    actor_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )
    note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    product_return: Mapped["ProductReturn"] = relationship(
        "ProductReturn",
        back_populates="status_events",
    )

    def __repr__(self) -> str:
        return f"<ReturnStatusEvent({self.from_status} -> {self.to_status})>"


class ReturnInspection(BaseModel):
    """
    One inspection pass. Re-inspection appends a new row; the latest row
    is mirrored onto the ProductReturn.
    """

    __tablename__ = "return_inspections"
    __table_args__ = (
        UniqueConstraint("return_id", "sequence", name="uq_return_inspections_return_sequence"),
    )

    return_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("product_returns.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    product_condition: Mapped[ProductCondition] = mapped_column(
        SQLEnum(ProductCondition, name="product_condition"),
        nullable=False,
    )
    inspection_notes: Mapped[str] = mapped_column(Text, nullable=False)
    recommended_action: Mapped[Optional[RecommendedAction]] = mapped_column(
        SQLEnum(RecommendedAction, name="recommended_action"),
        nullable=True,
    )
    inspection_complete: Mapped[bool] = mapped_column(default=False, nullable=False)
    inspected_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )
    inspected_by_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)

    product_return: Mapped["ProductReturn"] = relationship(
        "ProductReturn",
        back_populates="inspections",
    )


class ReturnDispatchAttempt(BaseModel):
    """
    One call to an external collaborator on behalf of a return.
    """

    __tablename__ = "return_dispatch_attempts"

    return_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("product_returns.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    resolution_type: Mapped[ResolutionType] = mapped_column(
        SQLEnum(ResolutionType, name="resolution_type"),
        nullable=False,
    )
    idempotency_key: Mapped[str] = mapped_column(String(120), nullable=False, index=True)
    collaborator: Mapped[str] = mapped_column(String(50), nullable=False)
    outcome: Mapped[DispatchOutcome] = mapped_column(
        SQLEnum(DispatchOutcome, name="dispatch_outcome"),
        nullable=False,
    )
    reference: Mapped[Optional[str]] = mapped_column(
        String(120),
        nullable=True,
        comment="Identifier returned by the collaborator",
    )
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    attempted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )
    attempted_by_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)

    product_return: Mapped["ProductReturn"] = relationship(
        "ProductReturn",
        back_populates="dispatch_attempts",
    )


class ReturnNumberSequence(Base):
    """Per-day counter backing return numbers."""

    __tablename__ = "return_number_sequences"

    sequence_date: Mapped[date] = mapped_column(Date, primary_key=True)
    current_number: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )
