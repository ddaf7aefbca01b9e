"""
POS Returns Engine - Return Lifecycle Rules

Pure decision tables and guard functions for the return state machine.
Nothing here touches the database; ProductReturnService calls these before
any mutation so a failed guard never leaves a partial write.

State machine:
    RECEIVED -> INSPECTING -> PENDING_APPROVAL -> APPROVED -> PROCESSING -> COMPLETED
    RECEIVED | INSPECTING | PENDING_APPROVAL -> REJECTED
    RECEIVED | INSPECTING | PENDING_APPROVAL -> CANCELLED
    PROCESSING -> REPLACEMENT_SENT (warranty replacement)
"""

from decimal import Decimal
from typing import Dict, FrozenSet, Iterable, List, Optional, Set, Union
from uuid import UUID

from app.models.product_return import (
    ProductCondition,
    ProductReturn,
    ResolutionType,
    ReturnCategory,
    ReturnSourceType,
    ReturnStatus,
)
from app.schemas.product_return import (
    InspectReturnRequest,
    ProductReturnCreate,
    RefundProcessRequest,
    SupplierReturnProcessRequest,
    TransferProcessRequest,
)
from app.utils.error_handling import (
    IllegalTransitionError,
    InvalidAmountException,
    MissingFieldException,
    ReturnValidationError,
)


# ===========================================
# DECISION TABLES
# ===========================================

ALLOWED_TRANSITIONS: Dict[ReturnStatus, FrozenSet[ReturnStatus]] = {
    ReturnStatus.RECEIVED: frozenset({
        ReturnStatus.INSPECTING,
        ReturnStatus.PENDING_APPROVAL,
        ReturnStatus.REJECTED,
        ReturnStatus.CANCELLED,
    }),
    ReturnStatus.INSPECTING: frozenset({
        ReturnStatus.PENDING_APPROVAL,
        ReturnStatus.APPROVED,
        ReturnStatus.REJECTED,
        ReturnStatus.CANCELLED,
    }),
    ReturnStatus.PENDING_APPROVAL: frozenset({
        ReturnStatus.APPROVED,
        ReturnStatus.REJECTED,
        ReturnStatus.CANCELLED,
    }),
    ReturnStatus.APPROVED: frozenset({ReturnStatus.PROCESSING}),
    ReturnStatus.PROCESSING: frozenset({
        ReturnStatus.COMPLETED,
        ReturnStatus.REPLACEMENT_SENT,
    }),
    ReturnStatus.COMPLETED: frozenset(),
    ReturnStatus.REJECTED: frozenset(),
    ReturnStatus.CANCELLED: frozenset(),
    ReturnStatus.REPLACEMENT_SENT: frozenset(),
}

TERMINAL_STATUSES: FrozenSet[ReturnStatus] = frozenset(
    s for s, targets in ALLOWED_TRANSITIONS.items() if not targets
)

PENDING_STATUSES: FrozenSet[ReturnStatus] = frozenset({
    ReturnStatus.RECEIVED,
    ReturnStatus.INSPECTING,
    ReturnStatus.PENDING_APPROVAL,
})

OPERATION_SOURCE_STATES: Dict[str, FrozenSet[ReturnStatus]] = {
    "inspect": PENDING_STATUSES,
    "approve": frozenset({ReturnStatus.INSPECTING, ReturnStatus.PENDING_APPROVAL}),
    "reject": PENDING_STATUSES,
    "process": frozenset({ReturnStatus.APPROVED}),
    "cancel": PENDING_STATUSES,
}

APPROVAL_RESOLUTIONS: FrozenSet[ResolutionType] = frozenset(ResolutionType)

PROCESSING_RESOLUTIONS: FrozenSet[ResolutionType] = frozenset({
    ResolutionType.RESTOCKED_BRANCH,
    ResolutionType.REFUND_PROCESSED,
    ResolutionType.RETURNED_SUPPLIER,
    ResolutionType.TRANSFERRED_WAREHOUSE,
    ResolutionType.SCRAPPED,
})

# Only reachable at Process when approval chose it
WARRANTY_VARIANT = ResolutionType.WARRANTY_REPLACEMENT

REJECTION_REASONS: List[str] = [
    "Product not eligible for return",
    "Return period expired",
    "Product damaged by customer",
    "Missing original packaging",
    "Product not matching return policy",
    "Invalid return request",
    "Other",
]
REJECTION_REASON_OTHER = "Other"

CUSTOMER_FACING_SOURCES: FrozenSet[ReturnSourceType] = frozenset({
    ReturnSourceType.SALE,
    ReturnSourceType.WARRANTY_CLAIM,
    ReturnSourceType.JOB_SHEET,
})

CUSTOMER_FACING_DIRECT_CATEGORIES: FrozenSet[ReturnCategory] = frozenset({
    ReturnCategory.CUSTOMER_RETURN,
    ReturnCategory.WARRANTY_RETURN,
})

SUPPLIER_CATEGORIES: FrozenSet[ReturnCategory] = frozenset({
    ReturnCategory.DEFECTIVE,
    ReturnCategory.QUALITY_FAILURE,
})


# ===========================================
# STATE MACHINE
# ===========================================

def can_transition(from_status: ReturnStatus, to_status: ReturnStatus) -> bool:
    """True when the edge exists in ALLOWED_TRANSITIONS."""
    return to_status in ALLOWED_TRANSITIONS.get(from_status, frozenset())


def reachable_statuses(start: ReturnStatus = ReturnStatus.RECEIVED) -> Set[ReturnStatus]:
    """All statuses reachable from start by legal edges (start included)."""
    seen = {start}
    frontier = [start]
    while frontier:
        current = frontier.pop()
        for nxt in ALLOWED_TRANSITIONS[current]:
            if nxt not in seen:
                seen.add(nxt)
                frontier.append(nxt)
    return seen


def ensure_operation_allowed(operation: str, current_status: ReturnStatus) -> None:
    """Raise IllegalTransitionError when operation is not accepted from current_status."""
    allowed = OPERATION_SOURCE_STATES[operation]
    if current_status not in allowed:
        raise IllegalTransitionError(
            operation=operation,
            current_status=current_status,
            allowed_from=sorted(allowed, key=lambda s: s.value),
        )


def next_inspection_status(current_status: ReturnStatus, inspection_complete: bool) -> ReturnStatus:
    """
    Status after an inspection pass.

    Re-inspection never moves a return backwards: PENDING_APPROVAL stays put
    whatever the completion flag says.
    """
    if current_status == ReturnStatus.PENDING_APPROVAL:
        return current_status
    if inspection_complete:
        return ReturnStatus.PENDING_APPROVAL
    return ReturnStatus.INSPECTING


def processing_target_status(resolution_type: ResolutionType) -> ReturnStatus:
    """Final status after a successful dispatch."""
    if resolution_type == WARRANTY_VARIANT:
        return ReturnStatus.REPLACEMENT_SENT
    return ReturnStatus.COMPLETED


def idempotency_key(return_id: Union[str, UUID], resolution_type: ResolutionType) -> str:
    """Stable key collaborators use to deduplicate retried dispatches."""
    return f"{return_id}:{ResolutionType(resolution_type).value}"


# ===========================================
# CREATE
# ===========================================

def requires_customer_info(source_type: ReturnSourceType, return_category: ReturnCategory) -> bool:
    """Customer name and phone are needed for customer-facing returns."""
    if source_type in CUSTOMER_FACING_SOURCES:
        return True
    if source_type == ReturnSourceType.DIRECT:
        return return_category in CUSTOMER_FACING_DIRECT_CATEGORIES
    return False


def validate_create(data: ProductReturnCreate) -> None:
    """Guards for registering a new return."""
    _require_text(data.location_id, "location_id")
    _require_text(data.product_id, "product_id")
    _require_text(data.return_reason, "return_reason")

    if data.quantity is None or data.quantity <= 0:
        raise ReturnValidationError(
            message="Quantity must be greater than zero",
            field="quantity",
            details={"provided_quantity": data.quantity},
        )

    if data.product_value is None or data.product_value <= 0:
        raise InvalidAmountException(
            data.product_value,
            field="product_value",
            message="Product value must be greater than zero",
        )

    if data.source_type == ReturnSourceType.SALE:
        _require_text(data.source_id, "source_id", "Sale returns must reference the original sale")

    if data.refund_amount is not None:
        if data.source_type != ReturnSourceType.SALE:
            raise ReturnValidationError(
                message="Refund amount is only allowed for returns from a sale",
                field="refund_amount",
                details={"source_type": data.source_type.value},
            )
        _validate_refund_bound(data.refund_amount, data.product_value * data.quantity, allow_zero=True)

    if requires_customer_info(data.source_type, data.return_category):
        _require_text(data.customer_name, "customer_name", "Customer name is required for this return")
        _require_text(data.customer_phone, "customer_phone", "Customer phone is required for this return")


# ===========================================
# TRANSITIONS
# ===========================================

def validate_inspection(data: InspectReturnRequest) -> None:
    if data.product_condition is None:
        raise MissingFieldException("product_condition")
    _require_text(data.inspection_notes, "inspection_notes")


def validate_approval(resolution_type: Optional[ResolutionType]) -> None:
    if resolution_type is None:
        raise MissingFieldException("resolution_type")
    if resolution_type not in APPROVAL_RESOLUTIONS:
        raise ReturnValidationError(
            message=f"Unknown resolution type: {resolution_type}",
            field="resolution_type",
        )


def validate_rejection(rejection_reason: Optional[str], notes: Optional[str]) -> None:
    _require_text(rejection_reason, "rejection_reason")
    if rejection_reason not in REJECTION_REASONS:
        raise ReturnValidationError(
            message=f"Unknown rejection reason: {rejection_reason}",
            field="rejection_reason",
            details={"allowed_reasons": REJECTION_REASONS},
        )
    if rejection_reason == REJECTION_REASON_OTHER:
        _require_text(notes, "notes", "Notes are required when the rejection reason is 'Other'")


def validate_cancellation(cancellation_reason: Optional[str]) -> None:
    _require_text(cancellation_reason, "cancellation_reason")


def validate_process(record: ProductReturn, payload) -> ResolutionType:
    """
    Guards for the Process payload against the approved record.

    Returns the parsed resolution type. Per-resolution rules are looked up
    in _PAYLOAD_RULES so each rule stays independently testable.
    """
    resolution = ResolutionType(payload.resolution_type)
    _require_text(payload.resolution_details, "resolution_details")

    if resolution == WARRANTY_VARIANT:
        if record.approved_resolution_type != WARRANTY_VARIANT:
            raise ReturnValidationError(
                message="Warranty replacement requires an approval for warranty replacement",
                field="resolution_type",
                details={
                    "approved_resolution_type": getattr(
                        record.approved_resolution_type, "value", record.approved_resolution_type
                    ),
                },
            )
    elif resolution not in PROCESSING_RESOLUTIONS:
        raise ReturnValidationError(
            message=f"{resolution.value} cannot be processed",
            field="resolution_type",
            details={"allowed": sorted(r.value for r in PROCESSING_RESOLUTIONS)},
        )

    check_dispatch_preconditions(record, payload, resolution)
    return resolution


def check_dispatch_preconditions(record: ProductReturn, payload, resolution: ResolutionType) -> None:
    """
    Record and payload conditions a resolution needs before its collaborator
    is called: a sale for refunds, supplier fields for supplier returns and
    a different destination for transfers.
    """
    rule = _PAYLOAD_RULES.get(resolution)
    if rule is not None:
        rule(record, payload)


def _check_refund(record: ProductReturn, payload: RefundProcessRequest) -> None:
    if record.source_type != ReturnSourceType.SALE:
        raise ReturnValidationError(
            message="Refunds can only be processed for returns from a sale",
            field="resolution_type",
            details={"source_type": record.source_type.value},
        )
    if payload.refund_method is None:
        raise MissingFieldException("refund_method")
    _validate_refund_bound(payload.refund_amount, record.line_value, allow_zero=False)


def _check_supplier_return(record: ProductReturn, payload: SupplierReturnProcessRequest) -> None:
    supplier = payload.supplier_return
    if supplier is None:
        raise MissingFieldException("supplier_return")
    _require_text(supplier.supplier_id, "supplier_return.supplier_id")
    _require_text(supplier.reason, "supplier_return.reason")


def _check_transfer(record: ProductReturn, payload: TransferProcessRequest) -> None:
    _require_text(payload.transfer_to_location_id, "transfer_to_location_id")
    if payload.transfer_to_location_id.strip() == record.location_id:
        raise ReturnValidationError(
            message="Transfer destination must differ from the return location",
            field="transfer_to_location_id",
            details={"location_id": record.location_id},
        )


_PAYLOAD_RULES = {
    ResolutionType.REFUND_PROCESSED: _check_refund,
    ResolutionType.RETURNED_SUPPLIER: _check_supplier_return,
    ResolutionType.TRANSFERRED_WAREHOUSE: _check_transfer,
}


# ===========================================
# ADVISORY
# ===========================================

def suggest_resolution(
    source_type: ReturnSourceType,
    return_category: ReturnCategory,
    product_condition: Optional[ProductCondition] = None,
) -> ResolutionType:
    """Default resolution offered on the process form. Advisory only."""
    if source_type == ReturnSourceType.SALE:
        return ResolutionType.REFUND_PROCESSED
    if return_category in SUPPLIER_CATEGORIES:
        return ResolutionType.RETURNED_SUPPLIER
    if return_category == ReturnCategory.DAMAGED or product_condition == ProductCondition.DESTROYED:
        return ResolutionType.SCRAPPED
    return ResolutionType.RESTOCKED_BRANCH


def allowed_process_resolutions(record: ProductReturn) -> List[ResolutionType]:
    """Resolutions the Process call would accept for this record."""
    allowed: Iterable[ResolutionType] = PROCESSING_RESOLUTIONS
    if record.source_type != ReturnSourceType.SALE:
        allowed = [r for r in allowed if r != ResolutionType.REFUND_PROCESSED]
    result = sorted(allowed, key=lambda r: r.value)
    if record.approved_resolution_type == WARRANTY_VARIANT:
        result.append(WARRANTY_VARIANT)
    return result


# ===========================================
# HELPERS
# ===========================================

def _require_text(value: Optional[str], field: str, message: Optional[str] = None) -> None:
    if value is None or not str(value).strip():
        raise MissingFieldException(field, message)


def _validate_refund_bound(amount: Optional[Decimal], line_value: Decimal, allow_zero: bool) -> None:
    if amount is None:
        raise MissingFieldException("refund_amount")
    if amount < 0 or (amount == 0 and not allow_zero):
        raise InvalidAmountException(
            amount,
            field="refund_amount",
            message="Refund amount must be greater than zero" if not allow_zero
            else "Refund amount cannot be negative",
        )
    if amount > line_value:
        raise InvalidAmountException(
            amount,
            field="refund_amount",
            message=f"Refund amount cannot exceed the returned value of {line_value}",
        )
