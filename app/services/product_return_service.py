"""
POS Returns Engine - Product Return Service

Lifecycle operations for product returns: intake, inspection, approval,
rejection, processing (with resolution dispatch) and cancellation, plus
the read side (lookup, list, history, suggested resolution).

Every transition runs under the per-record transition lock, checks the
guards in return_rules before touching the record, appends a
ReturnStatusEvent for each status change and commits once. A lost
version race at commit surfaces as ConflictingStateError.
"""

import logging
import math
import uuid
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple, Type, Union

from sqlalchemy import func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from app.config import settings
from app.models.base import utcnow
from app.models.product_return import (
    DispatchOutcome,
    ProductReturn,
    ResolutionType,
    ReturnCategory,
    ReturnDispatchAttempt,
    ReturnInspection,
    ReturnNumberSequence,
    ReturnSourceType,
    ReturnStatus,
    ReturnStatusEvent,
)
from app.schemas.product_return import (
    ApproveReturnRequest,
    CancelReturnRequest,
    InspectReturnRequest,
    ProductReturnCreate,
    RejectReturnRequest,
)
from app.services import return_rules as rules
from app.services.resolution_dispatcher import ResolutionDispatcher
from app.services.return_collaborators import CustomerDirectory, CustomerRecord
from app.services.return_locks import TransitionLockRegistry, get_lock_registry
from app.utils.error_handling import (
    CollaboratorError,
    ConflictingStateError,
    DispatchFailure,
    IllegalTransitionError,
    InvalidDateRangeException,
    MissingFieldException,
    ReturnNotFoundError,
    ReturnValidationError,
)

logger = logging.getLogger(__name__)


SORTABLE_COLUMNS = {
    "created_at": ProductReturn.created_at,
    "updated_at": ProductReturn.updated_at,
    "return_number": ProductReturn.return_number,
    "product_value": ProductReturn.product_value,
    "quantity": ProductReturn.quantity,
    "status": ProductReturn.status,
}

SEARCH_COLUMNS = (
    ProductReturn.return_number,
    ProductReturn.customer_name,
    ProductReturn.customer_phone,
    ProductReturn.product_name,
    ProductReturn.product_code,
    ProductReturn.product_serial_number,
)


class ProductReturnService:
    """Service for the product return lifecycle."""

    def __init__(
        self,
        db: AsyncSession,
        dispatcher: Optional[ResolutionDispatcher] = None,
        customer_directory: Optional[CustomerDirectory] = None,
        locks: Optional[TransitionLockRegistry] = None,
    ):
        self.db = db
        self.dispatcher = dispatcher
        self.customer_directory = customer_directory
        self.locks = locks or get_lock_registry()

    # ===========================================
    # CREATE
    # ===========================================

    async def create_return(self, data: ProductReturnCreate, actor_id: uuid.UUID) -> ProductReturn:
        """Register a returned item. The new record starts in RECEIVED."""
        data = await self._link_customer(data)
        try:
            rules.validate_create(data)
        except ReturnValidationError as e:
            logger.warning(f"Return intake rejected: {e.message}")
            raise

        return_number = await self._allocate_return_number()
        record = ProductReturn(
            id=uuid.uuid4(),
            return_number=return_number,
            source_type=data.source_type,
            source_id=data.source_id,
            return_category=data.return_category,
            return_reason=data.return_reason.strip(),
            location_id=data.location_id,
            product_id=data.product_id,
            product_name=data.product_name,
            product_code=data.product_code,
            product_serial_number=data.product_serial_number,
            product_batch_number=data.product_batch_number,
            quantity=data.quantity,
            product_value=data.product_value,
            refund_amount=data.refund_amount,
            notes=data.notes,
            customer_id=data.customer_id,
            customer_name=data.customer_name,
            customer_phone=data.customer_phone,
            customer_email=data.customer_email,
            status=ReturnStatus.RECEIVED,
            created_by_id=actor_id,
        )
        self.db.add(record)
        self.db.add(
            ReturnStatusEvent(
                return_id=record.id,
                sequence=1,
                from_status=None,
                to_status=ReturnStatus.RECEIVED,
                actor_id=actor_id,
                note="Return registered",
            )
        )

        try:
            await self.db.commit()
        except SQLAlchemyError:
            await self.db.rollback()
            raise
        await self.db.refresh(record)

        logger.info(
            f"Return {record.return_number} registered "
            f"({record.source_type.value}/{record.return_category.value}, qty={record.quantity})"
        )
        return record

    async def _allocate_return_number(self) -> str:
        """
        Next RET-YYYYMMDD-NNNN number.

        The per-day counter row is locked for update so concurrent intakes
        never share a number; numbers of cancelled returns are not reused.
        """
        today = utcnow().date()
        result = await self.db.execute(
            select(ReturnNumberSequence)
            .where(ReturnNumberSequence.sequence_date == today)
            .with_for_update()
        )
        sequence = result.scalar_one_or_none()
        if sequence is None:
            sequence = ReturnNumberSequence(sequence_date=today, current_number=0)
            self.db.add(sequence)

        sequence.current_number += 1
        await self.db.flush()

        return format_return_number(today, sequence.current_number)

    async def _link_customer(self, data: ProductReturnCreate) -> ProductReturnCreate:
        """Attach the directory customer matching the phone, if any."""
        if self.customer_directory is None or data.customer_id or not data.customer_phone:
            return data
        try:
            matches = await self.customer_directory.search(data.customer_phone)
        except CollaboratorError as e:
            logger.warning(f"Customer lookup failed, continuing without link: {e.reason}")
            return data
        if not matches:
            return data

        customer: CustomerRecord = matches[0]
        return data.model_copy(
            update={
                "customer_id": customer.id,
                "customer_name": data.customer_name or customer.name,
                "customer_email": data.customer_email or customer.email,
            }
        )

    # ===========================================
    # READ
    # ===========================================

    async def get_return(self, return_id: uuid.UUID) -> ProductReturn:
        record = await self.db.get(ProductReturn, return_id)
        if record is None:
            raise ReturnNotFoundError(return_id=return_id)
        return record

    async def get_by_number(self, return_number: str) -> ProductReturn:
        result = await self.db.execute(
            select(ProductReturn).where(ProductReturn.return_number == return_number)
        )
        record = result.scalar_one_or_none()
        if record is None:
            raise ReturnNotFoundError(return_number=return_number)
        return record

    async def list_returns(
        self,
        location_id: Optional[str] = None,
        status: Optional[ReturnStatus] = None,
        return_category: Optional[ReturnCategory] = None,
        return_reason: Optional[str] = None,
        customer_id: Optional[str] = None,
        product_id: Optional[str] = None,
        source_type: Optional[ReturnSourceType] = None,
        source_id: Optional[str] = None,
        search: Optional[str] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        sort_by: str = "created_at",
        sort_order: str = "desc",
        page: int = 1,
        limit: Optional[int] = None,
    ) -> Tuple[List[ProductReturn], int]:
        """List returns with filters, search, sorting and pagination."""
        if start_date and end_date and start_date > end_date:
            raise InvalidDateRangeException(start_date, end_date)

        query = select(ProductReturn)

        if location_id:
            query = query.where(ProductReturn.location_id == location_id)
        if status:
            query = query.where(ProductReturn.status == status)
        if return_category:
            query = query.where(ProductReturn.return_category == return_category)
        if return_reason:
            query = query.where(ProductReturn.return_reason == return_reason)
        if customer_id:
            query = query.where(ProductReturn.customer_id == customer_id)
        if product_id:
            query = query.where(ProductReturn.product_id == product_id)
        if source_type:
            query = query.where(ProductReturn.source_type == source_type)
        if source_id:
            query = query.where(ProductReturn.source_id == source_id)
        if search:
            pattern = f"%{search.strip()}%"
            query = query.where(or_(*(column.ilike(pattern) for column in SEARCH_COLUMNS)))
        query = apply_created_range(query, start_date, end_date)

        count_query = select(func.count()).select_from(query.subquery())
        total = await self.db.scalar(count_query) or 0

        if sort_by not in SORTABLE_COLUMNS:
            raise ReturnValidationError(
                message=f"Cannot sort by '{sort_by}'",
                field="sort_by",
                details={"allowed": sorted(SORTABLE_COLUMNS)},
            )
        column = SORTABLE_COLUMNS[sort_by]
        order = column.asc() if sort_order.lower() == "asc" else column.desc()

        page = max(page, 1)
        limit = min(max(limit or settings.default_page_size, 1), settings.max_page_size)
        query = query.order_by(order, ProductReturn.return_number.desc())
        query = query.offset((page - 1) * limit).limit(limit)

        result = await self.db.execute(query)
        return list(result.scalars().all()), total

    async def get_history(self, return_id: uuid.UUID) -> Dict[str, Any]:
        """Status events, inspections and dispatch attempts of a return."""
        record = await self.get_return(return_id)

        events = await self.db.execute(
            select(ReturnStatusEvent)
            .where(ReturnStatusEvent.return_id == record.id)
            .order_by(ReturnStatusEvent.sequence)
        )
        inspections = await self.db.execute(
            select(ReturnInspection)
            .where(ReturnInspection.return_id == record.id)
            .order_by(ReturnInspection.sequence)
        )
        attempts = await self.db.execute(
            select(ReturnDispatchAttempt)
            .where(ReturnDispatchAttempt.return_id == record.id)
            .order_by(ReturnDispatchAttempt.attempted_at, ReturnDispatchAttempt.created_at)
        )

        return {
            "return_id": record.id,
            "return_number": record.return_number,
            "status": record.status,
            "status_events": list(events.scalars().all()),
            "inspections": list(inspections.scalars().all()),
            "dispatch_attempts": list(attempts.scalars().all()),
        }

    async def suggested_resolution(self, return_id: uuid.UUID) -> Tuple[ProductReturn, ResolutionType, List[ResolutionType]]:
        """Default resolution for the process form and the resolutions Process accepts."""
        record = await self.get_return(return_id)
        suggestion = rules.suggest_resolution(
            record.source_type,
            record.return_category,
            record.product_condition,
        )
        return record, suggestion, rules.allowed_process_resolutions(record)

    async def search_customers(self, phone: str) -> List[CustomerRecord]:
        """Customer directory lookup by phone."""
        if not phone or not phone.strip():
            raise MissingFieldException("phone")
        if self.customer_directory is None:
            return []
        return await self.customer_directory.search(phone.strip())

    # ===========================================
    # TRANSITIONS
    # ===========================================

    async def inspect(self, return_id: uuid.UUID, data: InspectReturnRequest, actor_id: uuid.UUID) -> ProductReturn:
        """
        Record an inspection pass.

        RECEIVED moves to INSPECTING (or PENDING_APPROVAL when complete),
        INSPECTING moves to PENDING_APPROVAL when complete, PENDING_APPROVAL
        stays. Every pass appends a ReturnInspection row; inspected_at/by
        keep the first pass.
        """
        async with self.locks.hold(return_id):
            record = await self.get_return(return_id)
            self._guard("inspect", record)
            self._check(rules.validate_inspection, data)

            now = utcnow()
            sequence = await self._next_sequence(ReturnInspection, record.id)
            self.db.add(
                ReturnInspection(
                    return_id=record.id,
                    sequence=sequence,
                    product_condition=data.product_condition,
                    inspection_notes=data.inspection_notes.strip(),
                    recommended_action=data.recommended_action,
                    inspection_complete=data.inspection_complete,
                    inspected_at=now,
                    inspected_by_id=actor_id,
                )
            )

            record.product_condition = data.product_condition
            record.inspection_notes = data.inspection_notes.strip()
            record.recommended_action = data.recommended_action
            if record.inspected_at is None:
                record.inspected_at = now
                record.inspected_by_id = actor_id

            new_status = rules.next_inspection_status(record.status, data.inspection_complete)
            if new_status != record.status:
                await self._transition(record, new_status, actor_id, note=f"Inspection #{sequence}")

            return await self._commit(record, "inspect")

    async def approve(self, return_id: uuid.UUID, data: ApproveReturnRequest, actor_id: uuid.UUID) -> ProductReturn:
        async with self.locks.hold(return_id):
            record = await self.get_return(return_id)
            self._guard("approve", record)
            self._check(rules.validate_approval, data.resolution_type)

            record.approved_resolution_type = data.resolution_type
            record.approval_notes = data.notes
            record.approved_at = utcnow()
            record.approved_by_id = actor_id
            await self._transition(
                record,
                ReturnStatus.APPROVED,
                actor_id,
                note=f"Approved for {data.resolution_type.value}",
            )
            return await self._commit(record, "approve")

    async def reject(self, return_id: uuid.UUID, data: RejectReturnRequest, actor_id: uuid.UUID) -> ProductReturn:
        async with self.locks.hold(return_id):
            record = await self.get_return(return_id)
            self._guard("reject", record)
            self._check(rules.validate_rejection, data.rejection_reason, data.notes)

            record.rejection_reason = data.rejection_reason
            record.rejection_notes = data.notes
            record.rejected_at = utcnow()
            record.rejected_by_id = actor_id
            await self._transition(record, ReturnStatus.REJECTED, actor_id, note=data.rejection_reason)
            return await self._commit(record, "reject")

    async def cancel(self, return_id: uuid.UUID, data: CancelReturnRequest, actor_id: uuid.UUID) -> ProductReturn:
        async with self.locks.hold(return_id):
            record = await self.get_return(return_id)
            self._guard("cancel", record)
            self._check(rules.validate_cancellation, data.cancellation_reason)

            record.cancellation_reason = data.cancellation_reason.strip()
            record.cancellation_notes = data.notes
            record.cancelled_at = utcnow()
            record.cancelled_by_id = actor_id
            await self._transition(
                record, ReturnStatus.CANCELLED, actor_id, note=record.cancellation_reason
            )
            return await self._commit(record, "cancel")

    async def process(self, return_id: uuid.UUID, payload, actor_id: uuid.UUID) -> ProductReturn:
        """
        Carry out the resolution of an approved return.

        APPROVED -> PROCESSING -> COMPLETED (or REPLACEMENT_SENT). The
        collaborator call happens before commit; if it fails the session
        is rolled back, a FAILED dispatch attempt is saved on its own and
        the return stays APPROVED.
        """
        if self.dispatcher is None:
            raise RuntimeError("ProductReturnService.process requires a ResolutionDispatcher")

        async with self.locks.hold(return_id):
            record = await self.get_return(return_id)
            self._guard("process", record)
            resolution = self._check(rules.validate_process, record, payload)

            now = utcnow()
            record.resolution_type = resolution
            record.resolution_details = payload.resolution_details.strip()
            record.processed_at = now
            record.processed_by_id = actor_id
            self._apply_resolution_payload(record, resolution, payload)
            await self._transition(record, ReturnStatus.PROCESSING, actor_id, note=resolution.value)

            try:
                result = await self.dispatcher.dispatch(record, payload, resolution)
            except DispatchFailure as e:
                await self.db.rollback()
                await self._record_failed_dispatch(return_id, resolution, e, actor_id)
                raise
            except Exception:
                await self.db.rollback()
                raise

            if resolution == ResolutionType.RETURNED_SUPPLIER:
                record.supplier_return_id = result.reference
            self.db.add(
                ReturnDispatchAttempt(
                    return_id=record.id,
                    resolution_type=resolution,
                    idempotency_key=result.idempotency_key,
                    collaborator=result.collaborator,
                    outcome=DispatchOutcome.SUCCEEDED,
                    reference=result.reference,
                    attempted_at=utcnow(),
                    attempted_by_id=actor_id,
                )
            )

            final_status = rules.processing_target_status(resolution)
            if final_status == ReturnStatus.COMPLETED:
                record.completed_at = utcnow()
            await self._transition(record, final_status, actor_id, note=result.reference)
            return await self._commit(record, "process")

    @staticmethod
    def _apply_resolution_payload(record: ProductReturn, resolution: ResolutionType, payload) -> None:
        if resolution == ResolutionType.REFUND_PROCESSED:
            record.refund_amount = payload.refund_amount
            record.refund_method = payload.refund_method
        else:
            # Only a processed refund keeps a refund amount
            record.refund_amount = None
            record.refund_method = None

        if resolution == ResolutionType.RETURNED_SUPPLIER:
            supplier = payload.supplier_return
            record.supplier_id = supplier.supplier_id
            record.supplier_return_reason = supplier.reason
            record.supplier_return_description = supplier.reason_description
        elif resolution == ResolutionType.TRANSFERRED_WAREHOUSE:
            record.transfer_to_location_id = payload.transfer_to_location_id.strip()
            record.transfer_notes = payload.transfer_notes

    async def _record_failed_dispatch(
        self,
        return_id: uuid.UUID,
        resolution: ResolutionType,
        failure: DispatchFailure,
        actor_id: uuid.UUID,
    ) -> None:
        self.db.add(
            ReturnDispatchAttempt(
                return_id=return_id,
                resolution_type=resolution,
                idempotency_key=rules.idempotency_key(return_id, resolution),
                collaborator=failure.details.get("service", "unknown"),
                outcome=DispatchOutcome.FAILED,
                error_message=failure.details.get("collaborator_error"),
                attempted_at=utcnow(),
                attempted_by_id=actor_id,
            )
        )
        try:
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Could not save failed dispatch attempt for return {return_id}: {e}")

    # ===========================================
    # HELPERS
    # ===========================================

    @staticmethod
    def _guard(operation: str, record: ProductReturn) -> None:
        try:
            rules.ensure_operation_allowed(operation, record.status)
        except IllegalTransitionError:
            logger.warning(
                f"Refused {operation} on return {record.return_number} in status {record.status.value}"
            )
            raise

    @staticmethod
    def _check(rule, *args):
        try:
            return rule(*args)
        except ReturnValidationError as e:
            logger.warning(f"{rule.__name__} failed on {e.field or 'payload'}: {e.message}")
            raise

    async def _transition(
        self,
        record: ProductReturn,
        to_status: ReturnStatus,
        actor_id: uuid.UUID,
        note: Optional[str] = None,
    ) -> None:
        from_status = record.status
        if not rules.can_transition(from_status, to_status):
            raise IllegalTransitionError(
                operation=f"move to {to_status.value}",
                current_status=from_status,
            )
        sequence = await self._next_sequence(ReturnStatusEvent, record.id)
        self.db.add(
            ReturnStatusEvent(
                return_id=record.id,
                sequence=sequence,
                from_status=from_status,
                to_status=to_status,
                actor_id=actor_id,
                occurred_at=utcnow(),
                note=note,
            )
        )
        record.status = to_status

    async def _next_sequence(
        self,
        model: Type[Union[ReturnStatusEvent, ReturnInspection]],
        return_id: uuid.UUID,
    ) -> int:
        """Next per-return sequence number, counting rows not yet flushed."""
        stored = await self.db.scalar(
            select(func.coalesce(func.max(model.sequence), 0)).where(model.return_id == return_id)
        )
        pending = sum(
            1 for obj in self.db.new if isinstance(obj, model) and obj.return_id == return_id
        )
        return (stored or 0) + pending + 1

    async def _commit(self, record: ProductReturn, operation: str) -> ProductReturn:
        record_id = record.id
        try:
            await self.db.commit()
        except StaleDataError as e:
            await self.db.rollback()
            logger.warning(f"Version conflict on {operation} for return {record_id}")
            raise ConflictingStateError(record_id) from e
        except SQLAlchemyError:
            await self.db.rollback()
            raise
        await self.db.refresh(record)
        logger.info(f"Return {record.return_number}: {operation} -> {record.status.value}")
        return record


# ===========================================
# MODULE HELPERS
# ===========================================

def format_return_number(day: date, number: int) -> str:
    """RET-YYYYMMDD-NNNN (prefix and padding from settings)."""
    return (
        f"{settings.return_number_prefix}-{day.strftime('%Y%m%d')}-"
        f"{number:0{settings.return_number_padding}d}"
    )


def apply_created_range(query, start_date: Optional[date], end_date: Optional[date]):
    """Restrict a query on ProductReturn to created_at within [start_date, end_date] (whole days, UTC)."""
    if start_date:
        query = query.where(
            ProductReturn.created_at >= datetime.combine(start_date, time.min, tzinfo=timezone.utc)
        )
    if end_date:
        query = query.where(
            ProductReturn.created_at
            < datetime.combine(end_date + timedelta(days=1), time.min, tzinfo=timezone.utc)
        )
    return query


def total_pages(total: int, limit: int) -> int:
    return math.ceil(total / limit) if limit else 0
