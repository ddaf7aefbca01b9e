"""
POS Returns Engine - Resolution Dispatcher

Turns a processed resolution into exactly one collaborator call.
The caller (ProductReturnService.process) commits the COMPLETED or
REPLACEMENT_SENT transition only after dispatch() returns.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional, Tuple

from app.config import settings
from app.models.product_return import ProductReturn, ResolutionType
from app.services.return_collaborators import (
    CollaboratorResult,
    FulfillmentGateway,
    InventoryGateway,
    RefundGateway,
    SupplierReturnGateway,
)
from app.services.return_rules import check_dispatch_preconditions, idempotency_key
from app.utils.error_handling import CollaboratorError, DispatchFailure, ReturnValidationError

logger = logging.getLogger(__name__)


@dataclass
class DispatchResult:
    """Successful dispatch of one resolution."""
    resolution_type: ResolutionType
    collaborator: str
    idempotency_key: str
    reference: Optional[str] = None
    message: str = "OK"


class ResolutionDispatcher:
    """
    Resolution side effects.

    | resolution            | collaborator call                  |
    |-----------------------|------------------------------------|
    | REFUND_PROCESSED      | RefundGateway.refund               |
    | RESTOCKED_BRANCH      | InventoryGateway.increment         |
    | RETURNED_SUPPLIER     | SupplierReturnGateway.create       |
    | TRANSFERRED_WAREHOUSE | InventoryGateway.transfer          |
    | SCRAPPED              | InventoryGateway.write_off         |
    | WARRANTY_REPLACEMENT  | FulfillmentGateway.issue_replacement |
    """

    def __init__(
        self,
        inventory: InventoryGateway,
        refunds: RefundGateway,
        supplier_returns: SupplierReturnGateway,
        fulfillment: FulfillmentGateway,
        timeout_seconds: Optional[float] = None,
    ):
        self.inventory = inventory
        self.refunds = refunds
        self.supplier_returns = supplier_returns
        self.fulfillment = fulfillment
        self.timeout_seconds = (
            timeout_seconds if timeout_seconds is not None else settings.dispatch_timeout_seconds
        )

    def collaborator_for(self, resolution_type: ResolutionType) -> str:
        """Name of the service a resolution is dispatched to."""
        gateway, _ = self._route(resolution_type)
        return gateway.service_name

    async def dispatch(self, record: ProductReturn, payload, resolution_type: ResolutionType) -> DispatchResult:
        """
        Perform the single side effect for resolution_type.

        Raises:
            ReturnValidationError: record or payload does not meet the resolution's preconditions
            DispatchFailure: collaborator refused, errored or exceeded the timeout
        """
        key = idempotency_key(record.id, resolution_type)
        gateway, build_call = self._route(resolution_type)
        service_name = gateway.service_name

        try:
            check_dispatch_preconditions(record, payload, resolution_type)
        except ReturnValidationError as e:
            logger.warning(f"Not dispatching {resolution_type.value} for return {record.return_number}: {e.message}")
            raise

        logger.info(
            f"Dispatching {resolution_type.value} for return {record.return_number} "
            f"to {service_name} (key={key})"
        )

        try:
            result: CollaboratorResult = await asyncio.wait_for(
                build_call(record, payload, key),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            logger.error(f"Dispatch to {service_name} timed out after {self.timeout_seconds}s (key={key})")
            raise DispatchFailure(
                return_id=record.id,
                resolution_type=resolution_type,
                service_name=service_name,
                reason=f"Timed out after {self.timeout_seconds}s",
                original_error=e,
            )
        except CollaboratorError as e:
            logger.error(f"Dispatch to {service_name} failed (key={key}): {e.reason}")
            raise DispatchFailure(
                return_id=record.id,
                resolution_type=resolution_type,
                service_name=service_name,
                reason=e.reason,
                original_error=e,
            )

        return DispatchResult(
            resolution_type=resolution_type,
            collaborator=service_name,
            idempotency_key=key,
            reference=result.reference,
            message=result.message,
        )

    # ===========================================
    # ROUTING
    # ===========================================

    def _route(self, resolution_type: ResolutionType) -> Tuple[object, Callable[..., Awaitable[CollaboratorResult]]]:
        routes: Dict[ResolutionType, Tuple[object, Callable[..., Awaitable[CollaboratorResult]]]] = {
            ResolutionType.REFUND_PROCESSED: (self.refunds, self._refund),
            ResolutionType.RESTOCKED_BRANCH: (self.inventory, self._restock),
            ResolutionType.RETURNED_SUPPLIER: (self.supplier_returns, self._supplier_return),
            ResolutionType.TRANSFERRED_WAREHOUSE: (self.inventory, self._transfer),
            ResolutionType.SCRAPPED: (self.inventory, self._scrap),
            ResolutionType.WARRANTY_REPLACEMENT: (self.fulfillment, self._replacement),
        }
        try:
            return routes[resolution_type]
        except KeyError:
            raise ValueError(f"No dispatch route for resolution {resolution_type}")

    async def _refund(self, record, payload, key):
        return await self.refunds.refund(
            source_id=record.source_id,
            amount=payload.refund_amount,
            method=payload.refund_method.value,
            idempotency_key=key,
        )

    async def _restock(self, record, payload, key):
        return await self.inventory.increment(
            product_id=record.product_id,
            location_id=record.location_id,
            quantity=record.quantity,
            idempotency_key=key,
        )

    async def _supplier_return(self, record, payload, key):
        supplier = payload.supplier_return
        return await self.supplier_returns.create(
            product_id=record.product_id,
            supplier_id=supplier.supplier_id,
            reason=supplier.reason,
            reason_description=supplier.reason_description,
            quantity=record.quantity,
            idempotency_key=key,
        )

    async def _transfer(self, record, payload, key):
        return await self.inventory.transfer(
            product_id=record.product_id,
            from_location_id=record.location_id,
            to_location_id=payload.transfer_to_location_id.strip(),
            quantity=record.quantity,
            idempotency_key=key,
        )

    async def _scrap(self, record, payload, key):
        return await self.inventory.write_off(
            product_id=record.product_id,
            location_id=record.location_id,
            quantity=record.quantity,
            idempotency_key=key,
        )

    async def _replacement(self, record, payload, key):
        return await self.fulfillment.issue_replacement(
            return_id=str(record.id),
            product_id=record.product_id,
            quantity=record.quantity,
            idempotency_key=key,
        )
