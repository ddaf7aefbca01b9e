"""
POS Returns Engine - FastAPI Dependencies

Shared dependencies for database sessions, the acting user and the
collaborator ports. Tests override get_resolution_dispatcher and
get_customer_directory with in-memory fakes.
"""

import uuid
from typing import Optional

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_async_session
from app.services.product_return_service import ProductReturnService
from app.services.resolution_dispatcher import ResolutionDispatcher
from app.services.return_collaborators import (
    CustomerDirectory,
    HttpCustomerDirectory,
    HttpFulfillmentGateway,
    HttpInventoryGateway,
    HttpRefundGateway,
    HttpSupplierReturnGateway,
)
from app.services.return_locks import TransitionLockRegistry, get_lock_registry
from app.services.return_stats_service import ReturnStatsService
from app.utils.error_handling import MissingFieldException, ReturnValidationError


async def get_actor_id(
    x_actor_id: Optional[str] = Header(None, alias="X-Actor-Id"),
) -> uuid.UUID:
    """
    Acting user for mutating routes, taken from the X-Actor-Id header.

    Authentication happens upstream; this only requires a well-formed id.

    Raises:
        MissingFieldException: header absent or blank
        ReturnValidationError: header is not a UUID
    """
    if not x_actor_id or not x_actor_id.strip():
        raise MissingFieldException("X-Actor-Id", "X-Actor-Id header is required")
    try:
        return uuid.UUID(x_actor_id.strip())
    except ValueError:
        raise ReturnValidationError(
            message="X-Actor-Id must be a UUID",
            field="X-Actor-Id",
        )


def get_resolution_dispatcher() -> ResolutionDispatcher:
    return ResolutionDispatcher(
        inventory=HttpInventoryGateway(),
        refunds=HttpRefundGateway(),
        supplier_returns=HttpSupplierReturnGateway(),
        fulfillment=HttpFulfillmentGateway(),
    )


def get_customer_directory() -> CustomerDirectory:
    return HttpCustomerDirectory()


def get_product_return_service(
    db: AsyncSession = Depends(get_async_session),
    dispatcher: ResolutionDispatcher = Depends(get_resolution_dispatcher),
    customer_directory: CustomerDirectory = Depends(get_customer_directory),
    locks: TransitionLockRegistry = Depends(get_lock_registry),
) -> ProductReturnService:
    return ProductReturnService(
        db,
        dispatcher=dispatcher,
        customer_directory=customer_directory,
        locks=locks,
    )


def get_return_stats_service(
    db: AsyncSession = Depends(get_async_session),
) -> ReturnStatsService:
    return ReturnStatsService(db)
