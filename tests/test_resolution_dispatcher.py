"""
Tests for resolution dispatch routing, idempotency keys and failure mapping.
"""

from decimal import Decimal

import httpx
import pytest

from app.models.product_return import RefundMethod, ResolutionType, ReturnSourceType
from app.schemas.product_return import (
    RefundProcessRequest,
    RestockProcessRequest,
    ScrapProcessRequest,
    SupplierReturnPayload,
    SupplierReturnProcessRequest,
    TransferProcessRequest,
    WarrantyReplacementProcessRequest,
)
from app.services.resolution_dispatcher import ResolutionDispatcher
from app.services.return_collaborators import HttpInventoryGateway
from app.utils.error_handling import DispatchFailure, ErrorCode, ReturnValidationError
from tests.fixtures.collaborators_mock import INVENTORY_URL, collaborator_router
from tests.fixtures.return_builders import make_record


class TestRouting:
    """Each resolution reaches exactly one collaborator call"""

    @pytest.mark.asyncio
    async def test_restock_increments_inventory(self, dispatcher, collaborators):
        record = make_record(source_type=ReturnSourceType.DIRECT, quantity=4)
        result = await dispatcher.dispatch(
            record, RestockProcessRequest(resolution_details="Shelf"), ResolutionType.RESTOCKED_BRANCH
        )

        assert result.collaborator == "inventory"
        assert result.idempotency_key == f"{record.id}:RESTOCKED_BRANCH"
        assert result.reference.startswith("INCREMENT-")
        call = collaborators.inventory.calls_to("increment")[0]
        assert call.kwargs == {
            "product_id": "PRD-1",
            "location_id": "BR-001",
            "quantity": 4,
            "idempotency_key": result.idempotency_key,
        }
        assert collaborators.total_calls == 1

    @pytest.mark.asyncio
    async def test_refund(self, dispatcher, collaborators):
        record = make_record()
        payload = RefundProcessRequest(
            resolution_details="Refund",
            refund_amount=Decimal("75.50"),
            refund_method=RefundMethod.MOBILE_PAYMENT,
        )
        result = await dispatcher.dispatch(record, payload, ResolutionType.REFUND_PROCESSED)

        assert result.collaborator == "payments"
        call = collaborators.refunds.calls[0]
        assert call.kwargs["source_id"] == "SALE-1"
        assert call.kwargs["amount"] == Decimal("75.50")
        assert call.kwargs["method"] == "MOBILE_PAYMENT"

    @pytest.mark.asyncio
    async def test_supplier_return(self, dispatcher, collaborators):
        payload = SupplierReturnProcessRequest(
            resolution_details="Back to vendor",
            supplier_return=SupplierReturnPayload(
                supplier_id="SUP-9", reason="Faulty batch", reason_description="Batch 77 overheats"
            ),
        )
        result = await dispatcher.dispatch(make_record(), payload, ResolutionType.RETURNED_SUPPLIER)

        assert result.collaborator == "supplier_returns"
        call = collaborators.supplier_returns.calls[0]
        assert call.kwargs["supplier_id"] == "SUP-9"
        assert call.kwargs["reason_description"] == "Batch 77 overheats"
        assert call.kwargs["quantity"] == 2

    @pytest.mark.asyncio
    async def test_transfer(self, dispatcher, collaborators):
        payload = TransferProcessRequest(resolution_details="Move", transfer_to_location_id="WH-01")
        await dispatcher.dispatch(make_record(), payload, ResolutionType.TRANSFERRED_WAREHOUSE)

        call = collaborators.inventory.calls_to("transfer")[0]
        assert call.kwargs["from_location_id"] == "BR-001"
        assert call.kwargs["to_location_id"] == "WH-01"

    @pytest.mark.asyncio
    async def test_transfer_sends_trimmed_destination(self, dispatcher, collaborators):
        payload = TransferProcessRequest(resolution_details="Move", transfer_to_location_id="  WH-02 ")
        await dispatcher.dispatch(make_record(), payload, ResolutionType.TRANSFERRED_WAREHOUSE)

        assert collaborators.inventory.calls_to("transfer")[0].kwargs["to_location_id"] == "WH-02"

    @pytest.mark.asyncio
    async def test_scrap_never_increments(self, dispatcher, collaborators):
        await dispatcher.dispatch(
            make_record(), ScrapProcessRequest(resolution_details="Crushed"), ResolutionType.SCRAPPED
        )
        assert len(collaborators.inventory.calls_to("write_off")) == 1
        assert collaborators.inventory.calls_to("increment") == []

    @pytest.mark.asyncio
    async def test_warranty_replacement(self, dispatcher, collaborators):
        record = make_record(approved_resolution_type=ResolutionType.WARRANTY_REPLACEMENT)
        result = await dispatcher.dispatch(
            record,
            WarrantyReplacementProcessRequest(resolution_details="Swap"),
            ResolutionType.WARRANTY_REPLACEMENT,
        )
        assert result.collaborator == "fulfillment"
        assert collaborators.fulfillment.calls[0].kwargs["return_id"] == str(record.id)

    def test_collaborator_for(self, dispatcher):
        assert dispatcher.collaborator_for(ResolutionType.SCRAPPED) == "inventory"
        assert dispatcher.collaborator_for(ResolutionType.REFUND_PROCESSED) == "payments"

    def test_approval_only_resolution_has_no_route(self, dispatcher):
        with pytest.raises(ValueError):
            dispatcher.collaborator_for(ResolutionType.STORE_CREDIT)


class TestFailures:
    """Collaborator errors and timeouts become DispatchFailure"""

    @pytest.mark.asyncio
    async def test_collaborator_error(self, dispatcher, collaborators):
        collaborators.refunds.fail_with = "card declined"
        payload = RefundProcessRequest(
            resolution_details="Refund",
            refund_amount=Decimal("10.00"),
            refund_method=RefundMethod.CARD,
        )
        record = make_record()

        with pytest.raises(DispatchFailure) as exc_info:
            await dispatcher.dispatch(record, payload, ResolutionType.REFUND_PROCESSED)

        failure = exc_info.value
        assert failure.code == ErrorCode.DISPATCH_FAILED
        assert failure.status_code == 502
        assert failure.details["service"] == "payments"
        assert failure.details["collaborator_error"] == "card declined"
        assert failure.details["return_id"] == str(record.id)
        assert failure.details["resolution_type"] == "REFUND_PROCESSED"

    @pytest.mark.asyncio
    async def test_timeout(self, dispatcher, collaborators):
        collaborators.inventory.delay_seconds = 2

        with pytest.raises(DispatchFailure) as exc_info:
            await dispatcher.dispatch(
                make_record(), RestockProcessRequest(resolution_details="Shelf"), ResolutionType.RESTOCKED_BRANCH
            )
        assert "Timed out" in exc_info.value.details["collaborator_error"]
        assert exc_info.value.details["retryable"] is True

    @pytest.mark.asyncio
    async def test_unexpected_inventory_body(self, collaborators):
        dispatcher = ResolutionDispatcher(
            inventory=HttpInventoryGateway(INVENTORY_URL),
            refunds=collaborators.refunds,
            supplier_returns=collaborators.supplier_returns,
            fulfillment=collaborators.fulfillment,
        )
        with collaborator_router() as api:
            api.post(f"{INVENTORY_URL}/stock/increment").mock(
                return_value=httpx.Response(200, json=["ok"])
            )
            with pytest.raises(DispatchFailure) as exc_info:
                await dispatcher.dispatch(
                    make_record(), RestockProcessRequest(resolution_details="Shelf"), ResolutionType.RESTOCKED_BRANCH
                )

        assert exc_info.value.details["collaborator_error"] == "Unexpected response shape"
        assert exc_info.value.status_code == 502


class TestPreconditions:
    """Resolutions that do not fit the record are refused before any call"""

    @pytest.mark.asyncio
    async def test_refund_for_direct_return(self, dispatcher, collaborators):
        record = make_record(source_type=ReturnSourceType.DIRECT, source_id=None)
        payload = RefundProcessRequest(
            resolution_details="Refund",
            refund_amount=Decimal("10.00"),
            refund_method=RefundMethod.CASH,
        )

        with pytest.raises(ReturnValidationError) as exc_info:
            await dispatcher.dispatch(record, payload, ResolutionType.REFUND_PROCESSED)

        assert exc_info.value.field == "resolution_type"
        assert collaborators.refunds.calls == []
        assert collaborators.total_calls == 0

    @pytest.mark.asyncio
    async def test_refund_above_line_value(self, dispatcher, collaborators):
        payload = RefundProcessRequest(
            resolution_details="Refund",
            refund_amount=Decimal("100.01"),
            refund_method=RefundMethod.CASH,
        )

        with pytest.raises(ReturnValidationError):
            await dispatcher.dispatch(make_record(), payload, ResolutionType.REFUND_PROCESSED)
        assert collaborators.total_calls == 0

    @pytest.mark.asyncio
    async def test_transfer_to_same_location(self, dispatcher, collaborators):
        payload = TransferProcessRequest(resolution_details="Move", transfer_to_location_id=" BR-001 ")

        with pytest.raises(ReturnValidationError) as exc_info:
            await dispatcher.dispatch(make_record(), payload, ResolutionType.TRANSFERRED_WAREHOUSE)

        assert exc_info.value.field == "transfer_to_location_id"
        assert collaborators.total_calls == 0

    @pytest.mark.asyncio
    async def test_supplier_return_without_supplier(self, dispatcher, collaborators):
        payload = SupplierReturnProcessRequest(
            resolution_details="Back to vendor",
            supplier_return=SupplierReturnPayload(supplier_id="  ", reason="Faulty batch"),
        )

        with pytest.raises(ReturnValidationError):
            await dispatcher.dispatch(make_record(), payload, ResolutionType.RETURNED_SUPPLIER)
        assert collaborators.supplier_returns.calls == []
