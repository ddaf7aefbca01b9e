"""
Tests for the httpx collaborator adapters.

Uses respx to stand in for the inventory, payments, supplier-returns,
fulfillment and customer directory APIs.
"""

import json
from decimal import Decimal

import httpx
import pytest

from app.services.return_collaborators import (
    HttpCustomerDirectory,
    HttpFulfillmentGateway,
    HttpInventoryGateway,
    HttpRefundGateway,
    HttpSupplierReturnGateway,
)
from app.utils.error_handling import CollaboratorError
from tests.fixtures.collaborators_mock import (
    CUSTOMERS_URL,
    FULFILLMENT_URL,
    INVENTORY_URL,
    PAYMENTS_URL,
    SUPPLIER_RETURNS_URL,
    collaborator_router,
)


@pytest.fixture
def api():
    with collaborator_router() as router:
        yield router


class TestInventoryAdapter:
    """Inventory stock movement calls"""

    @pytest.mark.asyncio
    async def test_increment(self, api):
        gateway = HttpInventoryGateway(INVENTORY_URL, api_key="secret")
        result = await gateway.increment("PRD-1", "BR-001", 3, "rid:RESTOCKED_BRANCH")

        assert result.reference == "MOV-001"
        request = api.calls.last.request
        assert request.url.path == "/stock/increment"
        assert request.headers["Idempotency-Key"] == "rid:RESTOCKED_BRANCH"
        assert request.headers["Authorization"] == "Bearer secret"
        assert json.loads(request.content) == {
            "product_id": "PRD-1",
            "location_id": "BR-001",
            "quantity": 3,
        }

    @pytest.mark.asyncio
    async def test_write_off_and_transfer(self, api):
        gateway = HttpInventoryGateway(INVENTORY_URL)

        scrapped = await gateway.write_off("PRD-1", "BR-001", 1, "rid:SCRAPPED")
        moved = await gateway.transfer("PRD-1", "BR-001", "WH-01", 1, "rid:TRANSFERRED_WAREHOUSE")

        assert scrapped.reference == "WO-001"
        assert moved.reference == "TRF-001"
        assert json.loads(api.calls.last.request.content)["to_location_id"] == "WH-01"

    @pytest.mark.asyncio
    async def test_explicit_rejection(self, api):
        api.post(f"{INVENTORY_URL}/stock/increment").mock(
            return_value=httpx.Response(200, json={"success": False, "message": "Unknown product"})
        )
        gateway = HttpInventoryGateway(INVENTORY_URL)

        with pytest.raises(CollaboratorError) as exc_info:
            await gateway.increment("PRD-X", "BR-001", 1, "rid:RESTOCKED_BRANCH")
        assert exc_info.value.reason == "Unknown product"
        assert exc_info.value.details["service"] == "inventory"

    @pytest.mark.asyncio
    async def test_http_error_status(self, api):
        api.post(f"{INVENTORY_URL}/stock/write-off").mock(
            return_value=httpx.Response(409, json={"message": "Insufficient stock"})
        )
        gateway = HttpInventoryGateway(INVENTORY_URL)

        with pytest.raises(CollaboratorError) as exc_info:
            await gateway.write_off("PRD-1", "BR-001", 1, "rid:SCRAPPED")
        assert exc_info.value.reason == "Insufficient stock"
        assert exc_info.value.details["status_code"] == 409

    @pytest.mark.asyncio
    async def test_timeout(self, api):
        api.post(f"{INVENTORY_URL}/stock/increment").mock(
            side_effect=httpx.ReadTimeout("timed out")
        )
        gateway = HttpInventoryGateway(INVENTORY_URL)

        with pytest.raises(CollaboratorError) as exc_info:
            await gateway.increment("PRD-1", "BR-001", 1, "rid:RESTOCKED_BRANCH")
        assert exc_info.value.reason == "Request timed out"

    @pytest.mark.asyncio
    async def test_network_error(self, api):
        api.post(f"{INVENTORY_URL}/stock/transfer").mock(
            side_effect=httpx.ConnectError("connection refused")
        )
        gateway = HttpInventoryGateway(INVENTORY_URL)

        with pytest.raises(CollaboratorError) as exc_info:
            await gateway.transfer("PRD-1", "BR-001", "WH-01", 1, "rid:TRANSFERRED_WAREHOUSE")
        assert exc_info.value.reason.startswith("Network error")

    @pytest.mark.asyncio
    async def test_invalid_json(self, api):
        api.post(f"{INVENTORY_URL}/stock/increment").mock(
            return_value=httpx.Response(200, content=b"<html>gateway</html>")
        )
        gateway = HttpInventoryGateway(INVENTORY_URL)

        with pytest.raises(CollaboratorError) as exc_info:
            await gateway.increment("PRD-1", "BR-001", 1, "rid:RESTOCKED_BRANCH")
        assert "Invalid JSON" in exc_info.value.reason

    @pytest.mark.asyncio
    async def test_non_object_body(self, api):
        api.post(f"{INVENTORY_URL}/stock/increment").mock(
            return_value=httpx.Response(200, json=["ok"])
        )
        gateway = HttpInventoryGateway(INVENTORY_URL)

        with pytest.raises(CollaboratorError) as exc_info:
            await gateway.increment("PRD-1", "BR-001", 1, "rid:RESTOCKED_BRANCH")
        assert exc_info.value.reason == "Unexpected response shape"
        assert exc_info.value.details["body_type"] == "list"


class TestOtherAdapters:
    """Payments, supplier returns, fulfillment and customer directory"""

    @pytest.mark.asyncio
    async def test_refund(self, api):
        gateway = HttpRefundGateway(PAYMENTS_URL)
        result = await gateway.refund("SALE-1", Decimal("12.50"), "CASH", "rid:REFUND_PROCESSED")

        assert result.reference == "RF-001"
        assert json.loads(api.calls.last.request.content) == {
            "sale_id": "SALE-1",
            "amount": "12.50",
            "method": "CASH",
        }

    @pytest.mark.asyncio
    async def test_supplier_return_reads_top_level_id(self, api):
        gateway = HttpSupplierReturnGateway(SUPPLIER_RETURNS_URL)
        result = await gateway.create("PRD-1", "SUP-1", "Faulty", None, 2, "rid:RETURNED_SUPPLIER")

        assert result.reference == "SR-001"
        assert result.message == "created"

    @pytest.mark.asyncio
    async def test_replacement(self, api):
        gateway = HttpFulfillmentGateway(FULFILLMENT_URL)
        result = await gateway.issue_replacement("rid", "PRD-1", 1, "rid:WARRANTY_REPLACEMENT")
        assert result.reference == "RPL-001"

    @pytest.mark.asyncio
    async def test_customer_search(self, api):
        directory = HttpCustomerDirectory(CUSTOMERS_URL)
        customers = await directory.search("0800111222")

        assert len(customers) == 1
        assert customers[0].id == "C-1"
        assert customers[0].email == "ada@example.com"
        assert api.calls.last.request.url.params["phone"] == "0800111222"
        assert "Idempotency-Key" not in api.calls.last.request.headers

    @pytest.mark.asyncio
    async def test_customer_search_failure(self, api):
        api.get(f"{CUSTOMERS_URL}/customers/search").mock(
            return_value=httpx.Response(503, json={"message": "Maintenance"})
        )
        directory = HttpCustomerDirectory(CUSTOMERS_URL)

        with pytest.raises(CollaboratorError) as exc_info:
            await directory.search("0800111222")
        assert exc_info.value.details["service"] == "customer_directory"

    @pytest.mark.asyncio
    async def test_customer_search_accepts_bare_list(self, api):
        api.get(f"{CUSTOMERS_URL}/customers/search").mock(
            return_value=httpx.Response(200, json=[{"id": 17, "name": "Ada Obi"}])
        )
        customers = await HttpCustomerDirectory(CUSTOMERS_URL).search("0800111222")

        assert [c.id for c in customers] == ["17"]
        assert customers[0].phone == "0800111222"

    @pytest.mark.asyncio
    async def test_customer_rows_without_id_are_skipped(self, api):
        api.get(f"{CUSTOMERS_URL}/customers/search").mock(
            return_value=httpx.Response(
                200, json={"data": [{"name": "A"}, "junk", {"id": "C-2", "name": "B"}]}
            )
        )
        customers = await HttpCustomerDirectory(CUSTOMERS_URL).search("0800111222")

        assert [c.id for c in customers] == ["C-2"]

    @pytest.mark.asyncio
    async def test_customer_search_unexpected_data(self, api):
        api.get(f"{CUSTOMERS_URL}/customers/search").mock(
            return_value=httpx.Response(200, json={"data": "C-1"})
        )

        with pytest.raises(CollaboratorError) as exc_info:
            await HttpCustomerDirectory(CUSTOMERS_URL).search("0800111222")
        assert exc_info.value.reason == "Unexpected response shape"
