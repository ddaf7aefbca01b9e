"""
POS Returns Engine - Collaborator Gateways

Narrow ports to the services a return touches but does not own:
inventory, payments (refunds), supplier returns, fulfillment and the
customer directory. Each port has an httpx-backed adapter; tests inject
in-memory fakes instead.

Every adapter raises CollaboratorError on timeout, transport error,
non-2xx status, undecodable body or an explicit {"success": false}.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional

import httpx

from app.config import settings
from app.utils.error_handling import CollaboratorError

logger = logging.getLogger(__name__)


@dataclass
class CollaboratorResult:
    """Outcome of a successful collaborator call."""
    reference: Optional[str] = None
    message: str = "OK"
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class CustomerRecord:
    """Customer as returned by the customer directory."""
    id: str
    name: str
    phone: str
    email: Optional[str] = None


# =============================================================================
# PORTS
# =============================================================================

class InventoryGateway(ABC):
    """Stock movements for returned goods."""

    service_name = "inventory"

    @abstractmethod
    async def increment(
        self, product_id: str, location_id: str, quantity: int, idempotency_key: str
    ) -> CollaboratorResult:
        """Put returned units back on the shelf at a location."""

    @abstractmethod
    async def write_off(
        self, product_id: str, location_id: str, quantity: int, idempotency_key: str
    ) -> CollaboratorResult:
        """Record units as scrapped. No stock increment."""

    @abstractmethod
    async def transfer(
        self,
        product_id: str,
        from_location_id: str,
        to_location_id: str,
        quantity: int,
        idempotency_key: str,
    ) -> CollaboratorResult:
        """Move units between locations."""


class RefundGateway(ABC):
    service_name = "payments"

    @abstractmethod
    async def refund(
        self, source_id: str, amount: Decimal, method: str, idempotency_key: str
    ) -> CollaboratorResult:
        """Refund part or all of the originating sale."""


class SupplierReturnGateway(ABC):
    service_name = "supplier_returns"

    @abstractmethod
    async def create(
        self,
        product_id: str,
        supplier_id: str,
        reason: str,
        reason_description: Optional[str],
        quantity: int,
        idempotency_key: str,
    ) -> CollaboratorResult:
        """Open a supplier return; the result reference is the supplier return id."""


class FulfillmentGateway(ABC):
    service_name = "fulfillment"

    @abstractmethod
    async def issue_replacement(
        self, return_id: str, product_id: str, quantity: int, idempotency_key: str
    ) -> CollaboratorResult:
        """Ship a replacement unit for a warranty return."""


class CustomerDirectory(ABC):
    service_name = "customer_directory"

    @abstractmethod
    async def search(self, phone: str) -> List[CustomerRecord]:
        """Customers whose phone matches."""


# =============================================================================
# HTTP ADAPTERS
# =============================================================================

class HttpCollaborator:
    """Shared request handling for the httpx adapters. service_name comes from the port."""

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key if api_key is not None else settings.collaborator_api_key
        self.timeout = timeout if timeout is not None else settings.collaborator_timeout_seconds

    def _get_headers(self, idempotency_key: Optional[str] = None) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key
        return headers

    async def _make_request(
        self,
        method: str,
        endpoint: str,
        data: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
        idempotency_key: Optional[str] = None,
        allow_list: bool = False,
    ) -> Any:
        """
        Make an HTTP request to the collaborator.

        Returns:
            Parsed JSON response, a dict unless allow_list is set

        Raises:
            CollaboratorError: On timeout, network error or rejection
        """
        url = f"{self.base_url}{endpoint}"

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.request(
                    method=method,
                    url=url,
                    headers=self._get_headers(idempotency_key),
                    json=data,
                    params=params,
                )
        except httpx.TimeoutException as e:
            logger.error(f"{self.service_name} timeout: {method} {endpoint}")
            raise CollaboratorError(self.service_name, "Request timed out", original_error=e)
        except httpx.RequestError as e:
            logger.error(f"{self.service_name} request error: {e}")
            raise CollaboratorError(self.service_name, f"Network error: {e}", original_error=e)

        logger.debug(f"{self.service_name} {method} {endpoint}: status={response.status_code}")

        try:
            result = response.json() if response.content else {}
        except ValueError as e:
            raise CollaboratorError(
                self.service_name,
                f"Invalid JSON response (HTTP {response.status_code})",
                original_error=e,
                details={"status_code": response.status_code},
            )

        if response.status_code >= 400:
            message = result.get("message") if isinstance(result, dict) else None
            raise CollaboratorError(
                self.service_name,
                message or f"HTTP {response.status_code}",
                details={"status_code": response.status_code},
            )

        if isinstance(result, dict) and result.get("success") is False:
            raise CollaboratorError(
                self.service_name,
                result.get("message", "Request rejected"),
                details={"status_code": response.status_code},
            )

        if not isinstance(result, dict) and not (allow_list and isinstance(result, list)):
            logger.error(f"{self.service_name} returned an unexpected body for {method} {endpoint}")
            raise CollaboratorError(
                self.service_name,
                "Unexpected response shape",
                details={"status_code": response.status_code, "body_type": type(result).__name__},
            )

        return result

    @staticmethod
    def _to_result(payload: Dict[str, Any]) -> CollaboratorResult:
        body = payload.get("data") if isinstance(payload.get("data"), dict) else payload
        reference = body.get("reference") or body.get("id")
        return CollaboratorResult(
            reference=str(reference) if reference is not None else None,
            message=payload.get("message", "OK"),
            raw=payload,
        )


class HttpInventoryGateway(HttpCollaborator, InventoryGateway):

    def __init__(self, base_url: Optional[str] = None, **kwargs):
        super().__init__(base_url or settings.inventory_service_url, **kwargs)

    async def increment(self, product_id, location_id, quantity, idempotency_key):
        payload = await self._make_request(
            "POST",
            "/stock/increment",
            data={"product_id": product_id, "location_id": location_id, "quantity": quantity},
            idempotency_key=idempotency_key,
        )
        return self._to_result(payload)

    async def write_off(self, product_id, location_id, quantity, idempotency_key):
        payload = await self._make_request(
            "POST",
            "/stock/write-off",
            data={
                "product_id": product_id,
                "location_id": location_id,
                "quantity": quantity,
                "reason": "SCRAPPED",
            },
            idempotency_key=idempotency_key,
        )
        return self._to_result(payload)

    async def transfer(self, product_id, from_location_id, to_location_id, quantity, idempotency_key):
        payload = await self._make_request(
            "POST",
            "/stock/transfer",
            data={
                "product_id": product_id,
                "from_location_id": from_location_id,
                "to_location_id": to_location_id,
                "quantity": quantity,
            },
            idempotency_key=idempotency_key,
        )
        return self._to_result(payload)


class HttpRefundGateway(HttpCollaborator, RefundGateway):

    def __init__(self, base_url: Optional[str] = None, **kwargs):
        super().__init__(base_url or settings.payment_service_url, **kwargs)

    async def refund(self, source_id, amount, method, idempotency_key):
        payload = await self._make_request(
            "POST",
            "/refunds",
            data={
                "sale_id": source_id,
                "amount": str(amount),
                "method": method,
            },
            idempotency_key=idempotency_key,
        )
        return self._to_result(payload)


class HttpSupplierReturnGateway(HttpCollaborator, SupplierReturnGateway):

    def __init__(self, base_url: Optional[str] = None, **kwargs):
        super().__init__(base_url or settings.supplier_return_service_url, **kwargs)

    async def create(self, product_id, supplier_id, reason, reason_description, quantity, idempotency_key):
        payload = await self._make_request(
            "POST",
            "/supplier-returns",
            data={
                "product_id": product_id,
                "supplier_id": supplier_id,
                "reason": reason,
                "reason_description": reason_description,
                "quantity": quantity,
            },
            idempotency_key=idempotency_key,
        )
        return self._to_result(payload)


class HttpFulfillmentGateway(HttpCollaborator, FulfillmentGateway):

    def __init__(self, base_url: Optional[str] = None, **kwargs):
        super().__init__(base_url or settings.fulfillment_service_url, **kwargs)

    async def issue_replacement(self, return_id, product_id, quantity, idempotency_key):
        payload = await self._make_request(
            "POST",
            "/replacements",
            data={"return_id": return_id, "product_id": product_id, "quantity": quantity},
            idempotency_key=idempotency_key,
        )
        return self._to_result(payload)


class HttpCustomerDirectory(HttpCollaborator, CustomerDirectory):

    def __init__(self, base_url: Optional[str] = None, **kwargs):
        super().__init__(base_url or settings.customer_directory_url, **kwargs)

    async def search(self, phone: str) -> List[CustomerRecord]:
        payload = await self._make_request(
            "GET", "/customers/search", params={"phone": phone}, allow_list=True
        )
        rows = payload.get("data", []) if isinstance(payload, dict) else payload
        if rows is None:
            return []
        if not isinstance(rows, list):
            raise CollaboratorError(
                self.service_name,
                "Unexpected response shape",
                details={"body_type": type(rows).__name__},
            )

        customers = []
        for row in rows:
            if not isinstance(row, dict) or row.get("id") is None:
                logger.warning(f"{self.service_name} returned a customer row without an id, skipping")
                continue
            customers.append(
                CustomerRecord(
                    id=str(row["id"]),
                    name=row.get("name") or "",
                    phone=row.get("phone") or phone,
                    email=row.get("email"),
                )
            )
        return customers
