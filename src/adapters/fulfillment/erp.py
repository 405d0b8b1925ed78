"""ERP capability: turns a fulfillment request into a confirmed sales order.

Skus are mapped per (chain, seller) to ERP product codes. Requests whose items
are all unmapped answer ``notApplicable`` without touching the ERP.
"""

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass

import structlog

from adapters.fulfillment.port import CapabilityError, FulfillmentCapability, result_document
from shared.fulfillment import FulfillmentRequest

logger = structlog.get_logger(__name__)

RESULT_TYPE = "circles:ErpFulfillmentResult"


class ErpError(CapabilityError):
    pass


@dataclass(frozen=True)
class ErpOrderLine:
    product_code: str
    quantity: int


@dataclass(frozen=True)
class ErpOrder:
    order_id: int
    name: str
    tracking_ref: str | None = None


class ErpClient(ABC):
    """Port to the seller's ERP."""

    @abstractmethod
    async def create_sales_order(self, partner_id: int, reference: str, lines: list[ErpOrderLine]) -> ErpOrder:
        """Create and confirm a sales order."""
        ...

    @abstractmethod
    async def stock_level(self, product_code: str) -> int:
        ...


class FakeErpClient(ErpClient):
    """Configurable in-memory ERP for development and testing."""

    def __init__(self) -> None:
        self.should_succeed: bool = True
        self.failure_reason: str = "ERP unavailable"
        self.stock: dict[str, int] = {}
        self.calls: list[dict] = []
        self._next_id = 1

    def configure(self, should_succeed: bool, failure_reason: str = "ERP unavailable") -> None:
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason

    async def create_sales_order(self, partner_id: int, reference: str, lines: list[ErpOrderLine]) -> ErpOrder:
        self.calls.append(
            {
                "method": "create_sales_order",
                "partner_id": partner_id,
                "reference": reference,
                "lines": [(line.product_code, line.quantity) for line in lines],
            }
        )
        if not self.should_succeed:
            raise ErpError(self.failure_reason)

        order_id = self._next_id
        self._next_id += 1
        return ErpOrder(order_id=order_id, name=f"S{order_id:05d}")

    async def stock_level(self, product_code: str) -> int:
        self.calls.append({"method": "stock_level", "product_code": product_code})
        if not self.should_succeed:
            raise ErpError(self.failure_reason)
        return self.stock.get(product_code, 0)


class ErpCapability(FulfillmentCapability):
    kind = "erp"

    def __init__(self, client: ErpClient, partner_id: int | None = None) -> None:
        self.client = client
        self.partner_id = partner_id
        self._mappings: dict[tuple[int, str, str], str] = {}

    def map_sku(self, chain_id: int, seller: str, sku: str, product_code: str) -> None:
        self._mappings[(chain_id, seller.strip().lower(), sku.strip().lower())] = product_code

    def _product_code(self, chain_id: int, seller: str, sku: str) -> str | None:
        return self._mappings.get((chain_id, seller.strip().lower(), sku.strip().lower()))

    async def availability(self, chain_id: int, seller: str, sku: str) -> int | None:
        code = self._product_code(chain_id, seller, sku)
        if code is None:
            return None
        return await self.client.stock_level(code)

    async def fulfill(self, chain_id: int, seller: str, request: FulfillmentRequest) -> dict:
        seller = seller.strip().lower()
        lines = []
        for item in request.items:
            code = self._product_code(chain_id, seller, item.sku)
            if code is not None:
                lines.append(ErpOrderLine(product_code=code, quantity=max(math.floor(item.quantity), 1)))

        if not lines:
            return result_document(
                RESULT_TYPE, "notApplicable", request, seller=seller, message="No items mapped to the ERP"
            )

        if not self.partner_id or self.partner_id <= 0:
            raise ErpError("ERP sale partner is not configured for this adapter")

        order = await self.client.create_sales_order(self.partner_id, request.order_id, lines)
        message = f"ERP order {order.name} confirmed."
        if order.tracking_ref:
            message = f"ERP order {order.name} confirmed. Tracking: {order.tracking_ref}"

        logger.info("ERP sales order created", erp_order=order.name, order_id=request.order_id, lines=len(lines))
        return result_document(
            RESULT_TYPE,
            "ok",
            request,
            seller=seller,
            message=message,
            erpOrderId=order.order_id,
            erpOrderName=order.name,
        )

    def ledger_detail(self, result: dict) -> dict | None:
        if result.get("status") != "ok":
            return None
        return {"erpOrderId": result.get("erpOrderId"), "erpOrderName": result.get("erpOrderName")}
