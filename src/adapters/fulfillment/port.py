"""Fulfillment capability port.

A capability is the adapter-specific side effect behind ``/fulfill``: handing
out codes, creating an ERP sales order, and so on. The Run Gate and the HTTP
layer stay the same for every capability.
"""

from abc import ABC, abstractmethod
from datetime import UTC, datetime

from shared.fulfillment import FulfillmentRequest

RESULT_CONTEXT = ["https://schema.org/", "https://aboutcircles.com/contexts/circles-market/"]


class CapabilityError(Exception):
    """The side effect could not be completed; the run is retriable."""


class FulfillmentCapability(ABC):
    kind: str = "unknown"

    @abstractmethod
    async def fulfill(self, chain_id: int, seller: str, request: FulfillmentRequest) -> dict:
        """Perform the side effect and return the JSON result for the caller."""
        ...

    @abstractmethod
    async def availability(self, chain_id: int, seller: str, sku: str) -> int | None:
        """Units available for ``sku``, or None when the sku is not mapped."""
        ...

    def ledger_detail(self, result: dict) -> dict | None:
        """Adapter information worth keeping on the ledger row, if any."""
        return None

    def needs_retry(self, result: dict) -> bool:
        """True when the result leaves the run retriable instead of done."""
        return False


def result_document(result_type: str, status: str, request: FulfillmentRequest, **fields) -> dict:
    document = {
        "@context": RESULT_CONTEXT,
        "@type": result_type,
        "status": status,
        "orderId": request.order_id,
        "paymentReference": request.payment_reference,
    }
    document.update(fields)
    return document


def utc_timestamp() -> str:
    return datetime.now(UTC).isoformat()
