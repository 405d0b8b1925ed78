"""Fulfillment capability factory.

ADAPTER_KIND selects the capability for this deployment:
- codedispenser (default): CodeDispenserCapability
- erp: ErpCapability over FakeErpClient, partner from ERP_SALE_PARTNER_ID
"""

import os

from adapters.fulfillment.code_dispenser import CodeDispenserCapability
from adapters.fulfillment.erp import ErpCapability, FakeErpClient
from adapters.fulfillment.port import FulfillmentCapability

LEDGER_PREFIXES = {
    CodeDispenserCapability.kind: "CODE_FULFILLMENT_",
    ErpCapability.kind: "ERP_FULFILLMENT_",
}

_current_capability: FulfillmentCapability | None = None


def adapter_kind() -> str:
    return (os.environ.get("ADAPTER_KIND") or CodeDispenserCapability.kind).strip().lower()


def get_capability() -> FulfillmentCapability:
    """Return the active capability, built from ADAPTER_KIND on first use."""
    global _current_capability
    if _current_capability is None:
        if adapter_kind() == ErpCapability.kind:
            partner = (os.environ.get("ERP_SALE_PARTNER_ID") or "").strip()
            _current_capability = ErpCapability(FakeErpClient(), int(partner) if partner.isdigit() else None)
        else:
            _current_capability = CodeDispenserCapability()
    return _current_capability


def set_capability(capability: FulfillmentCapability) -> None:
    """Override the active capability (useful for tests)."""
    global _current_capability
    _current_capability = capability


def reset_capability() -> None:
    global _current_capability
    _current_capability = None
